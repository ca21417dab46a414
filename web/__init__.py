"""REST front door for Photo Library Manager."""
