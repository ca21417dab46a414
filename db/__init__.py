"""
Database module for Photo Library Manager.

This module provides database connectivity, the photo model, and the
repository used by the ingestion pipeline.
"""

from db.database import get_engine, get_session, init_db, session_scope
from db.models import Photo
from db.operations import DeadlineExceeded, MUTABLE_FIELDS, PhotoRepository

__all__ = [
    "get_engine",
    "get_session",
    "init_db",
    "session_scope",
    "Photo",
    "DeadlineExceeded",
    "MUTABLE_FIELDS",
    "PhotoRepository",
]
