#!/usr/bin/env python3
"""
CLI entry point for bulk-importing photos through the ingestion pipeline.

Every image under a directory is uploaded on behalf of one owner, exactly
as if it had arrived through the REST API: identical files are
deduplicated, metadata and thumbnails are derived, heuristic tags are
attached and AI enrichment is scheduled.

Usage:
    python run_pipeline.py /path/to/photos --owner alice
    python run_pipeline.py /path/to/photos --owner alice --no-recursive
    python run_pipeline.py /path/to/photos --owner alice --wait -v
    python run_pipeline.py /path/to/photos --owner alice --no-ai
"""

import argparse
import logging
import sys
import time
from concurrent.futures import wait
from dataclasses import dataclass, field
from pathlib import Path

from db.database import dispose_engine, init_db, verify_connection
from pipeline.config import PipelineConfig
from pipeline.processor import PhotoProcessor, UploadResult

# Supported image extensions
IMAGE_EXTENSIONS = {
    ".jpg", ".jpeg", ".png", ".gif", ".bmp",
    ".tiff", ".tif", ".webp",
}


@dataclass
class ImportStats:
    """Statistics for an import run."""
    total_found: int = 0
    stored: int = 0
    deduplicated: int = 0
    failed: int = 0
    enriched: int = 0
    duration_seconds: float = 0.0
    failures: list[tuple[str, str]] = field(default_factory=list)

    def summary(self) -> str:
        """Generate summary string."""
        lines = [
            "=" * 50,
            "Import Complete",
            "=" * 50,
            f"Total images found: {self.total_found}",
            f"Stored as new assets: {self.stored}",
            f"Reused existing assets: {self.deduplicated}",
            f"Failed: {self.failed}",
        ]
        if self.enriched:
            lines.append(f"AI tagged: {self.enriched}")
        lines.append(f"Duration: {self.duration_seconds:.1f} seconds")

        if self.failures:
            lines.append("")
            lines.append("Failed images:")
            for name, error in self.failures:
                lines.append(f"  - {name}: {error}")

        return "\n".join(lines)


def setup_logging(verbose: bool = False, log_file: str | None = None) -> None:
    """Configure logging for the import run."""
    level = logging.DEBUG if verbose else logging.INFO

    handlers: list[logging.Handler] = [logging.StreamHandler()]

    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=handlers
    )


def find_images(directory: Path, recursive: bool = True) -> list[Path]:
    """List image files under a directory, sorted by name, skipping hidden files."""
    candidates = directory.rglob("*") if recursive else directory.iterdir()
    images = [
        path for path in candidates
        if path.is_file()
        and path.suffix.lower() in IMAGE_EXTENSIONS
        and not path.name.startswith(".")
    ]
    images.sort(key=lambda p: p.name.lower())
    return images


def print_progress(current: int, total: int, filename: str) -> None:
    """Print progress to console."""
    pct = (current / total) * 100 if total > 0 else 0
    print(f"[{current:4d}/{total:4d}] ({pct:5.1f}%) {filename}")


def import_directory(
    processor: PhotoProcessor,
    directory: Path,
    owner_id: str,
    recursive: bool = True,
    wait_for_tags: bool = False,
    verbose: bool = False,
) -> ImportStats:
    """Upload every image in a directory for one owner."""
    start_time = time.time()
    stats = ImportStats()
    images = find_images(directory, recursive=recursive)
    stats.total_found = len(images)

    results: list[UploadResult] = []
    for i, filepath in enumerate(images, 1):
        if verbose:
            print_progress(i, len(images), filepath.name)
        try:
            with open(filepath, "rb") as stream:
                result = processor.upload(owner_id, stream, filepath.name)
        except Exception as e:
            stats.failed += 1
            stats.failures.append((filepath.name, str(e)))
            logging.getLogger(__name__).error(f"Failed to import {filepath.name}: {e}")
            continue

        results.append(result)
        if result.deduplicated:
            stats.deduplicated += 1
        else:
            stats.stored += 1

    if wait_for_tags:
        futures = [r.enrichment for r in results if r.enrichment is not None]
        if futures:
            print(f"Waiting for AI tagging of {len(futures)} photo(s)...")
            wait(futures)
            stats.enriched = sum(1 for f in futures if f.result() is not None)

    stats.duration_seconds = time.time() - start_time
    return stats


def run_pipeline(args: argparse.Namespace) -> int:
    """Run the import."""
    # Verify database connection
    print("Verifying database connection...")
    if not verify_connection():
        print("ERROR: Could not connect to database.")
        print("Please check your .env configuration and ensure the database is running.")
        return 1
    if not init_db():
        print("ERROR: Could not create database tables.")
        return 1

    print("Database connection OK\n")

    # Validate input path
    input_path = Path(args.path)
    if not input_path.is_dir():
        print(f"ERROR: Path is not a directory: {input_path}")
        return 1

    config = PipelineConfig.from_env()
    if args.no_ai:
        config.ai_tagging_enabled = False
    if args.upload_dir:
        config.upload_dir = Path(args.upload_dir)

    processor = PhotoProcessor(config=config)

    # Print configuration
    print("Import Configuration:")
    print(f"  Input path: {input_path}")
    print(f"  Owner: {args.owner}")
    print(f"  Upload dir: {config.upload_dir}")
    print(f"  Recursive: {args.recursive}")
    print(f"  AI tagging: {processor.enrichment.available}")
    if processor.tagger_error and config.ai_tagging_enabled:
        print(f"  AI tagging unavailable: {processor.tagger_error}")
    print()

    try:
        stats = import_directory(
            processor,
            input_path,
            args.owner,
            recursive=args.recursive,
            wait_for_tags=args.wait,
            verbose=args.verbose,
        )
    finally:
        processor.close(wait=args.wait)

    print("\n" + stats.summary())
    return 1 if stats.failed > 0 else 0


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Import images for a user: deduplicate, extract metadata, tag, store.",
    )
    parser.add_argument("path", help="Path to directory containing images")
    parser.add_argument("--owner", required=True, help="Owner identity for imported photos")
    parser.add_argument(
        "-r", "--recursive",
        action="store_true",
        default=True,
        help="Process subdirectories (default: True)"
    )
    parser.add_argument(
        "--no-recursive",
        action="store_false",
        dest="recursive",
        help="Don't process subdirectories"
    )
    parser.add_argument("--upload-dir", help="Override UPLOAD_DIR")
    parser.add_argument("--no-ai", action="store_true", help="Disable AI tagging")
    parser.add_argument(
        "--wait",
        action="store_true",
        help="Wait for background AI tagging before exiting"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Show detailed progress output"
    )
    parser.add_argument("--log-file", help="Write logs to file")

    args = parser.parse_args()
    setup_logging(args.verbose, args.log_file)

    try:
        return run_pipeline(args)
    except KeyboardInterrupt:
        print("\n\nImport interrupted by user.")
        return 130
    except Exception as e:
        print(f"\nERROR: {e}")
        if args.verbose:
            import traceback
            traceback.print_exc()
        return 1
    finally:
        dispose_engine()


if __name__ == "__main__":
    sys.exit(main())
