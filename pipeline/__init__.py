"""
Photo ingestion and enrichment pipeline for Photo Library Manager.

This module provides:
- Content-addressed storage with deduplication
- EXIF metadata extraction
- Thumbnail and edit generation
- Heuristic and AI tagging
- Owner-checked upload, update, edit and reference-counted delete
"""

from pipeline.ai_tagger import (
    AITaggerError,
    AITaggingDisabled,
    AITaggingNotConfigured,
    ImageTagger,
    ProviderError,
    create_image_tagger,
)
from pipeline.config import PipelineConfig
from pipeline.content_store import ContentStore
from pipeline.derived_assets import CropRect, DerivedAssetGenerator, ImageEditError
from pipeline.enrichment import EnrichmentCoordinator
from pipeline.metadata_extractor import ExifInfo, GPSInfo, MetadataExtractor
from pipeline.processor import (
    PhotoError,
    PhotoForbidden,
    PhotoNotFound,
    PhotoProcessor,
    PhotoUpdate,
    UploadResult,
)
from pipeline.tagging import Tag, TagSource, build_heuristic_tags, merge_tags

__all__ = [
    "AITaggerError",
    "AITaggingDisabled",
    "AITaggingNotConfigured",
    "ImageTagger",
    "ProviderError",
    "create_image_tagger",
    "PipelineConfig",
    "ContentStore",
    "CropRect",
    "DerivedAssetGenerator",
    "ImageEditError",
    "EnrichmentCoordinator",
    "ExifInfo",
    "GPSInfo",
    "MetadataExtractor",
    "PhotoError",
    "PhotoForbidden",
    "PhotoNotFound",
    "PhotoProcessor",
    "PhotoUpdate",
    "UploadResult",
    "Tag",
    "TagSource",
    "build_heuristic_tags",
    "merge_tags",
]
