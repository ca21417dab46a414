"""
Pipeline configuration loaded from environment variables.

Values are read once into a PipelineConfig; a .env file in the working
directory is honoured via python-dotenv.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_UPLOAD_DIR = "./uploads"
DEFAULT_THUMBNAIL_WIDTH = 400
DEFAULT_AI_TIMEOUT_SECONDS = 20
DEFAULT_AI_MAX_TAGS = 5
DEFAULT_ARK_BASE_URL = "https://ark.cn-beijing.volces.com/api/v3"
DEFAULT_ARK_MODEL = "doubao-seed-1-6-251015"
DEFAULT_OPENAI_MODEL = "gpt-4o-mini"

DEFAULT_TAG_CANDIDATES = [
    "landscape",
    "people",
    "animal",
    "plant",
    "architecture",
    "city",
    "indoor",
    "outdoor",
    "night",
    "food",
    "vehicle",
    "document",
    "screenshot",
    "illustration",
    "other",
]

_TRUE_VALUES = {"1", "true", "yes", "y", "on"}
_FALSE_VALUES = {"0", "false", "no", "n", "off"}


def get_env_bool(key: str, default: bool) -> bool:
    """Parse a boolean environment variable."""
    value = os.getenv(key, "").strip()
    if not value:
        return default
    if value.lower() in _TRUE_VALUES:
        return True
    if value.lower() in _FALSE_VALUES:
        return False
    raise ValueError(f"Environment variable {key} must be a boolean (got {value!r})")


def get_env_int(key: str, default: int) -> int:
    """Parse an integer environment variable."""
    value = os.getenv(key, "").strip()
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(
            f"Environment variable {key} must be an integer (got {value!r})"
        ) from None


def get_env_csv(key: str, default: list[str]) -> list[str]:
    """Parse a comma-separated environment variable, dropping blanks."""
    value = os.getenv(key, "").strip()
    if not value:
        return list(default)
    items = [part.strip() for part in value.split(",") if part.strip()]
    return items or list(default)


@dataclass
class PipelineConfig:
    """Settings for storage, thumbnails and AI enrichment."""
    upload_dir: Path = field(default_factory=lambda: Path(DEFAULT_UPLOAD_DIR))
    thumbnail_width: int = DEFAULT_THUMBNAIL_WIDTH

    # AI tagging (optional)
    ai_tagging_enabled: bool = False
    ai_provider: str = "ark"
    ark_api_key: str = ""
    ark_base_url: str = DEFAULT_ARK_BASE_URL
    ark_model: str = DEFAULT_ARK_MODEL
    ark_reasoning_effort: str = "medium"
    openai_api_key: str = ""
    openai_model: str = DEFAULT_OPENAI_MODEL
    ai_tag_candidates: list[str] = field(default_factory=lambda: list(DEFAULT_TAG_CANDIDATES))
    ai_tag_max_tags: int = DEFAULT_AI_MAX_TAGS
    ai_tag_timeout_seconds: float = DEFAULT_AI_TIMEOUT_SECONDS
    ai_tag_workers: int = 4

    @property
    def enrichment_timeout(self) -> float:
        """Deadline for one background enrichment job, in seconds."""
        if self.ai_tag_timeout_seconds <= 0:
            return float(DEFAULT_AI_TIMEOUT_SECONDS)
        return float(self.ai_tag_timeout_seconds)

    @classmethod
    def from_env(cls) -> "PipelineConfig":
        """
        Build configuration from environment variables.

        Raises:
            ValueError: If a boolean or integer variable is malformed.
        """
        load_dotenv()

        config = cls(
            upload_dir=Path(os.getenv("UPLOAD_DIR") or DEFAULT_UPLOAD_DIR),
            thumbnail_width=get_env_int("THUMBNAIL_WIDTH", DEFAULT_THUMBNAIL_WIDTH),
            ai_tagging_enabled=get_env_bool("AI_TAGGING_ENABLED", False),
            ai_provider=os.getenv("AI_PROVIDER") or "ark",
            ark_api_key=os.getenv("ARK_API_KEY", "").strip(),
            ark_base_url=os.getenv("ARK_BASE_URL") or DEFAULT_ARK_BASE_URL,
            ark_model=os.getenv("ARK_MODEL") or DEFAULT_ARK_MODEL,
            ark_reasoning_effort=os.getenv("ARK_REASONING_EFFORT") or "medium",
            openai_api_key=os.getenv("OPENAI_API_KEY", "").strip(),
            openai_model=os.getenv("OPENAI_MODEL") or DEFAULT_OPENAI_MODEL,
            ai_tag_candidates=get_env_csv("AI_TAG_CANDIDATES", DEFAULT_TAG_CANDIDATES),
            ai_tag_max_tags=get_env_int("AI_TAG_MAX_TAGS", DEFAULT_AI_MAX_TAGS),
            ai_tag_timeout_seconds=get_env_int(
                "AI_TAG_TIMEOUT_SECONDS", DEFAULT_AI_TIMEOUT_SECONDS
            ),
            ai_tag_workers=get_env_int("AI_TAG_WORKERS", 4),
        )

        logger.debug(
            f"Loaded config (upload_dir={config.upload_dir}, "
            f"ai_tagging={config.ai_tagging_enabled}, provider={config.ai_provider})"
        )
        return config
