"""
AI tagging providers for the enrichment step.

Provides:
- ImageTagger interface implemented by each provider
- ArkImageTagger: OpenAI-compatible chat completions endpoint over requests
- OpenAIImageTagger: the official OpenAI SDK
- create_image_tagger(): selects a provider from configuration once

Unavailable tagging is reported as AITaggingDisabled (switched off) or
AITaggingNotConfigured (switched on but missing credentials or model).
"""

import base64
import json
import logging
import mimetypes
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

import requests
from openai import OpenAI, OpenAIError
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from pipeline.config import DEFAULT_TAG_CANDIDATES, PipelineConfig
from pipeline.tagging import Tag, TagSource, clean_tag_name

logger = logging.getLogger(__name__)

MAX_IMAGE_BYTES = 8 * 1024 * 1024
MAX_TAGS_LIMIT = 20


# ────────────────────────────────────────────────────────────────────────────────
# Exceptions
# ────────────────────────────────────────────────────────────────────────────────

class AITaggerError(Exception):
    """Base exception for AI tagging failures."""
    pass


class AITaggingDisabled(AITaggerError):
    """AI tagging is switched off in configuration."""

    def __init__(self, message: str = "ai tagging is disabled"):
        super().__init__(message)


class AITaggingNotConfigured(AITaggerError):
    """AI tagging is enabled but a key, model or provider is missing."""
    pass


class ProviderError(AITaggerError):
    """The tagging provider failed or returned an unusable response."""
    pass


# ────────────────────────────────────────────────────────────────────────────────
# Shared helpers
# ────────────────────────────────────────────────────────────────────────────────

def clamp_max_tags(max_tags: int) -> int:
    if max_tags <= 0:
        return 5
    return min(max_tags, MAX_TAGS_LIMIT)


def build_tag_prompt(candidates: list[str] | None, max_tags: int) -> str:
    """Build the instruction sent alongside the image."""
    max_tags = clamp_max_tags(max_tags)
    categories = ", ".join(c for c in (candidates or []) if c.strip())
    if not categories:
        categories = ", ".join(DEFAULT_TAG_CANDIDATES)

    return (
        f"Generate 1-{max_tags} short tags describing this image. Cover a category "
        f"tag (for example: {categories}) plus finer-grained entity or scene tags "
        "(for example: beach, mountain, dog, cat, night view, indoor).\n"
        "Tags are not limited to the examples; use short words, no sentences, "
        "no duplicates.\n"
        'Output JSON only, no explanation. Format: {"tags":[{"name":"people","score":0.95}]}.\n'
        "score is an optional float between 0 and 1."
    )


def read_image_file(path: str | Path) -> tuple[bytes, str]:
    """
    Read an image for upload to a provider.

    Returns:
        (raw bytes, mime type)

    Raises:
        ProviderError: If the path is empty, a directory, or too large.
        OSError: If the file cannot be read.
    """
    path = Path(path)
    if not str(path).strip():
        raise ProviderError("empty image path")
    if path.is_dir():
        raise ProviderError(f"image path is a directory: {path}")

    size = path.stat().st_size
    if size > MAX_IMAGE_BYTES:
        raise ProviderError(
            f"image too large for tagging: {size} bytes (max {MAX_IMAGE_BYTES})"
        )

    mime, _ = mimetypes.guess_type(path.name)
    return path.read_bytes(), mime or "image/jpeg"


def to_data_url(data: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64," + base64.b64encode(data).decode()


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "...(truncated)"


def parse_tag_output(content: str | None) -> list[Tag]:
    """
    Parse the model's JSON reply into tags.

    Names are cleaned and deduplicated case-insensitively; scores outside
    (0, 1] are dropped.

    Raises:
        ProviderError: If the content is empty or not the expected JSON.
    """
    content = (content or "").strip()
    if content.startswith("```"):
        content = content.strip("`").strip()
        if content.lower().startswith("json"):
            content = content[4:].strip()
    if not content:
        raise ProviderError("provider returned empty content")

    try:
        payload = json.loads(content)
        items = payload.get("tags") or []
    except (ValueError, AttributeError) as e:
        raise ProviderError(
            f"failed to parse tag JSON: {e} (content={_truncate(content, 400)})"
        ) from e

    tags: list[Tag] = []
    seen: set[str] = set()
    for item in items:
        if not isinstance(item, dict):
            continue
        name = clean_tag_name(str(item.get("name") or ""))
        if not name or name.lower() in seen:
            continue
        seen.add(name.lower())

        score = item.get("score")
        if not isinstance(score, (int, float)) or not 0 < score <= 1:
            score = None
        tags.append(Tag(name=name, source=TagSource.AI, score=score))

    return tags


def _chat_messages(data_url: str, prompt: str) -> list[dict[str, Any]]:
    return [
        {
            "role": "user",
            "content": [
                {"type": "image_url", "image_url": {"url": data_url}},
                {"type": "text", "text": prompt},
            ],
        }
    ]


# ────────────────────────────────────────────────────────────────────────────────
# Providers
# ────────────────────────────────────────────────────────────────────────────────

class ImageTagger(ABC):
    """Capability to generate tags for an image file."""

    @abstractmethod
    def generate_tags(self, image_path: str | Path, timeout: float | None = None) -> list[Tag]:
        """
        Generate tags for an image.

        Args:
            image_path: Path to the image on disk.
            timeout: Seconds the call may take; None uses the provider default.

        Raises:
            AITaggerError: On any provider failure.
        """


class ArkImageTagger(ImageTagger):
    """
    Tagger backed by an OpenAI-compatible /chat/completions endpoint.

    The client is stateless apart from its pooled HTTP session, so one
    instance can serve concurrent enrichment jobs.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str,
        model: str,
        reasoning_effort: str = "",
        candidates: list[str] | None = None,
        max_tags: int = 5,
        timeout: float = 20,
        max_retries: int = 1,
    ):
        self.api_key = api_key.strip()
        self.base_url = base_url.strip().rstrip("/")
        self.model = model.strip()
        self.reasoning_effort = reasoning_effort.strip()
        self.candidates = list(candidates or [])
        self.max_tags = clamp_max_tags(max_tags)
        self.timeout = timeout

        # Setup requests session with connection pooling
        self._session = requests.Session()
        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=0.5,
            status_forcelist=[502, 503, 504],
            allowed_methods=frozenset({"POST"}),
            raise_on_status=False,
        )
        adapter = HTTPAdapter(pool_connections=4, pool_maxsize=8, max_retries=retry_strategy)
        self._session.mount("https://", adapter)
        self._session.mount("http://", adapter)

    def _build_request(self, image_path: str | Path) -> dict[str, Any]:
        data, mime_type = read_image_file(image_path)
        body: dict[str, Any] = {
            "model": self.model,
            "messages": _chat_messages(
                to_data_url(data, mime_type),
                build_tag_prompt(self.candidates, self.max_tags),
            ),
            "temperature": 0.2,
        }
        if self.reasoning_effort:
            body["reasoning_effort"] = self.reasoning_effort
        return body

    def generate_tags(self, image_path: str | Path, timeout: float | None = None) -> list[Tag]:
        if not self.api_key:
            raise AITaggingNotConfigured("ARK_API_KEY is empty")
        if not self.model:
            raise AITaggingNotConfigured("ARK_MODEL is empty")

        body = self._build_request(image_path)
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

        try:
            response = self._session.post(
                f"{self.base_url}/chat/completions",
                json=body,
                headers=headers,
                timeout=timeout if timeout is not None else self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise ProviderError(f"ark request failed: {e}") from e

        if not 200 <= response.status_code < 300:
            raise ProviderError(
                f"ark error: status={response.status_code} "
                f"body={_truncate(response.text, 800)}"
            )

        try:
            parsed = response.json()
            choices = parsed.get("choices") or []
        except (ValueError, AttributeError) as e:
            raise ProviderError(f"failed to parse ark response: {e}") from e
        if not choices:
            raise ProviderError("ark response has no choices")

        content = (choices[0].get("message") or {}).get("content")
        tags = parse_tag_output(content)
        logger.debug(f"Ark generated {len(tags)} tags for {Path(image_path).name}")
        return tags


class OpenAIImageTagger(ImageTagger):
    """Tagger backed by the OpenAI SDK vision models."""

    def __init__(
        self,
        api_key: str,
        model: str,
        candidates: list[str] | None = None,
        max_tags: int = 5,
        timeout: float = 20,
        client: OpenAI | None = None,
    ):
        self.model = model.strip()
        self.candidates = list(candidates or [])
        self.max_tags = clamp_max_tags(max_tags)
        self.timeout = timeout
        self.client = client or OpenAI(api_key=api_key, timeout=timeout, max_retries=1)

    def generate_tags(self, image_path: str | Path, timeout: float | None = None) -> list[Tag]:
        data, mime_type = read_image_file(image_path)

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                temperature=0.2,
                response_format={"type": "json_object"},
                messages=_chat_messages(
                    to_data_url(data, mime_type),
                    build_tag_prompt(self.candidates, self.max_tags),
                ),
                timeout=timeout if timeout is not None else self.timeout,
            )
        except OpenAIError as e:
            raise ProviderError(f"openai request failed: {e}") from e

        if not response.choices:
            raise ProviderError("openai response has no choices")

        tags = parse_tag_output(response.choices[0].message.content)
        logger.debug(f"OpenAI generated {len(tags)} tags for {Path(image_path).name}")
        return tags


def create_image_tagger(config: PipelineConfig | None) -> ImageTagger:
    """
    Build the configured tagging provider.

    Raises:
        AITaggingDisabled: If tagging is switched off.
        AITaggingNotConfigured: If credentials, model or provider are missing.
    """
    if config is None or not config.ai_tagging_enabled:
        raise AITaggingDisabled()

    provider = config.ai_provider.strip().lower()
    timeout = config.enrichment_timeout

    if provider in ("", "ark", "doubao"):
        if not config.ark_api_key.strip():
            raise AITaggingNotConfigured("ARK_API_KEY is empty")
        if not config.ark_model.strip():
            raise AITaggingNotConfigured("ARK_MODEL is empty")
        return ArkImageTagger(
            api_key=config.ark_api_key,
            base_url=config.ark_base_url,
            model=config.ark_model,
            reasoning_effort=config.ark_reasoning_effort,
            candidates=config.ai_tag_candidates,
            max_tags=config.ai_tag_max_tags,
            timeout=timeout,
        )

    if provider == "openai":
        if not config.openai_api_key.strip():
            raise AITaggingNotConfigured("OPENAI_API_KEY is empty")
        if not config.openai_model.strip():
            raise AITaggingNotConfigured("OPENAI_MODEL is empty")
        return OpenAIImageTagger(
            api_key=config.openai_api_key,
            model=config.openai_model,
            candidates=config.ai_tag_candidates,
            max_tags=config.ai_tag_max_tags,
            timeout=timeout,
        )

    raise AITaggingNotConfigured(f"unsupported AI_PROVIDER={config.ai_provider!r}")
