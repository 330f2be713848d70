"""
AI Provider Configuration Module.

Configuration for the summarization provider (OpenAI chat completions).

Usage:
    from config.ai_providers import get_openai_config

    config = get_openai_config()
    eligibility = config.assess_eligibility(event_id)
    if eligibility.eligible:
        ...

Environment Variables:
    OPENAI_API_KEY - API key (must look like ``sk-...``)
    OPENAI_API_URL - API base URL (default https://api.openai.com/v1)
    OPENAI_MODEL - Chat model (default gpt-4o-mini)
"""

import os
import re
import logging
from dataclasses import dataclass
from typing import Optional
from functools import lru_cache
from urllib.parse import urlparse

from config import feature_flags
from notifications.event_types import ErrorCode
from notifications.schemas import Eligibility

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.openai.com/v1"
DEFAULT_MODEL = "gpt-4o-mini"
API_KEY_PATTERN = re.compile(r"^sk-[A-Za-z0-9_-]{20,}$")
AI_SUMMARIES_FLAG = "ai_summaries_enabled"


def is_valid_api_key(key: Optional[str]) -> bool:
    """Check a key has the ``sk-`` shape the provider issues."""
    if not isinstance(key, str):
        return False
    return bool(API_KEY_PATTERN.match(key.strip()))


def mask_api_key(key: Optional[str]) -> Optional[str]:
    """
    Mask an API key for display, keeping the first and last four characters.

    Keys of eight characters or fewer are fully masked.
    """
    if key is None:
        return None
    key = key.strip()
    if not key:
        return None
    if len(key) <= 8:
        return "*" * len(key)
    return key[:4] + "*" * (len(key) - 8) + key[-4:]


def _is_valid_url(url: str) -> bool:
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


@dataclass
class OpenAIConfig:
    """Configuration for the OpenAI summarization provider."""
    raw_api_key: Optional[str] = None
    raw_api_url: Optional[str] = None
    raw_model: Optional[str] = None
    timeout_seconds: float = 60.0

    @classmethod
    def from_env(cls) -> "OpenAIConfig":
        return cls(
            raw_api_key=os.environ.get("OPENAI_API_KEY"),
            raw_api_url=os.environ.get("OPENAI_API_URL"),
            raw_model=os.environ.get("OPENAI_MODEL"),
        )

    @property
    def api_key(self) -> Optional[str]:
        """The configured key, or None if missing or malformed."""
        if not self.raw_api_key or not self.raw_api_key.strip():
            return None
        key = self.raw_api_key.strip()
        return key if is_valid_api_key(key) else None

    @property
    def has_valid_api_key(self) -> bool:
        return self.api_key is not None

    @property
    def api_url(self) -> str:
        url = (self.raw_api_url or "").strip()
        if not url or not _is_valid_url(url):
            return DEFAULT_API_URL
        return url

    @property
    def model(self) -> str:
        model = (self.raw_model or "").strip()
        return model or DEFAULT_MODEL

    @property
    def is_enabled(self) -> bool:
        return feature_flags.is_enabled(AI_SUMMARIES_FLAG)

    def assess_eligibility(self, event_id: Optional[int] = None) -> Eligibility:
        """
        Decide whether an event may be summarized.

        ``event_id`` is accepted for per-event overrides; the current policy
        is global.

        Returns:
            Eligibility with reason ``config_missing`` (checked first) or
            ``feature_disabled`` when not eligible.
        """
        if not self.has_valid_api_key:
            return Eligibility.denied(ErrorCode.CONFIG_MISSING)
        if not self.is_enabled:
            return Eligibility.denied(ErrorCode.FEATURE_DISABLED)
        return Eligibility.allowed()

    def is_enabled_for_event(self, event_id: int) -> bool:
        return self.assess_eligibility(event_id).eligible

    def masked_api_key(self) -> Optional[str]:
        return mask_api_key(self.raw_api_key)


@lru_cache(maxsize=1)
def get_openai_config() -> OpenAIConfig:
    """Get the OpenAI configuration loaded from the environment (cached)."""
    config = OpenAIConfig.from_env()
    if not config.has_valid_api_key:
        logger.warning("OPENAI_API_KEY missing or invalid; AI summaries will be skipped")
    return config


__all__ = [
    "OpenAIConfig",
    "get_openai_config",
    "is_valid_api_key",
    "mask_api_key",
    "DEFAULT_API_URL",
    "DEFAULT_MODEL",
]
