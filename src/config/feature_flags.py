"""
Feature Flags Configuration

Runtime switches for the notification pipeline.

Usage:
    from config.feature_flags import is_enabled

    if is_enabled("ai_summaries_enabled"):
        # Run the enricher before sending
    else:
        # Send plain change emails

Environment Variables:
    AI_SUMMARIES_ENABLED=true|false - Generate AI summaries for class changes
    DISPATCH_<EVENT_TYPE>=true|false - Record events of that type (e.g. DISPATCH_CLASS_DELETE)
"""

import os
from typing import Dict
import logging

logger = logging.getLogger(__name__)


def _env_flag(name: str, default: str = "true") -> bool:
    return os.getenv(name, default).lower() == "true"


# Feature flag definitions
FEATURE_FLAGS: Dict[str, bool] = {
    # === AI enrichment ===
    "ai_summaries_enabled": _env_flag("AI_SUMMARIES_ENABLED"),

    # === Dispatch filters (one per event type) ===
    "dispatch_class_insert": _env_flag("DISPATCH_CLASS_INSERT"),
    "dispatch_class_update": _env_flag("DISPATCH_CLASS_UPDATE"),
    "dispatch_class_delete": _env_flag("DISPATCH_CLASS_DELETE"),
    "dispatch_learner_add": _env_flag("DISPATCH_LEARNER_ADD"),
    "dispatch_learner_remove": _env_flag("DISPATCH_LEARNER_REMOVE"),
    "dispatch_learner_update": _env_flag("DISPATCH_LEARNER_UPDATE"),
    "dispatch_status_change": _env_flag("DISPATCH_STATUS_CHANGE"),
}


def is_enabled(flag: str) -> bool:
    """
    Check if a feature flag is enabled.

    Args:
        flag: Feature flag name

    Returns:
        True if enabled, False otherwise

    Example:
        >>> is_enabled("ai_summaries_enabled")
        True
    """
    enabled = FEATURE_FLAGS.get(flag, False)

    if flag not in FEATURE_FLAGS:
        logger.warning(f"Unknown feature flag: {flag}")

    return enabled


def get_all_flags() -> Dict[str, bool]:
    """
    Get all feature flags and their current values.

    Returns:
        Dict mapping flag names to boolean values
    """
    return FEATURE_FLAGS.copy()


def set_flag(flag: str, enabled: bool) -> None:
    """
    Set a feature flag value at runtime.

    WARNING: This does not persist across restarts.
    Use environment variables for permanent changes.

    Args:
        flag: Feature flag name
        enabled: Whether to enable the flag
    """
    FEATURE_FLAGS[flag] = enabled
    logger.info(f"Feature flag '{flag}' set to {enabled}")


def log_feature_flags():
    """Log all feature flags at startup for debugging."""
    logger.info("=== Feature Flags Configuration ===")
    for flag, enabled in sorted(get_all_flags().items()):
        logger.info(f"  {flag}: {'enabled' if enabled else 'disabled'}")
