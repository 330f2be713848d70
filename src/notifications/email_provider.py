"""
Mail transport abstraction.

Notification emails go out through one configured provider:
- SMTP when ``SMTP_HOST`` is set
- otherwise a null provider that only logs (development and tests)
"""

import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class DeliveryStatus(str, Enum):
    """Email delivery status."""
    SENT = "sent"
    BOUNCED = "bounced"
    FAILED = "failed"


@dataclass
class EmailMessage:
    """Email message to be sent."""
    to: str
    subject: str
    body_html: Optional[str] = None
    body_text: Optional[str] = None
    from_email: Optional[str] = None
    from_name: Optional[str] = None
    reply_to: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def validate(self) -> bool:
        """Validate message has required fields."""
        if not self.to:
            raise ValueError("Recipient email (to) is required")
        if not self.subject:
            raise ValueError("Subject is required")
        if not self.body_html and not self.body_text:
            raise ValueError("Either body_html or body_text is required")
        return True


@dataclass
class DeliveryResult:
    """Result of email delivery attempt."""
    success: bool
    status: DeliveryStatus
    message_id: Optional[str] = None
    provider: Optional[str] = None
    error_message: Optional[str] = None
    error_code: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "success": self.success,
            "status": self.status.value,
            "message_id": self.message_id,
            "provider": self.provider,
            "error_message": self.error_message,
            "error_code": self.error_code,
            "timestamp": self.timestamp.isoformat(),
        }


class EmailProvider(ABC):
    """Abstract base class for email providers."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return provider name for logging."""
        pass

    @abstractmethod
    def send(self, message: EmailMessage) -> DeliveryResult:
        """
        Send an email message.

        Args:
            message: Email message to send

        Returns:
            DeliveryResult with success/failure status
        """
        pass

    @abstractmethod
    def is_configured(self) -> bool:
        """Check if provider is properly configured."""
        pass


class NullEmailProvider(EmailProvider):
    """
    Null provider for testing/development.

    Logs emails but doesn't send them. Sent messages are kept in ``outbox``.
    """

    def __init__(self):
        self.outbox: List[EmailMessage] = []

    @property
    def provider_name(self) -> str:
        return "null"

    def send(self, message: EmailMessage) -> DeliveryResult:
        """Log email without sending."""
        message.validate()
        self.outbox.append(message)
        logger.info(f"[NULL PROVIDER] Would send email to {message.to}: {message.subject}")
        return DeliveryResult(
            success=True,
            status=DeliveryStatus.SENT,
            message_id=f"null-{len(self.outbox)}",
            provider=self.provider_name,
        )

    def is_configured(self) -> bool:
        """Always configured (it's a null provider)."""
        return True


# Global provider instance
_email_provider: Optional[EmailProvider] = None


def get_email_provider() -> EmailProvider:
    """
    Get the configured email provider.

    Returns:
        SMTPProvider when SMTP_HOST is set, else NullEmailProvider
    """
    global _email_provider

    if _email_provider is not None:
        return _email_provider

    if os.environ.get("SMTP_HOST"):
        from .smtp_provider import SMTPProvider
        _email_provider = SMTPProvider()
        logger.info("Email provider: SMTP")
        return _email_provider

    logger.warning(
        "No email provider configured. Emails will be logged but not sent. "
        "Set SMTP_HOST to enable email delivery."
    )
    _email_provider = NullEmailProvider()
    return _email_provider


def set_email_provider(provider: Optional[EmailProvider]):
    """
    Set a custom email provider (for testing). ``None`` resets selection.

    Args:
        provider: EmailProvider instance to use
    """
    global _email_provider
    _email_provider = provider
    if provider is not None:
        logger.info(f"Email provider set to: {provider.provider_name}")


def send_email(
    to: str,
    subject: str,
    body_html: Optional[str] = None,
    body_text: Optional[str] = None,
    headers: Optional[Dict[str, str]] = None,
    from_email: Optional[str] = None,
    from_name: Optional[str] = None,
) -> DeliveryResult:
    """
    Convenience function to send an email through the configured provider.

    Returns:
        DeliveryResult with status
    """
    message = EmailMessage(
        to=to,
        subject=subject,
        body_html=body_html,
        body_text=body_text,
        from_email=from_email,
        from_name=from_name,
        headers=dict(headers or {}),
    )
    return get_email_provider().send(message)
