"""
SMTP Email Provider

Configuration:
    SMTP_HOST: SMTP server hostname
    SMTP_PORT: SMTP server port (default: 587)
    SMTP_USERNAME: SMTP authentication username
    SMTP_PASSWORD: SMTP authentication password
    SMTP_USE_TLS: Use STARTTLS (default: true)
    SMTP_USE_SSL: Use implicit SSL (default: false)
    SMTP_FROM_EMAIL: Default sender email
    SMTP_FROM_NAME: Default sender name
"""

import logging
import os
import smtplib
import ssl
import uuid
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr
from typing import Optional

from .email_provider import (
    DeliveryResult,
    DeliveryStatus,
    EmailMessage,
    EmailProvider,
)

logger = logging.getLogger(__name__)

# Set by the MIME builder itself
_MIME_MANAGED_HEADERS = {"content-type", "mime-version", "content-transfer-encoding"}


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class SMTPProvider(EmailProvider):
    """SMTP email provider with STARTTLS / SSL and basic authentication."""

    def __init__(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: Optional[bool] = None,
        use_ssl: Optional[bool] = None,
        from_email: Optional[str] = None,
        from_name: Optional[str] = None,
    ):
        """
        Initialize SMTP provider. Arguments override the SMTP_* environment.

        Args:
            host: SMTP server hostname
            port: SMTP server port
            username: Authentication username
            password: Authentication password
            use_tls: Use STARTTLS (port 587)
            use_ssl: Use SSL/TLS (port 465)
            from_email: Default sender email
            from_name: Default sender name
        """
        self.host = host or os.environ.get("SMTP_HOST")
        self.port = port or int(os.environ.get("SMTP_PORT", "587"))
        self.username = username or os.environ.get("SMTP_USERNAME")
        self.password = password or os.environ.get("SMTP_PASSWORD")
        self.use_tls = use_tls if use_tls is not None else _env_bool("SMTP_USE_TLS", True)
        self.use_ssl = use_ssl if use_ssl is not None else _env_bool("SMTP_USE_SSL", False)
        self.from_email = from_email or os.environ.get("SMTP_FROM_EMAIL", "notifications@localhost")
        self.from_name = from_name or os.environ.get("SMTP_FROM_NAME", "Training Notifications")

    @property
    def provider_name(self) -> str:
        return "smtp"

    def is_configured(self) -> bool:
        """Check if SMTP is properly configured."""
        return bool(self.host)

    def _connect(self) -> smtplib.SMTP:
        if self.use_ssl:
            server = smtplib.SMTP_SSL(self.host, self.port, context=ssl.create_default_context())
        else:
            server = smtplib.SMTP(self.host, self.port)
            if self.use_tls:
                server.starttls(context=ssl.create_default_context())
        if self.username and self.password:
            server.login(self.username, self.password)
        return server

    def build_mime(self, message: EmailMessage) -> MIMEMultipart:
        """Build the multipart/alternative message."""
        msg = MIMEMultipart("alternative")
        from_email = message.from_email or self.from_email
        from_name = message.from_name or self.from_name
        msg["From"] = formataddr((from_name, from_email))
        msg["To"] = message.to
        msg["Subject"] = message.subject

        if message.reply_to:
            msg["Reply-To"] = message.reply_to

        # Reject CRLF to prevent header injection
        for key, value in message.headers.items():
            if str(key).lower() in _MIME_MANAGED_HEADERS:
                continue
            if any(c in str(key) + str(value) for c in ("\r", "\n")):
                logger.warning(f"Rejected email header with CRLF: {key!r}")
                continue
            msg[key] = value

        if message.body_text:
            msg.attach(MIMEText(message.body_text, "plain", "utf-8"))
        if message.body_html:
            msg.attach(MIMEText(message.body_html, "html", "utf-8"))

        return msg

    def send(self, message: EmailMessage) -> DeliveryResult:
        """
        Send email via SMTP.

        Args:
            message: Email message to send

        Returns:
            DeliveryResult with status
        """
        if not self.is_configured():
            return DeliveryResult(
                success=False,
                status=DeliveryStatus.FAILED,
                provider=self.provider_name,
                error_message="SMTP not configured (missing SMTP_HOST)",
                error_code="NOT_CONFIGURED",
            )

        message.validate()
        msg = self.build_mime(message)

        try:
            with self._connect() as server:
                server.sendmail(message.from_email or self.from_email, [message.to], msg.as_string())
        except smtplib.SMTPAuthenticationError as e:
            logger.error(f"SMTP auth error: {e}")
            return DeliveryResult(
                success=False,
                status=DeliveryStatus.FAILED,
                provider=self.provider_name,
                error_message=f"SMTP authentication failed: {e}",
                error_code="AUTH_ERROR",
            )
        except smtplib.SMTPRecipientsRefused as e:
            logger.error(f"SMTP recipients refused: {e}")
            return DeliveryResult(
                success=False,
                status=DeliveryStatus.BOUNCED,
                provider=self.provider_name,
                error_message=f"Recipients refused: {e}",
                error_code="RECIPIENTS_REFUSED",
            )
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"SMTP error: {e}")
            return DeliveryResult(
                success=False,
                status=DeliveryStatus.FAILED,
                provider=self.provider_name,
                error_message=str(e),
                error_code="SMTP_ERROR",
            )

        logger.info(f"SMTP: Email sent to {message.to}")
        return DeliveryResult(
            success=True,
            status=DeliveryStatus.SENT,
            message_id=f"smtp-{uuid.uuid4()}",
            provider=self.provider_name,
        )
