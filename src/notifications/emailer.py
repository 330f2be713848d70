"""
Terminal pipeline step: render and send one notification email.
"""

import asyncio
import logging
from typing import Optional

from database.repositories.class_event_repository import ClassEventRepository

from .email_provider import EmailMessage, EmailProvider, get_email_provider
from .presenter import NotificationEmailPresenter
from .schemas import EmailContext

logger = logging.getLogger(__name__)


class NotificationEmailer:
    """
    Sends the email for one event to one recipient and records the outcome.

    Sending is single-shot: a failure marks the event ``failed`` and nothing
    here re-submits it.
    """

    def __init__(
        self,
        repository: ClassEventRepository,
        presenter: Optional[NotificationEmailPresenter] = None,
        provider: Optional[EmailProvider] = None,
        from_email: Optional[str] = None,
        from_name: Optional[str] = None,
    ):
        self.repository = repository
        self.presenter = presenter or NotificationEmailPresenter()
        self._provider = provider
        self.from_email = from_email
        self.from_name = from_name

    @property
    def provider(self) -> EmailProvider:
        if self._provider is None:
            self._provider = get_email_provider()
        return self._provider

    async def send(
        self,
        event_id: int,
        recipient: str,
        email_context: Optional[EmailContext] = None,
    ) -> bool:
        """
        Render and send the notification for an event.

        Args:
            event_id: Event to notify about
            recipient: Destination address
            email_context: Context handed over from enrichment

        Returns:
            True if the transport accepted the message
        """
        event = await self.repository.find_by_id(event_id)
        if event is None:
            logger.warning(f"Event {event_id} not found for email to {recipient}")
            return False

        rendered = self.presenter.present(event, email_context)
        message = EmailMessage(
            to=recipient,
            subject=rendered.subject,
            body_html=rendered.body_html,
            body_text=rendered.body_text,
            from_email=self.from_email,
            from_name=self.from_name,
            headers=dict(rendered.headers),
            metadata={"event_id": event_id, "event_type": event.event_type.value},
        )

        error: Optional[str] = None
        try:
            # Providers are blocking (smtplib)
            result = await asyncio.to_thread(self.provider.send, message)
            if not result.success:
                error = result.error_message or result.status.value
        except Exception as e:
            error = str(e) or e.__class__.__name__

        if error is not None:
            await self.repository.mark_failed(event_id)
            logger.error(
                f"Notification email failed for event {event_id} to {recipient}: {error}",
                extra={"event_id": event_id, "recipient": recipient, "error": error},
            )
            return False

        await self.repository.mark_sent(event_id)
        logger.info(
            f"Notification email sent for event {event_id} to {recipient}",
            extra={"event_id": event_id, "recipient": recipient},
        )
        return True
