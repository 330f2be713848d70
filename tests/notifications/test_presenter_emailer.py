"""Tests for email rendering, delivery and the mail transports."""

import smtplib
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest

from notifications.email_provider import (
    DeliveryResult,
    DeliveryStatus,
    EmailMessage,
    EmailProvider,
    NullEmailProvider,
    get_email_provider,
    send_email,
    set_email_provider,
)
from notifications.emailer import NotificationEmailer
from notifications.event_types import EventType, NotificationStatus, SummaryStatus
from notifications.presenter import (
    HTML_HEADERS,
    NotificationEmailPresenter,
    class_label,
    format_value,
)
from notifications.schemas import ClassEvent, EmailContext, SummaryRecord
from notifications.smtp_provider import SMTPProvider

RECIPIENT = "ops@wecoza.co.za"


def _event(event_type=EventType.CLASS_UPDATE, ai_summary=None, **event_data):
    data = {
        "new_row": {"class_id": 101, "class_code": "AET-101", "class_subject": "Communication", "class_status": "stopped"},
        "old_row": {"class_id": 101, "class_status": "active"},
        "diff": {"class_status": {"old": "active", "new": "stopped"}},
        "metadata": {},
    }
    data.update(event_data)
    return ClassEvent(
        event_id=7,
        event_type=event_type,
        entity_type="learner" if event_type.is_learner_event else "class",
        entity_id=101,
        event_data=data,
        ai_summary=ai_summary,
        created_at=datetime(2026, 1, 20, 10, 0, tzinfo=timezone.utc),
    )


class FailingProvider(EmailProvider):
    """Transport that rejects every message."""

    @property
    def provider_name(self) -> str:
        return "failing"

    def send(self, message):
        return DeliveryResult(success=False, status=DeliveryStatus.FAILED, error_message="mailbox unavailable")

    def is_configured(self) -> bool:
        return True


class ExplodingProvider(FailingProvider):
    def send(self, message):
        raise ConnectionError("relay unreachable")


class TestPresenter:
    """Tests for NotificationEmailPresenter."""

    @pytest.mark.parametrize("event_type,subject", [
        (EventType.CLASS_INSERT, "[WeCoza] New Class: AET-101 - Communication"),
        (EventType.CLASS_UPDATE, "[WeCoza] Class Updated: AET-101 - Communication"),
        (EventType.CLASS_DELETE, "[WeCoza] Class Deleted: AET-101 - Communication"),
        (EventType.LEARNER_ADD, "[WeCoza] Learner Added to AET-101 - Communication"),
        (EventType.STATUS_CHANGE, "[WeCoza] Status Changed: AET-101 - Communication"),
    ])
    def test_subjects(self, event_type, subject):
        assert NotificationEmailPresenter().build_subject(_event(event_type)) == subject

    def test_label_falls_back_to_id(self):
        event = _event(new_row={"class_id": 55}, old_row=None)
        assert class_label(event) == "ID 55"

    def test_ai_section_only_on_success(self):
        presenter = NotificationEmailPresenter()
        success = SummaryRecord(summary="- Class stopped", status=SummaryStatus.SUCCESS, attempts=1)
        failed = SummaryRecord(summary=None, status=SummaryStatus.FAILED, error_code="config_missing")

        with_summary = presenter.present(_event(ai_summary=success))
        without = presenter.present(_event(ai_summary=failed))

        assert "AI Summary" in with_summary.body_html
        assert "- Class stopped" in with_summary.body_text
        assert "AI Summary" not in without.body_html
        assert "AI Summary" not in without.body_text

    def test_changes_table(self):
        email = NotificationEmailPresenter().present(_event())
        assert "- Status: active -> stopped" in email.body_text
        assert email.headers == HTML_HEADERS

    def test_insert_lists_new_row(self):
        rows = NotificationEmailPresenter().change_rows(_event(EventType.CLASS_INSERT, diff={}, old_row=None))
        assert ("Class Code", "-", "AET-101") in rows

    def test_delete_puts_values_before(self):
        rows = NotificationEmailPresenter().change_rows(_event(EventType.CLASS_DELETE, diff={}, old_row=None))
        assert ("Class Code", "AET-101", "-") in rows

    def test_context_labels_win(self):
        context = EmailContext(field_labels={"class_status": "Current State"})
        rows = NotificationEmailPresenter().change_rows(_event(), context)
        assert rows[0][0] == "Current State"

    def test_html_escaped(self):
        event = _event(diff={"class_notes": {"old": None, "new": "<script>x</script>"}})
        email = NotificationEmailPresenter().present(event)
        assert "<script>" not in email.body_html
        assert "&lt;script&gt;" in email.body_html

    @pytest.mark.parametrize("value,expected", [
        (None, "-"), ("", "-"), (True, "Yes"), (False, "No"), ([1, 2], "[1, 2]"), (3, "3"),
    ])
    def test_format_value(self, value, expected):
        assert format_value(value) == expected


async def _sending_event(repository):
    event_id = await repository.insert(
        event_type=EventType.STATUS_CHANGE,
        entity_type="class",
        entity_id=101,
        event_data={
            "new_row": {"class_id": 101, "class_code": "AET-101", "class_subject": "Communication"},
            "old_row": None,
            "diff": {"class_status": {"old": "active", "new": "stopped"}},
            "metadata": {},
        },
    )
    await repository.update_status(event_id, NotificationStatus.SENDING)
    return event_id


class TestEmailer:
    """Tests for NotificationEmailer."""

    @pytest.mark.asyncio
    async def test_send_marks_sent(self, repository):
        provider = NullEmailProvider()
        event_id = await _sending_event(repository)
        emailer = NotificationEmailer(repository, provider=provider, from_name="WeCoza Ops")

        assert await emailer.send(event_id, RECIPIENT)

        event = await repository.find_by_id(event_id)
        assert event.notification_status == NotificationStatus.SENT
        assert event.sent_at is not None
        message = provider.outbox[0]
        assert message.to == RECIPIENT
        assert message.subject == "[WeCoza] Status Changed: AET-101 - Communication"
        assert message.headers["Content-Type"] == "text/html; charset=UTF-8"
        assert message.from_name == "WeCoza Ops"
        assert message.metadata["event_id"] == event_id

    @pytest.mark.asyncio
    async def test_transport_failure_marks_failed(self, repository):
        event_id = await _sending_event(repository)

        assert not await NotificationEmailer(repository, provider=FailingProvider()).send(event_id, RECIPIENT)

        event = await repository.find_by_id(event_id)
        assert event.notification_status == NotificationStatus.FAILED

    @pytest.mark.asyncio
    async def test_transport_exception_marks_failed(self, repository):
        event_id = await _sending_event(repository)

        assert not await NotificationEmailer(repository, provider=ExplodingProvider()).send(event_id, RECIPIENT)

        event = await repository.find_by_id(event_id)
        assert event.notification_status == NotificationStatus.FAILED

    @pytest.mark.asyncio
    async def test_missing_event(self, repository):
        provider = NullEmailProvider()
        assert not await NotificationEmailer(repository, provider=provider).send(404, RECIPIENT)
        assert provider.outbox == []

    @pytest.mark.asyncio
    async def test_default_provider_is_null(self, repository):
        event_id = await _sending_event(repository)
        emailer = NotificationEmailer(repository)

        assert await emailer.send(event_id, RECIPIENT)
        assert isinstance(emailer.provider, NullEmailProvider)


class TestProviders:
    """Tests for provider selection and the SMTP transport."""

    def test_null_by_default(self):
        assert isinstance(get_email_provider(), NullEmailProvider)

    def test_smtp_when_host_set(self, monkeypatch):
        monkeypatch.setenv("SMTP_HOST", "smtp.wecoza.co.za")
        assert isinstance(get_email_provider(), SMTPProvider)

    def test_send_email_uses_injected_provider(self):
        provider = NullEmailProvider()
        set_email_provider(provider)

        result = send_email(RECIPIENT, "Hello", body_text="Body")

        assert result.success
        assert result.message_id == "null-1"

    def test_message_validation(self):
        with pytest.raises(ValueError):
            EmailMessage(to=RECIPIENT, subject="No body").validate()

    def test_smtp_not_configured(self):
        result = SMTPProvider(host="").send(EmailMessage(to=RECIPIENT, subject="s", body_text="b"))
        assert not result.success
        assert result.error_code == "NOT_CONFIGURED"

    def test_mime_skips_managed_and_crlf_headers(self):
        provider = SMTPProvider(host="smtp.wecoza.co.za", from_email="noreply@wecoza.co.za")
        message = EmailMessage(
            to=RECIPIENT,
            subject="s",
            body_html="<p>b</p>",
            headers={"Content-Type": "text/html; charset=UTF-8", "X-Event": "7", "X-Bad": "a\r\nBcc: x@y.z"},
        )

        mime = provider.build_mime(message)

        assert mime["X-Event"] == "7"
        assert mime["X-Bad"] is None
        assert mime.get_content_type() == "multipart/alternative"

    def test_smtp_send(self):
        provider = SMTPProvider(host="smtp.wecoza.co.za", port=587, username="u", password="p", use_tls=True)
        server = MagicMock()
        with patch("notifications.smtp_provider.smtplib.SMTP") as smtp_cls:
            smtp_cls.return_value = server
            server.__enter__.return_value = server
            result = provider.send(EmailMessage(to=RECIPIENT, subject="s", body_text="b"))

        assert result.success
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("u", "p")
        server.sendmail.assert_called_once()

    def test_smtp_auth_failure(self):
        provider = SMTPProvider(host="smtp.wecoza.co.za", username="u", password="p", use_tls=False)
        server = MagicMock()
        server.login.side_effect = smtplib.SMTPAuthenticationError(535, b"bad credentials")
        with patch("notifications.smtp_provider.smtplib.SMTP", return_value=server):
            result = provider.send(EmailMessage(to=RECIPIENT, subject="s", body_text="b"))

        assert not result.success
        assert result.error_code == "AUTH_ERROR"
