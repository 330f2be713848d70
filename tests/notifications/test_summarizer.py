"""Tests for the AI summary service."""

from types import SimpleNamespace

import httpx
import pytest
from openai import APIConnectionError, APIStatusError, APITimeoutError, RateLimitError

from notifications.event_types import ErrorCode, SummaryStatus
from notifications.schemas import SummaryRecord
from notifications.summarizer import (
    AISummaryService,
    backoff_delay_seconds,
    classify_exception,
    map_status_code,
    sanitize_error_message,
)

API_URL = "https://api.openai.com/v1/chat/completions"


def _request():
    return httpx.Request("POST", API_URL)


def _status_error(cls, status_code, message="error"):
    response = httpx.Response(status_code, request=_request())
    return cls(message, response=response, body=None)


@pytest.fixture
def update_context(class_row):
    old_row = dict(class_row, learner_name="Thandi Mokoena")
    new_row = dict(class_row, class_status="stopped", learner_name="Sipho Ndlovu")
    return {
        "event_id": 1,
        "operation": "UPDATE",
        "changed_at": "2026-01-20T10:00:00+00:00",
        "class_id": 101,
        "new_row": new_row,
        "old_row": old_row,
        "diff": {
            "class_status": {"old": "active", "new": "stopped"},
            "learner_name": {"old": "Thandi Mokoena", "new": "Sipho Ndlovu"},
        },
    }


class TestGenerateSummary:
    """Tests for the summary state machine."""

    @pytest.mark.asyncio
    async def test_success(self, openai_config, make_openai_client, make_completion, no_sleep, update_context):
        client = make_openai_client(make_completion("  - Class stopped  ", tokens=88))
        service = AISummaryService(openai_config, client=client, sleep=no_sleep)

        result = await service.generate_summary(update_context)
        record = result.record

        assert record.status == SummaryStatus.SUCCESS
        assert record.summary == "- Class stopped"
        assert record.attempts == 1
        assert record.tokens_used == 88
        assert record.model == "gpt-4o-mini"
        assert record.error_code is None
        assert record.generated_at
        no_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_success_is_returned_unchanged(self, openai_config, make_openai_client, no_sleep):
        client = make_openai_client()
        service = AISummaryService(openai_config, client=client, sleep=no_sleep)
        existing = SummaryRecord(summary="done", status=SummaryStatus.SUCCESS, attempts=1)

        result = await service.generate_summary({}, existing)

        assert result.record is existing
        assert result.email_context.is_empty
        client.chat.completions.create.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_exhausted_attempts_fail_without_a_call(self, openai_config, make_openai_client, no_sleep):
        client = make_openai_client()
        service = AISummaryService(openai_config, client=client, sleep=no_sleep)

        result = await service.generate_summary({}, SummaryRecord(attempts=3))

        assert result.record.status == SummaryStatus.FAILED
        assert result.record.attempts == 3
        client.chat.completions.create.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failure_then_pending_then_failed(self, openai_config, make_openai_client, no_sleep, update_context):
        errors = [_status_error(RateLimitError, 429) for _ in range(3)]
        service = AISummaryService(openai_config, client=make_openai_client(*errors), sleep=no_sleep)

        record = None
        statuses = []
        for _ in range(3):
            record = (await service.generate_summary(update_context, record)).record
            statuses.append(record.status)

        assert statuses == [SummaryStatus.PENDING, SummaryStatus.PENDING, SummaryStatus.FAILED]
        assert record.attempts == 3
        assert record.error_code == ErrorCode.QUOTA_EXCEEDED.value
        assert [call.args[0] for call in no_sleep.await_args_list] == [1, 2]
        assert service.get_metrics()["failed"] == 1

    @pytest.mark.asyncio
    async def test_missing_key_is_config_missing(self, missing_openai_config, make_openai_client, no_sleep, update_context):
        client = make_openai_client()
        service = AISummaryService(missing_openai_config, client=client, sleep=no_sleep)

        record = (await service.generate_summary(update_context)).record

        assert record.status == SummaryStatus.PENDING
        assert record.error_code == ErrorCode.CONFIG_MISSING.value
        assert record.attempts == 1
        client.chat.completions.create.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_malformed_response(self, openai_config, make_openai_client, no_sleep, update_context):
        client = make_openai_client(SimpleNamespace(choices=[], usage=None, model="gpt-4o-mini"))
        service = AISummaryService(openai_config, client=client, sleep=no_sleep)

        record = (await service.generate_summary(update_context)).record

        assert record.error_code == ErrorCode.VALIDATION_FAILED.value
        assert record.error_message == "Unable to decode OpenAI response."

    @pytest.mark.asyncio
    async def test_empty_content_gets_placeholder(self, openai_config, make_openai_client, make_completion, no_sleep, update_context):
        service = AISummaryService(openai_config, client=make_openai_client(make_completion("   ")), sleep=no_sleep)
        record = (await service.generate_summary(update_context)).record
        assert record.status == SummaryStatus.SUCCESS
        assert record.summary == "No summary content returned."

    @pytest.mark.asyncio
    async def test_secret_never_stored(self, openai_config, make_openai_client, no_sleep, update_context):
        leaked = "sk-" + "z" * 40
        client = make_openai_client(RuntimeError(f"upstream rejected key {leaked}"))
        service = AISummaryService(openai_config, client=client, sleep=no_sleep)

        record = (await service.generate_summary(update_context)).record

        assert leaked not in record.error_message
        assert "sk-REDACTED" in record.error_message
        assert record.error_code == ErrorCode.UNKNOWN_ERROR.value

    @pytest.mark.asyncio
    async def test_prompt_is_obfuscated(self, openai_config, make_openai_client, make_completion, no_sleep, update_context):
        client = make_openai_client(make_completion())
        service = AISummaryService(openai_config, client=client, sleep=no_sleep)

        result = await service.generate_summary(update_context)

        messages = client.chat.completions.create.await_args.kwargs["messages"]
        sent = " ".join(m["content"] for m in messages)
        assert "Thandi Mokoena" not in sent
        assert "Sipho Ndlovu" not in sent
        assert result.email_context.alias_map


class TestBuildMessages:
    """Tests for prompt construction."""

    def test_update_carries_diff_only(self, openai_config, update_context):
        service = AISummaryService(openai_config)
        messages = service.build_messages("update", update_context, {"class_code": "AET-101"}, {"x": 1})

        assert messages[0]["role"] == "system"
        assert "ONLY report what changed" in messages[0]["content"]
        assert '"new_row"' not in messages[1]["content"]
        assert '"learner_count": 2' in messages[1]["content"]
        assert "Describe ONLY the changes" in messages[1]["content"]

    def test_insert_carries_new_row(self, openai_config, class_row):
        service = AISummaryService(openai_config)
        context = {"operation": "INSERT", "new_row": class_row, "class_id": 101}
        messages = service.build_messages("INSERT", context, {"class_code": "AET-101"}, {})

        assert '"new_row"' in messages[1]["content"]
        assert '"exam_class": false' in messages[1]["content"]
        assert "Summarize this new WeCoza class" in messages[1]["content"]

    def test_brand_in_prompt(self, openai_config):
        service = AISummaryService(openai_config, brand="Acme Training")
        messages = service.build_messages("DELETE", {}, {}, {})
        assert "Acme Training" in messages[0]["content"]
        assert "class delete" in messages[1]["content"]


class TestClassification:
    """Tests for error classification helpers."""

    def test_rate_limit(self):
        assert classify_exception(_status_error(RateLimitError, 429)) == ErrorCode.QUOTA_EXCEEDED

    def test_timeout(self):
        assert classify_exception(APITimeoutError(request=_request())) == ErrorCode.OPENAI_TIMEOUT

    def test_connection(self):
        assert classify_exception(APIConnectionError(request=_request())) == ErrorCode.OPENAI_TIMEOUT

    def test_status_errors(self):
        assert classify_exception(_status_error(APIStatusError, 400)) == ErrorCode.VALIDATION_FAILED
        assert classify_exception(_status_error(APIStatusError, 503)) == ErrorCode.UNKNOWN_ERROR

    def test_other(self):
        assert classify_exception(ValueError("boom")) == ErrorCode.UNKNOWN_ERROR

    @pytest.mark.parametrize("status,code", [
        (408, ErrorCode.OPENAI_TIMEOUT),
        (429, ErrorCode.QUOTA_EXCEEDED),
        (401, ErrorCode.VALIDATION_FAILED),
        (500, ErrorCode.UNKNOWN_ERROR),
    ])
    def test_map_status_code(self, status, code):
        assert map_status_code(status) == code

    def test_backoff(self):
        assert [backoff_delay_seconds(n) for n in range(4)] == [0, 1, 2, 4]

    def test_sanitize(self):
        assert sanitize_error_message("") == "Unknown error."
        assert sanitize_error_message("Authorization: abc123") == "Authorization: REDACTED"
        assert "REDACTED" in sanitize_error_message("Bearer " + "t" * 30)
