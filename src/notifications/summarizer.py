"""
AI summaries of class changes via the OpenAI chat completions API.

The summarizer is a small state machine over :class:`SummaryRecord`:

- a ``success`` record is returned unchanged;
- a record that has used all its attempts is marked ``failed`` without a call;
- otherwise the payloads are aliased, the call is made after a backoff
  chosen from the attempts so far, ``attempts`` goes up by one, and the
  record ends ``success``, ``pending`` (retry later) or ``failed`` (bound
  reached).

API failures never raise out of :meth:`AISummaryService.generate_summary`;
they are classified into an error code on the record.
"""

import asyncio
import json
import logging
import re
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    AsyncOpenAI,
    RateLimitError,
)

from config.ai_providers import OpenAIConfig

from .event_types import ErrorCode, SummaryStatus
from .obfuscation import obfuscate_event_payloads
from .schemas import EmailContext, SummaryRecord, SummaryResult

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_TIMEOUT_SECONDS = 60.0
EMPTY_SUMMARY_PLACEHOLDER = "No summary content returned."

_SECRET_PATTERNS = (
    (re.compile(r"sk-[A-Za-z0-9\-_]{20,}"), "sk-REDACTED"),
    (re.compile(r"Bearer\s+[A-Za-z0-9\-_\.]{20,}"), "Bearer REDACTED"),
    (re.compile(r"Authorization:\s*[^\s,;]+"), "Authorization: REDACTED"),
)


def sanitize_error_message(message: Optional[str]) -> str:
    """Strip API keys and auth headers from an error message."""
    message = (message or "").strip()
    if not message:
        return "Unknown error."
    for pattern, replacement in _SECRET_PATTERNS:
        message = pattern.sub(replacement, message)
    return message


def backoff_delay_seconds(attempts: int) -> int:
    """Delay before the next call, from the number of attempts already made."""
    return {0: 0, 1: 1, 2: 2}.get(attempts, 4)


def map_status_code(status_code: int) -> ErrorCode:
    """Classify an HTTP status from the API."""
    if status_code == 408:
        return ErrorCode.OPENAI_TIMEOUT
    if status_code == 429:
        return ErrorCode.QUOTA_EXCEEDED
    if 400 <= status_code < 500:
        return ErrorCode.VALIDATION_FAILED
    return ErrorCode.UNKNOWN_ERROR


def classify_exception(error: Exception) -> ErrorCode:
    """Map an ``openai`` exception onto an error code."""
    if isinstance(error, RateLimitError):
        return ErrorCode.QUOTA_EXCEEDED
    if isinstance(error, (APITimeoutError, APIConnectionError)):
        return ErrorCode.OPENAI_TIMEOUT
    if isinstance(error, APIStatusError):
        return map_status_code(error.status_code)
    return ErrorCode.UNKNOWN_ERROR


def _utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class ApiOutcome:
    """Result of one chat completion call."""
    success: bool
    content: str = ""
    error_code: Optional[ErrorCode] = None
    error_message: Optional[str] = None
    model: Optional[str] = None
    tokens: int = 0


class AISummaryService:
    """
    Generates short summaries of class changes.

    Usage:
        service = AISummaryService(get_openai_config())
        result = await service.generate_summary(context, existing_record)
        result.record.status  # success | pending | failed
    """

    def __init__(
        self,
        config: OpenAIConfig,
        client: Optional[AsyncOpenAI] = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        brand: str = "WeCoza",
    ):
        """
        Args:
            config: OpenAI key, URL and model
            client: Pre-built client (tests inject a fake)
            max_attempts: Attempts allowed per summary
            timeout_seconds: Per-call timeout
            sleep: Awaitable used for backoff delays
            brand: Organisation name used in prompts
        """
        self.config = config
        self._client = client
        self.max_attempts = max_attempts
        self.timeout_seconds = timeout_seconds
        self._sleep = sleep
        self.brand = brand
        self._metrics = {
            "attempts": 0,
            "success": 0,
            "failed": 0,
            "total_tokens": 0,
            "processing_time_ms": 0,
        }

    @property
    def client(self) -> AsyncOpenAI:
        """Lazy-load the OpenAI client."""
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self.config.api_key,
                base_url=self.config.api_url,
                timeout=self.timeout_seconds,
                max_retries=0,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if one was created."""
        if self._client is not None:
            await self._client.close()
            self._client = None

    def get_metrics(self) -> Dict[str, int]:
        return dict(self._metrics)

    async def generate_summary(
        self,
        context: Dict[str, Any],
        existing: Optional[SummaryRecord] = None,
    ) -> SummaryResult:
        """
        Produce or retry the summary for one event.

        Args:
            context: ``operation``, ``changed_at``, ``class_id``, ``new_row``,
                ``diff`` and ``old_row`` of the event
            existing: Current summary record, if any

        Returns:
            SummaryResult with the updated record and the obfuscated email context
        """
        record = existing or SummaryRecord()

        if record.status == SummaryStatus.SUCCESS:
            return SummaryResult(record=record, email_context=EmailContext.empty())

        if record.attempts >= self.max_attempts:
            return SummaryResult(
                record=record.with_status(SummaryStatus.FAILED),
                email_context=EmailContext.empty(),
            )

        email_context = obfuscate_event_payloads(
            context.get("new_row"),
            context.get("diff"),
            context.get("old_row"),
        )

        delay = backoff_delay_seconds(record.attempts)
        if delay > 0:
            await self._sleep(delay)

        messages = self.build_messages(
            str(context.get("operation") or ""),
            context,
            email_context.obfuscated.new_row,
            email_context.obfuscated.diff,
        )

        start = time.monotonic()
        outcome = await self._call_openai(messages)
        elapsed_ms = int(round((time.monotonic() - start) * 1000))

        record = record.with_attempts(record.attempts + 1)
        self._metrics["attempts"] += 1
        self._metrics["processing_time_ms"] += elapsed_ms

        if outcome.success:
            record = (
                record.with_status(SummaryStatus.SUCCESS)
                .with_summary(outcome.content.strip() or EMPTY_SUMMARY_PLACEHOLDER)
                .with_error(None, None)
                .with_generated_at(_utc_iso())
                .with_model(outcome.model)
                .with_metrics(outcome.tokens, elapsed_ms)
            )
            self._metrics["success"] += 1
            self._metrics["total_tokens"] += outcome.tokens
            return SummaryResult(record=record, email_context=email_context)

        code = outcome.error_code.value if outcome.error_code else ErrorCode.UNKNOWN_ERROR.value
        record = (
            record.with_error(code, outcome.error_message)
            .with_model(record.model or outcome.model)
            .with_metrics(record.tokens_used, elapsed_ms)
        )

        if record.attempts >= self.max_attempts:
            record = record.with_status(SummaryStatus.FAILED)
            self._metrics["failed"] += 1
        else:
            record = record.with_status(SummaryStatus.PENDING)

        logger.warning(
            f"AI summary attempt {record.attempts} failed: {code}",
            extra={"error_code": code, "attempts": record.attempts},
        )
        return SummaryResult(record=record, email_context=email_context)

    async def _call_openai(self, messages: List[Dict[str, str]]) -> ApiOutcome:
        if self.config.api_key is None:
            return ApiOutcome(
                success=False,
                error_code=ErrorCode.CONFIG_MISSING,
                error_message="OpenAI API key is not configured.",
            )

        model = self.config.model

        try:
            response = await self.client.chat.completions.create(
                model=model,
                messages=messages,
                timeout=self.timeout_seconds,
            )
        except Exception as e:
            return ApiOutcome(
                success=False,
                error_code=classify_exception(e),
                error_message=sanitize_error_message(getattr(e, "message", None) or str(e)),
                model=model,
            )

        try:
            content = response.choices[0].message.content or ""
        except (AttributeError, IndexError, TypeError):
            return ApiOutcome(
                success=False,
                error_code=ErrorCode.VALIDATION_FAILED,
                error_message="Unable to decode OpenAI response.",
                model=model,
            )

        usage = getattr(response, "usage", None)
        tokens = int(getattr(usage, "total_tokens", 0) or 0) if usage else 0

        return ApiOutcome(
            success=True,
            content=content,
            model=getattr(response, "model", None) or model,
            tokens=tokens,
        )

    def build_messages(
        self,
        operation: str,
        context: Dict[str, Any],
        new_row: Dict[str, Any],
        diff: Dict[str, Any],
    ) -> List[Dict[str, str]]:
        """
        Build the chat messages for one event.

        UPDATE prompts carry only the diff; INSERT, DELETE and other
        operations also carry the obfuscated new row.
        """
        operation = operation.strip().upper()
        raw_new_row = context.get("new_row") or {}
        learner_ids = raw_new_row.get("learner_ids")

        summary_context: Dict[str, Any] = {
            "operation": operation,
            "changed_at": context.get("changed_at"),
            "class_id": context.get("class_id"),
            "class_code": raw_new_row.get("class_code"),
            "class_subject": raw_new_row.get("class_subject"),
            "learner_count": len(learner_ids) if isinstance(learner_ids, list) else 0,
        }

        if operation == "UPDATE":
            summary_context["diff"] = diff
        else:
            summary_context["exam_class"] = raw_new_row.get("exam_class", False)
            summary_context["diff"] = diff
            summary_context["new_row"] = new_row

        if operation == "INSERT":
            prompt = (
                f"Summarize this new {self.brand} class in 2-3 bullet points covering: class code, "
                "subject, schedule pattern, learner count (use the top-level learner_count field), "
                "and assigned agent. Then check for ACTUAL issues only. Only flag: truly empty "
                "required fields (class code, agent, start date), zero learners, or scheduling "
                "conflicts. If no real issues, state 'No issues detected.' Max 5 bullets total. "
                "Use learner aliases instead of real names."
            )
        elif operation == "UPDATE":
            prompt = (
                f"Describe ONLY the changes made to this {self.brand} class based on the diff provided. Rules:\n"
                "1. ONLY describe fields that actually changed (present in the diff).\n"
                "2. For each change, briefly state what changed: old value -> new value.\n"
                "3. If learner_ids changed, summarize as learners added/removed (use aliases, not real names).\n"
                "4. If event_dates changed, highlight date shifts or new events.\n"
                "5. Flag CONFIRMED issues only (e.g., start date moved to the past, zero learners after removal).\n"
                "6. If no issues, do NOT add an issues bullet.\n"
                "7. Max 5 bullets total. Be concise."
            )
        else:
            prompt = (
                f"Summarize this {self.brand} class {operation.lower()} in 2-3 bullet points. "
                "Reference learners using aliases. Flag only CONFIRMED issues. Max 5 bullets."
            )

        system_message = (
            f"You are an assistant helping {self.brand} operations understand class changes. "
        )
        if operation == "UPDATE":
            system_message += "ONLY report what changed; never mention unchanged fields. "
        system_message += "Be brief, factual, and actionable."

        payload = json.dumps(summary_context, indent=2, default=str, ensure_ascii=False)

        return [
            {"role": "system", "content": system_message},
            {"role": "user", "content": f"{prompt}\n\n{payload}"},
        ]
