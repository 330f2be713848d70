"""
Rendering of notification emails.

Produces the subject, HTML body, plain-text body and headers for one event.
The AI summary section appears only when the summary succeeded; otherwise
the email is the plain change report.
"""

import html
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .event_types import EventType, SummaryStatus
from .obfuscation import FIELD_LABELS, field_label
from .schemas import ClassEvent, EmailContext

HTML_HEADERS = {"Content-Type": "text/html; charset=UTF-8"}

SUBJECT_TEMPLATES = {
    EventType.CLASS_INSERT: "New Class: {label}",
    EventType.CLASS_UPDATE: "Class Updated: {label}",
    EventType.CLASS_DELETE: "Class Deleted: {label}",
    EventType.LEARNER_ADD: "Learner Added to {label}",
    EventType.LEARNER_REMOVE: "Learner Removed from {label}",
    EventType.LEARNER_UPDATE: "Learner Updated in {label}",
    EventType.STATUS_CHANGE: "Status Changed: {label}",
}

HEADINGS = {
    EventType.CLASS_INSERT: ("New class created", "#10b981"),
    EventType.CLASS_UPDATE: ("Class updated", "#3b82f6"),
    EventType.CLASS_DELETE: ("Class deleted", "#ef4444"),
    EventType.LEARNER_ADD: ("Learner added", "#10b981"),
    EventType.LEARNER_REMOVE: ("Learner removed", "#ef4444"),
    EventType.LEARNER_UPDATE: ("Learner updated", "#3b82f6"),
    EventType.STATUS_CHANGE: ("Class status changed", "#f59e0b"),
}


@dataclass
class RenderedEmail:
    """A notification email ready for the mail transport."""
    subject: str
    body_html: str
    body_text: str
    headers: Dict[str, str] = field(default_factory=lambda: dict(HTML_HEADERS))


def format_value(value: Any) -> str:
    """Display form of a row value."""
    if value is None or value == "":
        return "-"
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if isinstance(value, (list, dict)):
        return json.dumps(value, ensure_ascii=False, default=str)
    return str(value)


def class_label(event: ClassEvent) -> str:
    """``"<code> - <subject>"`` when the class code is known, else ``"ID <id>"``."""
    new_row = event.new_row or event.old_row
    code = str(new_row.get("class_code") or "").strip()
    subject = str(new_row.get("class_subject") or "").strip()
    if code:
        return f"{code} - {subject}" if subject else code

    class_id = event.event_data.get("class_id")
    if class_id is None:
        class_id = new_row.get("class_id")
    if class_id is None and event.entity_type == "class":
        class_id = event.entity_id
    return f"ID {class_id if class_id is not None else ''}".rstrip()


class NotificationEmailPresenter:
    """
    Builds notification emails.

    Usage:
        presenter = NotificationEmailPresenter(brand="WeCoza")
        email = presenter.present(event, email_context)
    """

    def __init__(self, brand: str = "WeCoza"):
        self.brand = brand

    def build_subject(self, event: ClassEvent) -> str:
        label = class_label(event)
        template = SUBJECT_TEMPLATES.get(event.event_type)
        if template is None:
            return f"[{self.brand}] Class {event.operation.lower()}: {label}"
        return f"[{self.brand}] {template.format(label=label)}"

    def change_rows(
        self,
        event: ClassEvent,
        email_context: Optional[EmailContext] = None,
    ) -> List[Tuple[str, str, str]]:
        """
        Field / Before / After rows for the changes table.

        Updates list the diff; inserts and deletes list the row itself.
        """
        labels = dict(FIELD_LABELS)
        if email_context is not None:
            labels.update(email_context.field_labels)

        def label_for(key: str) -> str:
            return labels.get(key) or field_label(key)

        if event.diff:
            return [
                (
                    label_for(key),
                    format_value(change.get("old") if isinstance(change, dict) else None),
                    format_value(change.get("new") if isinstance(change, dict) else change),
                )
                for key, change in event.diff.items()
            ]

        if event.event_type.is_deletion:
            return [(label_for(k), format_value(v), "-") for k, v in event.new_row.items()]
        return [(label_for(k), "-", format_value(v)) for k, v in event.new_row.items()]

    def ai_summary_text(self, event: ClassEvent) -> Optional[str]:
        record = event.ai_summary
        if record is None or record.status != SummaryStatus.SUCCESS or not record.summary:
            return None
        return record.summary

    def present(self, event: ClassEvent, email_context: Optional[EmailContext] = None) -> RenderedEmail:
        """
        Render the email for an event.

        Args:
            event: Stored event, including its AI summary record
            email_context: Obfuscated context from enrichment; only its field
                labels are used

        Returns:
            RenderedEmail
        """
        subject = self.build_subject(event)
        rows = self.change_rows(event, email_context)
        summary = self.ai_summary_text(event)

        return RenderedEmail(
            subject=subject,
            body_html=self._render_html(event, rows, summary),
            body_text=self._render_text(event, rows, summary),
        )

    def _render_html(self, event: ClassEvent, rows: List[Tuple[str, str, str]], summary: Optional[str]) -> str:
        heading, color = HEADINGS.get(event.event_type, ("Class changed", "#3b82f6"))
        esc = html.escape

        summary_html = ""
        if summary:
            lines = "<br>".join(esc(line) for line in summary.splitlines() if line.strip())
            summary_html = f"""
    <div style="background: #f3f4f6; padding: 20px; border-radius: 8px; margin: 20px 0;">
        <h3 style="margin-top: 0;">AI Summary</h3>
        <p style="margin: 0;">{lines}</p>
    </div>"""

        table_rows = "".join(
            f'<tr><td style="padding: 8px; font-weight: bold;">{esc(name)}</td>'
            f'<td style="padding: 8px;">{esc(before)}</td>'
            f'<td style="padding: 8px;">{esc(after)}</td></tr>'
            for name, before, after in rows
        )

        changed_at = event.created_at.strftime("%Y-%m-%d %H:%M UTC") if event.created_at else ""

        return f"""
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
    <h2 style="color: {color};">{esc(heading)}: {esc(class_label(event))}</h2>
    <p style="color: #6b7280; font-size: 14px;">Event #{event.event_id} {esc(changed_at)}</p>
{summary_html}
    <table style="width: 100%; border-collapse: collapse;">
        <tr><th style="text-align: left; padding: 8px;">Field</th><th style="text-align: left; padding: 8px;">Before</th><th style="text-align: left; padding: 8px;">After</th></tr>
        {table_rows}
    </table>

    <p>Thank you,<br>{esc(self.brand)}</p>
</div>
"""

    def _render_text(self, event: ClassEvent, rows: List[Tuple[str, str, str]], summary: Optional[str]) -> str:
        heading, _ = HEADINGS.get(event.event_type, ("Class changed", ""))
        lines = [f"{heading}: {class_label(event)}", f"Event #{event.event_id}", ""]

        if summary:
            lines.extend(["AI Summary:", summary, ""])

        lines.append("Changes:")
        for name, before, after in rows:
            lines.append(f"- {name}: {before} -> {after}")

        return "\n".join(lines)
