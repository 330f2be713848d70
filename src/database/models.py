"""
SQLAlchemy ORM models for the class change notification log.

One row per captured, significant class or learner-roster change. The row
carries its own notification lifecycle (``notification_status``) and the
AI summary state (``ai_summary``).
"""

from datetime import datetime, timezone

from sqlalchemy import (
    Column, String, Integer, BigInteger, DateTime, Index, JSON
)
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB
from sqlalchemy.orm import declarative_base
from sqlalchemy.types import TypeDecorator


# Cross-database compatible JSON type
# Uses JSONB on PostgreSQL, JSON on SQLite/others
class JSONB(TypeDecorator):
    """A portable JSONB type that works with both PostgreSQL and SQLite."""
    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == 'postgresql':
            return dialect.type_descriptor(PG_JSONB())
        else:
            return dialect.type_descriptor(JSON())


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every timestamp column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


Base = declarative_base()


class ClassEventRecord(Base):
    """
    Class Event Record - durable notification event.

    Primary Key: event_id (auto-increment)

    Status columns hold enum values from ``notifications.event_types``.
    """
    __tablename__ = "class_events"

    # Primary Key
    event_id = Column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    )

    # Event Classification
    event_type = Column(String(50), nullable=False, index=True)
    entity_type = Column(String(20), nullable=False, comment="class or learner")
    entity_id = Column(BigInteger, nullable=False)

    # Payload: {new_row, old_row, diff, metadata}
    event_data = Column(JSONB, nullable=False, default=dict)

    # Pipeline State
    notification_status = Column(
        String(20),
        nullable=False,
        default="pending",
        index=True,
        comment="pending, enriching, sending, sent, failed"
    )
    ai_summary = Column(JSONB, nullable=True)

    # Actor
    user_id = Column(BigInteger, nullable=True)

    # Timestamps
    created_at = Column(DateTime, nullable=False, default=utcnow)
    enriched_at = Column(DateTime, nullable=True)
    sent_at = Column(DateTime, nullable=True)
    viewed_at = Column(DateTime, nullable=True, comment="Set by the dashboard")
    acknowledged_at = Column(DateTime, nullable=True, comment="Set by the dashboard")

    __table_args__ = (
        Index('ix_class_events_status_created', 'notification_status', 'created_at'),
        Index('ix_class_events_entity', 'entity_type', 'entity_id'),
    )

    def __repr__(self) -> str:
        return (
            f"<ClassEventRecord {self.event_id} {self.event_type} "
            f"{self.entity_type}:{self.entity_id} {self.notification_status}>"
        )
