"""
Base model class with common fields
"""

from datetime import datetime, timezone
import uuid

from sqlalchemy import Column, DateTime, Uuid
from sqlalchemy.types import TypeDecorator

from ticket_holds.core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware datetime stored as UTC.

    SQLite drops tzinfo on the way in and hands back naive values; normalising
    both directions keeps comparisons against the clock valid on every backend.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class BaseModel(Base):
    """
    Abstract base model with common fields
    """
    __abstract__ = True

    id = Column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        nullable=False
    )
    created_at = Column(
        UTCDateTime(),
        default=utcnow,
        nullable=False
    )
    updated_at = Column(
        UTCDateTime(),
        default=utcnow,
        onupdate=utcnow,
        nullable=False
    )

    def dict(self):
        """Convert model to dictionary"""
        return {
            column.key: getattr(self, column.key)
            for column in self.__mapper__.column_attrs
        }


class LifecycleMixin:
    """
    Status handling shared by holds and links.

    Every status change goes through transition_to(); ACTIVE is the only state
    that can be left.
    """

    def transition_to(self, target) -> bool:
        """
        Move to `target`. Returns False when already there, raises ValueError
        when leaving a terminal state.
        """
        current = self.status
        if current == target:
            return False
        if not current.can_transition_to(target):
            raise ValueError(
                f"{type(self).__name__} cannot move from {current.value} to {target.value}"
            )
        self.status = target
        return True

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def is_usable(self, now: datetime) -> bool:
        return self.status.is_usable() and not self.is_expired(now)
