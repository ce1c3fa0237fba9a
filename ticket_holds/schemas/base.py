"""
Base Pydantic schemas
"""

from pydantic import AfterValidator, BaseModel, ConfigDict
from datetime import datetime, timezone
from typing import Annotated, Optional
from uuid import UUID


def as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# Expiry and audit timestamps are compared against the UTC clock
UTCDateTime = Annotated[datetime, AfterValidator(as_utc)]


class BaseSchema(BaseModel):
    """
    Base schema with common configuration

    Responses are built straight from ORM rows. Enums travel as their values,
    and UUIDs and UTC datetimes serialise as strings in JSON mode.
    """
    model_config = ConfigDict(
        from_attributes=True,
        use_enum_values=True,
    )


class TimestampSchema(BaseSchema):
    """Schema with timestamp fields"""
    created_at: UTCDateTime
    updated_at: Optional[UTCDateTime] = None


class IDSchema(BaseSchema):
    """Schema with ID field"""
    id: UUID
