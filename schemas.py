"""Pydantic schemas for Remo Bot.

Value objects passed between the admin store, the reminder store, the
time parser and the status API.
"""

from pydantic import BaseModel, ConfigDict, Field, field_serializer
from datetime import datetime, timezone
from typing import List, Optional


class ParsedTime(BaseModel):
    """Result of natural-language time parsing."""

    due_at: datetime = Field(..., description="When the reminder is due (timezone-aware)")
    message: str = Field(..., min_length=1, description="Reminder text with time words removed")


class AdminResult(BaseModel):
    """Outcome of a promote/demote request."""

    success: bool
    message: str


class AdminList(BaseModel):
    """The creator plus every promoted admin."""

    creator: str
    admins: List[str] = Field(default_factory=list)


class ReminderResponse(BaseModel):
    """Schema for reminder responses.

    Datetime fields are serialized to ISO strings with an explicit UTC offset.
    """

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., description="Unique reminder ID")
    chat_jid: str = Field(..., description="Chat the reminder was requested in")
    user_jid: str = Field(..., description="Owner of the reminder")
    text: str = Field(..., description="Reminder message")
    due_at: datetime = Field(..., description="When the reminder is due")
    status: str = Field(..., description="pending, sent or cancelled")
    created_at: datetime
    updated_at: datetime

    @field_serializer("due_at", "created_at", "updated_at")
    def serialize_dt(self, value: Optional[datetime]) -> Optional[str]:
        # SQLite drops tzinfo; stored values are always UTC
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()


class ConnectionStatus(BaseModel):
    """Health payload of the status API."""

    status: str
    connected: bool
    bot_name: str
    timezone: str
    has_qr: bool
