"""
Records held by the dashboard widgets.

Records are frozen: a widget store never edits one in place, it builds a
replacement with ``model_copy`` or a fresh model and swaps it into a new store.
"""
import re
from datetime import date, datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

HHMM_RE = re.compile(r"^(\d{1,2}):(\d{2})$")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def normalize_hhmm(value) -> Optional[str]:
    """Zero-pad a 24-hour H:MM / HH:MM time, or None if it is not one."""
    if not isinstance(value, str):
        return None
    match = HHMM_RE.match(value.strip())
    if not match:
        return None
    hour = int(match.group(1))
    minute = int(match.group(2))
    if hour > 23 or minute > 59:
        return None
    return f"{hour:02d}:{minute:02d}"


def as_day(value) -> date:
    """Reduce a date, datetime or ISO string to its calendar day."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        return date.fromisoformat(text[:10])


class WidgetRecord(BaseModel):
    # extra="ignore" lets documents loaded from the remote store carry
    # user_id / createdAt / updatedAt without tripping validation.
    model_config = ConfigDict(frozen=True, extra="ignore")
    id: str


class Note(WidgetRecord):
    title: str
    content: str
    last_modified: datetime = Field(default_factory=utc_now)


class TodoItem(WidgetRecord):
    text: str
    completed: bool = False


class JournalEntry(WidgetRecord):
    content: str
    date: datetime = Field(default_factory=utc_now)


class CalendarEvent(WidgetRecord):
    date: date
    title: str
    description: Optional[str] = None

    @field_validator("date", mode="before")
    @classmethod
    def _day_only(cls, value):
        if value is None or value == "":
            return value
        return as_day(value)


class Medication(WidgetRecord):
    name: str
    dosage: str
    time: str  # HH:MM, zero padded so string order is clock order
    taken_today: bool = False
    last_taken_date: Optional[date] = None

    @field_validator("time")
    @classmethod
    def _clock_time(cls, value):
        normalized = normalize_hhmm(value)
        if normalized is None:
            raise ValueError("Invalid time format. Use HH:mm.")
        return normalized

    @field_validator("last_taken_date", mode="before")
    @classmethod
    def _taken_day(cls, value):
        if value is None or value == "":
            return None
        return as_day(value)


class VoiceRecording(WidgetRecord):
    name: str
    url: str
