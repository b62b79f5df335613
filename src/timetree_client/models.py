"""Validated shapes for TimeTree request and response payloads.

Response models accept (and keep) unknown fields, since the web API is
undocumented and grows fields without notice. Timestamps are Unix epoch
milliseconds, as the API sends them.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, TypeVar

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    ValidationInfo,
    field_validator,
    model_validator,
)

from timetree_client.errors import ResponseValidationFailure
from timetree_client.labels import LabelColor, get_label_color

ModelT = TypeVar("ModelT", bound=BaseModel)


def ms_to_datetime(value: int | float) -> datetime:
    """Convert an epoch-milliseconds timestamp to an aware UTC datetime."""
    return datetime.fromtimestamp(value / 1000, tz=UTC)


class CalendarUser(BaseModel):
    """A member of a shared calendar."""

    model_config = ConfigDict(extra="allow")

    id: int
    user_id: int
    name: str
    role: int | None = None  # 1 = owner, 0 = member
    deactivated_at: int | None = None
    birth_day: int | None = None
    birthday: int | None = None

    @property
    def is_owner(self) -> bool:
        return self.role == 1


class Calendar(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: int
    name: str
    alias_code: str | None = None
    type: int | None = None
    color: int | None = None
    purpose: str | None = None
    deactivated_at: int | None = None
    created_at: int | None = None
    updated_at: int | None = None
    calendar_users: list[CalendarUser] = Field(default_factory=list)

    @property
    def is_active(self) -> bool:
        return not self.deactivated_at

    def active_users(self) -> list[CalendarUser]:
        return [user for user in self.calendar_users if not user.deactivated_at]


class Event(BaseModel):
    """One calendar event; ``uuid`` is its stable identity across pages."""

    model_config = ConfigDict(extra="allow")

    id: str
    uuid: str
    calendar_id: int
    title: str
    all_day: bool
    start_at: int
    start_timezone: str | None = None
    end_at: int
    end_timezone: str | None = None
    category: int | None = None
    type: int | None = None
    author_id: int | None = None
    label_id: int | None = None
    location: str | None = None
    location_lat: float | str | None = None
    location_lon: float | str | None = None
    url: str | None = None
    note: str | None = None
    attendees: list[int] = Field(default_factory=list)
    recurrences: list[Any] = Field(default_factory=list)
    alerts: list[Any] = Field(default_factory=list)
    created_at: int | None = None
    updated_at: int | None = None

    def is_updated_after(self, timestamp: int) -> bool:
        return self.updated_at is not None and self.updated_at > timestamp

    @property
    def start(self) -> datetime:
        return ms_to_datetime(self.start_at)

    @property
    def end(self) -> datetime:
        return ms_to_datetime(self.end_at)

    @property
    def label_color(self) -> LabelColor | None:
        return get_label_color(self.label_id)


class CalendarsResponse(BaseModel):
    calendars: list[Calendar]


class EventsSyncPage(BaseModel):
    """One page of the per-calendar change log.

    ``chunk`` is the server's "more pages available" flag and ``since`` the
    cursor for the next request.
    """

    events: list[Event]
    chunk: bool
    since: int


class EventEnvelope(BaseModel):
    """Create/update responses wrap the event in an ``event`` key."""

    model_config = ConfigDict(extra="allow")

    event: Event


class AuthRequest(BaseModel):
    """Login handshake body."""

    model_config = ConfigDict(extra="forbid")

    uid: str
    password: str
    uuid: str = Field(pattern=r"^[0-9a-f]{32}$")

    @field_validator("uid")
    @classmethod
    def _validate_email(cls, value: str) -> str:
        normalized = value.strip()
        local, _, domain = normalized.partition("@")
        if not local or "." not in domain:
            raise ValueError("uid must be an email address")
        return normalized


class EventCreate(BaseModel):
    """Payload for creating an event.

    For all-day events the end date is inclusive: a Feb 15-16 event ends at
    Feb 16 00:00, not Feb 17.
    """

    model_config = ConfigDict(extra="forbid")

    title: str = Field(min_length=1)
    all_day: bool = False
    start_at: int
    start_timezone: str = "UTC"
    end_at: int
    end_timezone: str = "UTC"
    label_id: int | None = Field(default=None, ge=1, le=10)
    category: int = 1
    note: str | None = None
    location: str | None = None
    url: str | None = None
    recurrences: list[Any] = Field(default_factory=list)
    alerts: list[Any] = Field(default_factory=list)
    file_uuids: list[str] = Field(default_factory=list)

    @field_validator("title")
    @classmethod
    def _normalize_title(cls, value: str, info: ValidationInfo) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError(f"{info.field_name} must be a non-empty string")
        return normalized

    @model_validator(mode="after")
    def _validate_range(self) -> EventCreate:
        if self.end_at < self.start_at:
            raise ValueError("end_at must not be before start_at")
        return self

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class EventUpdate(BaseModel):
    """Partial update; only fields that are set are sent."""

    model_config = ConfigDict(extra="forbid")

    title: str | None = Field(default=None, min_length=1)
    all_day: bool | None = None
    start_at: int | None = None
    start_timezone: str | None = None
    end_at: int | None = None
    end_timezone: str | None = None
    label_id: int | None = Field(default=None, ge=1, le=10)
    category: int | None = None
    note: str | None = None
    location: str | None = None
    url: str | None = None

    @model_validator(mode="after")
    def _validate_range(self) -> EventUpdate:
        if self.start_at is not None and self.end_at is not None and self.end_at < self.start_at:
            raise ValueError("end_at must not be before start_at")
        return self

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)

    def is_empty(self) -> bool:
        return not self.to_payload()


def parse_response(model: type[ModelT], payload: Any, *, what: str) -> ModelT:
    """Validate a decoded response body, mapping schema errors to the core taxonomy."""
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise ResponseValidationFailure(
            f"Unexpected {what} response shape: {exc.error_count()} validation error(s)"
        ) from exc
