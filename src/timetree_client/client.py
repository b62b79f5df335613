"""High-level TimeTree client.

Wraps one :class:`~timetree_client.core.context.AccessContext` and exposes the
calendar and event operations. Reads work with a session alone; create,
update and delete also need the CSRF token scraped at login.
"""

from __future__ import annotations

import logging
from types import TracebackType
from typing import Self

import httpx

from timetree_client.config import ClientConfig
from timetree_client.core.context import AccessContext
from timetree_client.core.csrf import CsrfTokenExtractor
from timetree_client.errors import InvalidCalendarFailure, RecordNotFoundFailure, RequestFailure
from timetree_client.models import (
    Calendar,
    CalendarsResponse,
    Event,
    EventCreate,
    EventEnvelope,
    EventUpdate,
    parse_response,
)
from timetree_client.sync import SyncEngine, event_create_path, event_path

logger = logging.getLogger(__name__)

CALENDARS_ENDPOINT = "/calendars?since=0"


class TimeTreeClient:
    """Calendar and event operations for one TimeTree account."""

    def __init__(self, context: AccessContext) -> None:
        self._context = context
        self._sync = SyncEngine(context)

    @classmethod
    def from_config(
        cls,
        config: ClientConfig,
        *,
        http_client: httpx.AsyncClient | None = None,
        csrf_extractor: CsrfTokenExtractor | None = None,
    ) -> TimeTreeClient:
        return cls(
            AccessContext.from_config(
                config,
                http_client=http_client,
                csrf_extractor=csrf_extractor,
            )
        )

    @property
    def context(self) -> AccessContext:
        return self._context

    @property
    def sync(self) -> SyncEngine:
        return self._sync

    async def login(self) -> None:
        await self._context.credentials.ensure_authenticated()

    def logout(self) -> None:
        self._context.credentials.logout()

    async def get_calendars(self) -> list[Calendar]:
        """Active calendars of the account (deactivated ones are dropped)."""
        logger.info("Fetching calendars")
        payload = await self._context.request("GET", CALENDARS_ENDPOINT)
        response = parse_response(CalendarsResponse, payload, what="calendars")
        active = [calendar for calendar in response.calendars if calendar.is_active]
        logger.info(
            "Calendars fetched: %d total, %d active", len(response.calendars), len(active)
        )
        return active

    async def verify_calendar(self, calendar_id: str) -> bool:
        calendars = await self.get_calendars()
        return any(str(calendar.id) == str(calendar_id) for calendar in calendars)

    async def get_events(
        self,
        calendar_id: str,
        *,
        since: int = 0,
        start_after: int | None = None,
        limit: int | None = None,
    ) -> list[Event]:
        """All events of a calendar, optionally those starting after ``start_after``."""
        if limit is not None and limit < 1:
            raise ValueError("limit must be at least 1")

        events = await self._sync.sync_all(calendar_id, since)
        if start_after is not None:
            events = [event for event in events if event.start_at > start_after]
        if limit is not None:
            events = events[:limit]
        return events

    async def get_updated_events(self, calendar_id: str, updated_after: int) -> list[Event]:
        return await self._sync.get_updated_since(calendar_id, updated_after)

    async def create_event(self, calendar_id: str, payload: EventCreate) -> Event:
        logger.info("Creating event in calendar %s", calendar_id)
        try:
            body = await self._context.request(
                "POST",
                event_create_path(calendar_id),
                body=payload.to_payload(),
            )
        except RequestFailure as exc:
            if exc.status_code == 404:
                raise InvalidCalendarFailure(calendar_id) from exc
            raise

        event = parse_response(EventEnvelope, body, what="create event").event
        logger.info("Event %s created in calendar %s", event.uuid, calendar_id)
        return event

    async def update_event(self, calendar_id: str, event_uuid: str, patch: EventUpdate) -> Event:
        if patch.is_empty():
            raise ValueError("update must change at least one field")

        logger.info("Updating event %s in calendar %s", event_uuid, calendar_id)
        try:
            body = await self._context.request(
                "PUT",
                event_path(calendar_id, event_uuid),
                body=patch.to_payload(),
            )
        except RequestFailure as exc:
            if exc.status_code == 404:
                raise RecordNotFoundFailure(event_uuid, calendar_id=calendar_id) from exc
            raise

        event = parse_response(EventEnvelope, body, what="update event").event
        logger.info("Event %s updated", event.uuid)
        return event

    async def delete_event(self, calendar_id: str, event_uuid: str) -> Event:
        """Delete an event; returns the body that was sent with the delete."""
        return await self._sync.delete_by_match(calendar_id, event_uuid)

    async def aclose(self) -> None:
        await self._context.aclose()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()
