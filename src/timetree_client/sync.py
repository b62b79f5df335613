"""Cursor-driven pagination over a calendar's event change log.

Pages are requested strictly one after another: the cursor for page N+1 is
only known once page N has arrived. Iteration stops when the server says no
more pages are available, or when the cursor it returns does not advance
past the one just used (a server echoing the same cursor would otherwise
loop forever).
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable
from urllib.parse import quote

from timetree_client.core.context import AccessContext
from timetree_client.errors import InvalidCalendarFailure, RecordNotFoundFailure, RequestFailure
from timetree_client.models import Event, EventsSyncPage, parse_response

logger = logging.getLogger(__name__)

EndpointBuilder = Callable[[int], str]


def _calendar_segment(calendar_id: str) -> str:
    return quote(str(calendar_id), safe="")


def events_sync_path(calendar_id: str, since: int) -> str:
    return f"/calendar/{_calendar_segment(calendar_id)}/events/sync?since={since}"


def events_since_path(calendar_id: str, since: int) -> str:
    return f"/calendar/{_calendar_segment(calendar_id)}/events?since={since}"


def event_create_path(calendar_id: str) -> str:
    return f"/calendar/{_calendar_segment(calendar_id)}/event"


def event_path(calendar_id: str, event_uuid: str) -> str:
    return f"/calendar/{_calendar_segment(calendar_id)}/event/{quote(event_uuid, safe='')}"


class SyncEngine:
    """Folds successive change-log pages into one ordered event list."""

    def __init__(self, context: AccessContext) -> None:
        self._context = context

    async def iter_pages(
        self,
        endpoint_builder: EndpointBuilder,
        initial_cursor: int = 0,
    ) -> AsyncIterator[EventsSyncPage]:
        """Yield pages lazily, starting over from ``initial_cursor`` on each call."""
        cursor = initial_cursor
        while True:
            payload = await self._context.request("GET", endpoint_builder(cursor))
            page = parse_response(EventsSyncPage, payload, what="event sync")
            yield page

            if not page.chunk:
                return
            if page.since <= cursor:
                logger.warning(
                    "Sync cursor did not advance (requested=%d, returned=%d); stopping",
                    cursor,
                    page.since,
                )
                return
            logger.debug("More events to fetch, next cursor %d", page.since)
            cursor = page.since

    async def fetch_all_pages(
        self,
        endpoint_builder: EndpointBuilder,
        initial_cursor: int = 0,
    ) -> list[Event]:
        """Collect every event of every page, in server order."""
        events: list[Event] = []
        pages = 0
        async for page in self.iter_pages(endpoint_builder, initial_cursor):
            pages += 1
            events.extend(page.events)
        logger.debug("Fetched %d event(s) across %d page(s)", len(events), pages)
        return events

    async def sync_all(self, calendar_id: str, start_cursor: int = 0) -> list[Event]:
        """Full paginated read of one calendar."""
        logger.info("Syncing events for calendar %s from cursor %d", calendar_id, start_cursor)
        try:
            events = await self.fetch_all_pages(
                lambda since: events_sync_path(calendar_id, since),
                start_cursor,
            )
        except RequestFailure as exc:
            if exc.status_code == 404:
                raise InvalidCalendarFailure(calendar_id) from exc
            raise
        logger.info("Event sync complete for calendar %s: %d event(s)", calendar_id, len(events))
        return events

    async def get_updated_since(self, calendar_id: str, timestamp: int) -> list[Event]:
        """Single page anchored at ``timestamp``, filtered to ``updated_at > timestamp``.

        Not exhaustive: only the first page is read, whatever ``chunk`` says.
        """
        try:
            payload = await self._context.request("GET", events_since_path(calendar_id, timestamp))
        except RequestFailure as exc:
            if exc.status_code == 404:
                raise InvalidCalendarFailure(calendar_id) from exc
            raise

        page = parse_response(EventsSyncPage, payload, what="updated events")
        updated = [event for event in page.events if event.is_updated_after(timestamp)]
        logger.info(
            "Calendar %s: %d of %d event(s) updated after %d",
            calendar_id,
            len(updated),
            len(page.events),
            timestamp,
        )
        return updated

    async def delete_by_match(self, calendar_id: str, event_uuid: str) -> Event:
        """Delete an event by uuid; the endpoint wants the full event body.

        Reads the whole calendar, finds the event, then sends the delete with
        that body. Anything another client changes between the read and the
        delete is not detected: the delete carries the body as it was read.
        """
        credentials = self._context.credentials
        await credentials.ensure_authenticated()
        credentials.require_csrf_token()

        events = await self.sync_all(calendar_id)
        target = next((event for event in events if event.uuid == event_uuid), None)
        if target is None:
            raise RecordNotFoundFailure(event_uuid, calendar_id=calendar_id)

        try:
            await self._context.request(
                "DELETE",
                event_path(calendar_id, event_uuid),
                body=target.model_dump(mode="json", exclude_unset=True),
            )
        except RequestFailure as exc:
            if exc.status_code == 404:
                raise RecordNotFoundFailure(event_uuid, calendar_id=calendar_id) from exc
            raise

        logger.info("Event %s deleted from calendar %s", event_uuid, calendar_id)
        return target
