"""Backfill of truncated ("limited") room timelines through the messages endpoint."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from matrix_sync.application.services.session import Session
from matrix_sync.domain.room import Room
from matrix_sync.infrastructure.matrix.sync_events import extract_events

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HistoryPage:
    """One page of historical events returned by a backfill fetch."""

    events: list[dict[str, Any]] = field(default_factory=list)
    start: str | None = None
    end: str | None = None
    gap_closed: bool = False


class GapFiller:
    """Fetch history between a room's pagination token and its last full-sync cursor."""

    def __init__(self, *, session: Session) -> None:
        self._session = session

    async def fetch_history(
        self,
        room: Room,
        *,
        direction: str = "b",
        limit: int = 10,
        to_token: str | None = None,
        notify: bool = True,
    ) -> HistoryPage:
        """Fetch one page and append it to the room timeline.

        Events are appended in the order the server returns them (newest first
        for direction `b`). Afterwards `prev_batch` moves to the page's end
        token and `last_full_sync` is cleared. Failures propagate; no retry.
        With `notify=False` the caller owns the room-updated notification.
        """

        target = to_token if to_token is not None else room.last_full_sync
        if room.prev_batch is None:
            logger.info("backfill_skipped_no_token room_id=%s", room.room_id)
            return HistoryPage(gap_closed=True)

        logger.info(
            "backfill_requested room_id=%s from=%s to=%s direction=%s limit=%s",
            room.room_id,
            room.prev_batch,
            target,
            direction,
            limit,
        )
        response = await self._session.client.room_messages(
            access_token=self._session.require_access_token(),
            room_id=room.room_id,
            from_token=room.prev_batch,
            to_token=target,
            direction=direction,
            limit=limit,
        )

        events = extract_events({"events": response.get("chunk")})
        start = _token(response.get("start"))
        end = _token(response.get("end"))
        appended = room.timeline.extend(events)
        if end is not None:
            room.prev_batch = end
        room.last_full_sync = None

        page = HistoryPage(
            events=events,
            start=start,
            end=end,
            gap_closed=len(events) < limit or end is None or end == start,
        )
        logger.info(
            "backfill_applied room_id=%s received=%s appended=%s gap_closed=%s",
            room.room_id,
            len(events),
            appended,
            page.gap_closed,
        )
        if notify:
            room.notify_updated()
        return page

    async def fill_gap(
        self,
        room: Room,
        *,
        limit: int = 10,
        max_pages: int = 5,
    ) -> list[HistoryPage]:
        """Fetch pages toward the room's last full-sync cursor until the gap closes.

        Stops when a page is short, has no end token, or ends where it started,
        or after `max_pages` pages.
        """

        target = room.last_full_sync
        pages: list[HistoryPage] = []
        for _ in range(max_pages):
            page = await self.fetch_history(room, limit=limit, to_token=target)
            pages.append(page)
            if page.gap_closed:
                break
        else:
            logger.warning(
                "backfill_page_limit_reached room_id=%s max_pages=%s",
                room.room_id,
                max_pages,
            )
        return pages


def _token(value: object) -> str | None:
    return value if isinstance(value, str) and value else None
