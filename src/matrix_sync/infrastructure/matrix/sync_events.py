"""Helpers for splitting Matrix `/sync` responses into per-category and per-room deltas."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, cast

SYNC_CATEGORIES: tuple[str, ...] = (
    "rooms.join",
    "rooms.invite",
    "rooms.leave",
    "presence",
    "account_data",
    "to_device",
    "device_lists",
)


@dataclass(frozen=True)
class TimelineDelta:
    """Timeline segment of one joined room delta."""

    events: list[dict[str, Any]] = field(default_factory=list)
    limited: bool = False
    prev_batch: str | None = None


@dataclass(frozen=True)
class JoinedRoomDelta:
    """All sub-categories of one joined room in a sync response."""

    room_id: str
    state_events: list[dict[str, Any]] = field(default_factory=list)
    timeline: TimelineDelta = field(default_factory=TimelineDelta)
    ephemeral_events: list[dict[str, Any]] = field(default_factory=list)
    account_data_events: list[dict[str, Any]] = field(default_factory=list)
    unread_notifications: dict[str, int] = field(default_factory=dict)


def extract_next_batch_token(
    sync_payload: Mapping[str, Any],
    *,
    fallback: str | None = None,
) -> str | None:
    """Return sync `next_batch` token when present, else fallback value."""

    token = sync_payload.get("next_batch")
    if isinstance(token, str) and token:
        return token
    return fallback


def iter_sync_categories(sync_payload: Mapping[str, Any]) -> list[tuple[str, Any]]:
    """Return `(category, section)` pairs present in the payload, in dispatch order."""

    rooms = sync_payload.get("rooms")
    rooms_section = rooms if isinstance(rooms, Mapping) else {}

    present: list[tuple[str, Any]] = []
    for category in SYNC_CATEGORIES:
        if category.startswith("rooms."):
            section = rooms_section.get(category.removeprefix("rooms."))
        else:
            section = sync_payload.get(category)
        if section is None:
            continue
        present.append((category, section))
    return present


def extract_events(section: object) -> list[dict[str, Any]]:
    """Return dict events from a `{"events": [...]}` section, skipping malformed entries."""

    if not isinstance(section, Mapping):
        return []
    events = section.get("events")
    if not isinstance(events, list):
        return []
    return [cast("dict[str, Any]", event) for event in events if isinstance(event, dict)]


def parse_joined_rooms(section: object) -> list[JoinedRoomDelta]:
    """Parse `rooms.join` into typed per-room deltas."""

    if not isinstance(section, Mapping):
        return []

    deltas: list[JoinedRoomDelta] = []
    for room_id, room_body in section.items():
        if not isinstance(room_id, str) or not isinstance(room_body, Mapping):
            continue
        deltas.append(
            JoinedRoomDelta(
                room_id=room_id,
                state_events=extract_events(room_body.get("state")),
                timeline=_parse_timeline(room_body.get("timeline")),
                ephemeral_events=extract_events(room_body.get("ephemeral")),
                account_data_events=extract_events(room_body.get("account_data")),
                unread_notifications=_parse_unread_counts(room_body.get("unread_notifications")),
            )
        )
    return deltas


def parse_invited_rooms(section: object) -> dict[str, list[dict[str, Any]]]:
    """Parse `rooms.invite` into room id -> stripped invite-state events."""

    if not isinstance(section, Mapping):
        return {}

    invites: dict[str, list[dict[str, Any]]] = {}
    for room_id, room_body in section.items():
        if not isinstance(room_id, str) or not isinstance(room_body, Mapping):
            continue
        invites[room_id] = extract_events(room_body.get("invite_state"))
    return invites


def iter_left_room_ids(section: object) -> list[str]:
    """Extract room ids from `rooms.leave`."""

    if not isinstance(section, Mapping):
        return []
    return [room_id for room_id in section if isinstance(room_id, str)]


def _parse_timeline(section: object) -> TimelineDelta:
    if not isinstance(section, Mapping):
        return TimelineDelta()
    prev_batch = section.get("prev_batch")
    return TimelineDelta(
        events=extract_events(section),
        limited=section.get("limited") is True,
        prev_batch=prev_batch if isinstance(prev_batch, str) and prev_batch else None,
    )


def _parse_unread_counts(section: object) -> dict[str, int]:
    if not isinstance(section, Mapping):
        return {}
    return {
        key: value
        for key, value in section.items()
        if isinstance(key, str) and isinstance(value, int) and not isinstance(value, bool)
    }
