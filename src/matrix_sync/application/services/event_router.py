"""Registry routing protocol events, by declared type, to room state handlers."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any

from matrix_sync.domain.room import Member, Room

EventHandler = Callable[[Room, dict[str, Any]], None]
logger = logging.getLogger(__name__)


def _content_of(event: dict[str, Any]) -> dict[str, Any]:
    content = event.get("content")
    return content if isinstance(content, dict) else {}


def _optional_str(value: object) -> str | None:
    return value if isinstance(value, str) and value else None


def handle_member_event(room: Room, event: dict[str, Any]) -> None:
    """Apply `m.room.member`: join upserts the member, leave and ban remove it."""

    user_id = _optional_str(event.get("state_key"))
    if user_id is None:
        logger.warning(
            "member_event_missing_state_key room_id=%s event_id=%s",
            room.room_id,
            event.get("event_id"),
        )
        return

    content = _content_of(event)
    membership = content.get("membership")
    if membership == "join":
        room.upsert_member(
            user_id,
            Member(
                displayname=_optional_str(content.get("displayname")),
                avatar_url=_optional_str(content.get("avatar_url")),
            ),
        )
    elif membership in ("leave", "ban"):
        if not room.remove_member(user_id):
            return
    else:
        # invite/knock need an external handler registered for them.
        logger.debug(
            "member_event_ignored room_id=%s user_id=%s membership=%s",
            room.room_id,
            user_id,
            membership,
        )
        return

    room.notify_membership_changed(user_id=user_id, membership=str(membership))


def handle_name_event(room: Room, event: dict[str, Any]) -> None:
    room.name = _optional_str(_content_of(event).get("name"))
    room.notify_metadata_updated(name=room.name)


def handle_topic_event(room: Room, event: dict[str, Any]) -> None:
    room.topic = _optional_str(_content_of(event).get("topic"))
    room.notify_metadata_updated(topic=room.topic)


def handle_aliases_event(room: Room, event: dict[str, Any]) -> None:
    aliases = _content_of(event).get("aliases")
    if not isinstance(aliases, list):
        return
    for alias in aliases:
        if isinstance(alias, str) and alias not in room.aliases:
            room.aliases.append(alias)
    room.notify_metadata_updated(aliases=list(room.aliases))


def handle_canonical_alias_event(room: Room, event: dict[str, Any]) -> None:
    content = _content_of(event)
    room.canonical_alias = _optional_str(content.get("alias"))
    alt_aliases = content.get("alt_aliases")
    if isinstance(alt_aliases, list):
        for alias in alt_aliases:
            if isinstance(alias, str) and alias not in room.aliases:
                room.aliases.append(alias)
    room.notify_metadata_updated(canonical_alias=room.canonical_alias)


def handle_avatar_event(room: Room, event: dict[str, Any]) -> None:
    room.avatar_url = _optional_str(_content_of(event).get("url"))
    room.notify_metadata_updated(avatar_url=room.avatar_url)


DEFAULT_EVENT_HANDLERS: Mapping[str, EventHandler] = {
    "m.room.member": handle_member_event,
    "m.room.name": handle_name_event,
    "m.room.topic": handle_topic_event,
    "m.room.aliases": handle_aliases_event,
    "m.room.canonical_alias": handle_canonical_alias_event,
    "m.room.avatar": handle_avatar_event,
}


class EventRouter:
    """Dispatch one event to the handler registered for its `type`.

    Unknown types are logged and skipped; a failing handler is logged and
    never propagates, so sibling events keep being processed.
    """

    def __init__(
        self,
        handlers: Mapping[str, EventHandler] | None = None,
        *,
        include_defaults: bool = True,
    ) -> None:
        self._handlers: dict[str, EventHandler] = (
            dict(DEFAULT_EVENT_HANDLERS) if include_defaults else {}
        )
        if handlers is not None:
            self._handlers.update(handlers)

    def register(self, event_type: str, handler: EventHandler) -> None:
        self._handlers[event_type] = handler

    def unregister(self, event_type: str) -> None:
        self._handlers.pop(event_type, None)

    def handler_for(self, event_type: str) -> EventHandler | None:
        return self._handlers.get(event_type)

    def route(self, room: Room, event: dict[str, Any]) -> bool:
        """Route one event and return whether a handler applied it."""

        event_type = event.get("type")
        if not isinstance(event_type, str) or not event_type:
            logger.warning(
                "event_missing_type room_id=%s event_id=%s",
                room.room_id,
                event.get("event_id"),
            )
            return False

        handler = self._handlers.get(event_type)
        if handler is None:
            logger.debug(
                "event_unimplemented event_type=%s room_id=%s",
                event_type,
                room.room_id,
            )
            return False

        try:
            handler(room, event)
        except Exception:  # noqa: BLE001
            logger.exception(
                "event_handler_failed event_type=%s room_id=%s event_id=%s",
                event_type,
                room.room_id,
                event.get("event_id"),
            )
            return False
        return True
