"""Room entity accumulating membership, named state and timeline for one joined room."""

from __future__ import annotations

import weakref
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

from matrix_sync.domain.event_log import Event, EventLog
from matrix_sync.domain.notifications import CallbackList, NotificationKind

if TYPE_CHECKING:
    from matrix_sync.domain.notifications import NotificationHub

EPHEMERAL_BUFFER_SIZE = 100


class RoomOwner(Protocol):
    """Attributes a Room reads from its owning session."""

    user_id: str
    notifications: NotificationHub


@dataclass(frozen=True)
class Member:
    """Joined member profile as last seen in a membership event."""

    displayname: str | None = None
    avatar_url: str | None = None


RoomCallback = Callable[["Room"], None]


class Room:
    """One joined room; logs are append-only and drained through cursors."""

    def __init__(self, room_id: str, *, session: RoomOwner | None = None) -> None:
        self._room_id = room_id
        self._session_ref: weakref.ReferenceType[RoomOwner] | None = (
            weakref.ref(session) if session is not None else None
        )
        self.name: str | None = None
        self.topic: str | None = None
        self.aliases: list[str] = []
        self.canonical_alias: str | None = None
        self.avatar_url: str | None = None
        self.members: dict[str, Member] = {}
        self.state = EventLog()
        self.timeline = EventLog()
        self.prev_batch: str | None = None
        self.last_full_sync: str | None = None
        self.ephemeral: deque[Event] = deque(maxlen=EPHEMERAL_BUFFER_SIZE)
        self.typing_users: list[str] = []
        self.account_data: dict[str, dict[str, Any]] = {}
        self.unread_notifications: dict[str, int] = {}
        self.last_event_id: str | None = None
        self._update_callbacks: CallbackList[Room] = CallbackList(label=f"room:{room_id}")

    def __repr__(self) -> str:
        return f"Room(room_id={self._room_id!r}, name={self.name!r})"

    @property
    def room_id(self) -> str:
        return self._room_id

    @property
    def session(self) -> RoomOwner | None:
        """Owning session, or None once it has been garbage collected."""

        if self._session_ref is None:
            return None
        return self._session_ref()

    @property
    def display_name(self) -> str:
        """Human label: explicit name, then aliases, then other members, then room id."""

        if self.name:
            return self.name
        if self.canonical_alias:
            return self.canonical_alias
        if self.aliases:
            return self.aliases[0]
        own_user_id = self.session.user_id if self.session is not None else None
        others = [
            member.displayname or user_id
            for user_id, member in sorted(self.members.items())
            if user_id != own_user_id
        ]
        if others:
            return ", ".join(others[:3])
        return self._room_id

    def upsert_member(self, user_id: str, member: Member) -> None:
        self.members[user_id] = member

    def remove_member(self, user_id: str) -> bool:
        return self.members.pop(user_id, None) is not None

    def add_update_callback(self, callback: RoomCallback) -> Callable[[], None]:
        """Register a callback fired once per applied room delta."""

        return self._update_callbacks.add(callback)

    def remove_update_callback(self, callback: RoomCallback) -> None:
        self._update_callbacks.remove(callback)

    def notify_updated(self) -> None:
        """Fire room callbacks, then the session-wide room-updated notification."""

        self._update_callbacks.invoke(self)
        session = self.session
        if session is not None:
            session.notifications.emit(NotificationKind.ROOM_UPDATED, room_id=self._room_id)

    def notify_metadata_updated(self, **changes: Any) -> None:
        session = self.session
        if session is not None:
            session.notifications.emit(
                NotificationKind.ROOM_METADATA_UPDATED,
                room_id=self._room_id,
                **changes,
            )

    def notify_membership_changed(self, *, user_id: str, membership: str) -> None:
        session = self.session
        if session is not None:
            session.notifications.emit(
                NotificationKind.MEMBERSHIP_CHANGED,
                room_id=self._room_id,
                user_id=user_id,
                membership=membership,
            )
