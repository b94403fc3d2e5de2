"""Observer registry for notifications emitted to UI/editor collaborators."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class NotificationKind(StrEnum):
    """Notifications a session emits."""

    LOGIN_COMPLETE = "login_complete"
    ROOM_UPDATED = "room_updated"
    ROOM_METADATA_UPDATED = "room_metadata_updated"
    MEMBERSHIP_CHANGED = "membership_changed"
    ROOM_INVITED = "room_invited"
    ROOM_LEFT = "room_left"
    SYNC_COMPLETED = "sync_completed"


@dataclass(frozen=True)
class Notification:
    """One emitted notification."""

    kind: NotificationKind
    room_id: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)


class CallbackList(Generic[T]):
    """Ordered callbacks invoked over a snapshot of the registration list.

    Callbacks registered or removed while an emission is running take effect
    from the next emission. A raising callback is logged and does not stop the
    remaining ones.
    """

    def __init__(self, *, label: str) -> None:
        self._label = label
        self._callbacks: list[Callable[[T], None]] = []

    def __len__(self) -> int:
        return len(self._callbacks)

    def add(self, callback: Callable[[T], None]) -> Callable[[], None]:
        """Register callback and return a function that unregisters it."""

        self._callbacks.append(callback)
        return lambda: self.remove(callback)

    def remove(self, callback: Callable[[T], None]) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def invoke(self, value: T) -> int:
        """Call every registered callback with value and return how many succeeded."""

        delivered = 0
        for callback in tuple(self._callbacks):
            try:
                callback(value)
            except Exception:  # noqa: BLE001
                logger.exception("notification_callback_failed label=%s", self._label)
                continue
            delivered += 1
        return delivered


class NotificationHub:
    """Per-session notification registry keyed by notification kind."""

    def __init__(self) -> None:
        self._callbacks: dict[NotificationKind, CallbackList[Notification]] = {
            kind: CallbackList(label=kind.value) for kind in NotificationKind
        }

    def subscribe(
        self,
        kind: NotificationKind,
        callback: Callable[[Notification], None],
    ) -> Callable[[], None]:
        """Register callback for one kind and return its unsubscribe function."""

        return self._callbacks[kind].add(callback)

    def unsubscribe(
        self,
        kind: NotificationKind,
        callback: Callable[[Notification], None],
    ) -> None:
        self._callbacks[kind].remove(callback)

    def emit(
        self,
        kind: NotificationKind,
        *,
        room_id: str | None = None,
        **payload: Any,
    ) -> int:
        """Deliver one notification to subscribers of its kind."""

        notification = Notification(kind=kind, room_id=room_id, payload=payload)
        logger.debug("notification_emitted kind=%s room_id=%s", kind.value, room_id)
        return self._callbacks[kind].invoke(notification)
