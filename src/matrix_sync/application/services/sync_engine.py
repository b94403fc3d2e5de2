"""Long-poll sync state machine driving delta application for one session."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import Any

from matrix_sync.application.errors import NotAuthenticatedError
from matrix_sync.application.ports.session_state_repository_port import (
    SessionStateRepositoryPort,
)
from matrix_sync.application.services.backoff import (
    DEFAULT_BACKOFF_CAP_SECONDS,
    compute_sync_backoff,
)
from matrix_sync.application.services.dispatch import synchronous_requests_enabled
from matrix_sync.application.services.room_updates import RoomUpdater
from matrix_sync.application.services.session import Session
from matrix_sync.domain.notifications import NotificationKind
from matrix_sync.infrastructure.matrix.http_client import MatrixAdapterError
from matrix_sync.infrastructure.matrix.sync_events import (
    extract_events,
    extract_next_batch_token,
    iter_sync_categories,
)

CategoryHandler = Callable[..., Awaitable[object]]
SleepCallable = Callable[[float], Awaitable[None]]

DEFAULT_SYNC_TIMEOUT_MS = 30_000
DEFAULT_SYNC_GRACE_SECONDS = 5.0
logger = logging.getLogger(__name__)


class SyncState(StrEnum):
    """Sync engine lifecycle states."""

    IDLE = "idle"
    POLLING = "polling"
    BACKING_OFF = "backing_off"
    STOPPED = "stopped"


class SyncEngine:
    """Repeatedly long-poll `/sync` and route each response to category handlers.

    Successful polls are re-issued immediately; failed polls are retried after
    an exponential backoff with the resumption cursor left untouched. Only one
    poll is outstanding at a time, so responses are applied in request order.
    """

    def __init__(
        self,
        *,
        session: Session,
        room_updater: RoomUpdater | None = None,
        state_repository: SessionStateRepositoryPort | None = None,
        timeout_ms: int = DEFAULT_SYNC_TIMEOUT_MS,
        grace_seconds: float = DEFAULT_SYNC_GRACE_SECONDS,
        backoff_cap_seconds: float = DEFAULT_BACKOFF_CAP_SECONDS,
        full_state: bool = False,
        set_presence: str | None = None,
        sleep: SleepCallable = asyncio.sleep,
    ) -> None:
        self._session = session
        self._room_updater = room_updater or RoomUpdater(session=session)
        self._state_repository = state_repository
        self._timeout_ms = timeout_ms
        self._grace_seconds = grace_seconds
        self._backoff_cap_seconds = backoff_cap_seconds
        self._full_state = full_state
        self._set_presence = set_presence
        self._sleep = sleep
        self._state = SyncState.IDLE
        self._consecutive_failures = 0
        self._loop_task: asyncio.Task[None] | None = None
        self._category_handlers: dict[str, CategoryHandler] = {
            "rooms.join": self._room_updater.apply_joined_rooms,
            "rooms.invite": self._room_updater.apply_invited_rooms,
            "rooms.leave": self._room_updater.apply_left_rooms,
            "presence": self._apply_presence,
            "account_data": self._apply_account_data,
        }

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def request_timeout_seconds(self) -> float:
        """Network timeout for one poll: long-poll duration plus grace margin."""

        return self._timeout_ms / 1000 + self._grace_seconds

    def register_category_handler(self, category: str, handler: CategoryHandler) -> None:
        self._category_handlers[category] = handler

    def unregister_category_handler(self, category: str) -> None:
        self._category_handlers.pop(category, None)

    async def start(self) -> asyncio.Task[None] | None:
        """Start the poll loop.

        Raises NotAuthenticatedError without a credential. In synchronous
        dispatch mode the loop runs to completion before returning.
        """

        self._session.require_access_token()
        if self._loop_task is not None and not self._loop_task.done():
            return self._loop_task

        self._session.disconnect = False
        logger.info(
            "sync_started user_id=%s timeout_ms=%s since=%s",
            self._session.user_id,
            self._timeout_ms,
            self._session.next_batch,
        )
        if synchronous_requests_enabled():
            await self._run()
            return None

        self._loop_task = asyncio.get_running_loop().create_task(
            self._run(),
            name=f"sync:{self._session.user_id}",
        )
        return self._loop_task

    async def stop(self) -> None:
        """Set the disconnect flag, abandon in-flight polls and wait for the loop to end."""

        self._session.disconnect = True
        for poll in tuple(self._session.pending_polls):
            poll.cancel()
        self._session.pending_polls.clear()
        self._state = SyncState.STOPPED

        loop_task = self._loop_task
        if loop_task is not None and loop_task is not asyncio.current_task():
            await asyncio.wait({loop_task})
        self._loop_task = None
        logger.info("sync_stopped user_id=%s", self._session.user_id)

    async def run_once(self) -> bool:
        """Issue one poll and apply its response; return whether it succeeded."""

        session = self._session
        access_token = session.require_access_token()
        poll = asyncio.ensure_future(
            session.client.sync(
                access_token=access_token,
                since=session.next_batch,
                timeout_ms=self._timeout_ms,
                timeout_seconds=self.request_timeout_seconds,
                full_state=self._full_state,
                set_presence=self._set_presence,
            )
        )
        session.pending_polls.append(poll)
        try:
            payload = await poll
        except asyncio.CancelledError:
            if session.disconnect:
                logger.debug("sync_poll_abandoned user_id=%s", session.user_id)
                return False
            raise
        except MatrixAdapterError as error:
            if session.disconnect:
                logger.debug("sync_poll_failed_after_disconnect user_id=%s", session.user_id)
                return False
            self._record_failure(error)
            return False
        finally:
            if poll in session.pending_polls:
                session.pending_polls.remove(poll)

        if session.disconnect:
            logger.debug("sync_response_discarded_after_disconnect user_id=%s", session.user_id)
            return False

        await self._apply_response(payload)
        return True

    async def _run(self) -> None:
        session = self._session
        self._state = SyncState.POLLING
        try:
            while not session.disconnect:
                succeeded = await self.run_once()
                if session.disconnect:
                    break
                if succeeded:
                    self._state = SyncState.POLLING
                    continue
                if session.backoff_seconds > 0:
                    self._state = SyncState.BACKING_OFF
                    if not await self._back_off(session.backoff_seconds):
                        break
                self._state = SyncState.POLLING
        except NotAuthenticatedError:
            # Logout while polling: the next cycle finds no credential and the loop ends.
            logger.error("sync_halted_credential_missing user_id=%s", session.user_id)
            self._state = SyncState.IDLE
            return
        self._state = SyncState.STOPPED

    async def _back_off(self, delay_seconds: float) -> bool:
        """Sleep before the next poll; return False when `stop()` cut the delay short."""

        session = self._session
        delay = asyncio.ensure_future(self._sleep(delay_seconds))
        session.pending_polls.append(delay)
        try:
            await delay
        except asyncio.CancelledError:
            if session.disconnect:
                logger.debug("sync_backoff_abandoned user_id=%s", session.user_id)
                return False
            raise
        finally:
            if delay in session.pending_polls:
                session.pending_polls.remove(delay)
        return True

    async def _apply_response(self, payload: dict[str, Any]) -> None:
        session = self._session
        next_batch = extract_next_batch_token(payload, fallback=session.next_batch)

        for category, section in iter_sync_categories(payload):
            handler = self._category_handlers.get(category)
            if handler is None:
                logger.debug("sync_category_unhandled category=%s", category)
                continue
            try:
                await handler(section, next_batch=next_batch)
            except Exception:  # noqa: BLE001
                logger.exception("sync_category_failed category=%s", category)

        session.next_batch = next_batch
        session.initial_sync = False
        session.backoff_seconds = 0.0
        self._consecutive_failures = 0
        logger.debug("sync_applied user_id=%s next_batch=%s", session.user_id, next_batch)

        await self._persist_state()
        session.notifications.emit(NotificationKind.SYNC_COMPLETED, next_batch=next_batch)

    def _record_failure(self, error: MatrixAdapterError) -> None:
        self._consecutive_failures += 1
        self._session.backoff_seconds = compute_sync_backoff(
            self._consecutive_failures,
            cap_seconds=self._backoff_cap_seconds,
        )
        logger.warning(
            "sync_poll_failed user_id=%s failures=%s retry_in_seconds=%s error=%s",
            self._session.user_id,
            self._consecutive_failures,
            self._session.backoff_seconds,
            error,
        )

    async def _persist_state(self) -> None:
        if self._state_repository is None:
            return
        try:
            await self._state_repository.save(self._session.snapshot())
        except Exception:  # noqa: BLE001
            logger.exception("session_state_persist_failed user_id=%s", self._session.user_id)

    async def _apply_presence(self, section: Any, next_batch: str | None) -> None:
        for event in extract_events(section):
            sender = event.get("sender")
            content = event.get("content")
            if isinstance(sender, str) and isinstance(content, dict):
                self._session.presence[sender] = content

    async def _apply_account_data(self, section: Any, next_batch: str | None) -> None:
        for event in extract_events(section):
            event_type = event.get("type")
            content = event.get("content")
            if isinstance(event_type, str) and isinstance(content, dict):
                self._session.account_data[event_type] = content
