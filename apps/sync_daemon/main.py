"""sync-daemon entrypoint."""

from __future__ import annotations

import asyncio
import logging
import signal
from dataclasses import dataclass

from matrix_sync.application.ports.session_state_repository_port import (
    SessionStateRepositoryPort,
)
from matrix_sync.application.services.dispatch import set_synchronous_requests
from matrix_sync.application.services.message_sender import MessageSender
from matrix_sync.application.services.session import Session
from matrix_sync.application.services.sync_engine import SyncEngine
from matrix_sync.config.settings import Settings, load_settings
from matrix_sync.domain.notifications import Notification, NotificationKind
from matrix_sync.infrastructure.db.session import create_session_factory
from matrix_sync.infrastructure.db.session_state_repository import (
    SqlAlchemySessionStateRepository,
)
from matrix_sync.infrastructure.logging import configure_logging
from matrix_sync.infrastructure.matrix.http_client import MatrixHttpTransportPort

logger = logging.getLogger(__name__)


class MissingCredentialsError(RuntimeError):
    """Raised when neither stored state nor a password can authenticate the session."""


@dataclass(frozen=True)
class SyncDaemonRuntime:
    """Composed sync-daemon runtime dependencies."""

    settings: Settings
    session: Session
    sync_engine: SyncEngine
    message_sender: MessageSender
    state_repository: SessionStateRepositoryPort | None


def build_sync_daemon_runtime(
    *,
    settings: Settings | None = None,
    transport: MatrixHttpTransportPort | None = None,
    state_repository: SessionStateRepositoryPort | None = None,
) -> SyncDaemonRuntime:
    """Build runtime wiring for one session's sync loop."""

    runtime_settings = settings or load_settings()
    runtime_state_repository = state_repository
    if runtime_state_repository is None and runtime_settings.database_url is not None:
        runtime_state_repository = SqlAlchemySessionStateRepository(
            create_session_factory(runtime_settings.database_url)
        )

    session = Session(
        user_id=runtime_settings.matrix_user_id,
        homeserver_url=(
            str(runtime_settings.matrix_homeserver_url)
            if runtime_settings.matrix_homeserver_url is not None
            else None
        ),
        default_domain=runtime_settings.matrix_default_domain,
        device_id=runtime_settings.matrix_device_id,
        transport=transport,
        request_timeout_seconds=runtime_settings.matrix_request_timeout_seconds,
    )
    sync_engine = SyncEngine(
        session=session,
        state_repository=runtime_state_repository,
        timeout_ms=runtime_settings.matrix_sync_timeout_ms,
        grace_seconds=runtime_settings.matrix_sync_grace_seconds,
        backoff_cap_seconds=runtime_settings.matrix_sync_backoff_cap_seconds,
        full_state=runtime_settings.matrix_sync_full_state,
        set_presence=runtime_settings.matrix_sync_set_presence,
    )
    for kind in NotificationKind:
        session.notifications.subscribe(kind, _log_notification)

    return SyncDaemonRuntime(
        settings=runtime_settings,
        session=session,
        sync_engine=sync_engine,
        message_sender=MessageSender(
            session=session,
            timeout_seconds=runtime_settings.matrix_request_timeout_seconds,
        ),
        state_repository=runtime_state_repository,
    )


async def authenticate(runtime: SyncDaemonRuntime) -> None:
    """Restore stored credentials, or log in with the configured password."""

    session = runtime.session
    if runtime.state_repository is not None:
        record = await runtime.state_repository.load(user_id=session.user_id)
        if record is not None and record.access_token is not None:
            session.restore(record)
            return

    password = runtime.settings.matrix_password
    if password is None:
        raise MissingCredentialsError(
            f"no stored access token and no MATRIX_PASSWORD for {session.user_id}"
        )
    await session.login(password)
    if runtime.state_repository is not None:
        await runtime.state_repository.save(session.snapshot())


async def run_sync_daemon(runtime: SyncDaemonRuntime, *, stop_event: asyncio.Event) -> None:
    """Run the sync loop until stop_event is set."""

    await authenticate(runtime)
    loop_task = await runtime.sync_engine.start()
    stop_waiter = asyncio.ensure_future(stop_event.wait())
    waiters: set[asyncio.Future[object]] = {stop_waiter}
    if loop_task is not None:
        waiters.add(loop_task)
    await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
    stop_waiter.cancel()
    await runtime.sync_engine.stop()


def _request_stop(runtime: SyncDaemonRuntime, stop_event: asyncio.Event) -> None:
    # Synchronous dispatch mode runs the loop inside start(); the flag ends it there.
    runtime.session.disconnect = True
    stop_event.set()


def _log_notification(notification: Notification) -> None:
    logger.info(
        "notification kind=%s room_id=%s payload=%s",
        notification.kind.value,
        notification.room_id,
        notification.payload,
    )


async def _run_sync_daemon() -> None:
    settings = load_settings()
    configure_logging(level=settings.log_level)
    set_synchronous_requests(settings.matrix_synchronous_requests)
    logger.info(
        "sync_daemon_starting user_id=%s sync_timeout_ms=%s persistence=%s",
        settings.matrix_user_id,
        settings.matrix_sync_timeout_ms,
        settings.database_url is not None,
    )
    runtime = build_sync_daemon_runtime(settings=settings)
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, _request_stop, runtime, stop_event)

    await run_sync_daemon(runtime, stop_event=stop_event)


def main() -> None:
    """Run the Matrix sync daemon."""

    asyncio.run(_run_sync_daemon())


if __name__ == "__main__":
    main()
