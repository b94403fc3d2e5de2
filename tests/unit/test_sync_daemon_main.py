from __future__ import annotations

import asyncio

import pytest

from apps.sync_daemon.main import (
    MissingCredentialsError,
    authenticate,
    build_sync_daemon_runtime,
    run_sync_daemon,
)
from matrix_sync.application.ports.session_state_repository_port import SessionStateRecord
from matrix_sync.config.settings import Settings
from matrix_sync.domain.notifications import Notification, NotificationKind
from tests.support.matrix_fakes import ScriptedTransport, json_response


class _InMemoryStateRepository:
    def __init__(self, *records: SessionStateRecord) -> None:
        self.records = {record.user_id: record for record in records}
        self.saved: list[SessionStateRecord] = []

    async def load(self, *, user_id: str) -> SessionStateRecord | None:
        return self.records.get(user_id)

    async def save(self, record: SessionStateRecord) -> None:
        self.records[record.user_id] = record
        self.saved.append(record)

    async def delete(self, *, user_id: str) -> None:
        self.records.pop(user_id, None)


def _settings(monkeypatch: pytest.MonkeyPatch, *, password: str | None = "secret") -> Settings:
    monkeypatch.setenv("MATRIX_USER_ID", "@alice")
    monkeypatch.setenv("MATRIX_HOMESERVER_URL", "https://matrix.example.org")
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("MATRIX_DEVICE_ID", raising=False)
    monkeypatch.delenv("MATRIX_SYNC_TIMEOUT_MS", raising=False)
    if password is None:
        monkeypatch.delenv("MATRIX_PASSWORD", raising=False)
    else:
        monkeypatch.setenv("MATRIX_PASSWORD", password)
    return Settings(_env_file=None)


def test_build_runtime_wires_session_from_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    runtime = build_sync_daemon_runtime(
        settings=_settings(monkeypatch),
        transport=ScriptedTransport(),
    )

    assert runtime.session.user_id == "@alice:matrix.org"
    assert runtime.session.client.homeserver_url == "https://matrix.example.org"
    assert runtime.sync_engine.request_timeout_seconds == 35.0
    assert runtime.state_repository is None


@pytest.mark.asyncio
async def test_authenticate_logs_in_with_password_and_saves_state(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    transport = ScriptedTransport()
    transport.queue("login", json_response({"access_token": "tok", "device_id": "DEV"}))
    repository = _InMemoryStateRepository()
    runtime = build_sync_daemon_runtime(
        settings=_settings(monkeypatch),
        transport=transport,
        state_repository=repository,
    )

    await authenticate(runtime)

    assert runtime.session.access_token == "tok"
    assert repository.saved[-1].access_token == "tok"
    assert repository.saved[-1].device_id == "DEV"


@pytest.mark.asyncio
async def test_authenticate_prefers_stored_token_over_login(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    transport = ScriptedTransport()
    repository = _InMemoryStateRepository(
        SessionStateRecord(
            user_id="@alice:matrix.org",
            device_id="DEV",
            access_token="stored-token",
            next_batch="s9",
            transaction_counter=500_000,
        )
    )
    runtime = build_sync_daemon_runtime(
        settings=_settings(monkeypatch),
        transport=transport,
        state_repository=repository,
    )

    await authenticate(runtime)

    assert runtime.session.access_token == "stored-token"
    assert runtime.session.next_batch == "s9"
    assert runtime.session.transaction_counter == 500_000
    assert transport.calls_to("login") == []


@pytest.mark.asyncio
async def test_authenticate_without_token_or_password_fails(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    runtime = build_sync_daemon_runtime(
        settings=_settings(monkeypatch, password=None),
        transport=ScriptedTransport(),
    )

    with pytest.raises(MissingCredentialsError):
        await authenticate(runtime)


@pytest.mark.asyncio
async def test_run_sync_daemon_polls_until_stop_event(monkeypatch: pytest.MonkeyPatch) -> None:
    transport = ScriptedTransport()
    transport.queue("login", json_response({"access_token": "tok", "device_id": "DEV"}))
    transport.queue(
        "sync",
        json_response({"next_batch": "s1", "rooms": {"join": {"!abc:matrix.org": {}}}}),
    )
    runtime = build_sync_daemon_runtime(
        settings=_settings(monkeypatch),
        transport=transport,
    )
    stop_event = asyncio.Event()

    def _stop(_: Notification) -> None:
        stop_event.set()

    runtime.session.notifications.subscribe(NotificationKind.SYNC_COMPLETED, _stop)

    await asyncio.wait_for(run_sync_daemon(runtime, stop_event=stop_event), timeout=5)

    assert runtime.session.next_batch == "s1"
    assert runtime.session.get_room("!abc:matrix.org") is not None
    assert runtime.session.pending_polls == []
