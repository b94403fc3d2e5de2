from __future__ import annotations

import json
from dataclasses import dataclass

import pytest

from matrix_sync.infrastructure.matrix.http_client import (
    MatrixAdapterError,
    MatrixApiError,
    MatrixHttpClient,
    MatrixHttpResponse,
    MatrixTransportError,
)


@dataclass
class _QueuedTransport:
    responses: list[MatrixHttpResponse]
    error: Exception | None = None

    def __post_init__(self) -> None:
        self.calls: list[dict[str, object]] = []

    async def request(
        self,
        *,
        method: str,
        url: str,
        headers: dict[str, str],
        body: bytes | None,
        timeout_seconds: float,
    ) -> MatrixHttpResponse:
        self.calls.append(
            {
                "method": method,
                "url": url,
                "headers": headers,
                "body": body,
                "timeout_seconds": timeout_seconds,
            }
        )
        if self.error is not None:
            raise self.error
        return self.responses.pop(0)


def _client(transport: _QueuedTransport) -> MatrixHttpClient:
    return MatrixHttpClient(homeserver_url="https://matrix.example.org/", transport=transport)


@pytest.mark.asyncio
async def test_send_event_puts_content_keyed_by_transaction_id() -> None:
    transport = _QueuedTransport(
        responses=[MatrixHttpResponse(status_code=200, body_bytes=b'{"event_id":"$evt-send-1"}')]
    )
    client = _client(transport)

    event_id = await client.send_event(
        access_token="access-token",
        room_id="!room:example.org",
        transaction_id="43",
        content={"msgtype": "m.text", "body": "hello"},
        timeout_seconds=30.0,
    )

    assert event_id == "$evt-send-1"
    call = transport.calls[0]
    assert call["method"] == "PUT"
    assert call["url"] == (
        "https://matrix.example.org/_matrix/client/v3/rooms/%21room%3Aexample.org/"
        "send/m.room.message/43"
    )
    assert call["timeout_seconds"] == 30.0
    headers = call["headers"]
    assert isinstance(headers, dict)
    assert headers["Authorization"] == "Bearer access-token"
    assert headers["Content-Type"] == "application/json"
    payload = json.loads((call["body"] or b"").decode("utf-8"))
    assert payload == {"msgtype": "m.text", "body": "hello"}


@pytest.mark.asyncio
async def test_login_sends_password_identifier_without_authorization_header() -> None:
    transport = _QueuedTransport(
        responses=[
            MatrixHttpResponse(
                status_code=200,
                body_bytes=b'{"access_token":"tok","device_id":"DEV"}',
            )
        ]
    )
    client = _client(transport)

    response = await client.login(user_id="@alice:matrix.org", password="secret")

    assert response["access_token"] == "tok"
    call = transport.calls[0]
    assert call["method"] == "POST"
    assert call["url"] == "https://matrix.example.org/_matrix/client/v3/login"
    assert "Authorization" not in call["headers"]  # type: ignore[operator]
    payload = json.loads((call["body"] or b"").decode("utf-8"))
    assert payload == {
        "type": "m.login.password",
        "identifier": {"type": "m.id.user", "user": "@alice:matrix.org"},
        "password": "secret",
    }


@pytest.mark.asyncio
async def test_sync_encodes_cursor_flags_and_uses_given_network_timeout() -> None:
    transport = _QueuedTransport(
        responses=[MatrixHttpResponse(status_code=200, body_bytes=b'{"next_batch":"s2"}')]
    )
    client = _client(transport)

    payload = await client.sync(
        access_token="tok",
        since="s1",
        timeout_ms=30_000,
        timeout_seconds=35.0,
        full_state=True,
        set_presence="offline",
    )

    assert payload == {"next_batch": "s2"}
    call = transport.calls[0]
    assert call["method"] == "GET"
    assert call["body"] is None
    assert call["timeout_seconds"] == 35.0
    assert call["url"] == (
        "https://matrix.example.org/_matrix/client/v3/sync"
        "?timeout=30000&since=s1&full_state=true&set_presence=offline"
    )


@pytest.mark.asyncio
async def test_sync_omits_since_on_first_poll() -> None:
    transport = _QueuedTransport(
        responses=[MatrixHttpResponse(status_code=200, body_bytes=b'{"next_batch":"s1"}')]
    )
    client = _client(transport)

    await client.sync(access_token="tok", since=None, timeout_ms=1000, timeout_seconds=6.0)

    assert transport.calls[0]["url"] == (
        "https://matrix.example.org/_matrix/client/v3/sync?timeout=1000"
    )


@pytest.mark.asyncio
async def test_room_messages_passes_pagination_tokens() -> None:
    transport = _QueuedTransport(
        responses=[MatrixHttpResponse(status_code=200, body_bytes=b'{"chunk":[]}')]
    )
    client = _client(transport)

    await client.room_messages(
        access_token="tok",
        room_id="!room:example.org",
        from_token="p1",
        to_token="s0",
        direction="b",
        limit=10,
    )

    assert transport.calls[0]["url"] == (
        "https://matrix.example.org/_matrix/client/v3/rooms/%21room%3Aexample.org/"
        "messages?dir=b&limit=10&from=p1&to=s0"
    )


@pytest.mark.asyncio
async def test_upload_media_posts_raw_bytes_and_returns_content_uri() -> None:
    transport = _QueuedTransport(
        responses=[
            MatrixHttpResponse(
                status_code=200,
                body_bytes=b'{"content_uri":"mxc://example.org/abc"}',
            )
        ]
    )
    client = _client(transport)

    content_uri = await client.upload_media(
        access_token="tok",
        payload=b"\x89PNG",
        content_type="image/png",
        filename="cat.png",
    )

    assert content_uri == "mxc://example.org/abc"
    call = transport.calls[0]
    assert call["url"] == "https://matrix.example.org/_matrix/media/v3/upload?filename=cat.png"
    assert call["body"] == b"\x89PNG"
    assert call["headers"]["Content-Type"] == "image/png"  # type: ignore[index]


def test_mxc_to_http_resolves_download_url() -> None:
    client = _client(_QueuedTransport(responses=[]))

    assert client.mxc_to_http("mxc://example.org/media-id") == (
        "https://matrix.example.org/_matrix/media/v3/download/example.org/media-id"
    )


def test_mxc_to_http_rejects_non_mxc_uri() -> None:
    client = _client(_QueuedTransport(responses=[]))

    with pytest.raises(MatrixAdapterError):
        client.mxc_to_http("https://example.org/media-id")


@pytest.mark.asyncio
async def test_non_success_status_raises_api_error_with_server_errcode() -> None:
    transport = _QueuedTransport(
        responses=[
            MatrixHttpResponse(
                status_code=429,
                body_bytes=b'{"errcode":"M_LIMIT_EXCEEDED","error":"Too many requests"}',
            )
        ]
    )
    client = _client(transport)

    with pytest.raises(MatrixApiError) as exc_info:
        await client.leave_room(access_token="tok", room_id="!room:example.org")

    assert exc_info.value.status_code == 429
    assert exc_info.value.errcode == "M_LIMIT_EXCEEDED"
    assert exc_info.value.error == "Too many requests"
    assert exc_info.value.operation == "leave_room"
    assert "leave_room failed with status 429" in str(exc_info.value)


@pytest.mark.asyncio
async def test_transport_exception_raises_transport_error() -> None:
    transport = _QueuedTransport(responses=[], error=RuntimeError("connection refused"))
    client = _client(transport)

    with pytest.raises(MatrixTransportError) as exc_info:
        await client.sync(access_token="tok", since=None, timeout_ms=1000, timeout_seconds=6.0)

    assert "sync transport failure" in str(exc_info.value)
    assert not isinstance(exc_info.value, MatrixApiError)


@pytest.mark.asyncio
async def test_invalid_json_payload_raises_adapter_error() -> None:
    transport = _QueuedTransport(
        responses=[MatrixHttpResponse(status_code=200, body_bytes=b"not-json")]
    )
    client = _client(transport)

    with pytest.raises(MatrixAdapterError) as exc_info:
        await client.join_room(access_token="tok", room_id_or_alias="#room:example.org")

    assert "join_room returned invalid JSON payload" in str(exc_info.value)
