"""Concrete Matrix HTTP adapter for session, sync, room, message and media operations."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Protocol
from urllib.error import HTTPError, URLError
from urllib.parse import quote, urlencode, urlparse
from urllib.request import Request, urlopen

CLIENT_API_PREFIX = "/_matrix/client/v3"
MEDIA_API_PREFIX = "/_matrix/media/v3"


@dataclass(frozen=True)
class MatrixHttpResponse:
    """Normalized HTTP response data returned by transport implementations."""

    status_code: int
    body_bytes: bytes


class MatrixHttpTransportPort(Protocol):
    """Transport protocol used by Matrix HTTP adapter."""

    async def request(
        self,
        *,
        method: str,
        url: str,
        headers: dict[str, str],
        body: bytes | None,
        timeout_seconds: float,
    ) -> MatrixHttpResponse:
        """Execute one HTTP request and return normalized response data."""


class MatrixAdapterError(RuntimeError):
    """Raised for normalized Matrix adapter failures."""

    def __init__(self, message: str, *, operation: str) -> None:
        super().__init__(message)
        self.operation = operation


class MatrixTransportError(MatrixAdapterError):
    """Raised when no HTTP response was obtained (connection, TLS, timeout)."""


class MatrixApiError(MatrixAdapterError):
    """Raised when the homeserver answered with a non-success status."""

    def __init__(
        self,
        message: str,
        *,
        operation: str,
        status_code: int,
        errcode: str | None = None,
        error: str | None = None,
    ) -> None:
        super().__init__(message, operation=operation)
        self.status_code = status_code
        self.errcode = errcode
        self.error = error


class UrllibMatrixHttpTransport:
    """urllib-based async transport implementation for Matrix HTTP calls."""

    async def request(
        self,
        *,
        method: str,
        url: str,
        headers: dict[str, str],
        body: bytes | None,
        timeout_seconds: float,
    ) -> MatrixHttpResponse:
        """Execute HTTP request in a worker thread and normalize HTTP errors."""

        return await asyncio.to_thread(
            self._request_sync,
            method=method,
            url=url,
            headers=headers,
            body=body,
            timeout_seconds=timeout_seconds,
        )

    def _request_sync(
        self,
        *,
        method: str,
        url: str,
        headers: dict[str, str],
        body: bytes | None,
        timeout_seconds: float,
    ) -> MatrixHttpResponse:
        request = Request(url=url, data=body, headers=headers, method=method)
        try:
            with urlopen(request, timeout=timeout_seconds) as response:
                status_code = int(response.getcode())
                payload = response.read()
                return MatrixHttpResponse(status_code=status_code, body_bytes=payload)
        except HTTPError as error:
            payload = error.read()
            return MatrixHttpResponse(status_code=int(error.code), body_bytes=payload)
        except URLError as error:
            raise MatrixTransportError(
                f"transport connection failure: {error}",
                operation=method,
            ) from error
        except TimeoutError as error:
            raise MatrixTransportError(
                f"transport timeout after {timeout_seconds}s",
                operation=method,
            ) from error


class MatrixHttpClient:
    """Matrix REST API adapter; callers pass the access token per request."""

    def __init__(
        self,
        *,
        homeserver_url: str,
        transport: MatrixHttpTransportPort | None = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        self._homeserver_url = homeserver_url.rstrip("/")
        self._transport = transport or UrllibMatrixHttpTransport()
        self._timeout_seconds = timeout_seconds

    @property
    def homeserver_url(self) -> str:
        return self._homeserver_url

    @property
    def api_base_url(self) -> str:
        return f"{self._homeserver_url}{CLIENT_API_PREFIX}"

    async def login(
        self,
        *,
        user_id: str,
        password: str,
        device_id: str | None = None,
        device_display_name: str | None = None,
    ) -> dict[str, Any]:
        """Exchange password credentials for an access token."""

        payload: dict[str, object] = {
            "type": "m.login.password",
            "identifier": {"type": "m.id.user", "user": user_id},
            "password": password,
        }
        if device_id is not None:
            payload["device_id"] = device_id
        if device_display_name is not None:
            payload["initial_device_display_name"] = device_display_name
        return await self._request_json(
            operation="login",
            method="POST",
            path=f"{CLIENT_API_PREFIX}/login",
            payload=payload,
            access_token=None,
        )

    async def logout(self, *, access_token: str) -> None:
        """Invalidate the access token server-side."""

        await self._request_json(
            operation="logout",
            method="POST",
            path=f"{CLIENT_API_PREFIX}/logout",
            payload={},
            access_token=access_token,
        )

    async def sync(
        self,
        *,
        access_token: str,
        since: str | None,
        timeout_ms: int,
        timeout_seconds: float,
        full_state: bool = False,
        set_presence: str | None = None,
    ) -> dict[str, Any]:
        """Long-poll Matrix sync for the next incremental delta."""

        query: dict[str, str] = {"timeout": str(timeout_ms)}
        if since:
            query["since"] = since
        if full_state:
            query["full_state"] = "true"
        if set_presence is not None:
            query["set_presence"] = set_presence
        return await self._request_json(
            operation="sync",
            method="GET",
            path=f"{CLIENT_API_PREFIX}/sync?{urlencode(query)}",
            payload=None,
            access_token=access_token,
            timeout_seconds=timeout_seconds,
        )

    async def create_room(
        self,
        *,
        access_token: str,
        name: str | None = None,
        topic: str | None = None,
        alias_localpart: str | None = None,
        invite: list[str] | None = None,
        is_public: bool = False,
    ) -> str:
        """Create a room and return its room id."""

        payload: dict[str, object] = {
            "preset": "public_chat" if is_public else "private_chat",
            "visibility": "public" if is_public else "private",
        }
        if name is not None:
            payload["name"] = name
        if topic is not None:
            payload["topic"] = topic
        if alias_localpart is not None:
            payload["room_alias_name"] = alias_localpart
        if invite:
            payload["invite"] = list(invite)
        response = await self._request_json(
            operation="create_room",
            method="POST",
            path=f"{CLIENT_API_PREFIX}/createRoom",
            payload=payload,
            access_token=access_token,
        )
        return _extract_str_field(response=response, field="room_id", operation="create_room")

    async def join_room(self, *, access_token: str, room_id_or_alias: str) -> str:
        """Join a room by id or alias and return the joined room id."""

        response = await self._request_json(
            operation="join_room",
            method="POST",
            path=f"{CLIENT_API_PREFIX}/join/{quote(room_id_or_alias, safe='')}",
            payload={},
            access_token=access_token,
        )
        return _extract_str_field(response=response, field="room_id", operation="join_room")

    async def leave_room(self, *, access_token: str, room_id: str) -> None:
        """Leave a joined room."""

        await self._request_json(
            operation="leave_room",
            method="POST",
            path=f"{CLIENT_API_PREFIX}/rooms/{quote(room_id, safe='')}/leave",
            payload={},
            access_token=access_token,
        )

    async def forget_room(self, *, access_token: str, room_id: str) -> None:
        """Forget a previously left room."""

        await self._request_json(
            operation="forget_room",
            method="POST",
            path=f"{CLIENT_API_PREFIX}/rooms/{quote(room_id, safe='')}/forget",
            payload={},
            access_token=access_token,
        )

    async def send_event(
        self,
        *,
        access_token: str,
        room_id: str,
        transaction_id: str,
        content: dict[str, object],
        event_type: str = "m.room.message",
        timeout_seconds: float | None = None,
    ) -> str:
        """PUT one room event keyed by transaction id and return created event id."""

        path = (
            f"{CLIENT_API_PREFIX}/rooms/{quote(room_id, safe='')}"
            f"/send/{quote(event_type, safe='')}/{quote(transaction_id, safe='')}"
        )
        response = await self._request_json(
            operation="send_event",
            method="PUT",
            path=path,
            payload=content,
            access_token=access_token,
            timeout_seconds=timeout_seconds,
        )
        return _extract_str_field(response=response, field="event_id", operation="send_event")

    async def room_messages(
        self,
        *,
        access_token: str,
        room_id: str,
        from_token: str | None,
        to_token: str | None,
        direction: str,
        limit: int,
    ) -> dict[str, Any]:
        """Fetch one page of room history between pagination tokens."""

        query: dict[str, str] = {"dir": direction, "limit": str(limit)}
        if from_token:
            query["from"] = from_token
        if to_token:
            query["to"] = to_token
        return await self._request_json(
            operation="room_messages",
            method="GET",
            path=f"{CLIENT_API_PREFIX}/rooms/{quote(room_id, safe='')}/messages?{urlencode(query)}",
            payload=None,
            access_token=access_token,
        )

    async def set_typing(
        self,
        *,
        access_token: str,
        room_id: str,
        user_id: str,
        typing: bool,
        timeout_ms: int = 30_000,
    ) -> None:
        """Push typing indicator state for the user in one room."""

        payload: dict[str, object] = {"typing": typing}
        if typing:
            payload["timeout"] = timeout_ms
        path = (
            f"{CLIENT_API_PREFIX}/rooms/{quote(room_id, safe='')}"
            f"/typing/{quote(user_id, safe='')}"
        )
        await self._request_json(
            operation="set_typing",
            method="PUT",
            path=path,
            payload=payload,
            access_token=access_token,
        )

    async def set_read_markers(self, *, access_token: str, room_id: str, event_id: str) -> None:
        """Advance fully-read and read-receipt markers to one event."""

        await self._request_json(
            operation="set_read_markers",
            method="POST",
            path=f"{CLIENT_API_PREFIX}/rooms/{quote(room_id, safe='')}/read_markers",
            payload={"m.fully_read": event_id, "m.read": event_id},
            access_token=access_token,
        )

    async def upload_media(
        self,
        *,
        access_token: str,
        payload: bytes,
        content_type: str,
        filename: str | None = None,
    ) -> str:
        """Upload raw media bytes and return the created MXC URI."""

        path = f"{MEDIA_API_PREFIX}/upload"
        if filename:
            path = f"{path}?{urlencode({'filename': filename})}"
        response = await self._request_bytes(
            operation="upload_media",
            method="POST",
            path=path,
            body=payload,
            content_type=content_type,
            access_token=access_token,
            timeout_seconds=None,
        )
        decoded = _decode_json_object(response.body_bytes, operation="upload_media")
        return _extract_str_field(response=decoded, field="content_uri", operation="upload_media")

    def mxc_to_http(self, mxc_url: str) -> str:
        """Resolve an MXC URI to its homeserver download URL."""

        server_name, media_id = _parse_mxc_url(mxc_url)
        return (
            f"{self._homeserver_url}{MEDIA_API_PREFIX}/download/"
            f"{quote(server_name, safe='')}/{quote(media_id, safe='')}"
        )

    async def _request_json(
        self,
        *,
        operation: str,
        method: str,
        path: str,
        payload: dict[str, object] | None,
        access_token: str | None,
        timeout_seconds: float | None = None,
    ) -> dict[str, Any]:
        body = (
            json.dumps(payload, ensure_ascii=False).encode("utf-8")
            if payload is not None
            else None
        )
        response = await self._request_bytes(
            operation=operation,
            method=method,
            path=path,
            body=body,
            content_type="application/json" if payload is not None else None,
            access_token=access_token,
            timeout_seconds=timeout_seconds,
        )
        return _decode_json_object(response.body_bytes, operation=operation)

    async def _request_bytes(
        self,
        *,
        operation: str,
        method: str,
        path: str,
        body: bytes | None,
        content_type: str | None,
        access_token: str | None,
        timeout_seconds: float | None,
    ) -> MatrixHttpResponse:
        headers: dict[str, str] = {}
        if access_token is not None:
            headers["Authorization"] = f"Bearer {access_token}"
        if content_type is not None:
            headers["Content-Type"] = content_type

        url = f"{self._homeserver_url}{path}"
        try:
            response = await self._transport.request(
                method=method,
                url=url,
                headers=headers,
                body=body,
                timeout_seconds=(
                    timeout_seconds if timeout_seconds is not None else self._timeout_seconds
                ),
            )
        except MatrixTransportError as error:
            raise MatrixTransportError(
                f"{operation} transport failure: {error}",
                operation=operation,
            ) from error
        except Exception as error:  # noqa: BLE001
            raise MatrixTransportError(
                f"{operation} transport failure",
                operation=operation,
            ) from error

        if response.status_code < 200 or response.status_code >= 300:
            errcode, error_message = _decode_error_payload(response.body_bytes)
            raise MatrixApiError(
                f"{operation} failed with status {response.status_code}: "
                f"{errcode or 'unknown'} {error_message}",
                operation=operation,
                status_code=response.status_code,
                errcode=errcode,
                error=error_message,
            )

        return response


def _decode_json_object(payload: bytes, *, operation: str) -> dict[str, Any]:
    try:
        decoded = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as error:
        raise MatrixAdapterError(
            f"{operation} returned invalid JSON payload",
            operation=operation,
        ) from error
    if not isinstance(decoded, dict):
        raise MatrixAdapterError(
            f"{operation} returned non-object JSON payload",
            operation=operation,
        )
    return decoded


def _extract_str_field(*, response: dict[str, Any], field: str, operation: str) -> str:
    value = response.get(field)
    if isinstance(value, str) and value:
        return value
    raise MatrixAdapterError(f"{operation} response missing {field}", operation=operation)


def _parse_mxc_url(mxc_url: str) -> tuple[str, str]:
    parsed = urlparse(mxc_url)
    if parsed.scheme != "mxc" or not parsed.netloc or not parsed.path:
        raise MatrixAdapterError(f"invalid mxc url: {mxc_url}", operation="mxc_to_http")
    media_id = parsed.path.lstrip("/")
    if not media_id:
        raise MatrixAdapterError(f"invalid mxc url: {mxc_url}", operation="mxc_to_http")
    return parsed.netloc, media_id


def _decode_error_payload(payload: bytes) -> tuple[str | None, str]:
    if not payload:
        return None, "empty response body"
    try:
        decoded_text = payload.decode("utf-8")
    except UnicodeDecodeError:
        return None, "<binary>"
    try:
        decoded = json.loads(decoded_text)
    except json.JSONDecodeError:
        return None, decoded_text[:200]
    if not isinstance(decoded, dict):
        return None, decoded_text[:200]
    errcode = decoded.get("errcode")
    error = decoded.get("error")
    return (
        errcode if isinstance(errcode, str) else None,
        error[:200] if isinstance(error, str) else decoded_text[:200],
    )
