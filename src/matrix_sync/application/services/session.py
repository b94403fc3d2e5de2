"""Matrix session: credentials, transaction counter, known rooms and room actions."""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Any

from matrix_sync.application.errors import InvalidCredentialsError, NotAuthenticatedError
from matrix_sync.application.ports.session_state_repository_port import SessionStateRecord
from matrix_sync.domain.identity import DEFAULT_DOMAIN, normalize_user_id, server_name_of
from matrix_sync.domain.notifications import NotificationHub, NotificationKind
from matrix_sync.domain.room import Room
from matrix_sync.infrastructure.matrix.http_client import (
    MatrixApiError,
    MatrixHttpClient,
    MatrixHttpTransportPort,
)

_TRANSACTION_SEED_RANGE = 100_000
logger = logging.getLogger(__name__)


class Session:
    """Root object through which every Matrix request is issued."""

    def __init__(
        self,
        *,
        user_id: str,
        homeserver_url: str | None = None,
        default_domain: str = DEFAULT_DOMAIN,
        device_id: str | None = None,
        transport: MatrixHttpTransportPort | None = None,
        http_client: MatrixHttpClient | None = None,
        request_timeout_seconds: float = 30.0,
        rng: random.Random | None = None,
    ) -> None:
        self.user_id = normalize_user_id(user_id, default_domain=default_domain)
        self.server = server_name_of(self.user_id)
        self.client = http_client or MatrixHttpClient(
            homeserver_url=homeserver_url or f"https://{self.server}",
            transport=transport,
            timeout_seconds=request_timeout_seconds,
        )
        self.api_base_url = self.client.api_base_url
        self.device_id = device_id
        self.access_token: str | None = None
        self._transaction_counter = (rng or random.Random()).randrange(_TRANSACTION_SEED_RANGE)
        self.rooms: dict[str, Room] = {}
        self.invites: dict[str, list[dict[str, Any]]] = {}
        self.presence: dict[str, dict[str, Any]] = {}
        self.account_data: dict[str, dict[str, Any]] = {}
        self.next_batch: str | None = None
        self.initial_sync = False
        self.backoff_seconds = 0.0
        self.disconnect = False
        self.pending_polls: list[asyncio.Task[Any]] = []
        self.notifications = NotificationHub()

    def __repr__(self) -> str:
        return f"Session(user_id={self.user_id!r}, authenticated={self.is_authenticated})"

    @property
    def is_authenticated(self) -> bool:
        return self.access_token is not None

    @property
    def transaction_counter(self) -> int:
        return self._transaction_counter

    def next_transaction_id(self) -> int:
        """Allocate the next transaction id.

        The increment never awaits, so concurrent sends on the event loop
        always receive distinct, strictly increasing ids.
        """

        self._transaction_counter += 1
        return self._transaction_counter

    def require_access_token(self) -> str:
        """Return the access token or raise NotAuthenticatedError."""

        if self.access_token is None:
            raise NotAuthenticatedError(
                f"session {self.user_id} has no access token; login first"
            )
        return self.access_token

    def get_room(self, room_id: str) -> Room | None:
        return self.rooms.get(room_id)

    def get_or_create_room(self, room_id: str) -> Room:
        room = self.rooms.get(room_id)
        if room is None:
            room = Room(room_id, session=self)
            self.rooms[room_id] = room
            logger.info("room_created room_id=%s", room_id)
        return room

    def remove_room(self, room_id: str) -> Room | None:
        room = self.rooms.pop(room_id, None)
        if room is not None:
            logger.info("room_removed room_id=%s", room_id)
        return room

    async def login(self, password: str, *, device_display_name: str | None = None) -> None:
        """Exchange the password for an access token.

        HTTP 403 raises InvalidCredentialsError; other failures propagate unchanged.
        Never retried.
        """

        try:
            response = await self.client.login(
                user_id=self.user_id,
                password=password,
                device_id=self.device_id,
                device_display_name=device_display_name,
            )
        except MatrixApiError as error:
            if error.status_code == 403:
                logger.warning("login_invalid_credentials user_id=%s", self.user_id)
                raise InvalidCredentialsError(
                    f"invalid credentials for {self.user_id}",
                    operation=error.operation,
                    status_code=error.status_code,
                    errcode=error.errcode,
                    error=error.error,
                ) from error
            logger.error(
                "login_failed user_id=%s status_code=%s errcode=%s",
                self.user_id,
                error.status_code,
                error.errcode,
            )
            raise

        access_token = response.get("access_token")
        if not isinstance(access_token, str) or not access_token:
            raise MatrixApiError(
                "login response missing access_token",
                operation="login",
                status_code=200,
            )
        device_id = response.get("device_id")
        self.access_token = access_token
        self.device_id = device_id if isinstance(device_id, str) else self.device_id
        self.initial_sync = True
        logger.info("login_succeeded user_id=%s device_id=%s", self.user_id, self.device_id)
        self.notifications.emit(
            NotificationKind.LOGIN_COMPLETE,
            user_id=self.user_id,
            device_id=self.device_id,
        )

    async def logout(self) -> None:
        """Invalidate the access token and clear local credentials."""

        await self.client.logout(access_token=self.require_access_token())
        self.access_token = None
        self.device_id = None
        logger.info("logout_succeeded user_id=%s", self.user_id)

    async def create_room(
        self,
        *,
        name: str | None = None,
        topic: str | None = None,
        alias_localpart: str | None = None,
        invite: list[str] | None = None,
        is_public: bool = False,
    ) -> Room:
        """Create a room server-side and track it locally."""

        room_id = await self.client.create_room(
            access_token=self.require_access_token(),
            name=name,
            topic=topic,
            alias_localpart=alias_localpart,
            invite=invite,
            is_public=is_public,
        )
        room = self.get_or_create_room(room_id)
        if name is not None:
            room.name = name
        if topic is not None:
            room.topic = topic
        return room

    async def join_room(self, room_id_or_alias: str) -> Room:
        room_id = await self.client.join_room(
            access_token=self.require_access_token(),
            room_id_or_alias=room_id_or_alias,
        )
        self.invites.pop(room_id, None)
        return self.get_or_create_room(room_id)

    async def leave_room(self, room_id: str) -> None:
        """Leave a room and drop it from the known rooms."""

        await self.client.leave_room(access_token=self.require_access_token(), room_id=room_id)
        self.invites.pop(room_id, None)
        if self.remove_room(room_id) is not None:
            self.notifications.emit(NotificationKind.ROOM_LEFT, room_id=room_id)

    async def forget_room(self, room_id: str) -> None:
        await self.client.forget_room(access_token=self.require_access_token(), room_id=room_id)

    async def set_typing(self, room: Room, *, typing: bool = True, timeout_ms: int = 30_000) -> None:
        await self.client.set_typing(
            access_token=self.require_access_token(),
            room_id=room.room_id,
            user_id=self.user_id,
            typing=typing,
            timeout_ms=timeout_ms,
        )

    async def mark_read(self, room: Room) -> bool:
        """Advance read markers to the room's most recent event; False when none is known."""

        if room.last_event_id is None:
            return False
        await self.client.set_read_markers(
            access_token=self.require_access_token(),
            room_id=room.room_id,
            event_id=room.last_event_id,
        )
        return True

    async def upload_media(
        self,
        payload: bytes,
        *,
        content_type: str,
        filename: str | None = None,
    ) -> str:
        return await self.client.upload_media(
            access_token=self.require_access_token(),
            payload=payload,
            content_type=content_type,
            filename=filename,
        )

    def mxc_to_http(self, mxc_url: str) -> str:
        return self.client.mxc_to_http(mxc_url)

    def snapshot(self) -> SessionStateRecord:
        """Export credentials and cursor for a persistence collaborator."""

        return SessionStateRecord(
            user_id=self.user_id,
            device_id=self.device_id,
            access_token=self.access_token,
            next_batch=self.next_batch,
            transaction_counter=self._transaction_counter,
        )

    def restore(self, record: SessionStateRecord) -> None:
        """Import persisted state; the transaction counter never moves backwards."""

        if record.user_id != self.user_id:
            raise ValueError(
                f"state belongs to {record.user_id}, not {self.user_id}"
            )
        self.device_id = record.device_id
        self.access_token = record.access_token
        self.next_batch = record.next_batch
        self._transaction_counter = max(self._transaction_counter, record.transaction_counter)
        logger.info(
            "session_restored user_id=%s has_token=%s has_cursor=%s",
            self.user_id,
            record.access_token is not None,
            record.next_batch is not None,
        )
