"""Lifecycle of the push stream connection for one document."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from contextlib import suppress
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

import aiohttp

from .api import ApiError, MeetingApiClient
from .config import SyncConfig
from .frames import FrameParser, StreamFrame
from .utils.logging import redact_token

_LOGGER = logging.getLogger(__name__)

StateListener = Callable[["ConnectionState"], Awaitable[None] | None]


class ConnectionState(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class StreamError(RuntimeError):
    """Raised inside the read loop when the stream cannot continue."""

    def __init__(self, message: str, *, reason: str | None = None) -> None:
        super().__init__(message)
        self.reason = reason


class StreamConnectionManager:
    """Keep one push stream open, reconnecting with exponential backoff.

    Decoded frames are put on :attr:`frames` in arrival order. Transport
    failures never propagate to callers; they only show up as state changes.
    """

    def __init__(
        self,
        api: MeetingApiClient,
        config: SyncConfig,
        *,
        frames: asyncio.Queue[StreamFrame] | None = None,
        on_connect: Callable[[], Awaitable[Any] | None] | None = None,
    ) -> None:
        self._api = api
        self._config = config
        self.frames: asyncio.Queue[StreamFrame] = frames if frames is not None else asyncio.Queue()
        self._on_connect = on_connect
        self._state = ConnectionState.DISCONNECTED
        self._listeners: list[StateListener] = []
        self._task: asyncio.Task | None = None
        self._document_id: str | None = None
        self._token: str | None = None
        self.reconnect_attempts = 0
        self.scheduled_delays: list[float] = []
        self.last_event_id: str | None = None
        self.last_connected_at: datetime | None = None
        self.last_error: str | None = None
        self.gave_up = False
        self.online = True

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def document_id(self) -> str | None:
        return self._document_id

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def add_state_listener(self, listener: StateListener) -> Callable[[], None]:
        """Notify *listener* on every state transition; returns an unsubscribe callable."""

        if listener not in self._listeners:
            self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    # ------------------------------------------------------------------
    def connect(self, document_id: str, token: str) -> None:
        """Start the read loop unless one is already connecting or connected."""

        if self.running:
            if document_id != self._document_id:
                _LOGGER.warning(
                    "Stream already running for %s; disconnect before switching to %s",
                    self._document_id,
                    document_id,
                )
            return
        if document_id != self._document_id:
            self.last_event_id = None
        if self.gave_up:
            self.reconnect_attempts = 0
            self.gave_up = False
        self._document_id = document_id
        self._token = token
        _LOGGER.info("Connecting push stream for %s (token %s)", document_id, redact_token(token))
        self._task = asyncio.get_running_loop().create_task(self._run(document_id, token))

    async def disconnect(self) -> None:
        """Abort the read loop and any pending reconnect timer."""

        await self._cancel_task()
        self.reconnect_attempts = 0
        self.gave_up = False
        await self._set_state(ConnectionState.DISCONNECTED)

    async def set_network_online(self, online: bool) -> None:
        """React to host connectivity changes."""

        self.online = online
        if not online:
            _LOGGER.info("Network offline; closing push stream")
            await self.disconnect()
            return
        if self._document_id is None or self._token is None:
            return
        if self.running and self._state is ConnectionState.CONNECTED:
            return
        _LOGGER.info("Network online; reconnecting push stream")
        await self._cancel_task()
        self.reconnect_attempts = 0
        self.gave_up = False
        self.connect(self._document_id, self._token)

    async def _cancel_task(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task

    # ------------------------------------------------------------------
    async def _run(self, document_id: str, token: str) -> None:
        while True:
            await self._set_state(ConnectionState.CONNECTING)
            try:
                await self._read_stream(document_id, token)
            except asyncio.CancelledError:
                raise
            except (ApiError, StreamError, aiohttp.ClientError, TimeoutError) as err:
                self.last_error = str(err)
            except Exception as err:
                _LOGGER.exception("Unexpected push stream error: %s", err)
                self.last_error = str(err)

            await self._set_state(ConnectionState.ERROR)
            if self.reconnect_attempts >= self._config.max_reconnect_attempts:
                _LOGGER.error(
                    "Giving up on push stream for %s after %s attempts",
                    document_id,
                    self.reconnect_attempts,
                )
                self.gave_up = True
                return
            delay = self._config.backoff_delay(self.reconnect_attempts)
            self.reconnect_attempts += 1
            self.scheduled_delays.append(delay)
            _LOGGER.warning(
                "Push stream for %s lost (%s); reconnecting in %.1fs (attempt %s/%s)",
                document_id,
                self.last_error,
                delay,
                self.reconnect_attempts,
                self._config.max_reconnect_attempts,
            )
            await asyncio.sleep(delay)

    async def _read_stream(self, document_id: str, token: str) -> None:
        parser = FrameParser()
        parser.last_event_id = self.last_event_id
        idle_timeout = self._config.stream_idle_timeout
        async with self._api.open_stream(document_id, token, last_event_id=self.last_event_id) as resp:
            self.reconnect_attempts = 0
            self.last_error = None
            self.last_connected_at = datetime.now(tz=UTC)
            await self._set_state(ConnectionState.CONNECTED)
            await self._notify_connect()
            # any chunk, heartbeat comments included, re-arms the idle timer
            chunks = aiter(resp.content.iter_any())
            while True:
                try:
                    async with asyncio.timeout(idle_timeout):
                        chunk = await anext(chunks)
                except StopAsyncIteration:
                    break
                except TimeoutError as err:
                    raise StreamError(f"push stream idle for {idle_timeout}s", reason="idle_timeout") from err
                await self._publish(parser, parser.feed(chunk))
            await self._publish(parser, parser.flush())
        raise StreamError("push stream closed by server", reason="eof")

    async def _publish(self, parser: FrameParser, frames: list[StreamFrame]) -> None:
        self.last_event_id = parser.last_event_id
        for frame in frames:
            _LOGGER.debug("Received %s frame (id=%s)", frame.event_type or "untyped", frame.event_id)
            await self.frames.put(frame)

    async def _notify_connect(self) -> None:
        if self._on_connect is None:
            return
        try:
            result = self._on_connect()
            if asyncio.iscoroutine(result):
                await result
        except Exception as err:  # pragma: no cover
            _LOGGER.debug("Connect callback raised error: %s", err, exc_info=True)

    async def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        _LOGGER.info("Push stream %s -> %s", self._state.value, state.value)
        self._state = state
        for listener in list(self._listeners):
            try:
                result = listener(state)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as err:  # pragma: no cover
                _LOGGER.debug("State listener raised error: %s", err, exc_info=True)
