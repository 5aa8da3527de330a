"""HTTP client for the meeting backend."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from typing import Any

import aiohttp
from yarl import URL

from .const import DEFAULT_REQUEST_TIMEOUT, DEFAULT_STREAM_CONNECT_TIMEOUT
from .utils.logging import warn_once

_LOGGER = logging.getLogger(__name__)

NETWORK_ERROR = "NETWORK_ERROR"
UNKNOWN_ERROR = "UNKNOWN_ERROR"


class ApiError(RuntimeError):
    """Raised when the backend rejects a request or cannot be reached."""

    def __init__(
        self,
        message: str,
        *,
        status: int = 0,
        code: str = UNKNOWN_ERROR,
        details: Any = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.code = code
        self.message = message
        self.details = details

    @classmethod
    def from_response(cls, status: int, payload: Any) -> ApiError:
        """Build an error from the ``{"error": {...}}`` envelope, when present."""

        envelope = payload.get("error") if isinstance(payload, Mapping) else None
        if isinstance(envelope, Mapping):
            return cls(
                str(envelope.get("message") or f"Request failed with status {status}"),
                status=status,
                code=str(envelope.get("code") or UNKNOWN_ERROR),
                details=envelope.get("details"),
            )
        return cls(f"Request failed with status {status}", status=status)

    @property
    def is_network_error(self) -> bool:
        return self.code == NETWORK_ERROR


class MeetingApiClient:
    """Thin wrapper around the backend's REST and streaming endpoints."""

    def __init__(
        self,
        base_url: str,
        session: aiohttp.ClientSession | None = None,
        *,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        stream_connect_timeout: float = DEFAULT_STREAM_CONNECT_TIMEOUT,
    ) -> None:
        self._base_url = URL(base_url.rstrip("/"))
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=request_timeout)
        self._stream_timeout = aiohttp.ClientTimeout(total=None, sock_connect=stream_connect_timeout)

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def async_close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        if self._owns_session:
            self._session = None

    # ------------------------------------------------------------------
    def _url(self, *parts: str) -> URL:
        url = self._base_url / "api"
        for part in parts:
            url = url / str(part)
        return url

    @staticmethod
    def _headers(token: str | None, **extra: str) -> dict[str, str]:
        headers = {"Accept": "application/json", **extra}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def _request(
        self,
        method: str,
        url: URL,
        *,
        token: str | None = None,
        json: Mapping[str, Any] | None = None,
    ) -> Any:
        extra = {"Content-Type": "application/json"} if json is not None else {}
        try:
            async with self.session.request(
                method,
                url,
                headers=self._headers(token, **extra),
                json=json,
                timeout=self._timeout,
            ) as resp:
                try:
                    data = await resp.json(content_type=None)
                except ValueError:
                    data = None
                if resp.status >= 400:
                    raise ApiError.from_response(resp.status, data)
                return data
        except (aiohttp.ClientError, TimeoutError) as err:
            warn_once(_LOGGER, "network_error", f"{method} {url.path} failed: {err}")
            raise ApiError(f"Network error: {err}", status=0, code=NETWORK_ERROR) from err

    # ------------------------------------------------------------------
    async def async_cast_vote(
        self,
        document_id: str,
        participant_id: str,
        venue_id: str,
        venue_data: Mapping[str, Any],
        *,
        token: str,
    ) -> Any:
        url = self._url("events", document_id, "participants", participant_id, "votes")
        body = {"venueId": venue_id, "venueData": dict(venue_data)}
        return await self._request("POST", url, token=token, json=body)

    async def async_remove_vote(
        self,
        document_id: str,
        participant_id: str,
        venue_id: str,
        *,
        token: str,
    ) -> Any:
        url = self._url("events", document_id, "participants", participant_id, "votes", venue_id)
        return await self._request("DELETE", url, token=token)

    async def async_get_statistics(self, document_id: str, *, token: str | None = None) -> dict[str, Any]:
        data = await self._request("GET", self._url("events", document_id, "votes"), token=token)
        return data if isinstance(data, dict) else {}

    async def async_get_venue(self, venue_id: str, *, token: str | None = None) -> dict[str, Any]:
        data = await self._request("GET", self._url("venues", venue_id), token=token)
        if not isinstance(data, dict):
            raise ApiError(f"venue {venue_id} response is not an object", status=200)
        return data

    async def async_get_document(self, document_id: str, *, token: str | None = None) -> dict[str, Any]:
        data = await self._request("GET", self._url("events", document_id), token=token)
        if not isinstance(data, dict):
            raise ApiError(f"event {document_id} response is not an object", status=200)
        return data

    # ------------------------------------------------------------------
    @asynccontextmanager
    async def open_stream(
        self,
        document_id: str,
        token: str,
        *,
        last_event_id: str | None = None,
    ) -> AsyncIterator[aiohttp.ClientResponse]:
        """Open the push stream for *document_id* and yield the live response."""

        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "text/event-stream",
            "Cache-Control": "no-cache",
        }
        if last_event_id:
            headers["Last-Event-ID"] = last_event_id
        url = self._url("events", document_id, "stream")
        async with self.session.get(url, headers=headers, timeout=self._stream_timeout) as resp:
            if resp.status >= 400:
                try:
                    data = await resp.json(content_type=None)
                except ValueError:
                    data = None
                raise ApiError.from_response(resp.status, data)
            yield resp
