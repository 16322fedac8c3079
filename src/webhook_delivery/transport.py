"""HTTP transport used to send webhook requests."""
from __future__ import annotations

import asyncio
import socket
from typing import Mapping, Protocol

import aiohttp
from aiohttp import ClientSession, ClientTimeout

from webhook_delivery.core.exceptions import TransportError
from webhook_delivery.domain.enums import TransportErrorKind
from webhook_delivery.domain.webhooks import TransportResponse
from webhook_delivery.settings import settings


class Transport(Protocol):
    async def send(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str],
        body: bytes,
    ) -> TransportResponse:
        """Issue one request. Raise :class:`TransportError` on network failure."""
        ...


def classify_client_error(exc: BaseException) -> TransportErrorKind:
    if isinstance(exc, (asyncio.TimeoutError, aiohttp.ServerTimeoutError)):
        return TransportErrorKind.TIMEOUT
    if isinstance(exc, aiohttp.ClientConnectorError):
        if isinstance(exc.os_error, socket.gaierror):
            return TransportErrorKind.DNS
        return TransportErrorKind.CONNECTION
    if isinstance(exc, (aiohttp.ServerDisconnectedError, aiohttp.ClientOSError)):
        return TransportErrorKind.CONNECTION
    return TransportErrorKind.OTHER


class AiohttpTransport:
    """:class:`Transport` over a shared ``aiohttp.ClientSession``.

    Redirects are not followed; a 3xx is reported back as a response.
    """

    def __init__(self, session: ClientSession | None = None, *, timeout_s: float | None = None):
        self._timeout_s = timeout_s or settings.webhook_request_timeout_seconds
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "AiohttpTransport":
        self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _ensure_session(self) -> ClientSession:
        if self._session is None or self._session.closed:
            self._session = ClientSession(timeout=ClientTimeout(total=self._timeout_s))
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    async def send(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str],
        body: bytes,
    ) -> TransportResponse:
        session = self._ensure_session()
        try:
            async with session.request(
                method,
                url,
                data=body,
                headers=dict(headers),
                allow_redirects=False,
            ) as resp:
                text = await resp.text(errors="replace")
                return TransportResponse(status=resp.status, body=text)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise TransportError(classify_client_error(exc), str(exc) or type(exc).__name__) from exc
