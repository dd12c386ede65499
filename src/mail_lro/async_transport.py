# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Non-blocking transport for the provider's email REST API.

Same calls and semantics as :class:`~mail_lro.transport.EmailTransport`,
issued through an ``aiohttp.ClientSession``. The session is created lazily
inside the running event loop and closed by :meth:`AsyncEmailTransport.close`
(or by leaving ``async with``).

Example:
    Submitting from a coroutine::

        async with AsyncEmailTransport(config.provider) as transport:
            handle = await transport.begin_send(message)
            status = await transport.poll(handle)
"""

from __future__ import annotations

import asyncio
from typing import Any

import aiohttp

from .config import ProviderConfig
from .errors import HttpResponseError, TransportError
from .logger import get_logger
from .models import EmailMessage, OperationHandle, ProviderStatus
from .retry import RetryPolicy
from .transport import EmailRestClient, decode_body, merge_headers

logger = get_logger("async_transport")


class AsyncEmailTransport(EmailRestClient):
    """Event-loop transport built on ``aiohttp``."""

    def __init__(
        self,
        provider: ProviderConfig,
        retry_policy: RetryPolicy | None = None,
        session: aiohttp.ClientSession | None = None,
    ):
        """Initialize the transport.

        Args:
            provider: Provider connection settings.
            retry_policy: Policy for failed requests.
            session: Preconfigured session; the transport creates and owns
                one if omitted.
        """
        super().__init__(provider, retry_policy)
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.provider.request_timeout)
            )
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> AsyncEmailTransport:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def begin_send(self, message: EmailMessage) -> OperationHandle:
        """Submit a message and return the handle of the new operation."""
        operation_id = self.new_operation_id()
        _, headers, payload = await self._request(
            "POST", self.send_url, message.to_payload(), extra_headers={"Operation-Id": operation_id}
        )
        handle = self.handle_from_response(operation_id, headers, payload)
        logger.debug("Send accepted, operation %s", handle.id)
        return handle

    async def poll(self, handle: OperationHandle) -> ProviderStatus:
        """Read the status monitor of an operation once."""
        _, _, payload = await self._request("GET", self.operation_url(handle))
        return self.parse_status(payload)

    async def _request(
        self,
        method: str,
        url: str,
        payload: dict[str, Any] | None = None,
        extra_headers: dict[str, str] | None = None,
    ) -> tuple[int, dict[str, str], Any]:
        session = self._get_session()
        attempt = 0
        while True:
            body, headers = self.prepare(method, url, payload, extra_headers)
            try:
                async with session.request(method, url, data=body, headers=headers) as response:
                    status = response.status
                    reason = response.reason or ""
                    response_headers = merge_headers(response.headers.items())
                    response_payload = decode_body(await response.read())
            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                if self.retry_policy.should_retry_exception(attempt, exc):
                    delay = self.retry_policy.calculate_delay(attempt)
                    logger.info("%s %s failed (%s), retrying in %.1fs", method, url, exc, delay)
                    await asyncio.sleep(delay)
                    attempt += 1
                    continue
                raise TransportError(f"{method} {url} failed: {exc!r}") from exc

            if 200 <= status < 300:
                return status, response_headers, response_payload

            if self.retry_policy.should_retry(attempt, status, response_headers, response_payload):
                delay = self.retry_policy.calculate_delay(attempt, response_headers)
                logger.info("%s %s returned %d, retrying in %.1fs", method, url, status, delay)
                await asyncio.sleep(delay)
                attempt += 1
                continue
            raise HttpResponseError.from_payload(status, response_headers, response_payload, reason=reason)


__all__ = ["AsyncEmailTransport"]
