# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Blocking transport for the provider's email REST API.

The transport knows two calls:

* ``POST {endpoint}/emails:send`` - accepted with ``202`` and an operation
  identifier (``begin_send``);
* ``GET {endpoint}/emails/operations/{id}`` - the status monitor of one
  operation (``poll``).

Request construction, signing and payload parsing live in
:class:`EmailRestClient` and are shared with
:class:`~mail_lro.async_transport.AsyncEmailTransport`. Every non-2xx
response and network failure goes through the configured
:class:`~mail_lro.retry.RetryPolicy`.

Example:
    Submitting and reading a job::

        with EmailTransport(config.provider) as transport:
            handle = transport.begin_send(message)
            status = transport.poll(handle)
"""

from __future__ import annotations

import json
import time
import uuid
from collections.abc import Iterable
from typing import Any, Callable
from urllib.parse import quote

import httpx

from .auth import HmacCredential
from .config import ProviderConfig
from .errors import HttpResponseError, ProviderProtocolError, TransportError
from .logger import get_logger
from .models import EmailMessage, OperationHandle, ProviderStatus
from .retry import RetryPolicy, header_value
from .status import DomainSendStatus, GenericLroStatus

logger = get_logger("transport")

USER_AGENT = "mail-lro/0.1"


def merge_headers(items: Iterable[tuple[str, str]]) -> dict[str, str]:
    """Collapse response headers into a dict, keeping the provider's casing.

    Repeated headers are joined with ``", "``.
    """
    merged: dict[str, str] = {}
    for name, value in items:
        if name in merged:
            merged[name] = f"{merged[name]}, {value}"
        else:
            merged[name] = value
    return merged


def decode_body(content: bytes) -> Any:
    """Decode a JSON body, returning None when it is empty or not JSON."""
    if not content:
        return None
    try:
        return json.loads(content)
    except ValueError:
        return None


class EmailRestClient:
    """Request building and response parsing shared by both transports.

    Attributes:
        provider: Provider connection settings.
        retry_policy: Policy consulted for failed requests.
    """

    def __init__(self, provider: ProviderConfig, retry_policy: RetryPolicy | None = None):
        self.provider = provider
        self.retry_policy = retry_policy or RetryPolicy()
        self._credential = HmacCredential(provider.access_key)

    @property
    def send_url(self) -> str:
        return f"{self.provider.endpoint}/emails:send?api-version={self.provider.api_version}"

    def operation_url(self, handle: OperationHandle) -> str:
        operation_id = quote(handle.id, safe="")
        return f"{self.provider.endpoint}/emails/operations/{operation_id}?api-version={self.provider.api_version}"

    def prepare(
        self,
        method: str,
        url: str,
        payload: dict[str, Any] | None = None,
        extra_headers: dict[str, str] | None = None,
    ) -> tuple[bytes, dict[str, str]]:
        """Serialize the body and build signed headers for one attempt.

        Called again for every retry so the signature date stays fresh.
        """
        body = b"" if payload is None else json.dumps(payload, separators=(",", ":")).encode("utf-8")
        headers = {"Accept": "application/json", "User-Agent": USER_AGENT}
        if payload is not None:
            headers["Content-Type"] = "application/json"
        if extra_headers:
            headers.update(extra_headers)
        headers.update(self._credential.sign(method, url, body))
        return body, headers

    @staticmethod
    def new_operation_id() -> str:
        return str(uuid.uuid4())

    @staticmethod
    def handle_from_response(
        requested_id: str,
        headers: dict[str, str],
        payload: Any,
    ) -> OperationHandle:
        """Extract the operation handle from an accepted send response."""
        location = header_value(headers, "Operation-Location")
        operation_id = payload.get("id") if isinstance(payload, dict) else None
        if not operation_id and location:
            operation_id = location.split("?", 1)[0].rstrip("/").rsplit("/", 1)[-1]
        return OperationHandle(id=operation_id or requested_id, operation_location=location)

    @staticmethod
    def parse_status(payload: Any) -> ProviderStatus:
        """Interpret a status monitor body.

        The body doubles as the send result: the long-running operation
        status and the send status are both read from it, each through its
        own vocabulary. The send status is only present once the provider
        has assigned an operation id.

        Raises:
            ProviderProtocolError: If the body is not a status document.
        """
        if not isinstance(payload, dict) or not payload.get("status"):
            raise ProviderProtocolError(f"Status response without a status field: {payload!r}")
        raw_status = payload["status"]
        generic = GenericLroStatus.from_wire(raw_status)
        domain = DomainSendStatus.from_wire(raw_status) if payload.get("id") else None
        error = payload.get("error") or {}
        if not isinstance(error, dict):
            error = {"message": str(error)}
        return ProviderStatus(
            operation_id=payload.get("id") or "",
            generic_status=generic,
            domain_status=domain,
            error_code=error.get("code"),
            error_message=error.get("message"),
        )


class EmailTransport(EmailRestClient):
    """Blocking transport built on ``httpx.Client``.

    The underlying client is safe for sequential reuse; one transport serves
    a whole run.
    """

    def __init__(
        self,
        provider: ProviderConfig,
        retry_policy: RetryPolicy | None = None,
        client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize the transport.

        Args:
            provider: Provider connection settings.
            retry_policy: Policy for failed requests; defaults to
                :class:`~mail_lro.retry.RetryPolicy`.
            client: Preconfigured ``httpx.Client``; the transport creates and
                owns one if omitted.
            sleep: Function used to wait between retries.
        """
        super().__init__(provider, retry_policy)
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=provider.request_timeout)
        self._sleep = sleep

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> EmailTransport:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def begin_send(self, message: EmailMessage) -> OperationHandle:
        """Submit a message and return the handle of the new operation.

        Raises:
            HttpResponseError: If the provider rejects the request.
            ThrottledError: If the retry policy fails fast on HTTP 429.
            TransportError: If the provider cannot be reached.
        """
        operation_id = self.new_operation_id()
        _, headers, payload = self._request(
            "POST", self.send_url, message.to_payload(), extra_headers={"Operation-Id": operation_id}
        )
        handle = self.handle_from_response(operation_id, headers, payload)
        logger.debug("Send accepted, operation %s", handle.id)
        return handle

    def poll(self, handle: OperationHandle) -> ProviderStatus:
        """Read the status monitor of an operation once."""
        _, _, payload = self._request("GET", self.operation_url(handle))
        return self.parse_status(payload)

    def _request(
        self,
        method: str,
        url: str,
        payload: dict[str, Any] | None = None,
        extra_headers: dict[str, str] | None = None,
    ) -> tuple[int, dict[str, str], Any]:
        attempt = 0
        while True:
            body, headers = self.prepare(method, url, payload, extra_headers)
            try:
                response = self._client.request(method, url, content=body, headers=headers)
            except httpx.TransportError as exc:
                if self.retry_policy.should_retry_exception(attempt, exc):
                    delay = self.retry_policy.calculate_delay(attempt)
                    logger.info("%s %s failed (%s), retrying in %.1fs", method, url, exc, delay)
                    self._sleep(delay)
                    attempt += 1
                    continue
                raise TransportError(f"{method} {url} failed: {exc}") from exc

            response_headers = merge_headers(
                (name.decode("latin-1"), value.decode("latin-1")) for name, value in response.headers.raw
            )
            response_payload = decode_body(response.content)
            if response.is_success:
                return response.status_code, response_headers, response_payload

            if self.retry_policy.should_retry(attempt, response.status_code, response_headers, response_payload):
                delay = self.retry_policy.calculate_delay(attempt, response_headers)
                logger.info("%s %s returned %d, retrying in %.1fs", method, url, response.status_code, delay)
                self._sleep(delay)
                attempt += 1
                continue
            raise HttpResponseError.from_payload(
                response.status_code, response_headers, response_payload, reason=response.reason_phrase
            )


__all__ = [
    "EmailRestClient",
    "EmailTransport",
    "decode_body",
    "merge_headers",
]
