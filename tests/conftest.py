# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Shared fixtures: configs, messages and scripted in-memory transports."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from mail_lro.config import AppConfig, PollingConfig, ProviderConfig
from mail_lro.models import EmailMessage, OperationHandle, ProviderStatus
from mail_lro.status import DomainSendStatus, GenericLroStatus

# base64("secret-key")
ACCESS_KEY = "c2VjcmV0LWtleQ=="
ENDPOINT = "https://acs.example.test"
SENDER = "DoNotReply@example.azurecomm.net"


def make_read(
    status: str,
    operation_id: str = "op-1",
    with_domain: bool = True,
    error_code: str | None = None,
    error_message: str | None = None,
) -> ProviderStatus:
    """Build a provider read from a wire status such as ``"Running"``."""
    return ProviderStatus(
        operation_id=operation_id,
        generic_status=GenericLroStatus.from_wire(status),
        domain_status=DomainSendStatus.from_wire(status) if with_domain else None,
        error_code=error_code,
        error_message=error_message,
    )


class StubTransport:
    """Blocking transport replaying scripted reads.

    ``reads`` items are ProviderStatus values or exceptions to raise; the
    last item repeats once the script is exhausted. ``send_errors`` maps a
    1-based submission number to the exception it raises.
    """

    def __init__(self, reads: list[Any] | None = None, send_errors: dict[int, Exception] | None = None,
                 operation_id: str = "op-1"):
        self.reads = list(reads or [])
        self.send_errors = dict(send_errors or {})
        self.operation_id = operation_id
        self.sent: list[EmailMessage] = []
        self.polls = 0
        self.closed = False
        self.retry_policy = None

    def _next_read(self) -> ProviderStatus:
        self.polls += 1
        item = self.reads.pop(0) if len(self.reads) > 1 else self.reads[0]
        if isinstance(item, Exception):
            raise item
        return item

    def begin_send(self, message: EmailMessage) -> OperationHandle:
        self.sent.append(message)
        error = self.send_errors.get(len(self.sent))
        if error is not None:
            raise error
        if len(self.sent) == 1:
            return OperationHandle(self.operation_id)
        return OperationHandle(f"{self.operation_id}-{len(self.sent)}")

    def poll(self, handle: OperationHandle) -> ProviderStatus:
        return self._next_read()

    def close(self) -> None:
        self.closed = True

    def __enter__(self) -> StubTransport:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


class AsyncStubTransport(StubTransport):
    """Event-loop flavour of :class:`StubTransport`.

    ``hang`` makes every poll block until cancelled.
    """

    def __init__(self, *args: Any, hang: bool = False, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.hang = hang

    async def begin_send(self, message: EmailMessage) -> OperationHandle:
        return StubTransport.begin_send(self, message)

    async def poll(self, handle: OperationHandle) -> ProviderStatus:
        if self.hang:
            self.polls += 1
            await asyncio.Event().wait()
        await asyncio.sleep(0)
        return self._next_read()

    async def close(self) -> None:
        self.closed = True

    async def __aenter__(self) -> AsyncStubTransport:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()


@pytest.fixture
def read():
    """Factory for provider reads."""
    return make_read


@pytest.fixture
def stub_transport():
    """Factory for blocking scripted transports."""
    return StubTransport


@pytest.fixture
def async_stub_transport():
    """Factory for event-loop scripted transports."""
    return AsyncStubTransport


@pytest.fixture
def handle():
    return OperationHandle("op-1")


@pytest.fixture
def provider_config():
    return ProviderConfig(endpoint=ENDPOINT, access_key=ACCESS_KEY, sender_address=SENDER)


@pytest.fixture
def fast_polling():
    return PollingConfig(interval=0.0, timeout=5.0, wait_timeout=1.0, shutdown_grace=0.1)


@pytest.fixture
def app_config(provider_config, fast_polling):
    return AppConfig(provider=provider_config, polling=fast_polling)


@pytest.fixture
def message():
    return EmailMessage.create(
        sender=SENDER,
        to=["someone@example.com"],
        subject="Hello",
        plain_text="Hello there",
    )


@pytest.fixture
def acs_env():
    """Environment with the two required settings."""
    return {
        "ACS_CONNECTION_STRING": f"endpoint={ENDPOINT}/;accesskey={ACCESS_KEY}",
        "ACS_SENDER_ADDRESS": SENDER,
    }
