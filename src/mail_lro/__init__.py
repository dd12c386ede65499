# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Send mail as a long-running operation and follow it to completion.

Features:
    - One status lifecycle behind the generic and mail-specific vocabularies
    - Blocking poller that parks the caller between status reads
    - Reactive subscriptions polled by a dedicated asyncio task
    - Fail-fast rate-limit probe that locates the first HTTP 429
    - HMAC-signed REST transport over httpx (blocking) and aiohttp (asyncio)

Example::

    from mail_lro import EmailTransport, OperationPoller, load_config

    config = load_config()
    with EmailTransport(config.provider) as transport:
        poller = OperationPoller(transport, config.polling)
        handle = poller.submit({
            "sender": config.provider.sender_address,
            "to": "someone@example.com",
            "subject": "Hello",
            "plain_text": "Hello from mail-lro",
        })
        outcome = poller.await_completion(handle)
"""

from .async_poller import AsyncOperationPoller, OperationSubscription, TimeoutPolicy
from .async_transport import AsyncEmailTransport
from .config import AppConfig, PollingConfig, ProbeConfig, ProviderConfig, load_config
from .errors import (
    ConfigurationError,
    HttpResponseError,
    InconsistentStatusError,
    MailLroError,
    ProviderProtocolError,
    SubmissionError,
    ThrottledError,
    TransportError,
    ValidationError,
)
from .models import (
    EmailMessage,
    OperationHandle,
    OperationSnapshot,
    PollOutcome,
    ProbeOutcome,
    ProbeReport,
    ProbeResult,
    ProviderStatus,
)
from .poller import OperationPoller
from .probe import RateLimitProbe
from .retry import NoRetryOn429Policy, RetryPolicy
from .status import DomainSendStatus, GenericLroStatus, Lifecycle, is_terminal, reconcile
from .transport import EmailTransport

__version__ = "0.1.0"

__all__ = [
    "AppConfig",
    "AsyncEmailTransport",
    "AsyncOperationPoller",
    "ConfigurationError",
    "DomainSendStatus",
    "EmailMessage",
    "EmailTransport",
    "GenericLroStatus",
    "HttpResponseError",
    "InconsistentStatusError",
    "Lifecycle",
    "MailLroError",
    "NoRetryOn429Policy",
    "OperationHandle",
    "OperationPoller",
    "OperationSnapshot",
    "OperationSubscription",
    "PollOutcome",
    "PollingConfig",
    "ProbeConfig",
    "ProbeOutcome",
    "ProbeReport",
    "ProbeResult",
    "ProviderConfig",
    "ProviderProtocolError",
    "ProviderStatus",
    "RateLimitProbe",
    "RetryPolicy",
    "SubmissionError",
    "ThrottledError",
    "TimeoutPolicy",
    "TransportError",
    "ValidationError",
    "is_terminal",
    "load_config",
    "reconcile",
]
