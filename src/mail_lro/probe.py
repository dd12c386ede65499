# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Rate-limit probe: find the submission that first hits HTTP 429.

The probe issues a fixed-size burst of independent sends, one after the
other, through the submission step of the blocking poller only; no
operation is polled to completion. The transport underneath must use
:class:`~mail_lro.retry.NoRetryOn429Policy` so that throttling surfaces as
:class:`~mail_lro.errors.ThrottledError` on the exact call that triggered
it instead of being absorbed by retries.

* a throttled submission is recorded and ends the burst;
* any other failure is recorded and the burst continues;
* the :class:`~mail_lro.models.ProbeReport` exposes the first throttled
  sequence number and how many submissions were accepted before it.

Example:
    Running a 35-message burst::

        with RateLimitProbe.from_config(config) as probe:
            report = probe.run("someone@example.com", burst_size=35)
        report.first_throttled_index   # e.g. 31
"""

from __future__ import annotations

import time
from datetime import datetime
from typing import Any, Callable

import httpx

from .config import AppConfig
from .errors import MailLroError, ThrottledError
from .logger import get_logger
from .models import EmailMessage, ProbeOutcome, ProbeReport, ProbeResult
from .poller import OperationPoller
from .retry import NoRetryOn429Policy
from .transport import EmailTransport

logger = get_logger("probe")

ResultCallback = Callable[[ProbeResult], None]


class RateLimitProbe:
    """Sequential burst of submissions with retries disabled.

    Attributes:
        poller: Blocking poller whose ``submit`` is used for every item.
        sender: Sender address of the probe messages.
    """

    def __init__(
        self,
        poller: OperationPoller,
        sender: str,
        on_result: ResultCallback | None = None,
        clock: Callable[[], float] = time.perf_counter,
    ):
        """Initialize the probe.

        Args:
            poller: Poller built on a transport using ``NoRetryOn429Policy``.
            sender: Verified sender address.
            on_result: Called with every result as soon as it is recorded.
            clock: Monotonic clock used to time submissions.
        """
        self.poller = poller
        self.sender = sender
        self._on_result = on_result
        self._clock = clock
        policy = getattr(poller.transport, "retry_policy", None)
        if policy is not None and not isinstance(policy, NoRetryOn429Policy):
            logger.warning(
                "Probe transport uses %s; retries may hide where throttling starts",
                type(policy).__name__,
            )

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        on_result: ResultCallback | None = None,
        client: httpx.Client | None = None,
    ) -> RateLimitProbe:
        """Build a probe with its own fail-fast transport."""
        transport = EmailTransport(config.provider, retry_policy=NoRetryOn429Policy(), client=client)
        poller = OperationPoller(transport, config.polling)
        return cls(poller, config.provider.sender_address, on_result=on_result)

    def close(self) -> None:
        close = getattr(self.poller.transport, "close", None)
        if close is not None:
            close()

    def __enter__(self) -> RateLimitProbe:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def build_message(self, recipient: str, sequence_number: int, burst_size: int) -> EmailMessage:
        """Return the message for one position of the burst."""
        sent_at = datetime.now().isoformat(timespec="seconds")
        return EmailMessage.create(
            sender=self.sender,
            to=[recipient],
            subject=f"Rate limit probe #{sequence_number} / {burst_size}",
            plain_text=f"This is rate limit probe message #{sequence_number}.\nSent at: {sent_at}",
        )

    def run(self, recipient: str, burst_size: int = 35) -> ProbeReport:
        """Issue ``burst_size`` submissions and report where throttling began.

        Args:
            recipient: Recipient address of every probe message.
            burst_size: Number of submissions to issue.

        Returns:
            ProbeReport with one result per issued submission.

        Raises:
            ValidationError: If the recipient or sender is empty; nothing is sent.
            ValueError: If ``burst_size`` is not positive.
        """
        if burst_size < 1:
            raise ValueError(f"burst_size must be >= 1, got {burst_size}")
        # Fail before the first request if the job itself is invalid.
        self.build_message(recipient, 1, burst_size)

        report = ProbeReport(burst_size=burst_size)
        started = self._clock()
        logger.info("Starting rate limit probe: %d submissions to %s", burst_size, recipient)

        for sequence_number in range(1, burst_size + 1):
            call_started = self._clock()
            try:
                handle = self.poller.submit(self.build_message(recipient, sequence_number, burst_size))
            except ThrottledError as exc:
                exc.sequence_number = sequence_number
                self._record(report, ProbeResult(
                    sequence_number=sequence_number,
                    outcome=ProbeOutcome.THROTTLED,
                    elapsed=self._clock() - call_started,
                    http_status_code=exc.status_code,
                    error_detail=str(exc),
                    headers=dict(exc.headers),
                ))
                logger.warning(
                    "Throttled at submission %d of %d; %d accepted before it",
                    sequence_number, burst_size, report.accepted_before_throttling,
                )
                break
            except MailLroError as exc:
                self._record(report, ProbeResult(
                    sequence_number=sequence_number,
                    outcome=ProbeOutcome.OTHER_ERROR,
                    elapsed=self._clock() - call_started,
                    http_status_code=getattr(exc, "status_code", None),
                    error_detail=f"{type(exc).__name__}: {exc}",
                ))
            except Exception as exc:
                logger.exception("Unexpected error on submission %d", sequence_number)
                self._record(report, ProbeResult(
                    sequence_number=sequence_number,
                    outcome=ProbeOutcome.OTHER_ERROR,
                    elapsed=self._clock() - call_started,
                    error_detail=f"{type(exc).__name__}: {exc}",
                ))
            else:
                self._record(report, ProbeResult(
                    sequence_number=sequence_number,
                    outcome=ProbeOutcome.ACCEPTED,
                    elapsed=self._clock() - call_started,
                    operation_id=handle.id,
                ))

        report.elapsed = self._clock() - started
        logger.info(
            "Probe finished: %d accepted, %d failed in %.3fs", report.accepted, report.failed, report.elapsed
        )
        return report

    def _record(self, report: ProbeReport, result: ProbeResult) -> None:
        report.results.append(result)
        if self._on_result is not None:
            self._on_result(result)


__all__ = ["RateLimitProbe", "ResultCallback"]
