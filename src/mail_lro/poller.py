# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Blocking operation poller.

Drives one send job from submission to a terminal status:

* :meth:`OperationPoller.submit` validates the job and issues it;
* :meth:`OperationPoller.poll_once` performs exactly one status read;
* :meth:`OperationPoller.await_completion` repeats reads until the
  operation is terminal or the timeout elapses, parking the calling thread
  between reads.

A timeout is not an error: the outcome carries the last snapshot with
``timed_out=True`` and the caller decides what to do. To keep waiting,
call :meth:`~OperationPoller.await_completion` again with the same handle.

The poller remembers the last snapshot of every handle it has read. An
operation that moves backwards (for example ``SUCCEEDED`` followed by
``IN_PROGRESS``) raises :class:`~mail_lro.errors.InconsistentStatusError`
instead of being polled forever.

Example:
    Sending and waiting::

        with EmailTransport(config.provider) as transport:
            poller = OperationPoller(transport, config.polling)
            handle = poller.submit(message)
            outcome = poller.await_completion(handle)
            if outcome.timed_out:
                ...
"""

from __future__ import annotations

import threading
import time
from collections.abc import Mapping
from typing import Any, Callable, Protocol

from .config import PollingConfig
from .errors import HttpResponseError, InconsistentStatusError, SubmissionError, ThrottledError
from .logger import get_logger
from .models import EmailMessage, OperationHandle, OperationSnapshot, PollOutcome, ProviderStatus
from .status import is_regression

logger = get_logger("poller")

SnapshotCallback = Callable[[OperationSnapshot], None]


class SendTransport(Protocol):
    """What the blocking poller needs from a transport."""

    def begin_send(self, message: EmailMessage) -> OperationHandle: ...

    def poll(self, handle: OperationHandle) -> ProviderStatus: ...


class PollerBase:
    """State and checks shared by the blocking and non-blocking pollers."""

    def __init__(self, polling: PollingConfig | None = None):
        self.polling = polling or PollingConfig()
        self._last_seen: dict[str, OperationSnapshot] = {}

    def _timing(self, poll_interval: float | None, timeout: float | None) -> tuple[float, float]:
        interval = self.polling.interval if poll_interval is None else poll_interval
        limit = self.polling.timeout if timeout is None else timeout
        if interval < 0:
            raise ValueError(f"poll_interval must be >= 0, got {interval}")
        if limit < 0:
            raise ValueError(f"timeout must be >= 0, got {limit}")
        return interval, limit

    def _submission_error(self, exc: HttpResponseError) -> SubmissionError:
        logger.error("Provider rejected send request: %s", exc)
        return SubmissionError.from_http(exc)

    def _record(self, handle: OperationHandle, read: ProviderStatus) -> OperationSnapshot:
        """Turn a transport read into a snapshot and check its progression."""
        snapshot = OperationSnapshot.from_provider(handle, read)
        previous = self._last_seen.get(handle.id)
        if previous is not None and is_regression(previous.lifecycle, snapshot.lifecycle):
            raise InconsistentStatusError(
                f"Operation {handle.id} moved from {previous.generic_status} to {snapshot.generic_status}",
                operation_id=handle.id,
            )
        self._last_seen[handle.id] = snapshot
        logger.debug("Operation %s: %s / %s", handle.id, snapshot.generic_status, snapshot.domain_status)
        return snapshot

    def last_snapshot(self, handle: OperationHandle) -> OperationSnapshot | None:
        """Return the most recent snapshot read for ``handle``."""
        return self._last_seen.get(handle.id)

    def release(self, handle: OperationHandle) -> None:
        """Forget the polling history of ``handle``."""
        self._last_seen.pop(handle.id, None)

    @staticmethod
    def _log_outcome(handle: OperationHandle, outcome: PollOutcome) -> None:
        if outcome.timed_out:
            logger.warning(
                "Operation %s not terminal after %.1fs (%d polls); it may still complete server-side",
                handle.id, outcome.elapsed, outcome.polls,
            )
        elif outcome.cancelled:
            logger.info("Polling of operation %s stopped after %d polls", handle.id, outcome.polls)
        elif outcome.snapshot is not None:
            logger.info(
                "Operation %s finished with %s after %d polls",
                handle.id, outcome.snapshot.generic_status, outcome.polls,
            )


class OperationPoller(PollerBase):
    """Blocking discipline: the calling thread is parked between reads.

    Attributes:
        transport: Transport used for submissions and status reads.
        polling: Default interval and timeout.
    """

    def __init__(
        self,
        transport: SendTransport,
        polling: PollingConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(polling)
        self.transport = transport
        self._clock = clock
        self._stops: dict[str, threading.Event] = {}

    def submit(self, job: EmailMessage | Mapping[str, Any]) -> OperationHandle:
        """Validate a job and issue it to the provider.

        Args:
            job: Message, or mapping of message fields.

        Returns:
            Handle of the accepted operation.

        Raises:
            ValidationError: If a required field is empty; no request is made.
            SubmissionError: If the provider rejects the request.
            ThrottledError: If the transport fails fast on HTTP 429.
        """
        message = EmailMessage.coerce(job)
        try:
            handle = self.transport.begin_send(message)
        except ThrottledError:
            raise
        except HttpResponseError as exc:
            raise self._submission_error(exc) from exc
        logger.info("Send to %s accepted as operation %s", ", ".join(message.to), handle.id)
        return handle

    def poll_once(self, handle: OperationHandle) -> OperationSnapshot:
        """Read the operation status once, without waiting."""
        return self._record(handle, self.transport.poll(handle))

    def await_completion(
        self,
        handle: OperationHandle,
        poll_interval: float | None = None,
        timeout: float | None = None,
        on_snapshot: SnapshotCallback | None = None,
    ) -> PollOutcome:
        """Poll until the operation is terminal or ``timeout`` elapses.

        Args:
            handle: Operation to poll.
            poll_interval: Seconds between reads; defaults to the config.
            timeout: Seconds before giving up; defaults to the config.
            on_snapshot: Called with every snapshot as it is read.

        Returns:
            PollOutcome with the last snapshot. ``timed_out`` is set if the
            deadline passed first, ``cancelled`` if :meth:`cancel` stopped
            this handle.
        """
        interval, limit = self._timing(poll_interval, timeout)
        stop = self._stops[handle.id] = threading.Event()
        try:
            outcome = self._wait(handle, interval, limit, on_snapshot, stop)
        finally:
            if self._stops.get(handle.id) is stop:
                del self._stops[handle.id]
        self._log_outcome(handle, outcome)
        return outcome

    def _wait(
        self,
        handle: OperationHandle,
        interval: float,
        limit: float,
        on_snapshot: SnapshotCallback | None,
        stop: threading.Event,
    ) -> PollOutcome:
        started = self._clock()
        deadline = started + limit
        polls = 0
        while True:
            snapshot = self.poll_once(handle)
            polls += 1
            if on_snapshot is not None:
                on_snapshot(snapshot)
            if snapshot.is_terminal:
                outcome = PollOutcome(snapshot, polls=polls, elapsed=self._clock() - started)
                break
            remaining = deadline - self._clock()
            if remaining <= 0:
                outcome = PollOutcome(snapshot, timed_out=True, polls=polls, elapsed=self._clock() - started)
                break
            if stop.wait(min(interval, remaining)):
                outcome = PollOutcome(snapshot, cancelled=True, polls=polls, elapsed=self._clock() - started)
                break
        return outcome

    def cancel(self, handle: OperationHandle | None = None) -> None:
        """Wake the parked :meth:`await_completion` of ``handle`` and make it return.

        Without a handle every wait in progress on this poller is stopped.
        """
        if handle is None:
            stops = list(self._stops.values())
        else:
            stops = [self._stops[handle.id]] if handle.id in self._stops else []
        for stop in stops:
            stop.set()


__all__ = ["OperationPoller", "PollerBase", "SendTransport", "SnapshotCallback"]
