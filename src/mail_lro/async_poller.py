# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Non-blocking operation poller and cancellable status subscriptions.

:class:`AsyncOperationPoller` offers the same ``submit`` / ``poll_once`` /
``await_completion`` calls as the blocking poller, as coroutines.

:meth:`AsyncOperationPoller.subscribe` is the reactive discipline: polling
runs in its own ``asyncio.Task`` and every snapshot is published on an
:class:`OperationSubscription` stream as soon as it is read. The stream ends
exactly once, with a final :class:`~mail_lro.models.PollOutcome` or an
error. The caller never polls: it iterates the stream, or waits for its end
with an upper bound.

Example:
    Watching a send with a bounded wait::

        async with AsyncEmailTransport(config.provider) as transport:
            poller = AsyncOperationPoller(transport, config.polling)
            handle = await poller.submit(message)
            async with poller.subscribe(handle) as subscription:
                outcome = await subscription.wait(timeout=60)

    Leaving the ``async with`` block stops the polling task on every path:
    first gracefully, then by cancellation once the grace period expires.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Mapping
from enum import Enum
from typing import Any, Protocol

from .config import PollingConfig
from .errors import HttpResponseError, ThrottledError
from .logger import get_logger
from .models import EmailMessage, OperationHandle, OperationSnapshot, PollOutcome, ProviderStatus
from .poller import PollerBase, SnapshotCallback

logger = get_logger("async_poller")

_END = object()


class AsyncSendTransport(Protocol):
    """What the non-blocking poller needs from a transport."""

    async def begin_send(self, message: EmailMessage) -> OperationHandle: ...

    async def poll(self, handle: OperationHandle) -> ProviderStatus: ...


class TimeoutPolicy(str, Enum):
    """What happens to the polling task when a caller's wait times out.

    Attributes:
        ABANDON: Stop polling; the handle is dropped.
        KEEP_POLLING: Leave the task running until its own poll timeout so
            the final status can still be collected with
            :meth:`OperationSubscription.drain`.
    """

    ABANDON = "abandon"
    KEEP_POLLING = "keep_polling"


class AsyncOperationPoller(PollerBase):
    """Non-blocking poller running on the event loop."""

    def __init__(self, transport: AsyncSendTransport, polling: PollingConfig | None = None):
        super().__init__(polling)
        self.transport = transport

    async def submit(self, job: EmailMessage | Mapping[str, Any]) -> OperationHandle:
        """Validate a job and issue it to the provider.

        Raises:
            ValidationError: If a required field is empty; no request is made.
            SubmissionError: If the provider rejects the request.
            ThrottledError: If the transport fails fast on HTTP 429.
        """
        message = EmailMessage.coerce(job)
        try:
            handle = await self.transport.begin_send(message)
        except ThrottledError:
            raise
        except HttpResponseError as exc:
            raise self._submission_error(exc) from exc
        logger.info("Send to %s accepted as operation %s", ", ".join(message.to), handle.id)
        return handle

    async def poll_once(self, handle: OperationHandle) -> OperationSnapshot:
        """Read the operation status once, without waiting."""
        return self._record(handle, await self.transport.poll(handle))

    async def await_completion(
        self,
        handle: OperationHandle,
        poll_interval: float | None = None,
        timeout: float | None = None,
        on_snapshot: SnapshotCallback | None = None,
        stop_event: asyncio.Event | None = None,
    ) -> PollOutcome:
        """Poll until the operation is terminal, ``timeout`` elapses or
        ``stop_event`` is set.

        Same semantics as
        :meth:`mail_lro.poller.OperationPoller.await_completion`. Setting
        ``stop_event`` prevents any further read; a read already in flight
        completes first.
        """
        interval, limit = self._timing(poll_interval, timeout)
        loop = asyncio.get_running_loop()
        started = loop.time()
        deadline = started + limit
        polls = 0
        snapshot: OperationSnapshot | None = self.last_snapshot(handle)
        while True:
            if stop_event is not None and stop_event.is_set():
                outcome = PollOutcome(snapshot, cancelled=True, polls=polls, elapsed=loop.time() - started)
                break
            snapshot = await self.poll_once(handle)
            polls += 1
            if on_snapshot is not None:
                on_snapshot(snapshot)
            if snapshot.is_terminal:
                outcome = PollOutcome(snapshot, polls=polls, elapsed=loop.time() - started)
                break
            remaining = deadline - loop.time()
            if remaining <= 0:
                outcome = PollOutcome(snapshot, timed_out=True, polls=polls, elapsed=loop.time() - started)
                break
            await self._park(min(interval, remaining), stop_event)
        self._log_outcome(handle, outcome)
        return outcome

    @staticmethod
    async def _park(delay: float, stop_event: asyncio.Event | None) -> None:
        """Sleep for ``delay`` seconds or until ``stop_event`` is set."""
        if stop_event is None:
            await asyncio.sleep(delay)
            return
        if delay <= 0:
            await asyncio.sleep(0)
            return
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return

    def subscribe(
        self,
        handle: OperationHandle,
        poll_interval: float | None = None,
        timeout: float | None = None,
    ) -> OperationSubscription:
        """Start polling ``handle`` in a dedicated task.

        Must be called from a running event loop.
        """
        return OperationSubscription(self, handle, poll_interval, timeout, grace=self.polling.shutdown_grace)


class OperationSubscription:
    """Cancellable stream of snapshots for one operation.

    The stream owns the polling task of its handle. Iterate it with
    ``async for`` to receive every snapshot; the iteration ends after the
    last snapshot, or raises the error that stopped polling. :meth:`wait`
    awaits the final signal without consuming the stream.

    Attributes:
        handle: Operation being polled.
        grace: Seconds :meth:`aclose` waits before cancelling the task.
    """

    def __init__(
        self,
        poller: AsyncOperationPoller,
        handle: OperationHandle,
        poll_interval: float | None,
        timeout: float | None,
        grace: float = 5.0,
    ):
        self.handle = handle
        self.grace = grace
        self._loop = asyncio.get_running_loop()
        self._started = self._loop.time()
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._done = asyncio.Event()
        self._stop = asyncio.Event()
        self._outcome: PollOutcome | None = None
        self._error: BaseException | None = None
        self._last: OperationSnapshot | None = None
        self._polls = 0
        self._task = asyncio.create_task(
            self._run(poller, poll_interval, timeout), name=f"poll-operation-{handle.id}"
        )

    async def _run(self, poller: AsyncOperationPoller, poll_interval: float | None, timeout: float | None) -> None:
        try:
            outcome = await poller.await_completion(
                self.handle, poll_interval, timeout, on_snapshot=self._emit, stop_event=self._stop
            )
        except asyncio.CancelledError:
            self._finish(outcome=self._partial_outcome(cancelled=True))
            raise
        except Exception as exc:
            logger.error("Polling of operation %s failed: %s: %s", self.handle.id, type(exc).__name__, exc)
            self._finish(error=exc)
        else:
            self._finish(outcome=outcome)

    def _emit(self, snapshot: OperationSnapshot) -> None:
        self._last = snapshot
        self._polls += 1
        self._queue.put_nowait(snapshot)

    def _finish(self, outcome: PollOutcome | None = None, error: BaseException | None = None) -> None:
        if self._done.is_set():
            return
        self._outcome = outcome
        self._error = error
        self._done.set()
        self._queue.put_nowait(_END)

    def _partial_outcome(self, timed_out: bool = False, cancelled: bool = False) -> PollOutcome:
        return PollOutcome(
            self._last,
            timed_out=timed_out,
            cancelled=cancelled,
            polls=self._polls,
            elapsed=self._loop.time() - self._started,
        )

    @property
    def done(self) -> bool:
        """True once the final signal has been emitted."""
        return self._done.is_set()

    @property
    def last_snapshot(self) -> OperationSnapshot | None:
        return self._last

    async def __aiter__(self) -> AsyncIterator[OperationSnapshot]:
        while True:
            item = await self._queue.get()
            if item is _END:
                # Leave the marker for later iterations of a finished stream.
                self._queue.put_nowait(_END)
                if self._error is not None:
                    raise self._error
                return
            yield item

    async def wait(
        self,
        timeout: float | None = None,
        on_timeout: TimeoutPolicy = TimeoutPolicy.ABANDON,
    ) -> PollOutcome:
        """Wait for the final signal, at most ``timeout`` seconds.

        Exceeding the timeout is recoverable: a warning is logged and a
        timed-out outcome holding the last snapshot seen is returned. With
        :attr:`TimeoutPolicy.ABANDON` polling is told to stop.

        Raises:
            MailLroError: The error that ended polling, if any.
        """
        try:
            await asyncio.wait_for(self._done.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("No final status for operation %s within %.1fs", self.handle.id, timeout)
            if on_timeout is TimeoutPolicy.ABANDON:
                self.cancel()
            return self._partial_outcome(timed_out=True)
        if self._error is not None:
            raise self._error
        return self._outcome

    async def drain(self) -> PollOutcome:
        """Wait, without an upper bound of its own, for polling to end.

        The poll timeout given at subscription bounds the wait.
        """
        await self._done.wait()
        if self._error is not None:
            raise self._error
        return self._outcome

    def cancel(self) -> None:
        """Ask the polling task to stop issuing reads."""
        if not self._stop.is_set():
            logger.debug("Stop requested for operation %s", self.handle.id)
        self._stop.set()

    async def aclose(self, grace: float | None = None) -> None:
        """Stop the polling task and release it.

        The task is asked to stop and given ``grace`` seconds to finish its
        current read; after that it is cancelled.
        """
        grace = self.grace if grace is None else grace
        if not self._task.done():
            self.cancel()
            done, _ = await asyncio.wait({self._task}, timeout=grace)
            if not done:
                logger.warning(
                    "Polling task for operation %s did not stop within %.1fs, cancelling",
                    self.handle.id, grace,
                )
                self._task.cancel()
                try:
                    await self._task
                except asyncio.CancelledError:
                    pass
        self._finish(outcome=self._partial_outcome(cancelled=True))

    async def __aenter__(self) -> OperationSubscription:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()


__all__ = ["AsyncOperationPoller", "AsyncSendTransport", "OperationSubscription", "TimeoutPolicy"]
