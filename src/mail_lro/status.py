# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Status model for long-running send operations.

A send operation is described by two vocabularies at once:

* :class:`GenericLroStatus` - the provider-agnostic long-running operation
  lifecycle (``NOT_STARTED``, ``IN_PROGRESS``, ``SUCCEEDED``, ``FAILED``,
  ``CANCELED``);
* :class:`DomainSendStatus` - the mail-send lifecycle reported inside the
  send result (``NOT_STARTED``, ``RUNNING``, ``SUCCEEDED``, ``FAILED``,
  ``CANCELED``).

Both are projections of a single internal :class:`Lifecycle`, so the mapping
between them is defined in exactly one place. The two enums do
not mix in ``str``: ``GenericLroStatus.SUCCEEDED`` never compares equal to
``DomainSendStatus.SUCCEEDED``; compare lifecycles instead.

Example:
    Reconciling one provider read::

        generic = GenericLroStatus.from_wire("InProgress")
        domain = DomainSendStatus.from_wire("Running")
        lifecycle = reconcile(generic, domain)   # Lifecycle.IN_PROGRESS
        is_terminal(domain)                      # False
"""

from __future__ import annotations

from enum import Enum
from typing import Union

from .errors import InconsistentStatusError, ProviderProtocolError


class GenericLroStatus(Enum):
    """Provider-agnostic long-running operation status."""

    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    CANCELED = "CANCELED"

    @property
    def lifecycle(self) -> Lifecycle:
        return _BY_GENERIC[self]

    @property
    def is_terminal(self) -> bool:
        return self.lifecycle.is_terminal

    @classmethod
    def from_wire(cls, value: str) -> GenericLroStatus:
        """Parse a provider status string into the generic vocabulary.

        Accepts the spellings used by LRO status monitors, case-insensitively:
        ``NotStarted``, ``Running``/``InProgress``, ``Succeeded``,
        ``Failed``, ``Canceled``/``Cancelled``.

        Raises:
            ProviderProtocolError: If the value is not a known status.
        """
        return _parse_wire(value, "generic").generic

    def __str__(self) -> str:
        return self.value


class DomainSendStatus(Enum):
    """Mail-send specific status as reported in the send result."""

    NOT_STARTED = "NOT_STARTED"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    CANCELED = "CANCELED"

    @property
    def lifecycle(self) -> Lifecycle:
        return _BY_DOMAIN[self]

    @property
    def is_terminal(self) -> bool:
        return self.lifecycle.is_terminal

    @classmethod
    def from_wire(cls, value: str) -> DomainSendStatus:
        """Parse a provider status string into the mail-send vocabulary.

        Raises:
            ProviderProtocolError: If the value is not a known status.
        """
        return _parse_wire(value, "domain").domain

    def __str__(self) -> str:
        return self.value


class Lifecycle(Enum):
    """Single source of truth for the send operation lifecycle.

    Each member carries its rank (used to detect regressions), its two
    external projections and the operator-facing description.
    """

    NOT_STARTED = (
        0,
        GenericLroStatus.NOT_STARTED,
        DomainSendStatus.NOT_STARTED,
        "The operation has not started yet. The service does not currently return this status.",
    )
    IN_PROGRESS = (
        1,
        GenericLroStatus.IN_PROGRESS,
        DomainSendStatus.RUNNING,
        "The send operation is in progress.",
    )
    SUCCEEDED = (
        2,
        GenericLroStatus.SUCCEEDED,
        DomainSendStatus.SUCCEEDED,
        "The message was handed off for delivery. Detailed delivery status "
        "is available through Azure Monitor or Event Grid.",
    )
    FAILED = (
        2,
        GenericLroStatus.FAILED,
        DomainSendStatus.FAILED,
        "The send operation failed. See the error details.",
    )
    CANCELED = (
        2,
        GenericLroStatus.CANCELED,
        DomainSendStatus.CANCELED,
        "The send operation was canceled.",
    )

    def __init__(self, rank: int, generic: GenericLroStatus, domain: DomainSendStatus, description: str):
        self.rank = rank
        self.generic = generic
        self.domain = domain
        self.description = description

    @property
    def is_terminal(self) -> bool:
        return self.rank == TERMINAL_RANK

    @property
    def is_failure(self) -> bool:
        return self is Lifecycle.FAILED


TERMINAL_RANK = 2

_BY_GENERIC: dict[GenericLroStatus, Lifecycle] = {member.generic: member for member in Lifecycle}
_BY_DOMAIN: dict[DomainSendStatus, Lifecycle] = {member.domain: member for member in Lifecycle}

_WIRE_ALIASES: dict[str, Lifecycle] = {
    "notstarted": Lifecycle.NOT_STARTED,
    "running": Lifecycle.IN_PROGRESS,
    "inprogress": Lifecycle.IN_PROGRESS,
    "succeeded": Lifecycle.SUCCEEDED,
    "successfullycompleted": Lifecycle.SUCCEEDED,
    "failed": Lifecycle.FAILED,
    "canceled": Lifecycle.CANCELED,
    "cancelled": Lifecycle.CANCELED,
    "usercancelled": Lifecycle.CANCELED,
}

AnyStatus = Union[GenericLroStatus, DomainSendStatus, Lifecycle]


def _parse_wire(value: str, vocabulary: str) -> Lifecycle:
    key = str(value or "").replace("_", "").replace(" ", "").lower()
    try:
        return _WIRE_ALIASES[key]
    except KeyError:
        raise ProviderProtocolError(f"Unknown {vocabulary} status from provider: {value!r}") from None


def lifecycle_of(status: AnyStatus) -> Lifecycle:
    """Return the lifecycle position of a status from either vocabulary."""
    if isinstance(status, Lifecycle):
        return status
    if isinstance(status, (GenericLroStatus, DomainSendStatus)):
        return status.lifecycle
    raise TypeError(f"Not a send operation status: {status!r}")


def is_terminal(status: AnyStatus) -> bool:
    """Return True if no further transition can follow ``status``.

    Works for :class:`GenericLroStatus`, :class:`DomainSendStatus` and
    :class:`Lifecycle` alike; both vocabularies always agree because they
    are classified through the same lifecycle.
    """
    return lifecycle_of(status).is_terminal


def reconcile(
    generic: GenericLroStatus,
    domain: DomainSendStatus | None,
    operation_id: str | None = None,
) -> Lifecycle:
    """Return the lifecycle shared by a generic and a mail-send status.

    Args:
        generic: Status reported by the long-running operation layer.
        domain: Status reported in the send result, or None if the provider
            has not produced a result yet.
        operation_id: Used only to enrich the error message.

    Raises:
        InconsistentStatusError: If the two statuses denote different points
            of the lifecycle. The mismatch is surfaced, never repaired.
    """
    lifecycle = generic.lifecycle
    if domain is not None and domain.lifecycle is not lifecycle:
        raise InconsistentStatusError(
            f"Provider reported generic status {generic} with send status {domain}"
            + (f" for operation {operation_id}" if operation_id else ""),
            operation_id=operation_id,
        )
    return lifecycle


def is_regression(previous: Lifecycle, current: Lifecycle) -> bool:
    """Return True if moving from ``previous`` to ``current`` is impossible.

    Terminal states never change, and non-terminal states never move back.
    """
    if previous.is_terminal:
        return current is not previous
    return current.rank < previous.rank


__all__ = [
    "DomainSendStatus",
    "GenericLroStatus",
    "Lifecycle",
    "is_regression",
    "is_terminal",
    "lifecycle_of",
    "reconcile",
]
