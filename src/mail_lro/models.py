# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Data model for send jobs, operation snapshots and probe results.

The job description (:class:`EmailMessage`) is a pydantic model so that
empty or malformed fields are rejected before any request leaves the
process. Everything the engine produces afterwards (handles, snapshots,
probe results) is an immutable dataclass: a new read supersedes the
previous value instead of mutating it.
"""

from __future__ import annotations

import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from .errors import ProviderProtocolError, ValidationError
from .status import DomainSendStatus, GenericLroStatus, Lifecycle, reconcile

FAILURE_WITHOUT_DETAIL = "The provider reported a failure without error details."


class EmailMessage(BaseModel):
    """Description of one send job.

    Attributes:
        sender: Verified sender address (``senderAddress``).
        to: Primary recipient address(es).
        cc: Carbon-copy recipients.
        bcc: Blind carbon-copy recipients.
        subject: Message subject.
        plain_text: Plain-text body variant.
        html: HTML body variant.
        reply_to: Reply-To addresses.
        headers: Custom message headers.
    """

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True, frozen=True)

    sender: Annotated[str, Field(min_length=1, description="Sender email address")]
    to: Annotated[list[str], Field(min_length=1, description="Recipient address(es)")]
    cc: Annotated[list[str], Field(default_factory=list, description="CC address(es)")]
    bcc: Annotated[list[str], Field(default_factory=list, description="BCC address(es)")]
    subject: Annotated[str, Field(min_length=1, description="Email subject")]
    plain_text: Annotated[str | None, Field(default=None, description="Plain-text body")]
    html: Annotated[str | None, Field(default=None, description="HTML body")]
    reply_to: Annotated[list[str], Field(default_factory=list, description="Reply-To address(es)")]
    headers: Annotated[dict[str, str], Field(default_factory=dict, description="Custom headers")]

    @field_validator("to", "cc", "bcc", "reply_to", mode="before")
    @classmethod
    def listify_addresses(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [value]
        return value

    @field_validator("to", "cc", "bcc", "reply_to")
    @classmethod
    def reject_empty_addresses(cls, value: list[str]) -> list[str]:
        addresses = [address.strip() for address in value]
        if not all(addresses):
            raise ValueError("recipient address must not be empty")
        return addresses

    @model_validator(mode="after")
    def require_body(self) -> EmailMessage:
        if not (self.plain_text or self.html):
            raise ValueError("at least one body variant (plain_text or html) is required")
        return self

    @classmethod
    def create(cls, **fields: Any) -> EmailMessage:
        """Build a message, raising :class:`~mail_lro.errors.ValidationError` on bad input."""
        return cls.coerce(fields)

    @classmethod
    def coerce(cls, job: EmailMessage | Mapping[str, Any]) -> EmailMessage:
        """Return ``job`` as a validated message.

        Args:
            job: An existing message, or a mapping of its fields.

        Raises:
            ValidationError: If a required field is missing or empty.
        """
        if isinstance(job, cls):
            return job
        if not isinstance(job, Mapping):
            raise TypeError(f"Cannot build an EmailMessage from {type(job).__name__}")
        try:
            return cls.model_validate(dict(job))
        except PydanticValidationError as exc:
            problems = []
            fields = []
            for error in exc.errors():
                location = ".".join(str(part) for part in error["loc"]) or "message"
                fields.append(location)
                problems.append(f"{location}: {error['msg']}")
            raise ValidationError("Invalid send request - " + "; ".join(problems), fields=fields) from None

    def to_payload(self) -> dict[str, Any]:
        """Render the message as an ``emails:send`` request body."""
        recipients: dict[str, Any] = {"to": [{"address": a} for a in self.to]}
        if self.cc:
            recipients["cc"] = [{"address": a} for a in self.cc]
        if self.bcc:
            recipients["bcc"] = [{"address": a} for a in self.bcc]
        content: dict[str, Any] = {"subject": self.subject}
        if self.plain_text:
            content["plainText"] = self.plain_text
        if self.html:
            content["html"] = self.html
        payload: dict[str, Any] = {
            "senderAddress": self.sender,
            "recipients": recipients,
            "content": content,
        }
        if self.reply_to:
            payload["replyTo"] = [{"address": a} for a in self.reply_to]
        if self.headers:
            payload["headers"] = dict(self.headers)
        return payload


@dataclass(frozen=True)
class OperationHandle:
    """Provider-issued identifier of one in-flight send job.

    Attributes:
        id: Operation identifier.
        operation_location: Status monitor URL returned with the handle.
    """

    id: str
    operation_location: str | None = None

    def __str__(self) -> str:
        return self.id


@dataclass(frozen=True)
class ProviderStatus:
    """Raw status read returned by a transport.

    Attributes:
        operation_id: Operation identifier echoed by the provider.
        generic_status: Long-running operation status.
        domain_status: Send result status, None until the provider has
            produced a result.
        error_code: Provider error classification, if any.
        error_message: Provider error message, if any.
    """

    operation_id: str
    generic_status: GenericLroStatus
    domain_status: DomainSendStatus | None = None
    error_code: str | None = None
    error_message: str | None = None


@dataclass(frozen=True)
class OperationSnapshot:
    """Point-in-time read of a send job.

    Error fields are populated if and only if the job ended in failure.
    """

    handle: OperationHandle
    generic_status: GenericLroStatus
    domain_status: DomainSendStatus | None = None
    error_code: str | None = None
    error_message: str | None = None
    observed_at: float = field(default_factory=time.time)

    @classmethod
    def from_provider(cls, handle: OperationHandle, read: ProviderStatus) -> OperationSnapshot:
        """Build a snapshot from a transport read.

        Raises:
            ProviderProtocolError: If the read belongs to another operation.
            InconsistentStatusError: If the two statuses disagree.
        """
        if read.operation_id and read.operation_id != handle.id:
            raise ProviderProtocolError(
                f"Status read for operation {read.operation_id} returned while polling {handle.id}"
            )
        lifecycle = reconcile(read.generic_status, read.domain_status, operation_id=handle.id)
        error_code = error_message = None
        if lifecycle.is_failure:
            error_code = read.error_code or "UnknownError"
            error_message = read.error_message or FAILURE_WITHOUT_DETAIL
        return cls(
            handle=handle,
            generic_status=read.generic_status,
            domain_status=read.domain_status,
            error_code=error_code,
            error_message=error_message,
        )

    @property
    def lifecycle(self) -> Lifecycle:
        return self.generic_status.lifecycle

    @property
    def is_terminal(self) -> bool:
        return self.lifecycle.is_terminal

    @property
    def is_failure(self) -> bool:
        return self.lifecycle.is_failure

    def __repr__(self) -> str:
        return f"OperationSnapshot(id='{self.handle.id}', status='{self.generic_status}/{self.domain_status}')"


@dataclass(frozen=True)
class PollOutcome:
    """Result of driving one operation towards completion.

    Attributes:
        snapshot: Last snapshot obtained. None only when a reactive wait
            timed out before the first read arrived.
        timed_out: True if the deadline passed without a terminal snapshot.
        polls: Number of status reads issued.
        cancelled: True if polling was stopped on request.
        elapsed: Wall-clock seconds spent.
    """

    snapshot: OperationSnapshot | None
    timed_out: bool = False
    polls: int = 0
    cancelled: bool = False
    elapsed: float = 0.0

    @property
    def completed(self) -> bool:
        return self.snapshot is not None and self.snapshot.is_terminal


class ProbeOutcome(str, Enum):
    """Classification of one probe submission."""

    ACCEPTED = "accepted"
    THROTTLED = "throttled"
    OTHER_ERROR = "other_error"


@dataclass(frozen=True)
class ProbeResult:
    """Record of one submission in a rate-limit probe burst.

    Attributes:
        sequence_number: 1-based position in the burst.
        outcome: Accepted, throttled or other error.
        elapsed: Seconds spent on the submission.
        http_status_code: HTTP status of a rejected submission.
        error_detail: Error class and message of a rejected submission.
        operation_id: Operation identifier of an accepted submission.
        headers: Response headers of a throttled submission.
    """

    sequence_number: int
    outcome: ProbeOutcome
    elapsed: float
    http_status_code: int | None = None
    error_detail: str | None = None
    operation_id: str | None = None
    headers: dict[str, str] = field(default_factory=dict)


@dataclass
class ProbeReport:
    """Ordered results of one probe burst plus derived facts."""

    burst_size: int
    results: list[ProbeResult] = field(default_factory=list)
    elapsed: float = 0.0

    @property
    def accepted(self) -> int:
        return sum(1 for r in self.results if r.outcome is ProbeOutcome.ACCEPTED)

    @property
    def failed(self) -> int:
        return len(self.results) - self.accepted

    @property
    def throttled(self) -> int:
        return sum(1 for r in self.results if r.outcome is ProbeOutcome.THROTTLED)

    @property
    def throttled_result(self) -> ProbeResult | None:
        for result in self.results:
            if result.outcome is ProbeOutcome.THROTTLED:
                return result
        return None

    @property
    def first_throttled_index(self) -> int | None:
        """Sequence number of the first throttled submission, if any."""
        result = self.throttled_result
        return result.sequence_number if result else None

    @property
    def accepted_before_throttling(self) -> int:
        """Accepted submissions preceding the first throttled one."""
        count = 0
        for result in self.results:
            if result.outcome is ProbeOutcome.THROTTLED:
                break
            if result.outcome is ProbeOutcome.ACCEPTED:
                count += 1
        return count

    @property
    def completed(self) -> bool:
        """True if every submission of the burst was issued."""
        return len(self.results) == self.burst_size and self.throttled_result is None

    def summary(self) -> dict[str, Any]:
        """Return the aggregate report as a plain dictionary."""
        return {
            "burst_size": self.burst_size,
            "issued": len(self.results),
            "accepted": self.accepted,
            "failed": self.failed,
            "throttled": self.throttled,
            "first_throttled_index": self.first_throttled_index,
            "accepted_before_throttling": self.accepted_before_throttling,
            "completed": self.completed,
            "elapsed": round(self.elapsed, 3),
        }


__all__ = [
    "EmailMessage",
    "OperationHandle",
    "OperationSnapshot",
    "PollOutcome",
    "ProbeOutcome",
    "ProbeReport",
    "ProbeResult",
    "ProviderStatus",
]
