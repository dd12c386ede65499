# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Exception hierarchy for mail-lro.

All errors raised by the package derive from :class:`MailLroError` so the
command-line layer can report them uniformly. Timeouts are not errors: a
poll that runs out of time returns a timed-out outcome instead.

Hierarchy::

    MailLroError
    ├── ConfigurationError
    ├── ValidationError
    ├── TransportError
    ├── ProviderProtocolError
    │   └── InconsistentStatusError
    └── HttpResponseError
        ├── SubmissionError
        └── ThrottledError
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any


class MailLroError(Exception):
    """Base class for all mail-lro errors."""


class ConfigurationError(MailLroError):
    """A required setting is missing or malformed.

    Attributes:
        setting: Name of the offending setting.
        example: Example value shown to the operator.
    """

    def __init__(self, message: str, setting: str | None = None, example: str | None = None):
        super().__init__(message)
        self.setting = setting
        self.example = example


class ValidationError(MailLroError, ValueError):
    """A job description or operator input has an empty or invalid field.

    Attributes:
        fields: Names of the fields that failed validation.
    """

    def __init__(self, message: str, fields: list[str] | None = None):
        super().__init__(message)
        self.fields = fields or []


class TransportError(MailLroError):
    """The provider could not be reached (connection, DNS, read timeout)."""


class ProviderProtocolError(MailLroError):
    """The provider returned a payload that cannot be interpreted."""


class InconsistentStatusError(ProviderProtocolError):
    """The provider reported a logically impossible status.

    Raised when the generic and mail-specific statuses of one snapshot
    disagree, or when an operation moves backwards in its lifecycle.

    Attributes:
        operation_id: Identifier of the affected operation, when known.
    """

    def __init__(self, message: str, operation_id: str | None = None):
        super().__init__(message)
        self.operation_id = operation_id


class HttpResponseError(MailLroError):
    """The provider answered with a non-2xx status.

    Attributes:
        status_code: HTTP status code of the response.
        headers: Response headers, verbatim.
        code: Provider error classification (``error.code`` in the body).
        detail: Provider error message (``error.message`` in the body).
    """

    def __init__(
        self,
        message: str,
        status_code: int,
        headers: Mapping[str, str] | None = None,
        code: str | None = None,
        detail: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.headers: dict[str, str] = dict(headers or {})
        self.code = code
        self.detail = detail

    @classmethod
    def from_payload(
        cls,
        status_code: int,
        headers: Mapping[str, str],
        payload: Any,
        reason: str = "",
    ) -> HttpResponseError:
        """Build an error from a decoded provider error body.

        Args:
            status_code: HTTP status code.
            headers: Response headers.
            payload: Decoded JSON body, or ``None`` if the body was not JSON.
            reason: HTTP reason phrase, used when the body carries no message.
        """
        code = detail = None
        if isinstance(payload, dict):
            error = payload.get("error") or {}
            if isinstance(error, dict):
                code = error.get("code")
                detail = error.get("message")
        message = f"HTTP {status_code}"
        if code:
            message = f"{message} {code}"
        if detail or reason:
            message = f"{message}: {detail or reason}"
        return cls(message, status_code, headers=headers, code=code, detail=detail)


class SubmissionError(HttpResponseError):
    """The provider rejected a send request synchronously."""

    @classmethod
    def from_http(cls, exc: HttpResponseError) -> SubmissionError:
        """Re-classify a generic response error raised while submitting."""
        return cls(str(exc), exc.status_code, headers=exc.headers, code=exc.code, detail=exc.detail)


class ThrottledError(HttpResponseError):
    """HTTP 429 observed while automatic retries are disabled.

    Attributes:
        sequence_number: Position in a probe burst where throttling
            occurred; set by the probe harness.
    """

    def __init__(
        self,
        message: str,
        status_code: int = 429,
        headers: Mapping[str, str] | None = None,
        code: str | None = None,
        detail: str | None = None,
    ):
        super().__init__(message, status_code, headers=headers, code=code, detail=detail)
        self.sequence_number: int | None = None

    @property
    def retry_after(self) -> str | None:
        """Value of the ``Retry-After`` header, if the provider sent one."""
        for name, value in self.headers.items():
            if name.lower() == "retry-after":
                return value
        return None


__all__ = [
    "ConfigurationError",
    "HttpResponseError",
    "InconsistentStatusError",
    "MailLroError",
    "ProviderProtocolError",
    "SubmissionError",
    "ThrottledError",
    "TransportError",
    "ValidationError",
]
