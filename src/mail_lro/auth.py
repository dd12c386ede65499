# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""HMAC-SHA256 request signing for the provider REST API.

Each request carries ``x-ms-date``, ``x-ms-content-sha256`` and an
``Authorization`` header whose signature covers the method, the path and
query, the date, the host and the body hash.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
from datetime import datetime, timezone
from email.utils import format_datetime
from urllib.parse import urlsplit

from .errors import ConfigurationError

SIGNED_HEADERS = "x-ms-date;host;x-ms-content-sha256"


class HmacCredential:
    """Access-key credential that signs outgoing requests.

    Attributes:
        _key: Decoded access key bytes.
    """

    def __init__(self, access_key: str):
        """Decode the base64 access key.

        Raises:
            ConfigurationError: If the key is not valid base64.
        """
        try:
            self._key = base64.b64decode(access_key, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ConfigurationError(
                "Access key in ACS_CONNECTION_STRING is not valid base64",
                setting="ACS_CONNECTION_STRING",
            ) from exc

    def sign(self, method: str, url: str, body: bytes, now: datetime | None = None) -> dict[str, str]:
        """Return the authentication headers for one request.

        Args:
            method: HTTP method.
            url: Absolute request URL including the query string.
            body: Exact request body bytes (empty for GET).
            now: Signing time; defaults to the current UTC time.
        """
        parts = urlsplit(url)
        path_and_query = parts.path or "/"
        if parts.query:
            path_and_query = f"{path_and_query}?{parts.query}"
        date = format_datetime(now or datetime.now(timezone.utc), usegmt=True)
        content_hash = base64.b64encode(hashlib.sha256(body).digest()).decode()
        string_to_sign = f"{method.upper()}\n{path_and_query}\n{date};{parts.netloc};{content_hash}"
        digest = hmac.new(self._key, string_to_sign.encode("utf-8"), hashlib.sha256).digest()
        signature = base64.b64encode(digest).decode()
        return {
            "x-ms-date": date,
            "x-ms-content-sha256": content_hash,
            "Authorization": f"HMAC-SHA256 SignedHeaders={SIGNED_HEADERS}&Signature={signature}",
        }
