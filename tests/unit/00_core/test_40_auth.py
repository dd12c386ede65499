# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Tests for HMAC request signing."""

import base64
import hashlib
import hmac
from datetime import datetime, timezone

import pytest

from mail_lro.auth import SIGNED_HEADERS, HmacCredential
from mail_lro.errors import ConfigurationError

KEY = base64.b64encode(b"secret-key").decode()
EMPTY_SHA256 = "47DEQpj8HBSa+/TImW+5JCeuQeRkm5NMpJWZG3hSuFU="
NOW = datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


class TestHmacCredential:
    """Tests for HmacCredential.sign."""

    def test_invalid_key(self):
        """Test a non-base64 key is a configuration error."""
        with pytest.raises(ConfigurationError):
            HmacCredential("not base64!")

    def test_headers_for_empty_body(self):
        """Test date and content hash headers for a GET."""
        headers = HmacCredential(KEY).sign("GET", "https://acs.example/emails/operations/op-1?api-version=1", b"",
                                           now=NOW)
        assert headers["x-ms-date"] == "Thu, 02 Jan 2025 03:04:05 GMT"
        assert headers["x-ms-content-sha256"] == EMPTY_SHA256
        assert headers["Authorization"].startswith(f"HMAC-SHA256 SignedHeaders={SIGNED_HEADERS}&Signature=")

    def test_signature_covers_request(self):
        """Test the signature matches the documented string to sign."""
        body = b'{"a":1}'
        url = "https://acs.example/emails:send?api-version=2023-03-31"
        headers = HmacCredential(KEY).sign("post", url, body, now=NOW)
        content_hash = base64.b64encode(hashlib.sha256(body).digest()).decode()
        string_to_sign = (
            f"POST\n/emails:send?api-version=2023-03-31\n"
            f"{headers['x-ms-date']};acs.example;{content_hash}"
        )
        expected = base64.b64encode(
            hmac.new(b"secret-key", string_to_sign.encode(), hashlib.sha256).digest()
        ).decode()
        assert headers["x-ms-content-sha256"] == content_hash
        assert headers["Authorization"].endswith(f"Signature={expected}")
