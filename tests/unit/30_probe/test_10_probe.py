# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Tests for the rate-limit probe."""

import logging

import httpx
import pytest

from mail_lro.errors import ThrottledError, TransportError, ValidationError
from mail_lro.models import ProbeOutcome
from mail_lro.poller import OperationPoller
from mail_lro.probe import RateLimitProbe
from mail_lro.retry import NoRetryOn429Policy, RetryPolicy, header_value

SENDER = "DoNotReply@example.azurecomm.net"


def throttled():
    return ThrottledError("HTTP 429: Too Many Requests", headers={"Retry-After": "60", "x-ms-request-id": "r-31"})


def make_probe(transport, polling, **kwargs):
    return RateLimitProbe(OperationPoller(transport, polling), SENDER, **kwargs)


class TestRun:
    """Tests for RateLimitProbe.run."""

    def test_stops_at_first_429(self, stub_transport, fast_polling):
        """Test a 429 on call 31 of 35 ends the burst with 30 accepted."""
        transport = stub_transport(send_errors={31: throttled()})
        report = make_probe(transport, fast_polling).run("someone@example.com", burst_size=35)

        assert len(transport.sent) == 31
        assert len(report.results) == 31
        assert report.first_throttled_index == 31
        assert report.accepted_before_throttling == 30
        assert report.accepted == 30
        assert report.failed == 1
        assert report.completed is False
        result = report.throttled_result
        assert result.http_status_code == 429
        assert result.headers["x-ms-request-id"] == "r-31"

    def test_sequence_number_set_on_error(self, stub_transport, fast_polling):
        """Test the raised ThrottledError learns its burst position."""
        error = throttled()
        make_probe(stub_transport(send_errors={2: error}), fast_polling).run("someone@example.com", burst_size=5)
        assert error.sequence_number == 2

    def test_full_burst_without_throttling(self, stub_transport, fast_polling):
        """Test every submission is issued when the ceiling is not hit."""
        transport = stub_transport()
        report = make_probe(transport, fast_polling).run("someone@example.com", burst_size=35)
        assert len(transport.sent) == 35
        assert report.accepted == 35
        assert report.first_throttled_index is None
        assert report.completed is True
        assert [r.sequence_number for r in report.results] == list(range(1, 36))
        assert all(r.operation_id for r in report.results)

    def test_other_errors_do_not_stop_burst(self, stub_transport, fast_polling):
        """Test non-throttling failures are recorded and the burst continues."""
        transport = stub_transport(send_errors={2: TransportError("reset"), 3: RuntimeError("boom")})
        report = make_probe(transport, fast_polling).run("someone@example.com", burst_size=4)
        assert [r.outcome for r in report.results] == [
            ProbeOutcome.ACCEPTED, ProbeOutcome.OTHER_ERROR, ProbeOutcome.OTHER_ERROR, ProbeOutcome.ACCEPTED,
        ]
        assert "TransportError" in report.results[1].error_detail
        assert report.completed is True

    def test_results_reported_as_recorded(self, stub_transport, fast_polling):
        """Test on_result sees every result in order."""
        seen = []
        make_probe(stub_transport(send_errors={3: throttled()}), fast_polling, on_result=seen.append).run(
            "someone@example.com", burst_size=10
        )
        assert [r.sequence_number for r in seen] == [1, 2, 3]

    def test_messages_numbered(self, stub_transport, fast_polling):
        """Test each probe message names its position."""
        transport = stub_transport()
        make_probe(transport, fast_polling).run("someone@example.com", burst_size=2)
        assert transport.sent[1].subject == "Rate limit probe #2 / 2"
        assert "#2" in transport.sent[1].plain_text

    def test_empty_recipient_sends_nothing(self, stub_transport, fast_polling):
        """Test an invalid recipient fails before the first request."""
        transport = stub_transport()
        with pytest.raises(ValidationError):
            make_probe(transport, fast_polling).run("", burst_size=3)
        assert transport.sent == []

    def test_burst_size_must_be_positive(self, stub_transport, fast_polling):
        """Test a non-positive burst size is rejected."""
        with pytest.raises(ValueError):
            make_probe(stub_transport(), fast_polling).run("someone@example.com", burst_size=0)

    def test_warns_when_retries_enabled(self, stub_transport, fast_polling, caplog):
        """Test a retrying transport is flagged."""
        transport = stub_transport()
        transport.retry_policy = RetryPolicy()
        with caplog.at_level(logging.WARNING):
            make_probe(transport, fast_polling)
        assert "RetryPolicy" in caplog.text


class TestFromConfig:
    """Tests for RateLimitProbe.from_config over a mocked provider."""

    def test_fail_fast_transport(self, app_config):
        """Test the built probe never retries a 429."""
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 3:
                return httpx.Response(429, headers={"Retry-After": "60"})
            return httpx.Response(202, json={"id": f"op-{len(calls)}", "status": "Running"})

        client = httpx.Client(transport=httpx.MockTransport(handler))
        with RateLimitProbe.from_config(app_config, client=client) as probe:
            assert isinstance(probe.poller.transport.retry_policy, NoRetryOn429Policy)
            report = probe.run("someone@example.com", burst_size=5)

        assert len(calls) == 3
        assert report.first_throttled_index == 3
        assert header_value(report.throttled_result.headers, "Retry-After") == "60"
        assert [r.operation_id for r in report.results[:2]] == ["op-1", "op-2"]
