# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Tests for the send operation status model."""

import pytest

from mail_lro.errors import InconsistentStatusError, ProviderProtocolError
from mail_lro.status import (
    DomainSendStatus,
    GenericLroStatus,
    Lifecycle,
    is_regression,
    is_terminal,
    lifecycle_of,
    reconcile,
)


class TestTerminalClassification:
    """Tests for is_terminal across both vocabularies."""

    @pytest.mark.parametrize("status", [
        GenericLroStatus.SUCCEEDED, GenericLroStatus.FAILED, GenericLroStatus.CANCELED,
        DomainSendStatus.SUCCEEDED, DomainSendStatus.FAILED, DomainSendStatus.CANCELED,
    ])
    def test_terminal_statuses(self, status):
        """Test succeeded, failed and canceled are terminal."""
        assert is_terminal(status) is True
        assert status.is_terminal is True

    @pytest.mark.parametrize("status", [
        GenericLroStatus.NOT_STARTED, GenericLroStatus.IN_PROGRESS,
        DomainSendStatus.NOT_STARTED, DomainSendStatus.RUNNING,
    ])
    def test_non_terminal_statuses(self, status):
        """Test not-started and running statuses are not terminal."""
        assert is_terminal(status) is False

    def test_vocabularies_agree(self):
        """Test both projections of every lifecycle share terminality."""
        for lifecycle in Lifecycle:
            assert is_terminal(lifecycle.generic) == is_terminal(lifecycle.domain) == lifecycle.is_terminal

    def test_every_status_has_one_lifecycle(self):
        """Test each member of both enums maps back to its lifecycle."""
        assert {s.lifecycle for s in GenericLroStatus} == set(Lifecycle)
        assert {s.lifecycle for s in DomainSendStatus} == set(Lifecycle)
        for lifecycle in Lifecycle:
            assert lifecycle.generic.lifecycle is lifecycle
            assert lifecycle.domain.lifecycle is lifecycle

    def test_lifecycle_of_rejects_other_values(self):
        """Test lifecycle_of refuses plain strings."""
        with pytest.raises(TypeError):
            lifecycle_of("SUCCEEDED")


class TestVocabularies:
    """Tests for the two status enums."""

    def test_enums_never_compare_equal(self):
        """Test generic and domain members are distinct values."""
        assert GenericLroStatus.SUCCEEDED != DomainSendStatus.SUCCEEDED
        assert GenericLroStatus.SUCCEEDED.lifecycle is DomainSendStatus.SUCCEEDED.lifecycle

    def test_str_is_value(self):
        """Test enums print as their upper-case value."""
        assert str(GenericLroStatus.IN_PROGRESS) == "IN_PROGRESS"
        assert str(DomainSendStatus.RUNNING) == "RUNNING"

    def test_only_failure_is_failure(self):
        """Test is_failure is set on FAILED only."""
        assert [lc for lc in Lifecycle if lc.is_failure] == [Lifecycle.FAILED]


class TestFromWire:
    """Tests for parsing provider status strings."""

    @pytest.mark.parametrize("value,expected", [
        ("NotStarted", GenericLroStatus.NOT_STARTED),
        ("Running", GenericLroStatus.IN_PROGRESS),
        ("InProgress", GenericLroStatus.IN_PROGRESS),
        ("IN_PROGRESS", GenericLroStatus.IN_PROGRESS),
        ("Succeeded", GenericLroStatus.SUCCEEDED),
        ("SuccessfullyCompleted", GenericLroStatus.SUCCEEDED),
        ("Failed", GenericLroStatus.FAILED),
        ("Canceled", GenericLroStatus.CANCELED),
        ("Cancelled", GenericLroStatus.CANCELED),
    ])
    def test_generic_aliases(self, value, expected):
        """Test provider spellings map onto the generic vocabulary."""
        assert GenericLroStatus.from_wire(value) is expected

    def test_domain_running(self):
        """Test running maps onto the domain RUNNING member."""
        assert DomainSendStatus.from_wire("Running") is DomainSendStatus.RUNNING
        assert DomainSendStatus.from_wire("inprogress") is DomainSendStatus.RUNNING

    @pytest.mark.parametrize("value", ["Exploded", "", None])
    def test_unknown_status_raises(self, value):
        """Test unknown values are a protocol error, never guessed."""
        with pytest.raises(ProviderProtocolError):
            GenericLroStatus.from_wire(value)


class TestReconcile:
    """Tests for reconciling the two statuses of one read."""

    def test_matching_statuses(self):
        """Test agreeing statuses return their lifecycle."""
        assert reconcile(GenericLroStatus.IN_PROGRESS, DomainSendStatus.RUNNING) is Lifecycle.IN_PROGRESS

    def test_missing_domain_status(self):
        """Test a read without send status follows the generic one."""
        assert reconcile(GenericLroStatus.NOT_STARTED, None) is Lifecycle.NOT_STARTED

    def test_mismatch_raises(self):
        """Test a terminal generic status with a running send status is rejected."""
        with pytest.raises(InconsistentStatusError) as exc_info:
            reconcile(GenericLroStatus.SUCCEEDED, DomainSendStatus.RUNNING, operation_id="op-9")
        assert exc_info.value.operation_id == "op-9"
        assert "op-9" in str(exc_info.value)


class TestRegression:
    """Tests for detecting impossible transitions."""

    @pytest.mark.parametrize("previous,current", [
        (Lifecycle.NOT_STARTED, Lifecycle.NOT_STARTED),
        (Lifecycle.NOT_STARTED, Lifecycle.IN_PROGRESS),
        (Lifecycle.IN_PROGRESS, Lifecycle.IN_PROGRESS),
        (Lifecycle.IN_PROGRESS, Lifecycle.SUCCEEDED),
        (Lifecycle.NOT_STARTED, Lifecycle.FAILED),
        (Lifecycle.SUCCEEDED, Lifecycle.SUCCEEDED),
    ])
    def test_forward_moves(self, previous, current):
        """Test monotonic progress is accepted."""
        assert is_regression(previous, current) is False

    @pytest.mark.parametrize("previous,current", [
        (Lifecycle.SUCCEEDED, Lifecycle.IN_PROGRESS),
        (Lifecycle.SUCCEEDED, Lifecycle.FAILED),
        (Lifecycle.CANCELED, Lifecycle.NOT_STARTED),
        (Lifecycle.IN_PROGRESS, Lifecycle.NOT_STARTED),
    ])
    def test_backward_moves(self, previous, current):
        """Test leaving a terminal state or moving back is a regression."""
        assert is_regression(previous, current) is True
