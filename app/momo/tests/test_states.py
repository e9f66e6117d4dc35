"""Tests for the transaction transition table."""

import pytest

from momo.state_machines import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATUSES,
    TransactionStatus,
    can_transition,
    is_terminal,
    sources_for,
)


class TestTransitionTable:
    def test_every_status_has_an_entry(self):
        assert set(ALLOWED_TRANSITIONS) == set(TransactionStatus.values)

    @pytest.mark.parametrize("status", sorted(TERMINAL_STATUSES))
    def test_terminal_statuses_have_no_exits(self, status):
        assert is_terminal(status)
        assert ALLOWED_TRANSITIONS[status] == frozenset()

    @pytest.mark.parametrize(
        "current, target",
        [
            (TransactionStatus.PENDING, TransactionStatus.PROCESSING),
            (TransactionStatus.PENDING, TransactionStatus.COMPLETED),
            (TransactionStatus.PENDING, TransactionStatus.EXPIRED),
            (TransactionStatus.PROCESSING, TransactionStatus.COMPLETED),
            (TransactionStatus.PROCESSING, TransactionStatus.FAILED),
            (TransactionStatus.PROCESSING, TransactionStatus.CANCELLED),
        ],
    )
    def test_forward_moves_are_allowed(self, current, target):
        assert can_transition(current, target)

    @pytest.mark.parametrize(
        "current, target",
        [
            (TransactionStatus.PROCESSING, TransactionStatus.PENDING),
            (TransactionStatus.PENDING, TransactionStatus.PENDING),
            (TransactionStatus.COMPLETED, TransactionStatus.FAILED),
            (TransactionStatus.FAILED, TransactionStatus.COMPLETED),
            (TransactionStatus.EXPIRED, TransactionStatus.PROCESSING),
            ("unknown", TransactionStatus.COMPLETED),
        ],
    )
    def test_backward_and_terminal_moves_are_refused(self, current, target):
        assert not can_transition(current, target)

    def test_sources_for(self):
        assert set(sources_for(TransactionStatus.COMPLETED)) == {
            TransactionStatus.PENDING,
            TransactionStatus.PROCESSING,
        }
        assert sources_for(TransactionStatus.PENDING) == []
