"""Tests for discount derivation and the operation status state machine."""

import pytest

from variant_service.aggregate import OperationStatus, compute_discount_price


@pytest.mark.parametrize(
    ("price", "percent", "expected"),
    [
        (100, 20, 80),
        (200, 20, 160),
        (50, 20, 40),
        (100, 0, 0),
        (100, 100, 0),
        (99, 50, 50),  # 49.5 rounds half up
        (19.99, 10, 18),
        (1000, 12.5, 875),
    ],
)
def test_compute_discount_price(price, percent, expected):
    assert compute_discount_price(price, percent) == expected


def test_zero_discount_always_yields_zero_price():
    assert compute_discount_price(12345, 0) == 0


def test_pending_can_reach_both_terminal_states():
    assert OperationStatus.PENDING.can_transition_to(OperationStatus.COMMITTED)
    assert OperationStatus.PENDING.can_transition_to(OperationStatus.ROLLEDBACK)
    assert not OperationStatus.PENDING.is_terminal


@pytest.mark.parametrize("terminal", [OperationStatus.COMMITTED, OperationStatus.ROLLEDBACK])
def test_terminal_states_have_no_transitions(terminal):
    assert terminal.is_terminal
    for target in OperationStatus:
        assert not terminal.can_transition_to(target)


def test_status_values_match_stored_strings():
    assert OperationStatus("pending") is OperationStatus.PENDING
    assert OperationStatus.ROLLEDBACK.value == "rolledback"
