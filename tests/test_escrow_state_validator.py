"""
Escrow transition table tests
"""

import pytest

from models import EscrowStatus
from utils.escrow_state_validator import EscrowStateValidator, StateTransitionError
from utils.exceptions import ValidationError

ALLOWED = {
    "PENDING": {"PENDING", "ACTIVE", "COMPLETED", "DISPUTED", "EXPIRED"},
    "ACTIVE": {"ACTIVE", "COMPLETED", "DISPUTED", "EXPIRED"},
    "DISPUTED": {"DISPUTED", "ACTIVE", "COMPLETED", "EXPIRED"},
    "COMPLETED": {"COMPLETED"},
    "EXPIRED": {"EXPIRED"},
}


@pytest.mark.parametrize("source", [s.value for s in EscrowStatus])
@pytest.mark.parametrize("target", [s.value for s in EscrowStatus])
def test_transition_table(source, target):
    is_valid, reason = EscrowStateValidator.validate_transition(EscrowStatus(source), EscrowStatus(target), "esc-1")
    assert is_valid == (target in ALLOWED[source]), reason


def test_active_cannot_return_to_pending():
    with pytest.raises(StateTransitionError, match="ACTIVE -> PENDING"):
        EscrowStateValidator.assert_transition("ACTIVE", "PENDING")


def test_terminal_states():
    assert EscrowStateValidator.is_terminal_state(EscrowStatus.COMPLETED)
    assert EscrowStateValidator.is_terminal_state(EscrowStatus.EXPIRED)
    assert not EscrowStateValidator.is_terminal_state(EscrowStatus.DISPUTED)
    assert EscrowStateValidator.get_valid_next_states(EscrowStatus.EXPIRED) == {EscrowStatus.EXPIRED}


@pytest.mark.parametrize("raw, expected", [
    ("active", EscrowStatus.ACTIVE),
    ("  Disputed ", EscrowStatus.DISPUTED),
    (EscrowStatus.EXPIRED, EscrowStatus.EXPIRED),
])
def test_normalize_status(raw, expected):
    assert EscrowStateValidator.normalize_status(raw) is expected


@pytest.mark.parametrize("raw", [None, "", "   ", "CANCELLED", 3])
def test_normalize_status_rejects(raw):
    with pytest.raises(ValidationError):
        EscrowStateValidator.normalize_status(raw)
