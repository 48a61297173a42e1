"""
Escrow State Transition Validator
================================

Prevents invalid state transitions and ensures escrow lifecycle integrity.
COMPLETED and EXPIRED are terminal: once an escrow settles or lapses no
on-chain event can move it again.
"""

import logging
from typing import Dict, Set, Optional, Tuple, Union
from models import EscrowStatus
from utils.exceptions import ValidationError

logger = logging.getLogger(__name__)


class StateTransitionError(ValidationError):
    """Raised when an invalid state transition is attempted"""
    pass


class EscrowStateValidator:
    """
    Validates escrow state transitions to ensure business logic integrity.

    Self-transitions are accepted as no-ops so a replayed event is harmless.
    """

    VALID_TRANSITIONS: Dict[EscrowStatus, Set[EscrowStatus]] = {
        # PENDING: created off-chain, waiting for the contract to confirm funding
        EscrowStatus.PENDING: {
            EscrowStatus.PENDING,
            EscrowStatus.ACTIVE,
            EscrowStatus.COMPLETED,
            EscrowStatus.DISPUTED,
            EscrowStatus.EXPIRED,
        },

        # ACTIVE: funds locked in the contract
        EscrowStatus.ACTIVE: {
            EscrowStatus.ACTIVE,
            EscrowStatus.COMPLETED,
            EscrowStatus.DISPUTED,
            EscrowStatus.EXPIRED,
        },

        # DISPUTED: can be resolved back to ACTIVE or settled
        EscrowStatus.DISPUTED: {
            EscrowStatus.DISPUTED,
            EscrowStatus.ACTIVE,
            EscrowStatus.COMPLETED,
            EscrowStatus.EXPIRED,
        },

        EscrowStatus.COMPLETED: {EscrowStatus.COMPLETED},
        EscrowStatus.EXPIRED: {EscrowStatus.EXPIRED},
    }

    TERMINAL_STATES: Set[EscrowStatus] = {
        EscrowStatus.COMPLETED,
        EscrowStatus.EXPIRED,
    }

    @staticmethod
    def normalize_status(status: Union[str, EscrowStatus, None]) -> EscrowStatus:
        """Parse a status name case-insensitively, raising ValidationError on unknown values"""
        if isinstance(status, EscrowStatus):
            return status
        if not isinstance(status, str) or not status.strip():
            raise ValidationError("status is required")
        try:
            return EscrowStatus(status.strip().upper())
        except ValueError:
            valid = ", ".join(s.value for s in EscrowStatus)
            raise ValidationError(f"Invalid status '{status}'. Use one of: {valid}")

    @classmethod
    def validate_transition(
        cls,
        from_status: EscrowStatus,
        to_status: EscrowStatus,
        escrow_id: Optional[str] = None,
    ) -> Tuple[bool, str]:
        """
        Validate if a state transition is allowed.

        Args:
            from_status: Current escrow status
            to_status: Desired new status
            escrow_id: Escrow ID for logging (optional)

        Returns:
            Tuple[bool, str]: (is_valid, reason)
        """
        escrow_ref = f"Escrow {escrow_id}" if escrow_id else "Escrow"

        if from_status == to_status:
            return True, "No status change required"

        valid_next_states = cls.VALID_TRANSITIONS.get(from_status, set())

        if to_status in valid_next_states:
            logger.debug(f"✅ VALID_TRANSITION: {escrow_ref} {from_status.value} -> {to_status.value}")
            return True, "Valid state transition"

        options = sorted(s.value for s in valid_next_states)
        logger.warning(
            f"❌ INVALID_TRANSITION: {escrow_ref} {from_status.value} -> {to_status.value} "
            f"Valid options: {options}"
        )
        return False, f"Invalid transition: {from_status.value} -> {to_status.value}"

    @classmethod
    def assert_transition(
        cls,
        from_status: Union[str, EscrowStatus],
        to_status: Union[str, EscrowStatus],
        escrow_id: Optional[str] = None,
    ) -> None:
        """Raise StateTransitionError unless from_status -> to_status is allowed"""
        is_valid, reason = cls.validate_transition(
            cls.normalize_status(from_status), cls.normalize_status(to_status), escrow_id
        )
        if not is_valid:
            raise StateTransitionError(reason)

    @classmethod
    def get_valid_next_states(cls, current_status: EscrowStatus) -> Set[EscrowStatus]:
        """Get all valid next states from the current status"""
        return cls.VALID_TRANSITIONS.get(current_status, set())

    @classmethod
    def is_terminal_state(cls, status: EscrowStatus) -> bool:
        return status in cls.TERMINAL_STATES
