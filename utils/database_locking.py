"""
Database Row-Level Locking Utilities
Provides row-level locking with SELECT FOR UPDATE for account and loan mutations
"""

import logging
from typing import Optional
from contextlib import contextmanager

from sqlalchemy import select, text
from sqlalchemy.orm import Session
from sqlalchemy.exc import OperationalError

from models import Loan, User
from utils.exceptions import ConflictError, NotFoundError

logger = logging.getLogger(__name__)


class DatabaseLockingService:
    """Service for managing database row-level locks with proper timeout handling"""

    # Lock timeout in seconds (PostgreSQL default: 0 = wait indefinitely)
    DEFAULT_LOCK_TIMEOUT = 30

    @classmethod
    def _set_lock_timeout(cls, session: Session, timeout_seconds: Optional[int]) -> None:
        # SQLite serializes writers with BEGIN IMMEDIATE instead
        if session.get_bind().dialect.name != "postgresql":
            return
        timeout = int(timeout_seconds or cls.DEFAULT_LOCK_TIMEOUT)
        session.execute(text(f"SET LOCAL lock_timeout = '{timeout}s'"))

    @classmethod
    def _lock(cls, session: Session, model_class, entity_id: str, timeout_seconds: Optional[int]):
        label = model_class.__name__
        try:
            cls._set_lock_timeout(session, timeout_seconds)
            entity = session.execute(
                select(model_class).where(model_class.id == entity_id).with_for_update()
            ).scalar_one_or_none()
        except OperationalError as e:
            if "lock" in str(e).lower() and "timeout" in str(e).lower():
                logger.error(f"🕐 LOCK_TIMEOUT: Failed to lock {label} {entity_id}")
                raise ConflictError(f"{label} is busy, please retry") from e
            logger.error(f"❌ LOCK_ERROR: Database error locking {label} {entity_id}: {e}")
            raise

        if entity is None:
            raise NotFoundError(f"{label} not found")

        logger.debug(f"🔒 LOCKED: {label} {entity_id} locked for update")
        return entity

    @classmethod
    @contextmanager
    def locked_user(cls, session: Session, user_id: str, timeout_seconds: Optional[int] = None):
        """
        Lock a user row for the rest of the transaction.

        Every wallet mutation for a user goes through this lock, which makes
        the primary-wallet flag flips and the wallet count checks atomic.

        Raises:
            NotFoundError: If the user does not exist
            ConflictError: If the lock could not be obtained in time
        """
        yield cls._lock(session, User, user_id, timeout_seconds)

    @classmethod
    @contextmanager
    def locked_loan(cls, session: Session, loan_id: str, timeout_seconds: Optional[int] = None):
        """Lock a loan row for the rest of the transaction (NotFoundError if missing)"""
        yield cls._lock(session, Loan, loan_id, timeout_seconds)
