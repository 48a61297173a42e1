"""
Optimistic Locking Infrastructure
Compare-and-set updates to prevent race conditions without holding row locks
"""

import logging
from typing import Any, Dict, Type

from sqlalchemy import update
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from models import Base

logger = logging.getLogger(__name__)


class OptimisticLockingError(Exception):
    """Raised when the row no longer holds the expected values"""
    pass


class OptimisticLockManager:
    """
    Manager for optimistic locking operations

    Rather than a version counter, the caller names the column values it read
    (e.g. the current status) and the UPDATE only applies while they still hold.
    """

    def __init__(self, session: Session):
        self.session = session

    def conditional_update(
        self,
        model_class: Type[Base],
        entity_id: Any,
        expected: Dict[str, Any],
        updates: Dict[str, Any],
    ) -> int:
        """
        UPDATE ... WHERE id = :entity_id AND <column> = <expected value> ...

        Returns:
            int: number of rows updated (always 1)

        Raises:
            OptimisticLockingError: If another writer changed the row first
        """
        conditions = [model_class.id == entity_id]
        for column_name, value in expected.items():
            conditions.append(getattr(model_class, column_name) == value)

        stmt = (
            update(model_class)
            .where(*conditions)
            .values(**updates)
            .execution_options(synchronize_session=False)
        )

        try:
            result = self.session.execute(stmt)
        except SQLAlchemyError as e:
            logger.error(f"❌ Database error during conditional update: {e}")
            raise

        if result.rowcount != 1:
            logger.warning(
                f"🔒 Optimistic lock conflict: {model_class.__name__} id={entity_id} "
                f"expected={expected}"
            )
            raise OptimisticLockingError(
                f"{model_class.__name__} id={entity_id} was modified by another process"
            )

        logger.debug(f"✅ Conditional update successful: {model_class.__name__} id={entity_id} {updates}")
        return result.rowcount
