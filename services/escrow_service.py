"""
Escrow Service - escrow lifecycle bookkeeping

Settlement happens on-chain; this service records escrows, applies status
events reported by the indexer/webhook exactly once, and expires lapsed
escrows in the background sweep.
"""

import logging
import math
import re
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional, Union

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from config import Config
from database import managed_session
from models import Escrow, EscrowStatus, User
from services.contract_service import ContractService
from services.notification_service import (
    EscrowCreated as EscrowCreatedEvent,
    EscrowUpdated,
    NotificationHub,
    notification_hub,
)
from utils.datetime_helpers import get_naive_utc_now, parse_datetime
from utils.decimal_precision import MonetaryDecimal
from utils.escrow_state_validator import EscrowStateValidator
from utils.exceptions import NotFoundError, ValidationError
from utils.optimistic_locking import OptimisticLockingError, OptimisticLockManager

logger = logging.getLogger(__name__)

ASSET_CODE_PATTERN = re.compile(r"^[A-Z0-9]{1,12}$")

CONCURRENT_CHANGE_MESSAGE = "escrow status changed concurrently, retry with latest state"


def normalize_asset_code(asset_code: Optional[str]) -> str:
    if asset_code is None or not str(asset_code).strip():
        return Config.DEFAULT_ASSET_CODE
    code = str(asset_code).strip().upper()
    if not ASSET_CODE_PATTERN.match(code):
        raise ValidationError("asset_code must be 1-12 alphanumeric characters")
    return code


def coerce_positive_int(value: Any, default: int) -> int:
    """int(value) when it is a number >= 1, otherwise default"""
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return number if number >= 1 else default


@dataclass
class EscrowCreated:
    escrow_id: str
    invocation_payload: str

    def to_dict(self) -> dict:
        return {"escrowId": self.escrow_id, "invocationPayload": self.invocation_payload}


@dataclass
class EscrowPage:
    items: List[Escrow] = field(default_factory=list)
    page: int = 1
    limit: int = 20
    total: int = 0
    total_pages: int = 1

    def to_dict(self) -> dict:
        return {
            "items": [escrow.to_dict() for escrow in self.items],
            "pagination": {
                "page": self.page,
                "limit": self.limit,
                "total": self.total,
                "totalPages": self.total_pages,
            },
        }


class EscrowService:
    """Escrow state machine with optimistic, conditional status writes"""

    CREATE_METHOD = "create_escrow"

    def __init__(self, contracts: Optional[ContractService] = None, hub: Optional[NotificationHub] = None):
        self.contracts = contracts or ContractService()
        self.hub = hub or notification_hub

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_escrow(
        self,
        buyer_id: str,
        seller_id: str,
        amount: Union[str, int, Decimal],
        expires_at: Union[str, datetime],
        asset_code: Optional[str] = None,
    ) -> EscrowCreated:
        if not buyer_id or not seller_id:
            raise ValidationError("buyer_id and seller_id are required")
        if buyer_id == seller_id:
            raise ValidationError("buyer and seller must be different users")

        escrow_amount = MonetaryDecimal.validate_positive(amount, "amount")
        asset = normalize_asset_code(asset_code)

        expiry = parse_datetime(expires_at)
        if expiry is None:
            raise ValidationError("expires_at must be a valid ISO-8601 datetime")
        if expiry <= get_naive_utc_now():
            raise ValidationError("expires_at must be in the future")

        with managed_session() as session:
            found = session.execute(
                select(func.count(User.id)).where(User.id.in_([buyer_id, seller_id]))
            ).scalar_one()
        if found != 2:
            raise ValidationError("buyer or seller does not exist")

        # Built outside any transaction; failures surface as DependencyError
        payload = self.contracts.build(
            Config.ESCROW_CONTRACT_ID,
            self.CREATE_METHOD,
            [buyer_id, seller_id, format(escrow_amount, "f"), asset, expiry],
        )

        with managed_session() as session:
            escrow = Escrow(
                buyer_id=buyer_id,
                seller_id=seller_id,
                amount=escrow_amount,
                asset_code=asset,
                status=EscrowStatus.PENDING.value,
                expires_at=expiry,
            )
            session.add(escrow)
            session.flush()
            escrow_id = escrow.id

        logger.info(
            f"✅ ESCROW_CREATED: {escrow_id} buyer={buyer_id} seller={seller_id} "
            f"amount={escrow_amount} {asset}"
        )
        self.hub.publish(EscrowCreatedEvent(escrow_id=escrow_id, buyer_id=buyer_id, seller_id=seller_id))
        return EscrowCreated(escrow_id=escrow_id, invocation_payload=payload)

    # ------------------------------------------------------------------
    # Status events
    # ------------------------------------------------------------------

    @staticmethod
    def _load_status(session: Session, escrow_id: str) -> EscrowStatus:
        status = session.execute(select(Escrow.status).where(Escrow.id == escrow_id)).scalar_one_or_none()
        if status is None:
            raise NotFoundError("Escrow not found")
        return EscrowStatus(status)

    def process_event(
        self,
        escrow_id: str,
        new_status: Union[str, EscrowStatus],
        tx_hash: Optional[str] = None,
    ) -> Escrow:
        """Apply an on-chain status event exactly once"""
        if not escrow_id:
            raise ValidationError("escrow_id is required")
        target = EscrowStateValidator.normalize_status(new_status)
        tx_hash = tx_hash.strip() if isinstance(tx_hash, str) and tx_hash.strip() else None

        with managed_session() as session:
            current = self._load_status(session, escrow_id)
            EscrowStateValidator.assert_transition(current, target, escrow_id)

            updates = {}
            if target != current:
                updates["status"] = target.value
            # Settled and lapsed escrows keep the hash they finished with
            if tx_hash and not EscrowStateValidator.is_terminal_state(current):
                updates["external_tx_hash"] = tx_hash

            if updates:
                updates["updated_at"] = get_naive_utc_now()
                try:
                    OptimisticLockManager(session).conditional_update(
                        Escrow, escrow_id, {"status": current.value}, updates
                    )
                except OptimisticLockingError:
                    logger.warning(f"🔁 ESCROW_CONCURRENT_CHANGE: {escrow_id} moved away from {current.value}")
                    raise ValidationError(CONCURRENT_CHANGE_MESSAGE)

            escrow = session.execute(
                select(Escrow).where(Escrow.id == escrow_id).execution_options(populate_existing=True)
            ).scalar_one()

        if target != current:
            logger.info(f"🔄 ESCROW_STATUS_UPDATED: {escrow_id} {current.value} -> {target.value}")
            self.hub.publish(EscrowUpdated(escrow_id=escrow_id, status=target.value))
        else:
            logger.debug(f"ESCROW_STATUS_UNCHANGED: {escrow_id} already {current.value}")
        return escrow

    @staticmethod
    def _expiry_candidates(session: Session, now: datetime) -> List[str]:
        return list(session.execute(
            select(Escrow.id).where(
                Escrow.status == EscrowStatus.ACTIVE.value,
                Escrow.expires_at < now,
            )
        ).scalars().all())

    def timeout_sweep(self) -> List[str]:
        """Flip every ACTIVE escrow past its expiry to EXPIRED; returns the ids actually flipped"""
        now = get_naive_utc_now()

        with managed_session() as session:
            candidates = self._expiry_candidates(session, now)
            if not candidates:
                return []

            result = session.execute(
                update(Escrow)
                .where(
                    Escrow.id.in_(candidates),
                    Escrow.status == EscrowStatus.ACTIVE.value,
                )
                .values(status=EscrowStatus.EXPIRED.value, updated_at=now)
                .returning(Escrow.id)
                .execution_options(synchronize_session=False)
            )
            flipped = [row[0] for row in result]

        if flipped:
            logger.info(f"⏰ ESCROWS_EXPIRED: {len(flipped)} of {len(candidates)} candidates")
        for escrow_id in flipped:
            self.hub.publish(EscrowUpdated(escrow_id=escrow_id, status=EscrowStatus.EXPIRED.value))
        return flipped

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_escrow(self, escrow_id: str) -> Escrow:
        with managed_session() as session:
            escrow = session.get(Escrow, escrow_id) if escrow_id else None
            if escrow is None:
                raise NotFoundError("Escrow not found")
            return escrow

    def list_escrows(
        self,
        buyer_id: Optional[str] = None,
        seller_id: Optional[str] = None,
        status: Optional[Union[str, EscrowStatus]] = None,
        page: Any = 1,
        limit: Any = None,
    ) -> EscrowPage:
        page_number = coerce_positive_int(page, 1)
        page_size = min(
            coerce_positive_int(limit, Config.ESCROW_DEFAULT_PAGE_SIZE),
            Config.ESCROW_MAX_PAGE_SIZE,
        )

        conditions = []
        if buyer_id:
            conditions.append(Escrow.buyer_id == buyer_id)
        if seller_id:
            conditions.append(Escrow.seller_id == seller_id)
        if status is not None and status != "":
            conditions.append(Escrow.status == EscrowStateValidator.normalize_status(status).value)

        with managed_session() as session:
            total = session.execute(select(func.count(Escrow.id)).where(*conditions)).scalar_one()
            items = list(session.execute(
                select(Escrow)
                .where(*conditions)
                .order_by(Escrow.created_at.desc(), Escrow.id.desc())
                .offset((page_number - 1) * page_size)
                .limit(page_size)
            ).scalars().all())

        return EscrowPage(
            items=items,
            page=page_number,
            limit=page_size,
            total=total,
            total_pages=max(1, math.ceil(total / page_size)),
        )


escrow_service = EscrowService()
