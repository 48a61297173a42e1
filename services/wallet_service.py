"""
Wallet Account Service
Multi-wallet account linking with an "exactly one primary wallet" invariant

Every mutation locks the owning User row first, so flag flips, wallet counts
and the denormalized primary address change atomically per user.
"""

import logging
from typing import List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from database import managed_session
from models import ChallengePurpose, User, Wallet
from services.challenge_service import ChallengeService, challenge_service
from utils.database_locking import DatabaseLockingService
from utils.datetime_helpers import get_naive_utc_now
from utils.exceptions import ConflictError, NotFoundError, ValidationError
from utils.wallet_signatures import normalize_address

logger = logging.getLogger(__name__)


def clean_label(label: Optional[str]) -> Optional[str]:
    if label is None:
        return None
    stripped = str(label).strip()
    return stripped or None


class WalletAccountService:
    """Links, unlinks and re-flags the Stellar wallets of a user"""

    def __init__(self, challenges: Optional[ChallengeService] = None):
        self.challenges = challenges or challenge_service

    @staticmethod
    def _require_user_id(user_id: str) -> None:
        if not user_id:
            raise ValidationError("user_id is required")

    @staticmethod
    def _set_primary(session: Session, user: User, wallet: Wallet) -> None:
        """Clear every flag of the user, flag wallet, sync the denormalized address"""
        session.execute(
            update(Wallet)
            .where(Wallet.user_id == user.id, Wallet.is_primary.is_(True))
            .values(is_primary=False, updated_at=get_naive_utc_now())
            .execution_options(synchronize_session="fetch")
        )
        session.flush()
        wallet.is_primary = True
        user.primary_wallet_address = wallet.address
        session.flush()

    def link_wallet(
        self,
        user_id: str,
        address: str,
        nonce: str,
        signature: str,
        label: Optional[str] = None,
    ) -> Wallet:
        """Verify a LINK_WALLET challenge and attach the wallet to the user"""
        self._require_user_id(user_id)
        wallet_address = normalize_address(address)

        try:
            with managed_session() as session:
                with DatabaseLockingService.locked_user(session, user_id) as user:
                    taken = session.execute(
                        select(Wallet.id).where(Wallet.address == wallet_address)
                    ).first()
                    owned_as_primary = session.execute(
                        select(User.id).where(
                            User.primary_wallet_address == wallet_address, User.id != user_id
                        )
                    ).first()
                    if taken or owned_as_primary:
                        raise ConflictError("wallet address is already linked")

                    self.challenges.verify_and_consume(
                        session, wallet_address, nonce, signature,
                        ChallengePurpose.LINK_WALLET, user_id,
                    )

                    wallet_count = session.execute(
                        select(func.count(Wallet.id)).where(Wallet.user_id == user_id)
                    ).scalar_one()
                    is_first = wallet_count == 0

                    wallet = Wallet(
                        user_id=user_id,
                        address=wallet_address,
                        is_primary=is_first,
                        label=clean_label(label),
                        verified_at=get_naive_utc_now(),
                    )
                    session.add(wallet)
                    if is_first:
                        user.primary_wallet_address = wallet_address
                    session.flush()
        except IntegrityError as e:
            logger.warning(f"⚠️ WALLET_LINK_CONFLICT: {wallet_address} lost a uniqueness race: {e.orig}")
            raise ConflictError("wallet address is already linked") from e

        logger.info(
            f"✅ WALLET_LINKED: {wallet_address} -> user {user_id} "
            f"({'primary' if wallet.is_primary else 'secondary'})"
        )
        return wallet

    def unlink_wallet(self, user_id: str, wallet_id: str) -> None:
        """Remove a wallet; removing the primary promotes the oldest remaining wallet"""
        self._require_user_id(user_id)

        with managed_session() as session:
            with DatabaseLockingService.locked_user(session, user_id) as user:
                wallets = session.execute(
                    select(Wallet)
                    .where(Wallet.user_id == user_id)
                    .order_by(Wallet.created_at.asc(), Wallet.id.asc())
                ).scalars().all()

                target = next((w for w in wallets if w.id == wallet_id), None)
                if target is None:
                    raise NotFoundError("Wallet not found")
                if len(wallets) <= 1:
                    raise ValidationError("cannot unlink the only wallet")

                if target.is_primary:
                    replacement = next(w for w in wallets if w.id != wallet_id)
                    self._set_primary(session, user, replacement)
                    logger.info(f"🔁 PRIMARY_WALLET_REASSIGNED: user {user_id} -> {replacement.address}")

                session.delete(target)
                session.flush()

        logger.info(f"🗑️ WALLET_UNLINKED: {target.address} from user {user_id}")

    def set_primary_wallet(self, user_id: str, wallet_id: str) -> Wallet:
        self._require_user_id(user_id)

        with managed_session() as session:
            with DatabaseLockingService.locked_user(session, user_id) as user:
                wallet = session.execute(
                    select(Wallet).where(Wallet.id == wallet_id, Wallet.user_id == user_id)
                ).scalar_one_or_none()
                if wallet is None:
                    raise NotFoundError("Wallet not found")

                if not wallet.is_primary:
                    self._set_primary(session, user, wallet)
                    logger.info(f"⭐ PRIMARY_WALLET_SET: user {user_id} -> {wallet.address}")

        return wallet

    def get_wallets(self, user_id: str) -> List[Wallet]:
        """Wallets of a user, primary first, then oldest first"""
        self._require_user_id(user_id)

        with managed_session() as session:
            return list(session.execute(
                select(Wallet)
                .where(Wallet.user_id == user_id)
                .order_by(Wallet.is_primary.desc(), Wallet.created_at.asc(), Wallet.id.asc())
            ).scalars().all())

    def update_label(self, user_id: str, wallet_id: str, label: Optional[str]) -> Wallet:
        self._require_user_id(user_id)

        with managed_session() as session:
            wallet = session.execute(
                select(Wallet).where(Wallet.id == wallet_id, Wallet.user_id == user_id)
            ).scalar_one_or_none()
            if wallet is None:
                raise NotFoundError("Wallet not found")
            wallet.label = clean_label(label)

        return wallet

    @staticmethod
    def find_owner(session: Session, address: str) -> Optional[User]:
        """User that owns address as a linked wallet, falling back to the denormalized primary"""
        owner = session.execute(
            select(User).join(Wallet, Wallet.user_id == User.id).where(Wallet.address == address)
        ).scalar_one_or_none()
        if owner is not None:
            return owner
        return session.execute(
            select(User).where(User.primary_wallet_address == address)
        ).scalar_one_or_none()


wallet_service = WalletAccountService()
