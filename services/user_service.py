"""
User Service
Account creation, lookup and wallet-signature login
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from database import managed_session
from models import ChallengePurpose, User, Wallet
from services.challenge_service import ChallengeService, challenge_service
from services.wallet_service import WalletAccountService
from utils.datetime_helpers import get_naive_utc_now
from utils.exceptions import NotFoundError, ValidationError
from utils.wallet_signatures import normalize_address

logger = logging.getLogger(__name__)


@dataclass
class UserProfile:
    user: User
    primary_wallet: Optional[Wallet]
    wallets: List[Wallet] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "id": self.user.id,
            "name": self.user.name,
            "primaryWalletAddress": self.user.primary_wallet_address,
            "primaryWallet": self.primary_wallet.to_dict() if self.primary_wallet else None,
            "wallets": [wallet.to_dict() for wallet in self.wallets],
            "createdAt": self.user.created_at.isoformat() if self.user.created_at else None,
        }


class UserService:
    """Accounts are keyed by their primary Stellar wallet address"""

    def __init__(self, challenges: Optional[ChallengeService] = None):
        self.challenges = challenges or challenge_service

    @staticmethod
    def _create_with_primary_wallet(session: Session, address: str, name: Optional[str]) -> User:
        user = User(primary_wallet_address=address, name=(name.strip() or None) if name else None)
        session.add(user)
        session.flush()
        session.add(Wallet(
            user_id=user.id,
            address=address,
            is_primary=True,
            verified_at=get_naive_utc_now(),
        ))
        session.flush()
        return user

    def create_user(self, address: str, name: Optional[str] = None) -> User:
        """Idempotent on the address: returns the existing owner or creates user plus primary wallet"""
        wallet_address = normalize_address(address)

        try:
            with managed_session() as session:
                existing = WalletAccountService.find_owner(session, wallet_address)
                if existing is not None:
                    logger.debug(f"👤 USER_EXISTS: {wallet_address} -> {existing.id}")
                    return existing
                user = self._create_with_primary_wallet(session, wallet_address, name)
        except IntegrityError:
            # A concurrent request created the same account first
            with managed_session() as session:
                winner = WalletAccountService.find_owner(session, wallet_address)
            if winner is None:
                raise
            logger.info(f"👥 USER_CREATE_RACE: returning existing account {winner.id} for {wallet_address}")
            return winner

        logger.info(f"✅ USER_CREATED: {user.id} with primary wallet {wallet_address}")
        return user

    def get_user(self, user_id: str) -> UserProfile:
        if not user_id:
            raise ValidationError("user_id is required")

        with managed_session() as session:
            user = session.get(User, user_id)
            if user is None:
                raise NotFoundError("User not found")
            wallets = list(session.execute(
                select(Wallet)
                .where(Wallet.user_id == user_id)
                .order_by(Wallet.is_primary.desc(), Wallet.created_at.asc(), Wallet.id.asc())
            ).scalars().all())

        primary = next((wallet for wallet in wallets if wallet.is_primary), None)
        return UserProfile(user=user, primary_wallet=primary, wallets=wallets)

    def login(self, address: str, nonce: str, signature: str) -> User:
        """Consume a LOGIN challenge and resolve (or create) the owning account"""
        wallet_address = normalize_address(address)

        with managed_session() as session:
            self.challenges.verify_and_consume(
                session, wallet_address, nonce, signature, ChallengePurpose.LOGIN
            )
            user = WalletAccountService.find_owner(session, wallet_address)
            created = user is None
            if created:
                user = self._create_with_primary_wallet(session, wallet_address, None)

        if created:
            logger.info(f"✅ USER_CREATED_ON_LOGIN: {user.id} with primary wallet {wallet_address}")
        logger.info(f"🔑 LOGIN_SUCCESS: user {user.id} via {wallet_address}")
        return user


user_service = UserService()
