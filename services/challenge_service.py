"""
Wallet Challenge Service
Issues single-use nonces and verifies signed challenges for login and wallet linking
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Union

from sqlalchemy import delete, update
from sqlalchemy.orm import Session

from config import Config
from database import managed_session
from models import ChallengePurpose, User, WalletChallenge
from utils.datetime_helpers import get_naive_utc_now, to_iso_utc
from utils.exceptions import NotFoundError, UnauthorizedError, ValidationError
from utils.wallet_signatures import decode_signature, normalize_address, verify_signature

logger = logging.getLogger(__name__)

NONCE_BYTES = 24

_ACTIONS = {
    ChallengePurpose.LOGIN: "login",
    ChallengePurpose.LINK_WALLET: "link-wallet",
}


@dataclass
class ChallengeIssued:
    nonce: str
    message: str
    expires_at: datetime

    def to_dict(self) -> dict:
        return {"nonce": self.nonce, "message": self.message, "expiresAt": to_iso_utc(self.expires_at)}


class ChallengeService:
    """Challenge-response authentication by wallet signature"""

    @staticmethod
    def normalize_purpose(purpose: Union[str, ChallengePurpose, None]) -> ChallengePurpose:
        if isinstance(purpose, ChallengePurpose):
            return purpose
        if isinstance(purpose, str):
            key = purpose.strip().upper().replace("-", "_")
            if key in ChallengePurpose.__members__:
                return ChallengePurpose[key]
        raise ValidationError("purpose must be LOGIN or LINK_WALLET")

    @staticmethod
    def build_message(purpose: ChallengePurpose, nonce: str) -> str:
        """Canonical text the wallet signs, e.g. 'stellovault:login:<nonce>'"""
        return f"{Config.CHALLENGE_MESSAGE_PREFIX}:{_ACTIONS[purpose]}:{nonce}"

    def issue(
        self,
        address: str,
        purpose: Union[str, ChallengePurpose],
        user_id: Optional[str] = None,
    ) -> ChallengeIssued:
        """Persist a fresh challenge and return the message the wallet has to sign"""
        wallet_address = normalize_address(address)
        challenge_purpose = self.normalize_purpose(purpose)

        if challenge_purpose == ChallengePurpose.LINK_WALLET and not user_id:
            raise ValidationError("user_id is required for LINK_WALLET challenges")

        nonce = secrets.token_hex(NONCE_BYTES)
        expires_at = get_naive_utc_now() + timedelta(minutes=Config.CHALLENGE_TTL_MINUTES)

        with managed_session() as session:
            if user_id and session.get(User, user_id) is None:
                raise NotFoundError("User not found")

            session.add(WalletChallenge(
                wallet_address=wallet_address,
                nonce=nonce,
                purpose=challenge_purpose.value,
                user_id=user_id,
                expires_at=expires_at,
            ))

        logger.info(
            f"🎟️ CHALLENGE_ISSUED: {challenge_purpose.value} for {wallet_address} "
            f"(expires {expires_at.isoformat()})"
        )
        return ChallengeIssued(
            nonce=nonce,
            message=self.build_message(challenge_purpose, nonce),
            expires_at=expires_at,
        )

    def verify_and_consume(
        self,
        session: Session,
        address: str,
        nonce: str,
        signature: str,
        purpose: Union[str, ChallengePurpose],
        user_id: Optional[str] = None,
    ) -> None:
        """
        Verify the signed challenge and mark it used inside the caller's transaction.

        The conditional UPDATE is the single-use guard: of two concurrent
        callers presenting the same nonce, exactly one sees rowcount 1.
        """
        wallet_address = normalize_address(address)
        challenge_purpose = self.normalize_purpose(purpose)

        if not isinstance(nonce, str) or not nonce.strip():
            raise ValidationError("nonce is required")
        nonce = nonce.strip()
        signature_bytes = decode_signature(signature)

        message = self.build_message(challenge_purpose, nonce)
        if not verify_signature(wallet_address, message, signature_bytes):
            raise UnauthorizedError("invalid signature")

        now = get_naive_utc_now()
        conditions = [
            WalletChallenge.wallet_address == wallet_address,
            WalletChallenge.nonce == nonce,
            WalletChallenge.purpose == challenge_purpose.value,
            WalletChallenge.used_at.is_(None),
            WalletChallenge.expires_at > now,
        ]
        if user_id is not None:
            conditions.append(WalletChallenge.user_id == user_id)

        result = session.execute(
            update(WalletChallenge)
            .where(*conditions)
            .values(used_at=now)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount != 1:
            logger.warning(f"🚫 CHALLENGE_REJECTED: {challenge_purpose.value} for {wallet_address}")
            raise UnauthorizedError("invalid or expired challenge")

        logger.info(f"✅ CHALLENGE_CONSUMED: {challenge_purpose.value} for {wallet_address}")

    def purge_expired(self, older_than: Optional[datetime] = None) -> int:
        """Delete challenges that expired before the cutoff; returns rows removed"""
        cutoff = older_than or (get_naive_utc_now() - timedelta(hours=Config.CHALLENGE_RETENTION_HOURS))

        with managed_session() as session:
            result = session.execute(
                delete(WalletChallenge)
                .where(WalletChallenge.expires_at < cutoff)
                .execution_options(synchronize_session=False)
            )
            removed = result.rowcount or 0

        if removed:
            logger.info(f"🧹 CHALLENGES_PURGED: {removed} expired before {cutoff.isoformat()}")
        return removed


challenge_service = ChallengeService()
