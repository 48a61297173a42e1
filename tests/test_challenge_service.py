"""
Wallet challenge tests: issuing, signature verification and single-use consumption
"""

import base64
from datetime import timedelta

import pytest
from sqlalchemy import select, update
from stellar_sdk import Keypair

from config import Config
from database import managed_session
from models import ChallengePurpose, WalletChallenge
from utils.datetime_helpers import get_naive_utc_now
from utils.exceptions import InvalidAddressError, NotFoundError, UnauthorizedError, ValidationError

from conftest import sign


def _load_challenge(nonce: str) -> WalletChallenge:
    with managed_session() as session:
        return session.execute(select(WalletChallenge).where(WalletChallenge.nonce == nonce)).scalar_one()


class TestChallengeIssue:
    """Issuing challenges"""

    def test_login_challenge_message_and_expiry(self, challenge_service):
        keypair = Keypair.random()
        before = get_naive_utc_now()

        issued = challenge_service.issue(keypair.public_key, "login")

        assert len(issued.nonce) == 48, "24 random bytes hex encoded"
        assert issued.message == f"stellovault:login:{issued.nonce}"
        assert before + timedelta(minutes=10) <= issued.expires_at <= get_naive_utc_now() + timedelta(minutes=10)

        stored = _load_challenge(issued.nonce)
        assert stored.purpose == ChallengePurpose.LOGIN.value
        assert stored.used_at is None
        assert stored.wallet_address == keypair.public_key

    def test_link_challenge_uses_link_wallet_action(self, challenge_service, make_user):
        user, _ = make_user()
        keypair = Keypair.random()

        issued = challenge_service.issue(keypair.public_key, ChallengePurpose.LINK_WALLET, user.id)

        assert issued.message == f"stellovault:link-wallet:{issued.nonce}"
        assert _load_challenge(issued.nonce).user_id == user.id

    def test_address_is_trimmed_and_uppercased(self, challenge_service):
        keypair = Keypair.random()

        issued = challenge_service.issue(f"  {keypair.public_key.lower()}  ", "LOGIN")

        assert _load_challenge(issued.nonce).wallet_address == keypair.public_key

    def test_nonces_are_unique(self, challenge_service):
        keypair = Keypair.random()
        nonces = {challenge_service.issue(keypair.public_key, "LOGIN").nonce for _ in range(5)}
        assert len(nonces) == 5

    def test_message_is_deterministic(self, challenge_service):
        assert challenge_service.build_message(ChallengePurpose.LOGIN, "abc") == "stellovault:login:abc"
        assert challenge_service.build_message(ChallengePurpose.LOGIN, "abc") == \
            challenge_service.build_message(ChallengePurpose.LOGIN, "abc")

    @pytest.mark.parametrize("address", ["", "   ", "not-an-address", "GABC", Keypair.random().secret])
    def test_invalid_address_rejected(self, challenge_service, address):
        with pytest.raises(InvalidAddressError):
            challenge_service.issue(address, "LOGIN")

    def test_unknown_purpose_rejected(self, challenge_service):
        with pytest.raises(ValidationError):
            challenge_service.issue(Keypair.random().public_key, "TRANSFER")

    def test_link_wallet_requires_user(self, challenge_service):
        with pytest.raises(ValidationError):
            challenge_service.issue(Keypair.random().public_key, "LINK_WALLET")

    def test_link_wallet_for_unknown_user(self, challenge_service):
        with pytest.raises(NotFoundError):
            challenge_service.issue(Keypair.random().public_key, "LINK_WALLET", "missing-user")


class TestChallengeConsumption:
    """verify_and_consume semantics"""

    def test_valid_signature_consumes_once(self, challenge_service):
        keypair = Keypair.random()
        issued = challenge_service.issue(keypair.public_key, "LOGIN")
        signature = sign(keypair, issued)

        with managed_session() as session:
            challenge_service.verify_and_consume(session, keypair.public_key, issued.nonce, signature, "LOGIN")

        assert _load_challenge(issued.nonce).used_at is not None

        with pytest.raises(UnauthorizedError, match="invalid or expired challenge"):
            with managed_session() as session:
                challenge_service.verify_and_consume(
                    session, keypair.public_key, issued.nonce, signature, "LOGIN"
                )

    def test_base64_signature_accepted(self, challenge_service):
        keypair = Keypair.random()
        issued = challenge_service.issue(keypair.public_key, "LOGIN")
        signature = base64.b64encode(keypair.sign(issued.message.encode())).decode()

        with managed_session() as session:
            challenge_service.verify_and_consume(session, keypair.public_key, issued.nonce, signature, "LOGIN")

        assert _load_challenge(issued.nonce).used_at is not None

    def test_wrong_key_signature_is_unauthorized(self, challenge_service):
        keypair = Keypair.random()
        impostor = Keypair.random()
        issued = challenge_service.issue(keypair.public_key, "LOGIN")

        with pytest.raises(UnauthorizedError, match="invalid signature"):
            with managed_session() as session:
                challenge_service.verify_and_consume(
                    session, keypair.public_key, issued.nonce, sign(impostor, issued), "LOGIN"
                )

        assert _load_challenge(issued.nonce).used_at is None, "Failed attempts must not burn the nonce"

    def test_signature_for_other_purpose_is_unauthorized(self, challenge_service):
        keypair = Keypair.random()
        issued = challenge_service.issue(keypair.public_key, "LOGIN")
        link_message = f"{Config.CHALLENGE_MESSAGE_PREFIX}:link-wallet:{issued.nonce}"
        signature = keypair.sign(link_message.encode()).hex()

        with pytest.raises(UnauthorizedError):
            with managed_session() as session:
                challenge_service.verify_and_consume(
                    session, keypair.public_key, issued.nonce, signature, "LOGIN"
                )

    @pytest.mark.parametrize("signature", ["", "zz", "abcd", base64.b64encode(b"x" * 32).decode()])
    def test_malformed_signature_is_validation_error(self, challenge_service, signature):
        keypair = Keypair.random()
        issued = challenge_service.issue(keypair.public_key, "LOGIN")

        with pytest.raises(ValidationError):
            with managed_session() as session:
                challenge_service.verify_and_consume(
                    session, keypair.public_key, issued.nonce, signature, "LOGIN"
                )

    def test_empty_nonce_is_validation_error(self, challenge_service):
        keypair = Keypair.random()
        with pytest.raises(ValidationError):
            with managed_session() as session:
                challenge_service.verify_and_consume(session, keypair.public_key, "  ", "ab" * 64, "LOGIN")

    def test_expired_challenge_is_unauthorized(self, challenge_service):
        keypair = Keypair.random()
        issued = challenge_service.issue(keypair.public_key, "LOGIN")
        with managed_session() as session:
            session.execute(
                update(WalletChallenge)
                .where(WalletChallenge.nonce == issued.nonce)
                .values(expires_at=get_naive_utc_now() - timedelta(seconds=1))
            )

        with pytest.raises(UnauthorizedError, match="invalid or expired challenge"):
            with managed_session() as session:
                challenge_service.verify_and_consume(
                    session, keypair.public_key, issued.nonce, sign(keypair, issued), "LOGIN"
                )

    def test_unknown_nonce_is_unauthorized(self, challenge_service):
        keypair = Keypair.random()
        nonce = "ab" * 24
        signature = keypair.sign(f"stellovault:login:{nonce}".encode()).hex()

        with pytest.raises(UnauthorizedError):
            with managed_session() as session:
                challenge_service.verify_and_consume(session, keypair.public_key, nonce, signature, "LOGIN")

    def test_link_challenge_bound_to_user(self, challenge_service, make_user):
        owner, _ = make_user()
        other, _ = make_user()
        keypair = Keypair.random()
        issued = challenge_service.issue(keypair.public_key, "LINK_WALLET", owner.id)

        with pytest.raises(UnauthorizedError):
            with managed_session() as session:
                challenge_service.verify_and_consume(
                    session, keypair.public_key, issued.nonce, sign(keypair, issued), "LINK_WALLET", other.id
                )

        with managed_session() as session:
            challenge_service.verify_and_consume(
                session, keypair.public_key, issued.nonce, sign(keypair, issued), "LINK_WALLET", owner.id
            )

    def test_rollback_leaves_nonce_unused(self, challenge_service):
        keypair = Keypair.random()
        issued = challenge_service.issue(keypair.public_key, "LOGIN")

        with pytest.raises(RuntimeError):
            with managed_session() as session:
                challenge_service.verify_and_consume(
                    session, keypair.public_key, issued.nonce, sign(keypair, issued), "LOGIN"
                )
                raise RuntimeError("later step failed")

        assert _load_challenge(issued.nonce).used_at is None


class TestChallengePurge:
    def test_purge_removes_only_old_challenges(self, challenge_service):
        keypair = Keypair.random()
        old = challenge_service.issue(keypair.public_key, "LOGIN")
        fresh = challenge_service.issue(keypair.public_key, "LOGIN")
        with managed_session() as session:
            session.execute(
                update(WalletChallenge)
                .where(WalletChallenge.nonce == old.nonce)
                .values(expires_at=get_naive_utc_now() - timedelta(hours=Config.CHALLENGE_RETENTION_HOURS + 1))
            )

        removed = challenge_service.purge_expired()

        assert removed == 1
        with managed_session() as session:
            remaining = session.execute(select(WalletChallenge.nonce)).scalars().all()
        assert remaining == [fresh.nonce]
