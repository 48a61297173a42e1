"""
User account tests: idempotent creation, profile lookup and wallet-signature login
"""

import pytest
from sqlalchemy import func, select
from stellar_sdk import Keypair

from database import managed_session
from models import User, Wallet
from utils.exceptions import InvalidAddressError, NotFoundError, UnauthorizedError

from conftest import sign


class TestCreateUser:

    def test_creates_user_with_primary_wallet(self, user_service):
        keypair = Keypair.random()

        user = user_service.create_user(keypair.public_key, name="  Ada  ")

        assert user.primary_wallet_address == keypair.public_key
        assert user.name == "Ada"
        profile = user_service.get_user(user.id)
        assert profile.primary_wallet is not None
        assert profile.primary_wallet.address == keypair.public_key
        assert [w.is_primary for w in profile.wallets] == [True]

    def test_create_is_idempotent_on_address(self, user_service):
        keypair = Keypair.random()

        first = user_service.create_user(keypair.public_key)
        second = user_service.create_user(keypair.public_key.lower())

        assert first.id == second.id
        with managed_session() as session:
            assert session.execute(select(func.count(User.id))).scalar_one() == 1
            assert session.execute(select(func.count(Wallet.id))).scalar_one() == 1

    def test_create_returns_owner_of_linked_wallet(self, user_service, make_user, link_new_wallet):
        owner, _ = make_user()
        _, linked_keypair = link_new_wallet(owner.id)

        assert user_service.create_user(linked_keypair.public_key).id == owner.id

    def test_invalid_address(self, user_service):
        with pytest.raises(InvalidAddressError):
            user_service.create_user("GNOTREAL")


class TestGetUser:

    def test_profile_lists_primary_first(self, user_service, make_user, link_new_wallet):
        user, keypair = make_user()
        link_new_wallet(user.id, label="savings")

        profile = user_service.get_user(user.id)

        assert profile.user.id == user.id
        assert profile.wallets[0].address == keypair.public_key
        assert profile.wallets[1].label == "savings"
        data = profile.to_dict()
        assert data["primaryWalletAddress"] == keypair.public_key
        assert len(data["wallets"]) == 2

    def test_missing_user(self, user_service):
        with pytest.raises(NotFoundError):
            user_service.get_user("does-not-exist")


class TestLogin:

    def test_first_login_creates_account(self, user_service, challenge_service):
        keypair = Keypair.random()
        challenge = challenge_service.issue(keypair.public_key, "LOGIN")

        user = user_service.login(keypair.public_key, challenge.nonce, sign(keypair, challenge))

        assert user.primary_wallet_address == keypair.public_key
        assert user_service.get_user(user.id).primary_wallet.address == keypair.public_key

    def test_login_with_linked_wallet_resolves_owner(self, user_service, challenge_service, make_user, link_new_wallet):
        owner, _ = make_user()
        _, linked_keypair = link_new_wallet(owner.id)
        challenge = challenge_service.issue(linked_keypair.public_key, "LOGIN")

        user = user_service.login(linked_keypair.public_key, challenge.nonce, sign(linked_keypair, challenge))

        assert user.id == owner.id

    def test_login_nonce_is_single_use(self, user_service, challenge_service):
        keypair = Keypair.random()
        challenge = challenge_service.issue(keypair.public_key, "LOGIN")
        signature = sign(keypair, challenge)

        user_service.login(keypair.public_key, challenge.nonce, signature)
        with pytest.raises(UnauthorizedError):
            user_service.login(keypair.public_key, challenge.nonce, signature)

    def test_failed_login_creates_nothing(self, user_service, challenge_service):
        keypair = Keypair.random()
        challenge = challenge_service.issue(keypair.public_key, "LOGIN")

        with pytest.raises(UnauthorizedError):
            user_service.login(keypair.public_key, challenge.nonce, sign(Keypair.random(), challenge))

        with managed_session() as session:
            assert session.execute(select(func.count(User.id))).scalar_one() == 0
