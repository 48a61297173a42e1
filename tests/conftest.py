"""
Shared Test Fixtures for the Trade-Finance Ledger

Key Components:
1. Temporary file-backed SQLite database per test (real transactions, real constraints)
2. Fake contract invocation builder so no Soroban tooling is needed
3. Isolated notification hub with a recording subscriber
4. Throwaway Stellar keypairs and challenge signing helpers
"""

import logging
from datetime import timedelta
from decimal import Decimal
from typing import Any, List, Sequence, Tuple

import pytest
from sqlalchemy import update
from stellar_sdk import Keypair

import database
from config import Config
from database import managed_session
from models import Escrow, User
from services.challenge_service import ChallengeIssued, ChallengeService
from services.contract_service import ContractService, InvocationBuilder
from services.escrow_service import EscrowService
from services.loan_service import LoanService
from services.notification_service import NotificationHub, QueueSubscriber
from services.user_service import UserService
from services.wallet_service import WalletAccountService
from utils.datetime_helpers import get_naive_utc_now

logger = logging.getLogger(__name__)

ESCROW_CONTRACT = "CDLZFC3SYJYDZT7K67VZ75HPJVIEUVNIXF47ZG2FB2RMQQVU2HHGCYSC"
LOAN_CONTRACT = "CA3D5KRYM6CB7OWQ6TWYRR3Z4T7GNZLKERYNZGGA5SOAOPIFY6YQGAXE"


class FakeInvocationBuilder(InvocationBuilder):
    """Records every build request and returns a deterministic base64 payload"""

    def __init__(self):
        self.calls: List[Tuple[str, str, List[Any]]] = []
        self.fail = False

    def build_invocation(self, contract_id: str, method: str, args: Sequence[Any]) -> str:
        if self.fail:
            raise RuntimeError("soroban rpc unavailable")
        self.calls.append((contract_id, method, list(args)))
        return "AAAAAGZha2UtaW52b2NhdGlvbg=="


@pytest.fixture(autouse=True)
def test_database(tmp_path):
    """Fresh SQLite file per test, bound to the global session factory"""
    engine = database.init_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
    assert database.create_tables(), "Schema creation must succeed"
    yield engine
    engine.dispose()
    database.engine = None


@pytest.fixture(autouse=True)
def contract_config(monkeypatch):
    monkeypatch.setattr(Config, "ESCROW_CONTRACT_ID", ESCROW_CONTRACT)
    monkeypatch.setattr(Config, "LOAN_CONTRACT_ID", LOAN_CONTRACT)
    monkeypatch.setattr(Config, "MIN_COLLATERAL_RATIO", Decimal("1.5"))
    monkeypatch.setattr(Config, "CHALLENGE_TTL_MINUTES", 10)


@pytest.fixture
def invocation_builder():
    return FakeInvocationBuilder()


@pytest.fixture
def hub():
    return NotificationHub()


@pytest.fixture
def events(hub):
    """Every event published on the test hub, in order"""
    subscriber = QueueSubscriber(maxsize=100)
    token = hub.subscribe(subscriber)
    yield subscriber
    hub.unsubscribe(token)


@pytest.fixture
def challenge_service():
    return ChallengeService()


@pytest.fixture
def wallet_service(challenge_service):
    return WalletAccountService(challenge_service)


@pytest.fixture
def user_service(challenge_service):
    return UserService(challenge_service)


@pytest.fixture
def escrow_service(invocation_builder, hub):
    return EscrowService(ContractService(invocation_builder), hub)


@pytest.fixture
def loan_service(invocation_builder, hub):
    return LoanService(ContractService(invocation_builder), hub)


def sign(keypair: Keypair, challenge: ChallengeIssued) -> str:
    """Hex encoded detached signature over the challenge message"""
    return keypair.sign(challenge.message.encode("utf-8")).hex()


@pytest.fixture
def make_user(user_service):
    """Factory: create a user with a fresh keypair as its primary wallet"""

    def _make_user(name: str = None) -> Tuple[User, Keypair]:
        keypair = Keypair.random()
        user = user_service.create_user(keypair.public_key, name=name)
        return user, keypair

    return _make_user


@pytest.fixture
def link_new_wallet(challenge_service, wallet_service):
    """Factory: link a brand new keypair to user_id through the full challenge flow"""

    def _link(user_id: str, label: str = None):
        keypair = Keypair.random()
        challenge = challenge_service.issue(keypair.public_key, "LINK_WALLET", user_id)
        wallet = wallet_service.link_wallet(
            user_id, keypair.public_key, challenge.nonce, sign(keypair, challenge), label
        )
        return wallet, keypair

    return _link


@pytest.fixture
def parties(make_user):
    buyer, _ = make_user("buyer")
    seller, _ = make_user("seller")
    return buyer, seller


def future(hours: int = 24):
    return get_naive_utc_now() + timedelta(hours=hours)


def force_escrow_state(escrow_id: str, **values) -> None:
    """Write escrow columns directly, bypassing the state machine"""
    with managed_session() as session:
        session.execute(update(Escrow).where(Escrow.id == escrow_id).values(**values))
