"""
Trade-Finance Bookkeeping - Database Schema
===========================================

Off-chain records for a Stellar based trade-finance platform:
- Users and the ed25519 wallets linked to them (exactly one primary)
- Single-use wallet signature challenges
- Escrows and loans whose settlement happens on-chain
- Append-only loan repayments

Monetary columns use Numeric(20, 7), the precision of Stellar assets.
All timestamps are timezone-naive UTC.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from sqlalchemy import (
    String, Numeric, DateTime, Boolean, ForeignKey, UniqueConstraint, Index, CheckConstraint
)
from sqlalchemy.orm import DeclarativeBase, relationship, Mapped, mapped_column

from utils.datetime_helpers import get_naive_utc_now


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


def generate_uuid() -> str:
    return str(uuid.uuid4())


# ============================================================================
# ENUMS - Business Logic Constants
# ============================================================================

class ChallengePurpose(Enum):
    """What a signed wallet challenge authorizes"""
    LOGIN = "LOGIN"
    LINK_WALLET = "LINK_WALLET"


class EscrowStatus(Enum):
    """Escrow lifecycle states (settlement happens on-chain)"""
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    DISPUTED = "DISPUTED"
    EXPIRED = "EXPIRED"


class LoanStatus(Enum):
    """Loan lifecycle states"""
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    REPAID = "REPAID"
    DEFAULTED = "DEFAULTED"


def _enum_check(column: str, enum_cls) -> str:
    values = ", ".join(f"'{member.value}'" for member in enum_cls)
    return f"{column} IN ({values})"


# ============================================================================
# ACCOUNTS
# ============================================================================

class User(Base):
    """Platform account, identified by its primary Stellar wallet"""
    __tablename__ = 'users'

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)

    # Denormalized copy of the primary wallet's address
    primary_wallet_address: Mapped[Optional[str]] = mapped_column(String(56), unique=True, nullable=True)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=get_naive_utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), default=get_naive_utc_now, onupdate=get_naive_utc_now, nullable=False
    )

    # Relationships
    wallets: Mapped[list["Wallet"]] = relationship(
        "Wallet", back_populates="user", cascade="all, delete-orphan", order_by="Wallet.created_at"
    )

    def __repr__(self):
        return f"<User(id={self.id}, primary_wallet_address={self.primary_wallet_address})>"


class Wallet(Base):
    """Stellar wallet linked to a user"""
    __tablename__ = 'wallets'

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True
    )
    address: Mapped[str] = mapped_column(String(56), nullable=False, unique=True)
    is_primary: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    label: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    verified_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=get_naive_utc_now, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=get_naive_utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), default=get_naive_utc_now, onupdate=get_naive_utc_now, nullable=False
    )

    user: Mapped["User"] = relationship("User", back_populates="wallets")

    __table_args__ = (
        Index('ix_wallets_user_primary', 'user_id', 'is_primary'),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "address": self.address,
            "isPrimary": self.is_primary,
            "label": self.label,
            "verifiedAt": self.verified_at.isoformat() if self.verified_at else None,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Wallet(id={self.id}, address={self.address}, is_primary={self.is_primary})>"


class WalletChallenge(Base):
    """Single-use nonce a wallet must sign to log in or be linked"""
    __tablename__ = 'wallet_challenges'

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    wallet_address: Mapped[str] = mapped_column(String(56), nullable=False)
    nonce: Mapped[str] = mapped_column(String(64), nullable=False)
    purpose: Mapped[str] = mapped_column(String(20), nullable=False)
    # Required for LINK_WALLET challenges
    user_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey('users.id', ondelete='CASCADE'), nullable=True
    )

    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    used_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=get_naive_utc_now, nullable=False)

    __table_args__ = (
        UniqueConstraint('wallet_address', 'nonce', 'purpose', name='uq_wallet_challenge_nonce'),
        CheckConstraint(_enum_check('purpose', ChallengePurpose), name='ck_wallet_challenge_purpose'),
        CheckConstraint(
            "purpose <> 'LINK_WALLET' OR user_id IS NOT NULL", name='ck_wallet_challenge_link_user'
        ),
        Index('ix_wallet_challenges_address_purpose', 'wallet_address', 'purpose'),
        Index('ix_wallet_challenges_user_purpose', 'user_id', 'purpose'),
        Index('ix_wallet_challenges_expires', 'expires_at'),
    )


# ============================================================================
# ESCROW
# ============================================================================

class Escrow(Base):
    """Escrow between two users, settled by the escrow contract"""
    __tablename__ = 'escrows'

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)

    # Participants
    buyer_id: Mapped[str] = mapped_column(String(36), ForeignKey('users.id'), nullable=False)
    seller_id: Mapped[str] = mapped_column(String(36), ForeignKey('users.id'), nullable=False)

    amount: Mapped[Decimal] = mapped_column(Numeric(20, 7), nullable=False)
    asset_code: Mapped[str] = mapped_column(String(12), default="USDC", nullable=False)

    status: Mapped[str] = mapped_column(String(20), default=EscrowStatus.PENDING.value, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    external_tx_hash: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=get_naive_utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), default=get_naive_utc_now, onupdate=get_naive_utc_now, nullable=False
    )

    buyer: Mapped["User"] = relationship("User", foreign_keys=[buyer_id])
    seller: Mapped["User"] = relationship("User", foreign_keys=[seller_id])

    __table_args__ = (
        CheckConstraint('buyer_id <> seller_id', name='ck_escrow_distinct_parties'),
        CheckConstraint('amount > 0', name='ck_escrow_amount_positive'),
        CheckConstraint(_enum_check('status', EscrowStatus), name='ck_escrow_status'),
        Index('ix_escrows_status', 'status'),
        Index('ix_escrows_expires_at', 'expires_at'),
        Index('ix_escrows_buyer_status', 'buyer_id', 'status'),
        Index('ix_escrows_seller_status', 'seller_id', 'status'),
        Index('ix_escrows_status_created', 'status', 'created_at'),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "buyerId": self.buyer_id,
            "sellerId": self.seller_id,
            "amount": str(self.amount),
            "assetCode": self.asset_code,
            "status": self.status,
            "expiresAt": self.expires_at.isoformat() if self.expires_at else None,
            "externalTxHash": self.external_tx_hash,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Escrow(id={self.id}, status={self.status}, amount={self.amount} {self.asset_code})>"


# ============================================================================
# LENDING
# ============================================================================

class Loan(Base):
    """Collateralized loan issued through the loan contract"""
    __tablename__ = 'loans'

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)

    borrower_id: Mapped[str] = mapped_column(String(36), ForeignKey('users.id'), nullable=False, index=True)
    lender_id: Mapped[str] = mapped_column(String(36), ForeignKey('users.id'), nullable=False, index=True)

    amount: Mapped[Decimal] = mapped_column(Numeric(20, 7), nullable=False)
    collateral_amt: Mapped[Decimal] = mapped_column(Numeric(20, 7), nullable=False)
    asset_code: Mapped[str] = mapped_column(String(12), default="USDC", nullable=False)

    status: Mapped[str] = mapped_column(String(20), default=LoanStatus.PENDING.value, nullable=False)
    escrow_address: Mapped[Optional[str]] = mapped_column(String(56), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=get_naive_utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), default=get_naive_utc_now, onupdate=get_naive_utc_now, nullable=False
    )

    repayments: Mapped[list["Repayment"]] = relationship(
        "Repayment",
        back_populates="loan",
        order_by=lambda: [Repayment.paid_at, Repayment.created_at],
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        CheckConstraint('borrower_id <> lender_id', name='ck_loan_distinct_parties'),
        CheckConstraint('amount > 0', name='ck_loan_amount_positive'),
        CheckConstraint('collateral_amt > 0', name='ck_loan_collateral_positive'),
        CheckConstraint(_enum_check('status', LoanStatus), name='ck_loan_status'),
        Index('ix_loans_status_created', 'status', 'created_at'),
    )

    def to_dict(self, include_repayments: bool = False) -> dict:
        data = {
            "id": self.id,
            "borrowerId": self.borrower_id,
            "lenderId": self.lender_id,
            "amount": str(self.amount),
            "collateralAmt": str(self.collateral_amt),
            "assetCode": self.asset_code,
            "status": self.status,
            "escrowAddress": self.escrow_address,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_repayments:
            data["repayments"] = [repayment.to_dict() for repayment in self.repayments]
        return data

    def __repr__(self):
        return f"<Loan(id={self.id}, status={self.status}, amount={self.amount} {self.asset_code})>"


class Repayment(Base):
    """Append-only loan repayment record"""
    __tablename__ = 'repayments'

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    loan_id: Mapped[str] = mapped_column(
        String(36), ForeignKey('loans.id', ondelete='CASCADE'), nullable=False, index=True
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(20, 7), nullable=False)
    paid_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=get_naive_utc_now, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=get_naive_utc_now, nullable=False)

    loan: Mapped["Loan"] = relationship("Loan", back_populates="repayments")

    __table_args__ = (
        CheckConstraint('amount > 0', name='ck_repayment_amount_positive'),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "loanId": self.loan_id,
            "amount": str(self.amount),
            "paidAt": self.paid_at.isoformat() if self.paid_at else None,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
