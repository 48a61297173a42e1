"""
Loan Service - collateralized loan bookkeeping

Loans are issued through the loan contract; repayments are recorded here
under SERIALIZABLE isolation with the loan row locked, so the outstanding
balance never goes negative and REPAID is reached exactly once.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional, Union

from sqlalchemy import func, select
from sqlalchemy.orm import selectinload

from config import Config
from database import managed_session
from models import Loan, LoanStatus, Repayment, User
from services.contract_service import ContractService
from services.escrow_service import normalize_asset_code
from services.notification_service import LoanUpdated, NotificationHub, notification_hub
from utils.database_locking import DatabaseLockingService
from utils.datetime_helpers import get_naive_utc_now, parse_datetime
from utils.decimal_precision import MonetaryDecimal
from utils.exceptions import ForbiddenError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

Amount = Union[str, int, Decimal]


@dataclass
class LoanIssued:
    loan_id: str
    invocation_payload: str
    loan: Loan

    def to_dict(self) -> dict:
        return {
            "loanId": self.loan_id,
            "invocationPayload": self.invocation_payload,
            "loan": self.loan.to_dict(),
        }


@dataclass
class RepaymentResult:
    repayment: Repayment
    outstanding_before: Decimal
    outstanding_after: Decimal
    fully_repaid: bool
    loan: Loan

    def to_dict(self) -> dict:
        return {
            "repayment": self.repayment.to_dict(),
            "outstandingBefore": MonetaryDecimal.format_amount(self.outstanding_before),
            "outstandingAfter": MonetaryDecimal.format_amount(self.outstanding_after),
            "fullyRepaid": self.fully_repaid,
            "loan": self.loan.to_dict(include_repayments=True),
        }


def parse_loan_status(status: Union[str, LoanStatus]) -> LoanStatus:
    if isinstance(status, LoanStatus):
        return status
    try:
        return LoanStatus(str(status).strip().upper())
    except ValueError:
        raise ValidationError("Invalid status. Use PENDING, ACTIVE, REPAID, or DEFAULTED")


class LoanService:
    """Loan state machine: PENDING -> ACTIVE -> REPAID (DEFAULTED is set externally)"""

    ISSUE_METHOD = "issue_loan"

    def __init__(self, contracts: Optional[ContractService] = None, hub: Optional[NotificationHub] = None):
        self.contracts = contracts or ContractService()
        self.hub = hub or notification_hub

    @staticmethod
    def outstanding_balance(loan: Loan, repayments: Optional[Iterable[Repayment]] = None) -> Decimal:
        """amount minus the sum of repayments"""
        rows = loan.repayments if repayments is None else repayments
        paid = MonetaryDecimal.sum_amounts(repayment.amount for repayment in rows)
        return MonetaryDecimal.quantize_asset(Decimal(loan.amount) - paid)

    def issue_loan(
        self,
        requesting_user_id: str,
        borrower_id: str,
        lender_id: str,
        amount: Amount,
        collateral_amt: Amount,
        asset_code: Optional[str] = None,
        escrow_address: Optional[str] = None,
    ) -> LoanIssued:
        if not requesting_user_id:
            raise ValidationError("requesting_user_id is required")
        if not borrower_id:
            raise ValidationError("borrower_id is required")
        if not lender_id:
            raise ValidationError("lender_id is required")
        if borrower_id == lender_id:
            raise ValidationError("Borrower and lender must be different")
        if requesting_user_id not in (borrower_id, lender_id):
            raise ForbiddenError("Only the borrower or lender can create this loan")

        loan_amount = MonetaryDecimal.validate_positive(amount, "amount")
        collateral = MonetaryDecimal.validate_positive(collateral_amt, "collateral_amt")
        if not MonetaryDecimal.meets_ratio(collateral, loan_amount, Config.MIN_COLLATERAL_RATIO):
            raise ValidationError(
                f"Insufficient collateral: ratio must be at least {Config.MIN_COLLATERAL_RATIO}"
            )

        asset = normalize_asset_code(asset_code)
        escrow_address = escrow_address.strip() if isinstance(escrow_address, str) and escrow_address.strip() else None

        with managed_session() as session:
            found = session.execute(
                select(func.count(User.id)).where(User.id.in_([borrower_id, lender_id]))
            ).scalar_one()
        if found != 2:
            raise ValidationError("borrower_id or lender_id does not exist")

        payload = self.contracts.build(
            Config.LOAN_CONTRACT_ID,
            self.ISSUE_METHOD,
            [
                borrower_id,
                lender_id,
                format(loan_amount, "f"),
                format(collateral, "f"),
                asset,
                escrow_address,
            ],
        )

        with managed_session() as session:
            loan = Loan(
                borrower_id=borrower_id,
                lender_id=lender_id,
                amount=loan_amount,
                collateral_amt=collateral,
                asset_code=asset,
                status=LoanStatus.PENDING.value,
                escrow_address=escrow_address,
            )
            session.add(loan)
            session.flush()

        logger.info(
            f"✅ LOAN_ISSUED: {loan.id} borrower={borrower_id} lender={lender_id} "
            f"amount={loan_amount} collateral={collateral} {asset}"
        )
        self.hub.publish(LoanUpdated(loan_id=loan.id, status=LoanStatus.PENDING.value))
        return LoanIssued(loan_id=loan.id, invocation_payload=payload, loan=loan)

    def record_repayment(
        self,
        requesting_user_id: str,
        loan_id: str,
        amount: Amount,
        paid_at: Optional[Union[str, datetime]] = None,
    ) -> RepaymentResult:
        """Append a repayment and advance the loan status atomically"""
        if not requesting_user_id:
            raise ValidationError("requesting_user_id is required")
        if not loan_id:
            raise ValidationError("loan_id is required")

        repayment_amount = MonetaryDecimal.validate_positive(amount, "amount")
        if paid_at is None or paid_at == "":
            paid_timestamp = get_naive_utc_now()
        else:
            paid_timestamp = parse_datetime(paid_at)
            if paid_timestamp is None:
                raise ValidationError("paid_at must be a valid date")

        with managed_session(serializable=True) as session:
            with DatabaseLockingService.locked_loan(session, loan_id) as loan:
                if requesting_user_id not in (loan.borrower_id, loan.lender_id):
                    raise ForbiddenError("Only the borrower or lender can record repayments")

                previous_status = LoanStatus(loan.status)
                if previous_status == LoanStatus.DEFAULTED:
                    raise ValidationError("Cannot record repayment for a defaulted loan")

                existing = session.execute(
                    select(Repayment).where(Repayment.loan_id == loan_id)
                ).scalars().all()
                outstanding_before = self.outstanding_balance(loan, existing)

                if previous_status == LoanStatus.REPAID or outstanding_before <= 0:
                    raise ValidationError("Loan is already fully repaid")
                if repayment_amount > outstanding_before:
                    raise ValidationError("Repayment exceeds outstanding balance")

                outstanding_after = MonetaryDecimal.quantize_asset(outstanding_before - repayment_amount)
                fully_repaid = outstanding_after == 0

                repayment = Repayment(loan_id=loan_id, amount=repayment_amount, paid_at=paid_timestamp)
                session.add(repayment)

                if fully_repaid:
                    loan.status = LoanStatus.REPAID.value
                elif previous_status == LoanStatus.PENDING:
                    loan.status = LoanStatus.ACTIVE.value
                session.flush()

                loan = session.execute(
                    select(Loan)
                    .where(Loan.id == loan_id)
                    .options(selectinload(Loan.repayments))
                    .execution_options(populate_existing=True)
                ).scalar_one()
                new_status = loan.status

        logger.info(
            f"💸 REPAYMENT_RECORDED: loan {loan_id} amount={repayment_amount} "
            f"outstanding {outstanding_before} -> {outstanding_after}"
        )
        if new_status != previous_status.value:
            logger.info(f"🔄 LOAN_STATUS_UPDATED: {loan_id} {previous_status.value} -> {new_status}")
            self.hub.publish(LoanUpdated(loan_id=loan_id, status=new_status))

        return RepaymentResult(
            repayment=repayment,
            outstanding_before=outstanding_before,
            outstanding_after=outstanding_after,
            fully_repaid=fully_repaid,
            loan=loan,
        )

    def get_loan(self, loan_id: str) -> Loan:
        if not loan_id:
            raise ValidationError("loan_id is required")
        with managed_session() as session:
            loan = session.execute(
                select(Loan).where(Loan.id == loan_id).options(selectinload(Loan.repayments))
            ).scalar_one_or_none()
            if loan is None:
                raise NotFoundError("Loan not found")
            return loan

    def list_loans(
        self,
        borrower_id: Optional[str] = None,
        lender_id: Optional[str] = None,
        status: Optional[Union[str, LoanStatus]] = None,
    ) -> List[Loan]:
        conditions = []
        if borrower_id:
            conditions.append(Loan.borrower_id == borrower_id)
        if lender_id:
            conditions.append(Loan.lender_id == lender_id)
        if status is not None and status != "":
            conditions.append(Loan.status == parse_loan_status(status).value)

        with managed_session() as session:
            return list(session.execute(
                select(Loan)
                .where(*conditions)
                .options(selectinload(Loan.repayments))
                .order_by(Loan.created_at.desc(), Loan.id.desc())
            ).scalars().all())


loan_service = LoanService()
