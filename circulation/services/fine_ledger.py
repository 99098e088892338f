import logging
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from sqlalchemy import update
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from circulation.config import settings
from circulation.errors import DependencyFailure, FineNotPendingError, NotFoundError, ValidationError
from circulation.models.fine import Fine
from circulation.models.loan import Loan
from circulation.services.fine_assessment import FineRequest
from circulation.services.results import Result
from circulation.utils.timezone import ensure_utc, now_utc

logger = logging.getLogger(__name__)

# At most one of each per loan
ONCE_PER_LOAN = ('overdue', 'damaged', 'lost')


class FineLedger:
    """Records and settles fines. Uses its own sessions, so a failure here never
    touches the transaction of the loan transition that triggered it.

    Recording reports failures as ``Result`` values; settling a fine (pay or
    waive) is a staff request and raises ``CirculationError`` instead.
    """

    def __init__(self, session_factory):
        self.session_factory = session_factory

    @classmethod
    def for_session(cls, db: Session) -> "FineLedger":
        return cls(sessionmaker(bind=db.get_bind(), autoflush=False, expire_on_commit=False))

    def _existing(self, session: Session, loan_id: int, fine_type: str) -> Optional[Fine]:
        return session.query(Fine).filter(
            Fine.loan_id == loan_id,
            Fine.fine_type == fine_type,
            Fine.status != 'waived'
        ).first()

    def _save(self, session: Session, fine: Fine) -> Fine:
        session.add(fine)
        session.commit()
        session.refresh(fine)
        logger.info(f"Fine {fine.fine_id} ({fine.fine_type}, {fine.amount}) recorded for member {fine.member_id}")
        return fine

    def create_fine(self, request: FineRequest) -> Result:
        if request.amount is None or Decimal(request.amount) <= 0:
            return Result.failure("Fine amount must be greater than zero.")
        session = self.session_factory()
        try:
            if request.loan_id is not None and request.fine_type in ONCE_PER_LOAN:
                existing = self._existing(session, request.loan_id, request.fine_type)
                if existing:
                    return Result.failure(
                        f"This loan already has a {request.fine_type} fine (ID: {existing.fine_id})."
                    )
            fine = Fine(
                member_id=request.member_id,
                loan_id=request.loan_id,
                fine_type=request.fine_type,
                amount=Decimal(request.amount).quantize(Decimal("0.01")),
                description=request.description,
                status='pending',
            )
            return Result.success(self._save(session, fine))
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Error creating fine: {e}")
            return Result.failure(f"Failed to create fine: {e}")
        finally:
            session.close()

    def overdue_amount(self, days_overdue: int) -> Decimal:
        amount = Decimal(days_overdue) * settings.overdue_daily_rate
        return min(amount, settings.overdue_fine_cap).quantize(Decimal("0.01"))

    def calculate_overdue_fine(self, loan_id: int, as_of: Optional[datetime] = None) -> Result:
        """Compute the overdue fine for a loan and record it.

        Returns a success with no value when the loan is late by less than a
        whole day, since the computed fine is zero.
        """
        session = self.session_factory()
        try:
            loan = session.get(Loan, loan_id)
            if loan is None:
                return Result.failure(f"Loan with ID {loan_id} not found.")

            due_date = ensure_utc(loan.due_date)
            end = ensure_utc(loan.return_date or as_of or now_utc())
            if end <= due_date:
                return Result.failure("The loan is not overdue. No fine calculation needed.")

            existing = self._existing(session, loan_id, 'overdue')
            if existing:
                return Result.failure(
                    f"This loan already has an overdue fine (ID: {existing.fine_id})."
                )

            days_overdue = (end - due_date).days
            amount = self.overdue_amount(days_overdue)
            if amount <= 0:
                return Result.success(None)

            title = loan.copy.book.title if loan.copy and loan.copy.book else f"copy {loan.copy_id}"
            fine = Fine(
                member_id=loan.member_id,
                loan_id=loan.loan_id,
                fine_type='overdue',
                amount=amount,
                description=f"Overdue fine for {days_overdue} days. Book: '{title}'",
                status='pending',
            )
            return Result.success(self._save(session, fine))
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Error calculating fine: {e}")
            return Result.failure(f"Failed to calculate fine: {e}")
        finally:
            session.close()

    @contextmanager
    def _settlement(self, action: str):
        session = self.session_factory()
        try:
            yield session
        except OperationalError as e:
            session.rollback()
            logger.error(f"Database error while trying to {action}: {e}")
            raise DependencyFailure(
                f"Failed to {action}: the database did not respond in time. Please retry."
            ) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _pending_fine(self, session: Session, fine_id: int, verb: str) -> Fine:
        fine = session.get(Fine, fine_id)
        if fine is None:
            raise NotFoundError(f"Fine with ID {fine_id} not found.")
        if fine.status != 'pending':
            raise FineNotPendingError(f"Fine cannot be {verb}. Current status: {fine.status}.")
        return fine

    def _settle(self, session: Session, fine_id: int, verb: str, **values) -> None:
        # Only a pending fine can be settled, and only once
        result = session.execute(
            update(Fine)
            .where(Fine.fine_id == fine_id, Fine.status == 'pending')
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise FineNotPendingError(f"Fine cannot be {verb}. It was settled by another request.")

    def pay_fine(
        self,
        fine_id: int,
        staff_id: int,
        payment_amount: Optional[Decimal] = None,
        now: Optional[datetime] = None,
    ) -> Fine:
        """Record a payment against a pending fine.

        Paying less than the full amount closes the fine for the amount paid
        and opens a new pending fine for the remaining balance.
        """
        now = ensure_utc(now or now_utc())
        with self._settlement("pay fine") as session:
            fine = self._pending_fine(session, fine_id, "paid")
            amount = Decimal(fine.amount) if payment_amount is None else Decimal(payment_amount).quantize(Decimal("0.01"))
            if amount <= 0:
                raise ValidationError("Payment amount must be greater than zero.")
            if amount > fine.amount:
                raise ValidationError(f"Payment amount (${amount:.2f}) exceeds fine amount (${fine.amount:.2f}).")

            self._settle(
                session, fine_id, "paid",
                status='paid', amount_paid=amount, processed_by=staff_id, processed_at=now,
            )
            if amount < fine.amount:
                session.add(Fine(
                    member_id=fine.member_id,
                    loan_id=fine.loan_id,
                    fine_type=fine.fine_type,
                    amount=fine.amount - amount,
                    description=f"Remaining balance after partial payment. Original fine: {fine.description}",
                    status='pending',
                ))
            session.commit()
            session.refresh(fine)
            logger.info(f"Staff {staff_id} recorded payment of {amount} on fine {fine_id} (member {fine.member_id})")
            return fine

    def waive_fine(self, fine_id: int, staff_id: int, reason: str, now: Optional[datetime] = None) -> Fine:
        now = ensure_utc(now or now_utc())
        reason = (reason or '').strip()
        if not reason:
            raise ValidationError("Waiver reason is required.")
        with self._settlement("waive fine") as session:
            fine = self._pending_fine(session, fine_id, "waived")
            self._settle(
                session, fine_id, "waived",
                status='waived', waiver_reason=reason, processed_by=staff_id, processed_at=now,
            )
            session.commit()
            session.refresh(fine)
            logger.info(f"Staff {staff_id} waived fine {fine_id} of {fine.amount} (member {fine.member_id}): {reason}")
            return fine

    def list_fines(self, member_id: Optional[int] = None, loan_id: Optional[int] = None) -> List[Fine]:
        session = self.session_factory()
        try:
            query = session.query(Fine)
            if member_id is not None:
                query = query.filter(Fine.member_id == member_id)
            if loan_id is not None:
                query = query.filter(Fine.loan_id == loan_id)
            return query.order_by(Fine.created_at.desc(), Fine.fine_id.desc()).all()
        finally:
            session.close()
