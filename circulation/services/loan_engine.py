"""Loan lifecycle: checkout, return and renewal.

Every transition runs in one database transaction whose state check is the
WHERE clause of the UPDATE that writes the new state, so two requests racing
on the same loan or copy cannot both win.
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timedelta
from functools import wraps
from typing import List, Optional
from sqlalchemy import update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from circulation.config import settings
from circulation.errors import (
    AlreadyReturnedError,
    ConflictError,
    CopyUnavailableError,
    DependencyFailure,
    InvalidDueDateError,
    MemberIneligibleError,
    NotActiveError,
    NotFoundError,
    RenewalLimitExceededError,
    ValidationError,
)
from circulation.models.book import BookCopy
from circulation.models.loan import Loan
from circulation.services.availability import CopyAvailabilityGate
from circulation.services.member_standing import MemberStanding
from circulation.utils.timezone import ensure_utc, now_utc

logger = logging.getLogger(__name__)

RETURN_CONDITIONS = ('good', 'damaged', 'lost')


def is_overdue(loan: Loan, as_of: datetime) -> bool:
    """True when the loan has not been returned and ``as_of`` is past its due date."""
    return loan.is_overdue(as_of)


def database_call(action: str):
    """Report an unreachable or locked database during ``action`` as a retryable DependencyFailure."""
    def decorator(method):
        @wraps(method)
        def wrapper(self, *args, **kwargs):
            try:
                return method(self, *args, **kwargs)
            except OperationalError as e:
                self.db.rollback()
                logger.error(f"Database error while trying to {action}: {e}")
                raise DependencyFailure(
                    f"Failed to {action}: the database did not respond in time. Please retry."
                ) from e
        return wrapper
    return decorator


class LoanEngine:
    def __init__(
        self,
        db: Session,
        availability: Optional[CopyAvailabilityGate] = None,
        standing: Optional[MemberStanding] = None,
    ):
        self.db = db
        self.availability = availability or CopyAvailabilityGate(db)
        self.standing = standing or MemberStanding(db)
        self.loan_period = timedelta(days=settings.standard_loan_period_days)
        self.max_loan_period = timedelta(days=settings.max_loan_period_days)
        self.renewal_grace = timedelta(days=settings.renewal_overdue_grace_days)

    @contextmanager
    def _transaction(self):
        try:
            yield
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

    @database_call("load loan")
    def get_loan(self, loan_id: int) -> Loan:
        loan = self.db.query(Loan).filter(Loan.loan_id == loan_id).first()
        if not loan:
            raise NotFoundError(f"Loan with ID {loan_id} not found.")
        return loan

    @database_call("list loans")
    def list_member_loans(self, member_id: int, active_only: bool = False) -> List[Loan]:
        query = self.db.query(Loan).filter(Loan.member_id == member_id)
        if active_only:
            query = query.filter(Loan.return_date.is_(None))
            return query.order_by(Loan.due_date.asc()).all()
        return query.order_by(Loan.checkout_date.desc()).all()

    @database_call("list overdue loans")
    def list_overdue(self, member_id: Optional[int] = None, as_of: Optional[datetime] = None) -> List[Loan]:
        as_of = ensure_utc(as_of or now_utc())
        query = self.db.query(Loan).filter(Loan.return_date.is_(None))
        if member_id is not None:
            query = query.filter(Loan.member_id == member_id)
        return [loan for loan in query.order_by(Loan.due_date.asc()).all() if is_overdue(loan, as_of)]

    def _validate_due_date(self, due_date: datetime, now: datetime) -> datetime:
        due_date = ensure_utc(due_date)
        if due_date <= now:
            raise InvalidDueDateError("Due date must be in the future.")
        if due_date - now > self.max_loan_period:
            raise InvalidDueDateError(f"Maximum loan period is {self.max_loan_period.days} days.")
        return due_date

    @database_call("create loan")
    def checkout(
        self,
        copy_id: int,
        member_id: int,
        staff_id: Optional[int],
        due_date: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> Loan:
        now = ensure_utc(now or now_utc())

        member = self.standing.get_member(member_id)
        if not member or not member.is_active:
            raise NotFoundError(f"Member with ID {member_id} not found.")
        eligibility = self.standing.check_can_borrow(member_id)
        if not eligibility.ok:
            raise MemberIneligibleError(eligibility.error)

        if self.db.get(BookCopy, copy_id) is None:
            raise NotFoundError(f"Book copy with ID {copy_id} not found.")

        if due_date is None:
            due_date = now + self.loan_period
        else:
            due_date = self._validate_due_date(due_date, now)

        loan = Loan(
            member_id=member_id,
            copy_id=copy_id,
            created_by=staff_id,
            checkout_date=now,
            due_date=due_date,
            status='active',
            renewal_count=0,
        )
        with self._transaction():
            reservation = self.availability.reserve(copy_id)
            if not reservation.ok:
                raise CopyUnavailableError(reservation.error)
            self.db.add(loan)

        self.db.refresh(loan)
        logger.info(f"Staff {staff_id} checked out copy {copy_id} to member {member_id} (loan {loan.loan_id}, due {loan.due_date})")
        return loan

    @database_call("return book")
    def return_loan(
        self,
        loan_id: int,
        condition: str = 'good',
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Loan:
        if condition not in RETURN_CONDITIONS:
            raise ValidationError(f"Condition must be one of: {', '.join(RETURN_CONDITIONS)}.")
        now = ensure_utc(now or now_utc())

        loan = self.get_loan(loan_id)
        if loan.return_date is not None:
            raise AlreadyReturnedError("This book has already been returned.")

        values = {'return_date': now, 'status': 'returned', 'return_condition': condition}
        if notes:
            values['notes'] = notes
        with self._transaction():
            result = self.db.execute(
                update(Loan)
                .where(Loan.loan_id == loan_id, Loan.return_date.is_(None))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise AlreadyReturnedError("This book has already been returned.")
            released = self.availability.release(loan.copy_id, condition)
            if not released.ok:
                logger.warning(f"Loan {loan_id} returned but copy {loan.copy_id} was not released: {released.error}")

        self.db.refresh(loan)
        logger.info(f"Loan {loan_id} returned in {condition} condition (copy {loan.copy_id}, member {loan.member_id})")
        return loan

    @database_call("renew loan")
    def renew(
        self,
        loan_id: int,
        new_due_date: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> Loan:
        now = ensure_utc(now or now_utc())

        loan = self.get_loan(loan_id)
        if loan.return_date is not None or loan.status != 'active':
            raise NotActiveError(f"Loan cannot be renewed. Current status: {loan.effective_status(now)}.")
        if loan.is_overdue(now - self.renewal_grace):
            raise NotActiveError("Loan is overdue beyond the renewal grace period and cannot be renewed.")
        if loan.renewal_count >= settings.max_renewals:
            raise RenewalLimitExceededError(
                f"Loan has already been renewed {loan.renewal_count} times (maximum is {settings.max_renewals})."
            )
        standing = self.standing.check_can_renew(loan.member_id)
        if not standing.ok:
            raise MemberIneligibleError(standing.error)

        current_due = ensure_utc(loan.due_date)
        if new_due_date is None:
            new_due_date = max(current_due, now) + self.loan_period
        else:
            new_due_date = ensure_utc(new_due_date)
            if new_due_date <= current_due:
                raise InvalidDueDateError("New due date must be after the current due date.")
            if new_due_date <= now:
                raise InvalidDueDateError("New due date must be in the future.")
            if new_due_date - now > self.max_loan_period:
                raise InvalidDueDateError(f"Maximum extension period is {self.max_loan_period.days} days from current date.")

        with self._transaction():
            result = self.db.execute(
                update(Loan)
                .where(
                    Loan.loan_id == loan_id,
                    Loan.return_date.is_(None),
                    Loan.status == 'active',
                    Loan.renewal_count == loan.renewal_count,
                )
                .values(due_date=new_due_date, renewal_count=Loan.renewal_count + 1)
                .execution_options(synchronize_session=False)
            )
            renewed = result.rowcount == 1

        self.db.refresh(loan)
        if not renewed:
            if loan.return_date is not None:
                raise NotActiveError(f"Loan cannot be renewed. Current status: {loan.status}.")
            raise ConflictError("Loan was changed by another request. Please retry.")
        logger.info(f"Loan {loan_id} renewed until {loan.due_date} (renewal {loan.renewal_count})")
        return loan
