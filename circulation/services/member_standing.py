from decimal import Decimal
from typing import Optional
from sqlalchemy import func
from sqlalchemy.orm import Session
from circulation.config import settings
from circulation.models.fine import Fine
from circulation.models.loan import Loan
from circulation.models.user import User
from circulation.services.results import Result


class MemberStanding:
    """Answers whether a member may borrow or renew."""

    def __init__(self, db: Session, max_active_loans: Optional[int] = None):
        self.db = db
        if max_active_loans is None:
            max_active_loans = settings.max_active_loans_per_member
        self.max_active_loans = max_active_loans

    def get_member(self, member_id: int):
        return self.db.query(User).filter(User.user_id == member_id).first()

    def outstanding_fines(self, member_id: int) -> Decimal:
        total = self.db.query(func.coalesce(func.sum(Fine.amount), 0)).filter(
            Fine.member_id == member_id,
            Fine.status == 'pending'
        ).scalar()
        return Decimal(str(total)).quantize(Decimal("0.01"))

    def active_loan_count(self, member_id: int) -> int:
        return self.db.query(Loan).filter(
            Loan.member_id == member_id,
            Loan.return_date.is_(None)
        ).count()

    def check_can_borrow(self, member_id: int) -> Result:
        member = self.get_member(member_id)
        if not member or not member.is_active:
            return Result.failure(f"Member with ID {member_id} not found.")
        if member.membership_status != 'active':
            return Result.failure(f"Member has inactive membership status: {member.membership_status}.")
        fines = self.outstanding_fines(member_id)
        if fines > 0:
            return Result.failure(f"Member has outstanding fines of ${fines:.2f}. Please clear fines before borrowing.")
        active_loans = self.active_loan_count(member_id)
        if active_loans >= self.max_active_loans:
            return Result.failure(f"Member has reached the maximum number of active loans ({self.max_active_loans}).")
        return Result.success(member)

    def check_can_renew(self, member_id: int) -> Result:
        if not settings.renewal_blocked_by_fines:
            return Result.success()
        fines = self.outstanding_fines(member_id)
        if fines > 0:
            return Result.failure(f"Member has outstanding fines of ${fines:.2f}. Please clear fines before renewal.")
        return Result.success()
