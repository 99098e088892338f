import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional
from sqlalchemy.orm import Session
from circulation.errors import ForbiddenError
from circulation.models.loan import Loan
from circulation.services.access_policy import LoanAction, Principal, authorize
from circulation.services.fine_assessment import assess_return, dispatch
from circulation.services.fine_ledger import FineLedger
from circulation.services.loan_engine import LoanEngine

logger = logging.getLogger(__name__)


@dataclass
class ReturnOutcome:
    loan: Loan
    fines: list = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    overdue_calculated: bool = False


class CirculationService:
    """Authorize, run the loan transition, then react to its outcome."""

    def __init__(self, db: Session, engine: Optional[LoanEngine] = None, ledger: Optional[FineLedger] = None):
        self.db = db
        self.engine = engine or LoanEngine(db)
        self.ledger = ledger or FineLedger.for_session(db)

    def _authorize(self, principal: Principal, loan, action: LoanAction) -> None:
        decision = authorize(principal, loan, action)
        if decision.denied:
            logger.info(f"User {principal.principal_id} denied {action.value} on loan {getattr(loan, 'loan_id', None)}: {decision.reason}")
            raise ForbiddenError(decision.reason)

    def view(self, principal: Principal, loan_id: int) -> Loan:
        loan = self.engine.get_loan(loan_id)
        self._authorize(principal, loan, LoanAction.VIEW)
        return loan

    def checkout(
        self,
        principal: Principal,
        copy_id: int,
        member_id: int,
        due_date: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> Loan:
        self._authorize(principal, None, LoanAction.CHECKOUT)
        return self.engine.checkout(copy_id, member_id, principal.principal_id, due_date=due_date, now=now)

    def renew(
        self,
        principal: Principal,
        loan_id: int,
        new_due_date: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> Loan:
        loan = self.engine.get_loan(loan_id)
        self._authorize(principal, loan, LoanAction.RENEW)
        return self.engine.renew(loan_id, new_due_date=new_due_date, now=now)

    def return_loan(
        self,
        principal: Principal,
        loan_id: int,
        condition: str = 'good',
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ReturnOutcome:
        loan = self.engine.get_loan(loan_id)
        self._authorize(principal, loan, LoanAction.RETURN)
        loan = self.engine.return_loan(loan_id, condition, notes=notes, now=now)

        # The return is committed at this point; fines are best-effort
        book = loan.copy.book if loan.copy else None
        requests = assess_return(loan, condition, book.title if book else f"copy {loan.copy_id}")
        report = dispatch(requests, self.ledger)
        if report.warnings:
            logger.warning(f"Loan {loan_id} returned with fine warnings: {report.warnings}")
        return ReturnOutcome(
            loan=loan,
            fines=report.fines,
            warnings=report.warnings,
            overdue_calculated=report.overdue_calculated,
        )
