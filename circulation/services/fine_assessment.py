"""Turns a committed return into fine requests and hands them to the ledger.

Assessment is pure. Dispatch runs after the return has committed: a ledger
failure is logged and reported back as a warning, the return stands.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional, Union

from circulation.config import settings
from circulation.utils.timezone import ensure_utc

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FineRequest:
    member_id: int
    loan_id: Optional[int]
    fine_type: str
    amount: Decimal
    description: str


@dataclass(frozen=True)
class OverdueFineRequest:
    """Ask the ledger to compute (and record) the overdue fine for a loan."""

    loan_id: int


@dataclass
class FineDispatchReport:
    fines: list = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    overdue_calculated: bool = False


def assess_return(loan, condition: str, book_title: str) -> List[Union[FineRequest, OverdueFineRequest]]:
    requests = []
    if condition == 'damaged':
        requests.append(FineRequest(
            member_id=loan.member_id,
            loan_id=loan.loan_id,
            fine_type='damaged',
            amount=settings.damaged_fine_amount,
            description=f"Damage to book '{book_title}'",
        ))
    elif condition == 'lost':
        requests.append(FineRequest(
            member_id=loan.member_id,
            loan_id=loan.loan_id,
            fine_type='lost',
            amount=settings.lost_fine_amount,
            description=f"Lost book '{book_title}'",
        ))

    if loan.return_date is not None and ensure_utc(loan.return_date) > ensure_utc(loan.due_date):
        requests.append(OverdueFineRequest(loan_id=loan.loan_id))
    return requests


def dispatch(requests, ledger) -> FineDispatchReport:
    """Submit each request to the ledger; never raises."""
    report = FineDispatchReport()
    for request in requests:
        try:
            if isinstance(request, OverdueFineRequest):
                report.overdue_calculated = True
                result = ledger.calculate_overdue_fine(request.loan_id)
            else:
                result = ledger.create_fine(request)
        except Exception as e:
            logger.error(f"Fine ledger call failed for {request}: {e}", exc_info=True)
            report.warnings.append(f"Fine could not be recorded for loan {request.loan_id}: {e}")
            continue

        if not result.ok:
            logger.warning(f"Fine ledger rejected {request}: {result.error}")
            report.warnings.append(result.error)
        elif result.value is not None:
            report.fines.append(result.value)
    return report
