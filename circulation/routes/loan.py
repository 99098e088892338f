import logging
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from typing import List, Optional
from circulation.database import get_db
from circulation.services.access_policy import Principal
from circulation.services.auth import get_current_principal, require_staff
from circulation.services.circulation import CirculationService
from circulation.services.loan_engine import LoanEngine
from circulation.schemas.loan import (
    FineResponse,
    LoanCreate,
    LoanRenew,
    LoanResponse,
    LoanReturn,
    ReturnResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/library/loans", tags=["Library Loans"])

def get_circulation(db: Session = Depends(get_db)) -> CirculationService:
    return CirculationService(db)

def _loan_response(loan) -> LoanResponse:
    return LoanResponse(**loan.to_dict())

@router.get("/active", response_model=List[LoanResponse])
async def get_active_loans(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """Get all open loans for current user."""
    loans = LoanEngine(db).list_member_loans(principal.principal_id, active_only=True)
    return [_loan_response(loan) for loan in loans]

@router.get("/history", response_model=List[LoanResponse])
async def get_loan_history(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """Get loan history for current user."""
    loans = LoanEngine(db).list_member_loans(principal.principal_id)
    return [_loan_response(loan) for loan in loans]

@router.get("/overdue", response_model=List[LoanResponse])
async def get_overdue_loans(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """Get overdue loans for current user. Staff see every overdue loan."""
    member_id = None if principal.is_staff else principal.principal_id
    loans = LoanEngine(db).list_overdue(member_id=member_id)
    return [_loan_response(loan) for loan in loans]

@router.get("/member/{member_id}", response_model=List[LoanResponse])
async def get_member_loans(
    member_id: int,
    active_only: bool = False,
    principal: Principal = Depends(require_staff),
    db: Session = Depends(get_db)
):
    """Get the loans of any member (staff only)."""
    loans = LoanEngine(db).list_member_loans(member_id, active_only=active_only)
    return [_loan_response(loan) for loan in loans]

@router.get("/{loan_id}", response_model=LoanResponse)
async def get_loan(
    loan_id: int,
    principal: Principal = Depends(get_current_principal),
    circulation: CirculationService = Depends(get_circulation)
):
    """Get specific loan details."""
    return _loan_response(circulation.view(principal, loan_id))

@router.get("/{loan_id}/fines", response_model=List[FineResponse])
async def get_loan_fines(
    loan_id: int,
    principal: Principal = Depends(get_current_principal),
    circulation: CirculationService = Depends(get_circulation)
):
    """Get the fines raised against a loan."""
    loan = circulation.view(principal, loan_id)
    fines = circulation.ledger.list_fines(loan_id=loan.loan_id)
    return [FineResponse(**fine.to_dict()) for fine in fines]

@router.post("/", response_model=LoanResponse, status_code=status.HTTP_201_CREATED)
async def create_loan(
    loan_data: LoanCreate,
    principal: Principal = Depends(require_staff),
    circulation: CirculationService = Depends(get_circulation)
):
    """Create a new loan (checkout a book). Library staff only."""
    loan = circulation.checkout(
        principal,
        copy_id=loan_data.copy_id,
        member_id=loan_data.member_id,
        due_date=loan_data.due_date,
    )
    return _loan_response(loan)

@router.post("/{loan_id}/return", response_model=ReturnResponse)
async def return_loan(
    loan_id: int,
    request: Optional[LoanReturn] = None,
    principal: Principal = Depends(get_current_principal),
    circulation: CirculationService = Depends(get_circulation)
):
    """Record the return of a loaned copy and assess any fines."""
    request = request or LoanReturn()
    outcome = circulation.return_loan(principal, loan_id, request.condition, notes=request.notes)
    return ReturnResponse(
        loan=_loan_response(outcome.loan),
        fines=[FineResponse(**fine.to_dict()) for fine in outcome.fines],
        warnings=outcome.warnings,
        overdueFineCalculated=outcome.overdue_calculated,
    )

@router.post("/{loan_id}/renew", response_model=LoanResponse)
async def renew_loan(
    loan_id: int,
    request: Optional[LoanRenew] = None,
    principal: Principal = Depends(get_current_principal),
    circulation: CirculationService = Depends(get_circulation)
):
    """Extend the due date of an active loan. Members may renew their own loans."""
    new_due_date = request.new_due_date if request else None
    loan = circulation.renew(principal, loan_id, new_due_date=new_due_date)
    return _loan_response(loan)
