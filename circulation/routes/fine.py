from typing import Optional
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from circulation.database import get_db
from circulation.services.access_policy import Principal
from circulation.services.auth import get_current_principal, require_staff
from circulation.services.fine_ledger import FineLedger
from circulation.services.member_standing import MemberStanding
from circulation.schemas.loan import FinePayment, FineResponse, FineWaiver, MemberFinesResponse

router = APIRouter(prefix="/api/library/fines", tags=["Library Fines"])

def _member_fines(db: Session, member_id: int) -> MemberFinesResponse:
    fines = FineLedger.for_session(db).list_fines(member_id=member_id)
    return MemberFinesResponse(
        memberId=str(member_id),
        outstandingTotal=float(MemberStanding(db).outstanding_fines(member_id)),
        fines=[FineResponse(**fine.to_dict()) for fine in fines],
    )

@router.get("/me", response_model=MemberFinesResponse)
async def get_my_fines(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """Get the fines of the current user."""
    return _member_fines(db, principal.principal_id)

@router.get("/member/{member_id}", response_model=MemberFinesResponse)
async def get_member_fines(
    member_id: int,
    principal: Principal = Depends(require_staff),
    db: Session = Depends(get_db)
):
    """Get the fines of any member (staff only)."""
    return _member_fines(db, member_id)

@router.post("/{fine_id}/pay", response_model=FineResponse)
async def pay_fine(
    fine_id: int,
    payment: Optional[FinePayment] = None,
    principal: Principal = Depends(require_staff),
    db: Session = Depends(get_db)
):
    """Record a payment against a pending fine (staff only). Omit the amount to pay in full."""
    amount = payment.amount if payment else None
    fine = FineLedger.for_session(db).pay_fine(fine_id, principal.principal_id, payment_amount=amount)
    return FineResponse(**fine.to_dict())

@router.post("/{fine_id}/waive", response_model=FineResponse)
async def waive_fine(
    fine_id: int,
    waiver: FineWaiver,
    principal: Principal = Depends(require_staff),
    db: Session = Depends(get_db)
):
    """Waive a pending fine (staff only). A reason is required."""
    fine = FineLedger.for_session(db).waive_fine(fine_id, principal.principal_id, waiver.reason)
    return FineResponse(**fine.to_dict())
