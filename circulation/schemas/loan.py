from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime
from decimal import Decimal

class LoanCreate(BaseModel):
    copy_id: int
    member_id: int
    due_date: Optional[datetime] = Field(None, description="Defaults to the standard loan period")

class LoanReturn(BaseModel):
    condition: str = Field("good", pattern="^(good|damaged|lost)$")
    notes: Optional[str] = Field(None, max_length=500)

class LoanRenew(BaseModel):
    new_due_date: Optional[datetime] = Field(None, description="Computed by the library when omitted")

class LoanResponse(BaseModel):
    id: str
    memberId: str
    copyId: str
    createdBy: Optional[str] = None
    checkoutDate: datetime
    dueDate: datetime
    returnDate: Optional[datetime] = None
    status: str
    isOverdue: bool
    returnCondition: Optional[str] = None
    renewalCount: int
    notes: Optional[str] = None
    bookCopy: Optional[dict] = None  # Renamed from 'copy' to avoid shadowing BaseModel.copy()
    book: Optional[dict] = None

class FineResponse(BaseModel):
    id: str
    memberId: str
    loanId: Optional[str] = None
    type: str
    amount: float
    description: str
    status: str
    createdAt: Optional[datetime] = None
    amountPaid: Optional[float] = None
    waiverReason: Optional[str] = None
    processedBy: Optional[str] = None
    processedAt: Optional[datetime] = None

class FinePayment(BaseModel):
    amount: Optional[Decimal] = Field(None, gt=0, max_digits=10, decimal_places=2, description="Defaults to the full amount")

class FineWaiver(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)

class ReturnResponse(BaseModel):
    loan: LoanResponse
    fines: List[FineResponse] = []
    warnings: List[str] = []
    overdueFineCalculated: bool = False

class MemberFinesResponse(BaseModel):
    memberId: str
    outstandingTotal: float
    fines: List[FineResponse] = []
