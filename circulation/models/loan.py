from datetime import datetime
from typing import Optional
from sqlalchemy import Column, String, DateTime, Integer, Text, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from circulation.database import Base
from circulation.utils.timezone import ensure_utc, local_isoformat, now_utc

class Loan(Base):
    __tablename__ = "loan"
    
    loan_id = Column(Integer, primary_key=True, autoincrement=True)
    member_id = Column(Integer, ForeignKey("user.user_id", ondelete="RESTRICT"), nullable=False, index=True)
    copy_id = Column(Integer, ForeignKey("book_copy.copy_id", ondelete="RESTRICT"), nullable=False, index=True)
    created_by = Column(Integer, ForeignKey("user.user_id", ondelete="SET NULL"), nullable=True)
    checkout_date = Column(DateTime(timezone=True), nullable=False)
    due_date = Column(DateTime(timezone=True), nullable=False, index=True)
    return_date = Column(DateTime(timezone=True), nullable=True)
    # 'overdue' is never stored, it is derived from due_date at read time
    status = Column(String(50), default='active', nullable=False, index=True)
    return_condition = Column(String(50), nullable=True)
    renewal_count = Column(Integer, default=0, nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    
    # Relationships
    member = relationship("User", back_populates="loans", foreign_keys=[member_id])
    staff = relationship("User", foreign_keys=[created_by])
    copy = relationship("BookCopy", back_populates="loans")
    fines = relationship("Fine", back_populates="loan")
    
    __table_args__ = (
        CheckConstraint("status IN ('active', 'returned', 'lost')", name="chk_loan_status"),
        CheckConstraint("return_condition IS NULL OR return_condition IN ('good', 'damaged', 'lost')", name="chk_loan_condition"),
        CheckConstraint("due_date >= checkout_date", name="chk_loan_due_after_checkout"),
        CheckConstraint("return_date IS NULL OR status = 'returned'", name="chk_loan_returned_status"),
    )
    
    def is_overdue(self, as_of: Optional[datetime] = None) -> bool:
        as_of = ensure_utc(as_of or now_utc())
        return self.return_date is None and as_of > ensure_utc(self.due_date)
    
    def effective_status(self, as_of: Optional[datetime] = None) -> str:
        if self.status == 'active' and self.is_overdue(as_of):
            return 'overdue'
        return self.status
    
    def to_dict(self, as_of: Optional[datetime] = None):
        book = self.copy.book if self.copy and self.copy.book else None
        return {
            "id": str(self.loan_id),
            "memberId": str(self.member_id),
            "copyId": str(self.copy_id),
            "createdBy": str(self.created_by) if self.created_by else None,
            "checkoutDate": local_isoformat(self.checkout_date),
            "dueDate": local_isoformat(self.due_date),
            "returnDate": local_isoformat(self.return_date),
            "status": self.effective_status(as_of),
            "isOverdue": self.is_overdue(as_of),
            "returnCondition": self.return_condition,
            "renewalCount": self.renewal_count,
            "notes": self.notes,
            "bookCopy": self.copy.to_dict() if self.copy else None,  # Renamed from 'copy'
            "book": book.to_dict() if book else None,
        }
