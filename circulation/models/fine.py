from sqlalchemy import Column, String, DateTime, Integer, Numeric, Text, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from circulation.database import Base
from circulation.utils.timezone import local_isoformat

class Fine(Base):
    __tablename__ = "fine"

    fine_id = Column(Integer, primary_key=True, autoincrement=True)
    member_id = Column(Integer, ForeignKey("user.user_id", ondelete="CASCADE"), nullable=False, index=True)
    loan_id = Column(Integer, ForeignKey("loan.loan_id", ondelete="SET NULL"), nullable=True, index=True)
    fine_type = Column(String(50), nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    description = Column(Text, nullable=False, default='')
    status = Column(String(50), default='pending', nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    # Set when staff settle the fine (paid or waived)
    amount_paid = Column(Numeric(10, 2), nullable=True)
    waiver_reason = Column(Text, nullable=True)
    processed_by = Column(Integer, ForeignKey("user.user_id", ondelete="SET NULL"), nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    member = relationship("User", back_populates="fines", foreign_keys=[member_id])
    loan = relationship("Loan", back_populates="fines")

    __table_args__ = (
        CheckConstraint("fine_type IN ('overdue', 'damaged', 'lost', 'other')", name="chk_fine_type"),
        CheckConstraint("status IN ('pending', 'paid', 'waived')", name="chk_fine_status"),
        CheckConstraint("amount > 0", name="chk_fine_amount_positive"),
        CheckConstraint("amount_paid IS NULL OR (amount_paid > 0 AND amount_paid <= amount)", name="chk_fine_amount_paid"),
    )

    def to_dict(self):
        return {
            "id": str(self.fine_id),
            "memberId": str(self.member_id),
            "loanId": str(self.loan_id) if self.loan_id else None,
            "type": self.fine_type,
            "amount": float(self.amount),
            "description": self.description,
            "status": self.status,
            "createdAt": local_isoformat(self.created_at),
            "amountPaid": float(self.amount_paid) if self.amount_paid is not None else None,
            "waiverReason": self.waiver_reason,
            "processedBy": str(self.processed_by) if self.processed_by else None,
            "processedAt": local_isoformat(self.processed_at),
        }
