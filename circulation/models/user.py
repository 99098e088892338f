from sqlalchemy import Column, String, DateTime, Integer, Boolean, CheckConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from circulation.database import Base

class User(Base):
    __tablename__ = "user"
    
    user_id = Column(Integer, primary_key=True, autoincrement=True)
    user_fname = Column(String(100), nullable=False)
    user_lname = Column(String(100), nullable=False)
    user_email = Column(String(255), unique=True, nullable=False, index=True)
    user_password_hash = Column(String(255), nullable=False)
    phone_number = Column(String(20), nullable=True)
    user_role = Column(String(50), default='member', nullable=False)  # member, librarian, admin
    membership_status = Column(String(50), default='active', nullable=False)  # active, suspended, expired
    is_active = Column(Boolean, default=True, nullable=False)  # False once the account is deleted
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    
    # Relationships
    loans = relationship("Loan", back_populates="member", foreign_keys="Loan.member_id")
    fines = relationship("Fine", back_populates="member", foreign_keys="Fine.member_id")
    
    __table_args__ = (
        CheckConstraint("user_role IN ('member', 'librarian', 'admin')", name="chk_user_role"),
        CheckConstraint("membership_status IN ('active', 'suspended', 'expired')", name="chk_membership_status"),
    )

    def to_dict(self):
        return {
            "id": str(self.user_id),
            "name": f"{self.user_fname} {self.user_lname}",
            "fname": self.user_fname,
            "lname": self.user_lname,
            "email": self.user_email,
            "phoneNumber": self.phone_number,
            "membershipStatus": self.membership_status,
            "role": self.user_role,
            "isActive": self.is_active,
        }
