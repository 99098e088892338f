from pydantic import BaseModel, EmailStr, Field
from typing import Optional

class UserCreate(BaseModel):
    user_fname: str = Field(..., min_length=1, max_length=100)
    user_lname: str = Field(..., min_length=1, max_length=100)
    user_email: EmailStr
    password: str = Field(..., min_length=6)
    phone_number: Optional[str] = Field(None, max_length=20)

class AdminUserCreate(UserCreate):
    user_role: str = Field("member", pattern="^(member|librarian|admin)$")

class MembershipUpdate(BaseModel):
    membership_status: str = Field(..., pattern="^(active|suspended|expired)$")

class UserLogin(BaseModel):
    user_email: EmailStr
    password: str

class UserResponse(BaseModel):
    id: str
    name: str
    fname: str
    lname: str
    email: str
    phoneNumber: Optional[str] = None
    membershipStatus: str
    role: str
    isActive: bool = True

class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserResponse
