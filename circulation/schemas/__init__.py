from .auth import UserCreate, AdminUserCreate, MembershipUpdate, UserLogin, UserResponse, Token
from .book import (
    BookBase, BookCreate, BookResponse,
    BookCopyCreate, BookCopyResponse,
)
from .loan import (
    LoanCreate, LoanReturn, LoanRenew, LoanResponse,
    FineResponse, FinePayment, FineWaiver, ReturnResponse, MemberFinesResponse,
)

__all__ = [
    "UserCreate", "AdminUserCreate", "MembershipUpdate", "UserLogin", "UserResponse", "Token",
    "BookBase", "BookCreate", "BookResponse",
    "BookCopyCreate", "BookCopyResponse",
    "LoanCreate", "LoanReturn", "LoanRenew", "LoanResponse",
    "FineResponse", "FinePayment", "FineWaiver", "ReturnResponse", "MemberFinesResponse",
]
