from .user import User
from .book import Book, BookCopy
from .loan import Loan
from .fine import Fine

__all__ = [
    "User",
    "Book",
    "BookCopy",
    "Loan",
    "Fine",
]
