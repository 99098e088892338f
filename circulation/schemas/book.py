from pydantic import BaseModel, Field
from typing import Optional

class BookBase(BaseModel):
    isbn: Optional[str] = None
    title: str = Field(..., min_length=1, max_length=255)
    author: str = Field(..., min_length=1, max_length=255)
    publisher: Optional[str] = None
    publication_year: Optional[int] = None
    category: Optional[str] = None
    description: Optional[str] = None

class BookCreate(BookBase):
    copies: int = Field(1, ge=0, le=100, description="Number of physical copies to register")

class BookResponse(BaseModel):
    id: str
    isbn: Optional[str] = None
    title: str
    author: str
    publisher: Optional[str] = None
    publicationYear: Optional[int] = None
    category: Optional[str] = None
    description: Optional[str] = None

class BookCopyCreate(BaseModel):
    copy_number: Optional[int] = Field(None, gt=0)

class BookCopyResponse(BaseModel):
    id: str
    bookId: str
    copyNumber: int
    status: str
    book: Optional[BookResponse] = None
