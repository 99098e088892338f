from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session
from sqlalchemy import func, or_
from typing import List, Optional
from circulation.database import get_db
from circulation.models.book import Book, BookCopy
from circulation.services.access_policy import Principal
from circulation.services.auth import get_current_user, require_staff
from circulation.services.availability import CopyAvailabilityGate
from circulation.schemas.book import (
    BookResponse, BookCreate,
    BookCopyResponse, BookCopyCreate,
)

router = APIRouter(prefix="/api/library", tags=["Library Books"])

def _get_book_or_404(db: Session, book_id: int) -> Book:
    book = db.query(Book).filter(Book.book_id == book_id).first()
    if not book:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Book not found"
        )
    return book

def _add_copy(db: Session, book: Book, copy_number: Optional[int] = None) -> BookCopy:
    if copy_number is None:
        highest = db.query(func.max(BookCopy.copy_number)).filter(BookCopy.book_id == book.book_id).scalar()
        copy_number = (highest or 0) + 1
    book_copy = BookCopy(book_id=book.book_id, copy_number=copy_number, status='available')
    db.add(book_copy)
    return book_copy

# Book endpoints
@router.get("/books", response_model=List[BookResponse], dependencies=[Depends(get_current_user)])
async def get_books(
    search: Optional[str] = Query(None, description="Search by title, author, or ISBN"),
    category: Optional[str] = Query(None, description="Filter by category"),
    db: Session = Depends(get_db)
):
    """Get list of books with optional search and filter."""
    query = db.query(Book)
    
    if search:
        search_term = f"%{search}%"
        query = query.filter(
            or_(
                Book.title.ilike(search_term),
                Book.author.ilike(search_term),
                Book.isbn.ilike(search_term)
            )
        )
    
    if category:
        query = query.filter(Book.category == category)
    
    books = query.order_by(Book.title).all()
    return [BookResponse(**book.to_dict()) for book in books]

@router.post("/books", response_model=BookResponse, status_code=status.HTTP_201_CREATED)
async def create_book(
    book_data: BookCreate,
    principal: Principal = Depends(require_staff),
    db: Session = Depends(get_db)
):
    """Register a title together with its physical copies."""
    book = Book(**book_data.model_dump(exclude={"copies"}))
    db.add(book)
    db.flush()
    for _ in range(book_data.copies):
        _add_copy(db, book)
        db.flush()
    db.commit()
    db.refresh(book)
    return BookResponse(**book.to_dict())

@router.get("/books/{book_id}/copies", response_model=List[BookCopyResponse], dependencies=[Depends(get_current_user)])
async def get_book_copies(
    book_id: int,
    available_only: bool = Query(False, description="Only copies that can be checked out now"),
    db: Session = Depends(get_db)
):
    """Get all copies of a book."""
    _get_book_or_404(db, book_id)
    copies = db.query(BookCopy).filter(
        BookCopy.book_id == book_id
    ).order_by(BookCopy.copy_number).all()
    if available_only:
        gate = CopyAvailabilityGate(db)
        copies = [c for c in copies if gate.is_available(c.copy_id)]
    return [BookCopyResponse(**c.to_dict()) for c in copies]

@router.post("/books/{book_id}/copies", response_model=BookCopyResponse, status_code=status.HTTP_201_CREATED)
async def create_book_copy(
    book_id: int,
    copy_data: BookCopyCreate,
    principal: Principal = Depends(require_staff),
    db: Session = Depends(get_db)
):
    """Add a physical copy to an existing title."""
    book = _get_book_or_404(db, book_id)
    if copy_data.copy_number is not None:
        duplicate = db.query(BookCopy).filter(
            BookCopy.book_id == book_id,
            BookCopy.copy_number == copy_data.copy_number
        ).first()
        if duplicate:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Copy number {copy_data.copy_number} already exists for this book"
            )
    book_copy = _add_copy(db, book, copy_data.copy_number)
    db.commit()
    db.refresh(book_copy)
    return BookCopyResponse(**book_copy.to_dict())

@router.get("/copies/{copy_id}", response_model=BookCopyResponse, dependencies=[Depends(get_current_user)])
async def get_copy(copy_id: int, db: Session = Depends(get_db)):
    """Get book copy details."""
    book_copy = db.query(BookCopy).filter(BookCopy.copy_id == copy_id).first()
    if not book_copy:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Book copy not found"
        )
    return BookCopyResponse(**book_copy.to_dict())
