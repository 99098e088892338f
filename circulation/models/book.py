from sqlalchemy import Column, String, DateTime, Integer, Text, ForeignKey, CheckConstraint, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from circulation.database import Base

class Book(Base):
    __tablename__ = "book"
    
    book_id = Column(Integer, primary_key=True, autoincrement=True)
    isbn = Column(String(20), unique=True, nullable=True)
    title = Column(String(255), nullable=False)
    author = Column(String(255), nullable=False)
    publisher = Column(String(255), nullable=True)
    publication_year = Column(Integer, nullable=True)
    category = Column(String(100), nullable=True)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    
    # Relationships
    copies = relationship("BookCopy", back_populates="book", cascade="all, delete-orphan")
    
    def to_dict(self):
        return {
            "id": str(self.book_id),
            "isbn": self.isbn,
            "title": self.title,
            "author": self.author,
            "publisher": self.publisher,
            "publicationYear": self.publication_year,
            "category": self.category,
            "description": self.description,
        }

class BookCopy(Base):
    __tablename__ = "book_copy"
    
    copy_id = Column(Integer, primary_key=True, autoincrement=True)
    book_id = Column(Integer, ForeignKey("book.book_id", ondelete="CASCADE"), nullable=False, index=True)
    copy_number = Column(Integer, nullable=False)
    status = Column(String(50), default='available', nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    
    # Relationships
    book = relationship("Book", back_populates="copies")
    loans = relationship("Loan", back_populates="copy")
    
    __table_args__ = (
        CheckConstraint(
            "status IN ('available', 'borrowed', 'damaged', 'lost', 'maintenance')",
            name="chk_copy_status",
        ),
        UniqueConstraint("book_id", "copy_number", name="uq_copy_number"),
    )
    
    def to_dict(self):
        return {
            "id": str(self.copy_id),
            "bookId": str(self.book_id),
            "copyNumber": self.copy_number,
            "status": self.status,
            "book": self.book.to_dict() if self.book else None,
        }
