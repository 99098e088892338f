import logging
from sqlalchemy import update
from sqlalchemy.orm import Session
from circulation.models.book import BookCopy
from circulation.models.loan import Loan
from circulation.services.results import Result

logger = logging.getLogger(__name__)

# Copy status a returned copy goes back to, by return condition
RELEASE_STATUS = {
    'good': 'available',
    'damaged': 'damaged',
    'lost': 'lost',
}


class CopyAvailabilityGate:
    """Decides whether a physical copy can be lent out and flips its status.

    Reserve and release are single conditional UPDATEs, so the status check
    and the write happen atomically per copy row.
    """

    def __init__(self, db: Session):
        self.db = db

    def _open_loan_exists(self, copy_id: int) -> bool:
        return self.db.query(Loan.loan_id).filter(
            Loan.copy_id == copy_id,
            Loan.return_date.is_(None)
        ).first() is not None

    def is_available(self, copy_id: int) -> bool:
        book_copy = self.db.query(BookCopy).filter(BookCopy.copy_id == copy_id).first()
        if not book_copy or book_copy.status != 'available':
            return False
        return not self._open_loan_exists(copy_id)

    def reserve(self, copy_id: int) -> Result:
        """Mark the copy borrowed if, and only if, it is currently available.
        Runs inside the caller's transaction; nothing is committed here."""
        result = self.db.execute(
            update(BookCopy)
            .where(BookCopy.copy_id == copy_id, BookCopy.status == 'available')
            .values(status='borrowed')
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            book_copy = self.db.get(BookCopy, copy_id)
            if book_copy is None:
                return Result.failure(f"Book copy with ID {copy_id} not found.")
            self.db.refresh(book_copy)
            return Result.failure(
                f"Book copy with ID {copy_id} is not available for loan. Current status: {book_copy.status}."
            )
        if self._open_loan_exists(copy_id):
            # Copy status drifted from the loan table; the caller rolls back
            logger.warning(f"Copy {copy_id} was marked available but still has an open loan")
            return Result.failure(f"Book copy with ID {copy_id} is still on loan.")
        return Result.success(copy_id)

    def release(self, copy_id: int, condition: str = 'good') -> Result:
        """Take the copy off loan; its new status follows the return condition."""
        new_status = RELEASE_STATUS.get(condition)
        if new_status is None:
            return Result.failure(f"Unknown return condition: {condition}")
        result = self.db.execute(
            update(BookCopy)
            .where(BookCopy.copy_id == copy_id, BookCopy.status == 'borrowed')
            .values(status=new_status)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return Result.failure(f"Book copy with ID {copy_id} is not on loan.")
        return Result.success(new_status)
