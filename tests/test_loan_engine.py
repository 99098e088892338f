# tests/test_loan_engine.py
from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from circulation.errors import (
    AlreadyReturnedError,
    ConflictError,
    CopyUnavailableError,
    DependencyFailure,
    InvalidDueDateError,
    MemberIneligibleError,
    NotActiveError,
    NotFoundError,
    RenewalLimitExceededError,
    ValidationError,
)
from circulation.models import BookCopy, Fine
from circulation.services.loan_engine import LoanEngine, is_overdue
from circulation.services.member_standing import MemberStanding
from circulation.utils.timezone import ensure_utc
from conftest import DAY0, make_copy, make_user


@pytest.fixture
def engine(db):
    return LoanEngine(db)


def _checkout(engine, book_copy, member, librarian, now=DAY0):
    return engine.checkout(book_copy.copy_id, member.user_id, librarian.user_id, now=now)


def test_checkout_creates_active_loan_due_after_standard_period(engine, db, book_copy, member, librarian):
    loan = _checkout(engine, book_copy, member, librarian)

    assert loan.status == "active"
    assert loan.created_by == librarian.user_id
    assert ensure_utc(loan.checkout_date) == DAY0
    assert ensure_utc(loan.due_date) == DAY0 + timedelta(days=14)
    assert loan.return_date is None
    assert loan.renewal_count == 0

    db.refresh(book_copy)
    assert book_copy.status == "borrowed"


def test_checkout_of_copy_on_loan_is_conflict(engine, book_copy, member, other_member, librarian):
    _checkout(engine, book_copy, member, librarian)

    with pytest.raises(CopyUnavailableError) as exc_info:
        _checkout(engine, book_copy, other_member, librarian)
    assert exc_info.value.kind == "Conflict"
    assert "not available" in exc_info.value.reason


def test_checkout_unknown_copy_is_not_found(engine, member, librarian):
    with pytest.raises(NotFoundError):
        engine.checkout(999, member.user_id, librarian.user_id, now=DAY0)


def test_checkout_unknown_member_is_not_found(engine, book_copy, librarian):
    with pytest.raises(NotFoundError):
        engine.checkout(book_copy.copy_id, 999, librarian.user_id, now=DAY0)


def test_checkout_suspended_member_is_refused(engine, db, book_copy, librarian):
    suspended = make_user(db, "member", membership_status="suspended")

    with pytest.raises(MemberIneligibleError) as exc_info:
        _checkout(engine, book_copy, suspended, librarian)
    assert "suspended" in exc_info.value.reason

    db.refresh(book_copy)
    assert book_copy.status == "available"


def test_checkout_member_with_outstanding_fines_is_refused(engine, db, book_copy, member, librarian):
    db.add(Fine(member_id=member.user_id, fine_type="other", amount=Decimal("2.00"), description="Replacement card"))
    db.commit()

    with pytest.raises(MemberIneligibleError) as exc_info:
        _checkout(engine, book_copy, member, librarian)
    assert "$2.00" in exc_info.value.reason


def test_checkout_respects_active_loan_limit(engine, db, member, librarian):
    copies = make_copy(db, copies=6)
    for book_copy in copies[:5]:
        _checkout(engine, book_copy, member, librarian)

    with pytest.raises(MemberIneligibleError):
        _checkout(engine, copies[5], member, librarian)


def test_checkout_with_custom_due_date_beyond_max_period(engine, book_copy, member, librarian):
    with pytest.raises(InvalidDueDateError):
        engine.checkout(
            book_copy.copy_id, member.user_id, librarian.user_id,
            due_date=DAY0 + timedelta(days=45), now=DAY0,
        )


def test_checkout_with_custom_due_date(engine, book_copy, member, librarian):
    loan = engine.checkout(
        book_copy.copy_id, member.user_id, librarian.user_id,
        due_date=DAY0 + timedelta(days=7), now=DAY0,
    )
    assert ensure_utc(loan.due_date) == DAY0 + timedelta(days=7)


def test_return_records_date_condition_and_frees_copy(engine, db, book_copy, member, librarian):
    loan = _checkout(engine, book_copy, member, librarian)

    returned = engine.return_loan(loan.loan_id, "good", notes="Dropped at front desk", now=DAY0 + timedelta(days=3))

    assert returned.status == "returned"
    assert returned.return_condition == "good"
    assert returned.notes == "Dropped at front desk"
    assert ensure_utc(returned.return_date) == DAY0 + timedelta(days=3)
    db.refresh(book_copy)
    assert book_copy.status == "available"


@pytest.mark.parametrize("condition,copy_status", [("damaged", "damaged"), ("lost", "lost")])
def test_return_condition_sets_copy_status_not_loan_status(engine, db, book_copy, member, librarian, condition, copy_status):
    loan = _checkout(engine, book_copy, member, librarian)

    returned = engine.return_loan(loan.loan_id, condition, now=DAY0 + timedelta(days=1))

    assert returned.status == "returned"
    db.refresh(book_copy)
    assert book_copy.status == copy_status


def test_second_return_is_conflict_and_keeps_first_return_date(engine, book_copy, member, librarian):
    loan = _checkout(engine, book_copy, member, librarian)
    first = engine.return_loan(loan.loan_id, "good", now=DAY0 + timedelta(days=2))
    first_return_date = ensure_utc(first.return_date)

    with pytest.raises(AlreadyReturnedError) as exc_info:
        engine.return_loan(loan.loan_id, "good", now=DAY0 + timedelta(days=5))
    assert exc_info.value.kind == "Conflict"

    assert ensure_utc(engine.get_loan(loan.loan_id).return_date) == first_return_date


def test_return_unknown_loan_is_not_found(engine):
    with pytest.raises(NotFoundError):
        engine.return_loan(404, "good")


def test_return_with_unknown_condition_is_validation_error(engine, book_copy, member, librarian):
    loan = _checkout(engine, book_copy, member, librarian)
    with pytest.raises(ValidationError):
        engine.return_loan(loan.loan_id, "soggy")


def test_returned_copy_can_be_checked_out_again(engine, book_copy, member, other_member, librarian):
    loan = _checkout(engine, book_copy, member, librarian)
    engine.return_loan(loan.loan_id, "good", now=DAY0 + timedelta(days=1))

    second = _checkout(engine, book_copy, other_member, librarian, now=DAY0 + timedelta(days=2))
    assert second.member_id == other_member.user_id


def test_renew_without_date_extends_from_current_due_date(engine, book_copy, member, librarian):
    loan = _checkout(engine, book_copy, member, librarian)

    renewed = engine.renew(loan.loan_id, now=DAY0 + timedelta(days=10))

    assert renewed.status == "active"
    assert renewed.renewal_count == 1
    assert ensure_utc(renewed.due_date) == DAY0 + timedelta(days=28)


def test_renew_without_date_extends_from_now_when_past_due(engine, book_copy, member, librarian):
    loan = _checkout(engine, book_copy, member, librarian)
    now = DAY0 + timedelta(days=15)  # one day late, inside the grace period

    renewed = engine.renew(loan.loan_id, now=now)

    assert ensure_utc(renewed.due_date) == now + timedelta(days=14)


def test_renew_with_requested_date(engine, book_copy, member, librarian):
    loan = _checkout(engine, book_copy, member, librarian)
    requested = DAY0 + timedelta(days=20)

    renewed = engine.renew(loan.loan_id, new_due_date=requested, now=DAY0 + timedelta(days=5))

    assert ensure_utc(renewed.due_date) == requested


def test_renew_with_date_not_after_current_due_is_invalid(engine, book_copy, member, librarian):
    loan = _checkout(engine, book_copy, member, librarian)

    with pytest.raises(InvalidDueDateError) as exc_info:
        engine.renew(loan.loan_id, new_due_date=DAY0 + timedelta(days=14), now=DAY0 + timedelta(days=5))
    assert exc_info.value.kind == "ValidationError"
    assert engine.get_loan(loan.loan_id).renewal_count == 0


def test_renew_after_return_is_conflict(engine, book_copy, member, librarian):
    loan = _checkout(engine, book_copy, member, librarian)
    engine.return_loan(loan.loan_id, "good", now=DAY0 + timedelta(days=3))

    with pytest.raises(NotActiveError) as exc_info:
        engine.renew(loan.loan_id, now=DAY0 + timedelta(days=4))
    assert isinstance(exc_info.value, ConflictError)


def test_renew_overdue_beyond_grace_is_refused(engine, book_copy, member, librarian):
    loan = _checkout(engine, book_copy, member, librarian)

    with pytest.raises(NotActiveError):
        engine.renew(loan.loan_id, now=DAY0 + timedelta(days=30))


def test_renewal_limit_is_enforced(engine, book_copy, member, librarian):
    loan = _checkout(engine, book_copy, member, librarian)
    engine.renew(loan.loan_id, now=DAY0 + timedelta(days=1))
    engine.renew(loan.loan_id, now=DAY0 + timedelta(days=2))

    with pytest.raises(RenewalLimitExceededError) as exc_info:
        engine.renew(loan.loan_id, now=DAY0 + timedelta(days=3))
    assert exc_info.value.code == "RenewalLimitExceeded"
    assert engine.get_loan(loan.loan_id).renewal_count == 2


def test_renew_blocked_by_outstanding_fines(engine, db, book_copy, member, librarian):
    loan = _checkout(engine, book_copy, member, librarian)
    db.add(Fine(member_id=member.user_id, fine_type="other", amount=Decimal("1.50"), description="Late fee"))
    db.commit()

    with pytest.raises(MemberIneligibleError):
        engine.renew(loan.loan_id, now=DAY0 + timedelta(days=1))


def test_is_overdue_is_monotonic_until_return(engine, book_copy, member, librarian):
    loan = _checkout(engine, book_copy, member, librarian)
    due = ensure_utc(loan.due_date)

    assert not is_overdue(loan, due)
    checkpoints = [due + timedelta(minutes=1), due + timedelta(days=1), due + timedelta(days=90)]
    assert all(is_overdue(loan, t) for t in checkpoints)
    assert loan.effective_status(due + timedelta(days=1)) == "overdue"

    engine.return_loan(loan.loan_id, "good", now=due + timedelta(days=2))
    assert not is_overdue(loan, due + timedelta(days=90))


def test_list_overdue_filters_by_derived_status(engine, db, member, librarian):
    first, second = make_copy(db, copies=2)
    late = _checkout(engine, first, member, librarian, now=DAY0)
    _checkout(engine, second, member, librarian, now=DAY0 + timedelta(days=10))

    overdue = engine.list_overdue(member_id=member.user_id, as_of=DAY0 + timedelta(days=20))

    assert [loan.loan_id for loan in overdue] == [late.loan_id]
    assert db.get(BookCopy, first.copy_id).status == "borrowed"


def _locked(statement="UPDATE"):
    return OperationalError(statement, {}, Exception("database is locked"))


def test_database_outage_during_lookup_is_retryable_failure(engine, db, book_copy, member, librarian):
    loan = _checkout(engine, book_copy, member, librarian)

    with patch.object(db, "query", side_effect=_locked("SELECT")):
        with pytest.raises(DependencyFailure) as exc_info:
            engine.return_loan(loan.loan_id, "good")
        with pytest.raises(DependencyFailure):
            engine.checkout(book_copy.copy_id, member.user_id, librarian.user_id)

    assert exc_info.value.status_code == 503
    assert "Please retry" in exc_info.value.reason


def test_database_outage_mid_return_rolls_back_the_transition(engine, db, book_copy, member, librarian):
    loan = _checkout(engine, book_copy, member, librarian)
    real_execute = db.execute

    def execute(statement, *args, **kwargs):
        # The loan row is updated first, then the copy row fails
        if statement.is_dml and statement.table.name == "book_copy":
            raise _locked()
        return real_execute(statement, *args, **kwargs)

    with patch.object(db, "execute", side_effect=execute):
        with pytest.raises(DependencyFailure):
            engine.return_loan(loan.loan_id, "good", now=DAY0 + timedelta(days=1))

    db.expire_all()
    assert engine.get_loan(loan.loan_id).return_date is None
    assert db.get(BookCopy, book_copy.copy_id).status == "borrowed"

    retried = engine.return_loan(loan.loan_id, "good", now=DAY0 + timedelta(days=2))
    assert retried.status == "returned"


def test_explicit_zero_loan_limit_is_kept(db):
    assert MemberStanding(db, max_active_loans=0).max_active_loans == 0
    assert MemberStanding(db).max_active_loans == 5
