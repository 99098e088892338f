# tests/test_fine_assessment.py
from datetime import timedelta
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import MagicMock

from circulation.services.fine_assessment import (
    FineRequest,
    OverdueFineRequest,
    assess_return,
    dispatch,
)
from circulation.services.fine_ledger import FineLedger
from circulation.services.results import Result
from conftest import DAY0


def _returned_loan(days_kept):
    return SimpleNamespace(
        loan_id=1,
        member_id=2,
        due_date=DAY0 + timedelta(days=14),
        return_date=DAY0 + timedelta(days=days_kept),
    )


def test_on_time_good_return_assesses_nothing():
    assert assess_return(_returned_loan(10), "good", "Dune") == []


def test_damaged_return_requests_one_damage_fine():
    requests = assess_return(_returned_loan(10), "damaged", "Dune")
    assert requests == [FineRequest(
        member_id=2, loan_id=1, fine_type="damaged", amount=Decimal("10.00"),
        description="Damage to book 'Dune'",
    )]


def test_lost_return_requests_lost_fine_only():
    requests = assess_return(_returned_loan(10), "lost", "Dune")
    assert [r.fine_type for r in requests] == ["lost"]
    assert requests[0].amount == Decimal("30.00")
    assert requests[0].description == "Lost book 'Dune'"


def test_late_return_requests_overdue_calculation():
    requests = assess_return(_returned_loan(20), "damaged", "Dune")
    assert requests[-1] == OverdueFineRequest(loan_id=1)
    assert len(requests) == 2


def test_return_exactly_at_due_date_is_not_late():
    assert assess_return(_returned_loan(14), "good", "Dune") == []


def test_dispatch_collects_fines_and_marks_overdue_calculated():
    ledger = MagicMock()
    ledger.create_fine.return_value = Result.success("damage fine")
    ledger.calculate_overdue_fine.return_value = Result.success("overdue fine")

    report = dispatch([
        FineRequest(2, 1, "damaged", Decimal("10.00"), "Damage"),
        OverdueFineRequest(loan_id=1),
    ], ledger)

    assert report.fines == ["damage fine", "overdue fine"]
    assert report.warnings == []
    assert report.overdue_calculated
    ledger.calculate_overdue_fine.assert_called_once_with(1)


def test_dispatch_turns_ledger_failures_into_warnings():
    ledger = MagicMock()
    ledger.create_fine.return_value = Result.failure("This loan already has a damaged fine (ID: 3).")
    ledger.calculate_overdue_fine.side_effect = RuntimeError("ledger offline")

    report = dispatch([
        FineRequest(2, 1, "damaged", Decimal("10.00"), "Damage"),
        OverdueFineRequest(loan_id=1),
    ], ledger)

    assert report.fines == []
    assert report.warnings[0] == "This loan already has a damaged fine (ID: 3)."
    assert "ledger offline" in report.warnings[1]
    assert report.overdue_calculated


def test_dispatch_ignores_zero_overdue_amount():
    ledger = MagicMock()
    ledger.calculate_overdue_fine.return_value = Result.success(None)

    report = dispatch([OverdueFineRequest(loan_id=1)], ledger)

    assert report.fines == []
    assert report.warnings == []
    assert report.overdue_calculated


def test_overdue_amount_is_daily_rate_capped():
    ledger = FineLedger(session_factory=MagicMock())
    assert ledger.overdue_amount(0) == Decimal("0.00")
    assert ledger.overdue_amount(6) == Decimal("3.00")
    assert ledger.overdue_amount(50) == Decimal("25.00")


def test_create_fine_rejects_non_positive_amount():
    session_factory = MagicMock()
    ledger = FineLedger(session_factory)

    result = ledger.create_fine(FineRequest(2, 1, "other", Decimal("0"), "Nothing"))

    assert not result.ok
    assert result.error == "Fine amount must be greater than zero."
    session_factory.assert_not_called()
