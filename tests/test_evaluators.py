"""Tests for the default, grace-period and auto-repayment evaluators."""

import pytest

from loans.auto_repayment import (
    check_loan_for_auto_repayment,
    classify_auto_repayment,
    get_loans_needing_auto_repayment,
)
from loans.default_detection import check_loan_default, classify_default, get_defaulted_loans
from loans.grace_period import (
    attempt_collection_after_grace_period,
    check_loan_grace_period,
    classify_grace_period,
    get_loans_in_grace_period,
)
from loans.models import CollectionOutcome, LoanState

from conftest import BORROWER, TOKEN, make_loan

NON_FUNDED = [s for s in LoanState if s != LoanState.FUNDED]


class TestClassifyDefault:
    def test_defaulted_at_grace_period_end(self) -> None:
        loan = make_loan(grace_period_end=1000)
        result = classify_default(loan, 1000, total_owed=5, amount_repaid=0)
        assert result is not None
        assert result.remaining_owed == 5
        assert result.grace_period_end == 1000

    def test_one_second_early_not_applicable(self) -> None:
        assert classify_default(make_loan(grace_period_end=1000), 999, 5, 0) is None

    @pytest.mark.parametrize("now", [1000, 5000, 10**9])
    def test_fully_repaid_never_defaulted(self, now) -> None:
        assert classify_default(make_loan(grace_period_end=1000), now, 5, 5) is None

    def test_over_repaid_treated_as_zero(self) -> None:
        assert classify_default(make_loan(grace_period_end=1000), 2000, 5, 9) is None

    @pytest.mark.parametrize("state", NON_FUNDED)
    def test_state_gate(self, state) -> None:
        assert classify_default(make_loan(state=state, grace_period_end=1000), 5000, 5, 0) is None


class TestClassifyGracePeriod:
    def test_window_opens_at_repayment_deadline(self) -> None:
        loan = make_loan(repayment_deadline=500, grace_period_end=1000)
        result = classify_grace_period(loan, 500, 10, 0, 0)
        assert result is not None
        assert result.grace_period_remaining == 500

    def test_window_closed_at_grace_period_end(self) -> None:
        loan = make_loan(repayment_deadline=500, grace_period_end=1000)
        assert classify_grace_period(loan, 1000, 10, 0, 0) is None
        # ... which is exactly where default detection takes over
        assert classify_default(loan, 1000, 10, 0) is not None

    def test_before_deadline_not_applicable(self) -> None:
        loan = make_loan(repayment_deadline=500, grace_period_end=1000)
        assert classify_grace_period(loan, 499, 10, 0, 0) is None

    def test_windows_never_overlap(self) -> None:
        loan = make_loan(repayment_deadline=500, grace_period_end=1000)
        for now in range(0, 1500, 50):
            in_grace = classify_grace_period(loan, now, 10, 0, 0) is not None
            defaulted = classify_default(loan, now, 10, 0) is not None
            assert not (in_grace and defaulted)

    @pytest.mark.parametrize("state", NON_FUNDED)
    def test_state_gate(self, state) -> None:
        loan = make_loan(state=state, repayment_deadline=500, grace_period_end=1000)
        assert classify_grace_period(loan, 700, 10, 0, 0) is None


class TestClassifyAutoRepayment:
    def test_full(self) -> None:
        check = classify_auto_repayment(make_loan(repayment_deadline=500), 500, 100, 0, 150)
        assert check.can_repay_full is True
        assert check.repayment_amount == 100

    def test_partial(self) -> None:
        check = classify_auto_repayment(make_loan(repayment_deadline=500), 600, 100, 0, 40)
        assert check.can_repay_full is False
        assert check.can_repay_partial is True
        assert check.repayment_amount == 40

    def test_empty_balance(self) -> None:
        check = classify_auto_repayment(make_loan(repayment_deadline=500), 600, 100, 0, 0)
        assert check.can_repay_full is False
        assert check.can_repay_partial is False

    def test_applies_past_grace_period(self) -> None:
        loan = make_loan(repayment_deadline=500, grace_period_end=1000)
        assert classify_auto_repayment(loan, 5000, 100, 0, 10) is not None

    def test_before_deadline_not_applicable(self) -> None:
        assert classify_auto_repayment(make_loan(repayment_deadline=500), 499, 100, 0, 150) is None

    @pytest.mark.parametrize("state", NON_FUNDED)
    def test_state_gate(self, state) -> None:
        assert classify_auto_repayment(make_loan(state=state, repayment_deadline=500), 600, 100, 0, 150) is None


class TestLedgerBackedChecks:
    def test_default_check_reads_position_at_pinned_block(self, ledger) -> None:
        ledger.now = 1000
        ledger.add(make_loan(1), repaid=10 * TOKEN)
        result = check_loan_default(ledger, 1)
        assert result.remaining_owed == 95 * TOKEN
        blocks = {b for _, _, b in ledger.read_blocks}
        assert blocks == {ledger.block_number}

    def test_grace_check_includes_balance(self, ledger) -> None:
        ledger.now = 600
        ledger.add(make_loan(1), balance=3 * TOKEN)
        result = check_loan_grace_period(ledger, 1)
        assert result.borrower_balance == 3 * TOKEN
        assert result.grace_period_remaining == 400

    def test_auto_repayment_check(self, ledger) -> None:
        ledger.now = 600
        ledger.add(make_loan(1), repaid=5 * TOKEN, balance=200 * TOKEN)
        check = check_loan_for_auto_repayment(ledger, 1)
        assert check.remaining_owed == 100 * TOKEN
        assert check.repayment_amount == 100 * TOKEN


class TestScans:
    def _ten_loans(self, ledger):
        for i in range(1, 11):
            ledger.add(make_loan(i), balance=TOKEN)

    def test_failed_read_is_isolated(self, ledger) -> None:
        ledger.now = 1000
        self._ten_loans(ledger)
        ledger.failing = {7}
        result = get_defaulted_loans(ledger)
        assert [d.loan_id for d in result.items] == [1, 2, 3, 4, 5, 6, 8, 9, 10]
        assert [f.loan_id for f in result.failures] == [7]
        assert result.scanned == 10

    def test_results_in_ascending_order(self, ledger) -> None:
        ledger.now = 600
        self._ten_loans(ledger)
        ids = [c.loan_id for c in get_loans_in_grace_period(ledger, max_workers=8).items]
        assert ids == sorted(ids) == list(range(1, 11))

    def test_not_applicable_loans_skipped(self, ledger) -> None:
        ledger.now = 1000
        ledger.add(make_loan(1))
        ledger.add(make_loan(2, state=LoanState.REPAID))
        ledger.add(make_loan(3), repaid=105 * TOKEN)
        assert [d.loan_id for d in get_defaulted_loans(ledger).items] == [1]

    def test_auto_repayment_scan_drops_unpayable(self, ledger) -> None:
        ledger.now = 600
        ledger.add(make_loan(1, borrower=BORROWER), balance=TOKEN)
        ledger.add(make_loan(2, borrower="0x4444444444444444444444444444444444444444"))
        assert [c.loan_id for c in get_loans_needing_auto_repayment(ledger).items] == [1]

    def test_empty_market(self, ledger) -> None:
        result = get_defaulted_loans(ledger)
        assert result.count == 0
        assert result.failures == []


class TestCollection:
    @pytest.mark.parametrize("balance,outcome,amount", [
        (200 * TOKEN, CollectionOutcome.FULL, 105 * TOKEN),
        (105 * TOKEN, CollectionOutcome.FULL, 105 * TOKEN),
        (10 * TOKEN, CollectionOutcome.PARTIAL, 10 * TOKEN),
        (0, CollectionOutcome.INSUFFICIENT, None),
    ])
    def test_classification(self, ledger, balance, outcome, amount) -> None:
        ledger.now = 700
        ledger.add(make_loan(1), balance=balance)
        attempt = attempt_collection_after_grace_period(ledger, 1)
        assert attempt.outcome == outcome
        assert attempt.repayment_amount == amount

    def test_outside_window(self, ledger) -> None:
        ledger.now = 1000
        ledger.add(make_loan(1), balance=TOKEN)
        attempt = attempt_collection_after_grace_period(ledger, 1)
        assert attempt.outcome == CollectionOutcome.NOT_APPLICABLE
        assert attempt.success is False
