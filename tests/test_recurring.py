"""
Test suite for the recurring scheduler

Tests frequency arithmetic, rule lifecycle, due selection, per-rule isolation
and the atomic post-and-advance unit.
"""

import threading

import pytest
from decimal import Decimal
from datetime import date, datetime, timedelta, timezone

from finledger.currency import Currency
from finledger.storage import InMemoryStorage
from finledger.audit import AuditTrail, AuditEventType
from finledger.accounts import AccountManager, AccountType
from finledger.categories import CategoryManager
from finledger.transactions import LedgerEngine, TransactionType
from finledger.recurring import (
    RecurringScheduler, RecurringFrequency, OutcomeStatus, add_months
)
from finledger.errors import (
    CategoryNotFound, CurrencyMismatch, InvalidDateRange, InvalidTransactionType,
    OwnershipMismatch, RecurringRuleNotFound, ValidationError
)


class FakeClock:
    """Settable clock returning a fixed UTC instant"""

    def __init__(self, day: date):
        self.set(day)

    def set(self, day: date):
        self.now = datetime(day.year, day.month, day.day, 6, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now


class TestFrequency:
    """Test next-occurrence arithmetic"""

    def test_fixed_day_offsets(self):
        start = date(2024, 1, 15)
        assert RecurringFrequency.DAILY.advance(start) == date(2024, 1, 16)
        assert RecurringFrequency.WEEKLY.advance(start) == date(2024, 1, 22)
        assert RecurringFrequency.BIWEEKLY.advance(start) == date(2024, 1, 29)

    def test_calendar_month_offsets(self):
        start = date(2024, 1, 15)
        assert RecurringFrequency.MONTHLY.advance(start) == date(2024, 2, 15)
        assert RecurringFrequency.QUARTERLY.advance(start) == date(2024, 4, 15)
        assert RecurringFrequency.YEARLY.advance(start) == date(2025, 1, 15)

    def test_month_end_is_clamped(self):
        """Test that day-of-month is clamped to shorter months"""
        assert RecurringFrequency.MONTHLY.advance(date(2024, 1, 31)) == date(2024, 2, 29)
        assert RecurringFrequency.MONTHLY.advance(date(2023, 1, 31)) == date(2023, 2, 28)
        assert RecurringFrequency.QUARTERLY.advance(date(2024, 11, 30)) == date(2025, 2, 28)
        assert RecurringFrequency.YEARLY.advance(date(2024, 2, 29)) == date(2025, 2, 28)

    def test_add_months_crosses_year(self):
        assert add_months(date(2024, 12, 10), 1) == date(2025, 1, 10)
        assert add_months(date(2024, 10, 31), 14) == date(2025, 12, 31)


class SchedulerTestBase:

    def setup_method(self):
        """Set up test fixtures"""
        self.clock = FakeClock(date(2024, 1, 15))
        self.storage = InMemoryStorage()
        self.audit_trail = AuditTrail(self.storage)
        self.account_manager = AccountManager(self.storage, self.audit_trail)
        self.category_manager = CategoryManager(self.storage, self.audit_trail)
        self.ledger = LedgerEngine(
            self.storage, self.account_manager, self.audit_trail,
            category_manager=self.category_manager, clock=self.clock
        )
        self.scheduler = RecurringScheduler(
            self.storage, self.ledger, self.account_manager, self.audit_trail,
            category_manager=self.category_manager, clock=self.clock
        )
        self.account = self.account_manager.create_account(
            owner_id="user-1", name="Main", account_type=AccountType.CHECKING,
            currency=Currency.USD, initial_balance="1000.00"
        )

    def rule(self, **overrides):
        params = dict(
            owner_id="user-1",
            account_id=self.account.id,
            amount="100.00",
            currency="USD",
            transaction_type="income",
            frequency="monthly",
            description="Salary",
            start_date=self.clock().date()
        )
        params.update(overrides)
        return self.scheduler.create_rule(**params)

    def balance(self):
        return self.account_manager.get_account(self.account.id).balance

    def transactions(self):
        return self.ledger.list_for_account(self.account.id)


class TestRuleLifecycle(SchedulerTestBase):
    """Test rule creation, edits and deactivation"""

    def test_create_rule(self):
        rule = self.rule()
        assert rule.is_active
        assert rule.next_run_date == date(2024, 1, 15)
        assert rule.transaction_type == TransactionType.INCOME
        assert rule.frequency == RecurringFrequency.MONTHLY
        assert rule.amount == Decimal("100.00")

        stored = self.scheduler.get_rule(rule.id)
        assert stored.next_run_date == rule.next_run_date
        assert stored.currency == Currency.USD
        events = self.audit_trail.get_events_for_entity("recurring_rule", rule.id)
        assert events[0].event_type == AuditEventType.RECURRING_RULE_CREATED

    def test_transfer_rules_rejected(self):
        with pytest.raises(InvalidTransactionType):
            self.rule(transaction_type="transfer")

    def test_rule_for_someone_elses_account_rejected(self):
        with pytest.raises(OwnershipMismatch):
            self.rule(owner_id="user-2")

    def test_rule_currency_must_match_account(self):
        with pytest.raises(CurrencyMismatch):
            self.rule(currency="EUR")

    def test_end_before_start_rejected(self):
        with pytest.raises(InvalidDateRange):
            self.rule(start_date=date(2024, 3, 1), end_date=date(2024, 2, 1))

    def test_invalid_frequency_and_amount(self):
        with pytest.raises(ValidationError):
            self.rule(frequency="fortnightly")
        with pytest.raises(ValidationError):
            self.rule(amount="0")

    def test_unknown_category_rejected(self):
        with pytest.raises(CategoryNotFound):
            self.rule(category_id="missing")

    def test_past_start_date_moves_to_today(self):
        """Test that a start date in the past begins today"""
        rule = self.rule(start_date=date(2023, 6, 1))
        assert rule.start_date == date(2024, 1, 15)
        assert rule.next_run_date == date(2024, 1, 15)

    def test_past_start_date_kept_when_adjustment_disabled(self):
        self.scheduler.adjust_past_start_dates = False
        rule = self.rule(start_date=date(2023, 6, 1))
        assert rule.next_run_date == date(2023, 6, 1)

    def test_explicit_today_overrides_clock(self):
        rule = self.rule(start_date=date(2024, 1, 10), today=date(2024, 1, 1))
        assert rule.start_date == date(2024, 1, 10)

    def test_listings(self):
        first = self.rule()
        second = self.rule(description="Rent", transaction_type="expense")
        self.scheduler.deactivate_rule(second.id)

        assert {r.id for r in self.scheduler.list_by_owner("user-1")} == {first.id, second.id}
        assert [r.id for r in self.scheduler.list_active_by_owner("user-1")] == [first.id]
        assert len(self.scheduler.list_by_account(self.account.id)) == 2
        assert self.scheduler.list_by_owner("user-2") == []

    def test_get_unknown_rule(self):
        with pytest.raises(RecurringRuleNotFound):
            self.scheduler.get_rule("missing")

    def test_update_changes_future_runs_only(self):
        """Test that editing the amount leaves posted transactions untouched"""
        rule = self.rule()
        self.scheduler.process_due(date(2024, 1, 15))

        self.scheduler.update_rule(rule.id, amount="250.00", description="Bigger salary")
        self.clock.set(date(2024, 2, 15))
        self.scheduler.process_due(date(2024, 2, 15))

        amounts = sorted(t.amount for t in self.transactions())
        assert amounts == [Decimal("100.00"), Decimal("250.00")]
        assert self.balance() == Decimal("1350.00")

    def test_update_end_date_before_start_rejected(self):
        rule = self.rule(start_date=date(2024, 1, 20))
        with pytest.raises(InvalidDateRange):
            self.scheduler.update_rule(rule.id, end_date=date(2024, 1, 19))
        stored = self.scheduler.get_rule(rule.id)
        assert stored.end_date is None
        assert stored.is_active

    def test_update_end_date_past_next_run(self):
        """Test that shortening the end date below the next run expires the rule"""
        rule = self.rule(frequency="weekly")
        self.scheduler.process_due(date(2024, 1, 15))  # next run 2024-01-22

        updated = self.scheduler.update_rule(rule.id, end_date=date(2024, 1, 20))

        assert not updated.is_active
        assert self.scheduler.find_due(date(2024, 1, 22)) == []

    def test_update_can_clear_end_date(self):
        rule = self.rule(end_date=date(2024, 6, 1))
        updated = self.scheduler.update_rule(rule.id, end_date=None)
        assert updated.end_date is None
        assert self.scheduler.get_rule(rule.id).end_date is None

    def test_update_leaves_omitted_fields(self):
        rule = self.rule(end_date=date(2024, 6, 1))
        updated = self.scheduler.update_rule(rule.id, description="Renamed")
        assert updated.end_date == date(2024, 6, 1)
        assert updated.description == "Renamed"

    def test_deactivate_is_terminal_and_idempotent(self):
        rule = self.rule()
        self.scheduler.deactivate_rule(rule.id)
        self.scheduler.deactivate_rule(rule.id)

        assert not self.scheduler.get_rule(rule.id).is_active
        assert self.scheduler.process_due(date(2024, 1, 15)).outcomes == []
        events = self.audit_trail.get_events_by_type(AuditEventType.RECURRING_RULE_DEACTIVATED)
        assert len(events) == 1


class TestProcessDue(SchedulerTestBase):
    """Test the daily batch"""

    def test_monthly_rule_posts_once_and_advances(self):
        """MONTHLY from 2024-01-15: one posting, next run 2024-02-15, rerun posts nothing"""
        rule = self.rule(start_date=date(2024, 1, 15))

        report = self.scheduler.process_due(date(2024, 1, 15))

        assert report.posted == 1
        assert self.scheduler.get_rule(rule.id).next_run_date == date(2024, 2, 15)
        assert len(self.transactions()) == 1

        rerun = self.scheduler.process_due(date(2024, 1, 15))
        assert rerun.outcomes == []
        assert self.scheduler.process_due(date(2024, 2, 14)).outcomes == []
        assert len(self.transactions()) == 1

    def test_rule_expires_after_end_date(self):
        """MONTHLY 2024-01-01 to 2024-03-01 runs three times then deactivates"""
        self.clock.set(date(2024, 1, 1))
        rule = self.rule(start_date=date(2024, 1, 1), end_date=date(2024, 3, 1))

        for run_day, expected_next, still_active in [
            (date(2024, 1, 1), date(2024, 2, 1), True),
            (date(2024, 2, 1), date(2024, 3, 1), True),
            (date(2024, 3, 1), date(2024, 4, 1), False),
        ]:
            self.clock.set(run_day)
            report = self.scheduler.process_due(run_day)
            assert report.posted == 1
            assert report.outcomes[0].deactivated is not still_active
            stored = self.scheduler.get_rule(rule.id)
            assert stored.next_run_date == expected_next
            assert stored.is_active is still_active

        for later in (date(2024, 4, 1), date(2025, 1, 1)):
            assert self.scheduler.process_due(later).outcomes == []
        assert len(self.transactions()) == 3

    def test_posted_transaction_copies_rule(self):
        """Test amount, category, description marker and rule reference"""
        category = self.category_manager.create_category("user-1", "Income")
        rule = self.rule(category_id=category.id)

        report = self.scheduler.process_due(date(2024, 1, 15))
        transaction = self.ledger.get_transaction(report.outcomes[0].transaction_id)

        assert transaction.description == "Salary (Recurring)"
        assert transaction.recurring_rule_id == rule.id
        assert transaction.category_id == category.id
        assert transaction.to_account_id == self.account.id
        assert transaction.from_account_id is None
        assert transaction.transaction_date == self.clock()
        assert self.balance() == Decimal("1100.00")

    def test_expense_rule_debits_account(self):
        self.rule(transaction_type="expense", amount="40.00", description="Rent")
        self.scheduler.process_due(date(2024, 1, 15))
        assert self.balance() == Decimal("960.00")
        assert self.transactions()[0].from_account_id == self.account.id

    def test_selection_respects_end_date(self):
        """Test that a rule whose end date has passed is not selected"""
        rule = self.rule(start_date=date(2024, 1, 15), end_date=date(2024, 1, 20))
        assert self.scheduler.find_due(date(2024, 1, 21)) == []
        assert [r.id for r in self.scheduler.find_due(date(2024, 1, 20))] == [rule.id]

    def test_default_as_of_uses_clock(self):
        self.rule()
        report = self.scheduler.process_due()
        assert report.as_of == date(2024, 1, 15)
        assert report.posted == 1

    def test_failed_rule_is_isolated_and_advanced(self):
        """Test that one failing rule does not block the batch"""
        failing = self.rule(transaction_type="expense", amount="5000.00", description="Too big")
        working = self.rule(description="Salary")

        report = self.scheduler.process_due(date(2024, 1, 15))

        outcomes = {o.rule_id: o for o in report.outcomes}
        assert outcomes[failing.id].status == OutcomeStatus.FAILED
        assert outcomes[failing.id].error_code == "insufficient_funds"
        assert outcomes[failing.id].transaction_id is None
        assert outcomes[working.id].status == OutcomeStatus.POSTED
        assert report.failed == 1 and report.posted == 1

        assert self.scheduler.get_rule(failing.id).next_run_date == date(2024, 2, 15)
        assert self.balance() == Decimal("1100.00")
        failures = self.audit_trail.get_events_by_type(AuditEventType.RECURRING_RULE_FAILED)
        assert [e.entity_id for e in failures] == [failing.id]

    def test_unexpected_error_is_isolated(self, monkeypatch):
        rule = self.rule()

        def broken_post(draft):
            raise RuntimeError("storage went away")

        monkeypatch.setattr(self.ledger, "post", broken_post)
        report = self.scheduler.process_due(date(2024, 1, 15))

        outcome = report.outcomes[0]
        assert outcome.status == OutcomeStatus.FAILED
        assert outcome.error_code == "unexpected_error"
        assert self.scheduler.get_rule(rule.id).next_run_date == date(2024, 2, 15)

    def test_unsupported_type_is_skipped(self):
        """Test that a stored TRANSFER rule is skipped and still advanced"""
        rule = self.rule()
        data = self.storage.load(self.scheduler.table_name, rule.id)
        data["transaction_type"] = TransactionType.TRANSFER.value
        self.storage.save(self.scheduler.table_name, rule.id, data)

        report = self.scheduler.process_due(date(2024, 1, 15))

        assert report.skipped == 1
        assert report.outcomes[0].error_code == "invalid_transaction_type"
        assert self.transactions() == []
        assert self.scheduler.get_rule(rule.id).next_run_date == date(2024, 2, 15)

    def test_posting_and_advance_commit_together(self, monkeypatch):
        """Test that a failed advance also rolls back the posting"""
        rule = self.rule()
        original_save_rule = self.scheduler._save_rule
        calls = {"count": 0}

        def flaky_save_rule(r):
            calls["count"] += 1
            if calls["count"] == 1:
                raise RuntimeError("rule write failed")
            return original_save_rule(r)

        monkeypatch.setattr(self.scheduler, "_save_rule", flaky_save_rule)
        report = self.scheduler.process_due(date(2024, 1, 15))

        assert report.outcomes[0].status == OutcomeStatus.FAILED
        assert self.transactions() == []
        assert self.balance() == Decimal("1000.00")
        # Advanced by the failure path, so it is not due again today
        assert self.scheduler.get_rule(rule.id).next_run_date == date(2024, 2, 15)
        assert self.scheduler.process_due(date(2024, 1, 15)).outcomes == []

    def test_catch_up_posts_one_run_per_batch(self):
        """Test that an overdue rule advances one step per invocation"""
        self.rule(frequency="daily")
        report = self.scheduler.process_due(date(2024, 1, 18))
        assert report.posted == 1
        assert report.outcomes[0].next_run_date == date(2024, 1, 16)

    def test_report_to_dict(self):
        self.rule()
        data = self.scheduler.process_due(date(2024, 1, 15)).to_dict()
        assert data["as_of"] == "2024-01-15"
        assert data["posted"] == 1
        assert data["outcomes"][0]["status"] == "posted"
        assert data["outcomes"][0]["next_run_date"] == "2024-02-15"

    def test_audit_chain_stays_valid(self):
        self.rule()
        self.rule(transaction_type="expense", amount="9999.00")
        self.scheduler.process_due(date(2024, 1, 15))
        assert self.audit_trail.verify_integrity()["valid"]
        executed = self.audit_trail.get_events_by_type(AuditEventType.RECURRING_RULE_EXECUTED)
        assert len(executed) == 1


class TestRuleChangesDuringBatch(SchedulerTestBase):
    """Test that the batch acts on the stored rule, not the selected copy"""

    def select_then(self, monkeypatch, action):
        """Run ``action`` right after the batch has selected its due rules"""
        original_find_due = self.scheduler.find_due

        def find_due_then_act(as_of):
            due = original_find_due(as_of)
            action()
            return due

        monkeypatch.setattr(self.scheduler, "find_due", find_due_then_act)

    def test_rule_paused_after_selection_is_not_posted(self, monkeypatch):
        rule = self.rule()
        self.select_then(monkeypatch, lambda: self.scheduler.deactivate_rule(rule.id))

        report = self.scheduler.process_due(date(2024, 1, 15))

        assert report.outcomes == []
        assert self.transactions() == []
        stored = self.scheduler.get_rule(rule.id)
        assert stored.is_active is False
        assert stored.next_run_date == date(2024, 1, 15)

    def test_rule_edited_after_selection_posts_new_amount(self, monkeypatch):
        rule = self.rule()
        self.select_then(monkeypatch, lambda: self.scheduler.update_rule(rule.id, amount="999.00"))

        report = self.scheduler.process_due(date(2024, 1, 15))

        assert report.posted == 1
        assert self.transactions()[0].amount == Decimal("999.00")
        stored = self.scheduler.get_rule(rule.id)
        assert stored.amount == Decimal("999.00")
        assert stored.next_run_date == date(2024, 2, 15)

    def test_rule_expired_after_selection_is_not_posted(self, monkeypatch):
        rule = self.rule(frequency="weekly")
        self.select_then(monkeypatch, lambda: self.scheduler.update_rule(rule.id, end_date=date(2024, 1, 15)))
        self.clock.set(date(2024, 1, 16))

        report = self.scheduler.process_due(date(2024, 1, 16))

        assert report.outcomes == []
        assert self.transactions() == []

    def test_overlapping_batches_post_a_due_rule_once(self, monkeypatch):
        """Two batches selecting the same rule at once produce one posting"""
        rule = self.rule()
        barrier = threading.Barrier(2, timeout=5)
        self.select_then(monkeypatch, barrier.wait)

        reports = []
        errors = []

        def run_batch():
            try:
                reports.append(self.scheduler.process_due(date(2024, 1, 15)))
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=run_batch) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)

        assert errors == []
        assert sorted(report.posted for report in reports) == [0, 1]
        assert len(self.transactions()) == 1
        assert self.balance() == Decimal("1100.00")
        assert self.scheduler.get_rule(rule.id).next_run_date == date(2024, 2, 15)
