"""
Recurring Scheduler Module

Materializes transactions from recurring rules (salary, rent, subscriptions).
Rules are ACTIVE until they run past their end date or are paused; both are
terminal. A rule edit only affects future runs, never transactions already
posted from it.

``process_due`` is meant to be triggered once a day by an external timer. Each
selected rule is handled in isolation: a posting and the rule advance commit
together, and a failed posting still advances the rule so one bad rule cannot
block the batch or be retried forever.
"""

import calendar
import uuid
from datetime import date, datetime, timedelta, timezone
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from .currency import Currency
from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .accounts import AccountManager
from .categories import CategoryManager
from .transactions import (
    LedgerEngine, Transaction, TransactionDraft, TransactionType,
    coerce_amount, coerce_currency, coerce_transaction_type
)
from .errors import (
    CurrencyMismatch, InvalidDateRange, InvalidTransactionType, LedgerError,
    OwnershipMismatch, RecurringRuleNotFound, ValidationError
)
from .logging_config import get_logger, log_action


logger = get_logger("finledger.recurring")

_UNSET = object()


def add_months(start_date: date, months: int) -> date:
    """Add months to a date, clamping to the last day of shorter months"""
    month = start_date.month - 1 + months
    year = start_date.year + month // 12
    month = month % 12 + 1
    day = min(start_date.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


class RecurringFrequency(Enum):
    """How often a rule repeats"""
    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"

    def advance(self, current: date) -> date:
        """
        Next occurrence after ``current``.
        Example: MONTHLY.advance(2024-01-15) -> 2024-02-15
        """
        if self == RecurringFrequency.DAILY:
            return current + timedelta(days=1)
        elif self == RecurringFrequency.WEEKLY:
            return current + timedelta(days=7)
        elif self == RecurringFrequency.BIWEEKLY:
            return current + timedelta(days=14)
        elif self == RecurringFrequency.MONTHLY:
            return add_months(current, 1)
        elif self == RecurringFrequency.QUARTERLY:
            return add_months(current, 3)
        else:
            return add_months(current, 12)


class OutcomeStatus(Enum):
    POSTED = "posted"
    SKIPPED = "skipped"    # Rule cannot produce a transaction (unsupported type)
    FAILED = "failed"      # Posting was rejected or errored


@dataclass
class RecurringRule(StorageRecord):
    """
    A recurring posting rule against one account
    """
    owner_id: str
    account_id: str
    amount: Decimal
    currency: Currency
    transaction_type: TransactionType
    frequency: RecurringFrequency
    description: str
    start_date: date
    next_run_date: date
    end_date: Optional[date] = None  # None = runs forever
    is_active: bool = True
    category_id: Optional[str] = None

    def is_due(self, as_of: date) -> bool:
        return (
            self.is_active
            and self.next_run_date <= as_of
            and (self.end_date is None or self.end_date >= as_of)
        )

    def to_dict(self) -> Dict:
        result = super().to_dict()
        result['currency'] = self.currency.code
        return result

    @classmethod
    def from_dict(cls, data: Dict) -> 'RecurringRule':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            owner_id=data['owner_id'],
            account_id=data['account_id'],
            amount=Decimal(data['amount']),
            currency=Currency[data['currency']],
            transaction_type=TransactionType(data['transaction_type']),
            frequency=RecurringFrequency(data['frequency']),
            description=data['description'],
            start_date=date.fromisoformat(data['start_date']),
            next_run_date=date.fromisoformat(data['next_run_date']),
            end_date=date.fromisoformat(data['end_date']) if data.get('end_date') else None,
            is_active=data['is_active'],
            category_id=data.get('category_id')
        )


@dataclass
class RuleOutcome:
    """Result of processing one due rule"""
    rule_id: str
    status: OutcomeStatus
    transaction_id: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    next_run_date: Optional[date] = None
    deactivated: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "status": self.status.value,
            "transaction_id": self.transaction_id,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "next_run_date": self.next_run_date.isoformat() if self.next_run_date else None,
            "deactivated": self.deactivated,
        }


@dataclass
class ProcessingReport:
    """Per-rule results of one ``process_due`` run"""
    as_of: date
    outcomes: List[RuleOutcome] = field(default_factory=list)

    def _count(self, status: OutcomeStatus) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status == status)

    @property
    def posted(self) -> int:
        return self._count(OutcomeStatus.POSTED)

    @property
    def skipped(self) -> int:
        return self._count(OutcomeStatus.SKIPPED)

    @property
    def failed(self) -> int:
        return self._count(OutcomeStatus.FAILED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "as_of": self.as_of.isoformat(),
            "processed": len(self.outcomes),
            "posted": self.posted,
            "skipped": self.skipped,
            "failed": self.failed,
            "outcomes": [outcome.to_dict() for outcome in self.outcomes],
        }


class RecurringScheduler:
    """
    Manages recurring rules and turns due rules into ledger postings
    """

    def __init__(
        self,
        storage: StorageInterface,
        ledger: LedgerEngine,
        account_manager: AccountManager,
        audit_trail: AuditTrail,
        category_manager: Optional[CategoryManager] = None,
        clock: Optional[Callable[[], datetime]] = None,
        description_suffix: str = " (Recurring)",
        adjust_past_start_dates: bool = True
    ):
        self.storage = storage
        self.ledger = ledger
        self.account_manager = account_manager
        self.category_manager = category_manager
        self.audit_trail = audit_trail
        self.table_name = "recurring_rules"
        self.description_suffix = description_suffix
        self.adjust_past_start_dates = adjust_past_start_dates
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def create_rule(
        self,
        owner_id: str,
        account_id: str,
        amount: Union[Decimal, str, int],
        currency: Union[Currency, str],
        transaction_type: Union[TransactionType, str],
        frequency: Union[RecurringFrequency, str],
        description: str,
        start_date: date,
        end_date: Optional[date] = None,
        category_id: Optional[str] = None,
        today: Optional[date] = None
    ) -> RecurringRule:
        """
        Create a new recurring rule

        Args:
            owner_id: Owner of the rule; must own the account
            account_id: Account credited (INCOME) or debited (EXPENSE)
            amount: Amount per run
            currency: Must match the account currency
            transaction_type: INCOME or EXPENSE
            frequency: Repeat interval
            description: Text copied onto each posted transaction
            start_date: First run date; a past date starts today when adjustment is enabled
            end_date: Optional last date a run may happen on
            category_id: Optional category copied onto each posting
            today: Reference date for the past-start adjustment (defaults to the clock)

        Returns:
            The created RecurringRule, due first on its start date
        """
        log_action(logger, "info", "Creating recurring rule",
                   user_id=owner_id, action="create_recurring_rule")

        transaction_type = coerce_transaction_type(transaction_type)
        if transaction_type not in (TransactionType.INCOME, TransactionType.EXPENSE):
            raise InvalidTransactionType(
                f"Recurring rules support INCOME or EXPENSE, not {transaction_type.name}",
                {"transaction_type": transaction_type.value}
            )
        frequency = self._coerce_frequency(frequency)
        amount = coerce_amount(amount)
        currency = coerce_currency(currency)
        if not description or not description.strip():
            raise ValidationError("Description is required")

        account = self.account_manager.get_account(account_id)
        if account.owner_id != owner_id:
            raise OwnershipMismatch("Account does not belong to this owner", {"account_id": account_id})
        if account.currency != currency:
            raise CurrencyMismatch(
                f"Currency mismatch: Rule uses {currency.code}, account uses {account.currency.code}",
                {"rule_currency": currency.code, "account_currency": account.currency.code}
            )
        if category_id and self.category_manager:
            self.category_manager.get_category(category_id)

        today = today or self._clock().date()
        if start_date < today and self.adjust_past_start_dates:
            logger.warning(f"Start date {start_date} is in the past, adjusting to today")
            start_date = today
        if end_date is not None and end_date < start_date:
            raise InvalidDateRange("End date cannot be before start date",
                                   {"start_date": start_date, "end_date": end_date})

        now = datetime.now(timezone.utc)
        rule = RecurringRule(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            owner_id=owner_id,
            account_id=account_id,
            amount=amount,
            currency=currency,
            transaction_type=transaction_type,
            frequency=frequency,
            description=description.strip(),
            start_date=start_date,
            next_run_date=start_date,
            end_date=end_date,
            category_id=category_id
        )

        with self.storage.atomic():
            self._save_rule(rule)
            self.audit_trail.log_event(
                event_type=AuditEventType.RECURRING_RULE_CREATED,
                entity_type="recurring_rule",
                entity_id=rule.id,
                user_id=owner_id,
                metadata={
                    "account_id": account_id,
                    "amount": amount,
                    "currency": currency.code,
                    "transaction_type": transaction_type.value,
                    "frequency": frequency.value,
                    "start_date": start_date,
                    "end_date": end_date
                }
            )

        logger.info(f"Recurring rule created successfully with ID: {rule.id}")
        return rule

    def get_rule(self, rule_id: str) -> RecurringRule:
        data = self.storage.load(self.table_name, rule_id)
        if not data:
            raise RecurringRuleNotFound(rule_id)
        return RecurringRule.from_dict(data)

    def list_by_owner(self, owner_id: str) -> List[RecurringRule]:
        return [RecurringRule.from_dict(d) for d in self.storage.find(self.table_name, {"owner_id": owner_id})]

    def list_active_by_owner(self, owner_id: str) -> List[RecurringRule]:
        return [
            RecurringRule.from_dict(d)
            for d in self.storage.find(self.table_name, {"owner_id": owner_id, "is_active": True})
        ]

    def list_by_account(self, account_id: str) -> List[RecurringRule]:
        return [RecurringRule.from_dict(d) for d in self.storage.find(self.table_name, {"account_id": account_id})]

    def update_rule(
        self,
        rule_id: str,
        description: Optional[str] = None,
        amount: Optional[Union[Decimal, str, int]] = None,
        frequency: Optional[Union[RecurringFrequency, str]] = None,
        end_date: Any = _UNSET,
        category_id: Any = _UNSET
    ) -> RecurringRule:
        """
        Edit future-only fields of a rule. Transactions already posted from the
        rule are left untouched.

        ``end_date`` and ``category_id`` may be passed as None to clear them;
        omitted arguments keep their current value.
        """
        with self.account_manager.locks.hold(rule_id), self.storage.atomic():
            rule = self.get_rule(rule_id)
            changes: Dict[str, Any] = {}

            if description is not None:
                if not description.strip():
                    raise ValidationError("Description is required")
                rule.description = changes["description"] = description.strip()
            if amount is not None:
                rule.amount = changes["amount"] = coerce_amount(amount)
            if frequency is not None:
                rule.frequency = changes["frequency"] = self._coerce_frequency(frequency)
            if category_id is not _UNSET:
                if category_id and self.category_manager:
                    self.category_manager.get_category(category_id)
                rule.category_id = changes["category_id"] = category_id
            if end_date is not _UNSET:
                if end_date is not None and end_date < rule.start_date:
                    raise InvalidDateRange("End date cannot be before start date",
                                           {"start_date": rule.start_date, "end_date": end_date})
                rule.end_date = changes["end_date"] = end_date
                if rule.is_active and end_date is not None and rule.next_run_date > end_date:
                    rule.is_active = changes["is_active"] = False

            rule.updated_at = datetime.now(timezone.utc)
            self._save_rule(rule)
            self.audit_trail.log_event(
                event_type=AuditEventType.RECURRING_RULE_UPDATED,
                entity_type="recurring_rule",
                entity_id=rule.id,
                user_id=rule.owner_id,
                metadata=changes
            )

        logger.info(f"Recurring rule updated: {rule_id}")
        return rule

    def deactivate_rule(self, rule_id: str) -> RecurringRule:
        """Pause a rule permanently; a new rule must be created to resume"""
        with self.account_manager.locks.hold(rule_id), self.storage.atomic():
            rule = self.get_rule(rule_id)
            if rule.is_active:
                rule.is_active = False
                rule.updated_at = datetime.now(timezone.utc)
                self._save_rule(rule)
                self.audit_trail.log_event(
                    event_type=AuditEventType.RECURRING_RULE_DEACTIVATED,
                    entity_type="recurring_rule",
                    entity_id=rule.id,
                    user_id=rule.owner_id,
                    metadata={"next_run_date": rule.next_run_date}
                )

        logger.info(f"Recurring rule deactivated successfully: {rule_id}")
        return rule

    def find_due(self, as_of: date) -> List[RecurringRule]:
        """Active, unexpired rules whose next run date has arrived"""
        rules = [RecurringRule.from_dict(d) for d in self.storage.find(self.table_name, {"is_active": True})]
        due = [rule for rule in rules if rule.is_due(as_of)]
        due.sort(key=lambda r: (r.next_run_date, r.created_at))
        return due

    def process_due(self, as_of: Optional[date] = None) -> ProcessingReport:
        """
        Post one transaction for every due rule and advance each rule

        Args:
            as_of: Processing date (defaults to today)

        Returns:
            ProcessingReport with one outcome per rule that was still due
            when its turn came
        """
        as_of = as_of or self._clock().date()
        logger.info(f"Processing recurring rules for date: {as_of}")

        due = self.find_due(as_of)
        logger.info(f"Found {len(due)} due recurring rules")

        report = ProcessingReport(as_of=as_of)
        for rule in due:
            outcome = self._process_rule(rule, as_of)
            if outcome is not None:
                report.outcomes.append(outcome)

        log_action(
            logger, "info", "Completed processing recurring rules",
            action="process_recurring_rules",
            extra={"as_of": as_of.isoformat(), "posted": report.posted,
                   "skipped": report.skipped, "failed": report.failed}
        )
        return report

    def _process_rule(self, selected: RecurringRule, as_of: date) -> Optional[RuleOutcome]:
        """
        Post and advance one rule under its own lock and its account's lock.

        The rule is re-read inside the unit because ``selected`` may have been
        paused, edited or run by another batch since it was selected. Returns
        None when the stored rule is no longer due.
        """
        logger.debug(f"Processing recurring rule ID: {selected.id}")

        with self.account_manager.locks.hold(selected.id, selected.account_id):
            try:
                with self.storage.atomic():
                    rule = self.get_rule(selected.id)
                    if not rule.is_due(as_of):
                        logger.info(f"Recurring rule ID: {rule.id} is no longer due, skipping")
                        return None
                    draft = self._build_draft(rule)
                    transaction = self.ledger.post(draft)
                    deactivated = self._advance(rule, transaction=transaction)
            except InvalidTransactionType as e:
                logger.error(f"Unsupported transaction type for recurring rule {selected.id}: {e.message}")
                return self._advance_after_failure(selected.id, OutcomeStatus.SKIPPED, e)
            except LedgerError as e:
                logger.error(f"Failed to process recurring rule ID: {selected.id} - {e.message}")
                return self._advance_after_failure(selected.id, OutcomeStatus.FAILED, e)
            except Exception as e:
                logger.error(f"Failed to process recurring rule ID: {selected.id} - {e}", exc_info=True)
                return self._advance_after_failure(selected.id, OutcomeStatus.FAILED, e)

        return RuleOutcome(
            rule_id=rule.id,
            status=OutcomeStatus.POSTED,
            transaction_id=transaction.id,
            next_run_date=rule.next_run_date,
            deactivated=deactivated
        )

    def _build_draft(self, rule: RecurringRule) -> TransactionDraft:
        draft = TransactionDraft(
            amount=rule.amount,
            currency=rule.currency,
            transaction_type=rule.transaction_type,
            category_id=rule.category_id,
            description=f"{rule.description}{self.description_suffix}",
            transaction_date=self._clock(),
            recurring_rule_id=rule.id
        )
        if rule.transaction_type == TransactionType.INCOME:
            draft.to_account_id = rule.account_id
        elif rule.transaction_type == TransactionType.EXPENSE:
            draft.from_account_id = rule.account_id
        else:
            raise InvalidTransactionType(
                f"Unsupported transaction type for recurring rule: {rule.transaction_type.name}",
                {"rule_id": rule.id}
            )
        return draft

    def _advance(self, rule: RecurringRule, transaction: Optional[Transaction] = None,
                 error: Optional[BaseException] = None) -> bool:
        """
        Move the rule to its next run date and persist it.

        Must run inside a unit of work. Returns True if the rule expired.
        """
        previous_run = rule.next_run_date
        rule.next_run_date = rule.frequency.advance(previous_run)
        deactivated = False
        if rule.end_date is not None and rule.next_run_date > rule.end_date:
            rule.is_active = False
            deactivated = True
            logger.info(f"Recurring rule ID: {rule.id} deactivated (past end date)")
        rule.updated_at = datetime.now(timezone.utc)
        self._save_rule(rule)

        metadata = {
            "run_date": previous_run,
            "next_run_date": rule.next_run_date,
            "deactivated": deactivated
        }
        if transaction is not None:
            metadata["transaction_id"] = transaction.id
        if error is not None:
            metadata["error"] = getattr(error, 'code', type(error).__name__)
            metadata["message"] = str(error)

        self.audit_trail.log_event(
            event_type=AuditEventType.RECURRING_RULE_EXECUTED if error is None
            else AuditEventType.RECURRING_RULE_FAILED,
            entity_type="recurring_rule",
            entity_id=rule.id,
            user_id=rule.owner_id,
            metadata=metadata
        )
        return deactivated

    def _advance_after_failure(self, rule_id: str, status: OutcomeStatus,
                               error: BaseException) -> RuleOutcome:
        outcome = RuleOutcome(
            rule_id=rule_id,
            status=status,
            error_code=getattr(error, 'code', 'unexpected_error'),
            error_message=getattr(error, 'message', None) or str(error)
        )
        try:
            with self.storage.atomic():
                # Still under the rule lock; the failed unit may have mutated its copy
                rule = self.get_rule(rule_id)
                outcome.deactivated = self._advance(rule, error=error)
                outcome.next_run_date = rule.next_run_date
        except Exception:
            logger.error(f"Failed to persist state of recurring rule ID: {rule_id}", exc_info=True)
        return outcome

    def _coerce_frequency(self, value: Union[RecurringFrequency, str]) -> RecurringFrequency:
        if isinstance(value, RecurringFrequency):
            return value
        try:
            return RecurringFrequency(str(value).lower())
        except ValueError:
            raise ValidationError(f"Invalid frequency: {value}", {"frequency": value})

    def _save_rule(self, rule: RecurringRule) -> None:
        self.storage.save(self.table_name, rule.id, rule.to_dict())
