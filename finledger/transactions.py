"""
Ledger Engine Module

Validates and posts INCOME, EXPENSE and TRANSFER transactions against one or
two accounts. A posting appends exactly one transaction record and updates one
or two balances as a single unit of work; transactions are immutable once
posted.
"""

import uuid
from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Union
from enum import Enum

from .currency import Currency, Money, MINIMUM_AMOUNT, to_amount
from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .accounts import Account, AccountManager
from .categories import CategoryManager
from .errors import (
    AccountInactive, AccountNotFound, CurrencyMismatch, InsufficientFunds, InvalidAmount,
    InvalidDateRange, InvalidTransactionType, LedgerError, MissingRequiredAccount,
    SameAccountTransfer, TransactionNotFound, ValidationError
)
from .logging_config import get_logger, log_action


class TransactionType(Enum):
    """Kinds of money movement"""
    INCOME = "income"        # Money enters a destination account
    EXPENSE = "expense"      # Money leaves a source account
    TRANSFER = "transfer"    # Money moves between two accounts of one owner


@dataclass
class TransactionDraft:
    """Caller's request to post a transaction"""
    amount: Union[Decimal, str, int]
    currency: Union[Currency, str]
    transaction_type: Union[TransactionType, str]
    from_account_id: Optional[str] = None
    to_account_id: Optional[str] = None
    category_id: Optional[str] = None
    description: str = ""
    transaction_date: Optional[datetime] = None
    recurring_rule_id: Optional[str] = None


@dataclass
class Transaction(StorageRecord):
    """
    Posted ledger transaction (append-only)
    """
    amount: Decimal
    currency: Currency
    transaction_type: TransactionType
    from_account_id: Optional[str]
    to_account_id: Optional[str]
    category_id: Optional[str]
    description: str
    transaction_date: datetime
    recurring_rule_id: Optional[str] = None

    @property
    def money(self) -> Money:
        return Money(self.amount, self.currency)

    def touches(self, account_id: str) -> bool:
        return account_id in (self.from_account_id, self.to_account_id)

    def to_dict(self) -> Dict:
        result = super().to_dict()
        result['currency'] = self.currency.code
        return result

    @classmethod
    def from_dict(cls, data: Dict) -> 'Transaction':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            amount=Decimal(data['amount']),
            currency=Currency[data['currency']],
            transaction_type=TransactionType(data['transaction_type']),
            from_account_id=data.get('from_account_id'),
            to_account_id=data.get('to_account_id'),
            category_id=data.get('category_id'),
            description=data.get('description') or "",
            transaction_date=datetime.fromisoformat(data['transaction_date']),
            recurring_rule_id=data.get('recurring_rule_id')
        )


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def coerce_transaction_type(value: Union[TransactionType, str, None]) -> TransactionType:
    if isinstance(value, TransactionType):
        return value
    if value is None:
        raise InvalidTransactionType("Transaction type is required")
    try:
        return TransactionType(str(value).lower())
    except ValueError:
        raise InvalidTransactionType(f"Invalid transaction type: {value}", {"transaction_type": value})


def coerce_currency(value: Union[Currency, str]) -> Currency:
    if isinstance(value, Currency):
        return value
    try:
        return Currency.from_code(value)
    except ValueError as e:
        raise ValidationError(str(e), {"currency": value})


def coerce_amount(value: Union[Decimal, str, int]) -> Decimal:
    """Quantize to two digits and enforce the 0.01 minimum"""
    try:
        amount = to_amount(value)
    except ValueError as e:
        raise InvalidAmount(str(e), {"amount": value})
    if amount < MINIMUM_AMOUNT:
        raise InvalidAmount(f"Amount must be at least {MINIMUM_AMOUNT}", {"amount": value})
    return amount


class LedgerEngine:
    """
    Posts transactions with balance, currency and activity checks
    """

    def __init__(
        self,
        storage: StorageInterface,
        account_manager: AccountManager,
        audit_trail: AuditTrail,
        category_manager: Optional[CategoryManager] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.storage = storage
        self.account_manager = account_manager
        self.category_manager = category_manager
        self.audit_trail = audit_trail
        self.table_name = "transactions"
        self.logger = get_logger("finledger.transactions")
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def post(self, draft: TransactionDraft) -> Transaction:
        """
        Validate a draft and post it atomically

        Args:
            draft: Transaction request

        Returns:
            The posted Transaction

        Raises:
            LedgerError: Any validation or state-conflict failure; nothing is
                written in that case
        """
        try:
            return self._post(draft)
        except LedgerError as e:
            log_action(
                self.logger, "warning", f"Transaction rejected: {e.message}",
                action="post_transaction",
                extra={
                    "error": e.code,
                    "transaction_type": str(draft.transaction_type),
                    "from_account": draft.from_account_id,
                    "to_account": draft.to_account_id
                }
            )
            raise

    def _post(self, draft: TransactionDraft) -> Transaction:
        transaction_type = coerce_transaction_type(draft.transaction_type)
        currency = coerce_currency(draft.currency)
        amount = coerce_amount(draft.amount)
        account_ids = self._check_account_references(transaction_type, draft)

        self.logger.info(f"Creating {transaction_type.name} transaction of amount: {amount} {currency.code}")

        if draft.category_id and self.category_manager:
            self.category_manager.get_category(draft.category_id)

        with self.account_manager.locks.hold(*account_ids), self.storage.atomic():
            if transaction_type == TransactionType.INCOME:
                self._apply_income(draft.to_account_id, amount, currency)
            elif transaction_type == TransactionType.EXPENSE:
                self._apply_expense(draft.from_account_id, amount, currency)
            else:
                self._apply_transfer(draft.from_account_id, draft.to_account_id, amount, currency)

            now = datetime.now(timezone.utc)
            transaction = Transaction(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                amount=amount,
                currency=currency,
                transaction_type=transaction_type,
                from_account_id=draft.from_account_id,
                to_account_id=draft.to_account_id,
                category_id=draft.category_id,
                description=draft.description or "",
                transaction_date=_as_utc(draft.transaction_date or self._clock()),
                recurring_rule_id=draft.recurring_rule_id
            )
            self.storage.save(self.table_name, transaction.id, transaction.to_dict())

            self.audit_trail.log_event(
                event_type=AuditEventType.TRANSACTION_POSTED,
                entity_type="transaction",
                entity_id=transaction.id,
                metadata={
                    "transaction_type": transaction_type.value,
                    "amount": transaction.money.to_string(),
                    "from_account": transaction.from_account_id,
                    "to_account": transaction.to_account_id,
                    "recurring_rule_id": transaction.recurring_rule_id
                }
            )

        log_action(
            self.logger, "info", f"Transaction posted: {transaction.id}",
            action="post_transaction", resource=f"transaction:{transaction.id}",
            extra={
                "transaction_type": transaction_type.value,
                "amount": transaction.money.to_string(),
                "from_account": transaction.from_account_id,
                "to_account": transaction.to_account_id
            }
        )
        return transaction

    def _apply_income(self, to_account_id: str, amount: Decimal, currency: Currency) -> None:
        to_account = self._resolve(to_account_id, "Destination")
        self._validate_active(to_account, "Destination")
        self._validate_currency(currency, to_account, "destination")

        old_balance = to_account.balance
        self.account_manager.store_balance(to_account, old_balance + amount)
        self.logger.debug(f"INCOME: Account {to_account.id} balance updated from {old_balance} to {to_account.balance}")

    def _apply_expense(self, from_account_id: str, amount: Decimal, currency: Currency) -> None:
        from_account = self._resolve(from_account_id, "Source")
        self._validate_active(from_account, "Source")
        self._validate_currency(currency, from_account, "source")
        if not from_account.is_credit_bearing:
            self._validate_funds(from_account, amount)

        old_balance = from_account.balance
        self.account_manager.store_balance(from_account, old_balance - amount)
        self.logger.debug(f"EXPENSE: Account {from_account.id} balance updated from {old_balance} to {from_account.balance}")

    def _apply_transfer(self, from_account_id: str, to_account_id: str,
                        amount: Decimal, currency: Currency) -> None:
        from_account = self._resolve(from_account_id, "Source")
        to_account = self._resolve(to_account_id, "Destination")

        self._validate_active(from_account, "Source")
        self._validate_active(to_account, "Destination")
        if from_account.currency != to_account.currency:
            raise CurrencyMismatch(
                f"Currency mismatch: From account uses {from_account.currency.code}, "
                f"To account uses {to_account.currency.code}. Conversion is not supported.",
                {"from_currency": from_account.currency.code, "to_currency": to_account.currency.code}
            )
        self._validate_currency(currency, from_account, "source")
        self._validate_currency(currency, to_account, "destination")
        self._validate_funds(from_account, amount)

        from_old, to_old = from_account.balance, to_account.balance
        self.account_manager.store_balance(from_account, from_old - amount)
        self.account_manager.store_balance(to_account, to_old + amount)
        self.logger.debug(
            f"TRANSFER: {amount} moved from account {from_account.id} ({from_old} -> {from_account.balance}) "
            f"to account {to_account.id} ({to_old} -> {to_account.balance})"
        )

    def _resolve(self, account_id: str, role: str) -> Account:
        try:
            return self.account_manager.get_account(account_id)
        except AccountNotFound:
            raise AccountNotFound(account_id, role) from None

    def _validate_active(self, account: Account, role: str) -> None:
        if not account.is_active:
            raise AccountInactive(account.id, role)

    def _validate_currency(self, currency: Currency, account: Account, role: str) -> None:
        if currency != account.currency:
            raise CurrencyMismatch(
                f"Currency mismatch: Transaction uses {currency.code}, "
                f"{role} account uses {account.currency.code}",
                {"transaction_currency": currency.code, "account_currency": account.currency.code}
            )

    def _validate_funds(self, account: Account, amount: Decimal) -> None:
        if account.balance < amount:
            raise InsufficientFunds(
                f"Insufficient balance. Available: {account.money.to_string()}, "
                f"Required: {Money(amount, account.currency).to_string()}",
                {"account_id": account.id, "available": account.balance, "required": amount}
            )

    def _check_account_references(self, transaction_type: TransactionType,
                                  draft: TransactionDraft) -> List[str]:
        """Check which account references the type needs and return the ids to lock"""
        if transaction_type == TransactionType.INCOME:
            if not draft.to_account_id:
                raise MissingRequiredAccount("INCOME transaction requires a destination account")
            if draft.from_account_id:
                raise ValidationError("INCOME transaction must not reference a source account")
            return [draft.to_account_id]

        if transaction_type == TransactionType.EXPENSE:
            if not draft.from_account_id:
                raise MissingRequiredAccount("EXPENSE transaction requires a source account")
            if draft.to_account_id:
                raise ValidationError("EXPENSE transaction must not reference a destination account")
            return [draft.from_account_id]

        if not draft.from_account_id or not draft.to_account_id:
            raise MissingRequiredAccount("TRANSFER requires both source and destination accounts")
        if draft.from_account_id == draft.to_account_id:
            raise SameAccountTransfer(draft.from_account_id)
        return [draft.from_account_id, draft.to_account_id]

    def get_transaction(self, transaction_id: str) -> Transaction:
        """Get transaction by ID"""
        data = self.storage.load(self.table_name, transaction_id)
        if not data:
            raise TransactionNotFound(transaction_id)
        return Transaction.from_dict(data)

    def list_for_account(self, account_id: str, limit: Optional[int] = None,
                         offset: int = 0) -> List[Transaction]:
        """Transactions where the account is source or destination, newest first"""
        rows = {}
        for field_name in ("from_account_id", "to_account_id"):
            for data in self.storage.find(self.table_name, {field_name: account_id}):
                rows[data['id']] = data
        transactions = self._newest_first(rows.values())
        if limit is not None:
            return transactions[offset:offset + limit]
        return transactions[offset:]

    def list_for_owner(self, owner_id: str, start: datetime, end: datetime) -> List[Transaction]:
        """Transactions touching any of the owner's accounts within [start, end]"""
        start, end = _as_utc(start), _as_utc(end)
        if start > end:
            raise InvalidDateRange("Start date must not be after end date",
                                   {"start": start, "end": end})
        return [t for t in self._owner_transactions(owner_id) if start <= t.transaction_date <= end]

    def recent_for_owner(self, owner_id: str, limit: int = 10) -> List[Transaction]:
        return self._owner_transactions(owner_id)[:limit]

    def sum_expenses_by_category(self, category_id: str, start: datetime, end: datetime) -> Decimal:
        """Total EXPENSE amount recorded against a category within [start, end]"""
        start, end = _as_utc(start), _as_utc(end)
        if start > end:
            raise InvalidDateRange("Start date must not be after end date",
                                   {"start": start, "end": end})
        total = Decimal('0.00')
        for data in self.storage.find(self.table_name, {
            "category_id": category_id,
            "transaction_type": TransactionType.EXPENSE.value
        }):
            transaction = Transaction.from_dict(data)
            if start <= transaction.transaction_date <= end:
                total += transaction.amount
        return total

    def _owner_transactions(self, owner_id: str) -> List[Transaction]:
        account_ids = {account.id for account in self.account_manager.list_by_owner(owner_id)}
        transactions = [
            Transaction.from_dict(data) for data in self.storage.load_all(self.table_name)
        ]
        return self._newest_first(
            t for t in transactions
            if t.from_account_id in account_ids or t.to_account_id in account_ids
        )

    def _newest_first(self, items) -> List[Transaction]:
        transactions = [
            item if isinstance(item, Transaction) else Transaction.from_dict(item)
            for item in items
        ]
        transactions.sort(key=lambda t: (t.transaction_date, t.created_at), reverse=True)
        return transactions
