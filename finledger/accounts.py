"""
Account Store Module

Owns account balances and active/inactive status. Accounts belong to one owner,
are deactivated only at an exactly-zero balance and are never hard-deleted.
Balance writes on an account are serialized through its record lock.
"""

import random
import uuid
from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Union
from enum import Enum

from .currency import Currency, Money, to_amount
from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .locks import RowLockRegistry
from .errors import (
    AccountNotFound, AccountNumberGenerationFailed, DuplicateAccountNumber,
    NegativeBalanceNotAllowed, NonZeroBalance, ValidationError
)
from .logging_config import get_logger, log_action


logger = get_logger("finledger.accounts")


class AccountType(Enum):
    """Kinds of accounts a user can hold"""
    CHECKING = "checking"
    SAVINGS = "savings"
    CREDIT_CARD = "credit_card"
    CASH = "cash"
    INVESTMENT = "investment"
    WALLET = "wallet"

    @property
    def allows_negative_balance(self) -> bool:
        """Credit-bearing accounts may carry a negative balance"""
        return self is AccountType.CREDIT_CARD


@dataclass
class Account(StorageRecord):
    """
    A user's money container. The balance is the source of truth and is only
    changed by postings or an explicit balance update.
    """
    owner_id: str
    account_number: str
    name: str
    account_type: AccountType
    currency: Currency
    balance: Decimal
    is_active: bool = True
    bank_name: Optional[str] = None

    @property
    def money(self) -> Money:
        return Money(self.balance, self.currency)

    @property
    def is_credit_bearing(self) -> bool:
        return self.account_type.allows_negative_balance

    def to_dict(self) -> Dict:
        result = super().to_dict()
        result['currency'] = self.currency.code
        return result

    @classmethod
    def from_dict(cls, data: Dict) -> 'Account':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            owner_id=data['owner_id'],
            account_number=data['account_number'],
            name=data['name'],
            account_type=AccountType(data['account_type']),
            currency=Currency[data['currency']],
            balance=Decimal(data['balance']),
            is_active=data['is_active'],
            bank_name=data.get('bank_name')
        )


class AccountNumberGenerator:
    """
    Generates fixed-width numeric account numbers drawn uniformly at random.

    Collisions are retried a bounded number of times; the randomness source is
    injectable for deterministic tests.
    """

    def __init__(self, digits: int = 8, max_attempts: int = 10,
                 rng: Optional[random.Random] = None):
        self.digits = digits
        self.max_attempts = max_attempts
        self._rng = rng or random.SystemRandom()

    def generate(self, exists: Callable[[str], bool]) -> str:
        for attempt in range(1, self.max_attempts + 1):
            candidate = f"{self._rng.randrange(10 ** self.digits):0{self.digits}d}"
            if not exists(candidate):
                logger.debug(f"Generated unique account number {candidate} (attempts: {attempt})")
                return candidate

        logger.error(f"Failed to generate unique account number after {self.max_attempts} attempts")
        raise AccountNumberGenerationFailed(self.max_attempts)


class AccountManager:
    """
    Account Store: read access by id/owner and guarded balance writes
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        locks: Optional[RowLockRegistry] = None,
        number_generator: Optional[AccountNumberGenerator] = None
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.locks = locks or RowLockRegistry()
        self.number_generator = number_generator or AccountNumberGenerator()
        self.accounts_table = "accounts"

    def create_account(
        self,
        owner_id: str,
        name: str,
        account_type: AccountType,
        currency: Currency,
        account_number: Optional[str] = None,
        initial_balance: Union[Decimal, str, int] = Decimal('0'),
        bank_name: Optional[str] = None
    ) -> Account:
        """
        Create a new account

        Args:
            owner_id: Owner reference supplied by the identity layer
            name: Display name
            account_type: Kind of account
            currency: Account currency
            account_number: Specific account number (generated if not provided)
            initial_balance: Opening balance, zero by default
            bank_name: Optional institution name

        Returns:
            Created Account object
        """
        if not name or not name.strip():
            raise ValidationError("Account name is required")

        balance = to_amount(initial_balance)
        if balance < 0 and not account_type.allows_negative_balance:
            raise NegativeBalanceNotAllowed(
                f"Balance cannot be negative for {account_type.value}",
                {"balance": balance}
            )

        with self.storage.atomic():
            if account_number:
                if self.get_account_by_number(account_number):
                    raise DuplicateAccountNumber(account_number)
            else:
                account_number = self.number_generator.generate(
                    lambda candidate: self.get_account_by_number(candidate) is not None
                )

            now = datetime.now(timezone.utc)
            account = Account(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                owner_id=owner_id,
                account_number=account_number,
                name=name.strip(),
                account_type=account_type,
                currency=currency,
                balance=balance,
                bank_name=bank_name
            )
            self._save_account(account)

            self.audit_trail.log_event(
                event_type=AuditEventType.ACCOUNT_CREATED,
                entity_type="account",
                entity_id=account.id,
                user_id=owner_id,
                metadata={
                    "account_number": account_number,
                    "account_type": account_type.value,
                    "currency": currency.code,
                    "balance": balance
                }
            )

        log_action(
            logger, "info", f"Account created: {account.id}",
            user_id=owner_id, action="create_account", resource=f"account:{account.id}",
            extra={"account_number": account_number, "account_type": account_type.value,
                   "currency": currency.code}
        )
        return account

    def get_account(self, account_id: str) -> Account:
        """Get account by ID, raising AccountNotFound if absent"""
        account_dict = self.storage.load(self.accounts_table, account_id)
        if not account_dict:
            raise AccountNotFound(account_id)
        return Account.from_dict(account_dict)

    def get_account_by_number(self, account_number: str) -> Optional[Account]:
        """Get account by account number"""
        accounts = self.storage.find(self.accounts_table, {"account_number": account_number})
        if accounts:
            return Account.from_dict(accounts[0])
        return None

    def list_by_owner(self, owner_id: str) -> List[Account]:
        """Get all accounts for an owner"""
        accounts_data = self.storage.find(self.accounts_table, {"owner_id": owner_id})
        return [Account.from_dict(data) for data in accounts_data]

    def list_active_by_owner(self, owner_id: str) -> List[Account]:
        """Get active accounts for an owner"""
        accounts_data = self.storage.find(
            self.accounts_table, {"owner_id": owner_id, "is_active": True}
        )
        return [Account.from_dict(data) for data in accounts_data]

    def list_by_type(self, owner_id: str, account_type: AccountType) -> List[Account]:
        """Get an owner's accounts of one type"""
        accounts_data = self.storage.find(
            self.accounts_table, {"owner_id": owner_id, "account_type": account_type.value}
        )
        return [Account.from_dict(data) for data in accounts_data]

    def sum_balances_by_currency(self, owner_id: str) -> Dict[Currency, Money]:
        """Total balance of an owner's active accounts, grouped by currency"""
        totals: Dict[Currency, Money] = {}
        for account in self.list_active_by_owner(owner_id):
            totals[account.currency] = totals.get(account.currency, Money.zero(account.currency)) + account.money
        return totals

    def verify_ownership(self, account_id: str, owner_id: str) -> bool:
        """Check that an account exists and belongs to the owner"""
        account_dict = self.storage.load(self.accounts_table, account_id)
        return bool(account_dict) and account_dict['owner_id'] == owner_id

    def update_balance(self, account_id: str, new_balance: Union[Decimal, str, int]) -> Account:
        """
        Low-level balance overwrite. Normal money movement goes through the
        ledger engine.

        Raises:
            AccountNotFound: Unknown account
            NegativeBalanceNotAllowed: Negative result on a non-credit account
        """
        with self.locks.hold(account_id), self.storage.atomic():
            account = self.get_account(account_id)
            old_balance = account.balance
            self.store_balance(account, new_balance)

            self.audit_trail.log_event(
                event_type=AuditEventType.ACCOUNT_BALANCE_UPDATED,
                entity_type="account",
                entity_id=account.id,
                user_id=account.owner_id,
                metadata={"old_balance": old_balance, "new_balance": account.balance}
            )

        logger.info(f"Balance updated from {old_balance} to {account.balance} for account {account_id}")
        return account

    def store_balance(self, account: Account, new_balance: Union[Decimal, str, int]) -> Account:
        """
        Persist a new balance on an already-loaded account.

        Callers must hold the account's lock and an open unit of work.
        """
        balance = to_amount(new_balance)
        if balance < 0 and not account.is_credit_bearing:
            raise NegativeBalanceNotAllowed(
                f"Balance cannot be negative for {account.account_type.value}",
                {"account_id": account.id, "balance": balance}
            )
        account.balance = balance
        account.updated_at = datetime.now(timezone.utc)
        self._save_account(account)
        return account

    def deactivate(self, account_id: str) -> Account:
        """
        Soft-deactivate an account. Requires an exactly-zero balance.

        Raises:
            AccountNotFound: Unknown account
            NonZeroBalance: Balance is not exactly zero
        """
        with self.locks.hold(account_id), self.storage.atomic():
            account = self.get_account(account_id)
            if account.balance != Decimal('0'):
                raise NonZeroBalance(
                    f"Cannot deactivate account with non-zero balance. "
                    f"Current balance: {account.money.to_string()}",
                    {"account_id": account_id, "balance": account.balance}
                )
            if not account.is_active:
                return account

            account.is_active = False
            account.updated_at = datetime.now(timezone.utc)
            self._save_account(account)

            self.audit_trail.log_event(
                event_type=AuditEventType.ACCOUNT_DEACTIVATED,
                entity_type="account",
                entity_id=account.id,
                user_id=account.owner_id,
                metadata={"account_number": account.account_number}
            )

        logger.info(f"Account deactivated successfully: {account_id}")
        return account

    def _save_account(self, account: Account) -> None:
        """Save account to storage"""
        self.storage.save(self.accounts_table, account.id, account.to_dict())
