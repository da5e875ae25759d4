"""
Error Taxonomy Module

Typed errors raised by the ledger core. Each error carries a stable code and a
category; the HTTP boundary maps categories to status codes, the core never
does. No error is retried automatically.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCategory(str, Enum):
    """High-level error categories for routing and handling"""
    VALIDATION = "validation"
    CONFLICT = "conflict"
    RESOURCE_EXHAUSTED = "resource_exhausted"
    INTERNAL = "internal"


class LedgerError(Exception):
    """Base exception for all ledger errors"""

    code = "ledger_error"
    category = ErrorCategory.INTERNAL
    http_status = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.code,
            "category": self.category.value,
            "message": self.message,
            "details": {k: str(v) for k, v in self.details.items()},
        }


class ValidationError(LedgerError):
    """Malformed or missing input; the caller must fix the request"""
    code = "validation_error"
    category = ErrorCategory.VALIDATION
    http_status = 400


class NotFoundError(ValidationError):
    code = "not_found"
    http_status = 404


class StateConflictError(LedgerError):
    """Request is well-formed but conflicts with current ledger state"""
    code = "state_conflict"
    category = ErrorCategory.CONFLICT
    http_status = 409


class ResourceExhaustedError(LedgerError):
    """Request failed for lack of a resource; the whole request may be retried later"""
    code = "resource_exhausted"
    category = ErrorCategory.RESOURCE_EXHAUSTED
    http_status = 503


# Validation errors

class AccountNotFound(NotFoundError):
    code = "account_not_found"

    def __init__(self, account_id: str, role: str = "Account"):
        super().__init__(f"{role} account not found: {account_id}", {"account_id": account_id})
        self.account_id = account_id


class CategoryNotFound(NotFoundError):
    code = "category_not_found"

    def __init__(self, category_id: str):
        super().__init__(f"Category not found: {category_id}", {"category_id": category_id})


class TransactionNotFound(NotFoundError):
    code = "transaction_not_found"

    def __init__(self, transaction_id: str):
        super().__init__(f"Transaction not found: {transaction_id}", {"transaction_id": transaction_id})


class RecurringRuleNotFound(NotFoundError):
    code = "recurring_rule_not_found"

    def __init__(self, rule_id: str):
        super().__init__(f"Recurring rule not found: {rule_id}", {"rule_id": rule_id})


class InvalidTransactionType(ValidationError):
    code = "invalid_transaction_type"


class MissingRequiredAccount(ValidationError):
    code = "missing_required_account"


class SameAccountTransfer(ValidationError):
    code = "same_account_transfer"

    def __init__(self, account_id: str):
        super().__init__("Cannot transfer to the same account", {"account_id": account_id})


class InvalidAmount(ValidationError):
    code = "invalid_amount"


class InvalidDateRange(ValidationError):
    code = "invalid_date_range"


class OwnershipMismatch(ValidationError):
    code = "ownership_mismatch"


# State conflicts

class AccountInactive(StateConflictError):
    code = "account_inactive"

    def __init__(self, account_id: str, role: str = "Account"):
        super().__init__(f"{role} account is not active: {account_id}", {"account_id": account_id})
        self.account_id = account_id


class CurrencyMismatch(StateConflictError):
    code = "currency_mismatch"


class InsufficientFunds(StateConflictError):
    code = "insufficient_funds"


class NegativeBalanceNotAllowed(StateConflictError):
    code = "negative_balance_not_allowed"


class NonZeroBalance(StateConflictError):
    code = "non_zero_balance"


class DuplicateAccountNumber(StateConflictError):
    code = "duplicate_account_number"

    def __init__(self, account_number: str):
        super().__init__(
            f"Account number already exists: {account_number}",
            {"account_number": account_number}
        )


class DuplicateCategoryName(StateConflictError):
    code = "duplicate_category_name"


# Resource exhaustion

class AccountNumberGenerationFailed(ResourceExhaustedError):
    code = "account_number_generation_failed"

    def __init__(self, attempts: int):
        super().__init__(
            f"Unable to generate unique account number after {attempts} attempts. Please try again.",
            {"attempts": attempts}
        )
