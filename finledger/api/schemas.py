"""
Pydantic schemas for API requests and responses
"""

from datetime import date, datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from ..currency import Money
from ..accounts import Account
from ..categories import Category
from ..transactions import Transaction
from ..recurring import RecurringRule


class MoneyModel(BaseModel):
    amount: str = Field(..., description="Decimal amount as string")
    currency: str = Field(..., description="Currency code (USD, EUR, etc.)")

    @classmethod
    def from_money(cls, money: Money) -> 'MoneyModel':
        return cls(amount=str(money.amount), currency=money.currency.code)


# Account schemas
class CreateAccountRequest(BaseModel):
    name: str
    account_type: str = Field(..., description="checking, savings, credit_card, cash, investment, wallet")
    currency: str = Field(..., description="Currency code")
    account_number: Optional[str] = None
    initial_balance: str = "0.00"  # Decimal as string
    bank_name: Optional[str] = None


# Transaction schemas
class PostTransactionRequest(BaseModel):
    amount: str = Field(..., description="Decimal amount as string")
    currency: str
    transaction_type: str = Field(..., description="income, expense or transfer")
    from_account_id: Optional[str] = None
    to_account_id: Optional[str] = None
    category_id: Optional[str] = None
    description: str = ""
    transaction_date: Optional[datetime] = None


# Category schemas
class CreateCategoryRequest(BaseModel):
    name: str
    description: Optional[str] = None
    color_code: Optional[str] = None


class UpdateCategoryRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    color_code: Optional[str] = None


# Recurring rule schemas
class CreateRecurringRuleRequest(BaseModel):
    account_id: str
    amount: str = Field(..., description="Decimal amount as string")
    currency: str
    transaction_type: str = Field(..., description="income or expense")
    frequency: str = Field(..., description="daily, weekly, biweekly, monthly, quarterly, yearly")
    description: str
    start_date: date
    end_date: Optional[date] = None
    category_id: Optional[str] = None


class UpdateRecurringRuleRequest(BaseModel):
    """Only fields present in the body are changed; null clears end_date or category_id"""
    description: Optional[str] = None
    amount: Optional[str] = None
    frequency: Optional[str] = None
    end_date: Optional[date] = None
    category_id: Optional[str] = None


# Response projections
def account_response(account: Account) -> Dict[str, Any]:
    return {
        "id": account.id,
        "account_number": account.account_number,
        "name": account.name,
        "account_type": account.account_type.value,
        "currency": account.currency.code,
        "balance": MoneyModel.from_money(account.money).model_dump(),
        "is_active": account.is_active,
        "bank_name": account.bank_name,
        "created_at": account.created_at.isoformat()
    }


def transaction_response(transaction: Transaction) -> Dict[str, Any]:
    return {
        "id": transaction.id,
        "transaction_type": transaction.transaction_type.value,
        "amount": MoneyModel.from_money(transaction.money).model_dump(),
        "from_account_id": transaction.from_account_id,
        "to_account_id": transaction.to_account_id,
        "category_id": transaction.category_id,
        "description": transaction.description,
        "transaction_date": transaction.transaction_date.isoformat(),
        "recurring_rule_id": transaction.recurring_rule_id,
        "created_at": transaction.created_at.isoformat()
    }


def category_response(category: Category) -> Dict[str, Any]:
    return {
        "id": category.id,
        "name": category.name,
        "description": category.description,
        "color_code": category.color_code,
        "is_active": category.is_active,
        "created_at": category.created_at.isoformat()
    }


def rule_response(rule: RecurringRule) -> Dict[str, Any]:
    return {
        "id": rule.id,
        "account_id": rule.account_id,
        "amount": MoneyModel(amount=str(rule.amount), currency=rule.currency.code).model_dump(),
        "transaction_type": rule.transaction_type.value,
        "frequency": rule.frequency.value,
        "description": rule.description,
        "start_date": rule.start_date.isoformat(),
        "end_date": rule.end_date.isoformat() if rule.end_date else None,
        "next_run_date": rule.next_run_date.isoformat(),
        "is_active": rule.is_active,
        "category_id": rule.category_id,
        "created_at": rule.created_at.isoformat()
    }
