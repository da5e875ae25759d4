"""
Request dependencies: the ledger system and the calling owner
"""

from typing import Optional

from fastapi import Header, HTTPException, Request, status

from ..system import LedgerSystem
from ..accounts import Account
from ..categories import Category
from ..recurring import RecurringRule
from ..errors import AccountNotFound, CategoryNotFound, RecurringRuleNotFound


def get_ledger_system(request: Request) -> LedgerSystem:
    return request.app.state.system


def get_owner_id(x_user_id: Optional[str] = Header(None)) -> str:
    """Owner id supplied by the identity layer in front of the API"""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing user identity.")
    return x_user_id.strip()


# Records owned by someone else are reported as not found

def owned_account(system: LedgerSystem, account_id: str, owner_id: str) -> Account:
    account = system.account_manager.get_account(account_id)
    if account.owner_id != owner_id:
        raise AccountNotFound(account_id)
    return account


def owned_category(system: LedgerSystem, category_id: str, owner_id: str) -> Category:
    category = system.category_manager.get_category(category_id)
    if category.owner_id != owner_id:
        raise CategoryNotFound(category_id)
    return category


def owned_rule(system: LedgerSystem, rule_id: str, owner_id: str) -> RecurringRule:
    rule = system.scheduler.get_rule(rule_id)
    if rule.owner_id != owner_id:
        raise RecurringRuleNotFound(rule_id)
    return rule
