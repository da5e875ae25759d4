"""
Account management endpoints
"""

from fastapi import APIRouter, Depends, status

from .deps import get_ledger_system, get_owner_id, owned_account
from .schemas import CreateAccountRequest, MoneyModel, account_response
from ..system import LedgerSystem
from ..accounts import AccountType
from ..transactions import coerce_currency
from ..errors import ValidationError


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
def create_account(
    request: CreateAccountRequest,
    owner_id: str = Depends(get_owner_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Create a new account"""
    try:
        account_type = AccountType(request.account_type.lower())
    except ValueError:
        raise ValidationError(f"Invalid account type: {request.account_type}",
                              {"account_type": request.account_type})

    account = system.account_manager.create_account(
        owner_id=owner_id,
        name=request.name,
        account_type=account_type,
        currency=coerce_currency(request.currency),
        account_number=request.account_number,
        initial_balance=request.initial_balance,
        bank_name=request.bank_name
    )
    return account_response(account)


@router.get("")
def list_accounts(
    active_only: bool = False,
    owner_id: str = Depends(get_owner_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """List the caller's accounts"""
    if active_only:
        accounts = system.account_manager.list_active_by_owner(owner_id)
    else:
        accounts = system.account_manager.list_by_owner(owner_id)
    return {"accounts": [account_response(account) for account in accounts]}


@router.get("/summary")
def balance_summary(
    owner_id: str = Depends(get_owner_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Total balance of active accounts per currency"""
    totals = system.account_manager.sum_balances_by_currency(owner_id)
    return {
        "balances": [MoneyModel.from_money(money).model_dump() for money in totals.values()]
    }


@router.get("/{account_id}")
def get_account(
    account_id: str,
    owner_id: str = Depends(get_owner_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Get account details"""
    return account_response(owned_account(system, account_id, owner_id))


@router.post("/{account_id}/deactivate")
def deactivate_account(
    account_id: str,
    owner_id: str = Depends(get_owner_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Deactivate an account with an exactly-zero balance"""
    owned_account(system, account_id, owner_id)
    return account_response(system.account_manager.deactivate(account_id))
