"""
Transaction endpoints
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from .deps import get_ledger_system, get_owner_id, owned_account, owned_category
from .schemas import PostTransactionRequest, transaction_response
from ..system import LedgerSystem
from ..transactions import TransactionDraft
from ..errors import AccountNotFound, TransactionNotFound


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
def post_transaction(
    request: PostTransactionRequest,
    owner_id: str = Depends(get_owner_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Post an income, expense or transfer"""
    accounts = system.account_manager
    for account_id in (request.from_account_id, request.to_account_id):
        if not account_id or accounts.verify_ownership(account_id, owner_id):
            continue
        # Unknown ids are left to the engine, which reports the missing role.
        # Accounts of other owners are reported as not found.
        if system.storage.exists(accounts.accounts_table, account_id):
            raise AccountNotFound(account_id)
    if request.category_id:
        owned_category(system, request.category_id, owner_id)

    transaction = system.ledger.post(TransactionDraft(
        amount=request.amount,
        currency=request.currency,
        transaction_type=request.transaction_type,
        from_account_id=request.from_account_id,
        to_account_id=request.to_account_id,
        category_id=request.category_id,
        description=request.description,
        transaction_date=request.transaction_date
    ))
    return transaction_response(transaction)


@router.get("")
def list_transactions(
    account_id: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    owner_id: str = Depends(get_owner_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """
    List transactions, newest first

    With ``account_id`` lists one account's history; with ``start`` and ``end``
    lists the caller's transactions in that range; otherwise the most recent.
    """
    if account_id:
        owned_account(system, account_id, owner_id)
        transactions = system.ledger.list_for_account(account_id, limit=limit, offset=offset)
    elif start and end:
        transactions = system.ledger.list_for_owner(owner_id, start, end)[offset:offset + limit]
    else:
        transactions = system.ledger.recent_for_owner(owner_id, limit=limit)
    return {"transactions": [transaction_response(t) for t in transactions]}


@router.get("/{transaction_id}")
def get_transaction(
    transaction_id: str,
    owner_id: str = Depends(get_owner_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Get transaction details"""
    transaction = system.ledger.get_transaction(transaction_id)
    touched = [a for a in (transaction.from_account_id, transaction.to_account_id) if a]
    if not any(system.account_manager.verify_ownership(a, owner_id) for a in touched):
        raise TransactionNotFound(transaction_id)
    return transaction_response(transaction)
