"""
Recurring rule endpoints
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, status

from .deps import get_ledger_system, get_owner_id, owned_category, owned_rule
from .schemas import CreateRecurringRuleRequest, UpdateRecurringRuleRequest, rule_response
from ..system import LedgerSystem
from ..logging_config import get_logger, log_action


router = APIRouter()
logger = get_logger("finledger.api")


@router.post("", status_code=status.HTTP_201_CREATED)
def create_rule(
    request: CreateRecurringRuleRequest,
    owner_id: str = Depends(get_owner_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Create a recurring income or expense rule"""
    if request.category_id:
        owned_category(system, request.category_id, owner_id)

    rule = system.scheduler.create_rule(
        owner_id=owner_id,
        account_id=request.account_id,
        amount=request.amount,
        currency=request.currency,
        transaction_type=request.transaction_type,
        frequency=request.frequency,
        description=request.description,
        start_date=request.start_date,
        end_date=request.end_date,
        category_id=request.category_id
    )
    return rule_response(rule)


@router.get("")
def list_rules(
    active_only: bool = False,
    account_id: Optional[str] = None,
    owner_id: str = Depends(get_owner_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    if account_id:
        rules = [r for r in system.scheduler.list_by_account(account_id) if r.owner_id == owner_id]
        if active_only:
            rules = [r for r in rules if r.is_active]
    elif active_only:
        rules = system.scheduler.list_active_by_owner(owner_id)
    else:
        rules = system.scheduler.list_by_owner(owner_id)
    return {"rules": [rule_response(rule) for rule in rules]}


@router.post("/process")
def process_due_rules(
    as_of: Optional[date] = None,
    owner_id: str = Depends(get_owner_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """
    Run the daily batch for every owner.

    Internal trigger for the scheduling timer. It still requires an
    authenticated caller; the identity is recorded with the run.
    """
    log_action(logger, "info", "Recurring batch requested", user_id=owner_id,
               action="process_recurring_rules", extra={"as_of": as_of.isoformat() if as_of else None})
    report = system.scheduler.process_due(as_of)
    if report.failed:
        log_action(logger, "warning", f"{report.failed} recurring rules failed",
                   user_id=owner_id, action="process_recurring_rules", extra={"as_of": report.as_of.isoformat()})
    return report.to_dict()


@router.get("/{rule_id}")
def get_rule(
    rule_id: str,
    owner_id: str = Depends(get_owner_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    return rule_response(owned_rule(system, rule_id, owner_id))


@router.patch("/{rule_id}")
def update_rule(
    rule_id: str,
    request: UpdateRecurringRuleRequest,
    owner_id: str = Depends(get_owner_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Edit future runs of a rule"""
    owned_rule(system, rule_id, owner_id)
    changes = request.model_dump(exclude_unset=True)
    if changes.get("category_id"):
        owned_category(system, changes["category_id"], owner_id)
    rule = system.scheduler.update_rule(rule_id, **changes)
    return rule_response(rule)


@router.post("/{rule_id}/deactivate")
def deactivate_rule(
    rule_id: str,
    owner_id: str = Depends(get_owner_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    owned_rule(system, rule_id, owner_id)
    return rule_response(system.scheduler.deactivate_rule(rule_id))
