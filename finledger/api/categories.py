"""
Category endpoints
"""

from fastapi import APIRouter, Depends, status

from .deps import get_ledger_system, get_owner_id, owned_category
from .schemas import CreateCategoryRequest, UpdateCategoryRequest, category_response
from ..system import LedgerSystem


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
def create_category(
    request: CreateCategoryRequest,
    owner_id: str = Depends(get_owner_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    category = system.category_manager.create_category(
        owner_id=owner_id,
        name=request.name,
        description=request.description,
        color_code=request.color_code
    )
    return category_response(category)


@router.get("")
def list_categories(
    active_only: bool = False,
    owner_id: str = Depends(get_owner_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    if active_only:
        categories = system.category_manager.list_active_by_owner(owner_id)
    else:
        categories = system.category_manager.list_by_owner(owner_id)
    return {"categories": [category_response(c) for c in categories]}


@router.get("/{category_id}")
def get_category(
    category_id: str,
    owner_id: str = Depends(get_owner_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    return category_response(owned_category(system, category_id, owner_id))


@router.patch("/{category_id}")
def update_category(
    category_id: str,
    request: UpdateCategoryRequest,
    owner_id: str = Depends(get_owner_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    owned_category(system, category_id, owner_id)
    category = system.category_manager.update_category(
        category_id,
        name=request.name,
        description=request.description,
        color_code=request.color_code
    )
    return category_response(category)


@router.post("/{category_id}/deactivate")
def deactivate_category(
    category_id: str,
    owner_id: str = Depends(get_owner_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    owned_category(system, category_id, owner_id)
    return category_response(system.category_manager.deactivate_category(category_id))
