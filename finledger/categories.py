"""
Category Store Module

Per-owner spending/income categories referenced by transactions and recurring
rules. Names are unique per owner; categories are deactivated, never deleted.
"""

import uuid
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional

from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .errors import CategoryNotFound, DuplicateCategoryName, ValidationError
from .logging_config import get_logger


logger = get_logger("finledger.categories")


@dataclass
class Category(StorageRecord):
    owner_id: str
    name: str
    description: Optional[str] = None
    color_code: Optional[str] = None
    is_active: bool = True

    @classmethod
    def from_dict(cls, data: Dict) -> 'Category':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            owner_id=data['owner_id'],
            name=data['name'],
            description=data.get('description'),
            color_code=data.get('color_code'),
            is_active=data['is_active']
        )


class CategoryManager:
    """Manages owner-scoped categories"""

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail):
        self.storage = storage
        self.audit_trail = audit_trail
        self.table_name = "categories"

    def create_category(
        self,
        owner_id: str,
        name: str,
        description: Optional[str] = None,
        color_code: Optional[str] = None
    ) -> Category:
        """Create a category; the name must be unique for the owner"""
        name = (name or "").strip()
        if not name:
            raise ValidationError("Category name is required")

        with self.storage.atomic():
            self._ensure_name_available(owner_id, name)

            now = datetime.now(timezone.utc)
            category = Category(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                owner_id=owner_id,
                name=name,
                description=description,
                color_code=color_code
            )
            self._save_category(category)

            self.audit_trail.log_event(
                event_type=AuditEventType.CATEGORY_CREATED,
                entity_type="category",
                entity_id=category.id,
                user_id=owner_id,
                metadata={"name": name}
            )

        logger.info(f"Category '{name}' created with ID: {category.id}")
        return category

    def get_category(self, category_id: str) -> Category:
        data = self.storage.load(self.table_name, category_id)
        if not data:
            raise CategoryNotFound(category_id)
        return Category.from_dict(data)

    def list_by_owner(self, owner_id: str) -> List[Category]:
        return [Category.from_dict(d) for d in self.storage.find(self.table_name, {"owner_id": owner_id})]

    def list_active_by_owner(self, owner_id: str) -> List[Category]:
        return [
            Category.from_dict(d)
            for d in self.storage.find(self.table_name, {"owner_id": owner_id, "is_active": True})
        ]

    def update_category(
        self,
        category_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        color_code: Optional[str] = None
    ) -> Category:
        """Rename or re-describe a category. Fields left as None are unchanged."""
        with self.storage.atomic():
            category = self.get_category(category_id)
            changes = {}

            if name is not None and name.strip() != category.name:
                new_name = name.strip()
                if not new_name:
                    raise ValidationError("Category name is required")
                self._ensure_name_available(category.owner_id, new_name)
                changes["name"] = new_name
                category.name = new_name
            if description is not None:
                changes["description"] = description
                category.description = description
            if color_code is not None:
                changes["color_code"] = color_code
                category.color_code = color_code

            category.updated_at = datetime.now(timezone.utc)
            self._save_category(category)

            self.audit_trail.log_event(
                event_type=AuditEventType.CATEGORY_UPDATED,
                entity_type="category",
                entity_id=category.id,
                user_id=category.owner_id,
                metadata=changes
            )

        return category

    def deactivate_category(self, category_id: str) -> Category:
        with self.storage.atomic():
            category = self.get_category(category_id)
            if category.is_active:
                category.is_active = False
                category.updated_at = datetime.now(timezone.utc)
                self._save_category(category)

                self.audit_trail.log_event(
                    event_type=AuditEventType.CATEGORY_DEACTIVATED,
                    entity_type="category",
                    entity_id=category.id,
                    user_id=category.owner_id,
                    metadata={"name": category.name}
                )

        logger.info(f"Category deactivated successfully: {category_id}")
        return category

    def verify_ownership(self, category_id: str, owner_id: str) -> bool:
        data = self.storage.load(self.table_name, category_id)
        return bool(data) and data['owner_id'] == owner_id

    def _ensure_name_available(self, owner_id: str, name: str) -> None:
        if self.storage.find(self.table_name, {"owner_id": owner_id, "name": name}):
            raise DuplicateCategoryName(
                f"Category '{name}' already exists for this owner",
                {"name": name}
            )

    def _save_category(self, category: Category) -> None:
        self.storage.save(self.table_name, category.id, category.to_dict())
