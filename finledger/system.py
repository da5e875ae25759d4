"""
Ledger system wiring

Builds every component over one storage backend from configuration.
"""

from datetime import datetime
from typing import Callable, Optional

from .config import FinLedgerConfig, get_config
from .storage import StorageInterface, create_storage
from .audit import AuditTrail
from .locks import RowLockRegistry
from .accounts import AccountManager, AccountNumberGenerator
from .categories import CategoryManager
from .transactions import LedgerEngine
from .recurring import RecurringScheduler


class LedgerSystem:
    """Personal-finance ledger with all components initialized"""

    def __init__(
        self,
        settings: Optional[FinLedgerConfig] = None,
        storage: Optional[StorageInterface] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.settings = settings or get_config()
        self.storage = storage or create_storage(self.settings.database_url)

        self.audit_trail = AuditTrail(self.storage, enabled=self.settings.enable_audit_logging)
        self.locks = RowLockRegistry()
        self.account_manager = AccountManager(
            self.storage, self.audit_trail, locks=self.locks,
            number_generator=AccountNumberGenerator(
                digits=self.settings.account_number_digits,
                max_attempts=self.settings.account_number_max_attempts
            )
        )
        self.category_manager = CategoryManager(self.storage, self.audit_trail)
        self.ledger = LedgerEngine(
            self.storage, self.account_manager, self.audit_trail,
            category_manager=self.category_manager, clock=clock
        )
        self.scheduler = RecurringScheduler(
            self.storage, self.ledger, self.account_manager, self.audit_trail,
            category_manager=self.category_manager, clock=clock,
            description_suffix=self.settings.recurring_description_suffix,
            adjust_past_start_dates=self.settings.adjust_past_start_dates
        )

    def close(self) -> None:
        self.storage.close()
