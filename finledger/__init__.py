"""
FinLedger - Personal-finance ledger

Records income, expenses and transfers between a user's accounts, enforces
balance and currency invariants, and materializes transactions from recurring
rules. All amounts use Decimal with two fractional digits.
"""

__version__ = "1.0.0"
