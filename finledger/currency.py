"""
Currency Module

ISO-style currency codes and a small immutable Money type. Every amount in the
ledger is a Decimal with exactly two fractional digits. NEVER uses float for
monetary values.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, getcontext
from dataclasses import dataclass
from enum import Enum
from typing import Union

# Set global decimal context for financial precision
getcontext().prec = 28

# Fixed-point scale shared by balances and transaction amounts
AMOUNT_QUANTUM = Decimal('0.01')
MINIMUM_AMOUNT = Decimal('0.01')


class Currency(Enum):
    """Supported currency codes with display information"""
    USD = ("USD", "$", "US Dollar")
    INR = ("INR", "₹", "Indian Rupee")
    EUR = ("EUR", "€", "Euro")
    GBP = ("GBP", "£", "British Pound")
    JPY = ("JPY", "¥", "Japanese Yen")
    CAD = ("CAD", "C$", "Canadian Dollar")
    AUD = ("AUD", "A$", "Australian Dollar")
    CHF = ("CHF", "Fr", "Swiss Franc")

    def __init__(self, code: str, symbol: str, display_name: str):
        self.code = code
        self.symbol = symbol
        self.display_name = display_name

    @classmethod
    def from_code(cls, code: str) -> 'Currency':
        """Look up a currency by its code (case-insensitive)"""
        try:
            return cls[code.strip().upper()]
        except (KeyError, AttributeError):
            raise ValueError(f"Unsupported currency: {code}")


def to_amount(value: Union[Decimal, str, int]) -> Decimal:
    """
    Convert a value to a two-digit fixed-point Decimal

    Args:
        value: Decimal, numeric string or int

    Returns:
        Decimal quantized to 0.01 with ROUND_HALF_UP

    Raises:
        ValueError: If the value is not a finite number
    """
    if isinstance(value, float):
        raise ValueError("Float amounts are not accepted; use Decimal or str")
    if not isinstance(value, Decimal):
        try:
            value = Decimal(str(value))
        except InvalidOperation:
            raise ValueError(f"Cannot convert '{value}' to Decimal")
    if not value.is_finite():
        raise ValueError(f"Amount must be finite, got {value}")
    return value.quantize(AMOUNT_QUANTUM, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class Money:
    """
    Immutable money representation with currency.
    Used for reporting and formatting; stored records keep amount and currency separately.
    """
    amount: Decimal
    currency: Currency

    def __post_init__(self):
        object.__setattr__(self, 'amount', to_amount(self.amount))

    def __add__(self, other: 'Money') -> 'Money':
        if self.currency != other.currency:
            raise ValueError(f"Cannot add {self.currency.code} and {other.currency.code}")
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: 'Money') -> 'Money':
        if self.currency != other.currency:
            raise ValueError(f"Cannot subtract {other.currency.code} from {self.currency.code}")
        return Money(self.amount - other.amount, self.currency)

    def __neg__(self) -> 'Money':
        return Money(-self.amount, self.currency)

    def __lt__(self, other: 'Money') -> bool:
        if self.currency != other.currency:
            raise ValueError(f"Cannot compare {self.currency.code} and {other.currency.code}")
        return self.amount < other.amount

    def __ge__(self, other: 'Money') -> bool:
        if self.currency != other.currency:
            raise ValueError(f"Cannot compare {self.currency.code} and {other.currency.code}")
        return self.amount >= other.amount

    @classmethod
    def zero(cls, currency: Currency) -> 'Money':
        return cls(Decimal('0'), currency)

    def is_zero(self) -> bool:
        """Check if amount is exactly zero"""
        return self.amount == Decimal('0')

    def is_negative(self) -> bool:
        return self.amount < Decimal('0')

    def to_string(self) -> str:
        """Format for display"""
        return f"{self.currency.code} {self.amount:,.2f}"
