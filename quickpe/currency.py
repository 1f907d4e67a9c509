"""
Currency and Money Module

Handles ISO 4217 currency codes and Decimal precision for wallet amounts.
NEVER uses float for monetary values.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, getcontext
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .errors import ValidationError

# Set global decimal context for financial precision
getcontext().prec = 28


class Currency(Enum):
    """ISO 4217 Currency Codes with precision info"""
    INR = ("INR", 2, "₹")
    USD = ("USD", 2, "$")
    EUR = ("EUR", 2, "€")
    GBP = ("GBP", 2, "£")

    def __init__(self, code: str, precision: int, symbol: str):
        self.code = code
        self.precision = precision
        self.symbol = symbol

    @property
    def quantum(self) -> Decimal:
        return Decimal('0.1') ** self.precision


@dataclass(frozen=True)
class Money:
    """
    Immutable money representation with currency and proper precision.
    All monetary values MUST use this class or raw Decimal.
    """
    amount: Decimal
    currency: Currency

    def __post_init__(self):
        if not isinstance(self.amount, Decimal):
            object.__setattr__(self, 'amount', Decimal(str(self.amount)))

        # Round to currency precision
        rounded = self.amount.quantize(self.currency.quantum, rounding=ROUND_HALF_UP)
        object.__setattr__(self, 'amount', rounded)

    @classmethod
    def zero(cls, currency: Currency) -> 'Money':
        return cls(Decimal('0'), currency)

    def _check_currency(self, other: 'Money', verb: str) -> None:
        if self.currency != other.currency:
            raise ValueError(f"Cannot {verb} {self.currency.code} and {other.currency.code}")

    def __add__(self, other: 'Money') -> 'Money':
        self._check_currency(other, "add")
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: 'Money') -> 'Money':
        self._check_currency(other, "subtract")
        return Money(self.amount - other.amount, self.currency)

    def __neg__(self) -> 'Money':
        return Money(-self.amount, self.currency)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Money):
            return False
        return self.amount == other.amount and self.currency == other.currency

    def __hash__(self) -> int:
        return hash((self.amount, self.currency.code))

    def __lt__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount < other.amount

    def __le__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount <= other.amount

    def __gt__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount > other.amount

    def __ge__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount >= other.amount

    def is_zero(self) -> bool:
        return self.amount == Decimal('0')

    def is_positive(self) -> bool:
        return self.amount > Decimal('0')

    def is_negative(self) -> bool:
        return self.amount < Decimal('0')

    def to_string(self) -> str:
        """Format for display, e.g. '₹1,250.00'"""
        return f"{self.currency.symbol}{self.amount:,.{self.currency.precision}f}"


def currency_from_code(code: str) -> Currency:
    """Look up a Currency by its ISO code"""
    try:
        return Currency[code.upper()]
    except KeyError:
        raise ValidationError(f"Unsupported currency: {code}", code="UNSUPPORTED_CURRENCY")


def parse_amount(value: Any, currency: Currency, field_name: str = "amount") -> Money:
    """
    Validate user-supplied amount and convert it to Money.

    Accepts Decimal, int, str or float (floats go through their string form).
    The amount must be finite, strictly positive and carry no more decimal
    places than the currency allows; it is never silently rounded.

    Raises:
        ValidationError: with code INVALID_AMOUNT
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"Valid {field_name} is required", code="INVALID_AMOUNT")

    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Valid {field_name} is required", code="INVALID_AMOUNT")

    if not amount.is_finite() or amount <= 0:
        raise ValidationError(f"Valid {field_name} is required", code="INVALID_AMOUNT")

    try:
        quantized = amount.quantize(currency.quantum, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        # More digits than the decimal context can hold
        raise ValidationError(f"Valid {field_name} is required", code="INVALID_AMOUNT")

    if amount != quantized:
        raise ValidationError(
            f"{field_name.capitalize()} cannot have more than {currency.precision} decimal places",
            code="INVALID_AMOUNT"
        )

    return Money(amount, currency)

