"""
Values -- Immutable, self-validating domain value objects.

Responsibility:
    Provides the value types billing computations are expressed in:
    Currency, Money, and the hour/minute conversions used for logged work.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Imported by every engine. No outward dependencies except
    billing_kernel.domain.currency (CurrencyRegistry).

Invariants enforced:
    - All monetary amounts and hours are Decimal (never float).
    - Currency codes are validated at construction time.
    - Money arithmetic never mixes currencies silently.

Failure modes:
    - ValueError on construction with invalid amounts or currencies.
    - InvalidHoursError when logged hours are negative or not numeric.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from billing_kernel.domain.currency import CurrencyRegistry
from billing_kernel.exceptions import InvalidHoursError

ZERO = Decimal("0")
MINUTES_PER_HOUR = Decimal("60")


@dataclass(frozen=True, slots=True)
class Currency:
    """
    ISO 4217 currency code value object.

    Guarantees:
        - code is always uppercase and stripped of whitespace
        - code is always present in CurrencyRegistry
    """

    code: str

    def __post_init__(self) -> None:
        normalized = self.code.upper().strip() if self.code else ""
        if not CurrencyRegistry.is_valid(normalized):
            raise ValueError(f"Invalid ISO 4217 currency code: {self.code}")
        object.__setattr__(self, "code", normalized)

    @property
    def decimal_places(self) -> int:
        return CurrencyRegistry.get_decimal_places(self.code)

    def __str__(self) -> str:
        return self.code

    def __repr__(self) -> str:
        return f"Currency({self.code!r})"


@dataclass(frozen=True, slots=True)
class Money:
    """
    Monetary amount value object.

    Contract:
        Pairs a Decimal amount with its Currency -- they are NEVER separated.

    Guarantees:
        - Immutable and hashable
        - amount is always a Decimal (never float)
        - Arithmetic operations enforce same-currency constraint

    Non-goals:
        - Does NOT auto-round -- callers must explicitly call .round()
    """

    amount: Decimal
    currency: Currency

    def __post_init__(self) -> None:
        if not isinstance(self.amount, Decimal):
            if isinstance(self.amount, float):
                raise ValueError(f"Money amount must not be float: {self.amount!r}")
            try:
                object.__setattr__(self, "amount", Decimal(str(self.amount)))
            except (InvalidOperation, ValueError) as e:
                raise ValueError(f"Invalid amount: {self.amount}") from e

        if isinstance(self.currency, str):
            object.__setattr__(self, "currency", Currency(self.currency))
        elif not isinstance(self.currency, Currency):
            raise TypeError(f"currency must be Currency or str, got {type(self.currency)}")

    @classmethod
    def of(cls, amount: Decimal | str | int, currency: str | Currency) -> Money:
        """Factory method for creating Money."""
        if isinstance(amount, (str, int)):
            amount = Decimal(str(amount))
        if isinstance(currency, str):
            currency = Currency(currency)
        return cls(amount=amount, currency=currency)

    @classmethod
    def zero(cls, currency: str | Currency) -> Money:
        """Create a zero amount in the given currency."""
        if isinstance(currency, str):
            currency = Currency(currency)
        return cls(amount=ZERO, currency=currency)

    @property
    def is_zero(self) -> bool:
        return self.amount == ZERO

    def round(self, rounding: str = ROUND_HALF_UP) -> Money:
        """Round to the currency's decimal places."""
        quantum = Decimal(CurrencyRegistry.quantize_string(self.currency.code))
        rounded = self.amount.quantize(quantum, rounding=rounding)
        return Money(amount=rounded, currency=self.currency)

    def __add__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        if self.currency != other.currency:
            raise ValueError(
                f"Cannot add Money with different currencies: "
                f"{self.currency} and {other.currency}"
            )
        return Money(amount=self.amount + other.amount, currency=self.currency)

    def __sub__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        if self.currency != other.currency:
            raise ValueError(
                f"Cannot subtract Money with different currencies: "
                f"{self.currency} and {other.currency}"
            )
        return Money(amount=self.amount - other.amount, currency=self.currency)

    def __mul__(self, factor: Decimal | int | str) -> Money:
        if isinstance(factor, (int, str)):
            factor = Decimal(str(factor))
        if not isinstance(factor, Decimal):
            return NotImplemented
        return Money(amount=self.amount * factor, currency=self.currency)

    def __rmul__(self, factor: Decimal | int | str) -> Money:
        return self.__mul__(factor)

    def __str__(self) -> str:
        return f"{self.amount} {self.currency.code}"

    def __repr__(self) -> str:
        return f"Money({self.amount!r}, {self.currency!r})"


# ---------------------------------------------------------------------------
# Hours and minutes
# ---------------------------------------------------------------------------


def to_decimal(value: Any, field: str) -> Decimal:
    """Coerce an int/str/Decimal to Decimal; floats go through str()."""
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool):
        raise InvalidHoursError(field, value)
    elif isinstance(value, (int, float, str)):
        try:
            result = Decimal(str(value))
        except InvalidOperation as e:
            raise InvalidHoursError(field, value) from e
    else:
        raise InvalidHoursError(field, value)
    if not result.is_finite():
        raise InvalidHoursError(field, value)
    return result


def to_hours(value: Any, field: str = "hours") -> Decimal:
    """Coerce logged hours to Decimal, rejecting negatives."""
    hours = to_decimal(value, field)
    if hours < ZERO:
        raise InvalidHoursError(field, value)
    return hours


def hours_from_minutes(minutes: int | Decimal) -> Decimal:
    return Decimal(minutes) / MINUTES_PER_HOUR


def format_minutes(minutes: int) -> str:
    """Render a duration as ``"2 h 30 min"``, ``"45 min"`` or ``"3 h"``."""
    if minutes < 0:
        raise ValueError(f"minutes must be non-negative, got {minutes}")
    hours, mins = divmod(int(minutes), 60)
    if hours == 0:
        return f"{mins} min"
    if mins == 0:
        return f"{hours} h"
    return f"{hours} h {mins} min"
