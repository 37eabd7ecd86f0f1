"""
Values -- Immutable, self-validating money value objects.

Responsibility:
    Provides Currency and Money, the foundational types for every split,
    balance and settlement computation.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    No outward dependencies except settleup_kernel.domain.currency.

Invariants enforced:
    - Money holds an integer count of minor units (cents for USD). All
      arithmetic is integer arithmetic; binary floating point never touches
      an amount.
    - The decimal <-> minor-unit conversion happens at exactly one point,
      ``Money.of``: ``amount * 10**decimal_places`` rounded half-up to the
      nearest integer.
    - Arithmetic never mixes currencies.

Failure modes:
    - InvalidCurrencyError on unknown currency codes.
    - CurrencyMismatchError when arithmetic mixes currencies.
    - ValueError on amounts that are not numbers (or are floats at the
      call site -- convert with ``str()`` first).
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from settleup_kernel.domain.currency import CurrencyRegistry
from settleup_kernel.exceptions import CurrencyMismatchError


@dataclass(frozen=True, slots=True)
class Currency:
    """
    ISO 4217 currency code value object.

    Guarantees:
        - Immutable and hashable
        - code is always uppercase, stripped and known to CurrencyRegistry

    Non-goals:
        - Does NOT perform currency conversion
    """

    code: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "code", CurrencyRegistry.validate(self.code))

    @property
    def decimal_places(self) -> int:
        return CurrencyRegistry.get_decimal_places(self.code)

    @property
    def minor_units_per_major(self) -> int:
        return 10 ** self.decimal_places

    def __str__(self) -> str:
        return self.code

    def __repr__(self) -> str:
        return f"Currency({self.code!r})"


def to_minor_units(amount: Decimal | str | int, currency: Currency) -> int:
    """
    Convert a decimal amount to integer minor units, rounding half-up.

    This is the single decimal -> integer boundary of the system.
    """
    if isinstance(amount, float):
        raise ValueError(
            f"Float amount {amount!r} not accepted; pass a Decimal or str"
        )
    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
        scaled = value * currency.minor_units_per_major
        return int(scaled.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    except (InvalidOperation, ValueError) as e:
        raise ValueError(f"Invalid amount: {amount!r}") from e


@dataclass(frozen=True, slots=True)
class Money:
    """
    Monetary amount in integer minor units.

    Contract:
        Pairs an integer minor-unit count with its Currency -- they are
        never separated.

    Guarantees:
        - Immutable and hashable
        - ``minor`` is always an int
        - Arithmetic and ordering enforce the same-currency constraint

    Non-goals:
        - Does NOT perform currency conversion
        - Does NOT support multiplication; proportional splitting belongs
          to the split engine, which controls the rounding
    """

    minor: int
    currency: Currency

    def __post_init__(self) -> None:
        if isinstance(self.currency, str):
            object.__setattr__(self, "currency", Currency(self.currency))
        elif not isinstance(self.currency, Currency):
            raise TypeError(
                f"currency must be Currency or str, got {type(self.currency)}"
            )
        if isinstance(self.minor, bool) or not isinstance(self.minor, int):
            raise TypeError(f"minor must be int, got {type(self.minor)}")

    @classmethod
    def of(cls, amount: Decimal | str | int, currency: str | Currency) -> Money:
        """
        Create Money from a decimal amount in major units.

        Args:
            amount: Amount in major units (e.g. ``"33.34"``).
            currency: ISO 4217 currency code or Currency object.

        Raises:
            ValueError: If the amount is not a number or is a float.
            InvalidCurrencyError: If the currency is unknown.
        """
        if isinstance(currency, str):
            currency = Currency(currency)
        return cls(minor=to_minor_units(amount, currency), currency=currency)

    @classmethod
    def from_minor(cls, minor: int, currency: str | Currency) -> Money:
        """Create Money directly from minor units."""
        if isinstance(currency, str):
            currency = Currency(currency)
        return cls(minor=minor, currency=currency)

    @classmethod
    def zero(cls, currency: str | Currency) -> Money:
        return cls.from_minor(0, currency)

    @property
    def amount(self) -> Decimal:
        """Amount in major units, at the currency's precision."""
        places = self.currency.decimal_places
        major = Decimal(self.minor) / Decimal(10 ** places)
        return major.quantize(Decimal(1).scaleb(-places))

    @property
    def is_zero(self) -> bool:
        return self.minor == 0

    @property
    def is_positive(self) -> bool:
        return self.minor > 0

    @property
    def is_negative(self) -> bool:
        return self.minor < 0

    def _check_currency(self, other: Money) -> None:
        if self.currency != other.currency:
            raise CurrencyMismatchError(self.currency.code, other.currency.code)

    def __add__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other)
        return Money(minor=self.minor + other.minor, currency=self.currency)

    def __sub__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other)
        return Money(minor=self.minor - other.minor, currency=self.currency)

    def __neg__(self) -> Money:
        return Money(minor=-self.minor, currency=self.currency)

    def __abs__(self) -> Money:
        return Money(minor=abs(self.minor), currency=self.currency)

    def __lt__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other)
        return self.minor < other.minor

    def __le__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other)
        return self.minor <= other.minor

    def __gt__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other)
        return self.minor > other.minor

    def __ge__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other)
        return self.minor >= other.minor

    def __str__(self) -> str:
        return f"{self.amount} {self.currency.code}"

    def __repr__(self) -> str:
        return f"Money({str(self.amount)!r}, {self.currency.code!r})"


def sum_money(values, currency: Currency | str) -> Money:
    """Sum an iterable of Money, starting from zero in ``currency``."""
    total = Money.zero(currency)
    for value in values:
        total = total + value
    return total
