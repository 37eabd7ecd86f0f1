"""
Currency -- ISO 4217 codes a group can keep its books in.

Splits and balances are computed in integer minor units, so the one fact the
core needs about a currency is how many decimal places its minor unit has:
two for USD, zero for JPY, three for KWD. Everything else about a currency
(symbols, display names beyond the registry's label) belongs to the app.
"""

from dataclasses import dataclass
from typing import Any, ClassVar

from settleup_kernel.exceptions import InvalidCurrencyError


@dataclass(frozen=True)
class CurrencyInfo:
    code: str
    decimal_places: int
    name: str

    @property
    def minor_units_per_major(self) -> int:
        """100 for USD, 1 for JPY, 1000 for KWD."""
        return 10**self.decimal_places


_ISO_4217: tuple[tuple[str, int, str], ...] = (
    ("USD", 2, "US Dollar"),
    ("EUR", 2, "Euro"),
    ("GBP", 2, "Pound Sterling"),
    ("CHF", 2, "Swiss Franc"),
    ("CAD", 2, "Canadian Dollar"),
    ("AUD", 2, "Australian Dollar"),
    ("NZD", 2, "New Zealand Dollar"),
    ("INR", 2, "Indian Rupee"),
    ("CNY", 2, "Chinese Yuan"),
    ("HKD", 2, "Hong Kong Dollar"),
    ("SGD", 2, "Singapore Dollar"),
    ("SEK", 2, "Swedish Krona"),
    ("NOK", 2, "Norwegian Krone"),
    ("DKK", 2, "Danish Krone"),
    ("PLN", 2, "Polish Zloty"),
    ("CZK", 2, "Czech Koruna"),
    ("HUF", 2, "Hungarian Forint"),
    ("MXN", 2, "Mexican Peso"),
    ("BRL", 2, "Brazilian Real"),
    ("ZAR", 2, "South African Rand"),
    ("AED", 2, "UAE Dirham"),
    ("SAR", 2, "Saudi Riyal"),
    ("ILS", 2, "Israeli New Shekel"),
    ("TRY", 2, "Turkish Lira"),
    ("THB", 2, "Thai Baht"),
    ("MYR", 2, "Malaysian Ringgit"),
    ("IDR", 2, "Indonesian Rupiah"),
    ("PHP", 2, "Philippine Peso"),
    ("JPY", 0, "Japanese Yen"),
    ("KRW", 0, "South Korean Won"),
    ("ISK", 0, "Icelandic Krona"),
    ("CLP", 0, "Chilean Peso"),
    ("VND", 0, "Vietnamese Dong"),
    ("BHD", 3, "Bahraini Dinar"),
    ("JOD", 3, "Jordanian Dinar"),
    ("KWD", 3, "Kuwaiti Dinar"),
    ("OMR", 3, "Omani Rial"),
    ("TND", 3, "Tunisian Dinar"),
)


def _normalize(code: Any) -> str:
    return code.strip().upper() if isinstance(code, str) else ""


class CurrencyRegistry:
    """Lookup table over the supported ISO 4217 currencies."""

    _by_code: ClassVar[dict[str, CurrencyInfo]] = {
        row[0]: CurrencyInfo(*row) for row in _ISO_4217
    }

    @classmethod
    def get_info(cls, code: Any) -> CurrencyInfo | None:
        return cls._by_code.get(_normalize(code))

    @classmethod
    def is_valid(cls, code: Any) -> bool:
        return cls.get_info(code) is not None

    @classmethod
    def require(cls, code: Any) -> CurrencyInfo:
        """Like ``get_info`` but raises ``InvalidCurrencyError`` for unknown codes."""
        info = cls.get_info(code)
        if info is None:
            raise InvalidCurrencyError(code)
        return info

    @classmethod
    def validate(cls, code: Any) -> str:
        """Return the normalized code, or raise for an unknown one."""
        return cls.require(code).code

    @classmethod
    def get_decimal_places(cls, code: Any) -> int:
        return cls.require(code).decimal_places

    @classmethod
    def all_codes(cls) -> frozenset[str]:
        return frozenset(cls._by_code)
