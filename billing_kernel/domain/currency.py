"""Currency -- ISO 4217 registry and precision-derived rounding."""

from dataclasses import dataclass
from typing import ClassVar


@dataclass(frozen=True)
class CurrencyInfo:
    """Information about a single ISO 4217 currency."""

    code: str
    decimal_places: int
    name: str


class CurrencyRegistry:
    """Registry of the ISO 4217 currencies customers are billed in."""

    DEFAULT_DECIMAL_PLACES: ClassVar[int] = 2

    _CURRENCIES: ClassVar[dict[str, CurrencyInfo]] = {
        info.code: info
        for info in (
            CurrencyInfo("SEK", 2, "Swedish Krona"),
            CurrencyInfo("NOK", 2, "Norwegian Krone"),
            CurrencyInfo("DKK", 2, "Danish Krone"),
            CurrencyInfo("ISK", 0, "Icelandic Krona"),
            CurrencyInfo("EUR", 2, "Euro"),
            CurrencyInfo("USD", 2, "US Dollar"),
            CurrencyInfo("GBP", 2, "Pound Sterling"),
            CurrencyInfo("CHF", 2, "Swiss Franc"),
            CurrencyInfo("PLN", 2, "Polish Zloty"),
            CurrencyInfo("JPY", 0, "Japanese Yen"),
        )
    }

    @classmethod
    def is_valid(cls, code: str) -> bool:
        return code in cls._CURRENCIES

    @classmethod
    def get_decimal_places(cls, code: str) -> int:
        info = cls._CURRENCIES.get(code)
        return info.decimal_places if info else cls.DEFAULT_DECIMAL_PLACES

    @classmethod
    def quantize_string(cls, code: str) -> str:
        """Exponent string for ``Decimal.quantize()`` at the currency's precision."""
        places = cls.get_decimal_places(code)
        return "0." + "0" * places if places else "1"
