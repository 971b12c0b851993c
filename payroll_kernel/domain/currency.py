"""Currencies payroll runs in, and the one place money gets rounded."""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import ClassVar


@dataclass(frozen=True)
class CurrencyInfo:
    code: str
    decimal_places: int
    name: str

    @property
    def rounding_tolerance(self) -> Decimal:
        """One minor unit (0.01 for SRD, 1 for JPY)."""
        return Decimal(1).scaleb(-self.decimal_places)


def _table(*rows: tuple[str, int, str]) -> dict[str, CurrencyInfo]:
    return {code: CurrencyInfo(code, places, name) for code, places, name in rows}


class CurrencyRegistry:
    """ISO 4217 codes accepted on rule packs and paychecks."""

    _CURRENCIES: ClassVar[dict[str, CurrencyInfo]] = _table(
        ("SRD", 2, "Surinamese Dollar"),
        ("ANG", 2, "Netherlands Antillean Guilder"),
        ("AWG", 2, "Aruban Florin"),
        ("GYD", 2, "Guyanese Dollar"),
        ("TTD", 2, "Trinidad and Tobago Dollar"),
        ("BBD", 2, "Barbados Dollar"),
        ("JMD", 2, "Jamaican Dollar"),
        ("USD", 2, "US Dollar"),
        ("CAD", 2, "Canadian Dollar"),
        ("EUR", 2, "Euro"),
        ("GBP", 2, "Pound Sterling"),
        ("JPY", 0, "Japanese Yen"),
        ("KWD", 3, "Kuwaiti Dinar"),
    )

    DEFAULT_DECIMAL_PLACES: ClassVar[int] = 2

    @staticmethod
    def _normalize(code: object) -> str | None:
        if not isinstance(code, str) or not code.strip():
            return None
        return code.strip().upper()

    @classmethod
    def get_info(cls, code: str) -> CurrencyInfo | None:
        normalized = cls._normalize(code)
        return cls._CURRENCIES.get(normalized) if normalized else None

    @classmethod
    def is_valid(cls, code: str) -> bool:
        return cls.get_info(code) is not None

    @classmethod
    def get_decimal_places(cls, code: str) -> int:
        info = cls.get_info(code)
        return cls.DEFAULT_DECIMAL_PLACES if info is None else info.decimal_places

    @classmethod
    def validate(cls, code: str) -> str:
        """Return the upper-cased code or raise ValueError."""
        normalized = cls._normalize(code)
        if normalized is None:
            raise ValueError(f"Invalid currency code: {code!r}")
        if len(normalized) != 3:
            raise ValueError(f"Currency code must be 3 characters: {code!r}")
        if normalized not in cls._CURRENCIES:
            raise ValueError(f"Unsupported currency code: {code!r}")
        return normalized


def round_money(amount: Decimal, currency: str = "SRD") -> Decimal:
    """Round half-up to the currency's minor unit.

    Applied once per component, to its final total. Intermediate values
    (annualized income, per-bracket tax, prorated exemptions) stay exact.
    """
    places = CurrencyRegistry.get_decimal_places(currency)
    return Decimal(amount).quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)


DISPLAY_PLACES = 6


def display_decimal(value: Decimal, places: int = DISPLAY_PLACES) -> Decimal:
    """Trim an unrounded intermediate for reports and logs.

    Values with at most ``places`` fractional digits pass through
    unchanged.  Longer ones are rounded half-up to ``places`` and lose
    their trailing zeros, so ``3033.000000000000000000000000`` reads as
    ``3033``.  Never feed the result back into a calculation.
    """
    if not value.is_finite() or value.as_tuple().exponent >= -places:
        return value
    rounded = value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)
    return Decimal(format(rounded.normalize(), "f"))
