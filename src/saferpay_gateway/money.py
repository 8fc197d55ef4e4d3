"""Conversion of decimal amounts into the provider's minor-unit integers."""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union

Amount = Union[Decimal, str, int, float]

DEFAULT_FRACTION_DIGITS = 2

# ISO 4217 currencies whose minor unit is not 1/100.
CURRENCY_FRACTION_DIGITS = {
    "BIF": 0, "CLP": 0, "DJF": 0, "GNF": 0, "ISK": 0, "JPY": 0, "KMF": 0,
    "KRW": 0, "PYG": 0, "RWF": 0, "UGX": 0, "VND": 0, "VUV": 0, "XAF": 0,
    "XOF": 0, "XPF": 0,
    "BHD": 3, "IQD": 3, "JOD": 3, "KWD": 3, "LYD": 3, "OMR": 3, "TND": 3,
}


def fraction_digits(currency: str) -> int:
    return CURRENCY_FRACTION_DIGITS.get(currency.upper(), DEFAULT_FRACTION_DIGITS)


def to_decimal(amount: Amount) -> Decimal:
    """Convert an amount to ``Decimal`` without going through binary floats.

    Raises:
        ValueError: If the amount is not a finite number.
    """
    if isinstance(amount, Decimal):
        value = amount
    elif isinstance(amount, float):
        value = Decimal(str(amount))
    else:
        try:
            value = Decimal(str(amount).strip())
        except InvalidOperation as e:
            raise ValueError(f"Invalid amount: {amount!r}") from e
    if not value.is_finite():
        raise ValueError(f"Invalid amount: {amount!r}")
    return value


def to_minor_units(amount: Amount, currency: str = "CHF") -> int:
    """Return the amount as an integer number of minor units.

    >>> to_minor_units("19.99", "CHF")
    1999
    >>> to_minor_units(Decimal("100.00"), "EUR")
    10000
    """
    digits = fraction_digits(currency)
    scaled = to_decimal(amount).scaleb(digits)
    return int(scaled.quantize(Decimal(1), rounding=ROUND_HALF_UP))
