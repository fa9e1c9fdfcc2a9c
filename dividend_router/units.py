"""
Base-unit conversion helpers

Amounts in base units are plain ints; human-readable amounts are Decimals.
"""

from decimal import Decimal, ROUND_FLOOR, localcontext
from typing import Union

NATIVE_DECIMALS = 18

# Enough digits for uint256 values with 18 decimals
_PRECISION = 100


def to_decimal(value: Union[str, int, float, Decimal, None]) -> Decimal:
    """Convert an API value to Decimal; floats go through str() to keep their printed digits"""
    if value is None or value == "":
        return Decimal(0)
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def parse_units(amount: Union[str, Decimal, int], decimals: int = NATIVE_DECIMALS) -> int:
    """
    Convert a human-readable amount into base units, rounding down

    Args:
        amount: Amount such as "1.25"
        decimals: Asset decimals

    Returns:
        Amount in base units
    """
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        scaled = to_decimal(amount) * (Decimal(10) ** decimals)
        return int(scaled.to_integral_value(rounding=ROUND_FLOOR))


def format_units(amount: int, decimals: int = NATIVE_DECIMALS) -> str:
    """Render base units as a plain decimal string ("0.95", "12")"""
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        value = Decimal(amount) / (Decimal(10) ** decimals)
        text = format(value, 'f')
    if '.' in text:
        text = text.rstrip('0').rstrip('.')
    return text or "0"
