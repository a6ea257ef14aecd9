from decimal import ROUND_HALF_UP, Decimal

AMOUNT_DECIMALS = 6
_QUANT = Decimal(1).scaleb(-AMOUNT_DECIMALS)


def to_decimal(value: float | int | str | Decimal) -> Decimal:
    """Coerce a value to Decimal with 6 decimal places."""
    if isinstance(value, Decimal):
        return value.quantize(_QUANT, rounding=ROUND_HALF_UP)
    return Decimal(str(value)).quantize(_QUANT, rounding=ROUND_HALF_UP)


def check_precision(value: float | int | str | Decimal) -> float | int | str | Decimal:
    """Reject amounts with more fractional digits than the ledgers store."""
    exponent = Decimal(str(value)).normalize().as_tuple().exponent
    if isinstance(exponent, int) and exponent < -AMOUNT_DECIMALS:
        raise ValueError(f"amount must have at most {AMOUNT_DECIMALS} decimal places")
    return value
