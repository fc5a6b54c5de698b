"""Exchange precision helpers: lot size flooring and decimal rounding."""

from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal


def count_decimals(value: float | str) -> int:
    """Number of significant decimal places in a step such as 0.00100000."""
    d = Decimal(str(value)).normalize()
    exponent = d.as_tuple().exponent
    return max(-exponent, 0) if isinstance(exponent, int) else 0


def adjust_quantity_to_lot_size(quantity: float, step_size: float | str) -> Decimal:
    """Floor `quantity` to a whole multiple of `step_size`. Never rounds up."""
    step = Decimal(str(step_size))
    q = Decimal(str(quantity))
    if step <= 0:
        return q
    floored = (q / step).to_integral_value(rounding=ROUND_DOWN) * step
    return floored.quantize(Decimal(1).scaleb(-count_decimals(step_size)), rounding=ROUND_DOWN)


def round_to_precision(value: float, decimals: int) -> float:
    return float(Decimal(str(value)).quantize(Decimal(1).scaleb(-decimals), rounding=ROUND_HALF_UP))
