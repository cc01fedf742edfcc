# money.py
"""Integer-pence arithmetic shared by the pricing steps."""
from decimal import ROUND_CEILING, ROUND_HALF_UP, Decimal
from typing import Mapping, Union

Number = Union[int, float, Decimal]


def dec(x: Number) -> Decimal:
    # str() first so 2.4 stays 2.4 rather than its binary expansion
    return x if isinstance(x, Decimal) else Decimal(str(x))


def to_pence(amount: Number) -> int:
    """Round half-up to whole pence."""
    return int(dec(amount).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def ceil_int(amount: Number) -> int:
    return int(dec(amount).to_integral_value(rounding=ROUND_CEILING))


def markup_pence(base_pence: int, markup_percent: Number) -> int:
    return to_pence(dec(base_pence) * dec(markup_percent) / 100)


def labour_cost_pence(hours_by_task: Mapping[str, Number], rate_by_task: Mapping[str, int]) -> int:
    """Sum of hours x hourly rate over all tasks, rounded once at the end."""
    total = sum((dec(hours) * rate_by_task[task] for task, hours in hours_by_task.items()), Decimal(0))
    return to_pence(total)


def format_gbp(pence: int) -> str:
    return f"£{pence / 100:,.2f}"
