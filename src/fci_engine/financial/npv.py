from decimal import ROUND_HALF_UP, Decimal

CENT = Decimal("0.01")


def to_money(value: Decimal | float | int) -> Decimal:
    """Round to cents, half up."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def discount_factor(discount_rate: float, years: int) -> Decimal:
    """``1 / (1 + r) ** years`` as a Decimal; years before the base year are not discounted."""
    if years <= 0:
        return Decimal(1)
    return Decimal(1) / (Decimal(1) + Decimal(str(discount_rate))) ** years


def present_value(amount: Decimal, discount_rate: float, years: int) -> Decimal:
    """Discount ``amount`` incurred ``years`` after the base year."""
    return amount * discount_factor(discount_rate, years)


def compute_npv(cash_flows: list[Decimal], discount_rate: float) -> Decimal:
    """Net Present Value of yearly net cash flows.

    Args:
        cash_flows: Net flow per year (benefit minus cost), first entry in the
            base year and left undiscounted.
        discount_rate: Annual discount rate (e.g. 0.03 for 3%).

    Returns:
        NPV rounded to cents (negative = net cost).
    """
    npv = Decimal(0)
    for t, cf in enumerate(cash_flows):
        npv += present_value(Decimal(cf), discount_rate, t)
    return to_money(npv)


def compute_irr(cash_flows: list[float], tol: float = 1e-6) -> float | None:
    """Internal Rate of Return by bisection.

    Args:
        cash_flows: Net flows per year starting at the base year; the sign must
            change at least once.
        tol: Convergence tolerance on NPV.

    Returns:
        IRR as a float, or None if no root lies in [-0.5, 2.0].
    """

    def _npv(rate: float) -> float:
        return sum(cf / (1 + rate) ** t for t, cf in enumerate(cash_flows))

    low, high = -0.5, 2.0
    if _npv(low) * _npv(high) > 0:
        return None
    for _ in range(1000):
        mid = (low + high) / 2
        npv = _npv(mid)
        if abs(npv) < tol:
            return round(mid, 6)
        if (npv > 0) == (_npv(low) > 0):
            low = mid
        else:
            high = mid

    return round((low + high) / 2, 6)


def payback_period(cumulative_cash_flows: list[Decimal]) -> int | None:
    """Years until cumulative cash flow turns non-negative (1 = within the first year)."""
    for year_index, cumulative in enumerate(cumulative_cash_flows):
        if cumulative >= 0:
            return year_index + 1
    return None
