"""
Money helpers. All amounts are integer cents.
"""
from typing import Sequence


def cents_to_display(cents: int) -> str:
    """Format integer cents as USD display string."""
    if cents < 0:
        return f"-${abs(cents)/100:,.2f}"
    return f"${cents/100:,.2f}"


def format_amount(cents: int) -> str:
    """
    Format cents as a plain grouped number without currency symbol.

    Whole amounts drop the decimals: 80000 -> '800', 1050000 -> '10,500',
    80050 -> '800.50'.
    """
    sign = "-" if cents < 0 else ""
    whole, frac = divmod(abs(cents), 100)
    if frac:
        return f"{sign}{whole:,}.{frac:02d}"
    return f"{sign}{whole:,}"


def parse_cents(value) -> int:
    """Convert a display amount (dollars, may be str/float) into integer cents."""
    if isinstance(value, str):
        value = value.replace("$", "").replace(",", "").strip() or "0"
    return int(round(float(value) * 100))


def line_amount_cents(quantity: float, unit_cost_cents: int) -> int:
    """quantity x unit cost, rounded to the cent."""
    return int(round((quantity or 0) * (unit_cost_cents or 0)))


def allocate_largest_remainder(total_cents: int, weights: Sequence[int]) -> list[int]:
    """
    Allocate total_cents to buckets in proportion to integer weights using
    the Largest Remainder Method (Hamilton's Method).
    Guarantees sum(result) == total_cents exactly - no penny drift.

    Integer arithmetic throughout, so the result does not depend on float
    rounding. Ties on the remainder go to the earlier bucket.

    Args:
        total_cents: Total amount to allocate (integer cents)
        weights: Non-negative integer weights (e.g. item totals in cents)

    Returns:
        List of integer cents, one per weight, summing exactly to total_cents

    Example:
        allocate_largest_remainder(500, [600, 400])
        -> [300, 200]
    """
    if not weights:
        return []

    if len(weights) == 1:
        return [total_cents]

    weight_sum = sum(weights)
    if weight_sum == 0:
        # Equal split when all weights are zero
        base = total_cents // len(weights)
        result = [base] * len(weights)
        result[0] += total_cents - sum(result)
        return result

    floored = [total_cents * w // weight_sum for w in weights]
    remainders = [total_cents * w % weight_sum for w in weights]

    leftover = total_cents - sum(floored)
    sorted_indices = sorted(range(len(remainders)), key=lambda i: remainders[i], reverse=True)
    for i in range(leftover):
        floored[sorted_indices[i]] += 1

    return floored


def split_cumulative(amount_cents: int, weights: Sequence[int],
                     prior: Sequence[int]) -> list[int]:
    """
    Split one installment of a bill across buckets so that the running total
    per bucket tracks its proportional share of everything paid so far.

    Each bucket's target is floor(cumulative_paid * weight / total_weight);
    the installment pays the gap between target and what the bucket already
    received, then leftover cents go to the largest remainders. A bucket
    never receives more than its weight in total, no share is negative, and
    the shares always sum to amount_cents. Once the bill is fully paid every
    bucket holds exactly its weight.

    Args:
        amount_cents: Installment being split
        weights: Bucket weights (item totals in cents)
        prior: Cents each bucket already received from earlier installments

    Returns:
        Integer cents per bucket, summing exactly to amount_cents

    Raises:
        ValueError: If the installment exceeds the unpaid weight

    Example:
        split_cumulative(500, [600, 400], [0, 0])      -> [300, 200]
        split_cumulative(500, [600, 400], [300, 200])  -> [300, 200]
    """
    if len(weights) != len(prior):
        raise ValueError("weights and prior must have the same length")
    if not weights:
        return []

    total = sum(weights)
    headroom = [w - p for w, p in zip(weights, prior)]
    if amount_cents < 0 or amount_cents > sum(headroom):
        raise ValueError(
            f"Cannot split {amount_cents} cents over remaining {sum(headroom)} cents"
        )
    if total == 0:
        return [0] * len(weights)

    cumulative = sum(prior) + amount_cents
    shares = []
    remainders = []
    for w, p in zip(weights, prior):
        target, remainder = divmod(cumulative * w, total)
        shares.append(max(0, target - p))
        remainders.append(remainder)

    allocated = sum(shares)

    # An earlier installment may have rounded a bucket up past its new target
    smallest_first = sorted(range(len(shares)), key=lambda i: remainders[i])
    i = 0
    while allocated > amount_cents:
        idx = smallest_first[i % len(shares)]
        if shares[idx] > 0:
            shares[idx] -= 1
            allocated -= 1
        i += 1

    largest_first = sorted(range(len(shares)), key=lambda i: remainders[i], reverse=True)
    while allocated < amount_cents:
        for idx in largest_first:
            if allocated == amount_cents:
                break
            if shares[idx] < headroom[idx]:
                shares[idx] += 1
                allocated += 1

    return shares
