"""
Allocation Engine

Splits a transferable amount (base units) across weighted holders:
1. Weight sum over holders with a positive balance
2. Fixed-point share per holder (1e9 precision, floored)
3. Integer amount per holder, floored
4. Below-minimum shares are dropped into the unassigned remainder
5. Floor truncation is reported separately as truncation loss
"""

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_FLOOR, localcontext
from typing import List, Optional, Sequence

from loguru import logger

from .models import AllocationEntry, HolderRecord
from .units import format_units

SHARE_PRECISION = 10 ** 9

_DECIMAL_PRECISION = 100


@dataclass
class AllocationResult:
    """Allocation output for one cycle"""
    entries: List[AllocationEntry] = field(default_factory=list)
    unassigned_remainder: int = 0
    skipped_count: int = 0
    skipped_zero_weight: int = 0
    truncation_loss: int = 0

    @property
    def allocated_total(self) -> int:
        return sum(e.amount_base_units for e in self.entries)


def _scaled_share(weight: Decimal, sum_weights: Decimal) -> int:
    """floor(weight / sum_weights * SHARE_PRECISION) as an int"""
    with localcontext() as ctx:
        ctx.prec = _DECIMAL_PRECISION
        share = weight * SHARE_PRECISION / sum_weights
        return int(share.to_integral_value(rounding=ROUND_FLOOR))


def _derived_percentage(weight: Decimal, sum_weights: Decimal) -> Decimal:
    with localcontext() as ctx:
        ctx.prec = 28
        return weight * 100 / sum_weights


def allocate(
    total_amount_base_units: int,
    holders: Sequence[HolderRecord],
    min_order_threshold: int,
    decimals: int = 18
) -> AllocationResult:
    """
    Convert a total amount and a weighted holder list into transfer entries

    Args:
        total_amount_base_units: Amount available for orders
        holders: Holders in rank order (order is kept in the output)
        min_order_threshold: Smallest amount worth an order, in base units
        decimals: Only used for log formatting

    Returns:
        AllocationResult
    """
    if total_amount_base_units < 0:
        raise ValueError("total_amount_base_units must be non-negative")
    if min_order_threshold < 0:
        raise ValueError("min_order_threshold must be non-negative")

    sum_weights = sum(
        (h.balance_units for h in holders if h.balance_units > 0),
        Decimal(0)
    )

    if not holders or sum_weights == 0:
        logger.warning("No weighted holders, nothing to allocate")
        return AllocationResult(unassigned_remainder=total_amount_base_units)

    logger.info(f"Allocating {format_units(total_amount_base_units, decimals)} across "
                f"{len(holders)} holders (weight sum {sum_weights})")

    result = AllocationResult()

    for holder in holders:
        if holder.balance_units <= 0:
            result.skipped_zero_weight += 1
            continue

        holder_amount = total_amount_base_units * _scaled_share(holder.balance_units, sum_weights) // SHARE_PRECISION

        if holder_amount < min_order_threshold:
            logger.debug(f"Skipping {holder.address}: share {format_units(holder_amount, decimals)} below minimum")
            result.unassigned_remainder += holder_amount
            result.skipped_count += 1
            continue

        percentage: Optional[Decimal] = holder.percentage
        if percentage is None:
            percentage = _derived_percentage(holder.balance_units, sum_weights)

        result.entries.append(AllocationEntry(
            address=holder.address,
            amount_base_units=holder_amount,
            rank=holder.rank,
            percentage=percentage,
        ))

    result.truncation_loss = (
        total_amount_base_units - result.allocated_total - result.unassigned_remainder
    )

    logger.info(f"✓ {len(result.entries)} allocations, {result.skipped_count} below minimum, "
                f"remainder {format_units(result.unassigned_remainder, decimals)}, "
                f"truncation {result.truncation_loss} base units")

    return result
