"""
Cycle Controller

One distribution cycle:
1. Balance check (skip below the configured minimum)
2. Transferable amount = balance * transfer fraction (rest stays as gas buffer)
3. Holder snapshot
4. Allocation
5. Batched order submission
6. Aggregated CycleResult

Balance and holder failures are preconditions and propagate to the caller.
The controller keeps no state between cycles; callers serialise invocations.
"""

from decimal import Decimal, ROUND_FLOOR, localcontext
from typing import List

from loguru import logger

from .allocation_engine import allocate
from .batch_scheduler import run_batches
from .distribution_config import DistributionConfig
from .models import (
    AllocationEntry,
    CycleResult,
    CycleStatus,
    HolderRecord,
    OrderReceipt,
)
from .units import format_units, parse_units, to_decimal


def _as_holder(item) -> HolderRecord:
    return item if isinstance(item, HolderRecord) else HolderRecord.from_dict(item)


class CycleController:
    """
    Sequences oracle -> holders -> allocation -> scheduling

    Args:
        config: DistributionConfig
        balance_oracle: object with async ``get_balance() -> str``
        holder_source: object with async ``get_holders()``
        gateway: object with async ``submit_order(amount, address)``
    """

    def __init__(
        self,
        config: DistributionConfig,
        balance_oracle,
        holder_source,
        gateway,
        dry_run: bool = False
    ):
        self.config = config
        self.balance_oracle = balance_oracle
        self.holder_source = holder_source
        self.gateway = gateway
        self.dry_run = dry_run

    def transferable_amount(self, balance: Decimal) -> int:
        """Fraction of the balance released to orders, in base units"""
        balance_base = parse_units(balance, self.config.native_decimals)
        with localcontext() as ctx:
            ctx.prec = 100
            amount = Decimal(balance_base) * self.config.transfer_fraction
            return int(amount.to_integral_value(rounding=ROUND_FLOOR))

    async def _submit(self, entry: AllocationEntry) -> OrderReceipt:
        return await self.gateway.submit_order(entry.amount_base_units, entry.address)

    async def run_cycle(self) -> CycleResult:
        """Run one cycle end to end"""
        decimals = self.config.native_decimals
        logger.info("Starting distribution cycle")

        balance_str = str(await self.balance_oracle.get_balance())
        balance = to_decimal(balance_str)
        logger.info(f"Balance: {balance_str} (minimum {self.config.min_total_balance})")

        if balance < self.config.min_total_balance:
            logger.info("Balance below minimum, skipping cycle")
            return CycleResult(
                status=CycleStatus.SKIPPED_LOW_BALANCE,
                total_balance=balance_str,
                decimals=decimals,
            )

        amount = self.transferable_amount(balance)
        logger.info(f"Amount to route ({self.config.transfer_fraction:%}): {format_units(amount, decimals)}")

        holders: List[HolderRecord] = [_as_holder(h) for h in await self.holder_source.get_holders()]
        logger.info(f"Fetched {len(holders)} holders")

        allocation = allocate(
            amount,
            holders,
            self.config.min_per_order_base_units,
            decimals=decimals,
        )

        if self.dry_run:
            logger.info(f"Dry run: {len(allocation.entries)} orders not submitted")
            outcomes = []
        else:
            outcomes = await run_batches(
                allocation.entries,
                self.config.concurrency,
                self.config.batch_delay_seconds,
                self._submit,
            )

        succeeded = [o for o in outcomes if o.success]
        total_used = sum(o.amount_base_units for o in succeeded)

        result = CycleResult(
            status=CycleStatus.COMPLETED,
            total_balance=balance_str,
            transferable_amount=amount,
            attempted=len(outcomes),
            succeeded=len(succeeded),
            failed=len(outcomes) - len(succeeded),
            skipped_low_min=allocation.skipped_count,
            skipped_zero_weight=allocation.skipped_zero_weight,
            total_amount_used=total_used,
            unassigned_remainder=allocation.unassigned_remainder,
            truncation_loss=allocation.truncation_loss,
            outcomes=outcomes,
            decimals=decimals,
        )

        logger.info(f"Cycle complete: {result.succeeded} succeeded, {result.failed} failed")
        logger.info(f"Total used: {format_units(total_used, decimals)}")
        return result
