"""
Batch Scheduler

Drives allocation entries through an async submit callable in fixed-size
groups. Members of a group run concurrently and each settles into its own
OrderOutcome; the next group starts only after the whole group has settled
and the inter-batch delay has elapsed.
"""

import asyncio
from typing import Awaitable, Callable, List, Sequence

from loguru import logger

from .errors import OrderError
from .models import AllocationEntry, OrderOutcome, OrderReceipt

SubmitFn = Callable[[AllocationEntry], Awaitable[OrderReceipt]]


def _settle(entry: AllocationEntry, result) -> OrderOutcome:
    """Turn a gather() slot (receipt or exception) into an OrderOutcome"""
    if isinstance(result, OrderError):
        return OrderOutcome.failed(
            entry,
            error_message=str(result),
            error_kind=result.kind.value,
            remote_order_id=result.order_id,
        )
    if isinstance(result, BaseException):
        return OrderOutcome.failed(entry, error_message=str(result) or repr(result))
    if isinstance(result, OrderOutcome):
        return result
    return OrderOutcome.succeeded(entry, result)


async def run_batches(
    entries: Sequence[AllocationEntry],
    concurrency: int,
    inter_batch_delay_seconds: float,
    submit: SubmitFn,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
) -> List[OrderOutcome]:
    """
    Submit entries in concurrency-bounded batches

    Args:
        entries: Allocation entries, in reporting order
        concurrency: Group size
        inter_batch_delay_seconds: Pause between groups
        submit: Coroutine function taking one entry

    Returns:
        One OrderOutcome per entry, in input order
    """
    if concurrency < 1:
        raise ValueError("concurrency must be >= 1")

    outcomes: List[OrderOutcome] = []
    total_batches = (len(entries) + concurrency - 1) // concurrency

    logger.info(f"Processing {len(entries)} allocations with concurrency {concurrency}")

    for batch_index, start in enumerate(range(0, len(entries), concurrency), start=1):
        batch = list(entries[start:start + concurrency])
        logger.info(f"Processing batch {batch_index}/{total_batches} with {len(batch)} orders")

        results = await asyncio.gather(
            *(submit(entry) for entry in batch),
            return_exceptions=True
        )

        for entry, result in zip(batch, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            outcome = _settle(entry, result)
            if outcome.success:
                logger.info(f"✓ SUCCESS for {entry.address}: tx {outcome.transaction_hash}")
            else:
                logger.error(f"✗ FAILED for {entry.address}: {outcome.error_message}")
            outcomes.append(outcome)

        if start + concurrency < len(entries):
            logger.info(f"Waiting {inter_batch_delay_seconds}s before next batch")
            await sleep(inter_batch_delay_seconds)

    return outcomes
