"""
Dividend Router

Converts the operating account's native balance into cross-chain orders,
one per token holder, proportional to holder balances.

Components:
- allocation_engine: Balance + weighted holders -> per-holder base-unit amounts
- order_gateway: Order creation with retry, backoff and host fallback; broadcast
- batch_scheduler: Concurrency-bounded, paced submission of many orders
- cycle_controller: Balance -> holders -> allocation -> orders -> CycleResult
- chain_clients: web3 balance oracle and transaction sender
- holder_source: Moralis ranked-holder snapshot
- cycle_history: SQLite log of cycle results
- runner: Single-cycle guard, scheduling loop and CLI

Order submission states:
TRY_HOST -> BACKOFF (5xx / no response) -> TRY_HOST ... -> FALLBACK -> EXHAUSTED
TRY_HOST -> REJECTED (4xx)
TRY_HOST -> SUCCESS -> broadcast -> receipt
"""

from .allocation_engine import (
    AllocationResult,
    allocate,
)
from .batch_scheduler import (
    run_batches,
)
from .cycle_controller import (
    CycleController,
)
from .cycle_history import (
    CycleHistoryDB,
)
from .distribution_config import (
    DistributionConfig,
    load_config,
)
from .errors import (
    ConfigError,
    CycleAlreadyRunning,
    DividendRouterError,
    OrderError,
    OrderErrorKind,
    PreconditionFailure,
)
from .models import (
    AllocationEntry,
    CycleResult,
    CycleStatus,
    HolderRecord,
    OrderOutcome,
    OrderReceipt,
)
from .order_gateway import (
    OrderGateway,
    SubmitState,
)
from .runner import (
    CycleRunner,
)

__all__ = [
    # Core engine
    'allocate',
    'AllocationResult',
    'OrderGateway',
    'SubmitState',
    'run_batches',
    'CycleController',

    # Data model
    'HolderRecord',
    'AllocationEntry',
    'OrderOutcome',
    'OrderReceipt',
    'CycleResult',
    'CycleStatus',

    # Errors
    'DividendRouterError',
    'ConfigError',
    'PreconditionFailure',
    'CycleAlreadyRunning',
    'OrderError',
    'OrderErrorKind',

    # Configuration and runtime
    'DistributionConfig',
    'load_config',
    'CycleHistoryDB',
    'CycleRunner',
]

__version__ = '1.0.0'
