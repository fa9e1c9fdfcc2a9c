"""
Cycle data model

HolderRecord -> AllocationEntry -> OrderOutcome -> CycleResult
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from .units import NATIVE_DECIMALS, format_units, to_decimal


def _decimal_str(value: Optional[Decimal]) -> Optional[str]:
    return None if value is None else str(value)


@dataclass(frozen=True)
class HolderRecord:
    """Weighted recipient as delivered by the holder source"""
    address: str
    balance_units: Decimal
    rank: int
    percentage: Optional[Decimal] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'HolderRecord':
        percentage = data.get('percentage')
        return cls(
            address=data['address'],
            balance_units=to_decimal(data.get('balance')),
            rank=int(data.get('rank', 0)),
            percentage=None if percentage is None else to_decimal(percentage),
        )


@dataclass(frozen=True)
class AllocationEntry:
    """One recipient's share of a cycle, in base units"""
    address: str
    amount_base_units: int
    rank: int
    percentage: Optional[Decimal]


@dataclass(frozen=True)
class OrderOutcome:
    """Settled result of submitting one allocation entry"""
    address: str
    amount_base_units: int
    rank: int
    percentage: Optional[Decimal]
    success: bool
    transaction_hash: Optional[str] = None
    remote_order_id: Optional[str] = None
    error_message: Optional[str] = None
    error_kind: Optional[str] = None
    receipt_status: Optional[int] = None

    @classmethod
    def succeeded(cls, entry: AllocationEntry, receipt: 'OrderReceipt') -> 'OrderOutcome':
        return cls(
            address=entry.address,
            amount_base_units=entry.amount_base_units,
            rank=entry.rank,
            percentage=entry.percentage,
            success=True,
            transaction_hash=receipt.transaction_hash,
            remote_order_id=receipt.remote_order_id,
            receipt_status=receipt.receipt_status,
        )

    @classmethod
    def failed(
        cls,
        entry: AllocationEntry,
        error_message: str,
        error_kind: Optional[str] = None,
        remote_order_id: Optional[str] = None
    ) -> 'OrderOutcome':
        return cls(
            address=entry.address,
            amount_base_units=entry.amount_base_units,
            rank=entry.rank,
            percentage=entry.percentage,
            success=False,
            remote_order_id=remote_order_id,
            error_message=error_message,
            error_kind=error_kind,
        )

    def to_dict(self, decimals: int = NATIVE_DECIMALS) -> Dict:
        return {
            'address': self.address,
            'amount_base_units': str(self.amount_base_units),
            'amount': format_units(self.amount_base_units, decimals),
            'rank': self.rank,
            'percentage': _decimal_str(self.percentage),
            'success': self.success,
            'transaction_hash': self.transaction_hash,
            'remote_order_id': self.remote_order_id,
            'error_message': self.error_message,
            'error_kind': self.error_kind,
            'receipt_status': self.receipt_status,
        }


@dataclass(frozen=True)
class OrderReceipt:
    """Successful order: broadcast hash, chain receipt status and remote order id"""
    transaction_hash: str
    remote_order_id: Optional[str]
    receipt_status: Optional[int] = None


class CycleStatus(str, Enum):
    SKIPPED_LOW_BALANCE = "skipped_low_balance"
    COMPLETED = "completed"


@dataclass
class CycleResult:
    """
    Outcome of one distribution cycle

    Base-unit integers are stringified by to_dict() so the result can be
    dumped to JSON without precision loss.
    """
    status: CycleStatus
    total_balance: str
    timestamp_utc: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    transferable_amount: int = 0
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped_low_min: int = 0
    skipped_zero_weight: int = 0
    total_amount_used: int = 0
    unassigned_remainder: int = 0
    truncation_loss: int = 0
    outcomes: List[OrderOutcome] = field(default_factory=list)
    decimals: int = NATIVE_DECIMALS

    def to_dict(self) -> Dict:
        return {
            'status': self.status.value,
            'timestamp': self.timestamp_utc.isoformat(),
            'total_balance': self.total_balance,
            'transferable_amount': str(self.transferable_amount),
            'attempted': self.attempted,
            'succeeded': self.succeeded,
            'failed': self.failed,
            'skipped_low_min': self.skipped_low_min,
            'skipped_zero_weight': self.skipped_zero_weight,
            'total_amount_used': str(self.total_amount_used),
            'total_amount_used_formatted': format_units(self.total_amount_used, self.decimals),
            'unassigned_remainder': str(self.unassigned_remainder),
            'unassigned_remainder_formatted': format_units(self.unassigned_remainder, self.decimals),
            'truncation_loss': str(self.truncation_loss),
            'outcomes': [o.to_dict(self.decimals) for o in self.outcomes],
        }
