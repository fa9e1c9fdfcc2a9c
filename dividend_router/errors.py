"""
Dividend Router Errors

Exception hierarchy shared by the allocation, order and cycle layers.
"""

from enum import Enum
from typing import Any, Optional


class DividendRouterError(Exception):
    """Base error"""
    pass


class ConfigError(DividendRouterError):
    """Invalid or incomplete configuration"""
    pass


class PreconditionFailure(DividendRouterError):
    """Balance oracle or holder source could not deliver its snapshot"""
    pass


class CycleAlreadyRunning(DividendRouterError):
    """A cycle is already in progress in this process"""
    pass


class OrderErrorKind(str, Enum):
    """Terminal failure classes for a single order"""
    REJECTED = "rejected"
    ALL_HOSTS_EXHAUSTED = "all_hosts_exhausted"
    BROADCAST_FAILED = "broadcast_failed"


class OrderError(DividendRouterError):
    """Order creation or broadcast failed for one allocation entry"""

    def __init__(
        self,
        message: str,
        kind: OrderErrorKind,
        payload: Any = None,
        order_id: Optional[str] = None
    ):
        self.kind = kind
        self.payload = payload
        self.order_id = order_id
        super().__init__(message)
