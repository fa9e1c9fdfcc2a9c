"""
Test fakes and builders

FakeSession mimics the slice of aiohttp.ClientSession used by the package:
``session.get(url, **kwargs)`` used as an async context manager.
"""

from typing import Any, Dict, List, Optional

import aiohttp

from dividend_router.models import AllocationEntry, HolderRecord
from dividend_router.units import to_decimal


class FakeResponse:
    def __init__(self, status: int = 200, body: Any = None, invalid_json: bool = False):
        self.status = status
        self._body = body
        self._invalid_json = invalid_json

    async def json(self, content_type=None):
        if self._invalid_json:
            raise ValueError("Expecting value: line 1 column 1 (char 0)")
        return self._body

    def raise_for_status(self):
        if self.status >= 400:
            raise aiohttp.ClientError(f"HTTP {self.status}")


class _RequestContext:
    def __init__(self, outcome):
        self._outcome = outcome

    async def __aenter__(self):
        if isinstance(self._outcome, BaseException):
            raise self._outcome
        return self._outcome

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeSession:
    """
    Scripted responses per URL

    Each URL maps to a list of FakeResponse / exceptions consumed in order;
    the last item repeats once the list is exhausted.
    """

    def __init__(self, routes: Optional[Dict[str, List[Any]]] = None):
        self.routes = {url: list(items) for url, items in (routes or {}).items()}
        self.calls: List[Dict[str, Any]] = []
        self.closed = False

    def get(self, url, **kwargs):
        self.calls.append({'url': url, **kwargs})
        items = self.routes[url]
        outcome = items.pop(0) if len(items) > 1 else items[0]
        return _RequestContext(outcome)

    def calls_to(self, url: str) -> int:
        return sum(1 for c in self.calls if c['url'] == url)

    async def close(self):
        self.closed = True


class FakeSent:
    def __init__(self, tx_hash: str, status: int = 1, wait_error: Optional[Exception] = None):
        self.hash = tx_hash
        self._status = status
        self._wait_error = wait_error

    async def wait(self):
        if self._wait_error:
            raise self._wait_error
        return {'status': self._status, 'transactionHash': self.hash}


class FakeSender:
    """Records transactions; optionally fails on send or on wait"""

    def __init__(self, send_error: Optional[Exception] = None,
                 wait_error: Optional[Exception] = None, status: int = 1):
        self.sent: List[Dict] = []
        self.send_error = send_error
        self.wait_error = wait_error
        self.status = status

    async def send_transaction(self, tx):
        if self.send_error:
            raise self.send_error
        self.sent.append(tx)
        return FakeSent(f"0x{len(self.sent):064x}", self.status, self.wait_error)


class RecordingSleep:
    """Stand-in for asyncio.sleep that only records delays"""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float):
        self.delays.append(delay)


def order_body(order_id: str = "order-1", value: Any = "1000") -> Dict:
    tx = {'to': "0x" + "ab" * 20, 'data': "0xdeadbeef"}
    if value is not None:
        tx['value'] = value
    return {'tx': tx, 'orderId': order_id}


def make_holders(*balances, percentages=None) -> List[HolderRecord]:
    percentages = percentages or [None] * len(balances)
    return [
        HolderRecord(
            address=f"0xHolder{i + 1}",
            balance_units=to_decimal(b),
            rank=i + 1,
            percentage=None if p is None else to_decimal(p),
        )
        for i, (b, p) in enumerate(zip(balances, percentages))
    ]


def make_entries(count: int, amount: int = 10 ** 16) -> List[AllocationEntry]:
    return [
        AllocationEntry(address=f"0xEntry{i}", amount_base_units=amount, rank=i + 1, percentage=None)
        for i in range(count)
    ]


