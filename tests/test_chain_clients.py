"""
Tests for the web3 collaborators and unit helpers, against a fake eth namespace.
"""

import asyncio
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from dividend_router.chain_clients import Web3BalanceOracle, Web3TransactionSender
from dividend_router.errors import PreconditionFailure
from dividend_router.units import format_units, parse_units, to_decimal

OPERATOR = "0x" + "12" * 20
RECIPIENT = "0x" + "ab" * 20


async def _value(v):
    return v


class FakeEth:
    def __init__(self, balance=0, start_nonce=7, send_error=None):
        self.balance = balance
        self.start_nonce = start_nonce
        self.send_error = send_error
        self.nonce_reads = 0
        self.raw_sent = []
        self.account = MagicMock()
        self.account.from_key.return_value = SimpleNamespace(
            address=OPERATOR,
            sign_transaction=lambda tx: SimpleNamespace(raw_transaction=f"raw-{tx['nonce']}".encode()),
        )

    @property
    def chain_id(self):
        return _value(56)

    @property
    def gas_price(self):
        return _value(3 * 10 ** 9)

    async def get_balance(self, address):
        if isinstance(self.balance, Exception):
            raise self.balance
        return self.balance

    async def get_transaction_count(self, address, block):
        self.nonce_reads += 1
        return self.start_nonce

    async def estimate_gas(self, tx):
        return 21000

    async def send_raw_transaction(self, raw):
        await asyncio.sleep(0)
        if self.send_error:
            error, self.send_error = self.send_error, None
            raise error
        self.raw_sent.append(raw)
        return bytes([len(self.raw_sent)]) * 32


def fake_w3(**kwargs):
    return SimpleNamespace(eth=FakeEth(**kwargs))


class TestBalanceOracle:

    @pytest.mark.asyncio
    async def test_formats_balance(self):
        oracle = Web3BalanceOracle(fake_w3(balance=1234 * 10 ** 15), OPERATOR)
        assert await oracle.get_balance() == "1.234"

    @pytest.mark.asyncio
    async def test_rpc_error_is_precondition_failure(self):
        oracle = Web3BalanceOracle(fake_w3(balance=ConnectionError("rpc down")), OPERATOR)
        with pytest.raises(PreconditionFailure, match="rpc down"):
            await oracle.get_balance()


class TestTransactionSender:

    @pytest.mark.asyncio
    async def test_concurrent_sends_get_distinct_nonces(self):
        w3 = fake_w3()
        sender = Web3TransactionSender(w3, "0x" + "1" * 64)

        sent = await asyncio.gather(*[
            sender.send_transaction({'to': RECIPIENT, 'data': "0x", 'value': "5"}) for _ in range(3)
        ])

        assert sorted(w3.eth.raw_sent) == [b"raw-7", b"raw-8", b"raw-9"]
        assert w3.eth.nonce_reads == 1
        assert len({s.hash for s in sent}) == 3
        assert sent[0].hash.startswith("0x")

    @pytest.mark.asyncio
    async def test_failed_send_rereads_nonce(self):
        w3 = fake_w3(send_error=ValueError("nonce too low"))
        sender = Web3TransactionSender(w3, "0x" + "1" * 64)

        with pytest.raises(ValueError):
            await sender.send_transaction({'to': RECIPIENT, 'value': 1})
        await sender.send_transaction({'to': RECIPIENT, 'value': 1})

        assert w3.eth.nonce_reads == 2
        assert w3.eth.raw_sent == [b"raw-7"]


class TestUnits:

    def test_parse_units_floors(self):
        assert parse_units("1.25") == 125 * 10 ** 16
        assert parse_units("0.0000000000000000019") == 1
        assert parse_units(Decimal("3"), decimals=6) == 3 * 10 ** 6

    def test_format_units(self):
        assert format_units(95 * 10 ** 17) == "9.5"
        assert format_units(12 * 10 ** 18) == "12"
        assert format_units(0) == "0"
        assert parse_units(format_units(2 ** 200)) == 2 ** 200

    def test_to_decimal(self):
        assert to_decimal(None) == 0
        assert to_decimal("") == 0
        assert to_decimal(0.1) == Decimal("0.1")
