"""
Tests for the Moralis holder source: pagination, filtering and ranking.
"""

import pytest

from dividend_router.errors import PreconditionFailure
from dividend_router.holder_source import MORALIS_BASE_URL, MoralisHolderSource

from helpers import FakeResponse, FakeSession

TOKEN = "0xToken000000000000000000000000000000000001"
OWNERS_URL = f"{MORALIS_BASE_URL}/erc20/{TOKEN}/owners"


def holder(address, balance, label=None, is_contract=False):
    return {
        'owner_address': address,
        'owner_address_label': label,
        'balance': str(balance * 10 ** 18),
        'balance_formatted': str(balance),
        'is_contract': is_contract,
        'percentage_relative_to_total_supply': None,
    }


def make_source(session, **kwargs):
    kwargs.setdefault('page_delay_seconds', 0)
    return MoralisHolderSource(session, "api-key", TOKEN, **kwargs)


class TestPagination:

    @pytest.mark.asyncio
    async def test_follows_cursor_until_exhausted(self):
        session = FakeSession({OWNERS_URL: [
            FakeResponse(200, {'result': [holder("0x1", 5)], 'cursor': "c1"}),
            FakeResponse(200, {'result': [holder("0x2", 7)], 'cursor': None}),
        ]})

        raw = await make_source(session).fetch_raw_holders()

        assert [h['owner_address'] for h in raw] == ["0x1", "0x2"]
        assert 'cursor' not in session.calls[0]['params']
        assert session.calls[1]['params']['cursor'] == "c1"
        assert session.calls[0]['headers']['X-API-Key'] == "api-key"

    @pytest.mark.asyncio
    async def test_stops_at_max_fetch(self):
        page = {'result': [holder(f"0x{i}", i) for i in range(1, 4)], 'cursor': "more"}
        session = FakeSession({OWNERS_URL: [FakeResponse(200, page)]})

        raw = await make_source(session, max_fetch=5).fetch_raw_holders()

        assert len(raw) == 6
        assert session.calls_to(OWNERS_URL) == 2

    @pytest.mark.asyncio
    async def test_http_error_is_precondition_failure(self):
        session = FakeSession({OWNERS_URL: [FakeResponse(401, {'message': "bad key"})]})

        with pytest.raises(PreconditionFailure, match="page 1"):
            await make_source(session).get_holders()


class TestFiltering:

    @pytest.mark.asyncio
    async def test_sorted_filtered_and_ranked(self):
        session = FakeSession({OWNERS_URL: [FakeResponse(200, {'result': [
            holder("0xSmall", 1),
            holder("0xPool", 1000, label="PancakeSwap V2: LP"),
            holder(TOKEN, 500),
            holder("0xContract", 400, is_contract=True),
            holder("0xBig", 300),
            holder("0xSkip", 200),
            holder("0xMid", 50),
        ], 'cursor': None})]})

        source = make_source(session, skip_addresses=["0xSKIP"], skip_label_patterns=["pancake", "lp"])
        holders = await source.get_holders()

        assert [h.address for h in holders] == ["0xBig", "0xMid", "0xSmall"]
        assert [h.rank for h in holders] == [1, 2, 3]
        assert str(holders[0].balance_units) == "300"

    @pytest.mark.asyncio
    async def test_limit(self):
        result = [holder(f"0xAddr{i}", i) for i in range(1, 6)]
        session = FakeSession({OWNERS_URL: [FakeResponse(200, {'result': result, 'cursor': None})]})

        holders = await make_source(session, limit=2, skip_label_patterns=[]).get_holders()

        assert [h.address for h in holders] == ["0xAddr5", "0xAddr4"]

    def test_balance_without_formatted_value(self):
        source = make_source(FakeSession())
        record = source._to_record({'owner_address': "0xA", 'balance': str(25 * 10 ** 17)}, 1)
        assert str(record.balance_units) == "2.5"


class TestMalformedResponses:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [["unexpected"], "maintenance", None])
    async def test_non_object_body_is_precondition_failure(self, body):
        session = FakeSession({OWNERS_URL: [FakeResponse(200, body)]})

        with pytest.raises(PreconditionFailure, match="page 1"):
            await make_source(session).get_holders()

    @pytest.mark.asyncio
    async def test_unparseable_balance_is_precondition_failure(self):
        bad = holder("0xBad", 1)
        bad['balance'] = "lots"
        session = FakeSession({OWNERS_URL: [
            FakeResponse(200, {'result': [holder("0x1", 5)], 'cursor': "c1"}),
            FakeResponse(200, {'result': [bad], 'cursor': None}),
        ]})

        with pytest.raises(PreconditionFailure, match="page 2"):
            await make_source(session).get_holders()

    @pytest.mark.asyncio
    async def test_unparseable_formatted_balance_is_precondition_failure(self):
        bad = holder("0xBad", 1)
        bad['balance_formatted'] = "n/a"
        session = FakeSession({OWNERS_URL: [FakeResponse(200, {'result': [bad], 'cursor': None})]})

        with pytest.raises(PreconditionFailure):
            await make_source(session, skip_label_patterns=[]).get_holders()
