"""
Holder Source

Ranked token holders from the Moralis ERC20 owners endpoint:
1. Cursor pagination until enough holders are fetched
2. Sort by raw balance, descending
3. Drop contracts, the token itself, skip-listed addresses and LP/router labels
4. Keep the top N, ranked from 1
"""

import asyncio
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional

import aiohttp
from loguru import logger

from .distribution_config import DistributionConfig
from .errors import PreconditionFailure
from .models import HolderRecord
from .units import format_units, to_decimal

MORALIS_BASE_URL = "https://deep-index.moralis.io/api/v2.2"


class MoralisHolderSource:
    """Fetches and filters the holder snapshot for one cycle"""

    TOKEN_DECIMALS = 18

    def __init__(
        self,
        session: aiohttp.ClientSession,
        api_key: str,
        token_address: str,
        chain: str = "0x38",
        limit: int = 100,
        max_fetch: int = 150,
        page_size: int = 100,
        page_delay_seconds: float = 1.0,
        skip_addresses: Optional[List[str]] = None,
        skip_label_patterns: Optional[List[str]] = None,
        base_url: str = MORALIS_BASE_URL
    ):
        self.session = session
        self.api_key = api_key
        self.token_address = token_address
        self.chain = chain
        self.limit = limit
        self.max_fetch = max_fetch
        self.page_size = page_size
        self.page_delay_seconds = page_delay_seconds
        self.skip_addresses = {a.lower() for a in (skip_addresses or [])}
        self.skip_label_patterns = [p.lower() for p in (skip_label_patterns or [])]
        self.base_url = base_url.rstrip('/')

    @classmethod
    def from_config(cls, config: DistributionConfig, session: aiohttp.ClientSession) -> 'MoralisHolderSource':
        config.require_secrets('moralis_api_key', 'token_address')
        return cls(
            session=session,
            api_key=config.moralis_api_key,
            token_address=config.token_address,
            chain=config.holder_chain,
            limit=config.holder_limit,
            max_fetch=config.holder_max_fetch,
            page_size=config.holder_page_size,
            page_delay_seconds=config.holder_page_delay_seconds,
            skip_addresses=config.skip_addresses,
            skip_label_patterns=config.skip_label_patterns,
        )

    def should_skip(self, holder: Dict) -> bool:
        """True for contracts, the token contract, skip-listed and LP-like holders"""
        address = (holder.get('owner_address') or holder.get('address') or '').lower()
        label = (holder.get('owner_address_label') or '').lower()

        if holder.get('is_contract'):
            return True
        if address == self.token_address.lower():
            return True
        if address in self.skip_addresses:
            return True
        return any(p in label or p in address for p in self.skip_label_patterns)

    async def _fetch_page(self, cursor: Optional[str]) -> Dict:
        url = f"{self.base_url}/erc20/{self.token_address}/owners"
        params = {'chain': self.chain, 'limit': str(self.page_size), 'order': 'DESC'}
        if cursor:
            params['cursor'] = cursor

        async with self.session.get(
            url,
            params=params,
            headers={'X-API-Key': self.api_key, 'Accept': 'application/json'},
            timeout=aiohttp.ClientTimeout(total=60)
        ) as resp:
            resp.raise_for_status()
            return await resp.json(content_type=None)

    async def fetch_raw_holders(self) -> List[Dict]:
        """All pages up to max_fetch, unsorted and unfiltered"""
        holders: List[Dict] = []
        cursor = None
        page = 1

        while len(holders) < self.max_fetch:
            logger.debug(f"Fetching holders page {page}, current total: {len(holders)}")
            try:
                data = await self._fetch_page(cursor)
            except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
                raise PreconditionFailure(f"Holder fetch failed on page {page}: {e}") from e

            if not isinstance(data, dict):
                raise PreconditionFailure(f"Holder fetch failed on page {page}: unexpected body {data!r}")

            results = data.get('result') or []
            if not results:
                break

            for holder in results:
                try:
                    to_decimal(holder.get('balance'))
                except (InvalidOperation, AttributeError) as e:
                    raise PreconditionFailure(
                        f"Holder fetch failed on page {page}: bad holder entry {holder!r}"
                    ) from e

            holders.extend(results)
            cursor = data.get('cursor')
            if not cursor:
                break

            page += 1
            await asyncio.sleep(self.page_delay_seconds)

        logger.info(f"Total holders fetched: {len(holders)}")
        return holders

    def _to_record(self, holder: Dict, rank: int) -> HolderRecord:
        balance = holder.get('balance_formatted')
        if balance is None:
            balance = format_units(int(holder.get('balance') or 0), self.TOKEN_DECIMALS)
        percentage = holder.get('percentage_relative_to_total_supply')
        return HolderRecord(
            address=holder.get('owner_address') or holder.get('address'),
            balance_units=to_decimal(balance),
            rank=rank,
            percentage=None if percentage is None else to_decimal(percentage),
        )

    async def get_holders(self) -> List[HolderRecord]:
        """Top holders, filtered and ranked"""
        raw = await self.fetch_raw_holders()
        ordered = sorted(raw, key=lambda h: to_decimal(h.get('balance')), reverse=True)
        kept = [h for h in ordered if not self.should_skip(h)]
        logger.info(f"After filtering: {len(kept)} holders (removed {len(ordered) - len(kept)} contracts/LP)")

        try:
            top = [self._to_record(h, rank) for rank, h in enumerate(kept[:self.limit], start=1)]
        except (InvalidOperation, ValueError) as e:
            raise PreconditionFailure(f"Unreadable holder balance: {e!r}") from e
        total = sum((h.balance_units for h in top), Decimal(0))
        logger.info(f"✓ Returning top {len(top)} holders (balance sum {total})")
        return top
