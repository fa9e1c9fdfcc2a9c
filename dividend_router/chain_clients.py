"""
Chain Clients

web3-backed collaborators for the source chain:
- Web3BalanceOracle: native balance of the operating account
- Web3TransactionSender: signs and broadcasts order transactions

Several orders of one batch broadcast concurrently, so nonce assignment is
serialised behind a lock and tracked locally between sends.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, Optional

from loguru import logger
from web3 import AsyncWeb3, Web3

from .errors import PreconditionFailure
from .units import NATIVE_DECIMALS, format_units


def create_web3(rpc_url: str, request_timeout_seconds: float = 30.0) -> AsyncWeb3:
    """AsyncWeb3 over HTTP"""
    provider = AsyncWeb3.AsyncHTTPProvider(
        rpc_url,
        request_kwargs={'timeout': request_timeout_seconds}
    )
    return AsyncWeb3(provider)


class Web3BalanceOracle:
    """Reports the operating account's native balance as a decimal string"""

    def __init__(self, w3: AsyncWeb3, address: str, decimals: int = NATIVE_DECIMALS):
        self.w3 = w3
        self.address = Web3.to_checksum_address(address)
        self.decimals = decimals

    async def get_balance(self) -> str:
        logger.info(f"Getting balance for {self.address}")
        try:
            balance = await self.w3.eth.get_balance(self.address)
        except Exception as e:
            raise PreconditionFailure(f"Balance query failed for {self.address}: {e}") from e
        formatted = format_units(balance, self.decimals)
        logger.info(f"Balance: {formatted}")
        return formatted


@dataclass
class SentTransaction:
    """Broadcast transaction; wait() resolves to the chain receipt"""
    hash: str
    w3: AsyncWeb3
    receipt_timeout_seconds: float = 180.0

    async def wait(self) -> Dict[str, Any]:
        receipt = await self.w3.eth.wait_for_transaction_receipt(
            self.hash,
            timeout=self.receipt_timeout_seconds
        )
        return dict(receipt)


class Web3TransactionSender:
    """
    Local-key transaction sender

    Args:
        w3: AsyncWeb3 instance
        private_key: Hex private key of the operating account
        receipt_timeout_seconds: Max wait in SentTransaction.wait()
    """

    def __init__(
        self,
        w3: AsyncWeb3,
        private_key: str,
        receipt_timeout_seconds: float = 180.0
    ):
        self.w3 = w3
        self.account = w3.eth.account.from_key(private_key)
        self.receipt_timeout_seconds = receipt_timeout_seconds
        self._nonce_lock = asyncio.Lock()
        self._next_nonce: Optional[int] = None
        self._chain_id: Optional[int] = None

    @property
    def address(self) -> str:
        return self.account.address

    async def send_transaction(self, tx: Dict[str, Any]) -> SentTransaction:
        """
        Sign and broadcast ``{to, data, value}``

        Nonce, gas price, gas limit and chain id are filled in here.
        """
        async with self._nonce_lock:
            if self._chain_id is None:
                self._chain_id = await self.w3.eth.chain_id
            if self._next_nonce is None:
                self._next_nonce = await self.w3.eth.get_transaction_count(self.address, 'pending')

            nonce = self._next_nonce
            full_tx = {
                'from': self.address,
                'to': Web3.to_checksum_address(tx['to']),
                'data': tx.get('data', '0x'),
                'value': int(tx.get('value', 0)),
                'nonce': nonce,
                'chainId': self._chain_id,
                'gasPrice': await self.w3.eth.gas_price,
            }

            try:
                full_tx['gas'] = await self.w3.eth.estimate_gas(full_tx)
                signed = self.account.sign_transaction(full_tx)
                tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
            except Exception:
                # Unknown whether the nonce was consumed; re-read it next time
                self._next_nonce = None
                raise

            self._next_nonce = nonce + 1

        hash_hex = Web3.to_hex(tx_hash)
        logger.debug(f"Broadcast nonce {nonce}: {hash_hex} "
                     f"(value {format_units(full_tx['value'])})")
        return SentTransaction(hash_hex, self.w3, self.receipt_timeout_seconds)
