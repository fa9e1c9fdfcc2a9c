"""
Order Gateway

Creates one cross-chain order against the routing service and broadcasts it:
1. GET create-tx on the primary host
2. 5xx / no response: linear backoff, retry the same host (3 attempts)
3. 4xx: rejected, no retry and no fallback
4. Anything else: fall back to the next host straight away
5. Success: sign + broadcast the returned tx, wait for the receipt
"""

import asyncio
import json
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import aiohttp
from loguru import logger

from .distribution_config import DistributionConfig
from .errors import OrderError, OrderErrorKind
from .models import OrderReceipt
from .units import format_units


class SubmitState(str, Enum):
    TRY_HOST = "try_host"
    BACKOFF = "backoff"
    FALLBACK = "fallback"
    SUCCESS = "success"
    REJECTED = "rejected"
    EXHAUSTED = "exhausted"


def _to_int(value: Any) -> int:
    """Integer from an API value: int, decimal string or 0x-hex string"""
    if value is None or value == "":
        return 0
    if isinstance(value, int):
        return value
    text = str(value)
    return int(text, 16) if text.lower().startswith('0x') else int(text)


def _describe(payload: Any) -> str:
    if payload is None:
        return "no body"
    if isinstance(payload, (dict, list)):
        return json.dumps(payload)
    return str(payload)


class OrderGateway:
    """
    Resilient order submission for the DLN create-tx endpoint

    The transaction sender must expose ``send_transaction(tx)`` returning an
    object with ``hash`` and an awaitable ``wait()`` that yields the receipt.
    """

    MAX_ATTEMPTS_PER_HOST = 3
    BACKOFF_BASE_SECONDS = 1.0

    def __init__(
        self,
        session: aiohttp.ClientSession,
        sender,
        sender_address: str,
        hosts: List[str],
        src_chain_id: str,
        dst_chain_id: str,
        src_token: str,
        dst_token: str,
        max_attempts_per_host: int = MAX_ATTEMPTS_PER_HOST,
        backoff_base_seconds: float = BACKOFF_BASE_SECONDS,
        request_timeout_seconds: float = 30.0,
        priority_level: str = "normal",
        decimals: int = 18,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        if not hosts:
            raise ValueError("At least one order host is required")

        self.session = session
        self.sender = sender
        self.sender_address = sender_address
        self.hosts = list(hosts)
        self.src_chain_id = src_chain_id
        self.dst_chain_id = dst_chain_id
        self.src_token = src_token
        self.dst_token = dst_token
        self.max_attempts_per_host = max_attempts_per_host
        self.backoff_base_seconds = backoff_base_seconds
        self.request_timeout = aiohttp.ClientTimeout(total=request_timeout_seconds)
        self.priority_level = priority_level
        self.decimals = decimals
        self._sleep = sleep

    @classmethod
    def from_config(
        cls,
        config: DistributionConfig,
        session: aiohttp.ClientSession,
        sender,
        sender_address: str
    ) -> 'OrderGateway':
        return cls(
            session=session,
            sender=sender,
            sender_address=sender_address,
            hosts=config.order_hosts,
            src_chain_id=config.src_chain_id,
            dst_chain_id=config.dst_chain_id,
            src_token=config.src_token,
            dst_token=config.dst_token,
            max_attempts_per_host=config.max_attempts_per_host,
            backoff_base_seconds=config.backoff_base_seconds,
            request_timeout_seconds=config.request_timeout_seconds,
            priority_level=config.priority_level,
            decimals=config.native_decimals,
        )

    def build_params(self, source_amount: int, destination_address: str) -> Dict[str, str]:
        """Query parameters for create-tx; the amount goes out as a string int"""
        return {
            'srcChainId': self.src_chain_id,
            'srcChainTokenIn': self.src_token,
            'srcChainTokenInAmount': str(source_amount),
            'dstChainId': self.dst_chain_id,
            'dstChainTokenOut': self.dst_token,
            'dstChainTokenOutAmount': 'auto',
            'dstChainTokenOutRecipient': destination_address,
            'senderAddress': self.sender_address,
            'srcChainOrderAuthorityAddress': self.sender_address,
            'dstChainOrderAuthorityAddress': destination_address,
            'srcChainPriorityLevel': self.priority_level,
        }

    async def _request_order(self, host: str, params: Dict[str, str]) -> Tuple[int, Any]:
        """Single HTTP call. Returns (status, decoded body or None)"""
        async with self.session.get(
            host,
            params=params,
            headers={'Accept': 'application/json'},
            timeout=self.request_timeout
        ) as resp:
            try:
                payload = await resp.json(content_type=None)
            except ValueError:
                payload = None
            return resp.status, payload

    async def _attempt(
        self,
        host: str,
        params: Dict[str, str],
        attempt: int
    ) -> Tuple[SubmitState, Optional[Dict], Optional[str], Any]:
        """
        Run one attempt and classify it

        Returns:
            Tuple of (next_state, order_data, error_message, error_payload)
        """
        logger.debug(f"Attempt {attempt}/{self.max_attempts_per_host} on {host}")

        try:
            status, payload = await self._request_order(host, params)
        except (aiohttp.ClientConnectionError, asyncio.TimeoutError) as e:
            error = f"no response from {host}: {e!r}"
            logger.warning(f"Order API {error}")
            return SubmitState.BACKOFF, None, error, None
        except aiohttp.ClientError as e:
            error = f"request to {host} failed: {e!r}"
            logger.warning(f"Order API {error}")
            return SubmitState.FALLBACK, None, error, None

        if status >= 500:
            error = f"status {status} from {host}: {_describe(payload)}"
            logger.warning(f"Order API 5xx: {error}")
            return SubmitState.BACKOFF, None, error, payload

        if 400 <= status < 500:
            error = f"Order API 4xx: {_describe(payload)}"
            logger.error(f"✗ {error}")
            return SubmitState.REJECTED, None, error, payload

        tx = payload.get('tx') if isinstance(payload, dict) else None
        if not (200 <= status < 300) or not isinstance(tx, dict) or not tx.get('to'):
            error = f"unexpected response from {host} (status {status}): {_describe(payload)}"
            logger.warning(f"Order API {error}")
            return SubmitState.FALLBACK, None, error, payload

        logger.info(f"✓ Order API success on {host}, orderId: {payload.get('orderId')}")
        return SubmitState.SUCCESS, payload, None, None

    async def create_order(self, source_amount: int, destination_address: str) -> Dict:
        """
        Obtain a prepared order from the first host that serves it

        Returns:
            Response body with ``tx`` and ``orderId``

        Raises:
            OrderError: REJECTED on 4xx, ALL_HOSTS_EXHAUSTED otherwise
        """
        params = self.build_params(source_amount, destination_address)

        state = SubmitState.TRY_HOST
        host_index = 0
        attempt = 1
        order: Optional[Dict] = None
        last_error: Optional[str] = None
        last_payload: Any = None

        while True:
            if state is SubmitState.TRY_HOST:
                host = self.hosts[host_index]
                state, order, error, payload = await self._attempt(host, params, attempt)
                if error:
                    last_error, last_payload = error, payload

            elif state is SubmitState.BACKOFF:
                if attempt >= self.max_attempts_per_host:
                    state = SubmitState.FALLBACK
                    continue
                delay = self.backoff_base_seconds * attempt
                logger.warning(f"Retrying {self.hosts[host_index]} in {delay:.1f}s")
                await self._sleep(delay)
                attempt += 1
                state = SubmitState.TRY_HOST

            elif state is SubmitState.FALLBACK:
                host_index += 1
                attempt = 1
                if host_index < len(self.hosts):
                    logger.warning(f"Falling back to {self.hosts[host_index]}")
                    state = SubmitState.TRY_HOST
                else:
                    state = SubmitState.EXHAUSTED

            elif state is SubmitState.SUCCESS:
                return order

            elif state is SubmitState.REJECTED:
                raise OrderError(last_error, OrderErrorKind.REJECTED, payload=last_payload)

            else:
                message = f"Order API failed on all hosts: {last_error or 'Unknown'}"
                logger.error(f"✗ {message}")
                raise OrderError(message, OrderErrorKind.ALL_HOSTS_EXHAUSTED, payload=last_payload)

    async def submit_order(self, source_amount: int, destination_address: str) -> OrderReceipt:
        """
        Create the order, broadcast its transaction and wait for the receipt

        Args:
            source_amount: Source asset amount in base units
            destination_address: Recipient on the destination chain

        Returns:
            OrderReceipt
        """
        if source_amount <= 0:
            raise ValueError("source_amount must be positive")

        logger.info(f"Creating order: {format_units(source_amount, self.decimals)} -> {destination_address}")

        order = await self.create_order(source_amount, destination_address)
        order_id = order.get('orderId')
        order_tx = order['tx']

        tx = {
            'to': order_tx['to'],
            'data': order_tx.get('data', '0x'),
            'value': _to_int(order_tx.get('value')),
        }

        logger.info(f"Sending transaction: to={tx['to']}, value={format_units(tx['value'], self.decimals)}")

        try:
            sent = await self.sender.send_transaction(tx)
            logger.info(f"Transaction sent: {sent.hash}, waiting for confirmation...")
            receipt = await sent.wait()
        except Exception as e:
            message = f"Broadcast failed for order {order_id}: {e}"
            logger.error(f"✗ {message}")
            raise OrderError(message, OrderErrorKind.BROADCAST_FAILED, order_id=order_id) from e

        status = receipt.get('status') if receipt is not None else None
        if status == 0:
            message = f"Transaction {sent.hash} reverted (order {order_id})"
            logger.error(f"✗ {message}")
            raise OrderError(message, OrderErrorKind.BROADCAST_FAILED, order_id=order_id)

        logger.info(f"✓ Transaction confirmed: {sent.hash} status={status}")

        return OrderReceipt(
            transaction_hash=sent.hash,
            remote_order_id=order_id,
            receipt_status=status,
        )
