"""
Cycle Runner

Calling layer around CycleController:
- rejects overlapping cycles (one per process)
- keeps last-run status for reporting
- persists each CycleResult to the history database
- CLI: run once, or every N seconds

Usage:
    python -m dividend_router --once
    python -m dividend_router --interval 3600 --config distribution_config.yaml
"""

import argparse
import asyncio
import json
import sqlite3
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Dict, Optional

import aiohttp
from loguru import logger

from .chain_clients import Web3BalanceOracle, Web3TransactionSender, create_web3
from .cycle_controller import CycleController
from .cycle_history import CycleHistoryDB
from .distribution_config import DistributionConfig, load_config
from .errors import CycleAlreadyRunning, DividendRouterError
from .holder_source import MoralisHolderSource
from .models import CycleResult, CycleStatus
from .order_gateway import OrderGateway


class CycleRunner:
    """
    Serialises cycle invocations and records their results

    Args:
        controller: CycleController (or anything with async run_cycle())
        history: Optional CycleHistoryDB
    """

    def __init__(self, controller: CycleController, history: Optional[CycleHistoryDB] = None):
        self.controller = controller
        self.history = history
        self._lock = asyncio.Lock()
        self.last_run_time: Optional[datetime] = None
        self.last_run_status: Optional[str] = None
        self.last_result: Optional[CycleResult] = None

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    async def run_once(self) -> CycleResult:
        """
        Run one cycle

        Raises:
            CycleAlreadyRunning: another cycle is in progress
        """
        if self._lock.locked():
            raise CycleAlreadyRunning("Distribution cycle already running")

        async with self._lock:
            self.last_run_time = datetime.now(timezone.utc)
            try:
                result = await self.controller.run_cycle()
            except Exception as e:
                self.last_run_status = f"Error: {e}"
                logger.error(f"✗ Cycle aborted: {e}")
                raise

            self.last_result = result
            if result.status is CycleStatus.SKIPPED_LOW_BALANCE:
                self.last_run_status = f"Skipped: balance {result.total_balance} below minimum"
            else:
                self.last_run_status = f"Success: {result.succeeded}/{result.attempted} orders"

            if self.history is not None:
                try:
                    self.history.record_cycle(result)
                except sqlite3.Error as e:
                    logger.error(f"✗ Cycle result not persisted: {e}")

            return result

    async def run_forever(self, interval_seconds: float):
        """Run a cycle every interval; a failed cycle does not stop the loop"""
        logger.info(f"Scheduling a cycle every {interval_seconds}s")
        while True:
            try:
                await self.run_once()
            except CycleAlreadyRunning:
                logger.warning("Previous cycle still running, skipping this tick")
            except Exception as e:
                logger.exception(f"Cycle failed: {e}")
            await asyncio.sleep(interval_seconds)

    def status(self) -> Dict:
        return {
            'is_running': self.is_running,
            'last_run_time': self.last_run_time.isoformat() if self.last_run_time else None,
            'last_run_status': self.last_run_status,
        }


@asynccontextmanager
async def open_runner(config: DistributionConfig, dry_run: bool = False) -> AsyncIterator[CycleRunner]:
    """
    Wire the live collaborators from config and close them afterwards

    Yields:
        CycleRunner
    """
    config.require_secrets('private_key', 'rpc_url')

    w3 = create_web3(config.rpc_url, config.request_timeout_seconds)
    sender = Web3TransactionSender(w3, config.private_key, config.receipt_timeout_seconds)
    history = CycleHistoryDB(config.history_db_path)
    session = aiohttp.ClientSession()

    try:
        controller = CycleController(
            config=config,
            balance_oracle=Web3BalanceOracle(w3, sender.address, config.native_decimals),
            holder_source=MoralisHolderSource.from_config(config, session),
            gateway=OrderGateway.from_config(config, session, sender, sender.address),
            dry_run=dry_run,
        )
        yield CycleRunner(controller, history)
    finally:
        await shutdown(session, w3, history)


async def shutdown(session: aiohttp.ClientSession, w3, history: Optional[CycleHistoryDB]):
    """Close HTTP session, RPC provider and database"""
    logger.info("Starting shutdown...")
    if not session.closed:
        await session.close()
    disconnect = getattr(w3.provider, 'disconnect', None)
    if disconnect is not None:
        try:
            await disconnect()
        except Exception as e:
            logger.debug(f"Error disconnecting RPC provider: {e}")
    if history is not None:
        history.close()
    logger.info("✓ Shutdown complete")


def configure_logging(level: str = "INFO", log_file: Optional[str] = None):
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function} - {message}"
    )
    if log_file:
        logger.add(log_file, level=level.upper(), rotation="10 MB", retention=5)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dividend_router",
        description="Route native balance to holders as cross-chain orders"
    )
    parser.add_argument('--config', default="distribution_config.yaml", help="YAML config path")
    parser.add_argument('--env-file', default=None, help=".env file with secrets")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument('--once', action='store_true', help="Run a single cycle and print the result")
    mode.add_argument('--interval', type=int, default=None, help="Seconds between cycles")
    mode.add_argument('--stats', action='store_true', help="Print history statistics and exit")
    parser.add_argument('--dry-run', action='store_true', help="Allocate only, submit no orders")
    return parser


async def _run(args: argparse.Namespace, config: DistributionConfig) -> int:
    async with open_runner(config, dry_run=args.dry_run) as runner:
        if args.once:
            result = await runner.run_once()
            print(json.dumps(result.to_dict(), indent=2))
            return 0
        await runner.run_forever(args.interval or config.interval_seconds)
    return 0


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config, args.env_file)
    except DividendRouterError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    configure_logging(config.log_level, config.log_file)

    if args.stats:
        history = CycleHistoryDB(config.history_db_path)
        try:
            history.print_statistics()
        finally:
            history.close()
        return 0

    try:
        return asyncio.run(_run(args, config))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130
    except DividendRouterError as e:
        logger.error(f"✗ {e}")
        return 1
