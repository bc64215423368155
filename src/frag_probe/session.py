"""
Probe session.

This module holds the dashboard's live state: the probe wallet, the
transaction tracker, the auto-send driver and the pollers that keep block
height, balance and RPC round trip current.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any, Optional

import httpx
from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import Web3

from .auto_send import AutoSendDriver
from .config import ProbeConfig
from .exceptions import FundingError, WalletNotReadyError
from .models import TransactionRecord
from .stats import compute_stats
from .tracker import TransactionTracker
from .utils.ledger_client import LedgerClient

logger = logging.getLogger(__name__)


class ProbeSession:
    """
    Live probe state shared by the HTTP API.

    The session owns the sequence counter: ``send()`` takes the next
    number and advances the counter before the broadcast is awaited, so
    overlapping sends never share a nonce.
    """

    def __init__(
        self,
        config: ProbeConfig,
        ledger_factory: Callable[..., LedgerClient] = LedgerClient
    ):
        """
        Initialize the probe session.

        Args:
            config: Probe configuration
            ledger_factory: Builds a ledger client from an RPC URL and optional account
        """
        self.config = config
        self.settings = config.probe
        self.ledger_factory = ledger_factory

        self.rpc_url = config.chain.rpc_url
        self.ledger: LedgerClient = ledger_factory(self.rpc_url, None)
        self.wallet: Optional[LocalAccount] = None

        self.chain_id = 0
        self.current_block = 0
        self.balance_wei = 0
        self.rpc_ping_ms = 0
        self.next_nonce = 0
        self.last_error: Optional[str] = None

        self.tracker = TransactionTracker(
            ledger_client=self.ledger,
            confirmed_window=self.settings.confirmed_window
        )
        self.auto_send = AutoSendDriver(
            send=self.send,
            interval=self.settings.auto_send_interval,
            on_error=self._on_auto_send_error
        )

        self.running = False
        self._tasks: dict[str, asyncio.Task] = {}
        self._sweeps: set[asyncio.Task] = set()

    def _bind_ledger(self, ledger: LedgerClient) -> None:
        self.ledger = ledger
        self.tracker.ledger_client = ledger

    # Pollers

    async def refresh_chain_id(self) -> None:
        self.chain_id = await self.ledger.get_network_id()
        self.tracker.chain_id = self.chain_id
        logger.info(f"Connected to chain {self.chain_id} via {self.rpc_url}")

    async def update_block_number(self) -> None:
        self.current_block = await self.ledger.get_block_height()

    async def update_balance(self) -> None:
        if self.wallet is None:
            return
        self.balance_wei = await self.ledger.get_balance(self.wallet.address)

    async def measure_rpc_ping(self) -> None:
        start = time.monotonic()
        await self.ledger.get_network_id()
        self.rpc_ping_ms = int((time.monotonic() - start) * 1000)

    def reconcile_tick(self) -> None:
        """Start a receipt sweep if anything is pending.

        Overlapping sweeps are rejected by the tracker itself.
        """
        if not self.tracker.pending:
            return
        task = asyncio.create_task(self.tracker.reconcile(self.ledger))
        self._sweeps.add(task)
        task.add_done_callback(self._sweeps.discard)

    async def _poll(self, name: str, interval: float, fn: Callable[[], Awaitable[None]]) -> None:
        while self.running:
            try:
                await fn()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"{name} failed: {e}")
            await asyncio.sleep(interval)

    async def _reconcile_loop(self) -> None:
        while self.running:
            await asyncio.sleep(self.settings.reconcile_interval)
            self.reconcile_tick()

    # Lifecycle

    async def start(self) -> None:
        """Start the periodic activities."""
        if self.running:
            logger.warning("Probe session already running")
            return

        self.running = True
        logger.info("Probe session starting...")

        try:
            await self.refresh_chain_id()
        except Exception as e:
            logger.error(f"Failed to fetch chain ID: {e}")

        self._tasks = {
            "reconcile": asyncio.create_task(self._reconcile_loop()),
            "block": asyncio.create_task(
                self._poll("Block number update", self.settings.block_interval, self.update_block_number)
            ),
            "balance": asyncio.create_task(
                self._poll("Balance update", self.settings.balance_interval, self.update_balance)
            ),
            "ping": asyncio.create_task(
                self._poll("Ping measurement", self.settings.rpc_ping_interval, self.measure_rpc_ping)
            ),
        }

    async def stop(self) -> None:
        """Stop the periodic activities.

        Sends and sweeps already in flight get ``shutdown_timeout`` seconds
        to complete and are cancelled after that.
        """
        self.running = False
        self.auto_send.disable()

        for name, task in self._tasks.items():
            if not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass  # Expected when cancelling
        self._tasks = {}

        await self._drain_in_flight()

        self.tracker.log_metrics()
        logger.info("Probe session stopped")

    async def _drain_in_flight(self) -> None:
        leftover = [
            task for task in (*self._sweeps, *self.auto_send.in_flight_tasks)
            if not task.done()
        ]
        if not leftover:
            return

        logger.info(f"Waiting for {len(leftover)} in-flight sends and sweeps")
        _, still_running = await asyncio.wait(leftover, timeout=self.settings.shutdown_timeout)
        if still_running:
            logger.warning(f"Cancelling {len(still_running)} tasks still running at shutdown")
            for task in still_running:
                task.cancel()
            await asyncio.gather(*still_running, return_exceptions=True)

    # Operations

    async def _request_airdrop(self, address: str) -> str:
        async with httpx.AsyncClient() as client:
            response = await client.post(
                self.config.funding.funding_url,
                json={"address": address},
                timeout=self.settings.request_timeout
            )

        try:
            body: dict[str, Any] = response.json()
        except ValueError:
            body = {}

        if not response.is_success:
            raise FundingError(body.get("error") or f"Airdrop failed with status {response.status_code}")
        if not (tx_hash := body.get("txHash")):
            raise FundingError("Airdrop response did not include a transaction hash")
        return tx_hash

    async def create_wallet(self) -> str:
        """
        Create a random wallet and fund it through the airdrop endpoint.

        The wallet is discarded if funding fails, so the operator can retry
        from scratch.

        Returns:
            The funded wallet address

        Raises:
            ValueError: If a wallet already exists
            FundingError: If the airdrop or its confirmation fails
        """
        if self.wallet is not None:
            raise ValueError(f"Wallet {self.wallet.address} already exists")

        account: LocalAccount = Account.create()
        self.wallet = account
        self._bind_ledger(self.ledger.with_account(account))
        logger.info(f"Created wallet {account.address}, requesting airdrop")

        try:
            tx_hash = await self._request_airdrop(account.address)

            # Wait for the transaction to be mined
            await self.ledger.wait_for_confirmation(tx_hash, timeout=self.settings.confirmation_timeout)

            self.balance_wei = await self.ledger.get_balance(account.address)
            self.next_nonce = await self.ledger.get_transaction_count(account.address)
            logger.info(f"Current nonce: {self.next_nonce}")
        except Exception as e:
            logger.error(f"Airdrop failed: {e}")
            self._discard_wallet()
            if isinstance(e, FundingError):
                raise
            raise FundingError(f"Airdrop failed: {e}") from e

        return account.address

    def _discard_wallet(self) -> None:
        self.auto_send.disable()
        self.wallet = None
        self.balance_wei = 0
        self._bind_ledger(self.ledger.with_account(None))

    async def send(self) -> TransactionRecord:
        """
        Send one probe transaction with the next sequence number.

        Raises:
            WalletNotReadyError: If no wallet exists
        """
        if self.wallet is None:
            raise WalletNotReadyError("No wallet; request an airdrop first")

        sequence_number = self.next_nonce
        self.next_nonce += 1
        return await self.tracker.issue(sequence_number)

    def set_auto_send(self, enabled: bool) -> None:
        """
        Enable or disable auto-send.

        Raises:
            WalletNotReadyError: When enabling without a funded wallet
        """
        if not enabled:
            self.auto_send.disable()
            return

        if self.wallet is None or self.balance_wei == 0:
            raise WalletNotReadyError("Auto-send needs a funded wallet")
        self.last_error = None
        self.auto_send.enable()

    def _on_auto_send_error(self, error: Exception) -> None:
        self.last_error = f"Auto-send failed: {error}"

    async def set_rpc_url(self, rpc_url: str) -> None:
        """Point the session at a different RPC endpoint, keeping the wallet."""
        self._bind_ledger(self.ledger_factory(rpc_url, self.wallet))
        self.rpc_url = rpc_url
        logger.info(f"RPC URL updated to: {rpc_url}")

        try:
            await self.refresh_chain_id()
        except Exception as e:
            logger.error(f"Failed to fetch chain ID from {rpc_url}: {e}")

    # Views

    def _transaction_view(self, record: TransactionRecord) -> dict[str, Any]:
        view = record.to_dict()
        if self.config.chain.explorer_url:
            view["explorer_url"] = f"{self.config.chain.explorer_url}/tx/{record.handle}"
        return view

    def snapshot(self) -> dict[str, Any]:
        """Dashboard view of the session."""
        stats = compute_stats(
            self.tracker.confirmed,
            len(self.tracker.pending),
            sample_size=self.settings.stats_window
        )

        wallet = None
        if self.wallet is not None:
            wallet = {
                "address": self.wallet.address,
                "balance_wei": self.balance_wei,
                "balance_eth": str(Web3.from_wei(self.balance_wei, "ether")),
                "funded": self.balance_wei > 0,
            }

        return {
            "rpc_url": self.rpc_url,
            "chain_id": self.chain_id,
            "current_block": self.current_block,
            "rpc_ping_ms": self.rpc_ping_ms,
            "wallet": wallet,
            "auto_send": self.auto_send.enabled,
            "next_sequence_number": self.next_nonce,
            "last_error": self.last_error,
            "stats": stats.to_dict(),
            "transactions": [self._transaction_view(r) for r in self.tracker.records()],
        }
