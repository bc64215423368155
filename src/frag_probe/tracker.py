#!/usr/bin/env python3
"""Transaction tracking for the probe.

This module issues the probe's nonce-sequenced self-transfers and reconciles
them against receipts as they show up, keeping a pending window and a
bounded confirmed window keyed by sequence number.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING

from web3 import Web3
from web3.types import TxParams, Wei

from .models import TransactionRecord

if TYPE_CHECKING:
    from .utils.ledger_client import LedgerClient

# Get logger for this module
logger = logging.getLogger(__name__)

# Fixed shape of the probe transaction
TX_VALUE_WEI = Web3.to_wei(1, "gwei")
TX_GAS_PRICE_WEI = Web3.to_wei(0.1, "gwei")
TX_GAS_LIMIT = 21_000

DEFAULT_CONFIRMED_WINDOW = 100


def now_ms() -> int:
    return int(time.time() * 1000)


class TransactionTracker:
    """Owns the pending and confirmed transaction windows.

    This class is responsible for:
    - Building, signing and broadcasting the fixed probe transaction
    - Recording every issued transaction as pending under its sequence number
    - Moving pending transactions to the confirmed window once a receipt exists
    - Keeping the confirmed window bounded to the most recent sequence numbers
    - Maintaining metrics on issued and confirmed transactions

    A sequence number lives in exactly one of ``pending`` and ``confirmed``
    from the moment it is issued until it is evicted from the confirmed window.
    """

    def __init__(
        self,
        ledger_client: "LedgerClient",
        chain_id: int = 0,
        confirmed_window: int = DEFAULT_CONFIRMED_WINDOW,
        clock: Callable[[], int] = now_ms
    ) -> None:
        """Initialize the TransactionTracker.

        Args:
            ledger_client: Signing client for the probe wallet
            chain_id: Chain ID stamped on issued transactions
            confirmed_window: Maximum number of confirmed records kept
            clock: Millisecond wall clock used for send and receipt times
        """
        if confirmed_window <= 0:
            raise ValueError(f"Confirmed window must be positive, got {confirmed_window}")

        self.ledger_client = ledger_client
        self.chain_id = chain_id
        self.confirmed_window = confirmed_window
        self.clock = clock

        self.pending: dict[int, TransactionRecord] = {}
        self.confirmed: dict[int, TransactionRecord] = {}

        # Reentrancy guard for reconcile sweeps
        self._sweeping = False

        # Metrics tracking
        self.transactions_issued = 0
        self.transactions_confirmed = 0
        self.lookup_failures = 0
        self.records_evicted = 0
        self.sweeps_skipped = 0

    @property
    def is_sweeping(self) -> bool:
        return self._sweeping

    def build_transaction(self, sequence_number: int) -> TxParams:
        """Build the fixed self-transfer for ``sequence_number``."""
        address = self.ledger_client.address
        if address is None:
            raise ValueError("Ledger client has no account to send from")

        return {
            "chainId": self.chain_id,
            "nonce": sequence_number,
            "gas": TX_GAS_LIMIT,
            "to": address,
            "value": Wei(TX_VALUE_WEI),
            "gasPrice": Wei(TX_GAS_PRICE_WEI),
        }

    async def issue(self, sequence_number: int) -> TransactionRecord:
        """Sign and broadcast the probe transaction for ``sequence_number``.

        The send time is taken when the broadcast is invoked, not when it
        returns. The caller advances the sequence counter.

        Args:
            sequence_number: Nonce to send with

        Returns:
            The pending record

        Raises:
            ValueError: If the sequence number is already tracked
            Exception: Any signing or broadcast failure from the ledger client
        """
        if sequence_number in self.pending or sequence_number in self.confirmed:
            raise ValueError(f"Sequence number {sequence_number} was already issued")

        logger.info(f"Sending transaction: {sequence_number}")

        tx = self.build_transaction(sequence_number)
        signed = self.ledger_client.sign(tx)
        sent_at_ms = self.clock()
        handle = await self.ledger_client.broadcast(signed)

        record = TransactionRecord(
            sequence_number=sequence_number,
            handle=handle,
            sent_at_ms=sent_at_ms,
        )
        self.pending[sequence_number] = record
        self.transactions_issued += 1

        logger.debug(f"Broadcast {record}")
        return record

    async def reconcile(self, ledger_client: "LedgerClient | None" = None) -> int:
        """Sweep every pending record for a receipt.

        Each lookup is independent: a failed lookup is logged and leaves that
        record pending for the next sweep. A sweep requested while another is
        still running is skipped.

        Args:
            ledger_client: Client to query (defaults to the tracker's own)

        Returns:
            Number of records confirmed by this sweep
        """
        if self._sweeping:
            self.sweeps_skipped += 1
            logger.debug("Reconcile sweep already in progress, skipping")
            return 0

        self._sweeping = True
        try:
            client = ledger_client or self.ledger_client
            snapshot = list(self.pending.values())
            if not snapshot:
                return 0

            results = await asyncio.gather(
                *(self._check_receipt(client, record) for record in snapshot)
            )
            confirmed = sum(results)

            evicted = self._trim_confirmed()
            if confirmed or evicted:
                logger.debug(
                    f"Sweep confirmed {confirmed} of {len(snapshot)} pending, "
                    f"evicted {evicted}"
                )
            return confirmed
        finally:
            self._sweeping = False

    async def _check_receipt(self, client: "LedgerClient", record: TransactionRecord) -> bool:
        """Look up one record's receipt and confirm it if present."""
        try:
            receipt = await client.get_receipt(record.handle)
        except Exception as e:
            self.lookup_failures += 1
            logger.warning(
                f"Receipt lookup failed for transaction {record.sequence_number} "
                f"({record.handle}): {e}"
            )
            return False

        if receipt is None:
            return False

        observed_at_ms = self.clock()

        # The record may have been removed while the lookup was in flight
        current = self.pending.pop(record.sequence_number, None)
        if current is None:
            return False

        self.confirmed[record.sequence_number] = current.confirm(
            block_number=receipt["blockNumber"],
            observed_at_ms=observed_at_ms,
        )
        self.transactions_confirmed += 1
        return True

    def _trim_confirmed(self) -> int:
        """Keep only the newest records in the confirmed window.

        Returns:
            Number of records evicted
        """
        if len(self.confirmed) <= self.confirmed_window:
            return 0

        keep = sorted(self.confirmed, reverse=True)[:self.confirmed_window]
        evicted = len(self.confirmed) - len(keep)
        self.confirmed = {seq: self.confirmed[seq] for seq in keep}
        self.records_evicted += evicted
        return evicted

    def records(self) -> list[TransactionRecord]:
        """All tracked records, newest sequence number first."""
        merged = {**self.confirmed, **self.pending}
        return [merged[seq] for seq in sorted(merged, reverse=True)]

    def get_metrics(self) -> dict[str, int]:
        """Get current tracking metrics.

        Returns:
            Dictionary of metric names to values
        """
        return {
            "transactions_issued": self.transactions_issued,
            "transactions_confirmed": self.transactions_confirmed,
            "lookup_failures": self.lookup_failures,
            "records_evicted": self.records_evicted,
            "sweeps_skipped": self.sweeps_skipped,
            "pending": len(self.pending),
            "confirmed": len(self.confirmed),
        }

    def log_metrics(self) -> None:
        """Log current tracking metrics."""
        metrics = self.get_metrics()
        logger.info(
            f"TransactionTracker Metrics: "
            f"Issued={metrics['transactions_issued']}, "
            f"Confirmed={metrics['transactions_confirmed']}, "
            f"LookupFailures={metrics['lookup_failures']}, "
            f"Evicted={metrics['records_evicted']}, "
            f"Window={metrics['confirmed']}/{self.confirmed_window}, "
            f"Pending={metrics['pending']}"
        )
