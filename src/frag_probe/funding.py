#!/usr/bin/env python3
"""Airdrop funding for probe wallets.

This module sends a fixed amount from the funding account to freshly
created probe wallets. It backs the airdrop HTTP endpoint.
"""

import asyncio
import logging
from typing import TYPE_CHECKING

from web3 import Web3
from web3.types import TxParams, Wei

from .exceptions import FundingError

if TYPE_CHECKING:
    from .utils.ledger_client import LedgerClient

logger = logging.getLogger(__name__)

DEFAULT_AIRDROP_WEI = Web3.to_wei(0.01, "ether")
TRANSFER_GAS_LIMIT = 21_000


class FundingService:
    """Sends airdrops from the funding account."""

    def __init__(
        self,
        ledger_client: "LedgerClient",
        amount_wei: int = DEFAULT_AIRDROP_WEI
    ) -> None:
        """
        Initialize the FundingService.

        Args:
            ledger_client: Signing client for the funding account
            amount_wei: Amount sent per airdrop
        """
        if ledger_client.address is None:
            raise ValueError("Funding requires a ledger client with an account")

        self.ledger_client: LedgerClient = ledger_client
        self.amount_wei: int = amount_wei

        # Nonce reads and broadcasts must not interleave between airdrops
        self._send_lock = asyncio.Lock()

        logger.info(f"FundingService initialized for {ledger_client.address}")
        logger.info(f"  RPC URL: {ledger_client.rpc_url}")
        logger.info(f"  Amount: {Web3.from_wei(amount_wei, 'ether')} ETH")

    async def airdrop(self, address: str) -> str:
        """
        Send the airdrop amount to ``address``.

        Args:
            address: Recipient address

        Returns:
            Hash of the funding transaction (0x-prefixed)

        Raises:
            ValueError: If the address is not a valid address
            FundingError: If the network is unreachable or the send fails
        """
        if not Web3.is_address(address):
            raise ValueError(f"Invalid address: {address}")

        logger.info(f"Airdrop request received: {address}")
        logger.info(f"Connecting to RPC URL: {self.ledger_client.rpc_url}")

        # Test connection before proceeding
        try:
            block_number = await self.ledger_client.get_block_height()
            logger.info(f"Connected to RPC, current block: {block_number}")
        except Exception as e:
            logger.error(f"Failed to connect to RPC: {e}")
            raise FundingError("Failed to connect to blockchain network") from e

        try:
            async with self._send_lock:
                sender = self.ledger_client.address
                tx: TxParams = {
                    "chainId": await self.ledger_client.get_network_id(),
                    "nonce": await self.ledger_client.get_transaction_count(sender, "pending"),
                    "gas": TRANSFER_GAS_LIMIT,
                    "gasPrice": Wei(await self.ledger_client.get_gas_price()),
                    "to": Web3.to_checksum_address(address),
                    "value": Wei(self.amount_wei),
                }
                tx_hash = await self.ledger_client.broadcast(self.ledger_client.sign(tx))
        except Exception as e:
            logger.error(f"Airdrop error: {e}")
            raise FundingError(f"Airdrop failed: {e}") from e

        logger.info(f"Airdrop transaction sent: {tx_hash}")
        return tx_hash
