import logging

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import AsyncWeb3, Web3
from web3.exceptions import TransactionNotFound
from web3.types import TxParams, TxReceipt

logger = logging.getLogger(__name__)


class LedgerClient:
    """
    Async access to an EVM RPC endpoint for the probe.

    Can be used in two modes:
    1. Read-only mode: RPC URL only, for balances, nonces, receipts and block height
    2. Signing mode: RPC URL and a local account, additionally able to sign transactions
    """

    def __init__(self, rpc_url: str, account: LocalAccount | None = None) -> None:
        """
        Initialize the LedgerClient.

        Args:
            rpc_url: RPC URL for the network (required)
            account: Local account used for signing (optional - read-only mode without it)
        """
        if not rpc_url:
            raise ValueError("RPC URL is required")

        self.rpc_url = rpc_url
        self.account = account
        self.w3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(self.rpc_url))

    @classmethod
    def from_key(cls, rpc_url: str, secret: str) -> "LedgerClient":
        """Create a signing client from a hex private key."""
        if not secret:
            raise ValueError("Private key is required for signing transactions")
        return cls(rpc_url, Account.from_key(secret))

    @property
    def address(self) -> str | None:
        return self.account.address if self.account else None

    def with_account(self, account: LocalAccount | None) -> "LedgerClient":
        """Return a client for the same endpoint bound to ``account``."""
        return LedgerClient(self.rpc_url, account)

    async def get_network_id(self) -> int:
        return await self.w3.eth.chain_id

    async def get_block_height(self) -> int:
        return await self.w3.eth.block_number

    async def get_balance(self, address: str) -> int:
        """Balance of ``address`` in wei."""
        return await self.w3.eth.get_balance(Web3.to_checksum_address(address))

    async def get_transaction_count(self, address: str, block_identifier: str = "latest") -> int:
        """Next nonce for ``address`` as of ``block_identifier``."""
        return await self.w3.eth.get_transaction_count(
            Web3.to_checksum_address(address), block_identifier
        )

    async def get_gas_price(self) -> int:
        return await self.w3.eth.gas_price

    def sign(self, tx: TxParams) -> bytes:
        """
        Sign a transaction with the bound account.

        Args:
            tx: Fully populated transaction parameters

        Returns:
            Raw signed transaction bytes

        Raises:
            ValueError: If the client has no account
        """
        if self.account is None:
            raise ValueError("A local account is required for signing transactions")

        signed = self.account.sign_transaction(dict(tx))
        return bytes(signed.raw_transaction)

    async def broadcast(self, raw_transaction: bytes) -> str:
        """
        Broadcast a signed transaction.

        Returns:
            Transaction hash as a 0x-prefixed hex string
        """
        tx_hash = await self.w3.eth.send_raw_transaction(raw_transaction)
        return Web3.to_hex(tx_hash)

    async def get_receipt(self, handle: str) -> TxReceipt | None:
        """
        Look up the receipt for a transaction.

        Returns:
            The receipt, or None while the transaction is not yet included
        """
        try:
            return await self.w3.eth.get_transaction_receipt(handle)
        except TransactionNotFound:
            return None

    async def wait_for_confirmation(self, handle: str, timeout: float = 120) -> TxReceipt:
        """
        Wait until a transaction is included.

        Raises:
            web3.exceptions.TimeExhausted: If no receipt shows up within ``timeout``
        """
        receipt: TxReceipt = await self.w3.eth.wait_for_transaction_receipt(handle, timeout=timeout)
        logger.debug(f"Transaction {handle} confirmed in block {receipt['blockNumber']}")
        return receipt
