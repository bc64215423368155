#!/usr/bin/env python3
"""Unit tests for the ProbeSession module."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.frag_probe.config import (
    ChainConfig,
    FundingConfig,
    ProbeConfig,
    ProbeSettings,
    RegistryConfig
)
from src.frag_probe.exceptions import FundingError, WalletNotReadyError
from src.frag_probe.session import ProbeSession

WALLET_ADDRESS = "0x19E7E376E7C213B7E7e7e46cc70A5dD086DAff2A"


def make_config(**settings) -> ProbeConfig:
    return ProbeConfig(
        chain=ChainConfig(rpc_url="http://localhost:8545", explorer_url="https://explorer.test"),
        funding=FundingConfig(
            rpc_url="http://localhost:8545",
            funding_url="http://127.0.0.1:8000/api/airdrop"
        ),
        registry=RegistryConfig(rpc_url="http://localhost:9545"),
        probe=ProbeSettings(**settings)
    )


@pytest.fixture
def mock_ledger():
    """Create a mock LedgerClient; rebinding accounts returns the same mock."""
    mock = MagicMock()
    mock.address = WALLET_ADDRESS
    mock.with_account = MagicMock(return_value=mock)
    mock.get_network_id = AsyncMock(return_value=1337)
    mock.get_block_height = AsyncMock(return_value=55)
    mock.get_balance = AsyncMock(return_value=10**16)
    mock.get_transaction_count = AsyncMock(return_value=0)
    mock.wait_for_confirmation = AsyncMock(return_value={"blockNumber": 54})
    mock.get_receipt = AsyncMock(return_value=None)
    mock.sign = MagicMock(side_effect=lambda tx: f"signed-{tx['nonce']}".encode())
    mock.broadcast = AsyncMock(
        side_effect=lambda raw: f"0x{int(raw.decode().split('-')[1]):064x}"
    )
    return mock


@pytest.fixture
def ledger_factory(mock_ledger):
    return MagicMock(return_value=mock_ledger)


@pytest.fixture
def session(ledger_factory):
    """Create a ProbeSession with fast timers for testing."""
    return ProbeSession(
        make_config(reconcile_interval=0.01, auto_send_interval=0.01, block_interval=0.01),
        ledger_factory=ledger_factory
    )


def with_wallet(session, balance_wei=10**16):
    session.wallet = MagicMock(address=WALLET_ADDRESS)
    session.balance_wei = balance_wei
    return session


def mock_airdrop_response(mock_client_class, status_code=200, body=None):
    mock_client = AsyncMock()
    mock_response = MagicMock()
    mock_response.status_code = status_code
    mock_response.is_success = 200 <= status_code < 300
    mock_response.json = MagicMock(return_value=body if body is not None else {})
    mock_client.post = AsyncMock(return_value=mock_response)
    mock_client_class.return_value.__aenter__.return_value = mock_client
    return mock_client


class TestSend:
    """Tests for sending probe transactions."""

    @pytest.mark.asyncio
    async def test_send_requires_wallet(self, session):
        """Test that sending without a wallet fails."""
        with pytest.raises(WalletNotReadyError):
            await session.send()

    @pytest.mark.asyncio
    async def test_send_advances_sequence(self, session):
        """Test that each send takes the next sequence number."""
        with_wallet(session)
        session.next_nonce = 7

        first, second = await asyncio.gather(session.send(), session.send())

        assert {first.sequence_number, second.sequence_number} == {7, 8}
        assert session.next_nonce == 9
        assert set(session.tracker.pending) == {7, 8}

    @pytest.mark.asyncio
    async def test_send_failure_consumes_sequence_number(self, session, mock_ledger):
        """Test that a failed broadcast still advances the counter."""
        with_wallet(session)
        mock_ledger.broadcast.side_effect = RuntimeError("nonce too low")

        with pytest.raises(RuntimeError):
            await session.send()

        assert session.next_nonce == 1


class TestCreateWallet:
    """Tests for wallet creation and funding."""

    @pytest.mark.asyncio
    @patch('src.frag_probe.session.httpx.AsyncClient')
    async def test_create_wallet_success(self, mock_client_class, session, mock_ledger):
        """Test that a funded wallet becomes the session wallet."""
        mock_client = mock_airdrop_response(mock_client_class, body={"txHash": "0xfund"})
        mock_ledger.get_transaction_count.return_value = 3

        address = await session.create_wallet()

        assert session.wallet.address == address
        assert session.balance_wei == 10**16
        assert session.next_nonce == 3
        mock_ledger.wait_for_confirmation.assert_awaited_once_with("0xfund", timeout=120.0)
        mock_client.post.assert_called_once_with(
            "http://127.0.0.1:8000/api/airdrop",
            json={"address": address},
            timeout=30.0
        )

    @pytest.mark.asyncio
    @patch('src.frag_probe.session.httpx.AsyncClient')
    async def test_funding_rejected(self, mock_client_class, session):
        """Test that a rejected airdrop discards the wallet."""
        mock_airdrop_response(mock_client_class, status_code=500, body={"error": "Airdrop failed: no funds"})

        with pytest.raises(FundingError, match="Airdrop failed: no funds"):
            await session.create_wallet()

        assert session.wallet is None
        assert session.balance_wei == 0

    @pytest.mark.asyncio
    @patch('src.frag_probe.session.httpx.AsyncClient')
    async def test_funding_rejected_without_body(self, mock_client_class, session):
        mock_airdrop_response(mock_client_class, status_code=503)

        with pytest.raises(FundingError, match="status 503"):
            await session.create_wallet()

    @pytest.mark.asyncio
    @patch('src.frag_probe.session.httpx.AsyncClient')
    async def test_confirmation_failure(self, mock_client_class, session, mock_ledger):
        """Test that a funding transaction that never confirms discards the wallet."""
        mock_airdrop_response(mock_client_class, body={"txHash": "0xfund"})
        mock_ledger.wait_for_confirmation.side_effect = TimeoutError("not mined")

        with pytest.raises(FundingError, match="Airdrop failed: not mined"):
            await session.create_wallet()

        assert session.wallet is None
        mock_ledger.with_account.assert_called_with(None)

    @pytest.mark.asyncio
    async def test_create_wallet_twice(self, session):
        """Test that an existing wallet is not replaced."""
        with_wallet(session)

        with pytest.raises(ValueError, match="already exists"):
            await session.create_wallet()


class TestAutoSend:
    """Tests for auto-send control."""

    def test_enable_requires_funded_wallet(self, session):
        """Test that auto-send cannot start without funds."""
        with pytest.raises(WalletNotReadyError):
            session.set_auto_send(True)

        with_wallet(session, balance_wei=0)
        with pytest.raises(WalletNotReadyError):
            session.set_auto_send(True)

    @pytest.mark.asyncio
    async def test_auto_send_streams_transactions(self, session):
        """Test that enabled auto-send issues transactions."""
        with_wallet(session)

        session.set_auto_send(True)
        await asyncio.sleep(0.05)
        session.set_auto_send(False)
        await asyncio.sleep(0.01)

        assert session.next_nonce >= 2
        assert len(session.tracker.pending) == session.next_nonce

    @pytest.mark.asyncio
    async def test_auto_send_failure_disables(self, session, mock_ledger):
        """Test that a failed auto-send turns itself off and reports the error."""
        with_wallet(session)
        mock_ledger.broadcast.side_effect = RuntimeError("insufficient funds")

        session.set_auto_send(True)
        await asyncio.sleep(0.05)

        assert not session.auto_send.enabled
        assert session.last_error == "Auto-send failed: insufficient funds"


class TestLifecycle:
    """Tests for the session pollers."""

    @pytest.mark.asyncio
    async def test_start_polls_and_reconciles(self, session, mock_ledger):
        """Test that a running session refreshes state and confirms transactions."""
        with_wallet(session)
        await session.send()
        mock_ledger.get_receipt.return_value = {"blockNumber": 56}

        await session.start()
        await asyncio.sleep(0.1)
        await session.stop()

        assert session.chain_id == 1337
        assert session.tracker.chain_id == 1337
        assert session.current_block == 55
        assert 0 in session.tracker.confirmed
        assert session.tracker.pending == {}
        assert not session.running

    @pytest.mark.asyncio
    async def test_start_survives_unreachable_rpc(self, session, mock_ledger):
        """Test that poll failures are logged and do not stop the session."""
        mock_ledger.get_network_id.side_effect = ConnectionError("rpc down")
        mock_ledger.get_block_height.side_effect = ConnectionError("rpc down")

        await session.start()
        await asyncio.sleep(0.03)

        assert session.running
        assert all(not task.done() for task in session._tasks.values())
        await session.stop()

    @pytest.mark.asyncio
    async def test_stop_lets_in_flight_sweep_finish(self, session, mock_ledger):
        """Test that a receipt sweep running at shutdown completes."""
        with_wallet(session)
        await session.send()
        release = asyncio.Event()

        async def slow_receipt(handle):
            await release.wait()
            return {"blockNumber": 56}

        mock_ledger.get_receipt.side_effect = slow_receipt

        await session.start()
        await asyncio.sleep(0.03)
        assert session.tracker.is_sweeping

        asyncio.get_running_loop().call_later(0.02, release.set)
        await session.stop()

        assert 0 in session.tracker.confirmed
        assert not session._sweeps

    @pytest.mark.asyncio
    async def test_stop_cancels_work_past_shutdown_timeout(self, ledger_factory, mock_ledger):
        """Test that sends still running after the shutdown timeout are cancelled."""
        session = ProbeSession(
            make_config(auto_send_interval=0.01, shutdown_timeout=0.02),
            ledger_factory=ledger_factory
        )
        with_wallet(session)
        never = asyncio.Event()

        async def hung_broadcast(raw):
            await never.wait()

        mock_ledger.broadcast.side_effect = hung_broadcast

        session.set_auto_send(True)
        await asyncio.sleep(0.03)
        in_flight = session.auto_send.in_flight_tasks
        assert in_flight

        await session.stop()

        assert all(task.cancelled() for task in in_flight)
        assert session.auto_send.in_flight == 0

    @pytest.mark.asyncio
    async def test_set_rpc_url_keeps_wallet(self, session, ledger_factory, mock_ledger):
        """Test that switching RPC endpoints rebinds the wallet and chain ID."""
        with_wallet(session)
        mock_ledger.get_network_id.return_value = 42

        await session.set_rpc_url("http://other.rpc:8545")

        ledger_factory.assert_called_with("http://other.rpc:8545", session.wallet)
        assert session.rpc_url == "http://other.rpc:8545"
        assert session.chain_id == 42
        assert session.tracker.ledger_client is session.ledger


class TestSnapshot:
    """Tests for the dashboard snapshot."""

    def test_snapshot_without_wallet(self, session):
        snapshot = session.snapshot()

        assert snapshot["wallet"] is None
        assert snapshot["auto_send"] is False
        assert snapshot["transactions"] == []
        assert snapshot["stats"] == {
            "total_count": 0,
            "confirmed_count": 0,
            "median_latency_ms": 0,
            "average_latency_ms": 0,
        }

    @pytest.mark.asyncio
    async def test_snapshot_with_transactions(self, session):
        """Test wallet details and explorer links in the snapshot."""
        with_wallet(session)
        await session.send()

        snapshot = session.snapshot()

        assert snapshot["wallet"]["address"] == WALLET_ADDRESS
        assert snapshot["wallet"]["balance_eth"] == "0.01"
        assert snapshot["wallet"]["funded"] is True
        assert snapshot["next_sequence_number"] == 1
        assert snapshot["stats"]["total_count"] == 1

        tx = snapshot["transactions"][0]
        assert tx["status"] == "pending"
        assert tx["explorer_url"] == f"https://explorer.test/tx/{tx['handle']}"
