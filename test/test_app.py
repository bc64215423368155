#!/usr/bin/env python3
"""Tests for the HTTP API."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from src.frag_probe.app import create_app
from src.frag_probe.config import ChainConfig, FundingConfig, ProbeConfig, RegistryConfig
from src.frag_probe.exceptions import FundingError, WalletNotReadyError
from src.frag_probe.models import FutureAssignment, GatewayInfo, TransactionRecord
from src.frag_probe.registry_store import RegistryStore

GW_A = "https://a.gateway.test"
GW_B = "https://b.gateway.test"
GW_C = "https://c.gateway.test"
RECIPIENT = "0x1234567890123456789012345678901234567890"


@pytest.fixture
def config():
    return ProbeConfig(
        chain=ChainConfig(rpc_url="http://localhost:8545"),
        funding=FundingConfig(
            rpc_url="http://localhost:8545",
            funding_url="http://127.0.0.1:8000/api/airdrop"
        ),
        registry=RegistryConfig(rpc_url="http://localhost:9545")
    )


@pytest.fixture
def registry_store():
    """Create a RegistryStore holding a fixed snapshot."""
    client = MagicMock()
    client.url = "http://localhost:9545"
    store = RegistryStore(client=client)
    store.last_updated_ms = 1_700_000_000_000
    store.gateways = [GatewayInfo(GW_A, "0xa"), GatewayInfo(GW_B, "0xb"), GatewayInfo(GW_C, "0xc")]
    store.future_gateways = [
        FutureAssignment(GW_A, "0xa", 100),
        FutureAssignment(GW_A, "0xa", 101),
        FutureAssignment(GW_B, "0xb", 102),
    ]
    return store


@pytest.fixture
def session():
    """Create a mock ProbeSession."""
    mock = MagicMock()
    mock.current_block = 100
    mock.next_nonce = 0
    mock.rpc_url = "http://localhost:8545"
    mock.chain_id = 1337
    mock.auto_send.enabled = False
    mock.snapshot = MagicMock(return_value={"chain_id": 1337, "transactions": []})
    mock.create_wallet = AsyncMock(return_value=RECIPIENT)
    mock.send = AsyncMock()
    mock.set_rpc_url = AsyncMock()
    return mock


@pytest.fixture
def funding():
    mock = MagicMock()
    mock.airdrop = AsyncMock(return_value="0xfunded")
    return mock


@pytest.fixture
def client(config, registry_store, session, funding):
    """TestClient without lifespan, so no pollers run."""
    app = create_app(config, registry_store=registry_store, session=session, funding=funding)
    return TestClient(app)


class TestAirdrop:
    """Tests for POST /api/airdrop."""

    def test_airdrop_success(self, client, funding):
        response = client.post("/api/airdrop", json={"address": RECIPIENT})

        assert response.status_code == 200
        assert response.json() == {"txHash": "0xfunded"}
        funding.airdrop.assert_awaited_once_with(RECIPIENT)

    def test_missing_address(self, client, funding):
        """Test that a request without an address is rejected."""
        response = client.post("/api/airdrop", json={})

        assert response.status_code == 400
        assert response.json() == {"error": "Address is required"}
        funding.airdrop.assert_not_awaited()

    def test_body_not_json(self, client):
        response = client.post("/api/airdrop", content=b"address=0x1")

        assert response.status_code == 400
        assert response.json() == {"error": "Address is required"}

    def test_invalid_address(self, client, funding):
        funding.airdrop.side_effect = ValueError("Invalid address: nope")

        response = client.post("/api/airdrop", json={"address": "nope"})

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid address: nope"}

    def test_network_unreachable(self, client, funding):
        funding.airdrop.side_effect = FundingError("Failed to connect to blockchain network")

        response = client.post("/api/airdrop", json={"address": RECIPIENT})

        assert response.status_code == 500
        assert response.json() == {"error": "Failed to connect to blockchain network"}

    def test_funding_not_configured(self, config, registry_store, session):
        """Test that airdrops fail cleanly without a funding key."""
        app = create_app(config, registry_store=registry_store, session=session)
        client = TestClient(app)

        response = client.post("/api/airdrop", json={"address": RECIPIENT})

        assert response.status_code == 500
        assert response.json()["error"].startswith("Airdrop failed")


class TestRegistryEndpoints:
    """Tests for the registry and leader views."""

    def test_registry(self, client):
        response = client.get("/api/registry")

        assert response.status_code == 200
        data = response.json()
        assert data["lastUpdated"] == 1_700_000_000_000
        assert data["gateways"][0] == {"url": GW_A, "address": "0xa", "ping": None}
        assert data["futureGateways"][2] == {"url": GW_B, "address": "0xb", "blockNumber": 102}

    def test_leader(self, client):
        """Test leader resolution at the session's current block."""
        response = client.get("/api/leader")

        data = response.json()
        assert data["current_block"] == 100
        assert data["current_leader_url"] == GW_A
        assert data["next_leader_url"] == GW_B
        assert data["remaining_blocks"] == 2
        assert [g["role"] for g in data["gateways"]] == ["leader", "next", "standby"]

    def test_leader_unknown(self, client, session):
        session.current_block = 500

        data = client.get("/api/leader").json()

        assert data["current_leader_url"] is None
        assert "leader" not in [g["role"] for g in data["gateways"]]

    def test_dashboard(self, client):
        data = client.get("/api/dashboard").json()

        assert data["chain_id"] == 1337
        assert data["leader"]["current_leader_url"] == GW_A

    def test_health(self, client):
        data = client.get("/health").json()

        assert data["status"] == "ok"
        assert data["registry"]["gateways"] == 3


class TestProbeEndpoints:
    """Tests for wallet, send, auto-send and RPC endpoints."""

    def test_create_wallet(self, client):
        response = client.post("/api/wallet")

        assert response.status_code == 200
        assert response.json() == {"address": RECIPIENT, "next_sequence_number": 0}

    def test_create_wallet_funding_failure(self, client, session):
        session.create_wallet.side_effect = FundingError("Airdrop failed: no funds")

        response = client.post("/api/wallet")

        assert response.status_code == 502
        assert response.json() == {"error": "Airdrop failed: no funds"}

    def test_create_wallet_exists(self, client, session):
        session.create_wallet.side_effect = ValueError("Wallet already exists")

        assert client.post("/api/wallet").status_code == 409

    def test_send(self, client, session):
        session.send.return_value = TransactionRecord(0, "0xabc", 1000)

        response = client.post("/api/send")

        assert response.status_code == 200
        assert response.json()["status"] == "pending"
        assert response.json()["handle"] == "0xabc"

    def test_send_without_wallet(self, client, session):
        session.send.side_effect = WalletNotReadyError("No wallet")

        assert client.post("/api/send").status_code == 409

    def test_send_broadcast_failure(self, client, session):
        session.send.side_effect = RuntimeError("nonce too low")

        response = client.post("/api/send")

        assert response.status_code == 502
        assert response.json() == {"error": "Send failed: nonce too low"}

    def test_auto_send(self, client, session):
        session.set_auto_send.side_effect = lambda enabled: setattr(session.auto_send, "enabled", enabled)

        response = client.post("/api/auto-send", json={"enabled": True})

        assert response.json() == {"enabled": True}
        session.set_auto_send.assert_called_once_with(True)

    def test_auto_send_without_funds(self, client, session):
        session.set_auto_send.side_effect = WalletNotReadyError("Auto-send needs a funded wallet")

        response = client.post("/api/auto-send", json={"enabled": True})

        assert response.status_code == 409

    def test_auto_send_bad_body(self, client):
        assert client.post("/api/auto-send", json={}).status_code == 422

    def test_update_rpc(self, client, session):
        response = client.post("/api/rpc", json={"url": "http://other.rpc:8545"})

        assert response.status_code == 200
        session.set_rpc_url.assert_awaited_once_with("http://other.rpc:8545")
