#!/usr/bin/env python3
"""Configuration management for frag-probe.

This module provides type-safe configuration dataclasses with validation
for the probe service. Configuration is loaded from environment variables
with sensible defaults where appropriate.
"""

import logging
import os
from dataclasses import dataclass, field
from urllib.parse import urlparse

from web3 import Web3

# Get logger for this module
logger = logging.getLogger(__name__)


def _validate_url(url: str, name: str, schemes: tuple[str, ...] = ('http', 'https')) -> None:
    parsed = urlparse(url)
    if parsed.scheme not in schemes:
        raise ValueError(
            f"Invalid {name} scheme: {parsed.scheme}. "
            f"Expected {', '.join(schemes)}"
        )


@dataclass(frozen=True, slots=True)
class ChainConfig:
    """Configuration for the probed chain.

    Attributes:
        rpc_url: HTTP(S) RPC endpoint transactions are sent to
        explorer_url: Block explorer base URL for transaction links (optional)
    """

    rpc_url: str
    explorer_url: str | None = None

    def __post_init__(self) -> None:
        """Validate chain configuration."""
        if not self.rpc_url:
            raise ValueError("RPC URL is required (RPC_URL)")
        _validate_url(self.rpc_url, "RPC URL")

        if self.explorer_url:
            _validate_url(self.explorer_url, "explorer URL")
            object.__setattr__(self, 'explorer_url', self.explorer_url.rstrip('/'))


@dataclass(frozen=True, slots=True)
class FundingConfig:
    """Configuration for the airdrop endpoint and its client.

    Attributes:
        rpc_url: RPC endpoint used to send airdrops
        funding_url: Airdrop endpoint the probe session calls
        private_key: Funding account key; airdrops are disabled without it
        amount_wei: Amount sent per airdrop
    """

    rpc_url: str
    funding_url: str
    private_key: str | None = None
    amount_wei: int = Web3.to_wei(0.01, "ether")

    def __post_init__(self) -> None:
        """Validate funding configuration."""
        _validate_url(self.rpc_url, "funding RPC URL")
        _validate_url(self.funding_url, "funding URL")

        if self.amount_wei <= 0:
            raise ValueError(f"Airdrop amount must be positive, got {self.amount_wei}")

        if self.private_key:
            # Basic private key validation (should be 64 hex chars, optionally with 0x prefix)
            key = self.private_key
            if key.startswith('0x'):
                key = key[2:]

            if len(key) != 64:
                raise ValueError(
                    f"Invalid private key length. Expected 64 hex characters, got {len(key)}"
                )

            try:
                int(key, 16)
            except ValueError:
                raise ValueError(
                    "Invalid private key format. Must be hexadecimal"
                ) from None


@dataclass(frozen=True, slots=True)
class RegistryConfig:
    """Configuration for the gateway registry poller."""

    rpc_url: str
    poll_interval: float = 20.0  # seconds between registry polls
    ping_interval: float = 1.0  # seconds between gateway pings
    lookahead_slots: int = 60  # future blocks fetched per poll
    ping_samples: int = 10  # rolling ping window per gateway

    def __post_init__(self) -> None:
        """Validate registry configuration."""
        if not self.rpc_url:
            raise ValueError("Registry RPC URL is required (REGISTRY_RPC_URL)")
        _validate_url(self.rpc_url, "registry RPC URL")

        if self.poll_interval <= 0:
            raise ValueError(f"Registry poll interval must be positive, got {self.poll_interval}")
        if self.ping_interval <= 0:
            raise ValueError(f"Gateway ping interval must be positive, got {self.ping_interval}")
        if not 0 < self.lookahead_slots <= 1000:
            raise ValueError(f"Lookahead slots must be between 1 and 1000, got {self.lookahead_slots}")
        if self.ping_samples <= 0:
            raise ValueError(f"Ping samples must be positive, got {self.ping_samples}")


@dataclass(frozen=True, slots=True)
class ProbeSettings:
    """Timing and window settings for the probe session."""
    # Sensible defaults for probe operations
    reconcile_interval: float = 0.02  # seconds between receipt sweeps
    auto_send_interval: float = 0.15  # seconds between auto-sent transactions
    balance_interval: float = 1.0  # seconds between balance refreshes
    block_interval: float = 1.0  # seconds between block height refreshes
    rpc_ping_interval: float = 0.5  # seconds between RPC round-trip samples
    confirmed_window: int = 100  # confirmed transactions kept
    stats_window: int = 50  # confirmed transactions in latency figures
    request_timeout: float = 30.0  # HTTP request timeout in seconds
    confirmation_timeout: float = 120.0  # seconds to wait for the airdrop
    shutdown_timeout: float = 5.0  # seconds in-flight work may run on stop

    def __post_init__(self) -> None:
        """Validate probe settings."""
        for name in (
            'reconcile_interval', 'auto_send_interval', 'balance_interval',
            'block_interval', 'rpc_ping_interval', 'request_timeout',
            'confirmation_timeout', 'shutdown_timeout'
        ):
            if (value := getattr(self, name)) <= 0:
                raise ValueError(f"{name} must be positive, got {value}")

        if self.confirmed_window <= 0:
            raise ValueError(f"Confirmed window must be positive, got {self.confirmed_window}")
        if not 0 < self.stats_window <= self.confirmed_window:
            raise ValueError(
                f"Stats window must be between 1 and the confirmed window "
                f"({self.confirmed_window}), got {self.stats_window}"
            )


@dataclass(frozen=True, slots=True)
class ServerConfig:
    """HTTP bind settings."""

    host: str = "127.0.0.1"
    port: int = 8000

    def __post_init__(self) -> None:
        if not 0 < self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}")

    @property
    def local_host(self) -> str:
        """Address this process can reach its own server on."""
        if self.host in ("0.0.0.0", ""):
            return "127.0.0.1"
        if self.host == "::":
            return "[::1]"
        if ":" in self.host:
            return f"[{self.host}]"
        return self.host


@dataclass(frozen=True, slots=True)
class ProbeConfig:
    """Main configuration for frag-probe.

    Attributes:
        chain: Probed chain settings
        funding: Airdrop settings
        registry: Gateway registry settings
        probe: Session timing and window settings
        server: HTTP bind settings
    """

    chain: ChainConfig
    funding: FundingConfig
    registry: RegistryConfig
    probe: ProbeSettings = field(default_factory=ProbeSettings)
    server: ServerConfig = field(default_factory=ServerConfig)

    @classmethod
    def from_env(cls, host: str | None = None, port: int | None = None) -> "ProbeConfig":
        """Load configuration from environment variables.

        Args:
            host: Bind host overriding HOST
            port: Bind port overriding PORT

        Returns:
            ProbeConfig instance with loaded values

        Raises:
            ValueError: If required environment variables are missing or invalid
        """
        rpc_url = os.environ.get("RPC_URL", "")
        if not rpc_url:
            raise ValueError(
                "RPC_URL environment variable is required. "
                "This is the RPC endpoint probe transactions are sent to."
            )

        chain_config = ChainConfig(
            rpc_url=rpc_url,
            explorer_url=os.environ.get("EXPLORER_URL") or None
        )

        server_config = ServerConfig(
            host=host or os.environ.get("HOST", "127.0.0.1"),
            port=port or int(os.environ.get("PORT", "8000"))
        )

        funding_config = FundingConfig(
            rpc_url=os.environ.get("FUNDING_RPC_URL") or rpc_url,
            funding_url=os.environ.get("FUNDING_URL")
            or f"http://{server_config.local_host}:{server_config.port}/api/airdrop",
            private_key=os.environ.get("FUNDING_PRIVATE_KEY") or None
        )

        registry_url = os.environ.get("REGISTRY_RPC_URL", "")
        if not registry_url:
            raise ValueError(
                "REGISTRY_RPC_URL environment variable is required. "
                "This is the gateway registry JSON-RPC endpoint."
            )

        registry_config = RegistryConfig(
            rpc_url=registry_url,
            poll_interval=float(os.environ.get("REGISTRY_POLL_INTERVAL", "20")),
            ping_interval=float(os.environ.get("GATEWAY_PING_INTERVAL", "1"))
        )

        probe_settings = ProbeSettings(
            reconcile_interval=float(os.environ.get("RECONCILE_INTERVAL", "0.02")),
            auto_send_interval=float(os.environ.get("AUTO_SEND_INTERVAL", "0.15")),
            request_timeout=float(os.environ.get("REQUEST_TIMEOUT", "30"))
        )

        return cls(
            chain=chain_config,
            funding=funding_config,
            registry=registry_config,
            probe=probe_settings,
            server=server_config
        )

    def log_config(self) -> None:
        """Log the configuration in a readable format for debugging."""
        logger.info("=" * 60)
        logger.info("frag-probe Configuration")
        logger.info("=" * 60)

        logger.info("Chain:")
        logger.info(f"  RPC URL: {self.chain.rpc_url}")
        logger.info(f"  Explorer: {self.chain.explorer_url or '[NOT SET]'}")

        logger.info("Funding:")
        logger.info(f"  RPC URL: {self.funding.rpc_url}")
        logger.info(f"  Airdrop endpoint: {self.funding.funding_url}")
        logger.info(f"  Funding Key: {'[CONFIGURED]' if self.funding.private_key else '[NOT SET]'}")

        logger.info("Registry:")
        logger.info(f"  RPC URL: {self.registry.rpc_url}")
        logger.info(f"  Poll Interval: {self.registry.poll_interval} seconds")
        logger.info(f"  Ping Interval: {self.registry.ping_interval} seconds")
        logger.info(f"  Lookahead: {self.registry.lookahead_slots} blocks")

        logger.info("Probe Settings:")
        logger.info(f"  Reconcile Interval: {self.probe.reconcile_interval} seconds")
        logger.info(f"  Auto-send Interval: {self.probe.auto_send_interval} seconds")
        logger.info(f"  Confirmed Window: {self.probe.confirmed_window}")
        logger.info(f"  Stats Window: {self.probe.stats_window}")

        logger.info(f"Server: {self.server.host}:{self.server.port}")
        logger.info("=" * 60)
