#!/usr/bin/env python3
"""Data models for frag-probe.

Immutable data classes for the transactions the probe sends and for the
gateway registry snapshots it displays.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any


@dataclass(frozen=True, slots=True)
class TransactionRecord:
    """A probe transaction, pending or confirmed.

    A record is created pending by the tracker and replaced exactly once by
    its confirmed counterpart (see :meth:`confirm`).

    Attributes:
        sequence_number: Nonce used when the transaction was sent
        handle: Transaction hash returned by the broadcast (0x-prefixed)
        sent_at_ms: Wall-clock time (ms) when the broadcast was invoked
        confirmed_at_block: Block the transaction was included in
        latency_ms: Time from broadcast to observed receipt
    """

    sequence_number: int
    handle: str
    sent_at_ms: int
    confirmed_at_block: int | None = None
    latency_ms: int | None = None

    def __str__(self) -> str:
        """Human-readable string representation."""
        state = f"block={self.confirmed_at_block}" if self.is_confirmed else "pending"
        return (
            f"TransactionRecord(seq={self.sequence_number}, "
            f"hash={self.handle[:10]}..., {state})"
        )

    @property
    def is_confirmed(self) -> bool:
        return self.confirmed_at_block is not None

    def confirm(self, block_number: int, observed_at_ms: int) -> "TransactionRecord":
        """Return the confirmed version of this record.

        Args:
            block_number: Block number from the receipt
            observed_at_ms: Time (ms) at which the receipt was observed

        Returns:
            New record carrying the block number and latency

        Raises:
            ValueError: If the record is already confirmed
        """
        if self.is_confirmed:
            raise ValueError(f"Transaction {self.sequence_number} is already confirmed")
        return replace(
            self,
            confirmed_at_block=block_number,
            latency_ms=max(0, observed_at_ms - self.sent_at_ms),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "sequence_number": self.sequence_number,
            "handle": self.handle,
            "sent_at_ms": self.sent_at_ms,
            "status": "confirmed" if self.is_confirmed else "pending",
            "confirmed_at_block": self.confirmed_at_block,
            "latency_ms": self.latency_ms,
        }


@dataclass(frozen=True, slots=True)
class LatencyStats:
    """Aggregate metrics over the confirmed window."""

    total_count: int = 0
    confirmed_count: int = 0
    median_latency_ms: int = 0
    average_latency_ms: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "total_count": self.total_count,
            "confirmed_count": self.confirmed_count,
            "median_latency_ms": self.median_latency_ms,
            "average_latency_ms": self.average_latency_ms,
        }


@dataclass(frozen=True, slots=True)
class GatewayInfo:
    """A registered gateway.

    Attributes:
        url: Gateway endpoint URL (unique key)
        address: Gateway chain address
        average_ping_ms: Rolling average of recent ping samples, if any
    """

    url: str
    address: str
    average_ping_ms: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"url": self.url, "address": self.address, "ping": self.average_ping_ms}


@dataclass(frozen=True, slots=True)
class FutureAssignment:
    """Gateway scheduled to lead at a given block height."""

    url: str
    address: str
    block_number: int

    def to_dict(self) -> dict[str, Any]:
        return {"url": self.url, "address": self.address, "blockNumber": self.block_number}


@dataclass(frozen=True, slots=True)
class RegistrySnapshot:
    """Registry state as of the last successful poll."""

    last_updated_ms: int = 0
    gateways: tuple[GatewayInfo, ...] = ()
    future_gateways: tuple[FutureAssignment, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        """Serialize with the registry endpoint's field names."""
        return {
            "lastUpdated": self.last_updated_ms,
            "gateways": [gateway.to_dict() for gateway in self.gateways],
            "futureGateways": [future.to_dict() for future in self.future_gateways],
        }


class GatewayRole(Enum):
    """Display role of a gateway relative to the current block."""
    LEADER = "leader"
    NEXT = "next"
    STANDBY = "standby"


@dataclass(frozen=True, slots=True)
class LeaderResolution:
    """Which gateway leads now and which one follows.

    Attributes:
        current_leader_url: URL assigned to the current block, if known
        next_leader_url: First different URL assigned to a later block
        remaining_blocks: Entries for the current leader at or after the
            current block
    """

    current_leader_url: str | None = None
    next_leader_url: str | None = None
    remaining_blocks: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "current_leader_url": self.current_leader_url,
            "next_leader_url": self.next_leader_url,
            "remaining_blocks": self.remaining_blocks,
        }


@dataclass(frozen=True, slots=True)
class ClassifiedGateway:
    """A gateway paired with its display role."""

    gateway: GatewayInfo
    role: GatewayRole

    def to_dict(self) -> dict[str, Any]:
        return {**self.gateway.to_dict(), "role": self.role.value}
