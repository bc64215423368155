"""Leader rotation resolution for the gateway registry.

The registry publishes one future assignment per block height, so a
gateway's tenure shows up as a run of consecutive entries with the same URL.
"""

from collections.abc import Iterable, Sequence

from .models import (
    ClassifiedGateway,
    FutureAssignment,
    GatewayInfo,
    GatewayRole,
    LeaderResolution,
)


def resolve_leader(
    future_assignments: Sequence[FutureAssignment],
    current_block: int
) -> LeaderResolution:
    """Determine the current and next leader at ``current_block``.

    The remaining-blocks figure counts every entry for the current leader
    at or after the current block, whether or not the run is contiguous.

    Args:
        future_assignments: Assignments in ascending block order
        current_block: Latest known block height

    Returns:
        LeaderResolution; ``current_leader_url`` is None when no entry
        matches the current block exactly
    """
    current_url = next(
        (a.url for a in future_assignments if a.block_number == current_block),
        None
    )

    next_url = next(
        (
            a.url for a in future_assignments
            if a.block_number > current_block and a.url != current_url
        ),
        None
    )

    remaining = 0
    if current_url is not None:
        remaining = sum(
            1 for a in future_assignments
            if a.url == current_url and a.block_number >= current_block
        )

    return LeaderResolution(
        current_leader_url=current_url,
        next_leader_url=next_url,
        remaining_blocks=remaining,
    )


def classify_gateway(url: str, resolution: LeaderResolution) -> GatewayRole:
    if resolution.current_leader_url is not None and url == resolution.current_leader_url:
        return GatewayRole.LEADER
    if resolution.next_leader_url is not None and url == resolution.next_leader_url:
        return GatewayRole.NEXT
    return GatewayRole.STANDBY


def classify_gateways(
    gateways: Iterable[GatewayInfo],
    resolution: LeaderResolution
) -> list[ClassifiedGateway]:
    """Pair every known gateway with exactly one display role."""
    return [
        ClassifiedGateway(gateway=gateway, role=classify_gateway(gateway.url, resolution))
        for gateway in gateways
    ]
