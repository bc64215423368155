"""Latency statistics over the tracker's confirmed window."""

import math
from collections.abc import Iterable, Mapping

from .models import LatencyStats, TransactionRecord

# Most recent confirmed transactions included in the latency figures
DEFAULT_SAMPLE_SIZE = 50


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero for positive values."""
    return int(math.floor(value + 0.5))


def mean_ms(samples: Iterable[int]) -> int:
    """Rounded arithmetic mean of millisecond samples, 0 when there are none."""
    values = list(samples)
    if not values:
        return 0
    return round_half_up(sum(values) / len(values))


def compute_stats(
    confirmed: Mapping[int, TransactionRecord],
    pending_count: int,
    sample_size: int = DEFAULT_SAMPLE_SIZE
) -> LatencyStats:
    """Compute live statistics from a snapshot of the tracker windows.

    Only the ``sample_size`` most recent confirmed records (by sequence
    number) contribute to the latency figures. The median is the element
    at index ``floor(0.5 * n)`` of the ascending latency list, so for even
    counts it is the upper of the two middle values.

    Args:
        confirmed: Confirmed window keyed by sequence number
        pending_count: Number of records still pending
        sample_size: Size of the latency sub-window

    Returns:
        LatencyStats; zeroed latency figures when nothing is confirmed
    """
    recent = sorted(confirmed, reverse=True)[:sample_size]
    latencies = sorted(
        confirmed[seq].latency_ms
        for seq in recent
        if confirmed[seq].latency_ms is not None
    )

    median = latencies[math.floor(len(latencies) * 0.5)] if latencies else 0

    return LatencyStats(
        total_count=len(confirmed) + pending_count,
        confirmed_count=len(confirmed),
        median_latency_ms=median,
        average_latency_ms=mean_ms(latencies),
    )
