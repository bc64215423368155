"""
frag-probe package.

Transaction latency probe and gateway leader dashboard for sequencer
rotation testing.
"""

from .config import ProbeConfig
from .leader import classify_gateways, resolve_leader
from .models import GatewayRole, LatencyStats, TransactionRecord
from .stats import compute_stats
from .tracker import TransactionTracker

__all__ = [
    "ProbeConfig",
    "TransactionTracker",
    "TransactionRecord",
    "LatencyStats",
    "GatewayRole",
    "compute_stats",
    "resolve_leader",
    "classify_gateways",
]
__version__ = "0.1.0"
