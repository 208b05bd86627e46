"""
Swap bridge package.

Watches swap agent contracts on several chains and fills confirmed swaps on
their destination chain.
"""

from .bridge import Bridge
from .config import BridgeConfig, ChainConfig, MonitoringConfig
from .models import SwapPairStatus, SwapStatus, RetrySwapStatus

__all__ = [
    "Bridge",
    "BridgeConfig",
    "ChainConfig",
    "MonitoringConfig",
    "SwapStatus",
    "SwapPairStatus",
    "RetrySwapStatus",
]
__version__ = "0.1.0"
