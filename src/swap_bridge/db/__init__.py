"""Persistence for swap bridge records."""

from .models import Base, ChainCursor, RetrySwap, SwapEvent, SwapPair
from .store import BridgeStore

__all__ = ["Base", "BridgeStore", "ChainCursor", "RetrySwap", "SwapEvent", "SwapPair"]
