"""
Swap pair registry.

In-memory lookup from a token address, on either chain of a pair, to its
finalized pair. Read on every swap evaluation and written only when a
registration is finalized. Reads share the lock; a write excludes everything else.
"""

import logging
from collections.abc import Iterable
from dataclasses import replace

from web3 import Web3

from .db.models import SwapPair
from .models import SwapPairInfo
from .utils.rwlock import AsyncRWLock

logger = logging.getLogger(__name__)


def pair_info_from_record(record: SwapPair) -> SwapPairInfo:
    """Build registry metadata from a persisted pair.

    Raises:
        ValueError: If the stored bounds are not decimal integers
    """
    try:
        low_bound = int(record.low_bound)
        upper_bound = int(record.upper_bound)
    except ValueError:
        raise ValueError(
            f"Invalid bounds for pair {record.symbol}: {record.low_bound!r}/{record.upper_bound!r}"
        ) from None

    return SwapPairInfo(
        symbol=record.symbol,
        name=record.name,
        decimals=record.decimals,
        low_bound=low_bound,
        upper_bound=upper_bound,
        source_token=Web3.to_checksum_address(record.source_token),
        destination_token=Web3.to_checksum_address(record.destination_token),
        source_chain=record.chain,
        destination_chain=record.destination_chain,
    )


class SwapPairRegistry:
    """Pair metadata, indexed by the token address on either side of the pair."""

    def __init__(self) -> None:
        self._pairs: dict[str, SwapPairInfo] = {}
        self._paired: dict[str, SwapPairInfo] = {}
        self._lock = AsyncRWLock()

    @staticmethod
    def _key(token_address: str) -> str:
        return Web3.to_checksum_address(token_address)

    @staticmethod
    def _conflict(
        pairs: dict[str, SwapPairInfo], paired: dict[str, SwapPairInfo], info: SwapPairInfo
    ) -> str | None:
        existing = pairs.get(info.source_token)
        if existing and existing.destination_token != info.destination_token:
            return f"{info.source_token} already maps to {existing.destination_token}"
        existing = paired.get(info.destination_token)
        if existing and existing.source_token != info.source_token:
            return f"{info.destination_token} is already paired with {existing.source_token}"
        return None

    @classmethod
    def _normalized(cls, info: SwapPairInfo) -> SwapPairInfo:
        return replace(
            info,
            source_token=cls._key(info.source_token),
            destination_token=cls._key(info.destination_token),
        )

    async def bootstrap(self, records: Iterable[SwapPair]) -> int:
        """Replace the registry content with the finalized pairs from the store."""
        pairs: dict[str, SwapPairInfo] = {}
        paired: dict[str, SwapPairInfo] = {}
        for record in records:
            info = pair_info_from_record(record)
            if conflict := self._conflict(pairs, paired, info):
                raise ValueError(f"Conflicting finalized pairs: {conflict}")
            pairs[info.source_token] = info
            paired[info.destination_token] = info
            logger.info(
                f"Load swap pair, symbol {info.symbol}, {info.source_chain} token {info.source_token}, "
                f"{info.destination_chain} token {info.destination_token}"
            )

        async with self._lock.write():
            self._pairs = pairs
            self._paired = paired
        return len(pairs)

    async def register(self, info: SwapPairInfo) -> bool:
        """Add a newly finalized pair.

        Returns:
            False if either token is already part of a different pair; the
            existing mapping is kept
        """
        info = self._normalized(info)
        async with self._lock.write():
            if conflict := self._conflict(self._pairs, self._paired, info):
                logger.error(f"Refusing pair {info.symbol}: {conflict}")
                return False
            self._pairs[info.source_token] = info
            self._paired[info.destination_token] = info

        logger.info(f"Registered swap pair {info.symbol}: {info.source_token} -> {info.destination_token}")
        return True

    async def conflict_for(self, info: SwapPairInfo) -> str | None:
        """Why registering a pair would be refused, or None if it would not be."""
        info = self._normalized(info)
        async with self._lock.read():
            return self._conflict(self._pairs, self._paired, info)

    async def get(self, token_address: str) -> SwapPairInfo | None:
        """Pair registered for a token on its registration chain."""
        if not token_address or not Web3.is_address(token_address):
            return None
        async with self._lock.read():
            return self._pairs.get(self._key(token_address))

    async def lookup(self, chain: str, token_address: str) -> SwapPairInfo | None:
        """Pair a swap started on ``chain`` with ``token_address`` belongs to.

        Swaps can start on either side of a pair, so both indexes are
        consulted; the token must be the pair's token on that chain.
        """
        if not token_address or not Web3.is_address(token_address):
            return None
        key = self._key(token_address)
        async with self._lock.read():
            for index in (self._pairs, self._paired):
                info = index.get(key)
                if info is not None and info.token_on(chain) == key:
                    return info
        return None

    async def snapshot(self) -> list[SwapPairInfo]:
        async with self._lock.read():
            return list(self._pairs.values())

    def __len__(self) -> int:
        return len(self._pairs)
