"""
Swap pair registration engine.

Mirrors the swap stages for SphynxSwapPairRegister events: confirm, send
(createSwapPair on the target chain), track, and a final stage that loads
the pair into the registry.
"""

import logging
from typing import Any

from .chain_context import ChainContext
from .config import MonitoringConfig
from .db.store import BridgeStore
from .errors import RpcError
from .models import SwapPairStatus
from .registry import SwapPairRegistry, pair_info_from_record
from .tracking import TrackStatuses, track_sent_record
from .transactions import build_create_pair_call, sign_and_submit

logger = logging.getLogger(__name__)

PAIR_TRACK_STATUSES = TrackStatuses(
    sending=SwapPairStatus.SENDING,
    sent=SwapPairStatus.SENT,
    success=SwapPairStatus.SENT_SUCCESS,
    fail=SwapPairStatus.SENT_FAIL,
)


class SwapPairEngine:
    """Registration pipeline for each chain that has a pair target."""

    def __init__(
        self,
        store: BridgeStore,
        registry: SwapPairRegistry,
        chains: dict[str, ChainContext],
        monitoring: MonitoringConfig,
    ) -> None:
        self.store = store
        self.registry = registry
        self.chains = chains
        self.monitoring = monitoring
        self.pairs_finalized = 0

    def registration_chains(self) -> list[str]:
        return [name for name, chain in self.chains.items() if chain.config.pair_target]

    async def confirm_pairs(self, chain_name: str) -> int:
        chain = self.chains[chain_name]
        records = await self.store.fetch_pairs(
            chain_name, [SwapPairStatus.RECEIVED], self.monitoring.pair_batch_size
        )
        if not records:
            return 0

        tip = await chain.client.block_number()
        moved = 0
        for record in records:
            if tip - record.height < chain.confirm_num:
                continue
            if await self.store.transition_pair(record.id, SwapPairStatus.RECEIVED, SwapPairStatus.CONFIRMED):
                moved += 1
                logger.info(f"Pair {record.id} ({record.symbol}) confirmed at tip {tip}")
        return moved

    async def send_pairs(self, chain_name: str) -> int:
        records = await self.store.fetch_pairs(
            chain_name, [SwapPairStatus.CONFIRMED], self.monitoring.pair_batch_size
        )

        sent = 0
        for record in records:
            target = self.chains[record.destination_chain]
            data = build_create_pair_call(
                target,
                record.tx_hash,
                record.source_token,
                record.destination_token,
                record.name,
                record.symbol,
                record.decimals,
            )
            try:
                tx_hash = await sign_and_submit(target, data)
            except RpcError as e:
                logger.warning(f"Pair {record.id}: createSwapPair not sent, will retry: {e}")
                await self.store.defer_pair(record.id, SwapPairStatus.CONFIRMED, str(e))
                continue

            if await self.store.transition_pair(
                record.id, SwapPairStatus.CONFIRMED, SwapPairStatus.SENDING, create_tx_hash=tx_hash
            ):
                sent += 1
                logger.info(f"Pair {record.id} ({record.symbol}) sending createSwapPair, tx {tx_hash}")
        return sent

    async def track_pairs(self, chain_name: str) -> int:
        records = await self.store.fetch_pairs(
            chain_name, [SwapPairStatus.SENDING, SwapPairStatus.SENT], self.monitoring.pair_batch_size
        )

        moved = 0
        for record in records:
            result = await track_sent_record(
                self.chains[record.destination_chain],
                record,
                record.create_tx_hash,
                PAIR_TRACK_STATUSES,
                self.store.transition_pair,
                self.store.bump_pair_attempts,
                self.monitoring.receipt_retry_budget,
                height_field="create_height",
                label=f"Pair {record.id} ({record.symbol})",
            )
            if result is not None:
                moved += 1
        return moved

    async def finalize_pairs(self, chain_name: str) -> int:
        """Activate created pairs in the registry."""
        records = await self.store.fetch_pairs(
            chain_name, [SwapPairStatus.SENT_SUCCESS], self.monitoring.pair_batch_size
        )

        finalized = 0
        for record in records:
            info = pair_info_from_record(record)
            if conflict := await self.registry.conflict_for(info):
                note = f"not finalized: {conflict}"
                if record.log != note:
                    logger.error(f"Pair {record.id} ({record.symbol}) {note}")
                await self.store.defer_pair(record.id, SwapPairStatus.SENT_SUCCESS, note)
                continue

            if not await self.store.transition_pair(
                record.id, SwapPairStatus.SENT_SUCCESS, SwapPairStatus.FINALIZED
            ):
                continue
            await self.registry.register(info)
            self.pairs_finalized += 1
            finalized += 1
        return finalized

    def get_stats(self) -> dict[str, Any]:
        return {"pairs_finalized": self.pairs_finalized}
