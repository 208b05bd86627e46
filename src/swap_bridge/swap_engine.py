#!/usr/bin/env python3
"""Swap lifecycle engine.

Drives every swap record through received -> confirmed -> sending -> sent ->
sent_success / sent_fail, one set of stages per direction. All directions
share the pair registry and each destination chain's submission lock.

A failure after a fill is broadcast but before its status is committed
leaves the record confirmed, and the next tick broadcasts again. The
destination agent's processed-source-tx guard turns that duplicate into a
no-op; the local state machine alone cannot prevent it.
"""

import logging
from typing import Any

from .chain_context import ChainContext
from .config import MonitoringConfig
from .db.models import SwapEvent
from .db.store import BridgeStore
from .errors import ExecutionReverted, RpcError
from .models import FeePolicy, SwapPairInfo, SwapStatus, direction_name
from .registry import SwapPairRegistry
from .tracking import TrackStatuses, track_sent_record
from .transactions import build_fill_call, sign_and_submit

logger = logging.getLogger(__name__)

SWAP_TRACK_STATUSES = TrackStatuses(
    sending=SwapStatus.SENDING,
    sent=SwapStatus.SENT,
    success=SwapStatus.SENT_SUCCESS,
    fail=SwapStatus.SENT_FAIL,
)


def fill_amount(amount: int, fee_amount: int, policy: FeePolicy) -> int:
    """Amount released on the destination chain under a fee policy."""
    match policy:
        case FeePolicy.NONE:
            return amount
        case FeePolicy.DEDUCT:
            return amount - fee_amount
    raise ValueError(f"Unknown fee policy {policy}")


async def evaluate_swap(
    registry: SwapPairRegistry, record: SwapEvent, policy: FeePolicy
) -> tuple[SwapPairInfo, int] | str:
    """Check a swap against its pair.

    The pair may have been registered on either chain of the swap. Bounds
    apply to the gross amount the user locked.

    Returns:
        (pair, amount to fill) when the swap may be filled, otherwise the
        rejection reason
    """
    pair = await registry.lookup(record.chain, record.token_address)
    if pair is None or pair.token_on(record.destination_chain) is None:
        return (
            f"no swap pair registered for token {record.token_address or '<none>'} "
            f"between {record.chain} and {record.destination_chain}"
        )

    try:
        amount = int(record.amount)
        fee = int(record.fee_amount or "0")
    except ValueError:
        return f"malformed amount {record.amount!r} / fee {record.fee_amount!r}"

    if not pair.accepts(amount):
        return f"amount {amount} outside pair bounds [{pair.low_bound}, {pair.upper_bound}]"

    if (net := fill_amount(amount, fee, policy)) <= 0:
        return f"amount {amount} does not cover fee {fee}"
    return pair, net


class SwapEngine:
    """Confirm, send and track stages for every direction."""

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

        self.swaps_confirmed = 0
        self.swaps_rejected = 0
        self.swaps_sent = 0

    def directions(self) -> list[tuple[str, str]]:
        """Every ordered (source, destination) pair of configured chains."""
        return [(src, dst) for src in self.chains for dst in self.chains if src != dst]

    async def confirm_swaps(self, source: str, destination: str) -> int:
        """Promote received swaps that are deep enough, or reject them.

        Returns:
            Number of records that changed status
        """
        src = self.chains[source]
        records = await self.store.fetch_swaps(
            direction_name(source, destination), [SwapStatus.RECEIVED], self.monitoring.swap_batch_size
        )
        if not records:
            return 0

        tip = await src.client.block_number()
        moved = 0
        for record in records:
            if tip - record.height < src.confirm_num:
                continue

            evaluation = await evaluate_swap(self.registry, record, self.monitoring.fee_policy)
            if isinstance(evaluation, str):
                if await self.store.transition_swap(
                    record.id, SwapStatus.RECEIVED, SwapStatus.REJECTED, log=evaluation
                ):
                    self.swaps_rejected += 1
                    moved += 1
                    logger.warning(f"Swap {record.id} ({record.tx_hash}) rejected: {evaluation}")
                continue

            if await self.store.transition_swap(record.id, SwapStatus.RECEIVED, SwapStatus.CONFIRMED):
                self.swaps_confirmed += 1
                moved += 1
                logger.info(
                    f"Swap {record.id} confirmed: {source} height {record.height}, tip {tip}, "
                    f"depth {src.confirm_num}"
                )
        return moved

    async def send_swaps(self, source: str, destination: str) -> int:
        """Broadcast fills for confirmed swaps.

        Returns:
            Number of fills broadcast and recorded
        """
        src, dst = self.chains[source], self.chains[destination]
        records = await self.store.fetch_swaps(
            direction_name(source, destination), [SwapStatus.CONFIRMED], self.monitoring.swap_batch_size
        )

        sent = 0
        for record in records:
            evaluation = await evaluate_swap(self.registry, record, self.monitoring.fee_policy)
            if isinstance(evaluation, str):
                if await self.store.transition_swap(
                    record.id, SwapStatus.CONFIRMED, SwapStatus.REJECTED, log=evaluation
                ):
                    self.swaps_rejected += 1
                    logger.warning(f"Swap {record.id} ({record.tx_hash}) rejected before send: {evaluation}")
                continue

            pair, amount = evaluation
            data = build_fill_call(src, dst, record.tx_hash, record.from_address, pair, amount)
            try:
                tx_hash = await sign_and_submit(dst, data)
            except ExecutionReverted as e:
                logger.error(f"Swap {record.id}: fill on {destination} reverts, deferring: {e}")
                await self.store.defer_swap(record.id, SwapStatus.CONFIRMED, str(e))
                continue
            except RpcError as e:
                logger.warning(f"Swap {record.id}: fill on {destination} not sent, will retry: {e}")
                await self.store.defer_swap(record.id, SwapStatus.CONFIRMED, str(e))
                continue

            if await self.store.transition_swap(
                record.id, SwapStatus.CONFIRMED, SwapStatus.SENDING, fill_tx_hash=tx_hash, log=""
            ):
                self.swaps_sent += 1
                sent += 1
                logger.info(
                    f"Swap {record.id} sending: {dst.fill_method.value} {amount} to "
                    f"{record.from_address} on {destination}, tx {tx_hash}"
                )
        return sent

    async def track_sent_swaps(self, source: str, destination: str) -> int:
        """Poll receipts of broadcast fills and settle their status.

        Returns:
            Number of records that changed status
        """
        dst = self.chains[destination]
        records = await self.store.fetch_swaps(
            direction_name(source, destination),
            [SwapStatus.SENDING, SwapStatus.SENT],
            self.monitoring.track_batch_size,
        )

        moved = 0
        for record in records:
            result = await track_sent_record(
                dst,
                record,
                record.fill_tx_hash,
                SWAP_TRACK_STATUSES,
                self.store.transition_swap,
                self.store.bump_swap_attempts,
                self.monitoring.receipt_retry_budget,
                height_field="fill_height",
                label=f"Swap {record.id}",
            )
            if result is not None:
                moved += 1
        return moved

    async def create_retry_swap(self, swap_id: int) -> int:
        """Queue a second fill attempt for a failed swap (administrative).

        Returns:
            Id of the new retry record
        """
        retry = await self.store.create_retry(swap_id)
        logger.info(f"Retry {retry.id} created for swap {swap_id}")
        return retry.id

    def get_stats(self) -> dict[str, Any]:
        return {
            "swaps_confirmed": self.swaps_confirmed,
            "swaps_rejected": self.swaps_rejected,
            "swaps_sent": self.swaps_sent,
        }
