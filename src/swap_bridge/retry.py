"""
Retry engine for failed swap fills.

Works on RetrySwap records only. The original swap keeps its sent_fail
status as the audit trail of the first attempt; each retry carries its own
status and fill transaction.
"""

import logging

from .chain_context import ChainContext
from .config import MonitoringConfig
from .db.store import BridgeStore
from .errors import RpcError
from .models import RetrySwapStatus, SwapStatus, direction_name
from .registry import SwapPairRegistry
from .swap_engine import evaluate_swap
from .tracking import TrackStatuses, track_sent_record
from .transactions import build_fill_call, sign_and_submit

logger = logging.getLogger(__name__)

RETRY_TRACK_STATUSES = TrackStatuses(
    sending=RetrySwapStatus.SENDING,
    sent=RetrySwapStatus.SENT,
    success=RetrySwapStatus.SENT_SUCCESS,
    fail=RetrySwapStatus.SENT_FAIL,
)


class RetrySwapEngine:
    """Send and track stages for retries, per direction."""

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

    async def send_retries(self, source: str, destination: str) -> int:
        src, dst = self.chains[source], self.chains[destination]
        retries = await self.store.fetch_retries(
            direction_name(source, destination), [RetrySwapStatus.CONFIRMED], self.monitoring.swap_batch_size
        )

        sent = 0
        for retry in retries:
            swap = await self.store.get_swap(retry.swap_id)
            if swap is None or swap.status != SwapStatus.SENT_FAIL.value:
                note = f"swap {retry.swap_id} is missing or not sent_fail"
                logger.error(f"Retry {retry.id}: {note}")
                await self.store.defer_retry(retry.id, RetrySwapStatus.CONFIRMED, note)
                continue

            evaluation = await evaluate_swap(self.registry, swap, self.monitoring.fee_policy)
            if isinstance(evaluation, str):
                logger.error(f"Retry {retry.id}: swap {swap.id} cannot be filled: {evaluation}")
                await self.store.defer_retry(retry.id, RetrySwapStatus.CONFIRMED, evaluation)
                continue

            pair, amount = evaluation
            data = build_fill_call(src, dst, swap.tx_hash, swap.from_address, pair, amount)
            try:
                tx_hash = await sign_and_submit(dst, data)
            except RpcError as e:
                logger.warning(f"Retry {retry.id}: fill on {destination} not sent, will retry: {e}")
                await self.store.defer_retry(retry.id, RetrySwapStatus.CONFIRMED, str(e))
                continue

            if await self.store.transition_retry(
                retry.id, RetrySwapStatus.CONFIRMED, RetrySwapStatus.SENDING, fill_tx_hash=tx_hash
            ):
                sent += 1
                logger.info(f"Retry {retry.id} of swap {swap.id} sending, tx {tx_hash}")
        return sent

    async def track_retries(self, source: str, destination: str) -> int:
        dst = self.chains[destination]
        retries = await self.store.fetch_retries(
            direction_name(source, destination),
            [RetrySwapStatus.SENDING, RetrySwapStatus.SENT],
            self.monitoring.track_batch_size,
        )

        moved = 0
        for retry in retries:
            result = await track_sent_record(
                dst,
                retry,
                retry.fill_tx_hash,
                RETRY_TRACK_STATUSES,
                self.store.transition_retry,
                self.store.bump_retry_attempts,
                self.monitoring.receipt_retry_budget,
                height_field="fill_height",
                label=f"Retry {retry.id} of swap {retry.swap_id}",
            )
            if result is not None:
                moved += 1
        return moved
