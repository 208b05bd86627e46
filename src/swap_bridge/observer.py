"""
Per-chain block observer.

Scans one height at a time, extracts swap agent events and persists them
together with the advanced cursor. A height is never skipped: the cursor
only moves once that height's events are durably stored.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

from .chain_context import ChainContext
from .db.models import SwapEvent, SwapPair
from .db.store import BridgeStore
from .errors import BridgeError, RpcError
from .event_extractor import WATCHED_TOPICS, EventExtractor
from .models import (
    BlockEventBatch,
    ReverseSwapStartedEvent,
    SwapPairRegisteredEvent,
    SwapPairStatus,
    SwapStartedEvent,
    SwapStatus,
    direction_name,
)


class ChainObserver:
    """
    Turns newly available blocks of one chain into pending records.

    """

    def __init__(
        self,
        chain: ChainContext,
        store: BridgeStore,
        chain_names_by_id: Dict[int, str],
        pair_defaults: tuple[str, str] = ("0", "0"),
        interval: float = 2,
    ):
        """
        Initialize the observer.

        Args:
            chain: Context of the chain to watch
            store: Persistent store for records and cursor
            chain_names_by_id: Chain id -> name for every configured chain
            pair_defaults: (low bound, upper bound) given to new pairs
            interval: Seconds to wait once the scan has reached the tip
        """
        self.chain = chain
        self.store = store
        self.chain_names_by_id = chain_names_by_id
        self.pair_defaults = pair_defaults
        self.interval = interval
        self.extractor = EventExtractor(chain.name, chain.config.event_variant)

        # State tracking
        self.height: Optional[int] = None
        self.last_block_hash: str = ""
        self.is_running = False

        # Setup logging
        self.logger = logging.getLogger(f"{__name__}.{chain.name}")

    async def _load_cursor(self) -> None:
        cursor = await self.store.get_cursor(self.chain.name)
        if cursor is None:
            self.height = self.chain.config.start_height - 1
            self.last_block_hash = ""
            self.logger.info(f"No stored cursor, starting at height {self.chain.config.start_height}")
        else:
            self.height = cursor.height
            self.last_block_hash = cursor.block_hash
            self.logger.info(f"Resuming after height {cursor.height}")

    async def scan_next(self) -> bool:
        """
        Process the height after the cursor.

        Returns:
            True if the height was processed and the cursor advanced, False
            when the chain has not reached it yet (or moved under us)

        Raises:
            RpcError: If a header or log fetch fails; the cursor is unchanged
        """
        if self.height is None:
            await self._load_cursor()

        height = self.height + 1
        header = await self.chain.client.header_at(height)
        if header is None:
            return False

        if self.last_block_hash and header.parent_hash != self.last_block_hash:
            self.logger.warning(
                f"Parent of block {height} is {header.parent_hash[:10]}..., "
                f"stored hash of {height - 1} is {self.last_block_hash[:10]}... (possible reorg)"
            )

        logs = await self.chain.client.filter_logs(
            height, height, [self.chain.agent_address], [WATCHED_TOPICS]
        )

        batch = BlockEventBatch(
            chain=self.chain.name,
            height=height,
            block_hash=header.block_hash,
            parent_hash=header.parent_hash,
            block_time=header.timestamp,
        )
        for log in logs:
            if (event := self.extractor.extract(log)) is None:
                continue
            if event.meta.block_hash.lower() != header.block_hash.lower():
                self.logger.warning(
                    f"Log {event.meta.tx_hash} belongs to block {event.meta.block_hash[:10]}..., "
                    f"header is {header.block_hash[:10]}...; retrying height {height}"
                )
                return False
            batch.events.append(event)

        swaps, pairs = self._to_records(batch)
        inserted = await self.store.save_block(self.chain.name, height, header.block_hash, swaps, pairs)

        self.height = height
        self.last_block_hash = header.block_hash
        if batch.events:
            self.logger.info(f"{batch}: stored {inserted} new records")
        return True

    def _to_records(self, batch: BlockEventBatch) -> tuple[list[SwapEvent], list[SwapPair]]:
        swaps: list[SwapEvent] = []
        pairs: list[SwapPair] = []
        for event in batch.events:
            match event:
                case SwapPairRegisteredEvent():
                    if (record := self._pair_record(event)) is not None:
                        pairs.append(record)
                case SwapStartedEvent() | ReverseSwapStartedEvent():
                    if (record := self._swap_record(event)) is not None:
                        swaps.append(record)
        return swaps, pairs

    def _swap_record(self, event: SwapStartedEvent | ReverseSwapStartedEvent) -> SwapEvent | None:
        config = self.chain.config
        match event:
            case SwapStartedEvent():
                destination = config.default_destination
                token_address = event.token_address
                to_chain_id = ""
                fee_amount = event.fee_amount
            case ReverseSwapStartedEvent():
                destination = self.chain_names_by_id.get(event.to_chain_id)
                token_address = config.token_address or ""
                to_chain_id = str(event.to_chain_id)
                fee_amount = 0

        if destination is None or destination == self.chain.name:
            self.logger.warning(f"Skipping swap {event.meta.tx_hash}: no destination chain for it")
            return None

        self.logger.debug(
            f"Found bridge swap: tx {event.meta.tx_hash}, destination {destination}, "
            f"from {event.from_address}, amount {event.amount}"
        )
        return SwapEvent(
            chain=self.chain.name,
            direction=direction_name(self.chain.name, destination),
            destination_chain=destination,
            token_address=token_address,
            from_address=event.from_address,
            to_chain_id=to_chain_id,
            amount=str(event.amount),
            fee_amount=str(fee_amount),
            block_hash=event.meta.block_hash,
            tx_hash=event.meta.tx_hash,
            height=event.meta.block_number,
            status=SwapStatus.RECEIVED.value,
            track_attempts=0,
            log="",
        )

    def _pair_record(self, event: SwapPairRegisteredEvent) -> SwapPair | None:
        target = self.chain.config.pair_target
        if target is None:
            self.logger.warning(
                f"Skipping pair registration {event.meta.tx_hash}: {self.chain.name} has no pair target"
            )
            return None

        low_bound, upper_bound = self.pair_defaults
        return SwapPair(
            chain=self.chain.name,
            destination_chain=target,
            sponsor=event.sponsor,
            symbol=event.symbol,
            name=event.name,
            decimals=event.decimals,
            low_bound=low_bound,
            upper_bound=upper_bound,
            source_token=event.token_address,
            destination_token=event.paired_token_address,
            block_hash=event.meta.block_hash,
            tx_hash=event.meta.tx_hash,
            height=event.meta.block_number,
            status=SwapPairStatus.RECEIVED.value,
            track_attempts=0,
            log="",
        )

    async def start_polling(self) -> None:
        """Scan continuously, pausing only once the chain tip is reached."""
        if self.is_running:
            self.logger.warning("Polling already running")
            return

        self.is_running = True
        self.logger.info(f"Starting observer on {self.chain.agent_address}")

        while self.is_running:
            try:
                if not await self.scan_next():
                    await asyncio.sleep(self.interval)
            except asyncio.CancelledError:
                self.logger.info("Polling cancelled")
                break
            except RpcError as e:
                self.logger.warning(f"Scan of height {(self.height or 0) + 1} failed, will retry: {e}")
                await asyncio.sleep(self.interval)
            except BridgeError as e:
                self.logger.error(f"{e}; reloading cursor")
                self.height = None
                await asyncio.sleep(self.interval)
            except Exception as e:
                self.logger.error(f"Error in polling loop: {e}", exc_info=True)
                # Continue polling despite errors
                await asyncio.sleep(self.interval)

    async def stop(self) -> None:
        """Stop the polling loop."""
        self.logger.info("Stopping observer")
        self.is_running = False

    def get_status(self) -> Dict[str, Any]:
        return {
            "is_running": self.is_running,
            "height": self.height,
            "contract_address": self.chain.agent_address,
            "logs_decoded": self.extractor.logs_decoded,
            "logs_skipped": self.extractor.logs_skipped,
        }
