"""
Persistent store for the swap bridge.

The database is the single source of truth for every record status. Each
status change is one conditional UPDATE scoped to a single row, so stage
loops running concurrently can never both move the same record.
"""

import logging
from collections.abc import Iterable, Mapping
from contextlib import asynccontextmanager
from enum import Enum
from typing import Any, AsyncGenerator, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ..errors import BridgeError, TransitionError
from ..models import (
    RETRY_SWAP_TRANSITIONS,
    SWAP_PAIR_TRANSITIONS,
    SWAP_TRANSITIONS,
    RetrySwapStatus,
    SwapPairStatus,
    SwapStatus,
)
from .models import Base, ChainCursor, RetrySwap, SwapEvent, SwapPair

logger = logging.getLogger(__name__)

LOG_MAX_LENGTH = 512

ACTIVE_RETRY_STATUSES = (
    RetrySwapStatus.CONFIRMED,
    RetrySwapStatus.SENDING,
    RetrySwapStatus.SENT,
)


def _values(statuses: Iterable[Enum]) -> list[str]:
    return [status.value for status in statuses]


class BridgeStore:
    """Owns the database engine and every read/write the bridge performs."""

    def __init__(self, database_url: str) -> None:
        self.database_url = database_url
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None

    async def init(self) -> None:
        """Initialize database connection and create tables."""
        self._engine = create_async_engine(self.database_url, echo=False, pool_pre_ping=True)
        self._session_factory = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        logger.info("Database connection initialized")

    async def close(self) -> None:
        """Close database connection."""
        if self._engine:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
            logger.info("Database connection closed")

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Session that commits on success and rolls back on any error."""
        if self._session_factory is None:
            raise RuntimeError("Database not initialized")

        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    # ------------------------------------------------------------------
    # Chain cursors
    # ------------------------------------------------------------------

    async def get_cursor(self, chain: str) -> ChainCursor | None:
        async with self.session() as session:
            return await session.get(ChainCursor, chain)

    async def save_block(
        self,
        chain: str,
        height: int,
        block_hash: str,
        swaps: list[SwapEvent],
        pairs: list[SwapPair],
    ) -> int:
        """Persist one scanned height: new records plus the advanced cursor.

        Records whose (chain, tx_hash) already exist are skipped. Everything
        commits in one transaction, so the cursor never moves past a height
        whose events were not stored.

        Returns:
            Number of records inserted
        """
        inserted = 0
        async with self.session() as session:
            cursor = await session.get(ChainCursor, chain)
            if cursor is not None and height != cursor.height + 1:
                raise BridgeError(
                    f"Cursor for {chain} is at {cursor.height}, refusing to store height {height}"
                )

            inserted += await self._insert_new(session, SwapEvent, chain, swaps)
            inserted += await self._insert_new(session, SwapPair, chain, pairs)

            if cursor is None:
                session.add(ChainCursor(chain=chain, height=height, block_hash=block_hash))
            else:
                cursor.height = height
                cursor.block_hash = block_hash

        return inserted

    async def _insert_new(self, session: AsyncSession, model: Any, chain: str, rows: list[Any]) -> int:
        if not rows:
            return 0
        tx_hashes = {row.tx_hash for row in rows}
        existing = set(
            (await session.scalars(
                select(model.tx_hash).where(model.chain == chain, model.tx_hash.in_(tx_hashes))
            )).all()
        )

        inserted = 0
        for row in rows:
            if row.tx_hash in existing:
                logger.debug(f"Skipping duplicate {model.__tablename__} record {chain}/{row.tx_hash}")
                continue
            existing.add(row.tx_hash)
            session.add(row)
            inserted += 1
        return inserted

    # ------------------------------------------------------------------
    # Conditional transitions
    # ------------------------------------------------------------------

    async def _transition(
        self,
        model: Any,
        transitions: Mapping[Any, frozenset],
        record_id: int,
        from_status: Enum,
        to_status: Enum,
        values: dict[str, Any],
    ) -> bool:
        if to_status not in transitions[from_status]:
            raise TransitionError(
                f"{model.__tablename__} cannot move from {from_status.value} to {to_status.value}"
            )

        async with self.session() as session:
            result = await session.execute(
                update(model)
                .where(model.id == record_id, model.status == from_status.value)
                .values(status=to_status.value, **values)
            )
            return result.rowcount == 1

    async def _bump_attempts(self, model: Any, record_id: int, status: Enum) -> int | None:
        """Increment the receipt poll counter while the status is unchanged."""
        async with self.session() as session:
            result = await session.execute(
                update(model)
                .where(model.id == record_id, model.status == status.value)
                .values(track_attempts=model.track_attempts + 1)
            )
            if result.rowcount != 1:
                return None
            return await session.scalar(select(model.track_attempts).where(model.id == record_id))

    async def _defer(self, model: Any, record_id: int, status: Enum, log: str) -> bool:
        """Note why a stage passed over a record and move it behind untried ones."""
        async with self.session() as session:
            result = await session.execute(
                update(model)
                .where(model.id == record_id, model.status == status.value)
                .values(deferrals=model.deferrals + 1, log=log[:LOG_MAX_LENGTH])
            )
            return result.rowcount == 1

    async def transition_swap(
        self, swap_id: int, from_status: SwapStatus, to_status: SwapStatus, **values: Any
    ) -> bool:
        return await self._transition(SwapEvent, SWAP_TRANSITIONS, swap_id, from_status, to_status, values)

    async def transition_pair(
        self, pair_id: int, from_status: SwapPairStatus, to_status: SwapPairStatus, **values: Any
    ) -> bool:
        return await self._transition(SwapPair, SWAP_PAIR_TRANSITIONS, pair_id, from_status, to_status, values)

    async def transition_retry(
        self, retry_id: int, from_status: RetrySwapStatus, to_status: RetrySwapStatus, **values: Any
    ) -> bool:
        return await self._transition(RetrySwap, RETRY_SWAP_TRANSITIONS, retry_id, from_status, to_status, values)

    async def bump_swap_attempts(self, swap_id: int, status: SwapStatus) -> int | None:
        return await self._bump_attempts(SwapEvent, swap_id, status)

    async def bump_pair_attempts(self, pair_id: int, status: SwapPairStatus) -> int | None:
        return await self._bump_attempts(SwapPair, pair_id, status)

    async def bump_retry_attempts(self, retry_id: int, status: RetrySwapStatus) -> int | None:
        return await self._bump_attempts(RetrySwap, retry_id, status)

    async def defer_swap(self, swap_id: int, status: SwapStatus, log: str) -> bool:
        return await self._defer(SwapEvent, swap_id, status, log)

    async def defer_pair(self, pair_id: int, status: SwapPairStatus, log: str) -> bool:
        return await self._defer(SwapPair, pair_id, status, log)

    async def defer_retry(self, retry_id: int, status: RetrySwapStatus, log: str) -> bool:
        return await self._defer(RetrySwap, retry_id, status, log)

    # ------------------------------------------------------------------
    # Batched scans
    # ------------------------------------------------------------------

    async def fetch_swaps(self, direction: str, statuses: Iterable[SwapStatus], limit: int) -> list[SwapEvent]:
        async with self.session() as session:
            rows = await session.scalars(
                select(SwapEvent)
                .where(SwapEvent.direction == direction, SwapEvent.status.in_(_values(statuses)))
                .order_by(SwapEvent.deferrals, SwapEvent.id)
                .limit(limit)
            )
            return list(rows.all())

    async def get_swap(self, swap_id: int) -> SwapEvent | None:
        async with self.session() as session:
            return await session.get(SwapEvent, swap_id)

    async def fetch_pairs(
        self, chain: str, statuses: Iterable[SwapPairStatus], limit: int
    ) -> list[SwapPair]:
        async with self.session() as session:
            rows = await session.scalars(
                select(SwapPair)
                .where(SwapPair.chain == chain, SwapPair.status.in_(_values(statuses)))
                .order_by(SwapPair.deferrals, SwapPair.id)
                .limit(limit)
            )
            return list(rows.all())

    async def finalized_pairs(self) -> list[SwapPair]:
        async with self.session() as session:
            rows = await session.scalars(
                select(SwapPair)
                .where(SwapPair.status == SwapPairStatus.FINALIZED.value)
                .order_by(SwapPair.id)
            )
            return list(rows.all())

    async def fetch_retries(
        self, direction: str, statuses: Iterable[RetrySwapStatus], limit: int
    ) -> list[RetrySwap]:
        async with self.session() as session:
            rows = await session.scalars(
                select(RetrySwap)
                .where(RetrySwap.direction == direction, RetrySwap.status.in_(_values(statuses)))
                .order_by(RetrySwap.deferrals, RetrySwap.id)
                .limit(limit)
            )
            return list(rows.all())

    # ------------------------------------------------------------------
    # Administrative operations
    # ------------------------------------------------------------------

    async def create_retry(self, swap_id: int) -> RetrySwap:
        """Insert a confirmed retry for a swap whose fill failed.

        Raises:
            ValueError: If the swap does not exist, has not failed, or
                already has a retry in flight
        """
        async with self.session() as session:
            swap = await session.get(SwapEvent, swap_id)
            if swap is None:
                raise ValueError(f"Swap {swap_id} does not exist")
            if swap.status != SwapStatus.SENT_FAIL.value:
                raise ValueError(f"Swap {swap_id} is {swap.status}, only sent_fail swaps can be retried")

            active = await session.scalar(
                select(func.count(RetrySwap.id)).where(
                    RetrySwap.swap_id == swap_id,
                    RetrySwap.status.in_(_values(ACTIVE_RETRY_STATUSES)),
                )
            )
            if active:
                raise ValueError(f"Swap {swap_id} already has a retry in progress")

            retry = RetrySwap(
                swap_id=swap_id,
                direction=swap.direction,
                status=RetrySwapStatus.CONFIRMED.value,
            )
            session.add(retry)
            await session.flush()
            return retry

    async def status_counts(self) -> dict[str, dict[str, int]]:
        """Per-table record counts grouped by status."""
        counts: dict[str, dict[str, int]] = {}
        async with self.session() as session:
            for model in (SwapEvent, SwapPair, RetrySwap):
                rows = await session.execute(
                    select(model.status, func.count(model.id)).group_by(model.status)
                )
                counts[model.__tablename__] = {status: count for status, count in rows.all()}
        return counts

    async def cursors(self) -> dict[str, int]:
        async with self.session() as session:
            rows = await session.scalars(select(ChainCursor))
            return {cursor.chain: cursor.height for cursor in rows.all()}
