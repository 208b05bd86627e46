"""
SQLAlchemy database models for the swap bridge.

Amounts and bounds are stored as decimal strings so arbitrary-precision
token amounts survive every database backend unchanged.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    BigInteger,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all models."""
    pass


class ChainCursor(Base):
    """Last height an observer fully processed on one chain."""

    __tablename__ = "chain_cursors"

    chain: Mapped[str] = mapped_column(String(32), primary_key=True)
    height: Mapped[int] = mapped_column(BigInteger)
    block_hash: Mapped[str] = mapped_column(String(66), default="")
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class SwapEvent(Base):
    """A swap started on a source chain and its fill on the destination."""

    __tablename__ = "swap_events"
    __table_args__ = (
        UniqueConstraint("chain", "tx_hash", name="uq_swap_events_chain_tx"),
        Index("ix_swap_events_direction_status", "direction", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    chain: Mapped[str] = mapped_column(String(32))
    direction: Mapped[str] = mapped_column(String(66))
    destination_chain: Mapped[str] = mapped_column(String(32))
    token_address: Mapped[str] = mapped_column(String(42), default="")
    from_address: Mapped[str] = mapped_column(String(42))
    to_chain_id: Mapped[str] = mapped_column(String(78), default="")
    amount: Mapped[str] = mapped_column(String(78))
    fee_amount: Mapped[str] = mapped_column(String(78), default="0")

    block_hash: Mapped[str] = mapped_column(String(66))
    tx_hash: Mapped[str] = mapped_column(String(66))
    height: Mapped[int] = mapped_column(BigInteger)

    status: Mapped[str] = mapped_column(String(16), index=True)
    fill_tx_hash: Mapped[Optional[str]] = mapped_column(String(66), nullable=True)
    fill_height: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    track_attempts: Mapped[int] = mapped_column(Integer, default=0)
    deferrals: Mapped[int] = mapped_column(Integer, default=0)
    log: Mapped[str] = mapped_column(String(512), default="")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class SwapPair(Base):
    """A token pair registration and its createSwapPair on the target chain."""

    __tablename__ = "swap_pairs"
    __table_args__ = (
        UniqueConstraint("chain", "tx_hash", name="uq_swap_pairs_chain_tx"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    chain: Mapped[str] = mapped_column(String(32))
    destination_chain: Mapped[str] = mapped_column(String(32))
    sponsor: Mapped[str] = mapped_column(String(42))
    symbol: Mapped[str] = mapped_column(String(64))
    name: Mapped[str] = mapped_column(String(128))
    decimals: Mapped[int] = mapped_column(Integer)
    low_bound: Mapped[str] = mapped_column(String(78))
    upper_bound: Mapped[str] = mapped_column(String(78))
    source_token: Mapped[str] = mapped_column(String(42), index=True)
    destination_token: Mapped[str] = mapped_column(String(42))

    block_hash: Mapped[str] = mapped_column(String(66))
    tx_hash: Mapped[str] = mapped_column(String(66))
    height: Mapped[int] = mapped_column(BigInteger)

    status: Mapped[str] = mapped_column(String(16), index=True)
    create_tx_hash: Mapped[Optional[str]] = mapped_column(String(66), nullable=True)
    create_height: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    track_attempts: Mapped[int] = mapped_column(Integer, default=0)
    deferrals: Mapped[int] = mapped_column(Integer, default=0)
    log: Mapped[str] = mapped_column(String(512), default="")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class RetrySwap(Base):
    """A second fill attempt for a swap whose original fill failed."""

    __tablename__ = "retry_swaps"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    swap_id: Mapped[int] = mapped_column(ForeignKey("swap_events.id"), index=True)
    direction: Mapped[str] = mapped_column(String(66), index=True)
    status: Mapped[str] = mapped_column(String(16), index=True)
    fill_tx_hash: Mapped[Optional[str]] = mapped_column(String(66), nullable=True)
    fill_height: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    track_attempts: Mapped[int] = mapped_column(Integer, default=0)
    deferrals: Mapped[int] = mapped_column(Integer, default=0)
    log: Mapped[str] = mapped_column(String(512), default="")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
