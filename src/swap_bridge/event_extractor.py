#!/usr/bin/env python3
"""Event extraction for the swap bridge.

This module turns raw swap agent logs into typed contract events. Both
SwapStarted layouts share one signature hash, so the layout is chosen by the
chain's configured event variant rather than guessed from the log.
"""

import logging
from typing import Any

from eth_abi import decode
from eth_abi.exceptions import DecodingError
from hexbytes import HexBytes
from web3 import Web3

from .models import (
    ContractEvent,
    EventVariant,
    LogMeta,
    ReverseSwapStartedEvent,
    SwapPairRegisteredEvent,
    SwapStartedEvent,
)

# Get logger for this module
logger = logging.getLogger(__name__)

SWAP_STARTED_TOPIC = HexBytes("0x7b2b39fe8cb99baf3c533665217a130daefeee1af6329eca59c5bf06a53999ac")
SWAP_PAIR_REGISTER_TOPIC = HexBytes("0x06101386f3a9dd45570dce2027311173d0e136955e5b912edece89cca5bb526d")

WATCHED_TOPICS = [SWAP_STARTED_TOPIC, SWAP_PAIR_REGISTER_TOPIC]


def _field(log: Any, key: str) -> Any:
    """Read a log field from either a mapping or an attribute-style object."""
    if isinstance(log, dict) or hasattr(log, "keys"):
        return log[key]
    return getattr(log, key)


def topic_to_address(topic: bytes) -> str:
    """Last 20 bytes of an indexed topic as a checksummed address."""
    if len(topic) != 32:
        raise ValueError(f"Topic must be 32 bytes, got {len(topic)}")
    return Web3.to_checksum_address(topic[-20:])


def topic_to_int(topic: bytes) -> int:
    if len(topic) != 32:
        raise ValueError(f"Topic must be 32 bytes, got {len(topic)}")
    return int.from_bytes(topic, "big")


class EventExtractor:
    """Decodes swap agent logs for one chain."""

    def __init__(self, chain: str, variant: EventVariant) -> None:
        """
        Args:
            chain: Name of the chain the logs come from (for logging)
            variant: SwapStarted layout emitted by the chain's agent
        """
        self.chain = chain
        self.variant = variant
        self.logs_decoded = 0
        self.logs_skipped = 0

    def extract(self, log: Any) -> ContractEvent | None:
        """Decode one log.

        Returns:
            The typed event, or None when the log is not a bridge event or
            cannot be unpacked against the expected schema
        """
        try:
            topics = [HexBytes(topic) for topic in _field(log, "topics")]
            data = HexBytes(_field(log, "data"))
            meta = LogMeta(
                tx_hash=Web3.to_hex(HexBytes(_field(log, "transactionHash"))),
                block_hash=Web3.to_hex(HexBytes(_field(log, "blockHash"))),
                block_number=int(_field(log, "blockNumber")),
                log_index=int(_field(log, "logIndex")),
            )
            if not topics:
                raise ValueError("log has no topics")

            match topics[0]:
                case t if t == SWAP_STARTED_TOPIC and self.variant is EventVariant.FORWARD:
                    event = self._swap_started(meta, topics, data)
                case t if t == SWAP_STARTED_TOPIC:
                    event = self._reverse_swap_started(meta, topics)
                case t if t == SWAP_PAIR_REGISTER_TOPIC:
                    event = self._pair_registered(meta, topics, data)
                case _:
                    logger.debug(f"[{self.chain}] Ignoring log with unknown topic {Web3.to_hex(topics[0])}")
                    return None

        except (DecodingError, KeyError, AttributeError, IndexError, ValueError, TypeError) as e:
            self.logs_skipped += 1
            logger.error(f"[{self.chain}] Failed to decode log: {e}")
            return None

        self.logs_decoded += 1
        return event

    @staticmethod
    def _swap_started(meta: LogMeta, topics: list[HexBytes], data: HexBytes) -> SwapStartedEvent:
        if len(topics) != 3:
            raise ValueError(f"SwapStarted expects 3 topics, got {len(topics)}")
        amount, fee_amount = decode(["uint256", "uint256"], data)
        return SwapStartedEvent(
            meta=meta,
            token_address=topic_to_address(topics[1]),
            from_address=topic_to_address(topics[2]),
            amount=amount,
            fee_amount=fee_amount,
        )

    @staticmethod
    def _reverse_swap_started(meta: LogMeta, topics: list[HexBytes]) -> ReverseSwapStartedEvent:
        if len(topics) != 4:
            raise ValueError(f"Reverse SwapStarted expects 4 topics, got {len(topics)}")
        return ReverseSwapStartedEvent(
            meta=meta,
            to_chain_id=topic_to_int(topics[1]),
            from_address=topic_to_address(topics[2]),
            amount=topic_to_int(topics[3]),
        )

    @staticmethod
    def _pair_registered(meta: LogMeta, topics: list[HexBytes], data: HexBytes) -> SwapPairRegisteredEvent:
        if len(topics) != 4:
            raise ValueError(f"SphynxSwapPairRegister expects 4 topics, got {len(topics)}")
        name, symbol, decimals = decode(["string", "string", "uint8"], data)
        return SwapPairRegisteredEvent(
            meta=meta,
            sponsor=topic_to_address(topics[1]),
            token_address=topic_to_address(topics[2]),
            paired_token_address=topic_to_address(topics[3]),
            name=name,
            symbol=symbol,
            decimals=decimals,
        )
