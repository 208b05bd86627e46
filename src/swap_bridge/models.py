"""
Shared data models for the swap bridge.

This module contains the status enums and their allowed transitions, the
typed contract events produced by the event extractor, and the in-memory
swap pair description used by the registry.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class SwapStatus(str, Enum):
    """Lifecycle of a swap started on a source chain."""
    RECEIVED = "received"
    REJECTED = "rejected"
    CONFIRMED = "confirmed"
    SENDING = "sending"
    SENT = "sent"
    SENT_FAIL = "sent_fail"
    SENT_SUCCESS = "sent_success"


class SwapPairStatus(str, Enum):
    """Lifecycle of a swap pair registration."""
    RECEIVED = "received"
    CONFIRMED = "confirmed"
    SENDING = "sending"
    SENT = "sent"
    SENT_FAIL = "sent_fail"
    SENT_SUCCESS = "sent_success"
    FINALIZED = "finalized"


class RetrySwapStatus(str, Enum):
    """Lifecycle of a retried swap fill."""
    CONFIRMED = "confirmed"
    SENDING = "sending"
    SENT = "sent"
    SENT_FAIL = "sent_fail"
    SENT_SUCCESS = "sent_success"


class EventVariant(str, Enum):
    """Which swap agent flavour a chain runs.

    forward: SwapStarted(erc20Addr indexed, fromAddr indexed, amount, feeAmount)
    reverse: SwapStarted(toChainId indexed, fromAddr indexed, amount indexed)
    """
    FORWARD = "forward"
    REVERSE = "reverse"


class FillMethod(str, Enum):
    """Fill function exposed by a destination chain's swap agent."""
    FILL_ETH2BSC = "fillETH2BSCSwap"
    FILL_BSC2ETH = "fillBSC2ETHSwap"
    FILL_SWAP = "fillSwap"


class FeePolicy(str, Enum):
    """How the fee reported by the source agent affects the filled amount."""
    NONE = "none"
    DEDUCT = "deduct"


SWAP_TRANSITIONS: dict[SwapStatus, frozenset[SwapStatus]] = {
    SwapStatus.RECEIVED: frozenset({SwapStatus.CONFIRMED, SwapStatus.REJECTED}),
    SwapStatus.CONFIRMED: frozenset({SwapStatus.SENDING, SwapStatus.REJECTED}),
    SwapStatus.SENDING: frozenset({SwapStatus.SENT}),
    SwapStatus.SENT: frozenset({SwapStatus.SENT_SUCCESS, SwapStatus.SENT_FAIL}),
    SwapStatus.REJECTED: frozenset(),
    SwapStatus.SENT_SUCCESS: frozenset(),
    SwapStatus.SENT_FAIL: frozenset(),
}

SWAP_PAIR_TRANSITIONS: dict[SwapPairStatus, frozenset[SwapPairStatus]] = {
    SwapPairStatus.RECEIVED: frozenset({SwapPairStatus.CONFIRMED}),
    SwapPairStatus.CONFIRMED: frozenset({SwapPairStatus.SENDING}),
    SwapPairStatus.SENDING: frozenset({SwapPairStatus.SENT}),
    SwapPairStatus.SENT: frozenset({SwapPairStatus.SENT_SUCCESS, SwapPairStatus.SENT_FAIL}),
    SwapPairStatus.SENT_SUCCESS: frozenset({SwapPairStatus.FINALIZED}),
    SwapPairStatus.SENT_FAIL: frozenset(),
    SwapPairStatus.FINALIZED: frozenset(),
}

RETRY_SWAP_TRANSITIONS: dict[RetrySwapStatus, frozenset[RetrySwapStatus]] = {
    RetrySwapStatus.CONFIRMED: frozenset({RetrySwapStatus.SENDING}),
    RetrySwapStatus.SENDING: frozenset({RetrySwapStatus.SENT}),
    RetrySwapStatus.SENT: frozenset({RetrySwapStatus.SENT_SUCCESS, RetrySwapStatus.SENT_FAIL}),
    RetrySwapStatus.SENT_SUCCESS: frozenset(),
    RetrySwapStatus.SENT_FAIL: frozenset(),
}


def direction_name(source_chain: str, destination_chain: str) -> str:
    """Name of the pipeline carrying swaps from source to destination."""
    return f"{source_chain}_{destination_chain}"


@dataclass(frozen=True, slots=True)
class LogMeta:
    """Position of a contract log on its chain."""
    tx_hash: str
    block_hash: str
    block_number: int
    log_index: int


@dataclass(frozen=True, slots=True)
class SwapStartedEvent:
    """SwapStarted emitted by a forward-variant agent.

    The token and sender come from indexed topics, amount and fee from data.
    """
    meta: LogMeta
    token_address: str
    from_address: str
    amount: int
    fee_amount: int


@dataclass(frozen=True, slots=True)
class ReverseSwapStartedEvent:
    """SwapStarted emitted by a reverse-variant agent.

    Destination chain id, sender and amount are all indexed topics; the
    event carries no token address and no fee.
    """
    meta: LogMeta
    to_chain_id: int
    from_address: str
    amount: int


@dataclass(frozen=True, slots=True)
class SwapPairRegisteredEvent:
    """SphynxSwapPairRegister emitted when a sponsor registers a token pair."""
    meta: LogMeta
    sponsor: str
    token_address: str
    paired_token_address: str
    name: str
    symbol: str
    decimals: int


ContractEvent = SwapStartedEvent | ReverseSwapStartedEvent | SwapPairRegisteredEvent


@dataclass(frozen=True, slots=True)
class BlockHeader:
    """Header fields the observer needs from a block."""
    number: int
    block_hash: str
    parent_hash: str
    timestamp: int


@dataclass(slots=True)
class BlockEventBatch:
    """Events extracted from one scanned height of one chain."""
    chain: str
    height: int
    block_hash: str
    parent_hash: str
    block_time: int
    events: list[ContractEvent] = field(default_factory=list)

    def __str__(self) -> str:
        return (
            f"BlockEventBatch(chain={self.chain}, height={self.height}, "
            f"hash={self.block_hash[:10]}..., events={len(self.events)})"
        )


@dataclass(frozen=True, slots=True)
class SwapPairInfo:
    """Registered token pair as held by the swap pair registry.

    Attributes:
        symbol: Token symbol
        name: Token name
        decimals: Token decimals
        low_bound: Smallest accepted swap amount
        upper_bound: Largest accepted swap amount
        source_token: Token address on the chain the pair was registered on
        destination_token: Paired token address on the target chain
        source_chain: Chain the pair was registered on
        destination_chain: Chain the paired token was created on
    """
    symbol: str
    name: str
    decimals: int
    low_bound: int
    upper_bound: int
    source_token: str
    destination_token: str
    source_chain: str
    destination_chain: str

    def accepts(self, amount: int) -> bool:
        """Whether an amount lies inside the pair bounds (inclusive)."""
        return self.low_bound <= amount <= self.upper_bound

    def token_on(self, chain: str) -> str | None:
        """Address of the pair's token on one of its two chains."""
        if chain == self.source_chain:
            return self.source_token
        if chain == self.destination_chain:
            return self.destination_token
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "name": self.name,
            "decimals": self.decimals,
            "low_bound": str(self.low_bound),
            "upper_bound": str(self.upper_bound),
            "source_token": self.source_token,
            "destination_token": self.destination_token,
            "source_chain": self.source_chain,
            "destination_chain": self.destination_chain,
        }
