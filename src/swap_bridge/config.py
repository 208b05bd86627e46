#!/usr/bin/env python3
"""Configuration management for the swap bridge.

This module provides type-safe configuration dataclasses with validation.
Configuration is loaded from a JSON document; signing keys never live in it
and are resolved separately by a key source.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, ClassVar
from urllib.parse import urlparse

from web3 import Web3

from .models import EventVariant, FeePolicy, FillMethod

# Get logger for this module
logger = logging.getLogger(__name__)

MAX_UPPER_BOUND = "999999999999999999999999999999999999"


def _checksum(value: str, what: str) -> str:
    if not value:
        raise ValueError(f"{what} is required")
    if not Web3.is_address(value):
        raise ValueError(f"Invalid {what}: {value}")
    return Web3.to_checksum_address(value)


@dataclass(frozen=True, slots=True)
class ChainConfig:
    """Configuration for one watched chain.

    Attributes:
        name: Short chain name used in records and directions (e.g. 'eth')
        chain_id: EIP-155 chain id
        rpc_url: HTTP(S) or WS(S) RPC endpoint
        swap_agent_address: Checksummed address of the bridge agent contract
        start_height: First height to scan when no cursor is stored
        confirm_num: Confirmation depth required before a swap is acted on
        event_variant: SwapStarted layout emitted by this chain's agent
        fill_method: Fill function this chain's agent exposes
        default_destination: Destination chain for forward-variant swaps
        pair_target: Chain whose agent receives createSwapPair for pairs
            registered on this chain
        token_address: Token handled by a reverse-variant agent
    """

    name: str
    chain_id: int
    rpc_url: str
    swap_agent_address: str
    start_height: int = 0
    confirm_num: int = 15
    event_variant: EventVariant = EventVariant.FORWARD
    fill_method: FillMethod = FillMethod.FILL_SWAP
    default_destination: str | None = None
    pair_target: str | None = None
    token_address: str | None = None

    def __post_init__(self) -> None:
        """Validate chain configuration."""
        if not self.name:
            raise ValueError("Chain name is required")

        if self.chain_id <= 0:
            raise ValueError(f"Chain id must be positive for {self.name}, got {self.chain_id}")

        if not self.rpc_url:
            raise ValueError(f"RPC URL is required for chain {self.name}")
        parsed = urlparse(self.rpc_url)
        if parsed.scheme not in ('http', 'https', 'ws', 'wss'):
            raise ValueError(
                f"Invalid RPC URL scheme for {self.name}: {parsed.scheme}. "
                "Expected http, https, ws, or wss"
            )

        object.__setattr__(
            self, 'swap_agent_address',
            _checksum(self.swap_agent_address, f"swap agent address for {self.name}")
        )
        if self.token_address:
            object.__setattr__(
                self, 'token_address',
                _checksum(self.token_address, f"token address for {self.name}")
            )

        if self.start_height < 0:
            raise ValueError(f"Start height must be non-negative, got {self.start_height}")
        if self.confirm_num < 0:
            raise ValueError(f"Confirmation depth must be non-negative, got {self.confirm_num}")

        # Accept plain strings from JSON
        object.__setattr__(self, 'event_variant', EventVariant(self.event_variant))
        object.__setattr__(self, 'fill_method', FillMethod(self.fill_method))


@dataclass(frozen=True, slots=True)
class MonitoringConfig:
    """Configuration for polling loops and transaction handling."""
    polling_interval: float = 5  # seconds between stage ticks
    observer_interval: float = 2  # seconds to wait once the observer is at the tip
    rpc_timeout: float = 5  # per-call node deadline in seconds
    swap_batch_size: int = 50
    track_batch_size: int = 100
    pair_batch_size: int = 5
    receipt_retry_budget: int = 60  # receipt polls before a send counts as failed
    fee_policy: FeePolicy = FeePolicy.NONE

    def __post_init__(self) -> None:
        """Validate monitoring configuration."""
        if self.polling_interval <= 0:
            raise ValueError(f"Polling interval must be positive, got {self.polling_interval}")
        if self.polling_interval > 300:
            raise ValueError(f"Polling interval too long (max 300s), got {self.polling_interval}")
        if self.observer_interval <= 0:
            raise ValueError(f"Observer interval must be positive, got {self.observer_interval}")

        if self.rpc_timeout <= 0:
            raise ValueError(f"RPC timeout must be positive, got {self.rpc_timeout}")
        if self.rpc_timeout > 60:
            raise ValueError(f"RPC timeout too long (max 60s), got {self.rpc_timeout}")

        for name in ('swap_batch_size', 'track_batch_size', 'pair_batch_size', 'receipt_retry_budget'):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")

        object.__setattr__(self, 'fee_policy', FeePolicy(self.fee_policy))


@dataclass(frozen=True, slots=True)
class DatabaseConfig:
    """Persistent store location."""
    url: str = "sqlite+aiosqlite:///swap_bridge.db"

    def __post_init__(self) -> None:
        if "://" not in self.url:
            raise ValueError(f"Invalid database URL: {self.url}")


@dataclass(frozen=True, slots=True)
class KeyManagerConfig:
    """Where signing keys come from.

    Attributes:
        key_type: 'local' reads <CHAIN>_PRIVATE_KEY environment variables,
            'rofl' asks the ROFL application daemon
        rofl_url: Optional daemon URL or socket path (defaults to the socket)
    """

    key_type: str = "local"
    rofl_url: str = ""

    SUPPORTED_TYPES: ClassVar[set[str]] = {'local', 'rofl'}

    def __post_init__(self) -> None:
        if self.key_type not in self.SUPPORTED_TYPES:
            raise ValueError(
                f"Unsupported key type: {self.key_type}. "
                f"Supported types: {', '.join(sorted(self.SUPPORTED_TYPES))}"
            )


@dataclass(frozen=True, slots=True)
class PairDefaultsConfig:
    """Bounds given to newly registered swap pairs."""
    low_bound: str = "0"
    upper_bound: str = MAX_UPPER_BOUND

    def __post_init__(self) -> None:
        try:
            low, upper = int(self.low_bound), int(self.upper_bound)
        except ValueError:
            raise ValueError(
                f"Pair bounds must be decimal integers, got {self.low_bound!r}/{self.upper_bound!r}"
            ) from None
        if low < 0 or upper < low:
            raise ValueError(f"Invalid pair bounds [{low}, {upper}]")


@dataclass(frozen=True, slots=True)
class BridgeConfig:
    """Main configuration for the swap bridge."""

    chains: tuple[ChainConfig, ...]
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    key_manager: KeyManagerConfig = field(default_factory=KeyManagerConfig)
    pair_defaults: PairDefaultsConfig = field(default_factory=PairDefaultsConfig)

    def __post_init__(self) -> None:
        """Validate cross-chain references."""
        if len(self.chains) < 2:
            raise ValueError("At least two chains must be configured")

        names = [chain.name for chain in self.chains]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate chain names: {names}")
        chain_ids = [chain.chain_id for chain in self.chains]
        if len(set(chain_ids)) != len(chain_ids):
            raise ValueError(f"Duplicate chain ids: {chain_ids}")

        for chain in self.chains:
            for ref in (chain.default_destination, chain.pair_target):
                if ref is not None and ref not in names:
                    raise ValueError(f"Chain {chain.name} references unknown chain {ref}")
                if ref == chain.name:
                    raise ValueError(f"Chain {chain.name} cannot target itself")

    def chain(self, name: str) -> ChainConfig:
        for chain in self.chains:
            if chain.name == name:
                return chain
        raise KeyError(name)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BridgeConfig":
        """Build configuration from a decoded JSON document.

        Raises:
            ValueError: If required fields are missing or invalid
        """
        raw_chains = data.get("chains")
        if not raw_chains:
            raise ValueError("'chains' must list the watched chains")

        try:
            chains = tuple(ChainConfig(**chain) for chain in raw_chains)
            monitoring = MonitoringConfig(**data.get("monitoring", {}))
            database = DatabaseConfig(**data.get("database", {}))
            key_manager = KeyManagerConfig(**data.get("key_manager", {}))
            pair_defaults = PairDefaultsConfig(**data.get("pair_defaults", {}))
        except TypeError as e:
            raise ValueError(f"Invalid configuration field: {e}") from None

        return cls(
            chains=chains,
            monitoring=monitoring,
            database=database,
            key_manager=key_manager,
            pair_defaults=pair_defaults,
        )

    @classmethod
    def from_file(cls, path: str | os.PathLike) -> "BridgeConfig":
        """Load configuration from a JSON file."""
        config_path = Path(path)
        if not config_path.is_file():
            raise ValueError(f"Config file not found: {config_path}")
        try:
            data = json.loads(config_path.read_text())
        except json.JSONDecodeError as e:
            raise ValueError(f"Config file {config_path} is not valid JSON: {e}") from None
        return cls.from_dict(data)

    def log_config(self) -> None:
        """Log the configuration in a readable format for debugging."""
        logger.info("=" * 60)
        logger.info("Swap Bridge Configuration")
        logger.info("=" * 60)

        for chain in self.chains:
            logger.info(f"Chain {chain.name} (id {chain.chain_id}):")
            logger.info(f"  RPC URL: {chain.rpc_url}")
            logger.info(f"  Swap Agent: {chain.swap_agent_address}")
            logger.info(f"  Start Height: {chain.start_height}")
            logger.info(f"  Confirmations: {chain.confirm_num}")
            logger.info(f"  Event Variant: {chain.event_variant.value}")
            logger.info(f"  Fill Method: {chain.fill_method.value}")
            if chain.default_destination:
                logger.info(f"  Default Destination: {chain.default_destination}")
            if chain.pair_target:
                logger.info(f"  Pair Target: {chain.pair_target}")

        logger.info("Monitoring Settings:")
        logger.info(f"  Polling Interval: {self.monitoring.polling_interval} seconds")
        logger.info(f"  RPC Timeout: {self.monitoring.rpc_timeout} seconds")
        logger.info(f"  Receipt Retry Budget: {self.monitoring.receipt_retry_budget}")
        logger.info(f"  Fee Policy: {self.monitoring.fee_policy.value}")

        logger.info(f"Database: {self.database.url.split('://', 1)[0]}://[HIDDEN]")
        logger.info(f"Key Manager: {self.key_manager.key_type.upper()}")
        logger.info("=" * 60)
