"""
Swap bridge service.

This module wires chain contexts, observers and the lifecycle engines
together and runs one polling loop per observer and per (stage, direction).
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from .chain_context import ChainContext
from .config import BridgeConfig, KeyManagerConfig
from .db.store import BridgeStore
from .errors import RpcError
from .observer import ChainObserver
from .pair_engine import SwapPairEngine
from .registry import SwapPairRegistry
from .retry import RetrySwapEngine
from .swap_engine import SwapEngine
from .utils.chain_client import ChainClient
from .utils.contract_utility import ContractUtility
from .utils.key_source import KeySource, LocalKeySource, RoflKeySource

logger = logging.getLogger(__name__)

SWAP_AGENT_CONTRACT = "SwapAgent"


def key_source_for(config: KeyManagerConfig) -> KeySource:
    if config.key_type == "rofl":
        return RoflKeySource(config.rofl_url)
    return LocalKeySource()


class Bridge:
    """
    Main bridge service that owns every component and loop.

    Startup problems (bad addresses, an ABI without the configured fill
    method, unreachable chains, missing keys) raise ValueError; once running,
    the loops only return when stopped.
    """

    STATUS_LOG_INTERVAL = 60  # seconds

    def __init__(
        self,
        config: BridgeConfig,
        key_source: KeySource | None = None,
        store: BridgeStore | None = None,
        clients: dict[str, ChainClient] | None = None,
    ):
        """
        Initialize the bridge.

        Args:
            config: Bridge configuration
            key_source: Where signing keys come from (defaults per config)
            store: Persistent store (defaults to the configured database)
            clients: Pre-built chain clients by chain name (mainly for tests)
        """
        self.config = config
        self.key_source = key_source or key_source_for(config.key_manager)
        self.store = store or BridgeStore(config.database.url)
        self.registry = SwapPairRegistry()
        self.running = False

        self.chains = self._init_chains(clients or {})

        monitoring = config.monitoring
        self.swap_engine = SwapEngine(self.store, self.registry, self.chains, monitoring)
        self.pair_engine = SwapPairEngine(self.store, self.registry, self.chains, monitoring)
        self.retry_engine = RetrySwapEngine(self.store, self.registry, self.chains, monitoring)

        chain_names_by_id = {chain.chain_id: chain.name for chain in config.chains}
        pair_defaults = (config.pair_defaults.low_bound, config.pair_defaults.upper_bound)
        self.observers = {
            name: ChainObserver(
                chain,
                self.store,
                chain_names_by_id,
                pair_defaults=pair_defaults,
                interval=monitoring.observer_interval,
            )
            for name, chain in self.chains.items()
        }

        # Async coordination
        self.shutdown_event = asyncio.Event()
        self.tasks: dict[str, asyncio.Task] = {}

    def _init_chains(self, clients: dict[str, ChainClient]) -> dict[str, ChainContext]:
        abi = ContractUtility.get_contract_abi(SWAP_AGENT_CONTRACT)
        chains: dict[str, ChainContext] = {}
        for chain_config in self.config.chains:
            contract = ContractUtility(abi)
            contract.validate_agent(chain_config.fill_method)
            client = clients.get(chain_config.name) or ChainClient(
                chain_config.name, chain_config.rpc_url, timeout=self.config.monitoring.rpc_timeout
            )
            chains[chain_config.name] = ChainContext(config=chain_config, client=client, contract=contract)
        return chains

    async def setup(self) -> None:
        """Open the store, connect every chain, load keys and the registry."""
        await self.store.init()

        for chain in self.chains.values():
            await chain.client.connect(chain.chain_id)
            chain.load_key(await self.key_source.fetch_key(chain.name))
            logger.info(f"Signer for {chain.name}: {chain.sender_address}")

        loaded = await self.registry.bootstrap(await self.store.finalized_pairs())
        logger.info(f"Swap pair registry bootstrapped with {loaded} pairs")

    def _stage_plan(self) -> dict[str, tuple[Callable[..., Awaitable[Any]], tuple[Any, ...]]]:
        plan: dict[str, tuple[Callable[..., Awaitable[Any]], tuple[Any, ...]]] = {}
        for source, destination in self.swap_engine.directions():
            direction = f"{source}_{destination}"
            plan[f"confirm:{direction}"] = (self.swap_engine.confirm_swaps, (source, destination))
            plan[f"send:{direction}"] = (self.swap_engine.send_swaps, (source, destination))
            plan[f"track:{direction}"] = (self.swap_engine.track_sent_swaps, (source, destination))
            plan[f"retry-send:{direction}"] = (self.retry_engine.send_retries, (source, destination))
            plan[f"retry-track:{direction}"] = (self.retry_engine.track_retries, (source, destination))

        for chain in self.pair_engine.registration_chains():
            plan[f"pair-confirm:{chain}"] = (self.pair_engine.confirm_pairs, (chain,))
            plan[f"pair-send:{chain}"] = (self.pair_engine.send_pairs, (chain,))
            plan[f"pair-track:{chain}"] = (self.pair_engine.track_pairs, (chain,))
            plan[f"pair-finalize:{chain}"] = (self.pair_engine.finalize_pairs, (chain,))
        return plan

    async def _sleep(self, seconds: float) -> None:
        """Sleep, waking early on shutdown."""
        try:
            await asyncio.wait_for(self.shutdown_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def _stage_loop(self, name: str, stage: Callable[..., Awaitable[Any]], args: tuple[Any, ...]) -> None:
        """Run one stage on a fixed interval until stopped."""
        interval = self.config.monitoring.polling_interval
        logger.debug(f"Stage {name} started, every {interval}s")
        while self.running:
            try:
                await stage(*args)
            except RpcError as e:
                logger.warning(f"Stage {name}: {e}")
            except Exception as e:
                logger.error(f"Stage {name} failed: {e}", exc_info=True)
            await self._sleep(interval)

    async def _periodic_status_logger(self) -> None:
        """Log status periodically while running."""
        while self.running:
            await self._sleep(self.STATUS_LOG_INTERVAL)
            if not self.running:
                break
            status = await self.get_status()
            logger.info(f"Status: cursors={status['cursors']} records={status['records']}")

    async def _check_task_health(self) -> bool:
        """Check if any loop has ended while the bridge is running."""
        for name, task in self.tasks.items():
            if task.done():
                try:
                    await task
                except Exception as e:
                    logger.error(f"{name} task failed: {e}", exc_info=True)
                else:
                    logger.error(f"{name} task exited unexpectedly")
                return False
        return True

    async def _cleanup_tasks(self) -> None:
        """Let in-flight ticks finish, then cancel whatever is left."""
        self.running = False
        self.shutdown_event.set()
        for observer in self.observers.values():
            await observer.stop()

        pending = [task for task in self.tasks.values() if not task.done()]
        if pending:
            monitoring = self.config.monitoring
            grace = monitoring.observer_interval + 4 * monitoring.rpc_timeout
            _, still_running = await asyncio.wait(pending, timeout=grace)
            for task in still_running:
                task.cancel()
            if still_running:
                await asyncio.gather(*still_running, return_exceptions=True)

        for chain in self.chains.values():
            await chain.client.disconnect()
        await self.store.close()

    async def run(self) -> None:
        """Main event loop for the bridge service."""
        await self.setup()

        self.running = True
        self.shutdown_event.clear()
        logger.info("Swap bridge starting...")

        try:
            for name, observer in self.observers.items():
                self.tasks[f"observer:{name}"] = asyncio.create_task(observer.start_polling())
            for name, (stage, args) in self._stage_plan().items():
                self.tasks[name] = asyncio.create_task(self._stage_loop(name, stage, args))
            self.tasks["status"] = asyncio.create_task(self._periodic_status_logger())

            logger.info(f"Started {len(self.tasks)} loops across {len(self.chains)} chains")

            # Wait until shutdown or task failure
            while self.running:
                try:
                    await asyncio.wait_for(self.shutdown_event.wait(), timeout=1.0)
                    break  # Shutdown requested
                except asyncio.TimeoutError:
                    pass  # Continue running

                if not await self._check_task_health():
                    logger.error("Critical task failure, shutting down")
                    break

        finally:
            await self._cleanup_tasks()
            logger.info("Swap bridge stopped")

    def stop(self) -> None:
        """Stop the bridge service."""
        self.running = False
        self.shutdown_event.set()

    async def create_retry_swap(self, swap_id: int) -> int:
        return await self.swap_engine.create_retry_swap(swap_id)

    async def get_status(self) -> dict[str, Any]:
        """Health and progress summary for operators."""
        return {
            "running": self.running,
            "cursors": await self.store.cursors(),
            "records": await self.store.status_counts(),
            "observers": {name: observer.get_status() for name, observer in self.observers.items()},
            "pairs": len(self.registry),
            "engine": {**self.swap_engine.get_stats(), **self.pair_engine.get_stats()},
        }
