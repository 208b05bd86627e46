#!/usr/bin/env python3
"""Tests for bridge wiring, startup and shutdown."""

import asyncio
import os
from unittest.mock import patch

import pytest

from conftest import BSC_AGENT, ETH_AGENT, KEYS, FakeChainClient, add_pair, swap_started_log, tx_hash
from swap_bridge.bridge import Bridge, key_source_for
from swap_bridge.config import BridgeConfig, KeyManagerConfig
from swap_bridge.db.store import BridgeStore
from swap_bridge.models import SwapStatus
from swap_bridge.utils.key_source import LocalKeySource, RoflKeySource


@pytest.fixture
def config(tmp_path):
    return BridgeConfig.from_dict({
        "chains": [
            {
                "name": "eth",
                "chain_id": 1,
                "rpc_url": "http://localhost:8545",
                "swap_agent_address": ETH_AGENT,
                "default_destination": "bsc",
                "pair_target": "bsc",
                "confirm_num": 0,
            },
            {
                "name": "bsc",
                "chain_id": 56,
                "rpc_url": "http://localhost:8546",
                "swap_agent_address": BSC_AGENT,
                "default_destination": "eth",
            },
        ],
        "monitoring": {"polling_interval": 0.02, "observer_interval": 0.02, "rpc_timeout": 0.1},
        "database": {"url": f"sqlite+aiosqlite:///{tmp_path}/bridge.db"},
    })


@pytest.fixture
def clients():
    return {"eth": FakeChainClient("eth", 1), "bsc": FakeChainClient("bsc", 56)}


@pytest.fixture
def bridge(config, clients):
    return Bridge(config, key_source=LocalKeySource(KEYS), clients=clients)


class TestBridgeWiring:
    """Components built from configuration."""

    def test_key_source_selection(self):
        assert isinstance(key_source_for(KeyManagerConfig()), LocalKeySource)
        assert isinstance(key_source_for(KeyManagerConfig(key_type="rofl")), RoflKeySource)

    def test_stage_plan(self, bridge):
        plan = bridge._stage_plan()

        for direction in ("eth_bsc", "bsc_eth"):
            for stage in ("confirm", "send", "track", "retry-send", "retry-track"):
                assert f"{stage}:{direction}" in plan
        assert {name for name in plan if name.startswith("pair-")} == {
            "pair-confirm:eth", "pair-send:eth", "pair-track:eth", "pair-finalize:eth"
        }
        assert set(bridge.observers) == {"eth", "bsc"}

    @pytest.mark.asyncio
    async def test_setup_connects_and_loads_keys(self, bridge, clients):
        await bridge.setup()
        try:
            assert clients["eth"].connected and clients["bsc"].connected
            assert bridge.chains["eth"].account is not None
            assert len(bridge.registry) == 0
        finally:
            await bridge.store.close()

    @pytest.mark.asyncio
    async def test_wrong_chain_id_is_fatal(self, config):
        clients = {"eth": FakeChainClient("eth", 5), "bsc": FakeChainClient("bsc", 56)}
        bridge = Bridge(config, key_source=LocalKeySource(KEYS), clients=clients)

        with pytest.raises(ValueError, match="chain id"):
            await bridge.setup()
        await bridge.store.close()

    @pytest.mark.asyncio
    async def test_missing_key_is_fatal(self, config, clients):
        bridge = Bridge(config, key_source=LocalKeySource(), clients=clients)

        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(ValueError, match="ETH_PRIVATE_KEY"):
                await bridge.setup()
        await bridge.store.close()


class TestBridgeRun:
    """End to end through the loops with scripted chains."""

    @pytest.mark.asyncio
    async def test_swap_flows_to_success_and_stops(self, bridge, clients, config):
        eth, bsc = clients["eth"], clients["bsc"]
        eth.add_block(0, [swap_started_log(0, tx_hash(1), amount=5000)])

        # Pre-register the pair the swap uses
        store = BridgeStore(config.database.url)
        await store.init()
        await add_pair(store, 99, "finalized", height=0)
        await store.close()

        run_task = asyncio.create_task(bridge.run())

        swap = None
        for _ in range(250):
            await asyncio.sleep(0.02)
            if not bridge.running:
                continue
            swaps = await bridge.store.fetch_swaps("eth_bsc", list(SwapStatus), 10)
            swap = swaps[0] if swaps else None
            if swap and swap.fill_tx_hash:
                bsc.receipts[swap.fill_tx_hash] = {"status": 1, "blockNumber": 7}
            if swap and swap.status == SwapStatus.SENT_SUCCESS.value:
                break

        status = await bridge.get_status()
        bridge.stop()
        await asyncio.wait_for(run_task, timeout=5)

        assert swap.status == SwapStatus.SENT_SUCCESS.value
        assert status["cursors"]["eth"] == 0
        assert status["records"]["swap_events"] == {"sent_success": 1}
        assert status["engine"]["swaps_sent"] == 1
        assert all(task.done() for task in bridge.tasks.values())
        assert not eth.connected and not bsc.connected

    @pytest.mark.asyncio
    async def test_dead_loop_stops_bridge(self, bridge):
        async def broken_polling():
            raise RuntimeError("observer crashed")

        bridge.observers["eth"].start_polling = broken_polling

        await asyncio.wait_for(bridge.run(), timeout=5)

        assert bridge.running is False
