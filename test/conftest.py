"""Shared fixtures: a temporary SQLite store, a scripted chain client and log builders."""

import asyncio
from collections.abc import Callable
from typing import Any

import pytest
import pytest_asyncio
from eth_abi import encode
from hexbytes import HexBytes
from web3 import Web3

from swap_bridge.chain_context import ChainContext
from swap_bridge.config import ChainConfig, MonitoringConfig
from swap_bridge.db.models import SwapEvent, SwapPair
from swap_bridge.db.store import BridgeStore
from swap_bridge.errors import ExecutionReverted
from swap_bridge.event_extractor import SWAP_PAIR_REGISTER_TOPIC, SWAP_STARTED_TOPIC
from swap_bridge.models import BlockHeader, EventVariant, FillMethod, SwapPairInfo, SwapStatus
from swap_bridge.utils.contract_utility import ContractUtility

# Digit-only addresses are already in checksum form
ETH_AGENT = "0x1111111111111111111111111111111111111111"
BSC_AGENT = "0x6666666666666666666666666666666666666666"
HECO_AGENT = "0x7777777777777777777777777777777777777777"
TOKEN = "0x2222222222222222222222222222222222222222"
PAIRED_TOKEN = "0x3333333333333333333333333333333333333333"
SENDER = "0x4444444444444444444444444444444444444444"
SPONSOR = "0x5555555555555555555555555555555555555555"

KEYS = {
    "eth": "0x" + "11" * 32,
    "bsc": "0x" + "22" * 32,
    "heco": "0x" + "33" * 32,
}


def block_hash_at(height: int) -> str:
    return "0x" + f"{height:064x}"


def tx_hash(n: int) -> str:
    return "0x" + f"{0xabc000 + n:064x}"


class FakeChainClient:
    """Scripted stand-in for ChainClient.

    Set `fail[method]` to an exception to make that call raise it, or
    `reverts` to a predicate on call data to make estimate_gas revert.
    """

    def __init__(self, name: str, chain_id: int, tip: int = 0):
        self.name = name
        self.chain_id = chain_id
        self.lock = asyncio.Lock()
        self.tip = tip
        self.headers: dict[int, BlockHeader] = {}
        self.logs: dict[int, list[dict[str, Any]]] = {}
        self.receipts: dict[str, dict[str, Any]] = {}
        self.fail: dict[str, Exception] = {}
        self.reverts: Callable[[bytes], bool] | None = None
        self.nonce = 0
        self.served_nonces: list[int] = []
        self.sent: list[bytes] = []
        self.connected = False

    def _check(self, method: str) -> None:
        if (error := self.fail.get(method)) is not None:
            raise error

    def add_block(self, height: int, logs: list[dict[str, Any]] | None = None) -> BlockHeader:
        header = BlockHeader(
            number=height,
            block_hash=block_hash_at(height),
            parent_hash=block_hash_at(height - 1),
            timestamp=1_700_000_000 + height,
        )
        self.headers[height] = header
        self.logs[height] = list(logs or [])
        self.tip = max(self.tip, height)
        return header

    async def connect(self, expected_chain_id: int) -> None:
        self._check("connect")
        if expected_chain_id != self.chain_id:
            raise ValueError(f"Chain {self.name} RPC reports chain id {self.chain_id}")
        self.connected = True

    async def disconnect(self) -> None:
        self.connected = False

    async def block_number(self) -> int:
        self._check("block_number")
        return self.tip

    async def header_at(self, height: int) -> BlockHeader | None:
        self._check("header_at")
        return self.headers.get(height)

    async def filter_logs(self, from_height, to_height, addresses, topics) -> list[dict[str, Any]]:
        self._check("filter_logs")
        logs = []
        for height in range(from_height, to_height + 1):
            logs.extend(self.logs.get(height, []))
        return logs

    async def pending_nonce(self, address: str) -> int:
        self._check("pending_nonce")
        await asyncio.sleep(0)
        self.served_nonces.append(self.nonce)
        return self.nonce

    async def suggest_gas_price(self) -> int:
        await asyncio.sleep(0)
        return 1_000_000_000

    async def estimate_gas(self, tx) -> int:
        self._check("estimate_gas")
        if self.reverts is not None and self.reverts(bytes(tx["data"])):
            raise ExecutionReverted(self.name, "estimate_gas", "execution reverted")
        return 100_000

    async def send_raw_transaction(self, raw_tx: bytes) -> str:
        self._check("send_raw_transaction")
        await asyncio.sleep(0)
        self.nonce += 1
        self.sent.append(bytes(raw_tx))
        return Web3.to_hex(Web3.keccak(raw_tx))

    async def transaction_receipt(self, tx_hash: str) -> dict[str, Any] | None:
        self._check("transaction_receipt")
        return self.receipts.get(tx_hash)


def make_chain(
    client: FakeChainClient,
    agent: str,
    fill_method: FillMethod = FillMethod.FILL_SWAP,
    event_variant: EventVariant = EventVariant.FORWARD,
    confirm_num: int = 15,
    start_height: int = 0,
    default_destination: str | None = None,
    pair_target: str | None = None,
    token_address: str | None = None,
) -> ChainContext:
    config = ChainConfig(
        name=client.name,
        chain_id=client.chain_id,
        rpc_url="http://localhost:8545",
        swap_agent_address=agent,
        start_height=start_height,
        confirm_num=confirm_num,
        event_variant=event_variant,
        fill_method=fill_method,
        default_destination=default_destination,
        pair_target=pair_target,
        token_address=token_address,
    )
    chain = ChainContext(config=config, client=client, contract=ContractUtility.for_contract("SwapAgent"))
    chain.load_key(KEYS[client.name])
    return chain


def address_topic(address: str) -> HexBytes:
    return HexBytes(bytes(12) + HexBytes(address))


def int_topic(value: int) -> HexBytes:
    return HexBytes(value.to_bytes(32, "big"))


def make_log(topics: list[HexBytes], data: bytes, height: int, tx: str, block_hash: str | None = None) -> dict[str, Any]:
    return {
        "address": ETH_AGENT,
        "topics": topics,
        "data": HexBytes(data),
        "transactionHash": HexBytes(tx),
        "blockHash": HexBytes(block_hash or block_hash_at(height)),
        "blockNumber": height,
        "logIndex": 0,
    }


def swap_started_log(height: int, tx: str, amount: int, fee: int = 0, token: str = TOKEN, sender: str = SENDER, **kwargs):
    topics = [SWAP_STARTED_TOPIC, address_topic(token), address_topic(sender)]
    return make_log(topics, encode(["uint256", "uint256"], [amount, fee]), height, tx, **kwargs)


def reverse_swap_log(height: int, tx: str, to_chain_id: int, amount: int, sender: str = SENDER, **kwargs):
    topics = [SWAP_STARTED_TOPIC, int_topic(to_chain_id), address_topic(sender), int_topic(amount)]
    return make_log(topics, b"", height, tx, **kwargs)


def pair_register_log(height: int, tx: str, name: str = "Test Token", symbol: str = "TST", decimals: int = 18, **kwargs):
    topics = [SWAP_PAIR_REGISTER_TOPIC, address_topic(SPONSOR), address_topic(TOKEN), address_topic(PAIRED_TOKEN)]
    return make_log(topics, encode(["string", "string", "uint8"], [name, symbol, decimals]), height, tx, **kwargs)


def pair_info(
    low: int = 1000,
    upper: int = 500000,
    source: str = TOKEN,
    destination: str = PAIRED_TOKEN,
    source_chain: str = "eth",
    destination_chain: str = "bsc",
) -> SwapPairInfo:
    return SwapPairInfo(
        symbol="TST",
        name="Test Token",
        decimals=18,
        low_bound=low,
        upper_bound=upper,
        source_token=source,
        destination_token=destination,
        source_chain=source_chain,
        destination_chain=destination_chain,
    )


async def add_swap(
    store: BridgeStore,
    n: int,
    height: int = 80,
    amount: str = "5000",
    fee: str = "0",
    status: SwapStatus = SwapStatus.RECEIVED,
    source: str = "eth",
    destination: str = "bsc",
    token: str = TOKEN,
) -> SwapEvent:
    record = SwapEvent(
        chain=source,
        direction=f"{source}_{destination}",
        destination_chain=destination,
        token_address=token,
        from_address=SENDER,
        amount=amount,
        fee_amount=fee,
        block_hash=block_hash_at(height),
        tx_hash=tx_hash(n),
        height=height,
        status=status.value,
        track_attempts=0,
        log="",
    )
    async with store.session() as session:
        session.add(record)
    return record


async def add_pair(store: BridgeStore, n: int, status: str, height: int = 10, chain: str = "eth", target: str = "bsc", **fields) -> SwapPair:
    values = {
        "chain": chain,
        "destination_chain": target,
        "sponsor": SPONSOR,
        "symbol": "TST",
        "name": "Test Token",
        "decimals": 18,
        "low_bound": "0",
        "upper_bound": "1000000",
        "source_token": TOKEN,
        "destination_token": PAIRED_TOKEN,
        "block_hash": block_hash_at(height),
        "tx_hash": tx_hash(n),
        "height": height,
        "status": status,
        "track_attempts": 0,
        "log": "",
    }
    values.update(fields)
    record = SwapPair(**values)
    async with store.session() as session:
        session.add(record)
    return record


@pytest_asyncio.fixture
async def store(tmp_path):
    store = BridgeStore(f"sqlite+aiosqlite:///{tmp_path}/bridge.db")
    await store.init()
    yield store
    await store.close()


@pytest.fixture
def monitoring():
    return MonitoringConfig(polling_interval=0.05, observer_interval=0.05, rpc_timeout=0.5, receipt_retry_budget=3)


@pytest.fixture
def eth_client():
    return FakeChainClient("eth", 1)


@pytest.fixture
def bsc_client():
    return FakeChainClient("bsc", 56)


@pytest.fixture
def chains(eth_client, bsc_client):
    return {
        "eth": make_chain(eth_client, ETH_AGENT, default_destination="bsc", pair_target="bsc"),
        "bsc": make_chain(bsc_client, BSC_AGENT, default_destination="eth"),
    }
