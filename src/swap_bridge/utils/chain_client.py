"""
Chain client adapter.

Wraps one AsyncWeb3 connection per chain. Every node call runs under a fixed
deadline; a timeout surfaces as RpcTimeout and any other node failure as
RpcError, so callers can treat both as "try again next tick".
"""

import asyncio
import logging
from collections.abc import Awaitable, Sequence
from typing import Any, TypeVar

from hexbytes import HexBytes
from web3 import AsyncWeb3, WebSocketProvider
from web3.exceptions import BlockNotFound, ContractLogicError, TransactionNotFound
from web3.types import LogReceipt, TxParams, TxReceipt

from ..errors import ExecutionReverted, RpcError, RpcTimeout
from ..models import BlockHeader

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ChainClient:
    """Per-chain RPC handle.

    The client also owns the chain's submission lock: reading the pending
    nonce, signing and broadcasting must happen under it so two pipelines
    targeting the same chain never reuse a nonce.
    """

    def __init__(self, name: str, rpc_url: str, timeout: float = 5.0, w3: AsyncWeb3 | None = None) -> None:
        """
        Initialize the chain client.

        Args:
            name: Chain name used in logs and errors
            rpc_url: HTTP(S) or WS(S) endpoint
            timeout: Deadline in seconds applied to every call
            w3: Pre-built AsyncWeb3 instance (mainly for tests)
        """
        self.name = name
        self.rpc_url = rpc_url
        self.timeout = timeout
        self.lock = asyncio.Lock()

        if w3 is not None:
            self.w3 = w3
        elif rpc_url.startswith(("ws:", "wss:")):
            self.w3 = AsyncWeb3(WebSocketProvider(rpc_url))
        else:
            self.w3 = AsyncWeb3(
                AsyncWeb3.AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": timeout})
            )

    async def connect(self, expected_chain_id: int) -> None:
        """Open the connection and check the node serves the expected chain.

        Raises:
            ValueError: If the node is unreachable or on another chain
        """
        try:
            if isinstance(self.w3.provider, WebSocketProvider):
                await self.w3.provider.connect()
            chain_id = await self._call("chain_id", self.w3.eth.chain_id)
        except RpcError as e:
            raise ValueError(f"Chain {self.name} is unreachable at startup: {e}") from e

        if chain_id != expected_chain_id:
            raise ValueError(
                f"Chain {self.name} RPC reports chain id {chain_id}, expected {expected_chain_id}"
            )
        logger.info(f"Connected to {self.name} (chain id {chain_id})")

    async def disconnect(self) -> None:
        if isinstance(self.w3.provider, WebSocketProvider):
            await self.w3.provider.disconnect()

    async def _call(
        self,
        method: str,
        awaitable: Awaitable[T],
        passthrough: tuple[type[Exception], ...] = (),
    ) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError:
            raise RpcTimeout(self.name, method, self.timeout) from None
        except passthrough:
            raise
        except Exception as e:
            raise RpcError(self.name, method, str(e)) from e

    async def block_number(self) -> int:
        return await self._call("block_number", self.w3.eth.block_number)

    async def header_at(self, height: int) -> BlockHeader | None:
        """Header at a height, or None when the chain has not reached it."""
        try:
            block = await self._call("get_block", self.w3.eth.get_block(height), (BlockNotFound,))
        except BlockNotFound:
            return None
        if block is None:
            return None

        return BlockHeader(
            number=block["number"],
            block_hash=AsyncWeb3.to_hex(block["hash"]),
            parent_hash=AsyncWeb3.to_hex(block["parentHash"]),
            timestamp=block["timestamp"],
        )

    async def filter_logs(
        self,
        from_height: int,
        to_height: int,
        addresses: Sequence[str],
        topics: Sequence[Any],
    ) -> list[LogReceipt]:
        logs = await self._call(
            "get_logs",
            self.w3.eth.get_logs({
                "fromBlock": from_height,
                "toBlock": to_height,
                "address": list(addresses),
                "topics": list(topics),
            }),
        )
        return list(logs)

    async def pending_nonce(self, address: str) -> int:
        return await self._call(
            "get_transaction_count", self.w3.eth.get_transaction_count(address, "pending")
        )

    async def suggest_gas_price(self) -> int:
        return await self._call("gas_price", self.w3.eth.gas_price)

    async def estimate_gas(self, tx: TxParams) -> int:
        try:
            return await self._call("estimate_gas", self.w3.eth.estimate_gas(tx), (ContractLogicError,))
        except ContractLogicError as e:
            raise ExecutionReverted(self.name, "estimate_gas", str(e)) from e

    async def send_raw_transaction(self, raw_tx: bytes) -> str:
        tx_hash = await self._call("send_raw_transaction", self.w3.eth.send_raw_transaction(raw_tx))
        return AsyncWeb3.to_hex(tx_hash)

    async def transaction_receipt(self, tx_hash: str) -> TxReceipt | None:
        """Receipt for a transaction, or None while it is not mined."""
        try:
            return await self._call(
                "get_transaction_receipt",
                self.w3.eth.get_transaction_receipt(HexBytes(tx_hash)),
                (TransactionNotFound,),
            )
        except TransactionNotFound:
            return None
