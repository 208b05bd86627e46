#!/usr/bin/env python3
"""Tests for ABI loading, call encoding and fill submission."""

import asyncio

import pytest
from eth_abi import decode
from eth_utils import function_signature_to_4byte_selector
from hexbytes import HexBytes

from conftest import (
    BSC_AGENT,
    ETH_AGENT,
    PAIRED_TOKEN,
    SENDER,
    TOKEN,
    FakeChainClient,
    make_chain,
    pair_info,
    tx_hash,
)
from swap_bridge.errors import RpcError
from swap_bridge.models import FillMethod
from swap_bridge.transactions import (
    ReceiptState,
    build_create_pair_call,
    build_fill_call,
    check_receipt,
    sign_and_submit,
)
from swap_bridge.utils.contract_utility import ContractUtility


class TestContractUtility:
    """ABI loading and validation."""

    def test_swap_agent_abi_loads(self):
        abi = ContractUtility.get_contract_abi("SwapAgent")
        names = {entry["name"] for entry in abi}
        assert {"SwapStarted", "SphynxSwapPairRegister", "fillSwap", "createSwapPair"} <= names

    def test_missing_contract(self):
        with pytest.raises(ValueError, match="Cannot load ABI"):
            ContractUtility.get_contract_abi("NoSuchContract")

    @pytest.mark.parametrize("method", list(FillMethod))
    def test_agent_exposes_every_fill_method(self, method):
        ContractUtility.for_contract("SwapAgent").validate_agent(method)

    def test_agent_without_fill_method(self):
        abi = [entry for entry in ContractUtility.get_contract_abi("SwapAgent") if entry["name"] != "fillSwap"]
        with pytest.raises(ValueError, match="fillSwap not found"):
            ContractUtility(abi).validate_agent(FillMethod.FILL_SWAP)

    def test_agent_without_events(self):
        abi = [entry for entry in ContractUtility.get_contract_abi("SwapAgent") if entry["type"] != "event"]
        with pytest.raises(ValueError, match="Event SwapStarted not found"):
            ContractUtility(abi).validate_agent(FillMethod.FILL_SWAP)

    def test_encode_call_matches_contract_function(self):
        utility = ContractUtility.for_contract("SwapAgent")

        data = utility.encode_call("fillSwap", [1, 56, SENDER, 42])

        expected = utility.contract.functions.fillSwap(1, 56, SENDER, 42)._encode_transaction_data()
        assert data == HexBytes(expected)

    def test_encode_call_rejects_bad_arguments(self):
        utility = ContractUtility.for_contract("SwapAgent")

        with pytest.raises(ValueError, match="Cannot encode fillSwap"):
            utility.encode_call("fillSwap", ["one", 56, SENDER, 42])
        with pytest.raises(ValueError, match="Cannot encode noSuchFunction"):
            utility.encode_call("noSuchFunction", [])


def _args(data: bytes, types: list[str]):
    return decode(types, data[4:])


class TestBuildCalls:
    """Fill argument selection per destination agent."""

    def _chains(self, fill_method):
        source = make_chain(FakeChainClient("eth", 1), ETH_AGENT)
        destination = make_chain(FakeChainClient("bsc", 56), BSC_AGENT, fill_method=fill_method)
        return source, destination

    def _reverse_chains(self, fill_method):
        source = make_chain(FakeChainClient("bsc", 56), BSC_AGENT)
        destination = make_chain(FakeChainClient("eth", 1), ETH_AGENT, fill_method=fill_method)
        return source, destination

    def test_fill_eth2bsc_uses_source_token(self):
        source, destination = self._chains(FillMethod.FILL_ETH2BSC)

        data = build_fill_call(source, destination, tx_hash(1), SENDER, pair_info(), 42)

        assert data[:4] == function_signature_to_4byte_selector("fillETH2BSCSwap(bytes32,address,address,uint256)")
        source_tx, token, recipient, amount = _args(data, ["bytes32", "address", "address", "uint256"])
        assert source_tx == HexBytes(tx_hash(1))
        assert token.lower() == TOKEN.lower()
        assert recipient.lower() == SENDER.lower()
        assert amount == 42

    def test_fill_bsc2eth_uses_token_on_filling_chain(self):
        # bsc -> eth swap of a pair registered on eth: the eth agent gets the eth token
        source, destination = self._reverse_chains(FillMethod.FILL_BSC2ETH)

        data = build_fill_call(source, destination, tx_hash(1), SENDER, pair_info(), 42)

        assert data[:4] == function_signature_to_4byte_selector("fillBSC2ETHSwap(bytes32,address,address,uint256)")
        _, token, _, _ = _args(data, ["bytes32", "address", "address", "uint256"])
        assert token.lower() == TOKEN.lower()

    def test_fill_bsc2eth_on_paired_chain(self):
        source, destination = self._chains(FillMethod.FILL_BSC2ETH)

        data = build_fill_call(source, destination, tx_hash(1), SENDER, pair_info(), 42)

        _, token, _, _ = _args(data, ["bytes32", "address", "address", "uint256"])
        assert token.lower() == PAIRED_TOKEN.lower()

    def test_fill_for_chain_outside_pair(self):
        source, destination = self._chains(FillMethod.FILL_ETH2BSC)

        with pytest.raises(ValueError, match="no token on eth"):
            build_fill_call(source, destination, tx_hash(1), SENDER, pair_info(source_chain="heco"), 42)

    def test_fill_swap_carries_chain_ids(self):
        source, destination = self._chains(FillMethod.FILL_SWAP)

        data = build_fill_call(source, destination, tx_hash(1), SENDER, pair_info(), 42)

        assert _args(data, ["uint256", "uint256", "address", "uint256"])[:2] == (1, 56)

    def test_create_swap_pair(self):
        _, destination = self._chains(FillMethod.FILL_SWAP)

        data = build_create_pair_call(destination, tx_hash(2), TOKEN, PAIRED_TOKEN, "Test Token", "TST", 18)

        decoded = _args(data, ["bytes32", "address", "address", "string", "string", "uint8"])
        assert decoded[3:] == ("Test Token", "TST", 18)


class TestSubmission:
    """Serialized nonce handling and receipts."""

    @pytest.mark.asyncio
    async def test_concurrent_submissions_get_distinct_nonces(self):
        client = FakeChainClient("bsc", 56)
        chain = make_chain(client, BSC_AGENT)

        hashes = await asyncio.gather(*(sign_and_submit(chain, b"\x01" * n) for n in range(1, 6)))

        assert client.served_nonces == [0, 1, 2, 3, 4]
        assert len(set(hashes)) == 5

    @pytest.mark.asyncio
    async def test_submit_without_key(self):
        chain = make_chain(FakeChainClient("bsc", 56), BSC_AGENT)
        chain.account = None

        with pytest.raises(ValueError, match="No signing key"):
            await sign_and_submit(chain, b"")

    @pytest.mark.asyncio
    async def test_send_failure_propagates(self):
        client = FakeChainClient("bsc", 56)
        client.fail["send_raw_transaction"] = RpcError("bsc", "send_raw_transaction", "underpriced")
        chain = make_chain(client, BSC_AGENT)

        with pytest.raises(RpcError, match="underpriced"):
            await sign_and_submit(chain, b"")
        assert not client.lock.locked()

    @pytest.mark.asyncio
    async def test_receipt_states(self):
        client = FakeChainClient("bsc", 56)
        chain = make_chain(client, BSC_AGENT)
        client.receipts[tx_hash(1)] = {"status": 1, "blockNumber": 10}
        client.receipts[tx_hash(2)] = {"status": 0, "blockNumber": 11}

        assert (await check_receipt(chain, tx_hash(1))).state is ReceiptState.SUCCESS
        failed = await check_receipt(chain, tx_hash(2))
        assert failed.state is ReceiptState.FAILED
        assert failed.block_number == 11
        assert (await check_receipt(chain, tx_hash(3))).state is ReceiptState.PENDING

    def test_invalid_key_rejected(self):
        chain = make_chain(FakeChainClient("eth", 1), ETH_AGENT)
        with pytest.raises(ValueError, match="Invalid signing key"):
            chain.load_key("0x1234")
