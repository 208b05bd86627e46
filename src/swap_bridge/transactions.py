#!/usr/bin/env python3
"""Fill transaction building and submission.

Handles the ABI encoding of the destination-chain calls, the serialized
nonce -> sign -> broadcast sequence, and reading receipts back.
"""

import logging
from dataclasses import dataclass
from enum import Enum

from hexbytes import HexBytes
from web3.types import TxParams, Wei

from .chain_context import ChainContext
from .models import FillMethod, SwapPairInfo
from .utils.contract_utility import CREATE_SWAP_PAIR

logger = logging.getLogger(__name__)

TX_FAILED_STATUS = 0


class ReceiptState(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class ReceiptOutcome:
    state: ReceiptState
    block_number: int | None = None


def _pair_token(pair: SwapPairInfo, chain: ChainContext) -> str:
    token = pair.token_on(chain.name)
    if token is None:
        raise ValueError(f"Pair {pair.symbol} has no token on {chain.name}")
    return token


def build_fill_call(
    source: ChainContext,
    destination: ChainContext,
    source_tx_hash: str,
    recipient: str,
    pair: SwapPairInfo,
    amount: int,
) -> bytes:
    """Encode the fill call the destination agent exposes.

    fillETH2BSCSwap identifies the token by its address on the chain the swap
    started on, fillBSC2ETHSwap by its address on the chain it is filled on,
    and fillSwap by the chain ids instead of a token. With the pair
    registered on the ETH side both resolve to the registration-side token.
    """
    match destination.fill_method:
        case FillMethod.FILL_ETH2BSC:
            args = [HexBytes(source_tx_hash), _pair_token(pair, source), recipient, amount]
        case FillMethod.FILL_BSC2ETH:
            args = [HexBytes(source_tx_hash), _pair_token(pair, destination), recipient, amount]
        case FillMethod.FILL_SWAP:
            args = [source.chain_id, destination.chain_id, recipient, amount]
        case other:
            raise ValueError(f"Unsupported fill method {other}")
    return destination.contract.encode_call(destination.fill_method.value, args)


def build_create_pair_call(
    destination: ChainContext,
    register_tx_hash: str,
    source_token: str,
    destination_token: str,
    name: str,
    symbol: str,
    decimals: int,
) -> bytes:
    return destination.contract.encode_call(
        CREATE_SWAP_PAIR,
        [HexBytes(register_tx_hash), source_token, destination_token, name, symbol, decimals],
    )


async def sign_and_submit(chain: ChainContext, data: bytes) -> str:
    """Build, sign and broadcast a call to the chain's swap agent.

    Runs entirely under the chain's submission lock so concurrent pipelines
    targeting the same chain queue instead of racing on the pending nonce.

    Returns:
        Hash of the broadcast transaction
    """
    sender = chain.sender_address
    async with chain.client.lock:
        nonce = await chain.client.pending_nonce(sender)
        gas_price = await chain.client.suggest_gas_price()

        call: TxParams = {
            'from': sender,
            'to': chain.agent_address,
            'gasPrice': Wei(gas_price),
            'value': Wei(0),
            'data': data,
        }
        gas_limit = await chain.client.estimate_gas(call)

        tx = {
            'nonce': nonce,
            'to': chain.agent_address,
            'value': 0,
            'gas': gas_limit,
            'gasPrice': gas_price,
            'data': data,
            'chainId': chain.chain_id,
        }
        signed = chain.account.sign_transaction(tx)
        tx_hash = await chain.client.send_raw_transaction(signed.raw_transaction)

    logger.info(f"[{chain.name}] Broadcast tx {tx_hash} nonce={nonce} gas={gas_limit} gasPrice={gas_price}")
    return tx_hash


async def check_receipt(chain: ChainContext, tx_hash: str) -> ReceiptOutcome:
    """Current state of a broadcast transaction."""
    receipt = await chain.client.transaction_receipt(tx_hash)
    if receipt is None:
        return ReceiptOutcome(ReceiptState.PENDING)

    block_number = receipt.get('blockNumber')
    if (status := receipt.get('status', TX_FAILED_STATUS)) == TX_FAILED_STATUS:
        logger.warning(f"[{chain.name}] Tx {tx_hash} reverted (status={status})")
        return ReceiptOutcome(ReceiptState.FAILED, block_number)
    return ReceiptOutcome(ReceiptState.SUCCESS, block_number)
