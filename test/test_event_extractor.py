#!/usr/bin/env python3
"""Tests for swap agent log decoding."""

import pytest
from eth_abi import encode
from web3 import Web3
from web3.datastructures import AttributeDict

from conftest import (
    PAIRED_TOKEN,
    SENDER,
    SPONSOR,
    TOKEN,
    address_topic,
    block_hash_at,
    make_log,
    pair_register_log,
    reverse_swap_log,
    swap_started_log,
    tx_hash,
)
from swap_bridge.event_extractor import (
    SWAP_PAIR_REGISTER_TOPIC,
    SWAP_STARTED_TOPIC,
    EventExtractor,
    topic_to_address,
    topic_to_int,
)
from swap_bridge.models import (
    EventVariant,
    ReverseSwapStartedEvent,
    SwapPairRegisteredEvent,
    SwapStartedEvent,
)


class TestTopics:
    """Topic decoding helpers."""

    def test_topic_helpers(self):
        assert topic_to_address(address_topic(SENDER)) == SENDER
        assert topic_to_int((56).to_bytes(32, "big")) == 56
        with pytest.raises(ValueError):
            topic_to_int(b"\x01")


class TestForwardVariant:
    """SwapStarted with token and sender topics, amount and fee data."""

    def test_decodes_swap_started(self):
        extractor = EventExtractor("eth", EventVariant.FORWARD)

        event = extractor.extract(swap_started_log(12, tx_hash(1), amount=10**30, fee=7))

        assert isinstance(event, SwapStartedEvent)
        assert event.token_address == TOKEN
        assert event.from_address == SENDER
        assert event.amount == 10**30
        assert event.fee_amount == 7
        assert event.meta.tx_hash == tx_hash(1)
        assert event.meta.block_hash == block_hash_at(12)
        assert event.meta.block_number == 12
        assert extractor.logs_decoded == 1

    def test_attribute_dict_log(self):
        extractor = EventExtractor("eth", EventVariant.FORWARD)
        log = AttributeDict(swap_started_log(12, tx_hash(1), amount=5))

        assert extractor.extract(log).amount == 5

    def test_truncated_data_skipped(self):
        extractor = EventExtractor("eth", EventVariant.FORWARD)
        log = swap_started_log(12, tx_hash(1), amount=5)
        log["data"] = log["data"][:40]

        assert extractor.extract(log) is None
        assert extractor.logs_skipped == 1

    def test_reverse_layout_rejected_on_forward_chain(self):
        extractor = EventExtractor("eth", EventVariant.FORWARD)

        assert extractor.extract(reverse_swap_log(12, tx_hash(1), to_chain_id=56, amount=5)) is None
        assert extractor.logs_skipped == 1


class TestReverseVariant:
    """SwapStarted with chain id, sender and amount all indexed."""

    def test_decodes_reverse_swap(self):
        extractor = EventExtractor("bsc", EventVariant.REVERSE)

        event = extractor.extract(reverse_swap_log(3, tx_hash(2), to_chain_id=1, amount=777))

        assert isinstance(event, ReverseSwapStartedEvent)
        assert event.to_chain_id == 1
        assert event.from_address == SENDER
        assert event.amount == 777

    def test_forward_layout_rejected_on_reverse_chain(self):
        extractor = EventExtractor("bsc", EventVariant.REVERSE)

        assert extractor.extract(swap_started_log(3, tx_hash(2), amount=5)) is None


class TestPairRegistration:
    """SphynxSwapPairRegister decoding."""

    @pytest.mark.parametrize("variant", list(EventVariant))
    def test_decodes_on_every_variant(self, variant):
        extractor = EventExtractor("eth", variant)

        event = extractor.extract(pair_register_log(4, tx_hash(3), name="Wrapped Thing", symbol="WTH", decimals=6))

        assert isinstance(event, SwapPairRegisteredEvent)
        assert event.sponsor == SPONSOR
        assert event.token_address == TOKEN
        assert event.paired_token_address == PAIRED_TOKEN
        assert (event.name, event.symbol, event.decimals) == ("Wrapped Thing", "WTH", 6)

    def test_missing_topic_skipped(self):
        extractor = EventExtractor("eth", EventVariant.FORWARD)
        data = encode(["string", "string", "uint8"], ["a", "b", 1])
        log = make_log([SWAP_PAIR_REGISTER_TOPIC, address_topic(SPONSOR)], data, 4, tx_hash(3))

        assert extractor.extract(log) is None
        assert extractor.logs_skipped == 1


class TestOtherLogs:
    """Logs the bridge does not care about."""

    def test_unknown_topic_ignored(self):
        extractor = EventExtractor("eth", EventVariant.FORWARD)
        log = make_log([Web3.keccak(text="Transfer(address,address,uint256)")], b"", 4, tx_hash(3))

        assert extractor.extract(log) is None
        assert (extractor.logs_decoded, extractor.logs_skipped) == (0, 0)

    def test_missing_fields_skipped(self):
        extractor = EventExtractor("eth", EventVariant.FORWARD)

        assert extractor.extract({"topics": [SWAP_STARTED_TOPIC]}) is None
        assert extractor.logs_skipped == 1
