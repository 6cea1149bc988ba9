"""
Unit tests for the Substrate chain adapter.

SubstrateInterface is replaced with mocks; nothing touches the network.
"""

import unittest
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from chains.adapter import ChainAdapter
from chains.substrate import SubstrateChainAdapter, to_extrinsic
from core.exceptions import ChainAccessError
from core.models import OutgoingTransferInitiated


def scale(value):
    """Mimic a ScaleType: the decoded payload lives in .value."""
    return SimpleNamespace(value=value)


OUTGOING_RECORD = {
    "phase": "ApplyExtrinsic",
    "extrinsic_idx": 1,
    "module_id": "Transporter",
    "event_id": "OutgoingTransferInitiated",
    "attributes": {"chain_id": "Consensus", "message_id": [1, 5], "amount": 100},
    "topics": [],
}


class TestToExtrinsic(unittest.TestCase):

    def test_signed_multiaddress(self):
        ext = to_extrinsic(1, {
            "address": {"Id": "5Signer"},
            "call": {
                "call_module": "Transporter",
                "call_function": "transfer",
                "call_args": [{"name": "amount", "type": "Balance", "value": 100}],
            },
        })
        self.assertEqual(ext.index, 1)
        self.assertEqual(ext.signer, "5Signer")
        self.assertTrue(ext.is_signed)
        self.assertEqual(ext.call_module, "Transporter")
        self.assertEqual(ext.call_args, {"amount": 100})

    def test_plain_address(self):
        self.assertEqual(to_extrinsic(0, {"address": "5Plain", "call": {}}).signer, "5Plain")

    def test_unsigned(self):
        ext = to_extrinsic(0, {"call": {"call_module": "Timestamp", "call_function": "set"}})
        self.assertIsNone(ext.signer)
        self.assertFalse(ext.is_signed)


class TestEventRecords(unittest.TestCase):

    def test_plain_events(self):
        substrate = MagicMock()
        substrate.get_events.return_value = [scale({"a": 1}), scale({"b": 2})]
        records = SubstrateChainAdapter._fetch_event_records(substrate, "0xh", use_segments=False)
        self.assertEqual(records, [{"a": 1}, {"b": 2}])
        substrate.get_metadata_storage_function.assert_not_called()

    def test_segments_flattened_in_order(self):
        substrate = MagicMock()
        substrate.get_metadata_storage_function.return_value = object()

        def query(module, storage, params=None, block_hash=None):
            if storage == "EventCount":
                return scale(150)
            return scale([{"segment": params[0], "i": 0}, {"segment": params[0], "i": 1}])

        substrate.query.side_effect = query
        records = SubstrateChainAdapter._fetch_event_records(substrate, "0xh", use_segments=True)

        self.assertEqual([(r["segment"], r["i"]) for r in records], [(0, 0), (0, 1), (1, 0), (1, 1)])
        substrate.get_events.assert_not_called()

    def test_segment_storage_missing_falls_back(self):
        substrate = MagicMock()
        substrate.get_metadata_storage_function.return_value = None
        substrate.get_events.return_value = [scale({"a": 1})]
        records = SubstrateChainAdapter._fetch_event_records(substrate, "0xh", use_segments=True)
        self.assertEqual(records, [{"a": 1}])

    def test_zero_event_count(self):
        substrate = MagicMock()
        substrate.get_metadata_storage_function.return_value = object()
        substrate.query.return_value = scale(0)
        self.assertEqual(SubstrateChainAdapter._fetch_event_records(substrate, "0xh", True), [])


class TestAdapter:

    def test_satisfies_protocol(self):
        assert isinstance(SubstrateChainAdapter("domain", ["ws://x"]), ChainAdapter)

    def test_requires_endpoint(self):
        with pytest.raises(ValueError):
            SubstrateChainAdapter("domain", [])

    async def test_block_and_events_with_failover(self):
        good = MagicMock()
        good.get_block_hash.return_value = "0xblock"
        good.get_block.return_value = {
            "extrinsics": [
                scale({"call": {"call_module": "Timestamp"}}),
                scale({"address": "5Signer", "call": {"call_module": "Transporter"}}),
            ],
        }
        good.get_events.return_value = [scale(OUTGOING_RECORD), scale(dict(OUTGOING_RECORD))]

        def connect(url, ss58_format=None):
            if "down" in url:
                raise ConnectionRefusedError(url)
            return good

        with patch("chains.substrate.SubstrateInterface", side_effect=connect) as ctor:
            adapter = SubstrateChainAdapter("domain", ["ws://down", "ws://up"])
            block = await adapter.block_at(10)
            events = await adapter.events_at(block.hash, use_segments=False)
            await adapter.close()

        assert ctor.call_count >= 2
        assert block.height == 10
        assert block.hash == "0xblock"
        assert block.extrinsics[1].signer == "5Signer"
        assert events == [OutgoingTransferInitiated(
            destination_chain_id="consensus", channel_id=1, nonce="5", amount="100", extrinsic_index=1,
        )]
        good.close.assert_called()

    async def test_errors_become_chain_access_errors(self):
        broken = MagicMock()
        broken.get_block_hash.side_effect = BrokenPipeError("socket closed")

        with patch("chains.substrate.SubstrateInterface", return_value=broken):
            adapter = SubstrateChainAdapter("domain", ["ws://up"])
            with pytest.raises(ChainAccessError):
                await adapter.block_at(10)
        broken.close.assert_called_once()

    async def test_no_reachable_endpoint(self):
        with patch("chains.substrate.SubstrateInterface", side_effect=OSError("refused")):
            adapter = SubstrateChainAdapter("domain", ["ws://a", "ws://b"])
            with pytest.raises(ChainAccessError):
                await adapter.block_at(10)

    async def test_missing_block(self):
        node = MagicMock()
        node.get_block_hash.return_value = None
        with patch("chains.substrate.SubstrateInterface", return_value=node):
            adapter = SubstrateChainAdapter("domain", ["ws://up"])
            with pytest.raises(ChainAccessError):
                await adapter.block_at(10**9)
