# PATH: tests/unit/test_core_models.py
"""
Unit tests for core models, error codes and exceptions.
"""

import unittest

from core.constants import AckResult, ConfirmedBy, ErrorCode
from core.exceptions import (
    ChainAccessError,
    ConfigError,
    EventDecodeError,
    RetryExhaustedError,
    StoreError,
    XdmError,
)
from core.models import Block, Direction, Extrinsic, SourceAck


class TestDirection(unittest.TestCase):

    def test_labels(self):
        self.assertEqual(Direction("domain", "consensus").label, "d2c")
        self.assertEqual(Direction("consensus", "domain").label, "c2d")

    def test_parse_shorthand(self):
        self.assertEqual(Direction.parse("d2c"), Direction("domain", "consensus"))
        self.assertEqual(Direction.parse("c2d"), Direction("consensus", "domain"))

    def test_parse_explicit(self):
        self.assertEqual(Direction.parse("domain:consensus"), Direction("domain", "consensus"))

    def test_parse_invalid(self):
        for bad in ("", "d2", "x2c", "domain"):
            with self.assertRaises(ValueError, msg=bad):
                Direction.parse(bad)


class TestBlock(unittest.TestCase):

    def test_extrinsic_at_bounds(self):
        block = Block(height=1, hash="0x1", extrinsics=(Extrinsic(0, "a"), Extrinsic(1)))
        self.assertEqual(block.extrinsic_at(0).signer, "a")
        self.assertFalse(block.extrinsic_at(1).is_signed)
        self.assertIsNone(block.extrinsic_at(2))
        self.assertIsNone(block.extrinsic_at(-1))
        self.assertIsNone(block.extrinsic_at(None))


class TestSourceAck(unittest.TestCase):

    def test_to_dict_serializes_result(self):
        row = SourceAck("domain", "consensus", 1, "5", AckResult.OK, 30, "0xcc")
        self.assertTrue(row.is_ok)
        self.assertEqual(row.to_dict()["result"], "Ok")
        self.assertEqual(row.key, ("domain", 1, "5"))


class TestConfirmedBy(unittest.TestCase):

    def test_values(self):
        self.assertEqual({c.value for c in ConfirmedBy}, {"dest", "ack", "both"})


class TestExceptions(unittest.TestCase):

    def test_codes(self):
        self.assertEqual(ChainAccessError("x").code, ErrorCode.INFRA_RPC_ERROR)
        self.assertEqual(ChainAccessError("x", code=ErrorCode.INFRA_TIMEOUT).code, ErrorCode.INFRA_TIMEOUT)
        self.assertEqual(EventDecodeError("x").code, ErrorCode.DECODE_MALFORMED_EVENT)
        self.assertEqual(ConfigError("x").code, ErrorCode.CONFIG_MISSING_FIELD)
        self.assertEqual(StoreError("x").code, ErrorCode.STORE_IO_ERROR)
        self.assertEqual(RetryExhaustedError("x").code, ErrorCode.RETRY_EXHAUSTED)

    def test_str_and_details(self):
        err = StoreError("disk full", details={"path": "x"})
        self.assertEqual(str(err), "[STORE_IO_ERROR] disk full")
        self.assertEqual(err.details, {"path": "x"})
        self.assertIsInstance(err, XdmError)

    def test_error_codes_used_in_source_exist(self):
        """Every ErrorCode.X referenced in the source tree is defined."""
        import re
        from pathlib import Path

        root = Path(__file__).parent.parent.parent
        defined = {code.name for code in ErrorCode}
        missing = set()
        for package in ("core", "chains", "config", "store", "scanner", "correlator", "monitoring", "jobs"):
            for path in (root / package).rglob("*.py"):
                for name in re.findall(r"ErrorCode\.([A-Z_]+)", path.read_text(encoding="utf-8")):
                    if name not in defined:
                        missing.add(f"{path.name}: {name}")
        self.assertEqual(missing, set())


if __name__ == "__main__":
    unittest.main()
