"""
Unit tests for NDJSON export and the run manifest.
"""

import json
import unittest
from pathlib import Path
from tempfile import TemporaryDirectory

from core.constants import ConfirmedBy, MANIFEST_SCHEMA_VERSION
from core.models import MatchedTransfer
from correlator.export import build_manifest, save_manifest, write_ndjson
from fakes import read_ndjson


def transfer(nonce: str) -> MatchedTransfer:
    return MatchedTransfer(
        direction="d2c",
        from_address="addrA",
        channel_id=1,
        nonce=nonce,
        amount="95",
        source_block_height=10,
        source_block_hash="0xaa",
        source_extrinsic_index=0,
        destination_block_height=20,
        destination_block_hash="0xbb",
        confirmed_by=ConfirmedBy.DEST,
    )


class TestNdjson(unittest.TestCase):

    def test_one_object_per_line(self):
        with TemporaryDirectory() as tmp:
            path = Path(tmp) / "nested" / "d2c_transfers.ndjson"
            count = write_ndjson(path, (transfer(n) for n in ("1", "2", "3")))

            self.assertEqual(count, 3)
            lines = path.read_text(encoding="utf-8").splitlines()
            self.assertEqual(len(lines), 3)
            for line in lines:
                self.assertEqual(json.loads(line)["from"], "addrA")

            self.assertEqual([r["nonce"] for r in read_ndjson(path)], ["1", "2", "3"])

    def test_empty_export_creates_empty_file(self):
        with TemporaryDirectory() as tmp:
            path = Path(tmp) / "c2d_transfers.ndjson"
            self.assertEqual(write_ndjson(path, []), 0)
            self.assertTrue(path.exists())
            self.assertEqual(read_ndjson(path), [])


class TestManifest(unittest.TestCase):

    def test_manifest_counts(self):
        outputs = {
            "d2c": {"path": "exports/d2c_transfers.ndjson", "count": 3},
            "c2d": {"path": "exports/c2d_transfers.ndjson", "count": 1},
        }
        manifest = build_manifest("dest-only", "exports/xdm.sqlite", outputs, {"healthy": True})

        self.assertEqual(manifest["schema_version"], MANIFEST_SCHEMA_VERSION)
        self.assertEqual(manifest["mode"], "dest-only")
        self.assertEqual(manifest["counts"], {"d2c": 3, "c2d": 1, "total": 4})
        self.assertEqual(manifest["capture"], {"healthy": True})
        self.assertIn("generated_at", manifest)

    def test_save_manifest(self):
        with TemporaryDirectory() as tmp:
            manifest = build_manifest("both", "db", {}, {})
            path = save_manifest(manifest, Path(tmp))
            self.assertEqual(path.name, "manifest.json")
            self.assertEqual(json.loads(path.read_text())["counts"], {"total": 0})


if __name__ == "__main__":
    unittest.main()
