"""
correlator/export.py - NDJSON record stream and run manifest.

One MatchedTransfer per line, append-only, each line independently parseable.
manifest.json records what was written and under which mode.
"""

import json
from pathlib import Path
from typing import Any, Iterable

from core.constants import MANIFEST_SCHEMA_VERSION
from core.logging import get_logger
from core.models import MatchedTransfer
from core.time import now_iso

logger = get_logger(__name__)


def write_ndjson(path: Path, records: Iterable[MatchedTransfer]) -> int:
    """Write records one JSON object per line. Returns the record count."""
    path.parent.mkdir(parents=True, exist_ok=True)
    count = 0
    with open(path, "w", encoding="utf-8") as f:
        for record in records:
            f.write(json.dumps(record.to_dict()) + "\n")
            count += 1
    logger.info(
        f"Wrote {count} records",
        extra={"context": {"path": str(path), "records": count}},
    )
    return count


def build_manifest(
    mode: str,
    db_path: str,
    outputs: dict[str, dict[str, Any]],
    capture_summary: dict[str, Any],
) -> dict:
    """Manifest for one match run."""
    return {
        "schema_version": MANIFEST_SCHEMA_VERSION,
        "generated_at": now_iso(),
        "mode": mode,
        "db_path": db_path,
        "artifacts": outputs,
        "counts": {
            **{label: info["count"] for label, info in outputs.items()},
            "total": sum(info["count"] for info in outputs.values()),
        },
        "capture": capture_summary,
    }


def save_manifest(manifest: dict, output_dir: Path) -> Path:
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / "manifest.json"
    with open(path, "w", encoding="utf-8") as f:
        json.dump(manifest, f, indent=2)
    return path
