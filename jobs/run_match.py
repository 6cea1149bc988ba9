#!/usr/bin/env python3
"""
jobs/run_match.py - CLI entrypoint for correlating captured events.

Reads the event store, joins SourceInits with DestinationSuccesses and/or
SourceAcks, and writes one NDJSON file per direction plus manifest.json.

Usage:
    python -m jobs.run_match --mode dest-only
    python -m jobs.run_match --mode both --direction d2c --output-dir exports
"""

import json
import sys
from pathlib import Path
from typing import Optional

import click

from config import CONFIG_DIR
from config.settings import MatchConfig, load_match_config
from core.constants import ConfirmationMode
from core.exceptions import ConfigError, StoreError
from core.logging import get_logger, set_global_context, setup_logging
from core.time import run_id
from correlator.correlator import Correlator
from correlator.export import build_manifest, save_manifest, write_ndjson
from monitoring.capture_report import build_capture_summary
from store.sqlite import EventStore

logger = get_logger("xdm.match")

EXIT_ERROR = 1
EXIT_CONFIG = 2
EXIT_STORE = 3


def run_match(config: MatchConfig) -> dict:
    """Correlate every configured direction and write the export. Returns the manifest."""
    if not config.db_path.exists():
        raise ConfigError(f"Event store not found: {config.db_path}", details={"db_path": str(config.db_path)})

    outputs: dict[str, dict] = {}
    with EventStore(config.db_path) as store:
        correlator = Correlator(store)
        for direction in config.directions:
            path = config.output_dir / f"{direction.label}_transfers.ndjson"
            count = write_ndjson(path, correlator.correlate(direction, config.mode))
            outputs[direction.label] = {
                "source": direction.source,
                "destination": direction.destination,
                "path": str(path),
                "count": count,
            }
        capture = build_capture_summary(store).to_dict()

    manifest = build_manifest(config.mode.value, str(config.db_path), outputs, capture)
    manifest_path = save_manifest(manifest, config.output_dir)
    logger.info(
        f"Manifest saved: {manifest_path}",
        extra={"context": {"counts": manifest["counts"]}},
    )
    return manifest


@click.command()
@click.option(
    "--mode", "-m",
    default=ConfirmationMode.DEST_ONLY.value,
    type=click.Choice([m.value for m in ConfirmationMode]),
    help="Which evidence confirms a transfer",
)
@click.option("--db", "db_path", default=None, help="SQLite path (default <output_dir>/xdm.sqlite)")
@click.option("--output-dir", "-o", default=None)
@click.option("--direction", "-d", "directions", multiple=True, help="d2c, c2d or source:destination")
@click.option("--config", "config_dir", type=click.Path(exists=True, file_okay=False), default=str(CONFIG_DIR))
@click.option("--log-level", "-l", default="INFO", type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]))
@click.option("--json-logs/--no-json-logs", default=True)
def main(
    mode: str,
    db_path: Optional[str],
    output_dir: Optional[str],
    directions: tuple[str, ...],
    config_dir: str,
    log_level: str,
    json_logs: bool,
) -> None:
    """XDM match - export confirmed transfers as NDJSON."""
    setup_logging(level=log_level, json_output=json_logs)
    set_global_context(service="xdm-match", run_id=run_id())

    try:
        config = load_match_config(
            mode=mode,
            directions=list(directions),
            db_path=db_path,
            output_dir=output_dir,
            config_dir=Path(config_dir),
        )
        manifest = run_match(config)
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(EXIT_CONFIG)
    except StoreError as e:
        logger.error(f"Store error: {e}", exc_info=True)
        sys.exit(EXIT_STORE)
    except Exception as e:
        logger.error(f"Match error: {e}", exc_info=True)
        sys.exit(EXIT_ERROR)

    click.echo(json.dumps({
        "mode": manifest["mode"],
        "counts": manifest["counts"],
        "artifacts": {label: info["path"] for label, info in manifest["artifacts"].items()},
        "healthy": manifest["capture"]["healthy"],
    }, indent=2))


if __name__ == "__main__":
    main()
