#!/usr/bin/env python3
"""
jobs/run_capture.py - CLI entrypoint for capturing XDM events of one chain.

Features:
- Resumable: continues from the persisted scan progress
- Finality guard: end height is clamped to the finalized head
- N concurrent block workers with unbounded retry on RPC errors
- Capture summary printed as JSON on exit

Usage:
    python -m jobs.run_capture --chain consensus --start 1000 --end 2000
    python -m jobs.run_capture --chain domain --concurrency 16 --allow-unfinalized

Exit codes:
    0  success
    1  unexpected error
    2  configuration error
    3  store error
"""

import asyncio
import json
import sys
from pathlib import Path
from typing import Optional

import click

from chains.providers import RPCProvider
from chains.substrate import SubstrateChainAdapter
from config import CONFIG_DIR
from config.settings import CaptureConfig, load_capture_config
from core.constants import ChainLabel
from core.exceptions import ChainAccessError, ConfigError, RetryExhaustedError, StoreError
from core.logging import get_logger, set_global_context, setup_logging
from core.retry import RetryPolicy
from core.time import run_id
from monitoring.capture_report import build_capture_summary
from scanner.runner import BlockScanner, ScanResult
from store.sqlite import EventStore

logger = get_logger("xdm.capture")

EXIT_ERROR = 1
EXIT_CONFIG = 2
EXIT_STORE = 3


def clamp_to_finalized(start: int, end: int, finalized: int) -> Optional[int]:
    """End height limited to the finalized head, or None if nothing in range is final yet."""
    if finalized < start:
        return None
    return min(end, finalized)


async def fetch_finalized_height(provider: RPCProvider, chain: str, retry_policy: RetryPolicy) -> int:
    """Finalized head height, retrying transient RPC failures like a block fetch."""
    failures = 0
    while True:
        try:
            return await provider.get_finalized_height()
        except ChainAccessError as e:
            failures += 1
            if not retry_policy.should_retry(failures):
                raise RetryExhaustedError(
                    f"Giving up on finalized head after {failures} attempts: {e.message}",
                    details={"chain": chain},
                ) from e
            delay_ms = retry_policy.delay_ms(failures - 1)
            logger.warning(
                f"Finalized head lookup failed: {e.message}. retrying in {delay_ms}ms",
                extra={"context": {
                    "chain": chain,
                    "attempt": failures,
                    "backoff_ms": delay_ms,
                    "code": e.code.value,
                }},
            )
            await retry_policy.wait(failures - 1)


async def resolve_end(
    config: CaptureConfig,
    provider: RPCProvider,
    allow_unfinalized: bool,
    retry_policy: Optional[RetryPolicy] = None,
) -> Optional[int]:
    if allow_unfinalized:
        return config.end
    policy = retry_policy or config.retry_policy()
    finalized = await fetch_finalized_height(provider, config.chain, policy)

    end = clamp_to_finalized(config.start, config.end, finalized)
    if end is None:
        logger.warning(
            f"Finalized head #{finalized} is below start #{config.start}; nothing to capture",
            extra={"context": {"chain": config.chain, "finalized": finalized}},
        )
    elif end < config.end:
        logger.warning(
            f"End #{config.end} is not finalized yet; capturing up to #{end}",
            extra={"context": {"chain": config.chain, "requested_end": config.end, "finalized": finalized}},
        )
    return end


async def run_capture(config: CaptureConfig, allow_unfinalized: bool = False) -> dict:
    """Run one capture and return its JSON-able summary."""
    store = EventStore(config.db_path)
    provider = RPCProvider(config.chain, config.rpc_endpoints)
    adapter = SubstrateChainAdapter(config.chain, config.rpc_endpoints, ss58_format=config.ss58_format)
    try:
        end = await resolve_end(config, provider, allow_unfinalized)
        result: Optional[ScanResult] = None
        if end is not None:
            scanner = BlockScanner(adapter, store, config.retry_policy())
            result = await scanner.run(config.scan_options(end=end))

        return {
            "chain": config.chain,
            "db_path": str(config.db_path),
            "scan": result.to_dict() if result else None,
            "capture": build_capture_summary(store).to_dict(),
            "rpc_stats": provider.get_stats_summary(),
        }
    finally:
        await adapter.close()
        await provider.close()
        store.close()


@click.command()
@click.option("--chain", "-c", required=True, type=click.Choice([c.value for c in ChainLabel]))
@click.option("--start", "-s", type=int, default=None, help="First height (inclusive)")
@click.option("--end", "-e", type=int, default=None, help="Last height (inclusive)")
@click.option("--concurrency", "-n", type=int, default=None, help="Block workers")
@click.option("--config", "config_dir", type=click.Path(exists=True, file_okay=False), default=str(CONFIG_DIR))
@click.option("--db", "db_path", default=None, help="SQLite path (default <output_dir>/xdm.sqlite)")
@click.option("--log-level", "-l", default="INFO", type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]))
@click.option("--json-logs/--no-json-logs", default=True)
@click.option("--allow-unfinalized", is_flag=True, help="Do not clamp end to the finalized head")
def main(
    chain: str,
    start: Optional[int],
    end: Optional[int],
    concurrency: Optional[int],
    config_dir: str,
    db_path: Optional[str],
    log_level: str,
    json_logs: bool,
    allow_unfinalized: bool,
) -> None:
    """XDM capture - scan one chain's block range into the event store."""
    setup_logging(level=log_level, json_output=json_logs)
    set_global_context(service="xdm-capture", chain=chain, run_id=run_id())

    try:
        config = load_capture_config(
            chain,
            start=start,
            end=end,
            concurrency=concurrency,
            db_path=db_path,
            config_dir=Path(config_dir),
        )
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(EXIT_CONFIG)

    logger.info(
        "Starting capture",
        extra={"context": {
            "start": config.start,
            "end": config.end,
            "concurrency": config.concurrency,
            "use_segments": config.use_segments,
            "endpoints": len(config.rpc_endpoints),
            "db_path": str(config.db_path),
        }},
    )

    try:
        summary = asyncio.run(run_capture(config, allow_unfinalized))
    except KeyboardInterrupt:
        logger.info("Capture interrupted; progress is persisted")
        sys.exit(EXIT_ERROR)
    except StoreError as e:
        logger.error(f"Store error: {e}", exc_info=True)
        sys.exit(EXIT_STORE)
    except RetryExhaustedError as e:
        logger.error(f"Capture aborted: {e}")
        sys.exit(EXIT_ERROR)
    except Exception as e:
        logger.error(f"Capture error: {e}", exc_info=True)
        sys.exit(EXIT_ERROR)

    click.echo(json.dumps(summary, indent=2))
    logger.info("Capture finished")


if __name__ == "__main__":
    main()
