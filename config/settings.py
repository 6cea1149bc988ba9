"""
config/settings.py - Validated capture and match settings.

Precedence (highest first): CLI option > environment (.env) > YAML > default.

Environment:
    <CHAIN>_RPC_URL          comma separated, ordered by preference
    <CHAIN>_START_HEIGHT     inclusive
    <CHAIN>_END_HEIGHT       inclusive
    BLOCK_CONCURRENCY
    RPC_BACKOFF_MS
    RPC_MAX_BACKOFF_MS
    OUTPUT_DIR
    DB_PATH                  defaults to <OUTPUT_DIR>/xdm.sqlite
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional

from dotenv import load_dotenv

from config import CONFIG_DIR, get_chain_config, load_capture
from core.constants import (
    ChainLabel,
    ConfirmationMode,
    DEFAULT_BLOCK_CONCURRENCY,
    DEFAULT_DB_FILENAME,
    DEFAULT_OUTPUT_DIR,
    DEFAULT_RETRY_BACKOFF_MS,
    DEFAULT_RETRY_MAX_BACKOFF_MS,
    ErrorCode,
)
from core.exceptions import ConfigError
from core.models import Direction
from core.retry import RetryPolicy
from scanner.runner import ScanOptions


@dataclass
class CaptureConfig:
    """Everything one capture run needs."""
    chain: str
    rpc_endpoints: list[str]
    start: int
    end: int
    use_segments: bool = False
    concurrency: int = DEFAULT_BLOCK_CONCURRENCY
    backoff_ms: int = DEFAULT_RETRY_BACKOFF_MS
    max_backoff_ms: int = DEFAULT_RETRY_MAX_BACKOFF_MS
    output_dir: Path = Path(DEFAULT_OUTPUT_DIR)
    db_path: Path = Path(DEFAULT_OUTPUT_DIR) / DEFAULT_DB_FILENAME
    ss58_format: Optional[int] = None

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(backoff_ms=self.backoff_ms, max_backoff_ms=self.max_backoff_ms)

    def scan_options(self, end: Optional[int] = None) -> ScanOptions:
        return ScanOptions(
            chain=self.chain,
            start=self.start,
            end=self.end if end is None else end,
            concurrency=self.concurrency,
            use_segments=self.use_segments,
        )


@dataclass
class MatchConfig:
    """Settings for one correlation/export run."""
    db_path: Path
    output_dir: Path
    mode: ConfirmationMode = ConfirmationMode.DEST_ONLY
    directions: list[Direction] = field(default_factory=lambda: [
        Direction(ChainLabel.DOMAIN.value, ChainLabel.CONSENSUS.value),
        Direction(ChainLabel.CONSENSUS.value, ChainLabel.DOMAIN.value),
    ])


def _environment(env: Optional[Mapping[str, str]]) -> Mapping[str, str]:
    if env is None:
        load_dotenv()
        return os.environ
    return env


def _int(name: str, value: Any) -> int:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        raise ConfigError(
            f"{name} must be an integer, got {value!r}",
            code=ErrorCode.CONFIG_INVALID_VALUE,
            details={"field": name},
        ) from None


def _pick(name: str, cli: Any, env: Mapping[str, str], env_key: str, yaml_value: Any, default: Any = None) -> Any:
    if cli is not None:
        return cli
    if env.get(env_key, "").strip():
        return env[env_key]
    if yaml_value is not None:
        return yaml_value
    return default


def _endpoints(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = value.split(",")
    return [str(u).strip() for u in value if str(u).strip()]


def resolve_paths(
    output_dir: Optional[str],
    db_path: Optional[str],
    env: Mapping[str, str],
    capture_yaml: Mapping[str, Any],
) -> tuple[Path, Path]:
    out = Path(_pick("output_dir", output_dir, env, "OUTPUT_DIR", capture_yaml.get("output_dir"), DEFAULT_OUTPUT_DIR))
    db = _pick("db_path", db_path, env, "DB_PATH", capture_yaml.get("db_path"))
    return out, Path(db) if db else out / DEFAULT_DB_FILENAME


def load_capture_config(
    chain: str,
    *,
    start: Optional[int] = None,
    end: Optional[int] = None,
    concurrency: Optional[int] = None,
    db_path: Optional[str] = None,
    config_dir: Path = CONFIG_DIR,
    env: Optional[Mapping[str, str]] = None,
) -> CaptureConfig:
    """
    Build and validate a CaptureConfig.

    Raises:
        ConfigError: missing endpoints or heights, or invalid values
    """
    env = _environment(env)
    prefix = chain.upper()
    chain_yaml = get_chain_config(chain, config_dir)
    capture_yaml = load_capture(config_dir)
    retry_yaml = capture_yaml.get("retry") or {}

    endpoints = _endpoints(_pick(
        "rpc_endpoints", None, env, f"{prefix}_RPC_URL", chain_yaml.get("rpc_endpoints")
    ))
    if not endpoints:
        raise ConfigError(
            f"{prefix}_RPC_URL (or chains.yaml {chain}.rpc_endpoints) is required",
            details={"field": f"{prefix}_RPC_URL"},
        )

    raw_start = _pick("start", start, env, f"{prefix}_START_HEIGHT", chain_yaml.get("start_height"))
    raw_end = _pick("end", end, env, f"{prefix}_END_HEIGHT", chain_yaml.get("end_height"))
    missing = [
        name for name, value in ((f"{prefix}_START_HEIGHT", raw_start), (f"{prefix}_END_HEIGHT", raw_end))
        if value is None
    ]
    if missing:
        raise ConfigError(
            f"{', '.join(missing)} required",
            details={"fields": missing},
        )

    config_start = _int(f"{prefix}_START_HEIGHT", raw_start)
    config_end = _int(f"{prefix}_END_HEIGHT", raw_end)
    if config_start < 0 or config_end < config_start:
        raise ConfigError(
            f"Invalid height range [{config_start}, {config_end}]",
            code=ErrorCode.CONFIG_INVALID_VALUE,
        )

    workers = _int("BLOCK_CONCURRENCY", _pick(
        "concurrency", concurrency, env, "BLOCK_CONCURRENCY",
        capture_yaml.get("block_concurrency"), DEFAULT_BLOCK_CONCURRENCY,
    ))
    if workers < 1:
        raise ConfigError(
            f"BLOCK_CONCURRENCY must be >= 1, got {workers}",
            code=ErrorCode.CONFIG_INVALID_VALUE,
        )

    backoff = _int("RPC_BACKOFF_MS", _pick(
        "backoff_ms", None, env, "RPC_BACKOFF_MS", retry_yaml.get("backoff_ms"), DEFAULT_RETRY_BACKOFF_MS,
    ))
    max_backoff = _int("RPC_MAX_BACKOFF_MS", _pick(
        "max_backoff_ms", None, env, "RPC_MAX_BACKOFF_MS",
        retry_yaml.get("max_backoff_ms"), DEFAULT_RETRY_MAX_BACKOFF_MS,
    ))
    if backoff < 0 or max_backoff < backoff:
        raise ConfigError(
            f"Invalid backoff: base {backoff}ms, cap {max_backoff}ms",
            code=ErrorCode.CONFIG_INVALID_VALUE,
        )

    output_dir, resolved_db = resolve_paths(None, db_path, env, capture_yaml)
    ss58 = chain_yaml.get("ss58_format")

    return CaptureConfig(
        chain=chain,
        rpc_endpoints=endpoints,
        start=config_start,
        end=config_end,
        use_segments=bool(chain_yaml.get("use_segments", chain == ChainLabel.DOMAIN.value)),
        concurrency=workers,
        backoff_ms=backoff,
        max_backoff_ms=max_backoff,
        output_dir=output_dir,
        db_path=resolved_db,
        ss58_format=_int("ss58_format", ss58) if ss58 is not None else None,
    )


def load_match_config(
    *,
    mode: str = ConfirmationMode.DEST_ONLY.value,
    directions: Optional[list[str]] = None,
    db_path: Optional[str] = None,
    output_dir: Optional[str] = None,
    config_dir: Path = CONFIG_DIR,
    env: Optional[Mapping[str, str]] = None,
) -> MatchConfig:
    env = _environment(env)
    out, db = resolve_paths(output_dir, db_path, env, load_capture(config_dir))
    try:
        confirmation_mode = ConfirmationMode(mode)
    except ValueError:
        raise ConfigError(
            f"Unknown confirmation mode {mode!r}",
            code=ErrorCode.CONFIG_INVALID_VALUE,
        ) from None

    config = MatchConfig(db_path=db, output_dir=out, mode=confirmation_mode)
    if directions:
        try:
            config.directions = [Direction.parse(d) for d in directions]
        except ValueError as e:
            raise ConfigError(str(e), code=ErrorCode.CONFIG_INVALID_VALUE) from None
    return config
