from __future__ import annotations

import argparse
import json
import os
import warnings
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml

from .util.ratelimit import DEFAULT_COST_EXPLORER_RATE

# --------
# Defaults
# --------
DEFAULT_CREDENTIALS_FILE = "credentials.ini"
DEFAULT_WORKERS_REGION = 6
DEFAULT_WORKERS_BILLING = 4
ENV_PREFIX = "CLUSTER_INV_"
COMMANDS = ("run", "diff", "validate-auth", "list-regions", "list-accounts")
ALLOWED_CONFIG_KEYS = {
    "credentials_file",
    "outdir",
    "prev",
    "curr",
    "regions",
    "billing",
    "skip_no_cluster_instances",
    "workers_region",
    "workers_billing",
    "billing_rate_per_second",
    "json_logs",
    "log_level",
    "progress",
}
BOOL_CONFIG_KEYS = {"billing", "skip_no_cluster_instances", "json_logs", "progress"}
INT_CONFIG_KEYS = {"workers_region", "workers_billing"}
FLOAT_CONFIG_KEYS = {"billing_rate_per_second"}
PATH_CONFIG_KEYS = {"credentials_file", "outdir", "prev", "curr"}
STR_CONFIG_KEYS = {"log_level"}


@dataclass(frozen=True)
class RunConfig:
    # General
    outdir: Path
    credentials_file: Path = Path(DEFAULT_CREDENTIALS_FILE)
    prev: Optional[Path] = None
    curr: Optional[Path] = None
    json_logs: bool = False
    log_level: str = "INFO"
    progress: bool = True

    # Scan behaviour
    regions: Optional[List[str]] = None
    billing: bool = True
    skip_no_cluster_instances: bool = False

    # Performance
    workers_region: int = DEFAULT_WORKERS_REGION
    workers_billing: int = DEFAULT_WORKERS_BILLING
    billing_rate_per_second: float = DEFAULT_COST_EXPLORER_RATE

    # Internal/derived
    collected_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat(timespec="seconds")
    )


def _parse_config_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    text = path.read_text(encoding="utf-8")
    try:
        if path.suffix.lower() == ".json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text) or {}
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ValueError(f"Failed to parse config file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ValueError("Top-level config must be an object")
    return data


def _env_config() -> Dict[str, Any]:
    """
    Read CLUSTER_INV_<KEY> overrides for every config key. Blank or unparsable
    values are ignored so they never mask the config file.
    """
    out: Dict[str, Any] = {}
    for key in sorted(ALLOWED_CONFIG_KEYS):
        raw = (os.getenv(ENV_PREFIX + key.upper()) or "").strip()
        if not raw:
            continue
        try:
            if key in BOOL_CONFIG_KEYS:
                out[key] = _coerce_bool(key, raw)
            elif key in INT_CONFIG_KEYS:
                out[key] = _coerce_int(key, raw)
            elif key in FLOAT_CONFIG_KEYS:
                out[key] = _coerce_float(key, raw)
            else:
                out[key] = raw
        except ValueError:
            continue
    return out


def _coerce_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        raw = value.strip().lower()
        if raw in {"1", "true", "yes", "on"}:
            return True
        if raw in {"0", "false", "no", "off"}:
            return False
    raise ValueError(f"Config field '{key}' must be a boolean")


def _coerce_int(key: str, value: Any) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return int(value)
        except ValueError:
            pass
    raise ValueError(f"Config field '{key}' must be an integer")


def _coerce_float(key: str, value: Any) -> float:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    if isinstance(value, str) and value.strip():
        try:
            return float(value)
        except ValueError:
            pass
    raise ValueError(f"Config field '{key}' must be a number")


def _split_regions(value: Any) -> List[str]:
    if isinstance(value, str):
        return [r.strip() for r in value.split(",") if r.strip()]
    if isinstance(value, list) and all(isinstance(r, str) for r in value):
        return [r.strip() for r in value if r.strip()]
    raise ValueError("Config field 'regions' must be a list of strings or comma-separated string")


def _normalize_config_file(data: Dict[str, Any]) -> Dict[str, Any]:
    unknown = sorted(set(data.keys()) - ALLOWED_CONFIG_KEYS)
    if unknown:
        warnings.warn(f"Unknown config keys ignored: {', '.join(unknown)}")
    normalized: Dict[str, Any] = {}
    for key, value in data.items():
        if key not in ALLOWED_CONFIG_KEYS:
            continue
        if value is None:
            normalized[key] = None
            continue
        if key == "regions":
            normalized[key] = _split_regions(value)
        elif key in BOOL_CONFIG_KEYS:
            normalized[key] = _coerce_bool(key, value)
        elif key in INT_CONFIG_KEYS:
            normalized[key] = _coerce_int(key, value)
        elif key in FLOAT_CONFIG_KEYS:
            normalized[key] = _coerce_float(key, value)
        elif key in PATH_CONFIG_KEYS:
            if isinstance(value, (str, Path)):
                normalized[key] = value
            else:
                raise ValueError(f"Config field '{key}' must be a string path")
        elif key in STR_CONFIG_KEYS:
            if isinstance(value, str):
                normalized[key] = value
            else:
                raise ValueError(f"Config field '{key}' must be a string")
    return _compact_dict(normalized)


def _compact_dict(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Drop keys with None values so they don't override lower-precedence config.
    """
    return {k: v for k, v in data.items() if v is not None}


def _merge_dicts(a: Dict[str, Any], b: Dict[str, Any]) -> Dict[str, Any]:
    """
    Shallow merge: values in b override a.
    """
    merged = dict(a)
    merged.update(b)
    return merged


def _timestamp_dir(base: Optional[Union[str, Path]]) -> Path:
    ts = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    if base:
        return Path(base) / ts
    return Path("out") / ts


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="cluster-inv", description="Cloud cluster inventory scanner")
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_common(p: argparse.ArgumentParser) -> None:
        p.add_argument("--config", type=Path, help="Optional YAML/JSON config file")
        p.add_argument(
            "--json-logs",
            action=argparse.BooleanOptionalAction,
            default=None,
            help="Enable JSON logs",
        )
        p.add_argument("--log-level", default=None, help="Log level (INFO, DEBUG, ...)")
        p.add_argument(
            "--credentials-file",
            type=Path,
            default=None,
            help=f"INI file with one section per account (default {DEFAULT_CREDENTIALS_FILE})",
        )
        p.add_argument(
            "--progress",
            action=argparse.BooleanOptionalAction,
            default=None,
            help="Show progress bars (default on)",
        )

    # run
    p_run = subparsers.add_parser("run", help="Scan every account and write a snapshot")
    add_common(p_run)
    p_run.add_argument("--outdir", type=Path, default=None, help="Output base directory (out/TS)")
    p_run.add_argument("--prev", type=Path, default=None, help="Previous snapshot dir (diff + known expenses)")
    p_run.add_argument(
        "--regions",
        default=None,
        help="Comma-separated list of regions to scan (overrides the account's enabled regions)",
    )
    p_run.add_argument(
        "--billing",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Query Cost Explorer for billing-enabled accounts (default on)",
    )
    p_run.add_argument(
        "--skip-no-cluster-instances",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Drop instances that carry no cluster marker tag",
    )
    p_run.add_argument(
        "--workers-region", type=int, default=None, help=f"Max parallel regions (default {DEFAULT_WORKERS_REGION})"
    )
    p_run.add_argument(
        "--workers-billing",
        type=int,
        default=None,
        help=f"Max parallel Cost Explorer calls (default {DEFAULT_WORKERS_BILLING})",
    )
    p_run.add_argument(
        "--billing-rate",
        dest="billing_rate_per_second",
        type=float,
        default=None,
        help=f"Cost Explorer requests per second (default {DEFAULT_COST_EXPLORER_RATE})",
    )

    # diff
    p_diff = subparsers.add_parser("diff", help="Diff two snapshot directories")
    add_common(p_diff)
    p_diff.add_argument("--prev", type=Path, required=False, help="Previous snapshot dir")
    p_diff.add_argument("--curr", type=Path, required=False, help="Current snapshot dir")
    p_diff.add_argument("--outdir", type=Path, default=None, help="Output dir for diff files")

    p_val = subparsers.add_parser("validate-auth", help="Validate credentials of every account")
    add_common(p_val)

    p_lr = subparsers.add_parser("list-regions", help="List enabled regions per account")
    add_common(p_lr)

    p_la = subparsers.add_parser("list-accounts", help="List configured accounts (no secrets)")
    add_common(p_la)

    return parser


def load_run_config(
    args: Optional[argparse.Namespace] = None,
    argv: Optional[list[str]] = None,
    subcommand: Optional[str] = None,
) -> Tuple[str, RunConfig]:
    """
    Build RunConfig by merging defaults, optional config file, env vars, and CLI args.
    Precedence (low -> high): defaults < config file < env < CLI.

    Returns:
      (command, RunConfig) where command is one of COMMANDS
    """
    ns = args if args is not None else build_parser().parse_args(argv)
    command = ns.command if subcommand is None else subcommand

    base: Dict[str, Any] = {
        "credentials_file": DEFAULT_CREDENTIALS_FILE,
        "outdir": None,
        "prev": None,
        "curr": None,
        "regions": None,
        "billing": True,
        "skip_no_cluster_instances": False,
        "workers_region": DEFAULT_WORKERS_REGION,
        "workers_billing": DEFAULT_WORKERS_BILLING,
        "billing_rate_per_second": DEFAULT_COST_EXPLORER_RATE,
        "json_logs": False,
        "log_level": "INFO",
        "progress": True,
    }

    file_cfg: Dict[str, Any] = {}
    if getattr(ns, "config", None):
        file_cfg = _normalize_config_file(_parse_config_file(Path(ns.config)))

    env_cfg = _env_config()

    cli_cfg: Dict[str, Any] = _compact_dict({key: getattr(ns, key, None) for key in ALLOWED_CONFIG_KEYS})

    merged = _merge_dicts(base, _merge_dicts(file_cfg, _merge_dicts(env_cfg, cli_cfg)))

    outdir_raw = merged.get("outdir")
    outdir = _timestamp_dir(outdir_raw) if command == "run" else Path(outdir_raw) if outdir_raw else Path.cwd()
    regions_raw = merged.get("regions")
    regions = _split_regions(regions_raw) if regions_raw is not None else None

    workers_region = int(merged["workers_region"])
    workers_billing = int(merged["workers_billing"])
    if workers_region < 1 or workers_billing < 1:
        raise ValueError("Worker counts must be >= 1")
    rate = float(merged["billing_rate_per_second"])
    if rate <= 0:
        raise ValueError("billing_rate_per_second must be > 0")

    cfg = RunConfig(
        outdir=outdir,
        credentials_file=Path(merged["credentials_file"]),
        prev=Path(merged["prev"]) if merged.get("prev") else None,
        curr=Path(merged["curr"]) if merged.get("curr") else None,
        json_logs=bool(merged["json_logs"]),
        log_level=str(merged.get("log_level") or "INFO").upper(),
        progress=bool(merged["progress"]),
        regions=regions or None,
        billing=bool(merged["billing"]),
        skip_no_cluster_instances=bool(merged["skip_no_cluster_instances"]),
        workers_region=workers_region,
        workers_billing=workers_billing,
        billing_rate_per_second=rate,
    )
    return command, cfg


def dump_config(cfg: RunConfig) -> Dict[str, Any]:
    return {
        "outdir": str(cfg.outdir),
        "credentials_file": str(cfg.credentials_file),
        "prev": str(cfg.prev) if cfg.prev else None,
        "curr": str(cfg.curr) if cfg.curr else None,
        "json_logs": cfg.json_logs,
        "log_level": cfg.log_level,
        "progress": cfg.progress,
        "regions": cfg.regions,
        "billing": cfg.billing,
        "skip_no_cluster_instances": cfg.skip_no_cluster_instances,
        "workers_region": cfg.workers_region,
        "workers_billing": cfg.workers_billing,
        "billing_rate_per_second": cfg.billing_rate_per_second,
        "collected_at": cfg.collected_at,
    }
