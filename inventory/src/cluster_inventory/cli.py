from __future__ import annotations

import json
import logging
import signal
import sys
import threading
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from .auth.credentials import AccountConfig, read_cloud_accounts
from .auth.providers import resolve_auth
from .aws.clients import connect
from .aws.regions import get_enabled_regions
from .config import RunConfig, dump_config, load_run_config
from .diff.diff import compute_snapshot_diff, diff_snapshots, write_diff
from .export.snapshot import load_expense_index, load_snapshot_records, write_snapshot
from .logging import LogConfig, StepTimers, add_run_log_file, get_logger, log_event, setup_logging
from .model.status import Provider
from .model.summary import summarize_inventory
from .normalize.schema import resolve_output_paths
from .normalize.transform import inventory_records
from .scanner import ScanContext, ScanResult, scan_accounts
from .util.errors import (
    AuthResolutionError,
    CloudClientError,
    ConfigError,
    ExitCode,
    ScanCancelled,
    as_exit_code,
)
from .util.ratelimit import optional_limiter
from .util.rich_progress import RunProgress, render_run_summary_table

LOG = get_logger(__name__)


def install_cancel_handlers(cancel_event: threading.Event) -> None:
    """
    SIGINT/SIGTERM set the cancel event; the scan stops between regions and billing calls.
    A second SIGINT falls through to the default handler.
    """

    def _handler(signum: int, _frame: Any) -> None:
        if cancel_event.is_set():
            signal.signal(signal.SIGINT, signal.default_int_handler)
            return
        LOG.warning("Cancellation requested", extra={"signal": int(signum)})
        cancel_event.set()

    if threading.current_thread() is not threading.main_thread():
        return
    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


def _load_accounts(cfg: RunConfig) -> List[AccountConfig]:
    accounts = read_cloud_accounts(cfg.credentials_file)
    if not accounts:
        raise ConfigError(f"No accounts defined in {cfg.credentials_file}")
    return accounts


def _aws_accounts(cfg: RunConfig) -> List[AccountConfig]:
    return [a for a in _load_accounts(cfg) if a.provider == Provider.AWS]


def _known_expenses(cfg: RunConfig) -> Dict[str, Set[date]]:
    if not cfg.prev:
        return {}
    return load_expense_index(cfg.prev)


def _run_summary_extra(result: ScanResult, cfg: RunConfig, status: str) -> Dict[str, Any]:
    return {
        "status": status,
        "failed_accounts": dict(sorted(result.failed_accounts.items())),
        "skipped_accounts": dict(sorted(result.skipped_accounts.items())),
        "failed_regions": result.failed_regions(),
        "config": dump_config(cfg),
    }


def cmd_run(cfg: RunConfig, *, cancel_event: Optional[threading.Event] = None) -> int:
    cfg.outdir.mkdir(parents=True, exist_ok=True)
    paths = resolve_output_paths(cfg.outdir)
    add_run_log_file(paths.debug_log)
    timers = StepTimers()
    cancel_event = cancel_event or threading.Event()

    log_event(LOG, logging.INFO, "Starting inventory run", step="run", phase="start", timers=timers,
              outdir=str(cfg.outdir))

    accounts = _load_accounts(cfg)
    ctx = ScanContext(
        config=cfg,
        cancel_event=cancel_event,
        limiter=optional_limiter(cfg.billing_rate_per_second),
        known_expenses=_known_expenses(cfg),
        timers=timers,
    )

    with RunProgress(enabled=cfg.progress) as progress:
        ctx.progress = progress
        result = scan_accounts(accounts, ctx)

    if result.cancelled:
        log_event(LOG, logging.WARNING, "Run cancelled; no snapshot written", step="run", phase="cancelled",
                  timers=timers)
        raise ScanCancelled("Run cancelled before completion")

    status = "OK" if not result.failed_accounts else "PARTIAL"
    log_event(LOG, logging.INFO, "Export started", step="export", phase="start", timers=timers)
    write_snapshot(
        result.inventory,
        cfg.outdir,
        collected_at=cfg.collected_at,
        extra_summary=_run_summary_extra(result, cfg, status),
    )
    log_event(LOG, logging.INFO, "Export complete", step="export", phase="complete", timers=timers,
              outdir=str(cfg.outdir))

    if cfg.prev:
        log_event(LOG, logging.INFO, "Diff started", step="diff", phase="start", timers=timers,
                  prev=str(cfg.prev))
        try:
            prev_records = load_snapshot_records(cfg.prev)
        except (OSError, json.JSONDecodeError) as e:
            log_event(LOG, logging.WARNING, "Previous snapshot unreadable; diff skipped", step="diff",
                      phase="warning", timers=timers, error=str(e))
        else:
            diff_obj = compute_snapshot_diff(prev_records, inventory_records(result.inventory, cfg.collected_at))
            write_diff(paths.diff_dir, diff_obj)
            log_event(LOG, logging.INFO, "Diff complete", step="diff", phase="complete", timers=timers)

    summary = summarize_inventory(result.inventory)
    render_run_summary_table(
        enabled=cfg.progress,
        status=status,
        summary=summary,
        failed_accounts=sorted(result.failed_accounts),
        outdir=str(cfg.outdir),
    )
    log_event(LOG, logging.INFO, "Inventory run complete", step="run", phase="complete", timers=timers,
              status=status, clusters=summary["clusters"], instances=summary["instances"])
    return int(ExitCode.OK)


def cmd_diff(cfg: RunConfig) -> int:
    if not cfg.prev or not cfg.curr:
        raise ConfigError("Both --prev and --curr must be provided for diff")
    timers = StepTimers()
    log_event(LOG, logging.INFO, "Diff started", step="diff", phase="start", timers=timers)
    diff_obj = diff_snapshots(Path(cfg.prev), Path(cfg.curr))
    write_diff(cfg.outdir, diff_obj)
    log_event(LOG, logging.INFO, "Diff complete", step="diff", phase="complete", timers=timers,
              outdir=str(cfg.outdir))
    return int(ExitCode.OK)


def cmd_validate_auth(cfg: RunConfig) -> int:
    failed = 0
    for account_cfg in _aws_accounts(cfg):
        try:
            conn = connect(resolve_auth(account_cfg.to_account()))
        except AuthResolutionError as e:
            failed += 1
            LOG.error("Authentication failed", extra={"account": account_cfg.name, "error": str(e)})
            print(f"FAIL: {account_cfg.name}")
            continue
        LOG.info("Authentication validated", extra={"account": account_cfg.name})
        print(f"OK: {account_cfg.name} ({conn.account_id})")
    return int(ExitCode.AUTH_ERROR) if failed else int(ExitCode.OK)


def cmd_list_regions(cfg: RunConfig) -> int:
    for account_cfg in _aws_accounts(cfg):
        try:
            regions = get_enabled_regions(connect(resolve_auth(account_cfg.to_account())))
        except (AuthResolutionError, CloudClientError) as e:
            LOG.error("Region listing failed", extra={"account": account_cfg.name, "error": str(e)})
            continue
        for r in regions:
            print(f"{account_cfg.name},{r}")
    return int(ExitCode.OK)


def cmd_list_accounts(cfg: RunConfig) -> int:
    for a in _load_accounts(cfg):
        print(f"{a.id},{a.name},{a.provider.value},billing={'on' if a.billing_enabled else 'off'}")
    return int(ExitCode.OK)


def main() -> None:
    try:
        command, cfg = load_run_config()
        setup_logging(LogConfig(level=cfg.log_level, json_logs=cfg.json_logs))

        if command == "run":
            cancel_event = threading.Event()
            install_cancel_handlers(cancel_event)
            code = cmd_run(cfg, cancel_event=cancel_event)
        elif command == "diff":
            code = cmd_diff(cfg)
        elif command == "validate-auth":
            code = cmd_validate_auth(cfg)
        elif command == "list-regions":
            code = cmd_list_regions(cfg)
        elif command == "list-accounts":
            code = cmd_list_accounts(cfg)
        else:
            raise ConfigError(f"Unknown command: {command}")

        sys.exit(code)
    except SystemExit:
        raise
    except BrokenPipeError:
        # Common when users pipe to `head` or similar tools.
        sys.exit(0)
    except KeyboardInterrupt:
        sys.exit(int(ExitCode.CANCELLED))
    except Exception as e:
        setup_logging(LogConfig())  # ensure something is configured
        LOG.error("Execution failed", extra={"error": str(e)})
        sys.exit(as_exit_code(e))


if __name__ == "__main__":
    main()
