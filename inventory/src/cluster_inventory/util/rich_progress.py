from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from rich.console import Console
from rich.progress import BarColumn, Progress, TaskID, TaskProgressColumn, TextColumn, TimeElapsedColumn
from rich.table import Table


def _format_region_counts(counts: Dict[str, int], *, max_regions: int = 4) -> str:
    if not counts:
        return ""
    items = sorted(counts.items(), key=lambda item: item[0])
    shown = items[:max_regions]
    tail = len(items) - len(shown)
    rendered = ", ".join([f"{name}={count}" for name, count in shown])
    if tail > 0:
        rendered = f"{rendered} (+{tail} more)"
    return rendered


class RunProgress:
    """
    Progress bars for a scan: accounts, regions of the current account, billing calls.
    Every method is a no-op when disabled.
    """

    def __init__(self, *, enabled: bool, console: Optional[Console] = None) -> None:
        self._enabled = bool(enabled)
        self._console = console or Console(stderr=True)
        self._progress: Optional[Progress] = None
        self._accounts_task: Optional[TaskID] = None
        self._regions_task: Optional[TaskID] = None
        self._billing_task: Optional[TaskID] = None
        self._region_counts: Dict[str, int] = {}
        self._started = False
        if self._enabled:
            self._progress = Progress(
                TextColumn("{task.description}"),
                BarColumn(),
                TaskProgressColumn(),
                TextColumn("{task.fields[detail]}", justify="left"),
                TimeElapsedColumn(),
                console=self._console,
                transient=True,
            )

    def __enter__(self) -> RunProgress:
        if self._progress and not self._started:
            self._progress.start()
            self._started = True
        return self

    def __exit__(self, exc_type: Any, exc: Any, exc_tb: Any) -> None:
        if self._progress and self._started:
            self._progress.stop()
            self._started = False

    @property
    def enabled(self) -> bool:
        return self._enabled

    def start_accounts(self, total: int) -> None:
        if not self._progress:
            return
        self._accounts_task = self._progress.add_task("Accounts", total=total, detail="")

    def advance_account(self, name: str) -> None:
        if not self._progress or self._accounts_task is None:
            return
        self._progress.update(self._accounts_task, advance=1, detail=name)

    def start_regions(self, account: str, regions: Sequence[str]) -> None:
        if not self._progress:
            return
        self._region_counts = {}
        if self._regions_task is None:
            self._regions_task = self._progress.add_task(f"Regions {account}", total=len(regions), detail="")
        else:
            self._progress.reset(self._regions_task, total=len(regions), completed=0)
            self._progress.update(self._regions_task, description=f"Regions {account}", detail="")

    def advance_region(self, region: str, *, instances: int = 0) -> None:
        if not self._progress or self._regions_task is None:
            return
        if instances:
            self._region_counts[region] = self._region_counts.get(region, 0) + instances
        self._progress.update(
            self._regions_task,
            advance=1,
            detail=_format_region_counts(self._region_counts),
        )

    def start_billing(self, account: str, total: int) -> None:
        if not self._progress:
            return
        if self._billing_task is None:
            self._billing_task = self._progress.add_task(f"Billing {account}", total=total, detail="")
        else:
            self._progress.reset(self._billing_task, total=total, completed=0)
            self._progress.update(self._billing_task, description=f"Billing {account}", detail="")

    def finish_billing(self, *, refreshed: int, failed: int) -> None:
        if not self._progress or self._billing_task is None:
            return
        self._progress.update(
            self._billing_task,
            completed=refreshed + failed,
            detail=f"ok={refreshed} failed={failed}",
        )


def render_run_summary_table(
    *,
    enabled: bool,
    status: str,
    summary: Dict[str, Any],
    failed_accounts: List[str],
    outdir: str,
    console: Optional[Console] = None,
) -> None:
    if not enabled:
        return
    table = Table(title="Run Summary", show_header=True, header_style="bold")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="white")
    table.add_row("Status", status)
    table.add_row("Accounts", str(summary.get("accounts", 0)))
    table.add_row("Clusters", str(summary.get("clusters", 0)))
    table.add_row("Instances", str(summary.get("instances", 0)))
    for status_name, count in sorted((summary.get("clusters_by_status") or {}).items()):
        table.add_row(f"Clusters {status_name}", str(count))
    table.add_row("Total cost (14d)", f"{summary.get('total_cost', 0.0):.2f}")
    table.add_row("Failed accounts", ", ".join(failed_accounts) or "-")
    table.add_row("Output dir", outdir)
    (console or Console()).print(table)
