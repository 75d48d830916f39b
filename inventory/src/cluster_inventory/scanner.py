from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Set

from .auth.credentials import AccountConfig
from .auth.providers import AuthContext, resolve_auth
from .aws.billing import BillingReconciler, BillingStats
from .aws.clients import AWSConnection, connect
from .aws.discovery import DiscoveredInstance, discover_in_region
from .aws.regions import get_enabled_regions
from .aws.route53 import ConsoleLinkResolver
from .config import RunConfig
from .logging import StepTimers, get_logger, log_event
from .model.entities import Account, Inventory
from .model.status import Provider
from .util.concurrency import parallel_map_ordered
from .util.errors import (
    AuthResolutionError,
    CloudClientError,
    ConfigError,
    DuplicateAccountError,
    InventoryError,
    ScanCancelled,
)
from .util.ratelimit import RateLimiter
from .util.rich_progress import RunProgress

LOG = get_logger(__name__)

Connector = Callable[[AuthContext], AWSConnection]


@dataclass
class ScanContext:
    """
    Everything a scan depends on besides the accounts themselves.
    Passed explicitly so callers and tests can swap the connector or the limiter.
    """

    config: RunConfig
    cancel_event: threading.Event = field(default_factory=threading.Event)
    limiter: Optional[RateLimiter] = None
    known_expenses: Mapping[str, Set[date]] = field(default_factory=dict)
    connector: Connector = connect
    progress: Optional[RunProgress] = None
    logger: logging.Logger = field(default_factory=lambda: LOG)
    timers: StepTimers = field(default_factory=StepTimers)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()


@dataclass
class RegionResult:
    region: str
    instances: List[DiscoveredInstance] = field(default_factory=list)
    error: Optional[str] = None
    cancelled: bool = False


@dataclass
class AccountScanResult:
    account_id: str
    account_name: str
    regions: List[str] = field(default_factory=list)
    failed_regions: Dict[str, str] = field(default_factory=dict)
    instances: int = 0
    console_links: int = 0
    billing: Optional[BillingStats] = None


@dataclass
class ScanResult:
    inventory: Inventory
    accounts: List[AccountScanResult] = field(default_factory=list)
    failed_accounts: Dict[str, str] = field(default_factory=dict)
    skipped_accounts: Dict[str, str] = field(default_factory=dict)
    cancelled: bool = False

    def failed_regions(self) -> Dict[str, Dict[str, str]]:
        return {a.account_name: dict(a.failed_regions) for a in self.accounts if a.failed_regions}


class AccountScanner:
    """
    Scan one cloud account into its Account entity.

    Regions are listed on worker threads; their results are merged into the
    account on the calling thread, in region order.
    """

    def __init__(self, account: Account, ctx: ScanContext) -> None:
        self.account = account
        self.ctx = ctx
        self.log = ctx.logger
        self.conn: Optional[AWSConnection] = None

    def connect(self) -> AWSConnection:
        """
        Build and validate the provider connection. Raises AuthResolutionError.
        """
        auth = resolve_auth(self.account)
        conn = self.ctx.connector(auth)
        if conn.account_id and conn.account_id != self.account.id:
            self.log.warning(
                "Credentials resolve to a different account id",
                extra={"account": self.account.name, "configured_id": self.account.id, "sts_id": conn.account_id},
            )
        self.conn = conn
        return conn

    def _require_conn(self) -> AWSConnection:
        if self.conn is None:
            raise AuthResolutionError(f"Account {self.account.name} is not connected")
        return self.conn

    def list_regions(self) -> List[str]:
        conn = self._require_conn()
        if self.ctx.config.regions:
            return sorted({r for r in self.ctx.config.regions if r})
        return get_enabled_regions(conn)

    def scan_region(self, region: str) -> RegionResult:
        if self.ctx.cancelled:
            return RegionResult(region=region, cancelled=True)
        conn = self._require_conn()
        try:
            found = discover_in_region(
                conn.with_region(region),
                skip_no_cluster_instances=self.ctx.config.skip_no_cluster_instances,
            )
        except CloudClientError as e:
            return RegionResult(region=region, error=str(e))
        return RegionResult(region=region, instances=found)

    def merge_region(self, result: RegionResult) -> int:
        for item in result.instances:
            self.account.add_instance(
                item.instance,
                cluster_name=item.resolved.cluster_name,
                infra_id=item.resolved.infra_id,
                region=item.region,
                owner=item.resolved.owner,
            )
        return len(result.instances)

    def make_stock(self) -> AccountScanResult:
        ctx = self.ctx
        timers = ctx.timers
        name = self.account.name
        summary = AccountScanResult(account_id=self.account.id, account_name=name)

        if self.conn is None:
            self.connect()

        log_event(self.log, logging.INFO, "Region listing started", step="regions", phase="start",
                  timers=timers, timer_key=f"regions:{name}", account=name)
        regions = self.list_regions()
        summary.regions = regions
        log_event(self.log, logging.INFO, "Regions listed", step="regions", phase="complete",
                  timers=timers, timer_key=f"regions:{name}", account=name, count=len(regions))

        if ctx.progress:
            ctx.progress.start_regions(name, regions)
        log_event(self.log, logging.INFO, "Discovery started", step="discovery", phase="start",
                  timers=timers, timer_key=f"discovery:{name}", account=name, region_count=len(regions))
        results = parallel_map_ordered(
            self.scan_region,
            regions,
            max_workers=ctx.config.workers_region,
            cancel_event=ctx.cancel_event,
        )
        for result in results:
            if result.cancelled:
                continue
            if result.error:
                summary.failed_regions[result.region] = result.error
                log_event(self.log, logging.WARNING, f"Region discovery failed; skipping region {result.region}",
                          step="discovery", phase="warning", account=name, region=result.region,
                          error=result.error)
            else:
                summary.instances += self.merge_region(result)
            if ctx.progress:
                ctx.progress.advance_region(result.region, instances=len(result.instances))
        if ctx.cancelled:
            log_event(self.log, logging.WARNING, "Discovery cancelled", step="discovery", phase="cancelled",
                      timers=timers, timer_key=f"discovery:{name}", account=name)
            raise ScanCancelled(f"Scan of account {name} cancelled")
        log_event(self.log, logging.INFO, "Discovery complete", step="discovery", phase="complete",
                  timers=timers, timer_key=f"discovery:{name}", account=name,
                  count=summary.instances, clusters=len(self.account.clusters),
                  failed_regions=len(summary.failed_regions))

        conn = self._require_conn()
        log_event(self.log, logging.INFO, "Console link lookup started", step="console", phase="start",
                  timers=timers, timer_key=f"console:{name}", account=name)
        summary.console_links = ConsoleLinkResolver(conn, logger=self.log).attach(self.account)
        log_event(self.log, logging.INFO, "Console link lookup complete", step="console", phase="complete",
                  timers=timers, timer_key=f"console:{name}", account=name, resolved=summary.console_links)

        if ctx.config.billing and self.account.billing_enabled:
            summary.billing = self._reconcile_billing()
        else:
            log_event(self.log, logging.INFO, "Billing disabled for account", step="billing", phase="skipped",
                      account=name)
        return summary

    def _reconcile_billing(self) -> BillingStats:
        ctx = self.ctx
        name = self.account.name
        reconciler = BillingReconciler(
            self._require_conn(),
            limiter=ctx.limiter,
            max_workers=ctx.config.workers_billing,
            known_expenses=ctx.known_expenses,
            cancel_event=ctx.cancel_event,
            logger=self.log,
        )
        log_event(self.log, logging.INFO, "Billing reconciliation started", step="billing", phase="start",
                  timers=ctx.timers, timer_key=f"billing:{name}", account=name)
        if ctx.progress:
            ctx.progress.start_billing(name, self.account.instance_count())
        stats = reconciler.attach(self.account)
        if ctx.progress:
            ctx.progress.finish_billing(refreshed=stats.refreshed, failed=stats.failed)
        log_event(self.log, logging.INFO, "Billing reconciliation complete", step="billing", phase="complete",
                  timers=ctx.timers, timer_key=f"billing:{name}", account=name,
                  candidates=stats.candidates, refreshed=stats.refreshed, failed=stats.failed,
                  expenses=stats.expenses_added)
        if ctx.cancelled:
            raise ScanCancelled(f"Billing of account {name} cancelled")
        return stats


def _dispatch_reason(provider: Provider) -> Optional[str]:
    if provider == Provider.AWS:
        return None
    if provider in (Provider.GCP, Provider.AZURE):
        return f"{provider.value} scanning not implemented"
    return "unknown cloud provider"


def scan_accounts(accounts: Sequence[AccountConfig], ctx: ScanContext) -> ScanResult:
    """
    Scan every configured account into one Inventory.

    Account failures are isolated: the account is dropped from the inventory and
    listed in failed_accounts. Raises ConfigError when nothing can be scanned and
    InventoryError when every scannable account failed. Cancellation stops the
    run after the current account and returns the partial result with cancelled=True.
    """
    if not accounts:
        raise ConfigError("No accounts configured for scanning")

    result = ScanResult(inventory=Inventory())
    log = ctx.logger
    scannable = 0
    if ctx.progress:
        ctx.progress.start_accounts(len(accounts))

    for account_cfg in accounts:
        if ctx.cancelled:
            result.cancelled = True
            break
        name = account_cfg.name
        reason = _dispatch_reason(account_cfg.provider)
        if reason:
            result.skipped_accounts[name] = reason
            log_event(log, logging.WARNING, "Skipping account", step="account", phase="skipped",
                      account=name, provider=account_cfg.provider.value, reason=reason)
            if ctx.progress:
                ctx.progress.advance_account(name)
            continue

        account = account_cfg.to_account()
        try:
            result.inventory.add_account(account)
        except DuplicateAccountError as e:
            result.skipped_accounts[name] = str(e)
            log_event(log, logging.ERROR, "Duplicate account; skipping", step="account", phase="skipped",
                      account=name, error=str(e))
            if ctx.progress:
                ctx.progress.advance_account(name)
            continue

        scannable += 1
        log_event(log, logging.INFO, "Account scan started", step="account", phase="start",
                  timers=ctx.timers, timer_key=f"account:{name}", account=name)
        try:
            summary = AccountScanner(account, ctx).make_stock()
        except ScanCancelled as e:
            result.cancelled = True
            result.inventory.remove_account(account.id)
            log_event(log, logging.WARNING, "Account scan cancelled", step="account", phase="cancelled",
                      timers=ctx.timers, timer_key=f"account:{name}", account=name, error=str(e))
            break
        except (AuthResolutionError, CloudClientError) as e:
            result.failed_accounts[name] = str(e)
            result.inventory.remove_account(account.id)
            log_event(log, logging.ERROR, "Account scan failed", step="account", phase="error",
                      timers=ctx.timers, timer_key=f"account:{name}", account=name, error=str(e))
        else:
            result.accounts.append(summary)
            log_event(log, logging.INFO, "Account scan complete", step="account", phase="complete",
                      timers=ctx.timers, timer_key=f"account:{name}", account=name,
                      clusters=len(account.clusters), instances=summary.instances)
        if ctx.progress:
            ctx.progress.advance_account(name)

    if result.cancelled:
        return result
    if scannable == 0:
        raise ConfigError("No valid accounts found for scanning")
    if len(result.failed_accounts) == scannable:
        raise InventoryError(
            "All scannable accounts failed: " + ", ".join(sorted(result.failed_accounts))
        )
    return result
