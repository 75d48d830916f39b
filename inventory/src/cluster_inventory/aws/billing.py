from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set, Tuple

from ..model.entities import Account, Expense, Instance
from ..util.concurrency import parallel_map_ordered
from ..util.errors import ValidationError, map_aws_error
from ..util.pagination import paginate
from ..util.ratelimit import RateLimiter
from ..util.time import parse_day, utc_today
from .clients import COST_EXPLORER_REGION, AWSConnection

LOG = logging.getLogger(__name__)

BILLING_WINDOW_DAYS = 14
COST_METRIC = "UnblendedCost"


@dataclass
class BillingStats:
    candidates: int = 0
    refreshed: int = 0
    failed: int = 0
    expenses_added: int = 0
    skipped_cancelled: int = 0


def billing_window(today: date) -> Tuple[date, date]:
    """
    [today - 14 days, today). Cost Explorer treats End as exclusive.
    """
    return today - timedelta(days=BILLING_WINDOW_DAYS), today


def select_candidates(
    instances: Sequence[Instance],
    *,
    today: date,
    known_expenses: Optional[Mapping[str, Set[date]]] = None,
) -> List[Instance]:
    """
    Instances whose cost data needs a refresh: no known expense at all, or the
    latest known expense is older than yesterday. Known expenses merge the in-memory
    expenses with an optional index from a previous snapshot.
    """
    stale_before = today - timedelta(days=1)
    known_expenses = known_expenses or {}
    out: List[Instance] = []
    for instance in instances:
        dates = set(instance.expense_dates()) | set(known_expenses.get(instance.instance_id, ()))
        if not dates or max(dates) < stale_before:
            out.append(instance)
    return out


class BillingReconciler:
    """
    Attach daily costs from Cost Explorer to the instances of one account.

    Calls run on a bounded pool and share one token-bucket limiter. Each worker
    mutates only the instance it was handed.
    """

    def __init__(
        self,
        conn: AWSConnection,
        *,
        limiter: Optional[RateLimiter] = None,
        max_workers: int = 4,
        known_expenses: Optional[Mapping[str, Set[date]]] = None,
        cancel_event: Optional[threading.Event] = None,
        today: Optional[date] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.conn = conn
        self.limiter = limiter
        self.max_workers = max_workers
        self.known_expenses = known_expenses or {}
        self.cancel_event = cancel_event
        self.today = today or utc_today()
        self.log = logger or LOG
        self._client: Any = None

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = self.conn.client("ce", region=COST_EXPLORER_REGION)
        return self._client

    def _cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    def _query(self, instance_id: str, page_token: Optional[str]) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        start, end = billing_window(self.today)
        kwargs: Dict[str, Any] = {
            "TimePeriod": {"Start": start.isoformat(), "End": end.isoformat()},
            "Granularity": "DAILY",
            "Filter": {"Dimensions": {"Key": "RESOURCE_ID", "Values": [instance_id]}},
            "Metrics": [COST_METRIC],
        }
        if page_token:
            kwargs["NextPageToken"] = page_token
        if self.limiter is not None:
            self.limiter.acquire()
        resp = self.client.get_cost_and_usage_with_resources(**kwargs)
        return list(resp.get("ResultsByTime") or []), resp.get("NextPageToken")

    def fetch_expenses(self, instance: Instance) -> int:
        """
        Query the trailing window for one instance and add one expense per daily bucket.

        An unparsable amount stops processing of the remaining buckets. A negative
        amount is rejected by the model and the next bucket is processed. Returns the
        number of expenses added or replaced.
        """
        added = 0
        for bucket in paginate(lambda token: self._query(instance.instance_id, token)):
            total = (bucket.get("Total") or {}).get(COST_METRIC)
            if not total:
                continue
            try:
                amount = float(total.get("Amount"))
            except (TypeError, ValueError):
                self.log.error(
                    "Unparsable cost amount; skipping remaining buckets",
                    extra={"instance_id": instance.instance_id, "amount": str(total.get("Amount"))},
                )
                break
            start = (bucket.get("TimePeriod") or {}).get("Start")
            try:
                day = parse_day(str(start))
            except ValueError:
                self.log.error(
                    "Unparsable cost date; skipping remaining buckets",
                    extra={"instance_id": instance.instance_id, "start": str(start)},
                )
                break
            try:
                instance.add_expense(Expense(instance_id=instance.instance_id, amount=amount, date=day))
            except ValidationError as e:
                self.log.warning("Rejected expense", extra={"instance_id": instance.instance_id, "error": str(e)})
                continue
            added += 1
        return added

    def _reconcile_one(self, instance: Instance) -> Tuple[str, int, Optional[str]]:
        try:
            return instance.instance_id, self.fetch_expenses(instance), None
        except Exception as e:
            mapped = map_aws_error(e, f"AWS error while querying costs for {instance.instance_id}")
            if mapped is None:
                raise
            return instance.instance_id, 0, str(mapped)

    def attach(self, account: Account) -> BillingStats:
        instances = list(account.iter_instances())
        candidates = select_candidates(instances, today=self.today, known_expenses=self.known_expenses)
        stats = BillingStats(candidates=len(candidates))
        if not candidates:
            return stats
        results = parallel_map_ordered(
            self._reconcile_one,
            candidates,
            max_workers=self.max_workers,
            cancel_event=self.cancel_event,
        )
        for instance_id, added, error in results:
            if error:
                stats.failed += 1
                self.log.error(
                    "Billing lookup failed",
                    extra={"account": account.name, "instance_id": instance_id, "error": error},
                )
                continue
            stats.refreshed += 1
            stats.expenses_added += added
        stats.skipped_cancelled = len(candidates) - len(results)
        if self._cancelled() and stats.skipped_cancelled:
            self.log.warning(
                "Billing pass cancelled",
                extra={"account": account.name, "skipped": stats.skipped_cancelled},
            )
        return stats
