from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from types import MappingProxyType
from typing import Dict, Iterator, List, Mapping, Optional

from ..util.errors import DuplicateAccountError, ValidationError
from ..util.time import age_in_days, utc_now
from .status import ClusterStatus, Provider, ResourceStatus, aggregate_cluster_status

# Sentinels for resources that carry no cluster marker tag.
UNKNOWN_CLUSTER_NAME = "NO_CLUSTER"
UNKNOWN_CLUSTER_ID = "NO_CLUSTER"
UNKNOWN_INFRA_ID = ""
UNKNOWN_CONSOLE_LINK = "UNKNOWN-CONSOLE"


@dataclass
class Tag:
    key: str
    value: str = ""
    instance_id: str = ""


@dataclass(frozen=True)
class Expense:
    instance_id: str
    amount: float
    date: date


@dataclass
class Instance:
    """
    A single compute resource (an EC2 instance for AWS).

    Tags and expenses are owned collections: use add_tag / add_expense so the
    key-uniqueness and one-expense-per-day rules hold.
    """

    instance_id: str
    name: str = ""
    provider: Provider = Provider.UNKNOWN
    instance_type: str = ""
    availability_zone: str = ""
    status: ResourceStatus = ResourceStatus.RUNNING
    cluster_id: str = UNKNOWN_CLUSTER_ID
    created_at: Optional[datetime] = None
    age: int = field(default=1, init=False)
    tags: List[Tag] = field(default_factory=list, init=False)
    expenses: List[Expense] = field(default_factory=list, init=False)

    def __post_init__(self) -> None:
        if not (self.instance_id or "").strip():
            raise ValidationError("Instance id must not be empty")
        self.age = age_in_days(self.created_at)

    def refresh_age(self, now: Optional[datetime] = None) -> int:
        self.age = age_in_days(self.created_at, now)
        return self.age

    def add_tag(self, key: str, value: str) -> Tag:
        if not key:
            raise ValidationError(f"Tag key must not be empty (instance {self.instance_id})")
        for tag in self.tags:
            if tag.key == key:
                tag.value = value
                return tag
        tag = Tag(key=key, value=value, instance_id=self.instance_id)
        self.tags.append(tag)
        return tag

    def get_tag(self, key: str) -> Optional[str]:
        for tag in self.tags:
            if tag.key == key:
                return tag.value
        return None

    def add_expense(self, expense: Expense) -> Expense:
        if not math.isfinite(expense.amount) or expense.amount < 0:
            raise ValidationError(
                f"Expense amount must be a finite value >= 0 (instance {self.instance_id}, date {expense.date}): {expense.amount}"
            )
        if expense.instance_id != self.instance_id:
            expense = replace(expense, instance_id=self.instance_id)
        for idx, existing in enumerate(self.expenses):
            if existing.date == expense.date:
                self.expenses[idx] = expense
                return expense
        self.expenses.append(expense)
        self.expenses.sort(key=lambda e: e.date)
        return expense

    def expense_dates(self) -> List[date]:
        return [e.date for e in self.expenses]

    @property
    def total_cost(self) -> float:
        return sum(e.amount for e in self.expenses)

    @property
    def region(self) -> str:
        # us-east-1a -> us-east-1
        az = self.availability_zone or ""
        if az and az[-1].isalpha():
            return az[:-1]
        return az


@dataclass
class Cluster:
    cluster_id: str
    cluster_name: str
    infra_id: str = UNKNOWN_INFRA_ID
    provider: Provider = Provider.UNKNOWN
    region: str = ""
    account_id: str = ""
    console_link: str = UNKNOWN_CONSOLE_LINK
    owner: str = ""
    status: ClusterStatus = field(default=ClusterStatus.UNKNOWN, init=False)
    instances: List[Instance] = field(default_factory=list, init=False)

    def add_instance(self, instance: Instance) -> None:
        """
        Add (or replace, by instance id) a member and recompute the cluster status.
        """
        if instance.cluster_id != self.cluster_id:
            raise ValidationError(
                f"Instance {instance.instance_id} belongs to cluster {instance.cluster_id}, not {self.cluster_id}"
            )
        for idx, existing in enumerate(self.instances):
            if existing.instance_id == instance.instance_id:
                self.instances[idx] = instance
                break
        else:
            self.instances.append(instance)
        self.update_status()

    def update_status(self) -> ClusterStatus:
        self.status = aggregate_cluster_status(i.status for i in self.instances)
        return self.status

    @property
    def is_known(self) -> bool:
        return self.cluster_id != UNKNOWN_CLUSTER_ID

    @property
    def instance_ids(self) -> List[str]:
        return [i.instance_id for i in self.instances]

    @property
    def total_cost(self) -> float:
        return sum(i.total_cost for i in self.instances)


@dataclass
class Account:
    id: str
    name: str
    provider: Provider = Provider.UNKNOWN
    user: str = field(default="", repr=False, compare=False)
    password: str = field(default="", repr=False, compare=False)
    billing_enabled: bool = False
    _clusters: Dict[str, Cluster] = field(default_factory=dict, init=False, repr=False)

    @property
    def clusters(self) -> Mapping[str, Cluster]:
        return MappingProxyType(self._clusters)

    def get_cluster(self, cluster_id: str) -> Optional[Cluster]:
        return self._clusters.get(cluster_id)

    def upsert_cluster(self, cluster: Cluster) -> Cluster:
        cluster.account_id = self.id
        self._clusters[cluster.cluster_id] = cluster
        return cluster

    def add_instance(
        self,
        instance: Instance,
        *,
        cluster_name: str,
        infra_id: str = UNKNOWN_INFRA_ID,
        region: str = "",
        owner: str = "",
    ) -> Cluster:
        """
        Place an instance into its cluster, creating the cluster on first sight.
        The instance's cluster_id selects the cluster.
        """
        cluster = self._clusters.get(instance.cluster_id)
        if cluster is None:
            cluster = self.upsert_cluster(
                Cluster(
                    cluster_id=instance.cluster_id,
                    cluster_name=cluster_name,
                    infra_id=infra_id,
                    provider=self.provider,
                    region=region or instance.region,
                    owner=owner,
                )
            )
        elif owner and not cluster.owner:
            cluster.owner = owner
        cluster.add_instance(instance)
        return cluster

    def set_console_link(self, cluster_id: str, link: str) -> None:
        cluster = self._clusters.get(cluster_id)
        if cluster is None:
            raise ValidationError(f"Unknown cluster {cluster_id} in account {self.id}")
        cluster.console_link = link

    def iter_instances(self) -> Iterator[Instance]:
        for cluster_id in sorted(self._clusters):
            yield from self._clusters[cluster_id].instances

    def instance_count(self) -> int:
        return sum(len(c.instances) for c in self._clusters.values())


@dataclass
class Inventory:
    accounts: Dict[str, Account] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utc_now, compare=False)

    def add_account(self, account: Account) -> Account:
        if account.id in self.accounts:
            raise DuplicateAccountError(f"Account id already in inventory: {account.id}")
        for existing in self.accounts.values():
            if existing.name == account.name:
                raise DuplicateAccountError(f"Account name already in inventory: {account.name}")
        self.accounts[account.id] = account
        return account

    def get_account(self, account_id: str) -> Optional[Account]:
        return self.accounts.get(account_id)

    def remove_account(self, account_id: str) -> Optional[Account]:
        return self.accounts.pop(account_id, None)

    def iter_clusters(self) -> Iterator[Cluster]:
        for account_id in sorted(self.accounts):
            account = self.accounts[account_id]
            for cluster_id in sorted(account.clusters):
                yield account.clusters[cluster_id]
