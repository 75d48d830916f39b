from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, TypedDict

SCHEMA_VERSION = "1"

# Entity types written to the snapshot, in write order.
ENTITY_TYPES: List[str] = ["accounts", "clusters", "instances", "tags", "expenses"]


class AccountRecord(TypedDict):
    recordKey: str
    accountId: str
    accountName: str
    provider: str
    billingEnabled: bool
    clusterCount: int
    instanceCount: int
    collectedAt: str


class ClusterRecord(TypedDict):
    recordKey: str
    accountId: str
    clusterId: str
    clusterName: str
    infraId: str
    provider: str
    region: str
    status: str
    consoleLink: str
    owner: str
    instanceCount: int
    totalCost: float
    collectedAt: str


class InstanceRecord(TypedDict):
    recordKey: str
    accountId: str
    clusterId: str
    instanceId: str
    instanceName: str
    provider: str
    instanceType: str
    availabilityZone: str
    region: str
    status: str
    createdAt: Optional[str]
    age: int
    totalCost: float
    collectedAt: str


class TagRecord(TypedDict):
    recordKey: str
    instanceId: str
    key: str
    value: str
    collectedAt: str


class ExpenseRecord(TypedDict):
    recordKey: str
    instanceId: str
    date: str
    amount: float
    collectedAt: str


@dataclass(frozen=True)
class OutputPaths:
    root: Path
    inventory_dir: Path
    diff_dir: Path
    logs_dir: Path
    entity_jsonl: Dict[str, Path]
    clusters_csv: Path
    run_summary_json: Path
    debug_log: Path


def resolve_output_paths(outdir: Path) -> OutputPaths:
    root = outdir
    inventory_dir = root / "inventory"
    logs_dir = root / "logs"
    return OutputPaths(
        root=root,
        inventory_dir=inventory_dir,
        diff_dir=root / "diff",
        logs_dir=logs_dir,
        entity_jsonl={name: inventory_dir / f"{name}.jsonl" for name in ENTITY_TYPES},
        clusters_csv=inventory_dir / "clusters.csv",
        run_summary_json=root / "run_summary.json",
        debug_log=logs_dir / "debug.log",
    )


# Fields to include in the clusters CSV report
CSV_CLUSTER_FIELDS: List[str] = [
    "accountId",
    "clusterId",
    "clusterName",
    "infraId",
    "provider",
    "region",
    "status",
    "instanceCount",
    "totalCost",
    "consoleLink",
    "owner",
]

# Canonical field order per entity type used for stable JSON output
CANONICAL_FIELD_ORDER: Dict[str, List[str]] = {
    "accounts": list(AccountRecord.__annotations__),
    "clusters": list(ClusterRecord.__annotations__),
    "instances": list(InstanceRecord.__annotations__),
    "tags": list(TagRecord.__annotations__),
    "expenses": list(ExpenseRecord.__annotations__),
}

RUN_SUMMARY_FIELDS: List[str] = [
    "schema_version",
    "collected_at",
    "accounts",
    "clusters",
    "instances",
    "clusters_by_status",
    "total_cost",
    "per_account",
    "failed_accounts",
    "skipped_accounts",
    "failed_regions",
]
