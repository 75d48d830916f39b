from __future__ import annotations

from typing import Any, Dict

from .entities import Inventory
from .status import ClusterStatus


def summarize_inventory(inventory: Inventory) -> Dict[str, Any]:
    """
    Counts and costs for the run summary and the CLI table.
    """
    by_status: Dict[str, int] = {s.value: 0 for s in ClusterStatus}
    accounts: Dict[str, Dict[str, Any]] = {}
    total_instances = 0
    total_clusters = 0
    total_cost = 0.0

    for account_id in sorted(inventory.accounts):
        account = inventory.accounts[account_id]
        account_cost = 0.0
        account_instances = 0
        clusters_cost: Dict[str, float] = {}
        for cluster_id in sorted(account.clusters):
            cluster = account.clusters[cluster_id]
            by_status[cluster.status.value] += 1
            cost = round(cluster.total_cost, 4)
            clusters_cost[cluster_id] = cost
            account_cost += cluster.total_cost
            account_instances += len(cluster.instances)
        accounts[account_id] = {
            "name": account.name,
            "provider": account.provider.value,
            "clusters": len(account.clusters),
            "instances": account_instances,
            "total_cost": round(account_cost, 4),
            "cluster_costs": clusters_cost,
        }
        total_clusters += len(account.clusters)
        total_instances += account_instances
        total_cost += account_cost

    return {
        "accounts": len(inventory.accounts),
        "clusters": total_clusters,
        "instances": total_instances,
        "clusters_by_status": by_status,
        "total_cost": round(total_cost, 4),
        "per_account": accounts,
    }
