from __future__ import annotations

from dataclasses import dataclass
from typing import List

from .model.entities import Inventory


@dataclass(frozen=True)
class PowerTarget:
    """
    Everything a power-control agent needs to address one cluster.
    Building targets never sends anything.
    """

    account_name: str
    region: str
    cluster_id: str
    instance_ids: List[str]


def power_targets(inventory: Inventory) -> List[PowerTarget]:
    targets: List[PowerTarget] = []
    for cluster in inventory.iter_clusters():
        if not cluster.is_known:
            continue
        account = inventory.accounts[cluster.account_id]
        targets.append(
            PowerTarget(
                account_name=account.name,
                region=cluster.region,
                cluster_id=cluster.cluster_id,
                instance_ids=sorted(cluster.instance_ids),
            )
        )
    return targets
