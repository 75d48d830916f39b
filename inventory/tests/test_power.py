from __future__ import annotations

from cluster_inventory.model.entities import Account, Instance, Inventory
from cluster_inventory.power import PowerTarget, power_targets


def test_power_targets_cover_known_clusters_only() -> None:
    inv = Inventory()
    account = inv.add_account(Account(id="111111111111", name="prod"))
    for instance_id in ("i-3", "i-1", "i-2"):
        account.add_instance(
            Instance(instance_id=instance_id, cluster_id="prod-east-x7k2p", availability_zone="eu-west-1a"),
            cluster_name="prod-east",
        )
    account.add_instance(Instance(instance_id="i-9", availability_zone="eu-west-1a"), cluster_name="NO_CLUSTER")

    assert power_targets(inv) == [
        PowerTarget(
            account_name="prod",
            region="eu-west-1",
            cluster_id="prod-east-x7k2p",
            instance_ids=["i-1", "i-2", "i-3"],
        )
    ]


def test_power_targets_empty_inventory() -> None:
    assert power_targets(Inventory()) == []
