from __future__ import annotations

import json
from datetime import date
from typing import Any, Dict, List

import pytest

from cluster_inventory.diff.diff import compute_diff, diff_snapshots, write_diff
from cluster_inventory.export.snapshot import write_snapshot
from cluster_inventory.model.entities import Account, Expense, Instance, Inventory
from cluster_inventory.model.status import Provider, ResourceStatus
from cluster_inventory.util.errors import DiffError


def test_compute_diff_added_removed_changed_unchanged() -> None:
    prev: List[Dict[str, Any]] = [
        {"recordKey": "i-1", "status": "Running", "collectedAt": "2025-01-01T00:00:00Z"},
        {"recordKey": "i-2", "status": "Running", "collectedAt": "2025-01-01T00:00:00Z"},
        {"recordKey": "i-gone", "status": "Stopped", "collectedAt": "2025-01-01T00:00:00Z"},
    ]
    curr: List[Dict[str, Any]] = [
        # i-1 changed status
        {"recordKey": "i-1", "status": "Stopped", "collectedAt": "2025-01-02T00:00:00Z"},
        # i-2 unchanged (collectedAt excluded from hash)
        {"recordKey": "i-2", "status": "Running", "collectedAt": "2025-01-02T00:00:00Z"},
        {"recordKey": "i-3", "status": "Running", "collectedAt": "2025-01-02T00:00:00Z"},
        # malformed records are ignored
        {"status": "Running"},
    ]

    d = compute_diff(prev, curr)
    assert d["added"] == ["i-3"]
    assert d["removed"] == ["i-gone"]
    assert d["changed"] == ["i-1"]
    assert d["unchanged"] == ["i-2"]
    assert d["summary"] == {
        "added": 1,
        "removed": 1,
        "changed": 1,
        "unchanged": 1,
        "prev_total": 3,
        "curr_total": 3,
    }


def _inventory(status: ResourceStatus, with_expense: bool) -> Inventory:
    inv = Inventory()
    account = inv.add_account(Account(id="111111111111", name="prod", provider=Provider.AWS))
    for idx in range(3):
        account.add_instance(
            Instance(
                instance_id=f"i-{idx}",
                cluster_id="prod-east-x7k2p",
                availability_zone="eu-west-1a",
                status=status,
            ),
            cluster_name="prod-east",
            infra_id="x7k2p",
        )
    if with_expense:
        first = next(account.iter_instances())
        first.add_expense(Expense(instance_id=first.instance_id, amount=1.5, date=date(2025, 1, 1)))
    return inv


def test_diff_snapshots_reports_cluster_status_change(tmp_path) -> None:
    prev_dir = tmp_path / "prev"
    curr_dir = tmp_path / "curr"
    write_snapshot(_inventory(ResourceStatus.RUNNING, False), prev_dir, collected_at="2025-01-01T00:00:00+00:00")
    write_snapshot(_inventory(ResourceStatus.STOPPED, True), curr_dir, collected_at="2025-01-02T00:00:00+00:00")

    d = diff_snapshots(prev_dir, curr_dir)

    assert d["clusters"]["changed"] == ["111111111111/prod-east-x7k2p"]
    assert d["instances"]["changed"] == ["i-0", "i-1", "i-2"]
    assert d["expenses"]["added"] == ["i-0/2025-01-01"]
    assert d["accounts"]["unchanged"] == ["111111111111"]
    assert d["summary"]["tags"]["unchanged"] == 0

    diff_path, summary_path = write_diff(tmp_path / "diff", d)
    assert json.loads(summary_path.read_text(encoding="utf-8"))["expenses"]["added"] == 1
    assert diff_path.exists()


def test_identical_snapshots_have_no_changes(tmp_path) -> None:
    write_snapshot(_inventory(ResourceStatus.RUNNING, True), tmp_path / "a", collected_at="2025-01-01T00:00:00+00:00")
    write_snapshot(_inventory(ResourceStatus.RUNNING, True), tmp_path / "b", collected_at="2025-01-02T00:00:00+00:00")

    d = diff_snapshots(tmp_path / "a", tmp_path / "b")
    for entity, counts in d["summary"].items():
        assert counts["added"] == counts["removed"] == counts["changed"] == 0, entity


def test_diff_snapshots_missing_dir_raises(tmp_path) -> None:
    with pytest.raises(DiffError):
        diff_snapshots(tmp_path / "nope", tmp_path)
