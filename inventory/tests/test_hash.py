from __future__ import annotations

from cluster_inventory.diff.hash import stable_record_hash


def _instance_record(**overrides):
    rec = {
        "recordKey": "i-0abc",
        "accountId": "111111111111",
        "clusterId": "prod-east-x7k2p",
        "instanceId": "i-0abc",
        "status": "Running",
        "age": 12,
        "collectedAt": "2025-01-01T00:00:00+00:00",
    }
    rec.update(overrides)
    return rec


def test_hash_ignores_collected_at_and_age() -> None:
    a = _instance_record()
    b = _instance_record(collectedAt="2025-01-02T00:00:00+00:00", age=13)
    assert stable_record_hash(a) == stable_record_hash(b), "Hash must not move with the run clock"


def test_hash_changes_when_other_fields_change() -> None:
    assert stable_record_hash(_instance_record()) != stable_record_hash(_instance_record(status="Stopped"))


def test_hash_ignores_key_order() -> None:
    rec = _instance_record()
    reordered = dict(reversed(list(rec.items())))
    assert stable_record_hash(rec) == stable_record_hash(reordered)
