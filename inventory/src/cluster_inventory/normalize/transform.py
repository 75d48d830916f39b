from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Tuple

from ..model.entities import Account, Cluster, Expense, Instance, Inventory, Tag
from ..model.status import Provider, ResourceStatus
from ..util.errors import ValidationError
from ..util.time import as_utc, parse_iso_utc, utc_now_iso
from .schema import CANONICAL_FIELD_ORDER, ENTITY_TYPES
from .tags import ResolvedTags, resolve_tags

LOG = logging.getLogger(__name__)


def _as_datetime(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    try:
        return parse_iso_utc(str(value))
    except ValueError:
        return None


def _root_device_attach_time(raw: Mapping[str, Any]) -> Optional[datetime]:
    root = raw.get("RootDeviceName")
    for mapping in raw.get("BlockDeviceMappings") or []:
        if root and mapping.get("DeviceName") != root:
            continue
        attach = _as_datetime((mapping.get("Ebs") or {}).get("AttachTime"))
        if attach is not None:
            return attach
    return None


def instance_from_ec2(raw: Mapping[str, Any]) -> Tuple[Instance, ResolvedTags]:
    """
    Build an Instance from one element of DescribeInstances Reservations[].Instances[].

    Raises ValidationError when the instance id is missing. Tags with empty keys are
    logged and dropped.
    """
    raw_tags = list(raw.get("Tags") or [])
    resolved = resolve_tags(raw_tags)
    placement = raw.get("Placement") or {}
    state = raw.get("State") or {}

    created_at = _as_datetime(raw.get("LaunchTime")) or _root_device_attach_time(raw)

    instance = Instance(
        instance_id=str(raw.get("InstanceId") or ""),
        name=resolved.display_name,
        provider=Provider.AWS,
        instance_type=str(raw.get("InstanceType") or ""),
        availability_zone=str(placement.get("AvailabilityZone") or ""),
        status=ResourceStatus.parse(state.get("Name")),
        cluster_id=resolved.cluster_id,
        created_at=created_at,
    )
    for tag in raw_tags:
        try:
            instance.add_tag(str(tag.get("Key") or ""), str(tag.get("Value") or ""))
        except ValidationError as e:
            LOG.warning("Dropping tag", extra={"instance_id": instance.instance_id, "error": str(e)})
    return instance, resolved


def canonicalize_record(entity: str, record: Dict[str, Any]) -> Dict[str, Any]:
    """
    Return a shallow copy of record with fields ordered according to the entity's
    canonical field list. Fields not in the list are appended in sorted order.
    """
    order = CANONICAL_FIELD_ORDER.get(entity, [])
    out: Dict[str, Any] = {}
    for k in order:
        if k in record:
            out[k] = record[k]
    for k in sorted(k for k in record.keys() if k not in out):
        out[k] = record[k]
    return out


def stable_json_dumps(obj: Any) -> str:
    """
    Dump JSON with sort_keys=True and separators to ensure stable output.
    """
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def account_record(account: Account, collected_at: str) -> Dict[str, Any]:
    # Credentials never leave the model.
    return {
        "recordKey": account.id,
        "accountId": account.id,
        "accountName": account.name,
        "provider": account.provider.value,
        "billingEnabled": account.billing_enabled,
        "clusterCount": len(account.clusters),
        "instanceCount": account.instance_count(),
        "collectedAt": collected_at,
    }


def cluster_record(cluster: Cluster, collected_at: str) -> Dict[str, Any]:
    return {
        "recordKey": f"{cluster.account_id}/{cluster.cluster_id}",
        "accountId": cluster.account_id,
        "clusterId": cluster.cluster_id,
        "clusterName": cluster.cluster_name,
        "infraId": cluster.infra_id,
        "provider": cluster.provider.value,
        "region": cluster.region,
        "status": cluster.status.value,
        "consoleLink": cluster.console_link,
        "owner": cluster.owner,
        "instanceCount": len(cluster.instances),
        "totalCost": round(cluster.total_cost, 4),
        "collectedAt": collected_at,
    }


def instance_record(instance: Instance, account_id: str, collected_at: str) -> Dict[str, Any]:
    return {
        "recordKey": instance.instance_id,
        "accountId": account_id,
        "clusterId": instance.cluster_id,
        "instanceId": instance.instance_id,
        "instanceName": instance.name,
        "provider": instance.provider.value,
        "instanceType": instance.instance_type,
        "availabilityZone": instance.availability_zone,
        "region": instance.region,
        "status": instance.status.value,
        "createdAt": instance.created_at.isoformat() if instance.created_at else None,
        "age": instance.age,
        "totalCost": round(instance.total_cost, 4),
        "collectedAt": collected_at,
    }


def tag_record(tag: Tag, collected_at: str) -> Dict[str, Any]:
    return {
        "recordKey": f"{tag.instance_id}/{tag.key}",
        "instanceId": tag.instance_id,
        "key": tag.key,
        "value": tag.value,
        "collectedAt": collected_at,
    }


def expense_record(expense: Expense, collected_at: str) -> Dict[str, Any]:
    return {
        "recordKey": f"{expense.instance_id}/{expense.date.isoformat()}",
        "instanceId": expense.instance_id,
        "date": expense.date.isoformat(),
        "amount": expense.amount,
        "collectedAt": collected_at,
    }


def inventory_records(inventory: Inventory, collected_at: str | None = None) -> Dict[str, List[Dict[str, Any]]]:
    """
    Flatten the inventory into per-entity record lists (the snapshot write contract).
    """
    ts = collected_at or utc_now_iso(seconds=True)
    out: Dict[str, List[Dict[str, Any]]] = {name: [] for name in ENTITY_TYPES}
    for account_id in sorted(inventory.accounts):
        account = inventory.accounts[account_id]
        out["accounts"].append(account_record(account, ts))
        for cluster_id in sorted(account.clusters):
            cluster = account.clusters[cluster_id]
            out["clusters"].append(cluster_record(cluster, ts))
            for instance in cluster.instances:
                out["instances"].append(instance_record(instance, account.id, ts))
                out["tags"].extend(tag_record(t, ts) for t in instance.tags)
                out["expenses"].extend(expense_record(e, ts) for e in instance.expenses)
    return out
