from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List

from ..model.entities import Instance
from ..normalize.tags import ResolvedTags
from ..normalize.transform import instance_from_ec2
from ..util.errors import ValidationError, map_aws_error
from .clients import AWSConnection

LOG = logging.getLogger(__name__)


@dataclass
class DiscoveredInstance:
    instance: Instance
    resolved: ResolvedTags
    region: str


def iter_ec2_instances(conn: AWSConnection) -> Iterable[Dict[str, Any]]:
    """
    Yield raw instance dicts from DescribeInstances in the connection's region,
    following every page.
    """
    ec2 = conn.client("ec2")
    paginator = ec2.get_paginator("describe_instances")
    try:
        for page in paginator.paginate():
            for reservation in page.get("Reservations", []):
                for raw in reservation.get("Instances", []):
                    yield raw
    except Exception as e:
        mapped = map_aws_error(e, f"AWS error while listing instances in {conn.region}")
        if mapped:
            raise mapped from e
        raise


def discover_in_region(
    conn: AWSConnection,
    *,
    skip_no_cluster_instances: bool = False,
) -> List[DiscoveredInstance]:
    """
    List and normalize every instance in the connection's region.

    Instances rejected by the model (missing id) are logged and skipped. Raises
    CloudClientError if the region cannot be listed at all.
    """
    out: List[DiscoveredInstance] = []
    for raw in iter_ec2_instances(conn):
        try:
            instance, resolved = instance_from_ec2(raw)
        except ValidationError as e:
            LOG.warning("Skipping instance", extra={"region": conn.region, "error": str(e)})
            continue
        if skip_no_cluster_instances and not resolved.has_cluster:
            continue
        out.append(DiscoveredInstance(instance=instance, resolved=resolved, region=instance.region or conn.region))
    return out
