from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..model.entities import Account, Cluster
from ..util.errors import map_aws_error
from .clients import ROUTE53_REGION, AWSConnection

LOG = logging.getLogger(__name__)

CONSOLE_LINK_PREFIX = "https://console-openshift-console.apps."


@dataclass
class HostedZone:
    zone_id: str
    name: str
    tag_keys: Optional[List[str]] = None
    record_names: Optional[List[str]] = None
    failed: bool = False


def console_link_for_record(record_name: str) -> str:
    return CONSOLE_LINK_PREFIX + record_name.rstrip(".")


def _short_zone_id(zone_id: str) -> str:
    # '/hostedzone/Z123' -> 'Z123'
    return zone_id.rsplit("/", 1)[-1]


class ConsoleLinkResolver:
    """
    Fill in each cluster's console URL from the account's Route53 hosted zones.

    A zone belongs to a cluster when one of its tag keys contains the cluster id
    or the zone name contains the cluster name. The first record set in a matching
    zone whose name contains the cluster name yields the link. Lookup failures leave
    the link at its sentinel and never fail the scan.
    """

    def __init__(self, conn: AWSConnection, logger: Optional[logging.Logger] = None) -> None:
        self.conn = conn
        self.log = logger or LOG
        self._client: Any = None

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = self.conn.client("route53", region=ROUTE53_REGION)
        return self._client

    def list_hosted_zones(self) -> List[HostedZone]:
        zones: List[HostedZone] = []
        kwargs: Dict[str, Any] = {}
        while True:
            resp = self.client.list_hosted_zones_by_name(**kwargs)
            for z in resp.get("HostedZones", []):
                zones.append(HostedZone(zone_id=str(z.get("Id") or ""), name=str(z.get("Name") or "")))
            if not resp.get("IsTruncated"):
                break
            kwargs = {"DNSName": resp.get("NextDNSName"), "HostedZoneId": resp.get("NextHostedZoneId")}
        return zones

    def _load_tags(self, zone: HostedZone) -> List[str]:
        if zone.tag_keys is None:
            resp = self.client.list_tags_for_resource(
                ResourceType="hostedzone", ResourceId=_short_zone_id(zone.zone_id)
            )
            tags = (resp.get("ResourceTagSet") or {}).get("Tags") or []
            zone.tag_keys = [str(t.get("Key") or "") for t in tags]
        return zone.tag_keys

    def _load_records(self, zone: HostedZone) -> List[str]:
        if zone.record_names is None:
            names: List[str] = []
            paginator = self.client.get_paginator("list_resource_record_sets")
            for page in paginator.paginate(HostedZoneId=zone.zone_id):
                for rs in page.get("ResourceRecordSets", []):
                    names.append(str(rs.get("Name") or ""))
            zone.record_names = names
        return zone.record_names

    def zone_belongs_to_cluster(self, zone: HostedZone, cluster: Cluster) -> bool:
        if cluster.cluster_name and cluster.cluster_name in zone.name:
            return True
        return any(cluster.cluster_id in key for key in self._load_tags(zone))

    def find_console_link(self, zone: HostedZone, cluster: Cluster) -> Optional[str]:
        for name in self._load_records(zone):
            if cluster.cluster_name and cluster.cluster_name in name:
                return console_link_for_record(name)
        return None

    def attach(self, account: Account) -> int:
        """
        Resolve console links for every known cluster of the account.
        Returns the number of clusters that received a link.
        """
        try:
            zones = self.list_hosted_zones()
        except Exception as e:
            mapped = map_aws_error(e, f"AWS error while listing hosted zones for {account.name}")
            if mapped is None:
                raise
            self.log.warning("Console links unavailable", extra={"account": account.name, "error": str(mapped)})
            return 0

        resolved = 0
        for cluster_id in sorted(account.clusters):
            cluster = account.clusters[cluster_id]
            if not cluster.is_known:
                continue
            for zone in zones:
                if zone.failed:
                    continue
                try:
                    if not self.zone_belongs_to_cluster(zone, cluster):
                        continue
                    link = self.find_console_link(zone, cluster)
                except Exception as e:
                    mapped = map_aws_error(e, f"AWS error while reading hosted zone {zone.zone_id}")
                    if mapped is None:
                        raise
                    zone.failed = True
                    self.log.warning(
                        "Skipping hosted zone",
                        extra={"account": account.name, "zone_id": zone.zone_id, "error": str(mapped)},
                    )
                    continue
                if link:
                    self.log.debug(
                        "Found console link",
                        extra={"cluster_id": cluster.cluster_id, "zone_id": zone.zone_id},
                    )
                    account.set_console_link(cluster.cluster_id, link)
                    resolved += 1
                    break
        return resolved
