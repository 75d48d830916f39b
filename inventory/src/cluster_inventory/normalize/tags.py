from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Tuple

from ..model.entities import UNKNOWN_CLUSTER_ID, UNKNOWN_CLUSTER_NAME, UNKNOWN_INFRA_ID

CLUSTER_TAG_PREFIX = "kubernetes.io/cluster/"
OWNER_TAG_KEY = "Owner"
NAME_TAG_KEY = "Name"

# <cluster name>-<5 char infra suffix>, e.g. "prod-east-x7k2p"
_CLUSTER_ID_RE = re.compile(r"^(?P<name>.+)-(?P<infra>[A-Za-z0-9]{5})$")


@dataclass(frozen=True)
class ResolvedTags:
    cluster_name: str = UNKNOWN_CLUSTER_NAME
    infra_id: str = UNKNOWN_INFRA_ID
    cluster_id: str = UNKNOWN_CLUSTER_ID
    owner: str = ""
    display_name: str = ""

    @property
    def has_cluster(self) -> bool:
        return self.cluster_id != UNKNOWN_CLUSTER_ID


def _tag_pair(tag: Any) -> Optional[Tuple[str, str]]:
    """
    Accept EC2 tag dicts ({"Key", "Value"}), model Tag objects and (key, value) pairs.
    """
    if isinstance(tag, dict):
        key = tag.get("Key", tag.get("key"))
        value = tag.get("Value", tag.get("value"))
    elif isinstance(tag, (tuple, list)) and len(tag) == 2:
        key, value = tag
    else:
        key = getattr(tag, "key", None)
        value = getattr(tag, "value", None)
    if key is None:
        return None
    return str(key), "" if value is None else str(value)


def parse_cluster_tag_key(key: str) -> Optional[Tuple[str, str, str]]:
    """
    Parse a cluster marker key into (cluster_id, cluster_name, infra_id).

    Any key containing the marker prefix counts, e.g. "sigs.k8s.io/kubernetes.io/cluster/<id>".
    Returns None when the key is not a cluster marker. A marker whose id does not
    end in a 5 character infra suffix keeps the whole id as the cluster name and an
    empty infra id.
    """
    idx = key.find(CLUSTER_TAG_PREFIX)
    if idx < 0:
        return None
    cluster_id = key[idx + len(CLUSTER_TAG_PREFIX):]
    if not cluster_id:
        return None
    m = _CLUSTER_ID_RE.match(cluster_id)
    if not m:
        return cluster_id, cluster_id, UNKNOWN_INFRA_ID
    return cluster_id, m.group("name"), m.group("infra")


def resolve_tags(tags: Iterable[Any] | None) -> ResolvedTags:
    """
    Derive cluster membership and descriptive metadata from an instance's tags.

    The first cluster marker tag (in the order given) decides the cluster; later
    markers are ignored. Missing markers resolve to the unknown-cluster sentinels,
    never to an error.
    """
    cluster: Optional[Tuple[str, str, str]] = None
    owner = ""
    display_name = ""
    for tag in tags or []:
        pair = _tag_pair(tag)
        if pair is None:
            continue
        key, value = pair
        if cluster is None:
            cluster = parse_cluster_tag_key(key)
        if key == OWNER_TAG_KEY and not owner:
            owner = value
        elif key == NAME_TAG_KEY and not display_name:
            display_name = value

    if cluster is None:
        return ResolvedTags(owner=owner, display_name=display_name)
    cluster_id, cluster_name, infra_id = cluster
    return ResolvedTags(
        cluster_name=cluster_name,
        infra_id=infra_id,
        cluster_id=cluster_id,
        owner=owner,
        display_name=display_name,
    )
