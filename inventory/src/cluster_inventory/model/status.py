from __future__ import annotations

from enum import Enum
from typing import Iterable

# Minimum running members for a cluster to count as operable (3 control-plane nodes).
CLUSTER_QUORUM = 3


class Provider(str, Enum):
    AWS = "AWS"
    GCP = "GCP"
    AZURE = "Azure"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, value: str | None) -> "Provider":
        raw = (value or "").strip().upper()
        if raw == "AWS":
            return cls.AWS
        if raw == "GCP":
            return cls.GCP
        if raw == "AZURE":
            return cls.AZURE
        return cls.UNKNOWN


class ResourceStatus(str, Enum):
    RUNNING = "Running"
    STOPPED = "Stopped"
    TERMINATED = "Terminated"

    @classmethod
    def parse(cls, state: str | None) -> "ResourceStatus":
        """
        Map a provider lifecycle state (e.g. EC2 State.Name) to a ResourceStatus.
        Unrecognized states are reported as Running.
        """
        raw = (state or "").strip().lower()
        if raw in ("stop", "stopped", "stopping"):
            return cls.STOPPED
        if raw in ("terminated", "shutting-down"):
            return cls.TERMINATED
        return cls.RUNNING


class ClusterStatus(str, Enum):
    UNKNOWN = "Unknown"
    RUNNING = "Running"
    STOPPED = "Stopped"
    TERMINATED = "Terminated"


def aggregate_cluster_status(statuses: Iterable[ResourceStatus], quorum: int = CLUSTER_QUORUM) -> ClusterStatus:
    """
    Derive a cluster status from the statuses of all its member instances.

    - fewer than `quorum` members (including none): Unknown
    - at least `quorum` members running: Running
    - every member terminated: Terminated
    - anything else: Stopped

    The result depends only on the multiset of statuses, never on their order.
    """
    members = list(statuses)
    total = len(members)
    if total == 0 or total < quorum:
        return ClusterStatus.UNKNOWN
    running = sum(1 for s in members if s == ResourceStatus.RUNNING)
    if running >= quorum:
        return ClusterStatus.RUNNING
    terminated = sum(1 for s in members if s == ResourceStatus.TERMINATED)
    if terminated == total:
        return ClusterStatus.TERMINATED
    return ClusterStatus.STOPPED
