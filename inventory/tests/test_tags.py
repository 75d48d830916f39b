from __future__ import annotations

from cluster_inventory.model.entities import (
    UNKNOWN_CLUSTER_ID,
    UNKNOWN_CLUSTER_NAME,
    UNKNOWN_INFRA_ID,
    Tag,
)
from cluster_inventory.normalize.tags import parse_cluster_tag_key, resolve_tags


def test_resolve_tags_reads_cluster_owner_and_name() -> None:
    resolved = resolve_tags(
        [
            {"Key": "Name", "Value": "prod-east-x7k2p-master-0"},
            {"Key": "kubernetes.io/cluster/prod-east-x7k2p", "Value": "owned"},
            {"Key": "Owner", "Value": "platform-team"},
        ]
    )
    assert resolved.has_cluster
    assert resolved.cluster_id == "prod-east-x7k2p"
    assert resolved.cluster_name == "prod-east"
    assert resolved.infra_id == "x7k2p"
    assert resolved.owner == "platform-team"
    assert resolved.display_name == "prod-east-x7k2p-master-0"


def test_resolve_tags_without_marker_returns_sentinels() -> None:
    resolved = resolve_tags([{"Key": "env", "Value": "dev"}])
    assert not resolved.has_cluster
    assert resolved.cluster_id == UNKNOWN_CLUSTER_ID
    assert resolved.cluster_name == UNKNOWN_CLUSTER_NAME
    assert resolved.infra_id == UNKNOWN_INFRA_ID

    assert resolve_tags(None) == resolve_tags([])


def test_resolve_tags_first_marker_wins() -> None:
    resolved = resolve_tags(
        [
            ("kubernetes.io/cluster/alpha-abcde", "owned"),
            ("kubernetes.io/cluster/beta-fghij", "shared"),
        ]
    )
    assert resolved.cluster_id == "alpha-abcde"
    assert resolved.cluster_name == "alpha"


def test_resolve_tags_accepts_model_tags() -> None:
    resolved = resolve_tags([Tag(key="kubernetes.io/cluster/dev-12345", value="owned", instance_id="i-1")])
    assert resolved.cluster_id == "dev-12345"
    assert resolved.infra_id == "12345"


def test_parse_cluster_tag_key_without_infra_suffix() -> None:
    assert parse_cluster_tag_key("kubernetes.io/cluster/legacy") == ("legacy", "legacy", "")
    # suffix must be exactly five characters
    assert parse_cluster_tag_key("kubernetes.io/cluster/prod-x7k2") == ("prod-x7k2", "prod-x7k2", "")


def test_parse_cluster_tag_key_rejects_non_markers() -> None:
    assert parse_cluster_tag_key("kubernetes.io/cluster/") is None
    assert parse_cluster_tag_key("Name") is None
    assert parse_cluster_tag_key("kubernetes.io/clusters") is None


def test_parse_cluster_tag_key_accepts_prefixed_markers() -> None:
    assert parse_cluster_tag_key("xkubernetes.io/cluster/prod-x7k2p") == ("prod-x7k2p", "prod", "x7k2p")
    resolved = resolve_tags([{"Key": "sigs.k8s.io/kubernetes.io/cluster/foo-ABCDE", "Value": "owned"}])
    assert resolved.has_cluster
    assert resolved.cluster_id == "foo-ABCDE"
    assert resolved.cluster_name == "foo"
    assert resolved.infra_id == "ABCDE"
