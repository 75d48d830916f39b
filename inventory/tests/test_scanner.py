from __future__ import annotations

import threading
from typing import Any, Dict

import pytest

from cluster_inventory.config import RunConfig
from cluster_inventory.model.entities import UNKNOWN_CLUSTER_ID, Account
from cluster_inventory.model.status import ClusterStatus, Provider
from cluster_inventory.normalize.transform import inventory_records
from cluster_inventory.scanner import AccountScanner, ScanContext, scan_accounts
from cluster_inventory.util.errors import AuthResolutionError, ConfigError, InventoryError
from fakes import (
    FakeConnection,
    account_config,
    ce_client,
    client_error,
    cost_bucket,
    ec2_client,
    ec2_instance,
    route53_client,
)

REGIONS = ["eu-west-1", "eu-west-2", "eu-west-3"]
CLUSTER_ID = "prod-east-x7k2p"


def _clients(**overrides: Any) -> Dict[str, Any]:
    clients: Dict[str, Any] = {
        "ec2:eu-west-1": ec2_client(
            [
                ec2_instance("i-m0", owner="platform-team"),
                ec2_instance("i-m1", az="eu-west-1b"),
                ec2_instance("i-m2", az="eu-west-1c"),
            ]
        ),
        "ec2:eu-west-2": ec2_client(error=client_error("UnauthorizedOperation")),
        "ec2:eu-west-3": ec2_client([ec2_instance("i-loose", cluster_key=None, az="eu-west-3a")]),
        "route53": route53_client(
            [{"id": "/hostedzone/ZPROD", "name": "prod-east.example.com.", "records": ["prod-east.example.com."]}]
        ),
        "ce": ce_client(),
    }
    clients.update(overrides)
    return clients


def _config(tmp_path, **kwargs: Any) -> RunConfig:
    kwargs.setdefault("regions", list(REGIONS))
    kwargs.setdefault("billing", False)
    kwargs.setdefault("progress", False)
    return RunConfig(outdir=tmp_path, **kwargs)


def _context(tmp_path, clients: Dict[str, Any], **kwargs: Any) -> ScanContext:
    cfg = _config(tmp_path, **{k: v for k, v in kwargs.items() if k != "cancel_event"})
    ctx = ScanContext(config=cfg, connector=lambda auth: FakeConnection(clients, account_name=auth.account_name))
    if "cancel_event" in kwargs:
        ctx.cancel_event = kwargs["cancel_event"]
    return ctx


def test_scan_builds_clusters_and_isolates_failed_region(tmp_path) -> None:
    result = scan_accounts([account_config()], _context(tmp_path, _clients()))

    assert not result.cancelled
    assert result.failed_accounts == {}
    assert list(result.failed_regions()) == ["prod"]
    assert list(result.failed_regions()["prod"]) == ["eu-west-2"]

    account = result.inventory.accounts["111111111111"]
    assert sorted(account.clusters) == [UNKNOWN_CLUSTER_ID, CLUSTER_ID]

    cluster = account.clusters[CLUSTER_ID]
    assert cluster.cluster_name == "prod-east"
    assert cluster.infra_id == "x7k2p"
    assert cluster.region == "eu-west-1"
    assert cluster.owner == "platform-team"
    assert cluster.status == ClusterStatus.RUNNING
    assert cluster.instance_ids == ["i-m0", "i-m1", "i-m2"]
    assert cluster.console_link == "https://console-openshift-console.apps.prod-east.example.com"

    loose = account.clusters[UNKNOWN_CLUSTER_ID]
    assert loose.instance_ids == ["i-loose"]
    assert loose.status == ClusterStatus.UNKNOWN

    summary = result.accounts[0]
    assert summary.regions == REGIONS
    assert summary.instances == 4
    assert summary.console_links == 1
    assert summary.billing is None


def test_scan_can_drop_untagged_instances(tmp_path) -> None:
    result = scan_accounts(
        [account_config()], _context(tmp_path, _clients(), skip_no_cluster_instances=True)
    )
    assert list(result.inventory.accounts["111111111111"].clusters) == [CLUSTER_ID]


def test_scan_twice_yields_identical_inventory(tmp_path) -> None:
    first = scan_accounts([account_config()], _context(tmp_path, _clients()))
    second = scan_accounts([account_config()], _context(tmp_path, _clients()))

    assert first.inventory == second.inventory
    assert inventory_records(first.inventory, "t") == inventory_records(second.inventory, "t")


def test_scan_lists_enabled_regions_when_none_configured(tmp_path) -> None:
    clients = _clients()
    # the home-region client answers DescribeRegions
    clients["ec2:eu-west-1"].describe_regions.return_value = {
        "Regions": [{"RegionName": "eu-west-3"}, {"RegionName": "eu-west-1"}]
    }

    result = scan_accounts([account_config()], _context(tmp_path, clients, regions=None))

    assert result.accounts[0].regions == ["eu-west-1", "eu-west-3"]
    assert result.failed_regions() == {}


def test_scan_reconciles_billing_for_enabled_accounts(tmp_path) -> None:
    clients = _clients(ce=ce_client({"i-m0": [cost_bucket("2025-01-01", "4.50"), cost_bucket("2025-01-02", "5.10")]}))
    result = scan_accounts(
        [account_config(billing_enabled=True)],
        _context(tmp_path, clients, billing=True),
    )

    stats = result.accounts[0].billing
    assert stats is not None
    assert stats.candidates == 4
    assert stats.expenses_added == 2
    cluster = result.inventory.accounts["111111111111"].clusters[CLUSTER_ID]
    assert cluster.total_cost == pytest.approx(9.60)


def test_scan_skips_billing_when_account_disabled(tmp_path) -> None:
    clients = _clients()
    result = scan_accounts([account_config(billing_enabled=False)], _context(tmp_path, clients, billing=True))
    assert result.accounts[0].billing is None
    clients["ce"].get_cost_and_usage_with_resources.assert_not_called()


def test_scan_skips_unsupported_providers(tmp_path) -> None:
    accounts = [
        account_config(),
        account_config("gcp-project", "gcp", Provider.GCP),
        account_config("azure-sub", "azure", Provider.AZURE),
        account_config("other", "other", Provider.UNKNOWN),
    ]
    result = scan_accounts(accounts, _context(tmp_path, _clients()))

    assert list(result.inventory.accounts) == ["111111111111"]
    assert result.skipped_accounts == {
        "gcp": "GCP scanning not implemented",
        "azure": "Azure scanning not implemented",
        "other": "unknown cloud provider",
    }


def test_scan_without_scannable_accounts_fails(tmp_path) -> None:
    with pytest.raises(ConfigError):
        scan_accounts([], _context(tmp_path, _clients()))
    with pytest.raises(ConfigError, match="No valid accounts"):
        scan_accounts([account_config("p", "gcp", Provider.GCP)], _context(tmp_path, _clients()))


def test_scan_skips_duplicate_account_ids(tmp_path) -> None:
    accounts = [account_config(name="prod"), account_config(name="prod-again")]
    result = scan_accounts(accounts, _context(tmp_path, _clients()))
    assert list(result.inventory.accounts) == ["111111111111"]
    assert "prod-again" in result.skipped_accounts


def test_scan_isolates_account_auth_failures(tmp_path) -> None:
    clients = _clients()

    def _connector(auth):
        if auth.account_name == "broken":
            raise AuthResolutionError("InvalidClientTokenId")
        return FakeConnection(clients, account_name=auth.account_name)

    ctx = _context(tmp_path, clients)
    ctx.connector = _connector
    result = scan_accounts([account_config(), account_config("222222222222", "broken")], ctx)

    assert list(result.inventory.accounts) == ["111111111111"]
    assert result.failed_accounts == {"broken": "InvalidClientTokenId"}


def test_scan_fails_when_every_account_fails(tmp_path) -> None:
    ctx = _context(tmp_path, _clients())

    def _connector(auth):
        raise AuthResolutionError("denied")

    ctx.connector = _connector
    with pytest.raises(InventoryError, match="All scannable accounts failed"):
        scan_accounts([account_config()], ctx)


def test_scan_account_without_credentials_fails(tmp_path) -> None:
    cfg = account_config()
    broken = type(cfg)(id="222222222222", name="nokeys", provider=Provider.AWS, user="", key="")
    result = scan_accounts([cfg, broken], _context(tmp_path, _clients()))
    assert "nokeys" in result.failed_accounts


def test_scan_stops_when_cancelled_before_start(tmp_path) -> None:
    cancel = threading.Event()
    cancel.set()
    result = scan_accounts([account_config()], _context(tmp_path, _clients(), cancel_event=cancel))
    assert result.cancelled
    assert result.inventory.accounts == {}


def test_scan_cancelled_during_discovery_drops_account(tmp_path) -> None:
    cancel = threading.Event()
    clients = _clients()
    pages = [{"Reservations": [{"Instances": [ec2_instance("i-m0")]}]}]

    def _paginate(**kwargs):
        cancel.set()
        return pages

    clients["ec2:eu-west-1"].get_paginator.return_value.paginate.side_effect = _paginate
    ctx = _context(tmp_path, clients, cancel_event=cancel, workers_region=1)

    result = scan_accounts([account_config(), account_config("222222222222", "second")], ctx)

    assert result.cancelled
    assert result.inventory.accounts == {}
    clients["ec2:eu-west-3"].get_paginator.return_value.paginate.assert_not_called()


def test_account_scanner_requires_connection_before_region_work(tmp_path) -> None:
    scanner = AccountScanner(Account(id="111111111111", name="prod", provider=Provider.AWS), _context(tmp_path, _clients()))
    with pytest.raises(AuthResolutionError):
        scanner.list_regions()
    with pytest.raises(AuthResolutionError):
        scanner.scan_region("eu-west-1")
