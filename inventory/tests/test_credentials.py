from __future__ import annotations

import pytest

from cluster_inventory.auth.credentials import read_cloud_accounts
from cluster_inventory.auth.providers import AuthContext, resolve_auth
from cluster_inventory.model.entities import Account
from cluster_inventory.model.status import Provider
from cluster_inventory.util.errors import AuthResolutionError, ConfigError


def test_read_cloud_accounts_parses_sections(tmp_path) -> None:
    path = tmp_path / "credentials.ini"
    path.write_text(
        "[111111111111]\n"
        "name = prod\n"
        "provider = AWS\n"
        "user = AKIAPROD\n"
        "key = prod%secret\n"
        "billing_enabled = true\n"
        "\n"
        "[222222222222]\n"
        "provider = gcp\n"
        "user = u\n"
        "key = k\n",
        encoding="utf-8",
    )

    accounts = read_cloud_accounts(path)

    assert [a.id for a in accounts] == ["111111111111", "222222222222"]
    prod, other = accounts
    assert prod.name == "prod"
    assert prod.provider == Provider.AWS
    assert prod.key == "prod%secret"
    assert prod.billing_enabled is True
    assert other.name == "222222222222"
    assert other.provider == Provider.GCP
    assert other.billing_enabled is False
    assert "prod%secret" not in repr(prod)


def test_repo_example_credentials_file_parses() -> None:
    from pathlib import Path

    path = Path(__file__).resolve().parents[1] / "config" / "credentials.example.ini"
    accounts = read_cloud_accounts(path)
    assert [a.name for a in accounts] == ["prod", "staging", "gcp-sandbox"]


def test_read_cloud_accounts_missing_file(tmp_path) -> None:
    with pytest.raises(ConfigError):
        read_cloud_accounts(tmp_path / "nope.ini")


def test_read_cloud_accounts_malformed_file(tmp_path) -> None:
    path = tmp_path / "bad.ini"
    path.write_text("name = orphan\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        read_cloud_accounts(path)


def test_account_config_to_account_carries_credentials(tmp_path) -> None:
    path = tmp_path / "credentials.ini"
    path.write_text("[1]\nprovider = aws\nuser = AKIA\nkey = secret\n", encoding="utf-8")
    account = read_cloud_accounts(path)[0].to_account()
    assert account.user == "AKIA"
    assert account.password == "secret"

    ctx = resolve_auth(account, region="us-east-2")
    assert isinstance(ctx, AuthContext)
    assert ctx.region == "us-east-2"
    assert "secret" not in repr(ctx)


def test_resolve_auth_requires_credential_pair() -> None:
    with pytest.raises(AuthResolutionError):
        resolve_auth(Account(id="1", name="a", provider=Provider.AWS, user="AKIA", password=""))
