from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

import boto3
from botocore.config import Config

from ..model.entities import Account
from ..model.status import Provider
from ..util.errors import AuthResolutionError

DEFAULT_REGION = "eu-west-1"

# Standard retry mode backs off on throttling for every client we build.
DEFAULT_CLIENT_CONFIG = Config(
    connect_timeout=30,
    read_timeout=60,
    retries={"max_attempts": 5, "mode": "standard"},
)


@dataclass(frozen=True)
class AuthContext:
    """
    Resolved credentials for one cloud account. The secret pair never shows up in repr.
    """

    account_id: str
    account_name: str
    provider: Provider
    user: str
    key: str
    region: str = DEFAULT_REGION

    def __repr__(self) -> str:
        return (
            f"AuthContext(account_id={self.account_id!r}, account_name={self.account_name!r}, "
            f"provider={self.provider.value!r}, region={self.region!r})"
        )


def resolve_auth(account: Account, region: Optional[str] = None) -> AuthContext:
    """
    Turn an account's credential pair into an AuthContext.
    Only static access-key credentials are supported.
    """
    if not account.user or not account.password:
        raise AuthResolutionError(f"Account {account.name} ({account.id}) has no credential pair configured")
    return AuthContext(
        account_id=account.id,
        account_name=account.name,
        provider=account.provider,
        user=account.user,
        key=account.password,
        region=region or DEFAULT_REGION,
    )


def make_session(ctx: AuthContext, region: Optional[str] = None) -> boto3.session.Session:
    return boto3.session.Session(
        aws_access_key_id=ctx.user,
        aws_secret_access_key=ctx.key,
        region_name=region or ctx.region,
    )


def make_client(
    service: str,
    session: boto3.session.Session,
    region: Optional[str] = None,
    config: Optional[Config] = None,
) -> Any:
    """
    Construct a boto3 client for service, honoring region when provided.
    """
    kwargs: Dict[str, Any] = {"config": config or DEFAULT_CLIENT_CONFIG}
    if region:
        kwargs["region_name"] = region
    return session.client(service, **kwargs)
