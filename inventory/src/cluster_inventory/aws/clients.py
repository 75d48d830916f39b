from __future__ import annotations

import threading
from typing import Any, Dict, Optional

from ..auth.providers import AuthContext, make_client, make_session
from ..util.errors import AuthResolutionError, map_aws_error

# Global endpoints
ROUTE53_REGION = "us-east-1"
COST_EXPLORER_REGION = "us-east-1"


class AWSConnection:
    """
    One authenticated boto3 session bound to a region.

    Clients are cached per service. with_region() returns a sibling connection
    for another region sharing the same credentials; the original is untouched,
    so region workers never race on a shared session.
    """

    def __init__(self, ctx: AuthContext, region: Optional[str] = None, session: Any = None) -> None:
        self.ctx = ctx
        self.region = region or ctx.region
        self.session = session if session is not None else make_session(ctx, self.region)
        self.account_id: Optional[str] = None
        self._clients: Dict[str, Any] = {}
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"AWSConnection(account={self.ctx.account_name!r}, region={self.region!r})"

    def client(self, service: str, region: Optional[str] = None) -> Any:
        key = f"{service}:{region or self.region}"
        with self._lock:
            cached = self._clients.get(key)
            if cached is None:
                cached = make_client(service, self.session, region=region or self.region)
                self._clients[key] = cached
            return cached

    def with_region(self, region: str) -> "AWSConnection":
        conn = AWSConnection(self.ctx, region)
        conn.account_id = self.account_id
        return conn

    def caller_identity(self) -> Dict[str, Any]:
        sts = self.client("sts")
        try:
            return sts.get_caller_identity()
        except Exception as e:
            mapped = map_aws_error(e, f"AWS error while validating credentials for {self.ctx.account_name}")
            if mapped:
                raise AuthResolutionError(str(mapped)) from e
            raise


def connect(ctx: AuthContext, region: Optional[str] = None) -> AWSConnection:
    """
    Build a connection and validate it with STS GetCallerIdentity.
    Raises AuthResolutionError when the credentials are rejected.
    """
    conn = AWSConnection(ctx, region)
    identity = conn.caller_identity()
    conn.account_id = str(identity.get("Account") or "") or None
    return conn
