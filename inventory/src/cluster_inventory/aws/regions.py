from __future__ import annotations

from typing import List

from ..util.errors import map_aws_error
from .clients import AWSConnection


def get_enabled_regions(conn: AWSConnection) -> List[str]:
    """
    Return sorted list of region identifiers enabled for the account (e.g., 'eu-west-1').
    """
    ec2 = conn.client("ec2")
    try:
        resp = ec2.describe_regions()
    except Exception as e:
        mapped = map_aws_error(e, f"AWS error while listing regions for {conn.ctx.account_name}")
        if mapped:
            raise mapped from e
        raise
    regions = [str(r.get("RegionName")) for r in resp.get("Regions", []) if r.get("RegionName")]
    # Deterministic order
    return sorted(set(regions))
