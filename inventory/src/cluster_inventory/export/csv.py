from __future__ import annotations

import csv
from pathlib import Path
from typing import Any, Dict, Iterable, List

from ..normalize.schema import CSV_CLUSTER_FIELDS


def write_clusters_csv(records: Iterable[Dict[str, Any]], path: Path) -> None:
    """
    Write the cluster report CSV. Deterministic row order by accountId, then clusterId.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    def _key(r: Dict[str, Any]) -> tuple[str, str]:
        return (str(r.get("accountId") or ""), str(r.get("clusterId") or ""))

    with path.open("w", encoding="utf-8", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(CSV_CLUSTER_FIELDS)
        for rec in sorted(records, key=_key):
            row: List[str] = []
            for field in CSV_CLUSTER_FIELDS:
                val = rec.get(field)
                if val is None:
                    row.append("unknown")
                    continue
                text = str(val)
                row.append("unknown" if not text.strip() else text)
            writer.writerow(row)
