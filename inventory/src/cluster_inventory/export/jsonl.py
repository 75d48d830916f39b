from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Iterable, List

from ..normalize.transform import canonicalize_record, stable_json_dumps


def write_jsonl(entity: str, records: Iterable[Dict[str, Any]], path: Path) -> None:
    """
    Write records to a JSONL file with stable key ordering and deterministic line order.
    Ordering: sort by recordKey.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    sorted_records: List[Dict[str, Any]] = sorted(records, key=lambda r: str(r.get("recordKey") or ""))

    with path.open("w", encoding="utf-8") as f:
        for rec in sorted_records:
            f.write(stable_json_dumps(canonicalize_record(entity, rec)))
            f.write("\n")
