from __future__ import annotations

import json
import logging
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from ..model.entities import Inventory
from ..model.summary import summarize_inventory
from ..normalize.schema import ENTITY_TYPES, SCHEMA_VERSION, OutputPaths, resolve_output_paths
from ..normalize.transform import inventory_records
from ..util.errors import ExportError
from ..util.serialization import sanitize_for_json
from ..util.time import parse_day
from .csv import write_clusters_csv
from .jsonl import write_jsonl

LOG = logging.getLogger(__name__)


def write_snapshot(
    inventory: Inventory,
    outdir: Path,
    *,
    collected_at: str,
    extra_summary: Optional[Dict[str, Any]] = None,
) -> OutputPaths:
    """
    Persist the inventory as a snapshot directory:
      inventory/<entity>.jsonl, inventory/clusters.csv and run_summary.json.
    """
    paths = resolve_output_paths(outdir)
    records = inventory_records(inventory, collected_at)
    try:
        for entity in ENTITY_TYPES:
            write_jsonl(entity, records[entity], paths.entity_jsonl[entity])
        write_clusters_csv(records["clusters"], paths.clusters_csv)

        summary: Dict[str, Any] = {"schema_version": SCHEMA_VERSION, "collected_at": collected_at}
        summary.update(summarize_inventory(inventory))
        if extra_summary:
            summary.update(extra_summary)
        paths.run_summary_json.parent.mkdir(parents=True, exist_ok=True)
        paths.run_summary_json.write_text(json.dumps(sanitize_for_json(summary), sort_keys=True, indent=2), encoding="utf-8")
    except OSError as e:
        raise ExportError(f"Failed to write snapshot to {outdir}: {e}") from e
    return paths


def load_jsonl(path: Path) -> List[Dict[str, Any]]:
    recs: List[Dict[str, Any]] = []
    with path.open("r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            recs.append(json.loads(line))
    return recs


def load_snapshot_records(snapshot_dir: Path) -> Dict[str, List[Dict[str, Any]]]:
    """
    Load every entity file of a snapshot directory. Missing files load as empty.
    """
    paths = resolve_output_paths(snapshot_dir)
    out: Dict[str, List[Dict[str, Any]]] = {}
    for entity in ENTITY_TYPES:
        path = paths.entity_jsonl[entity]
        out[entity] = load_jsonl(path) if path.exists() else []
    return out


def load_expense_index(snapshot_dir: Path) -> Dict[str, Set[date]]:
    """
    instance id -> dates with a stored expense, read from a previous snapshot.
    """
    path = resolve_output_paths(snapshot_dir).entity_jsonl["expenses"]
    index: Dict[str, Set[date]] = {}
    if not path.exists():
        LOG.info("No previous expenses found", extra={"path": str(path)})
        return index
    for rec in load_jsonl(path):
        instance_id = str(rec.get("instanceId") or "")
        raw_date = rec.get("date")
        if not instance_id or not raw_date:
            continue
        try:
            index.setdefault(instance_id, set()).add(parse_day(str(raw_date)))
        except ValueError:
            LOG.warning("Skipping malformed expense record", extra={"record_key": rec.get("recordKey")})
    return index
