from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Tuple

from ..export.snapshot import load_snapshot_records
from ..normalize.schema import ENTITY_TYPES
from ..util.errors import DiffError
from .hash import stable_record_hash


def _index_by_key(records: Iterable[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    by: Dict[str, Dict[str, Any]] = {}
    for r in records:
        key = str(r.get("recordKey") or "")
        if not key:
            # skip malformed records
            continue
        by[key] = r
    return by


def compute_diff(
    prev_records: Iterable[Dict[str, Any]],
    curr_records: Iterable[Dict[str, Any]],
) -> Dict[str, Any]:
    """
    Compute diff between two sets of snapshot records of one entity type.
    Returns a structure containing:
      - added/removed/changed/unchanged as lists of record keys
      - details mapping key->{prev_hash?, curr_hash?}
      - summary counts
    """
    prev_by = _index_by_key(prev_records)
    curr_by = _index_by_key(curr_records)

    added: List[str] = []
    removed: List[str] = []
    changed: List[str] = []
    unchanged: List[str] = []
    details: Dict[str, Dict[str, str]] = {}

    prev_keys = set(prev_by.keys())
    curr_keys = set(curr_by.keys())

    for key in sorted(prev_keys - curr_keys):
        removed.append(key)
        details[key] = {"prev_hash": stable_record_hash(prev_by[key])}

    for key in sorted(curr_keys - prev_keys):
        added.append(key)
        details[key] = {"curr_hash": stable_record_hash(curr_by[key])}

    for key in sorted(prev_keys & curr_keys):
        prev_h = stable_record_hash(prev_by[key])
        curr_h = stable_record_hash(curr_by[key])
        if prev_h != curr_h:
            changed.append(key)
        else:
            unchanged.append(key)
        details[key] = {"prev_hash": prev_h, "curr_hash": curr_h}

    summary = {
        "added": len(added),
        "removed": len(removed),
        "changed": len(changed),
        "unchanged": len(unchanged),
        "prev_total": len(prev_by),
        "curr_total": len(curr_by),
    }

    return {
        "added": added,
        "removed": removed,
        "changed": changed,
        "unchanged": unchanged,
        "details": details,
        "summary": summary,
    }


def compute_snapshot_diff(
    prev: Mapping[str, Iterable[Dict[str, Any]]],
    curr: Mapping[str, Iterable[Dict[str, Any]]],
) -> Dict[str, Any]:
    """
    Diff every entity type of two snapshots. Result maps entity -> compute_diff output,
    plus a top-level "summary" of per-entity counts.
    """
    out: Dict[str, Any] = {}
    for entity in ENTITY_TYPES:
        out[entity] = compute_diff(prev.get(entity, []), curr.get(entity, []))
    out["summary"] = {entity: out[entity]["summary"] for entity in ENTITY_TYPES}
    return out


def diff_snapshots(prev_dir: Path, curr_dir: Path) -> Dict[str, Any]:
    for d in (prev_dir, curr_dir):
        if not d.is_dir():
            raise DiffError(f"Snapshot directory not found: {d}")
    try:
        prev = load_snapshot_records(prev_dir)
        curr = load_snapshot_records(curr_dir)
    except (OSError, json.JSONDecodeError) as e:
        raise DiffError(f"Failed to load snapshots for diff: {e}") from e
    return compute_snapshot_diff(prev, curr)


def write_diff(outdir: Path, diff_obj: Dict[str, Any]) -> Tuple[Path, Path]:
    """
    Write diff.json and diff_summary.json to outdir, returning their paths.
    """
    outdir.mkdir(parents=True, exist_ok=True)
    diff_path = outdir / "diff.json"
    summary_path = outdir / "diff_summary.json"
    diff_path.write_text(json.dumps(diff_obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False), encoding="utf-8")
    summary_path.write_text(
        json.dumps(diff_obj.get("summary", {}), sort_keys=True, separators=(",", ":"), ensure_ascii=False),
        encoding="utf-8",
    )
    return diff_path, summary_path
