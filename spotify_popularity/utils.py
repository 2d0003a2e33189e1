from __future__ import annotations

import dataclasses
import datetime as _dt
import enum
import hashlib
import json
import logging
from pathlib import Path
from typing import Any, Dict

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


# -------------------------
# Source utilities
# -------------------------
def normalize_source(source: str | Path) -> str:
    """
    URLs are returned unchanged; local paths become absolute POSIX-style strings
    so the same input hashes identically across platforms.
    """
    if isinstance(source, str) and source.lower().startswith(("http://", "https://")):
        return source
    return Path(source).resolve().as_posix()


# -------------------------
# Hashing utilities
# -------------------------
def canonical_json_dumps(payload: dict[str, Any]) -> str:
    """
    JSON text that is identical for equal payloads, used for run hashes:
    - separators=(',', ':')
    - sort_keys=True
    - ensure_ascii=False
    """
    return json.dumps(
        payload, ensure_ascii=False, separators=(",", ":"), sort_keys=True
    )


def canonical_json_hash(payload: dict[str, Any]) -> tuple[str, str]:
    """
    SHA-256 of the canonical JSON text; returns (first 8 hex chars, full hex digest).
    """
    h = hashlib.sha256(canonical_json_dumps(payload).encode("utf-8")).hexdigest()
    return h[:8], h


# -------------------------
# Manifest helpers
# -------------------------
def sanitize_for_json(obj: Any) -> Any:
    """
    Recursively convert parameter objects into JSON-serializable primitives.

    - Path -> normalized POSIX string
    - Enum -> member name
    - dataclass -> dict of its fields
    - numpy scalars/arrays -> Python numbers/lists
    - pandas Index/Series -> lists
    - mappings -> dicts with string keys; sequences and sets -> lists
    - datetime -> ISO-8601 string
    Anything else falls back to str().
    """
    if obj is None or isinstance(obj, (bool, int, float, str)):
        return obj
    if isinstance(obj, Path):
        return normalize_source(obj)
    if isinstance(obj, _dt.datetime):
        return obj.isoformat()
    if isinstance(obj, np.generic):
        return obj.item()
    if isinstance(obj, np.ndarray):
        return [sanitize_for_json(x) for x in obj.tolist()]
    if isinstance(obj, (pd.Index, pd.Series)):
        return [sanitize_for_json(x) for x in obj.tolist()]
    if isinstance(obj, enum.Enum):
        return obj.name
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return {
            f.name: sanitize_for_json(getattr(obj, f.name))
            for f in dataclasses.fields(obj)
        }
    if isinstance(obj, dict):
        return {str(k): sanitize_for_json(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple, set, frozenset)):
        items = sorted(obj, key=str) if isinstance(obj, (set, frozenset)) else obj
        return [sanitize_for_json(x) for x in items]
    return str(obj)


def build_effective_parameters(**sections: Any) -> dict[str, Any]:
    """
    Build a JSON-serializable mapping of effective parameters, one key per section,
    e.g. build_effective_parameters(load=LoadParams(...), models=[ModelParams(...)]).
    New dataclass fields are picked up automatically.
    """
    return {name: sanitize_for_json(value) for name, value in sections.items()}


def write_manifest(path: str | Path, manifest: Dict[str, Any]) -> None:
    """
    Write the run manifest as indented UTF-8 JSON.
    """
    p = Path(path)
    p.write_text(json.dumps(manifest, ensure_ascii=False, indent=2), encoding="utf-8")


def utc_timestamp_seconds() -> str:
    """
    Current UTC time as e.g. 2025-01-31T12:00:00Z.
    """
    now = _dt.datetime.now(_dt.timezone.utc).replace(tzinfo=None)
    return now.isoformat(timespec="seconds") + "Z"


# -------------------------
# Run directory / report files
# -------------------------
def ensure_run_dir(base: Path | str = ".", prefix: str = "output") -> Path:
    """
    Create and return `base`/`prefix`/<YYYYmmddTHHMMSS> for one run's artifacts.
    """
    run_ts = _dt.datetime.now().strftime("%Y%m%dT%H%M%S")
    run_dir = Path(base) / prefix / run_ts
    run_dir.mkdir(parents=True, exist_ok=True)
    logger.debug("Run artifacts go to %s", run_dir)
    return run_dir


def write_text_report(report_text: str, run_dir: Path, short_hash: str) -> Path:
    """
    Save the run report next to the CSVs as report-<short_hash>.txt.
    """
    target = Path(run_dir) / f"report-{short_hash}.txt"
    target.write_text(report_text, encoding="utf-8")
    logger.debug("Wrote report %s", target)
    return target
