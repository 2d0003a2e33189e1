"""
Deduplicating cleaner for the raw track table.

The raw table lists a track once per album/playlist it appears on. clean() restores
one row per logical track, keeping the first row in table order, drops the
album/playlist columns and optionally turns integer codes (mode, key) into labeled
categoricals.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional, Sequence

import numpy as np
import pandas as pd

from .csv_processor import SchemaMismatchError

logger = logging.getLogger(__name__)

GROUP_BY_ARTIST_TRACK: tuple[str, ...] = ("track_artist", "track_name")
GROUP_BY_TRACK_ID: tuple[str, ...] = ("track_id",)

ALBUM_PLAYLIST_COLUMNS: tuple[str, ...] = (
    "track_album_id",
    "track_album_name",
    "track_album_release_date",
    "playlist_name",
    "playlist_id",
    "playlist_genre",
    "playlist_subgenre",
)

class CleaningError(Exception):
    """Base exception for cleaning errors."""

    pass

class UnmappedCategoryError(CleaningError):
    """Raised when a raw value has no entry in a recoding scheme."""

    def __init__(self, column: str, value: Any, row: Any) -> None:
        super().__init__(
            f"Value {value!r} in column '{column}' (row {row}) has no label in the recoding scheme"
        )
        self.column = column
        self.value = value
        self.row = row

@dataclass(frozen=True)
class RecodeScheme:
    """
    Ordered (raw value, label) pairs for one categorical column.

    The first pair is the reference category when the column is used as a model
    term. ``target`` renames the column; by default the source column is replaced.
    """

    levels: tuple[tuple[Any, str], ...]
    target: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.levels:
            raise ValueError("RecodeScheme needs at least one (raw, label) pair")
        labels = self.labels
        if len(set(labels)) != len(labels):
            raise ValueError(f"Duplicate labels in recoding scheme: {labels}")

    @property
    def labels(self) -> list[str]:
        return [label for _, label in self.levels]

    def encode(self, series: pd.Series) -> pd.Series:
        """Map raw values to labels. Missing values stay missing."""
        mapping = {raw: label for raw, label in self.levels}
        present = series.notna()
        unmapped = present & ~series.isin(list(mapping))
        if unmapped.any():
            row = unmapped.idxmax()
            raise UnmappedCategoryError(str(series.name), series.loc[row], row)
        labels = series.map(mapping)
        return pd.Series(
            pd.Categorical(labels, categories=self.labels),
            index=series.index,
            name=self.target or series.name,
        )

    def decode(self, series: pd.Series) -> pd.Series:
        """Inverse of encode(): labels back to their declared raw values."""
        mapping = {label: raw for raw, label in self.levels}
        return series.astype(object).map(mapping)

    def is_encoded(self, series: pd.Series) -> bool:
        return isinstance(series.dtype, pd.CategoricalDtype) and list(
            series.cat.categories
        ) == self.labels

MODE_SCHEME = RecodeScheme(levels=((0, "minor"), (1, "major")))
KEY_SCHEME = RecodeScheme(
    levels=tuple(
        enumerate(
            ("C", "C#", "D", "D#", "E", "F", "F#", "G", "G#", "A", "A#", "B")
        )
    )
)
DEFAULT_RECODE: dict[str, RecodeScheme] = {"mode": MODE_SCHEME, "key": KEY_SCHEME}

class StepResult:
    """Container for cleaning-step row counts and diagnostics."""

    def __init__(self, label: Optional[str] = None) -> None:
        self.label: Optional[str] = label

        self.original_rows: int = 0
        self.kept_rows: int = 0
        self.removed_rows: int = 0

        self.metrics: dict[str, int | float | str] = {}

        self.started_at: Optional[float] = None
        self.elapsed_ms: Optional[float] = None

    def start(self, original_rows: int) -> None:
        self.original_rows = original_rows
        self.started_at = time.perf_counter()

    def stop(self, kept_rows: int) -> None:
        self.kept_rows = kept_rows
        self.removed_rows = self.original_rows - kept_rows
        if self.started_at is not None:
            self.elapsed_ms = (time.perf_counter() - self.started_at) * 1000.0

    def add_metric(self, name: str, value: int | float | str) -> None:
        self.metrics[name] = value

    def summarize(self) -> str:
        """Produce a concise summary string for diagnostics."""
        lbl = f"{self.label} " if self.label else ""
        parts = [f"{lbl}result: {self.original_rows} → {self.kept_rows}"]
        if self.removed_rows:
            parts.append(f"removed_rows={self.removed_rows}")
        if self.elapsed_ms is not None:
            parts.append(f"elapsed_ms={self.elapsed_ms:.1f}")
        if self.metrics:
            parts.append(f"metrics={self.metrics}")
        return " | ".join(parts)

def _already_renamed(df: pd.DataFrame, column: str, scheme: RecodeScheme) -> bool:
    target = scheme.target
    return (
        bool(target)
        and target != column
        and column not in df.columns
        and target in df.columns
        and scheme.is_encoded(df[target])
    )

def clean(
    raw: pd.DataFrame,
    group_keys: Sequence[str],
    drop_columns: Iterable[str] = (),
    recode: Optional[Mapping[str, RecodeScheme]] = None,
    verbose: bool = False,
) -> pd.DataFrame:
    """
    Return one row per distinct ``group_keys`` tuple.

    - The representative row is the first row of its group in table order, and groups
      appear in order of first appearance. Missing key values form one group.
    - ``drop_columns`` are removed after selection; unknown names are ignored with a
      warning.
    - ``recode`` maps source column -> RecodeScheme. Raw values outside a scheme
      raise UnmappedCategoryError carrying the raw-table row label; every raw row
      is checked, including duplicates that are not kept. Columns already
      encoded with the same labels are left as they are, so clean() can be
      re-applied to its own output.

    The input frame is not modified. The result has a fresh 0..n-1 index.

    Raises:
        ValueError: group_keys is empty
        SchemaMismatchError: a group key or recode source column is missing
        UnmappedCategoryError: a raw value has no label
    """
    group_keys = list(group_keys)
    if not group_keys:
        raise ValueError("group_keys must name at least one column")
    recode = {
        column: scheme
        for column, scheme in (recode or {}).items()
        if not _already_renamed(raw, column, scheme)
    }

    required = group_keys + list(recode)
    missing = [c for c in required if c not in raw.columns]
    if missing:
        raise SchemaMismatchError(
            f"Columns required for cleaning are missing: {', '.join(missing)}. "
            f"Found columns: {list(raw.columns)}",
            missing=missing,
        )

    result = StepResult(label="clean")
    result.start(len(raw))
    result.add_metric("group_keys", "+".join(group_keys))

    # Every raw row is checked, including duplicates that selection will drop
    encoded: dict[str, pd.Series] = {}
    for column, scheme in recode.items():
        if scheme.is_encoded(raw[column]):
            logger.info(f"Column '{column}' already encoded - left unchanged")
            continue
        encoded[column] = scheme.encode(raw[column])

    # Selection: keep="first" preserves original order of first appearance
    keep = ~raw.duplicated(subset=group_keys, keep="first").to_numpy()
    df = raw.loc[keep]
    result.add_metric("duplicates_removed", len(raw) - len(df))
    encoded = {column: series[keep] for column, series in encoded.items()}

    drop = list(dict.fromkeys(drop_columns))
    unknown = [c for c in drop if c not in df.columns]
    if unknown:
        logger.warning(f"Drop columns not found in table: {unknown}")
    drop = [c for c in drop if c in df.columns]

    # Recoded sources are replaced; a scheme with its own target drops its source
    sources_to_drop = [
        c for c, s in recode.items() if c in encoded and (s.target or c) != c
    ]
    df = df.drop(columns=list(dict.fromkeys(drop + sources_to_drop)))
    for column, series in encoded.items():
        df = df.assign(**{str(series.name): series})

    df = df.reset_index(drop=True)
    result.stop(len(df))

    if verbose:
        logger.info(result.summarize())
    return df

def decode(df: pd.DataFrame, recode: Mapping[str, RecodeScheme]) -> pd.DataFrame:
    """Turn recoded categorical columns back into their raw values."""
    decoded = {}
    for column, scheme in recode.items():
        target = scheme.target or column
        if target in df.columns:
            decoded[column] = scheme.decode(df[target])
    out = df.assign(**decoded)
    targets = [
        s.target for c, s in recode.items() if s.target and s.target != c and s.target in out.columns
    ]
    return out.drop(columns=targets)

def filter_positive_popularity(
    df: pd.DataFrame, column: str = "track_popularity", verbose: bool = False
) -> pd.DataFrame:
    """Keep tracks with popularity > 0; a popularity of 0 marks delisted tracks."""
    if column not in df.columns:
        raise SchemaMismatchError(
            f"Column '{column}' not found. Found columns: {list(df.columns)}",
            missing=[column],
        )
    result = StepResult(label="filter_positive_popularity")
    result.start(len(df))
    out = df.loc[pd.to_numeric(df[column], errors="coerce") > 0]
    result.stop(len(out))
    if verbose:
        logger.info(result.summarize())
    return out

def add_release_date(
    df: pd.DataFrame,
    source: str = "track_album_release_date",
    target: str = "release_date",
    verbose: bool = False,
) -> pd.DataFrame:
    """
    Parse album release dates into days since 1970-01-01 (float, NaN if unparseable).

    Release dates come as YYYY-MM-DD, YYYY-MM or a bare year; partial dates resolve
    to the first day of the month/year.
    """
    if source not in df.columns:
        raise SchemaMismatchError(
            f"Column '{source}' not found. Found columns: {list(df.columns)}",
            missing=[source],
        )
    result = StepResult(label="add_release_date")
    result.start(len(df))

    text = df[source].astype("string").str.strip()
    parsed = pd.to_datetime(text, format="%Y-%m-%d", errors="coerce")
    for fmt in ("%Y-%m", "%Y"):
        todo = parsed.isna() & text.notna()
        if not todo.any():
            break
        parsed = parsed.where(~todo, pd.to_datetime(text.where(todo), format=fmt, errors="coerce"))

    days = (parsed - pd.Timestamp("1970-01-01")) / pd.Timedelta(days=1)
    unparsed = int((days.isna() & df[source].notna()).sum())
    result.add_metric("unparsed_dates", unparsed)
    if unparsed:
        logger.warning(f"{unparsed} release dates could not be parsed and are left missing")

    out = df.assign(**{target: days.astype(float)})
    result.stop(len(out))
    if verbose:
        logger.info(result.summarize())
    return out

def count_by_key(df: pd.DataFrame, group_keys: Sequence[str]) -> pd.Series:
    """Rows per group key, in first-appearance order (useful to spot duplicates)."""
    counts = df.groupby(list(group_keys), sort=False, dropna=False).size()
    return counts.astype(np.int64)
