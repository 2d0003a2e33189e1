"""Small exploratory summaries of the cleaned track table."""

import logging
from typing import Sequence

import pandas as pd

from .csv_processor import AUDIO_FEATURES, SchemaMismatchError

logger = logging.getLogger(__name__)


def _require(df: pd.DataFrame, columns: Sequence[str]) -> None:
    missing = [c for c in columns if c not in df.columns]
    if missing:
        raise SchemaMismatchError(
            f"Missing required columns: {', '.join(missing)}. Found columns: {list(df.columns)}",
            missing=missing,
        )


def artist_summary(
    df: pd.DataFrame,
    by: str = "n_tracks",
    n: int = 10,
    artist_column: str = "track_artist",
    popularity_column: str = "track_popularity",
) -> pd.DataFrame:
    """
    Top ``n`` artists by number of tracks ("n_tracks") or by mean track
    popularity ("mean_popularity"). Ties keep first-appearance order.
    """
    if by not in ("n_tracks", "mean_popularity"):
        raise ValueError(f"by must be 'n_tracks' or 'mean_popularity', got {by!r}")
    _require(df, [artist_column, popularity_column])

    grouped = df.groupby(artist_column, sort=False)[popularity_column]
    table = pd.DataFrame(
        {"n_tracks": grouped.size(), "mean_popularity": grouped.mean()}
    ).reset_index()
    table = table.sort_values(by, ascending=False, kind="stable")
    return table.head(n).reset_index(drop=True)


def feature_correlations(
    df: pd.DataFrame, columns: Sequence[str] = AUDIO_FEATURES, decimals: int = 2
) -> pd.DataFrame:
    """Pearson correlation matrix of the audio features, rounded."""
    _require(df, columns)
    return df.loc[:, list(columns)].corr().round(decimals)


def top_tracks(
    df: pd.DataFrame,
    n: int = 10,
    columns: Sequence[str] = ("track_name", "track_artist", "track_popularity"),
    popularity_column: str = "track_popularity",
) -> pd.DataFrame:
    """Most popular tracks first; equal popularity keeps table order."""
    columns = list(columns)
    _require(df, columns + [popularity_column])
    ordered = df.sort_values(popularity_column, ascending=False, kind="stable")
    shown = list(dict.fromkeys(columns + [popularity_column]))
    return ordered.loc[:, shown].head(n).reset_index(drop=True)
