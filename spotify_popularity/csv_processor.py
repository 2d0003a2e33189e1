#!/usr/bin/env python3
"""
Track CSV Loader
Reads the Spotify track table from a local path or a URL, validates the expected
schema before any cleaning or fitting happens, and writes rounded result tables.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

import pandas as pd

logger = logging.getLogger(__name__)

DEFAULT_SOURCE_URL = (
    "https://raw.githubusercontent.com/rfordatascience/tidytuesday/master/"
    "data/2020/2020-01-21/spotify_songs.csv"
)

AUDIO_FEATURES: Tuple[str, ...] = (
    "danceability",
    "energy",
    "loudness",
    "speechiness",
    "acousticness",
    "instrumentalness",
    "liveness",
    "valence",
    "tempo",
    "duration_ms",
)

# Columns that must parse as numbers (mode/key are integer codes in the raw file)
NUMERIC_COLUMNS: Tuple[str, ...] = AUDIO_FEATURES + ("track_popularity", "mode", "key")

REQUIRED_COLUMNS: Tuple[str, ...] = (
    "track_id",
    "track_name",
    "track_artist",
    "track_popularity",
    "track_album_id",
    "track_album_name",
    "track_album_release_date",
    "playlist_name",
    "playlist_id",
    "playlist_genre",
    "playlist_subgenre",
    "danceability",
    "energy",
    "key",
    "loudness",
    "mode",
    "speechiness",
    "acousticness",
    "instrumentalness",
    "liveness",
    "valence",
    "tempo",
    "duration_ms",
)


class CSVProcessingError(Exception):
    """Base exception for CSV processing errors."""

    pass


class InvalidRangeError(CSVProcessingError):
    """Raised when invalid line range is provided."""

    pass


class FileAccessError(CSVProcessingError):
    """Raised when the source cannot be accessed, read or written."""

    pass


class SchemaMismatchError(CSVProcessingError):
    """
    Raised when the track table does not carry the expected columns, or a numeric
    column holds values that cannot be parsed as numbers.
    """

    def __init__(
        self,
        message: str,
        missing: Optional[List[str]] = None,
        column: Optional[str] = None,
        row: Any = None,
    ) -> None:
        super().__init__(message)
        self.missing: List[str] = list(missing or [])
        self.column = column
        self.row = row


def is_remote_source(source: Union[str, Path]) -> bool:
    """True when the source is an http(s) URL rather than a local path."""
    return isinstance(source, str) and source.lower().startswith(
        ("http://", "https://")
    )


class TrackCSVReader:
    """
    Reader for the raw track table.

    Local paths are checked up front; URLs are handed to pandas as-is and only
    fail when read. Line ranges are 1-based and exclude the header row.
    """

    def __init__(self, source: Union[str, Path]) -> None:
        """
        Args:
            source: Local CSV path or http(s) URL.

        Raises:
            FileNotFoundError: If a local path does not exist
            FileAccessError: If a local path is not a file
        """
        self.remote = is_remote_source(source)
        if self.remote:
            self.source: Union[str, Path] = str(source)
            return
        self.source = Path(source)
        if not self.source.exists():
            raise FileNotFoundError(f"CSV file not found: {self.source}")
        if not self.source.is_file():
            raise FileAccessError(f"Path is not a file: {self.source}")
        if not self.source.suffix.lower() == ".csv":
            logger.warning(f"File does not have .csv extension: {self.source}")

    @staticmethod
    def _validate_line_range(
        start_line: Optional[int], end_line: Optional[int] = None
    ) -> Tuple[int, Optional[int]]:
        """
        Validate and normalize line range parameters.

        Returns:
            (start_line, end_line) with start defaulting to 1 and end left as None
            when the range is open-ended.

        Raises:
            InvalidRangeError: If the range is invalid
        """
        if start_line is None:
            start_line = 1
        elif not isinstance(start_line, int) or start_line <= 0:
            raise InvalidRangeError(
                f"Start line must be a positive integer or None, got: {start_line}"
            )

        if end_line is not None:
            if not isinstance(end_line, int) or end_line <= 0:
                raise InvalidRangeError(
                    f"End line must be a positive integer or None, got: {end_line}"
                )
            if end_line < start_line:
                raise InvalidRangeError(
                    f"End line {end_line} must be greater than or equal to start line {start_line}"
                )

        return start_line, end_line

    def read_range(
        self, start_line: Optional[int] = None, end_line: Optional[int] = None
    ) -> pd.DataFrame:
        """
        Read a range of data rows, keeping the header.

        Args:
            start_line: First data row (1-indexed). None reads from the first row
            end_line: Last data row (1-indexed, inclusive). None reads to the end

        Returns:
            pd.DataFrame: The requested rows, original order preserved

        Raises:
            InvalidRangeError: If the range parameters are invalid
            FileAccessError: If the source cannot be read
        """
        start_line, end_line = self._validate_line_range(start_line, end_line)
        skiprows = None if start_line <= 1 else range(1, start_line)
        nrows = None if end_line is None else end_line - start_line + 1

        try:
            df = pd.read_csv(self.source, header=0, skiprows=skiprows, nrows=nrows)
        except pd.errors.EmptyDataError:
            return pd.DataFrame()
        except Exception as e:
            raise FileAccessError(f"Error reading CSV source {self.source}: {e}")

        logger.info(f"Loaded {len(df)} rows x {len(df.columns)} columns from {self.source}")
        return df

    def get_source_info(self) -> Dict[str, Any]:
        """
        Describe the source: location, columns and sample dtypes.

        Raises:
            FileAccessError: If the source cannot be read
        """
        try:
            sample_df = pd.read_csv(self.source, nrows=5)
        except Exception as e:
            raise FileAccessError(f"Error getting source info: {e}")

        info: Dict[str, Any] = {
            "source": str(self.source),
            "remote": self.remote,
            "columns": list(sample_df.columns),
            "column_count": len(sample_df.columns),
            "dtypes": {col: str(dtype) for col, dtype in sample_df.dtypes.items()},
        }
        if not self.remote:
            info["file_size"] = self.source.stat().st_size
        return info

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        # pandas opens and closes the handle inside read_csv
        pass


def validate_track_schema(
    df: pd.DataFrame,
    required: Iterable[str] = REQUIRED_COLUMNS,
    numeric: Iterable[str] = NUMERIC_COLUMNS,
) -> pd.DataFrame:
    """
    Fail fast on schema problems and return a frame with numeric columns coerced.

    Missing values in numeric columns are allowed; text that does not parse as a
    number is not.

    Raises:
        SchemaMismatchError: missing required columns, or a malformed numeric column
    """
    present = list(df.columns)
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise SchemaMismatchError(
            f"Missing required columns: {', '.join(missing)}. Found columns: {present}",
            missing=missing,
        )

    coerced: Dict[str, pd.Series] = {}
    for col in numeric:
        if col not in df.columns or pd.api.types.is_numeric_dtype(df[col]):
            continue
        values = pd.to_numeric(df[col], errors="coerce")
        bad = values.isna() & df[col].notna()
        if bad.any():
            row = bad.idxmax()
            raise SchemaMismatchError(
                f"Column '{col}' must be numeric; row {row} holds {df.at[row, col]!r}",
                column=col,
                row=row,
            )
        coerced[col] = values

    if coerced:
        df = df.assign(**coerced)
    return df


def load_tracks(
    source: Union[str, Path] = DEFAULT_SOURCE_URL,
    start_line: Optional[int] = None,
    end_line: Optional[int] = None,
) -> pd.DataFrame:
    """
    Read the raw track table and validate it.
    No prints; raises exceptions on error.
    """
    with TrackCSVReader(source) as reader:
        df = reader.read_range(start_line=start_line, end_line=end_line)
    return validate_track_schema(df)


def round_numeric(df: pd.DataFrame, decimals: int = 3) -> pd.DataFrame:
    """Round float columns only; text and integer columns are left as they are."""
    float_cols = [c for c in df.columns if pd.api.types.is_float_dtype(df[c])]
    if not float_cols:
        return df
    return df.assign(**{c: df[c].round(decimals) for c in float_cols})


def write_rounded_csv(
    df: pd.DataFrame,
    output_path: Union[str, Path],
    decimals: int = 3,
    index: bool = False,
) -> str:
    """
    Write a result table with numeric columns rounded to a fixed precision.

    Raises:
        FileAccessError: If the file cannot be written
    """
    output_path = Path(output_path)
    try:
        with output_path.open("w", encoding="utf-8", newline="") as fh:
            round_numeric(df, decimals).to_csv(fh, index=index)
    except OSError as e:
        raise FileAccessError(f"Error saving CSV file {output_path}: {e}")
    logger.debug(f"Wrote {len(df)} rows to {output_path}")
    return str(output_path)


def main() -> None:
    """Command-line interface for inspecting a track table."""
    parser = argparse.ArgumentParser(
        description="Inspect and validate a Spotify track CSV",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m spotify_popularity.csv_processor spotify_songs.csv --info
  python -m spotify_popularity.csv_processor spotify_songs.csv -s 1 -e 100 -o head.csv
        """,
    )

    parser.add_argument(
        "source", nargs="?", default=DEFAULT_SOURCE_URL, help="CSV path or URL"
    )
    parser.add_argument("-s", "--start", type=int, help="First data row (1-indexed)")
    parser.add_argument("-e", "--end", type=int, help="Last data row (inclusive)")
    parser.add_argument("-o", "--output", help="Write the validated rows here")
    parser.add_argument(
        "--info", action="store_true", help="Print source information and exit"
    )

    args = parser.parse_args()
    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s"
    )

    try:
        if args.info:
            with TrackCSVReader(args.source) as reader:
                info = reader.get_source_info()
            for key, value in info.items():
                print(f"{key}: {value}")
            return

        df = load_tracks(args.source, args.start, args.end)
        print(f"Loaded {len(df)} rows")
        print(df.head())
        if args.output:
            print(f"Saved to: {write_rounded_csv(df, args.output)}")

    except (FileNotFoundError, CSVProcessingError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nOperation cancelled by user", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
