from pathlib import Path

import pandas as pd
import pytest

from spotify_popularity.csv_processor import (
    REQUIRED_COLUMNS,
    FileAccessError,
    InvalidRangeError,
    SchemaMismatchError,
    TrackCSVReader,
    is_remote_source,
    load_tracks,
    round_numeric,
    validate_track_schema,
    write_rounded_csv,
)


def make_rows(n: int) -> list[dict]:
    rows = []
    for i in range(n):
        row = {col: f"{col}-{i}" for col in REQUIRED_COLUMNS}
        row.update(
            {
                "track_popularity": i,
                "danceability": 0.1 * i,
                "energy": 0.5,
                "key": i % 12,
                "loudness": -6.0,
                "mode": i % 2,
                "speechiness": 0.04,
                "acousticness": 0.2,
                "instrumentalness": 0.0,
                "liveness": 0.1,
                "valence": 0.3,
                "tempo": 100.0 + i,
                "duration_ms": 180000 + i,
                "track_album_release_date": "2018-01-01",
            }
        )
        rows.append(row)
    return rows


def make_temp_csv(tmp_path: Path, rows: list[dict], name: str = "tracks.csv") -> Path:
    path = tmp_path / name
    pd.DataFrame(rows).to_csv(path, index=False)
    return path


def test_load_tracks_reads_whole_file(tmp_path: Path):
    path = make_temp_csv(tmp_path, make_rows(10))
    df = load_tracks(path)
    assert len(df) == 10
    assert list(df.columns) == list(REQUIRED_COLUMNS)


def test_load_tracks_reads_given_range(tmp_path: Path):
    path = make_temp_csv(tmp_path, make_rows(10))
    df = load_tracks(path, start_line=3, end_line=5)
    assert df["track_popularity"].tolist() == [2, 3, 4]


def test_invalid_range_raises(tmp_path: Path):
    path = make_temp_csv(tmp_path, make_rows(3))
    with pytest.raises(InvalidRangeError):
        load_tracks(path, start_line=5, end_line=2)
    with pytest.raises(InvalidRangeError):
        load_tracks(path, start_line=0)


def test_missing_file_raises_file_not_found(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        load_tracks(tmp_path / "absent.csv")


def test_directory_is_not_a_file(tmp_path: Path):
    with pytest.raises(FileAccessError):
        TrackCSVReader(tmp_path)


def test_missing_columns_are_listed(tmp_path: Path):
    rows = make_rows(3)
    for row in rows:
        del row["valence"]
        del row["track_artist"]
    path = make_temp_csv(tmp_path, rows)
    with pytest.raises(SchemaMismatchError) as exc:
        load_tracks(path)
    assert set(exc.value.missing) == {"valence", "track_artist"}


def test_non_numeric_feature_names_column_and_row():
    df = pd.DataFrame(make_rows(4))
    df["energy"] = df["energy"].astype(object)
    df.loc[2, "energy"] = "loud"
    with pytest.raises(SchemaMismatchError) as exc:
        validate_track_schema(df)
    assert exc.value.column == "energy"
    assert exc.value.row == 2


def test_numeric_text_is_coerced():
    df = pd.DataFrame(make_rows(2))
    df["tempo"] = ["120.5", None]
    out = validate_track_schema(df)
    assert out["tempo"].iloc[0] == pytest.approx(120.5)
    assert pd.isna(out["tempo"].iloc[1])
    # Input frame keeps its text values
    assert df["tempo"].iloc[0] == "120.5"


def test_source_info_lists_columns(tmp_path: Path):
    path = make_temp_csv(tmp_path, make_rows(2))
    with TrackCSVReader(path) as reader:
        info = reader.get_source_info()
    assert info["remote"] is False
    assert info["column_count"] == len(REQUIRED_COLUMNS)
    assert info["file_size"] > 0


def test_remote_source_detection():
    assert is_remote_source("https://example.org/tracks.csv")
    assert not is_remote_source("data/tracks.csv")
    assert not is_remote_source(Path("https:/example"))


def test_write_rounded_csv_rounds_floats_only(tmp_path: Path):
    df = pd.DataFrame({"term": ["a", "b"], "estimate": [1.23456, -0.00049], "n": [10, 20]})
    out = write_rounded_csv(df, tmp_path / "out.csv", decimals=3)
    back = pd.read_csv(out)
    assert back["estimate"].tolist() == [1.235, -0.0]
    assert back["n"].tolist() == [10, 20]
    assert round_numeric(df, 1)["estimate"].tolist() == [1.2, -0.0]


def test_write_rounded_csv_unwritable_path(tmp_path: Path):
    with pytest.raises(FileAccessError):
        write_rounded_csv(pd.DataFrame({"a": [1.0]}), tmp_path / "missing" / "out.csv")
