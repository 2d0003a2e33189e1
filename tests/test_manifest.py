import json
from pathlib import Path

import numpy as np

from spotify_popularity.main import (
    CleanParams,
    GroupBy,
    LoadParams,
    ModelParams,
    OutputParams,
    build_manifest_dict,
    build_run_identity,
    get_default_params,
)
from spotify_popularity.modeling import Family
from spotify_popularity.utils import (
    canonical_json_dumps,
    canonical_json_hash,
    sanitize_for_json,
    utc_timestamp_seconds,
    write_manifest,
)


def test_canonical_hash_ignores_key_order():
    a = {"b": 1, "a": [1, 2], "c": {"y": 1, "x": 2}}
    b = {"c": {"x": 2, "y": 1}, "a": [1, 2], "b": 1}
    assert canonical_json_dumps(a) == canonical_json_dumps(b)
    short, full = canonical_json_hash(a)
    assert short == full[:8]
    assert len(full) == 64


def test_sanitize_parameter_objects():
    params = ModelParams(label="m", formula="y ~ x", family="logit")
    out = sanitize_for_json(
        {"model": params, "group": GroupBy.TRACK_ID, "n": np.int64(3), "keys": ("a", "b")}
    )
    assert out["model"]["family"] == "LOGISTIC"
    assert out["model"]["formula"] == "y ~ x"
    assert out["group"] == "TRACK_ID"
    assert out["n"] == 3 and isinstance(out["n"], int)
    assert out["keys"] == ["a", "b"]
    json.dumps(out)


def test_run_identity_ignores_output_dir_but_not_decimals():
    load, clean, models, output = get_default_params()
    _, h1, _, _ = build_run_identity(load, clean, models, output)
    moved = OutputParams(output_dir=Path("elsewhere"), decimals=output.decimals)
    _, h2, _, _ = build_run_identity(load, clean, models, moved)
    assert h1 == h2
    rounded = OutputParams(output_dir=output.output_dir, decimals=5)
    _, h3, _, _ = build_run_identity(load, clean, models, rounded)
    assert h3 != h1


def test_run_identity_changes_with_models():
    load = LoadParams(source="https://example.org/tracks.csv")
    clean = CleanParams(
        group_by=GroupBy.ARTIST_TRACK,
        drop_columns=["track_id"],
        recode_mode_key=True,
        exclude_zero_popularity=True,
        parse_release_date=False,
        verbose_cleaning=False,
    )
    output = OutputParams(output_dir=Path("output"))
    m1 = [ModelParams(label="a", formula="track_popularity ~ energy")]
    m2 = [ModelParams(label="a", formula="track_popularity ~ energy", family=Family.LINEAR, standardize=True)]
    source, h1, _, effective = build_run_identity(load, clean, m1, output)
    _, h2, _, _ = build_run_identity(load, clean, m2, output)
    assert source == "https://example.org/tracks.csv"
    assert h1 != h2
    assert effective["clean"]["group_by"] == "ARTIST_TRACK"
    assert effective["models"][0]["family"] == "LINEAR"


def test_build_and_write_manifest(tmp_path: Path):
    manifest = build_manifest_dict(
        source_id="/data/spotify_songs.csv",
        counts={"raw_row_count": 100, "clean_row_count": 80, "duplicate_row_count": 20},
        effective_params={"load": {"source": "/data/spotify_songs.csv"}},
        hashes=("abcd1234", "abcd1234" + "0" * 56),
        artifact_paths=["summary-abcd1234.csv"],
        failed_models={"m_bad": "UnknownTermError: ..."},
    )
    assert manifest["version"] == "1"
    assert manifest["canonical_hash_short"] == "abcd1234"
    assert manifest["raw_row_count"] == 100
    assert manifest["failed_models"] == {"m_bad": "UnknownTermError: ..."}
    assert manifest["timestamp_utc"].endswith("Z")

    path = tmp_path / "manifest.json"
    write_manifest(path, manifest)
    assert json.loads(path.read_text(encoding="utf-8")) == manifest


def test_utc_timestamp_format():
    ts = utc_timestamp_seconds()
    assert len(ts) == len("2025-01-01T00:00:00Z")
    assert ts[10] == "T"
