from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from spotify_popularity.csv_processor import AUDIO_FEATURES, SchemaMismatchError
from spotify_popularity.explore import artist_summary, feature_correlations, top_tracks
from spotify_popularity.modeling import fit
from spotify_popularity.plots import (
    error_bar_extents,
    plot_coefficients,
    plot_popularity_histogram,
)
from spotify_popularity.reporting import coefficients


def artists_table() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "track_artist": ["A", "B", "A", "C", "B", "A", "D"],
            "track_popularity": [10, 90, 20, 50, 70, 30, 50],
        }
    )


def test_top_artists_by_track_count():
    out = artist_summary(artists_table(), by="n_tracks", n=2)
    assert out["track_artist"].tolist() == ["A", "B"]
    assert out["n_tracks"].tolist() == [3, 2]
    assert out.loc[0, "mean_popularity"] == pytest.approx(20.0)


def test_top_artists_by_mean_popularity_ties_keep_first_appearance():
    out = artist_summary(artists_table(), by="mean_popularity", n=3)
    assert out["track_artist"].tolist() == ["B", "C", "D"]


def test_artist_summary_rejects_unknown_ordering():
    with pytest.raises(ValueError):
        artist_summary(artists_table(), by="loudness")


def test_artist_summary_requires_columns():
    with pytest.raises(SchemaMismatchError):
        artist_summary(artists_table().drop(columns=["track_popularity"]))


def test_feature_correlations_are_rounded_and_symmetric():
    rng = np.random.default_rng(5)
    df = pd.DataFrame(rng.normal(size=(50, len(AUDIO_FEATURES))), columns=list(AUDIO_FEATURES))
    corr = feature_correlations(df)
    assert corr.shape == (10, 10)
    assert (np.diag(corr) == 1.0).all()
    np.testing.assert_array_equal(corr.to_numpy(), corr.to_numpy().T)
    assert (corr.round(2) == corr).all().all()


def test_coefficient_plot_writes_svg(tmp_path: Path):
    rng = np.random.default_rng(2)
    df = pd.DataFrame({"x": rng.normal(size=40), "z": rng.normal(size=40)})
    df["y"] = 1 + 2 * df["x"] + rng.normal(size=40)
    table = coefficients(fit(df, "y", ["x", "z"]))
    out = plot_coefficients(table, tmp_path / "coef.svg", title="y ~ x + z")
    text = Path(out).read_text(encoding="utf-8")
    assert text.lstrip().startswith("<?xml")
    assert "<svg" in text


def test_popularity_histogram_writes_svg(tmp_path: Path):
    df = pd.DataFrame({"track_popularity": [0, 4, 5, 12, 60, 61, 99]})
    out = plot_popularity_histogram(df, tmp_path / "hist.svg")
    assert Path(out).exists()


def test_top_tracks_most_popular_first():
    df = pd.DataFrame(
        {
            "track_name": ["a", "b", "c", "d"],
            "track_artist": ["A", "B", "C", "D"],
            "track_popularity": [40, 95, 60, 95],
            "energy": [0.1, 0.2, 0.3, 0.4],
        }
    )
    out = top_tracks(df, n=3)
    assert list(out.columns) == ["track_name", "track_artist", "track_popularity"]
    assert out["track_name"].tolist() == ["b", "d", "c"]


def test_top_tracks_requires_columns():
    with pytest.raises(SchemaMismatchError):
        top_tracks(pd.DataFrame({"track_popularity": [1]}))


def test_linear_bars_are_one_standard_error():
    rng = np.random.default_rng(4)
    df = pd.DataFrame({"x": rng.normal(size=60)})
    df["y"] = 2 * df["x"] + rng.normal(size=60)
    table = coefficients(fit(df, "y", ["x"]))
    extents = error_bar_extents(table)
    np.testing.assert_allclose(extents[0], table["std_error"])
    np.testing.assert_allclose(extents[1], table["std_error"])


def test_odds_ratio_bars_span_the_confidence_interval(tmp_path: Path):
    rng = np.random.default_rng(8)
    x = rng.normal(size=300)
    p = 1.0 / (1.0 + np.exp(-(0.2 + 1.0 * x)))
    mode = np.where(rng.uniform(size=300) < p, "major", "minor")
    df = pd.DataFrame(
        {"x": x, "mode": pd.Categorical(mode, categories=["minor", "major"])}
    )
    model = fit(df, "mode", ["x"], family="logistic")
    raw = coefficients(model, include_intercept=False)
    odds = coefficients(model, exponentiate=True, include_intercept=False)

    left, right = error_bar_extents(odds, exponentiated=True)
    low = odds["estimate"] - left
    high = odds["estimate"] + right
    np.testing.assert_allclose(low, np.exp(raw["conf_low"]))
    np.testing.assert_allclose(high, np.exp(raw["conf_high"]))
    # Bars are asymmetric on the odds-ratio scale
    assert (right > left).all()
    # And wider than a log-scale std_error would draw them
    assert (high - low > 2 * odds["std_error"]).all()

    out = plot_coefficients(
        odds, tmp_path / "odds.svg", reference=1.0, exponentiated=True
    )
    assert Path(out).exists()
