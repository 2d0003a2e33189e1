import numpy as np
import pandas as pd
import pytest

from spotify_popularity.modeling import INTERCEPT, fit, fit_formula
from spotify_popularity.reporting import (
    COEFFICIENT_COLUMNS,
    SUMMARY_COLUMNS,
    build_model_comparison,
    coefficients,
    format_coefficients,
    predictions,
    summary,
)


def track_table(n: int = 150, seed: int = 3) -> pd.DataFrame:
    rng = np.random.default_rng(seed)
    danceability = rng.uniform(0.2, 0.9, n)
    energy = rng.uniform(0.1, 1.0, n)
    acousticness = rng.uniform(0.0, 1.0, n)
    popularity = (
        20 + 30 * danceability + 2 * energy - 8 * acousticness + rng.normal(0, 4, n)
    )
    return pd.DataFrame(
        {
            "track_popularity": popularity,
            "danceability": danceability,
            "energy": energy,
            "acousticness": acousticness,
        }
    )


@pytest.fixture
def model():
    return fit(track_table(), "track_popularity", ["energy", "danceability", "acousticness"])


def test_declared_order_keeps_intercept_first(model):
    table = coefficients(model)
    assert list(table.columns) == COEFFICIENT_COLUMNS
    assert table["term"].tolist() == [INTERCEPT, "energy", "danceability", "acousticness"]


def test_alphabetical_order(model):
    table = coefficients(model, sort="alphabetical")
    assert table["term"].tolist() == [INTERCEPT, "acousticness", "danceability", "energy"]


def test_statistic_order_sorts_by_absolute_value(model):
    table = coefficients(model, sort="statistic")
    assert table["term"].iloc[0] == INTERCEPT
    stats = table["statistic"].iloc[1:].abs().tolist()
    assert stats == sorted(stats, reverse=True)
    assert table["term"].iloc[1] == "danceability"


def test_intercept_can_be_left_out(model):
    table = coefficients(model, include_intercept=False)
    assert INTERCEPT not in table["term"].tolist()
    assert len(table) == 3


def test_wider_confidence_level_widens_interval(model):
    narrow = coefficients(model, confidence_level=0.90)
    wide = coefficients(model, confidence_level=0.99)
    assert ((wide["conf_high"] - wide["conf_low"]) > (narrow["conf_high"] - narrow["conf_low"])).all()
    np.testing.assert_allclose(wide["estimate"], narrow["estimate"])


def test_default_interval_matches_statsmodels(model):
    table = coefficients(model)
    ci = model.results.conf_int(alpha=0.05)
    np.testing.assert_allclose(table["conf_low"], ci.iloc[:, 0])
    np.testing.assert_allclose(table["conf_high"], ci.iloc[:, 1])


@pytest.mark.parametrize("level", [0.0, 1.0, 1.5, -0.1])
def test_confidence_level_out_of_range(model, level):
    with pytest.raises(ValueError):
        coefficients(model, confidence_level=level)


def test_unknown_sort_rejected(model):
    with pytest.raises(ValueError):
        coefficients(model, sort="by_magic")


def test_exponentiating_linear_model_warns(model, caplog):
    caplog.set_level("WARNING")
    coefficients(model, exponentiate=True)
    assert "odds ratios" in caplog.text


def test_summary_row(model):
    row = summary(model)
    assert list(row.columns) == SUMMARY_COLUMNS
    assert len(row) == 1
    r = row.iloc[0]
    assert r["r_squared"] == pytest.approx(model.results.rsquared)
    assert r["adj_r_squared"] < r["r_squared"]
    assert r["n_observations"] == 150
    assert r["n_terms"] == 3
    assert r["f_p_value"] < 0.05


def test_predictions_add_up(model):
    pred = predictions(model)
    assert list(pred.columns) == ["observed", "fitted_value", "residual"]
    assert pred.index.name == "row"
    assert len(pred) == model.n_observations
    np.testing.assert_allclose(pred["observed"] - pred["fitted_value"], pred["residual"])
    assert pred["residual"].mean() == pytest.approx(0.0, abs=1e-8)


def test_predictions_keep_original_row_labels():
    df = track_table(20)
    df.loc[4, "energy"] = np.nan
    m = fit(df, "track_popularity", ["energy"])
    pred = predictions(m)
    assert 4 not in pred.index
    assert pred.loc[5, "observed"] == pytest.approx(df.loc[5, "track_popularity"])


def _labeled(label, m):
    row = summary(m)
    row.insert(0, "family", m.family.name.lower())
    row.insert(0, "dependent", m.spec.dependent)
    row.insert(0, "label", label)
    return row


def test_model_comparison_picks_lowest_bic_per_dependent():
    df = track_table()
    full = fit_formula(df, "track_popularity ~ danceability + energy + acousticness")
    small = fit_formula(df, "track_popularity ~ energy")
    other = fit_formula(df, "danceability ~ energy")
    summaries = pd.concat(
        [_labeled("full", full), _labeled("small", small), _labeled("other", other)],
        ignore_index=True,
    )
    best, text = build_model_comparison(summaries)
    assert best == {"track_popularity": "full", "danceability": "other"}
    lines = text.splitlines()
    assert lines[0] == "Model Comparison"
    assert any(line.startswith("full") and line.endswith("*") for line in lines)
    assert not any(line.startswith("small") and line.endswith("*") for line in lines)


def test_model_comparison_empty():
    best, text = build_model_comparison(pd.DataFrame(columns=["label", "dependent", "family"]))
    assert best == {}
    assert "no fitted models" in text


def test_format_coefficients_renders_fixed_decimals(model):
    text = format_coefficients(coefficients(model), decimals=2)
    assert INTERCEPT in text
    assert "danceability" in text
