"""
Reporting views over a FittedModel: coefficient table, one-row model summary and
per-observation predictions, plus a fixed-width comparison table for several models.
"""

from __future__ import annotations

import logging
import math
from typing import NamedTuple, Optional

import numpy as np
import pandas as pd

from .modeling import INTERCEPT, Family, FittedModel

logger = logging.getLogger(__name__)

COEFFICIENT_COLUMNS = [
    "term",
    "estimate",
    "std_error",
    "statistic",
    "p_value",
    "conf_low",
    "conf_high",
]
SUMMARY_COLUMNS = [
    "r_squared",
    "adj_r_squared",
    "log_likelihood",
    "aic",
    "bic",
    "n_observations",
    "n_terms",
    "f_statistic",
    "f_p_value",
]
TERM_ORDERS = ("declared", "alphabetical", "statistic")


def coefficients(
    model: FittedModel,
    exponentiate: bool = False,
    confidence_level: float = 0.95,
    sort: str = "declared",
    include_intercept: bool = True,
) -> pd.DataFrame:
    """
    One row per design column: term, estimate, std_error, statistic, p_value,
    conf_low, conf_high.

    Rows follow the declared term order unless ``sort`` is "alphabetical" or
    "statistic" (largest absolute statistic first); the intercept, when included,
    always comes first. With ``exponentiate`` the estimate and interval bounds are
    exp-transformed (odds ratios for a logistic model); std_error, statistic and
    p_value stay on the link scale.
    """
    if not 0.0 < confidence_level < 1.0:
        raise ValueError(f"confidence_level must be in (0, 1), got {confidence_level}")
    if sort not in TERM_ORDERS:
        raise ValueError(f"Unknown term order {sort!r}; expected one of {TERM_ORDERS}")

    res = model.results
    ci = np.asarray(res.conf_int(alpha=1.0 - confidence_level), dtype=float)
    table = pd.DataFrame(
        {
            "term": list(model.design_columns),
            "estimate": np.asarray(res.params, dtype=float),
            "std_error": np.asarray(res.bse, dtype=float),
            "statistic": np.asarray(res.tvalues, dtype=float),
            "p_value": np.asarray(res.pvalues, dtype=float),
            "conf_low": ci[:, 0],
            "conf_high": ci[:, 1],
        }
    )

    if exponentiate:
        if model.family is not Family.LOGISTIC:
            logger.warning(
                f"Exponentiating coefficients of a {model.family.name.lower()} model; "
                "odds ratios are only meaningful for the logistic family"
            )
        table = table.assign(
            estimate=np.exp(table["estimate"]),
            conf_low=np.exp(table["conf_low"]),
            conf_high=np.exp(table["conf_high"]),
        )

    is_intercept = table["term"] == INTERCEPT
    head = table.loc[is_intercept]
    body = table.loc[~is_intercept]
    if sort == "alphabetical":
        body = body.sort_values("term", kind="stable")
    elif sort == "statistic":
        order = body["statistic"].abs().sort_values(ascending=False, kind="stable").index
        body = body.loc[order]

    parts = [head, body] if include_intercept else [body]
    return pd.concat(parts, ignore_index=True)[COEFFICIENT_COLUMNS]


def summary(model: FittedModel) -> pd.DataFrame:
    """
    Single-row model statistics.

    Linear: R², adjusted R², AIC/BIC and the overall F test as statsmodels reports
    them. Logistic: McFadden pseudo R² (1 - llf/llnull), AIC = -2 llf + 2k and
    BIC = -2 llf + k ln n with k estimated coefficients; no adjusted R² or F test.
    n_terms counts the design columns besides the intercept.
    """
    res = model.results
    n = model.n_observations
    k = len(model.design_columns)
    llf = float(res.llf)

    if model.family is Family.LINEAR:
        row = {
            "r_squared": float(res.rsquared),
            "adj_r_squared": float(res.rsquared_adj),
            "log_likelihood": llf,
            "aic": float(res.aic),
            "bic": float(res.bic),
            "f_statistic": float(res.fvalue),
            "f_p_value": float(res.f_pvalue),
        }
    else:
        llnull = float(res.llnull)
        row = {
            "r_squared": 1.0 - llf / llnull if llnull != 0 else np.nan,
            "adj_r_squared": np.nan,
            "log_likelihood": llf,
            "aic": -2.0 * llf + 2.0 * k,
            "bic": -2.0 * llf + k * math.log(n),
            "f_statistic": np.nan,
            "f_p_value": np.nan,
        }
    row["n_observations"] = n
    row["n_terms"] = k - 1
    return pd.DataFrame([row])[SUMMARY_COLUMNS]


def predictions(model: FittedModel) -> pd.DataFrame:
    """
    One row per fitted observation, indexed by the table's row labels.

    fitted_value is the predicted mean (a probability for the logistic family) and
    residual = observed - fitted_value.
    """
    observed = model.observed.to_numpy(dtype=float)
    fitted = np.asarray(model.results.fittedvalues, dtype=float)
    out = pd.DataFrame(
        {
            "observed": observed,
            "fitted_value": fitted,
            "residual": observed - fitted,
        },
        index=model.observation_index,
    )
    out.index.name = "row"
    return out


def _fmt_fixed(x: Optional[float], width: int, decimals: int) -> str:
    """Right-aligned fixed notation; '-' centered when missing or not finite."""
    if x is None or not math.isfinite(float(x)):
        return "-".center(width)
    return f"{float(x):.{decimals}f}".rjust(width)


class ComparisonRow(NamedTuple):
    label: str
    dependent: str
    family: str
    n: int
    r2: Optional[float]
    aic: Optional[float]
    bic: Optional[float]


def build_model_comparison(summaries: pd.DataFrame) -> tuple[dict[str, str], str]:
    """
    Fixed-width comparison of fitted models.

    ``summaries`` holds one summary() row per model plus ``label``, ``dependent``
    and ``family`` columns. Models are only comparable when they explain the same
    dependent, so the best model (lowest BIC, then AIC, then label) is picked per
    dependent. Returns ({dependent: best_label}, table_text).
    """
    rows = [
        ComparisonRow(
            label=str(r["label"]),
            dependent=str(r["dependent"]),
            family=str(r["family"]),
            n=int(r["n_observations"]),
            r2=r["r_squared"],
            aic=r["aic"],
            bic=r["bic"],
        )
        for _, r in summaries.iterrows()
    ]
    if not rows:
        return {}, "Model Comparison\n(no fitted models)\n"

    def _inf_if_missing(x: Optional[float]) -> float:
        return float("inf") if x is None or not np.isfinite(x) else float(x)

    best: dict[str, str] = {}
    for dependent in dict.fromkeys(r.dependent for r in rows):
        candidates = [r for r in rows if r.dependent == dependent]
        winner = sorted(
            candidates,
            key=lambda r: (_inf_if_missing(r.bic), _inf_if_missing(r.aic), r.label),
        )[0]
        best[dependent] = winner.label

    headers = ("Model", "Dependent", "Family", "N", "R²", "AIC", "BIC")
    width_n, width_r2, width_ic = 8, 10, 12
    col0 = max(len(headers[0]), max(len(r.label) for r in rows))
    col1 = max(len(headers[1]), max(len(r.dependent) for r in rows))
    col2 = max(len(headers[2]), max(len(r.family) for r in rows))

    header_line = (
        f"{headers[0]:<{col0}}  {headers[1]:<{col1}}  {headers[2]:<{col2}}  "
        f"{headers[3]:>{width_n}}  {headers[4]:>{width_r2}}  "
        f"{headers[5]:>{width_ic}}  {headers[6]:>{width_ic}}"
    )
    lines = ["Model Comparison", header_line, "-" * len(header_line)]
    for r in rows:
        marker = " *" if best.get(r.dependent) == r.label else ""
        lines.append(
            f"{r.label:<{col0}}  {r.dependent:<{col1}}  {r.family:<{col2}}  "
            f"{r.n:>{width_n}d}  {_fmt_fixed(r.r2, width_r2, 4)}  "
            f"{_fmt_fixed(r.aic, width_ic, 1)}  {_fmt_fixed(r.bic, width_ic, 1)}{marker}"
        )
    lines.append("")
    lines.append("* lowest BIC among models of the same dependent")
    lines.append("")
    return best, "\n".join(lines)


def format_coefficients(table: pd.DataFrame, decimals: int = 3) -> str:
    """Plain-text rendering of a coefficients() table for the run report."""
    shown = table.copy()
    for col in COEFFICIENT_COLUMNS[1:]:
        if col in shown.columns:
            shown[col] = shown[col].map(
                lambda v: "-" if not np.isfinite(v) else f"{v:.{decimals}f}"
            )
    return shown.to_string(index=False)
