#!/usr/bin/env python3
"""
Spotify popularity workshop - pipeline driver.

The reusable steps live in their own modules and stay free of I/O:
- csv_processor.load_tracks()   raw table, schema checked
- cleaning.clean()              one row per track
- modeling.fit_spec()           one fitted model
- reporting.coefficients() / summary() / predictions()

This module holds the parameter objects, wires the steps into one run and writes
the run's artifacts (rounded CSVs, SVG plots, text report, JSON manifest) into
output/<timestamp>/.
"""

import logging
import os
import re
from dataclasses import dataclass, field
from enum import Enum, auto
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import pandas as pd

from .cleaning import (
    ALBUM_PLAYLIST_COLUMNS,
    DEFAULT_RECODE,
    GROUP_BY_ARTIST_TRACK,
    GROUP_BY_TRACK_ID,
    CleaningError,
    add_release_date,
    clean,
    filter_positive_popularity,
)
from .csv_processor import (
    DEFAULT_SOURCE_URL,
    CSVProcessingError,
    load_tracks,
    write_rounded_csv,
)
from .explore import artist_summary, feature_correlations, top_tracks
from .modeling import (
    Family,
    FittedModel,
    ModelFitError,
    ModelSpec,
    fit_batch,
)
from .plots import plot_coefficients, plot_popularity_histogram
from .reporting import (
    TERM_ORDERS,
    build_model_comparison,
    coefficients,
    format_coefficients,
    predictions,
    summary,
)
from .utils import (
    build_effective_parameters,
    canonical_json_hash,
    ensure_run_dir,
    normalize_source,
    utc_timestamp_seconds,
    write_manifest,
    write_text_report,
)

# Configure logging for debugging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

FULL_FEATURE_TERMS = (
    "danceability + energy + loudness + speechiness + acousticness + "
    "instrumentalness + liveness + valence + tempo + duration_ms"
)
_LABEL_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


class GroupBy(Enum):
    """Which columns identify one logical track."""

    ARTIST_TRACK = auto()  # (track_artist, track_name)
    TRACK_ID = auto()  # track_id

    @property
    def keys(self) -> Tuple[str, ...]:
        if self is GroupBy.ARTIST_TRACK:
            return GROUP_BY_ARTIST_TRACK
        return GROUP_BY_TRACK_ID


@dataclass
class LoadParams:
    """
    Attributes:
        source: Local CSV path or http(s) URL of the raw track table.
        start_line: 1-based inclusive first data row, or None for the first row.
        end_line: 1-based inclusive last data row, or None to read to the end.
    """

    source: Union[str, Path]
    start_line: Optional[int] = None
    end_line: Optional[int] = None


@dataclass
class CleanParams:
    """
    Attributes:
        group_by: Track identity used for deduplication.
        drop_columns: Columns removed after deduplication.
        recode_mode_key: Turn mode/key integer codes into labeled categoricals.
        exclude_zero_popularity: Drop tracks with popularity 0 before modeling.
        parse_release_date: Add a numeric `release_date` column (days since 1970-01-01).
        verbose_cleaning: Log per-step row counts.
    """

    group_by: GroupBy
    drop_columns: List[str]
    recode_mode_key: bool
    exclude_zero_popularity: bool
    parse_release_date: bool
    verbose_cleaning: bool


@dataclass
class ModelParams:
    label: str
    formula: str
    family: Family = Family.LINEAR
    standardize: bool = False
    exponentiate: bool = False
    confidence_level: float = 0.95
    term_order: str = "declared"

    def __post_init__(self) -> None:
        if not _LABEL_RE.match(self.label):
            raise ValueError(
                f"Model label {self.label!r} may only contain letters, digits, '_', '.' and '-'"
            )
        self.family = Family.parse(self.family)
        if self.term_order not in TERM_ORDERS:
            raise ValueError(
                f"Unknown term order {self.term_order!r}; expected one of {TERM_ORDERS}"
            )
        if not 0.0 < float(self.confidence_level) < 1.0:
            raise ValueError(
                f"confidence_level must be in (0, 1), got {self.confidence_level}"
            )

    def to_spec(self) -> ModelSpec:
        return ModelSpec.from_formula(
            self.formula, family=self.family, standardize=self.standardize
        )


@dataclass
class OutputParams:
    output_dir: Path
    decimals: int = 3
    write_predictions: bool = False
    plot_coefficients: bool = True
    explore: bool = False


@dataclass
class RunOutputs:
    df_raw: pd.DataFrame
    df_clean: pd.DataFrame
    models: Dict[str, Union[FittedModel, ModelFitError]]
    summaries: pd.DataFrame
    coefficient_tables: Dict[str, pd.DataFrame] = field(default_factory=dict)


def get_default_params() -> Tuple[LoadParams, CleanParams, List[ModelParams], OutputParams]:
    """
    Policy defaults: the tidytuesday table deduplicated by (artist, track name),
    album/playlist columns dropped, mode/key recoded, zero-popularity tracks
    excluded, and the workshop's model list.
    """
    load = LoadParams(source=DEFAULT_SOURCE_URL, start_line=None, end_line=None)
    cleaning = CleanParams(
        group_by=GroupBy.ARTIST_TRACK,
        drop_columns=["track_id", *ALBUM_PLAYLIST_COLUMNS],
        recode_mode_key=True,
        exclude_zero_popularity=True,
        parse_release_date=True,
        verbose_cleaning=False,
    )
    models = [
        ModelParams(
            label="model_01",
            formula="danceability ~ energy + loudness + speechiness + tempo",
        ),
        ModelParams(
            label="model_02",
            formula="track_popularity ~ danceability + energy + mode",
        ),
        ModelParams(
            label="model_03",
            formula="track_popularity ~ danceability*mode + energy",
        ),
        ModelParams(
            label="model_date",
            formula="track_popularity ~ release_date",
        ),
        ModelParams(
            label="model_full_std",
            formula=f"track_popularity ~ {FULL_FEATURE_TERMS}",
            standardize=True,
        ),
        ModelParams(
            label="model_mode",
            formula=(
                "mode ~ energy + loudness + speechiness + acousticness + "
                "instrumentalness + liveness + valence + tempo + duration_ms"
            ),
            family=Family.LOGISTIC,
            exponentiate=True,
        ),
    ]
    output = OutputParams(
        output_dir=Path("output"),
        decimals=3,
        write_predictions=False,
        plot_coefficients=True,
        explore=False,
    )
    return load, cleaning, models, output


def clean_tracks(df_raw: pd.DataFrame, params: CleanParams) -> pd.DataFrame:
    """
    Raw table -> modeling table. Release dates are parsed row-wise before the album
    columns are dropped; the popularity filter runs after deduplication.
    """
    df = df_raw
    if params.parse_release_date:
        df = add_release_date(df, verbose=params.verbose_cleaning)
    df = clean(
        df,
        group_keys=params.group_by.keys,
        drop_columns=params.drop_columns,
        recode=DEFAULT_RECODE if params.recode_mode_key else None,
        verbose=params.verbose_cleaning,
    )
    if params.exclude_zero_popularity:
        df = filter_positive_popularity(df, verbose=params.verbose_cleaning)
    return df


def fit_models(
    df: pd.DataFrame, list_model_params: List[ModelParams]
) -> Dict[str, Union[FittedModel, ModelFitError]]:
    """Fit every model independently; failures come back as their exception."""
    labels = [mp.label for mp in list_model_params]
    duplicates = sorted({lbl for lbl in labels if labels.count(lbl) > 1})
    if duplicates:
        raise ValueError(f"Duplicate model labels: {duplicates}")

    specs: Dict[str, ModelSpec] = {}
    failures: Dict[str, ModelFitError] = {}
    for mp in list_model_params:
        try:
            specs[mp.label] = mp.to_spec()
        except ModelFitError as e:
            logger.error(f"Model '{mp.label}' has an invalid formula: {e}")
            failures[mp.label] = e

    fitted = fit_batch(df, specs)
    # Keep the declared model order in the result
    return {lbl: fitted[lbl] if lbl in fitted else failures[lbl] for lbl in labels}


def summarize_models(
    models: Dict[str, Union[FittedModel, ModelFitError]],
    list_model_params: List[ModelParams],
) -> Tuple[pd.DataFrame, Dict[str, pd.DataFrame]]:
    """One summary row per fitted model, plus each model's coefficient table."""
    by_label = {mp.label: mp for mp in list_model_params}
    rows: List[pd.DataFrame] = []
    tables: Dict[str, pd.DataFrame] = {}
    for label, outcome in models.items():
        if not isinstance(outcome, FittedModel):
            continue
        mp = by_label[label]
        tables[label] = coefficients(
            outcome,
            exponentiate=mp.exponentiate,
            confidence_level=mp.confidence_level,
            sort=mp.term_order,
        )
        row = summary(outcome)
        row.insert(0, "standardized", outcome.spec.standardize)
        row.insert(0, "family", outcome.family.name.lower())
        row.insert(0, "dependent", outcome.spec.dependent)
        row.insert(0, "formula", outcome.formula)
        row.insert(0, "label", label)
        rows.append(row)

    if rows:
        summaries = pd.concat(rows, ignore_index=True)
    else:
        summaries = pd.DataFrame(
            columns=["label", "formula", "dependent", "family", "standardized"]
        )
    return summaries, tables


def build_run_identity(
    load: LoadParams,
    cleaning: CleanParams,
    list_model_params: List[ModelParams],
    output: OutputParams,
) -> tuple[str, str, str, dict]:
    """
    Returns (source_id, short_hash, full_hash, effective_params).
    The output directory is not part of the identity.
    """
    source_id = normalize_source(load.source)
    effective_params = build_effective_parameters(
        load=load,
        clean=cleaning,
        models=list_model_params,
        output={"decimals": output.decimals},
    )
    canonical_payload = {
        "source": source_id,
        "effective_parameters": effective_params,
    }
    short_hash, full_hash = canonical_json_hash(canonical_payload)
    return source_id, short_hash, full_hash, effective_params


def build_manifest_dict(
    source_id: str,
    counts: dict,
    effective_params: dict,
    hashes: tuple[str, str],
    artifact_paths: list[str],
    failed_models: Optional[Dict[str, str]] = None,
) -> dict:
    short_hash, full_hash = hashes
    return {
        "version": "1",
        "timestamp_utc": utc_timestamp_seconds(),
        "source": source_id,
        "raw_row_count": int(counts.get("raw_row_count", 0)),
        "clean_row_count": int(counts.get("clean_row_count", 0)),
        "duplicate_row_count": int(counts.get("duplicate_row_count", 0)),
        "effective_parameters": effective_params,
        "canonical_hash": full_hash,
        "canonical_hash_short": short_hash,
        "failed_models": dict(failed_models or {}),
        "artifacts": list(artifact_paths),
    }


def write_outputs(
    run: RunOutputs,
    list_model_params: List[ModelParams],
    output: OutputParams,
    run_dir: Path,
    short_hash: str,
) -> List[str]:
    """Write rounded CSVs (and plots) for every fitted model; return their paths."""
    artifacts: List[str] = []
    by_label = {mp.label: mp for mp in list_model_params}

    if output.explore and output.plot_coefficients:
        artifacts.append(
            plot_popularity_histogram(
                run.df_clean, run_dir / f"popularity-{short_hash}.svg"
            )
        )

    if not run.summaries.empty:
        artifacts.append(
            write_rounded_csv(
                run.summaries, run_dir / f"summary-{short_hash}.csv", output.decimals
            )
        )

    for label, table in run.coefficient_tables.items():
        artifacts.append(
            write_rounded_csv(
                table,
                run_dir / f"coefficients-{label}-{short_hash}.csv",
                output.decimals,
            )
        )
        model = run.models[label]
        if output.write_predictions:
            artifacts.append(
                write_rounded_csv(
                    predictions(model),
                    run_dir / f"predictions-{label}-{short_hash}.csv",
                    output.decimals,
                    index=True,
                )
            )
        if output.plot_coefficients:
            mp = by_label[label]
            title = f"{label}: {model.formula}"
            if mp.exponentiate:
                title += " (odds ratios)"
            artifacts.append(
                plot_coefficients(
                    table,
                    run_dir / f"coefficients-{label}-{short_hash}.svg",
                    title=title,
                    reference=1.0 if mp.exponentiate else 0.0,
                    exponentiated=mp.exponentiate,
                )
            )
    return artifacts


def assemble_text_report(
    run: RunOutputs,
    list_model_params: List[ModelParams],
    cleaning: CleanParams,
    short_hash: str,
    decimals: int = 3,
    explore: bool = False,
) -> str:
    """
    Human-readable run report: row counts, optional exploration tables, the
    model comparison and each model's coefficient table (or its error).
    """
    parts: List[str] = []
    parts.append(f"Spotify popularity run {short_hash}")
    parts.append(
        f"Rows: raw={len(run.df_raw)} → clean={len(run.df_clean)} "
        f"(one row per {'+'.join(cleaning.group_by.keys)}"
        f"{', popularity > 0' if cleaning.exclude_zero_popularity else ''})"
    )
    parts.append("")

    if explore:
        parts.append("Top artists by number of tracks")
        parts.append(artist_summary(run.df_clean, by="n_tracks").to_string(index=False))
        parts.append("")
        parts.append("Top artists by mean popularity")
        parts.append(
            artist_summary(run.df_clean, by="mean_popularity").to_string(index=False)
        )
        parts.append("")
        parts.append("Most popular tracks")
        parts.append(top_tracks(run.df_clean).to_string(index=False))
        parts.append("")
        parts.append("Audio feature correlations")
        parts.append(feature_correlations(run.df_clean).to_string())
        parts.append("")

    _, table_text = build_model_comparison(run.summaries)
    parts.append(table_text)

    by_label = {mp.label: mp for mp in list_model_params}
    for label, outcome in run.models.items():
        mp = by_label[label]
        if not isinstance(outcome, FittedModel):
            parts.append(f"== {label}: {mp.formula}")
            parts.append(f"FAILED ({type(outcome).__name__}): {outcome}")
            parts.append("")
            continue
        flags = [outcome.family.name.lower()]
        if outcome.spec.standardize:
            flags.append("standardized")
        if mp.exponentiate:
            flags.append("odds ratios")
        parts.append(f"== {label}: {outcome.formula} ({', '.join(flags)})")
        parts.append(format_coefficients(run.coefficient_tables[label], decimals))
        row = run.summaries.loc[run.summaries["label"] == label].iloc[0]
        parts.append(
            f"n={int(row['n_observations'])}  R²={row['r_squared']:.{decimals}f}  "
            f"AIC={row['aic']:.1f}  BIC={row['bic']:.1f}"
            + (f"  excluded_missing={outcome.n_excluded}" if outcome.n_excluded else "")
        )
        parts.append("")

    return "\n".join(parts)


def run_pipeline(
    params_load: LoadParams,
    params_clean: CleanParams,
    list_model_params: List[ModelParams],
) -> RunOutputs:
    """Load, clean, fit and summarize without touching the filesystem beyond reading."""
    df_raw = load_tracks(
        params_load.source, params_load.start_line, params_load.end_line
    )
    df_clean = clean_tracks(df_raw, params_clean)
    models = fit_models(df_clean, list_model_params)
    summaries, tables = summarize_models(models, list_model_params)
    return RunOutputs(
        df_raw=df_raw,
        df_clean=df_clean,
        models=models,
        summaries=summaries,
        coefficient_tables=tables,
    )


def _orchestrate(
    params_load: LoadParams,
    params_clean: CleanParams,
    list_model_params: List[ModelParams],
    params_output: OutputParams,
) -> Path:
    """
    Orchestrate one full run given explicit parameter objects and return the run
    directory. Split from main() so the CLI stays thin and tests can call it.
    """
    source_id, short_hash, full_hash, effective_params = build_run_identity(
        params_load, params_clean, list_model_params, params_output
    )
    run = run_pipeline(params_load, params_clean, list_model_params)

    run_dir = ensure_run_dir(
        params_output.output_dir.parent, params_output.output_dir.name
    )
    artifact_paths = write_outputs(
        run, list_model_params, params_output, run_dir, short_hash
    )

    report = assemble_text_report(
        run,
        list_model_params,
        params_clean,
        short_hash,
        decimals=params_output.decimals,
        explore=params_output.explore,
    )
    artifact_paths.append(str(write_text_report(report, run_dir, short_hash)))

    failed = {
        label: f"{type(outcome).__name__}: {outcome}"
        for label, outcome in run.models.items()
        if not isinstance(outcome, FittedModel)
    }
    counts = {
        "raw_row_count": len(run.df_raw),
        "clean_row_count": len(run.df_clean),
        "duplicate_row_count": len(run.df_raw)
        - int(run.df_raw.drop_duplicates(subset=list(params_clean.group_by.keys)).shape[0]),
    }
    manifest = build_manifest_dict(
        source_id=source_id,
        counts=counts,
        effective_params=effective_params,
        hashes=(short_hash, full_hash),
        artifact_paths=[Path(p).name for p in artifact_paths],
        failed_models=failed,
    )
    write_manifest(run_dir / f"manifest-{short_hash}.json", manifest)

    print(report)
    return run_dir


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    s = str(value).strip().lower()
    if s in ("1", "true", "yes", "y", "on"):
        return True
    if s in ("0", "false", "no", "n", "off"):
        return False
    raise ValueError(f"Expected a boolean, got {value!r}")


def _model_params_from_mapping(spec: Dict[str, Any], default_label: str) -> ModelParams:
    known = {
        "label",
        "formula",
        "family",
        "standardize",
        "exponentiate",
        "confidence_level",
        "term_order",
    }
    unknown = set(spec) - known
    if unknown:
        raise ValueError(f"Unknown key(s) in model spec: {sorted(unknown)}")
    if "formula" not in spec:
        raise ValueError("Model spec needs a 'formula'")
    return ModelParams(
        label=str(spec.get("label", default_label)),
        formula=str(spec["formula"]),
        family=Family.parse(spec.get("family", "linear")),
        standardize=_parse_bool(spec.get("standardize", False)),
        exponentiate=_parse_bool(spec.get("exponentiate", False)),
        confidence_level=float(spec.get("confidence_level", 0.95)),
        term_order=str(spec.get("term_order", "declared")),
    )


def _parse_model_spec_kv(spec: str, default_label: str) -> ModelParams:
    """
    Parse a model specification in key=value[,key=value...] format, e.g.
    "label=m1,formula=mode ~ energy + valence,family=logistic,exponentiate=true".
    """
    values: Dict[str, str] = {}
    for kv in spec.split(","):
        if "=" not in kv:
            raise ValueError(f"Invalid model spec item {kv!r}; expected key=value")
        key, value = kv.split("=", 1)
        values[key.strip()] = value.strip()
    return _model_params_from_mapping(values, default_label)


def _parse_model_spec_json(spec: str, default_label: str) -> ModelParams:
    """
    Parse a model specification as a JSON object.
    """
    import json

    spec_dict = json.loads(spec)
    if not isinstance(spec_dict, dict):
        raise ValueError("Model spec JSON must be an object")
    return _model_params_from_mapping(spec_dict, default_label)


def _build_cli_parser():
    import argparse

    parser = argparse.ArgumentParser(
        prog="spotify-popularity",
        description="Spotify popularity workshop pipeline (load -> clean -> fit -> report).",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--print-defaults",
        action="store_true",
        help="Print default parameter values and exit.",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Show full tracebacks for debugging (also SPOTIFY_POP_DEBUG=1).",
    )

    # LoadParams
    g_load = parser.add_argument_group("LoadParams")
    g_load.add_argument("--source", type=str, help="CSV path or URL of the track table.")
    g_load.add_argument("--start-line", type=int, help="1-based inclusive start line.")
    g_load.add_argument("--end-line", type=int, help="1-based inclusive end line.")

    # CleanParams
    g_clean = parser.add_argument_group("CleanParams")
    g_clean.add_argument(
        "--group-by",
        choices=[g.name for g in GroupBy],
        help="Track identity used for deduplication.",
    )
    g_clean.add_argument(
        "--drop-column",
        action="append",
        metavar="COLUMN",
        help="Column to drop after deduplication. Repeatable; replaces the default list.",
    )
    g_clean.add_argument(
        "--keep-column",
        action="append",
        metavar="COLUMN",
        help="Remove COLUMN from the drop list. Repeatable.",
    )
    g_clean.add_argument(
        "--no-recode",
        dest="recode_mode_key",
        action="store_false",
        default=None,
        help="Keep mode/key as integer codes instead of labeled categoricals.",
    )
    g_clean.add_argument(
        "--keep-zero-popularity",
        dest="exclude_zero_popularity",
        action="store_false",
        default=None,
        help="Keep tracks with popularity 0.",
    )
    g_clean.add_argument(
        "--no-release-date",
        dest="parse_release_date",
        action="store_false",
        default=None,
        help="Do not derive the numeric release_date column.",
    )
    g_clean.add_argument(
        "--verbose-cleaning",
        action="store_true",
        default=None,
        help="Log row counts for every cleaning step.",
    )

    # ModelParams
    g_model = parser.add_argument_group("ModelParams")
    g_model.add_argument(
        "--model",
        action="append",
        metavar="FORMULA",
        help="Linear model formula, e.g. 'track_popularity ~ danceability*mode'. Repeatable.",
    )
    g_model.add_argument(
        "--model-spec",
        action="append",
        help="Model specification in key=value[,key=value...] format. Repeatable.",
    )
    g_model.add_argument(
        "--model-spec-json",
        action="append",
        help="Model specification as a JSON object. Repeatable.",
    )

    # OutputParams
    g_out = parser.add_argument_group("OutputParams")
    g_out.add_argument("--output-dir", type=str, help="Base directory for run folders.")
    g_out.add_argument("--decimals", type=int, help="Decimals for numeric CSV columns.")
    g_out.add_argument(
        "--predictions",
        dest="write_predictions",
        action="store_true",
        default=None,
        help="Also write per-observation fitted values and residuals.",
    )
    g_out.add_argument(
        "--no-plots",
        dest="plot_coefficients",
        action="store_false",
        default=None,
        help="Skip the coefficient SVG plots.",
    )
    g_out.add_argument(
        "--explore",
        action="store_true",
        default=None,
        help="Add top-artist and feature-correlation tables to the report.",
    )

    return parser


def _args_to_params(
    args,
) -> Tuple[LoadParams, CleanParams, List[ModelParams], OutputParams]:
    """
    Merge CLI args over defaults to build parameter objects.
    Only override values explicitly provided by user; otherwise keep defaults.
    """
    d_load, d_clean, d_models, d_out = get_default_params()

    load = LoadParams(
        source=getattr(args, "source", None) or d_load.source,
        start_line=(
            args.start_line
            if getattr(args, "start_line", None) is not None
            else d_load.start_line
        ),
        end_line=(
            args.end_line if getattr(args, "end_line", None) is not None else d_load.end_line
        ),
    )

    drop_columns = list(getattr(args, "drop_column", None) or d_clean.drop_columns)
    keep = set(getattr(args, "keep_column", None) or [])
    drop_columns = [c for c in drop_columns if c not in keep]

    def _pick(name: str, default: Any) -> Any:
        value = getattr(args, name, None)
        return default if value is None else value

    cleaning = CleanParams(
        group_by=(
            GroupBy[args.group_by] if getattr(args, "group_by", None) else d_clean.group_by
        ),
        drop_columns=drop_columns,
        recode_mode_key=_pick("recode_mode_key", d_clean.recode_mode_key),
        exclude_zero_popularity=_pick(
            "exclude_zero_popularity", d_clean.exclude_zero_popularity
        ),
        parse_release_date=_pick("parse_release_date", d_clean.parse_release_date),
        verbose_cleaning=_pick("verbose_cleaning", d_clean.verbose_cleaning),
    )

    # Any model flag replaces the default model list
    models: List[ModelParams] = []
    for formula in getattr(args, "model", None) or []:
        models.append(ModelParams(label=f"model_{len(models) + 1:02d}", formula=formula))
    for spec in getattr(args, "model_spec", None) or []:
        models.append(_parse_model_spec_kv(spec, f"model_{len(models) + 1:02d}"))
    for spec in getattr(args, "model_spec_json", None) or []:
        models.append(_parse_model_spec_json(spec, f"model_{len(models) + 1:02d}"))
    if not models:
        models = d_models

    decimals = _pick("decimals", d_out.decimals)
    if decimals < 0:
        raise ValueError("Invalid --decimals: must be a non-negative integer")
    output = OutputParams(
        output_dir=(
            Path(args.output_dir) if getattr(args, "output_dir", None) else d_out.output_dir
        ),
        decimals=decimals,
        write_predictions=_pick("write_predictions", d_out.write_predictions),
        plot_coefficients=_pick("plot_coefficients", d_out.plot_coefficients),
        explore=_pick("explore", d_out.explore),
    )
    return load, cleaning, models, output


def _defaults_payload() -> dict:
    d_load, d_clean, d_models, d_out = get_default_params()
    return build_effective_parameters(
        load=d_load, clean=d_clean, models=d_models, output=d_out
    )


def main() -> None:
    """
    CLI entry point. Parses arguments, builds parameter objects, then orchestrates.
    With no CLI args, defaults from get_default_params() are used.
    """
    import json
    import sys

    parser = _build_cli_parser()
    args = parser.parse_args(sys.argv[1:])

    if args.print_defaults:
        print(json.dumps(_defaults_payload(), indent=2))
        return

    # Enable debug mode via --debug flag or environment variable SPOTIFY_POP_DEBUG=1
    debug_mode = bool(
        getattr(args, "debug", False) or os.getenv("SPOTIFY_POP_DEBUG", "") == "1"
    )
    if debug_mode:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        params = _args_to_params(args)
        _orchestrate(*params)
    except (
        FileNotFoundError,
        ValueError,
        TypeError,
        CSVProcessingError,
        CleaningError,
    ) as e:
        # Concise, user-facing errors for common/user-correctable problems.
        logger.info("User-facing error: %s", e)
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    except Exception as e:
        # Unexpected/internal errors: log full exception. Show traceback only when debugging.
        logger.exception("Unhandled exception during execution")
        if debug_mode:
            import traceback

            traceback.print_exc()
        else:
            print(f"Unexpected error: {e}", file=sys.stderr)
            print(
                "Run with --debug or set SPOTIFY_POP_DEBUG=1 to see the full traceback.",
                file=sys.stderr,
            )
        sys.exit(1)


if __name__ == "__main__":
    main()
