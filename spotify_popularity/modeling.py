"""
Linear and logistic regression over formula-style term lists.

A model is a dependent column plus an ordered list of terms. A term is a column
(main effect) or a pairwise interaction ``a:b``; ``a*b`` in a formula expands to
``a + b + a:b``. Categorical columns expand into one 0/1 indicator per category
except the first (reference) category, in declared category order, and every
interaction is built from those same 0/1 indicators. Estimation is delegated to
statsmodels (OLS, and GLM Binomial/logit fitted by IRLS).
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd
import statsmodels.api as sm
from statsmodels.tools.sm_exceptions import PerfectSeparationError

logger = logging.getLogger(__name__)

INTERCEPT = "(Intercept)"

# IRLS stopping rule for the logistic family
LOGISTIC_MAX_ITER = 25
LOGISTIC_TOL = 1e-8


class Family(Enum):
    LINEAR = auto()
    LOGISTIC = auto()

    @classmethod
    def parse(cls, value: Union[str, "Family"]) -> "Family":
        if isinstance(value, Family):
            return value
        aliases = {
            "linear": cls.LINEAR,
            "ols": cls.LINEAR,
            "gaussian": cls.LINEAR,
            "logistic": cls.LOGISTIC,
            "logit": cls.LOGISTIC,
            "binomial": cls.LOGISTIC,
        }
        key = str(value).strip().lower()
        if key not in aliases:
            raise ValueError(
                f"Unknown model family: {value!r}. Expected one of {sorted(aliases)}"
            )
        return aliases[key]


class ModelFitError(Exception):
    """Base exception for model specification and fitting errors."""

    pass


class FormulaError(ModelFitError, ValueError):
    """Raised when a formula or term string cannot be parsed."""

    pass


class UnknownTermError(ModelFitError):
    """Raised when a term references a column absent from the table."""

    def __init__(self, term: str, column: str, available: Sequence[str] = ()) -> None:
        super().__init__(
            f"Term '{term}' references unknown column '{column}'. "
            f"Available columns: {list(available)}"
        )
        self.term = term
        self.column = column


class SingularDesignError(ModelFitError):
    """Raised when the design matrix is rank-deficient."""

    def __init__(self, message: str, columns: Sequence[str] = ()) -> None:
        super().__init__(message)
        self.columns = list(columns)


class FitDidNotConvergeError(ModelFitError):
    """Raised when the logistic IRLS iterations do not converge."""

    def __init__(
        self, iterations: int, tolerance: float, message: Optional[str] = None
    ) -> None:
        super().__init__(
            message
            or f"Logistic fit did not converge within {iterations} iterations (tol={tolerance:g})"
        )
        self.iterations = iterations
        self.tolerance = tolerance


class InvalidResponseError(ModelFitError):
    """Raised when the dependent column does not suit the model family."""

    def __init__(self, message: str, column: str, values: Sequence[Any] = ()) -> None:
        super().__init__(message)
        self.column = column
        self.values = list(values)


@dataclass(frozen=True)
class Term:
    """One model term: a single column, or the product of two columns."""

    factors: tuple[str, ...]

    def __post_init__(self) -> None:
        if len(self.factors) not in (1, 2):
            raise FormulaError(
                f"Only main effects and pairwise interactions are supported, got {':'.join(self.factors)!r}"
            )
        if any(not f for f in self.factors):
            raise FormulaError(f"Empty column name in term {':'.join(self.factors)!r}")
        if len(set(self.factors)) != len(self.factors):
            raise FormulaError(f"Term interacts a column with itself: {self.name!r}")

    @property
    def name(self) -> str:
        return ":".join(self.factors)

    @property
    def is_interaction(self) -> bool:
        return len(self.factors) == 2

    @classmethod
    def parse(cls, text: str) -> "Term":
        return cls(tuple(part.strip() for part in text.split(":")))


def parse_terms(items: Sequence[Union[str, Term]]) -> tuple[Term, ...]:
    """
    Normalize a term list. Strings may use ``a:b`` (interaction only) or ``a*b``
    (both main effects plus their interaction). Declared order is kept and repeated
    terms (including ``b:a`` after ``a:b``) are dropped.
    """
    terms: list[Term] = []
    seen: set[frozenset[str]] = set()

    def _add(term: Term) -> None:
        key = frozenset(term.factors)
        if key not in seen:
            seen.add(key)
            terms.append(term)

    for item in items:
        if isinstance(item, Term):
            _add(item)
            continue
        text = str(item).strip()
        if not text:
            raise FormulaError("Empty term in model specification")
        if "*" in text:
            operands = [p.strip() for p in text.split("*")]
            if len(operands) != 2 or ":" in text:
                raise FormulaError(
                    f"Only pairwise products 'a*b' are supported, got {text!r}"
                )
            _add(Term((operands[0],)))
            _add(Term((operands[1],)))
            _add(Term(tuple(operands)))
        else:
            _add(Term.parse(text))
    return tuple(terms)


def parse_formula(formula: str) -> tuple[str, tuple[Term, ...]]:
    """
    Split ``"y ~ a + b*c"`` into ("y", terms).

    Raises:
        FormulaError: missing/extra '~', empty side, or unsupported term syntax
    """
    parts = formula.split("~")
    if len(parts) != 2:
        raise FormulaError(f"Formula must contain exactly one '~': {formula!r}")
    dependent = parts[0].strip()
    if not dependent or any(ch in dependent for ch in "+*:"):
        raise FormulaError(f"Left-hand side must be a single column: {formula!r}")
    pieces = [p.strip() for p in parts[1].split("+")]
    if not parts[1].strip() or any(not p for p in pieces):
        raise FormulaError(f"Right-hand side has an empty term: {formula!r}")
    return dependent, parse_terms(pieces)


@dataclass(frozen=True)
class ModelSpec:
    dependent: str
    terms: tuple[Term, ...]
    family: Family = Family.LINEAR
    standardize: bool = False

    def __post_init__(self) -> None:
        if not self.terms:
            raise FormulaError("A model needs at least one term")
        if self.dependent in self.factor_columns:
            raise FormulaError(
                f"Dependent column '{self.dependent}' also appears among the terms"
            )

    @classmethod
    def from_formula(
        cls,
        formula: str,
        family: Union[str, Family] = Family.LINEAR,
        standardize: bool = False,
    ) -> "ModelSpec":
        dependent, terms = parse_formula(formula)
        return cls(dependent, terms, Family.parse(family), standardize)

    @property
    def formula(self) -> str:
        return f"{self.dependent} ~ {' + '.join(t.name for t in self.terms)}"

    @property
    def factor_columns(self) -> list[str]:
        """Columns referenced by the terms, in first-use order."""
        return list(dict.fromkeys(f for t in self.terms for f in t.factors))

    @property
    def columns(self) -> list[str]:
        return [self.dependent] + self.factor_columns


@dataclass(frozen=True, eq=False)
class DesignMatrix:
    exog: pd.DataFrame
    endog: pd.Series
    column_terms: dict[str, str]
    categorical_levels: dict[str, tuple]
    response_levels: tuple
    scaling: dict[str, dict[str, float]]
    n_excluded: int


@dataclass(frozen=True, eq=False)
class FittedModel:
    """
    Result of one fit() call. Read-only; consumed by the reporting views.

    ``results`` is the statsmodels results object; its params are indexed by
    ``design_columns`` (intercept first, then term columns in declared order).
    """

    spec: ModelSpec
    results: Any
    design_columns: tuple[str, ...]
    column_terms: Mapping[str, str]
    observation_index: pd.Index
    observed: pd.Series
    categorical_levels: Mapping[str, tuple] = field(default_factory=dict)
    response_levels: tuple = ()
    scaling: Mapping[str, Mapping[str, float]] = field(default_factory=dict)
    iterations: Optional[int] = None
    n_excluded: int = 0

    @property
    def family(self) -> Family:
        return self.spec.family

    @property
    def formula(self) -> str:
        return self.spec.formula

    @property
    def n_observations(self) -> int:
        return int(len(self.observation_index))

    @property
    def params(self) -> pd.Series:
        return self.results.params


def is_categorical(series: pd.Series) -> bool:
    """Categorical dtype, or text; booleans and numbers are numeric terms."""
    if isinstance(series.dtype, pd.CategoricalDtype):
        return True
    return pd.api.types.is_object_dtype(series) or pd.api.types.is_string_dtype(series)


def category_levels(series: pd.Series) -> list:
    """Declared categories for a categorical, sorted distinct values for text."""
    if isinstance(series.dtype, pd.CategoricalDtype):
        return list(series.cat.categories)
    return sorted(series.dropna().unique().tolist(), key=str)


def indicator_name(column: str, level: Any) -> str:
    return f"{column}[T.{level}]"


def indicator_column(table: pd.DataFrame, column: str, level: Any) -> pd.Series:
    """
    The canonical 0/1 indicator for ``column == level`` (missing stays missing).

    Use this when pre-multiplying an interaction column by hand: it is the exact
    column the fitter derives for the same categorical, so a hand-built product and
    an ``a:b`` term give identical estimates. Integer codes such as 1/2 are not
    equivalent and shift every interacted main effect.
    """
    if column not in table.columns:
        raise UnknownTermError(column, column, list(table.columns))
    series = table[column]
    levels = category_levels(series) if is_categorical(series) else sorted(series.dropna().unique())
    if level not in levels:
        raise ValueError(f"Level {level!r} not among categories of '{column}': {levels}")
    values = (series == level).astype(float).where(series.notna())
    return values.rename(indicator_name(column, level))


def _standardize(values: pd.Series, name: str) -> tuple[pd.Series, dict[str, float]]:
    mean = float(values.mean())
    sd = float(values.std(ddof=1))
    if not np.isfinite(sd) or sd == 0.0:
        raise SingularDesignError(
            f"Column '{name}' has zero variance over the fitted rows; cannot standardize",
            columns=[name],
        )
    return (values - mean) / sd, {"mean": mean, "sd": sd}


def _prepare_response(series: pd.Series, spec: ModelSpec) -> tuple[pd.Series, tuple]:
    name = spec.dependent
    if spec.family is Family.LINEAR:
        if is_categorical(series):
            raise InvalidResponseError(
                f"Linear model needs a numeric dependent; '{name}' is categorical",
                column=name,
            )
        return series.astype(float), ()

    if is_categorical(series):
        present = [lvl for lvl in category_levels(series) if (series == lvl).any()]
    else:
        present = sorted(series.unique().tolist())
    if len(present) != 2:
        raise InvalidResponseError(
            f"Logistic model needs exactly two distinct values in '{name}', found {len(present)}: {present[:10]}",
            column=name,
            values=present[:10],
        )
    # First level (lower value / reference category) is coded 0
    return (series == present[1]).astype(float), tuple(present)


def _check_rank(exog: pd.DataFrame) -> None:
    matrix = exog.to_numpy(dtype=float)
    n_rows, n_cols = matrix.shape
    if n_rows == 0:
        raise SingularDesignError(
            "No complete observations left to fit", columns=list(exog.columns)
        )
    rank = int(np.linalg.matrix_rank(matrix))
    if rank == n_cols:
        return

    # Name the columns that add nothing to the span of the ones before them
    collinear: list[str] = []
    current = 0
    for j in range(n_cols):
        r = int(np.linalg.matrix_rank(matrix[:, : j + 1]))
        if r == current:
            collinear.append(str(exog.columns[j]))
        current = r
    raise SingularDesignError(
        f"Design matrix is rank-deficient (rank {rank} < {n_cols} columns, {n_rows} rows); "
        f"collinear or empty columns: {collinear}",
        columns=collinear,
    )


def build_design(table: pd.DataFrame, spec: ModelSpec) -> DesignMatrix:
    """
    Build (exog, endog) for ``spec`` from ``table``.

    Rows with a missing value in any referenced column are dropped first;
    standardization (if requested) uses the remaining rows only.
    """
    for term in spec.terms:
        for column in term.factors:
            if column not in table.columns:
                raise UnknownTermError(term.name, column, list(table.columns))
    if spec.dependent not in table.columns:
        raise UnknownTermError(spec.dependent, spec.dependent, list(table.columns))

    frame = table.loc[:, spec.columns]
    complete = frame.dropna()
    n_excluded = len(frame) - len(complete)
    if n_excluded:
        logger.info(
            f"{spec.formula}: excluded {n_excluded} of {len(frame)} rows with missing values"
        )
    if complete.empty:
        raise SingularDesignError(
            f"No complete observations left to fit {spec.formula}", columns=spec.columns
        )

    endog, response_levels = _prepare_response(complete[spec.dependent], spec)

    scaling: dict[str, dict[str, float]] = {}
    categorical_levels: dict[str, tuple] = {}
    expanded: dict[str, dict[str, pd.Series]] = {}
    for column in spec.factor_columns:
        series = complete[column]
        if is_categorical(series):
            levels = category_levels(series)
            categorical_levels[column] = tuple(levels)
            expanded[column] = {
                indicator_name(column, lvl): (series == lvl).astype(float)
                for lvl in levels[1:]
            }
        else:
            values = pd.to_numeric(series).astype(float)
            if spec.standardize:
                values, scaling[column] = _standardize(values, column)
            expanded[column] = {column: values}

    if spec.standardize and spec.family is Family.LINEAR:
        endog, scaling[spec.dependent] = _standardize(endog, spec.dependent)

    data: dict[str, pd.Series] = {INTERCEPT: pd.Series(1.0, index=complete.index)}
    column_terms: dict[str, str] = {INTERCEPT: INTERCEPT}
    for term in spec.terms:
        if term.is_interaction:
            left, right = (expanded[f] for f in term.factors)
            columns = {
                f"{ln}:{rn}": lv * rv
                for ln, lv in left.items()
                for rn, rv in right.items()
            }
        else:
            columns = expanded[term.factors[0]]
        for name, values in columns.items():
            data[name] = values
            column_terms[name] = term.name

    exog = pd.DataFrame(data, index=complete.index)
    _check_rank(exog)

    return DesignMatrix(
        exog=exog,
        endog=endog.rename(spec.dependent),
        column_terms=column_terms,
        categorical_levels=categorical_levels,
        response_levels=response_levels,
        scaling=scaling,
        n_excluded=n_excluded,
    )


def _fit_logistic(design: DesignMatrix, max_iter: int, tol: float) -> tuple[Any, int]:
    model = sm.GLM(design.endog, design.exog, family=sm.families.Binomial())
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        try:
            results = model.fit(method="IRLS", maxiter=max_iter, tol=tol)
        except (PerfectSeparationError, np.linalg.LinAlgError, ValueError) as e:
            raise FitDidNotConvergeError(
                max_iter, tol, f"Logistic fit failed before converging: {e}"
            ) from e
    for w in caught:
        logger.debug(f"statsmodels: {w.category.__name__}: {w.message}")

    iterations = int(results.fit_history.get("iteration", max_iter))
    converged = bool(getattr(results, "converged", False))
    if not converged or not np.isfinite(np.asarray(results.params)).all():
        raise FitDidNotConvergeError(iterations, tol)
    return results, iterations


def fit_spec(
    table: pd.DataFrame,
    spec: ModelSpec,
    max_iter: int = LOGISTIC_MAX_ITER,
    tol: float = LOGISTIC_TOL,
) -> FittedModel:
    """Fit one model specification. See fit() for the error contract."""
    design = build_design(table, spec)

    iterations: Optional[int] = None
    if spec.family is Family.LINEAR:
        results = sm.OLS(design.endog, design.exog).fit()
    else:
        results, iterations = _fit_logistic(design, max_iter, tol)

    logger.info(
        f"Fitted {spec.family.name.lower()} model {spec.formula} "
        f"(n={len(design.endog)}, columns={design.exog.shape[1]})"
    )
    return FittedModel(
        spec=spec,
        results=results,
        design_columns=tuple(design.exog.columns),
        column_terms=design.column_terms,
        observation_index=design.exog.index,
        observed=design.endog,
        categorical_levels=design.categorical_levels,
        response_levels=design.response_levels,
        scaling=design.scaling,
        iterations=iterations,
        n_excluded=design.n_excluded,
    )


def fit(
    table: pd.DataFrame,
    dependent: str,
    terms: Sequence[Union[str, Term]],
    family: Union[str, Family] = Family.LINEAR,
    standardize: bool = False,
    max_iter: int = LOGISTIC_MAX_ITER,
    tol: float = LOGISTIC_TOL,
) -> FittedModel:
    """
    Fit ``dependent ~ terms`` on ``table``.

    Args:
        table: cleaned track table (not modified)
        dependent: numeric column (linear) or two-valued column (logistic)
        terms: column names, ``a:b`` interactions or ``a*b`` shorthands, in the
            order they should be reported
        family: "linear" (OLS) or "logistic" (logit link, IRLS)
        standardize: z-score numeric columns (and a linear dependent) before fitting
        max_iter, tol: IRLS stopping rule for the logistic family

    Raises:
        UnknownTermError: a term references a column absent from the table
        SingularDesignError: rank-deficient design, or nothing left to fit
        FitDidNotConvergeError: logistic IRLS did not converge
        InvalidResponseError: dependent unsuitable for the family
        FormulaError: malformed term
    """
    spec = ModelSpec(
        dependent=dependent,
        terms=parse_terms(terms),
        family=Family.parse(family),
        standardize=standardize,
    )
    return fit_spec(table, spec, max_iter=max_iter, tol=tol)


def fit_formula(
    table: pd.DataFrame,
    formula: str,
    family: Union[str, Family] = Family.LINEAR,
    standardize: bool = False,
    max_iter: int = LOGISTIC_MAX_ITER,
    tol: float = LOGISTIC_TOL,
) -> FittedModel:
    """fit() with an R-style ``"y ~ a + b*c"`` formula."""
    spec = ModelSpec.from_formula(formula, family=family, standardize=standardize)
    return fit_spec(table, spec, max_iter=max_iter, tol=tol)


def fit_batch(
    table: pd.DataFrame,
    specs: Mapping[str, ModelSpec],
    max_iter: int = LOGISTIC_MAX_ITER,
    tol: float = LOGISTIC_TOL,
) -> dict[str, Union[FittedModel, ModelFitError]]:
    """
    Fit independent models; a failing model is logged and returned as its error
    while the others still run.
    """
    outcomes: dict[str, Union[FittedModel, ModelFitError]] = {}
    for label, spec in specs.items():
        try:
            outcomes[label] = fit_spec(table, spec, max_iter=max_iter, tol=tol)
        except ModelFitError as e:
            logger.error(f"Model '{label}' ({spec.formula}) failed: {e}")
            outcomes[label] = e
    return outcomes
