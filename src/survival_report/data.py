from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, List, Sequence, Tuple
import logging
import numpy as np
import pandas as pd
from pathlib import Path
from sklearn.compose import ColumnTransformer
from sklearn.preprocessing import OneHotEncoder, FunctionTransformer

logger = logging.getLogger(__name__)

# Canonical schema: one row per patient
TIME_COL = "time"
EVENT_COL = "status"
GROUP_COL = "trt"
CATEGORICAL_LEVELS = {
    "trt": ("standard", "test"),
    "celltype": ("squamous", "smallcell", "adeno", "large"),
    "prior": ("no", "yes"),
}
NUM_COLS = ["age", "diagtime", "karno"]
CAT_COLS = list(CATEGORICAL_LEVELS)
QUANT_COLS = [TIME_COL] + NUM_COLS
REQUIRED_COLS = [TIME_COL, EVENT_COL, "trt", "celltype", "age", "diagtime", "karno", "prior"]

# Known spellings of the schema columns (R `veteran`, scikit-survival dataset, common variants)
COLUMN_ALIASES = {
    "time": "time",
    "survival": "time",
    "survival_time": "time",
    "survival_in_days": "time",
    "days": "time",
    "status": "status",
    "event": "status",
    "dead": "status",
    "trt": "trt",
    "treatment": "trt",
    "treatment_group": "trt",
    "celltype": "celltype",
    "cell_type": "celltype",
    "histology": "celltype",
    "age": "age",
    "age_in_years": "age",
    "diagtime": "diagtime",
    "months_from_diagnosis": "diagtime",
    "karno": "karno",
    "karnofsky": "karno",
    "karnofsky_score": "karno",
    "prior": "prior",
    "prior_therapy": "prior",
    "prior_treatment": "prior",
}

STATUS_CODES = {
    1: True, 0: False,
    "1": True, "0": False,
    "true": True, "false": False,
    "dead": True, "death": True, "event": True,
    "censored": False, "alive": False,
}
TRT_CODES = {
    1: "standard", 2: "test",
    "1": "standard", "2": "test",
    "standard": "standard", "test": "test",
}
PRIOR_CODES = {
    0: "no", 1: "yes", 10: "yes",
    "0": "no", "1": "yes", "10": "yes",
    "no": "no", "yes": "yes",
}
CELLTYPE_CODES = {
    "squamous": "squamous",
    "smallcell": "smallcell", "small cell": "smallcell", "small": "smallcell",
    "adeno": "adeno", "adenocarcinoma": "adeno",
    "large": "large", "large cell": "large", "largecell": "large",
}
CODE_TABLES = {
    EVENT_COL: STATUS_CODES,
    "trt": TRT_CODES,
    "prior": PRIOR_CODES,
    "celltype": CELLTYPE_CODES,
}


class SchemaError(ValueError):
    """Raised when the input cohort does not satisfy the fixed patient schema."""


def load_data(file_path: str) -> pd.DataFrame:
    """Load the patient cohort from CSV, pickle or parquet and normalize it.

    Args:
        file_path: Path to input file (.csv, .pkl, .pickle, .parquet)

    Returns:
        Normalized cohort with the canonical columns (see ``prepare_dataset``)

    Raises:
        FileNotFoundError: If file_path does not exist
        ValueError: If file format is not supported
        SchemaError: If the content violates the patient schema

    Example:
        >>> df = load_data("data/inputs/veteran.csv")
        >>> print(df.shape)
        (137, 8)
    """
    file_path = Path(file_path)

    if not file_path.exists():
        raise FileNotFoundError(f"Data file not found: {file_path}")

    suffix = file_path.suffix.lower()

    if suffix == '.csv':
        logger.info(f"Loading CSV data from {file_path}")
        raw = pd.read_csv(file_path)
    elif suffix in ['.pkl', '.pickle']:
        logger.info(f"Loading pickle data from {file_path}")
        raw = pd.read_pickle(file_path)
    elif suffix == '.parquet':
        logger.info(f"Loading parquet data from {file_path}")
        raw = pd.read_parquet(file_path)
    else:
        raise ValueError(
            f"Unsupported file format: {suffix}. "
            f"Supported formats: .csv, .pkl, .pickle, .parquet"
        )

    logger.info(f"Loaded {len(raw):,} records with {len(raw.columns)} columns")
    return prepare_dataset(raw)


def load_veteran_dataset() -> pd.DataFrame:
    """Load the Veterans' Administration lung cancer trial bundled with scikit-survival.

    scikit-survival ships the covariates and the outcome separately; the
    outcome fields (Status, Survival_in_days) are joined back onto the
    covariates before normalization.

    Returns:
        Normalized 137-subject reference cohort
    """
    from sksurv.datasets import load_veterans_lung_cancer

    logger.info("Loading bundled Veterans' Administration lung cancer cohort")
    X, y = load_veterans_lung_cancer()
    raw = X.reset_index(drop=True).assign(
        Status=y["Status"],
        Survival_in_days=y["Survival_in_days"],
    )
    return prepare_dataset(raw)


def _normalize_code(value):
    """Map a raw coded value onto the key space of the code tables."""
    if isinstance(value, str):
        return value.strip().lower()
    if isinstance(value, (bool, np.bool_)):
        return int(value)
    if isinstance(value, (int, float, np.integer, np.floating)) and float(value).is_integer():
        return int(value)
    return value


def _recode(series: pd.Series, codes: dict, column: str) -> pd.Series:
    normalized = series.map(_normalize_code)
    unknown = sorted({repr(v) for v in normalized if v not in codes})
    if unknown:
        raise SchemaError(f"Column '{column}' has unknown codes: {', '.join(unknown)}")
    return normalized.map(lambda v: codes[v])


def _rename_columns(raw: pd.DataFrame) -> pd.DataFrame:
    mapping = {}
    for col in raw.columns:
        key = str(col).strip().lower()
        if key in COLUMN_ALIASES:
            mapping[col] = COLUMN_ALIASES[key]

    targets = list(mapping.values())
    duplicated = sorted({t for t in targets if targets.count(t) > 1})
    if duplicated:
        raise SchemaError(f"Several input columns map onto {duplicated}")

    return raw.rename(columns=mapping)


def prepare_dataset(raw: pd.DataFrame) -> pd.DataFrame:
    """Validate and normalize a raw cohort into the canonical schema.

    Renames known column aliases, recodes the coded fields (status, trt,
    prior, celltype) into canonical values and checks every invariant.
    A single bad record aborts the load.

    Args:
        raw: Raw cohort, one row per patient

    Returns:
        New DataFrame with columns REQUIRED_COLS:
        - time: float days, > 0
        - status: bool, True = death observed
        - trt, celltype, prior: categoricals (first level is the reference)
        - age: int years, > 0
        - diagtime: float months, > 0
        - karno: int in [0, 100]

    Raises:
        SchemaError: On missing columns, missing values, unknown codes or
            invariant violations

    Example:
        >>> raw = pd.DataFrame({"time": [72], "status": [1], "trt": [1], "celltype": ["squamous"],
        ...                     "karno": [60], "diagtime": [7], "age": [69], "prior": [0]})
        >>> prepare_dataset(raw)["prior"].tolist()
        ['no']
    """
    df = _rename_columns(raw)

    missing = [c for c in REQUIRED_COLS if c not in df.columns]
    if missing:
        raise SchemaError(
            f"Missing required columns: {missing}. "
            f"Available columns: {list(raw.columns)}"
        )

    extra = [c for c in df.columns if c not in REQUIRED_COLS]
    if extra:
        logger.debug(f"Ignoring extra columns: {extra}")

    df = df[REQUIRED_COLS].reset_index(drop=True)

    null_counts = df.isna().sum()
    if null_counts.any():
        bad = {k: int(v) for k, v in null_counts.items() if v > 0}
        raise SchemaError(f"Missing values in input: {bad}")

    out = pd.DataFrame(index=df.index)
    for col in QUANT_COLS:
        values = pd.to_numeric(df[col], errors="coerce")
        if values.isna().any():
            rows = values.index[values.isna()].tolist()[:5]
            raise SchemaError(f"Column '{col}' has non-numeric values (rows {rows})")
        out[col] = values.astype(float)

    out[EVENT_COL] = _recode(df[EVENT_COL], STATUS_CODES, EVENT_COL).astype(bool)
    for col, levels in CATEGORICAL_LEVELS.items():
        recoded = _recode(df[col], CODE_TABLES[col], col)
        out[col] = pd.Categorical(recoded, categories=list(levels))

    _check_invariants(out)

    out["age"] = out["age"].astype(int)
    out["karno"] = out["karno"].astype(int)

    n_events = int(out[EVENT_COL].sum())
    logger.info(f"Cohort ready: {len(out)} subjects, {n_events} deaths, {len(out) - n_events} censored")

    return out[REQUIRED_COLS]


def _check_invariants(df: pd.DataFrame) -> None:
    checks = [
        (df[TIME_COL] <= 0, "time must be > 0"),
        (df["age"] <= 0, "age must be > 0"),
        (df["age"] % 1 != 0, "age must be a whole number of years"),
        (df["diagtime"] <= 0, "diagtime must be > 0"),
        ((df["karno"] < 0) | (df["karno"] > 100), "karno must be within [0, 100]"),
        (df["karno"] % 1 != 0, "karno must be an integer score"),
    ]
    for mask, message in checks:
        if mask.any():
            rows = mask.index[mask].tolist()[:5]
            raise SchemaError(f"{message} ({int(mask.sum())} violating rows, e.g. {rows})")


def add_grouped_covariate(
    df: pd.DataFrame,
    column: str,
    bins: Sequence[float],
    labels: Sequence[str] = None,
) -> pd.DataFrame:
    """Return a copy of df with a binned version of a continuous covariate.

    The new column ``<column>_group`` is a categorical whose first
    bin is the reference level. Bins are left-closed, e.g. karno with
    bins (0, 40, 70, 101) gives [0, 40), [40, 70), [70, 101).

    Args:
        df: Normalized cohort
        column: Continuous column to bin
        bins: Bin edges
        labels: Optional bin labels

    Returns:
        New DataFrame with the extra grouped column

    Raises:
        SchemaError: If any value falls outside the bins
    """
    out = df.copy()
    grouped = pd.cut(out[column], bins=list(bins), labels=labels, right=False)
    if grouped.isna().any():
        raise SchemaError(f"Values of '{column}' fall outside bins {list(bins)}")
    out[f"{column}_group"] = grouped.astype(str)
    out[f"{column}_group"] = pd.Categorical(
        out[f"{column}_group"], categories=[str(c) for c in grouped.cat.categories]
    )
    return out


@dataclass
class DesignMatrix:
    """Model frame handed to the Cox engine.

    Attributes:
        frame: time, event (int), design columns and strata labels
        terms: Mapping from model term (input column) to its design columns
        strata: Stratification columns carried as plain labels
    """
    frame: pd.DataFrame
    terms: Dict[str, List[str]] = field(default_factory=dict)
    strata: Tuple[str, ...] = ()
    duration_col: str = TIME_COL
    event_col: str = EVENT_COL

    @property
    def columns(self) -> List[str]:
        """Design columns in term order."""
        return [c for cols in self.terms.values() for c in cols]


def _levels(series: pd.Series) -> List[str]:
    if isinstance(series.dtype, pd.CategoricalDtype):
        return [str(c) for c in series.cat.categories]
    return sorted(str(v) for v in series.unique())


def _is_categorical(series: pd.Series) -> bool:
    return isinstance(series.dtype, pd.CategoricalDtype) or not pd.api.types.is_numeric_dtype(series)


def _log_feature_names(transformer, input_features):
    return np.asarray([f"log_{name}" for name in input_features], dtype=object)


def make_design_matrix(
    df: pd.DataFrame,
    covariates: Sequence[str],
    log_covariates: Sequence[str] = (),
    strata: Sequence[str] = (),
) -> DesignMatrix:
    """Build the Cox model frame from the cohort.

    Categorical covariates are expanded against their reference (first)
    level with one indicator per remaining level, named ``<column>_<level>``.
    Log-transformed covariates become ``log_<column>``. Other numeric
    covariates pass through unchanged.

    Args:
        df: Normalized cohort (not modified)
        covariates: Model terms in display order
        log_covariates: Subset of covariates to log-transform
        strata: Columns defining separate baseline hazards

    Returns:
        DesignMatrix with the model frame and the term -> columns mapping

    Raises:
        ValueError: If a column is both covariate and stratum, or a
            categorical is requested on the log scale
        SchemaError: If columns are missing or a log-transformed covariate
            has non-positive values

    Example:
        >>> dm = make_design_matrix(df, ["trt", "celltype", "karno"], log_covariates=["karno"])
        >>> dm.columns
        ['trt_test', 'celltype_smallcell', 'celltype_adeno', 'celltype_large', 'log_karno']
    """
    covariates = list(covariates)
    log_covariates = list(log_covariates)
    strata = list(strata)

    not_in_model = [c for c in log_covariates if c not in covariates]
    if not_in_model:
        raise ValueError(f"Log-transformed columns {not_in_model} are not model covariates")
    overlap = sorted(set(covariates) & set(strata))
    if overlap:
        raise ValueError(f"Columns {overlap} cannot be both covariates and strata")

    missing = [c for c in [TIME_COL, EVENT_COL] + covariates + strata if c not in df.columns]
    if missing:
        raise SchemaError(f"Columns {missing} not found in cohort")

    df = df.reset_index(drop=True)
    categorical = [c for c in covariates if _is_categorical(df[c])]
    logged = [c for c in covariates if c in log_covariates]
    numeric = [c for c in covariates if c not in categorical and c not in logged]

    bad_log = [c for c in logged if c in categorical]
    if bad_log:
        raise ValueError(f"Categorical columns {bad_log} cannot be log-transformed")
    for col in logged:
        if (df[col] <= 0).any():
            raise SchemaError(f"Column '{col}' must be > 0 to be log-transformed")

    frame = pd.DataFrame({
        TIME_COL: df[TIME_COL].astype(float),
        EVENT_COL: df[EVENT_COL].astype(int),
    })

    levels = {c: _levels(df[c]) for c in categorical}
    terms: Dict[str, List[str]] = {}
    for col in covariates:
        if col in categorical:
            terms[col] = [f"{col}_{lvl}" for lvl in levels[col][1:]]
        elif col in logged:
            terms[col] = [f"log_{col}"]
        else:
            terms[col] = [col]

    transformers = []
    if categorical:
        transformers.append((
            "cat",
            OneHotEncoder(
                categories=[np.asarray(levels[c], dtype=object) for c in categorical],
                drop="first",
                sparse_output=False,
                dtype=float,
            ),
            categorical,
        ))
    if logged:
        transformers.append((
            "log",
            FunctionTransformer(np.log, validate=True, feature_names_out=_log_feature_names),
            logged,
        ))
    if numeric:
        transformers.append(("num", "passthrough", numeric))

    if transformers:
        X_in = df[covariates].copy()
        for col in categorical:
            X_in[col] = X_in[col].astype(str)
        pre = ColumnTransformer(
            transformers=transformers,
            verbose_feature_names_out=False,
        ).set_output(transform="pandas")
        X = pre.fit_transform(X_in)
        design_cols = [c for cols in terms.values() for c in cols]
        X = X[design_cols].astype(float)
        X.index = frame.index
        frame = pd.concat([frame, X], axis=1)

    for col in strata:
        frame[col] = df[col].astype(str)

    return DesignMatrix(frame=frame, terms=terms, strata=tuple(strata))
