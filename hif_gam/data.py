from __future__ import annotations

import re
from pathlib import Path

import pandas as pd

from .config import (
    AGE_COL,
    KCAL_COL,
    POOL_TEMP_COL,
    PROPORTION_COL,
    RESPONSE_COL,
    SEX_COL,
    SUBJECT_COL,
    TIME_COL,
)
from .errors import LoadError

REQUIRED_COLUMNS = (
    SUBJECT_COL,
    TIME_COL,
    RESPONSE_COL,
    PROPORTION_COL,
    AGE_COL,
    SEX_COL,
    POOL_TEMP_COL,
    KCAL_COL,
)
CATEGORICAL_COLUMNS = (SUBJECT_COL, SEX_COL)
EXCEL_SUFFIXES = {".xlsx", ".xlsm", ".xls"}

_REPAIR_SUFFIX = re.compile(r"\.\.\.\d*$")


def repair_names(names) -> list[str]:
    """Make header names unique: blanks become ``...j`` and every duplicate becomes ``name...j`` (1-based)."""
    cleaned = []
    for raw in names:
        if raw is None or (isinstance(raw, float) and pd.isna(raw)):
            cleaned.append("")
            continue
        name = _REPAIR_SUFFIX.sub("", str(raw).strip())
        cleaned.append(name)

    counts: dict[str, int] = {}
    for name in cleaned:
        counts[name] = counts.get(name, 0) + 1

    out = []
    for pos, name in enumerate(cleaned, start=1):
        if name == "" or counts[name] > 1:
            out.append(f"{name}...{pos}")
        else:
            out.append(name)
    return out


def _read_table(path: Path, sheet) -> pd.DataFrame:
    suffix = path.suffix.lower()
    if suffix in EXCEL_SUFFIXES:
        header = pd.read_excel(path, sheet_name=sheet, header=None, nrows=1)
        body = pd.read_excel(path, sheet_name=sheet, header=0)
    elif suffix == ".csv":
        header = pd.read_csv(path, header=None, nrows=1)
        body = pd.read_csv(path, header=0)
    else:
        raise LoadError(f"Unsupported input type '{suffix}' for {path}; expected .xlsx, .xls or .csv")
    # pandas mangles duplicate headers on its own ("x.1"); rename from the raw header row instead.
    body.columns = repair_names(header.iloc[0].tolist()) if len(header) else []
    return body


def load_observations(path, sheet=0, required=REQUIRED_COLUMNS) -> pd.DataFrame:
    path = Path(path)
    if not path.exists():
        raise LoadError(f"Required input spreadsheet not found: {path}")
    try:
        df = _read_table(path, sheet)
    except LoadError:
        raise
    except Exception as e:
        raise LoadError(f"Could not read {path}: {e}") from e

    missing = [c for c in required if c not in df.columns]
    if missing:
        raise LoadError(
            f"{path.name} is missing required column(s): {', '.join(missing)} "
            f"(found: {', '.join(map(str, df.columns))})"
        )

    for col in required:
        if col in CATEGORICAL_COLUMNS:
            continue
        if pd.api.types.is_numeric_dtype(df[col]):
            continue
        try:
            df[col] = pd.to_numeric(df[col], errors="raise")
        except (TypeError, ValueError) as e:
            raise LoadError(f"Column '{col}' in {path.name} holds non-numeric values: {e}") from e

    for col in CATEGORICAL_COLUMNS:
        if col in df.columns:
            df[col] = as_category(df[col])
    return df


def as_category(values: pd.Series) -> pd.Series:
    """Categorical with string levels, so numeric animal ids never act as a number."""
    s = pd.Series(values)
    if isinstance(s.dtype, pd.CategoricalDtype):
        return s.cat.rename_categories([str(c) for c in s.cat.categories])
    mask = s.notna()
    out = s.astype(object)
    out[mask] = s[mask].map(_level_text)
    return out.astype("category")


def _level_text(v) -> str:
    if isinstance(v, float) and v.is_integer():
        return str(int(v))
    return str(v).strip()
