from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Sequence

import pandas as pd

from .data import CountMatrix
from .errors import InvalidInputError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Paths:
    counts_path: Path
    results_path: Path


def load_count_table(
    counts_path: str | Path,
    id_col: Optional[str] = None,
    categories: Optional[Sequence[str]] = None,
    sheet_name: str | int = 0,
) -> CountMatrix:
    """
    Reads an aggregated count table (CSV, TSV or Excel).

    Expected:
      - one column holding entity ids (``id_col``; the first column when not given).
      - category columns holding raw integer counts. All remaining columns
        when ``categories`` is None.
    """
    counts_path = Path(counts_path)
    suffix = counts_path.suffix.lower()
    if suffix in {".xlsx", ".xls"}:
        df = pd.read_excel(counts_path, sheet_name=sheet_name)
    elif suffix in {".tsv", ".txt"}:
        df = pd.read_csv(counts_path, sep="\t")
    else:
        df = pd.read_csv(counts_path)
    df = _norm_cols(df)

    if id_col is None:
        id_col = df.columns[0]
    elif id_col not in df.columns:
        raise InvalidInputError(f"{counts_path} missing '{id_col}' column.")

    if categories is not None:
        missing = [c for c in categories if c not in df.columns]
        if missing:
            raise InvalidInputError(f"{counts_path} missing category columns: {missing}")

    # empty cells are zero counts
    cols = list(categories) if categories is not None else [c for c in df.columns if c != id_col]
    df[cols] = df[cols].fillna(0)

    matrix = CountMatrix.from_dataframe(df, categories=cols, id_col=id_col)
    logger.info(f"Loaded {matrix.n_entities} entities x {matrix.n_categories} categories from {counts_path.name}")
    return matrix


def write_tables(
    tables: Dict[str, pd.DataFrame],
    results_path: str | Path,
    format: str = "csv",
) -> Dict[str, Path]:
    """Write each named table to ``results_path``; returns the file paths."""
    results_path = Path(results_path)
    results_path.mkdir(parents=True, exist_ok=True)

    written = {}
    for name, df in tables.items():
        if format == "excel":
            out = results_path / f"{name}.xlsx"
            df.to_excel(out, sheet_name=name[:31])
        elif format == "csv":
            out = results_path / f"{name}.csv"
            df.to_csv(out)
        else:
            raise ValueError(f"Unknown format: {format}")
        written[name] = out
        logger.info(f"Saved {name} ({len(df)} rows) to {out}")
    return written


def _norm_col(c: object) -> str:
    # strip whitespace; preserve internal chars
    return str(c).strip()


def _norm_cols(df: pd.DataFrame) -> pd.DataFrame:
    df = df.copy()
    df.columns = [_norm_col(c) for c in df.columns]
    return df
