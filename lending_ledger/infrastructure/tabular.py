"""Spreadsheet and CSV readers feeding the batch importer"""

import logging
from pathlib import Path
from typing import Any, Dict, List

import pandas as pd

from lending_ledger.domain.exceptions import ValidationError

logger = logging.getLogger(__name__)

EXCEL_SUFFIXES = {".xlsx"}
CSV_SUFFIXES = {".csv"}


def _cell(value: Any) -> Any:
    if pd.isna(value):
        return None
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()
    # numpy scalars -> plain Python so pydantic sees int/float/str
    if hasattr(value, "item"):
        return value.item()
    return value


def read_frame(path: str | Path) -> pd.DataFrame:
    """
    Load the first sheet of a workbook, or a CSV file, as a DataFrame.

    Raises:
        ValidationError: missing file or unsupported extension
    """
    path = Path(path)
    if not path.exists():
        raise ValidationError(f"File not found: {path}")

    suffix = path.suffix.lower()
    if suffix in EXCEL_SUFFIXES:
        frame = pd.read_excel(path, sheet_name=0)
    elif suffix in CSV_SUFFIXES:
        # text cells keep leading zeros in phones and references; validators parse numbers
        frame = pd.read_csv(path, dtype=str)
    else:
        raise ValidationError(f"Unsupported file type {suffix or '(none)'}; expected .xlsx or .csv")

    frame.columns = [str(column).strip().lower() for column in frame.columns]
    # trailing blank rows are formatting residue; interior ones keep their row number
    filled = frame.notna().any(axis=1).to_numpy().nonzero()[0]
    frame = frame.iloc[: filled[-1] + 1] if len(filled) else frame.iloc[0:0]
    logger.info(f"Read {len(frame)} rows from {path.name}")
    return frame


def read_rows(path: str | Path) -> List[Dict[str, Any]]:
    """Rows as plain dicts keyed by lowercased header, NaN cells as None"""
    frame = read_frame(path)
    return [
        {column: _cell(value) for column, value in record.items()}
        for record in frame.to_dict(orient="records")
    ]
