from __future__ import annotations

import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pandas as pd
from openpyxl.utils.exceptions import InvalidFileException

from ..models.component import RawRow

"""Spreadsheet / CSV reader.

Turns an .xlsx / .xlsm / .csv export into headers + RawRows. Cells are read
as objects with pandas' NA conversion off, so texts like "NA" or "N/A" in a
description survive; blank and whitespace-only cells become None. Rows whose
cells are all blank are skipped. Row numbers are spreadsheet line numbers
(header on line 1 unless header_row says otherwise).
"""

__all__ = [
    "SUPPORTED_SUFFIXES",
    "TableData",
    "UnreadableFileError",
    "read_table",
    "table_from_frame",
]

SUPPORTED_SUFFIXES = (".xlsx", ".xlsm", ".csv")


class UnreadableFileError(Exception):
    """The file is missing, of an unsupported type or cannot be parsed."""


@dataclass
class TableData:
    headers: list[str]
    rows: list[RawRow] = field(default_factory=list)
    sheet_name: str | None = None


def _clean_cell(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        pass
    return value


def _unique_headers(raw_headers: list[Any]) -> list[str]:
    """Stringify headers; blanks become 'Unnamed: <i>', repeats get '.1', '.2'."""
    headers: list[str] = []
    seen: dict[str, int] = {}
    for i, raw in enumerate(raw_headers):
        name = _clean_cell(raw)
        text = str(name) if name is not None else f"Unnamed: {i}"
        if text in seen:
            seen[text] += 1
            text = f"{text}.{seen[text]}"
        else:
            seen[text] = 0
        headers.append(text)
    return headers


def table_from_frame(df: pd.DataFrame, header_row: int = 1, sheet_name: str | None = None) -> TableData:
    """Build TableData from a header-less DataFrame (row 0 = spreadsheet line 1)."""
    header_index = header_row - 1
    if df.shape[0] <= header_index:
        return TableData(headers=[], rows=[], sheet_name=sheet_name)
    headers = _unique_headers(df.iloc[header_index].tolist())
    rows: list[RawRow] = []
    for offset, raw in enumerate(df.iloc[header_index + 1:].itertuples(index=False, name=None)):
        values = {h: _clean_cell(v) for h, v in zip(headers, raw, strict=False)}
        if all(v is None for v in values.values()):
            continue
        rows.append(RawRow(row_number=header_row + offset + 1, values=values))
    return TableData(headers=headers, rows=rows, sheet_name=sheet_name)


def read_table(
    path: str | Path, sheet_name: str | int = 0, header_row: int = 1
) -> TableData:
    """Read the first (or the named) sheet of a workbook, or a CSV file.

    Raises:
        UnreadableFileError: missing file, unsupported suffix, corrupt content
    """
    path = Path(path)
    suffix = path.suffix.lower()
    if suffix not in SUPPORTED_SUFFIXES:
        raise UnreadableFileError(
            f"{path.name}: unsupported file type '{suffix}' (expected {', '.join(SUPPORTED_SUFFIXES)})"
        )
    if not path.is_file():
        raise UnreadableFileError(f"{path}: file not found")
    try:
        if suffix == ".csv":
            df = pd.read_csv(
                path, header=None, dtype=object, keep_default_na=False, encoding="utf-8-sig"
            )
            name = None
        else:
            with pd.ExcelFile(path, engine="openpyxl") as xls:
                if isinstance(sheet_name, int):
                    if sheet_name >= len(xls.sheet_names):
                        raise UnreadableFileError(f"{path.name}: no sheet #{sheet_name}")
                    name = str(xls.sheet_names[sheet_name])
                else:
                    name = sheet_name
                df = xls.parse(name, header=None, dtype=object, keep_default_na=False)
    except pd.errors.EmptyDataError:
        return TableData(headers=[], rows=[], sheet_name=None)
    except (OSError, ValueError, zipfile.BadZipFile, InvalidFileException) as e:
        raise UnreadableFileError(f"{path.name}: {e}") from e
    return table_from_frame(df, header_row=header_row, sheet_name=name)
