from __future__ import annotations

import re
from collections.abc import Iterable

from ..models.component import ColumnMapping

"""Column detection: header text -> semantic field.

The pattern table is ordered; the first group whose pattern matches a header
claims it, and a header is never assigned to more than one field. When several
headers match the same field the first one (left-most column) is kept.
Unmatched headers are ignored.
"""

__all__ = [
    "COLUMN_PATTERNS",
    "MissingColumnsError",
    "detect_columns",
    "normalize_header",
    "require_columns",
]


class MissingColumnsError(Exception):
    """Raised when a required semantic column (drawing, business id) is absent."""

    def __init__(self, missing: Iterable[str]) -> None:
        self.missing = tuple(missing)
        super().__init__(f"missing required columns: {', '.join(self.missing)}")


def _pattern(*alternatives: str) -> re.Pattern[str]:
    return re.compile(r"^(?:" + "|".join(alternatives) + r")$")


COLUMN_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("drawing", _pattern(r"DRAWING", r"DRAWINGS", r"DWG", r"DWGS", r"DWGNO", r"DWG_NO", r"DWG NO", r"ISO")),
    ("business_id", _pattern(r"CMDTY ?CODE", r"COMMODITY ?CODE", r"COMPONENT ?ID", r"TAG", r"PART ?NO")),
    ("type", _pattern(r"TYPE", r"COMPONENT ?TYPE", r"CATEGORY")),
    ("quantity", _pattern(r"QTY", r"QUANTITY", r"COUNT")),
    ("spec", _pattern(r"SPEC", r"SPECIFICATION")),
    ("size", _pattern(r"SIZE", r"NOMINAL ?SIZE", r"NPS", r"DIA", r"DIAMETER")),
    ("description", _pattern(r"DESCRIPTION", r"DESC", r"NAME")),
    ("material", _pattern(r"MATERIAL", r"MAT", r"GRADE")),
    ("comments", _pattern(r"COMMENT", r"COMMENTS", r"NOTE", r"NOTES", r"REMARKS")),
    ("area", _pattern(r"AREA", r"PLANT ?AREA", r"UNIT ?AREA")),
    ("system", _pattern(r"SYSTEM", r"PIPELINE ?SYSTEM", r"PIPING ?SYSTEM")),
    ("test_package", _pattern(r"TEST ?PACKAGE", r"TEST ?PKG", r"PACKAGE")),
)

_WHITESPACE = re.compile(r"\s+")


def normalize_header(header: object) -> str:
    """Uppercase, trim and collapse internal whitespace."""
    if header is None:
        return ""
    return _WHITESPACE.sub(" ", str(header)).strip().upper()


def detect_columns(headers: Iterable[object]) -> ColumnMapping:
    """Infer the ColumnMapping for a file's header row."""
    found: dict[str, str] = {}
    for header in headers:
        if header is None:
            continue
        normalized = normalize_header(header)
        if not normalized:
            continue
        for field_name, pattern in COLUMN_PATTERNS:
            if pattern.match(normalized):
                # first header keeps the field; the header is consumed either way
                found.setdefault(field_name, str(header))
                break
    return ColumnMapping(**found)


def require_columns(mapping: ColumnMapping) -> ColumnMapping:
    """Blocking check for the fields the pipeline never guesses."""
    missing = mapping.missing_required
    if missing:
        raise MissingColumnsError(missing)
    return mapping
