from __future__ import annotations

import logging
import math
import numbers
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from ..mapping.types import DEFAULT_NORMALIZER, TypeNormalizer, TypeStats
from ..models.component import ColumnMapping, NormalizedRow, RawRow
from ..models.error_record import FILE_LEVEL_ROW, ErrorRecord

"""RawRow + ColumnMapping -> NormalizedRow.

Row level data problems never abort the file:

- missing drawing / business id, non-positive quantity: the row is excluded
  and an error record is produced
- unparseable quantity: defaults to 1 with a warning
- fractional quantity: truncated with a warning
- unrecognized type: kept as MISC, listed once in the warnings
"""

logger = logging.getLogger(__name__)

__all__ = [
    "NormalizationResult",
    "QuantityParse",
    "cell_text",
    "normalize_rows",
    "parse_quantity",
]

MISSING_REQUIRED_FIELD = "MISSING_REQUIRED_FIELD"
INVALID_QUANTITY = "INVALID_QUANTITY"
QUANTITY_DEFAULTED = "QUANTITY_DEFAULTED"
QUANTITY_TRUNCATED = "QUANTITY_TRUNCATED"
UNKNOWN_TYPE = "UNKNOWN_TYPE"


def cell_text(value: Any) -> str | None:
    """Cell value -> stripped text, None for blanks.

    Whole floats coming from spreadsheet numbers lose their ".0" so an id
    typed as 1001 is not imported as "1001.0".
    """
    if value is None:
        return None
    if isinstance(value, float):
        if math.isnan(value):
            return None
        if value.is_integer():
            return str(int(value))
    text = str(value).strip()
    return text or None


@dataclass(frozen=True)
class QuantityParse:
    value: int | None  # None => invalid (zero / negative)
    issue: str | None = None  # QUANTITY_DEFAULTED / QUANTITY_TRUNCATED / INVALID_QUANTITY


def parse_quantity(raw: Any) -> QuantityParse:
    """Interpret one quantity cell.

    >>> parse_quantity("3").value
    3
    >>> parse_quantity("abc")
    QuantityParse(value=1, issue='QUANTITY_DEFAULTED')
    """
    if raw is None or isinstance(raw, bool):
        return QuantityParse(1) if raw is None else QuantityParse(1, QUANTITY_DEFAULTED)
    if isinstance(raw, numbers.Integral):
        number: float = int(raw)
    elif isinstance(raw, numbers.Real):
        number = float(raw)
        if math.isnan(number):
            return QuantityParse(1)
    else:
        text = str(raw).strip()
        if not text:
            return QuantityParse(1)
        try:
            number = int(text)
        except ValueError:
            try:
                number = float(text)
            except ValueError:
                return QuantityParse(1, QUANTITY_DEFAULTED)
    if not math.isfinite(number):
        return QuantityParse(1, QUANTITY_DEFAULTED)
    whole = int(number)
    if whole <= 0:
        return QuantityParse(None, INVALID_QUANTITY)
    if whole != number:
        return QuantityParse(whole, QUANTITY_TRUNCATED)
    return QuantityParse(whole)


@dataclass(frozen=True)
class NormalizationResult:
    rows: list[NormalizedRow]
    errors: list[ErrorRecord] = field(default_factory=list)
    warnings: list[ErrorRecord] = field(default_factory=list)
    type_stats: TypeStats = field(default_factory=TypeStats)


def normalize_rows(
    raw_rows: Iterable[RawRow],
    mapping: ColumnMapping,
    normalizer: TypeNormalizer | None = None,
    filename: str = "",
) -> NormalizationResult:
    """Resolve every RawRow through the mapping.

    Type statistics cover every row that survives normalization, so the
    preview counts match what a commit would create.
    """
    normalizer = normalizer or DEFAULT_NORMALIZER
    rows: list[NormalizedRow] = []
    errors: list[ErrorRecord] = []
    warnings: list[ErrorRecord] = []

    for raw in raw_rows:
        drawing = cell_text(raw.get(mapping.drawing))
        business_id = cell_text(raw.get(mapping.business_id))
        missing = [
            name
            for name, value in (("drawing", drawing), ("business_id", business_id))
            if value is None
        ]
        if missing:
            errors.append(ErrorRecord.create(
                file=filename,
                row=raw.row_number,
                error_type=MISSING_REQUIRED_FIELD,
                message=f"missing {', '.join(missing)}",
            ))
            continue

        raw_quantity = raw.get(mapping.quantity)
        qty = parse_quantity(raw_quantity)
        if qty.value is None:
            errors.append(ErrorRecord.create(
                file=filename,
                row=raw.row_number,
                error_type=INVALID_QUANTITY,
                message=f"quantity must be positive, got {raw_quantity!r}",
            ))
            continue
        if qty.issue == QUANTITY_DEFAULTED:
            warnings.append(ErrorRecord.create(
                file=filename,
                row=raw.row_number,
                error_type=QUANTITY_DEFAULTED,
                message=f"non-numeric quantity {raw_quantity!r}, using 1",
            ))
        elif qty.issue == QUANTITY_TRUNCATED:
            warnings.append(ErrorRecord.create(
                file=filename,
                row=raw.row_number,
                error_type=QUANTITY_TRUNCATED,
                message=f"fractional quantity {raw_quantity!r} truncated to {qty.value}",
            ))

        raw_type = cell_text(raw.get(mapping.type))
        rows.append(NormalizedRow(
            row_number=raw.row_number,
            drawing=drawing,  # type: ignore[arg-type]
            business_id=business_id,  # type: ignore[arg-type]
            canonical_type=normalizer.normalize(raw_type),
            raw_type=raw_type,
            quantity=qty.value,
            description=cell_text(raw.get(mapping.description)),
            spec=cell_text(raw.get(mapping.spec)),
            size=cell_text(raw.get(mapping.size)),
            material=cell_text(raw.get(mapping.material)),
            area=cell_text(raw.get(mapping.area)),
            system=cell_text(raw.get(mapping.system)),
            test_package=cell_text(raw.get(mapping.test_package)),
            comments=cell_text(raw.get(mapping.comments)),
        ))

    type_stats = normalizer.mapping_stats(r.raw_type for r in rows)
    if type_stats.unknown:
        first_row: dict[str, int] = {}
        for r in rows:
            if r.raw_type is not None:
                first_row.setdefault(r.raw_type, r.row_number)
        for raw_type in sorted(type_stats.unknown):
            warnings.append(ErrorRecord.create(
                file=filename,
                row=first_row.get(raw_type, FILE_LEVEL_ROW),
                error_type=UNKNOWN_TYPE,
                message=f"unrecognized type '{raw_type}' imported as MISC",
            ))
    logger.debug(
        "normalized rows=%d errors=%d warnings=%d", len(rows), len(errors), len(warnings)
    )
    return NormalizationResult(rows=rows, errors=errors, warnings=warnings, type_stats=type_stats)
