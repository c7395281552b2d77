from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any

"""Component domain models for the import pipeline.

RawRow / NormalizedRow are transient per request. Allocation records are the
planned ComponentInstance rows that the committer persists.
"""

__all__ = [
    "CanonicalType",
    "ColumnMapping",
    "RawRow",
    "NormalizedRow",
    "ComponentKey",
    "ComponentGroup",
    "ExistingInstances",
    "InstanceAllocation",
    "ComponentUpdate",
    "format_display_id",
]

ComponentKey = tuple[str, str]  # (drawing number, business id)


class CanonicalType(str, Enum):
    """Closed set of normalized component categories.

    MISC is the catch-all bucket for empty or unrecognized type strings.
    """
    PIPE = "PIPE"
    SPOOL = "SPOOL"
    VALVE = "VALVE"
    FITTING = "FITTING"
    FLANGE = "FLANGE"
    GASKET = "GASKET"
    SUPPORT = "SUPPORT"
    INSTRUMENT = "INSTRUMENT"
    FIELD_WELD = "FIELD_WELD"
    MISC = "MISC"


@dataclass(frozen=True)
class ColumnMapping:
    """Semantic field -> originating header (None when not detected).

    Produced once per file and reused for every row.
    """
    drawing: str | None = None
    business_id: str | None = None
    type: str | None = None
    quantity: str | None = None
    description: str | None = None
    spec: str | None = None
    size: str | None = None
    material: str | None = None
    area: str | None = None
    system: str | None = None
    test_package: str | None = None
    comments: str | None = None

    REQUIRED_FIELDS = ("drawing", "business_id")

    @property
    def missing_required(self) -> list[str]:
        return [name for name in self.REQUIRED_FIELDS if getattr(self, name) is None]

    def as_dict(self) -> dict[str, str | None]:
        return {
            "drawing": self.drawing,
            "business_id": self.business_id,
            "type": self.type,
            "quantity": self.quantity,
            "description": self.description,
            "spec": self.spec,
            "size": self.size,
            "material": self.material,
            "area": self.area,
            "system": self.system,
            "test_package": self.test_package,
            "comments": self.comments,
        }


@dataclass(frozen=True)
class RawRow:
    """One logical input line exactly as parsed: header -> raw cell value.

    row_number is the 1-based spreadsheet line (header = line 1).
    """
    row_number: int
    values: Mapping[str, Any]

    def __post_init__(self) -> None:
        # read-only view so rows can be shared between preview and commit
        object.__setattr__(self, "values", MappingProxyType(dict(self.values)))

    def get(self, header: str | None) -> Any:
        if header is None:
            return None
        return self.values.get(header)


@dataclass(frozen=True)
class NormalizedRow:
    """RawRow resolved through a ColumnMapping into typed fields."""
    row_number: int
    drawing: str
    business_id: str
    canonical_type: CanonicalType
    raw_type: str | None = None
    quantity: int = 1
    description: str | None = None
    spec: str | None = None
    size: str | None = None
    material: str | None = None
    area: str | None = None
    system: str | None = None
    test_package: str | None = None
    comments: str | None = None

    @property
    def key(self) -> ComponentKey:
        return (self.drawing, self.business_id)


@dataclass(frozen=True)
class ComponentGroup:
    """All rows referring to the same (drawing, business id) pair.

    attributes is the last row seen for the pair; its descriptive fields win
    over earlier rows (last-write-wins).
    """
    drawing: str
    business_id: str
    rows: tuple[int, ...]
    merged_quantity: int
    attributes: NormalizedRow

    @property
    def key(self) -> ComponentKey:
        return (self.drawing, self.business_id)


@dataclass(frozen=True)
class ExistingInstances:
    """Durable instance statistics for one (drawing, business id) pair."""
    count: int = 0
    max_instance: int = 0


def format_display_id(business_id: str, instance_number: int, total_instances: int) -> str:
    """Human readable label for one instance.

    >>> format_display_id("ABC", 1, 1)
    'ABC'
    >>> format_display_id("ABC", 2, 3)
    'ABC (2 of 3)'
    """
    if total_instances == 1:
        return business_id
    return f"{business_id} ({instance_number} of {total_instances})"


@dataclass(frozen=True)
class InstanceAllocation:
    """One planned ComponentInstance (unit of work for the committer)."""
    drawing: str
    business_id: str
    instance_number: int
    total_instances: int
    canonical_type: CanonicalType
    attributes: NormalizedRow
    source_rows: tuple[int, ...] = field(default_factory=tuple)

    @property
    def key(self) -> ComponentKey:
        return (self.drawing, self.business_id)

    @property
    def display_id(self) -> str:
        return format_display_id(self.business_id, self.instance_number, self.total_instances)


@dataclass(frozen=True)
class ComponentUpdate:
    """Descriptive refresh of the already persisted instances of one pair."""
    drawing: str
    business_id: str
    attributes: NormalizedRow
    existing_count: int

    @property
    def key(self) -> ComponentKey:
        return (self.drawing, self.business_id)
