from __future__ import annotations

import re
from collections import Counter
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from ..models.component import CanonicalType

"""Free-text component type -> CanonicalType.

normalize() is total: it never raises and always lands in exactly one
canonical type, MISC being the fallback bucket. Lookup order:

1. exact alias (project aliases before the built-in table)
2. alias appearing as a whole word / phrase in the input, longest alias first
3. keyword containment (e.g. anything mentioning VALVE)
4. MISC
"""

__all__ = [
    "DEFAULT_TYPE_ALIASES",
    "TypeNormalizer",
    "TypeStats",
    "DEFAULT_NORMALIZER",
    "normalize_type",
    "mapping_stats",
]

_T = CanonicalType

DEFAULT_TYPE_ALIASES: Mapping[str, CanonicalType] = MappingProxyType({
    # valves
    "VALVE": _T.VALVE,
    "VLV": _T.VALVE,
    "GATE VALVE": _T.VALVE,
    "GATE VLV": _T.VALVE,
    "GLOBE VALVE": _T.VALVE,
    "CHECK VALVE": _T.VALVE,
    "CHECK VLV": _T.VALVE,
    "BALL VALVE": _T.VALVE,
    "BUTTERFLY VALVE": _T.VALVE,
    "NEEDLE VALVE": _T.VALVE,
    "RELIEF VALVE": _T.VALVE,
    "CONTROL VALVE": _T.VALVE,
    "3-WAY VALVE": _T.VALVE,
    "GATE": _T.VALVE,
    "GLOBE": _T.VALVE,
    "CHECK": _T.VALVE,
    "BALL": _T.VALVE,
    # supports
    "SUPPORT": _T.SUPPORT,
    "SUPP": _T.SUPPORT,
    "PIPE SUPPORT": _T.SUPPORT,
    "HANGER": _T.SUPPORT,
    "SPRING HANGER": _T.SUPPORT,
    "GUIDE": _T.SUPPORT,
    "ANCHOR": _T.SUPPORT,
    "SHOE": _T.SUPPORT,
    "CLAMP": _T.SUPPORT,
    "U-BOLT": _T.SUPPORT,
    "TRUNNION": _T.SUPPORT,
    "RESTRAINT": _T.SUPPORT,
    "SLIDE": _T.SUPPORT,
    "STOP": _T.SUPPORT,
    # gaskets
    "GASKET": _T.GASKET,
    "GSKT": _T.GASKET,
    "GMG": _T.GASKET,
    "SPIRAL WOUND": _T.GASKET,
    "RING GASKET": _T.GASKET,
    "RTJ": _T.GASKET,
    "RF GASKET": _T.GASKET,
    "FACING": _T.GASKET,
    # fittings
    "FITTING": _T.FITTING,
    "ELBOW": _T.FITTING,
    "ELL": _T.FITTING,
    "90 ELBOW": _T.FITTING,
    "45 ELBOW": _T.FITTING,
    "TEE": _T.FITTING,
    "REDUCING TEE": _T.FITTING,
    "REDUCER": _T.FITTING,
    "COUPLING": _T.FITTING,
    "UNION": _T.FITTING,
    "CAP": _T.FITTING,
    "PLUG": _T.FITTING,
    "NIPPLE": _T.FITTING,
    "CROSS": _T.FITTING,
    "WELDOLET": _T.FITTING,
    "THREADOLET": _T.FITTING,
    "SOCKOLET": _T.FITTING,
    "OLET": _T.FITTING,
    # flanges
    "FLANGE": _T.FLANGE,
    "FLG": _T.FLANGE,
    "BLIND FLANGE": _T.FLANGE,
    "BLIND": _T.FLANGE,
    "WELD NECK": _T.FLANGE,
    "WN FLANGE": _T.FLANGE,
    "SLIP ON": _T.FLANGE,
    "SO FLANGE": _T.FLANGE,
    "LAP JOINT": _T.FLANGE,
    "ORIFICE FLANGE": _T.FLANGE,
    "SPECTACLE BLIND": _T.FLANGE,
    # instruments
    "INSTRUMENT": _T.INSTRUMENT,
    "INST": _T.INSTRUMENT,
    "PSV": _T.INSTRUMENT,
    "PRV": _T.INSTRUMENT,
    "GAUGE": _T.INSTRUMENT,
    "PI": _T.INSTRUMENT,  # pressure indicator
    "TI": _T.INSTRUMENT,  # temperature indicator
    "FI": _T.INSTRUMENT,  # flow indicator
    "LI": _T.INSTRUMENT,  # level indicator
    "TRANSMITTER": _T.INSTRUMENT,
    "SWITCH": _T.INSTRUMENT,
    "INDICATOR": _T.INSTRUMENT,
    # pipe / spools
    "PIPE": _T.PIPE,
    "PIPING": _T.PIPE,
    "SPOOL": _T.SPOOL,
    "PIPE SPOOL": _T.SPOOL,
    "FABRICATED SPOOL": _T.SPOOL,
    "FAB SPOOL": _T.SPOOL,
    # field welds
    "FIELD WELD": _T.FIELD_WELD,
    "FW": _T.FIELD_WELD,
    "WELD": _T.FIELD_WELD,
    "BUTT WELD": _T.FIELD_WELD,
    "SOCKET WELD": _T.FIELD_WELD,
})

# Order matters: SPOOL is tested before PIPE so "PIPE SPOOL 3" is a spool.
_KEYWORD_FALLBACKS: tuple[tuple[tuple[str, ...], CanonicalType], ...] = (
    (("VALVE", "VLV"), _T.VALVE),
    (("SUPPORT", "HANG", "CLAMP"), _T.SUPPORT),
    (("GASKET", "GSKT", "SEAL"), _T.GASKET),
    (("FLANGE", "FLG", "BLIND"), _T.FLANGE),
    (("ELBOW", "TEE", "FITTING", "REDUCER"), _T.FITTING),
    (("INSTRUMENT", "GAUGE", "PSV", "TRANSMITTER"), _T.INSTRUMENT),
    (("SPOOL",), _T.SPOOL),
    (("PIPE",), _T.PIPE),
    (("WELD",), _T.FIELD_WELD),
)

_WHITESPACE = re.compile(r"\s+")


def _clean(raw: object) -> str:
    if raw is None or not isinstance(raw, str):
        return ""
    return _WHITESPACE.sub(" ", raw).strip().upper()


@dataclass(frozen=True)
class TypeStats:
    """Counts per canonical type plus the raw strings that fell into MISC.

    Values are order independent, so partial stats computed over slices of a
    file can be combined with merge().
    """
    total: int = 0
    counts: Mapping[CanonicalType, int] = field(default_factory=dict)
    unknown: frozenset[str] = frozenset()

    def count(self, canonical: CanonicalType) -> int:
        return self.counts.get(canonical, 0)

    def merge(self, other: TypeStats) -> TypeStats:
        merged = Counter(self.counts)
        merged.update(other.counts)
        return TypeStats(
            total=self.total + other.total,
            counts=dict(merged),
            unknown=self.unknown | other.unknown,
        )

    def type_counts(self) -> dict[str, int]:
        """User facing counts keyed the way the preview reports them."""
        return {
            "valve": self.count(_T.VALVE),
            "support": self.count(_T.SUPPORT),
            "gasket": self.count(_T.GASKET),
            "flange": self.count(_T.FLANGE),
            "fitting": self.count(_T.FITTING),
            "instrument": self.count(_T.INSTRUMENT),
            "pipe": self.count(_T.PIPE),
            "spool": self.count(_T.SPOOL),
            "fieldWeld": self.count(_T.FIELD_WELD),
            "misc": self.count(_T.MISC),
        }


class TypeNormalizer:
    """Alias-table based normalizer.

    Project-specific aliases (raw text -> canonical type name) are consulted
    before the built-in table and win on conflicts.
    """

    def __init__(self, aliases: Mapping[str, CanonicalType | str] | None = None) -> None:
        table: dict[str, CanonicalType] = dict(DEFAULT_TYPE_ALIASES)
        self.project_aliases: dict[str, CanonicalType] = {}
        for raw, canonical in (aliases or {}).items():
            key = _clean(raw)
            if not key:
                continue
            try:
                value = CanonicalType(canonical.upper() if isinstance(canonical, str) else canonical)
            except ValueError as e:
                raise ValueError(f"unknown canonical type for alias '{raw}': {canonical}") from e
            self.project_aliases[key] = value
            table[key] = value
        self._table: Mapping[str, CanonicalType] = MappingProxyType(table)
        # weld phrases ("BUTT WELD", "WELD NECK") describe end prep, so any
        # other phrase in the text decides first: "BUTT WELD ELBOW" is a fitting.
        # Then longest phrase first, ties broken alphabetically.
        ordered = sorted(table, key=lambda k: ("WELD" in k.split(), -len(k), k))
        self._phrases: tuple[tuple[re.Pattern[str], CanonicalType], ...] = tuple(
            (re.compile(r"(?<![A-Z0-9])" + re.escape(alias) + r"(?![A-Z0-9])"), table[alias])
            for alias in ordered
        )

    @property
    def aliases(self) -> Mapping[str, CanonicalType]:
        return self._table

    def normalize(self, raw_type: object) -> CanonicalType:
        text = _clean(raw_type)
        if not text:
            return _T.MISC
        exact = self._table.get(text)
        if exact is not None:
            return exact
        for pattern, canonical in self._phrases:
            if pattern.search(text):
                return canonical
        for keywords, canonical in _KEYWORD_FALLBACKS:
            if any(k in text for k in keywords):
                return canonical
        return _T.MISC

    def mapping_stats(self, raw_types: Iterable[object]) -> TypeStats:
        counts: Counter[CanonicalType] = Counter()
        unknown: set[str] = set()
        total = 0
        for raw in raw_types:
            total += 1
            canonical = self.normalize(raw)
            counts[canonical] += 1
            text = _clean(raw)
            # an explicit alias to MISC is a deliberate mapping, not an unknown type
            if canonical is _T.MISC and text and text not in self._table:
                unknown.add(str(raw).strip())
        return TypeStats(total=total, counts=dict(counts), unknown=frozenset(unknown))


DEFAULT_NORMALIZER = TypeNormalizer()


def normalize_type(raw_type: object) -> CanonicalType:
    """Normalize with the built-in alias table."""
    return DEFAULT_NORMALIZER.normalize(raw_type)


def mapping_stats(raw_types: Iterable[object]) -> TypeStats:
    return DEFAULT_NORMALIZER.mapping_stats(raw_types)
