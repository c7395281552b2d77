from .columns import MissingColumnsError, detect_columns, require_columns
from .types import TypeNormalizer, TypeStats, mapping_stats, normalize_type

__all__ = [
    "MissingColumnsError",
    "TypeNormalizer",
    "TypeStats",
    "detect_columns",
    "mapping_stats",
    "normalize_type",
    "require_columns",
]
