from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

"""Config dataclasses for the component import tool.

These are filled by component_import.config.loader
and passed down to the pipeline as plain immutable values.
"""

__all__ = [
    "DEFAULT_CHUNK_SIZE",
    "DEFAULT_CHUNK_TIMEOUT_SECONDS",
    "DatabaseConfig",
    "DuplicatePolicy",
    "ImportConfig",
    "ImportOptions",
]

DEFAULT_CHUNK_SIZE = 200
DEFAULT_CHUNK_TIMEOUT_SECONDS = 30.0


class DuplicatePolicy(str, Enum):
    """How a run treats (drawing, business id) pairs that already have instances.

    - APPEND: always create the requested quantity after the current maximum
    - SKIP_EXISTING: requested quantity is the target total; satisfied pairs are untouched
    - UPDATE_EXISTING: like SKIP_EXISTING, and refresh descriptive fields of existing instances
    """
    APPEND = "append"
    SKIP_EXISTING = "skip_existing"
    UPDATE_EXISTING = "update_existing"


@dataclass(frozen=True)
class DatabaseConfig:
    """Database connection configuration.

    Used as fallback when environment variables are not set.
    Environment variables take precedence over these values.
    """
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    dsn: str | None = None


@dataclass(frozen=True)
class ImportOptions:
    """Per-run knobs for the committer."""
    chunk_size: int = DEFAULT_CHUNK_SIZE
    chunk_timeout_seconds: float | None = DEFAULT_CHUNK_TIMEOUT_SECONDS
    duplicate_policy: DuplicatePolicy = DuplicatePolicy.APPEND

    def __post_init__(self) -> None:
        if self.chunk_size < 1:
            raise ValueError(f"chunk_size must be positive, got {self.chunk_size}")
        if self.chunk_timeout_seconds is not None and self.chunk_timeout_seconds <= 0:
            raise ValueError(
                f"chunk_timeout_seconds must be positive, got {self.chunk_timeout_seconds}"
            )


@dataclass(frozen=True)
class ImportConfig:
    """Root configuration object loaded from config/import.yml."""
    options: ImportOptions
    database: DatabaseConfig
    type_aliases: dict[str, str] = field(default_factory=dict)  # raw text -> canonical name
    project_type_aliases: dict[str, dict[str, str]] = field(default_factory=dict)
    error_log_dir: str = "logs"

    def aliases_for(self, project_id: str | None) -> dict[str, str]:
        """Global aliases overlaid with the project's own (project wins)."""
        merged = dict(self.type_aliases)
        if project_id is not None:
            merged.update(self.project_type_aliases.get(project_id, {}))
        return merged
