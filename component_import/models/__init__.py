"""Domain models for the component import pipeline.

This package contains the value types passed between the column detector,
type normalizer, allocator and committer.
"""

from .component import (
    CanonicalType,
    ColumnMapping,
    ComponentGroup,
    ComponentUpdate,
    ExistingInstances,
    InstanceAllocation,
    NormalizedRow,
    RawRow,
    format_display_id,
)
from .config_models import DatabaseConfig, DuplicatePolicy, ImportConfig, ImportOptions
from .error_record import ErrorRecord
from .import_run import CommitResult, ImportRun, PreviewResult, RunProgress, RunStatus
from .milestone import MilestoneDefinition, MilestoneTemplateDefinition, TemplateIds, TemplateVariant

__all__ = [
    # Configuration models
    "DatabaseConfig",
    "DuplicatePolicy",
    "ImportConfig",
    "ImportOptions",
    # Component models
    "CanonicalType",
    "ColumnMapping",
    "ComponentGroup",
    "ComponentUpdate",
    "ExistingInstances",
    "InstanceAllocation",
    "NormalizedRow",
    "RawRow",
    "format_display_id",
    # Run tracking
    "CommitResult",
    "ErrorRecord",
    "ImportRun",
    "PreviewResult",
    "RunProgress",
    "RunStatus",
    # Milestone templates
    "MilestoneDefinition",
    "MilestoneTemplateDefinition",
    "TemplateIds",
    "TemplateVariant",
]
