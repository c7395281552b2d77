from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterable
from types import MappingProxyType
from typing import Any, Protocol

from ..models.component import CanonicalType
from ..models.milestone import (
    MilestoneDefinition,
    MilestoneTemplateDefinition,
    TemplateIds,
    TemplateVariant,
)

"""Milestone template resolution.

Two concerns are kept apart:

- resolve_variant(): canonical type -> TemplateVariant. Pure, total, constant time.
- TemplateResolver.ensure_templates(): persist both variants for a project on
  first use and return their ids. Creation is keyed by template name and
  guarded by the (project_id, name) unique constraint, so repeated or
  concurrent calls reuse the existing rows.
"""

logger = logging.getLogger(__name__)

__all__ = [
    "FULL_MILESTONE_SET",
    "REDUCED_MILESTONE_SET",
    "TEMPLATE_DEFINITIONS",
    "TemplateResolver",
    "TemplateStore",
    "assignment_counts",
    "resolve_variant",
]

FULL_MILESTONE_SET = MilestoneTemplateDefinition(
    variant=TemplateVariant.FULL,
    name="Full Milestone Set",
    description="For pipes and spools - comprehensive milestone tracking",
    milestones=(
        MilestoneDefinition("Receive", 5, 1),
        MilestoneDefinition("Erect", 30, 2),
        MilestoneDefinition("Connect", 30, 3),
        MilestoneDefinition("Support", 15, 4),
        MilestoneDefinition("Punch", 5, 5),
        MilestoneDefinition("Test", 10, 6),
        MilestoneDefinition("Restore", 5, 7),
    ),
)

REDUCED_MILESTONE_SET = MilestoneTemplateDefinition(
    variant=TemplateVariant.REDUCED,
    name="Reduced Milestone Set",
    description="For components - simplified milestone tracking",
    milestones=(
        MilestoneDefinition("Receive", 10, 1),
        MilestoneDefinition("Install", 60, 2),
        MilestoneDefinition("Punch", 10, 3),
        MilestoneDefinition("Test", 15, 4),
        MilestoneDefinition("Restore", 5, 5),
    ),
    is_default=True,
)

TEMPLATE_DEFINITIONS = MappingProxyType({
    TemplateVariant.FULL: FULL_MILESTONE_SET,
    TemplateVariant.REDUCED: REDUCED_MILESTONE_SET,
})

_VARIANT_BY_TYPE = MappingProxyType({
    t: (TemplateVariant.FULL if t in (CanonicalType.PIPE, CanonicalType.SPOOL) else TemplateVariant.REDUCED)
    for t in CanonicalType
})


def resolve_variant(canonical_type: CanonicalType) -> TemplateVariant:
    """Full Set for linear / footage types (PIPE, SPOOL), Reduced Set otherwise."""
    return _VARIANT_BY_TYPE[CanonicalType(canonical_type)]


def assignment_counts(types: Iterable[CanonicalType]) -> dict[str, int]:
    """How many items land on each template (preview helper)."""
    counts = Counter(resolve_variant(t) for t in types)
    return {
        "fullMilestone": counts.get(TemplateVariant.FULL, 0),
        "reducedMilestone": counts.get(TemplateVariant.REDUCED, 0),
    }


class TemplateStore(Protocol):
    def ensure_template(
        self, cur: Any, project_id: str, definition: MilestoneTemplateDefinition
    ) -> tuple[Any, tuple[MilestoneDefinition, ...]]: ...


class TemplateResolver:
    """Per-project cache in front of the idempotent ensure-or-create.

    The cache only mirrors what the database holds; callers must forget() a
    project when the transaction that created its templates is rolled back.
    """

    def __init__(self, store: TemplateStore) -> None:
        self.store = store
        self._cache: dict[str, TemplateIds] = {}

    def ensure_templates(self, cur: Any, project_id: str) -> TemplateIds:
        cached = self._cache.get(project_id)
        if cached is not None:
            return cached
        full_id, full_milestones = self.store.ensure_template(cur, project_id, FULL_MILESTONE_SET)
        reduced_id, reduced_milestones = self.store.ensure_template(
            cur, project_id, REDUCED_MILESTONE_SET
        )
        ids = TemplateIds(
            full=full_id,
            reduced=reduced_id,
            full_milestones=full_milestones,
            reduced_milestones=reduced_milestones,
        )
        logger.debug("templates ready project=%s full=%s reduced=%s", project_id, full_id, reduced_id)
        self._cache[project_id] = ids
        return ids

    def forget(self, project_id: str) -> None:
        self._cache.pop(project_id, None)

    def is_cached(self, project_id: str) -> bool:
        return project_id in self._cache
