from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

"""Milestone template models.

Exactly two template variants exist; a template is an ordered list of
weighted milestones.
"""

__all__ = [
    "TemplateVariant",
    "MilestoneDefinition",
    "MilestoneTemplateDefinition",
    "TemplateIds",
]


class TemplateVariant(Enum):
    FULL = "full"  # linear / footage-like components (pipe, spools)
    REDUCED = "reduced"  # everything else


@dataclass(frozen=True)
class MilestoneDefinition:
    name: str
    weight: float
    order: int

    def to_dict(self) -> dict[str, object]:
        return {"name": self.name, "weight": self.weight, "order": self.order}

    @staticmethod
    def from_dict(data: dict[str, object]) -> MilestoneDefinition:
        return MilestoneDefinition(
            name=str(data["name"]),
            weight=float(data.get("weight", 0) or 0),  # type: ignore[arg-type]
            order=int(data["order"]),  # type: ignore[arg-type]
        )


@dataclass(frozen=True)
class MilestoneTemplateDefinition:
    """A template as it is created for a project (name is the stable marker)."""
    variant: TemplateVariant
    name: str
    description: str
    milestones: tuple[MilestoneDefinition, ...]
    is_default: bool = False

    def __post_init__(self) -> None:
        total = sum(m.weight for m in self.milestones)
        if abs(total - 100) > 0.01:
            raise ValueError(f"template '{self.name}' weights sum to {total}, not 100")
        orders = [m.order for m in self.milestones]
        if orders != sorted(set(orders)):
            raise ValueError(f"template '{self.name}' milestone order must be strictly increasing")

    def milestones_json(self) -> list[dict[str, object]]:
        return [m.to_dict() for m in self.milestones]


@dataclass(frozen=True)
class TemplateIds:
    """Persisted template ids of one project, plus the stored milestone lists."""
    full: object
    reduced: object
    full_milestones: tuple[MilestoneDefinition, ...] = ()
    reduced_milestones: tuple[MilestoneDefinition, ...] = ()

    def id_for(self, variant: TemplateVariant) -> object:
        return self.full if variant is TemplateVariant.FULL else self.reduced

    def milestones_for(self, variant: TemplateVariant) -> tuple[MilestoneDefinition, ...]:
        return self.full_milestones if variant is TemplateVariant.FULL else self.reduced_milestones
