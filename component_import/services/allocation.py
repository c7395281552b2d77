from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from typing import TypeVar

from ..models.component import (
    ComponentGroup,
    ComponentKey,
    ComponentUpdate,
    ExistingInstances,
    InstanceAllocation,
    NormalizedRow,
)
from ..models.config_models import DuplicatePolicy

"""Row grouping and instance allocation.

Rows naming the same (drawing, business id) pair are merged BEFORE they are
expanded, so two rows with quantities 2 and 3 give instances 1..5 and never
two colliding runs of numbers. Numbering continues after the highest instance
already persisted for the pair.
"""

logger = logging.getLogger(__name__)

__all__ = [
    "AllocationPlan",
    "allocate_instances",
    "chunked",
    "group_rows",
]

_NO_INSTANCES = ExistingInstances()

T = TypeVar("T")


def group_rows(rows: Iterable[NormalizedRow]) -> list[ComponentGroup]:
    """Merge rows per key, keeping first-seen key order.

    Quantities are summed; descriptive attributes come from the last row.
    """
    merged: dict[ComponentKey, tuple[list[int], int, NormalizedRow]] = {}
    for row in rows:
        entry = merged.get(row.key)
        if entry is None:
            merged[row.key] = ([row.row_number], row.quantity, row)
        else:
            row_numbers, quantity, _ = entry
            row_numbers.append(row.row_number)
            merged[row.key] = (row_numbers, quantity + row.quantity, row)
    return [
        ComponentGroup(
            drawing=drawing,
            business_id=business_id,
            rows=tuple(row_numbers),
            merged_quantity=quantity,
            attributes=last,
        )
        for (drawing, business_id), (row_numbers, quantity, last) in merged.items()
    ]


@dataclass(frozen=True)
class AllocationPlan:
    groups: list[ComponentGroup]
    records: list[InstanceAllocation] = field(default_factory=list)
    updates: list[ComponentUpdate] = field(default_factory=list)
    skipped_instances: int = 0
    skipped_groups: list[ComponentGroup] = field(default_factory=list)

    @property
    def rows_skipped(self) -> int:
        return sum(len(g.rows) for g in self.skipped_groups)

    @property
    def keys_to_create(self) -> list[ComponentKey]:
        seen: dict[ComponentKey, None] = {}
        for record in self.records:
            seen.setdefault(record.key, None)
        return list(seen)


def allocate_instances(
    groups: Sequence[ComponentGroup],
    existing: Mapping[ComponentKey, ExistingInstances] | None = None,
    policy: DuplicatePolicy = DuplicatePolicy.APPEND,
) -> AllocationPlan:
    """Expand groups into numbered instance records.

    Under APPEND every group creates merged_quantity new instances. Under
    SKIP_EXISTING / UPDATE_EXISTING the merged quantity is the wanted total:
    only the shortfall against the persisted count is created, and a group
    that is already satisfied is skipped.
    """
    existing = existing or {}
    policy = DuplicatePolicy(policy)
    records: list[InstanceAllocation] = []
    updates: list[ComponentUpdate] = []
    skipped: list[ComponentGroup] = []
    skipped_instances = 0

    for group in groups:
        current = existing.get(group.key, _NO_INSTANCES)
        if policy is DuplicatePolicy.APPEND:
            to_create = group.merged_quantity
        else:
            already = min(current.count, group.merged_quantity)
            skipped_instances += already
            to_create = group.merged_quantity - already
            if policy is DuplicatePolicy.UPDATE_EXISTING and current.count > 0:
                updates.append(ComponentUpdate(
                    drawing=group.drawing,
                    business_id=group.business_id,
                    attributes=group.attributes,
                    existing_count=current.count,
                ))
            if to_create == 0:
                skipped.append(group)
                continue

        start = current.max_instance + 1
        total = start + to_create - 1
        for n in range(start, total + 1):
            records.append(InstanceAllocation(
                drawing=group.drawing,
                business_id=group.business_id,
                instance_number=n,
                total_instances=total,
                canonical_type=group.attributes.canonical_type,
                attributes=group.attributes,
                source_rows=group.rows,
            ))

    logger.debug(
        "allocated groups=%d records=%d updates=%d skipped_groups=%d policy=%s",
        len(groups), len(records), len(updates), len(skipped), policy.value,
    )
    return AllocationPlan(
        groups=list(groups),
        records=records,
        updates=updates,
        skipped_instances=skipped_instances,
        skipped_groups=skipped,
    )


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    """Consecutive slices of at most size items, in order."""
    if size < 1:
        raise ValueError(f"chunk size must be positive, got {size}")
    for start in range(0, len(items), size):
        yield items[start:start + size]
