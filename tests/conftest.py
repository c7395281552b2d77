# Shared pytest fixtures
from __future__ import annotations

import copy
import itertools
import tempfile
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import pytest

from component_import.db.repository import UniqueConflictError
from component_import.logging.init import reset_logging
from component_import.models.component import ExistingInstances, RawRow, format_display_id


class MemoryCursor:
    """Stand-in for a transaction handle; only identifies the open transaction."""

    def __init__(self, txid: int) -> None:
        self.txid = txid


class InMemoryComponentStore:
    """Storage double with the same method surface as PostgresComponentStore.

    Transactions snapshot the whole state and restore it on any exception,
    and (drawing, component_id, instance_number) is enforced like the real
    unique constraint. Faults / hooks let tests interfere with a given call
    of an operation (1-based call number).
    """

    _STATE = ("drawings", "components", "milestones", "templates", "runs")

    def __init__(self) -> None:
        self.drawings: dict[tuple[str, str], int] = {}
        self.components: dict[int, dict[str, Any]] = {}
        self.milestones: list[tuple[int, str, int, float]] = []
        self.templates: dict[tuple[str, str], tuple[int, tuple[Any, ...]]] = {}
        self.runs: dict[str, dict[str, Any]] = {}
        self._ids = itertools.count(1)
        self._tx = itertools.count(1)
        self.calls: dict[str, int] = {}
        self.faults: dict[tuple[str, int], BaseException] = {}
        self.hooks: dict[tuple[str, int], Callable[[], None]] = {}
        self.commits = 0
        self.rollbacks = 0
        self.timeouts: list[float | None] = []
        self.in_transaction = False
        self._external: list[tuple[str, str, int, int, dict[str, Any]]] = []

    # -- test helpers -------------------------------------------------------

    def fail(self, operation: str, exc: BaseException, call: int = 1) -> None:
        self.faults[(operation, call)] = exc

    def before(self, operation: str, fn: Callable[[], None], call: int = 1) -> None:
        self.hooks[(operation, call)] = fn

    def _enter(self, operation: str) -> None:
        n = self.calls.get(operation, 0) + 1
        self.calls[operation] = n
        hook = self.hooks.pop((operation, n), None)
        if hook is not None:
            hook()
        exc = self.faults.pop((operation, n), None)
        if exc is not None:
            raise exc

    def drawing_id(self, project_id: str, number: str) -> int:
        key = (project_id, number)
        if key not in self.drawings:
            self.drawings[key] = next(self._ids)
        return self.drawings[key]

    def seed_component(
        self,
        project_id: str,
        drawing: str,
        business_id: str,
        instance_number: int,
        total: int,
        **attributes: Any,
    ) -> int:
        """Write a component directly, bypassing transactions (e.g. a concurrent run).

        Rows written while a transaction is open survive its rollback.
        """
        drawing_id = self.drawing_id(project_id, drawing)
        pk = next(self._ids)
        row = {
            "project_id": project_id,
            "drawing_id": drawing_id,
            "component_id": business_id,
            "type": attributes.pop("type", "MISC"),
            "instance_number": instance_number,
            "total_instances_on_drawing": total,
            "display_id": format_display_id(business_id, instance_number, total),
            "milestone_template_id": attributes.pop("milestone_template_id", None),
            **attributes,
        }
        self.components[pk] = row
        if self.in_transaction:
            self._external.append((project_id, drawing, drawing_id, pk, row))
        return pk

    def instances(self, project_id: str, drawing: str, business_id: str) -> list[dict[str, Any]]:
        drawing_id = self.drawings.get((project_id, drawing))
        return sorted(
            (
                c for c in self.components.values()
                if c["drawing_id"] == drawing_id and c["component_id"] == business_id
            ),
            key=lambda c: c["instance_number"],
        )

    def display_ids(self, project_id: str, drawing: str, business_id: str) -> list[str]:
        return [c["display_id"] for c in self.instances(project_id, drawing, business_id)]

    def milestone_names(self, component_pk: int) -> list[str]:
        return [name for pk, name, _, _ in sorted(self.milestones, key=lambda m: (m[0], m[2])) if pk == component_pk]

    # -- transaction ----------------------------------------------------------

    @contextmanager
    def transaction(self, timeout_seconds: float | None = None) -> Iterator[MemoryCursor]:
        self._enter("transaction")
        self.timeouts.append(timeout_seconds)
        snapshot = {name: copy.deepcopy(getattr(self, name)) for name in self._STATE}
        self.in_transaction = True
        try:
            yield MemoryCursor(next(self._tx))
        except BaseException:
            for name, value in snapshot.items():
                setattr(self, name, value)
            for project_id, drawing, drawing_id, pk, row in self._external:
                self.drawings[(project_id, drawing)] = drawing_id
                self.components[pk] = row
            self.rollbacks += 1
            raise
        else:
            self.commits += 1
        finally:
            self.in_transaction = False
            self._external = []

    # -- storage surface ----------------------------------------------------

    def apply_schema(self, cur: MemoryCursor) -> None:
        self._enter("apply_schema")

    def find_drawings(self, cur: MemoryCursor, project_id: str, numbers) -> dict[str, int]:
        self._enter("find_drawings")
        return {n: self.drawings[(project_id, n)] for n in numbers if (project_id, n) in self.drawings}

    def create_drawings(self, cur: MemoryCursor, project_id: str, numbers) -> int:
        self._enter("create_drawings")
        created = 0
        for n in numbers:
            if (project_id, n) not in self.drawings:
                self.drawings[(project_id, n)] = next(self._ids)
                created += 1
        return created

    def fetch_instance_stats(self, cur: MemoryCursor, project_id: str, keys) -> dict[tuple[str, str], ExistingInstances]:
        self._enter("fetch_instance_stats")
        stats: dict[tuple[str, str], ExistingInstances] = {}
        for drawing, business_id in keys:
            rows = self.instances(project_id, drawing, business_id)
            if rows:
                stats[(drawing, business_id)] = ExistingInstances(
                    count=len(rows), max_instance=max(r["instance_number"] for r in rows)
                )
        return stats

    def insert_components(self, cur: MemoryCursor, project_id: str, items) -> list[int]:
        self._enter("insert_components")
        taken = {
            (c["drawing_id"], c["component_id"], c["instance_number"]) for c in self.components.values()
        }
        ids = []
        for record, drawing_id, template_id in items:
            key = (drawing_id, record.business_id, record.instance_number)
            if key in taken:
                raise UniqueConflictError(f"duplicate key value violates unique constraint: {key}")
            taken.add(key)
            pk = next(self._ids)
            a = record.attributes
            self.components[pk] = {
                "project_id": project_id,
                "drawing_id": drawing_id,
                "component_id": record.business_id,
                "type": record.canonical_type.value,
                "instance_number": record.instance_number,
                "total_instances_on_drawing": record.total_instances,
                "display_id": record.display_id,
                "milestone_template_id": template_id,
                "description": a.description,
                "spec": a.spec,
                "size": a.size,
                "material": a.material,
                "area": a.area,
                "system": a.system,
                "test_package": a.test_package,
                "notes": a.comments,
            }
            ids.append(pk)
        return ids

    def insert_milestones(self, cur: MemoryCursor, items) -> int:
        self._enter("insert_milestones")
        seen = {(pk, name) for pk, name, _, _ in self.milestones}
        for pk, milestone in items:
            if (pk, milestone.name) in seen:
                raise UniqueConflictError(f"duplicate milestone {milestone.name} for {pk}")
            seen.add((pk, milestone.name))
            self.milestones.append((pk, milestone.name, milestone.order, milestone.weight))
        return len(items)

    def relabel_instances(self, cur: MemoryCursor, drawing_id: int, business_id: str, total: int) -> int:
        self._enter("relabel_instances")
        changed = 0
        for c in self.components.values():
            if c["drawing_id"] == drawing_id and c["component_id"] == business_id:
                if c["total_instances_on_drawing"] != total:
                    c["total_instances_on_drawing"] = total
                    c["display_id"] = format_display_id(business_id, c["instance_number"], total)
                    changed += 1
        return changed

    def update_component_attributes(self, cur: MemoryCursor, drawing_id: int, business_id: str, attributes) -> int:
        self._enter("update_component_attributes")
        changed = 0
        for c in self.components.values():
            if c["drawing_id"] == drawing_id and c["component_id"] == business_id:
                c.update(
                    description=attributes.description,
                    spec=attributes.spec,
                    size=attributes.size,
                    material=attributes.material,
                    area=attributes.area,
                    system=attributes.system,
                    test_package=attributes.test_package,
                    notes=attributes.comments,
                )
                changed += 1
        return changed

    def ensure_template(self, cur: MemoryCursor, project_id: str, definition) -> tuple[int, tuple[Any, ...]]:
        self._enter("ensure_template")
        key = (project_id, definition.name)
        if key not in self.templates:
            self.templates[key] = (next(self._ids), definition.milestones)
        return self.templates[key]

    def create_run(self, cur: MemoryCursor, run) -> None:
        self._enter("create_run")
        self.runs[run.run_id] = {"status": run.status.value, "processed": run.processed, "total": run.total}

    def update_run(self, cur: MemoryCursor, run) -> None:
        self._enter("update_run")
        row = self.runs.setdefault(run.run_id, {})
        row.update(
            status=run.status.value,
            processed=max(row.get("processed", 0), run.processed),
            total=run.total,
            error_count=len(run.errors),
        )


@pytest.fixture()
def memory_store() -> InMemoryComponentStore:
    return InMemoryComponentStore()


@pytest.fixture()
def make_rows() -> Callable[..., tuple[list[str], list[RawRow]]]:
    """Build (headers, RawRows) from dicts; row numbers start at 2 like a sheet."""
    def _make(records: list[dict[str, Any]], headers: list[str] | None = None):
        if headers is None:
            headers = list(dict.fromkeys(k for r in records for k in r))
        rows = [
            RawRow(row_number=i + 2, values={h: r.get(h) for h in headers})
            for i, r in enumerate(records)
        ]
        return headers, rows
    return _make


@pytest.fixture()
def temp_workdir(monkeypatch) -> Iterator[Path]:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "data").mkdir()
        (p / "logs").mkdir()
        monkeypatch.chdir(p)
        yield p


@pytest.fixture()
def sample_config_yaml() -> str:
    return """chunk_size: 2
chunk_timeout_seconds: 10
duplicate_policy: append
error_log_dir: logs
type_aliases:
  WELDOLET: fitting
project_type_aliases:
  P2:
    WIDGET: valve
database:
  host: localhost
  port: 5432
  user: appuser
  password: secret
  database: appdb
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "import.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


@pytest.fixture(autouse=True)
def _fresh_logging() -> Iterator[None]:
    reset_logging()
    yield
    reset_logging()
