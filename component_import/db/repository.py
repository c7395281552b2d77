from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager
from importlib import resources
from typing import Any

import psycopg2
import psycopg2.errors
from psycopg2.extras import Json

from ..models.component import ComponentKey, ExistingInstances, InstanceAllocation, NormalizedRow
from ..models.import_run import ImportRun
from ..models.milestone import MilestoneDefinition, MilestoneTemplateDefinition
from .batch_insert import BatchInsertError, batch_insert

"""PostgreSQL storage for drawings, components, milestones and import runs.

Every data method takes the cursor of the caller's transaction as its first
argument; the store itself only owns the connection and the transaction
boundary (transaction()). Driver errors leave this module as StorageError
subclasses so the committer never has to know about psycopg2.
"""

logger = logging.getLogger(__name__)

__all__ = [
    "StorageError",
    "UniqueConflictError",
    "ChunkTimeoutError",
    "StorageUnavailableError",
    "classify_db_error",
    "PostgresComponentStore",
]


class StorageError(Exception):
    """Base class for storage-layer failures."""


class UniqueConflictError(StorageError):
    """A uniqueness constraint rejected the write (e.g. a concurrent run raced ahead)."""


class ChunkTimeoutError(StorageError):
    """The chunk did not finish within its time budget."""


class StorageUnavailableError(StorageError):
    """Connection lost / server unreachable. Fatal for the run."""


def classify_db_error(exc: BaseException) -> StorageError:
    """Map a psycopg2 (or wrapped BatchInsertError) exception to a StorageError."""
    original: BaseException = exc
    if isinstance(exc, BatchInsertError) and exc.__cause__ is not None:
        original = exc.__cause__
    message = str(original).strip() or type(original).__name__
    if isinstance(original, StorageError):
        return original
    if isinstance(original, psycopg2.errors.UniqueViolation):
        return UniqueConflictError(message)
    # QueryCanceled derives from OperationalError: test it first
    if isinstance(original, psycopg2.errors.QueryCanceled):
        return ChunkTimeoutError(message)
    if isinstance(original, (psycopg2.OperationalError, psycopg2.InterfaceError)):
        return StorageUnavailableError(message)
    return StorageError(message)


COMPONENT_COLUMNS = (
    "project_id",
    "drawing_id",
    "component_id",
    "type",
    "spec",
    "size",
    "description",
    "material",
    "area",
    "system",
    "test_package",
    "notes",
    "instance_number",
    "total_instances_on_drawing",
    "display_id",
    "milestone_template_id",
    "workflow_type",
    "status",
    "completion_percent",
)

MILESTONE_COLUMNS = ("component_id", "milestone_name", "milestone_order", "weight", "is_completed")


def _component_row(
    project_id: str, record: InstanceAllocation, drawing_id: Any, template_id: Any
) -> tuple[Any, ...]:
    a = record.attributes
    return (
        project_id,
        drawing_id,
        record.business_id,
        record.canonical_type.value,
        a.spec,
        a.size,
        a.description,
        a.material,
        a.area,
        a.system,
        a.test_package,
        a.comments,
        record.instance_number,
        record.total_instances,
        record.display_id,
        template_id,
        "MILESTONE_DISCRETE",
        "NOT_STARTED",
        0,
    )


class PostgresComponentStore:
    """Storage backed by a psycopg2 connection (autocommit off)."""

    def __init__(self, connection: Any, *, page_size: int = 1000) -> None:
        self.connection = connection
        self.page_size = page_size

    @contextmanager
    def transaction(self, timeout_seconds: float | None = None) -> Iterator[Any]:
        """One atomic unit of work: COMMIT on success, ROLLBACK on any error.

        timeout_seconds becomes a transaction-local statement_timeout.
        """
        conn = self.connection
        try:
            cur = conn.cursor()
        except psycopg2.Error as e:
            raise classify_db_error(e) from e
        try:
            if timeout_seconds:
                cur.execute(
                    "SET LOCAL statement_timeout = %s", (max(int(timeout_seconds * 1000), 1),)
                )
            yield cur
            conn.commit()
        except BaseException as e:
            try:
                conn.rollback()
            except psycopg2.Error as rollback_e:
                logger.warning("rollback failed: %s", rollback_e)
            if isinstance(e, (psycopg2.Error, BatchInsertError)):
                raise classify_db_error(e) from e
            raise
        finally:
            try:
                cur.close()
            except psycopg2.Error:  # pragma: no cover
                logger.debug("cursor close failed", exc_info=True)

    # -- schema -----------------------------------------------------------

    def apply_schema(self, cur: Any) -> None:
        ddl = resources.files("component_import.db").joinpath("schema.sql").read_text(encoding="utf-8")
        cur.execute(ddl)

    # -- drawings ---------------------------------------------------------

    def find_drawings(self, cur: Any, project_id: str, numbers: Iterable[str]) -> dict[str, Any]:
        numbers = list(numbers)
        if not numbers:
            return {}
        cur.execute(
            "SELECT number, id FROM drawing WHERE project_id = %s AND number = ANY(%s)",
            (project_id, numbers),
        )
        return {number: drawing_id for number, drawing_id in cur.fetchall()}

    def create_drawings(self, cur: Any, project_id: str, numbers: Iterable[str]) -> int:
        """Insert drawings that do not exist yet; returns how many were created."""
        rows = [(project_id, n, f"Drawing {n}") for n in numbers]
        result = batch_insert(
            cur,
            "drawing",
            ("project_id", "number", "title"),
            rows,
            returning=("id",),
            on_conflict="(project_id, number) DO NOTHING",
            page_size=self.page_size,
        )
        return result.inserted_rows

    # -- instances --------------------------------------------------------

    def fetch_instance_stats(
        self, cur: Any, project_id: str, keys: Iterable[ComponentKey]
    ) -> dict[ComponentKey, ExistingInstances]:
        keys = list(keys)
        if not keys:
            return {}
        drawings = sorted({k[0] for k in keys})
        business_ids = sorted({k[1] for k in keys})
        cur.execute(
            """
            SELECT d.number, c.component_id, COUNT(*), MAX(c.instance_number)
            FROM component c
            JOIN drawing d ON d.id = c.drawing_id
            WHERE c.project_id = %s
              AND d.number = ANY(%s)
              AND c.component_id = ANY(%s)
            GROUP BY d.number, c.component_id
            """,
            (project_id, drawings, business_ids),
        )
        wanted = set(keys)
        stats: dict[ComponentKey, ExistingInstances] = {}
        for number, business_id, count, max_instance in cur.fetchall():
            key = (number, business_id)
            if key in wanted:
                stats[key] = ExistingInstances(count=int(count), max_instance=int(max_instance or 0))
        return stats

    def insert_components(
        self,
        cur: Any,
        project_id: str,
        items: Sequence[tuple[InstanceAllocation, Any, Any]],
    ) -> list[Any]:
        """Insert (record, drawing_id, template_id) items; ids returned in input order."""
        rows = [_component_row(project_id, rec, drawing_id, tpl) for rec, drawing_id, tpl in items]
        result = batch_insert(
            cur,
            "component",
            COMPONENT_COLUMNS,
            rows,
            returning=("id", "drawing_id", "component_id", "instance_number"),
            page_size=self.page_size,
        )
        by_key = {
            (drawing_id, business_id, instance): component_pk
            for component_pk, drawing_id, business_id, instance in (result.returned_values or [])
        }
        ids = []
        for rec, drawing_id, _ in items:
            key = (drawing_id, rec.business_id, rec.instance_number)
            if key not in by_key:
                raise StorageError(f"component insert did not return a row for {key}")
            ids.append(by_key[key])
        return ids

    def insert_milestones(
        self, cur: Any, items: Sequence[tuple[Any, MilestoneDefinition]]
    ) -> int:
        rows = [(component_pk, m.name, m.order, m.weight, False) for component_pk, m in items]
        return batch_insert(
            cur, "component_milestone", MILESTONE_COLUMNS, rows, page_size=self.page_size
        ).inserted_rows

    def relabel_instances(self, cur: Any, drawing_id: Any, business_id: str, total: int) -> int:
        """Rewrite total / display label of every instance of a pair.

        The label format mirrors models.component.format_display_id.
        """
        cur.execute(
            """
            UPDATE component
               SET total_instances_on_drawing = %(total)s,
                   display_id = CASE WHEN %(total)s = 1 THEN component_id
                                     ELSE component_id || ' (' || instance_number || ' of ' || %(total)s || ')'
                                END,
                   updated_at = now()
             WHERE drawing_id = %(drawing_id)s
               AND component_id = %(business_id)s
               AND total_instances_on_drawing <> %(total)s
            """,
            {"total": total, "drawing_id": drawing_id, "business_id": business_id},
        )
        return cur.rowcount

    def update_component_attributes(
        self, cur: Any, drawing_id: Any, business_id: str, attributes: NormalizedRow
    ) -> int:
        """Refresh descriptive fields; type / template / progress stay untouched."""
        cur.execute(
            """
            UPDATE component
               SET spec = %s, size = %s, description = %s, material = %s,
                   area = %s, system = %s, test_package = %s, notes = %s,
                   updated_at = now()
             WHERE drawing_id = %s AND component_id = %s
            """,
            (
                attributes.spec,
                attributes.size,
                attributes.description,
                attributes.material,
                attributes.area,
                attributes.system,
                attributes.test_package,
                attributes.comments,
                drawing_id,
                business_id,
            ),
        )
        return cur.rowcount

    # -- templates --------------------------------------------------------

    def ensure_template(
        self, cur: Any, project_id: str, definition: MilestoneTemplateDefinition
    ) -> tuple[Any, tuple[MilestoneDefinition, ...]]:
        """Create the template once per project (keyed by name) and read it back."""
        batch_insert(
            cur,
            "milestone_template",
            ("project_id", "name", "description", "milestones", "is_default"),
            [(
                project_id,
                definition.name,
                definition.description,
                Json(definition.milestones_json()),
                definition.is_default,
            )],
            on_conflict="(project_id, name) DO NOTHING",
        )
        cur.execute(
            "SELECT id, milestones FROM milestone_template WHERE project_id = %s AND name = %s",
            (project_id, definition.name),
        )
        row = cur.fetchone()
        if row is None:
            raise StorageError(f"template '{definition.name}' missing after insert")
        template_id, stored = row
        milestones = tuple(
            sorted((MilestoneDefinition.from_dict(m) for m in (stored or [])), key=lambda m: m.order)
        )
        return template_id, milestones or definition.milestones

    # -- import runs ------------------------------------------------------

    def create_run(self, cur: Any, run: ImportRun) -> None:
        cur.execute(
            """
            INSERT INTO import_run (id, project_id, filename, status, total_rows, total_instances,
                                    processed, total, started_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
            """,
            (
                run.run_id,
                run.project_id,
                run.filename,
                run.status.value,
                run.total_rows,
                run.total_instances,
                run.processed,
                run.total,
                run.started_at,
            ),
        )

    def update_run(self, cur: Any, run: ImportRun) -> None:
        errors = [e.to_dict() for e in run.errors]
        cur.execute(
            """
            UPDATE import_run
               SET status = %s, total_instances = %s, processed = GREATEST(processed, %s),
                   total = %s, error_count = %s, errors = %s, completed_at = %s
             WHERE id = %s
            """,
            (
                run.status.value,
                run.total_instances,
                run.processed,
                run.total,
                len(run.errors),
                Json(errors),
                run.completed_at,
                run.run_id,
            ),
        )
