from __future__ import annotations

import inspect

import pytest

from component_import.db import repository
from component_import.models.component import format_display_id

"""Display label contract: bare id for a single instance, "<id> (<n> of <total>)" otherwise."""


@pytest.mark.parametrize(
    "business_id,n,total,expected",
    [
        ("ABC", 1, 1, "ABC"),
        ("ABC", 1, 2, "ABC (1 of 2)"),
        ("ABC", 12, 12, "ABC (12 of 12)"),
        ("3/4-GV-001", 2, 3, "3/4-GV-001 (2 of 3)"),
    ],
)
def test_display_id(business_id, n, total, expected):
    assert format_display_id(business_id, n, total) == expected


def test_sql_relabel_mirrors_python_format():
    # the relabel UPDATE builds the same label in SQL
    source = inspect.getsource(repository.PostgresComponentStore.relabel_instances)
    assert "WHEN %(total)s = 1 THEN component_id" in source
    assert "' (' || instance_number || ' of ' || %(total)s || ')'" in source
