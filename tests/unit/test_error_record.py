from __future__ import annotations

import json
from datetime import datetime

from component_import.models.error_record import FILE_LEVEL_ROW, ErrorRecord


def test_create_stamps_utc_timestamp():
    rec = ErrorRecord.create("takeoff.xlsx", 12, "INVALID_QUANTITY", "quantity must be positive")
    assert rec.timestamp.endswith("Z")
    datetime.fromisoformat(rec.timestamp.replace("Z", "+00:00"))


def test_json_line_has_exactly_the_record_fields():
    rec = ErrorRecord.create("täke.xlsx", FILE_LEVEL_ROW, "CHUNK_TIMEOUT", "chunk 3 rolled back")
    line = rec.to_json_line()
    assert "\n" not in line
    data = json.loads(line)
    assert data == rec.to_dict()
    assert set(data) == {"timestamp", "file", "row", "error_type", "message"}
    assert data["row"] == -1
    # non-ascii file names are written as-is
    assert "täke.xlsx" in line


def test_records_are_immutable():
    rec = ErrorRecord.create("f", 1, "X", "m")
    try:
        rec.row = 2  # type: ignore[misc]
    except AttributeError:
        pass
    else:  # pragma: no cover
        raise AssertionError("ErrorRecord should be frozen")
