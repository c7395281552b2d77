from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path

import pytest

import component_import.cli.__main__ as cli
from component_import.cli.__main__ import main as cli_main
from component_import.db.repository import StorageError, StorageUnavailableError

"""Exit code contract: 0 completed, 2 partial / failed chunks, 1 fatal."""


def test_exit_code_constants():
    assert (cli.EXIT_SUCCESS_ALL, cli.EXIT_PARTIAL_FAILURE, cli.EXIT_FATAL) == (0, 2, 1)


@pytest.fixture()
def takeoff(temp_workdir: Path) -> Path:
    path = temp_workdir / "data" / "takeoff.csv"
    path.write_text("DWG,TAG,QTY\nP-1,A,1\nP-1,B,1\n", encoding="utf-8")
    return path


@pytest.fixture()
def db(monkeypatch, memory_store):
    @contextmanager
    def fake_connection(cfg):
        yield object()

    monkeypatch.setattr(cli, "_db_connection", fake_connection)
    monkeypatch.setattr(cli, "PostgresComponentStore", lambda conn: memory_store)
    return memory_store


def test_exit_code_all_success(takeoff: Path, db):
    assert cli_main(["--file", str(takeoff), "--project", "P1"]) == 0


def test_exit_code_partial(takeoff: Path, db):
    db.fail("insert_components", StorageError("check violation"), call=2)
    assert cli_main(["--file", str(takeoff), "--project", "P1", "--chunk-size", "1"]) == 2


def test_exit_code_every_chunk_failed(takeoff: Path, db):
    db.fail("insert_components", StorageError("check violation"), call=1)
    assert cli_main(["--file", str(takeoff), "--project", "P1"]) == 2


def test_exit_code_fatal_storage(takeoff: Path, db):
    db.fail("find_drawings", StorageUnavailableError("connection reset"))
    assert cli_main(["--file", str(takeoff), "--project", "P1"]) == 1


def test_exit_code_fatal_startup(temp_workdir: Path, capsys):
    (temp_workdir / "config" / "import.yml").write_text("unknown_key: 1\n", encoding="utf-8")
    assert cli_main(["--file", "whatever.csv", "--preview"]) == 1
    assert "ERROR config:" in capsys.readouterr().out
