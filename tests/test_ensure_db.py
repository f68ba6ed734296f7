"""Tests for the database bootstrap script helpers."""

import pytest

from notes_ingest.scripts import ensure_db


def test_normalize_strips_driver_and_quotes() -> None:
    url = "'postgresql+psycopg://notes:secret@db:5432/notes'"
    assert ensure_db.normalize_to_psycopg(url) == "postgresql://notes:secret@db:5432/notes"


@pytest.mark.parametrize("url", ["", "mysql://db/notes", "sqlite:///notes.db"])
def test_normalize_rejects_other_databases(url: str) -> None:
    with pytest.raises(ValueError):
        ensure_db.normalize_to_psycopg(url)


def test_admin_url_targets_maintenance_database() -> None:
    admin, target = ensure_db._split_db_url("postgresql+psycopg://u:p@host/notes")
    assert admin == "postgresql://u:p@host/postgres"
    assert target == "notes"


def test_sqlite_creates_tables_locally(mocker) -> None:
    mocker.patch.object(ensure_db.settings, "database_url", "sqlite:///./notes.db")
    mocker.patch.object(ensure_db.settings, "use_testing_database", False)
    create = mocker.patch.object(ensure_db, "create_tables")
    drop = mocker.patch.object(ensure_db, "drop_tables")
    mocker.patch("sys.argv", ["ensure_db", "--drop-tables"])

    ensure_db.main()

    drop.assert_called_once_with()
    create.assert_called_once_with()
