"""Tests for the boundary generation endpoints."""

from fastapi import status
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from notes_ingest.services.boundary_store import BoundaryStore
from notes_ingest.services.boundary_update import parse_feature_collection, stage_candidate, swap
from tests.factories import FRANCE, GERMANY, SPAIN, make_collection

GROWN_GERMANY = (GERMANY[0], GERMANY[1], (5.9, 47.3, 16.0, 55.0))


def _load(db: Session, countries) -> None:
    stage_candidate(db, parse_feature_collection(make_collection(countries)))
    swap(db, BoundaryStore())


def test_list_generations(client: TestClient, db_session: Session) -> None:
    _load(db_session, (GERMANY, FRANCE))
    stage_candidate(db_session, parse_feature_collection(make_collection()))

    r = client.get("/api/v1/boundaries/")

    assert r.status_code == status.HTTP_200_OK
    data = r.json()
    assert [g["role"] for g in data] == ["active", "candidate"]
    assert data[0]["epoch"] == 1
    assert data[0]["country_count"] == 2


def test_diff_requires_backup(client: TestClient, db_session: Session) -> None:
    _load(db_session, (GERMANY, FRANCE))
    r = client.get("/api/v1/boundaries/diff")
    assert r.status_code == status.HTTP_404_NOT_FOUND


def test_diff_between_backup_and_active(client: TestClient, db_session: Session) -> None:
    _load(db_session, (GERMANY, FRANCE))
    _load(db_session, (GROWN_GERMANY, FRANCE, SPAIN))

    r = client.get("/api/v1/boundaries/diff")

    assert r.status_code == status.HTTP_200_OK
    statuses = {entry["country_id"]: entry["status"] for entry in r.json()}
    assert statuses == {
        GERMANY[0]: "increased",
        FRANCE[0]: "unchanged",
        SPAIN[0]: "new",
    }

    r = client.get("/api/v1/boundaries/diff", params={"changed_only": "true"})
    assert {entry["country_id"] for entry in r.json()} == {GERMANY[0], SPAIN[0]}
