# tests/conftest.py
from __future__ import annotations

import json
import os
from collections.abc import Callable, Generator, Iterator
from pathlib import Path

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("PYTEST_RUNNING", "true")

from notes_ingest.db.session import Base
from notes_ingest.db.session import get_db as app_get_session
from notes_ingest.main import app as fastapi_app
from notes_ingest.models import Note, NoteComment
from notes_ingest.services.boundary_store import BoundarySet, reset_boundary_store
from tests.factories import BASE_TIME, BERLIN, GERMANY, make_boundary_set, make_collection

TEST_DB_URL = "sqlite://"


@pytest.fixture(scope="session")
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def db_session(engine: Engine) -> Iterator[Session]:
    connection = engine.connect()
    transaction = connection.begin()
    # commit() and rollback() inside the test only touch savepoints of the outer transaction.
    SessionLocal = sessionmaker(
        bind=connection,
        autoflush=False,
        expire_on_commit=False,
        join_transaction_mode="create_savepoint",
    )
    session = SessionLocal()

    try:
        yield session
    finally:
        session.close()

        if transaction.is_active:
            transaction.rollback()
        connection.close()

        # Ensure each test sees a clean database even if commits occurred.
        with engine.begin() as cleanup_conn:
            for table in reversed(Base.metadata.sorted_tables):
                cleanup_conn.execute(table.delete())


@pytest.fixture()
def file_engine(tmp_path: Path) -> Generator[Engine, None, None]:
    """File-backed database for code that opens several sessions or threads."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'notes.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture()
def session_factory(file_engine: Engine) -> Callable[[], Session]:
    return sessionmaker(bind=file_engine, autoflush=False, expire_on_commit=False)


@pytest.fixture(autouse=True)
def fresh_boundary_store() -> Iterator[None]:
    reset_boundary_store()
    try:
        yield
    finally:
        reset_boundary_store()


@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture(autouse=True)
def override_session_dependency(app: FastAPI, db_session: Session) -> Iterator[None]:
    def _get_session_override() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[app_get_session] = _get_session_override
    try:
        yield
    finally:
        app.dependency_overrides.pop(app_get_session, None)


@pytest.fixture()
def client(app: FastAPI) -> TestClient:
    # No context manager: the startup hook would load boundaries from the configured database.
    return TestClient(app, base_url="http://test")


@pytest.fixture()
def boundary_set() -> BoundarySet:
    return make_boundary_set()


@pytest.fixture()
def boundary_file(tmp_path: Path) -> Path:
    path = tmp_path / "countries.geojson"
    path.write_text(json.dumps(make_collection()), encoding="utf-8")
    return path


@pytest.fixture()
def stored_note(db_session: Session) -> Note:
    """A note in Berlin with one opening comment."""
    note = Note(
        note_id=42,
        longitude=BERLIN[0],
        latitude=BERLIN[1],
        created_at=BASE_TIME,
        status="open",
        country_id=GERMANY[0],
        resolved_epoch=1,
    )
    db_session.add(note)
    db_session.flush()
    db_session.add(
        NoteComment(
            id=1,
            note_id=42,
            sequence_action=1,
            event="opened",
            created_at=BASE_TIME,
        )
    )
    db_session.flush()
    return note
