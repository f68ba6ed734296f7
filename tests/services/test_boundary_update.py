"""Tests for staging, diffing and swapping boundary generations."""

import json

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from notes_ingest.models import BoundaryGeneration, Country
from notes_ingest.models.boundary import ROLE_ACTIVE, ROLE_BACKUP, ROLE_CANDIDATE
from notes_ingest.schemas.boundary import DiffStatus
from notes_ingest.services.boundary_store import BoundaryStore, get_generation, load_boundary_set
from notes_ingest.services.boundary_update import (
    BoundarySwapRefused,
    clear_update_flags,
    diff,
    diff_generations,
    drop_backup,
    flag_changed,
    parse_feature,
    parse_feature_collection,
    read_boundary_file,
    restore_backup,
    stage_candidate,
    swap,
)
from tests.factories import FRANCE, GERMANY, SPAIN, make_boundary_set, make_collection, make_feature

GROWN_GERMANY = (GERMANY[0], GERMANY[1], (5.9, 47.3, 16.0, 55.0))
SHRUNK_GERMANY = (GERMANY[0], GERMANY[1], (5.9, 47.3, 8.0, 49.0))


def _load(db: Session, countries, store: BoundaryStore) -> BoundaryGeneration:
    stage_candidate(db, parse_feature_collection(make_collection(countries)))
    return swap(db, store)


def _country(db: Session, role: str, country_id: int) -> Country:
    generation = get_generation(db, role)
    return db.get(Country, (generation.id, country_id))


def test_parse_feature_uses_properties() -> None:
    feature = parse_feature(make_feature(7, "Seven", (0, 0, 1, 1), name_en="Seven", is_maritime=True))
    assert feature.country_id == 7
    assert feature.is_maritime
    assert feature.geometry.area == pytest.approx(1.0)


def test_parse_feature_rejects_non_positive_ids() -> None:
    with pytest.raises(ValueError):
        parse_feature(make_feature(-1, "Bad", (0, 0, 1, 1)))


def test_parse_feature_collection_requires_collection() -> None:
    with pytest.raises(ValueError):
        parse_feature_collection({"type": "Feature"})


def test_read_boundary_file(boundary_file) -> None:
    features = read_boundary_file(boundary_file)
    assert [f.country_id for f in features] == [GERMANY[0], FRANCE[0], SPAIN[0]]


def test_stage_candidate_derives_bbox_and_ranks(db_session: Session) -> None:
    generation = stage_candidate(db_session, parse_feature_collection(make_collection()))
    assert generation.role == ROLE_CANDIDATE
    assert generation.country_count == 3
    row = db_session.get(Country, (generation.id, GERMANY[0]))
    assert (row.min_lon, row.min_lat, row.max_lon, row.max_lat) == GERMANY[2]
    assert row.zone_ranks
    assert row.last_update_attempt is not None


def test_stage_candidate_rejects_duplicate_ids(db_session: Session) -> None:
    with pytest.raises(ValueError):
        stage_candidate(db_session, parse_feature_collection(make_collection((GERMANY, GERMANY))))


def test_restaging_replaces_previous_candidate(db_session: Session) -> None:
    stage_candidate(db_session, parse_feature_collection(make_collection()))
    stage_candidate(db_session, parse_feature_collection(make_collection((GERMANY,))))
    candidates = db_session.execute(
        select(BoundaryGeneration).where(BoundaryGeneration.role == ROLE_CANDIDATE)
    ).scalars().all()
    assert len(candidates) == 1
    assert candidates[0].country_count == 1


def test_shrinking_below_ratio_keeps_active_geometry(db_session: Session) -> None:
    store = BoundaryStore()
    _load(db_session, (GERMANY,), store)
    stage_candidate(db_session, parse_feature_collection(make_collection((SHRUNK_GERMANY,))))
    row = _country(db_session, ROLE_CANDIDATE, GERMANY[0])
    assert row.update_failed
    assert (row.min_lon, row.min_lat, row.max_lon, row.max_lat) == GERMANY[2]


def test_diff_classifies_changes() -> None:
    old = make_boundary_set((GERMANY, FRANCE))
    new = make_boundary_set((GROWN_GERMANY, SPAIN))
    report = {entry.country_id: entry for entry in diff(old, new)}
    assert report[GERMANY[0]].status is DiffStatus.INCREASED
    assert report[GERMANY[0]].area_change_percent > 1
    assert report[GERMANY[0]].geometry_changed
    assert report[FRANCE[0]].status is DiffStatus.DELETED
    assert report[SPAIN[0]].status is DiffStatus.NEW
    assert [entry.country_id for entry in diff(old, new)] == sorted(report)


def test_diff_of_identical_sets_is_unchanged(boundary_set) -> None:
    report = diff(boundary_set, make_boundary_set())
    assert {entry.status for entry in report} == {DiffStatus.UNCHANGED}
    assert all(entry.vertices_change == 0 for entry in report)


def test_first_load_flags_every_country(db_session: Session) -> None:
    stage_candidate(db_session, parse_feature_collection(make_collection()))
    diffs = diff_generations(db_session)
    assert {entry.status for entry in diffs} == {DiffStatus.NEW}
    assert flag_changed(db_session, diffs) == 3


def test_swap_promotes_candidate_and_keeps_backup(db_session: Session) -> None:
    store = BoundaryStore()
    first = _load(db_session, (GERMANY, FRANCE), store)
    assert first.epoch == 1
    assert store.current.epoch == 1

    stage_candidate(db_session, parse_feature_collection(make_collection((GROWN_GERMANY, FRANCE))))
    flag_changed(db_session, diff_generations(db_session))
    second = swap(db_session, store)

    assert second.role == ROLE_ACTIVE
    assert second.epoch == 2
    assert get_generation(db_session, ROLE_BACKUP).id == first.id
    assert get_generation(db_session, ROLE_CANDIDATE) is None
    assert store.current.epoch == 2
    assert store.current.get(GERMANY[0]).bounds == GROWN_GERMANY[2]
    assert _country(db_session, ROLE_ACTIVE, GERMANY[0]).updated
    assert not _country(db_session, ROLE_ACTIVE, FRANCE[0]).updated


def test_swap_without_candidate_is_refused(db_session: Session) -> None:
    store = BoundaryStore()
    _load(db_session, (GERMANY,), store)
    with pytest.raises(BoundarySwapRefused):
        swap(db_session, store)
    assert get_generation(db_session, ROLE_ACTIVE).epoch == 1


def test_swap_of_empty_candidate_is_refused(db_session: Session) -> None:
    store = BoundaryStore()
    _load(db_session, (GERMANY,), store)
    stage_candidate(db_session, [])
    with pytest.raises(BoundarySwapRefused):
        swap(db_session, store)
    assert store.current.epoch == 1
    assert get_generation(db_session, ROLE_ACTIVE).country_count == 1


def test_swap_then_restore_round_trip(db_session: Session) -> None:
    store = BoundaryStore()
    _load(db_session, (GERMANY, FRANCE), store)
    original = load_boundary_set(db_session)
    _load(db_session, (GROWN_GERMANY, FRANCE), store)

    restored = restore_backup(db_session, store)

    assert restored.role == ROLE_ACTIVE
    assert restored.epoch == 3
    assert store.current.epoch == 3
    report = diff(original, load_boundary_set(db_session))
    assert {entry.status for entry in report} == {DiffStatus.UNCHANGED}
    # The rolled-back Germany differs from the restored one, so it is flagged.
    assert _country(db_session, ROLE_ACTIVE, GERMANY[0]).updated
    assert not _country(db_session, ROLE_ACTIVE, FRANCE[0]).updated


def test_restore_without_backup_is_refused(db_session: Session) -> None:
    store = BoundaryStore()
    _load(db_session, (GERMANY,), store)
    with pytest.raises(BoundarySwapRefused):
        restore_backup(db_session, store)


def test_drop_backup_and_clear_flags(db_session: Session) -> None:
    store = BoundaryStore()
    _load(db_session, (GERMANY,), store)
    stage_candidate(db_session, parse_feature_collection(make_collection((GROWN_GERMANY,))))
    flag_changed(db_session, diff_generations(db_session))
    swap(db_session, store)

    assert drop_backup(db_session)
    assert get_generation(db_session, ROLE_BACKUP) is None
    assert not drop_backup(db_session)
    assert clear_update_flags(db_session) == 1
    assert not _country(db_session, ROLE_ACTIVE, GERMANY[0]).updated


def test_boundary_file_round_trip(tmp_path, db_session: Session) -> None:
    path = tmp_path / "one.geojson"
    path.write_text(json.dumps(make_collection((SPAIN,))), encoding="utf-8")
    stage_candidate(db_session, read_boundary_file(path))
    swap(db_session, BoundaryStore())
    assert get_generation(db_session, ROLE_ACTIVE).country_count == 1
