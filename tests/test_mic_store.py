"""Tests for the versioned listing store and its audit trail."""
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import date

import pytest
from sqlalchemy import func, select, text

from app.openmics import create_app
from app.openmics.audit import AuditImmutableError, append_entry
from app.openmics.db import atomic
from app.openmics.errors import InternalError, NotFound, Unauthorized, ValidationError, VersionConflict
from app.openmics.models import Base
from app.openmics.modules.mics.models import Mic, MicAuditEntry
from app.openmics.modules.mics.service import (
    create_mic,
    delete_mic,
    get_mic,
    list_audit,
    list_mics,
    update_mic,
)

ACTOR = "user-a"


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])
    return app


@pytest.fixture()
def s(app):
    session = app.extensions["sqlalchemy_sessionmaker"]()
    yield session
    session.close()


def _trail(s, mic_id):
    return [(e.action_type, e.edit_version) for e in list_audit(s, mic_id)]


def _audit_count(s):
    return s.scalar(select(func.count()).select_from(MicAuditEntry))


def test_scenario_create_update_conflict_delete(s):
    mic = create_mic(s, {"name": "Test"}, ACTOR)
    assert mic.edit_version == 0
    assert mic.last_edited_by == ACTOR
    assert _trail(s, mic.id) == [("CREATE", 0)]

    mic = update_mic(s, mic.id, 0, {"name": "Updated"}, ACTOR)
    assert mic.edit_version == 1
    assert mic.data == {"name": "Updated"}
    assert _trail(s, mic.id) == [("CREATE", 0), ("UPDATE", 1)]

    with pytest.raises(VersionConflict) as exc:
        update_mic(s, mic.id, 0, {"name": "Stale"}, ACTOR)
    assert exc.value.kind == "VersionConflict"
    assert exc.value.actual == 1
    assert get_mic(s, mic.id).edit_version == 1

    with pytest.raises(Unauthorized):
        delete_mic(s, mic.id, "")
    assert get_mic(s, mic.id).data == {"name": "Updated"}

    delete_mic(s, mic.id, ACTOR)
    assert _trail(s, mic.id) == [("CREATE", 0), ("UPDATE", 1), ("DELETE", 2)]
    with pytest.raises(NotFound):
        get_mic(s, mic.id)


def test_version_monotonicity(s):
    mic = create_mic(s, {"name": "Weekly"}, ACTOR)
    for n in range(1, 6):
        mic = update_mic(s, mic.id, mic.edit_version, {"name": f"Weekly {n}"}, ACTOR)
        assert mic.edit_version == n
    assert [v for _, v in _trail(s, mic.id)] == [0, 1, 2, 3, 4, 5]


def test_conflict_is_pure(s):
    mic = create_mic(s, {"name": "Original", "location": "Back room"}, ACTOR)
    update_mic(s, mic.id, 0, {"name": "Second", "location": "Back room"}, "user-b")
    before = _audit_count(s)

    with pytest.raises(VersionConflict):
        update_mic(s, mic.id, 0, {"name": "Lost update"}, ACTOR)

    current = get_mic(s, mic.id)
    assert current.edit_version == 1
    assert current.data == {"name": "Second", "location": "Back room"}
    assert current.last_edited_by == "user-b"
    assert _audit_count(s) == before


def test_future_version_is_also_a_conflict(s):
    mic = create_mic(s, {"name": "Test"}, ACTOR)
    with pytest.raises(VersionConflict):
        update_mic(s, mic.id, 999, {"name": "Jump"}, ACTOR)
    assert get_mic(s, mic.id).edit_version == 0


@pytest.mark.parametrize("actor", ["", "   ", None])
def test_unauthorized_delete_is_pure(s, actor):
    mic = create_mic(s, {"name": "Keep me"}, ACTOR)
    before = _audit_count(s)

    with pytest.raises(Unauthorized):
        delete_mic(s, mic.id, actor)

    assert get_mic(s, mic.id).edit_version == 0
    assert _audit_count(s) == before


def test_unauthorized_update_is_pure(s):
    mic = create_mic(s, {"name": "Keep me"}, ACTOR)
    with pytest.raises(Unauthorized):
        update_mic(s, mic.id, 0, {"name": "Anonymous edit"}, "")
    assert get_mic(s, mic.id).data == {"name": "Keep me"}
    assert _trail(s, mic.id) == [("CREATE", 0)]


def test_actor_checked_before_existence(s):
    with pytest.raises(Unauthorized):
        update_mic(s, "missing", 0, {"name": "x"}, None)
    with pytest.raises(Unauthorized):
        delete_mic(s, "missing", "")


def test_one_entry_per_mutation(s):
    mic = create_mic(s, {"name": "Open Mic Night"}, ACTOR)
    assert _audit_count(s) == 1
    mic = update_mic(s, mic.id, 0, {"name": "Open Mic Night", "showTime": "20:00"}, "user-b")
    assert _audit_count(s) == 2

    last = list_audit(s, mic.id)[-1]
    assert last.action_type == "UPDATE"
    assert last.edit_version == mic.edit_version
    assert last.changed_by == "user-b"
    assert last.data == {"name": "Open Mic Night", "showTime": "20:00"}

    delete_mic(s, mic.id, ACTOR)
    assert _audit_count(s) == 3


def test_delete_keeps_history_and_hides_record(s):
    mic = create_mic(s, {"name": "Gone", "startDate": "2025-01-06"}, ACTOR)
    delete_mic(s, mic.id, ACTOR)

    assert list_mics(s) == []
    entries = list_audit(s, mic.id)
    assert [e.action_type for e in entries] == ["CREATE", "DELETE"]
    assert entries[-1].data == {"name": "Gone", "startDate": "2025-01-06"}
    with pytest.raises(NotFound):
        delete_mic(s, mic.id, ACTOR)


def test_delete_with_expected_version(s):
    mic = create_mic(s, {"name": "Test"}, ACTOR)
    update_mic(s, mic.id, 0, {"name": "Test 2"}, ACTOR)
    with pytest.raises(VersionConflict):
        delete_mic(s, mic.id, ACTOR, expected_version=0)
    delete_mic(s, mic.id, ACTOR, expected_version=1)
    assert _trail(s, mic.id)[-1] == ("DELETE", 2)


def test_update_missing_is_not_found(s):
    with pytest.raises(NotFound):
        update_mic(s, "does-not-exist", 0, {"name": "x"}, ACTOR)
    assert _audit_count(s) == 0


def test_interleaved_writers_one_wins(app):
    sm = app.extensions["sqlalchemy_sessionmaker"]
    with sm() as s1, sm() as s2:
        mic = create_mic(s1, {"name": "Shared"}, ACTOR)
        seen_by_a = get_mic(s1, mic.id).edit_version
        seen_by_b = get_mic(s2, mic.id).edit_version

        update_mic(s1, mic.id, seen_by_a, {"name": "From A"}, "user-a")
        with pytest.raises(VersionConflict):
            update_mic(s2, mic.id, seen_by_b, {"name": "From B"}, "user-b")

        # Loser re-fetches and retries.
        fresh = get_mic(s2, mic.id)
        assert fresh.data == {"name": "From A"}
        update_mic(s2, mic.id, fresh.edit_version, {"name": "From B"}, "user-b")
        assert [v for _, v in _trail(s2, mic.id)] == [0, 1, 2]


def test_delete_loses_to_concurrent_update(app):
    sm = app.extensions["sqlalchemy_sessionmaker"]
    with sm() as s1, sm() as s2:
        mic = create_mic(s1, {"name": "Shared"}, ACTOR)
        update_mic(s1, mic.id, 0, {"name": "Edited"}, "user-a")
        with pytest.raises(VersionConflict):
            delete_mic(s2, mic.id, "user-b", expected_version=0)
        assert get_mic(s2, mic.id).edit_version == 1


@pytest.mark.parametrize(
    "payload",
    [
        None,
        ["name", "Test"],
        {},
        {"name": ""},
        {"name": 42},
        {"name": "Bad date", "startDate": "2025-13-45"},
        {"name": "Bad date type", "startDate": 20250101},
        {"name": "Bad recurrence", "recurrence": ["MO"]},
        {"name": "Not JSON", "extra": object()},
        {"name": "NaN", "fee": float("nan")},
    ],
)
def test_create_rejects_malformed_payload(s, payload):
    with pytest.raises(ValidationError):
        create_mic(s, payload, ACTOR)
    assert _audit_count(s) == 0


@pytest.mark.parametrize("expected", [-1, "0", 1.0, True, None])
def test_update_rejects_bad_expected_version(s, expected):
    mic = create_mic(s, {"name": "Test"}, ACTOR)
    with pytest.raises(ValidationError):
        update_mic(s, mic.id, expected, {"name": "x"}, ACTOR)


def test_create_requires_actor(s):
    with pytest.raises(Unauthorized):
        create_mic(s, {"name": "Nobody"}, "")
    assert list_mics(s) == []


def test_payload_version_key_is_plain_data(s):
    mic = create_mic(s, {"name": "Test", "edit_version": 50}, ACTOR)
    mic = update_mic(s, mic.id, 0, {"name": "Test", "edit_version": 99}, ACTOR)
    assert mic.edit_version == 1
    assert mic.data["edit_version"] == 99


def test_stored_payload_is_detached_from_caller(s):
    payload = {"name": "Test", "tags": ["comedy"]}
    mic = create_mic(s, payload, ACTOR)
    payload["tags"].append("music")
    assert get_mic(s, mic.id).data == {"name": "Test", "tags": ["comedy"]}


def test_promoted_columns_follow_payload(s):
    mic = create_mic(s, {"name": "Test", "startDate": "2025-01-06", "recurrence": "FREQ=WEEKLY;BYDAY=MO"}, ACTOR)
    assert mic.start_date == date(2025, 1, 6)
    assert mic.recurrence == "FREQ=WEEKLY;BYDAY=MO"
    mic = update_mic(s, mic.id, 0, {"name": "Test", "startDate": "2025-02-03"}, ACTOR)
    assert mic.start_date == date(2025, 2, 3)
    assert mic.recurrence is None


def test_list_orders_by_start_date(s):
    create_mic(s, {"name": "Later", "startDate": "2025-03-01"}, ACTOR)
    create_mic(s, {"name": "Undated"}, ACTOR)
    create_mic(s, {"name": "Sooner", "startDate": "2025-01-15"}, ACTOR)
    assert [m.data["name"] for m in list_mics(s)] == ["Sooner", "Later", "Undated"]


def test_list_date_window(s):
    create_mic(s, {"name": "Before", "startDate": "2024-12-01"}, ACTOR)
    create_mic(s, {"name": "Inside", "startDate": "2025-01-10"}, ACTOR)
    create_mic(s, {"name": "After", "startDate": "2025-03-01"}, ACTOR)
    create_mic(s, {"name": "Weekly", "startDate": "2024-06-03", "recurrence": "FREQ=WEEKLY;BYDAY=MO"}, ACTOR)
    create_mic(s, {"name": "Undated"}, ACTOR)

    names = [m.data["name"] for m in list_mics(s, start=date(2025, 1, 1), end=date(2025, 2, 1))]
    assert names == ["Weekly", "Inside"]


def test_list_predicate_and_restartable(s):
    create_mic(s, {"name": "Comedy", "startDate": "2025-01-01", "kind": "comedy"}, ACTOR)
    create_mic(s, {"name": "Poetry", "startDate": "2025-01-02", "kind": "poetry"}, ACTOR)

    def only_comedy(doc):
        return doc.get("kind") == "comedy"

    first = list_mics(s, predicate=only_comedy)
    second = list_mics(s, predicate=only_comedy)
    assert [m.data["name"] for m in first] == ["Comedy"]
    assert [m.id for m in first] == [m.id for m in second]


def test_list_rejects_inverted_window(s):
    with pytest.raises(ValidationError):
        list_mics(s, start=date(2025, 2, 1), end=date(2025, 1, 1))


def test_audit_for_unknown_record_is_empty(s):
    assert list_audit(s, "never-existed") == []


def test_audit_entries_are_immutable(s):
    mic = create_mic(s, {"name": "Test"}, ACTOR)
    entry = list_audit(s, mic.id)[0]

    entry.changed_by = "someone-else"
    with pytest.raises(AuditImmutableError):
        s.flush()
    s.rollback()

    entry = list_audit(s, mic.id)[0]
    s.delete(entry)
    with pytest.raises(AuditImmutableError):
        s.flush()
    s.rollback()

    assert _trail(s, mic.id) == [("CREATE", 0)]
    assert list_audit(s, mic.id)[0].changed_by == ACTOR


def test_storage_fault_rolls_back_mutation(s):
    s.execute(text("DROP TABLE mic_audit"))
    s.commit()

    with pytest.raises(InternalError) as exc:
        create_mic(s, {"name": "Half written"}, ACTOR)
    assert exc.value.retriable is True

    # The listing insert was rolled back together with the failed audit append.
    assert s.scalar(select(func.count()).select_from(Mic)) == 0


def test_actor_is_stored_as_given(s):
    actor = "  alice@example.com "
    mic = create_mic(s, {"name": "Test"}, actor)
    mic = update_mic(s, mic.id, 0, {"name": "Edited"}, actor)
    assert get_mic(s, mic.id).last_edited_by == actor
    assert [e.changed_by for e in list_audit(s, mic.id)] == [actor, actor]


def test_overlong_actor_is_rejected_before_any_write(s):
    with pytest.raises(Unauthorized) as exc:
        create_mic(s, {"name": "Test"}, "x" * 321)
    assert exc.value.retriable is False
    assert s.scalar(select(func.count()).select_from(Mic)) == 0

    mic = create_mic(s, {"name": "Test"}, "x" * 320)
    with pytest.raises(Unauthorized):
        update_mic(s, mic.id, 0, {"name": "Edited"}, "y" * 321)
    with pytest.raises(Unauthorized):
        delete_mic(s, mic.id, "y" * 321)
    assert get_mic(s, mic.id).last_edited_by == "x" * 320
    assert _trail(s, mic.id) == [("CREATE", 0)]


def test_concurrent_same_version_updates_one_wins(app):
    writers, rounds = 8, 10
    sm = app.extensions["sqlalchemy_sessionmaker"]

    def _update(mic_id, n, barrier):
        with sm() as s:
            barrier.wait()
            try:
                update_mic(s, mic_id, 0, {"name": f"Writer {n}"}, f"user-{n}")
            except VersionConflict:
                return "conflict"
            return "ok"

    with sm() as s, ThreadPoolExecutor(max_workers=writers) as pool:
        for _ in range(rounds):
            mic = create_mic(s, {"name": "Contended"}, ACTOR)
            barrier = threading.Barrier(writers)
            outcomes = list(pool.map(lambda n: _update(mic.id, n, barrier), range(writers)))

            assert sorted(outcomes) == ["conflict"] * (writers - 1) + ["ok"]
            assert [v for _, v in _trail(s, mic.id)] == [0, 1]
            current = get_mic(s, mic.id)
            assert current.edit_version == 1
            assert current.data == {"name": current.last_edited_by.replace("user-", "Writer ")}


def test_interrupt_inside_unit_of_work_rolls_back(s):
    with pytest.raises(KeyboardInterrupt):
        with atomic(s):
            mic = Mic(data={"name": "Interrupted"}, edit_version=0, last_edited_by=ACTOR)
            s.add(mic)
            s.flush()
            append_entry(s, mic_id=mic.id, action="CREATE", edit_version=0, actor=ACTOR, data=mic.data)
            s.flush()
            raise KeyboardInterrupt

    assert s.scalar(select(func.count()).select_from(Mic)) == 0
    assert _audit_count(s) == 0
