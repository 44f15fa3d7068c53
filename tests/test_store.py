import json

import pytest

from models import Account, Course, EnrollmentTerm, SisBatch
from store import SisStore


def test_create_root_account_has_default_term(store):
    root = store.create_root_account("Root")
    assert root.root_account
    term = store.get(EnrollmentTerm, root.default_enrollment_term_id)
    assert term.name == "Default Term"
    assert term.root_account_id == root.id
    assert store.root_accounts()[0].id == root.id
    assert root.stuck_sis_fields == set()


def test_reads_are_detached_copies(store, root_account):
    a = store.get(Account, root_account.id)
    a.name = "Changed"
    assert store.get(Account, root_account.id).name == "Test Root"


def test_save_reports_changes(store, root_account):
    c = Course(root_account_id=root_account.id, sis_source_id="C1", name="Bio")
    assert store.save(c, sis_batch_id=3) is True
    assert c.id is not None
    assert c.sis_batch_id == 3

    same = store.get(Course, c.id)
    assert store.save(same, sis_batch_id=4) is False
    assert store.get(Course, c.id).sis_batch_id == 3


def test_manual_save_sticks_changed_sticky_columns(store, root_account):
    c = Course(root_account_id=root_account.id, sis_source_id="C1", name="Bio", course_code="B1")
    store.save(c, sis_batch_id=1)
    c = store.get(Course, c.id)
    c.name = "Biology"
    c.abstract_course_id = 9
    store.save(c)
    assert store.get(Course, c.id).stuck_sis_fields == {"name"}


def test_new_records_are_never_stuck(store, root_account):
    c = Course(root_account_id=root_account.id, sis_source_id="C1", name="Bio")
    store.save(c)
    assert store.get(Course, c.id).stuck_sis_fields == set()


def test_sis_source_id_is_unique_per_root_account(store, root_account):
    store.save(Course(root_account_id=root_account.id, sis_source_id="C1"), sis_batch_id=1)
    with pytest.raises(ValueError):
        store.save(Course(root_account_id=root_account.id, sis_source_id="C1"), sis_batch_id=1)

    other = store.create_root_account("Other")
    store.save(Course(root_account_id=other.id, sis_source_id="C1"), sis_batch_id=1)
    assert store.count(Course) == 2


def test_changing_sis_source_id_moves_the_index(store, root_account):
    c = Course(root_account_id=root_account.id, sis_source_id="C1")
    store.save(c, sis_batch_id=1)
    c = store.get(Course, c.id)
    c.sis_source_id = "C2"
    store.save(c, sis_batch_id=1)
    assert store.find_by_sis(Course, root_account.id, "C1") is None
    assert store.find_by_sis(Course, root_account.id, "C2").id == c.id


def test_save_unknown_id_raises(store):
    with pytest.raises(KeyError):
        store.save(Course(id=99))


def test_where_find_by_last_and_delete(store, root_account):
    for code in ("A", "B", "C"):
        store.save(Course(root_account_id=root_account.id, sis_source_id=code, course_code=code), sis_batch_id=1)
    assert [c.course_code for c in store.where(Course, root_account_id=root_account.id)] == ["A", "B", "C"]
    assert store.find_by(Course, course_code="B").sis_source_id == "B"
    assert store.last(Course).course_code == "C"

    assert store.delete_where(Course, course_code="B") == 1
    assert store.find_by_sis(Course, root_account.id, "B") is None
    assert store.count(Course) == 2


def test_snapshot_round_trip(tmp_path, store, root_account):
    c = Course(root_account_id=root_account.id, sis_source_id="C1", name="Bio")
    store.save(c, sis_batch_id=1)
    c = store.get(Course, c.id)
    c.name = "Biology"
    store.save(c)
    store.save(SisBatch(root_account_id=root_account.id, workflow_state="imported"))

    path = tmp_path / "store.json"
    store.save_json(path)
    raw = json.loads(path.read_text(encoding="utf-8"))
    assert raw["version"] == 1
    assert raw["tables"]["courses"][0]["stuck_sis_fields"] == ["name"]

    loaded = SisStore.load_json(path)
    again = loaded.find_by_sis(Course, root_account.id, "C1")
    assert again.name == "Biology"
    assert again.stuck_sis_fields == {"name"}
    assert loaded.get(SisBatch, 1).workflow_state == "imported"

    # ids keep counting from where the snapshot left off
    fresh = Course(root_account_id=root_account.id, sis_source_id="C2")
    loaded.save(fresh, sis_batch_id=2)
    assert fresh.id == c.id + 1


def test_from_dict_rejects_unknown_version():
    with pytest.raises(ValueError):
        SisStore.from_dict({"version": 99})
