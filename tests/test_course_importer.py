import pytest

from importers.import_courses import _next_workflow_state
from models import Account, Course, EnrollmentTerm

COURSE_HEADER = "course_id,short_name,long_name,account_id,term_id,status,start_date,end_date"
TERM_HEADER = "term_id,name,status,start_date,end_date"
ACCOUNT_HEADER = "account_id,parent_account_id,name,status"


def _course(store, root, sis_id):
    return store.find_by_sis(Course, root.id, sis_id)


def test_creates_course_in_account_and_term(store, root_account, process_csv_data_cleanly):
    process_csv_data_cleanly(ACCOUNT_HEADER, "A001,,Science,active")
    process_csv_data_cleanly(TERM_HEADER, "T001,Fall,active,,")
    process_csv_data_cleanly(
        COURSE_HEADER,
        "C001,BIO101,Biology,A001,T001,active,2025-08-25,2025-12-19",
    )
    c = _course(store, root_account, "C001")
    assert c.course_code == "BIO101"
    assert c.name == "Biology"
    assert c.account_id == store.find_by_sis(Account, root_account.id, "A001").id
    assert c.enrollment_term_id == store.find_by_sis(EnrollmentTerm, root_account.id, "T001").id
    assert c.start_at == "2025-08-25T00:00:00Z"
    assert c.conclude_at == "2025-12-19T00:00:00Z"
    assert c.workflow_state == "claimed"


def test_unknown_account_and_term_fall_back_to_root_defaults(store, root_account, process_csv_data_cleanly):
    process_csv_data_cleanly(COURSE_HEADER, "C001,BIO101,Biology,NOPE,NOPE,active,,")
    c = _course(store, root_account, "C001")
    assert c.account_id == root_account.id
    assert c.enrollment_term_id == root_account.default_enrollment_term_id


def test_blank_account_keeps_existing_value(store, root_account, process_csv_data_cleanly):
    process_csv_data_cleanly(ACCOUNT_HEADER, "A001,,Science,active")
    process_csv_data_cleanly(COURSE_HEADER, "C001,BIO101,Biology,A001,,active,,")
    process_csv_data_cleanly(COURSE_HEADER, "C001,BIO101,Biology,,,active,,")
    assert _course(store, root_account, "C001").account_id == store.find_by_sis(Account, root_account.id, "A001").id


def test_skips_bad_content(store, root_account, process_csv_data):
    result = process_csv_data(
        COURSE_HEADER,
        ",BIO101,Biology,,,active,,",
        "C002,,Biology,,,active,,",
        "C003,BIO101,,,,active,,",
        "C004,BIO101,Biology,,,archived,,",
        "C005,BIO101,Biology,,,active,,",
    )
    assert [m for _, m in result.errors] == [
        "No course_id given for a course",
        "No short_name given for course C002",
        "No long_name given for course C003",
        'Improper status "archived" for course C004',
    ]
    assert store.count(Course) == 1


def test_bad_date_warns_and_imports_the_rest(store, root_account, process_csv_data):
    result = process_csv_data(COURSE_HEADER, "C001,BIO101,Biology,,,active,soon,2025-12-19")
    assert [m for _, m in result.errors] == ["Bad date format for course C001"]
    c = _course(store, root_account, "C001")
    assert c.start_at is None
    assert c.conclude_at == "2025-12-19T00:00:00Z"
    assert result.batch.workflow_state == "imported_with_messages"


@pytest.mark.parametrize(
    "status,current,is_new,expected",
    [
        ("active", "created", True, "claimed"),
        ("active", "available", False, "available"),
        ("active", "completed", False, "available"),
        ("active", "deleted", False, "claimed"),
        ("completed", "available", False, "completed"),
        ("deleted", "available", False, "deleted"),
        ("unpublished", "available", False, "claimed"),
    ],
)
def test_next_workflow_state(status, current, is_new, expected):
    assert _next_workflow_state(status, current, is_new) == expected


def test_status_transitions(store, root_account, process_csv_data_cleanly):
    process_csv_data_cleanly(COURSE_HEADER, "C001,BIO101,Biology,,,completed,,")
    assert _course(store, root_account, "C001").workflow_state == "completed"

    process_csv_data_cleanly(COURSE_HEADER, "C001,BIO101,Biology,,,active,,")
    assert _course(store, root_account, "C001").workflow_state == "available"

    process_csv_data_cleanly(COURSE_HEADER, "C001,BIO101,Biology,,,deleted,,")
    c = _course(store, root_account, "C001")
    assert c.deleted
    assert store.count(Course) == 1


def test_manually_published_course_keeps_state(store, root_account, process_csv_data_cleanly):
    process_csv_data_cleanly(COURSE_HEADER, "C001,BIO101,Biology,,,active,,")
    c = _course(store, root_account, "C001")
    c.workflow_state = "available"
    store.save(c)

    process_csv_data_cleanly(COURSE_HEADER, "C001,BIO101,Biology,,,unpublished,,")
    c = _course(store, root_account, "C001")
    assert c.workflow_state == "available"
    assert "workflow_state" in c.stuck_sis_fields


def test_unchanged_row_does_not_touch_batch_id(store, root_account, process_csv_data_cleanly):
    first = process_csv_data_cleanly(COURSE_HEADER, "C001,BIO101,Biology,,,active,,")
    second = process_csv_data_cleanly(COURSE_HEADER, "C001,BIO101,Biology,,,active,,")
    assert second.counts["courses"] == {"imported": 0, "unchanged": 1, "failed": 0}
    assert _course(store, root_account, "C001").sis_batch_id == first.batch.id


def test_deleted_abstract_course_is_not_referenced(store, root_account, process_csv_data, process_csv_data_cleanly):
    process_csv_data_cleanly(
        "abstract_course_id,short_name,long_name,account_id,term_id,status",
        "AC001,Hum101,Humanities,,,deleted",
    )
    result = process_csv_data(
        "course_id,short_name,long_name,account_id,term_id,status,abstract_course_id",
        "C001,HUM,Humanities I,,,active,AC001",
    )
    assert [m for _, m in result.errors] == [
        "unknown abstract course id AC001, ignoring abstract course reference"
    ]
    assert _course(store, root_account, "C001").abstract_course_id is None


def test_date_out_of_range_in_utc_is_a_bad_date(store, root_account, process_csv_data):
    result = process_csv_data(COURSE_HEADER, "C001,BIO101,Biology,,,active,2025-08-25,9999-12-31T23:00:00-05:00")

    assert [m for _, m in result.errors] == ["Bad date format for course C001"]
    c = _course(store, root_account, "C001")
    assert c.start_at == "2025-08-25T00:00:00Z"
    assert c.conclude_at is None
    assert c.workflow_state == "claimed"


def test_status_is_matched_case_insensitively(store, root_account, process_csv_data):
    result = process_csv_data(
        COURSE_HEADER,
        "C001,BIO101,Biology,,, Completed ,,",
        "C002,CHEM101,Chemistry,,,UnPublished,,",
        "C003,PHYS101,Physics,,, Archived ,,",
    )
    assert [m for _, m in result.errors] == ['Improper status "Archived" for course C003']
    assert _course(store, root_account, "C001").workflow_state == "completed"
    assert _course(store, root_account, "C002").workflow_state == "claimed"
    assert _course(store, root_account, "C003") is None
