from models import Account
from importers.import_accounts import order_parents_first
from utils.csv_files import parse_csv_text

ACCOUNT_HEADER = "account_id,parent_account_id,name,status"


def _acct(store, root, sis_id):
    return store.find_by_sis(Account, root.id, sis_id)


def test_creates_accounts_under_root(store, root_account, process_csv_data_cleanly):
    result = process_csv_data_cleanly(ACCOUNT_HEADER, "A001,,Humanities,active")
    a = _acct(store, root_account, "A001")
    assert a.name == "Humanities"
    assert a.parent_account_id == root_account.id
    assert a.root_account_id == root_account.id
    assert a.sis_batch_id == result.batch.id
    assert result.counts["accounts"] == {"imported": 1, "unchanged": 0, "failed": 0}


def test_children_listed_before_parents_are_reordered(store, root_account, process_csv_data_cleanly):
    process_csv_data_cleanly(
        ACCOUNT_HEADER,
        "A003,A002,Grandchild,active",
        "A002,A001,Child,active",
        "A001,,Parent,active",
    )
    parent = _acct(store, root_account, "A001")
    child = _acct(store, root_account, "A002")
    grandchild = _acct(store, root_account, "A003")
    assert child.parent_account_id == parent.id
    assert grandchild.parent_account_id == child.id


def test_order_parents_first_is_stable():
    csv_file = parse_csv_text(
        "\n".join([
            ACCOUNT_HEADER,
            "B,A,b,active",
            "X,,x,active",
            "A,,a,active",
            "C,B,c,active",
        ]),
        name="accounts.csv",
    )
    entries = [(csv_file, row) for row in csv_file.rows]
    ordered = [row.get("account_id") for _, row in order_parents_first(entries)]
    assert ordered == ["X", "A", "B", "C"]


def test_skips_bad_content(store, root_account, process_csv_data):
    result = process_csv_data(
        ACCOUNT_HEADER,
        ",,Nameless,active",
        "A002,A002,Self,active",
        "A003,NOPE,Orphan,active",
        "A004,,,active",
        "A005,,Closed,suspended",
    )
    assert [m for _, m in result.errors] == [
        "No account_id given for an account",
        "Account A002 cannot be its own parent",
        "Parent account didn't exist for A003",
        "No name given for account A004, skipping",
        'Improper status "suspended" for account A005, skipping',
    ]
    assert store.count(Account, root_account_id=root_account.id) == 0
    assert result.batch.workflow_state == "imported_with_messages"


def test_refuses_to_create_a_loop(store, root_account, process_csv_data, process_csv_data_cleanly):
    process_csv_data_cleanly(
        ACCOUNT_HEADER,
        "A001,,Top,active",
        "A002,A001,Middle,active",
        "A003,A002,Bottom,active",
    )
    result = process_csv_data(ACCOUNT_HEADER, "A001,A003,Top,active")
    assert [m for _, m in result.errors] == ["Setting account A001's parent to A003 would create a loop"]
    assert _acct(store, root_account, "A001").parent_account_id == root_account.id


def test_can_move_an_account(store, root_account, process_csv_data_cleanly):
    process_csv_data_cleanly(
        ACCOUNT_HEADER,
        "A001,,One,active",
        "A002,,Two,active",
        "A003,A001,Leaf,active",
    )
    process_csv_data_cleanly(ACCOUNT_HEADER, "A003,A002,Leaf,active")
    assert _acct(store, root_account, "A003").parent_account_id == _acct(store, root_account, "A002").id

    process_csv_data_cleanly(ACCOUNT_HEADER, "A003,,Leaf,active")
    assert _acct(store, root_account, "A003").parent_account_id == root_account.id


def test_delete_requires_no_live_children(store, root_account, process_csv_data, process_csv_data_cleanly):
    process_csv_data_cleanly(
        ACCOUNT_HEADER,
        "A001,,Parent,active",
        "A002,A001,Child,active",
    )
    result = process_csv_data(ACCOUNT_HEADER, "A001,,Parent,deleted")
    assert [m for _, m in result.errors] == [
        "Cannot delete account A001: it still has active sub-accounts or courses"
    ]
    assert not _acct(store, root_account, "A001").deleted

    process_csv_data_cleanly(ACCOUNT_HEADER, "A002,A001,Child,deleted")
    process_csv_data_cleanly(ACCOUNT_HEADER, "A001,,Parent,deleted")
    assert _acct(store, root_account, "A001").deleted
    assert _acct(store, root_account, "A002").deleted


def test_existing_account_keeps_name_when_blank(store, root_account, process_csv_data_cleanly):
    process_csv_data_cleanly(ACCOUNT_HEADER, "A001,,Science,active")
    result = process_csv_data_cleanly(ACCOUNT_HEADER, "A001,,,active")
    assert _acct(store, root_account, "A001").name == "Science"
    assert result.counts["accounts"]["unchanged"] == 1


def test_integration_id_is_stored(store, root_account, process_csv_data_cleanly):
    process_csv_data_cleanly(ACCOUNT_HEADER + ",integration_id", "A001,,Science,active,int-1")
    assert _acct(store, root_account, "A001").integration_id == "int-1"


def test_manual_parent_change_is_sticky(store, root_account, process_csv_data_cleanly):
    process_csv_data_cleanly(
        ACCOUNT_HEADER,
        "A001,,One,active",
        "A002,,Two,active",
    )
    two = _acct(store, root_account, "A002")
    two.parent_account_id = _acct(store, root_account, "A001").id
    store.save(two)

    process_csv_data_cleanly(ACCOUNT_HEADER, "A002,,Two,active")
    two = _acct(store, root_account, "A002")
    assert two.parent_account_id == _acct(store, root_account, "A001").id
    assert "parent_account_id" in two.stuck_sis_fields


def test_status_is_matched_case_insensitively(store, root_account, process_csv_data, process_csv_data_cleanly):
    process_csv_data_cleanly(ACCOUNT_HEADER, "A001,,Science, ACTIVE ")
    assert not _acct(store, root_account, "A001").deleted

    process_csv_data_cleanly(ACCOUNT_HEADER, "A001,,Science,Deleted")
    assert _acct(store, root_account, "A001").deleted

    result = process_csv_data(ACCOUNT_HEADER, "A002,,Arts, Closed ")
    assert [m for _, m in result.errors] == ['Improper status "Closed" for account A002, skipping']
