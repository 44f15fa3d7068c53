from __future__ import annotations

from typing import Dict, List, Optional, Tuple

from importers.context import (
    SisImportContext,
    file_rows,
    import_rows,
    set_integration_id,
    status_of,
)
from models import Account, Course
from utils.csv_files import CsvRow, SisCsvFile
from utils.sis_errors import SisImportError

ACCOUNT_STATUSES = {"active", "deleted"}

Entry = Tuple[SisCsvFile, CsvRow]


def order_parents_first(entries: List[Entry]) -> List[Entry]:
    """
    Stable reorder so an account defined anywhere in the batch is imported
    before the rows that name it as parent_account_id.
    """
    parent_of: Dict[str, str] = {}
    for _, row in entries:
        account_id = row.get("account_id")
        if account_id and account_id not in parent_of:
            parent_of[account_id] = row.get("parent_account_id")

    depths: Dict[str, int] = {}

    def depth(account_id: str) -> int:
        if account_id in depths:
            return depths[account_id]
        seen = {account_id}
        chain = [account_id]
        parent = parent_of.get(account_id)
        while parent and parent in parent_of and parent not in seen and parent not in depths:
            seen.add(parent)
            chain.append(parent)
            parent = parent_of.get(parent)
        base = depths.get(parent, -1) + 1 if parent in depths else 0
        for offset, node in enumerate(reversed(chain)):
            depths[node] = base + offset
        return depths[account_id]

    keyed = []
    for position, (csv_file, row) in enumerate(entries):
        account_id = row.get("account_id")
        keyed.append((depth(account_id) if account_id else 0, position, (csv_file, row)))
    keyed.sort(key=lambda k: (k[0], k[1]))
    return [entry for _, _, entry in keyed]


def _is_descendant(ctx: SisImportContext, candidate_id: Optional[int], account_id: int) -> bool:
    """True when walking up from candidate_id reaches account_id."""
    seen = set()
    current = candidate_id
    while current is not None and current not in seen:
        if current == account_id:
            return True
        seen.add(current)
        parent = ctx.store.get(Account, current)
        current = parent.parent_account_id if parent is not None else None
    return False


def _has_live_children(ctx: SisImportContext, account_id: int) -> bool:
    subs = ctx.store.where(Account, root_account_id=ctx.root_account_id, parent_account_id=account_id)
    courses = ctx.store.where(Course, root_account_id=ctx.root_account_id, account_id=account_id)
    return any(not r.deleted for r in subs) or any(not c.deleted for c in courses)


def _import_account_row(ctx: SisImportContext, csv_file: SisCsvFile, row: CsvRow) -> bool:
    account_id = row.get("account_id")
    parent_sis_id = row.get("parent_account_id")
    name = row.get("name")
    status = status_of(row)

    if not account_id:
        raise SisImportError("No account_id given for an account")
    if parent_sis_id == account_id:
        raise SisImportError(f"Account {account_id} cannot be its own parent")

    parent: Optional[Account] = None
    if parent_sis_id:
        parent = ctx.find(Account, parent_sis_id)
        if parent is None:
            raise SisImportError(f"Parent account didn't exist for {account_id}")

    account = ctx.find(Account, account_id)
    if account is None:
        if not name:
            raise SisImportError(f"No name given for account {account_id}, skipping")
        account = Account(
            root_account_id=ctx.root_account_id,
            sis_source_id=account_id,
            parent_account_id=ctx.root_account_id,
        )
    if status not in ACCOUNT_STATUSES:
        raise SisImportError(f'Improper status "{row.get("status")}" for account {account_id}, skipping')

    new_parent_id = parent.id if parent is not None else ctx.root_account_id
    if account.id is not None and new_parent_id != account.parent_account_id:
        if _is_descendant(ctx, new_parent_id, account.id):
            raise SisImportError(
                f"Setting account {account_id}'s parent to {parent_sis_id} would create a loop"
            )
    ctx.assign(account, "parent_account_id", new_parent_id)

    if name:
        ctx.assign(account, "name", name)
    set_integration_id(ctx, account, row)

    if status == "deleted":
        if account.id is not None and _has_live_children(ctx, account.id):
            raise SisImportError(
                f"Cannot delete account {account_id}: it still has active sub-accounts or courses"
            )
        account.workflow_state = "deleted"
    else:
        account.workflow_state = "active"

    return ctx.save(account)


def import_accounts(ctx: SisImportContext, csv_files: List[SisCsvFile]) -> Dict[str, int]:
    entries = order_parents_first(list(file_rows(csv_files)))
    return import_rows(ctx, entries, artifact="accounts", handle_row=_import_account_row)
