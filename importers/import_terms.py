from __future__ import annotations

from typing import Dict, List

from importers.context import (
    SisImportContext,
    file_rows,
    import_rows,
    set_integration_id,
    status_of,
)
from models import Course, EnrollmentTerm
from utils.csv_files import CsvRow, SisCsvFile
from utils.dates import parse_sis_date
from utils.sis_errors import SisImportError

TERM_STATUSES = {"active", "deleted"}
DATE_COLUMNS = (("start_date", "start_at"), ("end_date", "end_at"))


def _has_live_courses(ctx: SisImportContext, term_id: int) -> bool:
    return any(
        not c.deleted for c in ctx.store.where(Course, root_account_id=ctx.root_account_id, enrollment_term_id=term_id)
    )


def _import_term_row(ctx: SisImportContext, csv_file: SisCsvFile, row: CsvRow) -> bool:
    term_id = row.get("term_id")
    name = row.get("name")
    status = status_of(row)

    if not term_id:
        raise SisImportError("No term_id given for a term")
    if status not in TERM_STATUSES:
        raise SisImportError(f'Improper status "{row.get("status")}" for term {term_id}')

    term = ctx.find(EnrollmentTerm, term_id)
    if term is None:
        if not name:
            raise SisImportError(f"No name given for term {term_id}")
        term = EnrollmentTerm(root_account_id=ctx.root_account_id, sis_source_id=term_id)

    if name:
        ctx.assign(term, "name", name)
    set_integration_id(ctx, term, row)

    bad_date = False
    for column, attr in DATE_COLUMNS:
        if not row.has(column):
            continue
        try:
            value = parse_sis_date(row.get(column))
        except ValueError:
            bad_date = True
            continue
        ctx.assign(term, attr, value)
    if bad_date:
        ctx.warn(csv_file, row, f"Bad date format for term {term_id}")

    if status == "deleted":
        if term.id is not None and _has_live_courses(ctx, term.id):
            raise SisImportError(f"Cannot delete term {term_id}: it still has active courses")
        term.workflow_state = "deleted"
    else:
        term.workflow_state = "active"

    return ctx.save(term)


def import_terms(ctx: SisImportContext, csv_files: List[SisCsvFile]) -> Dict[str, int]:
    return import_rows(ctx, file_rows(csv_files), artifact="terms", handle_row=_import_term_row)
