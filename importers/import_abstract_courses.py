from __future__ import annotations

from typing import Dict, List

from importers.context import (
    SisImportContext,
    file_rows,
    import_rows,
    resolve_account,
    set_integration_id,
    status_of,
)
from models import AbstractCourse, EnrollmentTerm
from utils.csv_files import CsvRow, SisCsvFile
from utils.sis_errors import SisImportError

ABSTRACT_COURSE_STATUSES = {"active", "deleted"}


def _import_abstract_course_row(ctx: SisImportContext, csv_file: SisCsvFile, row: CsvRow) -> bool:
    abstract_course_id = row.get("abstract_course_id")
    short_name = row.get("short_name")
    long_name = row.get("long_name")
    status = status_of(row)

    if not abstract_course_id:
        raise SisImportError("No abstract_course_id given for an abstract course")
    if not short_name:
        raise SisImportError(f"No short_name given for abstract course {abstract_course_id}")
    if not long_name:
        raise SisImportError(f"No long_name given for abstract course {abstract_course_id}")
    if status not in ABSTRACT_COURSE_STATUSES:
        raise SisImportError(f'Improper status "{row.get("status")}" for abstract course {abstract_course_id}')

    course = ctx.find(AbstractCourse, abstract_course_id)
    if course is None:
        course = AbstractCourse(root_account_id=ctx.root_account_id, sis_source_id=abstract_course_id)

    term = ctx.find_active(EnrollmentTerm, row.get("term_id")) or ctx.default_term()
    ctx.assign(course, "enrollment_term_id", term.id)

    account = resolve_account(ctx, row)
    if account is not None:
        course.account_id = account.id
    elif course.account_id is None:
        course.account_id = ctx.root_account_id

    ctx.assign(course, "name", long_name)
    ctx.assign(course, "short_name", short_name)
    set_integration_id(ctx, course, row)

    course.workflow_state = "deleted" if status == "deleted" else "active"
    return ctx.save(course)


def import_abstract_courses(ctx: SisImportContext, csv_files: List[SisCsvFile]) -> Dict[str, int]:
    return import_rows(
        ctx,
        file_rows(csv_files),
        artifact="abstract_courses",
        handle_row=_import_abstract_course_row,
    )
