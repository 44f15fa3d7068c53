from __future__ import annotations

from typing import Dict, List, Optional

from importers.context import (
    SisImportContext,
    file_rows,
    import_rows,
    resolve_account,
    set_integration_id,
    status_of,
)
from models import AbstractCourse, Course, EnrollmentTerm
from utils.csv_files import CsvRow, SisCsvFile
from utils.dates import parse_sis_date
from utils.sis_errors import SisImportError

COURSE_STATUSES = {"active", "deleted", "completed", "unpublished"}
DATE_COLUMNS = (("start_date", "start_at"), ("end_date", "conclude_at"))


def _next_workflow_state(status: str, current: str, is_new: bool) -> str:
    if status == "deleted":
        return "deleted"
    if status == "completed":
        return "completed"
    if status == "unpublished":
        return "claimed"
    # active
    if current == "completed" and not is_new:
        return "available"
    if is_new or current in ("created", "deleted"):
        return "claimed"
    return current


def _import_course_row(ctx: SisImportContext, csv_file: SisCsvFile, row: CsvRow) -> bool:
    course_id = row.get("course_id")
    short_name = row.get("short_name")
    long_name = row.get("long_name")
    term_sis_id = row.get("term_id")
    account_sis_id = row.get("account_id")
    abstract_sis_id = row.get("abstract_course_id")
    status = status_of(row)

    if not course_id:
        raise SisImportError("No course_id given for a course")
    if not short_name and not abstract_sis_id:
        raise SisImportError(f"No short_name given for course {course_id}")
    if not long_name and not abstract_sis_id:
        raise SisImportError(f"No long_name given for course {course_id}")
    if status not in COURSE_STATUSES:
        raise SisImportError(f'Improper status "{row.get("status")}" for course {course_id}')

    course = ctx.find(Course, course_id)
    is_new = course is None
    if course is None:
        course = Course(root_account_id=ctx.root_account_id, sis_source_id=course_id)

    account = resolve_account(ctx, row)
    if account is not None:
        ctx.assign(course, "account_id", account.id)
    elif course.account_id is None:
        course.account_id = ctx.root_account_id

    term = ctx.find_active(EnrollmentTerm, term_sis_id)
    if term is not None:
        ctx.assign(course, "enrollment_term_id", term.id)
    elif course.enrollment_term_id is None:
        course.enrollment_term_id = ctx.default_term().id

    abstract: Optional[AbstractCourse] = None
    if abstract_sis_id:
        abstract = ctx.find_active(AbstractCourse, abstract_sis_id)
        if abstract is None:
            ctx.warn(
                csv_file,
                row,
                f"unknown abstract course id {abstract_sis_id}, ignoring abstract course reference",
            )
    if abstract is not None:
        if not term_sis_id and course.enrollment_term_id != abstract.enrollment_term_id:
            ctx.assign(course, "enrollment_term_id", abstract.enrollment_term_id)
        if not account_sis_id and course.account_id != abstract.account_id:
            ctx.assign(course, "account_id", abstract.account_id)
    course.abstract_course_id = abstract.id if abstract is not None else None

    if long_name:
        ctx.assign(course, "name", long_name)
    elif abstract is not None and not course.name:
        ctx.assign(course, "name", abstract.name)

    if short_name:
        ctx.assign(course, "course_code", short_name)
    elif abstract is not None and not course.course_code:
        ctx.assign(course, "course_code", abstract.short_name)

    set_integration_id(ctx, course, row)

    bad_date = False
    for column, attr in DATE_COLUMNS:
        if not row.has(column):
            continue
        try:
            value = parse_sis_date(row.get(column))
        except ValueError:
            bad_date = True
            continue
        ctx.assign(course, attr, value)
    if bad_date:
        ctx.warn(csv_file, row, f"Bad date format for course {course_id}")

    ctx.assign(course, "workflow_state", _next_workflow_state(status, course.workflow_state, is_new))
    return ctx.save(course)


def import_courses(ctx: SisImportContext, csv_files: List[SisCsvFile]) -> Dict[str, int]:
    return import_rows(ctx, file_rows(csv_files), artifact="courses", handle_row=_import_course_row)
