# importers/context.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Optional, Tuple, Type, TypeVar

from logging_setup import get_logger
from models import Account, EnrollmentTerm, SisBatch, SisImportOptions, SisRecord
from store import SisStore
from utils.csv_files import CsvRow, SisCsvFile
from utils.sis_errors import SisImportError, SisMessages

T = TypeVar("T")

RowHandler = Callable[["SisImportContext", SisCsvFile, CsvRow], bool]


@dataclass
class SisImportContext:
    store: SisStore
    root_account: Account
    batch: SisBatch
    options: SisImportOptions
    messages: SisMessages

    @property
    def root_account_id(self) -> int:
        return self.root_account.id  # type: ignore[return-value]

    def find(self, model: Type[T], sis_source_id: Optional[str]) -> Optional[T]:
        return self.store.find_by_sis(model, self.root_account_id, sis_source_id)

    def find_active(self, model: Type[T], sis_source_id: Optional[str]) -> Optional[T]:
        record = self.find(model, sis_source_id)
        if record is None or record.deleted:  # type: ignore[attr-defined]
            return None
        return record

    def default_term(self) -> EnrollmentTerm:
        term = self.store.get(EnrollmentTerm, self.root_account.default_enrollment_term_id)
        if term is None:
            raise RuntimeError(f"root account {self.root_account_id} has no default enrollment term")
        return term

    def assign(self, record: SisRecord, field: str, value: Any) -> bool:
        """
        Write a column on behalf of the import, honouring stickiness.
        Returns False when the column is stuck and was left alone.
        """
        sticky = field in record.STICKY_FIELDS
        if sticky and field in record.stuck_sis_fields and not self.options.override_sis_stickiness:
            return False
        setattr(record, field, value)
        if sticky and self.options.override_sis_stickiness:
            if self.options.add_sis_stickiness:
                record.stuck_sis_fields.add(field)
            elif self.options.clear_sis_stickiness:
                record.stuck_sis_fields.discard(field)
        return True

    def save(self, record: SisRecord) -> bool:
        return self.store.save(record, sis_batch_id=self.batch.id)

    def warn(self, csv_file: SisCsvFile, row: CsvRow, message: str) -> None:
        self.messages.add(csv_file.name, message, row=row.lineno, row_info=row.raw)


def import_rows(
    ctx: SisImportContext,
    entries: Iterable[Tuple[SisCsvFile, CsvRow]],
    *,
    artifact: str,
    handle_row: RowHandler,
) -> Dict[str, int]:
    """
    Drive `handle_row` over every row. A failing row is recorded against the
    batch and skipped; the remaining rows still run.
    """
    log = get_logger(artifact=artifact, batch_id=ctx.batch.id)
    counters = {"imported": 0, "unchanged": 0, "failed": 0}

    for csv_file, row in entries:
        try:
            changed = handle_row(ctx, csv_file, row)
        except SisImportError as exc:
            counters["failed"] += 1
            ctx.messages.add(csv_file.name, str(exc), row=row.lineno, row_info=row.raw)
            log.debug("Skipped %s line %s: %s", csv_file.name, row.lineno, exc)
            continue
        except Exception as exc:
            counters["failed"] += 1
            log.exception("Unexpected error importing %s line %s", csv_file.name, row.lineno)
            ctx.messages.add(
                csv_file.name,
                f"Unexpected error importing row: {type(exc).__name__}: {exc}",
                row=row.lineno,
                row_info=row.raw,
                failure=True,
            )
            continue
        counters["imported" if changed else "unchanged"] += 1

    log.info("%s import complete.", artifact, extra=dict(counters))
    return counters


def file_rows(csv_files: Iterable[SisCsvFile]) -> Iterable[Tuple[SisCsvFile, CsvRow]]:
    for csv_file in csv_files:
        for row in csv_file.rows:
            yield csv_file, row


def status_of(row: CsvRow) -> str:
    return row.get("status").lower()


def set_integration_id(ctx: SisImportContext, record: SisRecord, row: CsvRow) -> None:
    if row.has("integration_id"):
        ctx.assign(record, "integration_id", row.get("integration_id") or None)


def resolve_account(ctx: SisImportContext, row: CsvRow) -> Optional[Account]:
    """account_id first, then fallback_account_id; None when neither resolves."""
    for column in ("account_id", "fallback_account_id"):
        account = ctx.find_active(Account, row.get(column))
        if account is not None:
            return account
    return None
