# utils/sis_errors.py
from __future__ import annotations

from pathlib import Path
from typing import List, Optional, Tuple

from models import SisBatchError
from utils.dates import now_utc_iso
from utils.fs import atomic_write, csv_dumps

ERRORS_CSV_HEADER = ["sis_batch_id", "file", "row", "failure", "message"]


class SisImportError(Exception):
    """
    A row that cannot be imported. The message is stored verbatim
    as a SisBatchError for the batch and the offending row is skipped.
    """


class SisMessages:
    """
    Collects the messages of one batch and persists them as SisBatchError rows.

    At most `max_messages` rows are stored; anything past that is counted and
    summarised by a single failure when the batch finishes.
    """

    def __init__(self, store, *, root_account_id: int, batch_id: int, max_messages: int) -> None:
        self.store = store
        self.root_account_id = root_account_id
        self.batch_id = batch_id
        self.max_messages = max_messages
        self.errors: List[Tuple[str, str]] = []
        self.suppressed = 0
        self.failure_count = 0
        self.warning_count = 0

    def add(
        self,
        file: str,
        message: str,
        *,
        row: Optional[int] = None,
        row_info: Optional[str] = None,
        failure: bool = False,
    ) -> None:
        if failure:
            self.failure_count += 1
        else:
            self.warning_count += 1
        if len(self.errors) >= self.max_messages:
            self.suppressed += 1
            return
        self._store(file, message, row=row, row_info=row_info, failure=failure)

    def _store(self, file, message, *, row=None, row_info=None, failure=False) -> None:
        self.store.save(SisBatchError(
            root_account_id=self.root_account_id,
            sis_batch_id=self.batch_id,
            file=file,
            message=message,
            failure=failure,
            row=row,
            row_info=row_info,
            created_at=now_utc_iso(),
        ))
        self.errors.append((file, message))

    def finish(self) -> None:
        if self.suppressed:
            self._store("", f"Too many errors, {self.suppressed} additional messages were suppressed", failure=True)

    @property
    def total(self) -> int:
        return self.failure_count + self.warning_count


def errors_csv_text(store, batch_id: int) -> str:
    rows = [
        (e.sis_batch_id, e.file, e.row, "true" if e.failure else "false", e.message)
        for e in store.where(SisBatchError, sis_batch_id=batch_id)
    ]
    return csv_dumps(ERRORS_CSV_HEADER, rows)


def write_errors_csv(store, batch_id: int, path: Path) -> Path:
    atomic_write(path, errors_csv_text(store, batch_id))
    return path
