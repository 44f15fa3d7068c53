# store.py
"""
In-process relational store for SIS-managed records.

Reads hand back detached copies; `save()` diffs the copy against the stored
row, so callers get ActiveRecord-like dirty tracking without a database.
"""
from __future__ import annotations

import copy
import json
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Type, TypeVar

from models import (
    MODELS,
    DEFAULT_TERM_NAME,
    Account,
    EnrollmentTerm,
    SisRecord,
)
from utils.fs import atomic_write, json_dumps_stable

T = TypeVar("T")

SNAPSHOT_VERSION = 1

# columns that never count as a user-visible change
_BOOKKEEPING = {"id", "sis_batch_id", "stuck_sis_fields"}


class SisStore:
    def __init__(self) -> None:
        self._tables: Dict[str, Dict[int, Any]] = {m.TABLE: {} for m in MODELS}
        self._next_id: Dict[str, int] = {m.TABLE: 1 for m in MODELS}
        # (table, root_account_id, sis_source_id) -> id
        self._sis_index: Dict[Tuple[str, Optional[int], str], int] = {}

    # ---- reads -------------------------------------------------------------

    def get(self, model: Type[T], record_id: Optional[int]) -> Optional[T]:
        if record_id is None:
            return None
        row = self._tables[model.TABLE].get(record_id)
        return copy.deepcopy(row) if row is not None else None

    def find_by_sis(self, model: Type[T], root_account_id: Optional[int], sis_source_id: Optional[str]) -> Optional[T]:
        if not sis_source_id:
            return None
        record_id = self._sis_index.get((model.TABLE, root_account_id, sis_source_id))
        return self.get(model, record_id)

    def where(self, model: Type[T], **criteria: Any) -> List[T]:
        return [copy.deepcopy(r) for r in self._scan(model, criteria)]

    def find_by(self, model: Type[T], **criteria: Any) -> Optional[T]:
        for row in self._scan(model, criteria):
            return copy.deepcopy(row)
        return None

    def count(self, model: Type[Any], **criteria: Any) -> int:
        return sum(1 for _ in self._scan(model, criteria))

    def last(self, model: Type[T]) -> Optional[T]:
        table = self._tables[model.TABLE]
        if not table:
            return None
        return copy.deepcopy(table[max(table)])

    def _scan(self, model: Type[Any], criteria: Dict[str, Any]) -> Iterable[Any]:
        table = self._tables[model.TABLE]
        for record_id in sorted(table):
            row = table[record_id]
            if all(getattr(row, k) == v for k, v in criteria.items()):
                yield row

    # ---- writes ------------------------------------------------------------

    def changed_fields(self, record: Any) -> List[str]:
        """Columns of `record` that differ from the stored row (all columns for new records)."""
        stored = self._tables[record.TABLE].get(record.id) if record.id is not None else None
        names = [n for n in record.column_names() if n not in _BOOKKEEPING]
        if stored is None:
            return names
        return [n for n in names if getattr(stored, n) != getattr(record, n)]

    def save(self, record: T, *, sis_batch_id: Optional[int] = None) -> bool:
        """
        Insert or update `record`. Returns False when nothing changed.

        Saves without `sis_batch_id` are treated as manual edits: every
        changed sticky column is added to `stuck_sis_fields`.
        """
        table_name = record.TABLE
        table = self._tables[table_name]
        is_sis = isinstance(record, SisRecord)

        if record.id is not None and record.id not in table:
            raise KeyError(f"{table_name} row {record.id} does not exist")

        stored = table.get(record.id) if record.id is not None else None
        changed = self.changed_fields(record)

        if stored is not None and is_sis and not changed and record.stuck_sis_fields == stored.stuck_sis_fields:
            return False
        if stored is not None and not is_sis and not changed:
            return False

        if is_sis:
            self._check_sis_source_id(record)
            if sis_batch_id is None:
                if stored is not None:
                    record.stuck_sis_fields |= set(changed) & record.STICKY_FIELDS
            elif changed:
                record.sis_batch_id = sis_batch_id

        if record.id is None:
            record.id = self._next_id[table_name]
            self._next_id[table_name] += 1

        if is_sis:
            if stored is not None and stored.sis_source_id:
                self._sis_index.pop((table_name, stored.root_account_id, stored.sis_source_id), None)
            if record.sis_source_id:
                self._sis_index[(table_name, record.root_account_id, record.sis_source_id)] = record.id

        table[record.id] = copy.deepcopy(record)
        return True

    def delete_where(self, model: Type[Any], **criteria: Any) -> int:
        doomed = [r for r in self._scan(model, criteria)]
        for row in doomed:
            if isinstance(row, SisRecord) and row.sis_source_id:
                self._sis_index.pop((model.TABLE, row.root_account_id, row.sis_source_id), None)
            del self._tables[model.TABLE][row.id]
        return len(doomed)

    def _check_sis_source_id(self, record: SisRecord) -> None:
        if not record.sis_source_id:
            return
        owner = self._sis_index.get((record.TABLE, record.root_account_id, record.sis_source_id))
        if owner is not None and owner != record.id:
            raise ValueError(
                f"sis_source_id {record.sis_source_id!r} is already used by {record.TABLE} row {owner}"
            )

    # ---- accounts ----------------------------------------------------------

    def create_root_account(self, name: str) -> Account:
        """Create a root account together with its default enrollment term."""
        account = Account(name=name, root_account_id=None, parent_account_id=None)
        self.save(account)
        term = EnrollmentTerm(root_account_id=account.id, name=DEFAULT_TERM_NAME)
        self.save(term)
        account.default_enrollment_term_id = term.id
        self.save(account)
        return account

    def root_accounts(self) -> List[Account]:
        return self.where(Account, root_account_id=None)

    # ---- snapshots ---------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        tables: Dict[str, List[Dict[str, Any]]] = {}
        for model in MODELS:
            rows = []
            for record_id in sorted(self._tables[model.TABLE]):
                data = asdict(self._tables[model.TABLE][record_id])
                if "stuck_sis_fields" in data:
                    data["stuck_sis_fields"] = sorted(data["stuck_sis_fields"])
                rows.append(data)
            tables[model.TABLE] = rows
        return {"version": SNAPSHOT_VERSION, "next_ids": dict(self._next_id), "tables": tables}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SisStore":
        if data.get("version") != SNAPSHOT_VERSION:
            raise ValueError(f"Unsupported store snapshot version: {data.get('version')!r}")
        store = cls()
        tables = data.get("tables") or {}
        for model in MODELS:
            for raw in tables.get(model.TABLE, []):
                raw = dict(raw)
                if "stuck_sis_fields" in raw:
                    raw["stuck_sis_fields"] = set(raw["stuck_sis_fields"] or [])
                record = model(**raw)
                store._tables[model.TABLE][record.id] = record
                if isinstance(record, SisRecord) and record.sis_source_id:
                    store._sis_index[(model.TABLE, record.root_account_id, record.sis_source_id)] = record.id
        for table_name, next_id in (data.get("next_ids") or {}).items():
            if table_name in store._next_id:
                store._next_id[table_name] = int(next_id)
        return store

    def save_json(self, path: Path) -> None:
        atomic_write(path, json_dumps_stable(self.to_dict()))

    @classmethod
    def load_json(cls, path: Path) -> "SisStore":
        return cls.from_dict(json.loads(path.read_text(encoding="utf-8")))
