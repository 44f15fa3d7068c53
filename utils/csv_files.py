# utils/csv_files.py
from __future__ import annotations

import csv
import io
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from openpyxl import load_workbook

from models import Artifact
from utils.fs import csv_dumps

SUPPORTED_SUFFIXES = (".csv", ".xlsx")


@dataclass(frozen=True, slots=True)
class CsvRow:
    lineno: int  # physical line (header is 1)
    values: Dict[str, str]
    raw: str

    def get(self, key: str) -> str:
        return (self.values.get(key) or "").strip()

    def has(self, key: str) -> bool:
        return key in self.values


@dataclass(slots=True)
class SisCsvFile:
    name: str
    headers: List[str]
    rows: List[CsvRow] = field(default_factory=list)
    kind: Optional[Artifact] = None


def normalize_headers(headers: Sequence[object]) -> List[str]:
    out = []
    for h in headers:
        s = "" if h is None else str(h)
        out.append(s.replace("\ufeff", "").strip().lower())
    return out


def classify_headers(headers: Sequence[str]) -> Optional[Artifact]:
    """
    Map a header row to the importer that understands it.
    Abstract course files are checked before courses because course files
    may carry an abstract_course_id column.
    """
    cols = set(headers)
    if {"account_id", "parent_account_id"} <= cols:
        return "accounts"
    if {"term_id", "name"} <= cols:
        return "terms"
    if {"abstract_course_id", "short_name"} <= cols and "course_id" not in cols:
        return "abstract_courses"
    if {"course_id", "short_name"} <= cols:
        return "courses"
    return None


def _row_text(cells: Sequence[str]) -> str:
    return csv_dumps(cells, []).rstrip("\n")


def _build_rows(headers: List[str], records: List[tuple[int, List[str]]]) -> List[CsvRow]:
    rows: List[CsvRow] = []
    for lineno, cells in records:
        if not any(c.strip() for c in cells):
            continue
        padded = list(cells) + [""] * (len(headers) - len(cells))
        values = {h: padded[i] for i, h in enumerate(headers) if h}
        rows.append(CsvRow(lineno=lineno, values=values, raw=_row_text(cells)))
    return rows


def parse_csv_text(text: str, *, name: str) -> SisCsvFile:
    if text.startswith("\ufeff"):
        text = text[1:]
    reader = csv.reader(io.StringIO(text, newline=""))
    header: Optional[List[str]] = None
    records: List[tuple[int, List[str]]] = []
    for cells in reader:
        if header is None:
            if not any(c.strip() for c in cells):
                continue
            header = normalize_headers(cells)
            continue
        records.append((reader.line_num, cells))
    headers = header or []
    return SisCsvFile(
        name=name,
        headers=headers,
        rows=_build_rows(headers, records),
        kind=classify_headers(headers),
    )


def _cell_text(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def read_xlsx(path: Path, *, name: str) -> SisCsvFile:
    """First worksheet, first non-empty row is the header."""
    wb = load_workbook(path, read_only=True, data_only=True)
    try:
        ws = wb.worksheets[0]
        header: Optional[List[str]] = None
        records: List[tuple[int, List[str]]] = []
        for lineno, row in enumerate(ws.iter_rows(values_only=True), start=1):
            cells = [_cell_text(v) for v in row]
            if header is None:
                if not any(c.strip() for c in cells):
                    continue
                header = normalize_headers(cells)
                continue
            records.append((lineno, cells))
    finally:
        wb.close()
    headers = header or []
    return SisCsvFile(
        name=name,
        headers=headers,
        rows=_build_rows(headers, records),
        kind=classify_headers(headers),
    )


def read_sis_file(path: Path, *, name: Optional[str] = None) -> SisCsvFile:
    """Read a .csv or .xlsx SIS file. Raises ValueError for anything else."""
    display = name or path.name
    suffix = path.suffix.lower()
    if suffix == ".csv":
        return parse_csv_text(path.read_text(encoding="utf-8"), name=display)
    if suffix == ".xlsx":
        return read_xlsx(path, name=display)
    raise ValueError(f"Unsupported file type for {display}")
