# importers/import_sis_batch.py
from __future__ import annotations

import os
import tarfile
import tempfile
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from importers.context import SisImportContext
from importers.import_abstract_courses import import_abstract_courses
from importers.import_accounts import import_accounts
from importers.import_courses import import_courses
from importers.import_terms import import_terms
from logging_setup import get_logger
from models import Account, SisBatch, SisImportOptions
from store import SisStore
from utils.archive import UnzipError, archive_kind, extract_archive
from utils.csv_files import SUPPORTED_SUFFIXES, SisCsvFile, read_sis_file
from utils.dates import now_utc_iso
from utils.fs import safe_relpath, sha256_file
from utils.sis_errors import SisMessages

# Importers run in this order no matter how the files were submitted
IMPORT_ORDER = ["accounts", "terms", "abstract_courses", "courses"]

UNRECOGNIZED_HEADERS = "Couldn't find Canvas CSV import headers"

DEFAULT_MAX_MESSAGES = 1000
# Allow override via env (e.g., SIS_MAX_MESSAGES=5000)
_mm = os.getenv("SIS_MAX_MESSAGES")
if _mm:
    try:
        DEFAULT_MAX_MESSAGES = max(1, int(_mm))
    except ValueError:
        pass

Importer = Callable[[SisImportContext, List[SisCsvFile]], Dict[str, int]]

_IMPORTERS: Dict[str, Importer] = {
    "accounts": import_accounts,
    "terms": import_terms,
    "abstract_courses": import_abstract_courses,
    "courses": import_courses,
}


@dataclass
class SisBatchResult:
    batch: SisBatch
    counts: Dict[str, Dict[str, int]] = field(default_factory=dict)
    errors: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return self.batch.workflow_state == "imported"


def _expand_input(
    path: Path,
    workdir: Path,
    index: int,
    on_problem: Callable[[str, str], None],
) -> List[SisCsvFile]:
    """Turn one submitted path into parsed SIS files; problems are reported, not raised."""
    if not path.exists():
        on_problem(path.name, f"File not found: {path.name}")
        return []

    suffix = path.suffix.lower()
    if archive_kind(path) is not None:
        dest = workdir / f"{index:03d}_{path.stem}"
        try:
            warnings = extract_archive(path, dest)
        except (UnzipError, zipfile.BadZipFile, tarfile.TarError, OSError, ValueError) as exc:
            on_problem(path.name, f"Unable to extract {path.name}: {exc}")
            return []
        for name in warnings.get("unsafe", []):
            on_problem(path.name, f"Skipped unsafe archive entry {name}")
        for name in warnings.get("already_exists", []):
            on_problem(path.name, f"Skipped duplicate archive entry {name}")
        members = sorted(
            p for p in dest.rglob("*")
            if p.is_file() and p.suffix.lower() in SUPPORTED_SUFFIXES and not p.name.startswith(".")
        )
        parsed: List[SisCsvFile] = []
        for member in members:
            parsed.extend(_read(member, safe_relpath(member, dest), on_problem))
        return parsed

    if suffix in SUPPORTED_SUFFIXES:
        return _read(path, path.name, on_problem)

    on_problem(path.name, f"Unsupported file type for {path.name}")
    return []


def _read(path: Path, name: str, on_problem: Callable[[str, str], None]) -> List[SisCsvFile]:
    try:
        return [read_sis_file(path, name=name)]
    except UnicodeDecodeError:
        on_problem(name, f"Unable to read {name}: file is not UTF-8 encoded")
    except Exception as exc:
        on_problem(name, f"Unable to read {name}: {exc}")
    return []


def _fingerprint(paths: Sequence[Path], on_problem: Callable[[str, str], None]) -> List[Dict[str, str]]:
    """name + sha256 of every readable input file."""
    inputs: List[Dict[str, str]] = []
    for p in paths:
        if not p.is_file():
            continue
        try:
            inputs.append({"name": p.name, "sha256": sha256_file(p)})
        except OSError as exc:
            on_problem(p.name, f"Unable to read {p.name}: {exc}")
    return inputs


def _group_by_kind(csv_files: Iterable[SisCsvFile]) -> Dict[str, List[SisCsvFile]]:
    grouped: Dict[str, List[SisCsvFile]] = {k: [] for k in IMPORT_ORDER}
    for f in csv_files:
        if f.kind is not None:
            grouped[f.kind].append(f)
    for files in grouped.values():
        files.sort(key=lambda f: f.name)
    return grouped


def scan_sis_batch(paths: Sequence[Path]) -> Dict[str, int]:
    """
    Dry-run: classify inputs and count data rows per importer.
    Nothing is written to any store.
    """
    counts: Dict[str, int] = {k: 0 for k in IMPORT_ORDER}
    counts["unrecognized_files"] = 0
    counts["problems"] = 0

    def _problem(_file: str, _message: str) -> None:
        counts["problems"] += 1

    with tempfile.TemporaryDirectory(prefix="sis_scan_") as tmp:
        for index, path in enumerate(paths):
            for f in _expand_input(Path(path), Path(tmp), index, _problem):
                if f.kind is None:
                    counts["unrecognized_files"] += 1
                else:
                    counts[f.kind] += len(f.rows)
    return counts


def import_sis_batch(
    *,
    store: SisStore,
    root_account_id: int,
    paths: Sequence[Path],
    options: Optional[SisImportOptions] = None,
) -> SisBatchResult:
    """
    Import one SIS batch (CSV, XLSX, zip or tar inputs) into `store`.

    Row and file problems are recorded as SisBatchError rows and never abort
    the batch; an unexpected error outside row handling ends the batch in
    failed_with_messages.
    """
    options = options or SisImportOptions()
    root = store.get(Account, root_account_id)
    if root is None or not root.root_account:
        raise ValueError(f"{root_account_id} is not a root account")

    paths = [Path(p) for p in paths]
    batch = SisBatch(
        root_account_id=root.id,
        workflow_state="importing",
        options=options.to_dict(),
        created_at=now_utc_iso(),
    )
    store.save(batch)
    log = get_logger(artifact="batch", batch_id=batch.id)

    messages = SisMessages(
        store,
        root_account_id=root.id,  # type: ignore[arg-type]
        batch_id=batch.id,  # type: ignore[arg-type]
        max_messages=options.max_messages or DEFAULT_MAX_MESSAGES,
    )
    ctx = SisImportContext(store=store, root_account=root, batch=batch, options=options, messages=messages)
    counts: Dict[str, Dict[str, int]] = {}

    def _file_problem(name: str, message: str) -> None:
        messages.add(name, message, failure=True)

    log.info("Starting SIS batch inputs=%s", ",".join(p.name for p in paths))
    try:
        batch.inputs = _fingerprint(paths, _file_problem)
        store.save(batch)

        with tempfile.TemporaryDirectory(prefix="sis_batch_") as tmp:
            csv_files: List[SisCsvFile] = []
            for index, path in enumerate(paths):
                csv_files.extend(_expand_input(path, Path(tmp), index, _file_problem))

            for f in csv_files:
                if f.kind is None:
                    messages.add(f.name, UNRECOGNIZED_HEADERS, failure=True)

            grouped = _group_by_kind(csv_files)
            total_rows = sum(len(f.rows) for files in grouped.values() for f in files) or 1
            done_rows = 0

            for kind in IMPORT_ORDER:
                files = grouped[kind]
                if not files:
                    continue
                log.info("Running %s importer", kind, extra={"files": len(files)})
                counts[kind] = _IMPORTERS[kind](ctx, files)
                done_rows += sum(len(f.rows) for f in files)
                batch.progress = min(99, int(done_rows * 100 / total_rows))
                store.save(batch)

        batch.workflow_state = "imported_with_messages" if messages.total else "imported"
        batch.progress = 100
    except Exception as exc:
        log.exception("SIS batch aborted")
        messages.add("", f"Batch aborted: {type(exc).__name__}: {exc}", failure=True)
        batch.workflow_state = "failed_with_messages"

    messages.finish()
    batch.counts = counts
    batch.error_count = len(messages.errors)
    batch.ended_at = now_utc_iso()
    store.save(batch)

    log.info(
        "SIS batch finished",
        extra={"state": batch.workflow_state, "counts": counts, "errors": len(messages.errors)},
    )
    return SisBatchResult(batch=batch, counts=counts, errors=list(messages.errors))
