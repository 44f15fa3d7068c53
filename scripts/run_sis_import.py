#!/usr/bin/env python3
from __future__ import annotations

import argparse
import sys
import tempfile
from pathlib import Path
from typing import List, Optional

import requests

# --- ensure repo root on sys.path ---
THIS_FILE = Path(__file__).resolve()
REPO_ROOT = THIS_FILE.parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from importers.import_sis_batch import IMPORT_ORDER, import_sis_batch, scan_sis_batch
from logging_setup import setup_logging
from models import SisImportOptions
from store import SisStore
from utils.archive import bundle_archive
from utils.fs import atomic_write, json_dumps_stable
from utils.sis_errors import write_errors_csv

EXIT_OK = 0
EXIT_MESSAGES = 1
EXIT_CONFIG = 2
EXIT_REMOTE_FAILED = 3


def _print_dry_run(paths: List[Path]) -> None:
    counts = scan_sis_batch(paths)
    print("DRY-RUN: plan for SIS batch")
    for kind in IMPORT_ORDER:
        print(f" - {kind}: {counts.get(kind, 0)} row(s)")
    print(f" - unrecognized files: {counts.get('unrecognized_files', 0)}")
    if counts.get("problems"):
        print(f" - unreadable inputs: {counts['problems']}")


def _load_store(path: Optional[Path]) -> SisStore:
    if path is not None and path.exists():
        return SisStore.load_json(path)
    return SisStore()


def _root_account_id(store: SisStore, name: str) -> int:
    roots = store.root_accounts()
    if roots:
        return roots[0].id  # type: ignore[return-value]
    return store.create_root_account(name).id  # type: ignore[return-value]


def _write_summary(path: Path, summary: dict) -> None:
    if path.exists() and path.is_dir():
        path = path / "sis_import_summary.json"
    atomic_write(path, json_dumps_stable(summary))
    print(f"Wrote summary -> {path}")


def _run_local(args, options: SisImportOptions) -> int:
    store = _load_store(args.store)
    root_id = _root_account_id(store, args.root_account_name)

    result = import_sis_batch(store=store, root_account_id=root_id, paths=args.paths, options=options)
    batch = result.batch

    if args.store is not None:
        store.save_json(args.store)

    if args.errors_csv:
        write_errors_csv(store, batch.id, args.errors_csv)  # type: ignore[arg-type]
        print(f"Wrote errors -> {args.errors_csv}")

    if args.summary_json:
        _write_summary(args.summary_json, {
            "sis_batch_id": batch.id,
            "root_account_id": root_id,
            "workflow_state": batch.workflow_state,
            "counts": result.counts,
            "errors": [{"file": f, "message": m} for f, m in result.errors],
            "inputs": batch.inputs,
        })

    for kind, counters in result.counts.items():
        print(f"{kind}: " + ", ".join(f"{k}={v}" for k, v in counters.items()))
    for file, message in result.errors:
        print(f"  [{file or '-'}] {message}")
    print(f"SIS batch {batch.id} finished: {batch.workflow_state}")
    return EXIT_OK if result.clean else EXIT_MESSAGES


def _run_remote(args, options: SisImportOptions) -> int:
    # utils.api loads .env at import time; import it only for remote runs
    from utils.api import target_api_from_env

    canvas = target_api_from_env()
    if canvas is None:
        print("ERROR: CANVAS_TARGET_URL and CANVAS_TARGET_TOKEN must be set in environment/.env", file=sys.stderr)
        return EXIT_CONFIG

    with tempfile.TemporaryDirectory(prefix="sis_upload_") as tmp:
        archive = bundle_archive(args.paths, Path(tmp) / "sis_batch.zip")
        try:
            created = canvas.create_sis_import(args.account_id, archive, options=options)
            status = canvas.wait_for_sis_import(
                args.account_id, created["id"], poll_interval=args.poll_interval, timeout=args.timeout
            )
        except (requests.RequestException, RuntimeError, TimeoutError) as exc:
            print(f"ERROR: remote SIS import failed: {exc}", file=sys.stderr)
            return EXIT_REMOTE_FAILED

    state = status.get("workflow_state")
    if args.summary_json:
        _write_summary(args.summary_json, status)
    for warning in status.get("processing_warnings") or []:
        print("  warning: " + " ".join(str(w) for w in warning))
    for error in status.get("processing_errors") or []:
        print("  error: " + " ".join(str(e) for e in error))
    print(f"Remote SIS import {created['id']} finished: {state}")
    if state == "imported":
        return EXIT_OK
    if state == "imported_with_messages":
        return EXIT_MESSAGES
    return EXIT_REMOTE_FAILED


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Run an SIS CSV batch import.")
    ap.add_argument("paths", nargs="+", type=Path, help="CSV, XLSX or zip files making up the batch")
    ap.add_argument("--store", type=Path, default=None,
                    help="JSON store snapshot to load before and save after the run.")
    ap.add_argument("--root-account-name", default="Root Account",
                    help="Name of the root account created when the store is empty.")
    ap.add_argument("--override-sis-stickiness", action="store_true",
                    help="Overwrite fields that were changed outside of SIS imports.")
    ap.add_argument("--add-sis-stickiness", action="store_true",
                    help="With --override-sis-stickiness: make written fields sticky.")
    ap.add_argument("--clear-sis-stickiness", action="store_true",
                    help="With --override-sis-stickiness: clear stickiness on written fields.")
    ap.add_argument("--max-messages", type=int, default=None,
                    help="Maximum number of batch messages to store.")
    ap.add_argument("--dry-run", action="store_true", help="Classify and count rows only; no writes.")
    ap.add_argument("--errors-csv", type=Path, default=None, help="Write batch messages as CSV here.")
    ap.add_argument("--summary-json", type=Path, default=None,
                    help="If provided, write a JSON summary of the run here.")
    ap.add_argument("--remote", action="store_true",
                    help="Submit the batch to Canvas (CANVAS_TARGET_URL/TOKEN) instead of the local store.")
    ap.add_argument("--account-id", type=int, default=None, help="Canvas root account id for --remote.")
    ap.add_argument("--poll-interval", type=float, default=5.0, help="Seconds between remote status polls.")
    ap.add_argument("--timeout", type=float, default=3600.0, help="Give up waiting on a remote import after N seconds.")
    ap.add_argument("-v", "--verbose", action="count", default=0)

    args = ap.parse_args(argv)

    setup_logging(verbosity=args.verbose or 1)

    if args.dry_run:
        _print_dry_run(args.paths)
        return EXIT_OK

    try:
        options = SisImportOptions(
            override_sis_stickiness=args.override_sis_stickiness,
            add_sis_stickiness=args.add_sis_stickiness,
            clear_sis_stickiness=args.clear_sis_stickiness,
            max_messages=args.max_messages,
        )
    except ValueError as exc:
        ap.error(str(exc))

    if args.remote:
        if args.account_id is None:
            ap.error("--remote requires --account-id")
        return _run_remote(args, options)

    return _run_local(args, options)


if __name__ == "__main__":
    raise SystemExit(main())
