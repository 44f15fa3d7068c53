# tests/conftest.py
from __future__ import annotations

import sys
from pathlib import Path
from typing import Callable, Optional

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from importers.import_sis_batch import SisBatchResult, import_sis_batch  # noqa: E402
from models import SisImportOptions  # noqa: E402
from store import SisStore  # noqa: E402


@pytest.fixture
def store() -> SisStore:
    return SisStore()


@pytest.fixture
def root_account(store):
    return store.create_root_account("Test Root")


@pytest.fixture
def write_csv(tmp_path: Path) -> Callable[..., Path]:
    """write_csv("header", "row", ...) -> path of a fresh CSV file under tmp_path."""
    counter = {"n": 0}

    def _write(*lines: str, name: Optional[str] = None) -> Path:
        counter["n"] += 1
        path = tmp_path / (name or f"sis_{counter['n']:03d}.csv")
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return path

    return _write


@pytest.fixture
def process_csv_data(store, root_account, write_csv) -> Callable[..., SisBatchResult]:
    """
    Run one SIS batch made of a single CSV built from `lines`.
    Messages are left for the test to inspect.
    """
    def _process(*lines: str, options: Optional[SisImportOptions] = None) -> SisBatchResult:
        path = write_csv(*lines)
        return import_sis_batch(store=store, root_account_id=root_account.id, paths=[path], options=options)

    return _process


@pytest.fixture
def process_csv_data_cleanly(process_csv_data) -> Callable[..., SisBatchResult]:
    """Same as process_csv_data but the batch must finish without any message."""
    def _process(*lines: str, options: Optional[SisImportOptions] = None) -> SisBatchResult:
        result = process_csv_data(*lines, options=options)
        assert result.errors == [], result.errors
        assert result.batch.workflow_state == "imported"
        return result

    return _process
