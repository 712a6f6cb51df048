"""
Service-layer functions for the release log importer.

Goal:
- Keep framework (Flask) route files as thin "doorways" (parse inputs + call services + return response).
- Put import orchestration and run bookkeeping in here so it is reusable across APIs, the CLI and tests.
"""

from __future__ import annotations

import logging
import os
import sqlite3
import uuid
from typing import Any, Dict, List, Optional

from werkzeug.utils import secure_filename

from db.sqlite_db import get_conn, init_all_tables
from importer import runs
from importer.pipeline import KIND_FIRMWARE, KIND_FIRMWARE_COUNTRIES, KIND_LEGACY, run_firmware_countries, run_import
from importer.records import ImportFileError
from importer.report import build_failure

logger = logging.getLogger(__name__)


__all__ = [
    "ServiceError",
    "ValidationError",
    "NotFoundError",
    "PayloadTooLargeError",
    "ImportFailedError",
    "legacy_log_path",
    "firmware_log_path",
    "import_legacy_log",
    "import_firmware_log",
    "import_firmware_countries",
    "get_import_run",
    "list_import_runs",
    "save_upload",
]


class ServiceError(Exception):
    """
    Base class for service-layer exceptions.
    API routes catch these and convert them into HTTP responses.
    """

    status_code: int = 500

    def __init__(self, message: str, *, payload: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.payload: Dict[str, Any] = payload or {}


class ValidationError(ServiceError):
    status_code = 400


class NotFoundError(ServiceError):
    status_code = 404


class PayloadTooLargeError(ServiceError):
    status_code = 413


class ImportFailedError(ServiceError):
    """The run aborted mid-way; payload is the failure summary."""

    status_code = 500


# ----------------------------
# configuration
# ----------------------------

def import_data_dir() -> str:
    return os.environ.get("IMPORT_DATA_DIR", "ImportData")


def legacy_log_path() -> str:
    return os.environ.get("LEGACY_LOG_PATH") or os.path.join(import_data_dir(), "BM FlexCheck Version Log.csv")


def firmware_log_path() -> str:
    return os.environ.get("FIRMWARE_LOG_PATH") or os.path.join(import_data_dir(), "firmware_releases.csv")


def storage_path() -> str:
    return os.environ.get("STORAGE_PATH", "/data/storage")


def max_upload_bytes() -> int:
    return int(os.environ.get("IMPORT_MAX_UPLOAD_BYTES", str(25 * 1024 * 1024)))


# ----------------------------
# uploads
# ----------------------------

def save_upload(file: Any, *, content_length: Optional[int] = None) -> str:
    """Store an uploaded log under STORAGE_PATH/imports and return its path."""
    limit = max_upload_bytes()

    if content_length and content_length > (limit + 1024 * 1024):
        raise PayloadTooLargeError(f"file too large (max {limit} bytes)", payload={"max_upload_bytes": limit})

    if not file:
        raise ValidationError("file is required (multipart/form-data field: file)")

    stream = file.stream if hasattr(file, "stream") else file
    stream.seek(0, os.SEEK_END)
    size = stream.tell()
    stream.seek(0)

    if size > limit:
        raise PayloadTooLargeError(f"file too large (max {limit} bytes)", payload={"max_upload_bytes": limit})
    if size == 0:
        raise ValidationError("uploaded file is empty")

    name = secure_filename(getattr(file, "filename", "") or "") or "upload.csv"
    target_dir = os.path.join(storage_path(), "imports")
    os.makedirs(target_dir, exist_ok=True)
    target = os.path.join(target_dir, f"{uuid.uuid4().hex}_{name}")

    with open(target, "wb") as out:
        out.write(stream.read())

    logger.info("saved upload name=%s bytes=%s path=%s", name, size, target)
    return target


# ----------------------------
# imports
# ----------------------------

def _require_file(path: str, label: str) -> None:
    if not path or not os.path.isfile(path):
        raise ValidationError(f"{label} file not found at: {path}", payload={"path": path})


def _execute(kind: str, path: str, label: str, work) -> Dict[str, Any]:
    """
    Run one import inside its own connection and import_run row.

    Unusable input -> ValidationError (run failed, nothing else written).
    Any other error -> run failed, ImportFailedError carrying the failure payload.
    """
    _require_file(path, label)
    init_all_tables()

    run_id = runs.create_run(kind, path)
    try:
        with get_conn() as conn:
            summary = work(conn, run_id)
    except ImportFileError as e:
        runs.fail_run(run_id, str(e))
        logger.warning("%s import rejected run_id=%s: %s", kind, run_id, e)
        raise ValidationError(str(e), payload={"run_id": run_id, "path": path}) from e
    except Exception as e:
        logger.exception("%s import failed run_id=%s", kind, run_id)
        failure = build_failure(str(e), e, run_id=run_id)
        runs.fail_run(run_id, failure["message"])
        raise ImportFailedError(failure["message"], payload=failure) from e

    runs.finish_run(run_id, summary)
    return summary


def _import_log(kind: str, path: str, label: str) -> Dict[str, Any]:
    def work(conn: sqlite3.Connection, run_id: str) -> Dict[str, Any]:
        def on_progress(processed: int, total: int) -> None:
            runs.record_progress(conn, run_id, processed, total)

        return run_import(kind, path, conn, on_progress=on_progress, run_id=run_id)

    return _execute(kind, path, label, work)


def import_legacy_log(path: Optional[str] = None) -> Dict[str, Any]:
    return _import_log(KIND_LEGACY, path or legacy_log_path(), "legacy log")


def import_firmware_log(path: Optional[str] = None) -> Dict[str, Any]:
    return _import_log(KIND_FIRMWARE, path or firmware_log_path(), "firmware log")


def import_firmware_countries(path: Optional[str] = None) -> Dict[str, Any]:
    path = path or firmware_log_path()
    return _execute(
        KIND_FIRMWARE_COUNTRIES,
        path,
        "firmware log",
        lambda conn, run_id: run_firmware_countries(path, conn, run_id=run_id),
    )


# ----------------------------
# runs
# ----------------------------

def get_import_run(run_id: str) -> Dict[str, Any]:
    run_id = str(run_id or "").strip()
    if not run_id:
        raise ValidationError("run_id is required")

    init_all_tables()
    run = runs.get_run(run_id)
    if not run:
        raise NotFoundError("run_id not found", payload={"run_id": run_id})
    return run


def list_import_runs(limit: Any = 50) -> List[Dict[str, Any]]:
    try:
        n = int(limit)
    except (TypeError, ValueError):
        raise ValidationError("limit must be an integer")
    if n < 1 or n > 500:
        raise ValidationError("limit must be between 1 and 500")

    init_all_tables()
    return runs.list_runs(n)
