"""
Ingestion boundary.

Accepts an uploaded file, acknowledges it immediately with a job id, and
runs the pipeline in the background.  Job records move from
``processing`` to ``completed`` or ``failed`` and are kept in an injected
``JobStore``; ``InMemoryJobStore`` is the non-durable default.

Uploads are written to a temporary directory for the duration of the run
and removed on both the success and the failure path.  Failures surface
as a human-readable message only; stack traces go to the log.
"""

from __future__ import annotations

import tempfile
import threading
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

from werkzeug.utils import secure_filename

from financial_inference.errors import FinancialInferenceError
from financial_inference.logging_setup import get_logger
from financial_inference.pipeline import FinancialInferencePipeline
from financial_inference.schema import NormalizedFinancialModel, ProcessDefinition
from financial_inference.serialization import model_summary, model_to_dict
from financial_inference.sheet_classifier import ColumnOverrides

logger = get_logger("ingestion")

GENERIC_FAILURE = "An unexpected error occurred while processing the file"


def safe_upload_name(filename: str) -> str:
    """Sanitise *filename* for disk while keeping its extension.

    ``secure_filename`` drops non-ASCII characters, so a name written in a
    non-Latin script would collapse to its bare extension and lose the
    format.  The stem and the suffix are cleaned separately.
    """
    suffix = secure_filename(Path(filename).suffix)
    stem = filename[: len(filename) - len(Path(filename).suffix)]
    base = secure_filename(stem) or "upload"
    return f"{base}.{suffix.lower()}" if suffix else base


class JobStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class JobRecord:
    """State of one ingestion job."""

    job_id: str
    filename: str
    status: JobStatus = JobStatus.PROCESSING
    submitted_at: datetime = field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None
    error: Optional[str] = None
    model: Optional[NormalizedFinancialModel] = None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "job_id": self.job_id,
            "filename": self.filename,
            "status": self.status.value,
            "timestamp": (self.finished_at or self.submitted_at).isoformat(),
        }
        if self.model is not None:
            result = model_summary(self.model)
            result["model"] = model_to_dict(self.model)
            d["result"] = result
        if self.error is not None:
            d["error"] = self.error
        return d


class JobStore(Protocol):
    """Key-value storage for job records."""

    def put(self, job_id: str, record: JobRecord) -> None: ...

    def get(self, job_id: str) -> Optional[JobRecord]: ...


class InMemoryJobStore:
    """Process-local ``JobStore``.  Contents are lost on restart."""

    def __init__(self) -> None:
        self._records: Dict[str, JobRecord] = {}
        self._lock = threading.Lock()

    def put(self, job_id: str, record: JobRecord) -> None:
        with self._lock:
            self._records[job_id] = record

    def get(self, job_id: str) -> Optional[JobRecord]:
        with self._lock:
            return self._records.get(job_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


class IngestionService:
    """Submit uploads to the pipeline and track their jobs.

    Parameters
    ----------
    pipeline:
        Shared pipeline; each run uses its own audit logger.
    store:
        Job record storage.  Defaults to a fresh ``InMemoryJobStore``.
    max_workers:
        Background worker threads.  ``0`` runs every job inline inside
        ``submit``.
    """

    def __init__(
        self,
        pipeline: Optional[FinancialInferencePipeline] = None,
        store: Optional[JobStore] = None,
        max_workers: int = 2,
    ) -> None:
        self._pipeline = pipeline or FinancialInferencePipeline()
        self._store: JobStore = store if store is not None else InMemoryJobStore()
        self._executor = (
            ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="ingest")
            if max_workers > 0 else None
        )
        self._futures: Dict[str, Future] = {}

    def submit(
        self,
        content: bytes,
        filename: str,
        process_override: Optional[ProcessDefinition] = None,
        column_overrides: Optional[ColumnOverrides] = None,
    ) -> str:
        """Register a job for *content* and start it; returns the job id."""
        job_id = uuid.uuid4().hex
        safe_name = safe_upload_name(filename)
        self._store.put(job_id, JobRecord(job_id=job_id, filename=safe_name))
        logger.info("Job %s accepted: %s (%d bytes)", job_id, safe_name, len(content))

        if self._executor is None:
            self._process(job_id, content, safe_name, process_override, column_overrides)
        else:
            future = self._executor.submit(
                self._process, job_id, content, safe_name, process_override, column_overrides
            )
            self._futures[job_id] = future
            future.add_done_callback(lambda _f, key=job_id: self._futures.pop(key, None))
        return job_id

    def status(self, job_id: str) -> Optional[Dict[str, Any]]:
        """``{job_id, status, result?, error?, timestamp}`` or ``None``."""
        record = self._store.get(job_id)
        return record.to_dict() if record is not None else None

    def record(self, job_id: str) -> Optional[JobRecord]:
        return self._store.get(job_id)

    def wait(self, job_id: str, timeout: Optional[float] = None) -> Optional[JobRecord]:
        """Block until the job has finished, then return its record."""
        future = self._futures.get(job_id)
        if future is not None:
            future.result(timeout=timeout)
            self._futures.pop(job_id, None)
        return self._store.get(job_id)

    def shutdown(self, wait: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)

    # ------------------------------------------------------------------ #
    # Worker
    # ------------------------------------------------------------------ #

    def _process(
        self,
        job_id: str,
        content: bytes,
        filename: str,
        process_override: Optional[ProcessDefinition],
        column_overrides: Optional[ColumnOverrides],
    ) -> None:
        record = self._store.get(job_id) or JobRecord(job_id=job_id, filename=filename)
        try:
            with tempfile.TemporaryDirectory(prefix="fin-ingest-") as tmp_dir:
                path = Path(tmp_dir) / filename
                path.write_bytes(content)
                model = self._pipeline.run_file(
                    path,
                    process_override=process_override,
                    column_overrides=column_overrides,
                )
        except FinancialInferenceError as exc:
            logger.warning("Job %s failed: %s", job_id, exc.message)
            self._store.put(job_id, replace(
                record, status=JobStatus.FAILED, error=exc.message,
                finished_at=datetime.now(),
            ))
        except Exception:
            logger.exception("Job %s failed unexpectedly", job_id)
            self._store.put(job_id, replace(
                record, status=JobStatus.FAILED, error=GENERIC_FAILURE,
                finished_at=datetime.now(),
            ))
        else:
            logger.info("Job %s completed: %d transactions",
                        job_id, len(model.transactions))
            self._store.put(job_id, replace(
                record, status=JobStatus.COMPLETED, model=model,
                finished_at=datetime.now(),
            ))
