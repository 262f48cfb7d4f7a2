"""
Unit tests for the IngestionService and job store.
"""

from __future__ import annotations

from pathlib import Path
from typing import List

import pytest

from financial_inference.ingestion import (
    GENERIC_FAILURE,
    IngestionService,
    InMemoryJobStore,
    JobRecord,
    JobStatus,
    safe_upload_name,
)
from financial_inference.pipeline import FinancialInferencePipeline

CSV = b"date,revenue\n2024-01-01,100\n2024-02-01,150\n"


@pytest.fixture
def pipeline() -> FinancialInferencePipeline:
    return FinancialInferencePipeline()


@pytest.fixture
def service(pipeline: FinancialInferencePipeline) -> IngestionService:
    return IngestionService(pipeline, max_workers=0)


# ======================================================================
# Job store
# ======================================================================

class TestJobStore:
    def test_put_get(self) -> None:
        store = InMemoryJobStore()
        record = JobRecord(job_id="j1", filename="a.csv")
        store.put("j1", record)
        assert store.get("j1") is record
        assert store.get("missing") is None
        assert len(store) == 1

    def test_record_dict_without_result(self) -> None:
        data = JobRecord(job_id="j1", filename="a.csv").to_dict()
        assert data["status"] == "processing"
        assert "result" not in data
        assert "error" not in data


# ======================================================================
# Inline processing
# ======================================================================

class TestInline:
    def test_completed_job(self, service: IngestionService) -> None:
        job_id = service.submit(CSV, "ledger.csv")

        status = service.status(job_id)
        assert status["job_id"] == job_id
        assert status["status"] == "completed"
        assert status["filename"] == "ledger.csv"
        result = status["result"]
        assert result["process_type"] == "mixed_ops"
        assert result["transaction_count"] == 2
        assert result["metrics"]["total_inflows"] == 250.0
        assert result["model"]["calculated_metrics"]["total_inflows"] == 250.0
        assert "timestamp" in status

    def test_job_ids_unique(self, service: IngestionService) -> None:
        assert service.submit(CSV, "a.csv") != service.submit(CSV, "a.csv")

    def test_parse_failure_message(self, service: IngestionService) -> None:
        job_id = service.submit(b"", "blank.csv")
        status = service.status(job_id)
        assert status["status"] == "failed"
        assert status["error"] == "Delimited file has no header line"
        assert "result" not in status

    def test_unsupported_extension(self, service: IngestionService) -> None:
        job_id = service.submit(b"%PDF-1.4", "report.pdf")
        record = service.record(job_id)
        assert record.status == JobStatus.FAILED
        assert "Unsupported file type" in record.error

    def test_filename_sanitised(self, service: IngestionService) -> None:
        job_id = service.submit(CSV, "../../etc/ledger.csv")
        assert service.record(job_id).filename == "etc_ledger.csv"

    def test_non_ascii_filename_keeps_format(self, service: IngestionService) -> None:
        job_id = service.submit(CSV, "日本.csv")
        status = service.status(job_id)
        assert status["status"] == "completed"
        assert status["filename"] == "upload.csv"

    def test_column_overrides_forwarded(self, service: IngestionService) -> None:
        content = b"when,amount\n2024-01-01,-5\n"
        job_id = service.submit(content, "odd.csv",
                                column_overrides={"default": {"when": "date"}})
        assert service.status(job_id)["result"]["transaction_count"] == 1

    def test_unknown_job(self, service: IngestionService) -> None:
        assert service.status("nope") is None
        assert service.record("nope") is None


# ======================================================================
# Temporary file handling
# ======================================================================

class TestTemporaryFiles:
    def test_removed_after_success(self, service: IngestionService,
                                   pipeline: FinancialInferencePipeline,
                                   monkeypatch: pytest.MonkeyPatch) -> None:
        seen: List[Path] = []
        original = pipeline.run_file

        def spy(path, **kwargs):
            seen.append(Path(path))
            assert Path(path).read_bytes() == CSV
            return original(path, **kwargs)

        monkeypatch.setattr(pipeline, "run_file", spy)
        service.submit(CSV, "ledger.csv")

        assert len(seen) == 1
        assert not seen[0].exists()
        assert not seen[0].parent.exists()

    def test_removed_after_unexpected_failure(self, service: IngestionService,
                                              pipeline: FinancialInferencePipeline,
                                              monkeypatch: pytest.MonkeyPatch) -> None:
        seen: List[Path] = []

        def explode(path, **kwargs):
            seen.append(Path(path))
            raise RuntimeError("disk on fire at /srv/secret")

        monkeypatch.setattr(pipeline, "run_file", explode)
        job_id = service.submit(CSV, "ledger.csv")

        status = service.status(job_id)
        assert status["status"] == "failed"
        assert status["error"] == GENERIC_FAILURE
        assert "secret" not in status["error"]
        assert not seen[0].exists()


# ======================================================================
# Background workers
# ======================================================================

class TestBackground:
    def test_worker_completes(self, pipeline: FinancialInferencePipeline) -> None:
        service = IngestionService(pipeline, max_workers=1)
        try:
            job_id = service.submit(CSV, "ledger.csv")
            record = service.wait(job_id, timeout=30)
            assert record.status == JobStatus.COMPLETED
            assert record.model is not None
            assert record.finished_at is not None
        finally:
            service.shutdown()

    def test_runs_do_not_share_audit(self, pipeline: FinancialInferencePipeline) -> None:
        service = IngestionService(pipeline, max_workers=2)
        try:
            ids = [service.submit(CSV, f"ledger{i}.csv") for i in range(4)]
            trails = [service.wait(i, timeout=30).model.audit_trail for i in ids]
        finally:
            service.shutdown()
        assert all(len(t) == len(trails[0]) for t in trails)
        assert len({id(t) for t in trails}) == 4

    def test_finished_futures_released(self, pipeline: FinancialInferencePipeline) -> None:
        service = IngestionService(pipeline, max_workers=1)
        try:
            job_id = service.submit(CSV, "ledger.csv")
            service.wait(job_id, timeout=30)
            assert job_id not in service._futures
        finally:
            service.shutdown()


@pytest.mark.parametrize("name, expected", [
    ("ledger.csv", "ledger.csv"),
    ("Book.XLSX", "Book.xlsx"),
    ("../../etc/ledger.csv", "etc_ledger.csv"),
    ("日本.csv", "upload.csv"),
    ("no_extension", "no_extension"),
    ("", "upload"),
])
def test_safe_upload_name(name: str, expected: str) -> None:
    assert safe_upload_name(name) == expected
