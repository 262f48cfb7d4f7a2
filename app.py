"""
Financial Inference HTTP API.

Thin Flask surface over the ingestion service: upload a file, poll its
job, then fetch the audit trail or a CSV summary of the finished model.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

from flask import Flask, Response, request

from financial_inference import __version__
from financial_inference.audit import audit_trail_to_text
from financial_inference.config import PipelineConfig
from financial_inference.ingestion import IngestionService, JobStatus
from financial_inference.logging_setup import get_logger
from financial_inference.pipeline import FinancialInferencePipeline
from financial_inference.serialization import model_to_csv_summary

logger = get_logger("app")

ALLOWED_EXTENSIONS = {"csv", "tsv", "txt", "xlsx", "xlsm"}

# -------------------------------------------------------
# Helpers
# -------------------------------------------------------


def allowed_file(filename: str) -> bool:
    return "." in filename and filename.rsplit(".", 1)[1].lower() in ALLOWED_EXTENSIONS


def _parse_overrides(raw: Optional[str]) -> Optional[Dict[str, Dict[str, str]]]:
    """Decode the optional ``column_overrides`` form field."""
    if not raw:
        return None
    data = json.loads(raw)
    if not isinstance(data, dict) or not all(isinstance(v, dict) for v in data.values()):
        raise ValueError("column_overrides must be an object of {sheet: {column: type}}")
    return data


def _finished_record(service: IngestionService, job_id: str):
    """Return ``(record, None)`` for a completed job, else ``(None, response)``."""
    record = service.record(job_id)
    if record is None:
        return None, ({"success": False, "error": "Unknown job id"}, 404)
    if record.status != JobStatus.COMPLETED or record.model is None:
        return None, ({
            "success": False,
            "status": record.status.value,
            "error": record.error or "Job has not completed",
        }, 409)
    return record, None


# -------------------------------------------------------
# App Setup
# -------------------------------------------------------


def create_app(service: Optional[IngestionService] = None) -> Flask:
    app = Flask(__name__)
    app.config["MAX_CONTENT_LENGTH"] = 16 * 1024 * 1024

    if service is None:
        service = IngestionService(
            FinancialInferencePipeline(PipelineConfig(log_level=logging.WARNING))
        )
    app.extensions["ingestion"] = service

    @app.route("/api/ingest", methods=["POST"])
    def api_ingest():
        if "file" not in request.files:
            return {"success": False, "error": "No file uploaded"}, 400

        file = request.files["file"]
        if file.filename == "":
            return {"success": False, "error": "No file selected"}, 400

        if not allowed_file(file.filename):
            return {
                "success": False,
                "error": f"Invalid file type. Allowed: {', '.join(sorted(ALLOWED_EXTENSIONS))}",
            }, 400

        try:
            overrides = _parse_overrides(request.form.get("column_overrides"))
        except ValueError as exc:
            return {"success": False, "error": f"Invalid column_overrides: {exc}"}, 400

        job_id = service.submit(file.read(), file.filename, column_overrides=overrides)
        return {"success": True, "job_id": job_id, "status": "processing"}, 202

    @app.route("/api/status/<job_id>", methods=["GET"])
    def api_status(job_id: str):
        status: Optional[Dict[str, Any]] = service.status(job_id)
        if status is None:
            return {"success": False, "error": "Unknown job id"}, 404
        return status, 200

    @app.route("/api/jobs/<job_id>/audit", methods=["GET"])
    def api_audit(job_id: str):
        record, error = _finished_record(service, job_id)
        if error is not None:
            return error
        return Response(
            audit_trail_to_text(record.model.audit_trail),
            mimetype="application/json",
        )

    @app.route("/api/jobs/<job_id>/summary.csv", methods=["GET"])
    def api_summary_csv(job_id: str):
        record, error = _finished_record(service, job_id)
        if error is not None:
            return error
        return Response(
            model_to_csv_summary(record.model),
            mimetype="text/csv",
            headers={
                "Content-Disposition": f"attachment; filename={job_id}-summary.csv"
            },
        )

    @app.route("/api/health", methods=["GET"])
    def api_health():
        return {
            "status": "online",
            "version": __version__,
            "api": "/api/ingest",
            "methods": ["POST"],
        }, 200

    return app


app = create_app()


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=5000, debug=True)
