"""
Financial Inference: schema inference and normalization for financial exports.

Reads spreadsheet and delimited-text exports of unknown structure, decides
what each column and sheet means, infers the business process behind the
file, and normalizes every usable row into a canonical transaction model
with deterministic metrics.

Every decision is confidence-scored and recorded in an audit trail.  The
system never fabricates values: rows it cannot read are skipped and
counted, and low-confidence columns are flagged for review.
"""

__version__ = "1.0.0"
__author__ = "Financial Inference Team"

from financial_inference.pipeline import FinancialInferencePipeline  # noqa: F401
