"""
Audit Log.

Append-only record of every pipeline decision and every error.  One
``AuditLogger`` accumulates entries across a whole pipeline run and its
entry list is attached verbatim to the final model.  Each entry is also
mirrored to the ``financial_inference.audit`` logger.

The trail serialises to a JSON document (``to_text``) that ``from_text``
reads back in the same order.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Dict, List, Optional

from financial_inference.logging_setup import get_logger
from financial_inference.schema import AuditEventType, AuditLogEntry

logger = get_logger("audit")


class AuditLogger:
    """Accumulates ``AuditLogEntry`` records for one pipeline run."""

    def __init__(self) -> None:
        self._entries: list[AuditLogEntry] = []

    def add_entry(
        self,
        event_type: AuditEventType,
        description: str,
        details: Optional[Dict[str, Any]] = None,
        error_message: Optional[str] = None,
    ) -> AuditLogEntry:
        entry = AuditLogEntry(
            timestamp=datetime.now(),
            event_type=event_type,
            description=description,
            details=dict(details or {}),
            error_message=error_message,
        )
        self._entries.append(entry)

        if error_message:
            logger.error(
                "[%s] %s: %s | %s",
                event_type.value, description, error_message, entry.details,
            )
        else:
            logger.info("[%s] %s | %s", event_type.value, description, entry.details)
        return entry

    @property
    def entries(self) -> List[AuditLogEntry]:
        """The live, append-only entry list."""
        return self._entries

    def of_type(self, event_type: AuditEventType) -> List[AuditLogEntry]:
        return [e for e in self._entries if e.event_type == event_type]

    @property
    def has_errors(self) -> bool:
        return any(e.event_type == AuditEventType.ERROR_OCCURRED for e in self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    # ------------------------------------------------------------------ #
    # Serialisation
    # ------------------------------------------------------------------ #

    def to_text(self, indent: int = 2) -> str:
        return audit_trail_to_text(self._entries, indent=indent)


def audit_trail_to_text(entries: List[AuditLogEntry], indent: int = 2) -> str:
    """Serialise an audit trail to a JSON document."""
    return json.dumps(
        {"audit_trail": [e.to_dict() for e in entries]},
        indent=indent,
        ensure_ascii=False,
        default=str,
    )


def audit_trail_from_text(text: str) -> List[AuditLogEntry]:
    """Parse a document produced by ``audit_trail_to_text``.

    Raises
    ------
    ValueError
        If the document is not an audit trail.
    """
    data = json.loads(text)
    if isinstance(data, dict):
        data = data.get("audit_trail")
    if not isinstance(data, list):
        raise ValueError("Audit trail document must contain an 'audit_trail' list")
    return [AuditLogEntry.from_dict(item) for item in data]
