"""
Keyword Vocabulary Engine.

The header / sheet-name keyword sets that decide how real-world
spreadsheets are recognised.  They are the closest thing this system has to
a wire format: changing a keyword changes which files are understood, so
the built-in sets are kept verbatim and users *extend* them rather than
edit them.

Design decisions
----------------
* Keywords are grouped into named **slots** (``"column.date"``,
  ``"sheet.budget"``, ``"indicator.outflow"``, ...).  Order inside a slot is
  significant: ``match`` returns the first keyword that hits.
* Matching is case-insensitive substring containment on normalised text,
  except keywords of three characters or fewer (``ar``, ``ap``, ``id``,
  ``in``, ``out``), which must match a whole token.  Without that rule
  "quarterly" would count as an accounts-receivable indicator.
* Users can extend at runtime via ``add_keywords`` or
  ``load_custom_keywords`` (JSON file ``{"slot": ["kw", ...]}``).
"""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from financial_inference.logging_setup import get_logger
from financial_inference.schema import ProcessType, SemanticType

logger = get_logger("keywords")


# ---------------------------------------------------------------------------
# Built-in keyword sets
# ---------------------------------------------------------------------------

_BUILTIN_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    # --- Column semantic classification -------------------------------
    "column.date": ("date", "time", "created", "posted", "period"),
    "column.amount": (
        "amount", "value", "balance", "total", "cost",
        "revenue", "expense", "inflow", "outflow",
    ),
    "column.entity": (
        "entity", "department", "project", "fund",
        "account", "client", "vendor", "supplier",
    ),
    "column.category": (
        "category", "type", "class", "kind", "segment", "region", "location",
    ),
    "column.direction": (
        "direction", "flow", "type", "inflow", "outflow", "in", "out",
    ),
    "column.period": ("period", "month", "quarter", "fiscal", "fy"),
    "column.status": ("status", "state", "condition"),
    "column.reference": (
        "reference", "ref", "invoice", "bill", "doc", "number", "no", "id",
    ),
    "column.description": (
        "description", "memo", "note", "narration", "details", "particulars",
    ),

    # --- Sheet-name classification (checked in this order) -------------
    "sheet.budget": ("budget", "forecast", "plan", "projection"),
    "sheet.transactions": ("transaction", "invoice", "bill", "payment", "receipt"),
    "sheet.master_data": (
        "master", "chart of accounts", "chart.of.accounts", "reference", "lookup",
    ),
    "sheet.actual": ("actual", "realization", "fact", "recorded"),
    "sheet.assumptions": ("assumption", "parameter", "config", "setting"),

    # --- Process-type indicators (sheet names) -------------------------
    "indicator.inflow": (
        "revenue", "sales", "income", "receipt", "customer", "ar", "receivable",
    ),
    "indicator.outflow": (
        "expense", "cost", "payment", "bill", "vendor", "ap", "payable",
    ),
    "indicator.budget": (
        "budget", "forecast", "plan", "projection", "expected", "planned",
    ),
    "indicator.fund": ("fund", "inflow", "deployment", "drawdown", "allocation"),

    # --- Sign-resolution vocabulary per process type -------------------
    "sources.revenue_ar.inflow": (
        "revenue", "sales", "income", "receipt", "receivable", "invoice",
    ),
    "sources.revenue_ar.outflow": ("refund", "credit note", "write off", "chargeback"),
    "sources.ap_expense.inflow": ("refund", "rebate", "reimbursement"),
    "sources.ap_expense.outflow": (
        "expense", "cost", "bill", "payable", "payment", "vendor", "supplier",
    ),
    "sources.budget_actual.inflow": ("revenue", "income", "sales"),
    "sources.budget_actual.outflow": ("expense", "cost", "spend", "payroll"),
    "sources.fund_ops.inflow": (
        "inflow", "contribution", "grant", "drawdown", "capital call",
    ),
    "sources.fund_ops.outflow": (
        "deployment", "distribution", "allocation", "operational", "outflow",
    ),
    "sources.mixed_ops.inflow": (
        "revenue", "sales", "income", "receipt", "interest", "dividend", "inflow",
    ),
    "sources.mixed_ops.outflow": (
        "expense", "operational", "payroll", "rent", "capex",
        "capital", "investment", "outflow",
    ),

    # --- Entity dimensions (entity-typed column headers) ---------------
    "dimension.department": ("department", "division"),
    "dimension.project": ("project", "initiative"),
    "dimension.fund": ("fund", "allocation"),
    "dimension.entity": ("entity", "company", "account"),
    "dimension.client": ("client", "customer"),
    "dimension.vendor": ("vendor", "supplier"),

    # --- Per-row slot extraction (normalizer), in priority order -------
    "row.date": ("date", "time", "created", "posted", "period"),
    "row.amount": ("amount", "value", "balance", "total", "cost", "revenue", "expense"),
    "row.entity": ("entity", "department", "project"),
    "row.entity_fallback": ("fund", "account", "client", "vendor", "supplier"),
    "row.category": ("category", "type", "class"),
    "row.description": ("description", "memo", "note"),
    "row.reference": ("reference", "id", "invoice", "bill"),
    "row.status": ("status", "state", "condition"),
    "row.direction": ("direction",),

    # --- Row content flags ---------------------------------------------
    "flag.accrual": ("accrual", "accrued", "accruing"),
    "status.pending": ("pending", "draft"),
    "status.scheduled": ("scheduled", "future"),
    "category.receivable": ("receivable",),
    "category.payable": ("payable", "expense"),
}

# Column slots for each semantic type, used by the fuzzy suggestion layer
COLUMN_SLOTS: Dict[SemanticType, str] = {
    SemanticType.DATE: "column.date",
    SemanticType.AMOUNT: "column.amount",
    SemanticType.ENTITY: "column.entity",
    SemanticType.CATEGORY: "column.category",
    SemanticType.DIRECTION: "column.direction",
    SemanticType.PERIOD: "column.period",
    SemanticType.STATUS: "column.status",
    SemanticType.REFERENCE: "column.reference",
    SemanticType.DESCRIPTION: "column.description",
}

# Closed value-token sets (exact match on lower-cased cell text)
DIRECTION_TOKENS: frozenset[str] = frozenset({"inflow", "outflow", "in", "out", "+", "-", "−"})
INFLOW_TOKENS: frozenset[str] = frozenset({"inflow", "in", "+", "credit", "cr", "receipt"})
OUTFLOW_TOKENS: frozenset[str] = frozenset({"outflow", "out", "-", "−", "debit", "dr", "payment"})
STATUS_TOKENS: frozenset[str] = frozenset({
    "posted", "pending", "draft", "scheduled", "future", "paid", "unpaid",
    "open", "closed", "cleared", "overdue", "void", "approved",
})

_SHORT_KEYWORD_LEN = 3


def sources_slot(process_type: ProcessType, side: str) -> str:
    """Slot name of the sign-resolution vocabulary for a process type."""
    return f"sources.{process_type.value}.{side}"


class KeywordTable:
    """Slot-based keyword matcher.

    Look-ups return the first matching keyword of a slot (``None`` on a
    miss); no fuzzy logic is involved at this layer.

    Parameters
    ----------
    extra_keywords:
        Optional ``{slot: [keyword, ...]}`` merged in at construction time.
    """

    def __init__(
        self,
        extra_keywords: Optional[Dict[str, Iterable[str]]] = None,
    ) -> None:
        self._slots: Dict[str, List[str]] = {
            slot: list(words) for slot, words in _BUILTIN_KEYWORDS.items()
        }
        self._patterns: Dict[str, re.Pattern] = {}

        if extra_keywords:
            self.add_keywords(extra_keywords)

    # ------------------------------------------------------------------ #
    # Lookup
    # ------------------------------------------------------------------ #

    def match(self, slot: str, text: str) -> Optional[str]:
        """Return the first keyword of *slot* found in *text*, or ``None``."""
        lowered = text.lower()
        for keyword in self.keywords(slot):
            if self._pattern(keyword).search(lowered):
                return keyword
        return None

    def matches(self, slot: str, text: str) -> bool:
        return self.match(slot, text) is not None

    def all_matches(self, slot: str, text: str) -> List[str]:
        """Every keyword of *slot* found in *text*, in slot order."""
        lowered = text.lower()
        return [kw for kw in self.keywords(slot) if self._pattern(kw).search(lowered)]

    def _pattern(self, keyword: str) -> re.Pattern:
        pat = self._patterns.get(keyword)
        if pat is None:
            escaped = re.escape(keyword.lower())
            if len(keyword) <= _SHORT_KEYWORD_LEN:
                pat = re.compile(rf"(?<![a-z0-9]){escaped}(?![a-z0-9])")
            else:
                pat = re.compile(escaped)
            self._patterns[keyword] = pat
        return pat

    # ------------------------------------------------------------------ #
    # Extension API
    # ------------------------------------------------------------------ #

    def add_keyword(self, slot: str, keyword: str) -> None:
        """Register a single new keyword at the end of *slot*.

        Raises
        ------
        ValueError
            If ``slot`` is not a known slot or the keyword is blank.
        """
        if slot not in self._slots:
            raise ValueError(
                f"Unknown keyword slot {slot!r}. "
                f"Must be one of: {', '.join(sorted(self._slots))}"
            )
        kw = keyword.strip().lower()
        if not kw:
            raise ValueError(f"Blank keyword for slot {slot!r}")
        if kw in self._slots[slot]:
            logger.debug("Keyword %r already present in %s", kw, slot)
            return
        self._slots[slot].append(kw)
        logger.debug("Added keyword: %s += %r", slot, kw)

    def add_keywords(self, mapping: Dict[str, Iterable[str]]) -> None:
        """Bulk-add keywords from a ``{slot: [keyword, ...]}`` dict."""
        for slot, words in mapping.items():
            for word in words:
                self.add_keyword(slot, word)

    def load_custom_keywords(self, path: Path) -> int:
        """Load keywords from a JSON file (``{slot: [keyword, ...]}``).

        Returns the number of keywords read.
        """
        with open(path, encoding="utf-8") as fh:
            data: Dict[str, List[str]] = json.load(fh)
        self.add_keywords(data)
        count = sum(len(words) for words in data.values())
        logger.info("Loaded %d custom keywords from %s", count, path)
        return count

    # ------------------------------------------------------------------ #
    # Introspection
    # ------------------------------------------------------------------ #

    def keywords(self, slot: str) -> List[str]:
        """Return a *copy* of a slot's keywords (empty for unknown slots)."""
        return list(self._slots.get(slot, ()))

    def slots(self) -> List[str]:
        return sorted(self._slots)

    @property
    def size(self) -> int:
        return sum(len(words) for words in self._slots.values())
