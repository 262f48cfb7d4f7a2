"""
Tabular File Parser.

Reads an unknown financial export into one or more ``RawSheet`` objects:

- Workbooks (.xlsx / .xlsm) via ``openpyxl``: every named sheet is parsed
  independently.  Leading blank rows are skipped; the first non-empty row is
  the header row.  Completely empty sheets are listed in the file metadata
  but produce no ``RawSheet``.
- Delimited text (.csv / .tsv / .txt): the delimiter is auto-detected
  (semicolon, then tab, then comma), the first non-blank line is always the
  header row, and blank lines are skipped.

Header text is preserved for display and classification; rows are keyed by
the lower-cased, trimmed header.  Cells are coerced by ``CellNormalizer``.

Any failure to read the file is fatal: it is recorded as an
``error_occurred`` audit entry and raised as ``FileParseError``.
"""

from __future__ import annotations

import csv
import zipfile
from io import BytesIO, StringIO
from pathlib import Path
from typing import Any, BinaryIO, List, Optional, Union

import openpyxl
from openpyxl.utils.exceptions import InvalidFileException
from openpyxl.worksheet.worksheet import Worksheet

from financial_inference.audit import AuditLogger
from financial_inference.cell_normalizer import CellNormalizer
from financial_inference.errors import FileParseError
from financial_inference.logging_setup import get_logger
from financial_inference.schema import (
    AuditEventType,
    FileFormat,
    FileMetadata,
    ParsedFile,
    RawSheet,
)

logger = get_logger("file_parser")

# Sheet name given to the single sheet of a delimited-text file
DEFAULT_SHEET_NAME = "default"

_FORMAT_BY_SUFFIX = {
    ".csv": FileFormat.DELIMITED,
    ".tsv": FileFormat.DELIMITED,
    ".txt": FileFormat.DELIMITED,
    ".xlsx": FileFormat.WORKBOOK,
    ".xlsm": FileFormat.WORKBOOK,
}

# Candidate delimiters, in detection order
_DELIMITERS = (";", "\t", ",")


def detect_format(filename: str) -> FileFormat:
    """Infer the file format from its extension.

    Raises
    ------
    FileParseError
        If the extension is not a supported tabular format.
    """
    suffix = Path(filename).suffix.lower()
    try:
        return _FORMAT_BY_SUFFIX[suffix]
    except KeyError:
        raise FileParseError(
            f"Unsupported file type {suffix or '(none)'!r}; "
            f"expected one of {', '.join(sorted(_FORMAT_BY_SUFFIX))}",
            {"filename": filename},
        ) from None


def detect_delimiter(header_line: str) -> str:
    """Pick the delimiter of a delimited-text file from its header line."""
    for candidate in _DELIMITERS:
        if candidate in header_line:
            return candidate
    return ","


class FileParser:
    """Parse workbook and delimited-text exports into ``RawSheet`` objects.

    Parameters
    ----------
    audit:
        Receives the ``file_ingested`` / ``error_occurred`` entries.
    normalizer:
        Cell and header normaliser; a default instance is created if omitted.
    """

    def __init__(
        self,
        audit: AuditLogger,
        normalizer: Optional[CellNormalizer] = None,
    ) -> None:
        self._audit = audit
        self._normalizer = normalizer or CellNormalizer()

    # ------------------------------------------------------------------ #
    # Entry points
    # ------------------------------------------------------------------ #

    def parse_file(
        self,
        path: Union[str, Path],
        file_format: Optional[FileFormat] = None,
    ) -> ParsedFile:
        """Parse a file on disk."""
        path = Path(path)
        try:
            fmt = file_format or detect_format(path.name)
            size = path.stat().st_size
            if fmt == FileFormat.WORKBOOK:
                sheets, sheet_names = self._read_workbook(path)
            else:
                sheets = [self._read_delimited(self._read_text(path.read_bytes()))]
                sheet_names = [DEFAULT_SHEET_NAME]
        except Exception as exc:
            error = self._fail(str(path), exc)
            if error is exc:
                raise
            raise error from exc

        return self._finish(path.name, fmt, size, sheets, sheet_names)

    def parse_bytes(
        self,
        content: bytes,
        filename: str,
        file_format: Optional[FileFormat] = None,
    ) -> ParsedFile:
        """Parse an in-memory upload."""
        try:
            fmt = file_format or detect_format(filename)
            if fmt == FileFormat.WORKBOOK:
                sheets, sheet_names = self._read_workbook(BytesIO(content))
            else:
                sheets = [self._read_delimited(self._read_text(content))]
                sheet_names = [DEFAULT_SHEET_NAME]
        except Exception as exc:
            error = self._fail(filename, exc)
            if error is exc:
                raise
            raise error from exc

        return self._finish(filename, fmt, len(content), sheets, sheet_names)

    def parse_dataframe(self, df: Any, name: str = DEFAULT_SHEET_NAME) -> ParsedFile:
        """Parse a pandas DataFrame as a single delimited-style sheet."""
        try:
            import pandas as pd  # noqa: F811
        except ImportError as exc:
            raise ImportError(
                "pandas is required to use parse_dataframe"
            ) from exc

        if not isinstance(df, pd.DataFrame):
            raise TypeError(f"Expected pandas DataFrame, got {type(df).__name__}")

        grid: List[List[Any]] = [list(df.columns)]
        for record in df.itertuples(index=False, name=None):
            grid.append([None if pd.isna(v) else v for v in record])

        sheet = self._build_sheet(name, grid)
        if sheet is None:
            raise self._fail(name, FileParseError("DataFrame has no columns"))
        return self._finish(name, FileFormat.DELIMITED, 0, [sheet], [name])

    # ------------------------------------------------------------------ #
    # Readers
    # ------------------------------------------------------------------ #

    def _read_workbook(
        self, source: Union[Path, BinaryIO]
    ) -> tuple[List[RawSheet], List[str]]:
        try:
            wb = openpyxl.load_workbook(source, data_only=True)
        except (InvalidFileException, zipfile.BadZipFile, KeyError) as exc:
            raise FileParseError(f"Unreadable workbook: {exc}") from exc

        sheets: List[RawSheet] = []
        sheet_names = list(wb.sheetnames)
        for sheet_name in sheet_names:
            ws = wb[sheet_name]
            logger.info("Parsing sheet: %s (%d rows × %d cols)",
                        sheet_name, ws.max_row, ws.max_column)
            sheet = self._build_sheet(sheet_name, self._worksheet_grid(ws))
            if sheet is None:
                logger.info("Sheet '%s' is empty; listed but not parsed", sheet_name)
                continue
            sheets.append(sheet)
            logger.info("Extracted %d rows from sheet '%s'", len(sheet.rows), sheet_name)
        wb.close()

        if not sheets:
            raise FileParseError(
                "Workbook contains no sheets with data",
                {"sheets": sheet_names},
            )
        return sheets, sheet_names

    @staticmethod
    def _worksheet_grid(ws: Worksheet) -> List[List[Any]]:
        return [
            list(row)
            for row in ws.iter_rows(min_row=1, max_row=ws.max_row,
                                    max_col=ws.max_column, values_only=True)
        ]

    @staticmethod
    def _read_text(content: bytes) -> str:
        try:
            return content.decode("utf-8-sig")
        except UnicodeDecodeError:
            logger.warning("File is not valid UTF-8; decoding as latin-1")
            return content.decode("latin-1")

    def _read_delimited(self, text: str) -> RawSheet:
        header_line = next((line for line in text.splitlines() if line.strip()), None)
        if header_line is None:
            raise FileParseError("Delimited file has no header line")

        delimiter = detect_delimiter(header_line)
        logger.info("Detected delimiter %r", delimiter)

        # Blank records are dropped after parsing so quoted cells keep their line breaks
        grid = [
            row for row in csv.reader(StringIO(text, newline=""), delimiter=delimiter)
            if not _is_blank_row(row)
        ]
        sheet = self._build_sheet(DEFAULT_SHEET_NAME, grid)
        if sheet is None:
            raise FileParseError("Delimited file has no header line")
        return sheet

    # ------------------------------------------------------------------ #
    # Sheet assembly
    # ------------------------------------------------------------------ #

    def _build_sheet(self, name: str, grid: List[List[Any]]) -> Optional[RawSheet]:
        """Turn a raw cell grid into a ``RawSheet``; ``None`` when it is empty."""
        rows_with_data = [row for row in grid if not _is_blank_row(row)]
        if not rows_with_data:
            return None

        header_row = list(rows_with_data[0])
        while header_row and _is_blank(header_row[-1]):
            header_row.pop()
        if not header_row:
            return None

        headers = ["" if h is None else str(h).strip() for h in header_row]
        keys = self._unique_keys(headers)

        rows: List[dict[str, Any]] = []
        for raw_row in rows_with_data[1:]:
            row = {
                key: self._normalizer.coerce_cell(raw_row[i] if i < len(raw_row) else None)
                for i, key in enumerate(keys)
            }
            if all(v is None for v in row.values()):
                continue
            rows.append(row)

        return RawSheet(
            name=name,
            headers=headers,
            keys=keys,
            rows=rows,
            grid=[list(r) for r in rows_with_data],
        )

    def _unique_keys(self, headers: List[str]) -> List[str]:
        keys: List[str] = []
        seen: dict[str, int] = {}
        for i, header in enumerate(headers):
            key = self._normalizer.header_key(header) or f"column_{i + 1}"
            if key in seen:
                seen[key] += 1
                key = f"{key}_{seen[key]}"
            else:
                seen[key] = 1
            keys.append(key)
        return keys

    # ------------------------------------------------------------------ #
    # Bookkeeping
    # ------------------------------------------------------------------ #

    def _finish(
        self,
        filename: str,
        fmt: FileFormat,
        size: int,
        sheets: List[RawSheet],
        sheet_names: List[str],
    ) -> ParsedFile:
        metadata = FileMetadata(
            filename=filename,
            format=fmt,
            file_size_bytes=size,
            sheets=sheet_names,
            row_count=sum(len(s.rows) for s in sheets),
            column_count=len(sheets[0].headers) if sheets else 0,
        )
        self._audit.add_entry(
            AuditEventType.FILE_INGESTED,
            f"Ingested file: {filename} ({fmt.value.upper()})",
            {
                "filename": filename,
                "format": fmt.value,
                "row_count": metadata.row_count,
                "sheet_count": len(sheets),
            },
        )
        return ParsedFile(metadata=metadata, sheets=sheets)

    def _fail(self, source: str, exc: Exception) -> FileParseError:
        """Record a parse failure and return the error to raise."""
        error = exc if isinstance(exc, FileParseError) else FileParseError(
            f"Could not read {Path(source).name}: {exc}", {"file_path": source}
        )
        self._audit.add_entry(
            AuditEventType.ERROR_OCCURRED,
            "File parsing failed",
            {"file_path": source},
            error.message,
        )
        return error


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _is_blank_row(row: List[Any]) -> bool:
    return all(_is_blank(v) for v in row)
