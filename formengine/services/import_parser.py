"""Spreadsheet parsing for imports.

Turns an uploaded CSV / XLSX / XLS file into ``ParsedFileData``:
- First row is the header; blank headers become ``Column_N``
- Duplicate headers are rejected
- Empty cells become None, date cells become ISO strings
- Fully empty rows are dropped

Every failure surfaces as ``ParseError``.
"""

from __future__ import annotations

import csv
import io
import os
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Any, Iterable

import xlrd
from charset_normalizer import from_bytes
from openpyxl import load_workbook

from formengine.core.config import settings
from formengine.core.exceptions import ParseError


CSV_EXTENSIONS = {".csv"}
XLSX_EXTENSIONS = {".xlsx"}
XLS_EXTENSIONS = {".xls"}
SUPPORTED_EXTENSIONS = CSV_EXTENSIONS | XLSX_EXTENSIONS | XLS_EXTENSIONS

CSV_MIME_TYPES = {"text/csv", "application/csv", "text/comma-separated-values"}
XLSX_MIME_TYPES = {"application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"}
XLS_MIME_TYPES = {"application/vnd.ms-excel"}
SUPPORTED_MIME_TYPES = CSV_MIME_TYPES | XLSX_MIME_TYPES | XLS_MIME_TYPES


@dataclass
class ParsedFileData:
    """Parsed spreadsheet: header-keyed rows plus a short preview."""

    columns: list[str]
    rows: list[dict[str, Any]]
    row_count: int
    preview: list[dict[str, Any]] = field(default_factory=list)


# =============================================================================
# Format checks
# =============================================================================


def _extension(file_name: str | None) -> str:
    return os.path.splitext(file_name or "")[1].lower()


def is_valid_file_format(file_name: str | None, content_type: str | None = None) -> bool:
    """An explicit extension decides; the MIME type only counts for bare names."""
    ext = _extension(file_name)
    if ext:
        return ext in SUPPORTED_EXTENSIONS
    return (content_type or "").split(";")[0].strip().lower() in SUPPORTED_MIME_TYPES


def _resolve_format(file_name: str | None, content_type: str | None) -> str:
    ext = _extension(file_name)
    if ext in XLSX_EXTENSIONS:
        return "xlsx"
    if ext in XLS_EXTENSIONS:
        return "xls"
    if ext in CSV_EXTENSIONS:
        return "csv"
    mime = (content_type or "").split(";")[0].strip().lower()
    if mime in XLSX_MIME_TYPES:
        return "xlsx"
    if mime in XLS_MIME_TYPES:
        return "xls"
    return "csv"


# =============================================================================
# CSV
# =============================================================================


def detect_encoding(content: bytes) -> str:
    """
    Detect file encoding using a chain of methods.

    Order:
    1. Check BOM (UTF-8-BOM, UTF-16-LE/BE)
    2. Try UTF-8 decode
    3. charset_normalizer
    4. latin-1 (accepts any byte sequence)
    """
    if content.startswith(b"\xef\xbb\xbf"):
        return "utf-8-sig"
    if content.startswith(b"\xff\xfe"):
        return "utf-16-le"
    if content.startswith(b"\xfe\xff"):
        return "utf-16-be"

    try:
        content.decode("utf-8")
        return "utf-8"
    except UnicodeDecodeError:
        pass

    best = from_bytes(content).best()
    if best:
        return best.encoding
    return "latin-1"


def detect_delimiter(content: str) -> str:
    """Detect the CSV delimiter with csv.Sniffer, falling back to frequency counts."""
    sample = content[:8192]
    try:
        dialect = csv.Sniffer().sniff(sample, delimiters=",\t;|")
        return dialect.delimiter
    except csv.Error:
        pass

    lines = sample.split("\n")[:5]
    delimiter_counts = {",": 0, "\t": 0, ";": 0, "|": 0}
    for line in lines:
        for delim in delimiter_counts:
            delimiter_counts[delim] += line.count(delim)

    best = ","
    best_count = 0
    for delim, count in delimiter_counts.items():
        if count > best_count:
            best = delim
            best_count = count
    return best


def _read_csv(content: bytes) -> tuple[list[Any], list[list[Any]]]:
    encoding = detect_encoding(content)
    try:
        decoded = content.decode(encoding)
    except UnicodeDecodeError:
        decoded = content.decode("latin-1")
    if decoded.startswith("\ufeff"):
        decoded = decoded[1:]

    delimiter = detect_delimiter(decoded)
    reader = csv.reader(io.StringIO(decoded), delimiter=delimiter)
    rows = list(reader)
    if not rows:
        return [], []
    return rows[0], rows[1:]


# =============================================================================
# Excel
# =============================================================================


def _read_xlsx(content: bytes) -> tuple[list[Any], list[list[Any]]]:
    workbook = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    try:
        sheet = workbook.active
        if sheet is None:
            return [], []
        rows = [list(row) for row in sheet.iter_rows(values_only=True)]
    finally:
        workbook.close()
    if not rows:
        return [], []
    return rows[0], rows[1:]


def _read_xls(content: bytes) -> tuple[list[Any], list[list[Any]]]:
    book = xlrd.open_workbook(file_contents=content)
    if book.nsheets == 0:
        return [], []
    sheet = book.sheet_by_index(0)
    rows: list[list[Any]] = []
    for row_idx in range(sheet.nrows):
        row: list[Any] = []
        for col_idx in range(sheet.ncols):
            cell = sheet.cell(row_idx, col_idx)
            if cell.ctype in (xlrd.XL_CELL_EMPTY, xlrd.XL_CELL_BLANK):
                row.append(None)
            elif cell.ctype == xlrd.XL_CELL_DATE:
                row.append(xlrd.xldate.xldate_as_datetime(cell.value, book.datemode))
            elif cell.ctype == xlrd.XL_CELL_BOOLEAN:
                row.append(bool(cell.value))
            else:
                row.append(cell.value)
        rows.append(row)
    if not rows:
        return [], []
    return rows[0], rows[1:]


# =============================================================================
# Normalization
# =============================================================================


def _normalize_cell(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    if isinstance(value, datetime):
        if value.time() == time(0, 0) and value.tzinfo is None:
            return value.date().isoformat()
        return value.isoformat()
    if isinstance(value, (date, time)):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def _normalize_headers(header: Iterable[Any]) -> list[str]:
    columns: list[str] = []
    for index, raw in enumerate(header):
        name = "" if raw is None else str(raw).strip()
        columns.append(name or f"Column_{index + 1}")

    seen: set[str] = set()
    duplicates: list[str] = []
    for name in columns:
        if name in seen and name not in duplicates:
            duplicates.append(name)
        seen.add(name)
    if duplicates:
        raise ParseError(f"Duplicate column names found: {', '.join(duplicates)}")
    return columns


def _build_rows(columns: list[str], raw_rows: list[list[Any]]) -> list[dict[str, Any]]:
    rows: list[dict[str, Any]] = []
    for raw in raw_rows:
        row = {
            column: _normalize_cell(raw[index]) if index < len(raw) else None
            for index, column in enumerate(columns)
        }
        if all(value is None for value in row.values()):
            continue
        rows.append(row)
    return rows


# =============================================================================
# Entry point
# =============================================================================


def parse_file(
    content: bytes, file_name: str, content_type: str | None = None
) -> ParsedFileData:
    if not content:
        raise ParseError("File is empty")
    if len(content) > settings.IMPORT_MAX_FILE_SIZE_BYTES:
        raise ParseError(
            f"File size exceeds {settings.import_max_file_size_mb:g}MB limit"
        )
    if not is_valid_file_format(file_name, content_type):
        raise ParseError("Unsupported file format. Please upload a CSV or Excel file.")

    file_format = _resolve_format(file_name, content_type)
    try:
        if file_format == "xlsx":
            header, raw_rows = _read_xlsx(content)
        elif file_format == "xls":
            header, raw_rows = _read_xls(content)
        else:
            header, raw_rows = _read_csv(content)
    except Exception as exc:
        raise ParseError(f"Failed to parse file: {exc}") from exc

    if not header or all(cell is None or str(cell).strip() == "" for cell in header):
        raise ParseError("File has no header row")

    columns = _normalize_headers(header)
    rows = _build_rows(columns, raw_rows)
    return ParsedFileData(
        columns=columns,
        rows=rows,
        row_count=len(rows),
        preview=rows[: settings.IMPORT_PREVIEW_ROWS],
    )
