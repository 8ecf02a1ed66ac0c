"""
app/parsers/tabular_parser.py

Reads uploaded CSV and XLSX files into header-keyed rows of trimmed strings,
and renders the import template in either format.
"""

from __future__ import annotations

import csv
import io
import zipfile
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import PurePath
from typing import Any, Iterable

from openpyxl import Workbook, load_workbook
from openpyxl.utils.exceptions import InvalidFileException

CSV_SUFFIXES = frozenset({".csv"})
EXCEL_SUFFIXES = frozenset({".xlsx", ".xlsm"})

TEMPLATE_HEADERS: tuple[str, ...] = ("Name", "Email", "Phone", "Work Phone", "Status", "Client ID")
TEMPLATE_ROWS: tuple[tuple[str, ...], ...] = (
    ("John Doe", "john@example.com", "(555) 123-4567", "(555) 987-6543", "Lead", ""),
    ("Jane Smith", "jane@example.com", "(555) 111-2222", "", "Active", "CL-0001"),
)

CSV_MEDIA_TYPE = "text/csv"
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


class ImportFileError(ValueError):
    """
    Raised when an uploaded file cannot be read as a table.
    """


class UnsupportedFileTypeError(ImportFileError):
    """
    Raised for extensions other than CSV and XLSX (legacy .xls included).
    """


@dataclass(frozen=True)
class ParsedTable:
    columns: list[str]
    rows: list[dict[str, str]] = field(default_factory=list)

    @property
    def total_rows(self) -> int:
        return len(self.rows)

    def to_dict(self) -> dict[str, Any]:
        return {"columns": list(self.columns), "rows": [dict(row) for row in self.rows]}

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "ParsedTable":
        columns = [str(column) for column in payload.get("columns") or []]
        rows = [
            {str(key): "" if value is None else str(value) for key, value in row.items()}
            for row in payload.get("rows") or []
            if isinstance(row, dict)
        ]
        return cls(columns=columns, rows=rows)


def file_suffix(filename: str) -> str:
    return PurePath(filename or "").suffix.lower()


def parse_table(filename: str, content: bytes) -> ParsedTable:
    """
    Parse an uploaded spreadsheet. The first non-blank row is the header;
    fully blank rows are dropped and every cell is trimmed.
    """

    suffix = file_suffix(filename)
    if suffix in CSV_SUFFIXES:
        records = _read_csv_records(content)
    elif suffix in EXCEL_SUFFIXES:
        records = _read_excel_records(content)
    else:
        raise UnsupportedFileTypeError(
            f"Unsupported file type '{suffix or filename}'. Upload a .csv or .xlsx file."
        )
    return _build_table(records)


def _read_csv_records(content: bytes) -> list[list[str]]:
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise ImportFileError("CSV must be UTF-8 encoded.") from exc

    try:
        reader = csv.reader(io.StringIO(text, newline=""))
        return [[cell.strip() for cell in record] for record in reader]
    except csv.Error as exc:
        raise ImportFileError(f"Invalid CSV format: {exc}") from exc


def _read_excel_records(content: bytes) -> list[list[str]]:
    try:
        workbook = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as exc:
        raise ImportFileError("Spreadsheet could not be opened as XLSX.") from exc

    try:
        if not workbook.worksheets:
            return []
        sheet = workbook.worksheets[0]
        return [
            [_cell_text(value) for value in cells]
            for cells in sheet.iter_rows(values_only=True)
        ]
    finally:
        workbook.close()


def _cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value).strip()


def _build_table(records: Iterable[list[str]]) -> ParsedTable:
    non_blank = [record for record in records if any(cell for cell in record)]
    if not non_blank:
        raise ImportFileError("File has no header row.")

    header, *data = non_blank
    columns: list[str] = []
    for index, raw_name in enumerate(header, start=1):
        name = raw_name or f"Column {index}"
        if name in columns:
            raise ImportFileError(f"Duplicate column header '{name}'.")
        columns.append(name)

    rows = [
        {column: record[index] if index < len(record) else "" for index, column in enumerate(columns)}
        for record in data
    ]
    return ParsedTable(columns=columns, rows=rows)


def render_template(file_format: str) -> tuple[bytes, str, str]:
    """
    Return (content, media type, download filename) for the import template.
    """

    normalized = (file_format or "").strip().lower()
    if normalized == "csv":
        buffer = io.StringIO(newline="")
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(TEMPLATE_HEADERS)
        writer.writerows(TEMPLATE_ROWS)
        return buffer.getvalue().encode("utf-8"), CSV_MEDIA_TYPE, "client_import_template.csv"

    if normalized == "xlsx":
        workbook = Workbook()
        sheet = workbook.active
        sheet.title = "Clients"
        sheet.append(list(TEMPLATE_HEADERS))
        for row in TEMPLATE_ROWS:
            sheet.append(list(row))
        output = io.BytesIO()
        workbook.save(output)
        return output.getvalue(), XLSX_MEDIA_TYPE, "client_import_template.xlsx"

    raise UnsupportedFileTypeError(f"Unsupported template format '{file_format}'. Use csv or xlsx.")
