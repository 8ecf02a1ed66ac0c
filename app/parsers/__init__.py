"""
Spreadsheet parsing exports.
"""

from app.parsers.tabular_parser import (
    ImportFileError,
    ParsedTable,
    UnsupportedFileTypeError,
    parse_table,
    render_template,
)

__all__ = [
    "ImportFileError",
    "ParsedTable",
    "UnsupportedFileTypeError",
    "parse_table",
    "render_template",
]
