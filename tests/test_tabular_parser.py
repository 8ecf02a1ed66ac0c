from __future__ import annotations

import io
import unittest

from openpyxl import Workbook, load_workbook

from app.parsers.tabular_parser import (
    TEMPLATE_HEADERS,
    ImportFileError,
    ParsedTable,
    UnsupportedFileTypeError,
    parse_table,
    render_template,
)


def _xlsx_bytes(rows: list[list[object]]) -> bytes:
    workbook = Workbook()
    sheet = workbook.active
    for row in rows:
        sheet.append(row)
    output = io.BytesIO()
    workbook.save(output)
    return output.getvalue()


class TestParseCSV(unittest.TestCase):
    def test_parses_quoted_fields_and_bom(self) -> None:
        content = '\ufeffName,Email,Notes\n"Doe, Jane",jane@example.com,"said ""hi"""\n'.encode("utf-8")

        table = parse_table("clients.csv", content)

        self.assertEqual(table.columns, ["Name", "Email", "Notes"])
        self.assertEqual(table.rows[0]["Name"], "Doe, Jane")
        self.assertEqual(table.rows[0]["Notes"], 'said "hi"')

    def test_drops_blank_rows_and_trims_cells(self) -> None:
        content = b"Name,Phone\n\n  Ann  , 555-123-4567 \n,\nBob,\n"

        table = parse_table("clients.CSV", content)

        self.assertEqual(table.total_rows, 2)
        self.assertEqual(table.rows[0], {"Name": "Ann", "Phone": "555-123-4567"})
        self.assertEqual(table.rows[1], {"Name": "Bob", "Phone": ""})

    def test_short_rows_are_padded(self) -> None:
        table = parse_table("c.csv", b"Name,Email,Phone\nAnn\n")
        self.assertEqual(table.rows[0], {"Name": "Ann", "Email": "", "Phone": ""})

    def test_blank_header_cells_get_positional_names(self) -> None:
        table = parse_table("c.csv", b"Name,,Email\nAnn,x,a@example.com\n")
        self.assertEqual(table.columns, ["Name", "Column 2", "Email"])

    def test_duplicate_header_rejected(self) -> None:
        with self.assertRaises(ImportFileError):
            parse_table("c.csv", b"Name,Name\nA,B\n")

    def test_empty_file_rejected(self) -> None:
        with self.assertRaises(ImportFileError):
            parse_table("c.csv", b"\n\n")

    def test_non_utf8_rejected(self) -> None:
        with self.assertRaises(ImportFileError):
            parse_table("c.csv", "Name\nJos\xe9\n".encode("latin-1"))


class TestParseXLSX(unittest.TestCase):
    def test_reads_first_sheet_with_typed_cells(self) -> None:
        content = _xlsx_bytes(
            [
                ["Name", "Phone", "Client ID"],
                ["Ann", 5551234567, "CL-0001"],
                [None, None, None],
                ["Bob", 5559876543.0, None],
            ]
        )

        table = parse_table("clients.xlsx", content)

        self.assertEqual(table.columns, ["Name", "Phone", "Client ID"])
        self.assertEqual(table.total_rows, 2)
        self.assertEqual(table.rows[0]["Phone"], "5551234567")
        self.assertEqual(table.rows[1], {"Name": "Bob", "Phone": "5559876543", "Client ID": ""})

    def test_corrupt_workbook_rejected(self) -> None:
        with self.assertRaises(ImportFileError):
            parse_table("clients.xlsx", b"not a zip file")


class TestFileTypes(unittest.TestCase):
    def test_legacy_xls_rejected(self) -> None:
        with self.assertRaises(UnsupportedFileTypeError):
            parse_table("clients.xls", b"whatever")

    def test_unknown_extension_rejected(self) -> None:
        with self.assertRaises(UnsupportedFileTypeError):
            parse_table("clients.txt", b"Name\nAnn\n")


class TestParsedTableStaging(unittest.TestCase):
    def test_dict_form_restores_table(self) -> None:
        table = ParsedTable(columns=["Name"], rows=[{"Name": "Ann"}])
        self.assertEqual(ParsedTable.from_dict(table.to_dict()), table)


class TestTemplate(unittest.TestCase):
    def test_csv_template_has_fixed_headers(self) -> None:
        content, media_type, filename = render_template("csv")

        table = parse_table(filename, content)

        self.assertEqual(media_type, "text/csv")
        self.assertEqual(tuple(table.columns), TEMPLATE_HEADERS)
        self.assertGreater(table.total_rows, 0)

    def test_xlsx_template_opens(self) -> None:
        content, _, filename = render_template("XLSX")

        workbook = load_workbook(io.BytesIO(content))
        header = [cell.value for cell in workbook.active[1]]

        self.assertTrue(filename.endswith(".xlsx"))
        self.assertEqual(tuple(header), TEMPLATE_HEADERS)

    def test_unknown_template_format(self) -> None:
        with self.assertRaises(UnsupportedFileTypeError):
            render_template("pdf")


if __name__ == "__main__":
    unittest.main()
