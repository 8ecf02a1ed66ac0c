"""
tests/test_import_mapping.py

Column mapping suggestions, mapping validation and row validation for
spreadsheet client imports.
"""

from __future__ import annotations

import unittest

from app.domain.client_import import ColumnMapping
from app.mappers.import_mapper import SKIP_TARGET, TARGET_FIELDS, ImportMapper
from app.validators.import_row_validator import ClientRowValidator
from app.validators.mapping_validator import ImportMappingError
from db.models.client import ClientStatus, EmailType, PhoneType


def _row(**values: str) -> dict[str, str]:
    mapped = {target: "" for target in TARGET_FIELDS}
    mapped.update(values)
    return mapped


class TestSuggestMappings(unittest.TestCase):
    def setUp(self) -> None:
        self.mapper = ImportMapper()

    def _targets(self, columns: list[str]) -> dict[str, tuple[str, str | None]]:
        return {
            mapping.source_column: (mapping.target_field, mapping.transform)
            for mapping in self.mapper.suggest_mappings(columns)
        }

    def test_template_headers_map_exactly(self) -> None:
        targets = self._targets(["Name", "Email", "Phone", "Work Phone", "Status", "Client ID"])

        self.assertEqual(targets["Name"], ("name", None))
        self.assertEqual(targets["Email"], ("home_email", "lowercase"))
        self.assertEqual(targets["Phone"], ("home_phone", "phone_format"))
        self.assertEqual(targets["Work Phone"], ("work_phone", "phone_format"))
        self.assertEqual(targets["Status"], ("status", None))
        self.assertEqual(targets["Client ID"], ("client_id", "uppercase"))

    def test_aliases_and_fuzzy_matches(self) -> None:
        targets = self._targets(["Customer Name", "Mobile", "E-mail Address", "Favourite Colour"])

        self.assertEqual(targets["Customer Name"][0], "name")
        self.assertEqual(targets["Mobile"][0], "cellular_phone")
        self.assertEqual(targets["E-mail Address"][0], "home_email")
        self.assertEqual(targets["Favourite Colour"], (SKIP_TARGET, None))

    def test_each_target_suggested_once(self) -> None:
        targets = self._targets(["Email", "E-mail"])

        self.assertEqual(targets["Email"][0], "home_email")
        self.assertNotEqual(targets["E-mail"][0], "home_email")


class TestMappingValidation(unittest.TestCase):
    def setUp(self) -> None:
        self.mapper = ImportMapper()

    def _codes(self, mappings: list[ColumnMapping], columns: list[str]) -> set[str]:
        with self.assertRaises(ImportMappingError) as ctx:
            self.mapper.validate(mappings=mappings, columns=columns)
        return {error.code for error in ctx.exception.errors}

    def test_valid_mapping_passes(self) -> None:
        self.mapper.validate(
            mappings=[
                ColumnMapping("Name", "name"),
                ColumnMapping("Email", "home_email", "lowercase"),
                ColumnMapping("Notes", SKIP_TARGET),
            ],
            columns=["Name", "Email", "Notes"],
        )

    def test_unknown_source_column(self) -> None:
        codes = self._codes([ColumnMapping("Missing", "name")], ["Name"])
        self.assertIn("unknown_source_column", codes)

    def test_invalid_target_and_transform(self) -> None:
        codes = self._codes(
            [ColumnMapping("Name", "full_name"), ColumnMapping("Email", "home_email", "titlecase")],
            ["Name", "Email"],
        )
        self.assertEqual(codes, {"invalid_target_field", "invalid_transform"})

    def test_duplicate_target(self) -> None:
        codes = self._codes(
            [ColumnMapping("A", "home_email"), ColumnMapping("B", "home_email")],
            ["A", "B"],
        )
        self.assertEqual(codes, {"duplicate_target_field"})

    def test_error_payload_is_structured(self) -> None:
        with self.assertRaises(ImportMappingError) as ctx:
            self.mapper.validate(mappings=[ColumnMapping("X", "name")], columns=["Name"])

        payload = ctx.exception.to_dict()
        self.assertIn("message", payload)
        self.assertEqual(payload["errors"][0]["code"], "unknown_source_column")
        self.assertEqual(payload["errors"][0]["source_column"], "X")


class TestMapRow(unittest.TestCase):
    def test_applies_transforms_and_fills_unmapped_targets(self) -> None:
        mapped = ImportMapper().map_row(
            raw_row={"Name": " Ann ", "Email": "ANN@Example.com", "Phone": "5551234567", "Code": "cl-0009"},
            mappings=[
                ColumnMapping("Name", "name"),
                ColumnMapping("Email", "home_email", "lowercase"),
                ColumnMapping("Phone", "home_phone", "phone_format"),
                ColumnMapping("Code", "client_id", "uppercase"),
            ],
        )

        self.assertEqual(mapped["name"], "Ann")
        self.assertEqual(mapped["home_email"], "ann@example.com")
        self.assertEqual(mapped["home_phone"], "(555) 123-4567")
        self.assertEqual(mapped["client_id"], "CL-0009")
        self.assertEqual(mapped["work_phone"], "")
        self.assertEqual(set(mapped), set(TARGET_FIELDS))


class TestClientRowValidator(unittest.TestCase):
    def setUp(self) -> None:
        self.validator = ClientRowValidator()

    def _messages(self, **values: str) -> list[str]:
        validated, errors = self.validator.validate_mapped_row(mapped_row=_row(**values), row_number=3)
        self.assertIsNone(validated)
        self.assertTrue(all(error.row_number == 3 for error in errors))
        return [error.message for error in errors]

    def test_name_required(self) -> None:
        self.assertEqual(self._messages(home_email="a@example.com"), ["Name is required."])

    def test_invalid_client_codes(self) -> None:
        for code in ("CLX-1", "CL-1", "CL-12a4"):
            messages = self._messages(name="Ann", client_id=code)
            self.assertEqual(len(messages), 1)
            self.assertIn(f"Invalid client ID '{code}'", messages[0])

    def test_lowercase_code_is_normalized(self) -> None:
        validated, errors = self.validator.validate_mapped_row(
            mapped_row=_row(name="Ann", client_id="cl-0012"),
            row_number=2,
        )
        self.assertEqual(errors, [])
        self.assertEqual(validated.incoming.client_code, "CL-0012")

    def test_status_is_case_insensitive(self) -> None:
        validated, _ = self.validator.validate_mapped_row(
            mapped_row=_row(name="Ann", status="prospect"),
            row_number=2,
        )
        self.assertEqual(validated.incoming.status, ClientStatus.PROSPECT)

    def test_unknown_status_rejected(self) -> None:
        messages = self._messages(name="Ann", status="Dormant")
        self.assertEqual(messages, ["Invalid status 'Dormant'. Allowed values: Lead, Prospect, Active."])

    def test_all_errors_reported_together(self) -> None:
        messages = self._messages(client_id="bad", status="nope")
        self.assertEqual(len(messages), 3)

    def test_tags_split_and_deduplicated(self) -> None:
        validated, _ = self.validator.validate_mapped_row(
            mapped_row=_row(name="Ann", tags="vip; retiree, vip ,"),
            row_number=2,
        )
        self.assertEqual(validated.incoming.tags, ("vip", "retiree"))

    def test_primary_identifiers_follow_field_order(self) -> None:
        validated, _ = self.validator.validate_mapped_row(
            mapped_row=_row(
                name="Ann",
                work_email="Ann@Work.com",
                personal_email="ann@home.net",
                cellular_phone="555-123-4567",
                work_phone="(555) 999-0000",
            ),
            row_number=2,
        )
        emails = validated.incoming.emails
        phones = validated.incoming.phones

        self.assertEqual([(e.kind, e.is_primary) for e in emails], [(EmailType.WORK, True), (EmailType.PERSONAL, False)])
        self.assertEqual(emails[0].key, "ann@work.com")
        self.assertEqual([(p.kind, p.is_primary) for p in phones], [(PhoneType.WORK, True), (PhoneType.CELLULAR, False)])

    def test_match_candidates_follow_match_order(self) -> None:
        validated, _ = self.validator.validate_mapped_row(
            mapped_row=_row(
                name="Ann",
                work_email="ann@work.com",
                personal_email="ann@home.net",
                home_phone="555-111-2222",
                cellular_phone="555-333-4444",
            ),
            row_number=2,
        )
        self.assertEqual(validated.candidate_email, "ann@home.net")
        self.assertEqual(validated.candidate_phone, "555-333-4444")

    def test_repeated_number_kept_once(self) -> None:
        validated, _ = self.validator.validate_mapped_row(
            mapped_row=_row(name="Ann", home_phone="(555) 123-4567", cellular_phone="+1 555 123 4567"),
            row_number=2,
        )
        self.assertEqual(len(validated.incoming.phones), 1)
        self.assertEqual(validated.incoming.phones[0].kind, PhoneType.HOME)


if __name__ == "__main__":
    unittest.main()
