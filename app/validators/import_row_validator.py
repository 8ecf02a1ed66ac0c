"""
app/validators/import_row_validator.py

Row-level validation for mapped client import rows.
"""

from __future__ import annotations

import re
from typing import Mapping

from app.domain.client_import import RowError, ValidatedClientRow
from app.identity.client_codes import is_valid_client_code
from app.identity.conflict_policy import IncomingClient
from app.identity.normalizer import normalize_email, normalize_phone
from db.models.client import ClientStatus, EmailType, PhoneType
from db.repositories.types import ContactPoint

# Field order decides which identifier becomes primary on a new record.
PRIMARY_EMAIL_ORDER: tuple[tuple[str, str], ...] = (
    ("home_email", EmailType.HOME),
    ("home_email_2", EmailType.HOME2),
    ("work_email", EmailType.WORK),
    ("personal_email", EmailType.PERSONAL),
    ("other_email", EmailType.OTHER),
)
PRIMARY_PHONE_ORDER: tuple[tuple[str, str], ...] = (
    ("home_phone", PhoneType.HOME),
    ("work_phone", PhoneType.WORK),
    ("cellular_phone", PhoneType.CELLULAR),
    ("other_phone", PhoneType.OTHER),
)

# Field order decides which identifier is used to look for a duplicate.
MATCH_EMAIL_ORDER: tuple[str, ...] = (
    "home_email",
    "personal_email",
    "work_email",
    "other_email",
    "home_email_2",
)
MATCH_PHONE_ORDER: tuple[str, ...] = ("cellular_phone", "home_phone", "work_phone", "other_phone")

_STATUS_LOOKUP = {status.lower(): status for status in ClientStatus.ALL}
_TAG_SEPARATORS = re.compile(r"[,;]")


class ClientRowValidator:
    """
    Validates one mapped row and builds the incoming client it describes.
    """

    def validate_mapped_row(
        self,
        *,
        mapped_row: Mapping[str, str],
        row_number: int,
    ) -> tuple[ValidatedClientRow | None, list[RowError]]:
        errors: list[RowError] = []

        name = (mapped_row.get("name") or "").strip()
        if not name:
            errors.append(RowError(row_number=row_number, column="name", message="Name is required."))

        client_code = self._parse_client_code(mapped_row.get("client_id"), row_number, errors)
        status = self._parse_status(mapped_row.get("status"), row_number, errors)

        if errors:
            return None, errors

        incoming = IncomingClient(
            name=name,
            status=status,
            client_code=client_code,
            tags=self._parse_tags(mapped_row.get("tags")),
            emails=self._contact_points(mapped_row, PRIMARY_EMAIL_ORDER, normalize_email),
            phones=self._contact_points(mapped_row, PRIMARY_PHONE_ORDER, normalize_phone),
        )
        return (
            ValidatedClientRow(
                row_number=row_number,
                incoming=incoming,
                candidate_email=self._first_present(mapped_row, MATCH_EMAIL_ORDER),
                candidate_phone=self._first_present(mapped_row, MATCH_PHONE_ORDER),
            ),
            [],
        )

    @staticmethod
    def _parse_client_code(
        value: str | None,
        row_number: int,
        errors: list[RowError],
    ) -> str | None:
        raw = (value or "").strip()
        if not raw:
            return None
        code = raw.upper()
        if not is_valid_client_code(code):
            errors.append(
                RowError(
                    row_number=row_number,
                    column="client_id",
                    message=f"Invalid client ID '{raw}'. Expected CL- followed by at least 4 digits.",
                )
            )
            return None
        return code

    @staticmethod
    def _parse_status(
        value: str | None,
        row_number: int,
        errors: list[RowError],
    ) -> str | None:
        raw = (value or "").strip()
        if not raw:
            return None
        status = _STATUS_LOOKUP.get(raw.lower())
        if status is None:
            allowed = ", ".join(ClientStatus.ALL)
            errors.append(
                RowError(
                    row_number=row_number,
                    column="status",
                    message=f"Invalid status '{raw}'. Allowed values: {allowed}.",
                )
            )
        return status

    @staticmethod
    def _parse_tags(value: str | None) -> tuple[str, ...]:
        tags: list[str] = []
        for part in _TAG_SEPARATORS.split(value or ""):
            tag = part.strip()
            if tag and tag not in tags:
                tags.append(tag)
        return tuple(tags)

    @staticmethod
    def _contact_points(
        mapped_row: Mapping[str, str],
        order: tuple[tuple[str, str], ...],
        normalize,
    ) -> tuple[ContactPoint, ...]:
        points: list[ContactPoint] = []
        seen: set[str] = set()
        for field_name, kind in order:
            value = (mapped_row.get(field_name) or "").strip()
            key = normalize(value)
            if not key or key in seen:
                continue
            seen.add(key)
            points.append(ContactPoint(value=value, key=key, kind=kind, is_primary=not points))
        return tuple(points)

    @staticmethod
    def _first_present(mapped_row: Mapping[str, str], order: tuple[str, ...]) -> str:
        for field_name in order:
            value = (mapped_row.get(field_name) or "").strip()
            if value:
                return value
        return ""
