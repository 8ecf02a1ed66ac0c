"""
app/domain/client_import.py

Domain models used by the spreadsheet client import flow.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any

from app.identity.conflict_policy import IncomingClient


@dataclass(frozen=True)
class ColumnMapping:
    """
    One user-declared mapping of a source column onto a client field.
    """

    source_column: str
    target_field: str
    transform: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "sourceColumn": self.source_column,
            "targetField": self.target_field,
            "transform": self.transform,
        }


@dataclass(frozen=True)
class RowError:
    """
    One failed import row. row_number counts the header as row 1.
    """

    row_number: int
    message: str
    column: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"row": self.row_number, "message": self.message}


@dataclass(frozen=True)
class ValidatedClientRow:
    """
    A mapped row that passed validation, ready for identity resolution.
    """

    row_number: int
    incoming: IncomingClient
    candidate_email: str = ""
    candidate_phone: str = ""


@dataclass(frozen=True)
class ImportPreview:
    job_id: uuid.UUID
    filename: str
    columns: list[str]
    sample_rows: list[dict[str, str]]
    total_rows: int
    suggested_mappings: list[ColumnMapping] = field(default_factory=list)


@dataclass(frozen=True)
class ImportSummary:
    """
    End-of-run import summary.

    success_count + error_count + skipped_count always equals total_rows;
    duplicate_created_count is a subset of created_count.
    """

    job_id: uuid.UUID
    status: str
    total_rows: int
    created_count: int
    updated_count: int
    duplicate_created_count: int
    skipped_count: int
    error_count: int
    errors: list[RowError] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return self.created_count + self.updated_count
