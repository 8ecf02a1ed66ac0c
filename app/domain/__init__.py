"""
app/domain package marker.
"""

from app.domain.client_import import (
    ColumnMapping,
    ImportPreview,
    ImportSummary,
    RowError,
    ValidatedClientRow,
)

__all__ = [
    "ColumnMapping",
    "ImportPreview",
    "ImportSummary",
    "RowError",
    "ValidatedClientRow",
]
