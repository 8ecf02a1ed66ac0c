"""
app/validators/mapping_validator.py

Validation for user-declared import column mappings.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence

from app.domain.client_import import ColumnMapping


@dataclass(frozen=True)
class MappingErrorDetail:
    """
    Structured mapping error detail.
    """

    code: str
    message: str
    target_field: str | None = None
    source_column: str | None = None
    context: dict[str, Any] | None = None


class ImportMappingError(ValueError):
    """
    Raised when an import mapping cannot be applied safely.
    """

    def __init__(self, *, message: str, errors: Sequence[MappingErrorDetail]) -> None:
        super().__init__(message)
        self.message = message
        self.errors = tuple(errors)

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": self.message,
            "errors": [
                {
                    "code": error.code,
                    "message": error.message,
                    "target_field": error.target_field,
                    "source_column": error.source_column,
                    "context": error.context,
                }
                for error in self.errors
            ],
        }


class MappingValidator:
    """
    Validates column mappings against the known target fields, transforms
    and the uploaded file's headers.
    """

    def __init__(
        self,
        *,
        target_fields: Sequence[str],
        transforms: Sequence[str],
        skip_target: str = "skip",
    ) -> None:
        self._target_fields = frozenset(target_fields)
        self._transforms = frozenset(transforms)
        self._skip_target = skip_target

    def validate(
        self,
        *,
        mappings: Sequence[ColumnMapping],
        source_headers: Sequence[str],
    ) -> None:
        """
        Validate mappings and raise ImportMappingError listing every problem.
        """

        errors: list[MappingErrorDetail] = []
        headers_set = set(source_headers)
        seen_targets: dict[str, str] = {}

        for mapping in mappings:
            if mapping.source_column not in headers_set:
                errors.append(
                    MappingErrorDetail(
                        code="unknown_source_column",
                        message="Mapped source column does not exist in the uploaded file.",
                        target_field=mapping.target_field,
                        source_column=mapping.source_column,
                        context={"source_headers": list(source_headers)},
                    )
                )

            if mapping.target_field == self._skip_target:
                continue

            if mapping.target_field not in self._target_fields:
                errors.append(
                    MappingErrorDetail(
                        code="invalid_target_field",
                        message="Unknown target field in mapping.",
                        target_field=mapping.target_field,
                        source_column=mapping.source_column,
                        context={"allowed": sorted(self._target_fields)},
                    )
                )
            elif mapping.target_field in seen_targets:
                errors.append(
                    MappingErrorDetail(
                        code="duplicate_target_field",
                        message="Target field is mapped from more than one column.",
                        target_field=mapping.target_field,
                        source_column=mapping.source_column,
                        context={"first_source_column": seen_targets[mapping.target_field]},
                    )
                )
            else:
                seen_targets[mapping.target_field] = mapping.source_column

            if mapping.transform is not None and mapping.transform not in self._transforms:
                errors.append(
                    MappingErrorDetail(
                        code="invalid_transform",
                        message="Unknown transform in mapping.",
                        target_field=mapping.target_field,
                        source_column=mapping.source_column,
                        context={"transform": mapping.transform, "allowed": sorted(self._transforms)},
                    )
                )

        if errors:
            codes = ", ".join(sorted({error.code for error in errors}))
            raise ImportMappingError(
                message=f"Import mapping validation failed: {codes}.",
                errors=errors,
            )
