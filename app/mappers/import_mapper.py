"""
app/mappers/import_mapper.py

Column mapping for spreadsheet client imports: suggesting a mapping for a
fresh upload and applying a confirmed mapping to each row.
"""

from __future__ import annotations

from difflib import SequenceMatcher
from typing import Mapping, Sequence

from app.domain.client_import import ColumnMapping
from app.identity.normalizer import format_phone
from app.validators.mapping_validator import MappingValidator

SKIP_TARGET = "skip"

TARGET_FIELDS: tuple[str, ...] = (
    "name",
    "client_id",
    "status",
    "tags",
    "home_email",
    "home_email_2",
    "work_email",
    "personal_email",
    "other_email",
    "home_phone",
    "work_phone",
    "cellular_phone",
    "other_phone",
)

EMAIL_FIELDS: tuple[str, ...] = (
    "home_email",
    "home_email_2",
    "work_email",
    "personal_email",
    "other_email",
)
PHONE_FIELDS: tuple[str, ...] = ("home_phone", "work_phone", "cellular_phone", "other_phone")

TRANSFORM_UPPERCASE = "uppercase"
TRANSFORM_LOWERCASE = "lowercase"
TRANSFORM_PHONE_FORMAT = "phone_format"
TRANSFORM_NONE = "none"

TRANSFORMS: tuple[str, ...] = (
    TRANSFORM_UPPERCASE,
    TRANSFORM_LOWERCASE,
    TRANSFORM_PHONE_FORMAT,
    TRANSFORM_NONE,
)

DEFAULT_COLUMN_ALIASES: dict[str, tuple[str, ...]] = {
    "name": ("full name", "client name", "contact name", "client", "contact"),
    "client_id": ("client code", "client number", "code", "id", "customer id"),
    "status": ("client status", "lead status", "lifecycle status"),
    "tags": ("tag", "labels", "categories", "groups"),
    "home_email": ("email", "e-mail", "email address", "primary email"),
    "home_email_2": ("email 2", "secondary email", "alternate email", "home email 2"),
    "work_email": ("business email", "office email"),
    "personal_email": ("private email",),
    "other_email": ("additional email",),
    "home_phone": ("phone", "phone number", "telephone", "primary phone", "tel"),
    "work_phone": ("business phone", "office phone"),
    "cellular_phone": ("cell", "cell phone", "mobile", "mobile phone", "cellular"),
    "other_phone": ("alternate phone", "additional phone", "fax"),
}

_SUGGESTED_TRANSFORMS: dict[str, str] = {
    **{target: TRANSFORM_LOWERCASE for target in EMAIL_FIELDS},
    **{target: TRANSFORM_PHONE_FORMAT for target in PHONE_FIELDS},
    "client_id": TRANSFORM_UPPERCASE,
}


def normalize_header(header: str) -> str:
    """
    Normalize a column name for flexible matching.
    """

    return "".join(ch for ch in header.strip().lower() if ch.isalnum())


def apply_transform(value: str, transform: str | None) -> str:
    if transform == TRANSFORM_UPPERCASE:
        return value.upper()
    if transform == TRANSFORM_LOWERCASE:
        return value.lower()
    if transform == TRANSFORM_PHONE_FORMAT:
        return format_phone(value)
    return value


class ImportMapper:
    """
    Suggests and applies column-to-field mappings.
    """

    def __init__(
        self,
        *,
        aliases: Mapping[str, Sequence[str]] | None = None,
        validator: MappingValidator | None = None,
        fuzzy_threshold: float = 0.84,
    ) -> None:
        self._aliases: dict[str, tuple[str, ...]] = {
            target: tuple(values)
            for target, values in (aliases or DEFAULT_COLUMN_ALIASES).items()
        }
        self._validator = validator or MappingValidator(
            target_fields=TARGET_FIELDS,
            transforms=TRANSFORMS,
            skip_target=SKIP_TARGET,
        )
        self._fuzzy_threshold = max(0.0, min(1.0, fuzzy_threshold))

    def suggest_mappings(self, columns: Sequence[str]) -> list[ColumnMapping]:
        """
        Propose one mapping per column: exact or alias matches first, then
        fuzzy matches for the rest, and "skip" when nothing is close enough.
        Each target field is suggested at most once.
        """

        chosen: dict[str, str] = {}
        used_targets: set[str] = set()

        for column in columns:
            target = self._find_exact_or_alias_match(column)
            if target is not None and target not in used_targets:
                chosen[column] = target
                used_targets.add(target)

        for column in columns:
            if column in chosen:
                continue
            target = self._find_best_fuzzy_match(column, used_targets)
            if target is not None:
                chosen[column] = target
                used_targets.add(target)

        suggestions: list[ColumnMapping] = []
        for column in columns:
            target = chosen.get(column, SKIP_TARGET)
            suggestions.append(
                ColumnMapping(
                    source_column=column,
                    target_field=target,
                    transform=_SUGGESTED_TRANSFORMS.get(target),
                )
            )
        return suggestions

    def validate(self, *, mappings: Sequence[ColumnMapping], columns: Sequence[str]) -> None:
        self._validator.validate(mappings=mappings, source_headers=columns)

    def map_row(
        self,
        *,
        raw_row: Mapping[str, str | None],
        mappings: Sequence[ColumnMapping],
    ) -> dict[str, str]:
        """
        Map one source row onto every target field. Unmapped targets are "".
        """

        mapped = {target: "" for target in TARGET_FIELDS}
        for mapping in mappings:
            if mapping.target_field == SKIP_TARGET:
                continue
            raw_value = raw_row.get(mapping.source_column)
            value = "" if raw_value is None else str(raw_value).strip()
            mapped[mapping.target_field] = apply_transform(value, mapping.transform)
        return mapped

    def _find_exact_or_alias_match(self, column: str) -> str | None:
        normalized = normalize_header(column)
        if not normalized:
            return None
        for target in TARGET_FIELDS:
            candidates = (target, *self._aliases.get(target, ()))
            if any(normalize_header(candidate) == normalized for candidate in candidates):
                return target
        return None

    def _find_best_fuzzy_match(self, column: str, used_targets: set[str]) -> str | None:
        normalized = normalize_header(column)
        if not normalized:
            return None

        best_target: str | None = None
        best_score = 0.0
        for target in TARGET_FIELDS:
            if target in used_targets:
                continue
            for candidate in (target, *self._aliases.get(target, ())):
                candidate_norm = normalize_header(candidate)
                if not candidate_norm:
                    continue
                score = SequenceMatcher(None, normalized, candidate_norm).ratio()
                if len(candidate_norm) > 2 and (candidate_norm in normalized or normalized in candidate_norm):
                    score = max(score, 0.9)
                if score > best_score:
                    best_score = score
                    best_target = target

        if best_target is not None and best_score >= self._fuzzy_threshold:
            return best_target
        return None
