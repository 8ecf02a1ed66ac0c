"""
app/mappers package marker.
"""

from app.mappers.import_mapper import (
    SKIP_TARGET,
    TARGET_FIELDS,
    TRANSFORMS,
    ImportMapper,
    apply_transform,
)

__all__ = [
    "SKIP_TARGET",
    "TARGET_FIELDS",
    "TRANSFORMS",
    "ImportMapper",
    "apply_transform",
]
