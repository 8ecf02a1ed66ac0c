"""
app/validators package marker.
"""

from app.validators.import_row_validator import ClientRowValidator
from app.validators.mapping_validator import ImportMappingError, MappingErrorDetail, MappingValidator

__all__ = [
    "ClientRowValidator",
    "ImportMappingError",
    "MappingErrorDetail",
    "MappingValidator",
]
