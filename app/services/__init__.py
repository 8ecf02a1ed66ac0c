"""
app/services package marker.
"""

from app.services.client_import_service import (
    ClientImportService,
    ImportFileTooLargeError,
    ImportJobNotFoundError,
    ImportJobStateError,
    ImportPersistenceError,
    get_client_import_service,
)
from app.services.event_ingestion_service import (
    EventIngestionService,
    EventPersistenceError,
    IngestionOutcome,
    IngestionStatus,
    get_event_ingestion_service,
)
from app.services.side_effects import (
    SideEffectDispatcher,
    SideEffectPlan,
    SideEffectReport,
    StepResult,
    StepStatus,
)

__all__ = [
    "ClientImportService",
    "ImportFileTooLargeError",
    "ImportJobNotFoundError",
    "ImportJobStateError",
    "ImportPersistenceError",
    "get_client_import_service",
    "EventIngestionService",
    "EventPersistenceError",
    "IngestionOutcome",
    "IngestionStatus",
    "get_event_ingestion_service",
    "SideEffectDispatcher",
    "SideEffectPlan",
    "SideEffectReport",
    "StepResult",
    "StepStatus",
]
