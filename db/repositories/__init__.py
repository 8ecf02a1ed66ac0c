"""
Repository layer exports.
"""

from db.repositories.crm_store import SQLAlchemyCRMStore
from db.repositories.errors import (
    DuplicateClientCodeError,
    DuplicateExternalEventError,
    FileStorageError,
    RecordNotFoundError,
    StagedImportNotFoundError,
    StoreConflictError,
    StoreError,
    StoreUnavailableError,
)
from db.repositories.memory_store import InMemoryCRMStore
from db.repositories.storage import ImportStagingBackend, InMemoryImportStaging, LocalImportStaging
from db.repositories.store import CRMStore
from db.repositories.types import (
    AdvisorSnapshot,
    AppointmentSnapshot,
    ClientChanges,
    ClientSnapshot,
    ContactPoint,
    ImportCounters,
    ImportJobSnapshot,
    NewActivity,
    NewAppointment,
    NewClient,
    NewNotification,
    NewTask,
)

__all__ = [
    "CRMStore",
    "SQLAlchemyCRMStore",
    "InMemoryCRMStore",
    "ImportStagingBackend",
    "LocalImportStaging",
    "InMemoryImportStaging",
    "StoreError",
    "StoreUnavailableError",
    "StoreConflictError",
    "DuplicateClientCodeError",
    "DuplicateExternalEventError",
    "RecordNotFoundError",
    "FileStorageError",
    "StagedImportNotFoundError",
    "ContactPoint",
    "ClientSnapshot",
    "NewClient",
    "ClientChanges",
    "NewActivity",
    "NewTask",
    "NewNotification",
    "AdvisorSnapshot",
    "NewAppointment",
    "AppointmentSnapshot",
    "ImportCounters",
    "ImportJobSnapshot",
]
