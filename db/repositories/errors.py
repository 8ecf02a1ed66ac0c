"""
Repository-layer exceptions for CRM persistence and import staging.
"""

from __future__ import annotations


class StoreError(Exception):
    """Base exception for CRM store failures."""


class StoreUnavailableError(StoreError):
    """Raised when the underlying store cannot complete a read or write."""


class StoreConflictError(StoreError):
    """Raised when a write violates a uniqueness guarantee."""


class DuplicateClientCodeError(StoreConflictError):
    """Raised when a client code is already assigned to another client."""


class DuplicateExternalEventError(StoreConflictError):
    """Raised when an activity for the same external event id already exists."""


class RecordNotFoundError(StoreError):
    """Raised when a referenced record does not exist."""


class FileStorageError(Exception):
    """Raised when staging, loading or deleting a staged import fails."""


class StagedImportNotFoundError(FileStorageError):
    """Raised when no staged table exists for an import job."""
