"""
app/schemas/client_import.py

Request and response schemas for spreadsheet client import endpoints.

Upload preview keeps snake_case keys; job status and execution payloads use
the camelCase keys the CRM front end expects.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

_CAMEL_CONFIG = {"populate_by_name": True}


class ColumnMappingSchema(BaseModel):
    model_config = _CAMEL_CONFIG

    source_column: str = Field(..., alias="sourceColumn", min_length=1)
    target_field: str = Field(..., alias="targetField", min_length=1)
    transform: str | None = None


class ImportPreviewResponse(BaseModel):
    """
    API response model for an uploaded file awaiting execution.
    """

    job_id: UUID
    filename: str
    columns: list[str]
    sample_rows: list[dict[str, str]] = Field(default_factory=list)
    total_rows: int = Field(..., ge=0)
    suggested_mappings: list[ColumnMappingSchema] = Field(default_factory=list)


class ImportExecuteRequest(BaseModel):
    model_config = _CAMEL_CONFIG

    mappings: list[ColumnMappingSchema]
    duplicate_strategy: str = Field(default="skip", alias="duplicateStrategy")


class ImportRowErrorResponse(BaseModel):
    row: int = Field(..., ge=1)
    message: str


class ImportSummaryResponse(BaseModel):
    """
    API response model for a completed import run.
    """

    model_config = _CAMEL_CONFIG

    job_id: UUID = Field(..., alias="jobId")
    status: str
    total_rows: int = Field(..., alias="totalRows", ge=0)
    created_count: int = Field(..., alias="createdCount", ge=0)
    updated_count: int = Field(..., alias="updatedCount", ge=0)
    duplicate_created_count: int = Field(..., alias="duplicateCreatedCount", ge=0)
    skipped_count: int = Field(..., alias="skippedCount", ge=0)
    error_count: int = Field(..., alias="errorCount", ge=0)
    success_count: int = Field(..., alias="successCount", ge=0)
    errors: list[ImportRowErrorResponse] = Field(default_factory=list)


class ImportJobStatusResponse(BaseModel):
    model_config = _CAMEL_CONFIG

    id: UUID
    filename: str
    total_records: int = Field(..., alias="totalRecords", ge=0)
    status: str
    processed_count: int = Field(..., alias="processedCount", ge=0)
    success_count: int = Field(..., alias="successCount", ge=0)
    error_count: int = Field(..., alias="errorCount", ge=0)
    skipped_count: int = Field(..., alias="skippedCount", ge=0)
    errors: list[dict[str, Any]] = Field(default_factory=list)
    error_message: str | None = Field(default=None, alias="errorMessage")
    created_at: datetime | None = Field(default=None, alias="createdAt")
    completed_at: datetime | None = Field(default=None, alias="completedAt")


class ImportJobListResponse(BaseModel):
    jobs: list[ImportJobStatusResponse] = Field(default_factory=list)
