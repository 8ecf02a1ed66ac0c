"""
app/schemas package marker.
"""

from app.schemas.client_import import (
    ColumnMappingSchema,
    ImportExecuteRequest,
    ImportJobListResponse,
    ImportJobStatusResponse,
    ImportPreviewResponse,
    ImportRowErrorResponse,
    ImportSummaryResponse,
)
from app.schemas.webhooks import (
    CallReportAckResponse,
    IngestionOutcomeResponse,
    SideEffectStepResponse,
    WorkflowActionResponse,
)

__all__ = [
    "CallReportAckResponse",
    "ColumnMappingSchema",
    "ImportExecuteRequest",
    "ImportJobListResponse",
    "ImportJobStatusResponse",
    "ImportPreviewResponse",
    "ImportRowErrorResponse",
    "ImportSummaryResponse",
    "IngestionOutcomeResponse",
    "SideEffectStepResponse",
    "WorkflowActionResponse",
]
