"""
app/api/routers/webhooks.py

Inbound webhooks from the voice-AI platform and the workflow-automation
platform. Both acknowledge with 200 for every accepted payload; only a
failed primary write answers 500 so the sender retries.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, status

from app.api.dependencies import get_crm_store
from app.schemas.webhooks import (
    CallReportAckResponse,
    IngestionOutcomeResponse,
    WorkflowActionResponse,
)
from app.services.event_ingestion_service import (
    EventIngestionService,
    EventPersistenceError,
    get_event_ingestion_service,
)
from db.repositories.store import CRMStore

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/vapi", response_model=CallReportAckResponse)
def receive_call_report(
    payload: dict[str, Any] = Body(...),
    store: CRMStore = Depends(get_crm_store),
    ingestion_service: EventIngestionService = Depends(get_event_ingestion_service),
) -> CallReportAckResponse:
    """
    Log a voice-AI end-of-call report. Other message types are acknowledged
    and ignored.
    """

    try:
        outcome = ingestion_service.ingest_call_report(store=store, payload=payload)
    except EventPersistenceError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(exc),
        ) from exc

    return CallReportAckResponse(
        received=True,
        outcome=IngestionOutcomeResponse(**outcome.to_dict()),
    )


@router.post("/n8n", response_model=WorkflowActionResponse)
def receive_workflow_action(
    payload: dict[str, Any] = Body(...),
    store: CRMStore = Depends(get_crm_store),
    ingestion_service: EventIngestionService = Depends(get_event_ingestion_service),
) -> WorkflowActionResponse:
    """
    Apply one workflow action ({action, entity, data}). Unknown or invalid
    actions come back with success=false.
    """

    try:
        outcome = ingestion_service.ingest_workflow_action(store=store, payload=payload)
    except EventPersistenceError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(exc),
        ) from exc

    return WorkflowActionResponse(
        success=outcome.success,
        outcome=IngestionOutcomeResponse(**outcome.to_dict()),
    )
