"""
app/api/routers/client_import.py

Spreadsheet client import HTTP endpoints.
"""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Response, UploadFile, status

from app.api.dependencies import get_crm_store, get_import_upload
from app.domain.client_import import ColumnMapping
from app.schemas.client_import import (
    ColumnMappingSchema,
    ImportExecuteRequest,
    ImportJobListResponse,
    ImportJobStatusResponse,
    ImportPreviewResponse,
    ImportRowErrorResponse,
    ImportSummaryResponse,
)
from app.services.client_import_service import (
    ClientImportService,
    ImportFileError,
    ImportFileTooLargeError,
    ImportJobNotFoundError,
    ImportJobStateError,
    ImportMappingError,
    ImportPersistenceError,
    UnsupportedFileTypeError,
    get_client_import_service,
)
from db.repositories.errors import FileStorageError, StoreError
from db.repositories.store import CRMStore
from db.repositories.types import ImportJobSnapshot

router = APIRouter(prefix="/imports", tags=["imports"])


def _job_response(job: ImportJobSnapshot) -> ImportJobStatusResponse:
    return ImportJobStatusResponse(
        id=job.id,
        filename=job.filename,
        total_records=job.total_records,
        status=job.status,
        processed_count=job.processed_count,
        success_count=job.success_count,
        error_count=job.error_count,
        skipped_count=job.skipped_count,
        errors=list(job.errors),
        error_message=job.error_message,
        created_at=job.created_at,
        completed_at=job.completed_at,
    )


@router.post("/upload-preview", response_model=ImportPreviewResponse)
def upload_preview(
    file: UploadFile = Depends(get_import_upload),
    store: CRMStore = Depends(get_crm_store),
    import_service: ClientImportService = Depends(get_client_import_service),
) -> ImportPreviewResponse:
    """
    Parse an uploaded spreadsheet, stage it as a pending import job and
    suggest a column mapping.
    """

    try:
        preview = import_service.upload_preview(
            store=store,
            filename=file.filename or "upload",
            content=file.file.read(),
        )
    except ImportFileTooLargeError as exc:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=str(exc),
        ) from exc
    except (UnsupportedFileTypeError, ImportFileError) as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except (StoreError, FileStorageError) as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Unable to stage the uploaded file.",
        ) from exc
    finally:
        file.file.close()

    return ImportPreviewResponse(
        job_id=preview.job_id,
        filename=preview.filename,
        columns=preview.columns,
        sample_rows=preview.sample_rows,
        total_rows=preview.total_rows,
        suggested_mappings=[
            ColumnMappingSchema(
                source_column=mapping.source_column,
                target_field=mapping.target_field,
                transform=mapping.transform,
            )
            for mapping in preview.suggested_mappings
        ],
    )


@router.post("/{job_id}/execute", response_model=ImportSummaryResponse)
def execute_import(
    job_id: UUID,
    request: ImportExecuteRequest,
    store: CRMStore = Depends(get_crm_store),
    import_service: ClientImportService = Depends(get_client_import_service),
) -> ImportSummaryResponse:
    """
    Run a staged import with the confirmed mapping and duplicate strategy.
    """

    try:
        summary = import_service.execute(
            store=store,
            job_id=job_id,
            mappings=[
                ColumnMapping(
                    source_column=mapping.source_column,
                    target_field=mapping.target_field,
                    transform=mapping.transform,
                )
                for mapping in request.mappings
            ],
            strategy=request.duplicate_strategy,
        )
    except ImportMappingError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=exc.to_dict(),
        ) from exc
    except ImportJobNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except ImportJobStateError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(exc),
        ) from exc
    except (ImportPersistenceError, StoreError, FileStorageError) as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Unable to complete the import.",
        ) from exc

    return ImportSummaryResponse(
        job_id=summary.job_id,
        status=summary.status,
        total_rows=summary.total_rows,
        created_count=summary.created_count,
        updated_count=summary.updated_count,
        duplicate_created_count=summary.duplicate_created_count,
        skipped_count=summary.skipped_count,
        error_count=summary.error_count,
        success_count=summary.success_count,
        errors=[
            ImportRowErrorResponse(row=error.row_number, message=error.message)
            for error in summary.errors
        ],
    )


@router.get("/template/{file_format}")
def download_template(file_format: str) -> Response:
    """
    Download a sample import file with the expected headers.
    """

    try:
        content, media_type, filename = ClientImportService.template(file_format)
    except UnsupportedFileTypeError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc

    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/{job_id}", response_model=ImportJobStatusResponse)
def get_import_status(
    job_id: UUID,
    store: CRMStore = Depends(get_crm_store),
    import_service: ClientImportService = Depends(get_client_import_service),
) -> ImportJobStatusResponse:
    try:
        job = import_service.get_job(store=store, job_id=job_id)
    except ImportJobNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except StoreError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Unable to load the import job.",
        ) from exc
    return _job_response(job)


@router.get("", response_model=ImportJobListResponse)
def list_imports(
    store: CRMStore = Depends(get_crm_store),
    import_service: ClientImportService = Depends(get_client_import_service),
) -> ImportJobListResponse:
    """
    Return the most recent import jobs, newest first.
    """

    try:
        jobs = import_service.list_jobs(store=store)
    except StoreError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Unable to list import jobs.",
        ) from exc
    return ImportJobListResponse(jobs=[_job_response(job) for job in jobs])
