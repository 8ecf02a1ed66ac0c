"""
app/services/client_import_service.py

Service layer for spreadsheet client imports.

An import runs in two requests. upload_preview() parses the file, records a
pending ImportJob, stages the parsed table under the job id and suggests a
column mapping. execute() replays the staged rows through validation,
identity resolution and the conflict policy, one row at a time.

Each row is its own unit of work: it commits on success and rolls back on
any failure, so a bad row is counted and reported without touching the
rows around it. Counters are flushed to the job every `progress_every`
rows so a long run can be observed while it is still processing.
"""

from __future__ import annotations

import logging
import uuid
from functools import lru_cache
from typing import Sequence

from app.config import get_event_ingestion_settings, get_import_settings
from app.domain.client_import import (
    ColumnMapping,
    ImportPreview,
    ImportSummary,
    RowError,
    ValidatedClientRow,
)
from app.identity.client_codes import ClientCodeAllocator
from app.identity.conflict_policy import (
    CreateNew,
    DuplicateStrategy,
    IncomingClient,
    NoOp,
    UpdateFields,
    decide,
)
from app.identity.resolver import IdentityCandidates, IdentityResolver
from app.mappers.import_mapper import ImportMapper
from app.parsers.tabular_parser import (
    ImportFileError,
    ParsedTable,
    UnsupportedFileTypeError,
    parse_table,
    render_template,
)
from app.validators.import_row_validator import ClientRowValidator
from app.validators.mapping_validator import ImportMappingError, MappingErrorDetail
from db.models.client import ClientStatus, PipelineStage
from db.models.import_job import ImportJobStatus
from db.repositories.errors import (
    DuplicateClientCodeError,
    FileStorageError,
    StagedImportNotFoundError,
    StoreError,
)
from db.repositories.storage import ImportStagingBackend, LocalImportStaging
from db.repositories.store import CRMStore
from db.repositories.types import ClientSnapshot, ImportCounters, ImportJobSnapshot, NewClient

logger = logging.getLogger(__name__)

__all__ = [
    "ClientImportService",
    "ImportFileError",
    "ImportFileTooLargeError",
    "ImportJobNotFoundError",
    "ImportJobStateError",
    "ImportMappingError",
    "ImportPersistenceError",
    "UnsupportedFileTypeError",
    "get_client_import_service",
]


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ImportFileTooLargeError(ImportFileError):
    """
    Raised when an upload exceeds the configured size limit.
    """


class ImportJobNotFoundError(LookupError):
    """
    Raised when an import job id is unknown.
    """


class ImportJobStateError(RuntimeError):
    """
    Raised when a job cannot be executed in its current state.
    """


class ImportPersistenceError(RuntimeError):
    """
    Raised when job bookkeeping (not a single row) cannot be persisted.
    """


class _RowFailed(Exception):
    """
    A row-level failure carrying the message reported to the user.
    """


# Outcomes of one processed row.
_CREATED = "created"
_DUPLICATE_CREATED = "duplicate_created"
_UPDATED = "updated"
_SKIPPED = "skipped"


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class ClientImportService:
    """
    Coordinates parsing, mapping, validation, identity resolution and
    persistence of spreadsheet client imports.
    """

    def __init__(
        self,
        *,
        staging: ImportStagingBackend,
        max_upload_bytes: int,
        preview_rows: int,
        max_row_errors: int,
        log_row_errors: bool,
        progress_every: int,
        history_limit: int,
        client_code_max_attempts: int = 3,
        mapper: ImportMapper | None = None,
        validator: ClientRowValidator | None = None,
    ) -> None:
        self._staging = staging
        self._max_upload_bytes = max(1, max_upload_bytes)
        self._preview_rows = max(1, preview_rows)
        self._max_row_errors = max(1, max_row_errors)
        self._log_row_errors = log_row_errors
        self._progress_every = max(1, progress_every)
        self._history_limit = max(1, history_limit)
        self._client_code_max_attempts = max(1, client_code_max_attempts)
        self._mapper = mapper or ImportMapper()
        self._validator = validator or ClientRowValidator()

    # ------------------------------------------------------------------
    # Upload and preview
    # ------------------------------------------------------------------

    def upload_preview(
        self,
        *,
        store: CRMStore,
        filename: str,
        content: bytes,
    ) -> ImportPreview:
        """
        Parse an upload, create a pending job and stage the parsed table.
        """

        if len(content) > self._max_upload_bytes:
            raise ImportFileTooLargeError(
                f"File exceeds the {self._max_upload_bytes} byte upload limit."
            )

        table = parse_table(filename, content)
        job = store.create_import_job(filename=filename, total_records=table.total_rows)
        try:
            self._staging.save(job_id=job.id, payload=table.to_dict())
            store.commit()
        except (FileStorageError, StoreError):
            store.rollback()
            self._discard_staged(job.id)
            raise

        logger.info(
            "Import staged job_id=%s filename=%r rows=%s columns=%s",
            job.id,
            filename,
            table.total_rows,
            len(table.columns),
        )
        return self.preview(job_id=job.id, filename=filename, table=table)

    def preview(self, *, job_id: uuid.UUID, filename: str, table: ParsedTable) -> ImportPreview:
        return ImportPreview(
            job_id=job_id,
            filename=filename,
            columns=list(table.columns),
            sample_rows=[dict(row) for row in table.rows[: self._preview_rows]],
            total_rows=table.total_rows,
            suggested_mappings=self._mapper.suggest_mappings(table.columns),
        )

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def execute(
        self,
        *,
        store: CRMStore,
        job_id: uuid.UUID,
        mappings: Sequence[ColumnMapping],
        strategy: str,
    ) -> ImportSummary:
        """
        Run every staged row of a pending job and complete the job.

        Row failures never abort the batch. Mapping errors are raised before
        any row is touched.
        """

        job = self.get_job(store=store, job_id=job_id)
        if job.status != ImportJobStatus.PENDING:
            raise ImportJobStateError(
                f"Import job {job_id} is {job.status}; only pending jobs can be executed."
            )
        if strategy not in DuplicateStrategy.ALL:
            raise ImportMappingError(
                message=f"Unknown duplicate strategy '{strategy}'.",
                errors=[
                    MappingErrorDetail(
                        code="invalid_duplicate_strategy",
                        message="Duplicate strategy must be skip, update or create_new.",
                        context={"allowed": list(DuplicateStrategy.ALL)},
                    )
                ],
            )

        try:
            table = ParsedTable.from_dict(self._staging.load(job_id=job_id))
        except StagedImportNotFoundError as exc:
            raise ImportJobStateError(f"Import job {job_id} has no staged data.") from exc

        self._mapper.validate(mappings=mappings, columns=table.columns)

        try:
            store.mark_import_processing(
                job_id,
                mappings=[mapping.to_dict() for mapping in mappings],
                duplicate_strategy=strategy,
            )
            store.commit()
        except StoreError as exc:
            store.rollback()
            raise ImportPersistenceError(f"Failed to start import job {job_id}.") from exc

        logger.info(
            "Import started job_id=%s rows=%s strategy=%s",
            job_id,
            table.total_rows,
            strategy,
        )

        counters = ImportCounters()
        allocator = ClientCodeAllocator(store)
        resolver = IdentityResolver(store)

        for row_number, raw_row in enumerate(table.rows, start=2):
            self._run_row(
                store=store,
                raw_row=raw_row,
                row_number=row_number,
                mappings=mappings,
                strategy=strategy,
                allocator=allocator,
                resolver=resolver,
                counters=counters,
            )
            counters.processed += 1
            if counters.processed % self._progress_every == 0:
                self._flush_progress(store=store, job_id=job_id, counters=counters)

        completed = self._complete(store=store, job_id=job_id, counters=counters)
        self._discard_staged(job_id)

        logger.info(
            "Import completed job_id=%s total=%s created=%s updated=%s skipped=%s errors=%s",
            job_id,
            table.total_rows,
            counters.created,
            counters.updated,
            counters.skipped,
            counters.error,
        )
        return ImportSummary(
            job_id=job_id,
            status=completed.status,
            total_rows=table.total_rows,
            created_count=counters.created,
            updated_count=counters.updated,
            duplicate_created_count=counters.duplicate_created,
            skipped_count=counters.skipped,
            error_count=counters.error,
            errors=[
                RowError(row_number=int(entry["row"]), message=str(entry["message"]))
                for entry in counters.errors
            ],
        )

    # ------------------------------------------------------------------
    # Job lookup, history, template
    # ------------------------------------------------------------------

    def get_job(self, *, store: CRMStore, job_id: uuid.UUID) -> ImportJobSnapshot:
        job = store.get_import_job(job_id)
        if job is None:
            raise ImportJobNotFoundError(f"Import job not found: {job_id}")
        return job

    def list_jobs(self, *, store: CRMStore) -> list[ImportJobSnapshot]:
        return store.list_import_jobs(limit=self._history_limit)

    @staticmethod
    def template(file_format: str) -> tuple[bytes, str, str]:
        return render_template(file_format)

    # ------------------------------------------------------------------
    # Row internals
    # ------------------------------------------------------------------

    def _run_row(
        self,
        *,
        store: CRMStore,
        raw_row: dict[str, str],
        row_number: int,
        mappings: Sequence[ColumnMapping],
        strategy: str,
        allocator: ClientCodeAllocator,
        resolver: IdentityResolver,
        counters: ImportCounters,
    ) -> None:
        mapped_row = self._mapper.map_row(raw_row=raw_row, mappings=mappings)
        validated, row_errors = self._validator.validate_mapped_row(
            mapped_row=mapped_row,
            row_number=row_number,
        )
        if row_errors or validated is None:
            message = "; ".join(error.message for error in row_errors) or "Row could not be validated."
            self._record_error(counters, RowError(row_number=row_number, message=message))
            return

        try:
            outcome = self._apply_row(
                store=store,
                row=validated,
                strategy=strategy,
                allocator=allocator,
                resolver=resolver,
            )
            store.commit()
        except Exception as exc:  # noqa: BLE001
            self._safe_rollback(store)
            message = str(exc) if isinstance(exc, _RowFailed) else _describe_failure(exc)
            self._record_error(counters, RowError(row_number=row_number, message=message))
            return

        if outcome == _CREATED:
            counters.created += 1
        elif outcome == _DUPLICATE_CREATED:
            counters.created += 1
            counters.duplicate_created += 1
        elif outcome == _UPDATED:
            counters.updated += 1
        else:
            counters.skipped += 1

    def _apply_row(
        self,
        *,
        store: CRMStore,
        row: ValidatedClientRow,
        strategy: str,
        allocator: ClientCodeAllocator,
        resolver: IdentityResolver,
    ) -> str:
        existing = resolver.resolve(
            IdentityCandidates(
                name=row.incoming.name,
                email=row.candidate_email,
                phone=row.candidate_phone,
            )
        )
        decision = decide(existing, strategy, row.incoming)

        if isinstance(decision, NoOp):
            return _SKIPPED
        if isinstance(decision, UpdateFields):
            store.update_client(decision.client_id, decision.to_changes())
            return _UPDATED
        if isinstance(decision, CreateNew):
            self._create_client(store=store, incoming=decision.incoming, allocator=allocator)
            return _DUPLICATE_CREATED if existing is not None else _CREATED
        raise TypeError(f"Unhandled conflict decision: {decision!r}")

    def _create_client(
        self,
        *,
        store: CRMStore,
        incoming: IncomingClient,
        allocator: ClientCodeAllocator,
    ) -> ClientSnapshot:
        if incoming.client_code:
            try:
                created = store.create_client(self._new_client(incoming, incoming.client_code))
            except DuplicateClientCodeError as exc:
                raise _RowFailed(
                    f"Client ID {incoming.client_code} is already assigned to another client."
                ) from exc
            allocator.observe(incoming.client_code)
            return created

        return allocator.create_with_next_code(
            lambda code: self._new_client(incoming, code),
            max_attempts=self._client_code_max_attempts,
        )

    @staticmethod
    def _new_client(incoming: IncomingClient, client_code: str) -> NewClient:
        return NewClient(
            name=incoming.name,
            status=incoming.status or ClientStatus.ACTIVE,
            pipeline_stage=incoming.pipeline_stage or PipelineStage.CLIENT_ONBOARDED,
            client_code=client_code,
            tags=incoming.tags,
            phones=incoming.phones,
            emails=incoming.emails,
        )

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    def _record_error(self, counters: ImportCounters, error: RowError) -> None:
        counters.error += 1
        if self._log_row_errors:
            logger.warning(
                "Import row error row=%s column=%s message=%s",
                error.row_number,
                error.column,
                error.message,
            )
        if len(counters.errors) < self._max_row_errors:
            counters.errors.append(error.to_dict())

    def _flush_progress(
        self,
        *,
        store: CRMStore,
        job_id: uuid.UUID,
        counters: ImportCounters,
    ) -> None:
        try:
            store.record_import_progress(job_id, counters)
            store.commit()
        except StoreError as exc:
            self._safe_rollback(store)
            logger.warning(
                "Import progress flush failed job_id=%s processed=%s error=%s",
                job_id,
                counters.processed,
                exc,
            )

    def _complete(
        self,
        *,
        store: CRMStore,
        job_id: uuid.UUID,
        counters: ImportCounters,
    ) -> ImportJobSnapshot:
        try:
            completed = store.mark_import_completed(job_id, counters)
            store.commit()
            return completed
        except StoreError as exc:
            self._safe_rollback(store)
            logger.exception("Failed to complete import job job_id=%s", job_id)
            try:
                store.mark_import_failed(
                    job_id,
                    error_message=f"Failed to record completion: {exc}",
                    counters=counters,
                )
                store.commit()
            except StoreError:
                self._safe_rollback(store)
                logger.exception("Failed to mark import job failed job_id=%s", job_id)
            raise ImportPersistenceError(f"Failed to complete import job {job_id}.") from exc

    def _discard_staged(self, job_id: uuid.UUID) -> None:
        try:
            self._staging.delete(job_id=job_id)
        except FileStorageError as exc:
            logger.warning("Failed to delete staged import job_id=%s error=%s", job_id, exc)

    @staticmethod
    def _safe_rollback(store: CRMStore) -> None:
        try:
            store.rollback()
        except StoreError as exc:
            logger.warning("Rollback failed error=%s", exc)


def _describe_failure(exc: Exception) -> str:
    if isinstance(exc, StoreError):
        return f"Storage error: {exc}"
    return f"Unexpected error: {exc.__class__.__name__}: {exc}"


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


@lru_cache(maxsize=1)
def get_client_import_service() -> ClientImportService:
    """
    Build and cache the import service with env-driven settings.
    """
    settings = get_import_settings()
    return ClientImportService(
        staging=LocalImportStaging(settings.staging_dir),
        max_upload_bytes=settings.max_upload_bytes,
        preview_rows=settings.preview_rows,
        max_row_errors=settings.max_row_errors,
        log_row_errors=settings.log_row_errors,
        progress_every=settings.progress_every,
        history_limit=settings.history_limit,
        client_code_max_attempts=get_event_ingestion_settings().client_code_max_attempts,
    )
