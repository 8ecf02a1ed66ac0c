"""
app/config.py

Application-level configuration helpers.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from db.config import get_bool_env, get_int_env, get_str_env


@dataclass(frozen=True)
class ImportSettings:
    """
    Runtime settings for spreadsheet client imports.
    """

    max_upload_bytes: int = 10 * 1024 * 1024
    staging_dir: str = "data/imports"
    preview_rows: int = 5
    max_row_errors: int = 500
    log_row_errors: bool = True
    progress_every: int = 100
    history_limit: int = 20


@dataclass(frozen=True)
class EventIngestionSettings:
    """
    Runtime settings for voice-AI and workflow-automation event ingestion.
    """

    follow_up_due_days: int = 1
    task_title_max_chars: int = 100
    client_code_max_attempts: int = 3
    notify_advisor: bool = True


@dataclass(frozen=True)
class LoggingSettings:
    level: str = "INFO"


@lru_cache(maxsize=1)
def get_import_settings() -> ImportSettings:
    """
    Return cached import settings from environment variables.
    """

    return ImportSettings(
        max_upload_bytes=max(1, get_int_env("IMPORT_MAX_UPLOAD_BYTES", 10 * 1024 * 1024)),
        staging_dir=get_str_env("IMPORT_STAGING_DIR", "data/imports"),
        preview_rows=max(1, get_int_env("IMPORT_PREVIEW_ROWS", 5)),
        max_row_errors=max(1, get_int_env("IMPORT_MAX_ROW_ERRORS", 500)),
        log_row_errors=get_bool_env("IMPORT_LOG_ROW_ERRORS", True),
        progress_every=max(1, get_int_env("IMPORT_PROGRESS_EVERY", 100)),
        history_limit=max(1, get_int_env("IMPORT_HISTORY_LIMIT", 20)),
    )


@lru_cache(maxsize=1)
def get_event_ingestion_settings() -> EventIngestionSettings:
    """
    Return cached event ingestion settings from environment variables.
    """

    return EventIngestionSettings(
        follow_up_due_days=max(0, get_int_env("EVENT_FOLLOW_UP_DUE_DAYS", 1)),
        task_title_max_chars=max(1, get_int_env("EVENT_TASK_TITLE_MAX_CHARS", 100)),
        client_code_max_attempts=max(1, get_int_env("CLIENT_CODE_MAX_ATTEMPTS", 3)),
        notify_advisor=get_bool_env("EVENT_NOTIFY_ADVISOR", True),
    )


@lru_cache(maxsize=1)
def get_logging_settings() -> LoggingSettings:
    return LoggingSettings(level=get_str_env("LOG_LEVEL", "INFO").upper())
