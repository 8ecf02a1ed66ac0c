"""
app/api/dependencies.py

Shared FastAPI dependencies for request validation and storage access.
"""

from __future__ import annotations

from typing import Generator

from fastapi import Depends, File, HTTPException, UploadFile, status
from sqlalchemy.orm import Session

from app.parsers.tabular_parser import CSV_SUFFIXES, EXCEL_SUFFIXES, file_suffix
from db.repositories.crm_store import SQLAlchemyCRMStore
from db.repositories.store import CRMStore
from db.session import get_db


def get_crm_store(db: Session = Depends(get_db)) -> Generator[CRMStore, None, None]:
    """
    Yield a request-scoped CRM store bound to the request's session.
    """

    yield SQLAlchemyCRMStore(db)


def get_import_upload(file: UploadFile = File(...)) -> UploadFile:
    """
    Validate that the uploaded file is a CSV or XLSX spreadsheet by extension.
    """

    suffix = file_suffix(file.filename or "")
    if suffix not in CSV_SUFFIXES and suffix not in EXCEL_SUFFIXES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Only .csv and .xlsx files are allowed.",
        )

    return file
