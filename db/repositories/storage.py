"""
Local staging of parsed import tables between preview and execute.
"""

from __future__ import annotations

import json
import uuid
from pathlib import Path
from typing import Any, Protocol

from db.repositories.errors import FileStorageError, StagedImportNotFoundError


class ImportStagingBackend(Protocol):
    """
    Abstract staging backend used by the import pipeline.
    """

    def save(self, *, job_id: uuid.UUID, payload: dict[str, Any]) -> None:
        ...

    def load(self, *, job_id: uuid.UUID) -> dict[str, Any]:
        ...

    def delete(self, *, job_id: uuid.UUID) -> None:
        ...


class LocalImportStaging:
    """
    Stores one JSON document per import job under root_dir.
    """

    def __init__(self, root_dir: str | Path = "data/imports") -> None:
        self._root_dir = Path(root_dir)

    def _path_for(self, job_id: uuid.UUID) -> Path:
        return self._root_dir / f"{uuid.UUID(str(job_id)).hex}.json"

    def save(self, *, job_id: uuid.UUID, payload: dict[str, Any]) -> None:
        target = self._path_for(job_id)
        tmp_path = target.with_suffix(".json.tmp")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with tmp_path.open("w", encoding="utf-8") as handle:
                json.dump(payload, handle, ensure_ascii=False)
            tmp_path.replace(target)
        except (OSError, TypeError, ValueError) as exc:
            raise FileStorageError("Failed to stage import data.") from exc
        finally:
            if tmp_path.exists():
                try:
                    tmp_path.unlink()
                except OSError:
                    pass

    def load(self, *, job_id: uuid.UUID) -> dict[str, Any]:
        target = self._path_for(job_id)
        if not target.exists():
            raise StagedImportNotFoundError(f"No staged data for import job {job_id}.")
        try:
            with target.open("r", encoding="utf-8") as handle:
                payload = json.load(handle)
        except (OSError, ValueError) as exc:
            raise FileStorageError("Failed to read staged import data.") from exc
        if not isinstance(payload, dict):
            raise FileStorageError("Staged import data is malformed.")
        return payload

    def delete(self, *, job_id: uuid.UUID) -> None:
        target = self._path_for(job_id)
        if not target.exists():
            return
        try:
            target.unlink()
        except OSError as exc:
            raise FileStorageError("Failed to delete staged import data.") from exc


class InMemoryImportStaging:
    def __init__(self) -> None:
        self._payloads: dict[uuid.UUID, dict[str, Any]] = {}

    def save(self, *, job_id: uuid.UUID, payload: dict[str, Any]) -> None:
        self._payloads[job_id] = json.loads(json.dumps(payload))

    def load(self, *, job_id: uuid.UUID) -> dict[str, Any]:
        try:
            return json.loads(json.dumps(self._payloads[job_id]))
        except KeyError as exc:
            raise StagedImportNotFoundError(f"No staged data for import job {job_id}.") from exc

    def delete(self, *, job_id: uuid.UUID) -> None:
        self._payloads.pop(job_id, None)

    def __contains__(self, job_id: object) -> bool:
        return job_id in self._payloads
