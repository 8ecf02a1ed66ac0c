"""
Identity resolution: decide whether an incoming record is an existing client.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from app.identity.normalizer import normalize_email, normalize_phone
from db.repositories.store import CRMStore
from db.repositories.types import ClientSnapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IdentityCandidates:
    """
    Identifying fields of an incoming record. name is carried for logging
    only and is never used as a match key.
    """

    name: str | None = None
    email: str | None = None
    phone: str | None = None


class IdentityResolver:
    """
    Email first, then phone, against primary and secondary identifiers.
    """

    def __init__(self, store: CRMStore) -> None:
        self._store = store

    def resolve(self, candidates: IdentityCandidates) -> ClientSnapshot | None:
        email_key = normalize_email(candidates.email)
        phone_key = normalize_phone(candidates.phone)

        email_match = self._store.find_client_by_email(email_key) if email_key else None
        if email_match is not None:
            if logger.isEnabledFor(logging.DEBUG) and phone_key:
                phone_match = self._store.find_client_by_phone(phone_key)
                if phone_match is not None and phone_match.id != email_match.id:
                    logger.debug(
                        "Identity candidates disagree; email match wins email_client=%s phone_client=%s",
                        email_match.id,
                        phone_match.id,
                    )
            return email_match

        if phone_key:
            return self._store.find_client_by_phone(phone_key)
        return None
