"""
Identity exports: normalization, resolution, conflict policy, client codes.
"""

from app.identity.client_codes import ClientCodeAllocator, is_valid_client_code
from app.identity.conflict_policy import (
    CreateNew,
    Decision,
    DuplicateStrategy,
    IncomingClient,
    NoOp,
    UpdateFields,
    decide,
)
from app.identity.normalizer import format_phone, normalize_email, normalize_phone
from app.identity.resolver import IdentityCandidates, IdentityResolver

__all__ = [
    "ClientCodeAllocator",
    "is_valid_client_code",
    "CreateNew",
    "Decision",
    "DuplicateStrategy",
    "IncomingClient",
    "NoOp",
    "UpdateFields",
    "decide",
    "format_phone",
    "normalize_email",
    "normalize_phone",
    "IdentityCandidates",
    "IdentityResolver",
]
