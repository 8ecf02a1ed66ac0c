"""
Allocation of human-facing client codes (CL-0001, CL-0002, ...).
"""

from __future__ import annotations

import logging
import re
from typing import Callable

from db.repositories.errors import DuplicateClientCodeError
from db.repositories.store import CRMStore
from db.repositories.types import ClientSnapshot, NewClient

logger = logging.getLogger(__name__)

CLIENT_CODE_PREFIX = "CL-"
CLIENT_CODE_WIDTH = 4
_CLIENT_CODE_RE = re.compile(r"^CL-\d{4,}$")


def is_valid_client_code(value: str) -> bool:
    return bool(_CLIENT_CODE_RE.match(value))


def format_client_code(number: int) -> str:
    return f"{CLIENT_CODE_PREFIX}{number:0{CLIENT_CODE_WIDTH}d}"


class ClientCodeAllocator:
    """
    Hands out client codes above the current numeric maximum.

    The maximum is read from the store once and then incremented locally,
    so one batch costs a single query. Codes supplied explicitly are
    recorded with observe() so later allocations stay above them. The store's
    unique constraint remains the arbiter across concurrent writers; callers
    that hit it call reseed() and retry.
    """

    def __init__(self, store: CRMStore) -> None:
        self._store = store
        self._last_number: int | None = None

    def next_code(self) -> str:
        if self._last_number is None:
            self._last_number = self._store.max_client_code_number()
        self._last_number += 1
        return format_client_code(self._last_number)

    def observe(self, client_code: str) -> None:
        if not is_valid_client_code(client_code):
            return
        number = int(client_code[len(CLIENT_CODE_PREFIX):])
        if self._last_number is None:
            self._last_number = self._store.max_client_code_number()
        self._last_number = max(self._last_number, number)

    def reseed(self) -> None:
        logger.info("Client code allocator reseeding after conflict last_number=%s", self._last_number)
        self._last_number = None

    def create_with_next_code(
        self,
        build: Callable[[str], NewClient],
        *,
        max_attempts: int,
    ) -> ClientSnapshot:
        """
        Create a client under the next generated code. A collision with a
        concurrent writer rolls back, reseeds from the store and retries.
        """

        last_error: DuplicateClientCodeError | None = None
        for attempt in range(1, max(1, max_attempts) + 1):
            code = self.next_code()
            try:
                return self._store.create_client(build(code))
            except DuplicateClientCodeError as exc:
                last_error = exc
                self._store.rollback()
                self.reseed()
                logger.info("Client code collision code=%s attempt=%s", code, attempt)
        raise DuplicateClientCodeError(
            f"Could not allocate a unique client code after {max_attempts} attempts."
        ) from last_error
