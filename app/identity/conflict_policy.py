"""
Conflict policy: what to do when an incoming record may match an existing
client. Pure and deterministic; the strategy is always passed in.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, replace
from typing import Union

from db.repositories.types import ClientChanges, ClientSnapshot, ContactPoint


class DuplicateStrategy:
    SKIP = "skip"
    UPDATE = "update"
    CREATE_NEW = "create_new"

    ALL: tuple[str, ...] = (SKIP, UPDATE, CREATE_NEW)


@dataclass(frozen=True)
class IncomingClient:
    """
    Normalized incoming client data. emails/phones carry canonical keys and
    the primary flag they would get on a fresh record.
    """

    name: str
    status: str | None = None
    pipeline_stage: str | None = None
    client_code: str | None = None
    tags: tuple[str, ...] = ()
    emails: tuple[ContactPoint, ...] = ()
    phones: tuple[ContactPoint, ...] = ()


@dataclass(frozen=True)
class CreateNew:
    incoming: IncomingClient


@dataclass(frozen=True)
class UpdateFields:
    client_id: uuid.UUID
    name: str | None = None
    status: str | None = None
    add_emails: tuple[ContactPoint, ...] = ()
    add_phones: tuple[ContactPoint, ...] = ()

    def to_changes(self) -> ClientChanges:
        return ClientChanges(
            name=self.name,
            status=self.status,
            add_emails=self.add_emails,
            add_phones=self.add_phones,
        )


@dataclass(frozen=True)
class NoOp:
    client_id: uuid.UUID


Decision = Union[CreateNew, UpdateFields, NoOp]


def _new_identifiers(
    incoming: tuple[ContactPoint, ...],
    on_file: tuple[ContactPoint, ...],
) -> tuple[ContactPoint, ...]:
    known = {point.key for point in on_file}
    needs_primary = not any(point.is_primary for point in on_file)
    added: list[ContactPoint] = []
    for point in incoming:
        if not point.key or point.key in known:
            continue
        known.add(point.key)
        added.append(replace(point, is_primary=needs_primary and not added))
    return tuple(added)


def decide(
    existing: ClientSnapshot | None,
    strategy: str,
    incoming: IncomingClient,
) -> Decision:
    """
    Map (existing match, strategy, incoming record) to one decision.

    Identifiers added on update are secondary, so a primary phone or email
    already on file is never replaced. When the client has no primary of that
    kind yet, the first added identifier becomes primary.
    """

    if strategy not in DuplicateStrategy.ALL:
        raise ValueError(f"Unknown duplicate strategy: {strategy!r}")

    if existing is None:
        return CreateNew(incoming)
    if strategy == DuplicateStrategy.SKIP:
        return NoOp(existing.id)
    if strategy == DuplicateStrategy.CREATE_NEW:
        return CreateNew(incoming)

    return UpdateFields(
        client_id=existing.id,
        name=incoming.name or None,
        status=incoming.status or None,
        add_emails=_new_identifiers(incoming.emails, existing.emails),
        add_phones=_new_identifiers(incoming.phones, existing.phones),
    )
