"""
tests/test_identity.py

Identifier normalization, identity resolution, the conflict policy and
client code allocation. Pure Python against InMemoryCRMStore.
"""

from __future__ import annotations

import unittest
import uuid

import pytest

from app.identity.client_codes import ClientCodeAllocator, format_client_code, is_valid_client_code
from app.identity.conflict_policy import (
    CreateNew,
    DuplicateStrategy,
    IncomingClient,
    NoOp,
    UpdateFields,
    decide,
)
from app.identity.normalizer import format_phone, normalize_email, normalize_phone
from app.identity.resolver import IdentityCandidates, IdentityResolver
from db.models.client import ClientStatus, PhoneType, PipelineStage
from db.repositories.errors import DuplicateClientCodeError
from db.repositories.memory_store import InMemoryCRMStore
from db.repositories.types import ClientSnapshot, ContactPoint, NewClient


# ---------------------------------------------------------------------------
# Normalizer
# ---------------------------------------------------------------------------


class TestNormalizePhone(unittest.TestCase):
    def test_common_formats_share_one_key(self) -> None:
        keys = {
            normalize_phone("(555) 123-4567"),
            normalize_phone("555-123-4567"),
            normalize_phone("+1 555 123 4567"),
            normalize_phone("5551234567"),
        }
        self.assertEqual(keys, {"5551234567"})

    def test_short_numbers_keep_all_digits(self) -> None:
        self.assertEqual(normalize_phone("123-45"), "12345")

    def test_total_on_odd_input(self) -> None:
        self.assertEqual(normalize_phone(None), "")
        self.assertEqual(normalize_phone(""), "")
        self.assertEqual(normalize_phone("no digits"), "")
        self.assertEqual(normalize_phone(["5551234567"]), "")

    def test_numeric_cells(self) -> None:
        self.assertEqual(normalize_phone(5551234567), "5551234567")
        self.assertEqual(normalize_phone(5551234567.0), "5551234567")


class TestNormalizeEmail(unittest.TestCase):
    def test_trims_and_lowercases(self) -> None:
        self.assertEqual(normalize_email("  Jane.Doe@Example.COM "), "jane.doe@example.com")

    def test_total_on_odd_input(self) -> None:
        self.assertEqual(normalize_email(None), "")
        self.assertEqual(normalize_email("   "), "")


class TestFormatPhone(unittest.TestCase):
    def test_ten_digits(self) -> None:
        self.assertEqual(format_phone("555.123.4567"), "(555) 123-4567")

    def test_eleven_digits(self) -> None:
        self.assertEqual(format_phone("15551234567"), "+1 (555) 123-4567")

    def test_other_lengths_unchanged(self) -> None:
        self.assertEqual(format_phone("ext 12"), "ext 12")


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------


class TestIdentityResolver:
    def test_matches_by_email_case_insensitively(self, store, make_client) -> None:
        client = make_client("Jane Doe", email="jane@example.com")

        match = IdentityResolver(store).resolve(IdentityCandidates(email="JANE@example.com "))

        assert match is not None
        assert match.id == client.id

    def test_matches_by_phone_in_any_format(self, store, make_client) -> None:
        client = make_client("John Roe", phone="(555) 123-4567")

        for raw in ("555-123-4567", "+1 555 123 4567", "5551234567"):
            match = IdentityResolver(store).resolve(IdentityCandidates(phone=raw))
            assert match is not None and match.id == client.id

    def test_matches_secondary_identifiers(self, store, make_client) -> None:
        client = make_client(
            "Alex Poe",
            email="alex@example.com",
            secondary_emails=("alex.work@example.com",),
        )

        match = IdentityResolver(store).resolve(IdentityCandidates(email="alex.work@example.com"))

        assert match is not None and match.id == client.id

    def test_email_wins_over_phone(self, store, make_client) -> None:
        by_email = make_client("Email Owner", email="owner@example.com")
        make_client("Phone Owner", phone="555-000-1111")

        match = IdentityResolver(store).resolve(
            IdentityCandidates(email="owner@example.com", phone="555-000-1111")
        )

        assert match is not None and match.id == by_email.id

    def test_falls_back_to_phone_when_email_unknown(self, store, make_client) -> None:
        by_phone = make_client("Phone Owner", phone="555-000-1111")

        match = IdentityResolver(store).resolve(
            IdentityCandidates(email="nobody@example.com", phone="(555) 000-1111")
        )

        assert match is not None and match.id == by_phone.id

    def test_name_is_never_a_match_key(self, store, make_client) -> None:
        make_client("Same Name", email="a@example.com")

        assert IdentityResolver(store).resolve(IdentityCandidates(name="Same Name")) is None

    def test_empty_candidates_match_nothing(self, store, make_client) -> None:
        make_client("Blank", email="blank@example.com", phone="555-222-3333")

        assert IdentityResolver(store).resolve(IdentityCandidates(email="  ", phone="")) is None


# ---------------------------------------------------------------------------
# Conflict policy
# ---------------------------------------------------------------------------


def _point(key: str, *, primary: bool = True) -> ContactPoint:
    return ContactPoint(value=key, key=key, kind="HOME", is_primary=primary)


def _existing(**kwargs) -> ClientSnapshot:
    defaults = {
        "id": uuid.uuid4(),
        "name": "Existing",
        "status": ClientStatus.ACTIVE,
        "pipeline_stage": PipelineStage.CLIENT_ONBOARDED,
    }
    defaults.update(kwargs)
    return ClientSnapshot(**defaults)


class TestConflictPolicy:
    incoming = IncomingClient(
        name="Incoming",
        status=ClientStatus.PROSPECT,
        emails=(_point("new@example.com"),),
        phones=(_point("5551234567"),),
    )

    def test_no_match_always_creates(self) -> None:
        for strategy in DuplicateStrategy.ALL:
            assert decide(None, strategy, self.incoming) == CreateNew(self.incoming)

    def test_skip_is_noop(self) -> None:
        existing = _existing()
        assert decide(existing, DuplicateStrategy.SKIP, self.incoming) == NoOp(existing.id)

    def test_create_new_creates_despite_match(self) -> None:
        decision = decide(_existing(), DuplicateStrategy.CREATE_NEW, self.incoming)
        assert isinstance(decision, CreateNew)

    def test_update_adds_unseen_identifiers_as_secondary(self) -> None:
        existing = _existing(
            emails=(_point("old@example.com"),),
            phones=(_point("5551234567"),),
        )

        decision = decide(existing, DuplicateStrategy.UPDATE, self.incoming)

        assert isinstance(decision, UpdateFields)
        assert decision.client_id == existing.id
        assert decision.name == "Incoming"
        assert decision.status == ClientStatus.PROSPECT
        assert [point.key for point in decision.add_emails] == ["new@example.com"]
        assert all(not point.is_primary for point in decision.add_emails)
        assert decision.add_phones == ()

    def test_update_promotes_first_identifier_when_none_on_file(self) -> None:
        existing = _existing(phones=(_point("5551234567"),))
        incoming = IncomingClient(
            name="Incoming",
            emails=(_point("first@example.com"), _point("second@example.com")),
            phones=(_point("5559876543"),),
        )

        decision = decide(existing, DuplicateStrategy.UPDATE, incoming)

        assert isinstance(decision, UpdateFields)
        assert [(point.key, point.is_primary) for point in decision.add_emails] == [
            ("first@example.com", True),
            ("second@example.com", False),
        ]
        assert [point.is_primary for point in decision.add_phones] == [False]

    def test_update_leaves_status_alone_when_absent(self) -> None:
        incoming = IncomingClient(name="Incoming")
        decision = decide(_existing(), DuplicateStrategy.UPDATE, incoming)
        assert isinstance(decision, UpdateFields)
        assert decision.status is None
        assert decision.to_changes().status is None

    def test_unknown_strategy_raises(self) -> None:
        with pytest.raises(ValueError):
            decide(None, "merge", self.incoming)


# ---------------------------------------------------------------------------
# Client codes
# ---------------------------------------------------------------------------


class TestClientCodes:
    @pytest.mark.parametrize("code", ["CL-0001", "CL-1234", "CL-123456"])
    def test_valid_codes(self, code: str) -> None:
        assert is_valid_client_code(code)

    @pytest.mark.parametrize("code", ["CLX-1", "CL-1", "CL-123", "cl-0001", "CL-00A1", ""])
    def test_invalid_codes(self, code: str) -> None:
        assert not is_valid_client_code(code)

    def test_format_pads_to_four_digits(self) -> None:
        assert format_client_code(7) == "CL-0007"
        assert format_client_code(12345) == "CL-12345"

    def test_allocates_above_max_across_gaps(self, store, make_client) -> None:
        make_client("One", client_code="CL-0001")
        make_client("Three", client_code="CL-0003")

        allocator = ClientCodeAllocator(store)

        assert allocator.next_code() == "CL-0004"
        assert allocator.next_code() == "CL-0005"

    def test_observe_keeps_allocation_above_explicit_codes(self, store) -> None:
        allocator = ClientCodeAllocator(store)
        allocator.observe("CL-0042")
        assert allocator.next_code() == "CL-0043"

    def test_create_retries_after_collision(self, store: InMemoryCRMStore) -> None:
        allocator = ClientCodeAllocator(store)
        assert allocator.next_code() == "CL-0001"
        # A concurrent writer takes CL-0002 after the allocator was seeded.
        store.create_client(
            NewClient(name="Other", status="Lead", pipeline_stage="New Lead", client_code="CL-0002")
        )
        store.commit()

        created = allocator.create_with_next_code(
            lambda code: NewClient(
                name="Mine",
                status=ClientStatus.LEAD,
                pipeline_stage=PipelineStage.NEW_LEAD,
                client_code=code,
                phones=(ContactPoint(value="1", key="1", kind=PhoneType.OTHER, is_primary=True),),
            ),
            max_attempts=3,
        )

        assert created.client_code == "CL-0003"

    def test_create_gives_up_after_max_attempts(self, store: InMemoryCRMStore) -> None:
        store.fail_next("create_client", DuplicateClientCodeError("taken"), times=2)
        allocator = ClientCodeAllocator(store)

        with pytest.raises(DuplicateClientCodeError):
            allocator.create_with_next_code(
                lambda code: NewClient(name="X", status="Lead", pipeline_stage="New Lead", client_code=code),
                max_attempts=2,
            )
