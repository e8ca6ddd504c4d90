"""Unit tests for applying single drafts."""

from __future__ import annotations

import pytest
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from draft_review.applier import apply_draft
from draft_review.errors import NoTargetError
from draft_review.models import CREATE, DELETE, UPDATE, Draft, DraftTransaction
from draft_review.registry import DraftableRegistry
from helpers.sample_models import ContactAddress, ContactAddressType, Person, Role, persist


def _draft(session, **values) -> Draft:
    draft = Draft(draft_transaction=DraftTransaction(), **values)
    session.add(draft)
    session.flush()
    return draft


def test_create_inserts_record_and_links_draft(
    sqlite_session_factory: sessionmaker,
    registry: DraftableRegistry,
) -> None:
    """A create draft inserts a new row and records its id on the draft."""
    with sqlite_session_factory() as session:
        draft = _draft(session, target_type="Role", action_type=CREATE, change_set={"name": [None, "Chair"]})

        role = apply_draft(session, draft, registry)

        assert isinstance(role, Role)
        assert role.name == "Chair"
        assert draft.target_id == str(role.id)


def test_find_or_create_reuses_matching_record(
    sqlite_session_factory: sessionmaker,
    registry: DraftableRegistry,
) -> None:
    """Idempotent creates link to an existing row with the same values."""
    existing = persist(sqlite_session_factory, Role(name="Chair"))
    with sqlite_session_factory() as session:
        draft = _draft(
            session,
            target_type="Role",
            action_type=CREATE,
            change_set={"name": [None, "Chair"]},
            options={"create_method": "find_or_create"},
        )

        role = apply_draft(session, draft, registry)

        assert role.id == existing.id
        assert draft.target_id == str(existing.id)
        assert session.query(Role).count() == 1


def test_find_or_create_matches_polymorphic_references(
    sqlite_session_factory: sessionmaker,
    registry: DraftableRegistry,
) -> None:
    """Matching compares both halves of a polymorphic reference."""
    email = persist(sqlite_session_factory, ContactAddressType(name="email"))
    person = persist(sqlite_session_factory, Person(name="Ada"))
    persist(
        sqlite_session_factory,
        ContactAddress(
            contact_address_type_id=email.id,
            contactable_type="Organization",
            contactable_id=person.id,
            value="ada@example.com",
        ),
    )
    with sqlite_session_factory() as session:
        draft = _draft(
            session,
            target_type="ContactAddress",
            action_type=CREATE,
            change_set={
                "contact_address_type": [None, {"type": "ContactAddressType", "id": email.id}],
                "contactable": [None, {"type": "Person", "id": person.id}],
                "value": [None, "ada@example.com"],
            },
            options={"create_method": "find_or_create"},
        )

        address = apply_draft(session, draft, registry)

        assert address.contactable_type == "Person"
        assert session.query(ContactAddress).count() == 2


def test_update_assigns_new_values(
    sqlite_session_factory: sessionmaker,
    registry: DraftableRegistry,
) -> None:
    """Update drafts write their new values onto the target."""
    person = persist(sqlite_session_factory, Person(name="Ada"))
    with sqlite_session_factory() as session:
        draft = _draft(
            session,
            target_type="Person",
            target_id=str(person.id),
            action_type=UPDATE,
            change_set={"name": ["Ada", "Ada Lovelace"]},
        )

        updated = apply_draft(session, draft, registry)

        assert updated.name == "Ada Lovelace"


@pytest.mark.parametrize("action", [UPDATE, DELETE])
def test_missing_target_fails(
    sqlite_session_factory: sessionmaker,
    registry: DraftableRegistry,
    action: str,
) -> None:
    """Updates and deletes of vanished rows fail by default."""
    with sqlite_session_factory() as session:
        draft = _draft(session, target_type="Person", target_id="404", action_type=action, change_set={})

        with pytest.raises(NoTargetError):
            apply_draft(session, draft, registry)


@pytest.mark.parametrize(
    ("action", "options"),
    [
        (UPDATE, {"update_method": "update_if_exists"}),
        (DELETE, {"delete_method": "delete_if_exists"}),
    ],
)
def test_if_exists_strategies_skip_missing_target(
    sqlite_session_factory: sessionmaker,
    registry: DraftableRegistry,
    action: str,
    options: dict[str, str],
) -> None:
    """The ``*_if_exists`` strategies turn a missing target into a no-op."""
    with sqlite_session_factory() as session:
        draft = _draft(
            session,
            target_type="Person",
            target_id="404",
            action_type=action,
            change_set={"name": ["Ada", "Ada Lovelace"]} if action == UPDATE else {},
            options=options,
        )

        assert apply_draft(session, draft, registry) is None


def test_delete_removes_target(
    sqlite_session_factory: sessionmaker,
    registry: DraftableRegistry,
) -> None:
    """Delete drafts remove the concrete row."""
    role = persist(sqlite_session_factory, Role(name="Chair"))
    with sqlite_session_factory() as session:
        draft = _draft(session, target_type="Role", target_id=str(role.id), action_type=DELETE, change_set={})

        apply_draft(session, draft, registry)

        assert session.get(Role, role.id) is None


def test_database_errors_propagate_unwrapped(
    sqlite_session_factory: sessionmaker,
    registry: DraftableRegistry,
) -> None:
    """Constraint violations reach the caller as the driver raised them."""
    persist(sqlite_session_factory, Role(name="Chair"))
    with sqlite_session_factory() as session:
        draft = _draft(session, target_type="Role", action_type=CREATE, change_set={"name": [None, "Chair"]})

        with pytest.raises(IntegrityError):
            apply_draft(session, draft, registry)
