"""Unit tests for change-set serialization in both directions."""

from __future__ import annotations

from datetime import date, datetime, timezone

import pytest
from sqlalchemy.orm import sessionmaker

from draft_review.errors import (
    AssociationUnsavedError,
    PriorDraftNotAppliedError,
    ReferenceNotFoundError,
)
from draft_review.models import CREATE, UPDATE, Draft, DraftTransaction
from draft_review.registry import DraftableRegistry
from draft_review.serializer import changes_for_record, new_values_for_draft
from helpers.sample_models import (
    ContactAddress,
    ContactAddressType,
    Gender,
    Membership,
    Organization,
    Person,
    Role,
    persist,
    persist_expired,
)


def test_new_record_reports_every_assigned_field(registry: DraftableRegistry) -> None:
    """Transient records report ``[None, value]`` for each assigned field."""
    role = Role(name="Treasurer")

    assert changes_for_record(role, registry) == {"name": [None, "Treasurer"]}


def test_unchanged_persisted_record_has_no_changes(
    sqlite_session_factory: sessionmaker,
    registry: DraftableRegistry,
) -> None:
    """A freshly loaded record serializes to an empty change-set."""
    person = persist(sqlite_session_factory, Person(name="Ada"))

    assert changes_for_record(person, registry) == {}


def test_scalar_changes_are_json_safe(
    sqlite_session_factory: sessionmaker,
    registry: DraftableRegistry,
) -> None:
    """Dates are stored as ISO strings alongside their previous value."""
    person = persist(sqlite_session_factory, Person(name="Ada", birth_date=date(1815, 12, 10)))

    person.name = "Ada Lovelace"
    person.birth_date = date(1815, 12, 11)

    assert changes_for_record(person, registry) == {
        "name": ["Ada", "Ada Lovelace"],
        "birth_date": ["1815-12-10", "1815-12-11"],
    }


def test_values_equal_after_coercion_are_omitted(
    sqlite_session_factory: sessionmaker,
    registry: DraftableRegistry,
) -> None:
    """Assigning an equivalent string to a date column is not a change."""
    person = persist(sqlite_session_factory, Person(name="Ada", birth_date=date(1815, 12, 10)))

    person.birth_date = "1815-12-10"

    assert changes_for_record(person, registry) == {}


def test_association_to_persisted_record(
    sqlite_session_factory: sessionmaker,
    registry: DraftableRegistry,
) -> None:
    """Associations are reported by reference, never by foreign-key column."""
    gender = persist(sqlite_session_factory, Gender(name="Female"))
    person = persist(sqlite_session_factory, Person(name="Ada"))

    person.gender = gender

    changes = changes_for_record(person, registry)
    assert changes == {"gender": [None, {"type": "Gender", "id": gender.id}]}


def test_cleared_association_reports_old_reference(
    sqlite_session_factory: sessionmaker,
    registry: DraftableRegistry,
) -> None:
    """Removing a link records the committed reference as the old value."""
    gender = persist(sqlite_session_factory, Gender(name="Female"))
    person = persist(sqlite_session_factory, Person(name="Ada", gender=gender))

    person.gender = None

    assert changes_for_record(person, registry) == {
        "gender": [{"type": "Gender", "id": gender.id}, None]
    }


def test_association_to_drafted_record_is_a_forward_reference(registry: DraftableRegistry) -> None:
    """An unsaved record with a saved draft is referenced through that draft."""
    role = Role(name="Chair")
    role.pending_draft = Draft(id=5)
    membership = Membership(role=role)

    assert changes_for_record(membership, registry) == {
        "role": [None, {"type": "Draft", "id": 5}]
    }


def test_association_to_unsaved_record_without_draft_fails(registry: DraftableRegistry) -> None:
    """Unsaved associations must be drafted first."""
    membership = Membership(role=Role(name="Chair"))

    with pytest.raises(AssociationUnsavedError):
        changes_for_record(membership, registry)


def test_polymorphic_association_reports_target_type(
    sqlite_session_factory: sessionmaker,
    registry: DraftableRegistry,
) -> None:
    """Polymorphic references carry the registered type name of the target."""
    email = persist(sqlite_session_factory, ContactAddressType(name="email"))
    organization = persist(sqlite_session_factory, Organization(name="Analytical Society"))
    address = ContactAddress(value="hello@example.com")
    address.contact_address_type = email
    address.contactable = organization

    assert changes_for_record(address, registry) == {
        "contact_address_type": [None, {"type": "ContactAddressType", "id": email.id}],
        "contactable": [None, {"type": "Organization", "id": organization.id}],
        "value": [None, "hello@example.com"],
    }


def _draft_row(session, draft_transaction, **values) -> Draft:
    draft = Draft(draft_transaction=draft_transaction, **values)
    session.add(draft)
    session.flush()
    return draft


def test_new_values_resolve_scalars_and_records(
    sqlite_session_factory: sessionmaker,
    registry: DraftableRegistry,
) -> None:
    """Stored strings are coerced and record references are loaded."""
    gender = persist(sqlite_session_factory, Gender(name="Female"))
    with sqlite_session_factory() as session:
        draft_transaction = DraftTransaction()
        draft = _draft_row(
            session,
            draft_transaction,
            target_type="Person",
            action_type=CREATE,
            change_set={
                "name": [None, "Ada"],
                "birth_date": [None, "1815-12-10"],
                "gender": [None, {"type": "Gender", "id": gender.id}],
            },
        )

        values = new_values_for_draft(session, draft, registry)

        assert values["name"] == "Ada"
        assert values["birth_date"] == date(1815, 12, 10)
        assert values["gender"].id == gender.id


def test_new_values_coerce_timestamps(
    sqlite_session_factory: sessionmaker,
    registry: DraftableRegistry,
) -> None:
    """ISO timestamps are parsed back into datetimes."""
    with sqlite_session_factory() as session:
        draft = _draft_row(
            session,
            DraftTransaction(),
            target_type="Membership",
            action_type=UPDATE,
            target_id="1",
            change_set={"start_date": [None, "2024-01-02T03:04:05+00:00"]},
        )

        values = new_values_for_draft(session, draft, registry)

    assert values == {"start_date": datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)}


def test_forward_reference_requires_applied_draft(
    sqlite_session_factory: sessionmaker,
    registry: DraftableRegistry,
) -> None:
    """A draft reference resolves only after the referenced draft created its record."""
    with sqlite_session_factory() as session:
        draft_transaction = DraftTransaction()
        role_draft = _draft_row(
            session,
            draft_transaction,
            target_type="Role",
            action_type=CREATE,
            change_set={"name": [None, "Chair"]},
        )
        membership_draft = _draft_row(
            session,
            draft_transaction,
            target_type="Membership",
            action_type=CREATE,
            change_set={"role": [None, {"type": "Draft", "id": role_draft.id}]},
        )

        with pytest.raises(PriorDraftNotAppliedError):
            new_values_for_draft(session, membership_draft, registry)

        role = Role(name="Chair")
        session.add(role)
        session.flush()
        role_draft.target_id = str(role.id)

        assert new_values_for_draft(session, membership_draft, registry) == {"role": role}


def test_forward_reference_outside_transaction_is_rejected(
    sqlite_session_factory: sessionmaker,
    registry: DraftableRegistry,
) -> None:
    """Draft references never cross transaction boundaries."""
    with sqlite_session_factory() as session:
        foreign = _draft_row(
            session,
            DraftTransaction(),
            target_type="Role",
            action_type=CREATE,
            target_id="1",
            change_set={"name": [None, "Chair"]},
        )
        draft = _draft_row(
            session,
            DraftTransaction(),
            target_type="Membership",
            action_type=CREATE,
            change_set={"role": [None, {"type": "Draft", "id": foreign.id}]},
        )

        with pytest.raises(ReferenceNotFoundError):
            new_values_for_draft(session, draft, registry)


def test_missing_record_reference_is_rejected(
    sqlite_session_factory: sessionmaker,
    registry: DraftableRegistry,
) -> None:
    """References to deleted rows fail instead of silently nulling the link."""
    with sqlite_session_factory() as session:
        draft = _draft_row(
            session,
            DraftTransaction(),
            target_type="Person",
            action_type=CREATE,
            change_set={"gender": [None, {"type": "Gender", "id": 999}]},
        )

        with pytest.raises(ReferenceNotFoundError):
            new_values_for_draft(session, draft, registry)


def test_stored_row_supplies_old_values_of_expired_attributes(
    sqlite_session_factory: sessionmaker,
    registry: DraftableRegistry,
) -> None:
    """Expired attributes have no history, so the stored row is the old value."""
    role = persist_expired(sqlite_session_factory, Role(name="Chair"))
    role.name = "President"

    stored = {"id": 1, "name": "Chair"}

    assert changes_for_record(role, registry, stored) == {"name": ["Chair", "President"]}


def test_naive_stored_timestamp_equals_same_aware_instant(
    sqlite_session_factory: sessionmaker,
    registry: DraftableRegistry,
) -> None:
    """Timezone-aware columns compare naive database values as UTC."""
    person, organization = persist(
        sqlite_session_factory,
        Person(name="Ada"),
        Organization(name="Analytical Society"),
    )
    started = datetime(1833, 6, 5, 12, 0, tzinfo=timezone.utc)
    persist(
        sqlite_session_factory,
        Membership(person_id=person.id, organization_id=organization.id, start_date=started),
    )
    with sqlite_session_factory() as session:
        membership = session.query(Membership).one()

    membership.start_date = started
    assert changes_for_record(membership, registry) == {}

    membership.start_date = datetime(1833, 6, 6, 12, 0, tzinfo=timezone.utc)
    assert changes_for_record(membership, registry) == {
        "start_date": ["1833-06-05T12:00:00+00:00", "1833-06-06T12:00:00+00:00"]
    }
