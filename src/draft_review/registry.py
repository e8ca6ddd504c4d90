"""Explicit registry of entity types that can be drafted.

Each registered ORM model gets a ``DraftableType`` accessor table built once,
at registration time, from its SQLAlchemy mapper: scalar fields, single-valued
associations (foreign-key or polymorphic ``(type, id)`` pairs) and
multi-valued associations. Stored type names are resolved through this table
instead of through runtime class lookup.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from sqlalchemy import DateTime, inspect, select
from sqlalchemy.orm import Mapper, RelationshipDirection, Session, configure_mappers

from draft_review.errors import InvalidArgumentError, UnregisteredTypeError
from draft_review.models import PolymorphicReference


@dataclass(frozen=True)
class ScalarField:
    """A plain column attribute."""

    name: str
    python_type: type | None
    nullable: bool = True
    timezone: bool = False


@dataclass(frozen=True)
class SingleAssociation:
    """A reference from this type to exactly one other record (or none)."""

    name: str
    id_attr: str
    target_model: type | None = None
    type_attr: str | None = None

    @property
    def is_polymorphic(self) -> bool:
        return self.type_attr is not None


@dataclass(frozen=True)
class ManyAssociation:
    """The inverse side of another type's single-valued association."""

    name: str
    child_model: type
    inverse: str
    uselist: bool = True


@dataclass
class DraftableType:
    """Accessor table for one registered entity type."""

    name: str
    model: type
    pk_attr: str
    pk_type: type | None
    scalars: dict[str, ScalarField] = field(default_factory=dict)
    singles: dict[str, SingleAssociation] = field(default_factory=dict)
    manys: dict[str, ManyAssociation] = field(default_factory=dict)

    @property
    def association_columns(self) -> frozenset[str]:
        """Column attributes that only change through an association."""
        names: set[str] = set()
        for assoc in self.singles.values():
            names.add(assoc.id_attr)
            if assoc.type_attr is not None:
                names.add(assoc.type_attr)
        return frozenset(names)

    def is_association(self, name: str) -> bool:
        return name in self.singles or name in self.manys

    def identity(self, record: object) -> Any:
        """Return the record's primary key value (``None`` when unassigned).

        Persisted records answer from their identity key, which stays readable
        when the instance is expired and detached.
        """
        identity = inspect(record).identity
        if identity is not None:
            return identity[0]
        return getattr(record, self.pk_attr)

    def coerce_id(self, raw: Any) -> Any:
        """Convert a stored identifier back into the primary key's Python type."""
        if raw is None or self.pk_type is None or isinstance(raw, self.pk_type):
            return raw
        try:
            return self.pk_type(raw)
        except (TypeError, ValueError) as exc:
            raise InvalidArgumentError(
                f"identifier {raw!r} is not valid for {self.name}"
            ) from exc

    def construct(self, values: Mapping[str, Any]) -> object:
        """Build a new, transient instance from field values."""
        record = self.model()
        for name, value in values.items():
            setattr(record, name, value)
        return record

    def find(self, session: Session, raw_id: Any) -> object | None:
        """Load one instance by primary key."""
        return session.get(self.model, self.coerce_id(raw_id))

    def stored_values(
        self,
        session: Session,
        raw_id: Any,
        *,
        for_update: bool = False,
    ) -> dict[str, Any] | None:
        """Read the row's column values straight from the database.

        The identity map is bypassed, so in-memory changes to an attached
        instance never leak into the result. Returns ``None`` when the row
        does not exist.
        """
        column_attrs = list(inspect(self.model).column_attrs)
        stmt = select(*(attr.columns[0] for attr in column_attrs)).where(
            getattr(self.model, self.pk_attr) == self.coerce_id(raw_id)
        )
        if for_update:
            stmt = stmt.with_for_update()
        row = session.execute(stmt).one_or_none()
        if row is None:
            return None
        return {attr.key: value for attr, value in zip(column_attrs, row)}

    def assign(self, record: object, values: Mapping[str, Any]) -> None:
        """Write field values onto an instance."""
        for name, value in values.items():
            setattr(record, name, value)


class DraftableRegistry:
    """Maps type names to ``DraftableType`` accessor tables."""

    def __init__(self) -> None:
        self._by_name: dict[str, DraftableType] = {}
        self._by_model: dict[type, DraftableType] = {}

    def register(
        self,
        model: type,
        *,
        name: str | None = None,
        polymorphic_collections: Mapping[str, tuple[type, str]] | None = None,
    ) -> DraftableType:
        """Register an ORM model and build its accessor table.

        ``polymorphic_collections`` declares multi-valued associations backed
        by another model's ``PolymorphicReference``, as
        ``{name: (child_model, child_reference_name)}``.
        """
        type_name = name or model.__name__
        if type_name in self._by_name and self._by_name[type_name].model is not model:
            raise InvalidArgumentError(f"type name {type_name!r} is already registered")

        configure_mappers()
        mapper: Mapper = inspect(model)
        pk_columns = mapper.primary_key
        if len(pk_columns) != 1:
            raise InvalidArgumentError(f"{type_name} must have a single-column primary key")
        pk_attr = mapper.get_property_by_column(pk_columns[0]).key

        draftable = DraftableType(
            name=type_name,
            model=model,
            pk_attr=pk_attr,
            pk_type=_python_type(pk_columns[0]),
        )

        for rel in mapper.relationships:
            if rel.direction is RelationshipDirection.MANYTOONE:
                local = list(rel.local_columns)
                if len(local) != 1:
                    raise InvalidArgumentError(
                        f"{type_name}.{rel.key} must use a single foreign key column"
                    )
                draftable.singles[rel.key] = SingleAssociation(
                    name=rel.key,
                    id_attr=mapper.get_property_by_column(local[0]).key,
                    target_model=rel.mapper.class_,
                )
            elif rel.direction is RelationshipDirection.ONETOMANY:
                draftable.manys[rel.key] = ManyAssociation(
                    name=rel.key,
                    child_model=rel.mapper.class_,
                    inverse=_inverse_name(rel),
                    uselist=bool(rel.uselist),
                )

        for attr_name, descriptor in _polymorphic_references(model):
            descriptor.bind(
                resolve_model=self.model_for,
                name_for=self.name_for,
                identity_for=self.identity_for,
            )
            draftable.singles[attr_name] = SingleAssociation(
                name=attr_name,
                id_attr=descriptor.id_attr,
                type_attr=descriptor.type_attr,
            )

        for collection, (child_model, reference_name) in (polymorphic_collections or {}).items():
            draftable.manys[collection] = ManyAssociation(
                name=collection,
                child_model=child_model,
                inverse=reference_name,
            )

        skipped = draftable.association_columns | {pk_attr}
        for column_attr in mapper.column_attrs:
            if column_attr.key in skipped:
                continue
            column = column_attr.columns[0]
            draftable.scalars[column_attr.key] = ScalarField(
                name=column_attr.key,
                python_type=_python_type(column),
                nullable=bool(column.nullable),
                timezone=isinstance(column.type, DateTime) and bool(column.type.timezone),
            )

        self._by_name[type_name] = draftable
        self._by_model[model] = draftable
        return draftable

    def register_all(self, models: Iterable[type]) -> None:
        for model in models:
            self.register(model)

    def get(self, type_name: str) -> DraftableType:
        try:
            return self._by_name[type_name]
        except KeyError:
            raise UnregisteredTypeError(f"{type_name!r} is not a registered draftable type") from None

    def for_model(self, model_or_instance: object) -> DraftableType:
        model = model_or_instance if isinstance(model_or_instance, type) else type(model_or_instance)
        try:
            return self._by_model[model]
        except KeyError:
            raise UnregisteredTypeError(
                f"{model.__name__} is not a registered draftable type"
            ) from None

    def is_registered(self, model_or_instance: object) -> bool:
        model = model_or_instance if isinstance(model_or_instance, type) else type(model_or_instance)
        return model in self._by_model

    def model_for(self, type_name: str) -> type:
        return self.get(type_name).model

    def name_for(self, instance: object) -> str:
        return self.for_model(instance).name

    def identity_for(self, instance: object) -> Any:
        return self.for_model(instance).identity(instance)

    def inverse_of(self, parent: DraftableType, association: str) -> tuple[DraftableType, SingleAssociation]:
        """Return the child type and its single association backing a collection."""
        many = parent.manys.get(association)
        if many is None:
            raise InvalidArgumentError(
                f"{association!r} is not a multi-valued association of {parent.name}"
            )
        child = self.for_model(many.child_model)
        inverse = child.singles.get(many.inverse)
        if inverse is None:
            raise InvalidArgumentError(
                f"{child.name}.{many.inverse} is not a single-valued association"
            )
        return child, inverse


def _python_type(column: Any) -> type | None:
    """Return a column's Python type, or ``None`` when the type does not say."""
    try:
        return column.type.python_type
    except NotImplementedError:
        return None


def _inverse_name(rel: Any) -> str:
    """Find the many-to-one relationship on the child that mirrors ``rel``."""
    if rel.back_populates:
        return rel.back_populates
    remote = set(rel.remote_side)
    for candidate in rel.mapper.relationships:
        if (
            candidate.direction is RelationshipDirection.MANYTOONE
            and candidate.mapper.class_ is rel.parent.class_
            and set(candidate.local_columns) == remote
        ):
            return candidate.key
    raise InvalidArgumentError(
        f"cannot determine the inverse association of {rel.parent.class_.__name__}.{rel.key}"
    )


def _polymorphic_references(model: type) -> list[tuple[str, PolymorphicReference]]:
    found: dict[str, PolymorphicReference] = {}
    for klass in reversed(model.__mro__):
        for attr_name, value in vars(klass).items():
            if isinstance(value, PolymorphicReference):
                found[attr_name] = value
    return list(found.items())
