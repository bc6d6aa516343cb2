"""
Core domain models for entity-rest.

These models describe entities as the store exposes them (attributes and
associations) and the values the translation pipeline produces from request
input: filter and order clauses, include plans, relation mappings and
flattening specs. They are plain dataclasses with no store or HTTP
dependencies.
"""

from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional, Union, Tuple, Iterator
from enum import Enum

from ..constants import Directions, Operators, QueryKeys, FieldNames


class AttributeType(Enum):
    """Categories of attribute types."""

    INTEGER = "integer"
    FLOAT = "float"
    DECIMAL = "decimal"
    STRING = "string"
    TEXT = "text"
    BOOLEAN = "boolean"
    DATE = "date"
    DATETIME = "datetime"
    UUID = "uuid"
    JSON = "json"

    @classmethod
    def infer(cls, type_string: str) -> "AttributeType":
        """Infer the attribute type from a declared type string."""
        lowered = type_string.lower()
        for member in cls:
            if member.value == lowered:
                return member

        if any(t in lowered for t in ['int', 'serial']):
            return cls.INTEGER
        elif any(t in lowered for t in ['float', 'real', 'double']):
            return cls.FLOAT
        elif any(t in lowered for t in ['decimal', 'numeric']):
            return cls.DECIMAL
        elif any(t in lowered for t in ['bool', 'bit']):
            return cls.BOOLEAN
        elif 'date' in lowered and 'time' in lowered:
            return cls.DATETIME
        elif 'timestamp' in lowered:
            return cls.DATETIME
        elif 'date' in lowered:
            return cls.DATE
        elif any(t in lowered for t in ['uuid', 'guid']):
            return cls.UUID
        elif 'json' in lowered:
            return cls.JSON
        elif any(t in lowered for t in ['text', 'clob']):
            return cls.TEXT
        return cls.STRING


STRING_TYPES = frozenset([AttributeType.STRING, AttributeType.TEXT, AttributeType.UUID])


class AssociationType(Enum):
    """Kinds of associations between entities."""

    BELONGS_TO = "belongs_to"
    HAS_ONE = "has_one"
    HAS_MANY = "has_many"
    BELONGS_TO_MANY = "belongs_to_many"


@dataclass
class AttributeInfo:
    """A single attribute of an entity."""

    name: str
    type: AttributeType = AttributeType.STRING
    nullable: bool = True
    unique: bool = False
    primary_key: bool = False
    auto_increment: bool = False
    default: Optional[Any] = None

    def __post_init__(self):
        if isinstance(self.type, str):
            self.type = AttributeType.infer(self.type)
        if self.primary_key:
            # Primary keys are never null and always unique
            self.nullable = False
            self.unique = True

    @property
    def is_string(self) -> bool:
        return self.type in STRING_TYPES

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'type': self.type.value,
            'nullable': self.nullable,
            'unique': self.unique,
            'primary_key': self.primary_key,
            'auto_increment': self.auto_increment,
            'default': self.default,
        }


@dataclass
class AssociationInfo:
    """
    A declared association from one entity to another.

    For BELONGS_TO the foreign key lives on the source entity and points at
    ``target_key`` of the target. For HAS_ONE / HAS_MANY it lives on the
    target. BELONGS_TO_MANY goes through a join entity where ``foreign_key``
    points at the source and ``other_key`` at the target.
    """

    alias: str
    target: str
    association_type: AssociationType = AssociationType.BELONGS_TO
    foreign_key: Optional[str] = None
    target_key: Optional[str] = None
    through: Optional[str] = None
    other_key: Optional[str] = None

    def __post_init__(self):
        if isinstance(self.association_type, str):
            self.association_type = AssociationType(self.association_type)
        if self.association_type == AssociationType.BELONGS_TO_MANY and not self.through:
            raise ValueError(f"Association '{self.alias}' is belongs_to_many but has no through entity")

    @property
    def is_many(self) -> bool:
        return self.association_type in (AssociationType.HAS_MANY, AssociationType.BELONGS_TO_MANY)

    @property
    def is_belongs_to(self) -> bool:
        return self.association_type == AssociationType.BELONGS_TO

    def to_dict(self) -> Dict[str, Any]:
        return {
            'alias': self.alias,
            'target': self.target,
            'association_type': self.association_type.value,
            'foreign_key': self.foreign_key,
            'target_key': self.target_key,
            'through': self.through,
            'other_key': self.other_key,
        }


@dataclass
class EntityDescriptor:
    """
    Schema and defaults of one entity.

    ``external_id`` names the attribute other entities see as this entity's
    public id when relation ids are mapped automatically. ``config`` holds the
    per-entity configuration layers::

        {"default": {...}, "list": {"default": {...}, "admin": {...}}}
    """

    name: str
    attributes: Dict[str, AttributeInfo] = field(default_factory=dict)
    associations: Dict[str, AssociationInfo] = field(default_factory=dict)
    table_name: Optional[str] = None
    external_id: Optional[str] = None
    config: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if isinstance(self.attributes, list):
            self.attributes = {attr.name: attr for attr in self.attributes}
        if isinstance(self.associations, list):
            self.associations = {assoc.alias: assoc for assoc in self.associations}

        # Entities without a declared key get an implicit auto-increment id
        if not any(attr.primary_key for attr in self.attributes.values()):
            if FieldNames.ID in self.attributes:
                self.attributes[FieldNames.ID].primary_key = True
                self.attributes[FieldNames.ID].__post_init__()
            else:
                implicit = AttributeInfo(
                    FieldNames.ID, AttributeType.INTEGER, primary_key=True, auto_increment=True
                )
                self.attributes = {FieldNames.ID: implicit, **self.attributes}

        if self.external_id is not None and self.external_id not in self.attributes:
            raise ValueError(
                f"Entity '{self.name}' declares external_id '{self.external_id}' which is not an attribute"
            )

    @property
    def primary_key(self) -> str:
        for attr in self.attributes.values():
            if attr.primary_key:
                return attr.name
        return FieldNames.ID

    @property
    def attribute_names(self) -> List[str]:
        return list(self.attributes.keys())

    def has_attribute(self, name: str) -> bool:
        return name in self.attributes

    def get_attribute(self, name: str) -> Optional[AttributeInfo]:
        return self.attributes.get(name)

    def get_association(self, alias: str) -> Optional[AssociationInfo]:
        return self.associations.get(alias)

    def associations_to(self, target: str) -> List[AssociationInfo]:
        """All associations of this entity whose target is ``target``."""
        return [a for a in self.associations.values() if a.target == target]

    def belongs_to_associations(self) -> List[AssociationInfo]:
        return [a for a in self.associations.values() if a.is_belongs_to]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'table_name': self.table_name,
            'external_id': self.external_id,
            'primary_key': self.primary_key,
            'attributes': [a.to_dict() for a in self.attributes.values()],
            'associations': [a.to_dict() for a in self.associations.values()],
        }


# =============================================================================
# CONSTRAINTS
# =============================================================================

@dataclass
class FilterClause:
    """A validated filter: ``field`` may be a dotted association path."""

    field: str
    operator: str = Operators.EQ
    value: Any = None

    @property
    def path(self) -> List[str]:
        return self.field.split(QueryKeys.PATH_SEPARATOR)

    def to_dict(self) -> Dict[str, Any]:
        return {'field': self.field, 'operator': self.operator, 'value': self.value}


@dataclass
class FilterGroup:
    """Clauses joined by ``and`` / ``or``; groups nest."""

    connector: str = "and"
    clauses: List[Union[FilterClause, "FilterGroup"]] = field(default_factory=list)

    @classmethod
    def from_mapping(cls, where: Optional[Dict[str, Any]]) -> "FilterGroup":
        """
        Build an AND group from a plain ``{field: value}`` mapping.

        A value may itself be ``{operator: value}``. Equality built this way is
        exact (case-sensitive), which is what scopes and ownership rules want.
        """
        group = cls()
        for key, value in (where or {}).items():
            if isinstance(value, dict):
                for operator, operand in value.items():
                    group.add(FilterClause(key, operator, operand))
            elif isinstance(value, (list, tuple, set)):
                group.add(FilterClause(key, Operators.IN, list(value)))
            else:
                group.add(FilterClause(key, Operators.EQ, value))
        return group

    def add(self, clause: Union[FilterClause, "FilterGroup"]) -> None:
        if isinstance(clause, FilterGroup) and clause.is_empty:
            return
        self.clauses.append(clause)

    @property
    def is_empty(self) -> bool:
        return not self.clauses

    def iter_clauses(self) -> Iterator[FilterClause]:
        """Yield every leaf clause, depth first."""
        for clause in self.clauses:
            if isinstance(clause, FilterGroup):
                yield from clause.iter_clauses()
            else:
                yield clause

    def fields(self) -> List[str]:
        return [clause.field for clause in self.iter_clauses()]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'connector': self.connector,
            'clauses': [c.to_dict() for c in self.clauses],
        }


@dataclass
class OrderClause:
    """A validated order instruction."""

    field: str
    direction: str = Directions.ASC

    def __post_init__(self):
        self.direction = self.direction.upper()
        if self.direction not in Directions.ALL:
            raise ValueError(f"Invalid direction '{self.direction}'")

    @property
    def descending(self) -> bool:
        return self.direction == Directions.DESC

    def to_dict(self) -> Dict[str, Any]:
        return {'order_by': self.field, 'direction': self.direction}


@dataclass
class Paging:
    page: int = 1
    size: int = 100

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.size

    def to_dict(self) -> Dict[str, Any]:
        return {'page': self.page, 'size': self.size}


# =============================================================================
# FETCH PLANS
# =============================================================================

@dataclass
class ThroughOptions:
    """Join-row options of a many-to-many include."""

    where: Optional[FilterGroup] = None
    attributes: Optional[List[str]] = None
    alias: Optional[str] = None

    @classmethod
    def from_config(cls, options: Optional[Dict[str, Any]]) -> Optional["ThroughOptions"]:
        if not options:
            return None
        where = options.get('where')
        return cls(
            where=FilterGroup.from_mapping(where) if where else None,
            attributes=list(options['attributes']) if options.get('attributes') is not None else None,
            alias=options.get('as') or options.get('alias'),
        )


@dataclass
class IncludePlan:
    """
    One association to fetch alongside the root records.

    ``required`` turns the include into an inner join: root records without
    a matching associated record are dropped. ``fan_out`` emits one root row
    per associated row for many-valued associations.
    """

    entity: str
    alias: str
    required: bool = False
    where: Optional[FilterGroup] = None
    attributes: Optional[List[str]] = None
    through: Optional[ThroughOptions] = None
    includes: List["IncludePlan"] = field(default_factory=list)
    fan_out: bool = False
    synthesized: bool = False

    def find(self, alias: str) -> Optional["IncludePlan"]:
        for include in self.includes:
            if include.alias == alias:
                return include
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'entity': self.entity,
            'as': self.alias,
            'required': self.required,
            'where': self.where.to_dict() if self.where else None,
            'attributes': self.attributes,
            'fan_out': self.fan_out,
            'include': [i.to_dict() for i in self.includes],
        }


def find_include(includes: List[IncludePlan], alias: str) -> Optional[IncludePlan]:
    """Find an include by association alias among siblings."""
    for include in includes:
        if include.alias == alias:
            return include
    return None


@dataclass
class QueryPlan:
    """Everything a store needs to run a read."""

    where: FilterGroup = field(default_factory=FilterGroup)
    order: List[OrderClause] = field(default_factory=list)
    paging: Optional[Paging] = None
    includes: List[IncludePlan] = field(default_factory=list)
    attributes: Optional[List[str]] = None


@dataclass
class QueryResult:
    rows: List[Dict[str, Any]]
    count: int


# =============================================================================
# IDENTIFIERS AND FLATTENING
# =============================================================================

@dataclass
class IdentifierMapping:
    """Which attribute of ``entity`` is exposed as its ``id``."""

    entity: str
    external_field: str

    def is_primary_key(self, descriptor: EntityDescriptor) -> bool:
        return self.external_field == descriptor.primary_key


@dataclass
class RelationMapping:
    """
    Maps one foreign key of a source entity to the related entity's external id.

    ``source`` records how the foreign key was found: ``association`` for
    declared association metadata, ``naming`` for the naming convention.
    """

    foreign_key: str
    related_entity: str
    external_field: str
    association: Optional[str] = None
    source: str = "association"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'foreign_key': self.foreign_key,
            'related_entity': self.related_entity,
            'external_field': self.external_field,
            'association': self.association,
            'source': self.source,
        }


@dataclass
class FlatteningSpec:
    """
    Attributes of an associated entity to lift onto the root record.

    ``attributes`` entries are either a name or ``[source, target]``; after
    ``__post_init__`` they are always ``(source, target)`` tuples.
    """

    entity: str
    alias: str
    attributes: List[Union[str, Tuple[str, str]]] = field(default_factory=list)
    required: Optional[bool] = None
    through: Optional[Dict[str, Any]] = None
    where: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        normalized = []
        for entry in self.attributes:
            if isinstance(entry, str):
                normalized.append((entry, entry))
            elif isinstance(entry, (list, tuple)) and len(entry) == 2:
                normalized.append((entry[0], entry[1]))
            else:
                raise ValueError(f"Invalid flattening attribute {entry!r}")
        self.attributes = normalized

    @property
    def projected_fields(self) -> List[Tuple[str, str]]:
        return list(self.attributes)

    @property
    def source_attributes(self) -> List[str]:
        return [source for source, _ in self.attributes]

    def source_for(self, target: str) -> Optional[str]:
        for source, alias in self.attributes:
            if alias == target:
                return source
        return None
