"""
Constraint parsing: request filters, ordering and paging to store clauses.

Two request shapes are understood. The list operation reads a flat query
string::

    ?status=active&price:gte=10&api:order_by=-price,name&api:page=2

The search operation reads a structured body::

    {"filtering": {"status": "active", "or": [{"price": {"gte": 10}}, ...]},
     "ordering": [{"order_by": "price", "direction": "DESC"}],
     "paging": {"page": 2, "size": 20}}

Both are normalized to the search shape and go through the same validation.
Every field is checked in a fixed order: alias, flattened name, ``id``,
block list, allow list, then existence. Values are coerced to the attribute
type last. Any failure raises BadRequestError before the store is called.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from .aliases import FieldAliasResolver
from .config import OperationConfig
from .constants import (
    Directions,
    FieldNames,
    Operators,
    QueryKeys,
    SearchKeys,
)
from .domain.models import (
    AttributeInfo,
    EntityDescriptor,
    FilterClause,
    FilterGroup,
    IncludePlan,
    OrderClause,
    Paging,
    RelationMapping,
    find_include,
)
from .domain.registry import EntityRegistry
from .exceptions import BadRequestError
from .flattening import FlatteningPlanner
from .id_mapping import IdentifierMapper
from .validators import CoercionError, TypeCoercer


logger = logging.getLogger(__name__)

FILTER = "filtering"
ORDER = "ordering"


def _positive_int(value: Any, default: int) -> int:
    """Parse a paging number; anything invalid or below one falls back."""
    if isinstance(value, bool):
        return default
    try:
        number = int(str(value).strip())
    except (TypeError, ValueError):
        return default
    return number if number >= 1 else default


def _last(value: Any) -> Any:
    """Repeated query keys keep their last value."""
    if isinstance(value, (list, tuple)):
        return value[-1] if value else None
    return value


def split_values(value: Any) -> List[Any]:
    """Split a comma-separated value list; lists are taken as they are."""
    if isinstance(value, (list, tuple, set)):
        return list(value)
    if value is None:
        return []
    return [part.strip() for part in str(value).split(QueryKeys.VALUE_SEPARATOR) if part.strip()]


def parse_direction(value: Any, default: str = Directions.ASC) -> str:
    if value is None or value == "":
        return default
    direction = str(value).strip().upper()
    if direction not in Directions.ALL:
        raise BadRequestError(f"Invalid order direction '{value}'", value=value)
    return direction


def list_query_to_search(query: Dict[str, Any], config: OperationConfig) -> Dict[str, Any]:
    """
    Convert list-operation query parameters into a search request.

    Reserved ``api:`` keys drive paging and ordering; unknown reserved keys
    are ignored. Every other key is a filter, ``field`` or ``field:operator``.
    Filtering and ordering keys are dropped when the operation disables them.
    """
    query = query or {}
    filtering: Dict[str, Dict[str, Any]] = {}

    for key, raw in query.items():
        if key.startswith(QueryKeys.PREFIX):
            continue
        if not config.allow_filtering:
            continue
        field_name, _, operator = key.partition(QueryKeys.OPERATOR_SEPARATOR)
        operator = (operator or Operators.EQ).lower()
        if isinstance(raw, (list, tuple)) and operator in Operators.MULTI_VALUE:
            value = [v for item in raw for v in split_values(item)]
        else:
            value = _last(raw)
        filtering.setdefault(field_name, {})[operator] = value

    ordering: List[Dict[str, str]] = []
    order_by = _last(query.get(QueryKeys.ORDER_BY))
    if config.allow_ordering and order_by:
        global_dir = parse_direction(_last(query.get(QueryKeys.ORDER_DIR)), config.default_order_dir)
        for item in split_values(order_by):
            direction = global_dir
            if item[0] in "-+":
                direction = Directions.DESC if item[0] == "-" else Directions.ASC
                item = item[1:]
            ordering.append({SearchKeys.ORDER_BY: item, SearchKeys.DIRECTION: direction})

    return {
        SearchKeys.FILTERING: filtering,
        SearchKeys.ORDERING: ordering,
        SearchKeys.PAGING: {
            SearchKeys.PAGE: _last(query.get(QueryKeys.PAGE)),
            SearchKeys.SIZE: _last(query.get(QueryKeys.PAGE_SIZE)),
        },
    }


@dataclass
class ResolvedField:
    """A request field name resolved to a store path."""

    requested: str
    path: str
    entity: EntityDescriptor
    attribute: AttributeInfo
    relation: Optional[RelationMapping] = None

    @property
    def is_root(self) -> bool:
        return QueryKeys.PATH_SEPARATOR not in self.path


class ConstraintParser:
    """
    Validates and translates filtering, ordering and paging for one request.

    Args:
        descriptor: Root entity
        registry: Entity registry, for dotted paths through includes
        config: Operation configuration
        includes: Planned includes; dotted paths must run through them
        aliases: Field alias resolver of the operation
        flattening: Flattening planner, when the operation flattens
        id_mapper: Identifier mapper, for ``id`` and relation-mapped keys
        transaction: Transaction used for foreign key value lookups
    """

    def __init__(
        self,
        descriptor: EntityDescriptor,
        registry: EntityRegistry,
        config: OperationConfig,
        includes: Optional[List[IncludePlan]] = None,
        aliases: Optional[FieldAliasResolver] = None,
        flattening: Optional[FlatteningPlanner] = None,
        id_mapper: Optional[IdentifierMapper] = None,
        transaction=None
    ):
        self.descriptor = descriptor
        self.registry = registry
        self.config = config
        self.includes = includes or []
        self.aliases = aliases or FieldAliasResolver()
        self.flattening = flattening
        self.id_mapper = id_mapper
        self.transaction = transaction

    # --- Field resolution ---

    def resolve_field(self, name: str, kind: str = FILTER, check_lists: bool = True) -> ResolvedField:
        """
        Resolve a request field to a store path.

        Raises:
            BadRequestError: If the field is blocked, not allowed or unknown
        """
        if not isinstance(name, str) or not name:
            raise BadRequestError(f"Invalid field name {name!r}", value=name)

        internal = self.aliases.to_internal(name)
        path = internal
        if self.flattening:
            path = self.flattening.path_for(name) or self.flattening.path_for(internal) or internal
        if path == FieldNames.ID:
            path = self.id_mapper.id_field if self.id_mapper else self.descriptor.primary_key

        if check_lists:
            self._check_lists(name, {name, internal, path}, kind)

        entity, attribute_name = self._walk(name, path)
        attribute = entity.get_attribute(attribute_name)
        if attribute is None:
            raise BadRequestError(f"Invalid column '{name}'", field=name)

        segments = path.split(QueryKeys.PATH_SEPARATOR)
        segments[-1] = attribute_name
        path = QueryKeys.PATH_SEPARATOR.join(segments)

        relation = None
        if QueryKeys.PATH_SEPARATOR not in path and self.id_mapper is not None:
            relation = self.id_mapper.foreign_key_mapping(path)
        return ResolvedField(name, path, entity, attribute, relation)

    def _check_lists(self, requested: str, names: set, kind: str) -> None:
        if kind == FILTER:
            allowed, blocked = self.config.allow_filtering_on, self.config.block_filtering_on
        else:
            allowed, blocked = self.config.allow_ordering_on, self.config.block_ordering_on

        if blocked and names & set(blocked):
            raise BadRequestError(f"{kind.capitalize()} on '{requested}' is not allowed", field=requested)
        if allowed is not None and not names & set(allowed):
            raise BadRequestError(f"{kind.capitalize()} on '{requested}' is not allowed", field=requested)

    def _walk(self, requested: str, path: str) -> Tuple[EntityDescriptor, str]:
        """Follow a dotted path through the planned includes."""
        segments = path.split(QueryKeys.PATH_SEPARATOR)
        entity = self.descriptor
        includes = self.includes
        current: Optional[IncludePlan] = None

        for segment in segments[:-1]:
            include = find_include(includes, segment)
            if include is not None:
                current = include
                entity = self.registry.get(include.entity)
                includes = include.includes
                continue
            # Join-row attributes of a many-to-many include
            if current is not None and self._through_alias(current) == segment:
                association = self._association_of(current)
                entity = self.registry.get(association.through)
                includes = []
                current = None
                continue
            raise BadRequestError(f"Invalid column '{requested}'", field=requested)

        last = segments[-1]
        if len(segments) > 1 and last == FieldNames.ID:
            external = self.id_mapper.relations.external_field_for(entity.name) if self.id_mapper else None
            last = external or entity.primary_key
        return entity, last

    def _association_of(self, include: IncludePlan):
        owner = self._owner_of(include, self.descriptor, self.includes)
        return owner.get_association(include.alias)

    def _owner_of(self, target: IncludePlan, entity: EntityDescriptor, includes: List[IncludePlan]):
        for include in includes:
            if include is target:
                return entity
            found = self._owner_of(target, self.registry.get(include.entity), include.includes)
            if found is not None:
                return found
        return None

    def _through_alias(self, include: IncludePlan) -> Optional[str]:
        association = self._association_of(include)
        if association is None or not association.through:
            return None
        if include.through and include.through.alias:
            return include.through.alias
        return association.through

    # --- Filtering ---

    def parse_clause(self, field_name: str, operator: str, raw: Any) -> FilterClause:
        """Validate one filter and coerce its value."""
        operator = str(operator).lower()
        if operator not in Operators.ALL:
            raise BadRequestError(f"Invalid operator '{operator}' for '{field_name}'", field=field_name)

        resolved = self.resolve_field(field_name, FILTER)
        if operator in Operators.UNARY:
            return FilterClause(resolved.path, operator, None)

        if resolved.relation is not None:
            return self._foreign_key_clause(resolved, operator, raw)

        if operator in Operators.MULTI_VALUE:
            value = [self._coerce(resolved, item) for item in split_values(raw)]
        elif operator in Operators.PATTERN:
            if isinstance(raw, (dict, list)) or raw is None:
                raise BadRequestError(f"Invalid value for '{field_name}'", field=field_name)
            value = str(raw)
        else:
            value = self._coerce(resolved, raw)

        if operator == Operators.EQ and resolved.attribute.is_string:
            operator = Operators.IEQ
        return FilterClause(resolved.path, operator, value)

    def _coerce(self, resolved: ResolvedField, raw: Any, attribute: Optional[AttributeInfo] = None) -> Any:
        attribute = attribute or resolved.attribute
        if raw is None:
            return None
        try:
            return TypeCoercer.coerce(attribute.type, raw)
        except CoercionError as e:
            raise BadRequestError(f"Invalid value for '{resolved.requested}': {e}", field=resolved.requested) from e

    def _foreign_key_clause(self, resolved: ResolvedField, operator: str, raw: Any) -> FilterClause:
        """Filter a relation-mapped foreign key by external ids."""
        supported = (Operators.EQ, Operators.NEQ, Operators.IN, Operators.NOT_IN)
        if operator not in supported:
            raise BadRequestError(
                f"Operator '{operator}' is not supported on '{resolved.requested}'", field=resolved.requested
            )

        mapping = resolved.relation
        related = self.registry.get(mapping.related_entity)
        external_attribute = related.get_attribute(mapping.external_field)
        values = split_values(raw) if operator in Operators.MULTI_VALUE else [raw]
        values = [self._coerce(resolved, v, external_attribute) for v in values]

        known = [v for v in values if v is not None]
        internal = self.id_mapper.resolve_foreign_values(mapping, known, self.transaction) if known else {}
        mapped = [internal[v] for v in known if v in internal]

        if operator in Operators.MULTI_VALUE:
            return FilterClause(resolved.path, operator, mapped)
        if values[0] is None:
            return FilterClause(resolved.path, operator, None)
        # An unknown external id matches nothing (eq) or every keyed row (neq)
        if not mapped:
            fallback = Operators.IN if operator == Operators.EQ else Operators.NOT_IN
            return FilterClause(resolved.path, fallback, [])
        return FilterClause(resolved.path, operator, mapped[0])

    def parse_filtering(self, filtering: Any) -> FilterGroup:
        """
        Parse a search ``filtering`` object into a FilterGroup.

        Keys are fields (optionally ``field:operator``) or the ``and``/``or``
        connectors holding lists of nested filtering objects.
        """
        group = FilterGroup("and")
        if not filtering:
            return group
        if not isinstance(filtering, dict):
            raise BadRequestError("Filtering must be an object", value=filtering)

        for key, value in filtering.items():
            connector = key.lower()
            if connector in (SearchKeys.AND, SearchKeys.OR):
                if not isinstance(value, list):
                    raise BadRequestError(f"'{key}' must hold a list of filters", field=key)
                nested = FilterGroup(connector)
                for item in value:
                    nested.add(self.parse_filtering(item))
                group.add(nested)
                continue

            field_name, _, operator = key.partition(QueryKeys.OPERATOR_SEPARATOR)
            if isinstance(value, dict) and not operator:
                if not value:
                    raise BadRequestError(f"Empty filter on '{field_name}'", field=field_name)
                for op, operand in value.items():
                    group.add(self.parse_clause(field_name, op, operand))
            else:
                group.add(self.parse_clause(field_name, operator or Operators.EQ, value))
        return group

    # --- Ordering ---

    def parse_ordering(self, ordering: Any) -> List[OrderClause]:
        """
        Parse search ordering; validation is all-or-nothing.

        Accepts a list of ``{order_by, direction}`` objects or strings, a
        single object, or a comma-separated string.
        """
        if not ordering:
            return []
        if isinstance(ordering, (dict, str)):
            items = [ordering] if isinstance(ordering, dict) else split_values(ordering)
        elif isinstance(ordering, list):
            items = ordering
        else:
            raise BadRequestError("Ordering must be a list", value=ordering)

        clauses: List[OrderClause] = []
        for item in items:
            if isinstance(item, str):
                direction = Directions.ASC
                if item[:1] in ("-", "+"):
                    direction = Directions.DESC if item[0] == "-" else Directions.ASC
                    item = item[1:]
                field_name = item
            elif isinstance(item, dict):
                field_name = item.get(SearchKeys.ORDER_BY, item.get('orderBy'))
                direction = parse_direction(item.get(SearchKeys.DIRECTION), self.config.default_order_dir)
            else:
                raise BadRequestError(f"Invalid ordering entry {item!r}", value=item)

            resolved = self.resolve_field(field_name, ORDER)
            clauses.append(OrderClause(resolved.path, direction))
        return clauses

    def default_ordering(self) -> List[OrderClause]:
        resolved = self.resolve_field(self.config.default_order_by, ORDER, check_lists=False)
        return [OrderClause(resolved.path, self.config.default_order_dir)]

    # --- Paging ---

    def parse_paging(self, paging: Any) -> Paging:
        paging = paging if isinstance(paging, dict) else {}
        return Paging(
            page=_positive_int(paging.get(SearchKeys.PAGE), 1),
            size=_positive_int(paging.get(SearchKeys.SIZE, paging.get('page_size')), self.config.default_page_size),
        )
