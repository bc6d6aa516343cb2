"""
Entity store interface and an in-memory implementation.

Operations never talk to a database directly; they hand validated query plans
to an EntityStore. The abstract class fixes the surface every store has to
offer (schema, paginated query, keyed reads and writes, bulk lookup and
transactions). InMemoryStore implements it over plain dictionaries and backs
the test suite and the CLI.
"""

import copy
import logging
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import date, datetime, time
from decimal import Decimal
from functools import cmp_to_key
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from .constants import Operators
from .domain.models import (
    AssociationInfo,
    AssociationType,
    EntityDescriptor,
    FilterClause,
    FilterGroup,
    IncludePlan,
    OrderClause,
    Paging,
    QueryPlan,
    QueryResult,
)
from .domain.registry import EntityRegistry
from .exceptions import BadRequestError, IntegrityViolationError, InternalError


logger = logging.getLogger(__name__)

Row = Dict[str, Any]


class Transaction(ABC):
    """Handle of an open store transaction."""

    def __init__(self):
        self.active = True

    @abstractmethod
    def commit(self) -> None:
        pass

    @abstractmethod
    def rollback(self) -> None:
        pass


class EntityStore(ABC):
    """
    Abstract base class for entity stores.

    Every method that touches data accepts an optional transaction handle.
    Reads are issued without one.
    """

    @property
    @abstractmethod
    def registry(self) -> EntityRegistry:
        """Registry of every entity the store holds."""
        pass

    def describe(self, entity: str) -> EntityDescriptor:
        return self.registry.get(entity)

    def entities(self) -> List[EntityDescriptor]:
        return list(self.registry)

    @abstractmethod
    def begin(self) -> Transaction:
        """Open a transaction."""
        pass

    @abstractmethod
    def query(self, entity: str, plan: QueryPlan, transaction: Optional[Transaction] = None) -> QueryResult:
        """Run a filtered, ordered and paginated read."""
        pass

    def find_one(self, entity: str, plan: QueryPlan, transaction: Optional[Transaction] = None) -> Optional[Row]:
        """Return the first record matching ``plan``, or None."""
        result = self.query(entity, replace(plan, paging=Paging(1, 1)), transaction)
        return result.rows[0] if result.rows else None

    @abstractmethod
    def lookup(
        self,
        entity: str,
        field: str,
        values: Iterable[Any],
        transaction: Optional[Transaction] = None
    ) -> Dict[Any, Row]:
        """Bulk lookup: value of ``field`` -> record, for every matching value."""
        pass

    @abstractmethod
    def create(self, entity: str, values: Row, transaction: Optional[Transaction] = None) -> Row:
        pass

    @abstractmethod
    def update(self, entity: str, key: Any, values: Row, transaction: Optional[Transaction] = None) -> Optional[Row]:
        """Update the record with primary key ``key``; None if it does not exist."""
        pass

    @abstractmethod
    def delete(self, entity: str, key: Any, transaction: Optional[Transaction] = None) -> int:
        """Delete the record with primary key ``key``; returns rows affected."""
        pass


# =============================================================================
# VALUE COMPARISON
# =============================================================================

def _parse_temporal(value: str, like: Union[date, datetime]) -> Union[date, datetime, str]:
    try:
        if isinstance(like, datetime):
            return datetime.fromisoformat(value)
        return date.fromisoformat(value[:10])
    except ValueError:
        return value


def _comparable(left: Any, right: Any) -> Tuple[Any, Any]:
    """Bring two values to a form where ``==`` and ``<`` make sense."""
    if isinstance(left, (date, datetime)) and isinstance(right, str):
        right = _parse_temporal(right, left)
    elif isinstance(right, (date, datetime)) and isinstance(left, str):
        left = _parse_temporal(left, right)

    if isinstance(left, datetime) and type(right) is date:
        right = datetime.combine(right, time())
    elif isinstance(right, datetime) and type(left) is date:
        left = datetime.combine(left, time())

    if isinstance(left, Decimal) and isinstance(right, float):
        right = Decimal(str(right))
    elif isinstance(right, Decimal) and isinstance(left, float):
        left = Decimal(str(left))
    return left, right


def _equal(left: Any, right: Any) -> bool:
    if left is None or right is None:
        return False
    left, right = _comparable(left, right)
    return left == right


def compare_values(left: Any, right: Any) -> int:
    """Three-way comparison with nulls first."""
    if left is None and right is None:
        return 0
    if left is None:
        return -1
    if right is None:
        return 1
    left, right = _comparable(left, right)
    try:
        return (left > right) - (left < right)
    except TypeError:
        left, right = str(left), str(right)
        return (left > right) - (left < right)


def _text(value: Any) -> str:
    return value if isinstance(value, str) else str(value)


def evaluate_operator(operator: str, actual: Any, expected: Any) -> bool:
    """Evaluate one filter operator against a stored value."""
    if operator == Operators.EQ:
        return _equal(actual, expected)
    if operator == Operators.IEQ:
        return actual is not None and expected is not None and _text(actual).lower() == _text(expected).lower()
    if operator == Operators.NEQ:
        return actual is not None and not _equal(actual, expected)
    if operator in (Operators.GT, Operators.GTE, Operators.LT, Operators.LTE):
        if actual is None or expected is None:
            return False
        result = compare_values(actual, expected)
        return {
            Operators.GT: result > 0,
            Operators.GTE: result >= 0,
            Operators.LT: result < 0,
            Operators.LTE: result <= 0,
        }[operator]
    if operator == Operators.IN:
        return any(_equal(actual, candidate) for candidate in expected)
    if operator == Operators.NOT_IN:
        return actual is not None and not any(_equal(actual, candidate) for candidate in expected)
    if operator == Operators.IS_TRUE:
        return actual is True or (not isinstance(actual, bool) and actual == 1)
    if operator == Operators.IS_FALSE:
        return actual is False or (not isinstance(actual, bool) and actual == 0)

    if operator in Operators.PATTERN:
        if actual is None or expected is None:
            return False
        haystack, needle = _text(actual), _text(expected)
        if operator in (Operators.ICONTAINS, Operators.NOT_ICONTAINS):
            haystack, needle = haystack.lower(), needle.lower()
        checks = {
            Operators.CONTAINS: lambda: needle in haystack,
            Operators.ICONTAINS: lambda: needle in haystack,
            Operators.NOT_CONTAINS: lambda: needle not in haystack,
            Operators.NOT_ICONTAINS: lambda: needle not in haystack,
            Operators.STARTS_WITH: lambda: haystack.startswith(needle),
            Operators.ENDS_WITH: lambda: haystack.endswith(needle),
            Operators.NOT_STARTS_WITH: lambda: not haystack.startswith(needle),
            Operators.NOT_ENDS_WITH: lambda: not haystack.endswith(needle),
        }
        return checks[operator]()

    raise BadRequestError(f"Unsupported operator '{operator}'", value=operator)


def resolve_path(record: Row, path: List[str]) -> List[Any]:
    """
    Every value reachable from ``record`` along ``path``.

    Many-valued associations fan out, so the result is a list; an empty list
    means the path ends in a missing association.
    """
    current: List[Any] = [record]
    for segment in path:
        following: List[Any] = []
        for item in current:
            if not isinstance(item, dict):
                continue
            value = item.get(segment)
            if isinstance(value, list):
                following.extend(value)
            else:
                following.append(value)
        current = following
    return current


def matches(group: Optional[FilterGroup], record: Row) -> bool:
    """True when ``record`` satisfies the filter tree."""
    if group is None or group.is_empty:
        return True
    results = (
        matches(clause, record) if isinstance(clause, FilterGroup) else _clause_matches(clause, record)
        for clause in group.clauses
    )
    if group.connector == "or":
        return any(results)
    return all(results)


def _clause_matches(clause: FilterClause, record: Row) -> bool:
    values = resolve_path(record, clause.path) or [None]
    return any(evaluate_operator(clause.operator, value, clause.value) for value in values)


# =============================================================================
# IN-MEMORY STORE
# =============================================================================

class InMemoryTransaction(Transaction):
    """Snapshot-based transaction: rollback restores the snapshot."""

    def __init__(self, store: "InMemoryStore"):
        super().__init__()
        self._store = store
        self._snapshot = store._snapshot()

    def commit(self) -> None:
        self._ensure_active()
        self.active = False
        logger.debug("Transaction committed")

    def rollback(self) -> None:
        if not self.active:
            return
        self._store._restore(self._snapshot)
        self.active = False
        logger.debug("Transaction rolled back")

    def _ensure_active(self) -> None:
        if not self.active:
            raise InternalError("Transaction is no longer active", component="store")


class InMemoryStore(EntityStore):
    """
    Dictionary-backed EntityStore.

    Supports belongs-to, has-one, has-many and many-to-many (through an
    explicit join entity) includes, required includes, include and join-row
    filters, fan-out for many-valued includes, ordering over dotted paths,
    unique and not-null constraints and snapshot transactions.
    """

    def __init__(self, entities: Union[EntityRegistry, List[EntityDescriptor]]):
        self._registry = entities if isinstance(entities, EntityRegistry) else EntityRegistry(entities)
        self._tables: Dict[str, List[Row]] = {d.name: [] for d in self._registry}
        self._sequences: Dict[str, int] = {d.name: 0 for d in self._registry}

    @property
    def registry(self) -> EntityRegistry:
        return self._registry

    # --- Test and seeding helpers ---

    def seed(self, entity: str, rows: List[Row]) -> List[Row]:
        """Insert rows outside of any transaction and return the stored copies."""
        return [self.create(entity, row) for row in rows]

    def rows(self, entity: str) -> List[Row]:
        self.describe(entity)
        return copy.deepcopy(self._tables[entity])

    def _snapshot(self) -> Tuple[Dict[str, List[Row]], Dict[str, int]]:
        return copy.deepcopy(self._tables), dict(self._sequences)

    def _restore(self, snapshot: Tuple[Dict[str, List[Row]], Dict[str, int]]) -> None:
        tables, sequences = snapshot
        self._tables = copy.deepcopy(tables)
        self._sequences = dict(sequences)

    # --- EntityStore ---

    def begin(self) -> Transaction:
        return InMemoryTransaction(self)

    def query(self, entity: str, plan: QueryPlan, transaction: Optional[Transaction] = None) -> QueryResult:
        self._check_transaction(transaction)
        descriptor = self.describe(entity)

        rows: List[Row] = []
        for stored in self._tables[entity]:
            for joined in self._join(descriptor, stored, plan.includes):
                if matches(plan.where, joined):
                    rows.append(joined)

        count = len(rows)
        if plan.order:
            rows = self._sort(rows, plan.order)
        if plan.paging is not None:
            rows = rows[plan.paging.offset:plan.paging.offset + plan.paging.size]
        if plan.attributes is not None:
            keep = set(plan.attributes) | {include.alias for include in plan.includes}
            rows = [{k: v for k, v in row.items() if k in keep} for row in rows]

        logger.debug(f"Query on '{entity}' matched {count} row(s), returning {len(rows)}")
        return QueryResult(rows=copy.deepcopy(rows), count=count)

    def lookup(
        self,
        entity: str,
        field: str,
        values: Iterable[Any],
        transaction: Optional[Transaction] = None
    ) -> Dict[Any, Row]:
        self._check_transaction(transaction)
        self.describe(entity)
        wanted = [v for v in values if v is not None]
        found: Dict[Any, Row] = {}
        for stored in self._tables[entity]:
            value = stored.get(field)
            for candidate in wanted:
                if _equal(value, candidate):
                    found[candidate] = copy.deepcopy(stored)
        return found

    def create(self, entity: str, values: Row, transaction: Optional[Transaction] = None) -> Row:
        self._check_transaction(transaction)
        descriptor = self.describe(entity)

        record: Row = {}
        for name, attribute in descriptor.attributes.items():
            if name in values and values[name] is not None:
                record[name] = values[name]
            elif attribute.auto_increment:
                self._sequences[entity] += 1
                record[name] = self._sequences[entity]
            elif name in values:
                record[name] = None
            else:
                record[name] = copy.deepcopy(attribute.default)

        primary_key = descriptor.primary_key
        if descriptor.attributes[primary_key].auto_increment and isinstance(record[primary_key], int):
            self._sequences[entity] = max(self._sequences[entity], record[primary_key])

        self._check_constraints(descriptor, record)
        self._tables[entity].append(record)
        return copy.deepcopy(record)

    def update(self, entity: str, key: Any, values: Row, transaction: Optional[Transaction] = None) -> Optional[Row]:
        self._check_transaction(transaction)
        descriptor = self.describe(entity)
        stored = self._find_by_key(descriptor, key)
        if stored is None:
            return None

        updated = dict(stored)
        for name, value in values.items():
            if descriptor.has_attribute(name):
                updated[name] = value
        self._check_constraints(descriptor, updated, exclude_key=stored[descriptor.primary_key])
        stored.clear()
        stored.update(updated)
        return copy.deepcopy(stored)

    def delete(self, entity: str, key: Any, transaction: Optional[Transaction] = None) -> int:
        self._check_transaction(transaction)
        descriptor = self.describe(entity)
        table = self._tables[entity]
        remaining = [row for row in table if not _equal(row.get(descriptor.primary_key), key)]
        affected = len(table) - len(remaining)
        self._tables[entity] = remaining
        return affected

    # --- Internals ---

    def _check_transaction(self, transaction: Optional[Transaction]) -> None:
        if transaction is not None and not transaction.active:
            raise InternalError("Transaction is no longer active", component="store")

    def _find_by_key(self, descriptor: EntityDescriptor, key: Any) -> Optional[Row]:
        for row in self._tables[descriptor.name]:
            if _equal(row.get(descriptor.primary_key), key):
                return row
        return None

    def _check_constraints(self, descriptor: EntityDescriptor, record: Row, exclude_key: Any = None) -> None:
        primary_key = descriptor.primary_key
        for name, attribute in descriptor.attributes.items():
            value = record.get(name)
            if value is None:
                if not attribute.nullable:
                    raise IntegrityViolationError(
                        f"{descriptor.name}.{name} cannot be null", entity=descriptor.name, field=name
                    )
                continue
            if not attribute.unique:
                continue
            for other in self._tables[descriptor.name]:
                if exclude_key is not None and _equal(other.get(primary_key), exclude_key):
                    continue
                if _equal(other.get(name), value):
                    raise IntegrityViolationError(
                        f"{descriptor.name}.{name} must be unique", entity=descriptor.name, field=name
                    )

    def _join(self, descriptor: EntityDescriptor, stored: Row, includes: List[IncludePlan]) -> List[Row]:
        """
        Attach included associations to one stored row.

        Returns every variant of the joined row: none when a required include
        has no match, several when a fan-out include matched several rows.
        """
        variants: List[Row] = [dict(stored)]
        for include in includes:
            association = descriptor.get_association(include.alias)
            if association is None:
                raise InternalError(
                    f"Entity '{descriptor.name}' has no association '{include.alias}'", component="store"
                )
            related = self._related_rows(descriptor, stored, association, include)
            if include.required and not related:
                return []

            expanded: List[Row] = []
            for variant in variants:
                if not association.is_many:
                    expanded.append({**variant, include.alias: related[0] if related else None})
                elif include.fan_out and related:
                    expanded.extend({**variant, include.alias: [item]} for item in related)
                else:
                    expanded.append({**variant, include.alias: related})
            variants = expanded
        return variants

    def _related_rows(
        self,
        descriptor: EntityDescriptor,
        stored: Row,
        association: AssociationInfo,
        include: IncludePlan
    ) -> List[Row]:
        target = self.describe(association.target)
        candidates: List[Row] = []

        if association.association_type == AssociationType.BELONGS_TO:
            key = association.target_key or target.primary_key
            value = stored.get(association.foreign_key)
            if value is not None:
                candidates = [dict(r) for r in self._tables[target.name] if _equal(r.get(key), value)]

        elif association.association_type in (AssociationType.HAS_ONE, AssociationType.HAS_MANY):
            own_key = stored.get(descriptor.primary_key)
            candidates = [
                dict(r) for r in self._tables[target.name]
                if _equal(r.get(association.foreign_key), own_key)
            ]

        elif association.association_type == AssociationType.BELONGS_TO_MANY:
            candidates = self._through_rows(descriptor, stored, association, include, target)

        results: List[Row] = []
        for candidate in candidates:
            for nested in self._join(target, candidate, include.includes):
                if not matches(include.where, nested):
                    continue
                results.append(self._project_include(target, nested, include))
        return results

    def _through_rows(
        self,
        descriptor: EntityDescriptor,
        stored: Row,
        association: AssociationInfo,
        include: IncludePlan,
        target: EntityDescriptor
    ) -> List[Row]:
        through = self.describe(association.through)
        options = include.through
        alias = options.alias if options and options.alias else through.name
        own_key = stored.get(descriptor.primary_key)

        candidates = []
        for join_row in self._tables[through.name]:
            if not _equal(join_row.get(association.foreign_key), own_key):
                continue
            if options and not matches(options.where, join_row):
                continue
            for target_row in self._tables[target.name]:
                if _equal(target_row.get(target.primary_key), join_row.get(association.other_key)):
                    item = dict(target_row)
                    if options and options.attributes is not None:
                        item[alias] = {k: v for k, v in join_row.items() if k in options.attributes}
                    else:
                        item[alias] = dict(join_row)
                    candidates.append(item)
        return candidates

    @staticmethod
    def _project_include(target: EntityDescriptor, record: Row, include: IncludePlan) -> Row:
        if include.attributes is None:
            return record
        keep = set(include.attributes) | {target.primary_key}
        keep |= {nested.alias for nested in include.includes}
        # Join rows of many-to-many includes live under the through alias
        keep |= {k for k, v in record.items() if isinstance(v, dict) and k not in target.attributes}
        return {k: v for k, v in record.items() if k in keep}

    @staticmethod
    def _sort(rows: List[Row], order: List[OrderClause]) -> List[Row]:
        def first(row: Row, clause: OrderClause) -> Any:
            values = resolve_path(row, clause.field.split('.'))
            return values[0] if values else None

        def compare(left: Row, right: Row) -> int:
            for clause in order:
                result = compare_values(first(left, clause), first(right, clause))
                if result:
                    return -result if clause.descending else result
            return 0

        return sorted(rows, key=cmp_to_key(compare))
