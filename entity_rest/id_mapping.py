"""
Identifier mapping between internal keys and external ids.

Two things are mapped:

* The root record's ``id``. An operation's ``id_mapping`` names the attribute
  clients see as ``id``; lookups by path parameter use it and outbound
  records expose it as ``id``.
* Foreign keys. When a related entity is relation-mapped, foreign keys
  that reference it carry the related record's external id on the wire and
  its internal key in the store. Outbound values are translated with one
  bulk lookup per related entity; inbound values are resolved before
  writes.
"""

import logging
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional

from .constants import FieldNames, Operators
from .domain.models import (
    EntityDescriptor,
    FilterClause,
    IdentifierMapping,
    IncludePlan,
    RelationMapping,
)
from .domain.relationships import RelationMappingSet
from .exceptions import NotFoundError, RelatedRecordNotFoundError
from .store import EntityStore, Transaction
from .validators import CoercionError, TypeCoercer


logger = logging.getLogger(__name__)

Row = Dict[str, Any]


class IdentifierMapper:
    """Translates ids and mapped foreign keys for one operation."""

    def __init__(
        self,
        store: EntityStore,
        descriptor: EntityDescriptor,
        id_field: str,
        relations: RelationMappingSet
    ):
        self.store = store
        self.descriptor = descriptor
        self.mapping = IdentifierMapping(descriptor.name, id_field)
        self.relations = relations

    @property
    def id_field(self) -> str:
        return self.mapping.external_field

    # --- Root identifiers ---

    def coerce_id(self, value: Any) -> Any:
        """
        Coerce a path parameter to the id attribute's type.

        Raises:
            NotFoundError: If the value cannot be an id at all
        """
        attribute = self.descriptor.get_attribute(self.id_field)
        try:
            return TypeCoercer.coerce(attribute.type, value)
        except CoercionError:
            raise NotFoundError(entity=self.descriptor.name, identifier=value) from None

    def id_clause(self, value: Any) -> FilterClause:
        return FilterClause(self.id_field, Operators.EQ, self.coerce_id(value))

    def normalize_record(self, record: Row) -> Row:
        """Expose the mapped attribute as ``id``."""
        if self.id_field == FieldNames.ID or self.id_field not in record:
            return record
        record[FieldNames.ID] = record[self.id_field]
        if not self.mapping.is_primary_key(self.descriptor):
            del record[self.id_field]
        return record

    # --- Outbound ---

    def map_outbound(
        self,
        rows: List[Row],
        includes: Optional[List[IncludePlan]] = None,
        transaction: Optional[Transaction] = None
    ) -> List[Row]:
        """
        Map foreign keys and ids of query results, nested includes included.

        Args:
            rows: Records as returned by the store
            includes: Include plans the records were fetched with

        Returns:
            The same records, mapped in place
        """
        if not self.relations.is_empty:
            self._map_foreign_keys(self.descriptor, rows, transaction)
            self._map_includes(self.descriptor, rows, includes or [], transaction)
        for row in rows:
            self.normalize_record(row)
        return rows

    def _map_includes(
        self,
        descriptor: EntityDescriptor,
        rows: List[Row],
        includes: List[IncludePlan],
        transaction: Optional[Transaction]
    ) -> None:
        for include in includes:
            target = self.store.describe(include.entity)
            nested: List[Row] = []
            for row in rows:
                value = row.get(include.alias)
                if isinstance(value, list):
                    nested.extend(v for v in value if isinstance(v, dict))
                elif isinstance(value, dict):
                    nested.append(value)
            if not nested:
                continue
            self._map_foreign_keys(target, nested, transaction)
            self._map_nested_ids(target, nested, transaction)
            self._map_includes(target, nested, include.includes, transaction)

    def _map_nested_ids(
        self,
        descriptor: EntityDescriptor,
        records: List[Row],
        transaction: Optional[Transaction]
    ) -> None:
        """Replace ``id`` of included records with their external id and drop the raw key."""
        external_field = self.relations.external_field_for(descriptor.name)
        if not external_field or external_field == descriptor.primary_key:
            return

        primary_key = descriptor.primary_key
        missing = [r.get(primary_key) for r in records if external_field not in r]
        fetched = self.store.lookup(descriptor.name, primary_key, missing, transaction) if missing else {}

        for record in records:
            if external_field in record:
                external = record[external_field]
            else:
                found = fetched.get(record.get(primary_key))
                if found is None:
                    continue
                external = found.get(external_field)
            record[FieldNames.ID] = external
            record.pop(external_field, None)

    def _map_foreign_keys(
        self,
        descriptor: EntityDescriptor,
        records: List[Row],
        transaction: Optional[Transaction]
    ) -> None:
        """Swap mapped foreign key values for external ids, one lookup per related entity."""
        foreign_keys = self.relations.foreign_keys_for(descriptor)
        if not foreign_keys or not records:
            return

        by_entity: Dict[str, List[RelationMapping]] = defaultdict(list)
        for mapping in foreign_keys.values():
            by_entity[mapping.related_entity].append(mapping)

        for entity_name, mappings in by_entity.items():
            related = self.store.describe(entity_name)
            values = {
                record[m.foreign_key]
                for record in records
                for m in mappings
                if record.get(m.foreign_key) is not None
            }
            if not values:
                continue
            found = self.store.lookup(entity_name, related.primary_key, values, transaction)
            for record in records:
                for mapping in mappings:
                    value = record.get(mapping.foreign_key)
                    if value is None or value not in found:
                        continue
                    record[mapping.foreign_key] = found[value].get(mapping.external_field)

    # --- Inbound ---

    def map_payload_inbound(self, values: Row, transaction: Optional[Transaction] = None) -> Row:
        """
        Resolve external ids on mapped foreign keys of a write payload.

        Raises:
            RelatedRecordNotFoundError: If an external id matches no record
        """
        for foreign_key, mapping in self.relations.foreign_keys_for(self.descriptor).items():
            value = values.get(foreign_key)
            if value is None:
                continue
            resolved = self.resolve_foreign_values(mapping, [value], transaction)
            if value not in resolved:
                raise RelatedRecordNotFoundError(foreign_key, value, entity=mapping.related_entity)
            values[foreign_key] = resolved[value]
        return values

    def resolve_foreign_values(
        self,
        mapping: RelationMapping,
        values: Iterable[Any],
        transaction: Optional[Transaction] = None
    ) -> Dict[Any, Any]:
        """External id -> internal key for every value that has a match."""
        related = self.store.describe(mapping.related_entity)
        found = self.store.lookup(mapping.related_entity, mapping.external_field, list(values), transaction)
        return {value: row.get(related.primary_key) for value, row in found.items()}

    def foreign_key_mapping(self, field_name: str) -> Optional[RelationMapping]:
        """Relation mapping of a root foreign key, if it is mapped."""
        if self.relations.is_empty:
            return None
        return self.relations.foreign_keys_for(self.descriptor).get(field_name)
