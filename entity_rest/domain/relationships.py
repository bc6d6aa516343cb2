"""
Relation-mapping resolution for entity-rest.

A relation mapping says "foreign keys that reference entity X are exposed as
X's external id attribute". This module decides which entities are mapped
(explicit ``relation_id_mapping`` entries, or every entity that declares an
``external_id`` when automatic mapping is on) and which foreign keys of a
given entity reference them.

Foreign keys are discovered by two independent strategies that always run in
the same order: declared belongs-to associations first, the naming
convention second. The naming strategy never overrides a foreign key the
association strategy already claimed.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from .models import EntityDescriptor, RelationMapping
from .naming import foreign_key_candidates
from .registry import EntityRegistry
from ..exceptions import RelationMappingError


logger = logging.getLogger(__name__)


def discover_by_association(
    descriptor: EntityDescriptor,
    external_fields: Dict[str, str]
) -> List[RelationMapping]:
    """
    Find mapped foreign keys through declared belongs-to associations.

    Args:
        descriptor: Entity whose foreign keys are examined
        external_fields: Mapped entity name -> external id attribute

    Returns:
        One mapping per belongs-to association whose target is mapped
    """
    mappings = []
    for association in descriptor.belongs_to_associations():
        if not association.foreign_key or association.target not in external_fields:
            continue
        if not descriptor.has_attribute(association.foreign_key):
            continue
        mappings.append(RelationMapping(
            foreign_key=association.foreign_key,
            related_entity=association.target,
            external_field=external_fields[association.target],
            association=association.alias,
            source="association",
        ))
    return mappings


def discover_by_naming(
    descriptor: EntityDescriptor,
    external_fields: Dict[str, str],
    registry: EntityRegistry,
    claimed: Optional[Set[str]] = None
) -> List[RelationMapping]:
    """
    Find mapped foreign keys by naming convention (``<entity>_id`` and friends).

    Args:
        descriptor: Entity whose attributes are examined
        external_fields: Mapped entity name -> external id attribute
        registry: Registry used to look up table names of mapped entities
        claimed: Foreign keys already mapped by an earlier strategy

    Returns:
        Mappings for attributes matching a conventional name
    """
    claimed = set(claimed or ())
    mappings = []
    for entity_name, external_field in external_fields.items():
        related = registry.resolve(entity_name)
        table_name = related.table_name if related else None
        for candidate in foreign_key_candidates(entity_name, table_name):
            if candidate in claimed or not descriptor.has_attribute(candidate):
                continue
            if candidate == descriptor.primary_key:
                continue
            claimed.add(candidate)
            mappings.append(RelationMapping(
                foreign_key=candidate,
                related_entity=entity_name,
                external_field=external_field,
                association=None,
                source="naming",
            ))
    return mappings


@dataclass
class RelationMappingSet:
    """
    Resolved relation mappings for one mounted operation.

    ``external_fields`` is keyed by related entity name and applies at every
    include depth; per-entity foreign key mappings are computed on demand and
    cached.
    """

    registry: EntityRegistry
    external_fields: Dict[str, str] = field(default_factory=dict)
    _cache: Dict[str, Dict[str, RelationMapping]] = field(default_factory=dict, repr=False)

    @property
    def is_empty(self) -> bool:
        return not self.external_fields

    def external_field_for(self, entity_name: str) -> Optional[str]:
        return self.external_fields.get(entity_name)

    def foreign_keys_for(self, descriptor: EntityDescriptor) -> Dict[str, RelationMapping]:
        """Foreign key -> mapping for every mapped foreign key of ``descriptor``."""
        if descriptor.name in self._cache:
            return self._cache[descriptor.name]

        mappings: Dict[str, RelationMapping] = {}
        if self.external_fields:
            for mapping in discover_by_association(descriptor, self.external_fields):
                mappings.setdefault(mapping.foreign_key, mapping)
            for mapping in discover_by_naming(
                descriptor, self.external_fields, self.registry, claimed=set(mappings)
            ):
                mappings[mapping.foreign_key] = mapping

        self._cache[descriptor.name] = mappings
        return mappings

    def to_dict(self) -> Dict[str, Any]:
        return {'external_fields': dict(self.external_fields)}


class RelationMappingResolver:
    """
    Builds a RelationMappingSet from operation configuration.

    This class encapsulates the precedence between explicit mappings and
    automatic discovery.
    """

    def __init__(self, registry: EntityRegistry):
        self.registry = registry

    def resolve(
        self,
        explicit: Optional[List[Dict[str, Any]]],
        auto: bool = True
    ) -> RelationMappingSet:
        """
        Resolve which entities have their ids mapped.

        Explicit entries win over automatic discovery entirely; automatic
        discovery maps every registered entity that declares an external id.

        Args:
            explicit: ``relation_id_mapping`` entries (``{model|entity, id_field}``)
            auto: Value of ``auto_relation_id_mapping``

        Returns:
            Resolved mapping set

        Raises:
            RelationMappingError: If an explicit entry names an attribute the
                related entity does not have
        """
        if explicit:
            return RelationMappingSet(self.registry, self._resolve_explicit(explicit))
        if auto:
            return RelationMappingSet(self.registry, self._resolve_auto())
        return RelationMappingSet(self.registry)

    def _resolve_explicit(self, entries: List[Dict[str, Any]]) -> Dict[str, str]:
        external_fields: Dict[str, str] = {}
        for entry in entries:
            if not isinstance(entry, dict):
                logger.warning(f"Skipping relation_id_mapping entry {entry!r}: not a mapping")
                continue
            ref = entry.get('model', entry.get('entity'))
            related = self.registry.resolve(ref)
            if related is None:
                logger.warning(f"Skipping relation_id_mapping entry: unknown entity {ref!r}")
                continue
            id_field = entry.get('id_field') or entry.get('idField')
            if not id_field:
                logger.warning(f"Skipping relation_id_mapping entry for '{related.name}': no id_field")
                continue
            if not related.has_attribute(id_field):
                raise RelationMappingError(
                    f"relation_id_mapping id_field '{id_field}' does not exist on '{related.name}'",
                    related_entity=related.name,
                    id_field=id_field,
                )
            external_fields[related.name] = id_field
        return external_fields

    def _resolve_auto(self) -> Dict[str, str]:
        external_fields = {
            descriptor.name: descriptor.external_id
            for descriptor in self.registry
            if descriptor.external_id
        }
        if external_fields:
            logger.debug(f"Discovered relation id mappings: {external_fields}")
        return external_fields
