"""
Include planning and response flattening.

Includes are declared per operation as plain dictionaries::

    {"model": "Artist", "as": "artist", "required": True,
     "where": {...}, "attributes": [...], "through": {...}, "include": [...]}

Flattening lifts attributes of one included association onto the root
record::

    {"model": "Artist", "as": "artist", "attributes": ["name", ["country", "artist_country"]]}

The planner makes sure the association it reads from is fetched, creating
the include when the operation does not already declare one, and then
renames the projected attributes on every outbound record. Flattened names
are addressable in filters and orders: ``artist_country`` maps to the path
``artist.country``.
"""

import logging
from typing import Any, Dict, List, Optional, Union

from .constants import QueryKeys
from .domain.models import (
    EntityDescriptor,
    FilterGroup,
    FlatteningSpec,
    IncludePlan,
    ThroughOptions,
    find_include,
)
from .domain.registry import EntityRegistry
from .exceptions import BadRequestError


logger = logging.getLogger(__name__)

RawConfig = Union[Dict[str, Any], List[Dict[str, Any]], None]


def _as_list(raw: RawConfig) -> List[Dict[str, Any]]:
    if raw is None:
        return []
    if isinstance(raw, dict):
        return [raw]
    return list(raw)


def _entity_ref(entry: Dict[str, Any]) -> Any:
    return entry.get('model', entry.get('entity'))


def build_include_plans(
    raw: RawConfig,
    descriptor: EntityDescriptor,
    registry: EntityRegistry
) -> List[IncludePlan]:
    """
    Turn include declarations into validated IncludePlans.

    Args:
        raw: One include declaration or a list of them
        descriptor: Entity the includes hang off
        registry: Entity registry

    Returns:
        Include plans, nested includes resolved recursively

    Raises:
        BadRequestError: If an entry names an unknown entity or association
    """
    plans: List[IncludePlan] = []
    for entry in _as_list(raw):
        if not isinstance(entry, dict):
            raise BadRequestError(f"Invalid include declaration {entry!r}")

        target = registry.resolve(_entity_ref(entry))
        alias = entry.get('as') or entry.get('alias')
        if target is None and alias is None:
            raise BadRequestError("Include must name a model or an association alias")

        if alias is None:
            candidates = descriptor.associations_to(target.name)
            if len(candidates) != 1:
                raise BadRequestError(
                    f"Include of '{target.name}' on '{descriptor.name}' is ambiguous; add 'as'"
                )
            alias = candidates[0].alias

        association = descriptor.get_association(alias)
        if association is None:
            raise BadRequestError(f"'{descriptor.name}' has no association '{alias}'")
        if target is not None and association.target != target.name:
            raise BadRequestError(
                f"Association '{alias}' of '{descriptor.name}' targets '{association.target}', not '{target.name}'"
            )
        target = registry.get(association.target)

        where = entry.get('where')
        attributes = entry.get('attributes')
        plans.append(IncludePlan(
            entity=target.name,
            alias=alias,
            required=bool(entry.get('required', False)),
            where=FilterGroup.from_mapping(where) if where else None,
            attributes=list(attributes) if attributes is not None else None,
            through=ThroughOptions.from_config(entry.get('through')),
            includes=build_include_plans(entry.get('include', entry.get('includes')), target, registry),
        ))
    return plans


def parse_flattening(raw: RawConfig, registry: EntityRegistry) -> List[FlatteningSpec]:
    """
    Normalize flattening configuration into FlatteningSpecs.

    Raises:
        BadRequestError: If an entry lacks ``model`` or ``as``, names an
            unknown entity or has malformed attributes
    """
    specs: List[FlatteningSpec] = []
    for entry in _as_list(raw):
        if not isinstance(entry, dict):
            raise BadRequestError(f"Invalid flattening declaration {entry!r}")
        ref = _entity_ref(entry)
        alias = entry.get('as') or entry.get('alias')
        if not ref or not alias:
            raise BadRequestError("Flattening requires both 'model' and 'as'")

        target = registry.resolve(ref)
        if target is None:
            raise BadRequestError(f"Flattening references unknown model '{ref}'")

        try:
            specs.append(FlatteningSpec(
                entity=target.name,
                alias=alias,
                attributes=list(entry.get('attributes') or []),
                required=entry.get('required'),
                through=entry.get('through'),
                where=entry.get('where'),
            ))
        except ValueError as e:
            raise BadRequestError(f"Invalid flattening for '{alias}': {e}") from e
    return specs


class FlatteningPlanner:
    """Plans the includes flattening needs and reshapes outbound records."""

    def __init__(self, descriptor: EntityDescriptor, registry: EntityRegistry, specs: List[FlatteningSpec]):
        self.descriptor = descriptor
        self.registry = registry
        self.specs = specs
        self._paths: Dict[str, str] = {}
        for spec in specs:
            for source, target in spec.projected_fields:
                self._paths[target] = f"{spec.alias}{QueryKeys.PATH_SEPARATOR}{source}"

    @classmethod
    def from_config(cls, raw: RawConfig, descriptor: EntityDescriptor, registry: EntityRegistry) -> "FlatteningPlanner":
        return cls(descriptor, registry, parse_flattening(raw, registry))

    def __bool__(self) -> bool:
        return bool(self.specs)

    def plan(self, includes: List[IncludePlan]) -> List[IncludePlan]:
        """
        Make sure every flattened association is included.

        An existing include under the flattening alias is reused and must
        point at the same entity. Otherwise one is synthesized, required by
        default. Many-valued associations are fetched with ``fan_out`` so each
        associated row yields its own root row.

        Args:
            includes: Include plans declared by the operation

        Returns:
            The include list, extended with synthesized includes

        Raises:
            BadRequestError: On an entity mismatch, an entity included under
                another alias, or a missing association
        """
        planned = list(includes)
        for spec in self.specs:
            association = self.descriptor.get_association(spec.alias)
            existing = find_include(planned, spec.alias)

            if existing is not None:
                if existing.entity != spec.entity:
                    raise BadRequestError(
                        f"Flattening model '{spec.entity}' does not match included model "
                        f"'{existing.entity}' for alias '{spec.alias}'"
                    )
                if spec.required is not None:
                    existing.required = bool(spec.required)
                if existing.attributes is not None:
                    existing.attributes += [a for a in spec.source_attributes if a not in existing.attributes]
                existing.fan_out = existing.fan_out or bool(association and association.is_many)
                continue

            if any(include.entity == spec.entity for include in planned):
                raise BadRequestError(
                    f"Model '{spec.entity}' is included under another alias than '{spec.alias}'"
                )
            if association is None or association.target != spec.entity:
                raise BadRequestError(
                    f"'{self.descriptor.name}' has no association '{spec.alias}' to '{spec.entity}'"
                )

            planned.append(IncludePlan(
                entity=spec.entity,
                alias=spec.alias,
                required=True if spec.required is None else bool(spec.required),
                where=FilterGroup.from_mapping(spec.where) if spec.where else None,
                through=ThroughOptions.from_config(spec.through),
                fan_out=association.is_many,
                synthesized=True,
            ))
            logger.debug(f"Synthesized include '{spec.alias}' for flattening on {self.descriptor.name}")
        return planned

    def path_for(self, name: str) -> Optional[str]:
        """Dotted include path of a flattened field name, or None."""
        return self._paths.get(name)

    def apply(self, record: Dict[str, Any]) -> Dict[str, Any]:
        """
        Lift flattened attributes onto ``record`` and drop the nested objects.

        A missing association (optional include) yields None for each
        projected name.
        """
        for spec in self.specs:
            nested = record.pop(spec.alias, None)
            if isinstance(nested, list):
                nested = nested[0] if nested else None
            for source, target in spec.projected_fields:
                record[target] = nested.get(source) if isinstance(nested, dict) else None
        return record
