"""
Domain module for entity-rest.

This module contains the entity schema model, clause and plan value types,
the entity registry and relation-mapping resolution. Nothing here talks to a
store or knows about HTTP.
"""

from .models import (
    AttributeType,
    AttributeInfo,
    AssociationType,
    AssociationInfo,
    EntityDescriptor,
    FilterClause,
    FilterGroup,
    OrderClause,
    Paging,
    ThroughOptions,
    IncludePlan,
    QueryPlan,
    QueryResult,
    IdentifierMapping,
    RelationMapping,
    FlatteningSpec,
    find_include,
)

from .registry import EntityRegistry

from .relationships import (
    RelationMappingResolver,
    RelationMappingSet,
    discover_by_association,
    discover_by_naming,
)

from .naming import (
    to_snake_case,
    to_camel_case,
    singularize,
    foreign_key_candidates,
)

__all__ = [
    # Core models
    'AttributeType',
    'AttributeInfo',
    'AssociationType',
    'AssociationInfo',
    'EntityDescriptor',
    'FilterClause',
    'FilterGroup',
    'OrderClause',
    'Paging',
    'ThroughOptions',
    'IncludePlan',
    'QueryPlan',
    'QueryResult',
    'IdentifierMapping',
    'RelationMapping',
    'FlatteningSpec',
    'find_include',

    # Registry
    'EntityRegistry',

    # Relationships
    'RelationMappingResolver',
    'RelationMappingSet',
    'discover_by_association',
    'discover_by_naming',

    # Naming
    'to_snake_case',
    'to_camel_case',
    'singularize',
    'foreign_key_candidates',
]
