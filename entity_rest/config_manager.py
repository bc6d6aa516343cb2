"""
Resource file loading for entity-rest.

A resource file declares entities and the operations mounted for them::

    entities:
      Item:
        table_name: items
        external_id: external_id
        attributes:
          external_id: {type: string, nullable: false, unique: true}
          name: string
          price: decimal
        associations:
          category: {target: Category, type: belongs_to, foreign_key: category_id}
        config:
          default: {default_page_size: 50}
          list:
            admin: {allow_filtering_on: null}
    operations:
      Item:
        list: {id_mapping: external_id}
        single: {}
    seed:
      Item:
        - {external_id: ext-1, name: Widget, price: "9.99"}

Attributes may be given as a bare type name. Entities without a primary
key get an implicit auto-increment ``id``. Hooks are callables and cannot
be declared in a file; attach them when mounting from Python.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .constants import OperationTypes
from .domain.models import AssociationInfo, AssociationType, AttributeInfo, EntityDescriptor
from .domain.registry import EntityRegistry
from .exceptions import ConfigurationError
from .operations import Operation, mount
from .store import InMemoryStore
from .validators import PayloadValidator


logger = logging.getLogger(__name__)

Source = Union[str, Path, Dict[str, Any]]


# =============================================================================
# FILE SCHEMA
# =============================================================================

class AttributeSchema(BaseModel):
    model_config = ConfigDict(extra='forbid')

    type: str = "string"
    nullable: bool = True
    unique: bool = False
    primary_key: bool = False
    auto_increment: bool = False
    default: Any = None


class AssociationSchema(BaseModel):
    model_config = ConfigDict(extra='forbid', populate_by_name=True)

    target: str
    association_type: str = Field("belongs_to", alias='type')
    foreign_key: Optional[str] = None
    target_key: Optional[str] = None
    through: Optional[str] = None
    other_key: Optional[str] = None

    @field_validator('association_type')
    def check_association_type(cls, v):
        valid = [t.value for t in AssociationType]
        if v not in valid:
            raise ValueError(f"Association type must be one of {valid}, got {v!r}")
        return v


class EntitySchema(BaseModel):
    model_config = ConfigDict(extra='forbid')

    table_name: Optional[str] = None
    external_id: Optional[str] = None
    attributes: Dict[str, Union[str, AttributeSchema]] = Field(default_factory=dict)
    associations: Dict[str, AssociationSchema] = Field(default_factory=dict)
    config: Dict[str, Any] = Field(default_factory=dict)


class ResourceFileSchema(BaseModel):
    """Top-level structure of a resource file."""

    model_config = ConfigDict(extra='forbid')

    entities: Dict[str, EntitySchema]
    operations: Dict[str, Dict[str, Optional[Dict[str, Any]]]] = Field(default_factory=dict)
    seed: Dict[str, List[Dict[str, Any]]] = Field(default_factory=dict)

    @field_validator('operations')
    def check_operation_names(cls, v):
        for entity, operations in v.items():
            unknown = sorted(set(operations) - set(OperationTypes.ALL))
            if unknown:
                raise ValueError(f"Unknown operations for {entity}: {unknown}")
        return v


# =============================================================================
# RESOURCE CONFIG
# =============================================================================

@dataclass
class ResourceConfig:
    """Loaded resource file: entities, mounted operations and seed rows."""

    entities: List[EntityDescriptor]
    operations: Dict[str, Dict[str, Dict[str, Any]]] = field(default_factory=dict)
    seed: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)
    source: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any], source: Optional[str] = None) -> 'ResourceConfig':
        """
        Validate a raw resource mapping and build descriptors from it.

        Raises:
            ConfigurationError: If the mapping does not match the file schema
        """
        try:
            schema = ResourceFileSchema(**data)
        except ValidationError as e:
            raise ConfigurationError(
                f"Invalid resource configuration: {e}",
                config_file=source,
                context={"errors": [err['msg'] for err in e.errors()]}
            ) from e

        entities = [cls._build_descriptor(name, entity, source) for name, entity in schema.entities.items()]
        operations = {
            entity: {op: dict(options or {}) for op, options in ops.items()}
            for entity, ops in schema.operations.items()
        }
        return cls(entities=entities, operations=operations, seed=dict(schema.seed), source=source)

    @staticmethod
    def _build_descriptor(name: str, entity: EntitySchema, source: Optional[str]) -> EntityDescriptor:
        attributes = []
        for attr_name, spec in entity.attributes.items():
            if isinstance(spec, str):
                spec = AttributeSchema(type=spec)
            attributes.append(AttributeInfo(attr_name, **spec.model_dump()))

        try:
            associations = [
                AssociationInfo(alias, **assoc.model_dump())
                for alias, assoc in entity.associations.items()
            ]
            return EntityDescriptor(
                name=name,
                attributes=attributes,
                associations=associations,
                table_name=entity.table_name,
                external_id=entity.external_id,
                config=entity.config,
            )
        except ValueError as e:
            raise ConfigurationError(str(e), config_file=source, context={"entity": name}) from e

    def build_registry(self) -> EntityRegistry:
        """
        Build the entity registry, checking association targets.

        Raises:
            ConfigurationError: If an association references an unknown entity
        """
        registry = EntityRegistry(self.entities)
        for descriptor in registry:
            for association in descriptor.associations.values():
                for ref in (association.target, association.through):
                    if ref is not None and ref not in registry:
                        raise ConfigurationError(
                            f"Association '{descriptor.name}.{association.alias}' references unknown entity '{ref}'",
                            config_file=self.source,
                        )
        for entity in list(self.operations) + list(self.seed):
            registry.get(entity)
        return registry

    def build_store(self) -> InMemoryStore:
        """Build an in-memory store holding the seed rows."""
        store = InMemoryStore(self.build_registry())
        for entity, rows in self.seed.items():
            validator = PayloadValidator(store.describe(entity))
            coerced = []
            for row in rows:
                values, result = validator.validate(row)
                result.raise_if_invalid()
                coerced.append(values)
            store.seed(entity, coerced)
            logger.debug(f"Seeded {len(rows)} {entity} row(s)")
        return store

    def mount(self, store: Optional[InMemoryStore] = None) -> Dict[Tuple[str, str], Operation]:
        """
        Mount every declared operation.

        Returns:
            ``(entity, operation)`` -> mounted operation
        """
        store = store or self.build_store()
        mounted = {}
        for entity, operations in self.operations.items():
            for operation, options in operations.items():
                mounted[(entity, operation)] = mount(store, entity, operation, options)
        return mounted


# =============================================================================
# LOADERS
# =============================================================================

class ConfigLoader(ABC):
    """Abstract base class for resource configuration loaders."""

    @abstractmethod
    def load(self, source: Source) -> ResourceConfig:
        """Load configuration from source."""
        pass

    @abstractmethod
    def can_handle(self, source: Source) -> bool:
        """Check if this loader can handle the source."""
        pass


class YamlConfigLoader(ConfigLoader):
    """YAML resource file loader."""

    def can_handle(self, source: Source) -> bool:
        if isinstance(source, dict):
            return False
        return Path(source).suffix.lower() in ['.yaml', '.yml']

    def load(self, source: Source) -> ResourceConfig:
        if not self.can_handle(source):
            raise ConfigurationError(
                f"YamlConfigLoader cannot handle source: {source}",
                context={"source_type": type(source).__name__}
            )

        config_path = Path(source)
        if not config_path.exists():
            raise ConfigurationError(
                f"Configuration file not found: {config_path}",
                context={"resolved_path": str(config_path.resolve())}
            )

        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Invalid YAML configuration: {e}",
                config_file=str(config_path)
            ) from e

        if not isinstance(data, dict):
            raise ConfigurationError(
                "Configuration file must contain a dictionary",
                config_file=str(config_path),
                context={"loaded_type": type(data).__name__}
            )
        return ResourceConfig.from_dict(data, source=str(config_path))


class DictConfigLoader(ConfigLoader):
    """Dictionary configuration loader."""

    def can_handle(self, source: Source) -> bool:
        return isinstance(source, dict)

    def load(self, source: Source) -> ResourceConfig:
        if not self.can_handle(source):
            raise ConfigurationError(
                f"DictConfigLoader cannot handle source: {source}",
                context={"source_type": type(source).__name__}
            )
        return ResourceConfig.from_dict(source)


class ConfigManager:
    """
    Central configuration manager for entity-rest.

    Picks a loader for the source, loads and validates the resource
    configuration and keeps the last one loaded.
    """

    def __init__(self):
        self.loaders: List[ConfigLoader] = [
            YamlConfigLoader(),
            DictConfigLoader()
        ]
        self._config: Optional[ResourceConfig] = None

    def load_config(self, source: Source) -> ResourceConfig:
        """
        Load resource configuration from a file path or a dictionary.

        Raises:
            ConfigurationError: If no loader handles the source or the
                configuration is invalid
        """
        loader = next((l for l in self.loaders if l.can_handle(source)), None)
        if loader is None:
            raise ConfigurationError(
                f"No loader available for source: {source}",
                context={"source_type": type(source).__name__}
            )

        config = loader.load(source)
        # Registry construction catches dangling references
        config.build_registry()
        self._config = config
        logger.debug(f"Loaded {len(config.entities)} entities from {config.source or 'dict'}")
        return config

    def get_config(self) -> Optional[ResourceConfig]:
        return self._config

    def has_config(self) -> bool:
        return self._config is not None


# Global configuration manager instance
config_manager = ConfigManager()


def load_config(source: Source) -> ResourceConfig:
    """Load resource configuration with the global manager."""
    return config_manager.load_config(source)


def get_config() -> Optional[ResourceConfig]:
    return config_manager.get_config()
