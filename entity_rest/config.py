"""
Operation configuration: schema, key canonicalization and layer merging.

An operation's configuration is assembled from ordered partial layers::

    library defaults for the operation type
    -> entity "default" layer
    -> entity "<operation>.default" layer
    -> entity "<operation>.<context name>" layer (when a named context is used)
    -> per-call overrides

Later layers win per key. Hook lists (``pre``/``post``) are replaced
wholesale by the most specific layer that defines them. Every key may be
spelled in snake_case or camelCase; spellings are folded into one canonical
snake_case key set once, at merge time, and snake_case wins when a layer
carries both.
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
)

from .constants import (
    CONFIG_KEY_ALIASES,
    DefaultConfig,
    Directions,
    OPERATION_DEFAULTS,
    OperationTypes,
)
from .domain.models import EntityDescriptor
from .domain.naming import to_snake_case
from .exceptions import ConfigurationError


logger = logging.getLogger(__name__)

Hook = Callable[..., Any]

# Every canonical key any operation understands
KNOWN_KEYS = frozenset(
    key for defaults in OPERATION_DEFAULTS.values() for key in defaults
) | {"context_name"}


def canonical_key(key: str) -> str:
    """Canonical snake_case name of a configuration key."""
    if key in CONFIG_KEY_ALIASES:
        return CONFIG_KEY_ALIASES[key]
    return to_snake_case(key)


def is_snake_spelling(key: str) -> bool:
    return key == to_snake_case(key)


def canonicalize_keys(layer: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Fold camelCase keys of one layer into their snake_case names.

    When a layer carries both spellings of a key the snake_case value wins,
    whatever the order of the keys.

    Example:
        >>> canonicalize_keys({"defaultPageSize": 10, "default_page_size": 20})
        {'default_page_size': 20}
    """
    if not layer:
        return {}

    canonical: Dict[str, Any] = {}
    from_snake = set()
    for key, value in layer.items():
        name = canonical_key(key)
        snake = is_snake_spelling(key)
        if snake or name not in from_snake:
            canonical[name] = value
        if snake:
            from_snake.add(name)
    return canonical


def normalize_hooks(value: Any) -> Tuple[Hook, ...]:
    """
    Normalize a hook declaration to a tuple of callables.

    Accepts None, a single callable or a list/tuple of callables.

    Raises:
        ValueError: If the declaration contains something that is not callable
    """
    if value is None:
        return ()
    if callable(value):
        return (value,)
    if isinstance(value, (list, tuple)):
        hooks = tuple(value)
        for hook in hooks:
            if not callable(hook):
                raise ValueError(f"Hook {hook!r} is not callable")
        return hooks
    raise ValueError(f"Hooks must be a callable or a list of callables, got {type(value).__name__}")


def merge_config_layers(*layers: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Merge partial configuration layers, later layers winning per key.

    Nothing is concatenated: a layer that defines ``pre`` replaces any
    earlier ``pre`` list entirely.
    """
    merged: Dict[str, Any] = {}
    for layer in layers:
        merged.update(canonicalize_keys(layer))
    return merged


class OperationConfig(BaseModel):
    """Validated, canonical configuration of one mounted operation."""

    model_config = ConfigDict(
        extra='forbid',
        populate_by_name=True,
        arbitrary_types_allowed=True,
        frozen=True,
    )

    operation: str = Field(..., description="Operation type this configuration belongs to.")
    context_name: str = Field(DefaultConfig.CONTEXT_NAME, description="Named configuration context.")

    # Identifiers
    id_mapping: str = Field(DefaultConfig.ID_MAPPING, min_length=1)
    param_name: str = Field(DefaultConfig.PARAM_NAME, min_length=1)
    relation_id_mapping: Optional[List[Dict[str, Any]]] = None
    auto_relation_id_mapping: bool = True

    # Shaping
    aliases: Optional[Dict[str, str]] = None
    flattening: Optional[Union[Dict[str, Any], List[Dict[str, Any]]]] = None
    includes: Optional[List[Dict[str, Any]]] = None
    where: Optional[Dict[str, Any]] = None
    attributes: Optional[List[str]] = None

    # Hooks
    pre: Tuple[Hook, ...] = ()
    post: Tuple[Hook, ...] = ()

    # Filtering / ordering / paging
    allow_filtering: bool = True
    allow_ordering: bool = True
    allow_filtering_on: Optional[List[str]] = None
    block_filtering_on: Optional[List[str]] = None
    allow_ordering_on: Optional[List[str]] = None
    block_ordering_on: Optional[List[str]] = None
    meta_show_filters: bool = False
    meta_show_ordering: bool = False
    default_page_size: int = DefaultConfig.PAGE_SIZE
    default_order_by: str = DefaultConfig.ORDER_BY
    default_order_dir: str = DefaultConfig.ORDER_DIR

    # Writes
    validate_payload: bool = Field(True, alias='validate')
    allowed_fields: Optional[List[str]] = None
    blocked_fields: Optional[List[str]] = None

    @field_validator('pre', 'post', mode='before')
    def check_hooks(cls, v):
        """Accept a single callable or a list of callables."""
        return normalize_hooks(v)

    @field_validator('default_page_size')
    def check_page_size(cls, v):
        if v <= 0:
            raise ValueError(f"default_page_size must be a positive integer, got {v}")
        return v

    @field_validator('default_order_dir', mode='before')
    def check_order_dir(cls, v):
        direction = str(v).upper()
        if direction not in Directions.ALL:
            raise ValueError(f"default_order_dir must be ASC or DESC, got {v!r}")
        return direction

    @field_validator('operation')
    def check_operation(cls, v):
        if v not in OperationTypes.ALL:
            raise ValueError(f"Unknown operation type '{v}'")
        return v

    def __getitem__(self, key: str) -> Any:
        return getattr(self, self._field_name(key))

    def get(self, key: str, default: Any = None) -> Any:
        return getattr(self, self._field_name(key), default)

    def has(self, key: str) -> bool:
        return self._field_name(key) in type(self).model_fields

    @staticmethod
    def _field_name(key: str) -> str:
        name = canonical_key(key)
        return 'validate_payload' if name == 'validate' else name

    @property
    def is_write(self) -> bool:
        return self.operation in OperationTypes.WRITES

    def effective_id_mapping(self, descriptor: EntityDescriptor) -> str:
        """
        Attribute exposed as ``id``.

        The default ``id`` falls back to the primary key for entities whose
        key attribute has another name.
        """
        if descriptor.has_attribute(self.id_mapping):
            return self.id_mapping
        return descriptor.primary_key

    def to_dict(self) -> Dict[str, Any]:
        """Plain representation; hooks are reported by name."""
        data = self.model_dump(by_alias=True)
        for key in ('pre', 'post'):
            data[key] = [getattr(hook, '__name__', repr(hook)) for hook in data[key]]
        return data


def entity_layers(descriptor: EntityDescriptor, operation: str, context_name: str) -> List[Dict[str, Any]]:
    """The per-entity layers that apply to ``operation`` in ``context_name``."""
    config = descriptor.config or {}
    operation_layers = config.get(operation) or {}
    layers = [config.get('default'), operation_layers.get('default')]

    if context_name != DefaultConfig.CONTEXT_NAME:
        if context_name in operation_layers:
            layers.append(operation_layers[context_name])
        else:
            logger.warning(
                f"Context '{context_name}' is not defined for {descriptor.name}.{operation}; using defaults"
            )
    return layers


def build_operation_config(
    descriptor: EntityDescriptor,
    operation: str,
    overrides: Optional[Dict[str, Any]] = None
) -> OperationConfig:
    """
    Resolve the configuration of one mounted operation.

    Args:
        descriptor: Entity the operation is mounted for
        operation: Operation type
        overrides: Per-call configuration (either key spelling)

    Returns:
        Validated configuration

    Raises:
        ConfigurationError: On unknown keys, invalid values, or an
            ``id_mapping`` the entity does not have
    """
    if operation not in OPERATION_DEFAULTS:
        raise ConfigurationError(f"Unknown operation type '{operation}'", config_key="operation")

    call_layer = canonicalize_keys(overrides)
    unknown = sorted(set(call_layer) - KNOWN_KEYS)
    if unknown:
        raise ConfigurationError(
            f"Unknown configuration keys for {descriptor.name}.{operation}: {', '.join(unknown)}",
            context={"unknown_keys": unknown}
        )

    context_name = call_layer.get('context_name') or DefaultConfig.CONTEXT_NAME
    merged = merge_config_layers(
        OPERATION_DEFAULTS[operation],
        *entity_layers(descriptor, operation, context_name),
        call_layer,
    )

    # Entity-wide layers may carry keys meant for other operations
    applicable = set(OPERATION_DEFAULTS[operation])
    dropped = sorted(k for k in merged if k not in applicable and k != 'context_name')
    if dropped:
        logger.debug(f"Ignoring keys not used by {operation}: {dropped}")
    values = {k: v for k, v in merged.items() if k in applicable}
    values['operation'] = operation
    values['context_name'] = context_name

    try:
        config = OperationConfig(**values)
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid configuration for {descriptor.name}.{operation}: {e}",
            context={"errors": [err['msg'] for err in e.errors()]}
        ) from e

    if not descriptor.has_attribute(config.id_mapping) and config.id_mapping != DefaultConfig.ID_MAPPING:
        raise ConfigurationError(
            f"id_mapping '{config.id_mapping}' is not an attribute of {descriptor.name}",
            config_key="id_mapping",
            context={"attributes": descriptor.attribute_names}
        )

    logger.debug(f"Merged {descriptor.name}.{operation} configuration (context '{context_name}')")
    return config
