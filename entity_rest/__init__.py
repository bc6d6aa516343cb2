"""
entity-rest: declarative REST resource operations over an entity store.

Mount an operation for an entity of a store and call it with a request::

    from entity_rest import InMemoryStore, OperationRequest, list_operation

    items = list_operation(store, "Item", {"id_mapping": "external_id"})
    response = items(OperationRequest(query={"name:icontains": "widget"}))
"""

from .config import OperationConfig, build_operation_config, merge_config_layers
from .config_manager import ConfigManager, ResourceConfig, load_config
from .context import OperationContext, PipelineState
from .domain import (
    AssociationInfo,
    AssociationType,
    AttributeInfo,
    AttributeType,
    EntityDescriptor,
    EntityRegistry,
)
from .exceptions import (
    BadRequestError,
    ConfigurationError,
    EntityRestError,
    InternalError,
    NotFoundError,
    RelatedRecordNotFoundError,
    RelationMappingError,
    ValidationFailedError,
)
from .operations import (
    CreateOperation,
    DestroyOperation,
    ListOperation,
    Operation,
    OperationRequest,
    PatchOperation,
    SearchOperation,
    SingleOperation,
    UpdateOperation,
    create_operation,
    destroy_operation,
    list_operation,
    mount,
    patch_operation,
    search_operation,
    single_operation,
    update_operation,
)
from .orchestrator import OperationResponse
from .store import EntityStore, InMemoryStore, Transaction

__version__ = "0.1.0"

__all__ = [
    # Configuration
    'OperationConfig',
    'build_operation_config',
    'merge_config_layers',
    'ConfigManager',
    'ResourceConfig',
    'load_config',

    # Context
    'OperationContext',
    'PipelineState',

    # Domain
    'AssociationInfo',
    'AssociationType',
    'AttributeInfo',
    'AttributeType',
    'EntityDescriptor',
    'EntityRegistry',

    # Errors
    'EntityRestError',
    'ConfigurationError',
    'BadRequestError',
    'NotFoundError',
    'RelatedRecordNotFoundError',
    'ValidationFailedError',
    'InternalError',
    'RelationMappingError',

    # Operations
    'Operation',
    'OperationRequest',
    'OperationResponse',
    'ListOperation',
    'SearchOperation',
    'SingleOperation',
    'CreateOperation',
    'UpdateOperation',
    'PatchOperation',
    'DestroyOperation',
    'mount',
    'list_operation',
    'search_operation',
    'single_operation',
    'create_operation',
    'update_operation',
    'patch_operation',
    'destroy_operation',

    # Stores
    'EntityStore',
    'InMemoryStore',
    'Transaction',
]
