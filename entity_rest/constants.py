"""
Centralized constants for entity-rest.

This module holds the operator vocabulary, reserved query-string keys,
response messages and per-operation configuration defaults that the rest of
the package reads from. Keeping them here makes it easy to see every knob an
operation exposes in one place.
"""

from typing import Dict, Any, FrozenSet


# =============================================================================
# OPERATIONS
# =============================================================================

class OperationTypes:
    """Names of the supported resource operations."""

    LIST = "list"
    SEARCH = "search"
    SINGLE = "single"
    CREATE = "create"
    UPDATE = "update"
    PATCH = "patch"
    DESTROY = "destroy"

    ALL = [LIST, SEARCH, SINGLE, CREATE, UPDATE, PATCH, DESTROY]

    # Operations that run inside a store transaction
    WRITES = [CREATE, UPDATE, PATCH, DESTROY]
    READS = [LIST, SEARCH, SINGLE]


# =============================================================================
# FILTER OPERATORS
# =============================================================================

class Operators:
    """Filter operator vocabulary."""

    EQ = "eq"
    IEQ = "ieq"
    NEQ = "neq"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    IN = "in"
    NOT_IN = "not_in"
    CONTAINS = "contains"
    ICONTAINS = "icontains"
    NOT_CONTAINS = "not_contains"
    NOT_ICONTAINS = "not_icontains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    NOT_STARTS_WITH = "not_starts_with"
    NOT_ENDS_WITH = "not_ends_with"
    IS_TRUE = "is_true"
    IS_FALSE = "is_false"

    ALL: FrozenSet[str] = frozenset([
        EQ, IEQ, NEQ, GT, GTE, LT, LTE, IN, NOT_IN,
        CONTAINS, ICONTAINS, NOT_CONTAINS, NOT_ICONTAINS,
        STARTS_WITH, ENDS_WITH, NOT_STARTS_WITH, NOT_ENDS_WITH,
        IS_TRUE, IS_FALSE,
    ])

    # Operators whose value is a list
    MULTI_VALUE: FrozenSet[str] = frozenset([IN, NOT_IN])

    # Operators that take no value
    UNARY: FrozenSet[str] = frozenset([IS_TRUE, IS_FALSE])

    # Operators that compare against a text pattern
    PATTERN: FrozenSet[str] = frozenset([
        CONTAINS, ICONTAINS, NOT_CONTAINS, NOT_ICONTAINS,
        STARTS_WITH, ENDS_WITH, NOT_STARTS_WITH, NOT_ENDS_WITH,
    ])


class Directions:
    """Ordering directions."""

    ASC = "ASC"
    DESC = "DESC"

    ALL = [ASC, DESC]


# =============================================================================
# REQUEST KEYS
# =============================================================================

class QueryKeys:
    """Reserved query-string keys of the list operation."""

    PREFIX = "api:"
    PAGE = "api:page"
    PAGE_SIZE = "api:page_size"
    ORDER_BY = "api:order_by"
    ORDER_DIR = "api:order_dir"

    OPERATOR_SEPARATOR = ":"
    VALUE_SEPARATOR = ","
    PATH_SEPARATOR = "."


class SearchKeys:
    """Top-level keys of a search request body."""

    FILTERING = "filtering"
    ORDERING = "ordering"
    PAGING = "paging"
    AND = "and"
    OR = "or"
    ORDER_BY = "order_by"
    DIRECTION = "direction"
    PAGE = "page"
    SIZE = "size"


class FieldNames:
    """Field names with special meaning."""

    ID = "id"

    # Suffixes tried by the naming-convention foreign key strategy
    FOREIGN_KEY_SUFFIXES = ["_id", "Id", "_key", "Key"]


# =============================================================================
# RESPONSES
# =============================================================================

class Messages:
    """Public response messages."""

    BAD_REQUEST = "Bad request"
    NOT_FOUND = "Not Found"
    VALIDATION_FAILED = "Validation failed"
    INTERNAL_ERROR = "Internal Server Error"
    RELATED_NOT_FOUND = "Related record not found"
    OPERATION_CANCELLED = "Operation cancelled"
    BULK_CREATE_REJECTED = "Cannot insert multiple records."


class StatusCodes:
    """HTTP status codes the operations emit."""

    OK = 200
    CREATED = 201
    BAD_REQUEST = 400
    NOT_FOUND = 404
    INTERNAL_ERROR = 500

    DEFAULT_CANCEL = BAD_REQUEST


# =============================================================================
# CONFIGURATION DEFAULTS
# =============================================================================

class DefaultConfig:
    """Default configuration values."""

    PAGE_SIZE = 100
    ORDER_BY = "id"
    ORDER_DIR = Directions.ASC
    ID_MAPPING = "id"
    PARAM_NAME = "id"
    CONTEXT_NAME = "default"


# Config keys spelled differently from the mechanical camelCase/snake_case
# conversion. Values are canonical snake_case names.
CONFIG_KEY_ALIASES: Dict[str, str] = {
    "apialize_context": "context_name",
    "apializeContext": "context_name",
    "include": "includes",
}

# Keys replaced wholesale by the most specific layer defining them
HOOK_KEYS = ("pre", "post")

_READ_DEFAULTS: Dict[str, Any] = {
    "id_mapping": DefaultConfig.ID_MAPPING,
    "relation_id_mapping": None,
    "auto_relation_id_mapping": True,
    "flattening": None,
    "aliases": None,
    "includes": None,
    "where": None,
    "attributes": None,
    "pre": None,
    "post": None,
}

_COLLECTION_DEFAULTS: Dict[str, Any] = {
    **_READ_DEFAULTS,
    "allow_filtering_on": None,
    "block_filtering_on": None,
    "allow_ordering_on": None,
    "block_ordering_on": None,
    "meta_show_filters": False,
    "meta_show_ordering": False,
    "default_page_size": DefaultConfig.PAGE_SIZE,
    "default_order_by": DefaultConfig.ORDER_BY,
    "default_order_dir": DefaultConfig.ORDER_DIR,
}

_WRITE_DEFAULTS: Dict[str, Any] = {
    "validate": True,
    "allowed_fields": None,
    "blocked_fields": None,
    "id_mapping": DefaultConfig.ID_MAPPING,
    "relation_id_mapping": None,
    "auto_relation_id_mapping": True,
    "aliases": None,
    "where": None,
    "pre": None,
    "post": None,
}

OPERATION_DEFAULTS: Dict[str, Dict[str, Any]] = {
    OperationTypes.LIST: {
        **_COLLECTION_DEFAULTS,
        "allow_filtering": True,
        "allow_ordering": True,
    },
    OperationTypes.SEARCH: dict(_COLLECTION_DEFAULTS),
    OperationTypes.SINGLE: {
        **_READ_DEFAULTS,
        "param_name": DefaultConfig.PARAM_NAME,
    },
    OperationTypes.CREATE: dict(_WRITE_DEFAULTS),
    OperationTypes.UPDATE: dict(_WRITE_DEFAULTS),
    OperationTypes.PATCH: dict(_WRITE_DEFAULTS),
    OperationTypes.DESTROY: {
        "id_mapping": DefaultConfig.ID_MAPPING,
        "param_name": DefaultConfig.PARAM_NAME,
        "where": None,
        "pre": None,
        "post": None,
    },
}

# Write operations also address a record by path parameter
for _operation in (OperationTypes.UPDATE, OperationTypes.PATCH):
    OPERATION_DEFAULTS[_operation]["param_name"] = DefaultConfig.PARAM_NAME
