"""
Per-request operation context handed to pre and post hooks.

The context carries the request, the merged configuration, the entity
registry and the open transaction. It also carries the scoping filters and
injected write values that hooks may change. Configuration keys can be read
in either spelling: ``context.default_page_size`` and
``context.defaultPageSize`` return the same value.
"""

import logging
from enum import Enum
from typing import Any, Dict, List, Optional

from .config import OperationConfig, canonical_key
from .constants import Messages, StatusCodes
from .domain.models import EntityDescriptor, FilterGroup
from .domain.registry import EntityRegistry


logger = logging.getLogger(__name__)


class PipelineState(Enum):
    """Stage an operation's pipeline is in."""

    BUILD_CONTEXT = "build_context"
    RUN_PRE_HOOKS = "run_pre_hooks"
    EXECUTE_STORE_OPERATION = "execute_store_operation"
    RUN_POST_HOOKS = "run_post_hooks"
    EMIT_RESPONSE = "emit_response"
    CANCELLED = "cancelled"
    FAILED = "failed"


class OperationContext:
    """
    Mutable state of one operation invocation.

    Attributes:
        operation: Operation type (``list``, ``create``...)
        entity: Descriptor of the entity being served
        models: Registry of all entities
        config: Merged operation configuration
        request: The OperationRequest being served
        transaction: Open transaction for writes, None for reads
        pre_result: Return value of the last pre hook
        payload: Response body, set by the store step; post hooks may edit it
        values: Write values; hooks inject server-side values here
        record: Stored record the operation acted on, when there is one
        status_code: Status of a successful response
    """

    def __init__(
        self,
        operation: str,
        entity: EntityDescriptor,
        models: EntityRegistry,
        config: OperationConfig,
        request: Any = None,
        id_mapping: Optional[str] = None,
    ):
        self.operation = operation
        self.entity = entity
        self.models = models
        self.config = config
        self.request = request
        self.id_mapping = id_mapping or config.id_mapping
        self.transaction = None
        self.pre_result: Any = None
        self.payload: Any = None
        self.values: Dict[str, Any] = {}
        self.record: Optional[Dict[str, Any]] = None
        self.plan: Any = None
        self.status_code = StatusCodes.OK
        self.state = PipelineState.BUILD_CONTEXT
        self.cancelled = False
        self.cancel_status_code: Optional[int] = None
        self.cancel_body: Any = None
        self._where: Dict[str, Any] = dict(config.where or {})

    def __getattr__(self, name: str) -> Any:
        # Only reached for names that are not regular attributes
        if name.startswith('_'):
            raise AttributeError(name)
        canonical = canonical_key(name)
        if canonical != name and canonical in dir(self):
            return getattr(self, canonical)
        config = self.__dict__.get('config')
        if config is not None and config.has(canonical):
            return config[canonical]
        raise AttributeError(f"'{type(self).__name__}' has no attribute '{name}'")

    @property
    def model(self) -> EntityDescriptor:
        return self.entity

    @property
    def params(self) -> Dict[str, Any]:
        return getattr(self.request, 'params', None) or {}

    @property
    def query(self) -> Dict[str, Any]:
        return getattr(self.request, 'query', None) or {}

    @property
    def body(self) -> Any:
        return getattr(self.request, 'body', None)

    @property
    def state_data(self) -> Dict[str, Any]:
        """Host-provided request state, e.g. the authenticated user."""
        return getattr(self.request, 'state', None) or {}

    # --- Scoping filters ---

    @property
    def where(self) -> Dict[str, Any]:
        return dict(self._where)

    def where_group(self) -> FilterGroup:
        """Current scoping filters as an exact-match FilterGroup."""
        return FilterGroup.from_mapping(self._where)

    def apply_where(self, conditions: Dict[str, Any]) -> Dict[str, Any]:
        """
        Add scoping conditions; a field already present is overwritten.

        Conditions use internal attribute names and match exactly.
        """
        self._where.update(conditions or {})
        return self.where

    def apply_multiple_where(self, conditions_list: List[Dict[str, Any]]) -> Dict[str, Any]:
        for conditions in conditions_list or []:
            self.apply_where(conditions)
        return self.where

    def apply_where_if_not_exists(self, conditions: Dict[str, Any]) -> Dict[str, Any]:
        """Add only the conditions whose field has no condition yet."""
        for key, value in (conditions or {}).items():
            self._where.setdefault(key, value)
        return self.where

    def remove_where(self, *keys: str) -> Dict[str, Any]:
        for key in keys:
            if isinstance(key, (list, tuple)):
                for item in key:
                    self._where.pop(item, None)
            else:
                self._where.pop(key, None)
        return self.where

    def replace_where(self, conditions: Dict[str, Any]) -> Dict[str, Any]:
        self._where = dict(conditions or {})
        return self.where

    # --- Write values ---

    def set_value(self, name: str, value: Any) -> Dict[str, Any]:
        """
        Inject a write value.

        Injected values bypass ``allowed_fields``/``blocked_fields``; those
        lists only restrict what clients may send.
        """
        if not isinstance(name, str) or not name:
            raise TypeError(f"Value name must be a non-empty string, got {name!r}")
        self.values[name] = value
        return self.values

    def set_multiple_values(self, values: Dict[str, Any]) -> Dict[str, Any]:
        if not isinstance(values, dict):
            raise TypeError(f"Expected a mapping of values, got {type(values).__name__}")
        for name, value in values.items():
            self.set_value(name, value)
        return self.values

    def remove_value(self, *names: str) -> Dict[str, Any]:
        for name in names:
            self.values.pop(name, None)
        return self.values

    # --- Cancellation ---

    def cancel_operation(self, status_code: Optional[int] = StatusCodes.DEFAULT_CANCEL, body: Any = None) -> Any:
        """
        Stop the operation and respond with ``status_code`` and ``body``.

        From a pre hook the store step and remaining hooks are skipped. From
        a post hook the transaction is rolled back. The caller should return
        right after calling this.

        Returns:
            The response body that will be emitted
        """
        if status_code is None:
            status_code = StatusCodes.DEFAULT_CANCEL
        if body is None:
            body = {"success": False, "message": Messages.OPERATION_CANCELLED}
        self.cancelled = True
        self.cancel_status_code = status_code
        self.cancel_body = body
        logger.warning(f"{self.entity.name}.{self.operation} cancelled by hook with status {status_code}")
        return body
