"""
Mountable resource operations.

Each operation is mounted once for an entity of a store, with optional
per-call configuration, and is then invoked once per request::

    list_items = ListOperation(store, "Item", {"default_page_size": 20})
    response = list_items(OperationRequest(query={"status": "active"}))
    response.status, response.body

Configuration is merged and validated at mount time. Includes, flattening,
relation mappings and request constraints are resolved per request in the
build stage, so a malformed request or configuration detail becomes an error
response instead of an exception.

Outbound records are shaped in a fixed order: identifier mapping, then
flattening, then field aliases.
"""

import copy
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from .aliases import FieldAliasResolver
from .config import OperationConfig, build_operation_config
from .constants import FieldNames, Messages, OperationTypes, SearchKeys, StatusCodes
from .constraints import ConstraintParser, list_query_to_search
from .context import OperationContext, PipelineState
from .domain.models import (
    EntityDescriptor,
    FilterGroup,
    IncludePlan,
    OrderClause,
    Paging,
    QueryPlan,
)
from .domain.relationships import RelationMappingResolver, RelationMappingSet
from .exceptions import BadRequestError, ConfigurationError, NotFoundError
from .flattening import FlatteningPlanner, build_include_plans
from .id_mapping import IdentifierMapper
from .orchestrator import HookOrchestrator, OperationResponse, error_response, log_error
from .store import EntityStore
from .validators import CoercionError, PayloadValidator, TypeCoercer, ValidationResult


logger = logging.getLogger(__name__)


@dataclass
class OperationRequest:
    """
    Transport-neutral request.

    Attributes:
        query: Query-string parameters (list operation)
        body: Parsed JSON body (search and writes)
        params: Path parameters, e.g. ``{"id": "ext-1"}``
        state: Host-provided request state such as the authenticated user
    """

    query: Dict[str, Any] = field(default_factory=dict)
    body: Any = None
    params: Dict[str, Any] = field(default_factory=dict)
    state: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RequestPlan:
    """Per-request resolution shared by the build and store stages."""

    id_mapper: IdentifierMapper
    includes: List[IncludePlan] = field(default_factory=list)
    flattening: Optional[FlatteningPlanner] = None
    filters: FilterGroup = field(default_factory=FilterGroup)
    order: List[OrderClause] = field(default_factory=list)
    paging: Optional[Paging] = None
    meta_filtering: Any = None
    meta_ordering: List[Dict[str, str]] = field(default_factory=list)
    client_foreign_keys: Dict[str, Any] = field(default_factory=dict)


class Operation(ABC):
    """
    Base class for resource operations.

    Args:
        store: Entity store the operation reads and writes
        entity: Entity name or descriptor
        options: Per-call configuration, either key spelling
        **kwargs: Per-call configuration given as keywords
    """

    operation_type: str = None

    def __init__(
        self,
        store: EntityStore,
        entity: Union[str, EntityDescriptor],
        options: Optional[Dict[str, Any]] = None,
        **kwargs
    ):
        self.store = store
        self.registry = store.registry
        name = entity.name if isinstance(entity, EntityDescriptor) else entity
        self.descriptor = self.registry.get(name)

        overrides = dict(options or {})
        overrides.update(kwargs)
        self.config: OperationConfig = build_operation_config(self.descriptor, self.operation_type, overrides)
        self.id_field = self.config.effective_id_mapping(self.descriptor)
        self.aliases = FieldAliasResolver(self.config.aliases)
        self.orchestrator = HookOrchestrator(store)
        logger.debug(f"Mounted {self.label} (context '{self.config.context_name}')")

    @property
    def label(self) -> str:
        return f"{self.descriptor.name}.{self.operation_type}"

    def __call__(self, request: Optional[OperationRequest] = None, **kwargs) -> OperationResponse:
        return self.handle(request if request is not None else OperationRequest(**kwargs))

    def handle(self, request: OperationRequest) -> OperationResponse:
        """Serve one request and return the response to emit."""
        context = OperationContext(
            self.operation_type,
            self.descriptor,
            self.registry,
            self.config,
            request=request,
            id_mapping=self.id_field,
        )
        try:
            self.build(context)
        except Exception as e:
            context.state = PipelineState.FAILED
            log_error(self.label, e)
            return error_response(e)

        response = self.orchestrator.run(context, self.execute, use_transaction=self.config.is_write)
        logger.debug(f"{self.label} -> {response.status}")
        return response

    @abstractmethod
    def build(self, context: OperationContext) -> None:
        """Parse and validate the request into ``context``."""
        pass

    @abstractmethod
    def execute(self, context: OperationContext) -> None:
        """Run the store step and set ``context.payload``."""
        pass

    # --- Shared helpers ---

    def resolve_relations(self) -> RelationMappingSet:
        return RelationMappingResolver(self.registry).resolve(
            self.config.relation_id_mapping,
            self.config.auto_relation_id_mapping,
        )

    def new_plan(self) -> RequestPlan:
        return RequestPlan(id_mapper=IdentifierMapper(self.store, self.descriptor, self.id_field, self.resolve_relations()))

    def plan_includes(self, plan: RequestPlan) -> None:
        includes = build_include_plans(self.config.includes, self.descriptor, self.registry)
        planner = FlatteningPlanner.from_config(self.config.flattening, self.descriptor, self.registry)
        plan.includes = planner.plan(includes)
        plan.flattening = planner

    def root_attributes(self) -> Optional[List[str]]:
        if self.config.attributes is None:
            return None
        attributes = [self.aliases.to_internal(a) for a in self.config.attributes]
        if self.id_field not in attributes:
            attributes.append(self.id_field)
        return attributes

    def shape(self, rows: List[Dict[str, Any]], plan: RequestPlan, transaction=None) -> List[Dict[str, Any]]:
        """Map identifiers, flatten, then apply aliases."""
        rows = plan.id_mapper.map_outbound(rows, plan.includes, transaction)
        if plan.flattening:
            rows = [plan.flattening.apply(row) for row in rows]
        return [self.aliases.map_to_external(row) for row in rows]

    def path_parameter(self, context: OperationContext) -> Any:
        value = context.params.get(self.config.param_name)
        if value is None or value == "":
            raise NotFoundError(entity=self.descriptor.name)
        return value

    def find_existing(self, context: OperationContext, includes: Optional[List[IncludePlan]] = None,
                      attributes: Optional[List[str]] = None) -> Dict[str, Any]:
        """
        Look up the addressed record inside the current scope.

        Raises:
            NotFoundError: If no record matches the id and scoping filters
        """
        plan: RequestPlan = context.plan
        where = FilterGroup("and")
        where.add(plan.id_mapper.id_clause(self.path_parameter(context)))
        where.add(context.where_group())
        record = self.store.find_one(
            self.descriptor.name,
            QueryPlan(where=where, includes=includes or [], attributes=attributes),
            context.transaction,
        )
        if record is None:
            raise NotFoundError(entity=self.descriptor.name, identifier=context.params.get(self.config.param_name))
        return record


# =============================================================================
# READS
# =============================================================================

class CollectionOperation(Operation):
    """Shared behaviour of the list and search operations."""

    def search_request(self, context: OperationContext) -> Dict[str, Any]:
        raise NotImplementedError

    def build(self, context: OperationContext) -> None:
        search = self.search_request(context)
        plan = self.new_plan()
        self.plan_includes(plan)

        parser = ConstraintParser(
            self.descriptor,
            self.registry,
            self.config,
            includes=plan.includes,
            aliases=self.aliases,
            flattening=plan.flattening,
            id_mapper=plan.id_mapper,
        )
        filtering = search.get(SearchKeys.FILTERING) or {}
        ordering = search.get(SearchKeys.ORDERING) or []

        plan.filters = parser.parse_filtering(filtering)
        plan.order = parser.parse_ordering(ordering)
        if plan.order:
            plan.meta_ordering = [
                {SearchKeys.ORDER_BY: requested, SearchKeys.DIRECTION: clause.direction}
                for requested, clause in zip(self._requested_order_fields(ordering), plan.order)
            ]
        else:
            plan.order = parser.default_ordering()
            plan.meta_ordering = [{
                SearchKeys.ORDER_BY: self.config.default_order_by,
                SearchKeys.DIRECTION: self.config.default_order_dir,
            }]
        plan.paging = parser.parse_paging(search.get(SearchKeys.PAGING))
        plan.meta_filtering = filtering
        context.plan = plan

    @staticmethod
    def _requested_order_fields(ordering: Any) -> List[str]:
        items = [ordering] if isinstance(ordering, dict) else ordering
        if isinstance(items, str):
            items = [part.strip() for part in items.split(',') if part.strip()]
        names = []
        for item in items:
            if isinstance(item, dict):
                names.append(item.get(SearchKeys.ORDER_BY, item.get('orderBy')))
            else:
                names.append(item.lstrip('+-'))
        return names

    def execute(self, context: OperationContext) -> None:
        plan: RequestPlan = context.plan
        where = FilterGroup("and")
        where.add(plan.filters)
        where.add(context.where_group())

        result = self.store.query(
            self.descriptor.name,
            QueryPlan(
                where=where,
                order=plan.order,
                paging=plan.paging,
                includes=plan.includes,
                attributes=self.root_attributes(),
            ),
        )

        meta: Dict[str, Any] = {
            "paging": {
                "count": result.count,
                "page": plan.paging.page,
                "size": plan.paging.size,
                "total_pages": max(1, -(-result.count // plan.paging.size)),
            }
        }
        if self.config.meta_show_ordering:
            meta["ordering"] = plan.meta_ordering
        if self.config.meta_show_filters:
            meta["filtering"] = plan.meta_filtering

        context.payload = {
            "success": True,
            "data": self.shape(result.rows, plan),
            "meta": meta,
        }


class ListOperation(CollectionOperation):
    """``GET /resource`` with query-string filtering, ordering and paging."""

    operation_type = OperationTypes.LIST

    def search_request(self, context: OperationContext) -> Dict[str, Any]:
        return list_query_to_search(context.query, self.config)


class SearchOperation(CollectionOperation):
    """``POST /resource/search`` with a structured search body."""

    operation_type = OperationTypes.SEARCH

    def search_request(self, context: OperationContext) -> Dict[str, Any]:
        body = context.body
        if body is None:
            return {}
        if not isinstance(body, dict):
            raise BadRequestError("Search body must be an object")
        return body


class SingleOperation(Operation):
    """``GET /resource/:id``."""

    operation_type = OperationTypes.SINGLE

    def build(self, context: OperationContext) -> None:
        self.path_parameter(context)
        plan = self.new_plan()
        self.plan_includes(plan)
        context.plan = plan

    def execute(self, context: OperationContext) -> None:
        plan: RequestPlan = context.plan
        record = self.find_existing(context, includes=plan.includes, attributes=self.root_attributes())
        context.record = record
        context.payload = {"success": True, "record": self.shape([copy.deepcopy(record)], plan)[0]}


# =============================================================================
# WRITES
# =============================================================================

class WriteOperation(Operation):
    """Payload handling shared by create, update and patch."""

    # Whether a client-supplied ``id`` names the mapped id attribute
    accepts_client_id = False

    def build(self, context: OperationContext) -> None:
        plan = self.new_plan()
        context.plan = plan
        self.address(context)
        context.values = self.inbound_values(context.body, plan)

    def address(self, context: OperationContext) -> None:
        self.path_parameter(context)

    def inbound_values(self, body: Any, plan: RequestPlan) -> Dict[str, Any]:
        """
        Translate and validate a client payload.

        Raises:
            BadRequestError: For a non-object body or a disallowed field
            ValidationFailedError: For values that fail type validation
        """
        if body is None:
            body = {}
        if not isinstance(body, dict):
            raise BadRequestError("Request body must be an object")

        self.check_field_access(body)
        payload = self.aliases.map_to_internal(body)
        if FieldNames.ID in payload and self.id_field != FieldNames.ID:
            client_id = payload.pop(FieldNames.ID)
            if self.accepts_client_id:
                payload.setdefault(self.id_field, client_id)

        result = ValidationResult()
        foreign_keys = plan.id_mapper.relations.foreign_keys_for(self.descriptor)
        for foreign_key in [k for k in payload if k in foreign_keys]:
            value = payload.pop(foreign_key)
            if value is not None:
                related = self.registry.get(foreign_keys[foreign_key].related_entity)
                attribute = related.get_attribute(foreign_keys[foreign_key].external_field)
                try:
                    value = TypeCoercer.coerce(attribute.type, value)
                except CoercionError:
                    result.add_error(
                        f"Invalid value for {foreign_key}: expected {attribute.type.value}",
                        field_name=foreign_key, value=value
                    )
                    continue
            plan.client_foreign_keys[foreign_key] = value

        if self.config.validate_payload:
            values, checked = PayloadValidator(self.descriptor).validate(payload)
            result.merge(checked)
            for warning in result.warnings:
                logger.debug(f"{self.label}: {warning}")
            result.raise_if_invalid()
        else:
            result.raise_if_invalid()
            values = {k: v for k, v in payload.items() if self.descriptor.has_attribute(k)}

        values.update(plan.client_foreign_keys)
        return values

    def check_field_access(self, body: Dict[str, Any]) -> None:
        allowed = self.config.allowed_fields
        blocked = self.config.blocked_fields
        for key in body:
            names = {key, self.aliases.to_internal(key)}
            if blocked and names & set(blocked):
                raise BadRequestError(f"Field '{key}' is not allowed", field=key)
            if allowed is not None and not names & set(allowed):
                raise BadRequestError(f"Field '{key}' is not allowed", field=key)

    def store_values(self, context: OperationContext) -> Dict[str, Any]:
        """
        Final write values: client values plus hook injections.

        External ids on mapped foreign keys are resolved only for values the
        client supplied and no hook replaced.
        """
        plan: RequestPlan = context.plan
        values = dict(context.values)
        client = {
            key: value for key, value in plan.client_foreign_keys.items()
            if key in values and values[key] == value
        }
        if client:
            mapped = plan.id_mapper.map_payload_inbound(dict(client), context.transaction)
            values.update(mapped)
        return values

    def check_required(self, values: Dict[str, Any]) -> None:
        if self.config.validate_payload:
            PayloadValidator(self.descriptor).check_required(values).raise_if_invalid()


class CreateOperation(WriteOperation):
    """``POST /resource``; responds 201 with the new record's id."""

    operation_type = OperationTypes.CREATE
    accepts_client_id = True

    def address(self, context: OperationContext) -> None:
        if isinstance(context.body, list):
            raise BadRequestError(Messages.BULK_CREATE_REJECTED)

    def execute(self, context: OperationContext) -> None:
        values = self.store_values(context)
        self.check_required(values)
        created = self.store.create(self.descriptor.name, values, context.transaction)
        context.record = created
        context.status_code = StatusCodes.CREATED
        context.payload = {"success": True, "id": created.get(self.id_field)}


class UpdateOperation(WriteOperation):
    """
    ``PUT /resource/:id``: full replace.

    Attributes the payload leaves out are reset to their default, or None.
    The primary key and the mapped id attribute are kept.
    """

    operation_type = OperationTypes.UPDATE

    def execute(self, context: OperationContext) -> None:
        existing = self.find_existing(context)
        values = self.store_values(context)
        primary_key = self.descriptor.primary_key

        replacement: Dict[str, Any] = {}
        for name, attribute in self.descriptor.attributes.items():
            if name == primary_key or (attribute.auto_increment and name not in values):
                continue
            if name == self.id_field:
                replacement[name] = existing.get(name)
            elif name in values:
                replacement[name] = values[name]
            else:
                replacement[name] = copy.deepcopy(attribute.default)

        self.check_required(replacement)
        updated = self.store.update(self.descriptor.name, existing[primary_key], replacement, context.transaction)
        if updated is None:
            raise NotFoundError(entity=self.descriptor.name, identifier=existing[primary_key])
        context.record = updated
        context.payload = {"success": True}


class PatchOperation(WriteOperation):
    """``PATCH /resource/:id``: only supplied attributes change."""

    operation_type = OperationTypes.PATCH

    def execute(self, context: OperationContext) -> None:
        existing = self.find_existing(context)
        values = self.store_values(context)
        values.pop(self.descriptor.primary_key, None)

        primary_key = self.descriptor.primary_key
        updated = self.store.update(self.descriptor.name, existing[primary_key], values, context.transaction)
        if updated is None:
            raise NotFoundError(entity=self.descriptor.name, identifier=existing[primary_key])
        context.record = updated
        context.payload = {"success": True}


class DestroyOperation(Operation):
    """``DELETE /resource/:id``."""

    operation_type = OperationTypes.DESTROY

    def build(self, context: OperationContext) -> None:
        self.path_parameter(context)
        context.plan = RequestPlan(
            id_mapper=IdentifierMapper(self.store, self.descriptor, self.id_field, RelationMappingSet(self.registry))
        )

    def execute(self, context: OperationContext) -> None:
        existing = self.find_existing(context)
        primary_key = self.descriptor.primary_key
        affected = self.store.delete(self.descriptor.name, existing[primary_key], context.transaction)
        if not affected:
            raise NotFoundError(entity=self.descriptor.name, identifier=existing[primary_key])
        context.record = existing
        context.payload = {"success": True, "id": self.path_parameter(context)}


OPERATION_CLASSES = {
    OperationTypes.LIST: ListOperation,
    OperationTypes.SEARCH: SearchOperation,
    OperationTypes.SINGLE: SingleOperation,
    OperationTypes.CREATE: CreateOperation,
    OperationTypes.UPDATE: UpdateOperation,
    OperationTypes.PATCH: PatchOperation,
    OperationTypes.DESTROY: DestroyOperation,
}


def mount(store: EntityStore, entity: Union[str, EntityDescriptor], operation: str,
          options: Optional[Dict[str, Any]] = None, **kwargs) -> Operation:
    """
    Mount one operation for an entity.

    Raises:
        ConfigurationError: For an unknown operation type or invalid configuration
    """
    if operation not in OPERATION_CLASSES:
        raise ConfigurationError(f"Unknown operation type '{operation}'", config_key="operation")
    return OPERATION_CLASSES[operation](store, entity, options, **kwargs)


def list_operation(store, entity, options=None, **kwargs) -> ListOperation:
    return ListOperation(store, entity, options, **kwargs)


def search_operation(store, entity, options=None, **kwargs) -> SearchOperation:
    return SearchOperation(store, entity, options, **kwargs)


def single_operation(store, entity, options=None, **kwargs) -> SingleOperation:
    return SingleOperation(store, entity, options, **kwargs)


def create_operation(store, entity, options=None, **kwargs) -> CreateOperation:
    return CreateOperation(store, entity, options, **kwargs)


def update_operation(store, entity, options=None, **kwargs) -> UpdateOperation:
    return UpdateOperation(store, entity, options, **kwargs)


def patch_operation(store, entity, options=None, **kwargs) -> PatchOperation:
    return PatchOperation(store, entity, options, **kwargs)


def destroy_operation(store, entity, options=None, **kwargs) -> DestroyOperation:
    return DestroyOperation(store, entity, options, **kwargs)
