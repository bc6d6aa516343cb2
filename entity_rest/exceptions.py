"""
Custom exception hierarchy for entity-rest.

Every error raised while translating a request, talking to the entity store
or running hooks derives from EntityRestError. Each subclass knows the HTTP
status and the public error kind it maps to, so the hook orchestrator can
turn any of them into a response envelope without leaking internals.
"""

from typing import Dict, Any, Optional, List


class EntityRestError(Exception):
    """
    Base exception for all entity-rest errors.

    Provides rich context and error recovery guidance.
    """

    status_code = 500
    public_error = "Internal Server Error"

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        suggestions: Optional[List[str]] = None,
        error_code: Optional[str] = None
    ):
        """
        Initialize the exception with context and recovery suggestions.

        Args:
            message: Human-readable error message
            context: Additional context about where/why the error occurred
            suggestions: List of potential solutions or next steps
            error_code: Unique error code for programmatic handling
        """
        super().__init__(message)
        self.message = message
        self.context = context or {}
        self.suggestions = suggestions or []
        self.error_code = error_code

    def __str__(self) -> str:
        """Return formatted error message with context."""
        lines = [super().__str__()]

        if self.error_code:
            lines.append(f"Error Code: {self.error_code}")

        if self.context:
            lines.append("Context:")
            for key, value in self.context.items():
                lines.append(f"  {key}: {value}")

        if self.suggestions:
            lines.append("Suggestions:")
            for suggestion in self.suggestions:
                lines.append(f"  • {suggestion}")

        return "\n".join(lines)

    def to_response_body(self) -> Dict[str, Any]:
        """Public JSON body for this error."""
        return {"success": False, "error": self.public_error}


class ConfigurationError(EntityRestError):
    """Raised when operation or resource configuration is invalid."""

    status_code = 400
    public_error = "Bad request"

    def __init__(self, message: str, config_key: str = None, config_file: str = None, **kwargs):
        context = kwargs.get('context', {})
        if config_key:
            context['config_key'] = config_key
        if config_file:
            context['config_file'] = config_file

        suggestions = kwargs.get('suggestions', [])
        if not suggestions:
            suggestions = [
                "Check the operation configuration keys and their types",
                "Verify referenced entities and attributes exist",
                "Run 'entity-rest check' against the resource file"
            ]

        super().__init__(
            message,
            context=context,
            suggestions=suggestions,
            error_code="CONFIG_ERROR"
        )


class BadRequestError(EntityRestError):
    """Raised when request input cannot be translated into store constraints."""

    status_code = 400
    public_error = "Bad request"

    def __init__(self, message: str, field: str = None, value: Any = None, **kwargs):
        context = kwargs.get('context', {})
        if field:
            context['field'] = field
        if value is not None:
            context['value'] = value
        self.field = field

        suggestions = kwargs.get('suggestions', [])
        if not suggestions:
            suggestions = [
                "Check the field against allow/block lists of the operation",
                "Verify the operator is supported for the field",
                "Verify the value matches the attribute type"
            ]

        super().__init__(
            message,
            context=context,
            suggestions=suggestions,
            error_code=kwargs.get('error_code', "BAD_REQUEST")
        )

    def to_response_body(self) -> Dict[str, Any]:
        body = super().to_response_body()
        detail = {"message": self.message}
        if self.field:
            detail = {"field": self.field, "message": self.message}
        body["details"] = [detail]
        return body


class IntegrityViolationError(BadRequestError):
    """Raised by a store when a write would break a uniqueness constraint."""

    def __init__(self, message: str, entity: str = None, field: str = None, **kwargs):
        context = kwargs.get('context', {})
        if entity:
            context['entity'] = entity
        kwargs['context'] = context
        kwargs.setdefault('suggestions', ["Use a value that is not already taken"])
        kwargs['error_code'] = "INTEGRITY_VIOLATION"
        super().__init__(message, field=field, **kwargs)


class NotFoundError(EntityRestError):
    """Raised when a record (or a related record on write) does not exist."""

    status_code = 404
    public_error = "Not Found"

    def __init__(self, message: str = "Not Found", entity: str = None, identifier: Any = None, **kwargs):
        context = kwargs.get('context', {})
        if entity:
            context['entity'] = entity
        if identifier is not None:
            context['identifier'] = identifier

        super().__init__(
            message,
            context=context,
            suggestions=kwargs.get('suggestions', []),
            error_code="NOT_FOUND"
        )


class RelatedRecordNotFoundError(NotFoundError):
    """Raised when an external id on a mapped foreign key has no match."""

    public_error = "Related record not found"

    def __init__(self, foreign_key: str, value: Any, entity: str = None, **kwargs):
        context = kwargs.get('context', {})
        context['foreign_key'] = foreign_key
        kwargs['context'] = context
        super().__init__(
            f"Related record not found for {foreign_key}={value!r}",
            entity=entity,
            identifier=value,
            **kwargs
        )


class ValidationFailedError(EntityRestError):
    """Raised when a write payload fails per-field validation."""

    status_code = 400
    public_error = "Validation failed"

    def __init__(self, message: str, details: List[Dict[str, Any]] = None, **kwargs):
        self.details = details or []
        context = kwargs.get('context', {})
        if self.details:
            context['fields'] = [d.get('field') for d in self.details]

        super().__init__(
            message,
            context=context,
            suggestions=kwargs.get('suggestions', []),
            error_code="VALIDATION_FAILED"
        )

    def to_response_body(self) -> Dict[str, Any]:
        body = super().to_response_body()
        body["details"] = list(self.details)
        return body


class InternalError(EntityRestError):
    """Raised for server-side failures that must not leak detail to clients."""

    def __init__(self, message: str, component: str = None, **kwargs):
        context = kwargs.get('context', {})
        if component:
            context['component'] = component

        super().__init__(
            message,
            context=context,
            suggestions=kwargs.get('suggestions', []),
            error_code="INTERNAL_ERROR"
        )


class RelationMappingError(InternalError):
    """Raised when a relation mapping names an attribute the related entity lacks."""

    def __init__(self, message: str, related_entity: str = None, id_field: str = None, **kwargs):
        context = kwargs.get('context', {})
        if related_entity:
            context['related_entity'] = related_entity
        if id_field:
            context['id_field'] = id_field
        kwargs['context'] = context
        kwargs.setdefault('suggestions', [
            "Check relation_id_mapping id_field against the related entity attributes"
        ])
        super().__init__(message, component="relation_id_mapping", **kwargs)


# Convenience functions for common error patterns
def raise_configuration_error(message: str, config_key: str = None, **kwargs):
    """Raise a configuration error with helpful context."""
    raise ConfigurationError(message, config_key=config_key, **kwargs)


def raise_bad_request(message: str, field: str = None, value: Any = None, **kwargs):
    """Raise a bad request error with helpful context."""
    raise BadRequestError(message, field=field, value=value, **kwargs)


def raise_not_found(entity: str = None, identifier: Any = None, **kwargs):
    """Raise a not found error for a missing record."""
    raise NotFoundError("Not Found", entity=entity, identifier=identifier, **kwargs)
