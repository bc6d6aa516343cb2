"""
Validation utilities for entity-rest.

This module coerces request values to the declared attribute types (for
filters and for write payloads) and validates write payloads before they
reach the store.
"""

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Tuple

from .domain.models import AttributeType, EntityDescriptor
from .exceptions import ValidationFailedError
from .constants import Messages


_INTEGER_PATTERN = re.compile(r"^[+-]?\d+$")
_TRUE_VALUES = ("true", "1", "yes")
_FALSE_VALUES = ("false", "0", "no")


@dataclass
class ValidationResult:
    """Result of a validation operation."""

    is_valid: bool = True
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    details: List[Dict[str, Any]] = field(default_factory=list)
    rejected: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        """Ensure consistency."""
        if self.errors and self.is_valid:
            self.is_valid = False

    def add_error(self, error: str, field_name: Optional[str] = None, value: Any = None) -> None:
        """Add an error, optionally tied to a payload field."""
        self.errors.append(error)
        if field_name is not None:
            self.details.append({"field": field_name, "message": error})
            if value is not None:
                # Kept for logs only, never echoed back to the client
                self.rejected[field_name] = value
        self.is_valid = False

    def add_warning(self, warning: str) -> None:
        """Add a warning."""
        self.warnings.append(warning)

    def merge(self, other: "ValidationResult") -> None:
        """Fold another result into this one."""
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)
        self.details.extend(other.details)
        self.rejected.update(other.rejected)
        self.is_valid = self.is_valid and other.is_valid

    def raise_if_invalid(self) -> None:
        """Raise ValidationFailedError if invalid."""
        if not self.is_valid:
            context = {}
            if self.warnings:
                context["warnings"] = self.warnings
            if self.rejected:
                context["rejected_values"] = dict(self.rejected)
            raise ValidationFailedError(
                f"{Messages.VALIDATION_FAILED}: {'; '.join(self.errors)}",
                details=self.details,
                context=context
            )


class CoercionError(ValueError):
    """A value cannot be represented as the attribute's type."""


class TypeCoercer:
    """Converts raw request values to attribute types."""

    @staticmethod
    def coerce(attribute_type: AttributeType, value: Any, for_write: bool = False) -> Any:
        """
        Convert ``value`` to ``attribute_type``.

        Filter values are fully converted, temporal ones to date/datetime
        objects. Write values of temporal attributes are only checked and
        kept as supplied so payloads stay JSON-serializable.

        Raises:
            CoercionError: If the value is not valid for the type
        """
        if value is None:
            return None

        if attribute_type == AttributeType.INTEGER:
            return TypeCoercer._to_integer(value)
        if attribute_type == AttributeType.FLOAT:
            return TypeCoercer._to_float(value)
        if attribute_type == AttributeType.DECIMAL:
            return TypeCoercer._to_decimal(value)
        if attribute_type == AttributeType.BOOLEAN:
            return TypeCoercer._to_boolean(value)
        if attribute_type == AttributeType.DATE:
            parsed = TypeCoercer._to_date(value)
            return value if for_write else parsed
        if attribute_type == AttributeType.DATETIME:
            parsed = TypeCoercer._to_datetime(value)
            return value if for_write else parsed
        if attribute_type == AttributeType.JSON:
            return value
        # String types accept anything scalar
        if isinstance(value, (dict, list)):
            raise CoercionError(f"Expected a string, got {type(value).__name__}")
        return value if isinstance(value, str) else str(value)

    @staticmethod
    def _to_integer(value: Any) -> int:
        if isinstance(value, bool):
            raise CoercionError("Expected an integer, got a boolean")
        if isinstance(value, int):
            return value
        if isinstance(value, float) and value.is_integer():
            return int(value)
        if isinstance(value, str) and _INTEGER_PATTERN.match(value.strip()):
            return int(value.strip())
        raise CoercionError(f"Expected an integer, got {value!r}")

    @staticmethod
    def _to_float(value: Any) -> float:
        if isinstance(value, bool):
            raise CoercionError("Expected a number, got a boolean")
        try:
            return float(value)
        except (TypeError, ValueError):
            raise CoercionError(f"Expected a number, got {value!r}") from None

    @staticmethod
    def _to_decimal(value: Any) -> Decimal:
        if isinstance(value, bool):
            raise CoercionError("Expected a number, got a boolean")
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise CoercionError(f"Expected a number, got {value!r}") from None
        if not result.is_finite():
            raise CoercionError(f"Expected a finite number, got {value!r}")
        return result

    @staticmethod
    def _to_boolean(value: Any) -> bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, int) and value in (0, 1):
            return bool(value)
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in _TRUE_VALUES:
                return True
            if lowered in _FALSE_VALUES:
                return False
        raise CoercionError(f"Expected a boolean, got {value!r}")

    @staticmethod
    def _to_date(value: Any) -> date:
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        if isinstance(value, str):
            text = value.strip()
            try:
                return date.fromisoformat(text)
            except ValueError:
                pass
            try:
                return TypeCoercer._to_datetime(text).date()
            except CoercionError:
                pass
        raise CoercionError(f"Expected a date, got {value!r}")

    @staticmethod
    def _to_datetime(value: Any) -> datetime:
        if isinstance(value, datetime):
            return value
        if isinstance(value, date):
            return datetime(value.year, value.month, value.day)
        if isinstance(value, str):
            text = value.strip()
            if text.endswith('Z'):
                text = text[:-1] + '+00:00'
            try:
                return datetime.fromisoformat(text)
            except ValueError:
                pass
        raise CoercionError(f"Expected a date-time, got {value!r}")


class PayloadValidator:
    """Validates write payloads against an entity's attribute schema."""

    def __init__(self, descriptor: EntityDescriptor):
        self.descriptor = descriptor

    def validate(self, payload: Dict[str, Any]) -> Tuple[Dict[str, Any], ValidationResult]:
        """
        Validate and coerce the attributes a payload supplies.

        Unknown keys are dropped with a warning. Missing attributes are not
        checked here because hooks may still inject them; see check_required.

        Returns:
            (coerced payload, validation result)
        """
        result = ValidationResult()
        coerced: Dict[str, Any] = {}

        for name, value in payload.items():
            attribute = self.descriptor.get_attribute(name)
            if attribute is None:
                result.add_warning(f"Ignoring unknown field '{name}'")
                continue
            if value is None:
                if not attribute.nullable and not attribute.auto_increment:
                    result.add_error(f"{name} cannot be null", field_name=name, value=value)
                coerced[name] = None
                continue
            try:
                coerced[name] = TypeCoercer.coerce(attribute.type, value, for_write=True)
            except CoercionError:
                result.add_error(f"Invalid value for {name}: expected {attribute.type.value}", field_name=name, value=value)

        return coerced, result

    def check_required(self, values: Dict[str, Any]) -> ValidationResult:
        """Every non-nullable attribute without a default must have a value."""
        result = ValidationResult()
        for name, attribute in self.descriptor.attributes.items():
            if attribute.nullable or attribute.auto_increment or attribute.default is not None:
                continue
            if values.get(name) is None:
                result.add_error(f"{name} is required", field_name=name, value=values.get(name))
        return result
