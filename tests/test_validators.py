# File: tests/test_validators.py
# Contains tests for value coercion and write payload validation.

from datetime import date, datetime, timezone
from decimal import Decimal
from unittest import TestCase

import pytest

from entity_rest.domain.models import AttributeType
from entity_rest.exceptions import ValidationFailedError
from entity_rest.validators import (
    CoercionError,
    PayloadValidator,
    TypeCoercer,
    ValidationResult,
)

from sample_entities import item_entities


class TestTypeCoercer(TestCase):
    """Test cases for TypeCoercer.coerce."""

    def test_integers(self):
        assert TypeCoercer.coerce(AttributeType.INTEGER, "42") == 42
        assert TypeCoercer.coerce(AttributeType.INTEGER, " -7 ") == -7
        assert TypeCoercer.coerce(AttributeType.INTEGER, 3.0) == 3
        for bad in ("4.2", "abc", True, 2.5):
            with pytest.raises(CoercionError):
                TypeCoercer.coerce(AttributeType.INTEGER, bad)

    def test_numbers(self):
        assert TypeCoercer.coerce(AttributeType.FLOAT, "2.5") == 2.5
        assert TypeCoercer.coerce(AttributeType.DECIMAL, "9.99") == Decimal("9.99")
        assert TypeCoercer.coerce(AttributeType.DECIMAL, 10) == Decimal("10")
        with pytest.raises(CoercionError):
            TypeCoercer.coerce(AttributeType.DECIMAL, "nan")
        with pytest.raises(CoercionError):
            TypeCoercer.coerce(AttributeType.FLOAT, "ten")

    def test_booleans(self):
        assert TypeCoercer.coerce(AttributeType.BOOLEAN, "yes") is True
        assert TypeCoercer.coerce(AttributeType.BOOLEAN, "FALSE") is False
        assert TypeCoercer.coerce(AttributeType.BOOLEAN, 1) is True
        with pytest.raises(CoercionError):
            TypeCoercer.coerce(AttributeType.BOOLEAN, "maybe")

    def test_temporal_filter_values_are_parsed(self):
        assert TypeCoercer.coerce(AttributeType.DATE, "2024-01-05") == date(2024, 1, 5)
        assert TypeCoercer.coerce(AttributeType.DATE, "2024-01-05T10:30:00") == date(2024, 1, 5)
        assert TypeCoercer.coerce(AttributeType.DATETIME, "2024-01-05T10:30:00Z") == datetime(
            2024, 1, 5, 10, 30, tzinfo=timezone.utc
        )

    def test_temporal_write_values_are_kept(self):
        assert TypeCoercer.coerce(AttributeType.DATE, "2024-01-05", for_write=True) == "2024-01-05"
        with pytest.raises(CoercionError):
            TypeCoercer.coerce(AttributeType.DATE, "last tuesday", for_write=True)

    def test_strings(self):
        assert TypeCoercer.coerce(AttributeType.STRING, 5) == "5"
        assert TypeCoercer.coerce(AttributeType.JSON, {"a": 1}) == {"a": 1}
        assert TypeCoercer.coerce(AttributeType.STRING, None) is None
        with pytest.raises(CoercionError):
            TypeCoercer.coerce(AttributeType.TEXT, ["a"])


class TestValidationResult(TestCase):

    def test_errors_make_result_invalid(self):
        assert ValidationResult(errors=["broken"]).is_valid is False

    def test_merge(self):
        result = ValidationResult()
        other = ValidationResult()
        other.add_error("price is invalid", field_name="price", value="abc")
        other.add_warning("Ignoring unknown field 'colour'")

        result.merge(other)

        assert not result.is_valid
        assert result.errors == ["price is invalid"]
        assert result.warnings == ["Ignoring unknown field 'colour'"]
        assert result.details == [{"field": "price", "message": "price is invalid"}]
        assert result.rejected == {"price": "abc"}

    def test_raise_if_invalid(self):
        ValidationResult().raise_if_invalid()

        result = ValidationResult()
        result.add_error("name is required", field_name="name")
        with pytest.raises(ValidationFailedError) as exc_info:
            result.raise_if_invalid()
        assert exc_info.value.details == [{"field": "name", "message": "name is required"}]


class TestPayloadValidator(TestCase):
    """Test cases for PayloadValidator against the Item entity."""

    def setUp(self):
        self.validator = PayloadValidator(item_entities()[1])

    def test_valid_payload_is_coerced(self):
        values, result = self.validator.validate({"name": "Widget", "price": "9.99", "category_id": "2"})

        assert result.is_valid
        assert values == {"name": "Widget", "price": Decimal("9.99"), "category_id": 2}

    def test_unknown_fields_are_dropped_with_warning(self):
        values, result = self.validator.validate({"name": "Widget", "colour": "red"})

        assert result.is_valid
        assert values == {"name": "Widget"}
        assert result.warnings == ["Ignoring unknown field 'colour'"]

    def test_invalid_and_null_values(self):
        values, result = self.validator.validate({"name": None, "price": "cheap"})

        assert not result.is_valid
        assert [d["field"] for d in result.details] == ["name", "price"]
        assert result.errors[0] == "name cannot be null"
        assert "price" not in values

    def test_rejected_values_stay_out_of_details(self):
        _, result = self.validator.validate({"price": "cheap"})

        assert result.details == [{"field": "price", "message": "Invalid value for price: expected decimal"}]
        with pytest.raises(ValidationFailedError) as exc_info:
            result.raise_if_invalid()
        assert exc_info.value.context["rejected_values"] == {"price": "cheap"}
        assert "cheap" not in str(exc_info.value.to_response_body())

    def test_nullable_attribute_accepts_none(self):
        values, result = self.validator.validate({"price": None})
        assert result.is_valid
        assert values == {"price": None}

    def test_check_required(self):
        result = self.validator.check_required({"price": Decimal("1")})

        # id is generated and status has a default
        assert result.errors == ["external_id is required", "name is required"]
        assert self.validator.check_required({"external_id": "ext-9", "name": "Thing"}).is_valid
