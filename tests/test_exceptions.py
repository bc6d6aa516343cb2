# File: tests/test_exceptions.py
# Contains tests for the exception hierarchy and its response bodies.

from unittest import TestCase

import pytest

from entity_rest.exceptions import (
    BadRequestError,
    ConfigurationError,
    EntityRestError,
    IntegrityViolationError,
    InternalError,
    NotFoundError,
    RelatedRecordNotFoundError,
    RelationMappingError,
    ValidationFailedError,
    raise_bad_request,
    raise_configuration_error,
    raise_not_found,
)


class TestEntityRestError(TestCase):
    """Test cases for the base exception."""

    def test_str_renders_code_context_and_suggestions(self):
        error = EntityRestError(
            "Something broke",
            context={"entity": "Item"},
            suggestions=["Try again"],
            error_code="BROKEN",
        )
        text = str(error)

        assert text.startswith("Something broke")
        assert "Error Code: BROKEN" in text
        assert "  entity: Item" in text
        assert "• Try again" in text

    def test_default_body_hides_message(self):
        error = EntityRestError("secret detail")
        assert error.status_code == 500
        assert error.to_response_body() == {"success": False, "error": "Internal Server Error"}


class TestErrorKinds(TestCase):
    """Each error maps to a status and a public error kind."""

    def test_configuration_error(self):
        error = ConfigurationError("bad key", config_key="pre", config_file="resources.yaml")
        assert error.status_code == 400
        assert error.context == {"config_key": "pre", "config_file": "resources.yaml"}
        assert error.error_code == "CONFIG_ERROR"
        assert error.suggestions

    def test_bad_request_body_with_field(self):
        error = BadRequestError("Filtering on 'price' is not allowed", field="price")
        assert error.to_response_body() == {
            "success": False,
            "error": "Bad request",
            "details": [{"field": "price", "message": "Filtering on 'price' is not allowed"}],
        }

    def test_bad_request_body_without_field(self):
        body = BadRequestError("Cannot insert multiple records.").to_response_body()
        assert body["error"] == "Bad request"
        assert body["details"] == [{"message": "Cannot insert multiple records."}]

    def test_integrity_violation_is_bad_request(self):
        error = IntegrityViolationError("Item.external_id must be unique", entity="Item", field="external_id")
        assert isinstance(error, BadRequestError)
        assert error.status_code == 400
        assert error.error_code == "INTEGRITY_VIOLATION"
        assert error.context["entity"] == "Item"

    def test_not_found(self):
        error = NotFoundError(entity="Item", identifier="ext-9")
        assert error.status_code == 404
        assert error.to_response_body() == {"success": False, "error": "Not Found"}
        assert error.context == {"entity": "Item", "identifier": "ext-9"}

    def test_related_record_not_found(self):
        error = RelatedRecordNotFoundError("album_id", "album-9", entity="Album")
        assert isinstance(error, NotFoundError)
        assert error.status_code == 404
        assert error.to_response_body()["error"] == "Related record not found"
        assert error.context["foreign_key"] == "album_id"
        assert "album-9" in error.message

    def test_validation_failed_lists_details(self):
        details = [{"field": "name", "message": "name is required"}]
        error = ValidationFailedError("Validation failed: name is required", details=details)
        assert error.status_code == 400
        assert error.context["fields"] == ["name"]
        assert error.to_response_body() == {"success": False, "error": "Validation failed", "details": details}

    def test_internal_errors_do_not_leak(self):
        error = RelationMappingError("id_field 'slug' missing", related_entity="Artist", id_field="slug")
        assert isinstance(error, InternalError)
        assert error.status_code == 500
        assert error.context["component"] == "relation_id_mapping"
        assert error.to_response_body() == {"success": False, "error": "Internal Server Error"}


class TestRaiseHelpers(TestCase):

    def test_helpers_raise_matching_errors(self):
        with pytest.raises(ConfigurationError):
            raise_configuration_error("bad", config_key="where")
        with pytest.raises(BadRequestError) as exc_info:
            raise_bad_request("bad value", field="price", value="abc")
        assert exc_info.value.context == {"field": "price", "value": "abc"}
        with pytest.raises(NotFoundError):
            raise_not_found(entity="Item", identifier=1)
