# File: tests/test_context.py

from unittest import TestCase
from unittest.mock import patch

import pytest

from entity_rest.config import build_operation_config
from entity_rest.context import OperationContext, PipelineState
from entity_rest.operations import OperationRequest

from sample_entities import build_item_store


class TestOperationContext(TestCase):
    """Test cases for the context hooks receive."""

    def setUp(self):
        store = build_item_store(seed=False)
        self.descriptor = store.describe("Item")
        config = build_operation_config(self.descriptor, "list", {"where": {"status": "active"}, "defaultPageSize": 20})
        request = OperationRequest(query={"name": "Widget"}, params={"id": "ext-1"}, state={"user": "ada"})
        self.context = OperationContext("list", self.descriptor, store.registry, config, request=request)

    def test_initial_state(self):
        context = self.context

        assert context.state == PipelineState.BUILD_CONTEXT
        assert context.model is self.descriptor
        assert "Category" in context.models
        assert context.transaction is None
        assert context.pre_result is None
        assert context.id_mapping == "id"
        assert context.query == {"name": "Widget"}
        assert context.params == {"id": "ext-1"}
        assert context.state_data == {"user": "ada"}
        assert context.body is None

    def test_configuration_keys_in_both_spellings(self):
        context = self.context

        assert context.default_page_size == 20
        assert context.defaultPageSize == 20
        assert context.allowFilteringOn is None
        assert context.apializeContext == "default"
        assert context.preResult is None
        with pytest.raises(AttributeError):
            context.not_a_key

    def test_where_helpers(self):
        context = self.context

        assert context.where == {"status": "active"}
        context.apply_where({"status": "archived", "category_id": 1})
        assert context.where == {"status": "archived", "category_id": 1}

        context.apply_where_if_not_exists({"status": "active", "price": {"gte": 5}})
        assert context.where == {"status": "archived", "category_id": 1, "price": {"gte": 5}}

        context.remove_where("price")
        context.remove_where(["category_id", "missing"])
        assert context.where == {"status": "archived"}

        context.apply_multiple_where([{"name": "Widget"}, {"name": "Gadget"}])
        assert context.where == {"status": "archived", "name": "Gadget"}

        context.replace_where({"category_id": 2})
        assert context.where == {"category_id": 2}

    def test_where_property_is_a_copy(self):
        where = self.context.where
        where["status"] = "archived"
        assert self.context.where == {"status": "active"}

    def test_where_group_matches_exactly(self):
        self.context.apply_where({"category_id": [1, 2]})
        clauses = [(c.field, c.operator, c.value) for c in self.context.where_group().iter_clauses()]
        assert clauses == [("status", "eq", "active"), ("category_id", "in", [1, 2])]

    def test_value_helpers(self):
        context = self.context

        context.set_value("status", "archived")
        context.set_multiple_values({"name": "Widget", "price": 5})
        assert context.values == {"status": "archived", "name": "Widget", "price": 5}

        context.remove_value("price", "missing")
        assert context.values == {"status": "archived", "name": "Widget"}

        with pytest.raises(TypeError):
            context.set_value(None, 1)
        with pytest.raises(TypeError):
            context.set_multiple_values([("name", "x")])

    def test_cancel_operation(self):
        with patch('entity_rest.context.logger') as mock_logger:
            body = self.context.cancel_operation()

        assert body == {"success": False, "message": "Operation cancelled"}
        assert self.context.cancelled
        assert self.context.cancel_status_code == 400
        assert self.context.cancel_body == body
        mock_logger.warning.assert_called_once()

    def test_cancel_with_custom_response(self):
        self.context.cancel_operation(403, {"success": False, "error": "Forbidden"})

        assert self.context.cancel_status_code == 403
        assert self.context.cancel_body == {"success": False, "error": "Forbidden"}

    def test_cancel_with_null_status_uses_default(self):
        self.context.cancel_operation(None, {"custom": "response"})

        assert self.context.cancel_status_code == 400
        assert self.context.cancel_body == {"custom": "response"}
