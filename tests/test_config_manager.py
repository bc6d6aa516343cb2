# File: tests/test_config_manager.py
# Contains tests for resource file loading and mounting.

import copy
from decimal import Decimal
from unittest import TestCase

import pytest
import yaml

from entity_rest.config_manager import (
    ConfigManager,
    DictConfigLoader,
    ResourceConfig,
    YamlConfigLoader,
)
from entity_rest.domain.models import AssociationType, AttributeType
from entity_rest.exceptions import ConfigurationError, ValidationFailedError

from sample_entities import ITEM_RESOURCES


def resources(**changes):
    data = copy.deepcopy(ITEM_RESOURCES)
    data.update(changes)
    return data


class TestResourceConfig(TestCase):
    """Test cases for ResourceConfig.from_dict and friends."""

    def test_descriptors(self):
        config = ResourceConfig.from_dict(resources())
        item = next(e for e in config.entities if e.name == "Item")

        assert [e.name for e in config.entities] == ["Category", "Item"]
        assert item.primary_key == "id"
        assert item.attributes["price"].type == AttributeType.DECIMAL
        assert item.attributes["external_id"].unique
        assert item.associations["category"].association_type == AssociationType.BELONGS_TO
        assert item.config == {"default": {"default_page_size": 50}}
        assert config.operations["Item"]["create"] == {}

    def test_store_is_seeded_with_coerced_rows(self):
        store = ResourceConfig.from_dict(resources()).build_store()
        assert store.rows("Item")[0]["price"] == Decimal("9.99")
        assert store.rows("Category") == [{"id": 1, "name": "Tools"}]

    def test_mount_every_operation(self):
        mounted = ResourceConfig.from_dict(resources()).mount()

        assert sorted(mounted) == [("Item", "create"), ("Item", "list"), ("Item", "single")]
        body = mounted[("Item", "list")]().body
        assert body["data"][0]["id"] == "ext-1"
        assert body["meta"]["paging"]["size"] == 50

    def test_schema_errors(self):
        with pytest.raises(ConfigurationError):
            ResourceConfig.from_dict(resources(routes={}))
        with pytest.raises(ConfigurationError):
            ResourceConfig.from_dict(resources(operations={"Item": {"upsert": {}}}))

        data = resources()
        data["entities"]["Item"]["associations"]["category"]["type"] = "owns"
        with pytest.raises(ConfigurationError):
            ResourceConfig.from_dict(data)

    def test_descriptor_errors_are_wrapped(self):
        data = resources()
        data["entities"]["Item"]["external_id"] = "slug"
        with pytest.raises(ConfigurationError) as exc_info:
            ResourceConfig.from_dict(data)
        assert exc_info.value.context["entity"] == "Item"

        data = resources()
        data["entities"]["Item"]["associations"]["tags"] = {"target": "Category", "type": "belongs_to_many"}
        with pytest.raises(ConfigurationError):
            ResourceConfig.from_dict(data)

    def test_dangling_references(self):
        data = resources()
        data["entities"]["Item"]["associations"]["maker"] = {"target": "Maker", "foreign_key": "maker_id"}
        with pytest.raises(ConfigurationError):
            ResourceConfig.from_dict(data).build_registry()

        with pytest.raises(ConfigurationError):
            ResourceConfig.from_dict(resources(seed={"Maker": []})).build_registry()

    def test_invalid_seed_rows(self):
        data = resources()
        data["seed"]["Item"][0]["price"] = "cheap"
        with pytest.raises(ValidationFailedError):
            ResourceConfig.from_dict(data).build_store()


class TestLoaders(TestCase):

    def test_can_handle(self):
        assert YamlConfigLoader().can_handle("resources.yaml")
        assert YamlConfigLoader().can_handle("resources.YML")
        assert not YamlConfigLoader().can_handle({"entities": {}})
        assert DictConfigLoader().can_handle({"entities": {}})
        assert not DictConfigLoader().can_handle("resources.yaml")

    def test_wrong_source_type(self):
        with pytest.raises(ConfigurationError):
            YamlConfigLoader().load({"entities": {}})
        with pytest.raises(ConfigurationError):
            DictConfigLoader().load("resources.yaml")


def test_yaml_file_round_trip(tmp_path):
    path = tmp_path / "resources.yaml"
    path.write_text(yaml.safe_dump(ITEM_RESOURCES), encoding="utf-8")

    manager = ConfigManager()
    assert not manager.has_config()

    config = manager.load_config(str(path))

    assert manager.get_config() is config
    assert config.source == str(path)
    assert len(config.entities) == 2


def test_yaml_errors(tmp_path):
    manager = ConfigManager()

    with pytest.raises(ConfigurationError, match="not found"):
        manager.load_config(str(tmp_path / "missing.yaml"))

    broken = tmp_path / "broken.yaml"
    broken.write_text("entities: [unclosed", encoding="utf-8")
    with pytest.raises(ConfigurationError, match="Invalid YAML"):
        manager.load_config(str(broken))

    listing = tmp_path / "list.yaml"
    listing.write_text("- Item\n- Category\n", encoding="utf-8")
    with pytest.raises(ConfigurationError, match="dictionary"):
        manager.load_config(str(listing))

    with pytest.raises(ConfigurationError, match="No loader"):
        manager.load_config(str(tmp_path / "resources.txt"))


def test_dict_source_checks_references():
    data = resources(operations={"Maker": {"list": {}}})
    with pytest.raises(ConfigurationError):
        ConfigManager().load_config(data)
