# File: tests/test_domain.py
# Contains tests for entity descriptors, naming helpers, the registry and
# relation-mapping resolution.

from unittest import TestCase
from unittest.mock import patch

import pytest

from entity_rest.domain.models import (
    AssociationInfo,
    AttributeInfo,
    AttributeType,
    EntityDescriptor,
    FilterGroup,
    FlatteningSpec,
    OrderClause,
)
from entity_rest.domain.naming import (
    foreign_key_candidates,
    singularize,
    to_camel_case,
    to_snake_case,
)
from entity_rest.domain.registry import EntityRegistry
from entity_rest.domain.relationships import RelationMappingResolver
from entity_rest.exceptions import ConfigurationError, RelationMappingError

from sample_entities import music_entities


def review_entity():
    """An entity referencing artists and albums by naming convention only."""
    return EntityDescriptor(
        name="Review",
        attributes=[
            AttributeInfo("artist_id", AttributeType.INTEGER),
            AttributeInfo("albumKey", AttributeType.INTEGER),
            AttributeInfo("body", AttributeType.TEXT),
        ],
    )


class TestDescriptors(TestCase):
    """Test cases for attribute, association and entity descriptors."""

    def test_type_inference(self):
        assert AttributeType.infer("varchar(255)") == AttributeType.STRING
        assert AttributeType.infer("bigint") == AttributeType.INTEGER
        assert AttributeType.infer("numeric(10,2)") == AttributeType.DECIMAL
        assert AttributeType.infer("timestamp with time zone") == AttributeType.DATETIME
        assert AttributeType.infer("date") == AttributeType.DATE
        assert AttributeType.infer("Boolean") == AttributeType.BOOLEAN

    def test_implicit_primary_key(self):
        descriptor = EntityDescriptor("Tag", [AttributeInfo("label")])

        assert descriptor.primary_key == "id"
        assert descriptor.attribute_names == ["id", "label"]
        assert descriptor.attributes["id"].auto_increment

    def test_declared_primary_key(self):
        descriptor = EntityDescriptor("Country", [AttributeInfo("code", "char(2)", primary_key=True)])

        assert descriptor.primary_key == "code"
        assert descriptor.attributes["code"].nullable is False
        assert "id" not in descriptor.attributes

    def test_external_id_must_be_an_attribute(self):
        with pytest.raises(ValueError):
            EntityDescriptor("Tag", [AttributeInfo("label")], external_id="slug")

    def test_many_to_many_needs_through(self):
        with pytest.raises(ValueError):
            AssociationInfo("tags", "Tag", "belongs_to_many", foreign_key="item_id")

    def test_filter_group_from_mapping(self):
        group = FilterGroup.from_mapping({"status": "active", "price": {"gte": 10}, "category_id": [1, 2]})
        assert [(c.field, c.operator, c.value) for c in group.iter_clauses()] == [
            ("status", "eq", "active"),
            ("price", "gte", 10),
            ("category_id", "in", [1, 2]),
        ]

    def test_order_clause_direction(self):
        assert OrderClause("name", "desc").descending
        with pytest.raises(ValueError):
            OrderClause("name", "up")

    def test_flattening_spec_normalizes_attributes(self):
        spec = FlatteningSpec("Artist", "artist", ["name", ["country", "artist_country"]])
        assert spec.projected_fields == [("name", "name"), ("country", "artist_country")]
        assert spec.source_for("artist_country") == "country"
        with pytest.raises(ValueError):
            FlatteningSpec("Artist", "artist", [["a", "b", "c"]])


class TestNaming(TestCase):

    def test_case_conversion(self):
        assert to_snake_case("defaultPageSize") == "default_page_size"
        assert to_snake_case("XMLHttpRequest") == "xml_http_request"
        assert to_snake_case("already_snake") == "already_snake"
        assert to_camel_case("allow_filtering_on") == "allowFilteringOn"

    def test_singularize(self):
        assert singularize("categories") == "category"
        assert singularize("album") == "album"

    def test_foreign_key_candidates(self):
        assert foreign_key_candidates("Artist", "artists") == ["artist_id", "artistId", "artist_key", "artistKey"]

        candidates = foreign_key_candidates("RecordLabel")
        assert "record_label_id" in candidates
        assert "recordLabelId" in candidates


class TestEntityRegistry(TestCase):

    def setUp(self):
        self.registry = EntityRegistry(music_entities())

    def test_lookup(self):
        assert self.registry.names == ["Artist", "Album", "Song"]
        assert self.registry["Song"].name == "Song"
        assert self.registry.resolve("songs").name == "Song"
        assert self.registry.resolve("Unknown") is None
        assert "Album" in self.registry
        assert len(self.registry) == 3

    def test_unknown_entity(self):
        with pytest.raises(ConfigurationError):
            self.registry.get("Playlist")

    def test_duplicate_registration(self):
        with pytest.raises(ConfigurationError):
            self.registry.register(EntityDescriptor("Song"))


class TestRelationMappingResolver(TestCase):
    """Test cases for explicit and automatic relation id mapping."""

    def setUp(self):
        self.registry = EntityRegistry(music_entities() + [review_entity()])
        self.resolver = RelationMappingResolver(self.registry)

    def test_auto_maps_entities_with_external_ids(self):
        relations = self.resolver.resolve(None, auto=True)
        assert relations.external_fields == {
            "Artist": "external_id",
            "Album": "external_id",
            "Song": "external_id",
        }

    def test_association_strategy(self):
        relations = self.resolver.resolve(None)
        mappings = relations.foreign_keys_for(self.registry["Song"])

        assert sorted(mappings) == ["album_id", "artist_id"]
        assert mappings["album_id"].related_entity == "Album"
        assert mappings["album_id"].association == "album"
        assert mappings["album_id"].source == "association"

    def test_naming_strategy(self):
        relations = self.resolver.resolve(None)
        mappings = relations.foreign_keys_for(self.registry["Review"])

        assert mappings["artist_id"].related_entity == "Artist"
        assert mappings["artist_id"].source == "naming"
        assert mappings["albumKey"].related_entity == "Album"

    def test_explicit_entries_replace_discovery(self):
        relations = self.resolver.resolve([{"model": "Artist", "id_field": "name"}])

        assert relations.external_fields == {"Artist": "name"}
        assert list(relations.foreign_keys_for(self.registry["Song"])) == ["artist_id"]

    def test_explicit_entry_with_missing_attribute(self):
        with pytest.raises(RelationMappingError):
            self.resolver.resolve([{"entity": "Artist", "idField": "slug"}])

    def test_unknown_explicit_entity_is_skipped(self):
        with patch('entity_rest.domain.relationships.logger') as mock_logger:
            relations = self.resolver.resolve([{"model": "Label", "id_field": "code"}])

        assert relations.is_empty
        mock_logger.warning.assert_called_once()

    def test_auto_mapping_disabled(self):
        relations = self.resolver.resolve(None, auto=False)
        assert relations.is_empty
        assert relations.foreign_keys_for(self.registry["Song"]) == {}
