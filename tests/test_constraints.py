# File: tests/test_constraints.py
# Contains tests for translating request filters, ordering and paging.

from decimal import Decimal
from unittest import TestCase

import pytest

from entity_rest.aliases import FieldAliasResolver
from entity_rest.config import build_operation_config
from entity_rest.constraints import (
    ConstraintParser,
    list_query_to_search,
    parse_direction,
    split_values,
)
from entity_rest.domain.models import IncludePlan, Paging, ThroughOptions
from entity_rest.domain.relationships import RelationMappingResolver, RelationMappingSet
from entity_rest.exceptions import BadRequestError
from entity_rest.flattening import FlatteningPlanner
from entity_rest.id_mapping import IdentifierMapper
from entity_rest.store import matches

from sample_entities import build_item_store, build_music_store, build_school_store


class TestListQueryToSearch(TestCase):
    """Test cases for converting list query strings."""

    def setUp(self):
        self.descriptor = build_item_store(seed=False).describe("Item")

    def config(self, **overrides):
        return build_operation_config(self.descriptor, "list", overrides)

    def test_filters_ordering_and_paging(self):
        search = list_query_to_search({
            "name": "Widget",
            "price:gte": "10",
            "api:order_by": "-price,name",
            "api:page": "2",
            "api:cursor": "ignored",
        }, self.config())

        assert search["filtering"] == {"name": {"eq": "Widget"}, "price": {"gte": "10"}}
        assert search["ordering"] == [
            {"order_by": "price", "direction": "DESC"},
            {"order_by": "name", "direction": "ASC"},
        ]
        assert search["paging"] == {"page": "2", "size": None}

    def test_global_direction(self):
        search = list_query_to_search({"api:order_by": "name,+price", "api:order_dir": "desc"}, self.config())
        assert [o["direction"] for o in search["ordering"]] == ["DESC", "ASC"]

    def test_repeated_keys(self):
        search = list_query_to_search({"status": ["active", "archived"], "id:in": ["1,2", "3"]}, self.config())
        assert search["filtering"]["status"] == {"eq": "archived"}
        assert search["filtering"]["id"] == {"in": ["1", "2", "3"]}

    def test_disabled_filtering_and_ordering(self):
        config = self.config(allow_filtering=False, allow_ordering=False)
        search = list_query_to_search({"name": "Widget", "api:order_by": "name"}, config)

        assert search["filtering"] == {}
        assert search["ordering"] == []

    def test_invalid_direction(self):
        with pytest.raises(BadRequestError):
            list_query_to_search({"api:order_by": "name", "api:order_dir": "sideways"}, self.config())

    def test_helpers(self):
        assert split_values("a, b,,c") == ["a", "b", "c"]
        assert split_values(["x", "y"]) == ["x", "y"]
        assert split_values(None) == []
        assert parse_direction(None) == "ASC"
        assert parse_direction("desc") == "DESC"


class TestConstraintParser(TestCase):
    """Test cases for ConstraintParser on the Item entity."""

    def setUp(self):
        self.store = build_item_store()
        self.descriptor = self.store.describe("Item")

    def parser(self, includes=None, aliases=None, id_field="id", **overrides):
        config = build_operation_config(self.descriptor, "search", overrides)
        mapper = IdentifierMapper(self.store, self.descriptor, id_field, RelationMappingSet(self.store.registry))
        return ConstraintParser(
            self.descriptor,
            self.store.registry,
            config,
            includes=includes,
            aliases=FieldAliasResolver(aliases),
            id_mapper=mapper,
        )

    def matching(self, group):
        return [row["external_id"] for row in self.store.rows("Item") if matches(group, row)]

    def test_string_equality_is_case_insensitive(self):
        clause = self.parser().parse_clause("name", "eq", "widget")
        assert (clause.field, clause.operator, clause.value) == ("name", "ieq", "widget")

    def test_values_are_coerced(self):
        assert self.parser().parse_clause("price", "gte", "10").value == Decimal("10")
        assert self.parser().parse_clause("category_id", "in", "1, 2").value == [1, 2]
        assert self.parser().parse_clause("status", "is_false", "ignored").value is None
        assert self.parser().parse_clause("name", "starts_with", 42).value == "42"

    def test_invalid_input(self):
        parser = self.parser()
        with pytest.raises(BadRequestError, match="Invalid value"):
            parser.parse_clause("price", "eq", "cheap")
        with pytest.raises(BadRequestError, match="Invalid operator"):
            parser.parse_clause("price", "like", "1")
        with pytest.raises(BadRequestError, match="Invalid column 'colour'"):
            parser.parse_clause("colour", "eq", "red")
        with pytest.raises(BadRequestError):
            parser.parse_clause("name", "contains", {"a": 1})

    def test_allow_list(self):
        parser = self.parser(allow_filtering_on=["name"])

        assert parser.parse_clause("name", "eq", "x").field == "name"
        with pytest.raises(BadRequestError, match="Filtering on 'price' is not allowed"):
            parser.parse_clause("price", "gte", "1")

    def test_empty_allow_list_allows_nothing(self):
        with pytest.raises(BadRequestError):
            self.parser(allow_filtering_on=[]).parse_clause("name", "eq", "x")

    def test_block_list_overrides_allow_list(self):
        parser = self.parser(allow_filtering_on=["name", "price"], block_filtering_on=["price"])
        with pytest.raises(BadRequestError) as exc_info:
            parser.parse_clause("price", "gte", "1")
        assert exc_info.value.field == "price"

    def test_aliases(self):
        parser = self.parser(aliases={"title": "name"}, allow_filtering_on=["title"])
        clause = parser.parse_clause("title", "eq", "Gadget")
        assert clause.field == "name"

    def test_id_uses_id_mapping(self):
        clause = self.parser(id_field="external_id").parse_clause("id", "eq", "EXT-1")
        assert (clause.field, clause.operator) == ("external_id", "ieq")

        assert self.parser().parse_clause("id", "gt", "2").field == "id"

    def test_dotted_paths_need_an_include(self):
        includes = [IncludePlan("Category", "category")]
        assert self.parser(includes=includes).parse_clause("category.name", "eq", "Toys").field == "category.name"
        assert self.parser(includes=includes).resolve_field("category.id").path == "category.id"

        with pytest.raises(BadRequestError):
            self.parser().parse_clause("category.name", "eq", "Toys")

    def test_nested_filtering(self):
        group = self.parser().parse_filtering({
            "or": [{"status": "archived"}, {"price:gte": 20}],
        })
        assert self.matching(group) == ["ext-3", "ext-4"]

        group = self.parser().parse_filtering({"status": {"eq": "active", "neq": "archived"}, "price": {"lt": 10}})
        assert self.matching(group) == ["ext-1"]

    def test_malformed_filtering(self):
        parser = self.parser()
        with pytest.raises(BadRequestError):
            parser.parse_filtering({"or": {"status": "archived"}})
        with pytest.raises(BadRequestError):
            parser.parse_filtering({"status": {}})
        with pytest.raises(BadRequestError):
            parser.parse_filtering(["status"])

    def test_ordering(self):
        clauses = self.parser().parse_ordering([{"order_by": "price", "direction": "desc"}, "-name", "status"])
        assert [(c.field, c.direction) for c in clauses] == [("price", "DESC"), ("name", "DESC"), ("status", "ASC")]

        clauses = self.parser().parse_ordering({"orderBy": "name"})
        assert [(c.field, c.direction) for c in clauses] == [("name", "ASC")]

    def test_ordering_is_all_or_nothing(self):
        parser = self.parser(allow_ordering_on=["name"])
        with pytest.raises(BadRequestError, match="Ordering on 'price' is not allowed"):
            parser.parse_ordering(["name", "price"])
        with pytest.raises(BadRequestError):
            self.parser().parse_ordering([{"order_by": "name", "direction": "up"}])

    def test_default_ordering_ignores_lists(self):
        parser = self.parser(id_field="external_id", allow_ordering_on=["name"])
        clauses = parser.default_ordering()
        assert [(c.field, c.direction) for c in clauses] == [("external_id", "ASC")]

    def test_paging(self):
        parser = self.parser(default_page_size=25)
        assert parser.parse_paging(None) == Paging(1, 25)
        assert parser.parse_paging({"page": "3", "size": 5}) == Paging(3, 5)
        assert parser.parse_paging({"page": 0, "size": "lots"}) == Paging(1, 25)


class TestRelationMappedFilters(TestCase):
    """Filters on foreign keys exposed as external ids."""

    def setUp(self):
        self.store = build_music_store()
        self.descriptor = self.store.describe("Song")
        relations = RelationMappingResolver(self.store.registry).resolve(None)
        self.mapper = IdentifierMapper(self.store, self.descriptor, "external_id", relations)
        self.config = build_operation_config(self.descriptor, "search", {"id_mapping": "external_id"})

    def parser(self, includes=None, flattening=None):
        return ConstraintParser(
            self.descriptor, self.store.registry, self.config,
            includes=includes, flattening=flattening, id_mapper=self.mapper,
        )

    def test_external_ids_become_internal_keys(self):
        clause = self.parser().parse_clause("artist_id", "eq", "artist-2")
        assert (clause.field, clause.operator, clause.value) == ("artist_id", "eq", 2)

        clause = self.parser().parse_clause("artist_id", "in", "artist-1,artist-9")
        assert (clause.operator, clause.value) == ("in", [1])

    def test_unknown_external_ids(self):
        clause = self.parser().parse_clause("album_id", "eq", "album-9")
        assert (clause.operator, clause.value) == ("in", [])

        clause = self.parser().parse_clause("album_id", "neq", "album-9")
        assert (clause.operator, clause.value) == ("not_in", [])

    def test_unsupported_operator(self):
        with pytest.raises(BadRequestError):
            self.parser().parse_clause("album_id", "gt", "album-1")

    def test_include_id_maps_to_external_field(self):
        includes = [IncludePlan("Album", "album")]
        assert self.parser(includes=includes).resolve_field("album.id").path == "album.external_id"

    def test_flattened_names(self):
        flattening = FlatteningPlanner.from_config(
            {"model": "Artist", "as": "artist", "attributes": [["name", "artist_name"]]},
            self.descriptor,
            self.store.registry,
        )
        parser = self.parser(includes=flattening.plan([]), flattening=flattening)

        resolved = parser.resolve_field("artist_name")
        assert resolved.path == "artist.name"
        assert resolved.entity.name == "Artist"


class TestThroughPaths(TestCase):

    def test_join_row_attribute(self):
        store = build_school_store()
        descriptor = store.describe("Student")
        config = build_operation_config(descriptor, "search")
        includes = [IncludePlan("Course", "courses")]
        parser = ConstraintParser(descriptor, store.registry, config, includes=includes)

        resolved = parser.resolve_field("courses.Enrollment.grade")
        assert resolved.path == "courses.Enrollment.grade"
        assert resolved.entity.name == "Enrollment"

        aliased = [IncludePlan("Course", "courses", through=ThroughOptions(alias="enrollment"))]
        parser = ConstraintParser(descriptor, store.registry, config, includes=aliased)
        assert parser.resolve_field("courses.enrollment.grade").path == "courses.enrollment.grade"
        with pytest.raises(BadRequestError):
            parser.resolve_field("courses.Enrollment.grade")
