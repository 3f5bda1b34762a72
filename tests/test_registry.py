"""Tests for the field metadata registry and inheritance merge."""

import pytest

from metacrud.core.errors import ConfigurationError
from metacrud.core.types import AccessMode, MANDATORY_OPERATIONS
from metacrud.metadata.registry import MetadataRegistry, fields_with, normalize_capability
from metacrud.metadata.types import ForeignRef


def _upper(value):
    return value.upper()


# =============================================================================
# Capability normalization
# =============================================================================


class TestNormalizeCapability:
    @pytest.mark.parametrize(
        "value,expected",
        [
            ("read", AccessMode.READ_ONLY),
            ("readOnly", AccessMode.READ_ONLY),
            ("write", AccessMode.WRITE_ONLY),
            ("read_write", AccessMode.READ_WRITE),
            ("rw", AccessMode.READ_WRITE),
            ("none", None),
            (AccessMode.READ_WRITE, AccessMode.READ_WRITE),
        ],
    )
    def test_access_aliases(self, value, expected):
        assert normalize_capability("access", value) is expected

    def test_invalid_access_mode(self):
        with pytest.raises(ConfigurationError, match="Invalid access mode"):
            normalize_capability("access", "everything")

    def test_listable_true_means_list_mode(self):
        assert normalize_capability("listable", True) == frozenset({"list"})

    def test_listable_single_string(self):
        assert normalize_capability("listable", "detailed") == frozenset({"detailed"})

    def test_mandatory_true_means_both_operations(self):
        assert normalize_capability("mandatory", True) == MANDATORY_OPERATIONS

    def test_mandatory_rejects_unknown_operation(self):
        with pytest.raises(ConfigurationError, match="new/edit"):
            normalize_capability("mandatory", ["new", "delete"])

    def test_sortable_must_be_bool(self):
        with pytest.raises(ConfigurationError):
            normalize_capability("sortable", "yes")

    def test_foreign_from_string(self):
        assert normalize_capability("foreign", "users") == ForeignRef(table="users")

    def test_foreign_from_dict(self):
        ref = normalize_capability("foreign", {"table": "tags", "index": "slug", "multiple": True})
        assert ref == ForeignRef(table="tags", index="slug", multiple=True)

    def test_foreign_without_table(self):
        with pytest.raises(ConfigurationError):
            normalize_capability("foreign", {"index": "slug"})

    def test_unknown_value_type(self):
        with pytest.raises(ConfigurationError, match="Invalid field type"):
            normalize_capability("type", "date")

    def test_function_capability_must_be_callable(self):
        with pytest.raises(ConfigurationError, match="callable"):
            normalize_capability("getter", "upper")

    def test_unknown_capability(self):
        with pytest.raises(ConfigurationError, match="Unknown capability"):
            normalize_capability("hidden", True)


# =============================================================================
# Inheritance merge
# =============================================================================


class TestInheritanceMerge:
    @pytest.fixture
    def chain(self):
        registry = MetadataRegistry()
        a = registry.define("a", table="things")
        a.field("title", access="read", listable=["list"], sortable=True, getter=_upper)
        a.field("id", access="read")

        b = registry.define("b", extends="a")
        b.field("title", access="readwrite", mandatory=["new"])
        b.field("body", access="readwrite")

        c = registry.define("c", extends="b")
        c.field("title", sortable=False)
        c.field("extra", access="write")
        return registry

    def test_child_overrides_single_capability(self, chain):
        title = chain.resolve("c").get("title")
        assert title.sortable is False
        assert title.access is AccessMode.READ_WRITE

    def test_capabilities_not_redeclared_are_inherited(self, chain):
        title = chain.resolve("c").get("title")
        assert title.listable == frozenset({"list"})
        assert title.mandatory == frozenset({"new"})
        assert title.getter is _upper

    def test_merged_equals_pointwise_union(self, chain):
        definitions = [chain.get(n) for n in ("a", "b", "c")]
        expected: dict = {}
        for definition in definitions:
            expected.update(definition.declared("title"))

        title = chain.resolve("c").get("title")
        for capability, value in expected.items():
            assert getattr(title, capability) == value

    def test_ancestors_unaffected_by_children(self, chain):
        assert chain.resolve("a").get("title").sortable is True
        assert chain.resolve("b").get("title").sortable is True
        assert "body" not in chain.resolve("a")

    def test_field_order_follows_first_declaration(self, chain):
        names = list(chain.resolve("c").fields)
        assert names == ["title", "id", "body", "extra"]

    def test_table_and_primary_key_are_inherited(self, chain):
        meta = chain.resolve("c")
        assert meta.table == "things"
        assert meta.primary_key == "id"
        assert meta.chain == ("a", "b", "c")


# =============================================================================
# Registry behavior
# =============================================================================


class TestMetadataRegistry:
    def test_missing_table_fails_at_resolve(self):
        registry = MetadataRegistry()
        registry.define("orphan").field("x", access="read")
        with pytest.raises(ConfigurationError, match="no bound table"):
            registry.resolve("orphan")

    def test_duplicate_definition(self):
        registry = MetadataRegistry()
        registry.define("a", table="t")
        with pytest.raises(ConfigurationError, match="already defined"):
            registry.define("a", table="t")

    def test_unknown_parent(self):
        registry = MetadataRegistry()
        with pytest.raises(ConfigurationError, match="unknown controller"):
            registry.define("child", extends="nobody")

    def test_declare_after_resolve_fails(self):
        registry = MetadataRegistry()
        registry.define("a", table="t").field("x", access="read")
        registry.resolve("a")
        with pytest.raises(ConfigurationError, match="already resolved"):
            registry.declare("a", "x", "sortable", True)

    def test_redeclaring_a_capability_replaces_it(self):
        registry = MetadataRegistry()
        definition = registry.define("a", table="t")
        definition.declare("x", "access", "read")
        definition.declare("x", "access", "readwrite")
        assert registry.resolve("a").get("x").access is AccessMode.READ_WRITE

    def test_resolve_is_cached(self):
        registry = MetadataRegistry()
        registry.define("a", table="t").field("x", access="read")
        assert registry.resolve("a") is registry.resolve("a")

    def test_metadata_is_read_only(self, article_meta):
        with pytest.raises(TypeError):
            article_meta.fields["title"] = None

    def test_max_page_inherited(self):
        registry = MetadataRegistry()
        registry.define("a", table="t", max_page=20)
        registry.define("b", extends="a")
        assert registry.resolve("b").max_page == 20

    def test_list_controllers(self, registry):
        assert registry.list_controllers() == ["user", "tag", "article", "draft"]
        assert "article" in registry
        assert "comment" not in registry


class TestFieldsWith:
    def test_listable_in_mode_preserves_order(self, article_meta):
        names = fields_with(article_meta, "listable", lambda modes: "detailed" in modes)
        assert names == ["id", "title", "body"]

    def test_mandatory_for_new(self, article_meta):
        names = fields_with(article_meta, "mandatory", lambda ops: "new" in ops)
        assert names == ["title"]

    def test_default_predicate_is_truthiness(self, article_meta):
        assert fields_with(article_meta, "foreign") == ["author", "tags"]

    def test_draft_inherits_and_overrides(self, registry):
        draft = registry.resolve("draft")
        assert fields_with(draft, "mandatory") == []
        assert draft.get("views").readable is False
        assert draft.get("views").sortable is True
