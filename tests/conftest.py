"""Shared fixtures: a small blog domain over the in-memory backend."""

import pytest

from metacrud.metadata.functions import FunctionRegistry, is_email, register_builtin_functions
from metacrud.metadata.registry import MetadataRegistry
from metacrud.persistence.memory import MemoryBackend


@pytest.fixture(autouse=True)
def builtin_functions():
    """Fresh built-in function registrations for each test."""
    FunctionRegistry.clear()
    register_builtin_functions()
    yield
    FunctionRegistry.clear()


def build_blog_registry() -> MetadataRegistry:
    registry = MetadataRegistry()

    user = registry.define("user", table="users")
    user.field("id", access="read", listable=True, sortable=True)
    user.field("name", access="readwrite", listable=True, sortable=True, mandatory=["new"])
    user.field("email", access="readwrite", validator=is_email)
    user.field("password", access="write")

    registry.define("tag", table="tags").field("id", access="read", listable=True).field(
        "label", access="readwrite", listable=True
    )

    article = registry.define("article", table="articles")
    article.field("id", access="read", listable=["list", "detailed"], sortable=True)
    article.field(
        "title",
        access="readwrite",
        listable=["list", "detailed"],
        sortable=True,
        mandatory=True,
    )
    article.field("body", access="readwrite", listable=["detailed"])
    article.field("status", access="readwrite", listable=True)
    article.field("views", access="readwrite", listable=True, sortable=True, type="int")
    article.field("createdAt", access="readwrite", sortable=True)
    article.field("author", access="readwrite", listable=True, foreign="users")
    article.field("tags", access="readwrite", foreign={"table": "tags", "multiple": True})
    article.field("notes", access="write")

    # Drafts relax the title requirement and never expose view counts
    draft = registry.define("draft", extends="article")
    draft.field("title", mandatory=False)
    draft.field("views", access=None)

    return registry


ARTICLES = [
    {"id": "a1", "title": "Alpha", "body": "first", "status": "active", "views": 10,
     "createdAt": "2024-01-01", "author": "u1", "tags": ["t1", "t2"], "notes": "n1"},
    {"id": "a2", "title": "Bravo", "body": "second", "status": "archived", "views": 25,
     "createdAt": "2024-01-02", "author": "u2", "tags": [], "notes": "n2"},
    {"id": "a3", "title": "Charlie", "body": "third", "status": "active", "views": 3,
     "createdAt": "2024-01-03", "author": "u1", "tags": ["t2"], "notes": "n3"},
    {"id": "a4", "title": "Delta", "body": "fourth", "status": "active", "views": 40,
     "createdAt": "2024-01-04", "author": "ghost", "tags": ["t1", "missing"], "notes": "n4"},
    {"id": "a5", "title": "Echo", "body": "fifth", "status": "draft", "views": 0,
     "createdAt": "2024-01-05", "author": None, "tags": None, "notes": "n5"},
]


def seed_blog(backend: MemoryBackend) -> MemoryBackend:
    backend.seed("users", [
        {"id": "u1", "name": "Ada", "email": "ada@example.com", "password": "x"},
        {"id": "u2", "name": "Grace", "email": "grace@example.com", "password": "y"},
    ])
    backend.seed("tags", [
        {"id": "t1", "label": "python"},
        {"id": "t2", "label": "databases"},
    ])
    backend.seed("articles", ARTICLES)
    return backend


@pytest.fixture
def registry():
    return build_blog_registry()


@pytest.fixture
def article_meta(registry):
    return registry.resolve("article")


@pytest.fixture
def backend():
    return seed_blog(MemoryBackend())
