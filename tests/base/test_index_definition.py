# tests/base/test_index_definition.py

import pytest

from async_docstore.base.exceptions import InvalidArgument
from async_docstore.base.index import IndexDefinition


def test_string_and_list_keys_mean_ascending():
    assert IndexDefinition(keys="email").keys == {"email": 1}
    assert IndexDefinition(keys=["a", "b"]).keys == {"a": 1, "b": 1}


def test_render_only_includes_set_options():
    keys, options = IndexDefinition(keys={"created": -1}).render()
    assert keys == {"created": -1}
    assert options == {}


def test_render_uses_store_vocabulary():
    definition = IndexDefinition(
        keys={"email": 1},
        unique=True,
        sparse=True,
        expire_after_seconds=60,
        drop_dups=True,
        name="email_unique",
    )
    assert definition.render() == (
        {"email": 1},
        {
            "unique": True,
            "dropDups": True,
            "sparse": True,
            "expireAfterSeconds": 60,
            "name": "email_unique",
        },
    )


def test_drop_dups_is_ignored_without_unique():
    _, options = IndexDefinition(keys="a", drop_dups=True).render()
    assert "dropDups" not in options


def test_aliases_are_accepted():
    definition = IndexDefinition.from_declaration(
        {"keys": {"t": 1}, "expireAfterSeconds": 10, "dropDups": False}
    )
    assert definition.expire_after_seconds == 10


@pytest.mark.parametrize("declaration", [{}, {"keys": {}}, {"unique": True}, "email"])
def test_declaration_without_keys_is_rejected(declaration):
    with pytest.raises(InvalidArgument, match="Keys not specified"):
        IndexDefinition.from_declaration(declaration)


def test_invalid_option_type_becomes_invalid_argument():
    with pytest.raises(InvalidArgument):
        IndexDefinition.from_declaration({"keys": "a", "expire_after_seconds": "soon"})


def test_definition_passes_through_unchanged():
    definition = IndexDefinition(keys="a")
    assert IndexDefinition.from_declaration(definition) is definition
