# tests/database_implementations/test_read_preference.py

import pytest

from async_docstore.base.exceptions import ConfigurationError
from tests.conftest import DRIVER_IMPLEMENTATIONS

pytestmark = pytest.mark.parametrize("database", DRIVER_IMPLEMENTATIONS, indirect=True)

TAG_SETS = [{"dc": "kyiv"}, {"dc": "lviv"}]


def test_default_read_preference_is_primary(database):
    assert database["preferring"].get_read_preference() == {"type": "primary"}
    assert database.get_read_preference() == {"type": "primary"}


@pytest.mark.parametrize(
    "setter, mode",
    [
        ("read_primary_preferred", "primaryPreferred"),
        ("read_secondary_only", "secondary"),
        ("read_secondary_preferred", "secondaryPreferred"),
        ("read_nearest", "nearest"),
    ],
)
def test_collection_read_preference_with_tags(database, setter, mode):
    collection = database["preferring"]
    assert getattr(collection, setter)(TAG_SETS) is collection
    assert collection.get_read_preference() == {"type": mode, "tagsets": TAG_SETS}

    getattr(collection, setter)()
    assert collection.get_read_preference() == {"type": mode}


def test_read_primary_only_resets_tags(database):
    collection = database["preferring"].read_nearest(TAG_SETS)
    collection.read_primary_only()
    assert collection.get_read_preference() == {"type": "primary"}


def test_primary_with_tags_is_rejected(database):
    collection = database["preferring"]
    with pytest.raises(ConfigurationError, match="^Error setting read preference$"):
        collection.set_read_preference("primary", TAG_SETS)
    with pytest.raises(ConfigurationError, match="^Error setting read preference$"):
        collection.set_read_preference("fastest")
    assert collection.get_read_preference() == {"type": "primary"}


def test_database_read_preference_reaches_collections(database):
    before = database["preferring"]
    database.read_secondary_preferred(TAG_SETS)
    expected = {"type": "secondaryPreferred", "tagsets": TAG_SETS}
    assert database.get_read_preference() == expected
    assert before.get_read_preference() == expected
    assert database["created_later"].get_read_preference() == expected

    with pytest.raises(ConfigurationError):
        database.set_read_preference("primary", TAG_SETS)
    assert database.get_read_preference() == expected
