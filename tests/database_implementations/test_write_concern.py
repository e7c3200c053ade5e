# tests/database_implementations/test_write_concern.py

import pytest

from async_docstore.base.exceptions import ConfigurationError
from tests.conftest import DRIVER_IMPLEMENTATIONS

pytestmark = pytest.mark.parametrize("database", DRIVER_IMPLEMENTATIONS, indirect=True)


def test_default_write_concern_is_acknowledged(database):
    collection = database["concerned"]
    assert collection.get_write_concern()["w"] == 1
    assert collection.is_acknowledged()


def test_majority_write_concern(database):
    collection = database["concerned"].set_majority_write_concern(12000)
    assert collection.get_write_concern() == {"w": "majority", "wtimeout": 12000}
    assert collection.is_acknowledged()


def test_invalid_write_concern_is_rejected(database):
    collection = database["concerned"]
    with pytest.raises(ConfigurationError, match="^Error setting write concern$"):
        collection.set_write_concern(-1)


@pytest.mark.asyncio
async def test_unacknowledged_insert_returns_saved_document(database):
    collection = database["concerned"].set_unacknowledged_write_concern()
    assert not collection.is_acknowledged()
    document = await collection.insert({"n": 1})
    assert document.is_saved()

    collection.set_write_concern(1)
    assert collection.is_acknowledged()
