# tests/database_implementations/test_indexes.py

import pytest

from async_docstore.base.exceptions import InvalidArgument, WriteError
from async_docstore.core.collection import Collection
from tests.conftest import DRIVER_IMPLEMENTATIONS

pytestmark = pytest.mark.parametrize("database", DRIVER_IMPLEMENTATIONS, indirect=True)


class Accounts(Collection):
    indexes = (
        {"keys": "email", "unique": True},
        {"keys": {"created": -1, "kind": 1}},
        {"keys": "session", "sparse": True, "name": "session_sparse"},
    )


class BrokenAccounts(Collection):
    indexes = ({"unique": True},)


def index_names(indexes):
    return sorted(index["name"] for index in indexes)


@pytest.mark.asyncio
async def test_unique_index_rejects_duplicates(database):
    collection = database["indexed"]
    await collection.ensure_unique_index("email")
    await collection.insert({"email": "a@example.com"})
    with pytest.raises(WriteError) as excinfo:
        await collection.insert({"email": "a@example.com"})
    assert excinfo.value.code == 11000
    assert await collection.count() == 1


@pytest.mark.asyncio
async def test_ensure_index_is_idempotent(database):
    collection = database["indexed"]
    await collection.ensure_index(["a", "b"])
    await collection.ensure_index(["a", "b"])
    assert index_names(await collection.get_indexes()) == ["_id_", "a_1_b_1"]


@pytest.mark.asyncio
async def test_ensure_index_requires_keys(database):
    with pytest.raises(InvalidArgument, match="Keys not specified"):
        await database["indexed"].ensure_index([])


@pytest.mark.asyncio
async def test_ttl_and_sparse_options_are_stored(database):
    collection = database["indexed"]
    await collection.ensure_ttl_index("expires", seconds=60)
    await collection.ensure_sparse_index("nickname")
    by_name = {index["name"]: index for index in await collection.get_indexes()}
    assert by_name["expires_1"]["expireAfterSeconds"] == 60
    assert by_name["nickname_1"]["sparse"] is True


@pytest.mark.asyncio
async def test_init_indexes_applies_declarations(database):
    database.map("accounts", Accounts)
    accounts = database["accounts"]
    await accounts.init_indexes()
    assert index_names(await accounts.get_indexes()) == [
        "_id_",
        "created_-1_kind_1",
        "email_1",
        "session_sparse",
    ]


@pytest.mark.asyncio
async def test_init_indexes_rejects_declaration_without_keys(database):
    database.map("broken", BrokenAccounts)
    with pytest.raises(InvalidArgument, match="Keys not specified"):
        await database["broken"].init_indexes()
