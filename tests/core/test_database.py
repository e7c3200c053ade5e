# tests/core/test_database.py

import pytest
from bson import DBRef
from motor.motor_asyncio import AsyncIOMotorClient

from async_docstore.base.config import Settings
from async_docstore.base.exceptions import InvalidArgument
from async_docstore.core.collection import Collection
from async_docstore.core.database import Database, parse_version
from async_docstore.core.registry import CollectionRegistry
from async_docstore.db_implementations.motor_driver import MotorDatabaseDriver
from async_docstore.memory.driver import MemoryDatabaseDriver
from tests.conftest import TEST_MONGO_DB_NAME, Users


@pytest.mark.parametrize(
    "raw, expected",
    [("4.4.1", (4, 4, 1)), ("2.6", (2, 6, 0)), ("7.0.2-rc0", (7, 0, 2)), ("3", (3, 0, 0))],
)
def test_parse_version(raw, expected):
    assert parse_version(raw) == expected


def test_collections_are_cached(memory_database):
    first = memory_database.get_collection("things")
    assert memory_database["things"] is first
    assert isinstance(first, Collection)
    with pytest.raises(InvalidArgument):
        memory_database.get_collection("")


def test_registry_resolves_mapped_classes():
    registry = CollectionRegistry()
    registry.map(TEST_MONGO_DB_NAME, "users", Users)
    assert (TEST_MONGO_DB_NAME, "users") in registry
    assert registry.resolve(TEST_MONGO_DB_NAME, "users") is Users
    assert registry.resolve(TEST_MONGO_DB_NAME, "other") is Collection
    assert registry.resolve("elsewhere", "users") is Collection
    with pytest.raises(InvalidArgument):
        registry.map(TEST_MONGO_DB_NAME, "bad", dict)


def test_database_uses_shared_registry(memory_driver):
    registry = CollectionRegistry()
    registry.map(TEST_MONGO_DB_NAME, "users", Users)
    database = Database(memory_driver, registry=registry)
    assert isinstance(database["users"], Users)
    assert type(database["posts"]) is Collection


def test_map_replaces_cached_instance(memory_database):
    before = memory_database["users"]
    memory_database.map("users", Users)
    after = memory_database["users"]
    assert after is not before
    assert isinstance(after, Users)


def test_default_write_concern_is_applied(memory_driver):
    database = Database(memory_driver, write_concern=("majority", 12000))
    assert database["things"].get_write_concern() == {"w": "majority", "wtimeout": 12000}


def test_pool_setting_is_passed_to_collections(memory_driver):
    database = Database(memory_driver, document_pool_enabled=False)
    assert not database["things"].is_document_pool_enabled()


@pytest.mark.asyncio
async def test_server_version_is_parsed_and_cached():
    driver = MemoryDatabaseDriver(server_version="3.6.8")
    database = Database(driver)
    assert await database.get_server_version() == (3, 6, 8)
    driver._server_version = "9.9.9"
    assert await database.get_server_version() == (3, 6, 8)


@pytest.mark.asyncio
async def test_resolve_reference(memory_database):
    document = await memory_database["things"].insert({"a": 1})
    assert await memory_database.resolve_reference(DBRef("things", document.id)) is document
    with pytest.raises(InvalidArgument):
        await memory_database.resolve_reference(DBRef("things", document.id, "otherdb"))
    with pytest.raises(InvalidArgument):
        await memory_database.resolve_reference({"$ref": "things"})


@pytest.mark.asyncio
async def test_from_settings_builds_motor_database():
    settings = Settings.create(
        database="settings_db", write_concern_w=1, write_concern_timeout_ms=500,
        server_selection_timeout_ms=100,
    )
    database = Database.from_settings(settings)
    try:
        assert isinstance(database.driver, MotorDatabaseDriver)
        assert database.name == "settings_db"
        assert database["things"].get_write_concern() == {"w": 1, "wtimeout": 500}
        assert isinstance(database._client, AsyncIOMotorClient)
    finally:
        database.close()
    assert database._client is None
