# tests/database_implementations/test_document_pool_flow.py

import pytest

from async_docstore.base.operator import Operator
from tests.conftest import DRIVER_IMPLEMENTATIONS

pytestmark = pytest.mark.parametrize("database", DRIVER_IMPLEMENTATIONS, indirect=True)


@pytest.mark.asyncio
async def test_pool_enabled_returns_same_instance(database):
    collection = database["pooled"]
    document = await collection.insert({"n": 1})
    assert await collection.get_document(document.id) is document
    assert await collection.find().where("n", 1).find_one() is document


@pytest.mark.asyncio
async def test_pool_disabled_returns_fresh_instances(database):
    collection = database["pooled"]
    document = await collection.insert({"n": 1})
    collection.disable_document_pool()
    assert not collection.is_document_pool_enabled()

    first = await collection.get_document(document.id)
    second = await collection.get_document(document.id)
    assert first is not second
    assert first is not document
    assert first.to_dict() == second.to_dict() == document.to_dict()


@pytest.mark.asyncio
async def test_pool_entries_survive_disable(database):
    collection = database["pooled"]
    document = await collection.insert({"n": 1})
    collection.disable_document_pool()
    assert not collection.is_document_pool_empty()

    collection.enable_document_pool()
    assert await collection.get_document(document.id) is document

    collection.disable_document_pool()
    collection.clear_document_pool()
    assert collection.is_document_pool_empty()
    assert not collection.is_document_pool_enabled()


@pytest.mark.asyncio
async def test_clear_pool_forgets_instances(database):
    collection = database["pooled"]
    document = await collection.insert({"n": 1})
    assert not collection.is_document_pool_empty()
    collection.clear_document_pool()
    assert collection.is_document_pool_empty()
    reloaded = await collection.get_document(document.id)
    assert reloaded is not document
    assert reloaded.get("n") == 1


@pytest.mark.asyncio
async def test_stale_pooled_instance_is_resynced_by_refresh(database):
    collection = database["pooled"]
    document = await collection.insert({"n": 1})
    await collection.update({"_id": document.id}, Operator().increment("n", 2))

    pooled = await collection.get_document(document.id)
    assert pooled is document
    assert pooled.get("n") == 1

    await pooled.refresh()
    assert document.get("n") == 3


@pytest.mark.asyncio
async def test_pools_are_per_collection(database):
    first = database["pooled_a"]
    second = database["pooled_b"]
    document = await first.insert({"_id": "shared"})
    await second.insert({"_id": "shared"})
    assert await second.get_document("shared") is not document
    assert await first.get_document("shared") is document
