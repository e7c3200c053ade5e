# tests/core/test_collection_maintenance.py

import pytest

from async_docstore.base.exceptions import CommandError


@pytest.mark.asyncio
async def test_stats_reports_document_count(collection):
    await collection.insert_multiple([{"n": i} for i in range(3)])
    await collection.ensure_index("n")
    stats = await collection.stats()
    assert stats["count"] == 3
    assert stats["nindexes"] == 2
    assert stats["ns"].endswith(".docstore_test_collection")


@pytest.mark.asyncio
async def test_validate_existing_collection(collection):
    await collection.insert({"n": 1})
    reply = await collection.validate(full=True)
    assert reply["valid"] is True


@pytest.mark.asyncio
async def test_validate_missing_collection_raises(collection):
    with pytest.raises(CommandError, match="^Validate collection error: ns not found$") as excinfo:
        await collection.validate()
    assert excinfo.value.code == 26


@pytest.mark.asyncio
async def test_drop_resets_applied_indexes(collection):
    await collection.ensure_index("n")
    await collection.delete()
    assert [i["name"] for i in await collection.get_indexes()] == ["_id_"]
    await collection.ensure_index("n")
    assert [i["name"] for i in await collection.get_indexes()] == ["_id_", "n_1"]


def test_repr_names_the_collection(collection):
    assert repr(collection) == "Collection(name='docstore_test_collection')"
