# tests/conftest.py
import logging
import os
import uuid
from typing import Any, AsyncGenerator, Dict, List, Optional

import pytest
import pytest_asyncio
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import MongoClient
from pymongo.errors import PyMongoError

from async_docstore.base.interfaces import Acknowledgement
from async_docstore.base.validation import Email, Range, Required, TypeCheck
from async_docstore.core.collection import Collection
from async_docstore.core.database import Database
from async_docstore.core.document import Document
from async_docstore.db_implementations.motor_driver import MotorDatabaseDriver
from async_docstore.memory.driver import (MemoryCollectionDriver,
                                          MemoryDatabaseDriver)

# Silence verbose loggers
logging.getLogger("pymongo").setLevel(logging.ERROR)
logging.getLogger("motor").setLevel(logging.ERROR)


# --- Constants ---
TEST_MONGO_DB_NAME = "pytest_async_docstore_db"
MONGO_URI = os.getenv("TEST_MONGO_URI", "mongodb://localhost:27017")

# --- List of available driver keys ---
DRIVER_IMPLEMENTATIONS = ["memory", "mongodb"]


# --- Availability Checks ---
def is_mongodb_available():
    """Check if MongoDB is available (basic check)."""
    client = MongoClient(MONGO_URI, serverSelectionTimeoutMS=1000)
    try:
        client.admin.command("ping")
        logging.info(f"MongoDB found and responsive at {MONGO_URI}")
        return True
    except PyMongoError as e:
        logging.warning(
            f"MongoDB not found or not responsive at {MONGO_URI}: {e}. "
            "Skipping MongoDB tests."
        )
        return False
    finally:
        client.close()


AVAILABLE_IMPLEMENTATIONS = ["memory"]
if is_mongodb_available():
    AVAILABLE_IMPLEMENTATIONS.append("mongodb")


# --- Test documents ---
class User(Document):
    rules = (
        Required("email"),
        Email("email"),
        TypeCheck("name", type="string"),
        Range("age", min=0, max=150),
    )


class Users(Collection):
    document_class = User


def user_data(**overrides: Any) -> Dict[str, Any]:
    data = {"name": "Alice", "email": "alice@example.com", "age": 30}
    data.update(overrides)
    return data


# --- Stub drivers returning canned acknowledgements ---
class CannedCollectionDriver(MemoryCollectionDriver):
    """
    Memory driver whose write primitives return a fixed acknowledgement,
    for exercising the error translation in Collection.
    """

    def __init__(self, database: MemoryDatabaseDriver, name: str, ack: Acknowledgement):
        super().__init__(database, name)
        self.ack = ack
        self.calls: List[str] = []

    def _canned(self, primitive: str) -> Acknowledgement:
        self.calls.append(primitive)
        return dict(self.ack) if isinstance(self.ack, dict) else self.ack

    async def insert(self, document):
        document.setdefault("_id", uuid.uuid4().hex)
        return self._canned("insert")

    async def batch_insert(self, documents):
        for document in documents:
            document.setdefault("_id", uuid.uuid4().hex)
        return self._canned("batch_insert")

    async def update(self, criteria, update, multiple=False, upsert=False):
        return self._canned("update_multiple" if multiple else "update")

    async def remove(self, criteria, just_one=False):
        return self._canned("remove")

    async def aggregate(self, pipeline):
        self.calls.append("aggregate")
        return dict(self.ack) if isinstance(self.ack, dict) else {"ok": 0.0}

    async def ensure_index(self, keys, options):
        return self._canned("ensure_index")


class CannedDatabaseDriver(MemoryDatabaseDriver):
    """Hands out CannedCollectionDriver instances and fixed command replies."""

    def __init__(
        self,
        ack: Acknowledgement,
        command_reply: Optional[Dict[str, Any]] = None,
        server_version: str = "6.0.0",
    ):
        super().__init__(name=TEST_MONGO_DB_NAME, server_version=server_version)
        self.ack = ack
        self.command_reply = command_reply
        self.commands: List[Dict[str, Any]] = []

    def get_collection(self, name: str) -> CannedCollectionDriver:
        return CannedCollectionDriver(self, name, self.ack)

    async def run_command(self, command):
        self.commands.append(dict(command))
        if self.command_reply is not None:
            return dict(self.command_reply)
        return await super().run_command(command)


def canned_collection(
    ack: Acknowledgement,
    command_reply: Optional[Dict[str, Any]] = None,
    server_version: str = "6.0.0",
    name: str = "canned",
) -> Collection:
    database = Database(
        CannedDatabaseDriver(ack, command_reply=command_reply, server_version=server_version)
    )
    return database[name]


# --- Fixtures ---
@pytest.fixture
def memory_driver() -> MemoryDatabaseDriver:
    return MemoryDatabaseDriver(name=TEST_MONGO_DB_NAME)


@pytest.fixture
def memory_database(memory_driver) -> Database:
    return Database(memory_driver)


@pytest.fixture
def collection(memory_database) -> Collection:
    return memory_database["docstore_test_collection"]


@pytest.fixture
def users(memory_database) -> Users:
    memory_database.map("users", Users)
    return memory_database["users"]


@pytest_asyncio.fixture
async def database(request) -> AsyncGenerator[Database, None]:
    """
    A Database backed by the requested driver. MongoDB databases get a
    unique name and are dropped after the test.
    """
    implementation = getattr(request, "param", "memory")
    if implementation not in AVAILABLE_IMPLEMENTATIONS:
        pytest.skip(f"{implementation} not available")

    if implementation == "memory":
        yield Database(MemoryDatabaseDriver(name=TEST_MONGO_DB_NAME))
        return

    database_name = f"{TEST_MONGO_DB_NAME}_{uuid.uuid4().hex[:8]}"
    client = AsyncIOMotorClient(MONGO_URI, serverSelectionTimeoutMS=2000)
    try:
        yield Database(MotorDatabaseDriver(client, database_name))
    finally:
        await client.drop_database(database_name)
        client.close()
