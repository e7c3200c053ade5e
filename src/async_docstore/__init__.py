# src/async_docstore/__init__.py

"""
Async Document Store Library Initialization.

An asynchronous persistence layer for document databases: collections hand
out mutable Document objects, queries and updates are composed with
Expression and Operator builders, and every write result is checked and
turned into an exception when it failed.

The library logs through a NullHandler by default, so nothing is emitted
unless the consuming application configures logging.
"""

import logging

# --------------------------------------------------------------------------
# Logging Setup
# --------------------------------------------------------------------------
logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())
logger.propagate = False

# --------------------------------------------------------------------------
# Exceptions
# --------------------------------------------------------------------------
from .base.exceptions import (
    CommandError,
    ConfigurationError,
    DocumentStoreError,
    InvalidArgument,
    Unsupported,
    ValidationFailed,
    WriteError,
)

# --------------------------------------------------------------------------
# Query, Update and Validation Building
# --------------------------------------------------------------------------
from .base.expression import Expression, Field
from .base.operator import Operator
from .base.index import IndexDefinition
from .base.config import Settings
from .base.interfaces import (
    READ_NEAREST,
    READ_PRIMARY,
    READ_PRIMARY_PREFERRED,
    READ_SECONDARY,
    READ_SECONDARY_PREFERRED,
)
from .base.validation import (
    CrossField,
    Email,
    Length,
    Membership,
    Predicate,
    Range,
    Regexp,
    Required,
    TypeCheck,
    Violation,
)

# --------------------------------------------------------------------------
# Core Components
# --------------------------------------------------------------------------
from .core.document import Document, DocumentState
from .core.pool import DocumentPool
from .core.cursor import Cursor
from .core.pipeline import Pipeline
from .core.collection import Collection
from .core.persistence import Persistence
from .core.registry import CollectionRegistry
from .core.database import Database

# --------------------------------------------------------------------------
# Driver Implementations
# --------------------------------------------------------------------------
from .db_implementations.motor_driver import MotorCollectionDriver, MotorDatabaseDriver
from .memory.driver import MemoryCollectionDriver, MemoryDatabaseDriver

__all__ = [
    # Exceptions
    "DocumentStoreError",
    "ConfigurationError",
    "InvalidArgument",
    "ValidationFailed",
    "CommandError",
    "WriteError",
    "Unsupported",
    # Builders
    "Expression",
    "Field",
    "Operator",
    "IndexDefinition",
    "Settings",
    # Read preference modes
    "READ_PRIMARY",
    "READ_PRIMARY_PREFERRED",
    "READ_SECONDARY",
    "READ_SECONDARY_PREFERRED",
    "READ_NEAREST",
    # Validation
    "Required",
    "TypeCheck",
    "Regexp",
    "Email",
    "Range",
    "Length",
    "Membership",
    "CrossField",
    "Predicate",
    "Violation",
    # Core
    "Document",
    "DocumentState",
    "DocumentPool",
    "Cursor",
    "Pipeline",
    "Collection",
    "Persistence",
    "CollectionRegistry",
    "Database",
    # Drivers
    "MotorDatabaseDriver",
    "MotorCollectionDriver",
    "MemoryDatabaseDriver",
    "MemoryCollectionDriver",
    # Logging
    "logger",
]
