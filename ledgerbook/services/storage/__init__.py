"""
Storage Services Package

Provides the abstract document store interface and its implementations.
Firestore is the production backend; the in-memory store backs the tests.
"""

from ledgerbook.services.storage.interface import (
    MAX_BATCH_WRITES,
    SERVER_TIMESTAMP,
    AuditStorageInterface,
    BatchCommitError,
    ConnectionError,
    DocumentNotFoundError,
    DocumentStore,
    Increment,
    Predicate,
    StorageError,
    WriteBatch,
    soft_delete_fields,
)
from ledgerbook.services.storage.paths import CollectionPaths
from ledgerbook.services.storage.memory import InMemoryDocumentStore
from ledgerbook.services.storage.audit import DocumentAuditStorage

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "DocumentStore",
    # Write primitives
    "Increment",
    "MAX_BATCH_WRITES",
    "Predicate",
    "SERVER_TIMESTAMP",
    "WriteBatch",
    "soft_delete_fields",
    # Exceptions
    "BatchCommitError",
    "ConnectionError",
    "DocumentNotFoundError",
    "StorageError",
    # Implementations
    "CollectionPaths",
    "DocumentAuditStorage",
    "InMemoryDocumentStore",
]
