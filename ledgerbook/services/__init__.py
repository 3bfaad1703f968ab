"""Services package."""

from ledgerbook.services.storage import (
    AuditStorageInterface,
    BatchCommitError,
    ConnectionError,
    DocumentAuditStorage,
    DocumentNotFoundError,
    DocumentStore,
    InMemoryDocumentStore,
    StorageError,
)

__all__ = [
    "AuditStorageInterface",
    "BatchCommitError",
    "ConnectionError",
    "DocumentAuditStorage",
    "DocumentNotFoundError",
    "DocumentStore",
    "InMemoryDocumentStore",
    "StorageError",
]
