"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for the document store.
This allows us to:
1. Run on Firestore in production
2. Use in-memory storage for testing
3. Keep ledger logic decoupled from the storage implementation

The interface is intentionally small - we're not building an ORM.
Documents are plain dicts addressed by slash-separated paths
("users/u1/accounts/a1"). The only multi-document guarantee is the
batch: every write in one commit() applies, or none does.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Optional, Sequence, Union
from uuid import UUID, uuid4

from ledgerbook.models.audit import AuditEvent


# Firestore rejects batches above this size.
MAX_BATCH_WRITES = 500

FieldKey = Union[str, tuple[str, ...]]


class Increment:
    """
    Write primitive: add `value` to the stored number.

    Applied by the store at commit time, so concurrent increments of the
    same counter never lose an update.
    """

    __slots__ = ("value",)

    def __init__(self, value: Union[int, Decimal]):
        self.value = value

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Increment) and other.value == self.value

    def __repr__(self) -> str:
        return f"Increment({self.value!r})"


class _ServerTimestamp:
    """Sentinel replaced by the commit time."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


QUERY_OPERATORS = frozenset({
    "==", "!=", "<", "<=", ">", ">=", "in", "not-in", "array-contains",
})


@dataclass(frozen=True)
class Predicate:
    """One `where` clause: field (dotted path), operator, value."""

    field: str
    op: str
    value: Any

    def __post_init__(self):
        if self.op not in QUERY_OPERATORS:
            raise ValueError(f"Unsupported query operator: {self.op}")


class WriteKind(str, Enum):
    SET = "set"
    UPDATE = "update"
    DELETE = "delete"


@dataclass
class WriteOp:
    kind: WriteKind
    path: str
    data: Optional[dict[FieldKey, Any]] = None
    merge: bool = False


@dataclass
class WriteBatch:
    """
    Ordered list of writes committed together.

    update() keys are field paths: either a dotted string
    ("stats.pendingTransactions") or a tuple of segments for keys that
    may themselves contain dots.
    """

    ops: list[WriteOp] = field(default_factory=list)

    def set(self, path: str, data: dict[str, Any], merge: bool = False) -> 'WriteBatch':
        self.ops.append(WriteOp(WriteKind.SET, path, dict(data), merge))
        return self

    def update(self, path: str, data: dict[FieldKey, Any]) -> 'WriteBatch':
        if not data:
            raise ValueError("update() needs at least one field")
        self.ops.append(WriteOp(WriteKind.UPDATE, path, dict(data)))
        return self

    def delete(self, path: str) -> 'WriteBatch':
        self.ops.append(WriteOp(WriteKind.DELETE, path))
        return self

    @property
    def paths(self) -> list[str]:
        return [op.path for op in self.ops]

    def __len__(self) -> int:
        return len(self.ops)


def field_segments(key: FieldKey) -> tuple[str, ...]:
    """Normalize a field key into its path segments."""
    if isinstance(key, tuple):
        return key
    return tuple(key.split("."))


def split_path(path: str) -> tuple[str, str]:
    """'users/u1/accounts/a1' -> ('users/u1/accounts', 'a1')."""
    collection, _, doc_id = path.rpartition("/")
    if not collection or not doc_id:
        raise ValueError(f"Not a document path: {path}")
    return collection, doc_id


class DocumentStore(ABC):
    """
    Abstract interface for document store operations.

    Any storage implementation (Firestore, in-memory, etc.)
    must implement these methods.
    """

    @abstractmethod
    async def get(self, path: str) -> Optional[dict[str, Any]]:
        """
        Retrieve a document by its path.

        Args:
            path: Full document path

        Returns:
            The document data with its "id" key set, None if missing

        Raises:
            StorageError: If the read fails
        """
        pass

    @abstractmethod
    async def query(
        self,
        collection_path: str,
        predicates: Sequence[Predicate] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        """
        Query the documents directly under a collection.

        Args:
            collection_path: Path of the collection
            predicates: Conjunction of where-clauses
            order_by: Field to sort by
            descending: Sort direction
            limit: Maximum number of results

        Returns:
            List of matching documents (each with "id")

        Raises:
            StorageError: If the query fails
        """
        pass

    @abstractmethod
    async def commit(self, batch: WriteBatch) -> None:
        """
        Apply every write of the batch atomically.

        Raises:
            BatchCommitError: If the batch was rejected; nothing was written
        """
        pass

    def batch(self) -> WriteBatch:
        return WriteBatch()

    def new_id(self) -> str:
        """Generate a document ID."""
        return uuid4().hex[:20]


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        user_id: str,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (e.g., one ledger mutation).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        user_id: str,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        """
        Get all events for a specific entity.

        Returns:
            List of events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        user_id: str,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events of a user.

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class DocumentNotFoundError(StorageError):
    """Document not found in storage."""
    pass


class BatchCommitError(StorageError):
    """A batch was rejected as a whole."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass


def soft_delete_fields() -> dict[str, Any]:
    """Update payload that retires a document without removing it."""
    return {
        "isActive": False,
        "deletedAt": SERVER_TIMESTAMP,
        "updatedAt": SERVER_TIMESTAMP,
    }
