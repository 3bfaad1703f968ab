"""
In-Memory Document Store

Used by the test suite and for local runs without cloud credentials.
Reproduces the Firestore semantics the ledger depends on:
- update() on a missing document fails the whole batch
- dotted field paths create intermediate maps
- Increment is applied at commit time against the stored value
- a batch is staged completely before anything is published

Commits are serialized with an asyncio.Lock; reads see either the state
before a batch or the state after it.
"""

import asyncio
import copy
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional, Sequence

import structlog

from ledgerbook.services.storage.interface import (
    MAX_BATCH_WRITES,
    SERVER_TIMESTAMP,
    BatchCommitError,
    DocumentStore,
    Increment,
    Predicate,
    WriteBatch,
    WriteKind,
    field_segments,
    split_path,
)


logger = structlog.get_logger(__name__)

_MISSING = object()


def _add(current: Any, delta: Any) -> Any:
    if current is None or current is _MISSING:
        return delta
    if isinstance(current, float) or isinstance(delta, float):
        return Decimal(str(current)) + Decimal(str(delta))
    return current + delta


def _get_field(document: dict, segments: tuple[str, ...]) -> Any:
    node: Any = document
    for segment in segments:
        if not isinstance(node, dict) or segment not in node:
            return _MISSING
        node = node[segment]
    return node


def _matches(value: Any, predicate: Predicate) -> bool:
    if value is _MISSING:
        return False
    op, target = predicate.op, predicate.value
    try:
        if op == "==":
            return value == target
        if op == "!=":
            return value != target
        if op == "<":
            return value < target
        if op == "<=":
            return value <= target
        if op == ">":
            return value > target
        if op == ">=":
            return value >= target
        if op == "in":
            return value in target
        if op == "not-in":
            return value not in target
        if op == "array-contains":
            return isinstance(value, list) and target in value
    except TypeError:
        # Mixed types never match, as in Firestore
        return False
    return False


class InMemoryDocumentStore(DocumentStore):
    """
    Dict-backed implementation of the document store.

    Documents are keyed by their full path.
    """

    def __init__(self):
        self._documents: dict[str, dict[str, Any]] = {}
        self._lock = asyncio.Lock()
        self._commit_count = 0

    @property
    def commit_count(self) -> int:
        """Number of batches committed successfully."""
        return self._commit_count

    async def get(self, path: str) -> Optional[dict[str, Any]]:
        document = self._documents.get(path)
        if document is None:
            return None
        _, doc_id = split_path(path)
        return {**copy.deepcopy(document), "id": doc_id}

    async def query(
        self,
        collection_path: str,
        predicates: Sequence[Predicate] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        results = []
        for path, document in self._documents.items():
            parent, doc_id = split_path(path)
            if parent != collection_path:
                continue
            if all(
                _matches(_get_field(document, field_segments(p.field)), p)
                for p in predicates
            ):
                results.append({**copy.deepcopy(document), "id": doc_id})

        if order_by:
            segments = field_segments(order_by)
            # Firestore drops documents that lack the ordering field
            results = [d for d in results if _get_field(d, segments) is not _MISSING]
            results.sort(key=lambda d: _get_field(d, segments), reverse=descending)

        if limit is not None:
            results = results[:limit]
        return results

    async def commit(self, batch: WriteBatch) -> None:
        if len(batch) > MAX_BATCH_WRITES:
            raise BatchCommitError(
                f"Batch has {len(batch)} writes, limit is {MAX_BATCH_WRITES}"
            )

        async with self._lock:
            now = datetime.now(timezone.utc)
            try:
                staged = self._stage(batch, now)
            except (TypeError, ValueError) as e:
                raise BatchCommitError(f"Batch rejected: {e}") from e

            for path, document in staged.items():
                if document is None:
                    self._documents.pop(path, None)
                else:
                    self._documents[path] = document
            self._commit_count += 1

        logger.debug("batch_committed", writes=len(batch), paths=batch.paths)

    def _stage(
        self,
        batch: WriteBatch,
        now: datetime,
    ) -> dict[str, Optional[dict[str, Any]]]:
        """Compute the post-batch version of every touched document."""
        staged: dict[str, Optional[dict[str, Any]]] = {}

        for op in batch.ops:
            if op.path in staged:
                current = staged[op.path]
            else:
                current = copy.deepcopy(self._documents.get(op.path))

            if op.kind == WriteKind.DELETE:
                staged[op.path] = None
            elif op.kind == WriteKind.SET:
                base = current if (op.merge and current is not None) else {}
                staged[op.path] = self._merge(base, op.data or {}, now)
            elif op.kind == WriteKind.UPDATE:
                if current is None:
                    raise BatchCommitError(
                        f"Cannot update missing document: {op.path}"
                    )
                for key, value in (op.data or {}).items():
                    self._apply_field(current, field_segments(key), value, now)
                staged[op.path] = current

        return staged

    def _resolve(self, value: Any, current: Any, now: datetime) -> Any:
        """Turn sentinels into concrete values."""
        if value is SERVER_TIMESTAMP:
            return now
        if isinstance(value, Increment):
            return _add(current, value.value)
        if isinstance(value, dict):
            return {
                key: self._resolve(
                    item,
                    current.get(key, _MISSING) if isinstance(current, dict) else _MISSING,
                    now,
                )
                for key, item in value.items()
            }
        return copy.deepcopy(value)

    def _merge(self, base: dict, data: dict, now: datetime) -> dict:
        """Deep merge for set(..., merge=True); a plain copy when base is empty."""
        result = base
        for key, value in data.items():
            existing = result.get(key, _MISSING)
            if isinstance(value, dict) and isinstance(existing, dict):
                result[key] = self._merge(existing, value, now)
            else:
                result[key] = self._resolve(value, existing, now)
        return result

    def _apply_field(
        self,
        document: dict,
        segments: tuple[str, ...],
        value: Any,
        now: datetime,
    ) -> None:
        node = document
        for segment in segments[:-1]:
            child = node.get(segment)
            if not isinstance(child, dict):
                child = {}
                node[segment] = child
            node = child
        leaf = segments[-1]
        node[leaf] = self._resolve(value, node.get(leaf, _MISSING), now)

    def dump(self) -> dict[str, dict[str, Any]]:
        """Snapshot of every stored document, keyed by path."""
        return copy.deepcopy(self._documents)
