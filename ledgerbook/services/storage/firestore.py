"""
Google Cloud Firestore Storage Implementation

DESIGN DECISION: Firestore is the production backend because:
1. It is the store the application's data already lives in
2. Batched writes are atomic across documents
3. Server-side increments avoid read-modify-write races on counters

TRADEOFFS:
- Atomicity stops at one batch (max 500 writes)
- No native Decimal type: amounts are stored as doubles and
  firestore.Increment sums them in binary floating point. The models
  snap stored doubles back to cents on read (models.ledger.Money), so
  the drift never reaches a balance comparison
- Field path segments that are not plain identifiers (month keys like
  "2024-05") must be quoted; FieldPath handles that
"""

from decimal import Decimal
from typing import Any, Optional, Sequence

import structlog
from google.api_core import exceptions as google_exceptions
from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter
from google.cloud.firestore_v1.field_path import FieldPath
from google.oauth2.service_account import Credentials
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ledgerbook.config import FirestoreSettings, get_settings
from ledgerbook.services.storage.interface import (
    SERVER_TIMESTAMP,
    BatchCommitError,
    ConnectionError,
    DocumentStore,
    FieldKey,
    Increment,
    Predicate,
    StorageError,
    WriteBatch,
    WriteKind,
    field_segments,
)


logger = structlog.get_logger(__name__)

TRANSIENT_ERRORS = (
    google_exceptions.ServiceUnavailable,
    google_exceptions.DeadlineExceeded,
    google_exceptions.InternalServerError,
)

SCOPES = ["https://www.googleapis.com/auth/datastore"]


def _field_path(key: FieldKey) -> str:
    return FieldPath(*field_segments(key)).to_api_repr()


def _encode(value: Any) -> Any:
    """Translate store-agnostic values into Firestore values."""
    if value is SERVER_TIMESTAMP:
        return firestore.SERVER_TIMESTAMP
    if isinstance(value, Increment):
        return firestore.Increment(_encode(value.value))
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, dict):
        return {key: _encode(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_encode(item) for item in value]
    return value


class FirestoreClient:
    """
    Low-level Firestore client wrapper.

    Handles authentication and provides retry logic for connecting.
    """

    def __init__(self, settings: Optional[FirestoreSettings] = None):
        self._client: Optional[firestore.AsyncClient] = None
        self._settings = settings or get_settings().firestore

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> firestore.AsyncClient:
        """
        Establish the Firestore client.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=SCOPES,
                )
                self._client = firestore.AsyncClient(
                    project=self._settings.project_id,
                    credentials=credentials,
                    database=self._settings.database,
                )
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Firestore: {e}")

        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None


class FirestoreDocumentStore(DocumentStore):
    """
    Firestore implementation of the document store.

    Reads are retried on transient errors. Commits are not: a batch
    carrying increments is not safe to replay when the first attempt's
    outcome is unknown.
    """

    def __init__(self, client: Optional[FirestoreClient] = None):
        self._client = client or FirestoreClient()

    @property
    def _db(self) -> firestore.AsyncClient:
        return self._client.connect()

    @retry(
        retry=retry_if_exception_type(TRANSIENT_ERRORS),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        reraise=True,
    )
    async def _fetch(self, path: str):
        return await self._db.document(path).get()

    @retry(
        retry=retry_if_exception_type(TRANSIENT_ERRORS),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        reraise=True,
    )
    async def _run_query(self, query) -> list:
        return [snapshot async for snapshot in query.stream()]

    async def get(self, path: str) -> Optional[dict[str, Any]]:
        try:
            snapshot = await self._fetch(path)
        except google_exceptions.GoogleAPICallError as e:
            raise StorageError(f"Failed to get document {path}: {e}")

        if not snapshot.exists:
            return None
        return {**snapshot.to_dict(), "id": snapshot.id}

    async def query(
        self,
        collection_path: str,
        predicates: Sequence[Predicate] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        query = self._db.collection(collection_path)
        for predicate in predicates:
            query = query.where(filter=FieldFilter(
                _field_path(predicate.field),
                predicate.op,
                _encode(predicate.value),
            ))
        if order_by:
            direction = (
                firestore.Query.DESCENDING if descending else firestore.Query.ASCENDING
            )
            query = query.order_by(_field_path(order_by), direction=direction)
        if limit is not None:
            query = query.limit(limit)

        try:
            snapshots = await self._run_query(query)
        except google_exceptions.GoogleAPICallError as e:
            raise StorageError(f"Failed to query {collection_path}: {e}")

        return [{**snapshot.to_dict(), "id": snapshot.id} for snapshot in snapshots]

    async def commit(self, batch: WriteBatch) -> None:
        firestore_batch = self._db.batch()

        for op in batch.ops:
            ref = self._db.document(op.path)
            if op.kind == WriteKind.SET:
                firestore_batch.set(ref, _encode(op.data), merge=op.merge)
            elif op.kind == WriteKind.UPDATE:
                firestore_batch.update(ref, {
                    _field_path(key): _encode(value)
                    for key, value in op.data.items()
                })
            elif op.kind == WriteKind.DELETE:
                firestore_batch.delete(ref)

        try:
            await firestore_batch.commit()
        except google_exceptions.GoogleAPICallError as e:
            raise BatchCommitError(f"Batch of {len(batch)} writes rejected: {e}")

        logger.debug("batch_committed", writes=len(batch), paths=batch.paths)

    def new_id(self) -> str:
        """Firestore-style auto ID."""
        return self._db.collection("_ids").document().id
