# Document stores - append-only writes of patient records
from __future__ import annotations

import logging
import uuid
from collections import defaultdict
from threading import Lock
from typing import Callable, DefaultDict, Dict, List, Optional, Sequence, Tuple

import requests

from errors import IdentityError, StoreWriteError

logger = logging.getLogger(__name__)

CollectionPath = Tuple[str, ...]

FIRESTORE_URL = "https://firestore.googleapis.com/v1"
PATIENTS_COLLECTION = "patients"


def patients_collection_path(app_id: str) -> CollectionPath:
    """artifacts/{appId}/public/data/patients - shared by every deployment of the form"""
    if not app_id:
        raise ValueError("app_id must not be empty")
    return ("artifacts", app_id, "public", "data", PATIENTS_COLLECTION)


class InMemoryDocumentStore:
    """Process-local store used when no Firebase project is configured"""

    def __init__(self) -> None:
        self._collections: DefaultDict[CollectionPath, List[Tuple[str, Dict]]] = defaultdict(list)
        self._lock = Lock()

    def add_document(self, collection_path: Sequence[str], document: Dict) -> str:
        doc_id = uuid.uuid4().hex
        with self._lock:
            self._collections[tuple(collection_path)].append((doc_id, dict(document)))
        return doc_id

    def documents(self, collection_path: Sequence[str]) -> List[Dict]:
        """Documents in write order, each with its id under "id"."""
        with self._lock:
            entries = list(self._collections.get(tuple(collection_path), []))
        return [{"id": doc_id, **doc} for doc_id, doc in entries]

    def clear(self) -> None:
        with self._lock:
            self._collections.clear()


def to_firestore_fields(document: Dict) -> Dict[str, Dict]:
    """Firestore REST typed values. Records only hold strings."""
    fields: Dict[str, Dict] = {}
    for key, value in document.items():
        if value is None:
            fields[key] = {"nullValue": None}
        elif isinstance(value, bool):
            fields[key] = {"booleanValue": value}
        elif isinstance(value, int):
            fields[key] = {"integerValue": str(value)}
        else:
            fields[key] = {"stringValue": str(value)}
    return fields


class FirestoreDocumentStore:
    """Cloud Firestore over its REST API"""

    def __init__(
        self,
        project_id: str,
        token_provider: Optional[Callable[[], Optional[str]]] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.project_id = project_id
        self._token_provider = token_provider
        self._session = session or requests.Session()

    def _collection_url(self, collection_path: Sequence[str]) -> str:
        path = "/".join(collection_path)
        return f"{FIRESTORE_URL}/projects/{self.project_id}/databases/(default)/documents/{path}"

    def add_document(self, collection_path: Sequence[str], document: Dict) -> str:
        headers = {}
        try:
            token = self._token_provider() if self._token_provider else None
        except IdentityError as exc:
            raise StoreWriteError(f"No usable ID token for Firestore write: {exc}") from exc
        if token:
            headers["Authorization"] = f"Bearer {token}"

        try:
            response = self._session.post(
                self._collection_url(collection_path),
                json={"fields": to_firestore_fields(document)},
                headers=headers,
            )
        except requests.RequestException as exc:
            raise StoreWriteError(f"Firestore write failed: {exc}") from exc

        if response.status_code >= 400:
            raise StoreWriteError(
                f"Firestore rejected write with HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            name = response.json()["name"]
        except (ValueError, KeyError) as exc:
            raise StoreWriteError("Firestore response did not include a document name") from exc
        doc_id = name.rsplit("/", 1)[-1]
        logger.debug("Wrote document %s to %s", doc_id, "/".join(collection_path))
        return doc_id
