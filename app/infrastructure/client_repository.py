"""
Client aggregate persistence.

The CAS record lives inside the client aggregate, so every CAS mutation is a
save of the whole ClientRecord guarded by its version number.
"""

import threading
from abc import ABC, abstractmethod
from typing import Dict

import structlog

from app.core.exceptions import (
    ClientNotFoundError,
    ConcurrentModificationError,
    ConflictError,
)
from app.domain.schemas import ClientRecord

logger = structlog.get_logger()


class ClientRepository(ABC):
    """Load and store client aggregates with optimistic concurrency."""

    @abstractmethod
    def create(self, client: ClientRecord) -> ClientRecord:
        """Insert a new client. Raises ConflictError if the id is taken."""

    @abstractmethod
    def get(self, client_id: str) -> ClientRecord:
        """Return a detached copy of the client. Raises ClientNotFoundError."""

    @abstractmethod
    def save(self, client: ClientRecord, expected_version: int) -> ClientRecord:
        """
        Store the client if the persisted version still equals expected_version.

        Returns the stored copy with version expected_version + 1.

        Raises:
            ClientNotFoundError: client does not exist
            ConcurrentModificationError: someone else saved in between
        """


class InMemoryClientRepository(ClientRepository):
    """
    Process-local repository for development and tests.

    Records are kept as validated copies so callers never share mutable
    state with the store.
    """

    def __init__(self):
        self._clients: Dict[str, ClientRecord] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _copy(client: ClientRecord) -> ClientRecord:
        # Round-tripping re-runs the CasRecord invariants
        return ClientRecord.model_validate(client.model_dump())

    def create(self, client: ClientRecord) -> ClientRecord:
        stored = self._copy(client).model_copy(update={"version": 0})
        with self._lock:
            if stored.id in self._clients:
                raise ConflictError("Client already exists", details={"client_id": stored.id})
            self._clients[stored.id] = stored
        logger.info("client_created", client_id=stored.id)
        return self._copy(stored)

    def get(self, client_id: str) -> ClientRecord:
        with self._lock:
            stored = self._clients.get(client_id)
        if stored is None:
            raise ClientNotFoundError(client_id)
        return self._copy(stored)

    def save(self, client: ClientRecord, expected_version: int) -> ClientRecord:
        candidate = self._copy(client)
        with self._lock:
            current = self._clients.get(candidate.id)
            if current is None:
                raise ClientNotFoundError(candidate.id)
            if current.version != expected_version:
                logger.warning(
                    "client_save_version_conflict",
                    client_id=candidate.id,
                    expected_version=expected_version,
                    current_version=current.version,
                )
                raise ConcurrentModificationError(candidate.id, expected_version)
            candidate.version = expected_version + 1
            self._clients[candidate.id] = candidate
        return self._copy(candidate)
