from typing import Any, Dict, Optional

import structlog  # type: ignore[import-not-found]
from pybreaker import CircuitBreaker, CircuitBreakerError  # type: ignore[import-not-found]
from tenacity import retry  # type: ignore[import-not-found]
from tenacity import retry_if_not_exception_type, stop_after_attempt, wait_exponential

import supabase  # type: ignore[import-not-found]
from app.core.exceptions import (
    ClientNotFoundError,
    ConcurrentModificationError,
    ConflictError,
    NotFoundError,
    SupabaseError,
)
from app.domain.schemas import ClientRecord
from app.infrastructure.client_repository import ClientRepository

logger = structlog.get_logger()

# Circuit breaker for Supabase calls. Lookups and version conflicts are answers, not outages.
supabase_breaker = CircuitBreaker(
    fail_max=5, reset_timeout=60, exclude=[NotFoundError, ConflictError]
)

supabase_retry = retry(
    wait=wait_exponential(multiplier=1, min=2, max=10),
    stop=stop_after_attempt(3),
    retry=retry_if_not_exception_type((NotFoundError, ConflictError)),
    reraise=True,
)


def create_supabase_client(url: str, service_key: str) -> Any:
    # Sessions and token refresh are irrelevant for a service-role client
    client_options: Any = None
    if hasattr(supabase, "ClientOptions"):
        client_options = supabase.ClientOptions(  # type: ignore[attr-defined]
            auto_refresh_token=False,
            persist_session=False,
        )
    return supabase.create_client(url, service_key, options=client_options)  # type: ignore[attr-defined]


class SupabaseClientRepository(ClientRepository):
    """
    Client aggregates in a Supabase table.

    Expected columns: id, advisor_id, pan_number, cas_data (jsonb), version (int).
    """

    def __init__(self, client: Any, table: str = "clients"):
        self.client = client
        self.table = table

    @staticmethod
    def _to_row(client: ClientRecord, version: int) -> Dict[str, Any]:
        return {
            "id": client.id,
            "advisor_id": client.advisor_id,
            "pan_number": client.pan_number,
            "cas_data": client.cas.model_dump(mode="json", by_alias=True),
            "version": version,
        }

    @staticmethod
    def _from_row(row: Dict[str, Any]) -> ClientRecord:
        return ClientRecord.model_validate(
            {
                "id": row["id"],
                "advisorId": row.get("advisor_id"),
                "panNumber": row.get("pan_number"),
                "casData": row.get("cas_data") or {},
                "version": row.get("version") or 0,
            }
        )

    def _fetch_row(self, client_id: str) -> Optional[Dict[str, Any]]:
        response = (
            self.client.table(self.table)
            .select("id, advisor_id, pan_number, cas_data, version")
            .eq("id", client_id)
            .limit(1)
            .execute()
        )
        return response.data[0] if response.data else None

    def _guarded(self, operation, *args):
        try:
            return supabase_breaker.call(operation, *args)
        except CircuitBreakerError as e:
            logger.error("supabase_circuit_open", table=self.table)
            raise SupabaseError("Client store is temporarily unavailable. Please try again.") from e

    def create(self, client: ClientRecord) -> ClientRecord:
        return self._guarded(self._create, client)

    def get(self, client_id: str) -> ClientRecord:
        return self._guarded(self._get, client_id)

    def save(self, client: ClientRecord, expected_version: int) -> ClientRecord:
        return self._guarded(self._save, client, expected_version)

    @supabase_retry
    def _create(self, client: ClientRecord) -> ClientRecord:
        if self._fetch_row(client.id) is not None:
            raise ConflictError("Client already exists", details={"client_id": client.id})
        try:
            response = self.client.table(self.table).insert(self._to_row(client, 0)).execute()
        except Exception as e:
            logger.error("client_insert_failed", client_id=client.id, error=str(e))
            raise SupabaseError(f"Failed to create client: {str(e)}") from e
        logger.info("client_created", client_id=client.id)
        return self._from_row(response.data[0])

    @supabase_retry
    def _get(self, client_id: str) -> ClientRecord:
        try:
            row = self._fetch_row(client_id)
        except Exception as e:
            logger.error("client_fetch_failed", client_id=client_id, error=str(e))
            raise SupabaseError(f"Failed to load client: {str(e)}") from e
        if row is None:
            raise ClientNotFoundError(client_id)
        return self._from_row(row)

    @supabase_retry
    def _save(self, client: ClientRecord, expected_version: int) -> ClientRecord:
        # Validate before writing so a broken aggregate never reaches the table
        candidate = ClientRecord.model_validate(client.model_dump())
        row = self._to_row(candidate, expected_version + 1)
        row.pop("id")

        try:
            response = (
                self.client.table(self.table)
                .update(row)
                .eq("id", candidate.id)
                .eq("version", expected_version)
                .execute()
            )
        except Exception as e:
            logger.error("client_update_failed", client_id=candidate.id, error=str(e))
            raise SupabaseError(f"Failed to save client: {str(e)}") from e

        if response.data:
            return self._from_row(response.data[0])

        # Nothing matched: either the client is gone or its version moved on
        stored = self._fetch_row(candidate.id)
        if stored is None:
            raise ClientNotFoundError(candidate.id)
        # A retried update whose first attempt committed finds its own write
        if all(stored.get(column) == value for column, value in row.items()):
            logger.info(
                "client_save_already_applied",
                client_id=candidate.id,
                version=expected_version + 1,
            )
            return self._from_row(stored)
        logger.warning(
            "client_save_version_conflict",
            client_id=candidate.id,
            expected_version=expected_version,
        )
        raise ConcurrentModificationError(candidate.id, expected_version)
