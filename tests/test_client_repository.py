"""Tests for client aggregate persistence."""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from pydantic import ValidationError as PydanticValidationError
from tenacity import wait_none

from app.core.exceptions import (
    ClientNotFoundError,
    ConcurrentModificationError,
    ConflictError,
)
from app.domain.schemas import CasFile, CasStatus, ClientRecord
from app.infrastructure.client_repository import InMemoryClientRepository
from app.infrastructure.supabase_client import SupabaseClientRepository


class TestInMemoryClientRepository:
    def test_create_and_get(self):
        repo = InMemoryClientRepository()
        repo.create(ClientRecord(id="c1", advisor_id="a1"))

        client = repo.get("c1")

        assert client.advisor_id == "a1"
        assert client.version == 0
        assert client.cas.status == CasStatus.NOT_UPLOADED

    def test_duplicate_create(self):
        repo = InMemoryClientRepository()
        repo.create(ClientRecord(id="c1"))
        with pytest.raises(ConflictError):
            repo.create(ClientRecord(id="c1"))

    def test_unknown_client(self):
        with pytest.raises(ClientNotFoundError):
            InMemoryClientRepository().get("nope")

    def test_save_bumps_version(self):
        repo = InMemoryClientRepository()
        repo.create(ClientRecord(id="c1"))
        client = repo.get("c1")
        client.pan_number = "ABCDE1234F"

        saved = repo.save(client, client.version)

        assert saved.version == 1
        assert repo.get("c1").pan_number == "ABCDE1234F"

    def test_stale_version_rejected(self):
        repo = InMemoryClientRepository()
        repo.create(ClientRecord(id="c1"))
        first = repo.get("c1")
        second = repo.get("c1")
        repo.save(first, first.version)

        with pytest.raises(ConcurrentModificationError):
            repo.save(second, second.version)

    def test_returned_records_are_detached(self):
        repo = InMemoryClientRepository()
        repo.create(ClientRecord(id="c1"))
        client = repo.get("c1")
        client.pan_number = "CHANGED"

        assert repo.get("c1").pan_number is None

    def test_invalid_aggregate_cannot_be_saved(self):
        repo = InMemoryClientRepository()
        repo.create(ClientRecord(id="c1"))
        client = repo.get("c1")
        # Parsed without parsed data breaks the record invariants
        client.cas.status = CasStatus.PARSED

        with pytest.raises(PydanticValidationError):
            repo.save(client, client.version)
        assert repo.get("c1").cas.status == CasStatus.NOT_UPLOADED


def stored_row(version=3, **overrides):
    row = {
        "id": "c1",
        "advisor_id": "a1",
        "pan_number": None,
        "cas_data": {"status": "not_uploaded", "history": []},
        "version": version,
    }
    row.update(overrides)
    return row


class TestSupabaseClientRepository:
    """Tests against a mocked supabase client."""

    @pytest.fixture
    def supabase(self):
        return MagicMock()

    def select_returns(self, supabase, rows):
        query = supabase.table.return_value.select.return_value.eq.return_value.limit.return_value
        query.execute.return_value = MagicMock(data=rows)

    def update_returns(self, supabase, rows):
        query = supabase.table.return_value.update.return_value.eq.return_value.eq.return_value
        query.execute.return_value = MagicMock(data=rows)

    def test_get_maps_row(self, supabase):
        self.select_returns(supabase, [stored_row()])
        repo = SupabaseClientRepository(supabase, table="clients")

        client = repo.get("c1")

        supabase.table.assert_called_with("clients")
        assert client.id == "c1"
        assert client.version == 3
        assert client.cas.status == CasStatus.NOT_UPLOADED

    def test_get_missing(self, supabase):
        self.select_returns(supabase, [])
        with pytest.raises(ClientNotFoundError):
            SupabaseClientRepository(supabase).get("c1")

    def test_save_is_conditional_on_version(self, supabase):
        self.select_returns(supabase, [stored_row()])
        repo = SupabaseClientRepository(supabase)
        client = repo.get("c1")
        client.cas.status = CasStatus.UPLOADED
        client.cas.file = CasFile(
            name="cas.pdf",
            storage_path="/data/cas.pdf",
            size=10,
            uploaded_at=datetime.now(timezone.utc),
        )
        updated = stored_row(
            version=4, cas_data=client.cas.model_dump(mode="json", by_alias=True)
        )
        self.update_returns(supabase, [updated])

        saved = repo.save(client, 3)

        payload = supabase.table.return_value.update.call_args.args[0]
        assert payload["version"] == 4
        assert payload["cas_data"]["status"] == "uploaded"
        assert payload["cas_data"]["file"]["storagePath"] == "/data/cas.pdf"
        update_query = supabase.table.return_value.update.return_value
        update_query.eq.assert_called_with("id", "c1")
        update_query.eq.return_value.eq.assert_called_with("version", 3)
        assert saved.version == 4
        assert saved.cas.status == CasStatus.UPLOADED

    def test_save_version_conflict(self, supabase):
        self.select_returns(supabase, [stored_row(version=5)])
        self.update_returns(supabase, [])

        with pytest.raises(ConcurrentModificationError):
            SupabaseClientRepository(supabase).save(ClientRecord(id="c1", version=3), 3)

    def test_save_missing_client(self, supabase):
        self.select_returns(supabase, [])
        self.update_returns(supabase, [])

        with pytest.raises(ClientNotFoundError):
            SupabaseClientRepository(supabase).save(ClientRecord(id="c1"), 0)

    def test_retried_save_recognises_its_own_committed_write(self, supabase, monkeypatch):
        monkeypatch.setattr(SupabaseClientRepository._save.retry, "wait", wait_none())
        client = ClientRecord(id="c1", advisor_id="a1", version=3)
        committed = stored_row(
            version=4, cas_data=client.cas.model_dump(mode="json", by_alias=True)
        )
        update_query = supabase.table.return_value.update.return_value.eq.return_value.eq.return_value
        # The first update commits but its response is lost
        update_query.execute.side_effect = [
            ConnectionError("connection reset by peer"),
            MagicMock(data=[]),
        ]
        self.select_returns(supabase, [committed])

        saved = SupabaseClientRepository(supabase).save(client, 3)

        assert saved.version == 4
        assert update_query.execute.call_count == 2

    def test_same_version_with_other_content_is_a_conflict(self, supabase):
        other_write = stored_row(
            version=4, cas_data={"status": "error", "parseError": "boom", "history": []}
        )
        self.select_returns(supabase, [other_write])
        self.update_returns(supabase, [])

        with pytest.raises(ConcurrentModificationError):
            SupabaseClientRepository(supabase).save(ClientRecord(id="c1", advisor_id="a1"), 3)
