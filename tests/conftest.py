"""Pytest configuration and fixtures."""

import os
import threading
from typing import List, Optional

import fitz  # PyMuPDF
import pytest

# Set up environment for testing before app.core.config is imported
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("REPOSITORY_BACKEND", "memory")
os.environ.setdefault("CAS_PARSE_BACKEND", "background")

from app.domain.schemas import (  # noqa: E402
    ClientRecord,
    InvestorInfo,
    PortfolioSnapshot,
    PortfolioSummary,
)
from app.infrastructure.client_repository import InMemoryClientRepository  # noqa: E402
from app.services.cas.file_stager import FileStager  # noqa: E402
from app.services.cas.ingestion import CasIngestionService  # noqa: E402
from app.services.pdf.gateway import ParserGateway  # noqa: E402
from app.utils.encryption import CredentialVault  # noqa: E402

TEST_ENCRYPTION_KEY = "00112233445566778899aabbccddeeff00112233445566778899aabbccddeeff"
CLIENT_ID = "client-1"

SAMPLE_CDSL_TEXT = """CDSL Central Depository Services (India) Limited
Consolidated Account Statement
Name: RAVI KUMAR
PAN: ABCDE1234F
DP ID: 12081600 Client ID: 00012345
INFOSYS LIMITED INE009A01021 50 100000.00
HDFC FLEXI CAP FUND INF179K01VY8 200.500 50000.00
Total Portfolio Value: INR 1,50,000.00"""


def build_pdf(text: str, password: Optional[str] = None) -> bytes:
    """Render text onto a one-page PDF, AES-256 encrypted when a password is given."""
    doc = fitz.open()
    page = doc.new_page()
    if text:
        page.insert_text((50, 72), text, fontsize=9)
    try:
        if password:
            return doc.tobytes(
                encryption=fitz.PDF_ENCRYPT_AES_256,
                user_pw=password,
                owner_pw=f"{password}-owner",
            )
        return doc.tobytes()
    finally:
        doc.close()


def sample_snapshot(total_value: float = 150000.0, pan: Optional[str] = "ABCDE1234F") -> PortfolioSnapshot:
    return PortfolioSnapshot(
        investor=InvestorInfo(name="RAVI KUMAR", identity_number=pan),
        demat_accounts=[{"depository": "CDSL", "holdings": [], "value": total_value}],
        mutual_funds=[],
        summary=PortfolioSummary(total_value=total_value),
        format="CDSL",
    )


class FakeParserGateway(ParserGateway):
    """Scripted gateway: returns `result`, or raises `error`, recording each call."""

    def __init__(self, result: Optional[PortfolioSnapshot] = None, error: Optional[Exception] = None):
        self.result = result or sample_snapshot()
        self.error = error
        self.calls: List[tuple] = []
        self.entered = threading.Event()
        self.release: Optional[threading.Event] = None

    def parse(self, file_path: str, password: Optional[str] = None) -> PortfolioSnapshot:
        self.calls.append((file_path, password))
        self.entered.set()
        if self.release is not None:
            self.release.wait(timeout=10)
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture
def pdf_bytes() -> bytes:
    return build_pdf(SAMPLE_CDSL_TEXT)


@pytest.fixture
def vault() -> CredentialVault:
    return CredentialVault(TEST_ENCRYPTION_KEY)


@pytest.fixture
def upload_dir(tmp_path):
    return tmp_path / "cas"


@pytest.fixture
def stager(upload_dir) -> FileStager:
    return FileStager(str(upload_dir))


@pytest.fixture
def repository() -> InMemoryClientRepository:
    repo = InMemoryClientRepository()
    repo.create(ClientRecord(id=CLIENT_ID, advisor_id="advisor-1"))
    return repo


@pytest.fixture
def gateway() -> FakeParserGateway:
    return FakeParserGateway()


@pytest.fixture
def service(repository, vault, stager, gateway) -> CasIngestionService:
    return CasIngestionService(
        repository=repository,
        vault=vault,
        stager=stager,
        gateway=gateway,
    )
