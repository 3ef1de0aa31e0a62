"""
Parsing engine boundary.

The state machine only sees parse(file_path, password) -> PortfolioSnapshot
and the four classified failures in app.services.pdf.exceptions.
"""

import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

import fitz  # PyMuPDF
import structlog

from app.domain.schemas import PortfolioSnapshot
from app.services.pdf.exceptions import (
    CasParserError,
    CorruptFileError,
    UnknownParserError,
    WrongPasswordError,
)
from app.services.pdf.extractor import CasTextExtractor

logger = structlog.get_logger()

SLOW_PARSE_SECONDS = 5.0


class ParserGateway(ABC):
    """Opaque CAS parsing capability."""

    @abstractmethod
    def parse(self, file_path: str, password: Optional[str] = None) -> PortfolioSnapshot:
        """
        Parse a staged CAS document.

        Raises:
            WrongPasswordError: password missing or incorrect
            CorruptFileError: not an openable PDF, or no text inside
            UnsupportedFormatError: readable, but not a supported CAS
            UnknownParserError: anything else inside the engine
            OSError: the staged file could not be read
        """


class PyMuPDFParserGateway(ParserGateway):
    """
    Unlocks the PDF with PyMuPDF, pulls its text and hands it to an extractor.
    """

    MAX_PAGE_COUNT = 100

    def __init__(self, extractor: Optional[CasTextExtractor] = None):
        self.extractor = extractor or CasTextExtractor()

    def parse(self, file_path: str, password: Optional[str] = None) -> PortfolioSnapshot:
        start = time.monotonic()
        # OSError propagates: a read failure is a storage problem, not a parse result
        pdf_bytes = Path(file_path).read_bytes()

        try:
            text = self._extract_text(pdf_bytes, password)
            snapshot = self.extractor.extract(text)
        except CasParserError:
            raise
        except Exception as e:
            logger.error("cas_parser_unexpected_error", error=str(e), exc_info=True)
            raise UnknownParserError(f"CAS parsing failed: {e}") from e

        duration = time.monotonic() - start
        log = logger.warning if duration > SLOW_PARSE_SECONDS else logger.info
        log(
            "cas_document_parsed",
            cas_format=snapshot.format,
            demat_accounts=len(snapshot.demat_accounts),
            mutual_funds=len(snapshot.mutual_funds),
            duration_seconds=round(duration, 3),
        )
        return snapshot

    def _extract_text(self, pdf_bytes: bytes, password: Optional[str]) -> str:
        try:
            doc = fitz.open(stream=pdf_bytes, filetype="pdf")
        except Exception as e:
            logger.warning("cas_pdf_open_failed", error=str(e))
            raise CorruptFileError(
                "Failed to open PDF. Please ensure the PDF file is not corrupted."
            ) from e

        try:
            if doc.needs_pass:
                if not password:
                    raise WrongPasswordError(
                        "This PDF is password-protected. Please provide the CAS password."
                    )
                auth_result = doc.authenticate(password)
                if not auth_result:
                    raise WrongPasswordError("Incorrect password for encrypted PDF")
                logger.info(
                    "pdf_unlocked_with_password",
                    has_user_password=auth_result == 1,
                    has_owner_password=auth_result == 2,
                )

            if doc.page_count > self.MAX_PAGE_COUNT:
                raise CorruptFileError(
                    f"PDF has too many pages ({doc.page_count} > {self.MAX_PAGE_COUNT})"
                )

            try:
                text = "\n".join(page.get_text("text") for page in doc)
            except Exception as e:
                raise CorruptFileError("Failed to read text from PDF pages") from e
        finally:
            doc.close()

        if not text.strip():
            raise CorruptFileError(
                "Failed to extract text from PDF. The PDF might be corrupted, "
                "password protected, or in an unsupported format."
            )
        return text
