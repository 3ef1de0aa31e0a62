"""
Default text extractor for CDSL / NSDL CAS statements.

Turns the plain text of an unlocked CAS PDF into a PortfolioSnapshot. This
is deliberately shallow: investor identity, ISIN-keyed holding lines and the
statement total. A richer engine can replace it without touching the gateway.
"""

import re
from typing import Any, Dict, List, Optional

import structlog

from app.domain.schemas import InvestorInfo, PortfolioSnapshot, PortfolioSummary
from app.services.pdf.exceptions import UnsupportedFormatError

logger = structlog.get_logger()

SUPPORTED_FORMATS = ("CDSL", "NSDL")


class CasTextExtractor:
    """Detects the CAS format and extracts a holdings snapshot from its text."""

    CDSL_MARKERS = ["cdsl", "central depository services", "dp name", "dp id", "bo id"]
    NSDL_MARKERS = ["nsdl", "national securities depository", "demat account statement"]
    CAMS_MARKERS = ["computer age management services", "cams", "mutual fund statement"]
    KFINTECH_MARKERS = ["kfintech", "karvy"]

    def __init__(self):
        self.patterns = {
            "isin": re.compile(r"\b(IN[A-Z0-9]{10})\b"),
            "pan": re.compile(r"\b([A-Z]{5}[0-9]{4}[A-Z])\b"),
            "name": re.compile(
                r"^(?:Investor\s+Name|Name|First\s+Holder|Sole\s+Holder)\s*[:\-]\s*(.+)$",
                re.IGNORECASE | re.MULTILINE,
            ),
            "dp_id": re.compile(r"DP\s*ID\s*[:\-]?\s*([A-Z0-9]+)", re.IGNORECASE),
            "client_id": re.compile(r"(?:Client|BO)\s*ID\s*[:\-]?\s*([0-9]+)", re.IGNORECASE),
            "amount": re.compile(r"(\d[\d,]*(?:\.\d+)?)"),
            "total": re.compile(
                r"(?:Total\s+Portfolio\s+Value|Grand\s+Total|Total\s+Value)[ \t]*[:\-]?[ \t]*"
                r"(?:₹|Rs\.?|INR)?[ \t]*(\d[\d,]*(?:\.\d+)?)",
                re.IGNORECASE,
            ),
        }

    def detect_format(self, text: str) -> str:
        """
        Classify the statement by keyword markers.

        Returns:
            "CDSL" or "NSDL"

        Raises:
            UnsupportedFormatError: for CAMS / KFintech statements or unrecognised text
        """
        clean = text.lower()
        cdsl = sum(1 for marker in self.CDSL_MARKERS if marker in clean)
        nsdl = sum(1 for marker in self.NSDL_MARKERS if marker in clean)
        cams = sum(1 for marker in self.CAMS_MARKERS if marker in clean)
        kfintech = sum(1 for marker in self.KFINTECH_MARKERS if marker in clean)

        logger.debug(
            "cas_format_markers",
            cdsl=cdsl,
            nsdl=nsdl,
            cams=cams,
            kfintech=kfintech,
        )

        if cdsl >= 2:
            detected = "CDSL"
        elif nsdl >= 1:
            detected = "NSDL"
        elif cams >= 1:
            detected = "CAMS"
        elif kfintech >= 1:
            detected = "KFINTECH"
        elif "demat" in clean and "account" in clean:
            detected = "CDSL"
        else:
            raise UnsupportedFormatError(
                "Unknown CAS format. Currently supported: CDSL, NSDL. "
                "Please check if this is a valid CAS document."
            )

        if detected not in SUPPORTED_FORMATS:
            raise UnsupportedFormatError(
                f"Parser not implemented for CAS type: {detected}. "
                f"Available parsers: {', '.join(SUPPORTED_FORMATS)}"
            )
        return detected

    def extract(self, text: str) -> PortfolioSnapshot:
        cas_format = self.detect_format(text)

        equities: List[Dict[str, Any]] = []
        mutual_funds: List[Dict[str, Any]] = []
        for line in text.splitlines():
            holding = self._parse_holding_line(line)
            if holding is None:
                continue
            if holding["isin"].startswith("INF"):
                mutual_funds.append(holding)
            else:
                equities.append(holding)

        demat_accounts: List[Dict[str, Any]] = []
        if equities:
            dp_id = self.patterns["dp_id"].search(text)
            client_id = self.patterns["client_id"].search(text)
            demat_accounts.append(
                {
                    "depository": cas_format,
                    "dpId": dp_id.group(1) if dp_id else None,
                    "clientId": client_id.group(1) if client_id else None,
                    "holdings": equities,
                    "value": round(sum(h["value"] for h in equities), 2),
                }
            )

        equity_value = round(sum(h["value"] for h in equities), 2)
        mutual_fund_value = round(sum(h["value"] for h in mutual_funds), 2)
        stated_total = self._stated_total(text)

        return PortfolioSnapshot(
            investor=self._extract_investor(text),
            demat_accounts=demat_accounts,
            mutual_funds=mutual_funds,
            summary=PortfolioSummary(
                total_value=stated_total if stated_total is not None else equity_value + mutual_fund_value,
                equity_value=equity_value,
                mutual_fund_value=mutual_fund_value,
                holdings_count=len(equities) + len(mutual_funds),
            ),
            format=cas_format,
        )

    def _extract_investor(self, text: str) -> InvestorInfo:
        name = self.patterns["name"].search(text)
        pan = self.patterns["pan"].search(text)
        return InvestorInfo(
            name=name.group(1).strip() if name else None,
            identity_number=pan.group(1) if pan else None,
        )

    def _parse_holding_line(self, line: str) -> Optional[Dict[str, Any]]:
        isin_match = self.patterns["isin"].search(line)
        if not isin_match:
            return None

        isin = isin_match.group(1)
        rest = line[isin_match.end():]
        amounts = [self._parse_amount(a) for a in self.patterns["amount"].findall(rest)]
        if not amounts:
            return None

        name = line[: isin_match.start()].strip(" -:|") or rest.split("  ")[0].strip()
        return {
            "isin": isin,
            "name": name,
            "quantity": amounts[0] if len(amounts) > 1 else None,
            "value": amounts[-1],
        }

    def _stated_total(self, text: str) -> Optional[float]:
        match = self.patterns["total"].search(text)
        if not match:
            return None
        return self._parse_amount(match.group(1))

    @staticmethod
    def _parse_amount(value: str) -> float:
        """Parse Indian-grouped numbers such as 1,50,000.00."""
        return float(value.replace(",", ""))
