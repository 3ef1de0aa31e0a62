"""
CAS parsing exceptions for structured error handling.

Every failure of the parsing engine is one of four kinds. Password failures
are their own type so callers can tell the advisor the password is wrong.
"""

from app.core.exceptions import DomainException


class CasParserError(DomainException):
    """Base exception for parsing engine failures"""

    error_code = "PARSER_ERROR"

    def __init__(self, message: str):
        super().__init__(message, details={"error_code": self.error_code})


class WrongPasswordError(CasParserError):
    """Password missing or incorrect for an encrypted CAS document"""

    error_code = "WRONG_PASSWORD"

    def __init__(self, message: str = "Incorrect password for encrypted PDF"):
        super().__init__(message)


class CorruptFileError(CasParserError):
    """PDF is damaged, corrupted, or has no extractable text"""

    error_code = "CORRUPT_FILE"

    def __init__(self, message: str = "PDF file is corrupted or unreadable"):
        super().__init__(message)


class UnsupportedFormatError(CasParserError):
    """Document is readable but not a supported CAS format"""

    error_code = "UNSUPPORTED_FORMAT"

    def __init__(self, message: str = "This PDF is not a supported statement format"):
        super().__init__(message)


class UnknownParserError(CasParserError):
    """Unexpected failure inside the parsing engine"""

    error_code = "UNKNOWN_PARSER_ERROR"

    def __init__(self, message: str = "An unexpected error occurred while parsing the CAS file"):
        super().__init__(message)


# Error code to user-friendly message mapping
ERROR_MESSAGES = {
    "WRONG_PASSWORD": {
        "title": "Incorrect Password",
        "message": "Incorrect CAS password. Please check and try again.",
        "help": "CAS passwords are usually the PAN in capitals, or PAN followed by date of birth.",
    },
    "CORRUPT_FILE": {
        "title": "Unreadable or Corrupted PDF",
        "message": "The PDF file appears to be damaged or corrupted.",
        "help": "Please download a fresh copy of the statement and upload it again.",
    },
    "UNSUPPORTED_FORMAT": {
        "title": "Unsupported Statement Format",
        "message": "Please upload a CDSL or NSDL Consolidated Account Statement (CAS) PDF.",
        "help": "CAMS and KFintech mutual fund statements are not supported yet.",
    },
    "UNKNOWN_PARSER_ERROR": {
        "title": "Extraction Failed",
        "message": "We couldn't extract holdings from this statement.",
        "help": "Please try again. If the problem persists, contact support.",
    },
}
