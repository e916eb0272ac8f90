"""Error taxonomy for the ingestion pipeline."""
import logging
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


# Error code taxonomy
class ErrorCodes:
    # Input errors
    FILE_NOT_FOUND = "E.IN.001"
    UNSUPPORTED_FILE_TYPE = "E.IN.002"
    PARSE_FAILED = "E.IN.003"

    # Service errors
    EXTERNAL_SERVICE_FAILED = "E.SRV.002"
    STORAGE_ERROR = "E.SRV.003"
    PROCESSING_FAILED = "E.SRV.001"


class ThreatLensError(Exception):
    """Base error carrying a taxonomy code."""
    error_code = ErrorCodes.PROCESSING_FAILED

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {"error_code": self.error_code, "message": self.message, "details": self.details}


class ParseError(ThreatLensError):
    """A parser failed on a file it claimed. Contained by the registry."""
    error_code = ErrorCodes.PARSE_FAILED

    def __init__(self, parser: str, path: str, cause: Optional[BaseException] = None):
        self.parser = parser
        self.path = path
        self.cause = cause
        super().__init__(f"{parser} failed to parse {path}: {cause}", {"parser": parser, "path": path})


class UnsupportedFileType(ThreatLensError):
    """No parser claimed the file, or every claiming parser failed."""
    error_code = ErrorCodes.UNSUPPORTED_FILE_TYPE

    def __init__(self, path: str, attempted: Optional[list] = None):
        self.path = path
        self.attempted = list(attempted or [])
        msg = f"Unsupported file type: {path}"
        if self.attempted:
            msg += f" (tried: {', '.join(self.attempted)})"
        super().__init__(msg, {"path": path, "attempted": self.attempted})


class EvidenceNotFound(ThreatLensError, FileNotFoundError):
    """The evidence file does not exist. Never retried."""
    error_code = ErrorCodes.FILE_NOT_FOUND

    def __init__(self, path: str):
        self.path = path
        ThreatLensError.__init__(self, f"File not found: {path}", {"path": path})


class ExternalServiceError(ThreatLensError):
    """The external text-generation service failed. Recovered by fallback."""
    error_code = ErrorCodes.EXTERNAL_SERVICE_FAILED


class StorageError(ThreatLensError):
    """Spooling or reading an evidence file failed."""
    error_code = ErrorCodes.STORAGE_ERROR
