"""Closed error taxonomy shared by all layers.

Every failure that crosses a component boundary is a BridgeError carrying an
ErrorKind. The HTTP boundary maps the kind to a status code in one place;
callers never branch on exception subclasses.
"""

from enum import Enum
from typing import Any


class ErrorKind(Enum):
    """Error kinds with their HTTP status code and retry classification."""

    TENANT_MISMATCH = ("tenant_mismatch", 403, False)
    TENANT_NOT_FOUND = ("tenant_not_found", 404, False)
    SOURCE_UNAVAILABLE = ("source_unavailable", 502, True)
    SOURCE_ITEM_NOT_FOUND = ("source_item_not_found", 404, False)
    EMBEDDING_UNAVAILABLE = ("embedding_unavailable", 503, True)
    GENERATION_UNAVAILABLE = ("generation_unavailable", 503, True)
    INVALID_SIGNATURE = ("invalid_signature", 401, False)
    INVALID_REQUEST = ("invalid_request", 400, False)
    UNKNOWN_ENGINE = ("unknown_engine", 404, False)

    def __init__(self, code: str, status_code: int, transient: bool) -> None:
        self.code = code
        self.status_code = status_code
        self.transient = transient


class BridgeError(Exception):
    """Single exception type for all expected failures.

    Attributes:
        kind (ErrorKind): What went wrong.
        message (str): Human-readable description.
        details (dict): Optional structured context for logs and responses.
    """

    def __init__(self, kind: ErrorKind, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.details = details or {}

    @property
    def status_code(self) -> int:
        return self.kind.status_code

    @property
    def transient(self) -> bool:
        return self.kind.transient

    def to_dict(self) -> dict[str, Any]:
        return {"success": False, "error": self.kind.code, "message": self.message}

    def __repr__(self) -> str:
        return f"BridgeError({self.kind.name}, {self.message!r})"


def is_transient(exc: BaseException) -> bool:
    """Return True if the exception is a BridgeError worth retrying."""
    return isinstance(exc, BridgeError) and exc.transient
