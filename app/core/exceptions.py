from typing import Any, Dict, Optional

from fastapi import status

from app.core.enums import ConflictKind


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code
        self.details = details or {}

    @property
    def detail(self) -> Dict[str, Any]:
        """Payload used as HTTPException.detail by the routers."""
        return {"code": self.code, "message": self.message, "details": self.details}


class ValidationError(ServiceError):
    """Rejected before any write: malformed input or amount mismatch."""

    def __init__(self, message: str, code: str = "VALIDATION_ERROR", details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, status.HTTP_400_BAD_REQUEST, code=code, details=details)


class NotFoundError(ServiceError):
    def __init__(self, message: str, code: str = "NOT_FOUND") -> None:
        super().__init__(message, status.HTTP_404_NOT_FOUND, code=code)


class ConflictError(ServiceError):
    """State conflict. The caller must re-fetch ledger state before retrying."""

    def __init__(self, kind: ConflictKind, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, status.HTTP_409_CONFLICT, code=kind.value, details=details)
        self.kind = kind
