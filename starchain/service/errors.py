from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for failures surfaced to the request layer.

    Each exception class defines an HTTP-ish status_code and a stable
    error_code so the (external) request layer can report a structured
    failure reason without inspecting message text:
    - invalid_flow (500)
    - not_found (404)
    - build_failed (500)
    - prediction_failed (500)

    Raised directly it reports internal_error (500).
    """

    status_code: int = 500
    error_code: str = "internal_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}

    def to_dict(self) -> dict:
        return {
            "error": {
                "code": self.error_code,
                "message": self.message,
                "details": self.detail,
            }
        }


class InvalidFlowError(ServiceError):
    """Flow graph is malformed: no unique ending node or bad ending output (500)."""
    status_code = 500
    error_code = "invalid_flow"


class NotFoundError(ServiceError):
    """Requested flow or resource not found (404)."""
    status_code = 404
    error_code = "not_found"


class PluginNotFoundError(NotFoundError):
    """No node or credential implementation registered under that name/version."""
    pass


class PluginInstantiationError(ServiceError):
    """A node raised while being instantiated; the whole build is aborted (500)."""
    status_code = 500
    error_code = "build_failed"


class PredictionError(ServiceError):
    """The ending node failed while producing the prediction (500)."""
    status_code = 500
    error_code = "prediction_failed"


__all__ = [
    "ServiceError",
    "InvalidFlowError",
    "NotFoundError",
    "PluginNotFoundError",
    "PluginInstantiationError",
    "PredictionError",
]
