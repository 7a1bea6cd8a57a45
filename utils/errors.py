"""Error taxonomy for expense operations and the uniform error response body."""
from typing import Any, Dict, Optional


class ExpenseError(Exception):
    """Base class for failures that map onto a client-facing status code."""
    status_code = 500

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(ExpenseError):
    status_code = 400


class InvalidIdentifier(ExpenseError):
    status_code = 400


class NoFieldsToUpdate(ExpenseError):
    status_code = 400


class NotFound(ExpenseError):
    status_code = 404


class StorageError(ExpenseError):
    status_code = 500


def error_body(message: str, details: Optional[Any] = None) -> Dict[str, Any]:
    error: Dict[str, Any] = {"message": message}
    if details is not None:
        error["details"] = details
    return {"error": error}
