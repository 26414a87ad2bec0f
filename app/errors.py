"""
app/errors.py — Error taxonomy shared by the data source, cache and dashboard.
"""
from enum import Enum


class ErrorKind(str, Enum):
    FETCH_ERROR      = "fetch_error"
    UPDATE_ERROR     = "update_error"
    REMOVE_ERROR     = "remove_error"
    VALIDATION_ERROR = "validation_error"
    NOT_FOUND        = "not_found"


class DashboardError(Exception):
    kind: ErrorKind = ErrorKind.FETCH_ERROR


class FetchError(DashboardError):
    """Reading a collection from the document source failed."""

    kind = ErrorKind.FETCH_ERROR

    def __init__(self, path: str, message: str = ""):
        self.path = path
        super().__init__(message or f"Failed to fetch '{path}'")


class RecordNotFoundError(DashboardError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, path: str, key: str):
        self.path = path
        self.key = key
        super().__init__(f"No record '{key}' in '{path}'")
