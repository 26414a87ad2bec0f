"""
app/prompts/ui_messages.py — User-facing text for dashboard errors.

The dashboard shows these strings as-is; keep them short and actionable.
"""
from app.errors import ErrorKind

ERROR_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.FETCH_ERROR:
        "Could not load {collection}. Check your connection and try again.",
    ErrorKind.UPDATE_ERROR:
        "Could not save changes to {collection}. Nothing was changed; please try again.",
    ErrorKind.REMOVE_ERROR:
        "Could not delete the record from {collection}. Please try again.",
    ErrorKind.VALIDATION_ERROR:
        "Please fix the highlighted fields before saving: {details}",
    ErrorKind.NOT_FOUND:
        "That record no longer exists in {collection}. Refresh the page to see the latest data.",
}


def error_message(kind: ErrorKind, collection: str = "the dashboard", details: str = "") -> str:
    return ERROR_MESSAGES[kind].format(collection=collection, details=details)
