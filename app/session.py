"""
app/session.py — Read-only access to the locally persisted "current user".

The dashboard front-end persists the signed-in user in a key-value store
under "currentUser", serialised as a JSON string.  The backend mirrors that
store as a JSON file (LOCAL_STORAGE_PATH) and only ever reads it, to stamp
the `updatedBy` audit field on writes.
"""
import json
import logging
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ValidationError

from app.config import settings

logger = logging.getLogger(__name__)

CURRENT_USER_KEY = "currentUser"
UNKNOWN_USER = "unknown"


class CurrentUser(BaseModel):
    name: str
    email: Optional[str] = None
    role: Optional[str] = None

    class Config:
        extra = "ignore"


def _load_store(path: Path) -> dict:
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:  # ValueError covers JSON and UTF-8 decode errors
        logger.warning("Could not read local storage '%s': %s", path, exc)
        return {}
    return data if isinstance(data, dict) else {}


def read_current_user(path: Optional[str] = None) -> Optional[CurrentUser]:
    """
    Return the persisted user, or None when absent or unreadable.
    The stored value may be a JSON string (as browsers persist it) or an object.
    """
    store = _load_store(Path(path or settings.local_storage_path))
    raw = store.get(CURRENT_USER_KEY)
    if raw is None:
        return None

    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Stored %s is not valid JSON; ignoring.", CURRENT_USER_KEY)
            return None

    if not isinstance(raw, dict):
        return None
    try:
        return CurrentUser(**raw)
    except ValidationError as exc:
        logger.warning("Stored %s is malformed: %s", CURRENT_USER_KEY, exc)
        return None


def audit_name(path: Optional[str] = None) -> str:
    """Value for the `updatedBy` field: user name, else email, else "unknown"."""
    user = read_current_user(path)
    if user is None:
        return UNKNOWN_USER
    return user.name or user.email or UNKNOWN_USER
