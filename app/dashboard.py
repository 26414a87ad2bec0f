"""
app/dashboard.py — Controller between the HTTP layer and the document source.

Reads:
  - donors() goes through the donor ReadThroughCache.
  - records() reads finances / inventory straight from the source.
  - Read failures raise FetchError; the HTTP layer turns that into a message.

Writes (add / update / remove):
  1. Validate the payload — a bad payload never reaches the database.
  2. Stamp `updatedBy` from the locally persisted current user.
  3. Write, and map any failure onto an ErrorKind.
  4. Donor writes invalidate the donor cache.
  Every write returns a WriteResult; expected failures never raise.
"""
import logging
import time
from dataclasses import dataclass
from datetime import datetime, tzinfo
from typing import Any, Callable, Mapping, Optional, Protocol

from app.analytics import MonthSummary, monthly_breakdown, summarize_month
from app.cache import Clock, ReadThroughCache
from app.config import settings
from app.errors import ErrorKind, FetchError, RecordNotFoundError
from app.prompts.ui_messages import error_message
from app.session import audit_name
from app.validation import Collection, PayloadValidationError, validate_payload

logger = logging.getLogger(__name__)


class DocumentSource(Protocol):
    async def read(self, path: str) -> list[dict]: ...

    async def add(self, path: str, record: Mapping[str, Any]) -> str: ...

    async def update(self, path: str, key: str, partial: Mapping[str, Any]) -> dict: ...

    async def remove(self, path: str, key: str) -> None: ...


@dataclass
class WriteResult:
    ok: bool
    error: Optional[ErrorKind] = None
    message: str = ""
    key: Optional[str] = None
    record: Optional[dict] = None

    @classmethod
    def success(cls, key: str, record: Optional[dict] = None) -> "WriteResult":
        return cls(ok=True, key=key, record=record)

    @classmethod
    def failure(cls, kind: ErrorKind, message: str, key: Optional[str] = None) -> "WriteResult":
        return cls(ok=False, error=kind, message=message, key=key)

    def to_dict(self) -> dict:
        return {
            "ok":      self.ok,
            "error":   self.error.value if self.error else None,
            "message": self.message,
            "key":     self.key,
            "record":  self.record,
        }


class Dashboard:

    def __init__(
        self,
        source: DocumentSource,
        ttl_seconds: Optional[float] = None,
        clock: Clock = time.monotonic,
        tz: Optional[tzinfo] = None,
        audit: Callable[[], str] = audit_name,
    ):
        self.source = source
        self.tz = tz or settings.tzinfo
        self._audit = audit
        self.donor_cache: ReadThroughCache[list[dict]] = ReadThroughCache(
            self._load_donors,
            settings.cache_ttl_seconds if ttl_seconds is None else ttl_seconds,
            clock=clock,
            name=Collection.DONORS.value,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def _load_donors(self) -> list[dict]:
        return await self.source.read(Collection.DONORS.value)

    async def donors(self) -> list[dict]:
        return await self.donor_cache.get()

    async def records(self, collection: Collection) -> list[dict]:
        if collection is Collection.DONORS:
            return await self.donors()
        try:
            return await self.source.read(collection.value)
        except Exception as exc:
            logger.error("Failed to read %s: %s", collection.value, exc)
            raise FetchError(collection.value, str(exc)) from exc

    async def month_summary(self, reference: Optional[datetime] = None) -> MonthSummary:
        """Income / expense for the month containing `reference` (default: now)."""
        transactions = await self.records(Collection.FINANCES)
        reference = reference or datetime.now(self.tz)
        summary = summarize_month(transactions, reference, self.tz)
        if summary.skipped:
            logger.warning(
                "%d finance record(s) skipped in %s summary", summary.skipped, summary.label
            )
        return summary

    async def finance_history(self) -> list[MonthSummary]:
        transactions = await self.records(Collection.FINANCES)
        return monthly_breakdown(transactions, self.tz)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _rejected(self, collection: Collection, exc: PayloadValidationError) -> WriteResult:
        logger.info("Rejected %s payload: %s", collection.value, exc)
        return WriteResult.failure(
            ErrorKind.VALIDATION_ERROR,
            error_message(ErrorKind.VALIDATION_ERROR, collection.value, str(exc)),
        )

    def _after_write(self, collection: Collection) -> None:
        if collection is Collection.DONORS:
            self.donor_cache.invalidate()

    async def add_record(self, collection: Collection, payload: Mapping[str, Any]) -> WriteResult:
        try:
            data = validate_payload(collection, payload, partial=False)
        except PayloadValidationError as exc:
            return self._rejected(collection, exc)

        data["updatedBy"] = self._audit()
        try:
            key = await self.source.add(collection.value, data)
        except Exception as exc:
            logger.error("Failed to add %s record: %s", collection.value, exc)
            return WriteResult.failure(
                ErrorKind.UPDATE_ERROR, error_message(ErrorKind.UPDATE_ERROR, collection.value)
            )

        self._after_write(collection)
        logger.info("Added %s/%s", collection.value, key)
        return WriteResult.success(key, {**data, "id": key})

    async def update_record(
        self,
        collection: Collection,
        key: str,
        payload: Mapping[str, Any],
    ) -> WriteResult:
        if not key or not key.strip():
            return self._rejected(collection, PayloadValidationError(["id: record key is required"]))
        try:
            data = validate_payload(collection, payload, partial=True)
        except PayloadValidationError as exc:
            return self._rejected(collection, exc)

        data["updatedBy"] = self._audit()
        try:
            record = await self.source.update(collection.value, key, data)
        except RecordNotFoundError:
            logger.warning("Update of missing record %s/%s", collection.value, key)
            return WriteResult.failure(
                ErrorKind.NOT_FOUND, error_message(ErrorKind.NOT_FOUND, collection.value), key
            )
        except Exception as exc:
            logger.error("Failed to update %s/%s: %s", collection.value, key, exc)
            return WriteResult.failure(
                ErrorKind.UPDATE_ERROR, error_message(ErrorKind.UPDATE_ERROR, collection.value), key
            )

        self._after_write(collection)
        logger.info("Updated %s/%s", collection.value, key)
        return WriteResult.success(key, record)

    async def remove_record(self, collection: Collection, key: str) -> WriteResult:
        if not key or not key.strip():
            return self._rejected(collection, PayloadValidationError(["id: record key is required"]))
        try:
            await self.source.remove(collection.value, key)
        except RecordNotFoundError:
            logger.warning("Removal of missing record %s/%s", collection.value, key)
            return WriteResult.failure(
                ErrorKind.NOT_FOUND, error_message(ErrorKind.NOT_FOUND, collection.value), key
            )
        except Exception as exc:
            logger.error("Failed to remove %s/%s: %s", collection.value, key, exc)
            return WriteResult.failure(
                ErrorKind.REMOVE_ERROR, error_message(ErrorKind.REMOVE_ERROR, collection.value), key
            )

        self._after_write(collection)
        logger.info("Removed %s/%s", collection.value, key)
        return WriteResult.success(key)

    # ------------------------------------------------------------------
    # Cache control
    # ------------------------------------------------------------------

    def on_donors_changed(self, snapshot: Optional[list[dict]] = None) -> None:
        """Subscription hook: the source reported a donor change."""
        logger.debug("Donor change notification; dropping cached donors")
        self.donor_cache.invalidate()

    def clear_cache(self) -> None:
        self.donor_cache.clear()

    def cache_status(self) -> dict:
        age = self.donor_cache.age()
        return {
            "fresh":       self.donor_cache.is_fresh(),
            "age_seconds": round(age, 3) if age is not None else None,
            "ttl_seconds": self.donor_cache.ttl_seconds,
            "fetches":     self.donor_cache.fetch_count,
        }
