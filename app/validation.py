"""
app/validation.py — Form validation for dashboard writes.

Every add/update payload goes through validate_payload() before anything is
sent to the database.  A payload that fails here is never written.

  - Unknown fields are rejected.
  - Updates are partial: only the fields present are validated and written,
    but at least one field must be present.
  - New records must carry their collection's required fields.
"""
from datetime import timezone
from enum import Enum
from typing import Any, Literal, Mapping, Optional

from pydantic import BaseModel, Field, ValidationError, validator

from app.analytics import parse_transaction_date
from app.errors import DashboardError, ErrorKind


class Collection(str, Enum):
    DONORS    = "donors"
    FINANCES  = "finances"
    INVENTORY = "inventory"


class PayloadValidationError(DashboardError):
    kind = ErrorKind.VALIDATION_ERROR

    def __init__(self, problems: list[str]):
        self.problems = problems
        super().__init__("; ".join(problems))


# ---------------------------------------------------------------------------
# Field schemas (all optional; requiredness is checked per operation)
# ---------------------------------------------------------------------------

class _Fields(BaseModel):
    class Config:
        extra = "forbid"
        str_strip_whitespace = True


class DonorFields(_Fields):
    name: Optional[str] = Field(None, max_length=200)
    email: Optional[str] = Field(None, max_length=254)
    phone: Optional[str] = Field(None, max_length=40)
    total_donated: Optional[float] = Field(None, ge=0, allow_inf_nan=False)
    notes: Optional[str] = Field(None, max_length=1000)

    @validator('name')
    def validate_name(cls, v: Optional[str]) -> str:
        if not v:
            raise ValueError("name cannot be empty")
        return v

    @validator('email')
    def validate_email(cls, v: Optional[str]) -> Optional[str]:
        if v and ('@' not in v or v.startswith('@') or v.endswith('@')):
            raise ValueError(f"not a valid email address: {v}")
        return v or None


class FinanceFields(_Fields):
    date: Optional[str] = None
    amount: Optional[float] = Field(None, gt=0, allow_inf_nan=False)
    type: Optional[Literal["income", "expense"]] = None
    description: Optional[str] = Field(None, max_length=500)
    category: Optional[str] = Field(None, max_length=100)
    donor_id: Optional[str] = None

    @validator('date')
    def validate_date(cls, v: Optional[str]) -> str:
        if not v or parse_transaction_date(v, timezone.utc) is None:
            raise ValueError(f"date must be an ISO date like 2024-03-15, got: {v!r}")
        return v

    @validator('amount')
    def validate_amount(cls, v: Optional[float]) -> float:
        if v is None:
            raise ValueError("amount is required")
        return v


class InventoryFields(_Fields):
    name: Optional[str] = Field(None, max_length=200)
    quantity: Optional[int] = Field(None, ge=0)
    category: Optional[str] = Field(None, max_length=100)
    unit: Optional[str] = Field(None, max_length=40)
    notes: Optional[str] = Field(None, max_length=1000)

    @validator('name')
    def validate_name(cls, v: Optional[str]) -> str:
        if not v:
            raise ValueError("name cannot be empty")
        return v

    @validator('quantity')
    def validate_quantity(cls, v: Optional[int]) -> int:
        if v is None:
            raise ValueError("quantity is required")
        return v


_SCHEMAS: dict[Collection, type[_Fields]] = {
    Collection.DONORS:    DonorFields,
    Collection.FINANCES:  FinanceFields,
    Collection.INVENTORY: InventoryFields,
}

_REQUIRED_ON_CREATE: dict[Collection, tuple[str, ...]] = {
    Collection.DONORS:    ("name",),
    Collection.FINANCES:  ("date", "amount"),
    Collection.INVENTORY: ("name", "quantity"),
}


def _describe(exc: ValidationError) -> list[str]:
    problems = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", ())) or "payload"
        msg = err.get("msg", "invalid value")
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, "):]
        problems.append(f"{loc}: {msg}")
    return problems


def validate_payload(
    collection: Collection,
    payload: Mapping[str, Any],
    partial: bool = True,
) -> dict:
    """
    Validate and normalise a write payload.

    Returns only the fields the caller supplied (plus defaults on create).
    Raises PayloadValidationError listing every problem found.
    """
    if not isinstance(payload, Mapping):
        raise PayloadValidationError(["payload: must be an object"])

    data = {k: v for k, v in payload.items() if k != "id"}
    if not data:
        raise PayloadValidationError(["payload: nothing to save"])

    if not partial:
        missing = [f for f in _REQUIRED_ON_CREATE[collection] if data.get(f) in (None, "")]
        if missing:
            raise PayloadValidationError([f"{f}: field required" for f in missing])

    try:
        model = _SCHEMAS[collection](**data)
    except ValidationError as exc:
        raise PayloadValidationError(_describe(exc)) from exc

    cleaned = model.model_dump(exclude_unset=True)
    if not partial and collection is Collection.FINANCES:
        cleaned.setdefault("type", "income")
    return cleaned
