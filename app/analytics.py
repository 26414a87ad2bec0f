"""
app/analytics.py — Month-window aggregation over finance transactions.

Rules:
  - A transaction counts toward a month when its date, evaluated in the
    dashboard timezone, falls in that calendar month and year.
  - The reference instant is evaluated in the same timezone.  Aware datetimes
    are converted; naive datetimes and date-only strings ("2024-03-15") are
    read as wall-clock time in that timezone.
  - Missing or malformed dates and amounts are skipped and counted in
    `skipped`; they never raise.
  - `type` decides the bucket: "expense" → expense, "income" or missing →
    income.  Any other type is skipped.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime, tzinfo
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Mapping, Optional

logger = logging.getLogger(__name__)


_MONTH_NAMES = {
    1: "January",  2: "February",  3: "March",
    4: "April",    5: "May",       6: "June",
    7: "July",     8: "August",    9: "September",
    10: "October", 11: "November", 12: "December",
}


def month_label(year: int, month: int) -> str:
    """Convert (2024, 3) → "March 2024"."""
    return f"{_MONTH_NAMES.get(month, str(month))} {year}"


@dataclass
class MonthSummary:
    year: int
    month: int
    label: str
    income: Decimal = Decimal("0")
    expense: Decimal = Decimal("0")
    counted: int = 0
    skipped: int = 0

    @property
    def balance(self) -> Decimal:
        return self.income - self.expense

    def to_dict(self) -> dict:
        return {
            "year":    self.year,
            "month":   self.month,
            "label":   self.label,
            "income":  self.income,
            "expense": self.expense,
            "balance": self.balance,
            "counted": self.counted,
            "skipped": self.skipped,
        }


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------

def _as_zoned(value: datetime, tz: tzinfo) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=tz)
    return value.astimezone(tz)


def parse_transaction_date(value: Any, tz: tzinfo) -> Optional[datetime]:
    """
    Parse a stored transaction date into an aware datetime in `tz`.
    Returns None for anything that is not a recognisable date.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return _as_zoned(value, tz)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=tz)
    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return _as_zoned(parsed, tz)


def _parse_amount(value: Any) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    if not amount.is_finite():
        return None
    return amount


def _reference_month(reference: Any, tz: tzinfo) -> tuple[int, int]:
    if isinstance(reference, datetime):
        ref = _as_zoned(reference, tz)
    elif isinstance(reference, date):
        ref = reference
    else:
        raise TypeError(f"reference must be a date or datetime, got {type(reference).__name__}")
    return ref.year, ref.month


def _add(summary: MonthSummary, kind: Any, amount: Decimal) -> bool:
    if kind is None:
        kind = "income"
    if not isinstance(kind, str):
        return False
    kind = kind.lower()
    if kind == "income":
        summary.income += amount
    elif kind == "expense":
        summary.expense += amount
    else:
        return False
    summary.counted += 1
    return True


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------

def summarize_month(
    transactions: Iterable[Mapping[str, Any]],
    reference: Any,
    tz: tzinfo,
) -> MonthSummary:
    """
    Sum income and expense for the calendar month containing `reference`.
    """
    year, month = _reference_month(reference, tz)
    summary = MonthSummary(year=year, month=month, label=month_label(year, month))

    for tx in transactions:
        if not isinstance(tx, Mapping):
            summary.skipped += 1
            logger.debug("Skipping non-record transaction: %r", tx)
            continue
        when = parse_transaction_date(tx.get("date"), tz)
        amount = _parse_amount(tx.get("amount"))
        if when is None or amount is None:
            summary.skipped += 1
            logger.debug("Skipping malformed transaction: %r", tx)
            continue
        if (when.year, when.month) != (year, month):
            continue
        if not _add(summary, tx.get("type"), amount):
            summary.skipped += 1

    return summary


def monthly_breakdown(
    transactions: Iterable[Mapping[str, Any]],
    tz: tzinfo,
) -> list[MonthSummary]:
    """
    Group transactions by (year, month) and return chronological summaries.
    Malformed entries are dropped; they belong to no month.
    """
    months: dict[tuple[int, int], MonthSummary] = {}
    for tx in transactions:
        if not isinstance(tx, Mapping):
            continue
        when = parse_transaction_date(tx.get("date"), tz)
        amount = _parse_amount(tx.get("amount"))
        if when is None or amount is None:
            continue
        key = (when.year, when.month)
        summary = months.get(key)
        if summary is None:
            summary = months[key] = MonthSummary(
                year=when.year, month=when.month, label=month_label(*key)
            )
        if not _add(summary, tx.get("type"), amount):
            summary.skipped += 1

    return [months[k] for k in sorted(months)]
