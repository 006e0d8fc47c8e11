"""Time helpers."""

from __future__ import annotations

from datetime import date

from dateutil.relativedelta import relativedelta


def months_before(day: date, months: int) -> date:
    """Calendar-aware subtraction; the day is clamped to the target month's end."""
    return day - relativedelta(months=months)


def cutoff_date(retention_months: int, today: date | None = None) -> str:
    """Return ``YYYY-MM-DD`` for today minus the retention window."""
    reference = today or date.today()
    return months_before(reference, retention_months).isoformat()
