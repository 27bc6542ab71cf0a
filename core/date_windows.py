"""
date_windows.py
----------------
Resolves a named date preset (or explicit bounds) into a concrete current
window and the window it is compared against.

Presets:
    Calendar:      this-year, last-year, this-quarter, year (explicit year)
    Rolling:       last-3-months, last-6-months, last-12-months
    Single period: current-month, last-month, month-select (explicit year/month)
    Custom:        caller-supplied [start, end), falls back to this-year

All windows are half-open [start, end). "now" is always passed in by the
caller; nothing here reads the wall clock.

Comparison modes:
    previous-period  The immediately preceding window of identical duration.
                     Used for every preset, calendar-aligned or not, so a
                     31-day custom window compares against the 31 days before it.
    calendar         Both bounds shifted back by the number of calendar months
                     the window spans (minimum one). March compares to February,
                     a calendar year to the calendar year before.
"""

import logging
from datetime import date, datetime

import pandas as pd

from core.errors import InvalidWindowError
from core.models import DAY, MONTH, ResolvedWindows, TimeWindow

logger = logging.getLogger(__name__)


PREVIOUS_PERIOD = "previous-period"
CALENDAR = "calendar"
COMPARISON_MODES = (PREVIOUS_PERIOD, CALENDAR)

ROLLING_PRESETS = {
    "last-3-months": 3,
    "last-6-months": 6,
    "last-12-months": 12,
}
SINGLE_PERIOD_PRESETS = {"current-month", "last-month", "month-select"}
CALENDAR_PRESETS = {"this-year", "last-year", "this-quarter", "year"}
ALL_PRESETS = CALENDAR_PRESETS | SINGLE_PERIOD_PRESETS | set(ROLLING_PRESETS) | {"custom"}


def to_timestamp(value) -> pd.Timestamp:
    """Coerces a date, datetime, string or Timestamp into a naive Timestamp."""
    if isinstance(value, pd.Timestamp):
        ts = value
    elif isinstance(value, (datetime, date, str)):
        try:
            ts = pd.Timestamp(value)
        except (ValueError, TypeError) as exc:
            raise InvalidWindowError(f"Cannot interpret {value!r} as a timestamp: {exc}") from exc
    else:
        raise InvalidWindowError(f"Cannot interpret {value!r} as a timestamp.")
    if pd.isna(ts):
        raise InvalidWindowError(f"Cannot interpret {value!r} as a timestamp.")
    if ts.tzinfo is not None:
        ts = ts.tz_convert(None)
    return ts


def month_start(ts: pd.Timestamp) -> pd.Timestamp:
    return ts.to_period("M").start_time


def months_between(start: pd.Timestamp, end: pd.Timestamp) -> int:
    """Whole calendar months from start's month to end's month."""
    return (end.year - start.year) * 12 + (end.month - start.month)


def period_range(window: TimeWindow, granularity: str) -> pd.PeriodIndex:
    """
    Every calendar unit touched by the window, in order.

    A month window yields months_between(start, last_instant) + 1 periods.
    """
    freq = "D" if granularity == DAY else "M"
    return pd.period_range(start=window.start, end=window.last_instant, freq=freq)


def window_label(window: TimeWindow, granularity: str) -> str:
    """Human readable label, e.g. 'March 2025' or 'January 2025 - June 2025'."""
    first = window.start
    last = window.last_instant
    if granularity == DAY:
        if first == month_start(first) and window.end == first + pd.DateOffset(months=1):
            return first.strftime("%B %Y")
        return f"{first.strftime('%d %b %Y')} - {last.strftime('%d %b %Y')}"
    if (first.year, first.month) == (last.year, last.month):
        return first.strftime("%B %Y")
    return f"{first.strftime('%B %Y')} - {last.strftime('%B %Y')}"


class DateWindowResolver:
    """
    Maps a preset to concrete current and previous windows.

    Usage:
        resolver = DateWindowResolver()
        windows = resolver.resolve("last-6-months", now=pd.Timestamp("2025-06-15"))
        windows.current, windows.previous, windows.granularity
    """

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE
    # -------------------------------------------------------------------------

    def resolve(
        self,
        preset: str,
        now,
        year: int | None = None,
        month: int | None = None,
        custom_start=None,
        custom_end=None,
        comparison: str = PREVIOUS_PERIOD,
    ) -> ResolvedWindows:
        """
        Resolve a preset relative to `now`.

        Args:
            preset: One of ALL_PRESETS.
            now: Reference instant. Required; the resolver never reads the clock.
            year, month: Explicit calendar unit for "year" and "month-select".
            custom_start, custom_end: Bounds for "custom", used as [start, end).
            comparison: "previous-period" (duration matched) or "calendar".

        Raises:
            InvalidWindowError: unknown preset or comparison mode, inverted
                custom bounds, or missing/invalid year and month.
        """
        if preset not in ALL_PRESETS:
            raise InvalidWindowError(
                f"Unknown preset '{preset}'. Available: {sorted(ALL_PRESETS)}"
            )
        if comparison not in COMPARISON_MODES:
            raise InvalidWindowError(
                f"Unknown comparison mode '{comparison}'. Available: {list(COMPARISON_MODES)}"
            )

        now = to_timestamp(now)
        current = self._resolve_current(preset, now, year, month, custom_start, custom_end)
        granularity = DAY if preset in SINGLE_PERIOD_PRESETS else MONTH

        if comparison == CALENDAR:
            previous = self.calendar_previous(current)
        else:
            previous = self.previous_period(current)

        logger.debug(f"Resolved '{preset}' at {now}: current={current}, previous={previous}.")

        return ResolvedWindows(
            preset=preset,
            current=current,
            previous=previous,
            granularity=granularity,
            comparison=comparison,
            label=window_label(current, granularity),
        )

    @staticmethod
    def previous_period(window: TimeWindow) -> TimeWindow:
        """The immediately preceding window of identical duration."""
        return TimeWindow(start=window.start - window.duration, end=window.start)

    @staticmethod
    def calendar_previous(window: TimeWindow) -> TimeWindow:
        """The window shifted back by the calendar months it spans (at least one)."""
        shift = pd.DateOffset(months=max(1, months_between(window.start, window.end)))
        return TimeWindow(start=window.start - shift, end=window.end - shift)

    # -------------------------------------------------------------------------
    # INTERNAL: PRESET RESOLUTION
    # -------------------------------------------------------------------------

    def _resolve_current(self, preset, now, year, month, custom_start, custom_end) -> TimeWindow:
        one_month = pd.DateOffset(months=1)
        this_month = month_start(now)

        if preset == "this-year":
            return self._year_window(now.year)

        if preset == "last-year":
            return self._year_window(now.year - 1)

        if preset == "year":
            return self._year_window(year if year is not None else now.year)

        if preset == "this-quarter":
            quarter = now.to_period("Q")
            return TimeWindow(start=quarter.start_time.normalize(), end=(quarter + 1).start_time.normalize())

        if preset in ROLLING_PRESETS:
            n_months = ROLLING_PRESETS[preset]
            return TimeWindow(
                start=this_month - pd.DateOffset(months=n_months - 1),
                end=this_month + one_month,
            )

        if preset == "current-month":
            return TimeWindow(start=this_month, end=this_month + one_month)

        if preset == "last-month":
            return TimeWindow(start=this_month - one_month, end=this_month)

        if preset == "month-select":
            if year is None or month is None:
                raise InvalidWindowError("Preset 'month-select' requires both year and month.")
            if not 1 <= month <= 12:
                raise InvalidWindowError(f"Month must be in 1..12, got {month}.")
            start = pd.Timestamp(year=year, month=month, day=1)
            return TimeWindow(start=start, end=start + one_month)

        # custom
        if custom_start is None or custom_end is None:
            logger.info("Custom preset without explicit bounds; falling back to this-year.")
            return self._year_window(now.year)

        start = to_timestamp(custom_start)
        end = to_timestamp(custom_end)
        if start > end:
            raise InvalidWindowError(
                f"Custom window start {start.date()} is after end {end.date()}."
            )
        return TimeWindow(start=start, end=end)

    @staticmethod
    def _year_window(year: int) -> TimeWindow:
        return TimeWindow(
            start=pd.Timestamp(year=year, month=1, day=1),
            end=pd.Timestamp(year=year + 1, month=1, day=1),
        )
