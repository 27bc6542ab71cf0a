"""
models.py
----------
Core domain models. These are the typed contracts between engine layers.

- TimeWindow / ResolvedWindows: output of the window resolver.
- RawRecord: canonical ledger row, produced by the record collector's
  normalization step. Immutable once fetched.
- CurrencyTotals / Bucket: one calendar unit (day or month) of per-entity,
  per-currency sums. Produced by the bucket aggregator.
- Entity / EntityMetrics: department identity and its derived, ranked metrics.
- Insight: a typed, human-readable message derived from ranked metrics.

SSP and USD are kept side by side everywhere. Nothing in this module adds
one currency to the other.
"""

import re
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional

import pandas as pd


SSP = "SSP"
USD = "USD"
CURRENCIES = (SSP, USD)

INCOME = "income"
EXPENSE = "expense"

DEPARTMENT = "department"
CATEGORY = "category"

DAY = "day"
MONTH = "month"

_NON_LETTERS = re.compile(r"[^A-Za-z]")


def currency_letters(code) -> str:
    """ASCII letters of a currency code, uppercased. " u.s.d " -> "USD"."""
    return _NON_LETTERS.sub("", str(code if code is not None else "")).upper()


def normalize_currency(code) -> str:
    """
    Maps any upstream currency code onto SSP or USD.

    Only codes whose letters are exactly "USD" are USD. Everything else,
    including None and "", falls back to SSP.
    """
    return USD if currency_letters(code) == USD else SSP


@dataclass(frozen=True)
class TimeWindow:
    """Half-open [start, end) interval of naive timestamps."""
    start: pd.Timestamp
    end: pd.Timestamp

    @property
    def duration(self) -> pd.Timedelta:
        return self.end - self.start

    @property
    def last_instant(self) -> pd.Timestamp:
        """Latest timestamp still inside the window (start for an empty window)."""
        return max(self.start, self.end - pd.Timedelta(microseconds=1))

    def contains(self, ts: pd.Timestamp) -> bool:
        return self.start <= ts < self.end

    def __str__(self) -> str:
        return f"{self.start.isoformat()} to {self.end.isoformat()}"


@dataclass(frozen=True)
class ResolvedWindows:
    """Current window, its comparison window and how to bucket them."""
    preset: str
    current: TimeWindow
    previous: TimeWindow
    granularity: str                 # "day" | "month"
    comparison: str                  # "previous-period" | "calendar"
    label: str = ""


@dataclass(frozen=True)
class RawRecord:
    """Canonical ledger row. Source of truth lives outside the engine."""
    entity_id: Optional[str]
    amount: Decimal
    currency: str                    # "SSP" | "USD", already normalized
    occurred_at: pd.Timestamp
    kind: str = INCOME               # "income" | "expense"
    source_currency: Optional[str] = None  # Code exactly as received upstream


@dataclass
class CurrencyTotals:
    ssp: Decimal = Decimal("0")
    usd: Decimal = Decimal("0")

    def add(self, currency: str, amount: Decimal) -> None:
        if currency == USD:
            self.usd += amount
        else:
            self.ssp += amount

    def get(self, currency: str) -> Decimal:
        return self.usd if currency == USD else self.ssp


@dataclass
class Bucket:
    """
    One calendar unit of a window.

    `period` is "YYYY-MM" for month buckets and "YYYY-MM-DD" for day buckets.
    Buckets are created zero-filled before any record is folded in, so a
    period with no activity still exists with an empty per_entity map.
    """
    period: str
    year: int
    month: int
    day: Optional[int] = None
    label: str = ""
    per_entity: Dict[Optional[str], CurrencyTotals] = field(default_factory=dict)

    def add(self, entity_id: Optional[str], currency: str, amount: Decimal) -> None:
        totals = self.per_entity.setdefault(entity_id, CurrencyTotals())
        totals.add(currency, amount)

    def amount_for(self, entity_id: Optional[str], currency: str) -> Decimal:
        totals = self.per_entity.get(entity_id)
        return totals.get(currency) if totals is not None else Decimal("0")

    def totals(self) -> CurrencyTotals:
        """Per-currency totals across every entity in this bucket."""
        out = CurrencyTotals()
        for entity_totals in self.per_entity.values():
            out.ssp += entity_totals.ssp
            out.usd += entity_totals.usd
        return out


@dataclass(frozen=True)
class Entity:
    """A department, an expense category, or any other rankable entity."""
    id: str
    name: str
    code: str = ""
    is_active: bool = True


@dataclass
class EntityMetrics:
    """
    Ranked, derived metrics for one entity in one window and one currency.

    All numeric values are full-precision Decimals. Rounding for display is
    done by core.formatting only.
    """

    # Identity
    id: str
    name: str
    code: str
    currency: str

    # Window totals
    revenue: Decimal
    previous_revenue: Decimal
    share: Decimal                   # Percent of the window total, 0–100
    avg_per_period: Decimal
    growth_pct: Decimal

    # Series
    best_period: Optional[Dict] = None           # {"period": str, "revenue": Decimal}
    monthly_series: List[Dict] = field(default_factory=list)

    # Ranking (1-based, assigned after sorting)
    rank: int = 0


@dataclass(frozen=True)
class Insight:
    type: str                        # "info" | "warning" | "success"
    message: str
    rule: str = ""
    entity_id: Optional[str] = None


@dataclass
class CurrencySummary:
    """Window totals for one currency."""
    currency: str
    total: Decimal
    previous_total: Decimal
    growth_pct: Decimal
