"""
bucket_aggregator.py
---------------------
Folds a flat record set into per-period, per-entity, per-currency buckets.

Design decisions:
    - Buckets are created for every calendar unit of the window (days for
      single-month views, months otherwise) BEFORE any record is folded in.
      Empty periods are present with zero values, never absent.
    - A record whose period is not one of the pre-created buckets is
      dropped (and counted). This absorbs off-by-one boundary rows from the
      data source.
    - Currency is classified by normalize_currency(): only "USD" is USD,
      everything else lands in SSP.
    - Secondary sources (insurance remittance totals) are merged additively.
      A merge only ever adds to (period, entity, currency); the same source
      name cannot be merged twice into one BucketSet.
"""

import logging
from decimal import Decimal
from typing import Dict, Iterable, Iterator, List, Optional

import pandas as pd

from core.date_windows import period_range
from core.errors import DuplicateMergeError
from core.models import CURRENCIES, DAY, MONTH, Bucket, CurrencyTotals, RawRecord, TimeWindow

logger = logging.getLogger(__name__)


def period_key(ts: pd.Timestamp, granularity: str) -> str:
    return ts.strftime("%Y-%m-%d") if granularity == DAY else ts.strftime("%Y-%m")


class BucketSet:
    """
    Ordered, zero-filled buckets for one window.

    Behaves like a read-only list of Bucket (len, iteration, indexing) and
    adds merge bookkeeping.
    """

    def __init__(self, window: TimeWindow, granularity: str, buckets: List[Bucket]):
        self.window = window
        self.granularity = granularity
        self.buckets = buckets
        self._index: Dict[str, Bucket] = {b.period: b for b in buckets}
        self.merged_sources: List[str] = []
        self.folded_records = 0
        self.dropped_records = 0

    # -------------------------------------------------------------------------
    # LIST-LIKE ACCESS
    # -------------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self.buckets)

    def __iter__(self) -> Iterator[Bucket]:
        return iter(self.buckets)

    def __getitem__(self, item):
        return self.buckets[item]

    def get(self, period: str) -> Optional[Bucket]:
        return self._index.get(period)

    @property
    def periods(self) -> List[str]:
        return [b.period for b in self.buckets]

    # -------------------------------------------------------------------------
    # FOLDING
    # -------------------------------------------------------------------------

    def fold(self, records: Iterable[RawRecord]) -> int:
        """Adds records into their buckets. Returns how many were dropped."""
        dropped = 0
        for record in records:
            bucket = self._index.get(period_key(record.occurred_at, self.granularity))
            if bucket is None:
                dropped += 1
                continue
            bucket.add(record.entity_id, record.currency, record.amount)
            self.folded_records += 1
        self.dropped_records += dropped
        if dropped:
            logger.debug(f"Dropped {dropped} records outside {self.window}.")
        return dropped

    def merge(self, source_name: str, records: Iterable[RawRecord]) -> int:
        """
        Additively merge a secondary source into these buckets.

        Raises:
            DuplicateMergeError: source_name was already merged.
        """
        if source_name in self.merged_sources:
            raise DuplicateMergeError(
                f"Source '{source_name}' is already merged into buckets for {self.window}."
            )
        self.merged_sources.append(source_name)
        records = list(records)
        dropped = self.fold(records)
        logger.info(
            f"Merged {len(records) - dropped:,} records from '{source_name}' "
            f"({dropped} outside the window)."
        )
        return dropped

    # -------------------------------------------------------------------------
    # READ-OUT
    # -------------------------------------------------------------------------

    def totals(self) -> CurrencyTotals:
        """Per-currency totals across every bucket and entity."""
        out = CurrencyTotals()
        for bucket in self.buckets:
            bucket_totals = bucket.totals()
            out.ssp += bucket_totals.ssp
            out.usd += bucket_totals.usd
        return out

    def entity_ids(self) -> List[str]:
        """Every non-null entity id seen in any bucket, in first-seen order."""
        seen: Dict[str, None] = {}
        for bucket in self.buckets:
            for entity_id in bucket.per_entity:
                if entity_id is not None:
                    seen.setdefault(entity_id, None)
        return list(seen)

    def series(self, currency: str, entity_id: Optional[str] = None) -> List[Dict]:
        """[{period, label, revenue}] for one entity, or for all entities when None."""
        out = []
        for bucket in self.buckets:
            if entity_id is None:
                value = bucket.totals().get(currency)
            else:
                value = bucket.amount_for(entity_id, currency)
            out.append({"period": bucket.period, "label": bucket.label, "revenue": value})
        return out

    def to_frame(self) -> pd.DataFrame:
        """
        Flat view for presentation callers: one row per (period, entity).

        Periods with no activity appear once with entity_id=None and zeros.
        Amounts stay Decimal (object dtype).
        """
        rows = []
        for bucket in self.buckets:
            if not bucket.per_entity:
                rows.append({
                    "period": bucket.period, "label": bucket.label, "entity_id": None,
                    "ssp": Decimal("0"), "usd": Decimal("0"),
                })
                continue
            for entity_id, totals in bucket.per_entity.items():
                rows.append({
                    "period": bucket.period, "label": bucket.label, "entity_id": entity_id,
                    "ssp": totals.ssp, "usd": totals.usd,
                })
        return pd.DataFrame(rows, columns=["period", "label", "entity_id", "ssp", "usd"])


class CurrencyBucketAggregator:
    """
    Builds zero-filled BucketSets and folds records into them.

    Usage:
        aggregator = CurrencyBucketAggregator()
        buckets = aggregator.aggregate(records, window, "month")
        buckets.merge("insurance", insurance_records)
    """

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE
    # -------------------------------------------------------------------------

    def aggregate(self, records: Iterable[RawRecord], window: TimeWindow, granularity: str = MONTH) -> BucketSet:
        """
        Args:
            records: Normalized records (any window; out-of-window ones are dropped).
            window: The window to bucket.
            granularity: "day" or "month".

        Returns:
            BucketSet with one bucket per calendar unit in the window.
        """
        if granularity not in (DAY, MONTH):
            raise ValueError(f"Unknown granularity '{granularity}'. Expected 'day' or 'month'.")

        bucket_set = BucketSet(window, granularity, self.empty_buckets(window, granularity))
        records = list(records)
        dropped = bucket_set.fold(records)

        logger.info(
            f"Aggregated {len(records) - dropped:,} records into {len(bucket_set)} "
            f"{granularity} buckets ({dropped} dropped as out of window)."
        )
        return bucket_set

    @staticmethod
    def empty_buckets(window: TimeWindow, granularity: str) -> List[Bucket]:
        """One zero-valued bucket per day or month of the window, in order."""
        buckets = []
        for period in period_range(window, granularity):
            start = period.start_time
            if granularity == DAY:
                buckets.append(Bucket(
                    period=period_key(start, DAY),
                    year=start.year, month=start.month, day=start.day,
                    label=start.strftime("%b %d"),
                ))
            else:
                buckets.append(Bucket(
                    period=period_key(start, MONTH),
                    year=start.year, month=start.month,
                    label=start.strftime("%b %Y"),
                ))
        return buckets


def currency_totals_by_period(bucket_set: BucketSet) -> Dict[str, Dict[str, Decimal]]:
    """{period: {"SSP": total, "USD": total}} across all entities."""
    out = {}
    for bucket in bucket_set:
        totals = bucket.totals()
        out[bucket.period] = {currency: totals.get(currency) for currency in CURRENCIES}
    return out
