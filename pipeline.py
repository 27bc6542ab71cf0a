"""
pipeline.py
------------
Main orchestration layer. Wires together:
    1. DateWindowResolver        →  current + previous windows
    2. RecordCollector           →  complete record sets for both windows
    3. CurrencyBucketAggregator  →  zero-filled per-period, per-currency buckets
                                    (+ additive merge of insurance totals)
    4. MetricsCalculator         →  ranked EntityMetrics + per-currency totals
    5. InsightsGenerator         →  typed narrative insights (department or expense rules)

This is the single entry point for running the engine. Everything else
is internal machinery.

Usage:
    from pipeline import DepartmentAnalyticsPipeline

    pipeline = DepartmentAnalyticsPipeline(record_source, insurance_source=insurance)
    result = pipeline.run("last-6-months")
    result.metrics_frame()

    expenses = pipeline.run_expenses(preset="last-month")
"""

import logging
import warnings
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, List, Tuple

import pandas as pd

from config.config_loader import get_pipeline_config
from core.bucket_aggregator import BucketSet, CurrencyBucketAggregator
from core.date_windows import DateWindowResolver, to_timestamp
from core.errors import PartialDataWarning, UpstreamFetchError
from core.metrics_calculator import MetricsCalculator
from core.models import (
    CATEGORY,
    DEPARTMENT,
    EXPENSE,
    CurrencySummary,
    Entity,
    EntityMetrics,
    Insight,
    RawRecord,
    ResolvedWindows,
    TimeWindow,
)
from core.record_collector import RecordCollector, RecordFilters, RecordSource
from insights.expense_rules import expense_insights_generator
from insights.insight_rules import InsightsGenerator

logger = logging.getLogger(__name__)


@dataclass
class AnalyticsResult:
    """Everything one analytics query produces. Built fresh per query."""
    windows: ResolvedWindows
    currency: str
    metrics: List[EntityMetrics]
    insights: List[Insight]
    current_buckets: BucketSet
    previous_buckets: BucketSet
    totals: Dict[str, CurrencySummary]
    active_entities: int
    warnings: List[PartialDataWarning] = field(default_factory=list)
    current_records: List[RawRecord] = field(default_factory=list)
    group_by: str = DEPARTMENT
    skipped_rows: int = 0
    previous_skipped_rows: int = 0

    @property
    def overall_growth_pct(self):
        return self.totals[self.currency].growth_pct

    def metrics_frame(self) -> pd.DataFrame:
        """Ranked metrics as a flat DataFrame, one row per entity."""
        columns = [
            "rank", "id", "name", "code", "currency", "revenue", "previous_revenue",
            "share", "avg_per_period", "growth_pct", "best_period", "best_period_revenue",
        ]
        rows = []
        for m in self.metrics:
            rows.append({
                "rank": m.rank,
                "id": m.id,
                "name": m.name,
                "code": m.code,
                "currency": m.currency,
                "revenue": m.revenue,
                "previous_revenue": m.previous_revenue,
                "share": m.share,
                "avg_per_period": m.avg_per_period,
                "growth_pct": m.growth_pct,
                "best_period": m.best_period["period"] if m.best_period else None,
                "best_period_revenue": m.best_period["revenue"] if m.best_period else None,
            })
        return pd.DataFrame(rows, columns=columns)

    def series_frame(self) -> pd.DataFrame:
        """Current-window buckets, one row per (period, entity)."""
        return self.current_buckets.to_frame()

    def overall_series(self) -> List[Dict]:
        """Current-window totals per period in the ranking currency, every entity summed."""
        return self.current_buckets.series(self.currency)


class DepartmentAnalyticsPipeline:
    """
    End-to-end department analytics for one query.

    Orchestrates resolve → collect → aggregate → metrics → insights without
    keeping any state between runs.
    """

    def __init__(
        self,
        record_source: RecordSource,
        insurance_source: RecordSource | None = None,
        now=None,
        page_size: int | None = None,
    ):
        """
        Args:
            record_source: Primary ledger source. Also lists the entities.
            insurance_source: Optional secondary source merged additively.
            now: Reference instant for preset resolution. Read from the clock
                once per run when omitted.
            page_size: Override the configured page size.
        """
        self.config = get_pipeline_config()
        self.record_source = record_source
        self.insurance_source = insurance_source
        self.now = now
        self.page_size = page_size
        self.resolver = DateWindowResolver()
        self.aggregator = CurrencyBucketAggregator()
        self.calculator = MetricsCalculator()
        self.insights_generator = InsightsGenerator()
        self.expense_insights_generator = expense_insights_generator()

        logger.info(
            f"Pipeline initialized. Source: '{record_source.name}'. "
            f"Insurance source: '{insurance_source.name if insurance_source else None}'. "
            f"Concurrent windows: {self.config['concurrent_windows']}."
        )

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE
    # -------------------------------------------------------------------------

    def run(
        self,
        preset: str | None = None,
        year: int | None = None,
        month: int | None = None,
        custom_start=None,
        custom_end=None,
        currency: str | None = None,
        comparison: str | None = None,
        filters: RecordFilters | None = None,
    ) -> AnalyticsResult:
        """
        Run the full analytics pipeline.

        With filters.group_by == "category" the entities are the expense
        categories found in either window, the insurance source is not merged,
        and the expense insight rules run instead of the department ones.

        Raises:
            InvalidWindowError: bad preset or bounds, or an unparseable `now`.
            UpstreamFetchError: the primary source or entity listing failed.
        """
        preset = preset or self.config["default_preset"]
        currency = currency or self.config["primary_currency"]
        comparison = comparison or self.config["comparison_mode"]
        now = to_timestamp(self.now) if self.now is not None else pd.Timestamp.now()
        filters = filters or RecordFilters()
        by_category = filters.group_by == CATEGORY

        # --- Stage 1: Windows ---
        windows = self.resolver.resolve(
            preset, now, year=year, month=month,
            custom_start=custom_start, custom_end=custom_end, comparison=comparison,
        )
        logger.info(f"Stage 1 complete. {windows.label}: current={windows.current}, previous={windows.previous}.")

        # --- Stage 2: Entities + records ---
        entities = [] if by_category else self._load_entities()
        (current_records, current_skipped), (previous_records, previous_skipped) = self._collect_windows(
            self.record_source, windows, filters
        )
        logger.info(
            f"Stage 2 complete. Records: current={len(current_records):,}, "
            f"previous={len(previous_records):,}. Skipped rows: current={current_skipped}, "
            f"previous={previous_skipped}."
        )

        # --- Stage 3: Buckets ---
        current_buckets = self.aggregator.aggregate(current_records, windows.current, windows.granularity)
        previous_buckets = self.aggregator.aggregate(previous_records, windows.previous, windows.granularity)
        if by_category:
            entities = self._category_entities(current_buckets, previous_buckets)
            partial = []
        else:
            partial = self._merge_insurance(windows, filters, current_buckets, previous_buckets)
        logger.info(f"Stage 3 complete. Buckets: {len(current_buckets)} {windows.granularity}s.")

        # --- Stage 4: Metrics ---
        metrics = self.calculator.compute_metrics(entities, current_buckets, previous_buckets, currency)
        totals = self.calculator.summarize(current_buckets, previous_buckets)
        logger.info(f"Stage 4 complete. Ranked entities: {len(metrics)} of {len(entities)}.")

        # --- Stage 5: Insights ---
        generator = self.expense_insights_generator if by_category else self.insights_generator
        insights = generator.generate(metrics)
        logger.info(f"Pipeline complete. Insights: {len(insights)}. Warnings: {len(partial)}.")

        return AnalyticsResult(
            windows=windows,
            currency=currency,
            metrics=metrics,
            insights=insights,
            current_buckets=current_buckets,
            previous_buckets=previous_buckets,
            totals=totals,
            active_entities=len(metrics),
            warnings=partial,
            current_records=current_records,
            group_by=filters.group_by,
            skipped_rows=current_skipped,
            previous_skipped_rows=previous_skipped,
        )

    def run_expenses(self, **kwargs) -> AnalyticsResult:
        """run() over expense records, ranked by expense category."""
        return self.run(filters=RecordFilters(kind=EXPENSE, group_by=CATEGORY), **kwargs)

    # -------------------------------------------------------------------------
    # INTERNAL: COLLECTION
    # -------------------------------------------------------------------------

    @staticmethod
    def _category_entities(current_buckets: BucketSet, previous_buckets: BucketSet) -> List[Entity]:
        """Categories seen in the current window, then ones only in the previous one."""
        ids = current_buckets.entity_ids()
        ids += [i for i in previous_buckets.entity_ids() if i not in ids]
        return [Entity(id=i, name=i) for i in ids]

    def _load_entities(self) -> List[Entity]:
        entities = RecordCollector(self.record_source, self.page_size).fetch_entities()
        if self.config["include_inactive_entities"]:
            return entities
        return [e for e in entities if e.is_active]

    def _collect(self, source: RecordSource, window: TimeWindow, filters: RecordFilters) -> Tuple[List[RawRecord], int]:
        # One collector per window, so concurrent collections share nothing.
        collector = RecordCollector(source, self.page_size)
        records = collector.collect_all(window, filters)
        return records, collector.skipped_rows

    def _collect_windows(self, source: RecordSource, windows: ResolvedWindows, filters: RecordFilters):
        """Collect current and previous windows, concurrently when configured."""
        if not self.config["concurrent_windows"]:
            return (
                self._collect(source, windows.current, filters),
                self._collect(source, windows.previous, filters),
            )

        with ThreadPoolExecutor(max_workers=2) as executor:
            current = executor.submit(self._collect, source, windows.current, filters)
            previous = executor.submit(self._collect, source, windows.previous, filters)
            return current.result(), previous.result()

    def _merge_insurance(
        self,
        windows: ResolvedWindows,
        filters: RecordFilters,
        current_buckets: BucketSet,
        previous_buckets: BucketSet,
    ) -> List[PartialDataWarning]:
        """
        Merge the insurance source into both bucket sets.

        A failing insurance source counts as zero and yields a
        PartialDataWarning; ledger totals are authoritative.
        """
        if self.insurance_source is None:
            return []

        source_name = self.config["insurance_source_name"]
        try:
            (current_records, _), (previous_records, _) = self._collect_windows(
                self.insurance_source, windows, filters
            )
        except UpstreamFetchError as exc:
            warning = PartialDataWarning(
                f"Insurance totals unavailable, treated as zero: {exc.message}", source=source_name
            )
            logger.warning(warning.message)
            warnings.warn(warning, stacklevel=2)
            return [warning]

        current_buckets.merge(source_name, current_records)
        previous_buckets.merge(source_name, previous_records)
        return []
