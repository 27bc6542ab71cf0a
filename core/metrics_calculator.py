"""
metrics_calculator.py
----------------------
Derives ranked per-entity metrics from the current and previous BucketSets.

Metric definitions (one currency at a time, SSP and USD are never mixed):
    revenue         Sum of the entity's amounts over the current buckets.
    share           revenue / sum of revenue of every entity in the buckets * 100.
                    0 for everyone when that sum is 0.
    avg_per_period  revenue / number of periods where the entity has a non-zero
                    amount. 0 when there are none.
    growth_pct      (current - previous) / previous * 100 when previous > 0;
                    exactly +100 when previous == 0 and current > 0 (a new
                    entity); 0 otherwise.
    best_period     The period with the highest revenue among periods with data.
                    Ties go to the earliest. None if the entity has no data.

Entities with revenue <= 0 are dropped before ranking. Ranking sorts on the
composite key (revenue desc, position in the caller's entity list asc), so
the order never depends on the sort algorithm's stability.

This module never reads the clock. Same inputs, same outputs.
"""

import logging
from decimal import Decimal
from typing import Dict, List, Sequence

from config.config_loader import get_metrics_config
from core.bucket_aggregator import BucketSet
from core.models import CURRENCIES, SSP, CurrencySummary, Entity, EntityMetrics

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
HUNDRED = Decimal("100")


def growth_pct(current: Decimal, previous: Decimal, new_entity_growth: Decimal = HUNDRED) -> Decimal:
    """Period-over-period growth in percent with the new-entity sentinel."""
    if previous > 0:
        return (current - previous) / previous * HUNDRED
    if previous == 0 and current > 0:
        return new_entity_growth
    return ZERO


def share_pct(value: Decimal, total: Decimal) -> Decimal:
    if total == 0:
        return ZERO
    return value / total * HUNDRED


class MetricsCalculator:
    """
    Usage:
        calculator = MetricsCalculator()
        ranked = calculator.compute_metrics(entities, current_buckets, previous_buckets, currency="SSP")
    """

    def __init__(self):
        self.config = get_metrics_config()
        self.new_entity_growth = Decimal(str(self.config["new_entity_growth_pct"]))

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE
    # -------------------------------------------------------------------------

    def compute_metrics(
        self,
        entities: Sequence[Entity],
        current_buckets: BucketSet,
        previous_buckets: BucketSet,
        currency: str = SSP,
    ) -> List[EntityMetrics]:
        """
        Build, filter and rank EntityMetrics for one currency.

        Args:
            entities: Entities to report on, in the caller's display order.
            current_buckets: Buckets of the current window.
            previous_buckets: Buckets of the comparison window.
            currency: "SSP" or "USD".

        Returns:
            Metrics for entities with revenue > 0, ranked 1..n by revenue.
        """
        if currency not in CURRENCIES:
            raise ValueError(f"Unknown currency '{currency}'. Expected one of {CURRENCIES}.")

        window_total = sum(
            (self._entity_total(current_buckets, entity_id, currency) for entity_id in current_buckets.entity_ids()),
            ZERO,
        )

        candidates: List[tuple] = []
        for index, entity in enumerate(entities):
            metrics = self._build_entity_metrics(entity, current_buckets, previous_buckets, currency, window_total)
            candidates.append((index, metrics))

        ranked = [(index, m) for index, m in candidates if m.revenue > 0]
        excluded = len(candidates) - len(ranked)
        ranked.sort(key=lambda pair: (-pair[1].revenue, pair[0]))

        output: List[EntityMetrics] = []
        for position, (_, metrics) in enumerate(ranked, start=1):
            metrics.rank = position
            output.append(metrics)

        logger.info(
            f"Computed {currency} metrics: {len(output)} ranked entities, "
            f"{excluded} excluded with no revenue."
        )
        return output

    def summarize(self, current_buckets: BucketSet, previous_buckets: BucketSet) -> Dict[str, CurrencySummary]:
        """Per-currency window totals and overall growth."""
        current_totals = current_buckets.totals()
        previous_totals = previous_buckets.totals()
        summaries = {}
        for currency in CURRENCIES:
            total = current_totals.get(currency)
            previous_total = previous_totals.get(currency)
            summaries[currency] = CurrencySummary(
                currency=currency,
                total=total,
                previous_total=previous_total,
                growth_pct=growth_pct(total, previous_total, self.new_entity_growth),
            )
        return summaries

    # -------------------------------------------------------------------------
    # INTERNAL
    # -------------------------------------------------------------------------

    def _build_entity_metrics(
        self,
        entity: Entity,
        current_buckets: BucketSet,
        previous_buckets: BucketSet,
        currency: str,
        window_total: Decimal,
    ) -> EntityMetrics:
        series = [
            {"period": bucket.period, "revenue": bucket.amount_for(entity.id, currency)}
            for bucket in current_buckets
        ]
        revenue = sum((point["revenue"] for point in series), ZERO)
        previous_revenue = self._entity_total(previous_buckets, entity.id, currency)

        with_data = [point for point in series if point["revenue"] != 0]
        avg_per_period = revenue / len(with_data) if with_data else ZERO

        best_period = None
        for point in with_data:
            if best_period is None or point["revenue"] > best_period["revenue"]:
                best_period = dict(point)

        return EntityMetrics(
            id=entity.id,
            name=entity.name,
            code=entity.code,
            currency=currency,
            revenue=revenue,
            previous_revenue=previous_revenue,
            share=share_pct(revenue, window_total),
            avg_per_period=avg_per_period,
            growth_pct=growth_pct(revenue, previous_revenue, self.new_entity_growth),
            best_period=best_period,
            monthly_series=series,
        )

    @staticmethod
    def _entity_total(buckets: BucketSet, entity_id: str, currency: str) -> Decimal:
        return sum((bucket.amount_for(entity_id, currency) for bucket in buckets), ZERO)
