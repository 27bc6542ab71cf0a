"""
insight_rules.py
-----------------
Concrete insight rules and the generator that runs them.

Rules are evaluated in a fixed order and every matching rule fires (this is
not first-match-wins):

    1. TopPerformerRule        info     ranked[0] and its share
    2. FastestGrowingRule      success  max growth, only above the threshold
    3. DeclinerRule            warning  one per entity below the decline threshold
    4. UntappedPotentialRule   info     first low-share entity outside the top ranks
    5. NewAndGrowingRule       success  one per high-growth, low-share entity

Thresholds come from config.yaml. Output order is rule order, never sorted
by any metric.
"""

import logging
from typing import List, Sequence, Set, Tuple

from core.formatting import format_compact
from core.models import EntityMetrics, Insight
from insights.base_rule import BaseInsightRule

logger = logging.getLogger(__name__)


# =============================================================================
# 1. TOP PERFORMER
# =============================================================================
class TopPerformerRule(BaseInsightRule):
    insight_type = "info"

    def __init__(self):
        super().__init__("top_performer")

    def _select(self, ranked):
        return [ranked[0]]

    def _message(self, metrics):
        return f"{metrics.name} is your top performer with {self._pct(metrics.share)} of total revenue"


# =============================================================================
# 2. FASTEST GROWING
# =============================================================================
class FastestGrowingRule(BaseInsightRule):
    """Single entity with the highest growth. max() keeps the first on ties."""

    insight_type = "success"

    def __init__(self):
        super().__init__("fastest_growing")
        self.min_growth = self._threshold("min_growth_pct")

    def _select(self, ranked):
        fastest = max(ranked, key=lambda m: m.growth_pct)
        return [fastest] if fastest.growth_pct > self.min_growth else []

    def _message(self, metrics):
        return (
            f"{metrics.name} grew {self._pct(metrics.growth_pct, signed=True)} this period"
            f" - fastest growing department"
        )


# =============================================================================
# 3. DECLINERS
# =============================================================================
class DeclinerRule(BaseInsightRule):
    insight_type = "warning"

    def __init__(self):
        super().__init__("decliners")
        self.max_growth = self._threshold("max_growth_pct")

    def _select(self, ranked):
        return [m for m in ranked if m.growth_pct < self.max_growth]

    def _message(self, metrics):
        return f"{metrics.name} dropped {self._pct(abs(metrics.growth_pct))} - investigate potential issues"


# =============================================================================
# 4. UNTAPPED POTENTIAL
# =============================================================================
class UntappedPotentialRule(BaseInsightRule):
    """Low share, ranked below the top few. Only the first such entity."""

    insight_type = "info"

    def __init__(self):
        super().__init__("untapped_potential")
        self.max_share = self._threshold("max_share_pct")
        self.min_rank = int(self.config["min_rank"])

    def _select(self, ranked):
        candidates = [m for m in ranked if m.share < self.max_share and m.rank > self.min_rank]
        return candidates[:1]

    def _message(self, metrics):
        return (
            f"{metrics.name} has potential for growth but currently only "
            f"{self._pct(metrics.share)} of revenue"
        )


# =============================================================================
# 5. NEW AND GROWING
# =============================================================================
class NewAndGrowingRule(BaseInsightRule):
    insight_type = "success"

    def __init__(self):
        super().__init__("new_and_growing")
        self.min_growth = self._threshold("min_growth_pct")
        self.max_share = self._threshold("max_share_pct")

    def _select(self, ranked):
        return [m for m in ranked if m.growth_pct > self.min_growth and m.share < self.max_share]

    def _message(self, metrics):
        return f"{metrics.name} is new and generating {metrics.currency} {format_compact(metrics.revenue)}"


# =============================================================================
# REGISTRY
# =============================================================================

def get_all_rules() -> List[BaseInsightRule]:
    """Returns one instance of every rule, in evaluation order."""
    return [
        TopPerformerRule(),
        FastestGrowingRule(),
        DeclinerRule(),
        UntappedPotentialRule(),
        NewAndGrowingRule(),
    ]


class InsightsGenerator:
    """
    Deterministic rule engine over ranked metrics.

    Usage:
        insights = InsightsGenerator().generate(ranked_metrics)
    """

    def __init__(self, rules: List[BaseInsightRule] | None = None, max_insights: int | None = None):
        """
        Args:
            rules: Rules in evaluation order. Defaults to the department revenue rules.
            max_insights: Keep only the first N insights, in rule order.
        """
        self.rules = rules if rules is not None else get_all_rules()
        self.max_insights = max_insights

    def generate(self, ranked: Sequence[EntityMetrics]) -> List[Insight]:
        """Runs every rule in order and concatenates what fires."""
        emitted: Set[Tuple[str, str]] = set()
        insights: List[Insight] = []
        for rule in self.rules:
            insights.extend(rule.evaluate(ranked, emitted))
        if self.max_insights is not None:
            insights = insights[:self.max_insights]

        logger.info(f"Generated {len(insights)} insights from {len(ranked)} ranked entities.")
        return insights
