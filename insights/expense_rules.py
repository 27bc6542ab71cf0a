"""
expense_rules.py
-----------------
Insight rules for ranked expense categories.

Evaluated in priority order; every matching rule fires, then the generator
keeps the first pipeline.max_expense_insights:

    1. ConcentrationRule   info              top N categories hold most of the spend
    2. SpendChangeRule     warning/success   large swings among the top N (rise = warning)
    3. StableSpendRule     info              flat spend among the top N

Thresholds come from the expense_insights block of config.yaml.
"""

from decimal import Decimal
from typing import List

from config.config_loader import get_pipeline_config
from core.formatting import format_percent
from insights.base_rule import BaseInsightRule
from insights.insight_rules import InsightsGenerator


class BaseExpenseRule(BaseInsightRule):
    config_section = "expense_insights"

    def __init__(self, rule_name: str):
        super().__init__(rule_name)
        self.top_n = int(self.config["top_n"])


# =============================================================================
# 1. CONCENTRATION
# =============================================================================
class ConcentrationRule(BaseExpenseRule):
    """One insight about the group of top categories, not about any one of them."""

    insight_type = "info"

    def __init__(self):
        super().__init__("concentration")
        self.min_share = self._threshold("min_share_pct")

    def evaluate(self, ranked, emitted):
        if not self.config.get("enabled", True) or len(ranked) < self.top_n:
            return []
        top_share = sum((m.share for m in ranked[:self.top_n]), Decimal("0"))
        if top_share < self.min_share:
            return []
        message = (
            f"Top {self.top_n} categories account for "
            f"{format_percent(top_share, digits=0)} of total expenses."
        )
        insight = self._emit(None, self.insight_type, message, emitted)
        return [insight] if insight is not None else []

    def _select(self, ranked):
        return []

    def _message(self, metrics):
        return ""


# =============================================================================
# 2. SPEND CHANGE
# =============================================================================
class SpendChangeRule(BaseExpenseRule):
    def __init__(self):
        super().__init__("spend_change")
        self.min_abs_growth = self._threshold("min_abs_growth_pct")

    def _select(self, ranked):
        return [m for m in ranked[:self.top_n] if abs(m.growth_pct) > self.min_abs_growth]

    def _insight_type(self, metrics):
        return "warning" if metrics.growth_pct > 0 else "success"

    def _message(self, metrics):
        direction = "increased" if metrics.growth_pct > 0 else "decreased"
        return (
            f"{metrics.name} {direction} {format_percent(abs(metrics.growth_pct), digits=0)} "
            f"compared to the previous period."
        )


# =============================================================================
# 3. STABLE SPEND
# =============================================================================
class StableSpendRule(BaseExpenseRule):
    insight_type = "info"

    def __init__(self):
        super().__init__("stable_spend")
        self.max_abs_growth = self._threshold("max_abs_growth_pct")

    def _select(self, ranked):
        return [m for m in ranked[:self.top_n] if abs(m.growth_pct) < self.max_abs_growth]

    def _message(self, metrics):
        return f"{metrics.name} spending is stable over the selected period."


# =============================================================================
# REGISTRY
# =============================================================================

def get_all_expense_rules() -> List[BaseInsightRule]:
    """Returns one instance of every expense rule, in priority order."""
    return [
        ConcentrationRule(),
        SpendChangeRule(),
        StableSpendRule(),
    ]


def expense_insights_generator() -> InsightsGenerator:
    return InsightsGenerator(
        rules=get_all_expense_rules(),
        max_insights=get_pipeline_config()["max_expense_insights"],
    )
