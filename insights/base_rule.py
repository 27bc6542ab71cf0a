"""
base_rule.py
-------------
Abstract base class for all insight rules.

Each concrete rule (top performer, decliners, etc.) inherits from this.
Shared logic (config lookup, de-duplication, Insight construction) lives
here so it's never duplicated.

Concrete rules only need to implement:
    - _select(): which ranked entities the rule fires for
    - _message(): the human-readable text for one entity
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import List, Sequence, Set, Tuple

from config.config_loader import get_insight_rule_config
from core.formatting import format_percent
from core.models import EntityMetrics, Insight


class BaseInsightRule(ABC):
    """
    Abstract base for insight rules.

    Subclasses set `insight_type` and implement _select() and _message().
    This class handles config loading and turns selections into Insights,
    skipping any (rule, entity) pair already emitted in the same call.
    """

    insight_type: str = "info"
    config_section: str = "insights"

    def __init__(self, rule_name: str):
        self.rule_name = rule_name
        self.config = get_insight_rule_config(rule_name, self.config_section)

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE
    # -------------------------------------------------------------------------

    def evaluate(self, ranked: Sequence[EntityMetrics], emitted: Set[Tuple[str, str]]) -> List[Insight]:
        """
        Apply this rule to a ranked metrics list.

        Args:
            ranked: Metrics in rank order.
            emitted: (rule_name, entity_id) pairs already produced in this
                call. Updated in place.

        Returns:
            Insights in the order the rule selected the entities.
        """
        if not self.config.get("enabled", True) or not ranked:
            return []

        insights = []
        for metrics in self._select(ranked):
            insight = self._emit(metrics.id, self._insight_type(metrics), self._message(metrics), emitted)
            if insight is not None:
                insights.append(insight)
        return insights

    # -------------------------------------------------------------------------
    # ABSTRACT METHODS
    # -------------------------------------------------------------------------

    @abstractmethod
    def _select(self, ranked: Sequence[EntityMetrics]) -> List[EntityMetrics]:
        """Entities this rule fires for, in emission order."""
        ...

    @abstractmethod
    def _message(self, metrics: EntityMetrics) -> str:
        ...

    # -------------------------------------------------------------------------
    # SHARED HELPERS
    # -------------------------------------------------------------------------

    def _insight_type(self, metrics: EntityMetrics) -> str:
        return self.insight_type

    def _emit(self, entity_id, insight_type: str, message: str, emitted: Set[Tuple[str, str]]) -> Insight | None:
        key = (self.rule_name, entity_id)
        if key in emitted:
            return None
        emitted.add(key)
        return Insight(type=insight_type, message=message, rule=self.rule_name, entity_id=entity_id)

    def _threshold(self, key: str) -> Decimal:
        return Decimal(str(self.config[key]))

    @staticmethod
    def _pct(value: Decimal, signed: bool = False) -> str:
        return format_percent(value, digits=1, signed=signed)
