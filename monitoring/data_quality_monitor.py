"""
data_quality_monitor.py
------------------------
Data quality monitoring for one analytics run.

Four checks, all reported, none fatal:
    1. Partial data     : a secondary source (insurance totals) was unavailable.
    2. Out-of-window    : the aggregator dropped too many boundary records.
    3. Currency fallback: upstream codes that were neither SSP nor USD and
                         were counted as SSP.
    4. Period spikes    : a period total far above the median period total
                         (per currency), usually a duplicated upload.

All thresholds come from config.yaml.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import List

import numpy as np

from config.config_loader import get_currency_config, get_data_quality_config
from core.bucket_aggregator import currency_totals_by_period
from core.models import CURRENCIES, currency_letters

logger = logging.getLogger(__name__)


@dataclass
class DataQualityAlert:
    """A single data quality alert."""
    alert_type: str                  # "PARTIAL_DATA" | "OUT_OF_WINDOW" | "CURRENCY_FALLBACK" | "PERIOD_SPIKE"
    severity: str                    # "INFO" | "WARNING" | "CRITICAL"
    metric_name: str
    metric_value: float
    threshold: float
    message: str
    period: str = ""


@dataclass
class DataQualityReport:
    """Full data quality report, one per analytics run."""
    window: str
    alerts: List[DataQualityAlert] = field(default_factory=list)
    summary: dict = field(default_factory=dict)


class DataQualityMonitor:
    """
    Usage:
        monitor = DataQualityMonitor()
        report = monitor.run(result)
    """

    def __init__(self):
        self.config = get_data_quality_config()
        self.max_out_of_window_ratio = self.config["max_out_of_window_ratio"]
        self.spike_multiplier = self.config["spike_multiplier"]
        self.min_periods_for_spike = self.config["min_periods_for_spike"]

        currencies = get_currency_config()
        self.default_currency = currencies["default"]
        self.recognized_currencies = set(currencies["recognized"])

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE
    # -------------------------------------------------------------------------

    def run(self, result) -> DataQualityReport:
        """
        Args:
            result: AnalyticsResult from DepartmentAnalyticsPipeline.run().

        Returns:
            DataQualityReport with all alerts and summary counts.
        """
        alerts: List[DataQualityAlert] = []
        alerts.extend(self._check_partial_data(result.warnings))
        alerts.extend(self._check_out_of_window(result.current_buckets))
        alerts.extend(self._check_currency_fallback(result.current_records))
        alerts.extend(self._check_period_spikes(result.current_buckets))

        summary = {
            "total_alerts": len(alerts),
            "critical_alerts": sum(1 for a in alerts if a.severity == "CRITICAL"),
            "warning_alerts": sum(1 for a in alerts if a.severity == "WARNING"),
            "info_alerts": sum(1 for a in alerts if a.severity == "INFO"),
        }
        logger.info(f"Data quality check complete: {summary}")

        return DataQualityReport(window=str(result.windows.current), alerts=alerts, summary=summary)

    # -------------------------------------------------------------------------
    # INTERNAL: CHECKS
    # -------------------------------------------------------------------------

    @staticmethod
    def _check_partial_data(partial_warnings) -> List[DataQualityAlert]:
        return [
            DataQualityAlert(
                alert_type="PARTIAL_DATA",
                severity="WARNING",
                metric_name="missing_source",
                metric_value=1.0,
                threshold=0.0,
                message=w.message,
            )
            for w in partial_warnings
        ]

    def _check_out_of_window(self, buckets) -> List[DataQualityAlert]:
        seen = buckets.folded_records + buckets.dropped_records
        if seen == 0 or buckets.dropped_records == 0:
            return []

        ratio = buckets.dropped_records / seen
        if ratio <= self.max_out_of_window_ratio:
            return []

        return [DataQualityAlert(
            alert_type="OUT_OF_WINDOW",
            severity="WARNING",
            metric_name="dropped_record_ratio",
            metric_value=round(ratio, 4),
            threshold=self.max_out_of_window_ratio,
            message=(
                f"{buckets.dropped_records} of {seen} records fell outside {buckets.window} "
                f"and were dropped. Check the source's date filtering."
            ),
        )]

    def _check_currency_fallback(self, records) -> List[DataQualityAlert]:
        codes = Counter(
            r.source_currency for r in records
            if r.currency == self.default_currency and r.source_currency is not None
            and currency_letters(r.source_currency) not in self.recognized_currencies
        )
        return [
            DataQualityAlert(
                alert_type="CURRENCY_FALLBACK",
                severity="INFO",
                metric_name="fallback_record_count",
                metric_value=float(count),
                threshold=0.0,
                message=f"{count} records with currency code '{code}' were counted as {self.default_currency}.",
            )
            for code, count in codes.most_common()
        ]

    def _check_period_spikes(self, buckets) -> List[DataQualityAlert]:
        """
        Flags periods whose total exceeds spike_multiplier x the median of
        non-zero period totals. Needs at least min_periods_for_spike non-zero
        periods to say anything.
        """
        alerts = []
        by_period = currency_totals_by_period(buckets)

        for currency in CURRENCIES:
            periods = [p for p, totals in by_period.items() if totals[currency] > 0]
            if len(periods) < self.min_periods_for_spike:
                continue

            values = np.array([float(by_period[p][currency]) for p in periods])
            median = float(np.median(values))
            if median <= 0:
                continue

            for period, value in zip(periods, values):
                ratio = value / median
                if ratio > self.spike_multiplier:
                    alerts.append(DataQualityAlert(
                        alert_type="PERIOD_SPIKE",
                        severity="CRITICAL" if ratio > self.spike_multiplier * 2 else "WARNING",
                        metric_name=f"{currency.lower()}_to_median_ratio",
                        metric_value=round(ratio, 3),
                        threshold=self.spike_multiplier,
                        message=(
                            f"{currency} total for {period} is {ratio:.1f}x the median period. "
                            f"Check for duplicated uploads."
                        ),
                        period=period,
                    ))
        return alerts
