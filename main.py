"""
main.py
--------
Entry point for the Clinic Revenue & Department Analytics engine.

Reads ledger and department exports (or an expense export), runs the full analytics pipeline for
one date window, and writes output to the outputs/ folder.

Usage (from the project root):
    python main.py --records transactions.csv --departments departments.csv

    # With optional arguments:
    python main.py --records tx.csv --departments depts.csv --preset last-6-months
    python main.py --records tx.csv --departments depts.csv --preset month-select --year 2025 --month 3
    python main.py --records tx.csv --departments depts.csv --preset custom --start 2025-01-10 --end 2025-02-10
    python main.py --records tx.csv --departments depts.csv --insurance insurance.csv --currency USD

    # Expense categories (no department listing needed):
    python main.py --records expenses.csv --analysis expenses --preset last-month
"""

import sys
import os
import argparse
import logging
import pandas as pd
from datetime import datetime

# Ensure project root is on path (for VS Code runs from any working directory)
PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, PROJECT_ROOT)

from pipeline import DepartmentAnalyticsPipeline
from core.date_windows import ALL_PRESETS, COMPARISON_MODES
from core.errors import InvalidWindowError, UpstreamFetchError
from core.formatting import format_compact, format_money, format_percent
from core.models import CURRENCIES, DEPARTMENT
from core.record_sources import CsvRecordSource
from monitoring.data_quality_monitor import DataQualityMonitor


# =============================================================================
# LOGGING SETUP
# =============================================================================

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("main")


# =============================================================================
# ARGUMENT PARSING
# =============================================================================

def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Clinic Revenue Analytics: department rankings, growth and insights."
    )
    parser.add_argument("--records", type=str, required=True, help="Ledger transactions CSV.")
    parser.add_argument(
        "--analysis", type=str, default="departments", choices=["departments", "expenses"],
        help="Rank departments by revenue, or expense categories by spend."
    )
    parser.add_argument(
        "--departments", type=str, default=None,
        help="Departments CSV (id, name, code, isActive). Required for department analysis."
    )
    parser.add_argument(
        "--insurance", type=str, default=None,
        help="Optional insurance remittance totals CSV, merged additively."
    )
    parser.add_argument(
        "--preset", type=str, default=None, choices=sorted(ALL_PRESETS),
        help="Date window preset. Defaults to config value (this-year)."
    )
    parser.add_argument("--year", type=int, default=None, help="Year for 'year' and 'month-select'.")
    parser.add_argument("--month", type=int, default=None, help="Month (1-12) for 'month-select'.")
    parser.add_argument("--start", type=str, default=None, help="Custom window start (inclusive), YYYY-MM-DD.")
    parser.add_argument("--end", type=str, default=None, help="Custom window end (exclusive), YYYY-MM-DD.")
    parser.add_argument(
        "--currency", type=str, default=None, choices=list(CURRENCIES),
        help="Currency to rank departments by. Defaults to config value (SSP)."
    )
    parser.add_argument(
        "--comparison", type=str, default=None, choices=list(COMPARISON_MODES),
        help="Growth comparison mode. Defaults to config value (previous-period)."
    )
    parser.add_argument(
        "--now", type=str, default=None,
        help="Reference date for presets, YYYY-MM-DD. Defaults to today."
    )
    parser.add_argument(
        "--output-dir", type=str, default=None,
        help="Output directory. Defaults to outputs/ in project root."
    )
    parser.add_argument(
        "--run-quality-monitor", action="store_true", default=False,
        help="Also run data quality checks and output a report."
    )
    args = parser.parse_args(argv)
    if args.analysis == "departments" and not args.departments:
        parser.error("--departments is required for department analysis.")
    return args


# =============================================================================
# MAIN
# =============================================================================

def main(argv=None):
    args = parse_args(argv)

    output_dir = args.output_dir or os.path.join(PROJECT_ROOT, "outputs")
    os.makedirs(output_dir, exist_ok=True)

    for path in filter(None, [args.records, args.departments, args.insurance]):
        if not os.path.exists(path):
            logger.error(f"Input file not found: {path}")
            sys.exit(1)

    # --- Sources ---
    records = CsvRecordSource(args.records, entities_path=args.departments, name="ledger")
    insurance = CsvRecordSource(args.insurance, name="insurance") if args.insurance else None

    # --- Run pipeline ---
    logger.info("Initializing pipeline...")
    pipeline = DepartmentAnalyticsPipeline(records, insurance_source=insurance, now=args.now)

    expenses = args.analysis == "expenses"
    if expenses and insurance is not None:
        logger.warning("Insurance totals are not merged into expense analysis; --insurance ignored.")
    run = pipeline.run_expenses if expenses else pipeline.run

    try:
        result = run(
            preset=args.preset,
            year=args.year,
            month=args.month,
            custom_start=args.start,
            custom_end=args.end,
            currency=args.currency,
            comparison=args.comparison,
        )
    except InvalidWindowError as exc:
        logger.error(f"Invalid date window: {exc}")
        sys.exit(2)
    except UpstreamFetchError as exc:
        logger.error(f"Could not load records: {exc.message}")
        sys.exit(1)

    # --- Output: metrics + series ---
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    prefix = "expense_category" if expenses else "department"
    metrics_path = os.path.join(output_dir, f"{prefix}_metrics_{timestamp}.csv")
    result.metrics_frame().to_csv(metrics_path, index=False)
    logger.info(f"Metrics saved to: {metrics_path}")

    series_path = os.path.join(output_dir, f"{'expense' if expenses else 'revenue'}_series_{timestamp}.csv")
    result.series_frame().to_csv(series_path, index=False)
    logger.info(f"Series saved to: {series_path}")

    # --- Print summary ---
    _print_summary(result)

    # --- Optional: Data quality ---
    if args.run_quality_monitor:
        logger.info("Running data quality monitor...")
        report = DataQualityMonitor().run(result)

        logger.info(f"Data Quality Report: {report.summary}")
        for alert in report.alerts:
            level = {"CRITICAL": logging.ERROR, "WARNING": logging.WARNING}.get(alert.severity, logging.INFO)
            logger.log(level, f"[{alert.alert_type}] {alert.severity}: {alert.message}")

        if report.alerts:
            quality_path = os.path.join(output_dir, f"data_quality_{timestamp}.csv")
            pd.DataFrame([
                {
                    "alert_type": a.alert_type,
                    "severity": a.severity,
                    "metric_name": a.metric_name,
                    "metric_value": a.metric_value,
                    "threshold": a.threshold,
                    "period": a.period,
                    "message": a.message,
                }
                for a in report.alerts
            ]).to_csv(quality_path, index=False)
            logger.info(f"Data quality report saved to: {quality_path}")
        else:
            logger.info("No data quality alerts.")


def _print_summary(result):
    """Prints a clean summary table to the console."""
    by_department = result.group_by == DEPARTMENT
    noun = "departments" if by_department else "categories"
    title = "DEPARTMENT ANALYTICS" if by_department else "EXPENSE ANALYTICS"

    print("\n" + "=" * 80)
    print(f"  {title}  |  {result.windows.label}  ({result.currency})")
    print("=" * 80)

    print("\n  Totals:")
    print("  " + "-" * 60)
    for currency, summary in result.totals.items():
        print(
            f"    {format_money(summary.total, currency):>22s}   "
            f"previous {format_money(summary.previous_total, currency):>20s}   "
            f"growth {format_percent(summary.growth_pct, signed=True):>8s}"
        )
    print(f"    Active {noun}: {result.active_entities}")
    if result.skipped_rows or result.previous_skipped_rows:
        print(
            f"    Skipped rows: {result.skipped_rows} current, "
            f"{result.previous_skipped_rows} previous"
        )

    print(f"\n  Per {result.windows.granularity} ({result.currency}):")
    print("  " + "-" * 60)
    for point in result.overall_series():
        print(f"    {point['label']:>16s}  {format_compact(point['revenue']):>10s}")

    if not result.metrics:
        print(f"\n  No {noun} with activity in this window.\n")
    else:
        print("\n  Ranking:")
        print("  " + "-" * 60)
        for m in result.metrics:
            best = m.best_period["period"] if m.best_period else "-"
            print(
                f"    {m.rank:>2d}. {m.name:24s} {format_compact(m.revenue):>10s}  "
                f"{format_percent(m.share):>7s}  {format_percent(m.growth_pct, signed=True):>8s}  best {best}"
            )

    if result.insights:
        print("\n  Insights:")
        print("  " + "-" * 60)
        for insight in result.insights:
            print(f"    [{insight.type:7s}] {insight.message}")

    for warning in result.warnings:
        print(f"\n  ! {warning.message}")
    print("=" * 80 + "\n")


if __name__ == "__main__":
    main()
