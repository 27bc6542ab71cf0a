"""
record_collector.py
--------------------
Drains a paginated record source into a complete in-memory record set.

This is the only place that knows upstream rows come in several shapes.
normalize_record() maps every shape onto the canonical RawRecord once, so
the aggregation layers never look at optional field names.

Paging contract:
    - Pages are fetched one at a time, in order, starting at page 1.
    - Stop when the source says has_more=False or returns an empty page,
      whichever comes first. A source that omits has_more (None) is drained
      until it returns an empty page.
    - No retries. Any source failure surfaces as UpstreamFetchError.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

import pandas as pd

from config.config_loader import get_collection_config
from core.errors import UpstreamFetchError
from core.models import (
    CATEGORY,
    DEPARTMENT,
    EXPENSE,
    INCOME,
    Entity,
    RawRecord,
    TimeWindow,
    normalize_currency,
)

logger = logging.getLogger(__name__)


# First non-null wins, in this order.
TIMESTAMP_FIELDS = ("dateISO", "date", "createdAt", "created_at", "timestamp", "occurredAt", "occurred_at")
ENTITY_FIELDS = ("entityId", "entity_id", "departmentId", "department_id")
CATEGORY_FIELDS = ("expenseCategory", "expense_category", "categoryName", "category")
KIND_FIELDS = ("kind", "type")


@dataclass
class RecordFilters:
    """
    Query filters passed through to the source.

    group_by picks the field a record is ranked under: its department, or
    its expense category.
    """
    kind: str = INCOME
    entity_ids: Optional[List[str]] = None
    group_by: str = DEPARTMENT


@dataclass
class RecordPage:
    """One page of raw upstream rows. has_more=None means the source did not say."""
    rows: List[Dict[str, Any]] = field(default_factory=list)
    has_more: Optional[bool] = None


class RecordSource(ABC):
    """
    External paged listing boundary.

    fetch_page() is the `GET records?window&entityFilter&page&limit` call and
    fetch_entities() is `GET entities`. Implementations return raw rows; the
    collector does the normalization.
    """

    name: str = "records"

    @abstractmethod
    def fetch_page(self, window: TimeWindow, filters: RecordFilters, page: int, limit: int) -> RecordPage:
        ...

    @abstractmethod
    def fetch_entities(self) -> List[Dict[str, Any]]:
        ...


# =============================================================================
# NORMALIZATION
# =============================================================================

def first_present(row: Dict[str, Any], names) -> Any:
    """First non-null, non-NaN value among the named fields."""
    for name in names:
        value = row.get(name)
        if value is not None and not (isinstance(value, float) and pd.isna(value)):
            return value
    return None


def parse_timestamp(value) -> Optional[pd.Timestamp]:
    """ISO-8601 (or datetime) to a naive Timestamp. Returns None if unparseable."""
    if value is None:
        return None
    ts = pd.to_datetime(value, errors="coerce")
    if ts is None or pd.isna(ts):
        return None
    if ts.tzinfo is not None:
        ts = ts.tz_convert(None)
    return ts


def parse_amount(value) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        amount = Decimal(str(value).replace(",", "").strip())
    except InvalidOperation:
        return None
    if not amount.is_finite():
        return None
    return amount


def group_fields(group_by: str):
    """Field names that identify the ranked entity for a grouping."""
    if group_by == DEPARTMENT:
        return ENTITY_FIELDS
    if group_by == CATEGORY:
        return CATEGORY_FIELDS
    raise ValueError(f"Unknown grouping '{group_by}'. Expected '{DEPARTMENT}' or '{CATEGORY}'.")


def normalize_record(
    row: Dict[str, Any], default_kind: str = INCOME, group_by: str = DEPARTMENT
) -> Optional[RawRecord]:
    """
    Converts one heterogeneous upstream row into a RawRecord.

    entity_id is the department id, or the expense category name when
    group_by is "category". Returns None when the row has no parseable
    timestamp or amount.
    """
    occurred_at = parse_timestamp(first_present(row, TIMESTAMP_FIELDS))
    if occurred_at is None:
        return None

    amount = parse_amount(row.get("amount"))
    if amount is None:
        return None

    entity_id = first_present(row, group_fields(group_by))
    raw_kind = str(first_present(row, KIND_FIELDS) or default_kind).lower()
    kind = raw_kind if raw_kind in (INCOME, EXPENSE) else default_kind
    source_currency = row.get("currency")

    return RawRecord(
        entity_id=str(entity_id) if entity_id is not None else None,
        amount=amount,
        currency=normalize_currency(source_currency),
        occurred_at=occurred_at,
        kind=kind,
        source_currency=str(source_currency) if source_currency is not None else None,
    )


def normalize_entity(row: Dict[str, Any]) -> Entity:
    """Entity row ({id, name, code, isActive} or snake_case) to Entity."""
    is_active = row.get("isActive", row.get("is_active", True))
    if isinstance(is_active, str):
        is_active = is_active.strip().lower() in ("1", "true", "yes", "y")
    return Entity(
        id=str(row["id"]),
        name=str(row.get("name") or row["id"]),
        code=str(row.get("code") or ""),
        is_active=bool(is_active),
    )


# =============================================================================
# COLLECTOR
# =============================================================================

class RecordCollector:
    """
    Exhausts a RecordSource for one window.

    Usage:
        collector = RecordCollector(source)
        records = collector.collect_all(window, RecordFilters(kind="income"))
    """

    def __init__(self, source: RecordSource, page_size: int | None = None):
        """
        Args:
            source: The external paged listing.
            page_size: Rows per request. Defaults to the configured page size.
        """
        self.config = get_collection_config()
        self.source = source
        self.page_size = page_size or self.config["page_size"]
        self.max_pages = self.config["max_pages"]
        self.pages_fetched = 0
        self.skipped_rows = 0

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE
    # -------------------------------------------------------------------------

    def collect_all(self, window: TimeWindow, filters: RecordFilters | None = None) -> List[RawRecord]:
        """
        Fetch every page for the window and return the normalized records.

        Raises:
            UpstreamFetchError: the source failed, or never reported an end
                within max_pages.
        """
        filters = filters or RecordFilters(kind=self.config["default_kind"])
        records: List[RawRecord] = []
        page = 1
        self.pages_fetched = 0
        self.skipped_rows = 0

        while True:
            if page > self.max_pages:
                raise UpstreamFetchError(
                    f"Source '{self.source.name}' still returning rows after {self.max_pages} pages.",
                    source=self.source.name,
                )

            result = self._fetch(window, filters, page)
            rows = list(result.rows or [])
            self.pages_fetched += 1
            logger.debug(
                f"Fetched page {page} from '{self.source.name}': {len(rows)} rows, has_more={result.has_more}."
            )

            for row in rows:
                record = normalize_record(row, default_kind=filters.kind, group_by=filters.group_by)
                if record is None:
                    self.skipped_rows += 1
                    continue
                records.append(record)

            if not rows or result.has_more is False:
                break
            page += 1

        if self.skipped_rows:
            logger.warning(
                f"Skipped {self.skipped_rows} unparseable rows from '{self.source.name}'."
            )
        logger.info(
            f"Collected {len(records):,} records from '{self.source.name}' "
            f"in {self.pages_fetched} pages for {window}."
        )
        return records

    def fetch_entities(self) -> List[Entity]:
        """Entity listing, normalized. Failures surface as UpstreamFetchError."""
        try:
            rows = self.source.fetch_entities()
        except UpstreamFetchError:
            raise
        except Exception as exc:
            raise UpstreamFetchError(
                f"Entity listing from '{self.source.name}' failed: {exc}", source=self.source.name
            ) from exc
        try:
            return [normalize_entity(row) for row in rows]
        except (KeyError, TypeError) as exc:
            raise UpstreamFetchError(
                f"Malformed entity payload from '{self.source.name}': {exc}", source=self.source.name
            ) from exc

    # -------------------------------------------------------------------------
    # INTERNAL
    # -------------------------------------------------------------------------

    def _fetch(self, window: TimeWindow, filters: RecordFilters, page: int) -> RecordPage:
        try:
            return self.source.fetch_page(window, filters, page, self.page_size)
        except UpstreamFetchError:
            raise
        except Exception as exc:
            raise UpstreamFetchError(
                f"Fetching page {page} from '{self.source.name}' failed: {exc}",
                source=self.source.name,
            ) from exc
