"""
record_sources.py
------------------
Reference RecordSource adapters.

The engine treats the data source as a black box; these adapters exist so the
pipeline can run against real inputs and tests can run without a network.

    InMemoryRecordSource  rows held in a list (tests, notebooks)
    CsvRecordSource       ledger export CSV read with pandas
    ApiRecordSource       the dashboard's HTTP API, via requests

All three return raw row dicts. RecordCollector normalizes them.
"""

import logging
from typing import Any, Dict, List, Optional

import pandas as pd
import requests

from config.config_loader import get_api_config
from core.errors import UpstreamFetchError
from core.models import CATEGORY, TimeWindow
from core.record_collector import (
    KIND_FIELDS,
    TIMESTAMP_FIELDS,
    RecordFilters,
    RecordPage,
    RecordSource,
    first_present,
    group_fields,
    parse_timestamp,
)

logger = logging.getLogger(__name__)


def _row_matches(row: Dict[str, Any], window: TimeWindow, filters: RecordFilters) -> bool:
    """Server-side filtering, reading fields exactly as normalize_record does."""
    ts = parse_timestamp(first_present(row, TIMESTAMP_FIELDS))
    if ts is None or not window.contains(ts):
        return False

    kind = first_present(row, KIND_FIELDS)
    if kind is not None and filters.kind and str(kind).lower() != filters.kind:
        return False

    if filters.entity_ids is not None:
        entity_id = first_present(row, group_fields(filters.group_by))
        if entity_id is None or str(entity_id) not in set(filters.entity_ids):
            return False
    return True


# =============================================================================
# IN-MEMORY
# =============================================================================

class InMemoryRecordSource(RecordSource):
    """
    Serves rows from a list, page by page.

    Args:
        rows: Raw row dicts in any supported shape.
        entities: Raw entity dicts ({id, name, code, isActive}).
        report_has_more: When False, pages omit the has_more flag entirely.
    """

    def __init__(
        self,
        rows: List[Dict[str, Any]],
        entities: List[Dict[str, Any]] | None = None,
        name: str = "records",
        report_has_more: bool = True,
    ):
        self.rows = list(rows)
        self.entities = list(entities or [])
        self.name = name
        self.report_has_more = report_has_more
        self.requests: List[Dict[str, Any]] = []

    def fetch_page(self, window: TimeWindow, filters: RecordFilters, page: int, limit: int) -> RecordPage:
        self.requests.append({"window": window, "page": page, "limit": limit})
        matching = [r for r in self.rows if _row_matches(r, window, filters)]
        offset = (page - 1) * limit
        chunk = matching[offset:offset + limit]
        has_more = (offset + limit) < len(matching) if self.report_has_more else None
        return RecordPage(rows=chunk, has_more=has_more)

    def fetch_entities(self) -> List[Dict[str, Any]]:
        return list(self.entities)


# =============================================================================
# CSV
# =============================================================================

class CsvRecordSource(RecordSource):
    """
    Reads a ledger export CSV once and pages through it.

    The CSV needs an amount column, a currency column and one of the
    supported timestamp columns (dateISO, date, createdAt, ...).
    """

    def __init__(self, records_path: str, entities_path: str | None = None, name: str | None = None):
        self.records_path = records_path
        self.entities_path = entities_path
        self.name = name or "csv"
        self._frame: Optional[pd.DataFrame] = None

    def fetch_page(self, window: TimeWindow, filters: RecordFilters, page: int, limit: int) -> RecordPage:
        rows = [r for r in self._load_rows() if _row_matches(r, window, filters)]
        offset = (page - 1) * limit
        return RecordPage(rows=rows[offset:offset + limit], has_more=(offset + limit) < len(rows))

    def fetch_entities(self) -> List[Dict[str, Any]]:
        if self.entities_path is None:
            return []
        df = self._read_csv(self.entities_path)
        return df.to_dict("records")

    def _load_rows(self) -> List[Dict[str, Any]]:
        if self._frame is None:
            self._frame = self._read_csv(self.records_path)
            logger.info(f"Loaded {len(self._frame):,} rows from {self.records_path}.")
        return self._frame.to_dict("records")

    @staticmethod
    def _read_csv(path: str) -> pd.DataFrame:
        try:
            df = pd.read_csv(path, dtype=str)
        except (OSError, pd.errors.ParserError) as exc:
            raise UpstreamFetchError(f"Cannot read {path}: {exc}", source=path) from exc
        # Empty cells become None so field fallbacks see them as missing.
        return df.astype(object).where(df.notna(), None)


# =============================================================================
# HTTP API
# =============================================================================

class ApiRecordSource(RecordSource):
    """
    Client for the dashboard API's paged transaction listing.

    Usage:
        source = ApiRecordSource("https://clinic.example.org", token="...")
        collector = RecordCollector(source)
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        session: requests.Session | None = None,
        records_path: str | None = None,
        name: str = "api",
    ):
        self.config = get_api_config()
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.session = session or requests.Session()
        self.records_path = records_path or self.config["records_path"]
        self.entities_path = self.config["entities_path"]
        self.timeout = self.config["timeout_seconds"]
        self.name = name

    @property
    def headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def fetch_page(self, window: TimeWindow, filters: RecordFilters, page: int, limit: int) -> RecordPage:
        params = {
            "type": filters.kind,
            "startDate": window.start.strftime("%Y-%m-%d"),
            # The API takes an inclusive end date.
            "endDate": window.last_instant.strftime("%Y-%m-%d"),
            "page": page,
            "limit": limit,
        }
        if filters.entity_ids:
            key = "categories" if filters.group_by == CATEGORY else "departmentIds"
            params[key] = ",".join(filters.entity_ids)

        payload = self._get(self.records_path, params)
        if isinstance(payload, list):
            return RecordPage(rows=payload, has_more=None)
        if not isinstance(payload, dict):
            raise UpstreamFetchError(f"Unexpected payload type {type(payload).__name__}", source=self.name)

        rows = payload.get("transactions", payload.get("rows", payload.get("data")))
        if rows is None:
            rows = []
        if not isinstance(rows, list):
            raise UpstreamFetchError("Malformed payload: rows is not a list", source=self.name)
        has_more = payload.get("hasMore")
        return RecordPage(rows=rows, has_more=bool(has_more) if has_more is not None else None)

    def fetch_entities(self) -> List[Dict[str, Any]]:
        payload = self._get(self.entities_path, None)
        if isinstance(payload, dict):
            payload = payload.get("data", [])
        if not isinstance(payload, list):
            raise UpstreamFetchError("Malformed entity payload", source=self.name)
        return payload

    def _get(self, path: str, params: Dict | None) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.get(url, headers=self.headers, params=params, timeout=self.timeout)
        except requests.RequestException as exc:
            raise UpstreamFetchError(f"Request to {url} failed: {exc}", source=self.name) from exc

        if response.status_code >= 400:
            raise UpstreamFetchError(
                f"GET {url} returned {response.status_code}",
                source=self.name,
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamFetchError(f"Invalid JSON from {url}", source=self.name) from exc
