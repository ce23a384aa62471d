"""
Query surfaces over the row store and the search index.

MetricsQueryService answers `(timeRange, interval)` questions by streaming
stored rows through the processors. SearchService validates search requests
against the index settings before handing them to the search backend.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog
from pydantic import BaseModel, Field, ValidationError, field_validator

from telemetry.core.models.events import EVENT_TYPES
from telemetry.core.models.metrics import (
    DataQualityReport,
    HourlyMetrics,
    RollupMetrics,
    SuspiciousActivity,
)
from telemetry.core.models.rows import AnalyticalRow
from telemetry.core.processors.quality import DataQualityAggregator
from telemetry.core.processors.rollups import RollupAggregator
from telemetry.core.processors.suspicious import (
    RollingActivityCounter,
    SuspiciousActivityDetector,
)
from telemetry.core.sinks.row_store import RowStore
from telemetry.core.sinks.search_index import (
    FILTERABLE_ATTRIBUTES,
    SORTABLE_ATTRIBUTES,
    SUGGEST_ATTRIBUTES,
    SUGGEST_LIMIT,
    SearchBackend,
    parse_filter,
    parse_sort,
)
from telemetry.core.utils.time_range import TimeWindow, parse_interval, window_for

logger = structlog.get_logger(__name__)

DEFAULT_SORT = ["timestamp:desc"]


class MetricsQueryService:
    """Rollup, data quality and suspicious activity queries."""

    def __init__(self, store: RowStore):
        self.store = store

    def _rows(self, window: TimeWindow):
        return self.store.iter_rows(window.start, window.end)

    def rollups(self, time_range: str, interval: str = "1m", now: Optional[datetime] = None) -> List[RollupMetrics]:
        window = window_for(time_range, now)
        aggregator = RollupAggregator(interval=parse_interval(interval), window=window)
        return aggregator.add_many(self._rows(window)).results()

    def hourly_metrics(self, time_range: str, now: Optional[datetime] = None) -> List[HourlyMetrics]:
        window = window_for(time_range, now)
        aggregator = RollupAggregator(interval=parse_interval("1h"), window=window, include_uniques=True)
        return aggregator.add_many(self._rows(window)).results()

    def data_quality(self, time_range: str, interval: str = "1m", now: Optional[datetime] = None) -> List[DataQualityReport]:
        window = window_for(time_range, now)
        aggregator = DataQualityAggregator(interval=parse_interval(interval), window=window)
        return aggregator.add_many(self._rows(window)).reports()

    def suspicious_activity(self, time_range: str, now: Optional[datetime] = None) -> List[AnalyticalRow]:
        window = window_for(time_range, now)
        return SuspiciousActivityDetector(window=window).detect(lambda: self._rows(window))

    def activity_snapshots(self, time_range: str, now: Optional[datetime] = None) -> List[SuspiciousActivity]:
        """account_activity rows of the window with their rolling 5-minute counts."""
        window = window_for(time_range, now)
        return RollingActivityCounter().snapshots(self._rows(window))

    def event_counts(self, time_range: str, now: Optional[datetime] = None) -> Dict[str, int]:
        window = window_for(time_range, now)
        counts = {event_type: 0 for event_type in EVENT_TYPES}
        for row in self._rows(window):
            counts[row.type] = counts.get(row.type, 0) + 1
        return counts


class InvalidSearchRequestError(ValueError):
    """Search request failed validation; `errors` lists the offending parts."""

    def __init__(self, errors: List[str]):
        self.errors = errors
        super().__init__("; ".join(errors))


class SearchRequest(BaseModel):
    query: str = ""
    filters: List[str] = Field(default_factory=list)
    sort: List[str] = Field(default_factory=lambda: list(DEFAULT_SORT))
    limit: int = Field(default=50, ge=1, le=100)
    offset: int = Field(default=0, ge=0)

    @field_validator("filters")
    @classmethod
    def validate_filters(cls, v: List[str]) -> List[str]:
        for expression in v:
            field, _, _ = parse_filter(expression)
            if field not in FILTERABLE_ATTRIBUTES:
                raise ValueError(f"Attribute {field!r} is not filterable")
        return v

    @field_validator("sort")
    @classmethod
    def validate_sort(cls, v: List[str]) -> List[str]:
        for expression in v:
            field, _ = parse_sort(expression)
            if field not in SORTABLE_ATTRIBUTES:
                raise ValueError(f"Attribute {field!r} is not sortable")
        return v

    @classmethod
    def parse(cls, data: Dict[str, Any]) -> "SearchRequest":
        """Validate a raw request body, raising InvalidSearchRequestError."""
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            errors = [
                f"{'.'.join(str(p) for p in err['loc']) or 'request'}: {err['msg']}"
                for err in e.errors()
            ]
            raise InvalidSearchRequestError(errors) from e


class SearchResponse(BaseModel):
    hits: List[Dict[str, Any]]
    estimated_total_hits: int = Field(..., alias="estimatedTotalHits")
    limit: int
    offset: int
    query: str = ""


class SearchService:
    """Search, facets, suggestions and lookup by id."""

    def __init__(self, backend: SearchBackend):
        self.backend = backend

    def search(self, request: SearchRequest) -> SearchResponse:
        result = self.backend.search(
            query=request.query,
            filters=request.filters,
            sort=request.sort or DEFAULT_SORT,
            limit=request.limit,
            offset=request.offset,
        )
        logger.debug("Search executed", query=request.query, hits=len(result["hits"]))
        return SearchResponse.model_validate(result)

    def facets(self) -> Dict[str, Dict[str, int]]:
        return self.backend.facets()

    def suggest(self, prefix: str) -> List[Dict[str, Any]]:
        result = self.backend.search(
            query=prefix,
            limit=SUGGEST_LIMIT,
            attributes_to_retrieve=SUGGEST_ATTRIBUTES,
        )
        return result["hits"]

    def get_event(self, event_id: str) -> Optional[Dict[str, Any]]:
        return self.backend.get_document(event_id)
