"""
Search index sink.

Documents are search-shaped events (epoch-second timestamps) keyed by `id`.
The Meilisearch backend is the production target; the in-memory backend
implements the same filter/sort/facet semantics for tests and local runs.
"""

import re
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Tuple

import meilisearch
import structlog
from meilisearch.errors import MeilisearchApiError

from telemetry.core.models.config import WorkerConfig
from telemetry.core.routing import EVENTS_TABLE
from telemetry.core.utils.metrics import SINK_WRITES

logger = structlog.get_logger(__name__)

PRIMARY_KEY = "id"

SEARCHABLE_ATTRIBUTES = [
    "userId",
    "sourceIp",
    "recipientEmail",
    "path",
    "geoLocation.country",
    "geoLocation.city",
]

FILTERABLE_ATTRIBUTES = [
    "type",
    "timestamp",
    "success",
    "action",
    "method",
    "statusCode",
    "bounceType",
    "geoLocation.country",
]

SORTABLE_ATTRIBUTES = ["timestamp", "responseTimeMs"]

FACET_ATTRIBUTES = [
    "type",
    "success",
    "action",
    "method",
    "statusCode",
    "bounceType",
    "geoLocation.country",
]

SUGGEST_ATTRIBUTES = ["userId", "sourceIp", "recipientEmail", "path"]
SUGGEST_LIMIT = 5

INDEX_SETTINGS = {
    "searchableAttributes": SEARCHABLE_ATTRIBUTES,
    "filterableAttributes": FILTERABLE_ATTRIBUTES,
    "sortableAttributes": SORTABLE_ATTRIBUTES,
    "typoTolerance": {
        "enabled": True,
        "minWordSizeForTypos": {"oneTypo": 4, "twoTypos": 8},
    },
}

FILTER_PATTERN = re.compile(r"^\s*([A-Za-z][\w.]*)\s*(!=|>=|<=|=|>|<)\s*(.+?)\s*$")
SORT_PATTERN = re.compile(r"^([A-Za-z][\w.]*):(asc|desc)$")


def parse_filter(expression: str) -> Tuple[str, str, Any]:
    """
    Split ``field op value`` into its parts.

    Quoted values stay strings; bare ``true``/``false`` become booleans and
    bare numbers become int or float.
    """
    match = FILTER_PATTERN.match(expression)
    if not match:
        raise ValueError(f"Invalid filter expression: {expression!r}")
    field, op, raw = match.groups()

    if len(raw) >= 2 and raw[0] == raw[-1] and raw[0] in "\"'":
        return field, op, raw[1:-1]
    if raw.lower() in ("true", "false"):
        return field, op, raw.lower() == "true"
    try:
        return field, op, int(raw)
    except ValueError:
        pass
    try:
        return field, op, float(raw)
    except ValueError:
        return field, op, raw


def parse_sort(expression: str) -> Tuple[str, bool]:
    """``field:asc|desc`` -> (field, descending)."""
    match = SORT_PATTERN.match(expression)
    if not match:
        raise ValueError(f"Invalid sort expression: {expression!r}")
    return match.group(1), match.group(2) == "desc"


def get_path(document: Dict[str, Any], path: str) -> Any:
    """Resolve a dotted attribute path such as ``geoLocation.country``."""
    value: Any = document
    for part in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def facet_key(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class SearchBackend(ABC):
    """Contract for the search sink and the search query surface."""

    @abstractmethod
    def ensure_index(self):
        pass

    @abstractmethod
    def add_documents(self, documents: List[Dict[str, Any]]) -> int:
        pass

    @abstractmethod
    def search(
        self,
        query: str = "",
        filters: Optional[List[str]] = None,
        sort: Optional[List[str]] = None,
        limit: int = 20,
        offset: int = 0,
        attributes_to_retrieve: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        """Returns ``{"hits": [...], "estimatedTotalHits": n, "limit": ..., "offset": ...}``."""
        pass

    @abstractmethod
    def facets(self, attributes: Optional[List[str]] = None) -> Dict[str, Dict[str, int]]:
        pass

    @abstractmethod
    def get_document(self, document_id: str) -> Optional[Dict[str, Any]]:
        pass


class InMemorySearchBackend(SearchBackend):
    """Dictionary-backed index with Meilisearch-like query semantics."""

    def __init__(self, index_name: str = EVENTS_TABLE):
        self.index_name = index_name
        self.documents: Dict[str, Dict[str, Any]] = {}
        self.settings: Optional[Dict[str, Any]] = None

    def ensure_index(self):
        if self.settings is None:
            self.settings = dict(INDEX_SETTINGS)
            logger.info("Created in-memory search index", index=self.index_name)

    def add_documents(self, documents):
        for doc in documents:
            # Same primary key replaces the stored document
            self.documents[doc[PRIMARY_KEY]] = dict(doc)
        SINK_WRITES.labels(sink="memory_search", status="success").inc(len(documents))
        return len(documents)

    def _matches_query(self, doc: Dict[str, Any], query: str) -> bool:
        terms = query.lower().split()
        if not terms:
            return True
        haystack = " ".join(
            str(v).lower()
            for v in (get_path(doc, attr) for attr in SEARCHABLE_ATTRIBUTES)
            if v is not None
        )
        return all(term in haystack for term in terms)

    @staticmethod
    def _matches_filter(doc: Dict[str, Any], field: str, op: str, expected: Any) -> bool:
        actual = get_path(doc, field)
        if op == "=":
            return actual is not None and facet_key(actual) == facet_key(expected)
        if op == "!=":
            return actual is None or facet_key(actual) != facet_key(expected)
        if actual is None or isinstance(actual, bool):
            return False
        try:
            if op == ">":
                return actual > expected
            if op == ">=":
                return actual >= expected
            if op == "<":
                return actual < expected
            if op == "<=":
                return actual <= expected
        except TypeError:
            return False
        raise ValueError(f"Unsupported filter operator: {op}")

    @staticmethod
    def _sorted(docs: List[Dict[str, Any]], sort: List[str]) -> List[Dict[str, Any]]:
        # Apply least significant key first; missing values always sort last
        for expression in reversed(sort):
            field, descending = parse_sort(expression)
            present = [d for d in docs if get_path(d, field) is not None]
            missing = [d for d in docs if get_path(d, field) is None]
            present.sort(key=lambda d: get_path(d, field), reverse=descending)
            docs = present + missing
        return docs

    def search(self, query="", filters=None, sort=None, limit=20, offset=0,
               attributes_to_retrieve=None):
        parsed = [parse_filter(f) for f in filters or []]
        hits = [
            doc for doc in self.documents.values()
            if self._matches_query(doc, query)
            and all(self._matches_filter(doc, *f) for f in parsed)
        ]
        if sort:
            hits = self._sorted(hits, sort)

        page = hits[offset:offset + limit]
        if attributes_to_retrieve:
            page = [
                {k: v for k, v in doc.items() if k in attributes_to_retrieve}
                for doc in page
            ]
        return {
            "hits": page,
            "estimatedTotalHits": len(hits),
            "limit": limit,
            "offset": offset,
            "query": query,
        }

    def facets(self, attributes=None):
        distribution: Dict[str, Dict[str, int]] = {}
        for attr in attributes or FACET_ATTRIBUTES:
            counts: Dict[str, int] = {}
            for doc in self.documents.values():
                value = get_path(doc, attr)
                if value is None:
                    continue
                key = facet_key(value)
                counts[key] = counts.get(key, 0) + 1
            distribution[attr] = counts
        return distribution

    def get_document(self, document_id):
        doc = self.documents.get(document_id)
        return dict(doc) if doc is not None else None


class MeilisearchBackend(SearchBackend):
    """Search sink backed by a Meilisearch index."""

    def __init__(self, config: WorkerConfig, client: Optional[meilisearch.Client] = None):
        self.config = config
        self.index_name = config.index_name
        self.client = client or meilisearch.Client(config.meilisearch_url, config.meilisearch_key)
        self._index = None

    @property
    def index(self):
        if self._index is None:
            self._index = self.client.index(self.index_name)
        return self._index

    def ensure_index(self):
        """Create the index if missing, then apply attribute and typo settings."""
        try:
            self.client.get_index(self.index_name)
            logger.info("Search index already exists", index=self.index_name)
        except MeilisearchApiError:
            task = self.client.create_index(self.index_name, {"primaryKey": PRIMARY_KEY})
            self.client.wait_for_task(task.task_uid)
            logger.info("Created search index", index=self.index_name)

        task = self.index.update_settings(INDEX_SETTINGS)
        self.client.wait_for_task(task.task_uid)
        logger.info("Search index configured", index=self.index_name)

    def add_documents(self, documents):
        if not documents:
            return 0
        try:
            self.index.add_documents(documents, primary_key=PRIMARY_KEY)
            SINK_WRITES.labels(sink="meilisearch", status="success").inc(len(documents))
        except MeilisearchApiError as e:
            SINK_WRITES.labels(sink="meilisearch", status="error").inc(len(documents))
            logger.error("Failed to index documents", count=len(documents), error=str(e))
            raise
        return len(documents)

    def search(self, query="", filters=None, sort=None, limit=20, offset=0,
               attributes_to_retrieve=None):
        params: Dict[str, Any] = {"limit": limit, "offset": offset}
        if filters:
            params["filter"] = list(filters)
        if sort:
            params["sort"] = list(sort)
        if attributes_to_retrieve:
            params["attributesToRetrieve"] = list(attributes_to_retrieve)
            params["attributesToHighlight"] = list(attributes_to_retrieve)

        result = self.index.search(query, params)
        return {
            "hits": result.get("hits", []),
            "estimatedTotalHits": result.get("estimatedTotalHits", 0),
            "limit": result.get("limit", limit),
            "offset": result.get("offset", offset),
            "query": query,
        }

    def facets(self, attributes=None):
        result = self.index.search("", {"facets": list(attributes or FACET_ATTRIBUTES), "limit": 0})
        return result.get("facetDistribution", {})

    def get_document(self, document_id):
        try:
            document = self.index.get_document(document_id)
        except MeilisearchApiError as e:
            if getattr(e, "code", None) == "document_not_found":
                return None
            raise
        return dict(document)


def index_documents(backend: SearchBackend, documents: Iterable[Dict[str, Any]], batch_size: int = 100) -> int:
    """Send documents to `backend` in batches. Returns the number sent."""
    batch: List[Dict[str, Any]] = []
    total = 0
    for doc in documents:
        batch.append(doc)
        if len(batch) >= batch_size:
            total += backend.add_documents(batch)
            batch = []
    if batch:
        total += backend.add_documents(batch)
    return total
