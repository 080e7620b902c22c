"""Backend access: the DataSource protocol and an Elasticsearch implementation.

Query bodies are plain dicts built by module-level functions so they can be
inspected without a cluster. Responses are parsed into the frozen value
objects in ``models``.
"""

import json
import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, Protocol

import aiohttp

from .models import (
    AggregatedMetric,
    Document,
    FieldInfo,
    Filters,
    Lookback,
    MetricBucket,
    MetricsAggResult,
    PerspectiveItem,
    QueryOptions,
    SearchResult,
    TransactionNameAgg,
)

logger = logging.getLogger(__name__)

ALL_SIGNALS_INDEX = "logs-*,traces-*,metrics-*"
DEFAULT_SEARCH_FIELDS = ["body.text", "body", "message", "event_name"]
MAX_METRICS = 50
MAX_FIELD_COUNTS = 50
METRIC_TYPES = {"long", "double", "float", "half_float", "scaled_float", "histogram",
                "aggregate_metric_double"}


class DataSourceError(Exception):
    pass


class ConnectionFailed(DataSourceError):
    pass


class QueryFailed(DataSourceError):
    def __init__(self, status: int, body: str, query: Mapping | None = None):
        self.status = status
        self.body = body
        self.query = query
        reason = _error_reason(body)
        super().__init__(f"Elasticsearch returned {status}: {reason}")


def _error_reason(body: str) -> str:
    try:
        err = json.loads(body).get("error")
    except (json.JSONDecodeError, AttributeError):
        return body[:500]
    if isinstance(err, dict):
        root = (err.get("root_cause") or [err])[0]
        return f"{root.get('type', 'error')}: {root.get('reason', '')}".strip()
    return str(err)


class DataSource(Protocol):
    index: str

    async def tail(self, opts: QueryOptions) -> SearchResult: ...
    async def search(self, query: str, opts: QueryOptions) -> SearchResult: ...
    async def count(self, opts: QueryOptions) -> int: ...
    async def aggregate_metrics(self, opts: QueryOptions) -> MetricsAggResult: ...
    async def transaction_names(self, lookback: Lookback, filters: Filters,
                                index: str | None = None) -> list[TransactionNameAgg]: ...
    async def services(self, lookback: Lookback) -> list[PerspectiveItem]: ...
    async def resources(self, lookback: Lookback) -> list[PerspectiveItem]: ...
    async def field_caps(self, index: str | None = None) -> list[FieldInfo]: ...
    async def ping(self) -> None: ...
    async def close(self) -> None: ...


# ── Query builders ─────────────────────────────────────────


def _term(field: str, value: Any) -> dict:
    return {"term": {field: value}}


def _any_of(*clauses: dict) -> dict:
    return {"bool": {"should": list(clauses), "minimum_should_match": 1}}


def _time_range(lookback: Lookback) -> dict | None:
    if lookback.es_range is None:
        return None
    return {"range": {"@timestamp": {"gte": lookback.es_range}}}


def filter_clauses(opts: QueryOptions) -> tuple[list[dict], list[dict]]:
    """(must, must_not) for everything in ``opts`` except the free-text query."""
    must: list[dict] = []
    must_not: list[dict] = []
    f = opts.filters

    time_range = _time_range(opts.lookback)
    if time_range:
        must.append(time_range)

    if f.service:
        clause = _any_of(_term("resource.attributes.service.name", f.service),
                         _term("resource.service.name", f.service))
        (must_not if f.exclude_service else must).append(clause)

    if f.resource:
        clause = _term("resource.attributes.deployment.environment", f.resource)
        (must_not if f.exclude_resource else must).append(clause)

    if f.level:
        must.append(_any_of(_term("severity_text", f.level), _term("level", f.level)))
    if opts.processor_event:
        must.append(_term("attributes.processor.event", opts.processor_event))
    if opts.transaction_name:
        must.append(_any_of(_term("transaction.name", opts.transaction_name),
                            _term("name", opts.transaction_name)))
    if opts.trace_id:
        must.append(_term("trace_id", opts.trace_id))
    if opts.metric_field:
        must.append({"exists": {"field": opts.metric_field}})
    return must, must_not


def _bool_query(must: list[dict], must_not: list[dict]) -> dict:
    body: dict[str, Any] = {"must": must}
    if must_not:
        body["must_not"] = must_not
    return {"bool": body}


def build_tail_query(opts: QueryOptions) -> dict:
    must, must_not = filter_clauses(opts)
    return {"query": _bool_query(must, must_not)}


def build_search_query(query: str, opts: QueryOptions) -> dict:
    must, must_not = filter_clauses(opts)
    if query:
        must.insert(0, {
            "query_string": {
                "query": f"*{query}*",
                "fields": list(opts.search_fields) or DEFAULT_SEARCH_FIELDS,
                "default_operator": "AND",
                "analyze_wildcard": True,
            }
        })
    return {"query": _bool_query(must, must_not)}


def _sorted_hits_body(query: dict, opts: QueryOptions) -> dict:
    return {
        **query,
        "size": opts.size,
        "sort": [{"@timestamp": {"order": "asc" if opts.sort_asc else "desc"}}],
        "track_total_hits": True,
    }


def build_metrics_agg_query(metric_fields: list[str], opts: QueryOptions) -> dict:
    aggs = {}
    for i, name in enumerate(metric_fields):
        aggs[f"m{i}"] = {
            "filter": {"exists": {"field": name}},
            "aggs": {
                "stats": {"extended_stats": {"field": name}},
                "over_time": {
                    "date_histogram": {"field": "@timestamp",
                                       "fixed_interval": opts.lookback.bucket_interval},
                    "aggs": {"value": {"avg": {"field": name}}},
                },
                "latest": {
                    "top_hits": {"size": 1, "sort": [{"@timestamp": "desc"}], "_source": [name]},
                },
            },
        }
    must, must_not = filter_clauses(QueryOptions(lookback=opts.lookback, filters=aggregation_filters(opts.filters)))
    body: dict[str, Any] = {"size": 0, "aggs": aggs}
    if must or must_not:
        body["query"] = _bool_query(must, must_not)
    return body


_ERROR_STATUS = _any_of(
    _term("status.code", "Error"),
    _term("status.code", "STATUS_CODE_ERROR"),
    {"range": {"status.code": {"gte": 2}}},
)


def build_transaction_names_query(lookback: Lookback, filters: Filters) -> dict:
    must, must_not = filter_clauses(QueryOptions(lookback=lookback, filters=aggregation_filters(filters)))
    return {
        "size": 0,
        "query": _bool_query(must, must_not),
        "aggs": {
            "total_spans": {"filter": _term("attributes.processor.event", "span")},
            "total_unique_traces": {"cardinality": {"field": "trace_id"}},
            "transactions": {
                "filter": _term("attributes.processor.event", "transaction"),
                "aggs": {
                    "tx_names": {
                        "terms": {"field": "name", "size": 100, "order": {"_count": "desc"}},
                        "aggs": {
                            "avg_duration": {"avg": {"field": "duration"}},
                            "min_duration": {"min": {"field": "duration"}},
                            "max_duration": {"max": {"field": "duration"}},
                            "last_seen": {"max": {"field": "@timestamp"}},
                            "unique_traces": {"cardinality": {"field": "trace_id"}},
                            "errors": {"filter": _ERROR_STATUS},
                        },
                    }
                },
            },
        },
    }


def aggregation_filters(filters: Filters) -> Filters:
    """Aggregations ignore free text and level."""
    return filters.with_(query="", level="")


def build_perspective_query(field: str, lookback: Lookback) -> dict:
    filters = [r for r in [_time_range(lookback)] if r]
    return {
        "size": 0,
        "query": {"bool": {"filter": filters}},
        "aggs": {
            "items": {
                "terms": {"field": field, "size": 100},
                "aggs": {
                    "logs": {"filter": {"bool": {"must_not": [
                        _term("attributes.processor.event", "transaction"),
                        _term("attributes.processor.event", "span"),
                    ]}}},
                    "traces": {"filter": _term("attributes.processor.event", "transaction")},
                    "metrics": {"filter": {"exists": {"field": "metrics"}}},
                },
            }
        },
    }


# ── Response parsers ───────────────────────────────────────


def _dig(data: Any, *path: str) -> Any:
    for key in path:
        if not isinstance(data, Mapping):
            return None
        data = data.get(key)
    return data


def _num(value: Any) -> float:
    return float(value) if isinstance(value, (int, float)) else 0.0


def _epoch_ms(value: Any) -> datetime | None:
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    return None


def parse_hits(raw: Mapping) -> tuple[list[Document], int]:
    hits = _dig(raw, "hits", "hits") or []
    docs = [Document(source=h.get("_source") or {}, doc_id=h.get("_id", ""), index=h.get("_index", ""))
            for h in hits]
    total = _dig(raw, "hits", "total")
    if isinstance(total, Mapping):
        total = total.get("value", 0)
    return docs, int(total or len(docs))


def parse_metrics_agg(raw: Mapping, metric_fields: list[tuple[str, str, str]], bucket_size: str) -> MetricsAggResult:
    aggs = raw.get("aggregations") or {}
    metrics = []
    for i, (name, short, ts_type) in enumerate(metric_fields):
        agg = aggs.get(f"m{i}")
        if not isinstance(agg, Mapping):
            continue
        buckets = tuple(
            MetricBucket(
                timestamp=_epoch_ms(b.get("key")) or datetime.fromtimestamp(0, tz=timezone.utc),
                value=_num(_dig(b, "value", "value")),
                count=int(b.get("doc_count", 0)),
            )
            for b in _dig(agg, "over_time", "buckets") or []
        )
        latest_hits = _dig(agg, "latest", "hits", "hits") or []
        latest = 0.0
        if latest_hits:
            latest = _num(Document(latest_hits[0].get("_source") or {}).get(name))
        metrics.append(AggregatedMetric(
            name=name,
            short_name=short,
            type=ts_type,
            min=_num(_dig(agg, "stats", "min")),
            max=_num(_dig(agg, "stats", "max")),
            avg=_num(_dig(agg, "stats", "avg")),
            latest=latest,
            buckets=buckets,
        ))
    return MetricsAggResult(metrics=tuple(metrics), bucket_size=bucket_size)


def parse_transaction_names(raw: Mapping) -> list[TransactionNameAgg]:
    aggs = raw.get("aggregations") or {}
    spans = _num(_dig(aggs, "total_spans", "doc_count"))
    traces = _num(_dig(aggs, "total_unique_traces", "value"))
    avg_spans = spans / traces if traces else 0.0

    result = []
    for b in _dig(aggs, "transactions", "tx_names", "buckets") or []:
        count = int(b.get("doc_count", 0))
        errors = _num(_dig(b, "errors", "doc_count"))
        result.append(TransactionNameAgg(
            name=str(b.get("key", "")),
            count=count,
            # durations are stored in nanoseconds
            avg_duration_ms=_num(_dig(b, "avg_duration", "value")) / 1_000_000,
            min_duration_ms=_num(_dig(b, "min_duration", "value")) / 1_000_000,
            max_duration_ms=_num(_dig(b, "max_duration", "value")) / 1_000_000,
            trace_count=int(_num(_dig(b, "unique_traces", "value"))),
            avg_spans=avg_spans,
            error_rate=errors / count * 100 if count else 0.0,
            last_seen=_epoch_ms(_dig(b, "last_seen", "value")),
        ))
    return result


def parse_perspectives(raw: Mapping) -> list[PerspectiveItem]:
    items = []
    for b in _dig(raw, "aggregations", "items", "buckets") or []:
        name = b.get("key")
        if not isinstance(name, str) or not name:
            continue
        items.append(PerspectiveItem(
            name=name,
            log_count=int(_num(_dig(b, "logs", "doc_count"))),
            trace_count=int(_num(_dig(b, "traces", "doc_count"))),
            metric_count=int(_num(_dig(b, "metrics", "doc_count"))),
        ))
    return items


def parse_field_caps(raw: Mapping) -> list[FieldInfo]:
    fields = []
    for name, by_type in (raw.get("fields") or {}).items():
        if name.startswith("_") or not by_type:
            continue
        # Only the first mapping type matters when indices disagree.
        ftype, info = next(iter(by_type.items()))
        if ftype == "object":
            continue
        fields.append(FieldInfo(
            name=name,
            type=info.get("type", ftype),
            searchable=bool(info.get("searchable", False)),
            aggregatable=bool(info.get("aggregatable", False)),
        ))
    return fields


def parse_metric_fields(raw: Mapping) -> list[tuple[str, str, str]]:
    """(name, short name, time series type) for numeric aggregatable metrics.*."""
    found = []
    for name, by_type in (raw.get("fields") or {}).items():
        if not by_type:
            continue
        ftype, info = next(iter(by_type.items()))
        if ftype not in METRIC_TYPES or not info.get("aggregatable"):
            continue
        short = name[len("metrics."):] if name.startswith("metrics.") else name
        found.append((name, short, info.get("time_series_metric", "")))
    found.sort(key=lambda f: f[1])
    return found


# ── Elasticsearch client ───────────────────────────────────


class ElasticsearchSource:
    """DataSource over the Elasticsearch REST API."""

    def __init__(
        self,
        url: str = "http://localhost:9200",
        index: str = "logs-*",
        api_key: str | None = None,
        username: str | None = None,
        password: str | None = None,
        verify_tls: bool = True,
    ):
        self.url = url.rstrip("/")
        self.index = index
        self._api_key = api_key
        self._auth = aiohttp.BasicAuth(username, password or "") if username else None
        self._verify_tls = verify_tls
        self._session: aiohttp.ClientSession | None = None

    @classmethod
    def from_config(cls, settings, index: str) -> "ElasticsearchSource":
        return cls(
            url=settings.url,
            index=index,
            api_key=settings.api_key,
            username=settings.username,
            password=settings.password,
            verify_tls=settings.verify_tls,
        )

    async def start(self) -> None:
        if self._session is not None:
            return
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"ApiKey {self._api_key}"
        self._session = aiohttp.ClientSession(
            headers=headers,
            auth=self._auth,
            connector=aiohttp.TCPConnector() if self._verify_tls else aiohttp.TCPConnector(ssl=False),
        )

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def _request(self, method: str, path: str, body: Mapping | None = None,
                       params: Mapping[str, str] | None = None) -> dict:
        await self.start()
        url = f"{self.url}/{path.lstrip('/')}"
        try:
            async with self._session.request(method, url, json=body, params=params) as resp:
                text = await resp.text()
                if resp.status >= 400:
                    logger.warning("%s %s -> %d", method, path, resp.status)
                    raise QueryFailed(resp.status, text, body)
                return json.loads(text) if text else {}
        except aiohttp.ClientError as e:
            raise ConnectionFailed(f"cannot reach {self.url}: {e}") from e

    async def _search(self, index: str, body: Mapping) -> dict:
        return await self._request("POST", f"{index}/_search", body)

    async def ping(self) -> None:
        await self._request("GET", "/")

    async def tail(self, opts: QueryOptions) -> SearchResult:
        query = build_tail_query(opts)
        return await self._run_search(opts, query)

    async def search(self, query: str, opts: QueryOptions) -> SearchResult:
        return await self._run_search(opts, build_search_query(query, opts))

    async def _run_search(self, opts: QueryOptions, query: dict) -> SearchResult:
        index = opts.index or self.index
        raw = await self._search(index, _sorted_hits_body(query, opts))
        docs, total = parse_hits(raw)
        return SearchResult(tuple(docs), total, json.dumps(query, indent=2), index)

    async def count(self, opts: QueryOptions) -> int:
        raw = await self._request("POST", f"{opts.index or self.index}/_count", build_tail_query(opts))
        return int(raw.get("count", 0))

    async def aggregate_metrics(self, opts: QueryOptions) -> MetricsAggResult:
        index = opts.index or self.index
        caps = await self._request("GET", f"{index}/_field_caps", params={"fields": "metrics.*"})
        metric_fields = parse_metric_fields(caps)[:MAX_METRICS]
        if not metric_fields:
            return MetricsAggResult(bucket_size=opts.lookback.bucket_interval)
        body = build_metrics_agg_query([m[0] for m in metric_fields], opts)
        raw = await self._search(index, body)
        return parse_metrics_agg(raw, metric_fields, opts.lookback.bucket_interval)

    async def transaction_names(self, lookback: Lookback, filters: Filters,
                                index: str | None = None) -> list[TransactionNameAgg]:
        raw = await self._search(index or self.index, build_transaction_names_query(lookback, filters))
        return parse_transaction_names(raw)

    async def services(self, lookback: Lookback) -> list[PerspectiveItem]:
        raw = await self._search(ALL_SIGNALS_INDEX, build_perspective_query("resource.attributes.service.name", lookback))
        return parse_perspectives(raw)

    async def resources(self, lookback: Lookback) -> list[PerspectiveItem]:
        raw = await self._search(ALL_SIGNALS_INDEX,
                                 build_perspective_query("resource.attributes.deployment.environment", lookback))
        return parse_perspectives(raw)

    async def field_caps(self, index: str | None = None) -> list[FieldInfo]:
        index = index or self.index
        raw = await self._request("GET", f"{index}/_field_caps", params={"fields": "*"})
        fields = parse_field_caps(raw)
        try:
            await self._enrich_counts(index, fields)
        except DataSourceError as e:
            logger.debug("field count enrichment skipped: %s", e)
        return fields

    async def _enrich_counts(self, index: str, fields: list[FieldInfo]) -> None:
        """Fill doc_count for the first fields with value_count/exists aggregations."""
        head = fields[:MAX_FIELD_COUNTS]
        if not head:
            return
        aggs = {}
        for i, f in enumerate(head):
            if f.aggregatable:
                aggs[f"f{i}"] = {"value_count": {"field": f.name}}
            else:
                aggs[f"f{i}"] = {"filter": {"exists": {"field": f.name}}}
        raw = await self._search(index, {"size": 0, "aggs": aggs})
        results = raw.get("aggregations") or {}
        for i, f in enumerate(head):
            agg = results.get(f"f{i}") or {}
            count = int(_num(agg.get("value")) or _num(agg.get("doc_count")))
            fields[i] = FieldInfo(f.name, f.type, f.searchable, f.aggregatable, count)
