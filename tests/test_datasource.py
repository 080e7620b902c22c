import json

from signalscope.datasource import (
    DEFAULT_SEARCH_FIELDS,
    QueryFailed,
    build_metrics_agg_query,
    build_search_query,
    build_tail_query,
    build_transaction_names_query,
    filter_clauses,
    parse_field_caps,
    parse_hits,
    parse_metric_fields,
    parse_metrics_agg,
    parse_perspectives,
    parse_transaction_names,
)
from signalscope.models import Filters, Lookback, QueryOptions


class TestFilterClauses:
    def test_lookback_range(self):
        must, must_not = filter_clauses(QueryOptions(lookback=Lookback.H1))
        assert must == [{"range": {"@timestamp": {"gte": "now-1h"}}}]
        assert must_not == []

    def test_all_has_no_range(self):
        must, _ = filter_clauses(QueryOptions(lookback=Lookback.ALL))
        assert must == []

    def test_excluded_service_goes_to_must_not(self):
        opts = QueryOptions(lookback=Lookback.ALL,
                            filters=Filters(service="checkout", exclude_service=True))
        must, must_not = filter_clauses(opts)
        assert must == []
        assert len(must_not) == 1
        assert {"term": {"resource.attributes.service.name": "checkout"}} in must_not[0]["bool"]["should"]

    def test_trace_narrowing(self):
        opts = QueryOptions(lookback=Lookback.ALL, processor_event="span", trace_id="abc")
        must, _ = filter_clauses(opts)
        assert {"term": {"attributes.processor.event": "span"}} in must
        assert {"term": {"trace_id": "abc"}} in must


class TestQueryBodies:
    def test_tail_has_no_query_string(self):
        body = build_tail_query(QueryOptions(filters=Filters(query="ignored")))
        assert "query_string" not in json.dumps(body)

    def test_search_wraps_term_in_wildcards(self):
        opts = QueryOptions(search_fields=("body.text", "service.name"))
        qs = build_search_query("timeout", opts)["query"]["bool"]["must"][0]["query_string"]
        assert qs["query"] == "*timeout*"
        assert qs["fields"] == ["body.text", "service.name"]
        assert qs["default_operator"] == "AND"

    def test_search_default_fields(self):
        qs = build_search_query("x", QueryOptions())["query"]["bool"]["must"][0]["query_string"]
        assert qs["fields"] == DEFAULT_SEARCH_FIELDS

    def test_aggregations_ignore_query_and_level(self):
        filters = Filters(query="boom", level="ERROR", service="api")
        body = json.dumps(build_transaction_names_query(Lookback.H1, filters))
        assert "boom" not in body
        assert "severity_text" not in body
        assert "api" in body

    def test_metrics_agg_per_field(self):
        opts = QueryOptions(lookback=Lookback.M5)
        body = build_metrics_agg_query(["metrics.cpu", "metrics.mem"], opts)
        assert body["size"] == 0
        assert set(body["aggs"]) == {"m0", "m1"}
        assert body["aggs"]["m0"]["aggs"]["over_time"]["date_histogram"]["fixed_interval"] == "10s"


class TestParsers:
    def test_hits(self):
        raw = {"hits": {"total": {"value": 42}, "hits": [
            {"_id": "1", "_index": "logs-a", "_source": {"body": {"text": "hi"}}},
        ]}}
        docs, total = parse_hits(raw)
        assert total == 42
        assert docs[0].doc_id == "1"
        assert docs[0].message == "hi"

    def test_hits_empty(self):
        assert parse_hits({}) == ([], 0)

    def test_transaction_names_converts_nanoseconds(self):
        raw = {"aggregations": {
            "total_spans": {"doc_count": 30},
            "total_unique_traces": {"value": 10},
            "transactions": {"tx_names": {"buckets": [{
                "key": "GET /api",
                "doc_count": 4,
                "avg_duration": {"value": 2_500_000},
                "min_duration": {"value": 1_000_000},
                "max_duration": {"value": 4_000_000},
                "unique_traces": {"value": 4},
                "errors": {"doc_count": 1},
                "last_seen": {"value": 0},
            }]}},
        }}
        [tx] = parse_transaction_names(raw)
        assert tx.avg_duration_ms == 2.5
        assert tx.avg_spans == 3.0
        assert tx.error_rate == 25.0

    def test_perspectives_skip_blank_keys(self):
        raw = {"aggregations": {"items": {"buckets": [
            {"key": "", "doc_count": 1},
            {"key": "api", "logs": {"doc_count": 3}, "traces": {"doc_count": 2}, "metrics": {"doc_count": 1}},
        ]}}}
        [item] = parse_perspectives(raw)
        assert (item.name, item.log_count, item.trace_count, item.metric_count) == ("api", 3, 2, 1)

    def test_field_caps_skip_meta_and_objects(self):
        raw = {"fields": {
            "_id": {"_id": {"type": "_id"}},
            "resource": {"object": {"type": "object"}},
            "host.name": {"keyword": {"type": "keyword", "searchable": True, "aggregatable": True}},
        }}
        [info] = parse_field_caps(raw)
        assert info.name == "host.name"
        assert info.aggregatable

    def test_metric_fields_need_numeric_aggregatable(self):
        raw = {"fields": {
            "metrics.z": {"double": {"aggregatable": True}},
            "metrics.a": {"long": {"aggregatable": True, "time_series_metric": "counter"}},
            "metrics.s": {"keyword": {"aggregatable": True}},
        }}
        assert parse_metric_fields(raw) == [("metrics.a", "a", "counter"), ("metrics.z", "z", "")]

    def test_metrics_agg(self):
        raw = {"aggregations": {"m0": {
            "stats": {"min": 1, "max": 9, "avg": 5},
            "over_time": {"buckets": [{"key": 0, "doc_count": 2, "value": {"value": 3}}]},
            "latest": {"hits": {"hits": [{"_source": {"metrics": {"cpu": 7}}}]}},
        }}}
        result = parse_metrics_agg(raw, [("metrics.cpu", "cpu", "gauge")], "1m")
        [metric] = result.metrics
        assert (metric.min, metric.max, metric.avg, metric.latest) == (1, 9, 5, 7)
        assert metric.buckets[0].value == 3
        assert result.bucket_size == "1m"


class TestQueryFailed:
    def test_root_cause_in_message(self):
        body = json.dumps({"error": {"root_cause": [{"type": "index_not_found_exception",
                                                     "reason": "no such index"}]}})
        err = QueryFailed(404, body)
        assert "index_not_found_exception: no such index" in str(err)

    def test_plain_body(self):
        assert "gateway" in str(QueryFailed(502, "bad gateway"))
