from signalscope.fields import default_fields
from signalscope.highlight import Highlighter
from signalscope.models import Document, SignalType, TimeDisplay
from signalscope.render import (
    SPARK_CHARS,
    column_widths,
    curl_query,
    format_duration,
    format_number,
    format_row,
    kibana_query,
    relative_time,
    sparkline,
)


class TestQueryText:
    def test_kibana(self):
        assert kibana_query("logs-*", '{"size": 1}') == 'GET logs-*/_search\n{"size": 1}'

    def test_curl_compacts_body(self):
        out = curl_query("logs-*", '{\n  "size": 1\n}', "http://es:9200")
        assert out == ("curl -X GET 'http://es:9200/logs-*/_search' "
                       "-H 'Content-Type: application/json' -d '{\"size\":1}'")

    def test_curl_falls_back_to_raw_body(self):
        assert curl_query("logs-*", "not json") == "not json"


class TestRows:
    def test_flexible_column_takes_rest(self):
        fields = default_fields(SignalType.LOGS)
        widths = column_widths(fields, 100, TimeDisplay.CLOCK)
        assert sum(widths) + len(fields) - 1 == 100

    def test_row_width_matches_columns(self):
        fields = default_fields(SignalType.LOGS)
        doc = Document({"@timestamp": "2026-01-01T00:00:00Z", "severity_text": "ERROR",
                        "body": {"text": "disk full " * 20}})
        row = format_row(doc, fields, 80, Highlighter("disk"))
        assert len(row.plain) == 80

    def test_unsearchable_column_is_never_highlighted(self):
        fields = default_fields(SignalType.LOGS)[:1]
        hl = Highlighter("2026")
        doc = Document({"@timestamp": "2026-01-01T00:00:00Z"})
        row = format_row(doc, fields, 20, hl, TimeDisplay.FULL)
        assert hl.spans(row) == []


class TestFormatting:
    def test_durations(self):
        assert format_duration(0.5) == "500µs"
        assert format_duration(12.34) == "12.3ms"
        assert format_duration(4200) == "4.2s"
        assert format_duration(185_000) == "3m 5s"

    def test_numbers(self):
        assert format_number(1500) == "1.50K"
        assert format_number(0) == "0.00"

    def test_relative_time(self):
        assert relative_time(1000, now=1030) == "just now"
        assert relative_time(0, now=7200) == "2 hours ago"


class TestSparkline:
    def test_resamples_to_width(self):
        line = sparkline(list(range(100)), 10)
        assert len(line) == 10
        assert line[0] == SPARK_CHARS[0]
        assert line[-1] == SPARK_CHARS[-1]

    def test_flat_series(self):
        assert set(sparkline([3, 3, 3], 10)) == {SPARK_CHARS[len(SPARK_CHARS) // 2]}

    def test_empty(self):
        assert sparkline([], 10) == ""
