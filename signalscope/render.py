"""Text building blocks for the views: cells, rows, detail panes, charts."""

import json
import time
from datetime import datetime

import numpy as np
from rich.text import Text

from .fields import DisplayField
from .highlight import Highlighter, pad_or_truncate
from .models import AggregatedMetric, Document, PerspectiveItem, TimeDisplay, TransactionNameAgg

SPARK_CHARS = "▁▂▃▄▅▆▇█"
COLUMN_GAP = 1

LEVEL_STYLES = {
    "ERROR": "bold red",
    "FATAL": "bold red",
    "WARN": "yellow",
    "WARNING": "yellow",
    "INFO": "green",
    "DEBUG": "dim",
    "TRACE": "dim",
}


# ── Time ───────────────────────────────────────────────────


def _plural(n: int, word: str) -> str:
    return f"{n} {word}{'s' if n != 1 else ''}"


def relative_time(epoch: float, now: float | None = None) -> str:
    delta = int((time.time() if now is None else now) - epoch)
    if delta < 60:
        return "just now"

    minutes = delta // 60
    hours = delta // 3600
    days = delta // 86400

    if delta < 3600:
        return f"{_plural(minutes, 'minute')} ago"
    elif delta < 86400:
        return f"{_plural(hours, 'hour')} ago"
    return f"{_plural(days, 'day')} ago"


def format_duration(ms: float) -> str:
    """Compact duration: 850µs, 12.3ms, 4.2s, 3m 5s."""
    if ms < 1:
        return f"{ms * 1000:.0f}µs"
    if ms < 1000:
        return f"{ms:.1f}ms"
    secs = ms / 1000
    if secs < 60:
        return f"{secs:.1f}s"
    minutes = int(secs) // 60
    remaining = int(secs) % 60
    return f"{minutes}m {remaining}s" if remaining else f"{minutes}m"


def format_timestamp(ts: datetime | None, display: TimeDisplay) -> str:
    if ts is None:
        return ""
    local = ts.astimezone()
    if display is TimeDisplay.RELATIVE:
        return relative_time(local.timestamp())
    if display is TimeDisplay.FULL:
        return local.strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]
    return local.strftime("%H:%M:%S")


def time_width(display: TimeDisplay, configured: int) -> int:
    return {TimeDisplay.RELATIVE: 16, TimeDisplay.FULL: 23}.get(display, configured)


# ── List rows ──────────────────────────────────────────────


def column_widths(fields: list[DisplayField], total: int, display: TimeDisplay) -> list[int]:
    """Resolve width 0 columns to share whatever the fixed columns leave over."""
    fixed = []
    for f in fields:
        w = time_width(display, f.width) if f.name == "@timestamp" else f.width
        fixed.append(w)
    gaps = COLUMN_GAP * max(0, len(fields) - 1)
    flexible = [i for i, w in enumerate(fixed) if w == 0]
    if flexible:
        remaining = max(10, total - sum(fixed) - gaps)
        share, extra = divmod(remaining, len(flexible))
        for n, i in enumerate(flexible):
            fixed[i] = share + (1 if n < extra else 0)
    return fixed


def format_header(fields: list[DisplayField], total: int, display: TimeDisplay) -> Text:
    widths = column_widths(fields, total, display)
    header = Text(style="bold")
    for i, (f, w) in enumerate(zip(fields, widths)):
        if i:
            header.append(" " * COLUMN_GAP)
        header.append(pad_or_truncate(f.label, w))
    return header


def cell_text(doc: Document, f: DisplayField, display: TimeDisplay) -> str:
    if f.name == "@timestamp":
        return format_timestamp(doc.timestamp, display)
    return doc.field_text(f.name).replace("\n", " ")


def format_row(
    doc: Document,
    fields: list[DisplayField],
    total: int,
    highlighter: Highlighter,
    display: TimeDisplay = TimeDisplay.CLOCK,
) -> Text:
    """One list row, exactly as wide as the sum of its columns."""
    widths = column_widths(fields, total, display)
    row = Text()
    for i, (f, w) in enumerate(zip(fields, widths)):
        if i:
            row.append(" " * COLUMN_GAP)
        value = cell_text(doc, f, display)
        style = LEVEL_STYLES.get(value.upper(), "") if f.name in ("severity_text", "level") else ""
        if f.search_fields is None:
            row.append(pad_or_truncate(value, w), style=style)
        else:
            row.append_text(highlighter.apply(value, w, style))
    return row


def transaction_row(tx: TransactionNameAgg, width: int) -> Text:
    stats = (
        f"{tx.count:>7} "
        f"{format_duration(tx.avg_duration_ms):>9} "
        f"{tx.error_rate:>5.1f}% "
        f"{tx.avg_spans:>5.1f} "
    )
    row = Text(pad_or_truncate(tx.name, max(10, width - len(stats))))
    row.append(stats, style="red" if tx.error_rate > 0 else "")
    return row


def perspective_row(item: PerspectiveItem, width: int, active: str = "", excluded: bool = False) -> Text:
    marker = " "
    if item.name == active:
        marker = "-" if excluded else "+"
    counts = f"{item.log_count:>8} {item.trace_count:>8} {item.metric_count:>8}"
    row = Text(f"{marker} ", style="bold red" if excluded and marker != " " else "bold green")
    row.append(pad_or_truncate(item.name, max(10, width - len(counts) - 3)))
    row.append(" " + counts, style="dim")
    return row


# ── Metrics ────────────────────────────────────────────────


def sparkline(values: list[float] | np.ndarray, width: int) -> str:
    """Block-glyph sparkline, resampled to ``width`` columns by bucket means."""
    data = np.asarray(values, dtype=float)
    if width <= 0 or data.size == 0:
        return ""
    if data.size > width:
        data = np.array([chunk.mean() for chunk in np.array_split(data, width)])
    lo, hi = float(np.min(data)), float(np.max(data))
    if hi == lo:
        return SPARK_CHARS[len(SPARK_CHARS) // 2] * data.size
    scaled = (data - lo) / (hi - lo) * (len(SPARK_CHARS) - 1)
    return "".join(SPARK_CHARS[int(round(v))] for v in scaled)


def format_number(value: float) -> str:
    magnitude = abs(value)
    if magnitude >= 1e9:
        return f"{value / 1e9:.2f}G"
    if magnitude >= 1e6:
        return f"{value / 1e6:.2f}M"
    if magnitude >= 1e3:
        return f"{value / 1e3:.2f}K"
    if magnitude and magnitude < 0.01:
        return f"{value:.2e}"
    return f"{value:.2f}"


def metric_row(metric: AggregatedMetric, width: int) -> Text:
    stats = (
        f" {format_number(metric.min):>9} {format_number(metric.max):>9}"
        f" {format_number(metric.avg):>9} {format_number(metric.latest):>9} "
    )
    name_w = min(40, max(10, width // 3))
    spark_w = max(0, width - name_w - len(stats))
    row = Text(pad_or_truncate(metric.short_name, name_w), style="bold")
    row.append(stats)
    row.append(sparkline([b.value for b in metric.buckets], spark_w), style="cyan")
    return row


# ── Detail ─────────────────────────────────────────────────


def document_json(doc: Document) -> str:
    return json.dumps(dict(doc.source), indent=2, default=str, ensure_ascii=False)


_DETAIL_FIELDS = [
    ("Level", lambda d: d.level),
    ("Service", lambda d: d.service_name),
    ("Resource", lambda d: d.resource),
    ("Name", lambda d: d.name),
    ("Kind", lambda d: d.kind),
    ("Trace", lambda d: d.trace_id),
    ("Span", lambda d: d.span_id),
    ("Status", lambda d: d.status_code),
]


def detail_text(doc: Document, highlighter: Highlighter, spans: list[Document] | None = None) -> Text:
    """Readable view of one document. Every occurrence of the query is marked."""
    out = Text()
    ts = doc.timestamp
    out.append("Timestamp: ", style="bold")
    out.append(format_timestamp(ts, TimeDisplay.FULL) + "\n")
    for label, getter in _DETAIL_FIELDS:
        value = getter(doc)
        if value:
            out.append(f"{label}: ", style="bold")
            out.append_text(highlighter.apply_to_field(value))
            out.append("\n")
    if doc.duration_ns:
        out.append("Duration: ", style="bold")
        out.append(format_duration(doc.duration_ns / 1_000_000) + "\n")

    message = doc.message
    if message:
        out.append("\nMessage:\n", style="bold")
        out.append_text(highlighter.apply_to_field(message))
        out.append("\n")

    attrs = doc.get("attributes")
    if isinstance(attrs, dict) and attrs:
        out.append("\nAttributes:\n", style="bold")
        for key in sorted(attrs):
            out.append(f"  {key}: ", style="cyan")
            out.append_text(highlighter.apply_to_field(str(attrs[key])))
            out.append("\n")

    if doc.metrics:
        out.append("\nMetrics:\n", style="bold")
        for key, value in doc.metrics.items():
            out.append(f"  {key}: {value}\n")

    if spans:
        out.append(f"\nSpans ({len(spans)}):\n", style="bold")
        for span in spans:
            dur = format_duration(span.duration_ns / 1_000_000) if span.duration_ns else ""
            out.append(f"  {dur:>9}  ", style="dim")
            out.append_text(highlighter.apply_to_field(span.name or span.message))
            out.append("\n")
    return out


# ── Query overlay ──────────────────────────────────────────


def kibana_query(index: str, body: str) -> str:
    """Dev Tools console form: ``GET <index>/_search`` followed by the body."""
    return f"GET {index}/_search\n{body}"


def curl_query(index: str, body: str, base_url: str = "http://localhost:9200") -> str:
    """curl form with a compacted body; unparsable bodies are shown as-is."""
    try:
        compact = json.dumps(json.loads(body), separators=(",", ":"))
    except (json.JSONDecodeError, TypeError):
        return body
    return (
        f"curl -X GET '{base_url}/{index}/_search' "
        f"-H 'Content-Type: application/json' -d '{compact}'"
    )
