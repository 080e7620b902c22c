"""Value objects shared by the session, the data source and the UI."""

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any


# ── Signals and time windows ───────────────────────────────


class SignalType(Enum):
    LOGS = "logs"
    TRACES = "traces"
    METRICS = "metrics"
    CHAT = "chat"

    @property
    def index_pattern(self) -> str:
        # Chat has no index of its own; it talks about whatever logs are loaded.
        if self is SignalType.CHAT:
            return "logs-*"
        return f"{self.value}-*"

    @property
    def label(self) -> str:
        return self.value.capitalize()

    def next(self) -> "SignalType":
        """Cycle logs -> traces -> metrics -> logs. Chat is entered separately."""
        order = [SignalType.LOGS, SignalType.TRACES, SignalType.METRICS]
        if self not in order:
            return SignalType.LOGS
        return order[(order.index(self) + 1) % len(order)]


class Lookback(Enum):
    """Relative time windows, narrowest first. Member order is the probe order."""

    M5 = "5m"
    H1 = "1h"
    H24 = "24h"
    W1 = "1w"
    ALL = "all"

    @classmethod
    def ordered(cls) -> list["Lookback"]:
        return list(cls)

    @property
    def es_range(self) -> str | None:
        """Date-math lower bound, or None when the window is unbounded."""
        if self is Lookback.ALL:
            return None
        return f"now-{self.value}"

    @property
    def bucket_interval(self) -> str:
        """date_histogram interval that keeps roughly 30-300 buckets per window."""
        return {
            Lookback.M5: "10s",
            Lookback.H1: "1m",
            Lookback.H24: "5m",
            Lookback.W1: "30m",
        }.get(self, "1h")

    def next(self) -> "Lookback":
        members = list(Lookback)
        return members[(members.index(self) + 1) % len(members)]


class TimeDisplay(Enum):
    CLOCK = "clock"
    RELATIVE = "relative"
    FULL = "full"

    def next(self) -> "TimeDisplay":
        members = list(TimeDisplay)
        return members[(members.index(self) + 1) % len(members)]


# ── Documents ──────────────────────────────────────────────


_SEVERITY_BANDS = [(4, "TRACE"), (8, "DEBUG"), (12, "INFO"), (16, "WARN"), (20, "ERROR")]

_RESOURCE_PRIORITY = [
    "service.namespace",
    "deployment.environment",
    "host.name",
    "k8s.namespace.name",
    "cloud.region",
]


def _resolve(node: Any, parts: list[str]) -> Any:
    """Walk a path through nested mappings, also accepting flat dotted keys.

    OTel documents mix both shapes, e.g. ``resource.attributes`` may hold the
    literal key ``"service.name"`` or a nested ``{"service": {"name": ...}}``.
    Longer key prefixes are tried first.
    """
    if not parts:
        return node
    if not isinstance(node, Mapping):
        return None
    for i in range(len(parts), 0, -1):
        key = ".".join(parts[:i])
        if key in node:
            found = _resolve(node[key], parts[i:])
            if found is not None:
                return found
    return None


def _non_empty_str(value: Any) -> str:
    return value if isinstance(value, str) and value else ""


@dataclass(frozen=True)
class Document:
    """One backend hit. ``get`` is the only way code reads the raw source."""

    source: Mapping[str, Any]
    doc_id: str = ""
    index: str = ""

    def get(self, path: str) -> Any | None:
        if not path:
            return None
        return _resolve(self.source, path.split("."))

    def get_str(self, *paths: str) -> str:
        """First non-empty string found at any of ``paths``."""
        for p in paths:
            value = _non_empty_str(self.get(p))
            if value:
                return value
        return ""

    @property
    def timestamp(self) -> datetime | None:
        raw = self.get("@timestamp")
        if isinstance(raw, (int, float)):
            return datetime.fromtimestamp(raw / 1000, tz=timezone.utc)
        if isinstance(raw, str) and raw:
            try:
                millis = float(raw)
            except ValueError:
                try:
                    return datetime.fromisoformat(raw.replace("Z", "+00:00"))
                except ValueError:
                    return None
            if millis > 1_000_000_000_000:
                return datetime.fromtimestamp(millis / 1000, tz=timezone.utc)
        return None

    @property
    def message(self) -> str:
        return self.get_str("body.text", "body", "message", "event_name", "name")

    @property
    def level(self) -> str:
        level = self.get_str("severity_text", "log.level", "level")
        if level:
            return level
        number = self.get("severity_number")
        if isinstance(number, (int, float)):
            for limit, name in _SEVERITY_BANDS:
                if number <= limit:
                    return name
            return "FATAL"
        return "INFO"

    @property
    def service_name(self) -> str:
        return self.get_str(
            "resource.attributes.service.name",
            "resource.service.name",
            "attributes.service.name",
            "service.name",
        )

    @property
    def resource(self) -> str:
        attrs = self.get("resource.attributes")
        if isinstance(attrs, Mapping):
            for key in _RESOURCE_PRIORITY:
                value = _non_empty_str(_resolve(attrs, key.split(".")))
                if value:
                    return value
            for key, value in attrs.items():
                if key != "service.name" and _non_empty_str(value):
                    return value
        return self.get_str(*(f"resource.{k}" for k in _RESOURCE_PRIORITY[:3]))

    @property
    def trace_id(self) -> str:
        return self.get_str("trace_id", "trace.id")

    @property
    def span_id(self) -> str:
        return self.get_str("span_id", "span.id")

    @property
    def name(self) -> str:
        return self.get_str("name")

    @property
    def kind(self) -> str:
        return self.get_str("kind")

    @property
    def duration_ns(self) -> int:
        value = self.get("duration")
        return int(value) if isinstance(value, (int, float)) else 0

    @property
    def status_code(self) -> str:
        value = self.get("status.code")
        return "" if value is None else str(value)

    @property
    def processor_event(self) -> str:
        return self.get_str("attributes.processor.event", "processor.event")

    @property
    def metrics(self) -> Mapping[str, Any]:
        value = self.get("metrics")
        return value if isinstance(value, Mapping) else {}

    def field_text(self, path: str) -> str:
        """Display string for a column path. Timestamps are formatted by the renderer."""
        if path in ("level", "severity_text"):
            return self.level
        if path in ("service.name", "resource.attributes.service.name"):
            return self.service_name
        if path in ("body", "body.text", "message"):
            return self.message
        if path == "_resource":
            return self.resource
        if path == "name":
            return self.name or self.message
        if path == "duration_ms":
            ns = self.duration_ns
            if ns <= 0:
                return ""
            ms = ns / 1_000_000
            return f"{ms:.3f}" if ms < 1 else f"{ms:.1f}"
        if path == "_metrics":
            return ", ".join(f"{k}={v}" for k, v in self.metrics.items())

        for candidate in (path, f"attributes.{path}", f"resource.attributes.{path}"):
            value = self.get(candidate)
            if value is not None:
                return value if isinstance(value, str) else str(value)
        return ""


# ── Backend aggregates ─────────────────────────────────────


@dataclass(frozen=True)
class FieldInfo:
    name: str
    type: str = ""
    searchable: bool = True
    aggregatable: bool = False
    doc_count: int = 0


@dataclass(frozen=True)
class PerspectiveItem:
    name: str
    log_count: int = 0
    trace_count: int = 0
    metric_count: int = 0


@dataclass(frozen=True)
class TransactionNameAgg:
    name: str
    count: int = 0
    avg_duration_ms: float = 0.0
    min_duration_ms: float = 0.0
    max_duration_ms: float = 0.0
    trace_count: int = 0
    avg_spans: float = 0.0
    error_rate: float = 0.0
    last_seen: datetime | None = None


@dataclass(frozen=True)
class MetricBucket:
    timestamp: datetime
    value: float = 0.0
    count: int = 0


@dataclass(frozen=True)
class AggregatedMetric:
    name: str
    short_name: str
    type: str = ""
    min: float = 0.0
    max: float = 0.0
    avg: float = 0.0
    latest: float = 0.0
    buckets: tuple[MetricBucket, ...] = ()


@dataclass(frozen=True)
class MetricsAggResult:
    metrics: tuple[AggregatedMetric, ...] = ()
    bucket_size: str = ""


@dataclass(frozen=True)
class SearchResult:
    documents: tuple[Document, ...] = ()
    total: int = 0
    query_text: str = ""
    index: str = ""


# ── Filters and query options ──────────────────────────────


@dataclass(frozen=True)
class Filters:
    """Active user filters. Service and resource carry include/exclude polarity."""

    query: str = ""
    level: str = ""
    service: str = ""
    exclude_service: bool = False
    resource: str = ""
    exclude_resource: bool = False

    def with_(self, **changes) -> "Filters":
        return replace(self, **changes)

    def describe(self) -> list[str]:
        parts = []
        if self.query:
            parts.append(f'query "{self.query}"')
        if self.level:
            parts.append(f"level {self.level}")
        if self.service:
            parts.append(f"service {'!=' if self.exclude_service else '='} {self.service}")
        if self.resource:
            parts.append(f"resource {'!=' if self.exclude_resource else '='} {self.resource}")
        return parts


@dataclass(frozen=True)
class QueryOptions:
    """Immutable parameter snapshot handed to a fetch task."""

    index: str = "logs-*"
    size: int = 100
    lookback: Lookback = Lookback.H24
    sort_asc: bool = False
    filters: Filters = field(default_factory=Filters)
    search_fields: tuple[str, ...] = ()
    processor_event: str = ""
    transaction_name: str = ""
    trace_id: str = ""
    metric_field: str = ""
