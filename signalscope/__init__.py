"""signalscope: terminal browser for OpenTelemetry logs, traces and metrics."""

from .autorange import detect_lookback
from .dispatch import Dispatcher, FetchRequest, FetchResult, RequestKind, RequestLedger
from .fields import DisplayField, collect_search_fields, default_fields, ranked_field_list, toggle_field
from .highlight import Highlighter, pad_or_truncate
from .models import Document, FieldInfo, Filters, Lookback, QueryOptions, SignalType
from .session import Mode, Session

__all__ = [
    "Dispatcher",
    "DisplayField",
    "Document",
    "FetchRequest",
    "FetchResult",
    "FieldInfo",
    "Filters",
    "Highlighter",
    "Lookback",
    "Mode",
    "QueryOptions",
    "RequestKind",
    "RequestLedger",
    "Session",
    "SignalType",
    "collect_search_fields",
    "default_fields",
    "detect_lookback",
    "pad_or_truncate",
    "ranked_field_list",
    "toggle_field",
]
