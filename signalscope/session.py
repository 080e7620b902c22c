"""Session state and the key/result driven mode machine.

The Session is owned by the UI's update loop. Key presses, timer ticks and
fetch results each enter through one method (``handle_key``, ``tick``,
``apply``), mutate state synchronously and return the FetchRequests that the
caller should dispatch. Nothing here awaits.
"""

import json
import logging
from dataclasses import dataclass, field, replace
from enum import Enum, auto

from . import render
from .chat import ChatMessage, compose_prompt
from .dispatch import FetchRequest, FetchResult, RequestKind, RequestLedger
from .fields import DisplayField, RankedField, collect_search_fields, default_fields, ranked_field_list, toggle_field
from .models import (
    AggregatedMetric,
    Document,
    FieldInfo,
    Filters,
    Lookback,
    MetricsAggResult,
    PerspectiveItem,
    QueryOptions,
    SignalType,
    TimeDisplay,
    TransactionNameAgg,
)

logger = logging.getLogger(__name__)

PAGE_STEP = 10
SPAN_PAGE_SIZE = 1000
METRIC_DOC_PAGE_SIZE = 10

LEVEL_KEYS = {"1": "ERROR", "2": "WARN", "3": "INFO", "4": "DEBUG", "0": ""}


class Mode(Enum):
    LIST = auto()
    SEARCH = auto()
    DETAIL = auto()
    DETAIL_RAW = auto()
    INDEX = auto()
    QUERY = auto()
    FIELDS = auto()
    METRICS_DASHBOARD = auto()
    METRIC_DETAIL = auto()
    TRACE_NAMES = auto()
    PERSPECTIVE_LIST = auto()
    ERROR_MODAL = auto()
    QUIT_CONFIRM = auto()
    HELP = auto()
    CHAT = auto()


TEXT_ENTRY_MODES = frozenset({Mode.SEARCH, Mode.INDEX, Mode.CHAT})
NO_HELP_MODES = frozenset({Mode.DETAIL_RAW, Mode.ERROR_MODAL, Mode.HELP, Mode.QUIT_CONFIRM})


class TraceLevel(Enum):
    NAMES = auto()
    TRANSACTIONS = auto()
    SPANS = auto()


class MetricsView(Enum):
    DASHBOARD = auto()
    DOCUMENTS = auto()


class DetailSource(Enum):
    LOGS = auto()
    METRIC_DOCS = auto()


def initial_mode(signal: SignalType) -> Mode:
    return {
        SignalType.TRACES: Mode.TRACE_NAMES,
        SignalType.METRICS: Mode.METRICS_DASHBOARD,
        SignalType.CHAT: Mode.CHAT,
    }.get(signal, Mode.LIST)


# ── View stack ─────────────────────────────────────────────


@dataclass
class View:
    """A mode plus the transient state needed to resume it."""
    mode: Mode
    cursor: int = 0
    scroll: int = 0
    text: str = ""
    editing: bool = False


class ViewStack:
    """Saved parent views, most recent last. Never holds the current view."""

    def __init__(self) -> None:
        self._entries: list[View] = []

    def push(self, view: View) -> None:
        self._entries.append(view)

    def pop(self) -> View | None:
        return self._entries.pop() if self._entries else None

    def peek(self) -> View | None:
        return self._entries[-1] if self._entries else None

    def bottom(self) -> View | None:
        return self._entries[0] if self._entries else None

    def clear(self) -> None:
        self._entries.clear()

    def modes(self) -> list[Mode]:
        return [v.mode for v in self._entries]

    def __len__(self) -> int:
        return len(self._entries)


# ── Session ────────────────────────────────────────────────


def _move(index: int, count: int, key: str) -> int | None:
    """New cursor position for a navigation key, or None if ``key`` is not one."""
    if count <= 0:
        return None if key not in _NAV_KEYS else 0
    if key in ("up", "k"):
        index -= 1
    elif key in ("down", "j"):
        index += 1
    elif key == "pageup":
        index -= PAGE_STEP
    elif key == "pagedown":
        index += PAGE_STEP
    elif key in ("home", "g"):
        index = 0
    elif key in ("end", "G"):
        index = count - 1
    else:
        return None
    return max(0, min(index, count - 1))


_NAV_KEYS = frozenset({"up", "k", "down", "j", "pageup", "pagedown", "home", "g", "end", "G"})


def _clamp(index: int, count: int) -> int:
    return max(0, min(index, count - 1)) if count else 0


@dataclass
class Session:
    """Root state for one browsing session."""

    signal: SignalType = SignalType.LOGS
    index: str = ""
    es_url: str = "http://localhost:9200"
    lookback: Lookback = Lookback.H24
    sort_asc: bool = False
    auto_refresh: bool = True
    page_size: int = 100
    auto_detect_threshold: int = 10_000
    time_display: TimeDisplay = TimeDisplay.CLOCK
    filters: Filters = field(default_factory=Filters)
    fields: list[DisplayField] = field(default_factory=list)

    view: View = field(default=None)
    stack: ViewStack = field(default_factory=ViewStack)
    ledger: RequestLedger = field(default_factory=RequestLedger)
    loading: dict[RequestKind, bool] = field(default_factory=dict)
    errors: dict[RequestKind, str] = field(default_factory=dict)
    error: str | None = None
    status: str = ""

    # logs / trace events / metric documents shown by Mode.LIST
    logs: list[Document] = field(default_factory=list)
    total: int = 0
    selected: int = 0
    user_has_scrolled: bool = False
    query_text: str = ""
    query_index: str = ""
    query_format: str = "kibana"

    trace_level: TraceLevel = TraceLevel.NAMES
    trace_name: str = ""
    trace_id: str = ""
    transaction_names: list[TransactionNameAgg] = field(default_factory=list)
    tx_selected: int = 0
    spans: list[Document] = field(default_factory=list)
    spans_trace_id: str = ""
    last_fetched_trace_id: str = ""

    metrics_view: MetricsView = MetricsView.DASHBOARD
    metrics: MetricsAggResult = field(default_factory=MetricsAggResult)
    metric_selected: int = 0
    metric_docs: list[Document] = field(default_factory=list)
    metric_doc_selected: int = 0
    detail_source: DetailSource = DetailSource.LOGS

    perspective: str = "services"
    perspective_items: list[PerspectiveItem] = field(default_factory=list)

    available_fields: list[FieldInfo] = field(default_factory=list)
    _fields_on_open: list[DisplayField] = field(default_factory=list, repr=False)

    chat_messages: list[ChatMessage] = field(default_factory=list)

    quit_requested: bool = False
    clipboard: str | None = None

    def __post_init__(self) -> None:
        if self.view is None:
            self.view = View(initial_mode(self.signal))
        if not self.index:
            self.index = self.signal.index_pattern
        if not self.fields:
            self.fields = default_fields(self.signal)
        for kind in RequestKind:
            self.loading.setdefault(kind, False)

    @property
    def mode(self) -> Mode:
        return self.view.mode

    # ── Mode stack ─────────────────────────────────────────

    def push_mode(self, mode: Mode) -> None:
        self.stack.push(self.view)
        self.view = View(mode)

    def pop_mode(self) -> tuple[Mode, bool]:
        restored = self.stack.pop()
        if restored is None:
            return self.view.mode, False
        self.view = restored
        return restored.mode, True

    def peek_parent(self) -> Mode | None:
        parent = self.stack.peek()
        return parent.mode if parent else None

    def clear_stack(self) -> None:
        self.stack.clear()

    def replace_mode(self, mode: Mode) -> None:
        self.view = View(mode)

    def top_level_mode(self) -> Mode:
        bottom = self.stack.bottom()
        return bottom.mode if bottom else self.view.mode

    def keymap_mode(self) -> Mode:
        """Mode whose bindings the help overlay should describe."""
        if self.mode is Mode.HELP:
            return self.peek_parent() or Mode.LIST
        return self.mode

    def help_enabled(self) -> bool:
        if self.mode in NO_HELP_MODES or self.mode in TEXT_ENTRY_MODES:
            return False
        return not (self.mode is Mode.FIELDS and self.view.editing)

    # ── Request bookkeeping ────────────────────────────────

    def begin_request(self, kind: RequestKind) -> int:
        generation = self.ledger.next(kind)
        self.loading[kind] = True
        return generation

    def is_loading(self, kind: RequestKind | None = None) -> bool:
        if kind is None:
            return any(self.loading.values())
        return self.loading.get(kind, False)

    def apply(self, result: FetchResult) -> list[FetchRequest]:
        """Merge a finished fetch. Stale generations are dropped without a trace."""
        kind = result.kind
        if not self.ledger.is_current(kind, result.generation):
            logger.debug("discard stale %s gen=%d (current %d)",
                         kind.value, result.generation, self.ledger.current(kind))
            return []

        self.loading[kind] = False

        if result.error is not None:
            return self._apply_error(kind, result.error)

        self.errors.pop(kind, None)
        data = result.data

        if kind is RequestKind.LOGS:
            self.logs = list(data.documents)
            self.total = data.total
            self.query_text = data.query_text
            self.query_index = data.index
            if not self.user_has_scrolled and self.logs:
                self.selected = len(self.logs) - 1 if self.sort_asc else 0
            self.selected = _clamp(self.selected, len(self.logs))
            return self._maybe_fetch_spans()

        if kind is RequestKind.SPANS:
            self.spans = list(data.documents)
            self.spans_trace_id = (result.request.options.trace_id if result.request
                                   else self.last_fetched_trace_id)
        elif kind is RequestKind.METRIC_DOCS:
            self.metric_docs = list(data.documents)
            self.metric_doc_selected = _clamp(self.metric_doc_selected, len(self.metric_docs))
        elif kind is RequestKind.METRICS_AGG:
            self.metrics = data
            self.metric_selected = _clamp(self.metric_selected, len(data.metrics))
        elif kind is RequestKind.TRANSACTION_NAMES:
            self.transaction_names = list(data)
            self.tx_selected = _clamp(self.tx_selected, len(self.transaction_names))
        elif kind is RequestKind.PERSPECTIVE:
            self.perspective_items = list(data)
            if self.mode is Mode.PERSPECTIVE_LIST:
                self.view.cursor = _clamp(self.view.cursor, len(self.perspective_items))
        elif kind is RequestKind.FIELD_CAPS:
            self.available_fields = list(data)
            if self.mode is Mode.FIELDS:
                self.view.cursor = _clamp(self.view.cursor, len(self.ranked_fields()))
        elif kind is RequestKind.AUTO_DETECT:
            lookback, count = data
            self.lookback = lookback
            self.status = f"Found {count:,} entries in {lookback.value}"
            logger.info("auto-range chose %s (%d docs)", lookback.value, count)
            return self.fetch_current()
        elif kind is RequestKind.CHAT:
            self.chat_messages.append(ChatMessage("assistant", str(data)))
        return []

    def _apply_error(self, kind: RequestKind, error: str) -> list[FetchRequest]:
        if kind is RequestKind.AUTO_DETECT:
            logger.info("auto-range failed, keeping %s: %s", self.lookback.value, error)
            return self.fetch_current()
        self.errors[kind] = error
        if kind is RequestKind.CHAT:
            self.chat_messages.append(ChatMessage("assistant", error, error=True))
            return []
        self.error = error
        if self.mode is not Mode.ERROR_MODAL:
            self.push_mode(Mode.ERROR_MODAL)
        return []

    # ── Request builders ───────────────────────────────────

    def log_options(self) -> QueryOptions:
        opts = QueryOptions(
            index=self.index,
            size=self.page_size,
            lookback=self.lookback,
            sort_asc=self.sort_asc,
            filters=self.filters,
            search_fields=tuple(collect_search_fields(self.fields)),
        )
        if self.signal is SignalType.TRACES:
            if self.trace_level is TraceLevel.SPANS:
                return replace(opts, trace_id=self.trace_id)
            if self.trace_level is TraceLevel.TRANSACTIONS:
                return replace(opts, processor_event="transaction", transaction_name=self.trace_name)
            return replace(opts, processor_event="transaction")
        return opts

    def _request(self, kind: RequestKind, **kwargs) -> FetchRequest:
        return FetchRequest(kind=kind, **kwargs)

    def fetch_logs(self) -> list[FetchRequest]:
        return [self._request(RequestKind.LOGS, options=self.log_options())]

    def fetch_current(self) -> list[FetchRequest]:
        """Reload whatever the top-level view shows."""
        top = self.top_level_mode()
        if top is Mode.TRACE_NAMES:
            return [self._request(RequestKind.TRANSACTION_NAMES, options=self.log_options())]
        if top is Mode.METRICS_DASHBOARD:
            opts = replace(self.log_options(), search_fields=())
            return [self._request(RequestKind.METRICS_AGG, options=opts)]
        if top is Mode.CHAT:
            return []
        return self.fetch_logs()

    def fetch_auto_detect(self) -> list[FetchRequest]:
        opts = QueryOptions(index=self.index, filters=replace(self.filters, query=""))
        if self.signal is SignalType.TRACES:
            opts = replace(opts, processor_event="transaction")
        return [self._request(RequestKind.AUTO_DETECT, options=opts,
                              threshold=self.auto_detect_threshold)]

    def fetch_perspective(self) -> list[FetchRequest]:
        opts = QueryOptions(index=self.index, lookback=self.lookback)
        return [self._request(RequestKind.PERSPECTIVE, options=opts, perspective=self.perspective)]

    def fetch_field_caps(self) -> list[FetchRequest]:
        return [self._request(RequestKind.FIELD_CAPS, options=QueryOptions(index=self.index))]

    def fetch_metric_docs(self) -> list[FetchRequest]:
        metric = self.selected_metric()
        if metric is None:
            return []
        opts = QueryOptions(
            index=self.index,
            size=METRIC_DOC_PAGE_SIZE,
            lookback=self.lookback,
            filters=replace(self.filters, query=""),
            metric_field=metric.name,
        )
        return [self._request(RequestKind.METRIC_DOCS, options=opts)]

    def _maybe_fetch_spans(self) -> list[FetchRequest]:
        if self.signal is not SignalType.TRACES or self.trace_level is not TraceLevel.TRANSACTIONS:
            return []
        doc = self.selected_document()
        if doc is None or not doc.trace_id or doc.trace_id == self.last_fetched_trace_id:
            return []
        self.last_fetched_trace_id = doc.trace_id
        self.spans = []
        self.spans_trace_id = ""
        opts = QueryOptions(
            index=self.index,
            size=SPAN_PAGE_SIZE,
            lookback=Lookback.ALL,
            sort_asc=True,
            processor_event="span",
            trace_id=doc.trace_id,
        )
        return [self._request(RequestKind.SPANS, options=opts)]

    # ── Selection helpers ──────────────────────────────────

    def selected_document(self) -> Document | None:
        if self.detail_source is DetailSource.METRIC_DOCS and self.mode in (Mode.DETAIL, Mode.DETAIL_RAW):
            if 0 <= self.metric_doc_selected < len(self.metric_docs):
                return self.metric_docs[self.metric_doc_selected]
            return None
        if 0 <= self.selected < len(self.logs):
            return self.logs[self.selected]
        return None

    def spans_for(self, doc: Document) -> list[Document] | None:
        """Loaded child spans, only if they belong to ``doc``'s trace."""
        if doc.trace_id and doc.trace_id == self.spans_trace_id:
            return self.spans
        return None

    def selected_metric(self) -> AggregatedMetric | None:
        metrics = self.metrics.metrics
        if 0 <= self.metric_selected < len(metrics):
            return metrics[self.metric_selected]
        return None

    def selected_transaction(self) -> TransactionNameAgg | None:
        if 0 <= self.tx_selected < len(self.transaction_names):
            return self.transaction_names[self.tx_selected]
        return None

    def ranked_fields(self) -> list[RankedField]:
        text = self.view.text if self.mode is Mode.FIELDS else ""
        return ranked_field_list(self.available_fields, self.fields, text)

    def cursor(self) -> tuple[int, int]:
        """(index, count) of the list the current mode navigates."""
        mode = self.mode
        if mode is Mode.LIST:
            return self.selected, len(self.logs)
        if mode is Mode.TRACE_NAMES:
            return self.tx_selected, len(self.transaction_names)
        if mode is Mode.METRICS_DASHBOARD:
            return self.metric_selected, len(self.metrics.metrics)
        if mode is Mode.METRIC_DETAIL:
            return self.metric_doc_selected, len(self.metric_docs)
        if mode is Mode.PERSPECTIVE_LIST:
            return self.view.cursor, len(self.perspective_items)
        if mode is Mode.FIELDS:
            return self.view.cursor, len(self.ranked_fields())
        return 0, 0

    def take_clipboard(self) -> str | None:
        text, self.clipboard = self.clipboard, None
        return text

    # ── Entry points ───────────────────────────────────────

    def start(self) -> list[FetchRequest]:
        if self.signal is SignalType.CHAT:
            self._open_chat_greeting()
            return []
        return self.fetch_auto_detect()

    def tick(self) -> list[FetchRequest]:
        """Periodic auto-refresh. Only the log list refreshes itself."""
        if not self.auto_refresh or self.mode is not Mode.LIST:
            return []
        if self.loading[RequestKind.LOGS]:
            return []
        return self.fetch_logs()

    def handle_key(self, key: str) -> list[FetchRequest]:
        mode = self.mode

        if key == "ctrl+c":
            return self._request_quit(force_confirm=True)

        if mode in TEXT_ENTRY_MODES:
            return self._TEXT_HANDLERS[mode](self, key)
        if mode is Mode.FIELDS and self.view.editing:
            return self._on_fields_filter(key)

        if key in ("h", "?") and self.help_enabled():
            self.push_mode(Mode.HELP)
            return []

        handler = self._HANDLERS.get(mode)
        return handler(self, key) if handler else []

    # ── Shared transitions ─────────────────────────────────

    def _request_quit(self, force_confirm: bool = False) -> list[FetchRequest]:
        if self.mode is Mode.QUIT_CONFIRM:
            # a second ctrl+c confirms
            self.quit_requested = force_confirm
            return []
        if len(self.stack) == 0 and self.mode is Mode.LIST and not force_confirm:
            self.quit_requested = True
            return []
        if len(self.stack) and not force_confirm:
            self.pop_mode()
            return []
        self.push_mode(Mode.QUIT_CONFIRM)
        return []

    def cycle_signal(self) -> list[FetchRequest]:
        return self.switch_signal(self.signal.next())

    def switch_signal(self, signal: SignalType) -> list[FetchRequest]:
        self.signal = signal
        self.clear_stack()
        self.index = signal.index_pattern
        self.fields = default_fields(signal)
        self.logs = []
        self.total = 0
        self.selected = 0
        self.user_has_scrolled = False
        self.trace_level = TraceLevel.NAMES
        self.trace_name = ""
        self.trace_id = ""
        self.spans = []
        self.last_fetched_trace_id = ""
        self.spans_trace_id = ""
        self.metrics_view = MetricsView.DASHBOARD
        self.detail_source = DetailSource.LOGS
        self.replace_mode(initial_mode(signal))
        self.status = f"Switched to {signal.label}"
        return self.start()

    def _reset_scroll(self) -> None:
        self.user_has_scrolled = False
        self.selected = 0

    def _set_level(self, level: str) -> list[FetchRequest]:
        self.filters = self.filters.with_(level=level)
        self._reset_scroll()
        return self.fetch_current()

    def _cycle_lookback(self) -> list[FetchRequest]:
        self.lookback = self.lookback.next()
        self._reset_scroll()
        self.status = f"Lookback: {self.lookback.value}"
        return self.fetch_current()

    def _open_perspectives(self) -> list[FetchRequest]:
        self.push_mode(Mode.PERSPECTIVE_LIST)
        return self.fetch_perspective()

    def _open_fields(self) -> list[FetchRequest]:
        self._fields_on_open = list(self.fields)
        self.push_mode(Mode.FIELDS)
        return self.fetch_field_caps()

    def _open_search(self) -> list[FetchRequest]:
        self.push_mode(Mode.SEARCH)
        self.view.text = self.filters.query
        return []

    def _open_chat(self) -> list[FetchRequest]:
        self.push_mode(Mode.CHAT)
        self._open_chat_greeting()
        return []

    def _open_chat_greeting(self) -> None:
        if not self.chat_messages:
            self.chat_messages.append(ChatMessage(
                "assistant",
                "Ask about the data you are looking at. The current filters "
                "and selection are sent along with your question.",
            ))

    def _copy(self, text: str, what: str) -> None:
        self.clipboard = text
        self.status = f"Copied {what} to clipboard"

    def _common_top_level(self, key: str) -> list[FetchRequest] | None:
        """Keys shared by the three top-level views."""
        if key == "q":
            return self._request_quit()
        if key == "r":
            return self.fetch_current()
        if key == "l":
            return self._cycle_lookback()
        if key == "m":
            return self.cycle_signal()
        if key == "p":
            return self._open_perspectives()
        if key == "/":
            return self._open_search()
        if key == "c":
            return self._open_chat()
        if key == "i":
            self.push_mode(Mode.INDEX)
            self.view.text = self.index
            return []
        if key == "Q":
            self.push_mode(Mode.QUERY)
            return []
        if key == "a":
            self.auto_refresh = not self.auto_refresh
            self.status = f"Auto-refresh {'on' if self.auto_refresh else 'off'}"
            return []
        if key == "escape":
            self.pop_mode()
            return []
        return None

    # ── Mode handlers ──────────────────────────────────────

    def _on_list(self, key: str) -> list[FetchRequest]:
        moved = _move(self.selected, len(self.logs), key)
        if moved is not None:
            self.selected = moved
            self.user_has_scrolled = True
            return self._maybe_fetch_spans()

        if key == "escape":
            return self._list_back()
        if key == "enter":
            if self.logs:
                self.detail_source = DetailSource.LOGS
                self.push_mode(Mode.DETAIL)
            return []
        if key == "f":
            return self._open_fields()
        if key == "s":
            self.sort_asc = not self.sort_asc
            self._reset_scroll()
            return self.fetch_logs()
        if key in LEVEL_KEYS:
            return self._set_level(LEVEL_KEYS[key])
        if key == "t":
            self.time_display = self.time_display.next()
            return []
        if key == "d" and self.signal is SignalType.METRICS:
            return self._show_metrics_dashboard()
        common = self._common_top_level(key)
        return common if common is not None else []

    def _list_back(self) -> list[FetchRequest]:
        """Escape walks up the data hierarchy before the view stack."""
        if self.signal is SignalType.TRACES:
            if self.trace_level is TraceLevel.SPANS:
                self.trace_level = TraceLevel.TRANSACTIONS
                self.trace_id = ""
                self._reset_scroll()
                return self.fetch_logs()
            if self.trace_level is TraceLevel.TRANSACTIONS:
                self.trace_level = TraceLevel.NAMES
                self.trace_name = ""
                self.last_fetched_trace_id = ""
                self.spans = []
                self.spans_trace_id = ""
                self.replace_mode(Mode.TRACE_NAMES)
                return self.fetch_current()
        if self.signal is SignalType.METRICS and self.metrics_view is MetricsView.DOCUMENTS:
            return self._show_metrics_dashboard()
        self.pop_mode()
        return []

    def _show_metrics_dashboard(self) -> list[FetchRequest]:
        self.metrics_view = MetricsView.DASHBOARD
        self.replace_mode(Mode.METRICS_DASHBOARD)
        return self.fetch_current()

    def _on_trace_names(self, key: str) -> list[FetchRequest]:
        moved = _move(self.tx_selected, len(self.transaction_names), key)
        if moved is not None:
            self.tx_selected = moved
            return []
        if key == "enter":
            tx = self.selected_transaction()
            if tx is None:
                return []
            self.trace_name = tx.name
            self.trace_level = TraceLevel.TRANSACTIONS
            self.last_fetched_trace_id = ""
            self._reset_scroll()
            self.replace_mode(Mode.LIST)
            return self.fetch_logs()
        common = self._common_top_level(key)
        return common if common is not None else []

    def _on_metrics_dashboard(self, key: str) -> list[FetchRequest]:
        moved = _move(self.metric_selected, len(self.metrics.metrics), key)
        if moved is not None:
            self.metric_selected = moved
            return []
        if key == "enter":
            if self.selected_metric() is None:
                return []
            self.metric_doc_selected = 0
            self.metric_docs = []
            self.push_mode(Mode.METRIC_DETAIL)
            return self.fetch_metric_docs()
        if key == "d":
            self.metrics_view = MetricsView.DOCUMENTS
            self._reset_scroll()
            self.replace_mode(Mode.LIST)
            return self.fetch_logs()
        common = self._common_top_level(key)
        return common if common is not None else []

    def _on_metric_detail(self, key: str) -> list[FetchRequest]:
        count = len(self.metrics.metrics)
        if key in ("left", "right") and count:
            step = -1 if key == "left" else 1
            self.metric_selected = (self.metric_selected + step) % count
            self.metric_doc_selected = 0
            self.metric_docs = []
            return self.fetch_metric_docs()
        if key == "a":
            self.metric_doc_selected = _clamp(self.metric_doc_selected - 1, len(self.metric_docs))
        elif key == "d":
            self.metric_doc_selected = _clamp(self.metric_doc_selected + 1, len(self.metric_docs))
        elif key == "j":
            if self.metric_docs:
                self.detail_source = DetailSource.METRIC_DOCS
                self.push_mode(Mode.DETAIL_RAW)
        elif key == "r":
            return self.fetch_metric_docs()
        elif key in ("escape", "q"):
            self.pop_mode()
        return []

    def _on_detail(self, key: str) -> list[FetchRequest]:
        if key in ("escape", "q"):
            self.pop_mode()
            return []
        if key in ("enter", "j"):
            self.replace_mode(Mode.DETAIL_RAW)
            return []
        if key in ("left", "right"):
            return self._step_detail(-1 if key == "left" else 1)
        if key in ("up", "down", "pageup", "pagedown"):
            self._scroll(key)
            return []
        if key == "y":
            doc = self.selected_document()
            if doc is not None:
                self._copy(render.document_json(doc), "document")
            return []
        if key == "s" and self.signal is SignalType.TRACES and self.detail_source is DetailSource.LOGS:
            doc = self.selected_document()
            if doc is None or not doc.trace_id:
                return []
            self.pop_mode()
            self.trace_id = doc.trace_id
            self.trace_level = TraceLevel.SPANS
            self._reset_scroll()
            return self.fetch_logs()
        return []

    def _step_detail(self, step: int) -> list[FetchRequest]:
        self.view.scroll = 0
        if self.detail_source is DetailSource.METRIC_DOCS:
            self.metric_doc_selected = _clamp(self.metric_doc_selected + step, len(self.metric_docs))
            return []
        self.selected = _clamp(self.selected + step, len(self.logs))
        self.user_has_scrolled = True
        return self._maybe_fetch_spans()

    def _on_detail_raw(self, key: str) -> list[FetchRequest]:
        if key in ("escape", "q"):
            self.pop_mode()
            return []
        if key in ("enter", "j"):
            self.replace_mode(Mode.DETAIL)
            return []
        if key in ("left", "right"):
            return self._step_detail(-1 if key == "left" else 1)
        if key in ("up", "down", "pageup", "pagedown"):
            self._scroll(key)
            return []
        if key == "y":
            doc = self.selected_document()
            if doc is not None:
                self._copy(render.document_json(doc), "JSON")
        return []

    def _scroll(self, key: str) -> None:
        step = {"up": -1, "down": 1, "pageup": -PAGE_STEP, "pagedown": PAGE_STEP}[key]
        self.view.scroll = max(0, self.view.scroll + step)

    def _on_query(self, key: str) -> list[FetchRequest]:
        if key in ("escape", "q"):
            self.pop_mode()
        elif key == "k":
            self.query_format = "kibana"
        elif key == "c":
            self.query_format = "curl"
        elif key == "y":
            self._copy(self.rendered_query(), "query")
        elif key in ("up", "down", "pageup", "pagedown"):
            self._scroll(key)
        return []

    def rendered_query(self) -> str:
        index = self.query_index or self.index
        if self.query_format == "curl":
            return render.curl_query(index, self.query_text, self.es_url)
        return render.kibana_query(index, self.query_text)

    def _on_fields(self, key: str) -> list[FetchRequest]:
        ranked = self.ranked_fields()
        moved = _move(self.view.cursor, len(ranked), key)
        if moved is not None:
            self.view.cursor = moved
            return []
        if key in ("enter", " ", "space"):
            if ranked:
                name = ranked[_clamp(self.view.cursor, len(ranked))].name
                self.fields = toggle_field(self.fields, name)
            return []
        if key == "/":
            self.view.editing = True
            return []
        if key == "r":
            self.fields = default_fields(self.signal)
            self.status = "Fields reset to defaults"
            return []
        if key in ("escape", "q"):
            changed = self.fields != self._fields_on_open
            self.pop_mode()
            if changed and self.top_level_mode() is Mode.LIST:
                return self.fetch_logs()
        return []

    def _on_fields_filter(self, key: str) -> list[FetchRequest]:
        if key == "enter":
            self.view.editing = False
        elif key == "escape":
            self.view.editing = False
            self.view.text = ""
        elif self._edit_text(key):
            self.view.cursor = 0
        return []

    def _on_perspective(self, key: str) -> list[FetchRequest]:
        moved = _move(self.view.cursor, len(self.perspective_items), key)
        if moved is not None:
            self.view.cursor = moved
            return []
        if key == "enter":
            if not self.perspective_items:
                return []
            item = self.perspective_items[_clamp(self.view.cursor, len(self.perspective_items))]
            self._cycle_perspective_filter(item.name)
            self._reset_scroll()
            return self.fetch_current()
        if key == "p":
            self.perspective = "resources" if self.perspective == "services" else "services"
            self.view.cursor = 0
            self.perspective_items = []
            return self.fetch_perspective()
        if key == "l":
            self.lookback = self.lookback.next()
            return self.fetch_perspective()
        if key == "r":
            return self.fetch_perspective()
        if key in ("escape", "q"):
            self.pop_mode()
        return []

    def _cycle_perspective_filter(self, name: str) -> None:
        """include -> exclude -> cleared, per selected value."""
        if self.perspective == "services":
            value, excluded = self.filters.service, self.filters.exclude_service
            key, neg = "service", "exclude_service"
        else:
            value, excluded = self.filters.resource, self.filters.exclude_resource
            key, neg = "resource", "exclude_resource"

        if value != name:
            self.filters = self.filters.with_(**{key: name, neg: False})
            self.status = f"Filter: {key} = {name}"
        elif not excluded:
            self.filters = self.filters.with_(**{neg: True})
            self.status = f"Filter: {key} != {name}"
        else:
            self.filters = self.filters.with_(**{key: "", neg: False})
            self.status = f"Filter: {key} cleared"

    def _on_error_modal(self, key: str) -> list[FetchRequest]:
        if key in ("escape", "q", "enter"):
            self.pop_mode()
            self.error = None
        elif key == "y" and self.error:
            self._copy(self.error, "error")
        return []

    def _on_quit_confirm(self, key: str) -> list[FetchRequest]:
        if key in ("y", "Y"):
            self.quit_requested = True
        elif key in ("n", "N", "escape", "q"):
            self.pop_mode()
        return []

    def _on_help(self, key: str) -> list[FetchRequest]:
        if key in ("escape", "q", "h", "?"):
            self.pop_mode()
        elif key in ("up", "down", "pageup", "pagedown"):
            self._scroll(key)
        return []

    # ── Text entry ─────────────────────────────────────────

    def _edit_text(self, key: str) -> bool:
        if key == "backspace":
            self.view.text = self.view.text[:-1]
            return True
        if key == "ctrl+u":
            self.view.text = ""
            return True
        if key == "space":
            key = " "
        if len(key) == 1 and key.isprintable():
            self.view.text += key
            return True
        return False

    def _on_search(self, key: str) -> list[FetchRequest]:
        if key == "escape":
            self.pop_mode()
            return []
        if key == "enter":
            query = self.view.text.strip()
            self.pop_mode()
            self.filters = self.filters.with_(query=query)
            self._reset_scroll()
            return self.fetch_current()
        self._edit_text(key)
        return []

    def _on_index(self, key: str) -> list[FetchRequest]:
        if key == "escape":
            self.pop_mode()
            return []
        if key == "enter":
            pattern = self.view.text.strip()
            if not pattern:
                self.status = "Index pattern cannot be empty"
                return []
            self.pop_mode()
            self.index = pattern
            self._reset_scroll()
            self.status = f"Index: {pattern}"
            return self.fetch_current()
        self._edit_text(key)
        return []

    def _on_chat(self, key: str) -> list[FetchRequest]:
        if key == "escape":
            self.pop_mode()
            return []
        if key in ("up", "down", "pageup", "pagedown"):
            self._scroll(key)
            return []
        if key == "enter":
            message = self.view.text.strip()
            if not message or self.loading[RequestKind.CHAT]:
                return []
            self.view.text = ""
            history = list(self.chat_messages)
            self.chat_messages.append(ChatMessage("user", message))
            prompt = compose_prompt(self.chat_context(), history, message)
            return [self._request(RequestKind.CHAT, prompt=prompt)]
        self._edit_text(key)
        return []

    def chat_context(self) -> list[str]:
        lines = [
            f"Signal: {self.signal.label}",
            f"Index: {self.index}",
            f"Lookback: {self.lookback.value}",
        ]
        lines.extend(f"Filter: {part}" for part in self.filters.describe())
        if self.signal is SignalType.TRACES and self.trace_name:
            lines.append(f"Transaction: {self.trace_name}")
        doc = self.selected_document()
        if doc is not None:
            lines.append("Selected document:")
            lines.append(json.dumps(dict(doc.source), default=str)[:2000])
        if self.logs:
            lines.append(f"Loaded entries: {len(self.logs)} of {self.total}")
        return lines

    _HANDLERS = {
        Mode.LIST: _on_list,
        Mode.TRACE_NAMES: _on_trace_names,
        Mode.METRICS_DASHBOARD: _on_metrics_dashboard,
        Mode.METRIC_DETAIL: _on_metric_detail,
        Mode.DETAIL: _on_detail,
        Mode.DETAIL_RAW: _on_detail_raw,
        Mode.QUERY: _on_query,
        Mode.FIELDS: _on_fields,
        Mode.PERSPECTIVE_LIST: _on_perspective,
        Mode.ERROR_MODAL: _on_error_modal,
        Mode.QUIT_CONFIRM: _on_quit_confirm,
        Mode.HELP: _on_help,
    }

    _TEXT_HANDLERS = {
        Mode.SEARCH: _on_search,
        Mode.INDEX: _on_index,
        Mode.CHAT: _on_chat,
    }
