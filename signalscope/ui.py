"""Textual front end. Owns the Session and runs its fetches as workers."""

from typing import Coroutine

from rich.console import Group
from rich.text import Text
from textual import events, work
from textual.app import App, ComposeResult
from textual.containers import Container
from textual.message import Message
from textual.widgets import Header, Static

from . import render
from .dispatch import Dispatcher, FetchRequest, FetchResult, RequestKind
from .highlight import Highlighter, pad_or_truncate
from .keymap import grouped, quick_bindings, view_keymap
from .models import SignalType
from .session import Mode, Session, TraceLevel

# Modes that draw a full body; everything else is drawn over one of these.
FULL_MODES = frozenset({
    Mode.LIST, Mode.TRACE_NAMES, Mode.METRICS_DASHBOARD, Mode.METRIC_DETAIL,
    Mode.DETAIL, Mode.DETAIL_RAW, Mode.QUERY, Mode.FIELDS, Mode.PERSPECTIVE_LIST,
    Mode.HELP, Mode.CHAT,
})

PROMPTS = {Mode.SEARCH: "Search: ", Mode.INDEX: "Index pattern: "}


class FetchDone(Message):
    """Single message type for every finished fetch."""
    def __init__(self, result: FetchResult) -> None:
        super().__init__()
        self.result = result


def normalize_key(event: events.Key) -> str:
    char = event.character
    if char and len(char) == 1 and char.isprintable():
        return char
    return event.key


def _window(cursor: int, count: int, height: int) -> int:
    """First visible row so that ``cursor`` stays on screen."""
    if count <= height or height <= 0:
        return 0
    return max(0, min(cursor - height // 2, count - height))


class BrowserApp(App):
    """Full-screen browser for logs, traces and metrics."""

    CSS = """
    Screen { layout: vertical; }
    #status { height: 1; padding: 0 1; background: $boost; }
    #main { height: 1fr; padding: 0 1; }
    #prompt { height: auto; padding: 0 1; }
    #keys { height: 1; padding: 0 1; color: $text-muted; }
    #prompt.error { background: $error 30%; }
    """

    BINDINGS = []

    def __init__(self, session: Session, dispatcher: Dispatcher, tick_interval: float = 2.0, **kwargs):
        super().__init__(**kwargs)
        self.session = session
        self.dispatcher = dispatcher
        self.tick_interval = tick_interval

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)
        yield Static("", id="status")
        with Container(id="main"):
            yield Static("", id="body")
        yield Static("", id="prompt")
        yield Static("", id="keys")

    # ── Lifecycle ──────────────────────────────────────────

    def on_mount(self) -> None:
        self.title = "signalscope"
        self.set_interval(self.tick_interval, self._on_tick)
        self._dispatch_all(self.session.start())
        self._refresh_view()

    async def on_unmount(self) -> None:
        await self.dispatcher.source.close()

    def on_resize(self, event: events.Resize) -> None:
        self._refresh_view()

    # ── Background fetch engine ────────────────────────────

    def _dispatch_all(self, requests: list[FetchRequest]) -> None:
        for request in requests:
            self._run_fetch(self.dispatcher.dispatch(self.session, request))

    @work(exit_on_error=False)
    async def _run_fetch(self, task: Coroutine) -> None:
        result = await task
        self.post_message(FetchDone(result))

    def on_fetch_done(self, message: FetchDone) -> None:
        self._dispatch_all(self.session.apply(message.result))
        self._refresh_view()

    def _on_tick(self) -> None:
        requests = self.session.tick()
        if requests:
            self._dispatch_all(requests)
            self._refresh_view()

    # ── Key handling ───────────────────────────────────────

    def on_key(self, event: events.Key) -> None:
        event.prevent_default()
        event.stop()
        self._handle(normalize_key(event))

    def action_help_quit(self) -> None:
        self._handle("ctrl+c")

    def _handle(self, key: str) -> None:
        self._dispatch_all(self.session.handle_key(key))
        copied = self.session.take_clipboard()
        if copied is not None:
            self.copy_to_clipboard(copied)
        if self.session.quit_requested:
            self.exit()
            return
        self._refresh_view()

    # ── Rendering ──────────────────────────────────────────

    def _body_size(self) -> tuple[int, int]:
        main = self.query_one("#main", Container)
        return max(20, main.size.width - 2), max(3, main.size.height)

    def _base_mode(self) -> Mode:
        s = self.session
        for mode in [s.mode, *reversed(s.stack.modes())]:
            if mode in FULL_MODES:
                return mode
        return Mode.LIST

    def _refresh_view(self) -> None:
        s = self.session
        width, height = self._body_size()
        self.query_one("#status", Static).update(self._status_line())
        self.query_one("#body", Static).update(self._body(self._base_mode(), width, height))
        prompt = self.query_one("#prompt", Static)
        prompt.update(self._prompt())
        prompt.set_class(s.mode is Mode.ERROR_MODAL, "error")
        self.query_one("#keys", Static).update(self._key_bar())

    def _status_line(self) -> Text:
        s = self.session
        line = Text()
        line.append(f" {s.signal.label} ", style="bold reverse")
        line.append(f" {s.index}  {s.lookback.value}")
        if s.signal is SignalType.TRACES and s.trace_level is not TraceLevel.NAMES:
            crumb = s.trace_name if s.trace_level is TraceLevel.TRANSACTIONS else f"{s.trace_name} › {s.trace_id[:16]}"
            line.append(f"  {crumb}", style="magenta")
        for part in s.filters.describe():
            line.append(f"  [{part}]", style="cyan")
        if s.logs:
            line.append(f"  {len(s.logs)}/{s.total}", style="dim")
        line.append("  ⟳" if s.auto_refresh else "  ⏸", style="dim")
        if s.is_loading():
            line.append("  loading…", style="yellow")
        if s.status:
            line.append(f"  {s.status}", style="green")
        return line

    def _prompt(self) -> Text:
        s = self.session
        mode = s.mode
        if mode in PROMPTS:
            return Text(PROMPTS[mode], style="bold").append(s.view.text + "▏", style="")
        if mode is Mode.FIELDS and s.view.editing:
            return Text("Filter fields: ", style="bold").append(s.view.text + "▏")
        if mode is Mode.CHAT:
            return Text("› ", style="bold").append(s.view.text + "▏")
        if mode is Mode.ERROR_MODAL:
            return Text(f"Error: {s.error or ''}", style="bold red")
        if mode is Mode.QUIT_CONFIRM:
            return Text("Quit signalscope? (y/n)", style="bold yellow")
        return Text("")

    def _key_bar(self) -> Text:
        bar = Text()
        for b in quick_bindings(self.session):
            bar.append(f"{b.display}", style="bold")
            bar.append(f" {b.label}  ")
        return bar

    def _body(self, mode: Mode, width: int, height: int):
        s = self.session
        hl = Highlighter(s.filters.query)

        if mode is Mode.LIST:
            return self._list_body(hl, width, height)
        if mode is Mode.TRACE_NAMES:
            return self._rows(
                [render.transaction_row(tx, width) for tx in s.transaction_names],
                s.tx_selected, height,
                header=Text(pad_or_truncate("TRANSACTION", width - 31) + "  COUNT   AVG DUR  ERR% SPANS", style="bold"),
                empty="No transactions in this window",
            )
        if mode is Mode.METRICS_DASHBOARD:
            return self._rows(
                [render.metric_row(m, width) for m in s.metrics.metrics],
                s.metric_selected, height,
                empty="No metrics in this window",
            )
        if mode is Mode.METRIC_DETAIL:
            return self._metric_detail_body(hl, width, height)
        if mode is Mode.DETAIL:
            doc = s.selected_document()
            if doc is None:
                return Text("Nothing selected", style="dim")
            spans = s.spans_for(doc)
            return self._scrolled(render.detail_text(doc, hl, spans), height)
        if mode is Mode.DETAIL_RAW:
            doc = s.selected_document()
            if doc is None:
                return Text("Nothing selected", style="dim")
            return self._scrolled(hl.apply_to_field(render.document_json(doc)), height)
        if mode is Mode.QUERY:
            title = Text(f"Query ({s.query_format})\n", style="bold")
            return self._scrolled(title + Text(s.rendered_query() or "No query has run yet"), height)
        if mode is Mode.FIELDS:
            ranked = s.ranked_fields()
            rows = [
                Text(f"{'●' if f.selected else '○'} ", style="green" if f.selected else "dim")
                .append(pad_or_truncate(f.name, width - 24))
                .append(f" {f.type:>10} {f.doc_count:>10}", style="dim")
                for f in ranked
            ]
            return self._rows(rows, s.view.cursor, height, empty="Loading fields…")
        if mode is Mode.PERSPECTIVE_LIST:
            if s.perspective == "services":
                active, excluded = s.filters.service, s.filters.exclude_service
            else:
                active, excluded = s.filters.resource, s.filters.exclude_resource
            rows = [render.perspective_row(p, width, active, excluded) for p in s.perspective_items]
            header = Text(pad_or_truncate(s.perspective.upper(), width - 27) + "      LOGS   TRACES  METRICS",
                          style="bold")
            return self._rows(rows, s.view.cursor, height, header=header, empty="Loading…")
        if mode is Mode.HELP:
            return self._help_body(height)
        if mode is Mode.CHAT:
            return self._chat_body(height)
        return Text("")

    def _list_body(self, hl: Highlighter, width: int, height: int):
        s = self.session
        header = render.format_header(s.fields, width, s.time_display)
        rows = [render.format_row(doc, s.fields, width, hl, s.time_display) for doc in s.logs]
        if s.errors.get(RequestKind.LOGS) and not rows:
            return Text(f"Fetch failed: {s.errors[RequestKind.LOGS]}", style="red")
        return self._rows(rows, s.selected, height, header=header,
                          empty="No entries" if not s.is_loading(RequestKind.LOGS) else "Loading…")

    def _metric_detail_body(self, hl: Highlighter, width: int, height: int):
        s = self.session
        metric = s.selected_metric()
        if metric is None:
            return Text("No metric selected", style="dim")
        parts = [
            Text(metric.short_name, style="bold underline"),
            Text(f"min {render.format_number(metric.min)}  max {render.format_number(metric.max)}  "
                 f"avg {render.format_number(metric.avg)}  latest {render.format_number(metric.latest)}  "
                 f"buckets {s.metrics.bucket_size}"),
            Text(render.sparkline([b.value for b in metric.buckets], width), style="cyan"),
            Text(""),
            Text(f"Latest documents ({len(s.metric_docs)})", style="bold"),
        ]
        for i, doc in enumerate(s.metric_docs):
            value = doc.get(metric.name)
            line = Text(f"{render.format_timestamp(doc.timestamp, s.time_display):>10}  {value}  {doc.service_name}")
            if i == s.metric_doc_selected:
                line.stylize("reverse")
            parts.append(line)
        return Group(*parts[: max(1, height)])

    def _help_body(self, height: int):
        s = self.session
        out = Text(f"Keys for {s.keymap_mode().name.lower().replace('_', ' ')}\n\n", style="bold")
        for group, bindings in grouped(view_keymap(s)).items():
            out.append(f"{group}\n", style="bold underline")
            for b in bindings:
                out.append(f"  {b.display:<14}", style="bold cyan")
                out.append(f"{b.label}\n")
            out.append("\n")
        return self._scrolled(out, height)

    def _chat_body(self, height: int):
        s = self.session
        out = Text()
        for m in s.chat_messages:
            style = "red" if m.error else ("bold" if m.role == "user" else "")
            out.append("you: " if m.role == "user" else "ai: ", style="bold magenta")
            out.append(m.content + "\n\n", style=style)
        if s.is_loading(RequestKind.CHAT):
            out.append("thinking…", style="dim italic")
        lines = out.split("\n")
        # keep the newest lines visible unless the user scrolled up
        end = max(0, len(lines) - s.view.scroll)
        start = max(0, end - height)
        return Text("\n").join(lines[start:end])

    def _rows(self, rows: list[Text], cursor: int, height: int, header: Text | None = None, empty: str = ""):
        if not rows:
            return Group(*(x for x in (header, Text(empty, style="dim")) if x is not None))
        visible = height - (1 if header is not None else 0)
        start = _window(cursor, len(rows), visible)
        shown = []
        for i, row in enumerate(rows[start:start + visible], start=start):
            if i == cursor:
                row = row.copy()
                row.stylize("reverse")
            shown.append(row)
        return Group(*([header] if header is not None else []), *shown)

    def _scrolled(self, text: Text, height: int) -> Text:
        lines = text.split("\n")
        start = min(self.session.view.scroll, max(0, len(lines) - 1))
        return Text("\n").join(lines[start:start + height])
