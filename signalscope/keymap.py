"""Key binding descriptors per mode, for the status bar and the help overlay."""

from dataclasses import dataclass
from enum import Enum

from .models import SignalType
from .session import Mode, Session

QUICK_LIMIT = 7


class Tier(Enum):
    QUICK = "quick"
    FULL = "full"


@dataclass(frozen=True)
class KeyBinding:
    keys: tuple[str, ...]
    label: str
    tier: Tier = Tier.FULL
    group: str = "General"

    @property
    def display(self) -> str:
        return "/".join(self.keys)


def _q(keys, label, group="General") -> KeyBinding:
    return KeyBinding(tuple(keys), label, Tier.QUICK, group)


def _f(keys, label, group="General") -> KeyBinding:
    return KeyBinding(tuple(keys), label, Tier.FULL, group)


HELP = _q(["h", "?"], "help")

_NAV = [
    _f(["↑", "k"], "up", "Navigation"),
    _f(["↓", "j"], "down", "Navigation"),
    _f(["g", "home"], "top", "Navigation"),
    _f(["G", "end"], "bottom", "Navigation"),
    _f(["pgup", "pgdn"], "page", "Navigation"),
]

_TOP_LEVEL = [
    _q(["/"], "search", "Filter"),
    _q(["l"], "lookback", "Filter"),
    _q(["m"], "signal", "View"),
    _q(["p"], "perspectives", "Filter"),
    _f(["r"], "refresh", "Data"),
    _f(["a"], "auto-refresh", "Data"),
    _f(["i"], "index", "Data"),
    _f(["Q"], "show query", "Data"),
    _f(["c"], "chat", "View"),
    _q(["q"], "quit"),
]

_LEVELS = [
    _f(["1"], "errors", "Filter"),
    _f(["2"], "warnings", "Filter"),
    _f(["3"], "info", "Filter"),
    _f(["4"], "debug", "Filter"),
    _f(["0"], "all levels", "Filter"),
]

_KEYMAPS: dict[Mode, list[KeyBinding]] = {
    Mode.LIST: [
        _q(["enter"], "detail", "View"),
        _q(["f"], "fields", "View"),
        _f(["s"], "sort", "View"),
        _f(["t"], "time format", "View"),
        _f(["esc"], "back", "View"),
        *_TOP_LEVEL, *_LEVELS, *_NAV,
    ],
    Mode.TRACE_NAMES: [_q(["enter"], "transactions", "View"), *_TOP_LEVEL, *_NAV],
    Mode.METRICS_DASHBOARD: [
        _q(["enter"], "metric detail", "View"),
        _q(["d"], "documents", "View"),
        *_TOP_LEVEL, *_NAV,
    ],
    Mode.METRIC_DETAIL: [
        _q(["←", "→"], "prev/next metric", "Navigation"),
        _q(["a", "d"], "prev/next doc", "Navigation"),
        _q(["j"], "raw JSON", "View"),
        _q(["r"], "refresh", "Data"),
        _q(["esc"], "back", "View"),
    ],
    Mode.DETAIL: [
        _q(["←", "→"], "prev/next", "Navigation"),
        _q(["enter", "j"], "raw JSON", "View"),
        _q(["y"], "copy", "Data"),
        _q(["esc"], "back", "View"),
        _f(["↑", "↓"], "scroll", "Navigation"),
    ],
    Mode.DETAIL_RAW: [
        _q(["←", "→"], "prev/next", "Navigation"),
        _q(["enter", "j"], "formatted", "View"),
        _q(["y"], "copy", "Data"),
        _q(["esc"], "back", "View"),
    ],
    Mode.SEARCH: [_q(["enter"], "apply"), _q(["esc"], "cancel")],
    Mode.INDEX: [_q(["enter"], "apply"), _q(["esc"], "cancel")],
    Mode.QUERY: [
        _q(["k"], "Kibana", "View"),
        _q(["c"], "curl", "View"),
        _q(["y"], "copy", "Data"),
        _q(["esc"], "close", "View"),
    ],
    Mode.FIELDS: [
        _q(["enter", "space"], "toggle"),
        _q(["/"], "filter", "Filter"),
        _q(["r"], "reset"),
        _q(["esc"], "done", "View"),
        *_NAV,
    ],
    Mode.PERSPECTIVE_LIST: [
        _q(["enter"], "include/exclude/clear", "Filter"),
        _q(["p"], "services/resources", "View"),
        _q(["l"], "lookback", "Filter"),
        _q(["r"], "refresh", "Data"),
        _q(["esc"], "back", "View"),
        *_NAV,
    ],
    Mode.ERROR_MODAL: [_q(["esc"], "close"), _q(["y"], "copy")],
    Mode.QUIT_CONFIRM: [_q(["y"], "quit"), _q(["n", "esc"], "stay")],
    Mode.HELP: [_q(["esc", "q"], "close")],
    Mode.CHAT: [_q(["enter"], "send"), _q(["esc"], "back"), _f(["↑", "↓"], "scroll")],
}

_TRACE_DETAIL = _q(["s"], "spans", "View")


def mode_keymap(mode: Mode, signal: SignalType = SignalType.LOGS) -> list[KeyBinding]:
    bindings = list(_KEYMAPS.get(mode, []))
    if mode is Mode.DETAIL and signal is SignalType.TRACES:
        bindings.insert(3, _TRACE_DETAIL)
    return bindings


def view_keymap(session: Session) -> list[KeyBinding]:
    """Full binding list for the mode the help overlay should describe."""
    return mode_keymap(session.keymap_mode(), session.signal)


def quick_bindings(session: Session) -> list[KeyBinding]:
    """Status-bar subset: help first when available, then up to QUICK_LIMIT quick keys."""
    quick = [b for b in mode_keymap(session.mode, session.signal) if b.tier is Tier.QUICK]
    quick = quick[:QUICK_LIMIT]
    if session.help_enabled():
        quick.insert(0, HELP)
    return quick


def grouped(bindings: list[KeyBinding]) -> dict[str, list[KeyBinding]]:
    groups: dict[str, list[KeyBinding]] = {}
    for b in bindings:
        groups.setdefault(b.group, []).append(b)
    return groups
