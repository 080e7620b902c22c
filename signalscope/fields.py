"""Display columns: per-signal defaults, toggling, search targets and ranking."""

from dataclasses import dataclass

from .models import FieldInfo, SignalType

TOGGLED_WIDTH = 15
MAX_LABEL = 12


@dataclass(frozen=True)
class DisplayField:
    """A configured column.

    ``search_fields`` is None when the column is not searchable, an empty tuple
    when the canonical ``name`` itself is searched, and otherwise the backend
    fields that back the column.
    """

    name: str
    label: str
    width: int = 0
    selected: bool = True
    search_fields: tuple[str, ...] | None = ()

    def search_targets(self) -> list[str]:
        if self.search_fields is None:
            return []
        if not self.search_fields:
            return [self.name]
        return list(self.search_fields)


@dataclass(frozen=True)
class RankedField:
    """One row of the field selector."""

    name: str
    type: str
    doc_count: int
    selected: bool


def _df(name: str, label: str, width: int, search: tuple[str, ...] | None) -> DisplayField:
    return DisplayField(name=name, label=label, width=width, selected=True, search_fields=search)


def default_fields(signal: SignalType) -> list[DisplayField]:
    """Fixed column set per signal. The first column is always the 8-wide TIME."""
    if signal is SignalType.TRACES:
        return [
            _df("@timestamp", "TIME", 8, None),
            _df("service.name", "SERVICE", 15, ("resource.attributes.service.name", "service.name")),
            _df("name", "NAME", 25, ("name",)),
            _df("duration_ms", "DUR(ms)", 9, None),
            _df("status.code", "STATUS", 6, ("status.code",)),
            _df("kind", "KIND", 8, ("kind",)),
            _df("trace_id", "TRACE", 0, ("trace_id",)),
        ]
    if signal is SignalType.METRICS:
        return [
            _df("@timestamp", "TIME", 8, None),
            _df("service.name", "SERVICE", 15,
                ("resource.attributes.service.name", "service.name", "attributes.service.name")),
            _df("scope.name", "SCOPE", 20, ("scope.name",)),
            _df("attributes.span.name", "SPAN", 25, ()),
            _df("_metrics", "METRICS", 0, None),
        ]
    return [
        _df("@timestamp", "TIME", 8, None),
        _df("severity_text", "LEVEL", 7, ("severity_text", "log.level")),
        _df("_resource", "RESOURCE", 12,
            ("resource.attributes.service.namespace", "resource.attributes.deployment.environment")),
        _df("service.name", "SERVICE", 15, ("resource.attributes.service.name", "service.name")),
        _df("body.text", "MESSAGE", 0, ("body.text", "message", "event_name")),
    ]


def _is_time_like(name: str) -> bool:
    lowered = name.lower()
    return "timestamp" in lowered or "time" in lowered or "duration" in lowered


def toggle_field(fields: list[DisplayField], name: str) -> list[DisplayField]:
    """Return a new list with ``name`` removed if present, else appended."""
    if any(f.name == name for f in fields):
        return [f for f in fields if f.name != name]

    label = name.rsplit(".", 1)[-1].upper()[:MAX_LABEL]
    search: tuple[str, ...] | None = None if _is_time_like(name) else ()
    return [*fields, DisplayField(name=name, label=label, width=TOGGLED_WIDTH,
                                  selected=True, search_fields=search)]


def collect_search_fields(fields: list[DisplayField]) -> list[str]:
    seen: dict[str, None] = {}
    for f in fields:
        for target in f.search_targets():
            seen.setdefault(target, None)
    return list(seen)


def ranked_field_list(
    available: list[FieldInfo],
    selected: list[DisplayField],
    text_filter: str = "",
) -> list[RankedField]:
    """Selected columns first in display order, then the rest by document count."""
    # Alias counts come from every known field, not only the ones the filter shows.
    by_name = {f.name: f for f in available}
    needle = text_filter.lower()
    if needle:
        available = [f for f in available if needle in f.name.lower()]
        selected = [f for f in selected if needle in f.name.lower()]

    selected_names = {f.name for f in selected}

    ranked: list[RankedField] = []
    for df in selected:
        info = by_name.get(df.name)
        if info is not None:
            ranked.append(RankedField(info.name, info.type, info.doc_count, True))
            continue
        aliases = [by_name[a].doc_count for a in df.search_fields or () if a in by_name]
        ranked.append(RankedField(df.name, "display", max(aliases, default=0), True))

    # sorted() is stable, so equal counts keep discovery order.
    rest = sorted(
        (f for f in available if f.name not in selected_names),
        key=lambda f: f.doc_count,
        reverse=True,
    )
    ranked.extend(RankedField(f.name, f.type, f.doc_count, False) for f in rest)
    return ranked
