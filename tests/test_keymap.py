from signalscope.keymap import HELP, QUICK_LIMIT, Tier, grouped, mode_keymap, quick_bindings, view_keymap
from signalscope.models import SignalType
from signalscope.session import Mode, Session


class TestKeymap:
    def test_every_mode_has_bindings(self):
        for mode in Mode:
            assert mode_keymap(mode), mode

    def test_quick_bar_is_bounded_and_starts_with_help(self):
        bindings = quick_bindings(Session())
        assert bindings[0] is HELP
        assert len(bindings) <= QUICK_LIMIT + 1
        assert all(b.tier is Tier.QUICK for b in bindings)

    def test_no_help_hint_where_help_is_disabled(self):
        s = Session()
        s.push_mode(Mode.ERROR_MODAL)
        assert HELP not in quick_bindings(s)

    def test_help_overlay_lists_parent_bindings(self):
        s = Session()
        s.push_mode(Mode.FIELDS)
        s.push_mode(Mode.HELP)
        assert view_keymap(s) == mode_keymap(Mode.FIELDS)

    def test_spans_key_only_for_traces(self):
        logs = [b.label for b in mode_keymap(Mode.DETAIL, SignalType.LOGS)]
        traces = [b.label for b in mode_keymap(Mode.DETAIL, SignalType.TRACES)]
        assert "spans" not in logs
        assert "spans" in traces

    def test_grouped_keeps_order(self):
        groups = grouped(mode_keymap(Mode.LIST))
        assert list(groups)[0] == "View"
        assert "Navigation" in groups
