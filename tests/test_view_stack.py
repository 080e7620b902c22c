import pytest

from signalscope.models import SignalType
from signalscope.session import Mode, Session


class TestViewStack:
    """push/pop/peek/clear on the session's saved views."""

    @pytest.mark.parametrize("depth", [1, 3, 8])
    def test_push_then_pop_restores_original_mode(self, depth):
        s = Session()
        before = s.mode
        chain = [Mode.HELP, Mode.SEARCH, Mode.DETAIL, Mode.FIELDS, Mode.QUERY,
                 Mode.ERROR_MODAL, Mode.CHAT, Mode.PERSPECTIVE_LIST]
        for mode in chain[:depth]:
            s.push_mode(mode)
        for _ in range(depth):
            _, ok = s.pop_mode()
            assert ok
        assert s.mode is before
        assert len(s.stack) == 0

    def test_pop_on_empty_is_noop(self):
        s = Session()
        view = s.view
        mode, ok = s.pop_mode()
        assert ok is False
        assert mode is Mode.LIST
        assert s.view is view
        assert len(s.stack) == 0

    def test_stack_never_holds_current_mode(self):
        s = Session()
        s.push_mode(Mode.FIELDS)
        s.push_mode(Mode.HELP)
        assert s.stack.modes() == [Mode.LIST, Mode.FIELDS]
        assert s.mode is Mode.HELP

    def test_pop_restores_view_substate(self):
        s = Session()
        s.push_mode(Mode.FIELDS)
        s.view.cursor = 4
        s.view.text = "host"
        s.push_mode(Mode.HELP)
        s.pop_mode()
        assert s.view.cursor == 4
        assert s.view.text == "host"

    def test_peek_parent_does_not_mutate(self):
        s = Session()
        assert s.peek_parent() is None
        s.push_mode(Mode.DETAIL)
        assert s.peek_parent() is Mode.LIST
        assert s.peek_parent() is Mode.LIST
        assert len(s.stack) == 1

    def test_clear_keeps_current_mode(self):
        s = Session()
        s.push_mode(Mode.DETAIL)
        s.push_mode(Mode.HELP)
        s.clear_stack()
        assert s.mode is Mode.HELP
        assert len(s.stack) == 0


class TestInitialMode:
    @pytest.mark.parametrize("signal, mode", [
        (SignalType.LOGS, Mode.LIST),
        (SignalType.TRACES, Mode.TRACE_NAMES),
        (SignalType.METRICS, Mode.METRICS_DASHBOARD),
        (SignalType.CHAT, Mode.CHAT),
    ])
    def test_initial_mode_follows_signal(self, signal, mode):
        assert Session(signal=signal).mode is mode

    def test_index_defaults_to_signal_pattern(self):
        assert Session(signal=SignalType.TRACES).index == "traces-*"


class TestQuit:
    def test_q_at_top_level_list_quits_immediately(self):
        s = Session()
        s.handle_key("q")
        assert s.quit_requested

    def test_q_at_trace_names_asks_first(self):
        s = Session(signal=SignalType.TRACES)
        s.handle_key("q")
        assert not s.quit_requested
        assert s.mode is Mode.QUIT_CONFIRM
        s.handle_key("n")
        assert s.mode is Mode.TRACE_NAMES
        s.handle_key("q")
        s.handle_key("y")
        assert s.quit_requested

    def test_q_in_modal_closes_it(self):
        s = Session()
        s.push_mode(Mode.QUERY)
        s.handle_key("q")
        assert s.mode is Mode.LIST
        assert not s.quit_requested

    def test_ctrl_c_confirms_then_quits(self):
        s = Session()
        s.handle_key("ctrl+c")
        assert s.mode is Mode.QUIT_CONFIRM
        s.handle_key("ctrl+c")
        assert s.quit_requested


class TestHelp:
    def test_help_describes_parent(self):
        s = Session()
        s.push_mode(Mode.FIELDS)
        s.handle_key("?")
        assert s.mode is Mode.HELP
        assert s.keymap_mode() is Mode.FIELDS
        s.handle_key("escape")
        assert s.mode is Mode.FIELDS

    def test_help_disabled_in_raw_detail_and_error(self):
        s = Session()
        s.push_mode(Mode.DETAIL_RAW)
        s.handle_key("h")
        assert s.mode is Mode.DETAIL_RAW
        s.push_mode(Mode.ERROR_MODAL)
        s.handle_key("h")
        assert s.mode is Mode.ERROR_MODAL

    def test_h_is_text_in_search(self):
        s = Session()
        s.handle_key("/")
        s.handle_key("h")
        assert s.mode is Mode.SEARCH
        assert s.view.text == "h"
