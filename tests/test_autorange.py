import pytest

from signalscope.autorange import detect_lookback
from signalscope.models import Lookback, QueryOptions

from conftest import FakeSource


def _counts(*values):
    return dict(zip(Lookback.ordered(), values))


class TestDetectLookback:
    async def test_stops_at_first_window_over_threshold(self):
        source = FakeSource(_counts(0, 50, 12_000, 50_000, 100_000))
        lookback, count = await detect_lookback(source.count, QueryOptions(), 10_000)
        assert (lookback, count) == (Lookback.H24, 12_000)
        probed = [opts.lookback for name, opts in source.calls]
        assert probed == [Lookback.M5, Lookback.H1, Lookback.H24]

    async def test_falls_back_to_highest_count(self):
        source = FakeSource(_counts(0, 3, 7, 2, 1))
        assert await detect_lookback(source.count, QueryOptions(), 10_000) == (Lookback.H24, 7)
        assert len(source.calls) == 5

    async def test_ties_keep_narrower_window(self):
        source = FakeSource(_counts(4, 4, 4, 4, 4))
        assert await detect_lookback(source.count, QueryOptions(), 10_000) == (Lookback.M5, 4)

    async def test_all_failing_defaults_to_narrowest(self):
        err = RuntimeError("down")
        source = FakeSource(_counts(err, err, err, err, err))
        assert await detect_lookback(source.count, QueryOptions(), 10_000) == (Lookback.M5, 0)

    async def test_failed_probe_is_skipped(self):
        source = FakeSource(_counts(5, RuntimeError("x"), 20, 0, 0))
        assert await detect_lookback(source.count, QueryOptions(), 100) == (Lookback.H24, 20)

    @pytest.mark.parametrize("threshold, expected", [
        (1, Lookback.M5),
        (60, Lookback.H1),
        (10**9, Lookback.ALL),
    ])
    async def test_threshold_moves_the_choice(self, threshold, expected):
        source = FakeSource(_counts(10, 100, 1_000, 10_000, 100_000))
        lookback, _ = await detect_lookback(source.count, QueryOptions(), threshold)
        assert lookback is expected

    async def test_options_other_than_lookback_are_kept(self):
        source = FakeSource(_counts(20_000))
        opts = QueryOptions(index="traces-*", processor_event="transaction")
        await detect_lookback(source.count, opts, 10_000)
        probed = source.calls[0][1]
        assert probed.index == "traces-*"
        assert probed.processor_event == "transaction"
