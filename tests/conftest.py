import asyncio

import pytest

from signalscope.config import TimeoutSettings
from signalscope.dispatch import Dispatcher
from signalscope.models import (
    Document,
    FieldInfo,
    Lookback,
    MetricsAggResult,
    PerspectiveItem,
    SearchResult,
    TransactionNameAgg,
)
from signalscope.session import Session


def make_docs(*messages: str) -> tuple[Document, ...]:
    return tuple(
        Document({"@timestamp": "2026-01-01T00:00:00Z", "body": {"text": m}, "trace_id": f"t{i}"})
        for i, m in enumerate(messages)
    )


class FakeSource:
    """In-memory DataSource. Records calls; optional per-method delays and failures."""

    def __init__(self, counts: dict[Lookback, int] | None = None):
        self.index = "logs-*"
        self.counts = counts or {}
        self.calls: list[tuple[str, object]] = []
        self.docs = make_docs("hello", "world")
        self.delay = 0.0
        self.fail: Exception | None = None

    async def _maybe(self, name, arg):
        self.calls.append((name, arg))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail is not None:
            raise self.fail

    async def tail(self, opts):
        await self._maybe("tail", opts)
        return SearchResult(self.docs, len(self.docs), '{"query": {}}', opts.index)

    async def search(self, query, opts):
        await self._maybe("search", (query, opts))
        return SearchResult(self.docs, len(self.docs), '{"query": {}}', opts.index)

    async def count(self, opts):
        await self._maybe("count", opts)
        value = self.counts.get(opts.lookback, 0)
        if isinstance(value, Exception):
            raise value
        return value

    async def aggregate_metrics(self, opts):
        await self._maybe("aggregate_metrics", opts)
        return MetricsAggResult()

    async def transaction_names(self, lookback, filters, index=None):
        await self._maybe("transaction_names", lookback)
        return [TransactionNameAgg("GET /api", count=3)]

    async def services(self, lookback):
        await self._maybe("services", lookback)
        return [PerspectiveItem("checkout", log_count=5)]

    async def resources(self, lookback):
        await self._maybe("resources", lookback)
        return [PerspectiveItem("prod", log_count=9)]

    async def field_caps(self, index=None):
        await self._maybe("field_caps", index)
        return [FieldInfo("host.name", "keyword", doc_count=10)]

    async def ping(self):
        await self._maybe("ping", None)

    async def close(self):
        pass


@pytest.fixture
def source():
    return FakeSource()


@pytest.fixture
def timeouts():
    return TimeoutSettings(point=1.0, aggregation=1.0, chat=1.0)


@pytest.fixture
def dispatcher(source, timeouts):
    return Dispatcher(source, timeouts)


@pytest.fixture
def session():
    return Session()


@pytest.fixture
def run(session, dispatcher):
    """Dispatch, await and apply requests, following up until nothing is left."""

    async def _run(requests):
        while requests:
            tasks = [dispatcher.dispatch(session, r) for r in requests]
            results = [await t for t in tasks]
            requests = []
            for result in results:
                requests.extend(session.apply(result))

    return _run
