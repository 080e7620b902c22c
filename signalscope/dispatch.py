"""Versioned background fetches.

Every fetch is tagged with the generation its kind had when it was started.
A result is applied only while that generation is still the newest one, so
the last request *started* wins no matter which one finishes last. Nothing is
ever aborted; superseded tasks run to completion and are ignored.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Coroutine

from .autorange import DEFAULT_THRESHOLD, detect_lookback
from .models import QueryOptions

if TYPE_CHECKING:
    from .chat import ChatClient
    from .config import TimeoutSettings
    from .datasource import DataSource

logger = logging.getLogger(__name__)


class RequestKind(Enum):
    LOGS = "logs"
    METRICS_AGG = "metrics_agg"
    METRIC_DOCS = "metric_docs"
    TRANSACTION_NAMES = "transaction_names"
    SPANS = "spans"
    PERSPECTIVE = "perspective"
    FIELD_CAPS = "field_caps"
    AUTO_DETECT = "auto_detect"
    CHAT = "chat"


# Aggregation-heavy kinds get the long timeout, chat gets its own.
AGGREGATION_KINDS = frozenset({
    RequestKind.METRICS_AGG,
    RequestKind.TRANSACTION_NAMES,
    RequestKind.PERSPECTIVE,
    RequestKind.AUTO_DETECT,
})


class RequestLedger:
    """One monotonic generation counter per request kind."""

    def __init__(self) -> None:
        self._generations: dict[RequestKind, int] = {k: 0 for k in RequestKind}

    def next(self, kind: RequestKind) -> int:
        self._generations[kind] += 1
        return self._generations[kind]

    def current(self, kind: RequestKind) -> int:
        return self._generations[kind]

    def is_current(self, kind: RequestKind, generation: int) -> bool:
        return self._generations[kind] == generation


@dataclass(frozen=True)
class FetchRequest:
    """What a transition wants fetched. Everything here is an immutable snapshot."""

    kind: RequestKind
    options: QueryOptions = field(default_factory=QueryOptions)
    perspective: str = ""
    prompt: str = ""
    threshold: int = DEFAULT_THRESHOLD


@dataclass(frozen=True)
class FetchResult:
    kind: RequestKind
    generation: int
    data: Any = None
    error: str | None = None
    request: FetchRequest | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class Dispatcher:
    """Turns FetchRequests into bounded coroutines against the data source."""

    def __init__(
        self,
        source: "DataSource",
        timeouts: "TimeoutSettings",
        chat: "ChatClient | None" = None,
    ):
        self.source = source
        self.timeouts = timeouts
        self.chat = chat

    def timeout_for(self, kind: RequestKind) -> float:
        if kind is RequestKind.CHAT:
            return self.timeouts.chat
        if kind in AGGREGATION_KINDS:
            return self.timeouts.aggregation
        return self.timeouts.point

    def dispatch(self, session, request: FetchRequest) -> Coroutine[Any, Any, FetchResult]:
        """Stamp ``request`` with a fresh generation and return its task body.

        The generation is taken now, inside the update step, before any further
        state change can happen.
        """
        generation = session.begin_request(request.kind)
        logger.debug("dispatch %s gen=%d", request.kind.value, generation)
        return self.run(request, generation)

    async def run(self, request: FetchRequest, generation: int) -> FetchResult:
        timeout = self.timeout_for(request.kind)
        try:
            data = await asyncio.wait_for(self._call(request), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("%s timed out after %.0fs", request.kind.value, timeout)
            return FetchResult(request.kind, generation,
                               error=f"{request.kind.value} request timed out after {timeout:.0f}s",
                               request=request)
        except Exception as e:
            logger.warning("%s failed: %s", request.kind.value, e)
            return FetchResult(request.kind, generation, error=str(e) or type(e).__name__,
                               request=request)
        return FetchResult(request.kind, generation, data=data, request=request)

    async def _call(self, request: FetchRequest) -> Any:
        opts = request.options
        kind = request.kind
        src = self.source

        if kind is RequestKind.LOGS:
            if opts.filters.query:
                return await src.search(opts.filters.query, opts)
            return await src.tail(opts)
        if kind in (RequestKind.SPANS, RequestKind.METRIC_DOCS):
            return await src.tail(opts)
        if kind is RequestKind.METRICS_AGG:
            return await src.aggregate_metrics(opts)
        if kind is RequestKind.TRANSACTION_NAMES:
            return await src.transaction_names(opts.lookback, opts.filters, opts.index)
        if kind is RequestKind.PERSPECTIVE:
            if request.perspective == "resources":
                return await src.resources(opts.lookback)
            return await src.services(opts.lookback)
        if kind is RequestKind.FIELD_CAPS:
            return await src.field_caps(opts.index)
        if kind is RequestKind.AUTO_DETECT:
            return await detect_lookback(src.count, opts, request.threshold)
        if kind is RequestKind.CHAT:
            if self.chat is None:
                raise RuntimeError("chat is not configured")
            return await self.chat.ask(request.prompt)
        raise ValueError(f"unknown request kind: {kind}")
