"""Pick the narrowest lookback window that holds enough documents."""

import logging
from dataclasses import replace
from typing import Awaitable, Callable

from .models import Lookback, QueryOptions

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 10_000

CountFn = Callable[[QueryOptions], Awaitable[int]]


async def detect_lookback(
    count: CountFn,
    options: QueryOptions,
    threshold: int = DEFAULT_THRESHOLD,
) -> tuple[Lookback, int]:
    """Probe windows narrowest first and stop at the first one reaching ``threshold``.

    Wider windows are only consulted when narrower ones fall short. If none
    reaches the threshold the window with the highest count wins, ties going
    to the narrower one. A failing probe counts as zero.
    """
    windows = Lookback.ordered()
    best, best_count = windows[0], 0
    for lookback in windows:
        try:
            total = await count(replace(options, lookback=lookback))
        except Exception as e:
            logger.debug("auto-range probe %s skipped: %s", lookback.value, e)
            continue
        logger.debug("auto-range probe %s -> %d", lookback.value, total)
        if total >= threshold:
            return lookback, total
        if total > best_count:
            best, best_count = lookback, total
    return best, best_count
