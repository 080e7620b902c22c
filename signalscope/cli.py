"""Command line entry point."""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from pydantic import ValidationError

from .chat import ChatClient
from .config import BrowserConfig, ConfigError, load_config
from .datasource import DataSourceError, ElasticsearchSource
from .dispatch import Dispatcher
from .logger import setup_logging
from .models import SignalType
from .session import Session

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="signalscope",
        description="Browse OpenTelemetry logs, traces and metrics stored in Elasticsearch.",
    )
    parser.add_argument("signal", nargs="?", default="logs",
                        choices=[s.value for s in SignalType],
                        help="what to open first (default: logs)")
    parser.add_argument("--config", type=Path, default=None, help="path to config.toml")
    parser.add_argument("--url", default=None, help="Elasticsearch URL (overrides config)")
    parser.add_argument("--index", default=None, help="index pattern (default: per signal)")
    parser.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING, ...")
    parser.add_argument("--no-ping", action="store_true", help="skip the startup connectivity check")
    return parser


def build_session(config: BrowserConfig, signal: SignalType, index: str | None) -> Session:
    return Session(
        signal=signal,
        index=index or config.elasticsearch.index or signal.index_pattern,
        es_url=config.elasticsearch.url,
        page_size=config.tui.page_size,
        auto_refresh=config.tui.auto_refresh,
        auto_detect_threshold=config.tui.auto_detect_threshold,
    )


async def _check_connection(source: ElasticsearchSource) -> None:
    try:
        await source.ping()
    finally:
        await source.close()


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config)
    except (ConfigError, ValidationError) as e:
        print(f"signalscope: invalid configuration: {e}", file=sys.stderr)
        return 2

    if args.url:
        config.elasticsearch.url = args.url.rstrip("/")
    setup_logging(args.log_level or config.logging.level, config.logging.file)

    signal = SignalType(args.signal)
    session = build_session(config, signal, args.index)
    source = ElasticsearchSource.from_config(config.elasticsearch, session.index)

    if not args.no_ping and signal is not SignalType.CHAT:
        try:
            asyncio.run(_check_connection(source))
        except DataSourceError as e:
            print(f"signalscope: {e}", file=sys.stderr)
            return 1

    chat = ChatClient(config.chat.command, config.chat.model, config.tui.timeouts.chat)
    dispatcher = Dispatcher(source, config.tui.timeouts, chat)

    # Imported late so --help works without a terminal.
    from .ui import BrowserApp

    logger.info("starting %s on %s (%s)", signal.value, config.elasticsearch.url, session.index)
    BrowserApp(session, dispatcher, tick_interval=config.tui.tick_interval).run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
