import logging
from pathlib import Path

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def setup_logging(level: int | str = logging.INFO, log_file: Path | str | None = None) -> logging.Logger:
    """Route the package logger to a file.

    The terminal belongs to the TUI, so nothing is written to stderr. Without a
    ``log_file`` the records are dropped.
    """
    root = logging.getLogger("signalscope")
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    root.setLevel(level)

    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    if log_file is None:
        root.addHandler(logging.NullHandler())
    else:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(path)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
    root.propagate = False
    return root
