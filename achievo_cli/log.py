"""
Logging setup
─────────────
All loggers live under the ``achievo`` root (``achievo.db``, ``achievo.score``,
``achievo.ai``, ...). Console output goes through Rich so it interleaves
cleanly with the CLI's tables and panels.
"""

import json
import logging
from pathlib import Path
from typing import Iterable, Optional

from rich.console import Console
from rich.logging import RichHandler

ROOT = "achievo"

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def get_logger(namespace: str) -> logging.Logger:
    return logging.getLogger(f"{ROOT}.{namespace}")


class JsonLineFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname.lower(),
            "ns": record.name.removeprefix(ROOT + "."),
            "msg": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)


def setup_logging(
    level: str = "info",
    namespaces: Iterable[str] = (),
    log_file: Optional[Path] = None,
    console: Optional[Console] = None,
) -> logging.Logger:
    """Configure the ``achievo`` logger tree.

    Namespaces in ``namespaces`` always log at debug, whatever ``level`` is.
    Everything else stays at ``level``, or at info when ``level`` is debug
    and a namespace list was given.
    """
    root = logging.getLogger(ROOT)
    for h in list(root.handlers):
        root.removeHandler(h)
        h.close()

    wanted = _LEVELS.get(level.lower(), logging.INFO)
    namespaces = list(namespaces)

    for name in list(logging.root.manager.loggerDict):
        if name.startswith(ROOT + "."):
            logging.getLogger(name).setLevel(logging.NOTSET)

    if namespaces:
        root.setLevel(max(wanted, logging.INFO))
        for ns in namespaces:
            logging.getLogger(f"{ROOT}.{ns}").setLevel(logging.DEBUG)
    else:
        root.setLevel(wanted)

    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
        markup=False,
    )
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    root.addHandler(handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(JsonLineFormatter())
        root.addHandler(file_handler)

    root.propagate = False
    return root
