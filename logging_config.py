from __future__ import annotations

import logging
from pathlib import Path
from typing import Final, Union


DEFAULT_LOG_FORMAT: Final[str] = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def configure_logging(level: Union[int, str] = logging.INFO, log_dir: str | None = None) -> None:
    """Configure standard library logging for the CLI.

    Logs go to stderr so stdout stays reserved for the JSON each stage prints.
    If log_dir is provided, logs are also written to '<log_dir>/release-kit.log'.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_dir is not None:
        Path(log_dir).mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(Path(log_dir) / "release-kit.log", encoding="utf-8"))

    logging.basicConfig(level=level, format=DEFAULT_LOG_FORMAT, handlers=handlers, force=True)
