import logging
import os
from typing import Any, Dict, Optional, Union

FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


def _to_level(level: Union[int, str]) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).strip().upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level: {level}")
    return resolved


def setup_logger(name="pgcontainer", log_file: Optional[str] = None, level=logging.INFO, to_console=False):
    """
    Setup a logger that writes to file only by default.
    Set to_console=True to enable console logging. Child loggers
    (e.g. "pgcontainer.snapshot") propagate to it.
    """
    logger = logging.getLogger(name)
    logger.setLevel(_to_level(level))

    # Remove any existing handlers
    if logger.hasHandlers():
        logger.handlers.clear()

    formatter = logging.Formatter(FORMAT)

    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        fh = logging.FileHandler(log_file)
        fh.setFormatter(formatter)
        logger.addHandler(fh)

    if to_console:
        ch = logging.StreamHandler()
        ch.setFormatter(formatter)
        logger.addHandler(ch)

    return logger


def setup_logger_from_config(config: Dict[str, Any], name="pgcontainer"):
    """Configure the package logger from the `logging` section of load_container_config()."""
    log_cfg = config.get("logging", {})
    return setup_logger(
        name,
        log_file=log_cfg.get("log_file"),
        level=log_cfg.get("level", logging.INFO),
        to_console=log_cfg.get("to_console", True),
    )
