"""
Logging configuration for recall.

Library output is kept quiet by default. Nothing is ever logged to stdout:
under the MCP server, stdout carries the protocol.
"""

import logging
import os
import sys
import warnings
from logging.handlers import RotatingFileHandler
from pathlib import Path

# Set environment variables BEFORE the model libraries are imported
if not os.environ.get("RECALL_VERBOSE"):
    os.environ.setdefault("HF_HUB_DISABLE_PROGRESS_BARS", "1")
    os.environ.setdefault("TRANSFORMERS_VERBOSITY", "error")
    os.environ.setdefault("TOKENIZERS_PARALLELISM", "false")
    os.environ.setdefault("HF_HUB_DISABLE_TELEMETRY", "1")

_NOISY_LOGGERS = ("transformers", "sentence_transformers", "watchdog", "httpx", "openai")

OPS_LOG_DIRNAME = "logs"
OPS_LOG_FILENAME = "recall-ops.log"


def configure_quiet_mode(quiet: bool = True):
    """
    Suppress verbose library output (model download bars, warnings,
    per-event watchdog chatter).

    Args:
        quiet: If True, suppress verbose output. If False, leave it alone.
    """
    if not quiet:
        return
    os.environ["HF_HUB_DISABLE_PROGRESS_BARS"] = "1"
    os.environ["TRANSFORMERS_VERBOSITY"] = "error"
    os.environ["TOKENIZERS_PARALLELISM"] = "false"

    warnings.filterwarnings("ignore")

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.ERROR)


def enable_debug_mode():
    """Enable debug-level logging to stderr."""
    warnings.filterwarnings("default")

    os.environ.pop("HF_HUB_DISABLE_PROGRESS_BARS", None)
    os.environ.pop("TRANSFORMERS_VERBOSITY", None)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    # Add stderr handler if not already present
    if not any(isinstance(h, logging.StreamHandler) and h.stream == sys.stderr
               for h in root_logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s: %(message)s",
            datefmt="%H:%M:%S"
        ))
        root_logger.addHandler(handler)

    logging.getLogger("recall").setLevel(logging.DEBUG)
    # watchdog at DEBUG logs every inotify event; INFO is plenty
    for name in ("transformers", "sentence_transformers", "watchdog"):
        logging.getLogger(name).setLevel(logging.INFO)


def configure_ops_log(store_path) -> logging.Handler:
    """Configure a persistent operations log for a recall store.

    Writes to {store_path}/logs/recall-ops.log using a rotating file handler
    (1MB max, 3 backups). Always active regardless of --verbose.
    Returns the handler so it can be removed on close().
    """
    log_dir = Path(store_path) / OPS_LOG_DIRNAME
    log_dir.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        str(log_dir / OPS_LOG_FILENAME),
        maxBytes=1_000_000,
        backupCount=3,
        encoding="utf-8",
    )
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s %(threadName)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))

    recall_logger = logging.getLogger("recall")
    recall_logger.addHandler(handler)
    # Let INFO through even in quiet mode
    if recall_logger.level == logging.NOTSET or recall_logger.level > logging.INFO:
        recall_logger.setLevel(logging.INFO)

    return handler


def remove_ops_log(handler: logging.Handler | None) -> None:
    """Detach and close a handler returned by configure_ops_log()."""
    if handler is None:
        return
    logging.getLogger("recall").removeHandler(handler)
    handler.close()
