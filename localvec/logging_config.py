"""
Logging configuration for localvec.

Quiet by default for the CLI; LOCALVEC_VERBOSE=1 or --verbose turns on
debug output.
"""

import logging
import sys
import warnings
from logging.handlers import RotatingFileHandler
from pathlib import Path

OPS_LOG_FILENAME = "localvec-ops.log"


def configure_quiet_mode(quiet: bool = True):
    """
    Configure logging to suppress verbose library output.

    Args:
        quiet: If True, suppress warnings and chatty HTTP loggers.
    """
    if quiet:
        warnings.filterwarnings("ignore")
        logging.getLogger("urllib3").setLevel(logging.ERROR)
        logging.getLogger("requests").setLevel(logging.ERROR)
        logging.getLogger("localvec").setLevel(logging.WARNING)


def enable_debug_mode():
    """Enable debug-level logging to stderr."""
    warnings.filterwarnings("default")

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

    for name in ("localvec", "urllib3"):
        logging.getLogger(name).setLevel(logging.DEBUG)


def configure_ops_log(folder_path):
    """Configure a persistent operations log for an index folder.

    Writes to {folder_path}/localvec-ops.log using a rotating file handler
    (1MB max, 3 backups). Returns the handler so it can be removed later.
    """
    log_path = Path(folder_path) / OPS_LOG_FILENAME
    handler = RotatingFileHandler(
        str(log_path),
        maxBytes=1_000_000,
        backupCount=3,
    )
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))

    localvec_logger = logging.getLogger("localvec")
    localvec_logger.addHandler(handler)
    # Let INFO through even in quiet mode
    if localvec_logger.level == logging.NOTSET or localvec_logger.level > logging.INFO:
        localvec_logger.setLevel(logging.INFO)

    return handler


def remove_ops_log(handler) -> None:
    """Detach and close a handler returned by configure_ops_log."""
    logging.getLogger("localvec").removeHandler(handler)
    handler.close()
