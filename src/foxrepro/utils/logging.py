"""Logging setup for analysis runs.

Records go to stdout and, when an output directory is given, to
``<output_dir>/analysis.log`` so that every rendered report sits next to
the log of the run that produced it.
"""

import logging
import sys
from pathlib import Path
from typing import Iterable, Optional, Union

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Third-party loggers that flood DEBUG output while figures are rendered
NOISY_LOGGERS = ("matplotlib", "PIL", "fontTools")


def _configure(handler: logging.Handler, level: int) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
    return handler


def setup_logging(
    output_dir: Optional[Union[str, Path]] = None,
    log_filename: str = "analysis.log",
    level: int = logging.INFO,
    quiet: Iterable[str] = NOISY_LOGGERS,
) -> logging.Logger:
    """Route log records to the console and optionally to the run log.

    Calling it again replaces the handlers of the previous call, so the CLI
    can configure console logging before the pipeline knows its output
    directory.

    Args:
        output_dir: Output directory of the run; the log file is created there.
        log_filename: Name of the log file.
        level: Logging level for the root logger and all handlers.
        quiet: Loggers kept at WARNING or above regardless of ``level``.

    Returns:
        Root logger instance.
    """
    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        if isinstance(handler, logging.FileHandler):
            handler.close()
    root_logger.setLevel(level)

    root_logger.addHandler(_configure(logging.StreamHandler(sys.stdout), level))

    if output_dir is not None:
        log_file = Path(output_dir) / log_filename
        log_file.parent.mkdir(parents=True, exist_ok=True)
        root_logger.addHandler(_configure(logging.FileHandler(log_file), level))
        root_logger.info(f"Logging to {log_file}")

    for name in quiet:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    return root_logger
