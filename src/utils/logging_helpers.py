"""
Logging helpers for the strata CLI.

Frames multi-line error and warning output between separator lines so it
stands out from per-layer progress logging.
"""

import logging
from typing import List, Optional


def _log_section(
    level: int,
    title: str,
    messages: List[str],
    logger: Optional[logging.Logger],
    width: int,
) -> None:
    if logger is None:
        logger = logging.getLogger()

    logger.log(level, "=" * width)
    logger.log(level, title)
    for message in messages:
        logger.log(level, message or "")
    logger.log(level, "=" * width)


def log_error_section(
    title: str,
    messages: List[str],
    logger: Optional[logging.Logger] = None,
    width: int = 60
) -> None:
    """
    Log an error section with separator lines and multiple messages.

    Args:
        title: Title of the section
        messages: Messages to display; empty strings become blank lines
        logger: Logger instance (defaults to root logger if not provided)
        width: Width of separator line in characters

    Examples:
        >>> log_error_section(
        ...     "Indexing Failed",
        ...     ["Failed to fetch layer sha256:ab12: blob not found"]
        ... )
        ============================================================
        Indexing Failed
        Failed to fetch layer sha256:ab12: blob not found
        ============================================================
    """
    _log_section(logging.ERROR, title, messages, logger, width)


def log_warning_section(
    title: str,
    messages: List[str],
    logger: Optional[logging.Logger] = None,
    width: int = 60
) -> None:
    """
    Log a warning section, e.g. the scanner failures behind a partial report.

    Takes the same arguments as log_error_section.
    """
    _log_section(logging.WARNING, title, messages, logger, width)


def log_info_header(
    message: str,
    logger: Optional[logging.Logger] = None,
    width: int = 60,
    char: str = "="
) -> None:
    """
    Log an informational header with separator lines.

    Examples:
        >>> log_info_header("Indexing sha256:5d8f")
        ============================================================
        Indexing sha256:5d8f
        ============================================================
    """
    if logger is None:
        logger = logging.getLogger()

    logger.info(char * width)
    logger.info(message)
    logger.info(char * width)
