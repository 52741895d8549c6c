"""Utility modules for CLI output."""

from utils.logging_helpers import log_error_section, log_info_header, log_warning_section

__all__ = [
    "log_error_section",
    "log_info_header",
    "log_warning_section",
]
