"""
Error classification for layer fetch retries.

Categorizes Fetcher errors into classes that determine whether the
controller retries a fetch and how long it backs off first.
"""

from enum import Enum
from dataclasses import dataclass
import re

from constants import MAX_FETCH_BACKOFF


class ErrorCategory(str, Enum):
    """
    Fetch error categories; each maps to a retry decision.
    """
    PERMANENT_INFRASTRUCTURE = "permanent_infrastructure"
    """Registry host cannot be resolved"""

    PERMANENT_AUTH = "permanent_auth"
    """Registry rejected credentials - don't retry"""

    PERMANENT_NOT_FOUND = "permanent_not_found"
    """Blob does not exist - don't retry"""

    TRANSIENT_INTEGRITY = "transient_integrity"
    """Downloaded content did not match its digest - retry"""

    TRANSIENT_NETWORK = "transient_network"
    """Timeouts, connection issues - retry with backoff"""

    RATE_LIMIT = "rate_limit"
    """Rate limiting - retry with a longer backoff"""

    UNKNOWN = "unknown"
    """Unrecognized error, retried like a network error"""


@dataclass(frozen=True)
class ClassifiedError:
    """
    A fetch error and how the controller should react to it.
    """
    category: ErrorCategory
    original_message: str
    retry_recommended: bool
    backoff_multiplier: float = 1.0


class ErrorClassifier:
    """
    Classifies layer fetch errors into categories.
    """

    DNS_PATTERNS = [
        r"no such host",
        r"could not resolve host",
        r"name or service not known",
        r"temporary failure in name resolution",
        r"nodename nor servname provided",
    ]

    AUTH_PATTERNS = [
        r"\b401\b",
        r"\b403\b",
        r"unauthorized",
        r"forbidden",
        r"access denied",
    ]

    RATE_LIMIT_PATTERNS = [
        r"toomanyrequests",
        r"rate limit",
        r"too many requests",
        r"\b429\b",
    ]

    NETWORK_PATTERNS = [
        r"timeout",
        r"timed out",
        r"connection refused",
        r"connection reset",
        r"connection aborted",
        r"network is unreachable",
        r"broken pipe",
        r"\b50[234]\b",
    ]

    NOT_FOUND_PATTERNS = [
        r"not found",
        r"no such file",
        r"blob unknown",
        r"does not exist",
        r"\b404\b",
    ]

    INTEGRITY_PATTERNS = [
        r"digest mismatch",
        r"unexpected eof",
        r"incomplete read",
    ]

    _BY_TYPE = {
        "dns_error": (ErrorCategory.PERMANENT_INFRASTRUCTURE, False, 1.0),
        "auth": (ErrorCategory.PERMANENT_AUTH, False, 1.0),
        "not_found": (ErrorCategory.PERMANENT_NOT_FOUND, False, 1.0),
        "digest_mismatch": (ErrorCategory.TRANSIENT_INTEGRITY, True, 1.0),
        "timeout": (ErrorCategory.TRANSIENT_NETWORK, True, 1.0),
        "rate_limit": (ErrorCategory.RATE_LIMIT, True, 4.0),
    }

    @classmethod
    def classify(cls, error_message: str, error_type: str = "unknown") -> ClassifiedError:
        """
        Classify a fetch error by its type, falling back to its message.

        Args:
            error_message: Error message from the Fetcher
            error_type: Error type reported by the Fetcher, if any

        Returns:
            ClassifiedError with category and retry recommendation
        """
        # The fetcher-reported type wins.
        if error_type in cls._BY_TYPE:
            category, retry, multiplier = cls._BY_TYPE[error_type]
            return ClassifiedError(
                category=category,
                original_message=error_message,
                retry_recommended=retry,
                backoff_multiplier=multiplier,
            )

        # Otherwise match the message.
        error_lower = error_message.lower()
        ordered = [
            (cls.DNS_PATTERNS, "dns_error"),
            (cls.RATE_LIMIT_PATTERNS, "rate_limit"),
            (cls.AUTH_PATTERNS, "auth"),
            (cls.NOT_FOUND_PATTERNS, "not_found"),
            (cls.INTEGRITY_PATTERNS, "digest_mismatch"),
            (cls.NETWORK_PATTERNS, "timeout"),
        ]
        for patterns, inferred in ordered:
            if any(re.search(pattern, error_lower) for pattern in patterns):
                return cls.classify(error_message, inferred)

        # Nothing matched.
        return ClassifiedError(
            category=ErrorCategory.UNKNOWN,
            original_message=error_message,
            retry_recommended=True,
        )


def backoff_delay(attempt: int, base: float, classified: ClassifiedError) -> float:
    """
    Exponential backoff delay before retry ``attempt`` (1-based).

    Args:
        attempt: Number of the attempt that just failed
        base: Base delay in seconds
        classified: Classification of the failure

    Returns:
        Delay in seconds, capped at MAX_FETCH_BACKOFF
    """
    delay = base * classified.backoff_multiplier * (2 ** (attempt - 1))
    return min(delay, MAX_FETCH_BACKOFF)
