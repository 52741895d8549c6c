"""Integrations with external services."""

from integrations.fetcher import Fetcher, HTTPFetcher, LocalFetcher

__all__ = [
    "Fetcher",
    "HTTPFetcher",
    "LocalFetcher",
]
