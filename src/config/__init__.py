"""Indexer configuration loading."""

from config.loader import build_config, load_config, read_config_file

__all__ = ["build_config", "load_config", "read_config_file"]
