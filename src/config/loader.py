"""
YAML configuration loader for the indexer.

Example file::

    airgap: false
    max_layer_workers: 4
    max_scanner_workers: 4
    ecosystems: [dpkg]
    scanners:
      apt-sources:
        config:
          include_deb_src: true

A scanner's ``config`` may be a string or a mapping. Strings are handed to
the scanner as UTF-8 bytes; mappings are serialized back to YAML first.
"""

import logging
from pathlib import Path
from typing import Any, Optional

import yaml

from constants import DEFAULT_CONFIG_FILE
from core.ecosystem import IndexerConfig
from core.exceptions import ConfigurationException
from scanners import default_ecosystems, ecosystems_by_name

logger = logging.getLogger(__name__)

INT_KEYS = ("max_layer_workers", "max_scanner_workers", "max_fetch_workers", "fetch_retries")
FLOAT_KEYS = ("fetch_backoff", "timeout")
KNOWN_KEYS = {"airgap", "ecosystems", "scanners", *INT_KEYS, *FLOAT_KEYS}


def read_config_file(path: Path) -> dict[str, Any]:
    """
    Read a YAML configuration file.

    Raises:
        ConfigurationException: If the file is missing or malformed
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        raise ConfigurationException(f"Configuration file not found: {path}")
    except OSError as e:
        raise ConfigurationException(f"Cannot read configuration file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationException(f"Failed to parse configuration file {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationException(f"Invalid configuration file format: {path}")
    logger.debug(f"Loaded configuration from {path}")
    return data


def scanner_payloads(section: Any) -> dict[str, bytes]:
    """Convert the ``scanners`` section into opaque payloads keyed by scanner name."""
    if section is None:
        return {}
    if not isinstance(section, dict):
        raise ConfigurationException("'scanners' must be a mapping of scanner name to settings")

    payloads = {}
    for name, settings in section.items():
        if not isinstance(settings, dict) or "config" not in settings:
            raise ConfigurationException(f"Scanner {name}: expected a mapping with a 'config' key")
        value = settings["config"]
        if isinstance(value, str):
            payloads[str(name)] = value.encode("utf-8")
        elif isinstance(value, dict):
            payloads[str(name)] = yaml.safe_dump(value, sort_keys=True).encode("utf-8")
        else:
            raise ConfigurationException(f"Scanner {name}: 'config' must be a string or mapping")
    return payloads


def _number(data: dict[str, Any], key: str, kind: type) -> Any:
    value = data[key]
    if value is None and key == "timeout":
        return None
    if isinstance(value, bool):
        raise ConfigurationException(f"{key} must be a number")
    try:
        return kind(value)
    except (TypeError, ValueError):
        raise ConfigurationException(f"{key} must be a number, got {value!r}")


def build_config(data: dict[str, Any], overrides: Optional[dict[str, Any]] = None) -> IndexerConfig:
    """
    Build an IndexerConfig from parsed settings.

    Args:
        data: Settings read from a configuration file
        overrides: Values taking precedence over ``data``; None values are ignored

    Returns:
        Validated indexer configuration with freshly built ecosystems
    """
    merged = dict(data)
    for key, value in (overrides or {}).items():
        if value is not None:
            merged[key] = value

    unknown = sorted(set(merged) - KNOWN_KEYS)
    if unknown:
        logger.warning(f"Ignoring unknown configuration keys: {', '.join(unknown)}")

    names = merged.get("ecosystems")
    if names is None:
        ecosystems = default_ecosystems()
    elif isinstance(names, list) and all(isinstance(n, str) for n in names):
        ecosystems = ecosystems_by_name(names)
    else:
        raise ConfigurationException("'ecosystems' must be a list of names")

    kwargs: dict[str, Any] = {
        "ecosystems": ecosystems,
        "scanner_configs": scanner_payloads(merged.get("scanners")),
        "airgap": bool(merged.get("airgap", False)),
    }
    for key in INT_KEYS:
        if key in merged:
            kwargs[key] = _number(merged, key, int)
    for key in FLOAT_KEYS:
        if key in merged:
            kwargs[key] = _number(merged, key, float)

    return IndexerConfig(**kwargs)


def load_config(path: Optional[Path] = None, overrides: Optional[dict[str, Any]] = None) -> IndexerConfig:
    """
    Load the indexer configuration.

    A missing file is only an error when ``path`` was given explicitly;
    otherwise the default file is used if present.
    """
    if path is not None:
        data = read_config_file(path)
    elif DEFAULT_CONFIG_FILE.exists():
        data = read_config_file(DEFAULT_CONFIG_FILE)
    else:
        data = {}
    return build_config(data, overrides)
