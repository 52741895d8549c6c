"""
Command-line interface for Strata - Container Layer Indexer.

Commands:
- index: Index a manifest and write its inventory report as JSON
- scanners: List the active scanner identities
- cache: Clear the findings cache or invalidate one scanner's entries
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from constants import (
    DEFAULT_CACHE_DIR,
    DEFAULT_FETCH_RETRIES,
    DEFAULT_MAX_LAYER_WORKERS,
    DEFAULT_MAX_SCANNER_WORKERS,
)
from config import load_config
from core.context import ScanContext
from core.controller import IndexController
from core.ecosystem import IndexerConfig
from core.exceptions import StrataException
from core.models import Manifest
from core.persistence import FileStore
from integrations.fetcher import Fetcher, HTTPFetcher, LocalFetcher
from utils.logging_helpers import log_error_section, log_info_header, log_warning_section

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False):
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    )


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", type=Path, default=None, help="YAML indexer configuration file.")
    parser.add_argument("--store-dir", type=Path, default=DEFAULT_CACHE_DIR, help="Report and findings store directory.")
    parser.add_argument("--airgap", action="store_true", default=None, help="Disable scanners requiring network access.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging.")


def parse_index_args(args: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments for the index command."""
    parser = argparse.ArgumentParser(
        prog="strata index",
        description="Strata - index the layers of a container image manifest",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    io_group = parser.add_argument_group("input/output")
    workers_group = parser.add_argument_group("concurrency options")
    cache_group = parser.add_argument_group("cache options")

    io_group.add_argument("manifest", type=Path, help="Manifest JSON file (manifest_id and ordered layers).")
    io_group.add_argument("-o", "--output", type=Path, default=None, help="Report output file (default: stdout).")
    io_group.add_argument("--blob-dir", type=Path, default=None, help="Directory of layer blobs laid out as <algorithm>/<hex>.")

    workers_group.add_argument("--max-layer-workers", type=int, default=None, help=f"Layers scanned concurrently (default: {DEFAULT_MAX_LAYER_WORKERS}).")
    workers_group.add_argument("--max-scanner-workers", type=int, default=None, help=f"Scanners run concurrently per layer (default: {DEFAULT_MAX_SCANNER_WORKERS}).")
    workers_group.add_argument("--fetch-retries", type=int, default=None, help=f"Attempts per layer fetch (default: {DEFAULT_FETCH_RETRIES}).")
    workers_group.add_argument("--timeout", type=float, default=None, help="Deadline in seconds for the whole request.")

    cache_group.add_argument("--no-cache", action="store_true", help="Disable caching and ignore stored reports.")
    cache_group.add_argument("--clear-cache", action="store_true", help="Clear cached findings before indexing.")

    _add_common_arguments(parser)
    return parser.parse_args(args)


def parse_scanners_args(args: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments for the scanners command."""
    parser = argparse.ArgumentParser(
        prog="strata scanners",
        description="List the scanners applied to every layer",
    )
    parser.add_argument("--config", type=Path, default=None, help="YAML indexer configuration file.")
    parser.add_argument("--airgap", action="store_true", default=None, help="Show the airgap scanner set.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging.")
    return parser.parse_args(args)


def parse_cache_args(args: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments for the cache command."""
    parser = argparse.ArgumentParser(
        prog="strata cache",
        description="Manage cached layer findings",
    )
    parser.add_argument("action", choices=("clear", "invalidate"), help="Cache action.")
    parser.add_argument("--scanner", help="Scanner name whose entries are invalidated (invalidate only).")
    parser.add_argument("--reports", action="store_true", help="Also delete stored reports (clear only).")
    _add_common_arguments(parser)
    return parser.parse_args(args)


def build_config(args: argparse.Namespace) -> IndexerConfig:
    """Load the configuration file with command-line overrides applied."""
    overrides = {
        "airgap": args.airgap,
        "max_layer_workers": getattr(args, "max_layer_workers", None),
        "max_scanner_workers": getattr(args, "max_scanner_workers", None),
        "fetch_retries": getattr(args, "fetch_retries", None),
        "timeout": getattr(args, "timeout", None),
    }
    return load_config(args.config, overrides)


def load_manifest(path: Path) -> Manifest:
    """
    Read a manifest JSON file.

    Raises:
        StrataException: If the file is missing or malformed
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        raise StrataException(f"Manifest file not found: {path}")
    except (OSError, json.JSONDecodeError) as e:
        raise StrataException(f"Cannot read manifest {path}: {e}") from e

    if not isinstance(data, dict):
        raise StrataException(f"Invalid manifest format: {path}")
    try:
        manifest = Manifest.from_dict(data)
    except (KeyError, TypeError, ValueError) as e:
        raise StrataException(f"Invalid manifest {path}: {e}") from e
    if not manifest.manifest_id:
        raise StrataException(f"Manifest {path} has no manifest_id")
    return manifest


def select_fetcher(manifest: Manifest, blob_dir: Optional[Path], airgap: bool) -> Fetcher:
    """Choose the fetcher able to retrieve the manifest's layers."""
    remote = any(layer.uri.startswith(("http://", "https://")) for layer in manifest.layers)
    if remote and blob_dir is None:
        return HTTPFetcher(airgap=airgap)
    return LocalFetcher(blob_dir=blob_dir, airgap=airgap)


def write_report(report_dict: dict, output: Optional[Path]) -> None:
    content = json.dumps(report_dict, indent=2, sort_keys=True)
    if output is None:
        sys.stdout.write(content + "\n")
        return
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(content + "\n")
    logger.info(f"Report written to {output}")


def main_index(argv: Optional[list[str]] = None) -> int:
    """Index command entry point."""
    args = parse_index_args(argv)
    setup_logging(args.verbose)

    try:
        config = build_config(args)
        manifest = load_manifest(args.manifest)
        store = FileStore(args.store_dir, cache_enabled=not args.no_cache)
        if args.clear_cache:
            store.findings.clear()

        fetcher = select_fetcher(manifest, args.blob_dir, config.airgap)
        try:
            controller = IndexController(config, fetcher, store)
            log_info_header(f"Indexing {manifest.manifest_id}")
            report = controller.index_manifest(
                manifest, ScanContext(timeout=config.timeout), force=args.no_cache
            )
        finally:
            fetcher.close()

        logger.info(store.findings.summary())
        if report.degraded:
            log_warning_section(
                "Partial Report",
                [
                    f"layer {layer.ordinal}: {failure.scanner}: {failure.error}"
                    for layer in report.layers
                    for failure in layer.failures
                ],
                logger,
            )
        write_report(report.to_dict(), args.output)
    except StrataException as e:
        log_error_section("Indexing Failed", [str(e)], logger)
        return 1
    return 0


def main_scanners(argv: Optional[list[str]] = None) -> int:
    """Scanners command entry point."""
    args = parse_scanners_args(argv)
    setup_logging(args.verbose)

    try:
        config = build_config(args)
    except StrataException as e:
        log_error_section("Invalid Configuration", [str(e)], logger)
        return 1

    for ecosystem in config.ecosystems:
        sys.stdout.write(f"{ecosystem.name}:\n")
        active = set(config.active_identities())
        for identity in ecosystem.identities():
            marker = "" if identity in active else " (disabled: airgap)"
            sys.stdout.write(f"  {identity}{marker}\n")
    return 0


def main_cache(argv: Optional[list[str]] = None) -> int:
    """Cache command entry point."""
    args = parse_cache_args(argv)
    setup_logging(args.verbose)

    try:
        store = FileStore(args.store_dir)
        if args.action == "clear":
            deleted = store.findings.clear()
            if args.reports:
                deleted += store.clear_reports()
            sys.stdout.write(f"Deleted {deleted} entries\n")
            return 0

        if not args.scanner:
            log_error_section("Missing Argument", ["invalidate requires --scanner NAME"], logger)
            return 1
        config = build_config(args)
        identities = [
            s.identity() for s in config.active_scanners(airgap=False) if s.name() == args.scanner
        ]
        if not identities:
            log_error_section("Unknown Scanner", [f"No configured scanner named {args.scanner}"], logger)
            return 1
        deleted = sum(store.invalidate_findings(identity) for identity in identities)
        sys.stdout.write(f"Invalidated {deleted} entries\n")
    except StrataException as e:
        log_error_section("Cache Operation Failed", [str(e)], logger)
        return 1
    return 0


def main_dispatch(argv: Optional[list[str]] = None) -> int:
    """Main entry point with subcommand routing."""
    argv = list(sys.argv[1:] if argv is None else argv)
    if argv and argv[0] == "scanners":
        return main_scanners(argv[1:])
    if argv and argv[0] == "cache":
        return main_cache(argv[1:])
    if argv and argv[0] == "index":
        argv.pop(0)
    return main_index(argv)


def main():
    sys.exit(main_dispatch())


if __name__ == "__main__":
    main()
