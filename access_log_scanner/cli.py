#!/usr/bin/env python3
"""
access-log-scanner command line driver.

Loads the YAML configuration, then runs one scan pass per website, either
once (--once) or every `defaults.interval_seconds`. Target state is kept as
JSON files under --state-dir so restarts resume where the last pass stopped.

License: GNU GPL v3 or later
"""

import argparse
import logging
import signal
import sys
import threading
import typing

from access_log_scanner.config import build_sources, load_config
from access_log_scanner.errors import ConfigError
from access_log_scanner.logsetup import setup_logging
from access_log_scanner.scanner import Scanner, ScanResult
from access_log_scanner.sources import LogSource
from access_log_scanner.state import JsonStateStore

logger = logging.getLogger(__name__)


def parse_args(argv: typing.Optional[list] = None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Returns:
        argparse.Namespace: Parsed arguments.
    """
    parser = argparse.ArgumentParser(description="Incremental access log scanner")
    parser.add_argument('--config', default='config.yaml', help='Path to YAML configuration file')
    parser.add_argument('--state-dir', default='state', help='Directory for target state files')
    parser.add_argument('--website', action='append', help='Only scan this website id (repeatable)')
    parser.add_argument('--once', action='store_true', help='Run a single pass and exit')
    parser.add_argument('--debug', action='store_true', help='Enable debug logging')
    return parser.parse_args(argv)


def install_signal_handlers(cancel: threading.Event) -> None:
    """Set the cancel event on SIGINT/SIGTERM so the current pass stops cleanly."""
    def handle_signal(signum, frame):
        logger.info("Received signal %s, shutting down gracefully...", signum)
        cancel.set()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)


def run_pass(
    sources: typing.Dict[str, typing.List[LogSource]],
    scanner: Scanner,
    cancel: threading.Event,
) -> typing.List[ScanResult]:
    """
    Scan every selected website once.

    Args:
        sources (dict): Source backends per website id, in scan order.
        scanner (Scanner): Scanner bound to the state store.
        cancel (threading.Event): Stops the pass when set.

    Returns:
        list: One ScanResult per website scanned.
    """
    results = []
    for website_id, website_sources in sources.items():
        if cancel.is_set():
            break
        result = scanner.scan_website(website_id, website_sources, cancel)
        results.append(result)
        if result.success:
            logger.info(
                "Scan summary for website '%s': %d targets, %d records.",
                website_id, result.targets_scanned, result.entries,
            )
        else:
            logger.warning(
                "Scan summary for website '%s': %d targets, %d records, %d failures. Last error: %s",
                website_id, result.targets_scanned, result.entries, len(result.failures), result.error,
            )
    return results


def close_sources(sources: typing.Dict[str, typing.List[LogSource]]) -> None:
    for website_sources in sources.values():
        for src in website_sources:
            try:
                src.close()
            except Exception as e:
                logger.debug("Error closing source %r: %s", src, e)


def main(argv: typing.Optional[list] = None) -> int:
    """
    Main entry point for the scanner.

    Returns:
        int: 0 on success, 1 if a --once pass had failures, 2 on configuration errors.
    """
    args = parse_args(argv)
    setup_logging(debug=args.debug)
    logger.info("Access log scanner started with config: %s, state_dir: %s", args.config, args.state_dir)
    try:
        config = load_config(args.config)
    except (OSError, ConfigError) as e:
        logger.error("Cannot load configuration %s: %s", args.config, e)
        return 2

    configured = [w['id'] for w in config['websites']]
    website_ids = args.website or configured
    unknown = sorted(set(website_ids) - set(configured))
    if unknown:
        logger.error("Unknown website ids: %s", ', '.join(unknown))
        return 2

    defaults = config['defaults']
    scanner = Scanner(JsonStateStore(args.state_dir), recent_window_days=defaults['recent_window_days'])
    cancel = threading.Event()
    install_signal_handlers(cancel)

    # Clients and sessions live for the whole run and are reused by every pass.
    sources = {website_id: build_sources(config, website_id) for website_id in website_ids}
    try:
        while True:
            results = run_pass(sources, scanner, cancel)
            if args.once:
                failed = [r for r in results if not r.success]
                logger.info("Access log scanner finished.")
                return 1 if failed else 0
            if cancel.wait(defaults['interval_seconds']):
                logger.info("Access log scanner finished.")
                return 0
    finally:
        close_sources(sources)


if __name__ == '__main__':
    sys.exit(main())
