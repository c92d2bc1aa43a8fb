"""
Logging setup shared by the CLI and tests.
"""

import logging
import sys
import time


class ISO8601Formatter(logging.Formatter):
    """
    Logging formatter producing ISO8601 timestamps with milliseconds and timezone.

    Returns timestamps in the format: YYYY-MM-DDTHH:MM:SS.mmm+ZZZZ
    """
    def formatTime(self, record, datefmt=None):
        t = time.localtime(record.created)
        s = time.strftime('%Y-%m-%dT%H:%M:%S', t)
        ms = int(record.msecs)
        tz = time.strftime('%z', t)
        return f"{s}.{ms:03d}{tz}"


def setup_logging(debug: bool = False) -> None:
    """
    Configure logging to emit records only to stdout.

    Chatty third-party loggers (boto, paramiko, urllib3) are held at WARNING
    unless debug is on.

    Args:
        debug (bool): Enable debug-level logging if True.
    """
    level = logging.DEBUG if debug else logging.INFO
    logger = logging.getLogger()
    logger.handlers.clear()
    logger.setLevel(level)
    formatter = ISO8601Formatter('%(asctime)s %(levelname)s %(message)s')
    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(formatter)
    console.setLevel(level)
    logger.addHandler(console)
    for noisy in ('botocore', 'boto3', 's3transfer', 'paramiko', 'urllib3'):
        logging.getLogger(noisy).setLevel(logging.DEBUG if debug else logging.WARNING)
