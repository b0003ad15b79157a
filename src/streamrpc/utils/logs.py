from __future__ import annotations

import logging
import os
import sys

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str | int | None = None) -> None:
    """Send log records to stderr so stdout carries only command output.

    Configures the root logger once; later calls leave existing handlers alone.
    ``level`` falls back to STREAMRPC_LOG_LEVEL, then INFO.
    """
    if logging.getLogger().handlers:
        return
    logging.basicConfig(
        stream=sys.stderr,
        level=level or os.environ.get("STREAMRPC_LOG_LEVEL", "INFO").upper(),
        format=LOG_FORMAT,
    )
