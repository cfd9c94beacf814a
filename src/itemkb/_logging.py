"""Logging setup for itemkb.

Modules log through the stdlib:

    import logging
    log = logging.getLogger(__name__)

Enrichment is designed to degrade quietly, so most of what this package logs
is WARNING-level noise about fallbacks (LLM unavailable, unparseable output,
timeouts). Set ITEMKB_LOG_LEVEL=DEBUG to also see vocabulary races and
per-candidate similarity details.
"""

import logging
import os
import sys

PACKAGE_LOGGER = "itemkb"
LOG_FORMAT = "[%(levelname)s] %(name)s: %(message)s"


def _resolve_level(level: str | int | None) -> int:
    if isinstance(level, int):
        return level
    level_name = (level or os.environ.get("ITEMKB_LOG_LEVEL", "INFO")).upper()
    return getattr(logging, level_name, logging.INFO)


def configure_logging(level: str | int | None = None, quiet: bool = False) -> None:
    """Attach a stderr handler to the ``itemkb`` logger.

    Safe to call more than once: if the package logger already has a handler
    only its level is adjusted.

    Args:
        level: Explicit level name or number. Defaults to ITEMKB_LOG_LEVEL.
        quiet: Only show errors (used by ``ikb --quiet``).
    """
    resolved = logging.ERROR if quiet else _resolve_level(level)
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.setLevel(resolved)

    if package_logger.handlers:
        for handler in package_logger.handlers:
            handler.setLevel(resolved)
        return

    # stdout belongs to the MCP stdio transport, so everything goes to stderr
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(resolved)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT))
    package_logger.addHandler(handler)
    package_logger.propagate = False
