"""Logging configuration for the restore agent using stdlib logging with rich."""

import logging
from collections.abc import MutableMapping
from typing import Any

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

# Cloud SDK loggers that emit a record per HTTP request at DEBUG (azure even at INFO)
SDK_LOGGERS = ("botocore", "boto3", "s3transfer", "urllib3", "google", "azure")

# Keyword arguments the stdlib logging methods accept themselves
_STDLIB_KWARGS = frozenset({"exc_info", "stack_info", "stacklevel", "extra"})


class StructuredLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that renders keyword arguments as a context suffix.

    Callers pass context as keywords instead of formatting it into the
    message, so every record about an archive or path reads the same way.

    Example:
        logger = get_logger(__name__)
        logger.info("Restoring", key="2024-01-02-03-04-05/abc.tar.gz", ordinal=2)
        # Output: Restoring [key=2024-01-02-03-04-05/abc.tar.gz ordinal=2]
    """

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        """Move keyword context out of kwargs and into the message.

        Args:
            msg: Log message
            kwargs: Keyword arguments including context data

        Returns:
            Tuple of (formatted_message, cleaned_kwargs)
        """
        context = {k: v for k, v in kwargs.items() if k not in _STDLIB_KWARGS}
        clean_kwargs = {k: v for k, v in kwargs.items() if k in _STDLIB_KWARGS}

        if context:
            # Paths and keys may hold [brackets] that rich would parse as markup
            context_str = " ".join(f"{k}={escape(str(v))}" for k, v in sorted(context.items()))
            msg = f"{msg} [dim][[/dim]{context_str}[dim]][/dim]"

        return msg, clean_kwargs


def _set_sdk_log_level(trace: bool) -> None:
    # Request-level SDK output is only useful when tracing a bucket problem
    level = logging.DEBUG if trace else logging.WARNING
    for name in SDK_LOGGERS:
        logging.getLogger(name).setLevel(level)


def setup_logging(verbose: bool = False, trace: bool = False) -> None:
    """Configure logging with rich integration.

    Records go to stderr. Colour is only used when stderr is a terminal, so
    pod logs collected by the cluster stay plain text.

    Args:
        verbose: Enable debug logging for the agent
        trace: Also enable debug logging of the cloud SDKs, source locations
            and tracebacks with locals
    """
    log_level = logging.DEBUG if verbose or trace else logging.INFO

    # No force_terminal: the agent normally runs as an init container
    console = Console(stderr=True)

    handler = RichHandler(
        console=console,
        show_time=True,
        show_path=trace,  # Module and line number only when tracing
        markup=True,  # Context suffix uses [dim] markup
        rich_tracebacks=True,
        tracebacks_show_locals=trace,  # Locals may include secret data
        log_time_format="[%Y-%m-%d %H:%M:%S]",
    )

    # Replace whatever handlers a previous call (or a library) installed
    logging.basicConfig(
        level=log_level,
        format="%(message)s",
        handlers=[handler],
        force=True,
    )

    _set_sdk_log_level(trace)


def get_logger(name: str = "") -> StructuredLoggerAdapter:
    """Get a structured logger instance.

    Args:
        name: Logger name (typically __name__ of the module)

    Returns:
        Logger adapter accepting context data as keyword arguments

    Example:
        logger = get_logger(__name__)
        logger.info("Removed stale restore lock", path="/data/.restore_lock.r1.2")
    """
    return StructuredLoggerAdapter(logging.getLogger(name or "restore_agent"), {})
