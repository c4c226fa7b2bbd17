"""Structured logging for batch runs.

``configure_logging()`` is called once by the CLI.  Library code logs through
either API and both end up on the same handler:

- stdlib ``logging.getLogger(__name__)`` for short operational messages
  (``"sink: wrote 3 record(s) to output/results.json"``);
- ``structlog.get_logger(__name__)`` for batch events with key/value fields
  (``url_audited``, ``batch_completed``).

While a URL is being audited the runner binds it with
``structlog.contextvars.bound_contextvars(url=...)``, so every record emitted
during that audit carries a ``url`` field, whichever API emitted it.

Records go to stderr; stdout is reserved for the printed report.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Mapping
from typing import Any, TextIO

import structlog
from structlog.types import EventDict, WrappedLogger

#: Lower-cased key fragments whose values never reach a renderer.  Covers the
#: remote sink bearer token (``post_token``) and HTTP ``Authorization`` headers.
_SECRET_KEY_FRAGMENTS: tuple[str, ...] = ("token", "authorization", "password", "secret")

#: Libraries that log every request or event-loop detail at INFO/DEBUG.
_NOISY_LOGGERS: tuple[str, ...] = ("httpx", "httpcore", "asyncio")

_REDACTED = "[REDACTED]"


def _is_secret_key(key: object) -> bool:
    lowered = str(key).lower()
    return any(fragment in lowered for fragment in _SECRET_KEY_FRAGMENTS)


def _redacted_copy(mapping: Mapping[Any, Any]) -> dict[Any, Any]:
    """Return a copy of ``mapping`` with secret values masked, recursively.

    The caller's mapping (for example a headers dict or a dumped
    ``BatchOptions``) is never modified.
    """
    clean: dict[Any, Any] = {}
    for key, value in mapping.items():
        if _is_secret_key(key):
            clean[key] = _REDACTED
        elif isinstance(value, Mapping):
            clean[key] = _redacted_copy(value)
        else:
            clean[key] = value
    return clean


def _redact_secrets(
    logger: WrappedLogger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: EventDict,
) -> EventDict:
    """structlog processor masking secret-bearing keys at any depth."""
    return _redacted_copy(event_dict)


def configure_logging(log_level: str = "INFO", *, stream: TextIO | None = None) -> None:
    """Configure structlog and route stdlib logging through it.

    Any level other than ``DEBUG`` renders one JSON object per line, suitable
    for collecting the logs of unattended batch runs.  ``DEBUG`` switches to
    structlog's ``ConsoleRenderer`` and also lets the noisy libraries through.

    Calling it again replaces the handler rather than adding a second one.

    Args:
        log_level: Level name, case-insensitive.  Unknown names fall back to
            ``INFO``.
        stream: Destination for rendered records.  Defaults to ``sys.stderr``
            as it is at call time.
    """
    level_name = log_level.upper()
    numeric_level = getattr(logging, level_name, logging.INFO)
    is_debug = level_name == "DEBUG"

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        _redact_secrets,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    renderer: structlog.types.Processor
    if is_debug:
        renderer = structlog.dev.ConsoleRenderer(colors=True)
    else:
        renderer = structlog.processors.JSONRenderer()

    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(numeric_level)

    noisy_level = logging.DEBUG if is_debug else logging.WARNING
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(noisy_level)

    structlog.configure(
        processors=[*shared_processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
