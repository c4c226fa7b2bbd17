"""Application-wide exception hierarchy for lighthouse-batch.

All custom exceptions subclass ``LighthouseBatchError``, so a caller can catch
the whole hierarchy with a single ``except`` clause when needed.

Hierarchy::

    LighthouseBatchError
    ├── AuditAttemptFailed          (url)
    │   └── BrowserLaunchError
    ├── RetriesExhausted            (retries, label)
    ├── PersistenceError            (destination)
    └── UsageError

Containment:
    ``AuditAttemptFailed`` stays inside the retry executor, ``RetriesExhausted``
    stays inside the batch runner, and ``PersistenceError`` stays at the result
    sink boundary.  Only ``UsageError`` reaches the command line.
"""

from __future__ import annotations


class LighthouseBatchError(Exception):
    """Base class for all lighthouse-batch exceptions."""


# ---------------------------------------------------------------------------
# Audit exceptions
# ---------------------------------------------------------------------------


class AuditAttemptFailed(LighthouseBatchError):
    """Raised when a single audit attempt fails.

    Covers browser start-up, the Lighthouse run itself and malformed or
    incomplete category data.  Always retryable.

    Args:
        message: Human-readable description of the failure.
        url: The URL that was being audited.
    """

    def __init__(self, message: str, url: str | None = None) -> None:
        super().__init__(message)
        self.url = url


class BrowserLaunchError(AuditAttemptFailed):
    """Raised when a headless browser session cannot be started."""


class RetriesExhausted(LighthouseBatchError):
    """Raised when every attempt of a retried operation failed.

    The last underlying error is chained as ``__cause__``.

    Args:
        retries: The configured number of retries (attempts made is
            ``retries + 1``).
        label: Optional name of the operation (usually the URL).
    """

    def __init__(self, retries: int, label: str | None = None) -> None:
        msg = f"Failed after {retries} retries"
        if label:
            msg += f" for '{label}'"
        super().__init__(msg)
        self.retries = retries
        self.label = label


# ---------------------------------------------------------------------------
# Sink / usage exceptions
# ---------------------------------------------------------------------------


class PersistenceError(LighthouseBatchError):
    """Raised when a report cannot be written to disk or delivered remotely.

    Args:
        message: Description of the failure.
        destination: File path or endpoint URL that failed.
    """

    def __init__(self, message: str, destination: str | None = None) -> None:
        super().__init__(message)
        self.destination = destination


class UsageError(LighthouseBatchError):
    """Raised by the command line when its input is unusable (e.g. no URLs)."""
