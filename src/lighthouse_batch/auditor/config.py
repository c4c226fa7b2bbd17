"""Constants and tuning parameters for the Lighthouse batch auditor."""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------

#: Lighthouse categories every score record must carry, in report order.
CATEGORIES: tuple[str, ...] = (
    "accessibility",
    "best-practices",
    "performance",
    "pwa",
    "seo",
)

#: Multiplier applied to Lighthouse's 0-1 category scores.
SCORE_SCALE: int = 100

# ---------------------------------------------------------------------------
# Retry policy
# ---------------------------------------------------------------------------

#: Retries per URL after the first attempt.
DEFAULT_RETRIES: int = 3

#: Fixed pause between attempts (milliseconds).
DEFAULT_RETRY_DELAY_MS: int = 1000

#: Per-attempt timeout in seconds (browser launch + Lighthouse run).
DEFAULT_ATTEMPT_TIMEOUT: float = 120.0

# ---------------------------------------------------------------------------
# Browser
# ---------------------------------------------------------------------------

#: Flags passed to every Chromium instance.
DEFAULT_CHROME_FLAGS: tuple[str, ...] = ("--headless",)

#: Interface Chromium's DevTools endpoint listens on.
DEBUGGING_HOST: str = "127.0.0.1"

# ---------------------------------------------------------------------------
# Lighthouse
# ---------------------------------------------------------------------------

#: Lighthouse CLI executable.
DEFAULT_LIGHTHOUSE_BIN: str = "lighthouse"

#: Report format requested from Lighthouse.  Only JSON can be parsed back.
DEFAULT_OUTPUT_FORMAT: str = "json"

# ---------------------------------------------------------------------------
# Result sink
# ---------------------------------------------------------------------------

#: Results file written when no ``--output`` is given.
DEFAULT_OUTPUT_FILE: str = "output/results.json"

#: HTTP timeout (seconds) for the remote sink POST.
DEFAULT_POST_TIMEOUT: float = 30.0

#: User-agent string sent with the remote sink request.
USER_AGENT: str = "lighthouse-batch/1.0"

# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

#: URL substituted by ``--example``.
EXAMPLE_URL: str = "https://example.com"
