"""Application settings loaded from environment variables.

Uses Pydantic Settings v2 for validated, type-safe configuration.  Every
variable is prefixed with ``LIGHTHOUSE_BATCH_`` (``LIGHTHOUSE_BATCH_RETRIES=5``)
and may also live in a ``.env`` file in the working directory.  Command-line
flags override whatever is loaded here.

Usage::

    from lighthouse_batch.config.settings import get_settings

    settings = get_settings()
    retries = settings.retries
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from lighthouse_batch.auditor.config import (
    DEFAULT_ATTEMPT_TIMEOUT,
    DEFAULT_CHROME_FLAGS,
    DEFAULT_LIGHTHOUSE_BIN,
    DEFAULT_OUTPUT_FILE,
    DEFAULT_POST_TIMEOUT,
    DEFAULT_RETRIES,
    DEFAULT_RETRY_DELAY_MS,
)


class Settings(BaseSettings):
    """Runtime configuration backed by environment variables and an optional .env file.

    No field is required; the defaults reproduce a plain local run that
    writes ``output/results.json``.
    """

    model_config = SettingsConfigDict(
        env_prefix="LIGHTHOUSE_BATCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Retry policy
    # ------------------------------------------------------------------

    retries: int = Field(default=DEFAULT_RETRIES, ge=0)
    """Retries per URL after the initial attempt (total attempts = retries + 1)."""

    retry_delay_ms: int = Field(default=DEFAULT_RETRY_DELAY_MS, ge=0)
    """Fixed delay between attempts, in milliseconds."""

    attempt_timeout: Optional[float] = Field(default=DEFAULT_ATTEMPT_TIMEOUT, gt=0)
    """Upper bound in seconds for one attempt (browser start + Lighthouse run).
    ``None`` disables the timeout."""

    # ------------------------------------------------------------------
    # Batch behaviour
    # ------------------------------------------------------------------

    concurrency: int = Field(default=1, ge=1)
    """Number of URLs audited at the same time.  Each in-flight URL owns its
    own Chromium process, so keep this small."""

    # ------------------------------------------------------------------
    # Collaborators
    # ------------------------------------------------------------------

    lighthouse_bin: str = DEFAULT_LIGHTHOUSE_BIN
    """Lighthouse CLI executable (``npm install -g lighthouse``)."""

    chrome_flags: list[str] = Field(default_factory=lambda: list(DEFAULT_CHROME_FLAGS))
    """Extra command-line flags passed to Chromium."""

    # ------------------------------------------------------------------
    # Result sink
    # ------------------------------------------------------------------

    output_file: str = DEFAULT_OUTPUT_FILE
    """Path of the JSON results file.  Overwritten on every run."""

    post_url: Optional[str] = None
    """When set, the report is also POSTed to this endpoint."""

    post_token: Optional[str] = None
    """Bearer token sent with the remote sink request, if any."""

    post_timeout: float = Field(default=DEFAULT_POST_TIMEOUT, gt=0)
    """HTTP timeout in seconds for the remote sink request."""

    # ------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------

    log_level: str = "INFO"
    """Logging verbosity.  One of: DEBUG, INFO, WARNING, ERROR, CRITICAL."""


@lru_cache
def get_settings() -> Settings:
    """Return the cached settings singleton.

    Pydantic Settings reads the environment and .env file once per process.
    In tests, call ``get_settings.cache_clear()`` after patching environment
    variables.

    Returns:
        Settings: The validated settings object.
    """
    return Settings()
