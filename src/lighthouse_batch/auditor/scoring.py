"""Lighthouse CLI runner.

Runs ``lighthouse`` as an asyncio subprocess against a browser that is
already listening on a DevTools port, and parses the JSON report (the
Lighthouse Result, "LHR") it writes to stdout.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any

from lighthouse_batch.auditor.config import DEFAULT_LIGHTHOUSE_BIN, DEFAULT_OUTPUT_FORMAT
from lighthouse_batch.core.exceptions import AuditAttemptFailed

logger = logging.getLogger(__name__)

#: Characters of stderr kept in error messages.
_STDERR_TAIL: int = 500


@dataclass
class LighthouseResult:
    """The parts of a Lighthouse Result the auditor consumes.

    Attributes:
        final_url: URL Lighthouse ended up auditing, after redirects.
        categories: Raw ``categories`` mapping, e.g.
            ``{"seo": {"score": 0.92, ...}, ...}``.
    """

    final_url: str
    categories: dict[str, Any] = field(default_factory=dict)


def build_lighthouse_command(
    url: str,
    *,
    port: int,
    output_format: str = DEFAULT_OUTPUT_FORMAT,
    lighthouse_bin: str = DEFAULT_LIGHTHOUSE_BIN,
) -> list[str]:
    """Return the argv for one Lighthouse run against ``port``."""
    return [
        lighthouse_bin,
        url,
        f"--port={port}",
        f"--output={output_format}",
        "--output-path=stdout",
        "--quiet",
    ]


def parse_lighthouse_report(raw: str | bytes, url: str) -> LighthouseResult:
    """Parse Lighthouse's JSON output into a :class:`LighthouseResult`.

    ``finalUrl`` was renamed ``finalDisplayedUrl`` in Lighthouse 10; both are
    accepted, falling back to ``requestedUrl``.

    Args:
        raw: The JSON report text.
        url: Requested URL, for error context.

    Raises:
        AuditAttemptFailed: If the report is not JSON or lacks a URL or a
            ``categories`` mapping.
    """
    try:
        lhr = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise AuditAttemptFailed(f"unparsable Lighthouse output: {exc}", url=url) from exc

    if not isinstance(lhr, dict):
        raise AuditAttemptFailed("Lighthouse output is not a JSON object", url=url)

    # Older Lighthouse releases always emit runtimeError, with NO_ERROR on success.
    runtime_error = lhr.get("runtimeError") or {}
    if isinstance(runtime_error, dict) and runtime_error.get("code") not in (None, "NO_ERROR"):
        raise AuditAttemptFailed(
            f"Lighthouse runtime error: {runtime_error['code']}", url=url
        )

    final_url = lhr.get("finalUrl") or lhr.get("finalDisplayedUrl") or lhr.get("requestedUrl")
    if not final_url:
        raise AuditAttemptFailed("Lighthouse report has no final URL", url=url)

    categories = lhr.get("categories")
    if not isinstance(categories, dict):
        raise AuditAttemptFailed("Lighthouse report has no categories", url=url)

    return LighthouseResult(final_url=str(final_url), categories=categories)


async def run_lighthouse(
    url: str,
    *,
    port: int,
    output_format: str = DEFAULT_OUTPUT_FORMAT,
    lighthouse_bin: str = DEFAULT_LIGHTHOUSE_BIN,
    timeout: float | None = None,
) -> LighthouseResult:
    """Audit ``url`` with the Lighthouse CLI using the browser on ``port``.

    Args:
        url: Page to audit.
        port: DevTools port of a running Chromium.
        output_format: Lighthouse ``--output`` value.  Must be ``"json"`` for
            the result to be parsed.
        lighthouse_bin: Lighthouse executable.
        timeout: Seconds to wait for Lighthouse before killing it.

    Returns:
        A :class:`LighthouseResult`.

    Raises:
        AuditAttemptFailed: If Lighthouse cannot be started, times out, exits
            non-zero or produces an unusable report.
    """
    cmd = build_lighthouse_command(
        url, port=port, output_format=output_format, lighthouse_bin=lighthouse_bin
    )
    logger.debug("scoring: running %s", " ".join(cmd))

    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        raise AuditAttemptFailed(
            f"could not run '{lighthouse_bin}': {exc}. "
            "Install it with: npm install -g lighthouse",
            url=url,
        ) from exc

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise AuditAttemptFailed(f"Lighthouse timed out after {timeout}s", url=url) from exc
    finally:
        # Reap on timeout and cancellation alike.
        if proc.returncode is None:
            proc.kill()
            await proc.wait()

    if proc.returncode != 0:
        tail = stderr.decode("utf-8", errors="replace").strip()[-_STDERR_TAIL:]
        raise AuditAttemptFailed(
            f"Lighthouse exited with status {proc.returncode}: {tail}", url=url
        )

    return parse_lighthouse_report(stdout, url)
