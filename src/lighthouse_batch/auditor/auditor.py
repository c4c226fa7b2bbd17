"""Single-URL Lighthouse audit.

One *attempt* launches a fresh headless browser, runs Lighthouse against it,
releases the browser and turns the category scores into a
:class:`~lighthouse_batch.auditor.models.ScoreRecord`.  :func:`audit_url`
wraps attempts in :func:`~lighthouse_batch.auditor.retry.retry_async`, so
every retry gets its own browser session.

The elapsed time of a record covers browser launch through the end of the
Lighthouse run.  Browser teardown is not counted.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Mapping, Sequence
from typing import Any

from pydantic import ValidationError

from lighthouse_batch.auditor.browser import BrowserSession, launch_browser
from lighthouse_batch.auditor.config import (
    CATEGORIES,
    DEFAULT_CHROME_FLAGS,
    DEFAULT_OUTPUT_FORMAT,
    DEFAULT_RETRIES,
    DEFAULT_RETRY_DELAY_MS,
    SCORE_SCALE,
)
from lighthouse_batch.auditor.models import ScoreRecord
from lighthouse_batch.auditor.retry import retry_async
from lighthouse_batch.auditor.scoring import LighthouseResult, run_lighthouse
from lighthouse_batch.core.exceptions import AuditAttemptFailed

logger = logging.getLogger(__name__)

Launcher = Callable[[Sequence[str]], Awaitable[BrowserSession]]
Scorer = Callable[..., Awaitable[LighthouseResult]]


# ---------------------------------------------------------------------------
# Score extraction
# ---------------------------------------------------------------------------


def extract_scores(categories: Mapping[str, Any], url: str) -> dict[str, float]:
    """Scale Lighthouse's 0-1 category scores to 0-100.

    Lighthouse reports ``"score": null`` for a category whose audits errored;
    that, like a missing category, fails the attempt.  No partial records
    are produced.

    Args:
        categories: The ``categories`` mapping from a Lighthouse Result.
        url: Audited URL, for error context.

    Returns:
        Category name to scaled score, for every name in
        :data:`~lighthouse_batch.auditor.config.CATEGORIES`.

    Raises:
        AuditAttemptFailed: If a category is missing or its score is absent,
            non-numeric or outside ``[0, 1]``.
    """
    scores: dict[str, float] = {}
    for name in CATEGORIES:
        category = categories.get(name)
        if not isinstance(category, Mapping):
            raise AuditAttemptFailed(f"category '{name}' missing from report", url=url)
        raw = category.get("score")
        if isinstance(raw, bool) or not isinstance(raw, (int, float)):
            raise AuditAttemptFailed(
                f"category '{name}' has no numeric score (got {raw!r})", url=url
            )
        if not 0 <= raw <= 1:
            raise AuditAttemptFailed(
                f"category '{name}' score out of range: {raw}", url=url
            )
        scores[name] = raw * SCORE_SCALE
    return scores


# ---------------------------------------------------------------------------
# One attempt
# ---------------------------------------------------------------------------


async def _release(session: BrowserSession, url: str) -> None:
    """Terminate ``session``; a teardown failure is logged, never raised."""
    try:
        await session.terminate()
    except Exception as exc:  # noqa: BLE001
        logger.warning("auditor: browser teardown failed for %s: %s", url, exc)


async def audit_url_once(
    url: str,
    *,
    launcher: Launcher = launch_browser,
    scorer: Scorer = run_lighthouse,
    chrome_flags: Sequence[str] = DEFAULT_CHROME_FLAGS,
    clock: Callable[[], float] = time.monotonic,
) -> ScoreRecord:
    """Run one audit attempt for ``url``.

    The browser session is released on every exit path, including a failed
    or cancelled Lighthouse run.

    Args:
        url: Page to audit.
        launcher: Starts a browser session from a list of Chromium flags.
        scorer: Runs Lighthouse; called as
            ``scorer(url, port=..., output_format="json")``.
        chrome_flags: Flags for the browser.
        clock: Monotonic clock in seconds; injectable for tests.

    Returns:
        The :class:`ScoreRecord` for this attempt.

    Raises:
        AuditAttemptFailed: On any browser, Lighthouse or data failure.
    """
    started = clock()
    session = await launcher(chrome_flags)
    try:
        result = await scorer(
            url,
            port=session.connection_port,
            output_format=DEFAULT_OUTPUT_FORMAT,
        )
        elapsed = clock() - started
    finally:
        await _release(session, url)

    scores = extract_scores(result.categories, url)
    try:
        return ScoreRecord(url=result.final_url, elapsed_seconds=elapsed, scores=scores)
    except ValidationError as exc:
        raise AuditAttemptFailed(f"invalid score record: {exc}", url=url) from exc


# ---------------------------------------------------------------------------
# Retried audit
# ---------------------------------------------------------------------------


async def audit_url(
    url: str,
    max_retries: int = DEFAULT_RETRIES,
    retry_delay_ms: int = DEFAULT_RETRY_DELAY_MS,
    *,
    attempt_timeout: float | None = None,
    launcher: Launcher = launch_browser,
    scorer: Scorer = run_lighthouse,
    chrome_flags: Sequence[str] = DEFAULT_CHROME_FLAGS,
    sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
) -> ScoreRecord:
    """Audit ``url``, retrying failed attempts.

    Args:
        url: Page to audit.
        max_retries: Retries after the first attempt.
        retry_delay_ms: Fixed delay between attempts, in milliseconds.
        attempt_timeout: Seconds allowed for one attempt; ``None`` for no
            limit.  A timed-out attempt counts as a failed attempt.
        launcher: See :func:`audit_url_once`.
        scorer: See :func:`audit_url_once`.
        chrome_flags: Flags for each browser session.
        sleep: Sleep used between attempts; injectable for tests.

    Returns:
        The record from the first successful attempt.

    Raises:
        RetriesExhausted: If all ``max_retries + 1`` attempts failed.
    """

    async def attempt() -> ScoreRecord:
        coro = audit_url_once(
            url, launcher=launcher, scorer=scorer, chrome_flags=chrome_flags
        )
        if attempt_timeout is None:
            return await coro
        try:
            return await asyncio.wait_for(coro, timeout=attempt_timeout)
        except asyncio.TimeoutError as exc:
            raise AuditAttemptFailed(
                f"attempt timed out after {attempt_timeout}s", url=url
            ) from exc

    return await retry_async(attempt, max_retries, retry_delay_ms, label=url, sleep=sleep)
