"""Batch runner: audit a list of URLs and persist the report.

URLs are audited one after another by default, so only one Chromium process
exists at a time.  With ``concurrency > 1`` a bounded pool of URLs runs at
once; every URL still gets its own browser per attempt and its own retry
budget, and the report keeps input order.

A URL that exhausts its retries is logged and left out of the report; it never
aborts the batch.  A failure in a sink or in the ``on_record`` callback is
logged and never changes the returned report.
"""

from __future__ import annotations

import asyncio
import functools
import time
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, Optional

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, Field

from lighthouse_batch.auditor.auditor import Launcher, Scorer, audit_url
from lighthouse_batch.auditor.browser import launch_browser
from lighthouse_batch.auditor.config import (
    DEFAULT_ATTEMPT_TIMEOUT,
    DEFAULT_CHROME_FLAGS,
    DEFAULT_LIGHTHOUSE_BIN,
    DEFAULT_OUTPUT_FILE,
    DEFAULT_POST_TIMEOUT,
    DEFAULT_RETRIES,
    DEFAULT_RETRY_DELAY_MS,
)
from lighthouse_batch.auditor.models import BatchReport, ScoreRecord, UrlFailure
from lighthouse_batch.auditor.scoring import run_lighthouse
from lighthouse_batch.auditor.sink import persist_report, post_report
from lighthouse_batch.config.settings import Settings
from lighthouse_batch.core.exceptions import PersistenceError, RetriesExhausted

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Options
# ---------------------------------------------------------------------------


class BatchOptions(BaseModel):
    """Explicit configuration for one :func:`run_batch` call.

    Attributes:
        retries: Retries per URL after the first attempt.
        retry_delay_ms: Fixed delay between attempts, in milliseconds.
        output_file: Results file.  ``None`` skips the file sink.
        post_url: Remote sink endpoint.  ``None`` skips the remote sink.
        post_token: Bearer token for the remote sink.
        post_timeout: Remote sink request timeout in seconds.
        attempt_timeout: Seconds allowed per attempt; ``None`` for no limit.
        concurrency: URLs audited at the same time.
        chrome_flags: Flags for every browser session.
        lighthouse_bin: Lighthouse CLI executable.
    """

    model_config = ConfigDict(frozen=True)

    retries: int = Field(default=DEFAULT_RETRIES, ge=0)
    retry_delay_ms: int = Field(default=DEFAULT_RETRY_DELAY_MS, ge=0)
    output_file: Optional[str] = DEFAULT_OUTPUT_FILE
    post_url: Optional[str] = None
    post_token: Optional[str] = None
    post_timeout: float = Field(default=DEFAULT_POST_TIMEOUT, gt=0)
    attempt_timeout: Optional[float] = Field(default=DEFAULT_ATTEMPT_TIMEOUT, gt=0)
    concurrency: int = Field(default=1, ge=1)
    chrome_flags: tuple[str, ...] = DEFAULT_CHROME_FLAGS
    lighthouse_bin: str = DEFAULT_LIGHTHOUSE_BIN

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: Any) -> BatchOptions:
        """Build options from :class:`Settings`, applying non-``None`` overrides."""
        values: dict[str, Any] = {
            "retries": settings.retries,
            "retry_delay_ms": settings.retry_delay_ms,
            "output_file": settings.output_file,
            "post_url": settings.post_url,
            "post_token": settings.post_token,
            "post_timeout": settings.post_timeout,
            "attempt_timeout": settings.attempt_timeout,
            "concurrency": settings.concurrency,
            "chrome_flags": tuple(settings.chrome_flags),
            "lighthouse_bin": settings.lighthouse_bin,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


# ---------------------------------------------------------------------------
# Per-URL step
# ---------------------------------------------------------------------------


async def _audit_one(
    url: str,
    options: BatchOptions,
    *,
    launcher: Launcher,
    scorer: Scorer,
    sleep: Callable[[float], Awaitable[object]],
) -> ScoreRecord | UrlFailure:
    """Audit one URL, turning an unrecovered failure into a :class:`UrlFailure`."""
    with structlog.contextvars.bound_contextvars(url=url):
        logger.info("url_audit_started", retries=options.retries)
        try:
            record = await audit_url(
                url,
                options.retries,
                options.retry_delay_ms,
                attempt_timeout=options.attempt_timeout,
                launcher=launcher,
                scorer=scorer,
                chrome_flags=options.chrome_flags,
                sleep=sleep,
            )
        except RetriesExhausted as exc:
            cause = exc.__cause__ or exc
            logger.warning(
                "url_audit_failed",
                attempts=exc.retries + 1,
                error=str(cause),
            )
            return UrlFailure(url=url, error=str(cause), attempts=exc.retries + 1)
        except Exception as exc:  # noqa: BLE001
            logger.error("url_audit_crashed", error=str(exc), exc_info=True)
            return UrlFailure(url=url, error=str(exc), attempts=0)

        logger.info(
            "url_audited",
            final_url=record.url,
            elapsed_seconds=record.elapsed_seconds,
            scores=record.scores,
        )
        return record


# ---------------------------------------------------------------------------
# Sinks
# ---------------------------------------------------------------------------


async def _deliver(
    report: BatchReport,
    options: BatchOptions,
    http_client: httpx.AsyncClient | None,
) -> None:
    """Send ``report`` to the configured sinks; failures are logged only."""
    if options.output_file:
        try:
            await persist_report(report, options.output_file)
        except PersistenceError as exc:
            logger.error("report_write_failed", destination=exc.destination, error=str(exc))
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "report_write_crashed",
                destination=options.output_file,
                error=str(exc),
                exc_info=True,
            )

    if options.post_url:
        try:
            await post_report(
                report,
                options.post_url,
                client=http_client,
                token=options.post_token,
                timeout=options.post_timeout,
            )
        except PersistenceError as exc:
            logger.error("report_post_failed", destination=exc.destination, error=str(exc))
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "report_post_crashed",
                destination=options.post_url,
                error=str(exc),
                exc_info=True,
            )


# ---------------------------------------------------------------------------
# Public entry point
# ---------------------------------------------------------------------------


async def run_batch(
    urls: Sequence[str],
    options: BatchOptions | None = None,
    *,
    launcher: Launcher = launch_browser,
    scorer: Scorer | None = None,
    on_record: Callable[[ScoreRecord], None] | None = None,
    sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    http_client: httpx.AsyncClient | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> BatchReport:
    """Audit ``urls`` and persist the resulting report.

    Args:
        urls: URLs to audit, in report order.  Validating that the list is
            non-empty is the caller's job.
        options: Batch configuration; defaults to :class:`BatchOptions()`.
        launcher: Browser launcher handed to every attempt.
        scorer: Lighthouse runner.  Defaults to :func:`run_lighthouse` bound
            to ``options.lighthouse_bin``.
        on_record: Called with each :class:`ScoreRecord` as soon as its URL
            succeeds (completion order when ``concurrency > 1``).  An exception
            it raises is logged and the batch carries on.
        sleep: Sleep used between retry attempts.
        http_client: Client for the remote sink.
        clock: Monotonic clock for the batch total.

    Returns:
        A :class:`BatchReport` with one record per successful URL, in input
        order.
    """
    options = options or BatchOptions()
    if scorer is None:
        scorer = functools.partial(run_lighthouse, lighthouse_bin=options.lighthouse_bin)

    audit_one = functools.partial(
        _audit_one, options=options, launcher=launcher, scorer=scorer, sleep=sleep
    )

    def notify(outcome: ScoreRecord | UrlFailure) -> None:
        if on_record is None or not isinstance(outcome, ScoreRecord):
            return
        try:
            on_record(outcome)
        except Exception as exc:  # noqa: BLE001
            logger.warning("on_record_failed", url=outcome.url, error=str(exc))

    logger.info(
        "batch_started", url_count=len(urls), options=options.model_dump(mode="json")
    )
    started = clock()

    outcomes: list[ScoreRecord | UrlFailure] = []
    if options.concurrency == 1:
        for url in urls:
            outcome = await audit_one(url)
            notify(outcome)
            outcomes.append(outcome)
    else:
        semaphore = asyncio.Semaphore(options.concurrency)

        async def bounded(url: str) -> ScoreRecord | UrlFailure:
            async with semaphore:
                outcome = await audit_one(url)
            notify(outcome)
            return outcome

        # gather() returns results in argument order, not completion order.
        outcomes = list(await asyncio.gather(*(bounded(url) for url in urls)))

    report = BatchReport(
        records=[o for o in outcomes if isinstance(o, ScoreRecord)],
        total_elapsed_seconds=clock() - started,
        failures=[o for o in outcomes if isinstance(o, UrlFailure)],
    )
    logger.info(
        "batch_completed",
        succeeded=len(report.records),
        failed=len(report.failures),
        total_elapsed_seconds=report.total_elapsed_seconds,
    )

    await _deliver(report, options, http_client)
    return report
