"""Persistence of batch reports.

The results file is a pretty-printed UTF-8 JSON array::

    [
      {
        "url": "https://example.com/",
        "time": 6.41,
        "score": {"accessibility": 100.0, "best-practices": 92.0, ...}
      }
    ]

Serialisation is deterministic, so writing the same report twice yields
byte-identical files.  Optionally the report is also POSTed to a remote
endpoint as ``{"results": [...], "totalTime": <seconds>}``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path

import httpx

from lighthouse_batch.auditor.config import DEFAULT_POST_TIMEOUT, USER_AGENT
from lighthouse_batch.auditor.models import BatchReport, ScoreRecord
from lighthouse_batch.core.exceptions import PersistenceError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Serialisation
# ---------------------------------------------------------------------------


def serialize_report(report: BatchReport) -> str:
    """Return the results file content for ``report``."""
    return json.dumps(report.to_json_list(), indent=2, ensure_ascii=False) + "\n"


def _write_atomic(path: Path, content: str) -> None:
    """Write ``content`` to a sibling temp file, then replace ``path`` with it."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(content)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


# ---------------------------------------------------------------------------
# File sink
# ---------------------------------------------------------------------------


async def persist_report(report: BatchReport, destination: str | os.PathLike[str]) -> Path:
    """Write ``report`` to ``destination``, overwriting any existing file.

    Parent directories are created as needed.  The write happens in a worker
    thread and replaces the destination atomically, so a crash mid-write
    never leaves a truncated results file behind.

    Args:
        report: The batch report to write.
        destination: Target file path.

    Returns:
        The path written.

    Raises:
        PersistenceError: On any I/O or encoding failure.
    """
    path = Path(destination)
    content = serialize_report(report)
    try:
        await asyncio.to_thread(_write_atomic, path, content)
    except (OSError, UnicodeError) as exc:
        raise PersistenceError(f"could not write {path}: {exc}", destination=str(path)) from exc

    logger.info("sink: wrote %d record(s) to %s", len(report.records), path)
    return path


def load_report(source: str | os.PathLike[str]) -> list[ScoreRecord]:
    """Read a results file written by :func:`persist_report`.

    Raises:
        PersistenceError: If the file cannot be read or is not a results file.
    """
    path = Path(source)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise PersistenceError(f"could not read {path}: {exc}", destination=str(path)) from exc

    if not isinstance(data, list):
        raise PersistenceError(f"{path} does not contain a JSON array", destination=str(path))
    try:
        return [ScoreRecord.model_validate(item) for item in data]
    except ValueError as exc:
        raise PersistenceError(f"invalid record in {path}: {exc}", destination=str(path)) from exc


# ---------------------------------------------------------------------------
# Remote sink
# ---------------------------------------------------------------------------


async def post_report(
    report: BatchReport,
    endpoint_url: str,
    *,
    client: httpx.AsyncClient | None = None,
    token: str | None = None,
    timeout: float = DEFAULT_POST_TIMEOUT,
) -> None:
    """POST ``report`` as JSON to ``endpoint_url``.

    Args:
        report: The batch report to send.
        endpoint_url: Receiving endpoint.
        client: Shared client; a short-lived one is created when ``None``.
        token: Optional bearer token for the ``Authorization`` header.
        timeout: Request timeout in seconds.

    Raises:
        PersistenceError: On an invalid endpoint URL, a transport error or an
            HTTP status >= 400.
    """
    payload = {
        "results": report.to_json_list(),
        "totalTime": report.total_elapsed_seconds,
    }
    headers = {"User-Agent": USER_AGENT}
    if token:
        headers["Authorization"] = f"Bearer {token}"

    try:
        if client is None:
            async with httpx.AsyncClient() as own_client:
                response = await own_client.post(
                    endpoint_url, json=payload, headers=headers, timeout=timeout
                )
        else:
            response = await client.post(
                endpoint_url, json=payload, headers=headers, timeout=timeout
            )
    except (httpx.HTTPError, httpx.InvalidURL, UnicodeError) as exc:
        raise PersistenceError(
            f"could not post report: {exc}", destination=endpoint_url
        ) from exc

    if response.status_code >= 400:
        raise PersistenceError(
            f"HTTP {response.status_code} posting report", destination=endpoint_url
        )

    logger.info("sink: posted %d record(s) to %s", len(report.records), endpoint_url)
