"""Shared pytest fixtures for lighthouse-batch tests.

Fixture summary
---------------
fake_launcher   — Records browser sessions instead of starting Chromium.
scripted_scorer — Factory for per-URL scripted Lighthouse outcomes.
make_result     — Builds a LighthouseResult with uniform category scores.
no_sleep        — AsyncMock standing in for ``asyncio.sleep`` between retries.
clean_settings  — Clears the ``get_settings`` cache around a test.

No test starts a real browser or runs the Lighthouse CLI; collaborators are
replaced by the fakes below.
"""

from __future__ import annotations

import os
from collections.abc import Callable, Iterator, Sequence
from typing import Any
from unittest.mock import AsyncMock

import pytest

from lighthouse_batch.auditor.config import CATEGORIES
from lighthouse_batch.auditor.scoring import LighthouseResult
from lighthouse_batch.config.settings import get_settings
from lighthouse_batch.core.exceptions import AuditAttemptFailed


# ---------------------------------------------------------------------------
# Fake collaborators
# ---------------------------------------------------------------------------


class FakeSession:
    """Browser session stand-in that records its teardown."""

    def __init__(self, port: int, *, fail_terminate: bool = False) -> None:
        self.connection_port = port
        self.fail_terminate = fail_terminate
        self.terminated = False

    async def terminate(self) -> None:
        self.terminated = True
        if self.fail_terminate:
            raise RuntimeError("chrome refused to die")


class FakeLauncher:
    """Callable launcher handing out :class:`FakeSession` objects.

    ``fail_next`` makes the next N launches raise, ``fail_terminate`` makes
    every session's teardown raise.
    """

    def __init__(self) -> None:
        self.sessions: list[FakeSession] = []
        self.flags_seen: list[Sequence[str]] = []
        self.fail_next = 0
        self.fail_terminate = False

    async def __call__(self, flags: Sequence[str]) -> FakeSession:
        self.flags_seen.append(flags)
        if self.fail_next:
            self.fail_next -= 1
            raise AuditAttemptFailed("could not launch Chromium")
        session = FakeSession(9222 + len(self.sessions), fail_terminate=self.fail_terminate)
        self.sessions.append(session)
        return session

    @property
    def open_sessions(self) -> list[FakeSession]:
        return [s for s in self.sessions if not s.terminated]


class ScriptedScorer:
    """Scorer stand-in that plays back a per-URL script of outcomes.

    Each URL maps to a list of steps; a step is either a
    :class:`LighthouseResult` (returned) or an exception (raised).  The last
    step repeats once the script runs out.
    """

    def __init__(self, plan: dict[str, list[Any]]) -> None:
        self.plan = plan
        self.calls: list[str] = []
        self.ports: list[int] = []

    def attempts(self, url: str) -> int:
        return self.calls.count(url)

    async def __call__(self, url: str, *, port: int, output_format: str) -> LighthouseResult:
        assert output_format == "json"
        index = self.attempts(url)
        self.calls.append(url)
        self.ports.append(port)
        steps = self.plan[url]
        step = steps[min(index, len(steps) - 1)]
        if isinstance(step, BaseException):
            raise step
        return step


def build_result(url: str, score: float = 0.9, **overrides: Any) -> LighthouseResult:
    """Return a :class:`LighthouseResult` with ``score`` for every category.

    Keyword overrides replace individual category entries; use ``None`` to
    drop a category entirely.  Category names with a dash are passed with an
    underscore (``best_practices=...``).
    """
    categories: dict[str, Any] = {name: {"score": score} for name in CATEGORIES}
    for key, value in overrides.items():
        name = key.replace("_", "-")
        if value is None:
            categories.pop(name, None)
        else:
            categories[name] = value
    return LighthouseResult(final_url=url, categories=categories)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def fake_launcher() -> FakeLauncher:
    return FakeLauncher()


@pytest.fixture
def scripted_scorer() -> type[ScriptedScorer]:
    """Return the :class:`ScriptedScorer` class; build one per test with a plan."""
    return ScriptedScorer


@pytest.fixture
def make_result() -> Callable[..., LighthouseResult]:
    return build_result


@pytest.fixture
def no_sleep() -> AsyncMock:
    return AsyncMock(return_value=None)


@pytest.fixture
def clean_settings(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Isolate a test from the caller's environment and the settings cache."""
    for key in list(os.environ):
        if key.startswith("LIGHTHOUSE_BATCH_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(os.path.dirname(__file__))
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
