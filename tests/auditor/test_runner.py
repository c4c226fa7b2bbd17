"""Unit tests for the batch runner.

Tests cover:
- good / flaky / bad scenario: 2 records in order, per-URL attempt counts
- one always-failing URL out of k leaves k-1 records in input order
- every URL failing still yields (and persists) an empty report
- failures are recorded in memory with their attempt counts
- total elapsed time spans the whole batch
- on_record is called once per success
- the report is persisted to options.output_file, and a write failure is
  logged without changing the returned report
- the remote sink is used when post_url is set; its failure is non-fatal
- concurrency > 1 keeps input order and one session per attempt
- BatchOptions validation and construction from Settings
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from unittest.mock import AsyncMock, patch

import httpx
import pydantic
import pytest
import respx

from lighthouse_batch.auditor.config import CATEGORIES
from lighthouse_batch.auditor.models import ScoreRecord
from lighthouse_batch.auditor.runner import BatchOptions, run_batch
from lighthouse_batch.config.settings import Settings
from lighthouse_batch.core.exceptions import AuditAttemptFailed, PersistenceError

GOOD = "https://good.example"
FLAKY = "https://flaky.example"
BAD = "https://bad.example"


@pytest.fixture
def options(tmp_path: Path) -> BatchOptions:
    return BatchOptions(
        retries=1,
        retry_delay_ms=0,
        output_file=str(tmp_path / "output" / "results.json"),
        attempt_timeout=None,
    )


@pytest.fixture
def scenario_scorer(scripted_scorer, make_result):
    return scripted_scorer(
        {
            GOOD: [make_result(GOOD + "/")],
            FLAKY: [AuditAttemptFailed("flake"), make_result(FLAKY + "/", score=0.5)],
            BAD: [AuditAttemptFailed("down")],
        }
    )


@pytest.mark.asyncio
class TestRunBatch:
    async def test_good_flaky_bad_scenario(
        self, options, fake_launcher, scenario_scorer, no_sleep
    ) -> None:
        report = await run_batch(
            [GOOD, FLAKY, BAD],
            options,
            launcher=fake_launcher,
            scorer=scenario_scorer,
            sleep=no_sleep,
        )

        assert [r.url for r in report.records] == [GOOD + "/", FLAKY + "/"]
        assert scenario_scorer.attempts(GOOD) == 1
        assert scenario_scorer.attempts(FLAKY) == 2
        assert scenario_scorer.attempts(BAD) == 2
        assert [f.url for f in report.failures] == [BAD]
        assert report.failures[0].attempts == 2
        assert "down" in report.failures[0].error
        assert fake_launcher.open_sessions == []

    @pytest.mark.parametrize("failing_index", [0, 2, 4])
    async def test_single_failing_url_is_omitted(
        self, failing_index, options, fake_launcher, scripted_scorer, make_result, no_sleep
    ) -> None:
        urls = [f"https://site{i}.example" for i in range(5)]
        plan = {url: [make_result(url)] for url in urls}
        plan[urls[failing_index]] = [RuntimeError("always broken")]
        scorer = scripted_scorer(plan)

        report = await run_batch(
            urls, options, launcher=fake_launcher, scorer=scorer, sleep=no_sleep
        )

        expected = [u for i, u in enumerate(urls) if i != failing_index]
        assert [r.url for r in report.records] == expected
        assert scorer.attempts(urls[failing_index]) == options.retries + 1

    async def test_all_failures_give_empty_report(
        self, options, fake_launcher, scripted_scorer, no_sleep
    ) -> None:
        scorer = scripted_scorer({BAD: [RuntimeError("down")]})

        report = await run_batch([BAD], options, launcher=fake_launcher, scorer=scorer, sleep=no_sleep)

        assert report.records == []
        assert json.loads(Path(options.output_file).read_text(encoding="utf-8")) == []

    async def test_persists_report(
        self, options, fake_launcher, scenario_scorer, no_sleep
    ) -> None:
        await run_batch(
            [GOOD, FLAKY, BAD],
            options,
            launcher=fake_launcher,
            scorer=scenario_scorer,
            sleep=no_sleep,
        )

        data = json.loads(Path(options.output_file).read_text(encoding="utf-8"))
        assert [item["url"] for item in data] == [GOOD + "/", FLAKY + "/"]
        assert data[1]["score"]["seo"] == 50.0

    async def test_no_output_file_skips_file_sink(
        self, fake_launcher, scripted_scorer, make_result, no_sleep
    ) -> None:
        scorer = scripted_scorer({GOOD: [make_result(GOOD)]})
        with patch("lighthouse_batch.auditor.runner.persist_report", AsyncMock()) as persist:
            await run_batch(
                [GOOD],
                BatchOptions(output_file=None, attempt_timeout=None),
                launcher=fake_launcher,
                scorer=scorer,
                sleep=no_sleep,
            )

        persist.assert_not_awaited()

    async def test_write_failure_does_not_change_report(
        self, options, fake_launcher, scripted_scorer, make_result, no_sleep
    ) -> None:
        scorer = scripted_scorer({GOOD: [make_result(GOOD)]})
        failing_persist = AsyncMock(side_effect=PersistenceError("read-only", destination="x"))

        with patch("lighthouse_batch.auditor.runner.persist_report", failing_persist):
            report = await run_batch(
                [GOOD], options, launcher=fake_launcher, scorer=scorer, sleep=no_sleep
            )

        failing_persist.assert_awaited_once()
        assert [r.url for r in report.records] == [GOOD]

    async def test_total_elapsed_spans_batch(
        self, options, fake_launcher, scripted_scorer, make_result, no_sleep
    ) -> None:
        scorer = scripted_scorer({GOOD: [make_result(GOOD)], BAD: [RuntimeError("x")]})
        ticks = iter([100.0, 142.5])

        report = await run_batch(
            [GOOD, BAD],
            options,
            launcher=fake_launcher,
            scorer=scorer,
            sleep=no_sleep,
            clock=lambda: next(ticks),
        )

        assert report.total_elapsed_seconds == pytest.approx(42.5)

    async def test_on_record_called_per_success(
        self, options, fake_launcher, scenario_scorer, no_sleep
    ) -> None:
        seen: list[str] = []

        await run_batch(
            [GOOD, FLAKY, BAD],
            options,
            launcher=fake_launcher,
            scorer=scenario_scorer,
            sleep=no_sleep,
            on_record=lambda record: seen.append(record.url),
        )

        assert seen == [GOOD + "/", FLAKY + "/"]

    async def test_retry_delay_between_attempts(
        self, tmp_path, fake_launcher, scenario_scorer, no_sleep
    ) -> None:
        opts = BatchOptions(
            retries=1,
            retry_delay_ms=1000,
            output_file=str(tmp_path / "r.json"),
            attempt_timeout=None,
        )

        await run_batch(
            [GOOD, FLAKY, BAD], opts, launcher=fake_launcher, scorer=scenario_scorer, sleep=no_sleep
        )

        # One wait for FLAKY, one for BAD.
        assert [c.args for c in no_sleep.await_args_list] == [(1.0,), (1.0,)]

    async def test_posts_to_remote_sink(
        self, options, fake_launcher, scripted_scorer, make_result, no_sleep
    ) -> None:
        scorer = scripted_scorer({GOOD: [make_result(GOOD)]})
        opts = options.model_copy(update={"post_url": "https://collector.example/reports"})

        with respx.mock(base_url="https://collector.example") as mock:
            route = mock.post("/reports").mock(return_value=httpx.Response(202))
            report = await run_batch(
                [GOOD], opts, launcher=fake_launcher, scorer=scorer, sleep=no_sleep
            )

        assert route.called
        assert json.loads(route.calls.last.request.content)["results"][0]["url"] == GOOD
        assert Path(opts.output_file).exists()
        assert len(report.records) == 1

    async def test_remote_sink_failure_is_not_fatal(
        self, options, fake_launcher, scripted_scorer, make_result, no_sleep
    ) -> None:
        scorer = scripted_scorer({GOOD: [make_result(GOOD)]})
        opts = options.model_copy(update={"post_url": "https://collector.example/reports"})

        with respx.mock(base_url="https://collector.example") as mock:
            mock.post("/reports").mock(side_effect=httpx.ConnectError("refused"))
            report = await run_batch(
                [GOOD], opts, launcher=fake_launcher, scorer=scorer, sleep=no_sleep
            )

        assert [r.url for r in report.records] == [GOOD]
        assert Path(opts.output_file).exists()

    async def test_malformed_post_url_is_contained(
        self, options, fake_launcher, scripted_scorer, make_result, no_sleep
    ) -> None:
        scorer = scripted_scorer({GOOD: [make_result(GOOD)]})
        opts = options.model_copy(update={"post_url": "http://[::1/x"})

        report = await run_batch([GOOD], opts, launcher=fake_launcher, scorer=scorer, sleep=no_sleep)

        assert [r.url for r in report.records] == [GOOD]
        assert Path(opts.output_file).exists()

    async def test_unexpected_sink_error_is_contained(
        self, options, fake_launcher, scripted_scorer, make_result, no_sleep
    ) -> None:
        scorer = scripted_scorer({GOOD: [make_result(GOOD)]})
        broken_persist = AsyncMock(
            side_effect=UnicodeEncodeError("utf-8", "\ud800", 0, 1, "surrogates not allowed")
        )

        with patch("lighthouse_batch.auditor.runner.persist_report", broken_persist):
            report = await run_batch(
                [GOOD], options, launcher=fake_launcher, scorer=scorer, sleep=no_sleep
            )

        broken_persist.assert_awaited_once()
        assert [r.url for r in report.records] == [GOOD]

    async def test_failing_on_record_does_not_stop_batch(
        self, options, fake_launcher, scripted_scorer, make_result, no_sleep
    ) -> None:
        urls = ["https://one.example", "https://two.example"]
        scorer = scripted_scorer({url: [make_result(url)] for url in urls})
        seen: list[str] = []

        def on_record(record: ScoreRecord) -> None:
            seen.append(record.url)
            raise BrokenPipeError("stdout closed")

        report = await run_batch(
            urls,
            options,
            launcher=fake_launcher,
            scorer=scorer,
            sleep=no_sleep,
            on_record=on_record,
        )

        assert seen == urls
        assert [r.url for r in report.records] == urls
        data = json.loads(Path(options.output_file).read_text(encoding="utf-8"))
        assert [item["url"] for item in data] == urls

    async def test_unexpected_error_is_contained(
        self, options, fake_launcher, no_sleep
    ) -> None:
        record = ScoreRecord(
            url=GOOD,
            elapsed_seconds=1.0,
            scores=dict.fromkeys(CATEGORIES, 50.0),
        )

        with patch(
            "lighthouse_batch.auditor.runner.audit_url",
            AsyncMock(side_effect=[TypeError("bug"), record]),
        ):
            report = await run_batch([BAD, GOOD], options, launcher=fake_launcher, sleep=no_sleep)

        assert [f.url for f in report.failures] == [BAD]
        assert report.failures[0].attempts == 0


@pytest.mark.asyncio
class TestRunBatchConcurrent:
    async def test_keeps_input_order(
        self, tmp_path, fake_launcher, make_result, no_sleep
    ) -> None:
        urls = [f"https://site{i}.example" for i in range(6)]
        delays = {url: 0.05 * (len(urls) - i) for i, url in enumerate(urls)}
        in_flight = 0
        peak = 0

        async def scorer(url: str, *, port: int, output_format: str):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(delays[url])
            in_flight -= 1
            return make_result(url)

        opts = BatchOptions(
            concurrency=3,
            retry_delay_ms=0,
            output_file=str(tmp_path / "r.json"),
            attempt_timeout=None,
        )
        completed: list[str] = []

        report = await run_batch(
            urls,
            opts,
            launcher=fake_launcher,
            scorer=scorer,
            sleep=no_sleep,
            on_record=lambda r: completed.append(r.url),
        )

        assert [r.url for r in report.records] == urls
        assert peak == 3
        assert completed != urls  # completion order differs from input order
        assert len(fake_launcher.sessions) == len(urls)
        assert fake_launcher.open_sessions == []

    async def test_failures_do_not_leak_between_urls(
        self, tmp_path, fake_launcher, scenario_scorer, no_sleep
    ) -> None:
        opts = BatchOptions(
            concurrency=3,
            retries=1,
            retry_delay_ms=0,
            output_file=str(tmp_path / "r.json"),
            attempt_timeout=None,
        )

        report = await run_batch(
            [GOOD, FLAKY, BAD], opts, launcher=fake_launcher, scorer=scenario_scorer, sleep=no_sleep
        )

        assert [r.url for r in report.records] == [GOOD + "/", FLAKY + "/"]
        assert scenario_scorer.attempts(FLAKY) == 2
        assert scenario_scorer.attempts(BAD) == 2


class TestBatchOptions:
    def test_defaults(self) -> None:
        opts = BatchOptions()
        assert opts.retries == 3
        assert opts.retry_delay_ms == 1000
        assert opts.output_file == "output/results.json"
        assert opts.concurrency == 1
        assert opts.chrome_flags == ("--headless",)

    @pytest.mark.parametrize(
        "field, value",
        [("retries", -1), ("retry_delay_ms", -10), ("concurrency", 0), ("attempt_timeout", 0)],
    )
    def test_rejects_invalid_values(self, field: str, value: object) -> None:
        with pytest.raises(pydantic.ValidationError):
            BatchOptions(**{field: value})

    def test_from_settings_with_overrides(self) -> None:
        settings = Settings(retries=5, retry_delay_ms=200, output_file="a.json", _env_file=None)

        opts = BatchOptions.from_settings(settings, output_file="b.json", retries=None)

        assert opts.retries == 5
        assert opts.retry_delay_ms == 200
        assert opts.output_file == "b.json"
