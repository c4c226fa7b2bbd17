"""Lighthouse batch auditing.

Sub-modules:
- ``config``   — constants and tuning parameters
- ``models``   — ``ScoreRecord``, ``UrlFailure`` and ``BatchReport``
- ``retry``    — bounded fixed-delay retry for async operations
- ``browser``  — headless Chromium sessions via Playwright
- ``scoring``  — Lighthouse CLI runner and report parser
- ``auditor``  — one URL: browser, Lighthouse, score extraction, retry
- ``runner``   — the batch: per-URL isolation, ordering, timing, sinks
- ``sink``     — JSON results file and optional remote POST
"""
