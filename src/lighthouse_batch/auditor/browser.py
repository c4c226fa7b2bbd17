"""Headless Chromium sessions for Lighthouse, launched through Playwright.

Lighthouse drives the browser over the Chrome DevTools Protocol, so every
session is started with ``--remote-debugging-port`` bound to a free local
port and the port is handed to the scoring step.

Install Playwright and download the Chromium browser binary::

    pip install playwright>=1.48
    playwright install chromium
"""

from __future__ import annotations

import logging
import socket
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from playwright.async_api import async_playwright

from lighthouse_batch.auditor.config import DEBUGGING_HOST, DEFAULT_CHROME_FLAGS
from lighthouse_batch.core.exceptions import BrowserLaunchError

logger = logging.getLogger(__name__)


@dataclass
class BrowserSession:
    """A running Chromium process reachable on ``connection_port``.

    Attributes:
        connection_port: DevTools port Lighthouse connects to.
        browser: The Playwright ``Browser`` handle.
        playwright: The started Playwright driver that owns ``browser``.
    """

    connection_port: int
    browser: Any
    playwright: Any

    async def terminate(self) -> None:
        """Close the browser and stop the Playwright driver.

        The driver is stopped even if closing the browser fails; the first
        error is re-raised afterwards.
        """
        try:
            await self.browser.close()
        finally:
            await self.playwright.stop()


def find_free_port(host: str = DEBUGGING_HOST) -> int:
    """Ask the OS for an unused TCP port on ``host``."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind((host, 0))
        return sock.getsockname()[1]


def split_chrome_flags(flags: Sequence[str]) -> tuple[bool, list[str]]:
    """Separate the headless switch from the remaining Chromium flags.

    Playwright controls headless mode through its own ``headless`` argument,
    so ``--headless`` (and ``--headless=new``) is translated into that flag
    instead of being passed through.

    Returns:
        ``(headless, remaining_flags)``.
    """
    headless = False
    remaining: list[str] = []
    for flag in flags:
        if flag == "--headless" or flag.startswith("--headless="):
            headless = True
        else:
            remaining.append(flag)
    return headless, remaining


async def launch_browser(
    flags: Sequence[str] = DEFAULT_CHROME_FLAGS,
    *,
    port: int | None = None,
) -> BrowserSession:
    """Start a Chromium instance with a DevTools endpoint.

    Args:
        flags: Chromium command-line flags.  Include ``--headless`` for a
            headless session.
        port: DevTools port.  A free port is picked when ``None``.

    Returns:
        A :class:`BrowserSession`; the caller must ``terminate()`` it.

    Raises:
        BrowserLaunchError: If Playwright or Chromium fails to start.
    """
    headless, extra_flags = split_chrome_flags(flags)
    connection_port = port if port is not None else find_free_port()
    args = [f"--remote-debugging-port={connection_port}", *extra_flags]

    try:
        playwright = await async_playwright().start()
    except Exception as exc:  # noqa: BLE001
        raise BrowserLaunchError(f"could not start Playwright: {exc}") from exc

    try:
        browser = await playwright.chromium.launch(headless=headless, args=args)
    except Exception as exc:  # noqa: BLE001
        await playwright.stop()
        raise BrowserLaunchError(
            f"could not launch Chromium: {exc}. "
            "Install it with: playwright install chromium"
        ) from exc

    logger.debug(
        "browser: chromium started (headless=%s, port=%d)", headless, connection_port
    )
    return BrowserSession(
        connection_port=connection_port,
        browser=browser,
        playwright=playwright,
    )
