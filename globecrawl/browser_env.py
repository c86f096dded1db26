"""Centralised helpers for Playwright launch and catalog sessions."""

from __future__ import annotations

import os
import shlex
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Any, AsyncIterator

from playwright.async_api import Browser, Page, Playwright
from playwright.async_api import Error as PlaywrightError
from playwright_stealth import Stealth

import globecrawl.selectors as selectors
from globecrawl.errors import PageLoadError
from globecrawl.logging_config import get_logger

LOGGER = get_logger(__name__)

_FALSE_VALUES = {"0", "false", "no", "off"}


def _as_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() not in _FALSE_VALUES


def stealth_enabled() -> bool:
    """Return True when stealth evasion scripts should be applied."""

    return _as_bool(os.getenv("GLOBECRAWL_STEALTH"), True)


@lru_cache(maxsize=1)
def _stealth_instance():
    if not stealth_enabled():
        return None
    return Stealth(navigator_languages_override=("en-US", "en"))


def apply_stealth(playwright: Playwright) -> None:
    """Hook the provided Playwright object with stealth evasions when available."""

    instance = _stealth_instance()
    if instance is None:
        return
    try:
        instance.hook_playwright_context(playwright)
    except Exception as exc:
        LOGGER.warning("Stealth hook failed; continuing without it: %s", exc)


def launch_kwargs(browser_conf: dict[str, Any]) -> dict[str, Any]:
    """Return kwargs passed to ``chromium.launch``."""

    args = [
        "--disable-blink-features=AutomationControlled",
        "--disable-dev-shm-usage",
        "--lang=en-US",
        "--no-default-browser-check",
    ]
    extra_args = os.getenv("GLOBECRAWL_CHROMIUM_ARGS")
    if extra_args:
        args.extend(shlex.split(extra_args))

    kwargs: dict[str, Any] = {
        "headless": bool(browser_conf.get("headless", True)),
        "args": args,
        # Ctrl+C must reach the orchestrator so the VPN is released.
        "handle_sigint": False,
    }
    channel = os.getenv("GLOBECRAWL_BROWSER_CHANNEL")
    if channel:
        kwargs["channel"] = channel
    return kwargs


async def close_browser(browser: Browser | None) -> None:
    """Close the provided browser, logging rather than raising."""

    if browser is None:
        return
    try:
        await browser.close()
    except Exception as exc:
        LOGGER.warning("Failed to close browser: %s", exc)


@asynccontextmanager
async def open_catalog_session(
    playwright: Playwright,
    cookies: list[dict[str, Any]],
    browser_conf: dict[str, Any],
) -> AsyncIterator[Page]:
    """Launch Chromium, sign in with the stored cookies and yield the browse page."""

    kwargs = launch_kwargs(browser_conf)
    base_url = str(browser_conf.get("base_url", "")).rstrip("/")
    browse_url = base_url + selectors.BROWSE_PATH
    browser: Browser | None = None
    try:
        try:
            LOGGER.info("Launching %sbrowser", "headless " if kwargs["headless"] else "")
            browser = await playwright.chromium.launch(**kwargs)
            viewport = browser_conf.get("viewport") or {"width": 1280, "height": 800}
            context = await browser.new_context(viewport=viewport)
            if cookies:
                await context.add_cookies(cookies)
            page = await context.new_page()
            page.set_default_navigation_timeout(int(browser_conf.get("navigation_timeout_ms", 60000)))
            LOGGER.info("Opening catalog with cookies")
            await page.goto(browse_url, wait_until="networkidle")
        except PlaywrightError as exc:
            raise PageLoadError(url=browse_url) from exc
        yield page
    finally:
        await close_browser(browser)
