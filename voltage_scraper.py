"""Collect a three-phase voltage reading from a stabilizer web interface.

This script signs into the stabilizer's web UI with HTTP Basic credentials,
opens ``home.stm``, reads the ``phase / phase / phase`` input voltage shown on
the page and stores it under the data directory (see ``voltage_history.py``).
It is meant to be run by an external scheduler, typically every 5 minutes.

Usage example:

    python voltage_scraper.py --data-dir data

Credentials and the device URL come from command line flags or the
STABILIZER_URL, STABILIZER_USER and STABILIZER_PASSWORD environment variables.
"""

from __future__ import annotations

import argparse
import os
import re
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Mapping, Optional, Tuple

from playwright.sync_api import (  # type: ignore[import-not-found]
    Browser,
    Error as PlaywrightError,
    TimeoutError as PlaywrightTimeoutError,
    Page,
    Playwright,
    sync_playwright,
)

from voltage_history import HISTORY_LIMIT, Reading, record

DEFAULT_BASE_URL = "http://46.44.56.179:8080"
DEFAULT_USERNAME = "user"
DEFAULT_PASSWORD = "password"
BASE_URL_ENV = "STABILIZER_URL"
USERNAME_ENV = "STABILIZER_USER"
PASSWORD_ENV = "STABILIZER_PASSWORD"

HOME_PATH = "/home.stm"
VOLTAGE_SELECTOR = "#input-voltage"
HOME_SCREENSHOT = "home-page.png"
DEBUG_SCREENSHOT = "debug-screenshot.png"
HTML_PREVIEW_CHARS = 1000

BROWSER_ARGS = (
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
)
USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

VOLTAGE_PATTERN = re.compile(
    r"(\d+\.?\d*)\s*/\s*(\d+\.?\d*)\s*/\s*(\d+\.?\d*)", re.ASCII
)
MIN_VOLTAGE = 180.0
MAX_VOLTAGE = 280.0
NOT_FOUND_MESSAGE = "Could not find voltage data on page"


class CollectionError(RuntimeError):
    """Raised when no plausible voltage reading can be taken from the page."""


@dataclass(frozen=True)
class CollectorConfig:
    base_url: str
    username: str
    password: str
    headless: bool
    navigation_timeout: float
    selector_timeout: float
    data_dir: Path
    artifacts_dir: Path
    history_limit: int

    @property
    def home_url(self) -> str:
        return f"{self.base_url.rstrip('/')}{HOME_PATH}"


def parse_args(argv: Optional[Iterable[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description=(
            "Read the input voltage from the stabilizer web page and append it "
            "to the local history."
        )
    )
    parser.add_argument(
        "--base-url",
        help=(
            f"Device web root. Defaults to ${BASE_URL_ENV} or "
            f"'{DEFAULT_BASE_URL}'."
        ),
    )
    parser.add_argument(
        "--username",
        help=f"HTTP auth username. Defaults to ${USERNAME_ENV} or '{DEFAULT_USERNAME}'.",
    )
    parser.add_argument(
        "--password",
        help=f"HTTP auth password. Defaults to ${PASSWORD_ENV}.",
    )
    parser.add_argument(
        "--headless",
        action="store_true",
        help="Launch the browser in headless mode (default).",
    )
    parser.add_argument(
        "--headed",
        action="store_true",
        help="Launch the browser with a visible window for troubleshooting.",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=30.0,
        help="Seconds to wait for the home page to load (default: 30).",
    )
    parser.add_argument(
        "--selector-timeout",
        type=float,
        default=10.0,
        help=(
            f"Seconds to wait for the {VOLTAGE_SELECTOR} element before falling "
            "back to the page text (default: 10)."
        ),
    )
    parser.add_argument(
        "--data-dir",
        default="data",
        help="Directory for latest.json and voltage-history.json (default: data).",
    )
    parser.add_argument(
        "--artifacts-dir",
        default=".",
        help="Directory for screenshots (default: current directory).",
    )
    parser.add_argument(
        "--history-limit",
        type=int,
        default=HISTORY_LIMIT,
        help=f"Number of readings to keep in the history (default: {HISTORY_LIMIT}).",
    )
    args = parser.parse_args(list(argv) if argv is not None else None)

    if args.headless and args.headed:
        parser.error("--headless and --headed cannot be used together")
    if args.history_limit <= 0:
        parser.error("--history-limit must be a positive integer")

    return args


def _read_setting(
    value: Optional[str], environ: Mapping[str, str], name: str, default: str
) -> str:
    if value:
        return value
    candidate = environ.get(name, "").strip()
    return candidate or default


def build_config(
    args: argparse.Namespace, environ: Optional[Mapping[str, str]] = None
) -> CollectorConfig:
    """Resolve flags, environment variables and defaults into one config."""

    env = os.environ if environ is None else environ
    return CollectorConfig(
        base_url=_read_setting(args.base_url, env, BASE_URL_ENV, DEFAULT_BASE_URL),
        username=_read_setting(args.username, env, USERNAME_ENV, DEFAULT_USERNAME),
        password=_read_setting(args.password, env, PASSWORD_ENV, DEFAULT_PASSWORD),
        headless=not args.headed,
        navigation_timeout=args.timeout,
        selector_timeout=args.selector_timeout,
        data_dir=Path(args.data_dir),
        artifacts_dir=Path(args.artifacts_dir),
        history_limit=args.history_limit,
    )


def utc_timestamp(now: Optional[datetime] = None) -> str:
    """Return an ISO-8601 UTC timestamp with millisecond precision."""

    moment = now or datetime.now(timezone.utc)
    return (
        moment.astimezone(timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


def parse_voltage_text(text: str) -> Optional[Tuple[float, float, float]]:
    """Pull the first ``a / b / c`` triple out of ``text``.

    Returns ``None`` when there is no match or when any phase lies outside
    the plausible mains range, which usually means a frequency or power value
    was picked up instead.
    """

    match = VOLTAGE_PATTERN.search(text or "")
    if match is None:
        return None

    phases = tuple(float(group) for group in match.groups())
    if not all(MIN_VOLTAGE <= value <= MAX_VOLTAGE for value in phases):
        return None
    return phases[0], phases[1], phases[2]


def launch_browser(playwright: Playwright, config: CollectorConfig) -> Browser:
    return playwright.chromium.launch(
        headless=config.headless, args=list(BROWSER_ARGS)
    )


def open_session(browser: Browser, config: CollectorConfig) -> Page:
    context = browser.new_context(
        http_credentials={"username": config.username, "password": config.password},
        user_agent=USER_AGENT,
    )
    return context.new_page()


def navigate_home(page: Page, config: CollectorConfig) -> None:
    print(f"Navigating to {HOME_PATH.lstrip('/')}...")
    page.goto(
        config.home_url,
        wait_until="networkidle",
        timeout=config.navigation_timeout * 1000,
    )

    config.artifacts_dir.mkdir(parents=True, exist_ok=True)
    screenshot = config.artifacts_dir / HOME_SCREENSHOT
    page.screenshot(path=str(screenshot), full_page=True)
    print(f"Screenshot saved: {screenshot}")


def wait_for_voltage_element(page: Page, timeout: float) -> bool:
    try:
        page.wait_for_selector(VOLTAGE_SELECTOR, timeout=timeout * 1000)
    except PlaywrightTimeoutError:
        print(
            f"Element {VOLTAGE_SELECTOR} not found by selector, will try body text",
            file=sys.stderr,
        )
        return False
    return True


def read_voltage_text(page: Page) -> str:
    text = page.evaluate(
        """
        (selector) => {
            const element = document.querySelector(selector);
            if (element) {
                return (element.textContent || '').trim();
            }
            return document.body ? document.body.innerText : '';
        }
        """,
        VOLTAGE_SELECTOR,
    )
    return str(text or "")


def save_debug_artifacts(page: Page, artifacts_dir: Path) -> None:
    screenshot = artifacts_dir / DEBUG_SCREENSHOT
    try:
        artifacts_dir.mkdir(parents=True, exist_ok=True)
        page.screenshot(path=str(screenshot), full_page=True)
        print(f"Debug saved: {screenshot}", file=sys.stderr)
    except (PlaywrightError, OSError) as exc:
        print(f"Could not save debug screenshot: {exc}", file=sys.stderr)

    try:
        html = page.content()
    except PlaywrightError as exc:
        print(f"Could not read page HTML: {exc}", file=sys.stderr)
        return
    print(f"Page HTML preview: {html[:HTML_PREVIEW_CHARS]}")
    print(f"At URL: {page.url}", file=sys.stderr)


def extract(page: Page, config: CollectorConfig) -> Reading:
    """Read and validate the voltage shown on an already loaded home page."""

    wait_for_voltage_element(page, config.selector_timeout)
    phases = parse_voltage_text(read_voltage_text(page))
    if phases is None:
        save_debug_artifacts(page, config.artifacts_dir)
        raise CollectionError(NOT_FOUND_MESSAGE)

    phase_a, phase_b, phase_c = phases
    return Reading(
        phase_a=phase_a,
        phase_b=phase_b,
        phase_c=phase_c,
        timestamp=utc_timestamp(),
    )


def collect_reading(config: CollectorConfig) -> Reading:
    """Run one browser session against the device and return its reading."""

    with sync_playwright() as playwright:
        print("Launching browser...")
        browser = launch_browser(playwright, config)
        try:
            page = open_session(browser, config)
            navigate_home(page, config)
            return extract(page, config)
        finally:
            browser.close()


def main(argv: Optional[Iterable[str]] = None) -> int:
    args = parse_args(argv)
    config = build_config(args)

    try:
        reading = collect_reading(config)
        print(f"Voltage data extracted: {reading.to_dict()}")
        total = record(reading, config.data_dir, config.history_limit)
        print(f"Data saved. Total records: {total}")
    except Exception as exc:
        print(f"Error during data collection: {exc}", file=sys.stderr)
        return 1

    print("Data collection completed successfully!")
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    raise SystemExit(main())
