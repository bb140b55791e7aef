"""
scanner/browser.py -- Headless Chromium collector for active scans.

One run = launch browser -> load URL (wait for network idle) -> evaluate
DETECTION_SCRIPT -> close. Both navigation and the in-page evaluation are
bounded by timeout_seconds. Every Playwright failure is surfaced as
UpstreamAutomationError; nothing here touches storage, so a failed run
leaves no trace.

Cookie counts come from the browser context rather than document.cookie so
HttpOnly cookies (invisible to page scripts) are included.
"""

import logging
from typing import Any

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError
from playwright.sync_api import sync_playwright

from core.errors import UpstreamAutomationError
from core.models import DetectionResult, RawIssue, ScanMeta
from scanner.script import DETECTION_SCRIPT

logger = logging.getLogger("siteposture.scanner")


class BrowserScanner:
    def __init__(self, timeout_seconds: int = 30, user_agent: str = "") -> None:
        self.timeout_seconds = timeout_seconds
        self.user_agent = user_agent

    def run(self, url: str) -> DetectionResult:
        """Load url in headless Chromium and return the raw detections.

        Raises UpstreamAutomationError on launch, navigation, timeout, or
        script failure.
        """
        timeout_ms = self.timeout_seconds * 1000
        logger.info("Active scan starting: %s", url)
        try:
            with sync_playwright() as playwright:
                browser = playwright.chromium.launch(headless=True, args=["--no-sandbox"])
                try:
                    context = browser.new_context(
                        user_agent=self.user_agent or None,
                        viewport={"width": 1280, "height": 720},
                    )
                    page = context.new_page()
                    page.goto(url, wait_until="networkidle", timeout=timeout_ms)
                    # wait_for_function resolves on the first truthy return and,
                    # unlike evaluate(), honours a timeout.
                    handle = page.wait_for_function(DETECTION_SCRIPT, timeout=timeout_ms)
                    payload = handle.json_value()
                    cookies = context.cookies()
                    final_url = page.url
                finally:
                    browser.close()
        except PlaywrightTimeoutError as exc:
            logger.warning("Active scan timed out after %ss: %s", self.timeout_seconds, url)
            raise UpstreamAutomationError(f"Timed out scanning {url}.", detail=str(exc)) from exc
        except PlaywrightError as exc:
            logger.warning("Browser automation failed for %s: %s", url, exc.message)
            raise UpstreamAutomationError(f"Browser automation failed for {url}.", detail=exc.message) from exc

        result = parse_detection(final_url, payload, cookies)
        logger.info("Active scan finished: %s (%d issue(s))", final_url, len(result.issues))
        return result


def parse_detection(url: str, payload: Any, cookies: list[dict] | None = None) -> DetectionResult:
    """Map the in-page script's JSON onto DetectionResult.

    Raises UpstreamAutomationError if the payload is not the expected shape.
    """
    if not isinstance(payload, dict) or not isinstance(payload.get("issues"), list):
        raise UpstreamAutomationError("Detection script returned an unexpected result.", detail=repr(payload)[:200])

    issues = [
        RawIssue(type=str(item.get("type") or ""), details=item.get("details"))
        for item in payload["issues"]
        if isinstance(item, dict)
    ]

    raw_meta = payload.get("meta") or {}
    meta = ScanMeta(
        protocol=raw_meta.get("protocol") or "unknown",
        has_http_forms=bool(raw_meta.get("hasHttpForms")),
        has_mixed_content=bool(raw_meta.get("hasMixedContent")),
        external_scripts=list(raw_meta.get("externalScripts") or []),
        jquery_version=raw_meta.get("jqueryVersion"),
        cookie_total=int(raw_meta.get("cookieTotal") or 0),
        title=raw_meta.get("title"),
    )
    if cookies is not None:
        meta.cookie_total = len(cookies)
        meta.cookie_http_only = sum(1 for c in cookies if c.get("httpOnly"))
        meta.cookie_secure = sum(1 for c in cookies if c.get("secure"))

    return DetectionResult(url=url, issues=issues, meta=meta)
