"""
tests/test_browser.py -- Unit tests for scanner/browser.py.

No Chromium is launched: sync_playwright is patched with a MagicMock chain
(playwright -> browser -> context -> page) so the tests pin the wiring and
the error mapping, not Playwright itself.
"""

from __future__ import annotations

from unittest.mock import patch

import pytest
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from core.errors import UpstreamAutomationError
from scanner.browser import BrowserScanner, parse_detection
from scanner.script import DETECTION_SCRIPT

PAYLOAD = {
    "issues": [
        {"type": "https_missing", "details": "Protocol: http:"},
        {"type": "old_jquery", "details": "jQuery 1.12.4"},
    ],
    "meta": {
        "protocol": "http:",
        "hasHttpForms": True,
        "hasMixedContent": False,
        "externalScripts": ["ads.example"],
        "jqueryVersion": "1.12.4",
        "cookieTotal": 1,
        "title": "Acme",
    },
}


class TestParseDetection:
    def test_maps_issues_and_meta(self):
        result = parse_detection("http://acme.test/", PAYLOAD)
        assert result.url == "http://acme.test/"
        assert [(i.type, i.details) for i in result.issues] == [
            ("https_missing", "Protocol: http:"),
            ("old_jquery", "jQuery 1.12.4"),
        ]
        assert result.meta.protocol == "http:"
        assert result.meta.has_http_forms is True
        assert result.meta.external_scripts == ["ads.example"]
        assert result.meta.jquery_version == "1.12.4"
        assert result.meta.cookie_total == 1
        assert result.meta.title == "Acme"

    def test_cookies_from_context_override_page_count(self):
        cookies = [
            {"name": "a", "httpOnly": True, "secure": True},
            {"name": "b", "httpOnly": False, "secure": True},
            {"name": "c"},
        ]
        meta = parse_detection("https://acme.test/", PAYLOAD, cookies).meta
        assert (meta.cookie_total, meta.cookie_http_only, meta.cookie_secure) == (3, 1, 2)

    def test_missing_meta_uses_defaults(self):
        meta = parse_detection("https://acme.test/", {"issues": []}).meta
        assert meta.protocol == "unknown"
        assert meta.external_scripts == []
        assert meta.cookie_total == 0

    def test_non_dict_items_skipped(self):
        result = parse_detection("https://acme.test/", {"issues": ["junk", {"type": "no_frame_protection"}]})
        assert [i.type for i in result.issues] == ["no_frame_protection"]

    @pytest.mark.parametrize("payload", [None, [], "issues", {"meta": {}}, {"issues": "nope"}])
    def test_bad_shape_raises(self, payload):
        with pytest.raises(UpstreamAutomationError):
            parse_detection("https://acme.test/", payload)


def _wire(mock_sync_playwright, payload=PAYLOAD, cookies=(), final_url="http://acme.test/"):
    playwright = mock_sync_playwright.return_value.__enter__.return_value
    browser = playwright.chromium.launch.return_value
    context = browser.new_context.return_value
    page = context.new_page.return_value
    page.wait_for_function.return_value.json_value.return_value = payload
    page.url = final_url
    context.cookies.return_value = list(cookies)
    return playwright, browser, context, page


class TestBrowserScanner:
    @patch("scanner.browser.sync_playwright")
    def test_run_returns_detection(self, mock_sync_playwright):
        playwright, browser, context, page = _wire(mock_sync_playwright, cookies=[{"httpOnly": True}])
        result = BrowserScanner(timeout_seconds=7, user_agent="SitePostureBot/1.0").run("http://acme.test")

        playwright.chromium.launch.assert_called_once_with(headless=True, args=["--no-sandbox"])
        assert browser.new_context.call_args.kwargs["user_agent"] == "SitePostureBot/1.0"
        page.goto.assert_called_once_with("http://acme.test", wait_until="networkidle", timeout=7000)
        page.wait_for_function.assert_called_once_with(DETECTION_SCRIPT, timeout=7000)
        browser.close.assert_called_once()
        assert result.url == "http://acme.test/"
        assert len(result.issues) == 2
        assert result.meta.cookie_total == 1
        assert result.meta.cookie_http_only == 1

    @patch("scanner.browser.sync_playwright")
    def test_empty_user_agent_leaves_browser_default(self, mock_sync_playwright):
        _, browser, _, _ = _wire(mock_sync_playwright)
        BrowserScanner().run("http://acme.test")
        assert browser.new_context.call_args.kwargs["user_agent"] is None

    @patch("scanner.browser.sync_playwright")
    def test_navigation_timeout(self, mock_sync_playwright):
        _, browser, _, page = _wire(mock_sync_playwright)
        page.goto.side_effect = PlaywrightTimeoutError("Timeout 30000ms exceeded.")
        with pytest.raises(UpstreamAutomationError) as info:
            BrowserScanner().run("http://slow.test")
        assert "Timed out" in info.value.message
        assert info.value.retryable
        browser.close.assert_called_once()

    @patch("scanner.browser.sync_playwright")
    def test_script_timeout(self, mock_sync_playwright):
        _, _, _, page = _wire(mock_sync_playwright)
        page.wait_for_function.side_effect = PlaywrightTimeoutError("Timeout 30000ms exceeded.")
        with pytest.raises(UpstreamAutomationError):
            BrowserScanner().run("http://acme.test")

    @patch("scanner.browser.sync_playwright")
    def test_browser_error(self, mock_sync_playwright):
        _, _, _, page = _wire(mock_sync_playwright)
        page.goto.side_effect = PlaywrightError("net::ERR_NAME_NOT_RESOLVED")
        with pytest.raises(UpstreamAutomationError) as info:
            BrowserScanner().run("http://nowhere.test")
        assert info.value.detail == "net::ERR_NAME_NOT_RESOLVED"

    @patch("scanner.browser.sync_playwright")
    def test_launch_failure(self, mock_sync_playwright):
        playwright, _, _, _ = _wire(mock_sync_playwright)
        playwright.chromium.launch.side_effect = PlaywrightError("Executable doesn't exist")
        with pytest.raises(UpstreamAutomationError):
            BrowserScanner().run("http://acme.test")

    @patch("scanner.browser.sync_playwright")
    def test_unexpected_payload(self, mock_sync_playwright):
        _wire(mock_sync_playwright, payload=True)
        with pytest.raises(UpstreamAutomationError):
            BrowserScanner().run("http://acme.test")


def test_script_is_a_function_expression():
    script = DETECTION_SCRIPT.strip()
    assert script.startswith("() =>")
    for issue_type in ("https_missing", "http_form", "mixed_content", "old_jquery", "no_frame_protection"):
        assert issue_type in script
