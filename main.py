#!/usr/bin/env python3
"""
SitePosture — Website security posture scanner.

Usage:
  python main.py https://example.com
  python main.py https://example.com --json
  python main.py https://example.com --timeout 60
  python main.py https://example.com --no-color
  python main.py --agent AGENT_ID

The URL form loads the page in headless Chromium, normalizes and scores what
it finds, and prints the result. Nothing is stored.

--agent runs a full active scan for a registered agent: the result is merged
into that agent's Report in the configured database (DATABASE_URL or the
default SQLite files), exactly as POST /api/v1/security/scan would.

Requires a Chromium build for Playwright:  playwright install chromium
"""

import argparse
import logging
import sys
from datetime import datetime, timezone
from urllib.parse import urlparse

from auth.models import User
from core import scoring
from core.aggregator import ReportAggregator
from core.catalog import normalize_all
from core.config import get_settings
from core.errors import ScanError
from core.formatter import disable_color, print_terminal, to_json
from core.gateways import ActiveGateway
from reports.store import ReportStore
from scanner.browser import BrowserScanner
from tenants.policy import RoleAccessPolicy
from tenants.store import TenantStore

# Local operator acting on the database directly. Not persisted.
_CLI_USER = User(username="cli", role="admin", id=0)


def _valid_url(url: str) -> bool:
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def scan_url(url: str, timeout: int, as_json: bool) -> int:
    """Ad hoc scan: detect, normalize, score, print. Returns the exit code."""
    settings = get_settings()
    scanner = BrowserScanner(timeout_seconds=timeout, user_agent=settings.browser_user_agent)

    if not as_json:
        print(f"\n  Scanning {url} ...", end=" ", flush=True)
    try:
        detection = scanner.run(url)
    except ScanError as e:
        print(f"\n  [!] {e.message}", file=sys.stderr)
        return 1
    if not as_json:
        print("done.")

    scanned_at = datetime.now(timezone.utc).isoformat()
    issues = normalize_all(detection.issues, scanned_at)
    value = scoring.score(issues)
    letter = scoring.grade(value)
    summary = scoring.summarize(issues)

    if as_json:
        print(to_json(detection.url, value, letter, summary, issues, scanned_at))
    else:
        print_terminal(detection.url, value, letter, summary, issues)
    return 0


def scan_agent(agent_id: str, timeout: int, as_json: bool) -> int:
    """Full active scan for a registered agent, persisted to its Report."""
    settings = get_settings()
    kwargs = {"db_url": settings.database_url} if settings.database_url else {}
    tenants = TenantStore(**kwargs)
    reports = ReportStore(**kwargs)
    try:
        aggregator = ReportAggregator(reports, tenants, max_attempts=settings.storage_retry_attempts)
        gateway = ActiveGateway(
            aggregator,
            tenants,
            BrowserScanner(timeout_seconds=timeout, user_agent=settings.browser_user_agent),
            RoleAccessPolicy(settings.privileged_roles),
            retry_attempts=settings.scan_retry_attempts,
        )
        try:
            outcome = gateway.scan(_CLI_USER, agent_id)
        except ScanError as e:
            print(f"  [!] {e.message}" + (f" ({e.detail})" if e.detail else ""), file=sys.stderr)
            return 1
    finally:
        reports.close()
        tenants.close()

    result = outcome.result
    if as_json:
        print(to_json(outcome.url, result.score, result.grade, result.issues_summary, result.issues, result.scanned_at))
    else:
        print_terminal(outcome.url, result.score, result.grade, result.issues_summary, result.issues)
        print(f"  Recorded as scan {result.scan_id}.\n")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="siteposture",
        description="Website security posture scan: detect, score, and grade client-visible weaknesses.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py https://example.com
  python main.py https://example.com --json > scan.json
  python main.py --agent agent-123
        """,
    )
    parser.add_argument("url", nargs="?", metavar="URL", help="Page to scan (http or https)")
    parser.add_argument(
        "--agent",
        metavar="AGENT_ID",
        help="Scan the registered agent's site and record the result in its Report",
    )
    parser.add_argument("--json", action="store_true", help="Output structured JSON")
    parser.add_argument(
        "--timeout",
        type=int,
        default=None,
        metavar="SECONDS",
        help="Navigation and script timeout (default: SCAN_TIMEOUT_SECONDS, 30)",
    )
    parser.add_argument("--no-color", action="store_true", help="Disable ANSI color codes in terminal output")
    args = parser.parse_args()

    if args.no_color:
        disable_color()

    # Library logs go to stderr so --json output stays parseable.
    logging.basicConfig(level=logging.WARNING, format="%(levelname)-5s %(name)s %(message)s", stream=sys.stderr)

    timeout = args.timeout or get_settings().scan_timeout_seconds
    if timeout < 1:
        parser.error("--timeout must be at least 1 second")

    if args.agent:
        sys.exit(scan_agent(args.agent, timeout, args.json))

    if not args.url:
        parser.print_help()
        return
    if not _valid_url(args.url):
        parser.error(f"'{args.url}' is not an http(s) URL")
    sys.exit(scan_url(args.url, timeout, args.json))


if __name__ == "__main__":
    main()
