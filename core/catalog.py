"""
catalog.py — Canonical issue catalog and raw-issue normalization.

The detector is a source of evidence; this table is the source of meaning.
When a raw issue's type is known, severity and guidance text always come from
here, so a buggy or hostile collector cannot raise or lower a severity.
"""

import logging
import uuid
from typing import Optional

from .models import SEVERITIES, Issue, RawIssue

logger = logging.getLogger("siteposture.catalog")

# ---------------------------------------------------------------------------
# Issue types: severity, plain-language text, and remediation guidance
# ---------------------------------------------------------------------------

ISSUE_CATALOG: dict[str, dict] = {
    "https_missing": {
        "severity": "critical",
        "title": "HTTPS not used (no encrypted transport)",
        "description": "The site is served without HTTPS (SSL/TLS). All traffic is sent in plain text"
        " and can be read by anyone on the network path.",
        "technical_detail": "Plain HTTP carries application data unencrypted. An attacker on the same network"
        " can capture it with a packet sniffer or tamper with it through a man-in-the-middle attack.",
        "potential_damage": [
            "Leaked login credentials",
            "Theft of payment card data",
            "Exposure of personal data such as names, addresses and phone numbers",
            "Session hijacking",
            "Redirects to phishing pages",
            "Browser 'Not secure' warnings driving visitors away",
        ],
        "recommendation": "Obtain a TLS certificate and serve the whole site over HTTPS. Let's Encrypt issues"
        " certificates for free. Add a Strict-Transport-Security header to force HTTPS on every visit.",
        "references": [
            "https://letsencrypt.org/",
            "https://developer.mozilla.org/en-US/docs/Web/HTTP/Headers/Strict-Transport-Security",
        ],
    },
    "http_form": {
        "severity": "critical",
        "title": "Form submits over HTTP",
        "description": "At least one form posts to an http:// URL. Whatever visitors type into it crosses"
        " the network unencrypted.",
        "technical_detail": "A form whose action attribute starts with http:// sends its fields in plain"
        " text. Login, sign-up and contact forms make this a serious exposure.",
        "potential_damage": [
            "Disclosure of everything entered in the form",
            "Account takeover through stolen credentials",
            "Liability under personal-data protection law",
            "Regulatory fines under GDPR and similar regimes",
        ],
        "recommendation": "Point every form action at an https:// URL, or use a relative path so the"
        " form inherits the page's protocol.",
        "references": [],
    },
    "mixed_content": {
        "severity": "high",
        "title": "Mixed content",
        "description": "An HTTPS page loads images, scripts or stylesheets over HTTP, partially"
        " defeating the encryption of the page.",
        "technical_detail": "Passive mixed content (images, media) leaks what a visitor views. Active mixed"
        " content (scripts, stylesheets) lets an attacker who rewrites the resource control the whole page.",
        "potential_damage": [
            "Script tampering leading to cross-site scripting",
            "Defacement of page content",
            "Tracking of visitor behaviour",
            "Missing padlock and browser warnings",
        ],
        "recommendation": "Load every resource over HTTPS. The Content-Security-Policy directive"
        " 'upgrade-insecure-requests' rewrites remaining HTTP requests automatically.",
        "references": [],
    },
    "external_scripts": {
        "severity": "info",
        "title": "Many third-party scripts",
        "description": "JavaScript is loaded from several external domains. Review each one and keep only"
        " what the site needs.",
        "technical_detail": "Third-party scripts run with full page privileges. If the serving host is"
        " compromised, or the package is hit by a supply-chain attack, malicious code runs on this site.",
        "potential_damage": [
            "Malware injected through the supply chain",
            "Skimming of form data to external hosts",
            "Cryptojacking",
            "Slower pages and outages when a provider fails",
        ],
        "recommendation": "Remove unused scripts, add Subresource Integrity to the rest, and list allowed"
        " script sources in a Content-Security-Policy header.",
        "references": [],
    },
    "old_jquery": {
        "severity": "medium",
        "title": "Vulnerable jQuery version",
        "description": "The page uses a jQuery release with known security vulnerabilities that can be"
        " abused for cross-site scripting.",
        "technical_detail": "jQuery before 3.5.0 is affected by CVE-2020-11022 and CVE-2020-11023: HTML"
        " passed to DOM manipulation methods is not sanitized safely and can execute script.",
        "potential_damage": [
            "Session cookie theft through XSS",
            "Injected phishing content",
            "Keyloggers capturing visitor input",
            "Redirects to malware distribution sites",
        ],
        "recommendation": "Upgrade jQuery to the current stable release, and consider replacing it with"
        " native browser APIs where practical.",
        "references": [
            "https://nvd.nist.gov/vuln/detail/CVE-2020-11022",
            "https://jquery.com/upgrade-guide/",
        ],
    },
    "cookie_security": {
        "severity": "medium",
        "title": "Weak cookie security flags",
        "description": "Many cookies are readable from JavaScript. Session cookies without HttpOnly can"
        " be stolen through cross-site scripting.",
        "technical_detail": "Cookies visible through document.cookie are reachable by any script on the"
        " page. HttpOnly hides a cookie from scripts; Secure keeps it off plain HTTP connections.",
        "potential_damage": [
            "Session hijacking",
            "Actions performed while impersonating the user",
            "Access to personal and account data",
            "Full account takeover",
        ],
        "recommendation": "Set HttpOnly and Secure on session cookies, and SameSite=Strict or Lax to"
        " block cross-site request forgery.",
        "references": [],
    },
    "password_autocomplete": {
        "severity": "low",
        "title": "Password field autocomplete not set",
        "description": "Password inputs lack an explicit autocomplete attribute, so browsers may store"
        " or auto-fill them unexpectedly.",
        "technical_detail": "When autocomplete is missing or set to 'on', browsers may save and replay"
        " the password. On shared or public machines another person can reuse it.",
        "potential_damage": [
            "Password exposure on shared devices",
            "Unintended automatic sign-in",
            "Leaks through the browser password manager",
        ],
        "recommendation": 'Use autocomplete="new-password" on new-password fields and'
        ' autocomplete="current-password" on login fields.',
        "references": [],
    },
    "no_frame_protection": {
        "severity": "low",
        "title": "No clickjacking protection",
        "description": "Neither X-Frame-Options nor a Content-Security-Policy frame-ancestors directive"
        " appears to be set, so the site can be framed by other pages.",
        "technical_detail": "Clickjacking loads the site in a transparent iframe under a decoy UI so the"
        " visitor clicks on something they cannot see.",
        "potential_damage": [
            "Unintended likes, follows or purchases",
            "Forced settings or account changes",
            "Unintended disclosure of private information",
            "Unauthorized payments",
        ],
        "recommendation": "Send 'X-Frame-Options: DENY' or 'SAMEORIGIN', or a Content-Security-Policy"
        " with \"frame-ancestors 'self'\".",
        "references": [],
    },
}

# ---------------------------------------------------------------------------
# Grade descriptions, consumed by report renderers
# ---------------------------------------------------------------------------

GRADE_DESCRIPTIONS: dict[str, dict[str, str]] = {
    "A": {
        "label": "Excellent",
        "description": "Security controls are in place and no serious weaknesses were detected. Keep"
        " scanning regularly and follow security advisories.",
    },
    "B": {
        "label": "Good",
        "description": "The basics are covered but there is room for improvement. Fixing the detected"
        " issues will harden the site further.",
    },
    "C": {
        "label": "Needs improvement",
        "description": "Several security problems were detected and should be addressed soon, starting"
        " with the highest severity.",
    },
    "D": {
        "label": "At risk",
        "description": "Serious risks are present and likely to be exploited. Act immediately and"
        " consider bringing in a specialist.",
    },
    "F": {
        "label": "Critical",
        "description": "Multiple severe weaknesses were detected. The risk of an incident is very high;"
        " consider emergency measures including taking the site offline.",
    },
}

_UNKNOWN_TYPE = "unknown"
_UNKNOWN_TITLE = "Unknown Issue"


def get_entry(issue_type: str) -> Optional[dict]:
    """Return the catalog entry for a type code, or None if the type is not catalogued."""
    return ISSUE_CATALOG.get(issue_type)


def normalize(raw: RawIssue, detected_at: str) -> Issue:
    """Map a raw detector issue onto the canonical Issue.

    Known type: catalog severity/title/description/recommendation win, the id
    becomes the type code, and only `details` is taken from the detector.
    Unknown type: detector fields pass through with defaults. An invalid or
    missing severity falls back to "info" so the issue is still counted.
    Never drops an issue.
    """
    issue_type = raw.type or _UNKNOWN_TYPE
    entry = ISSUE_CATALOG.get(issue_type)
    if entry is not None:
        return Issue(
            id=issue_type,
            type=issue_type,
            severity=entry["severity"],
            title=entry["title"],
            description=entry["description"],
            recommendation=entry["recommendation"],
            details=raw.details,
            detected_at=detected_at,
        )

    severity = raw.severity if raw.severity in SEVERITIES else "info"
    if raw.severity and severity != raw.severity:
        logger.debug("Unknown issue type %r carried invalid severity %r; using info", issue_type, raw.severity)
    return Issue(
        id=raw.id or uuid.uuid4().hex,
        type=issue_type,
        severity=severity,
        title=raw.title or _UNKNOWN_TITLE,
        description=raw.description or "",
        recommendation=raw.recommendation or "",
        details=raw.details,
        detected_at=detected_at,
    )


def normalize_all(raw_issues: list[RawIssue], detected_at: str) -> list[Issue]:
    """Normalize a batch with a single ingestion timestamp, preserving order."""
    return [normalize(raw, detected_at) for raw in raw_issues]
