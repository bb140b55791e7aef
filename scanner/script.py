"""
scanner/script.py -- In-page detection routine run by the headless browser.

The script only reports evidence: each issue carries its catalog type code
and a details string. Severity and wording come from core/catalog.py at
ingestion, so the active and passive collectors cannot drift apart.

Returned shape (JSON-serializable, camelCase as produced in the page):
    {
      "issues": [{"type": "old_jquery", "details": "jQuery 1.12.4"}, ...],
      "meta": {"protocol": "https:", "hasHttpForms": false, ...}
    }
"""

# Hosts whose scripts are treated as well-known infrastructure and not
# counted toward the external_scripts threshold.
TRUSTED_SCRIPT_HOST_MARKERS = ("cdn", "cloudflare", "google")

EXTERNAL_SCRIPT_THRESHOLD = 5
COOKIE_THRESHOLD = 3

DETECTION_SCRIPT = """
() => {
  const issues = [];
  const https = window.location.protocol === "https:";

  if (!https) {
    issues.push({ type: "https_missing", details: "Protocol: " + window.location.protocol });
  }

  const httpForms = document.querySelectorAll('form[action^="http:"]');
  if (httpForms.length > 0) {
    issues.push({ type: "http_form", details: "Forms posting over HTTP: " + httpForms.length });
  }

  const mixed = [];
  document.querySelectorAll('img[src^="http:"]').forEach((el) => mixed.push(el.src));
  document.querySelectorAll('script[src^="http:"]').forEach((el) => mixed.push(el.src));
  document.querySelectorAll('link[href^="http:"]').forEach((el) => mixed.push(el.href));
  if (https && mixed.length > 0) {
    issues.push({
      type: "mixed_content",
      details: mixed.slice(0, 5).join(", ") + (mixed.length > 5 ? "..." : ""),
    });
  }

  const host = window.location.hostname;
  const markers = %(markers)s;
  const external = [];
  document.querySelectorAll("script[src]").forEach((el) => {
    try {
      const url = new URL(el.src);
      if (url.hostname !== host && !markers.some((m) => url.hostname.includes(m))) {
        external.push(url.hostname);
      }
    } catch (e) {}
  });
  if (external.length > %(script_threshold)d) {
    issues.push({
      type: "external_scripts",
      details: [...new Set(external)].slice(0, 5).join(", "),
    });
  }

  let jqueryVersion = null;
  if (typeof window.jQuery !== "undefined" && window.jQuery.fn && window.jQuery.fn.jquery) {
    jqueryVersion = String(window.jQuery.fn.jquery);
    const parts = jqueryVersion.split(".");
    const major = parseInt(parts[0], 10);
    const minor = parseInt(parts[1] || "0", 10);
    if (major < 3 || (major === 3 && minor < 5)) {
      issues.push({ type: "old_jquery", details: "jQuery " + jqueryVersion });
    }
  }

  const cookies = document.cookie.split(";").filter((c) => c.trim().length > 0);
  if (cookies.length > %(cookie_threshold)d) {
    issues.push({ type: "cookie_security", details: "Script-readable cookies: " + cookies.length });
  }

  let weakPasswords = 0;
  document.querySelectorAll('input[type="password"]').forEach((el) => {
    const value = el.getAttribute("autocomplete");
    if (!value || value === "on") {
      weakPasswords++;
    }
  });
  if (weakPasswords > 0) {
    issues.push({ type: "password_autocomplete", details: "Password fields: " + weakPasswords });
  }

  const csp = document.querySelector('meta[http-equiv="Content-Security-Policy"]');
  const xfo = document.querySelector('meta[http-equiv="X-Frame-Options"]');
  if (!csp && !xfo) {
    issues.push({ type: "no_frame_protection" });
  }

  return {
    issues: issues,
    meta: {
      protocol: window.location.protocol,
      hasHttpForms: httpForms.length > 0,
      hasMixedContent: https && mixed.length > 0,
      externalScripts: [...new Set(external)],
      jqueryVersion: jqueryVersion,
      cookieTotal: cookies.length,
      title: document.title || null,
    },
  };
}
""" % {
    "markers": "[" + ", ".join(f'"{m}"' for m in TRUSTED_SCRIPT_HOST_MARKERS) + "]",
    "script_threshold": EXTERNAL_SCRIPT_THRESHOLD,
    "cookie_threshold": COOKIE_THRESHOLD,
}
