"""Input sanitization utilities.

Every function is total: non-string input yields a neutral value ("" or
False) instead of raising. `contains_xss` and `contains_sql_injection` are
advisory scans for logging/blocking decisions; they never modify data.
"""

from __future__ import annotations

import re
from typing import Any

_HTML_ENTITIES: dict[str, str] = {
    "&": "&amp;",
    "<": "&lt;",
    ">": "&gt;",
    '"': "&quot;",
    "'": "&#x27;",
    "/": "&#x2F;",
    "`": "&#x60;",
    "=": "&#x3D;",
}
_HTML_META = re.compile(r"[&<>\"'`=/]")
_TAG = re.compile(r"<[^>]*>")

_SCRIPT_BLOCK = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)
_EVENT_HANDLER = re.compile(r"\s*on\w+\s*=\s*[\"'][^\"']*[\"']", re.IGNORECASE)
_JS_SCHEME = re.compile(r"javascript:", re.IGNORECASE)
_DATA_BASE64 = re.compile(r"data:[^,]*base64[^\"']*", re.IGNORECASE)

_DANGEROUS_TAGS = (
    "script", "iframe", "object", "embed", "form", "input",
    "button", "textarea", "select", "style", "link", "meta",
    "base", "applet", "frame", "frameset", "layer", "ilayer",
    "bgsound", "xml", "xss",
)
_DANGEROUS_TAG_PATTERNS = [
    re.compile(rf"<{tag}[^>]*>.*?</{tag}>|<{tag}[^>]*/>|<{tag}[^>]*>", re.IGNORECASE)
    for tag in _DANGEROUS_TAGS
]

_EMAIL = re.compile(r"[^\s@]+@[^\s@]+\.[^\s@]+")
_DANGEROUS_SCHEMES = ("javascript:", "data:", "vbscript:", "file:")

_XSS_PATTERNS = [
    re.compile(r"<script", re.IGNORECASE),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"on\w+\s*=", re.IGNORECASE),
    re.compile(r"<iframe", re.IGNORECASE),
    re.compile(r"<object", re.IGNORECASE),
    re.compile(r"<embed", re.IGNORECASE),
    re.compile(r"data:text/html", re.IGNORECASE),
    re.compile(r"expression\s*\(", re.IGNORECASE),
    re.compile(r"vbscript:", re.IGNORECASE),
]
_SQL_PATTERNS = [
    re.compile(r"(\bor\b|\band\b)\s+\d+\s*=\s*\d+", re.IGNORECASE),
    re.compile(r"union\s+(all\s+)?select", re.IGNORECASE),
    re.compile(r";\s*(drop|delete|truncate|alter)\s", re.IGNORECASE),
    re.compile(r"'\s*or\s+'[^']*'\s*=\s*'", re.IGNORECASE),
    re.compile(r"--\s*$"),
    re.compile(r"/\*.*\*/"),
]
_SQL_KEYWORDS = re.compile(
    r"\b(union|select|insert|update|delete|drop|truncate|alter|exec|execute|xp_)\b",
    re.IGNORECASE,
)


def escape_html(value: Any) -> str:
    """Escape HTML metacharacters so the text can be echoed safely."""
    if not isinstance(value, str):
        return ""
    return _HTML_META.sub(lambda m: _HTML_ENTITIES[m.group(0)], value)


def strip_html(value: Any) -> str:
    """Remove all tags, keep the text between them."""
    if not isinstance(value, str):
        return ""
    return _TAG.sub("", value)


def remove_scripts(value: Any) -> str:
    """Remove script blocks, inline event handlers and script-bearing URLs."""
    if not isinstance(value, str):
        return ""
    result = _SCRIPT_BLOCK.sub("", value)
    result = _EVENT_HANDLER.sub("", result)
    result = _JS_SCHEME.sub("", result)
    return _DATA_BASE64.sub("", result)


def sanitize_html(value: Any) -> str:
    """Keep benign markup, drop scripts and active/embedding tags."""
    if not isinstance(value, str):
        return ""
    result = remove_scripts(value)
    for pattern in _DANGEROUS_TAG_PATTERNS:
        result = pattern.sub("", result)
    return result


def sanitize_text(value: Any) -> str:
    """Plain-text field: no markup at all, surrounding whitespace trimmed."""
    if not isinstance(value, str):
        return ""
    return strip_html(value).strip()


def sanitize_email(value: Any) -> str:
    """Normalize an email address, or return "" if it is not one.

    Callers must treat "" as invalid and reject the request. Idempotent.
    """
    if not isinstance(value, str):
        return ""
    cleaned = strip_html(value).strip().lower()
    return cleaned if _EMAIL.fullmatch(cleaned) else ""


def sanitize_url(value: Any) -> str:
    """Reject dangerous schemes; default bare hosts to https."""
    if not isinstance(value, str):
        return ""
    cleaned = strip_html(value).strip()

    lower = cleaned.lower()
    if any(lower.startswith(scheme) for scheme in _DANGEROUS_SCHEMES):
        return ""

    if cleaned.startswith(("http://", "https://", "/")):
        return cleaned

    if cleaned and "://" not in cleaned:
        return f"https://{cleaned}"

    return ""


def sanitize_filename(value: Any) -> str:
    """Strip traversal, separators and null bytes; keep [A-Za-z0-9._-]."""
    if not isinstance(value, str):
        return ""
    result = value.replace("..", "")
    result = re.sub(r"[/\\]", "", result)
    result = result.replace("\0", "")
    result = re.sub(r"[^a-zA-Z0-9._-]", "_", result)
    result = re.sub(r"\.+", ".", result)
    result = re.sub(r"^[.\s]+|[.\s]+$", "", result)
    return result.strip()


def sanitize_json(value: Any) -> Any:
    """Deep-clean every key and string value of a JSON-like structure."""
    if isinstance(value, str):
        return sanitize_text(value)
    if isinstance(value, list):
        return [sanitize_json(item) for item in value]
    if isinstance(value, dict):
        return {sanitize_text(str(k)): sanitize_json(v) for k, v in value.items()}
    return value


def sanitize_sql_input(value: Any) -> str:
    """Drop comment markers, quotes and statement keywords."""
    if not isinstance(value, str):
        return ""
    result = value.replace("--", "")
    result = re.sub(r"/\*[\s\S]*?\*/", "", result)
    result = re.sub(r"['\";]", "", result)
    result = _SQL_KEYWORDS.sub("", result)
    return result.strip()


def contains_xss(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    return any(p.search(value) for p in _XSS_PATTERNS)


def contains_sql_injection(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    return any(p.search(value) for p in _SQL_PATTERNS)
