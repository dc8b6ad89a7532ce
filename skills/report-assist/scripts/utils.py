#!/usr/bin/env python3
"""
ABOUTME: Shared helpers for report assist scripts
ABOUTME: XML sanitization, log previews and environment configuration
"""

import os


DEFAULT_HIGHLIGHT_CLASS = "ai-selection-highlight"
DEFAULT_AUDIENCE = "management"
DEFAULT_PREVIEW_LENGTH = 30


def sanitize_xml_string(text: str) -> str:
    """
    Remove control characters that are illegal in XML 1.0.

    XML 1.0 allows: #x9 (tab), #xA (LF), #xD (CR), and #x20-#xD7FF, #xE000-#xFFFD, #x10000-#x10FFFF
    This function removes all other control characters (0x00-0x08, 0x0B, 0x0C, 0x0E-0x1F).
    lxml refuses such characters when they are assigned to element text, so every
    string coming from the generation service passes through here first.

    Args:
        text: Text that may contain control characters

    Returns:
        Sanitized text safe for XML. Returns input unchanged if not a non-empty string.
    """
    if not text or not isinstance(text, str):
        return text
    # Keep: \t (0x09), \n (0x0A), \r (0x0D)
    illegal_chars = ''.join(
        chr(c) for c in range(0x20)
        if c not in (0x09, 0x0A, 0x0D)
    )
    return text.translate(str.maketrans('', '', illegal_chars))


def format_text_preview(text: str, max_len: int = None) -> str:
    """
    Format text for log output: remove newlines and truncate.

    Args:
        text: Text to format
        max_len: Maximum length before truncation (default: REPORT_ASSIST_PREVIEW_LENGTH)

    Returns:
        Clean, truncated text with "..." suffix if truncated
    """
    if not text:
        return ""
    if max_len is None:
        max_len = get_preview_length()
    clean = text.replace('\n', ' ').replace('\r', '').replace('\t', ' ')
    while '  ' in clean:
        clean = clean.replace('  ', ' ')
    clean = clean.strip()
    if len(clean) > max_len:
        return clean[:max_len] + "..."
    return clean


def env_flag(name: str, default: bool = False) -> bool:
    """Read a true/false environment variable."""
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def is_verbose_mode() -> bool:
    """
    Check if verbose output is enabled via environment variable.

    Returns:
        True if REPORT_ASSIST_VERBOSE is set to 'true', False otherwise
    """
    return env_flag("REPORT_ASSIST_VERBOSE")


def get_highlight_class() -> str:
    """CSS class applied to annotation elements (REPORT_ASSIST_HIGHLIGHT_CLASS)."""
    value = os.getenv("REPORT_ASSIST_HIGHLIGHT_CLASS", "").strip()
    return value or DEFAULT_HIGHLIGHT_CLASS


def get_default_audience() -> str:
    """Audience sent in the request context (REPORT_ASSIST_AUDIENCE)."""
    value = os.getenv("REPORT_ASSIST_AUDIENCE", "").strip()
    return value or DEFAULT_AUDIENCE


def get_preview_length() -> int:
    """
    Maximum characters of user text shown in log previews.

    Reads REPORT_ASSIST_PREVIEW_LENGTH; invalid or non-positive values fall back
    to the default.
    """
    raw = os.getenv("REPORT_ASSIST_PREVIEW_LENGTH", "").strip()
    if not raw:
        return DEFAULT_PREVIEW_LENGTH
    try:
        limit = int(raw)
    except ValueError:
        print(f"  [Warning] Ignoring invalid REPORT_ASSIST_PREVIEW_LENGTH: {raw!r}")
        return DEFAULT_PREVIEW_LENGTH
    return limit if limit > 0 else DEFAULT_PREVIEW_LENGTH
