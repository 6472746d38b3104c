"""Plain-text sanitizing for model replies shown in the chat UI."""

from __future__ import annotations

import re

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)
_HEADING_RE = re.compile(r"^\s{0,3}#{1,6}\s+", re.MULTILINE)
_BULLET_RE = re.compile(r"^\s*[-*+]\s+", re.MULTILINE)
_NUMBERED_RE = re.compile(r"^\s*(\d+)\.\s+", re.MULTILINE)
# One pass so URLs (linked or bare) keep their underscores and tildes
_INLINE_RE = re.compile(
    r"\[(?P<text>[^\]]+)\]\((?P<href>[^)\s]+)\)"
    r"|(?P<url>https?://[^\s)\]*`]+)"
    r"|[*_~`]"
)
_EMPHASIS_RE = re.compile(r"[*_~`]")
_BLANK_RUN_RE = re.compile(r"\n{3,}")

BULLET = "• "


def _inline(match: re.Match[str]) -> str:
    if match.group("href") is not None:
        return f"{_EMPHASIS_RE.sub('', match.group('text'))} ({match.group('href')})"
    if match.group("url") is not None:
        return match.group("url")
    return ""


def strip_markdown(text: str) -> str:
    """Flatten markdown into plain sentences.

    Fenced blocks are unwrapped, headings lose their hashes, list markers
    become a single bullet glyph (or ``1)`` for numbered lists), links become
    ``text (url)`` and emphasis markers are dropped everywhere except inside
    URLs. Runs of blank lines collapse to one.
    """
    s = _FENCE_RE.sub(r"\1", text)
    s = _HEADING_RE.sub("", s)
    s = _BULLET_RE.sub(BULLET, s)
    s = _NUMBERED_RE.sub(r"\1) ", s)
    s = _INLINE_RE.sub(_inline, s)
    s = _BLANK_RUN_RE.sub("\n\n", s)
    return s.strip()


def truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[: max(0, limit - 1)].rstrip() + "…"
