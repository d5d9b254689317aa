"""Rich-text HTML to plain text projection.

Projects the editor's serialized HTML body into plain text for word-level
diffing and analytics, and pulls the structural markers (scene anchors)
and outline counts the rest of the pipeline relies on.

Handled:
  Dropped entirely: <script> and <style> blocks
  Block boundaries: p, h1-h6, li, blockquote, div, pre, br, hr
  Entities: all named and numeric entities (html.unescape)
  Anchors: <span data-scene-anchor="true" data-scene-id="..."> markers

Design decisions:
  - Tags are replaced by a space, never removed outright, so adjacent words
    in separate elements do not fuse ("<p>a</p><p>b</p>" is two words)
  - Whitespace collapses to single spaces unless paragraphs are preserved,
    in which case block boundaries become blank lines
  - Structure is a list of chapter objects, each with an optional "scenes"
    list; anything else counts as zero chapters/scenes
"""

import html as html_lib
import re
from typing import Any


# -- Plain Text Projection ------------------------------------------------------

_SCRIPT_RE = re.compile(r"<script[\s\S]*?>[\s\S]*?</script>", re.IGNORECASE)
_STYLE_RE = re.compile(r"<style[\s\S]*?>[\s\S]*?</style>", re.IGNORECASE)
_BLOCK_END_RE = re.compile(
    r"</(?:p|h[1-6]|li|blockquote|div|pre)\s*>|<br\s*/?>|<hr\s*/?>",
    re.IGNORECASE,
)
_TAG_RE = re.compile(r"<[^>]+>")
_WHITESPACE_RE = re.compile(r"\s+")
_INLINE_WHITESPACE_RE = re.compile(r"[^\S\n]+")
_BLANK_LINES_RE = re.compile(r"\n\s*\n+")


def html_to_plain_text(html: str | None, preserve_paragraphs: bool = False) -> str:
    """Convert an HTML body to plain text.

    Args:
        html: Serialized rich-text body.
        preserve_paragraphs: Keep block boundaries as blank lines instead of
            collapsing everything onto one line.

    Returns:
        Plain text string. Empty string for empty input.
    """
    if not html:
        return ""

    text = _SCRIPT_RE.sub("", html)
    text = _STYLE_RE.sub("", text)

    if preserve_paragraphs:
        text = _BLOCK_END_RE.sub("\n\n", text)
        text = _TAG_RE.sub(" ", text)
        text = html_lib.unescape(text)
        text = _INLINE_WHITESPACE_RE.sub(" ", text)
        lines = [line.strip() for line in text.split("\n")]
        text = _BLANK_LINES_RE.sub("\n\n", "\n".join(lines))
        return text.strip()

    text = _TAG_RE.sub(" ", text)
    text = html_lib.unescape(text)
    return _WHITESPACE_RE.sub(" ", text).strip()


def count_words(text: str) -> int:
    """Count whitespace-separated words."""
    return len(text.split())


def html_word_count(html: str | None) -> int:
    """Word count of an HTML body's plain text projection."""
    return count_words(html_to_plain_text(html))


def split_sentences(text: str) -> list[str]:
    """Split text into sentences on terminal punctuation followed by whitespace."""
    return [s.strip() for s in re.split(r"(?<=[.!?])\s+", text) if s.strip()]


def count_sentences(text: str) -> int:
    """Count runs of sentence-terminating punctuation."""
    return len(re.findall(r"[.!?]+", text))


def count_paragraphs(text: str) -> int:
    """Count blank-line separated paragraphs."""
    return len([p for p in re.split(r"\n\s*\n", text) if p.strip()])


# -- Structural Markers -----------------------------------------------------------

_SPAN_RE = re.compile(r"<span\b[^>]*>", re.IGNORECASE)
_ANCHOR_FLAG_RE = re.compile(r"""data-scene-anchor\s*=\s*["']true["']""", re.IGNORECASE)
_SCENE_ID_RE = re.compile(r"""data-scene-id\s*=\s*["']([^"']+)["']""", re.IGNORECASE)


def extract_anchor_ids(html: str | None) -> list[str]:
    """Collect scene anchor ids embedded in the body, in discovery order.

    Duplicates are dropped; attribute order within the span does not matter.
    """
    if not html:
        return []
    ids: dict[str, None] = {}
    for tag in _SPAN_RE.findall(html):
        if not _ANCHOR_FLAG_RE.search(tag):
            continue
        match = _SCENE_ID_RE.search(tag)
        if match:
            ids[match.group(1)] = None
    return list(ids)


def count_chapters(structure: Any) -> int:
    """Number of chapters in an outline structure."""
    if not isinstance(structure, list):
        return 0
    return len(structure)


def count_scenes(structure: Any) -> int:
    """Total scenes across all chapters of an outline structure."""
    if not isinstance(structure, list):
        return 0
    total = 0
    for chapter in structure:
        if isinstance(chapter, dict) and isinstance(chapter.get("scenes"), list):
            total += len(chapter["scenes"])
    return total
