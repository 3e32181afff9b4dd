"""Rendering of Spectrum threads into Discord embeds."""

from __future__ import annotations

import html
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, Sequence

from .models import RenderedThread
from .threads import build_thread_url, extract_slug

DESCRIPTION_LIMIT = 3900
TITLE_LIMIT = 256
EMBED_COLOR = 0x00AAFF
DEFAULT_TITLE = "New Spectrum thread"
DEFAULT_AUTHOR = "Spectrum"
UNKNOWN_AUTHOR = "Unknown Author"
NO_CONTENT = "*no content found*"
TRUNCATION_NOTICE = "*…view full post on Spectrum for the rest.*"
TECHNICAL_HEADER = "**Technical**"

_KNOWN_ISSUES = "Known issues"
_BUG_FIXES = "Bug fixes"
# A heading opens a summarised section when it contains every listed word.
_SUMMARISED_SECTIONS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("known", "issue"), _KNOWN_ISSUES),
    (("bug", "fix"), _BUG_FIXES),
)
_TECHNICAL_WORD = "technical"
_LIST_ITEM_TYPES = frozenset({"unordered-list-item", "ordered-list-item"})
_TECHNICAL_SECTION = "technical"

_HEADING_MARKERS = {"header-one": "**", "header-two": "__"}
_DEEP_HEADING_MARKER = "***"


@dataclass(slots=True)
class _Line:
    text: str
    kind: str


def render_description(detail: Mapping[str, Any] | None, *, limit: int = DESCRIPTION_LIMIT) -> str:
    """Render thread content as bounded markdown text."""

    if not isinstance(detail, Mapping):
        return NO_CONTENT

    lines, counts, freeform, technical = _render_blocks(detail.get("content_blocks"))
    note = _technical_note(counts, freeform, technical, limit // 2)
    if lines or note:
        return _fit(lines, note, limit)

    fallback = format_plain_text(_fallback_body(detail))
    if not fallback:
        return NO_CONTENT
    paragraphs = [_Line(part, "paragraph") for part in fallback.split("\n")]
    return _fit(paragraphs, "", limit)


def extract_image_url(blocks: Any) -> str | None:
    """Return the first image URL, preferring the largest rendition."""

    if not isinstance(blocks, list):
        return None
    for block in blocks:
        if not isinstance(block, Mapping) or block.get("type") != "image":
            continue
        entries = block.get("data")
        if not isinstance(entries, list):
            continue
        for entry in entries:
            data = entry.get("data") if isinstance(entry, Mapping) else None
            if not isinstance(data, Mapping):
                continue
            sizes = data.get("sizes") if isinstance(data.get("sizes"), Mapping) else {}
            candidates = [
                _nested(sizes, "large", "url"),
                _nested(sizes, "medium", "url"),
                _nested(sizes, "small", "url"),
                data.get("url"),
            ]
            for candidate in candidates:
                if isinstance(candidate, str) and candidate.strip():
                    return candidate.strip()
    return None


def format_plain_text(text: Any) -> str:
    """Strip HTML and BBCode markup from a legacy post body."""

    if not text:
        return ""
    cleaned = str(text)
    cleaned = _BR_RE.sub("\n", cleaned)
    cleaned = _PARAGRAPH_BREAK_RE.sub("\n\n", cleaned)
    cleaned = _PARAGRAPH_TAG_RE.sub("", cleaned)
    cleaned = _BBCODE_RE.sub("", cleaned)
    cleaned = _HTML_TAG_RE.sub("", cleaned)
    cleaned = html.unescape(cleaned).replace("\r\n", "\n")
    return cleaned.strip()


def render_thread(
    forum_id: str,
    thread: Mapping[str, Any] | None,
    detail: Mapping[str, Any] | None,
    *,
    now: datetime | None = None,
) -> RenderedThread:
    thread = thread if isinstance(thread, Mapping) else {}
    detail = detail if isinstance(detail, Mapping) else {}

    slug = extract_slug(thread) or extract_slug(detail)
    title = _first_text(
        thread.get("subject"), detail.get("subject"), detail.get("title")
    ) or DEFAULT_TITLE
    if len(title) > TITLE_LIMIT:
        title = title[: TITLE_LIMIT - 1].rstrip() + "…"

    author = _find_author(thread, detail)
    if author is not None:
        author_name = _first_text(
            author.get("displayname"), author.get("nickname"), author.get("handle")
        ) or UNKNOWN_AUTHOR
        author_icon = _first_text(author.get("avatar")) or None
    else:
        author_name = DEFAULT_AUTHOR
        author_icon = None

    category = _first_text(
        _nested(detail, "category", "name"), _nested(thread, "category", "name")
    )

    return RenderedThread(
        title=title,
        url=build_thread_url(forum_id, slug),
        author_name=author_name,
        author_icon=author_icon,
        description=render_description(detail),
        image_url=extract_image_url(detail.get("content_blocks")),
        footer=f"{DEFAULT_AUTHOR} • {category}" if category else DEFAULT_AUTHOR,
        timestamp=now or datetime.now(timezone.utc),
    )


def build_embed(rendered: RenderedThread) -> dict[str, Any]:
    author: dict[str, Any] = {"name": rendered.author_name}
    if rendered.author_icon:
        author["icon_url"] = rendered.author_icon

    embed: dict[str, Any] = {
        "title": rendered.title,
        "url": rendered.url,
        "color": EMBED_COLOR,
        "timestamp": rendered.timestamp.isoformat(),
        "author": author,
    }
    if rendered.description.strip():
        embed["description"] = rendered.description
    if rendered.image_url:
        embed["image"] = {"url": rendered.image_url}
    if rendered.footer:
        embed["footer"] = {"text": rendered.footer}
    return embed


def _render_blocks(
    blocks: Any,
) -> tuple[list[_Line], dict[str, int], list[str], list[str]]:
    """Split text nodes into body lines, section counts and note material.

    Only list items are counted in summarised sections. Other text under a
    known-issues heading is kept for the note; under a bug-fix heading it is
    dropped.
    """

    lines: list[_Line] = []
    counts = {label: 0 for _, label in _SUMMARISED_SECTIONS}
    freeform: list[str] = []
    technical: list[str] = []
    if not isinstance(blocks, list):
        return lines, counts, freeform, technical

    section: str | None = None
    for block in blocks:
        if not isinstance(block, Mapping) or block.get("type") not in (None, "text"):
            continue
        data = block.get("data")
        nodes = data.get("blocks") if isinstance(data, Mapping) else None
        if not isinstance(nodes, list):
            continue

        ordered = 0
        for node in nodes:
            if not isinstance(node, Mapping) or not isinstance(node.get("text"), str):
                continue
            text = node["text"].strip()
            if not text:
                continue
            node_type = str(node.get("type") or "unstyled")

            if node_type.startswith("header-"):
                section = _section_for_heading(text)
                if section is None:
                    lines.append(_Line(_emphasise_heading(node_type, text), "heading"))
                continue

            if node_type == "unordered-list-item":
                rendered, kind = f"- {text}", "list"
            elif node_type == "ordered-list-item":
                ordered += 1
                rendered, kind = f"{ordered}. {text}", "list"
            elif node_type == "blockquote":
                rendered, kind = f"> {text}", "quote"
            else:
                rendered, kind = text, "paragraph"

            if section in counts:
                if node_type in _LIST_ITEM_TYPES:
                    counts[section] += 1
                elif section == _KNOWN_ISSUES:
                    freeform.append(rendered)
            elif section == _TECHNICAL_SECTION:
                technical.append(rendered)
            else:
                lines.append(_Line(rendered, kind))
    return lines, counts, freeform, technical


def _section_for_heading(text: str) -> str | None:
    lower = text.lower()
    for words, label in _SUMMARISED_SECTIONS:
        if all(word in lower for word in words):
            return label
    if _TECHNICAL_WORD in lower:
        return _TECHNICAL_SECTION
    return None


def _emphasise_heading(node_type: str, text: str) -> str:
    marker = _HEADING_MARKERS.get(node_type, _DEEP_HEADING_MARKER)
    return f"{marker}{text}{marker}"


def _technical_note(
    counts: Mapping[str, int],
    freeform: Sequence[str],
    technical: Sequence[str],
    limit: int,
) -> str:
    summary = " • ".join(f"{label}: {count}" for label, count in counts.items() if count)
    if not summary and not freeform and not technical:
        return ""
    parts = [TECHNICAL_HEADER]
    length = len(TECHNICAL_HEADER) + 1
    if summary:
        length += len(summary) + 1

    def take(items: Sequence[str]) -> None:
        nonlocal length
        for item in items:
            if length + len(item) + 1 > limit:
                return
            parts.append(item)
            length += len(item) + 1

    # Known-issue prose precedes the counts, technical items follow them.
    take(freeform)
    if summary:
        parts.append(summary)
    take(technical)
    return "\n".join(parts)


def _fit(lines: Sequence[_Line], note: str, limit: int) -> str:
    note_part = f"\n\n{note}" if note else ""
    full = "\n".join(line.text for line in lines)
    if len(full) + len(note_part) <= limit:
        return _compose(full, note)

    available = limit - len(note_part) - len(TRUNCATION_NOTICE) - 1
    kept: list[str] = []
    used = 0
    for line in lines:
        separator = 1 if kept else 0
        if used + separator + len(line.text) <= available:
            kept.append(line.text)
            used += separator + len(line.text)
            continue
        if line.kind == "paragraph":
            partial = _cut_at_sentence(line.text, available - used - separator)
            if partial:
                kept.append(partial)
        break
    kept.append(TRUNCATION_NOTICE)
    return _compose("\n".join(kept), note)


def _compose(body: str, note: str) -> str:
    return "\n\n".join(part for part in (body, note) if part)


def _cut_at_sentence(text: str, room: int) -> str:
    if room <= 0:
        return ""
    end = 0
    for match in _SENTENCE_END_RE.finditer(text):
        if match.end() > room:
            break
        end = match.end()
    return text[:end].rstrip()


def _fallback_body(detail: Mapping[str, Any]) -> Any:
    posts = detail.get("posts")
    first_post = posts[0] if isinstance(posts, list) and posts else None
    candidates: Iterable[Any] = (
        _nested(first_post, "body"),
        _nested(detail, "post", "body"),
        _nested(detail, "first_post", "body"),
        detail.get("body"),
        detail.get("content"),
    )
    for candidate in candidates:
        if candidate:
            return candidate
    return None


def _find_author(
    thread: Mapping[str, Any], detail: Mapping[str, Any]
) -> Mapping[str, Any] | None:
    posts = detail.get("posts")
    first_post = posts[0] if isinstance(posts, list) and posts else None
    for candidate in (
        thread.get("member"),
        detail.get("member"),
        detail.get("author"),
        _nested(first_post, "author"),
    ):
        if isinstance(candidate, Mapping):
            return candidate
    return None


def _nested(value: Any, *path: str) -> Any:
    node = value
    for key in path:
        if not isinstance(node, Mapping):
            return None
        node = node.get(key)
    return node


def _first_text(*values: Any) -> str:
    for value in values:
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


_BR_RE = re.compile(r"<br\s*/?>", re.IGNORECASE)
_PARAGRAPH_BREAK_RE = re.compile(r"</p>\s*<p>", re.IGNORECASE)
_PARAGRAPH_TAG_RE = re.compile(r"</?p>", re.IGNORECASE)
_BBCODE_RE = re.compile(r"\[/?(?:b|i|u|quote|url|img|center|color|size)[^\]]*\]", re.IGNORECASE)
_HTML_TAG_RE = re.compile(r"<[^>]+>")
_SENTENCE_END_RE = re.compile(r"[.!?]+[\"')\]]*(?=\s|$)")
