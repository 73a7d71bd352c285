"""Conversions from Portable Text blocks and other source values to destination text."""

from __future__ import annotations

import re
from collections.abc import Mapping
from html import escape
from logging import getLogger
from typing import Any

log = getLogger(__name__)

_BLOCK_TAGS = {
    "normal": "p",
    "h1": "h1",
    "h2": "h2",
    "h3": "h3",
    "h4": "h4",
    "blockquote": "blockquote",
}
_LIST_TAGS = {"bullet": "ul", "number": "ol"}
# innermost first
_DECORATOR_TAGS = (
    ("strong", "strong"),
    ("em", "em"),
    ("underline", "u"),
    ("strike-through", "s"),
)
_SLUG_INVALID = re.compile(r"[^a-z0-9]+")
_WHITESPACE = re.compile(r"\s+")
_COMMA = re.compile(r"\s*,\s*")


def generate_slug(text: str | None) -> str:
    if not text:
        return "untitled"
    slug = _SLUG_INVALID.sub("-", text.lower()).strip("-")
    return slug or "untitled"


def clean_size(size: Any) -> str:
    """Normalise a free-form dimensions string (stray commas and spacing)."""

    if not isinstance(size, str):
        return ""
    cleaned = size.strip()
    cleaned = re.sub(r"^,\s*", "", cleaned)
    cleaned = re.sub(r",\s*$", "", cleaned)
    cleaned = _COMMA.sub(", ", cleaned)
    return _WHITESPACE.sub(" ", cleaned).strip()


def blocks_to_text(blocks: Any) -> str:
    if not isinstance(blocks, list):
        return ""
    texts = []
    for block in blocks:
        if isinstance(block, Mapping) and block.get("_type") == "block":
            texts.append("".join(_span_text(child) for child in block.get("children") or []))
    return " ".join(text for text in texts if text).strip()


def blocks_to_html(blocks: Any) -> str | None:
    """Render Portable Text blocks as the destination's rich text HTML.

    Consecutive list items of the same kind share one ``<ul>``/``<ol>``. Blocks
    of any ``_type`` other than ``block`` are dropped with a warning. Returns
    ``None`` when nothing renders.
    """

    if not isinstance(blocks, list):
        return None

    parts: list[str] = []
    open_list: str | None = None
    for block in blocks:
        if not isinstance(block, Mapping) or block.get("_type") != "block":
            kind = block.get("_type") if isinstance(block, Mapping) else type(block).__name__
            log.warning("Dropping unsupported rich text block of type %r", kind)
            continue

        content = _render_children(block)
        list_kind = block.get("listItem")
        if list_kind:
            list_tag = _LIST_TAGS.get(list_kind)
            if list_tag is None:
                log.warning("Dropping list item with unsupported kind %r", list_kind)
                continue
            if open_list != list_tag:
                if open_list is not None:
                    parts.append(f"</{open_list}>")
                parts.append(f"<{list_tag}>")
                open_list = list_tag
            parts.append(f"<li>{content}</li>")
            continue

        if open_list is not None:
            parts.append(f"</{open_list}>")
            open_list = None
        tag = _BLOCK_TAGS.get(block.get("style") or "normal", "p")
        parts.append(f"<{tag}>{content}</{tag}>")

    if open_list is not None:
        parts.append(f"</{open_list}>")
    return "".join(parts) or None


def split_sections(
    blocks: Any,
    *,
    marker_type: str = "imageMarker",
    count: int = 4,
) -> list[list[Mapping[str, Any]] | None]:
    """Split a long text at image markers (``reference: "images2"`` opens section 2).

    Markers themselves are not part of any section, text after the marker for
    the last image group is dropped and empty sections are ``None``.
    """

    sections: list[list[Mapping[str, Any]]] = [[] for _ in range(count)]
    if isinstance(blocks, list):
        current = 0
        for block in blocks:
            if not isinstance(block, Mapping):
                continue
            if block.get("_type") == marker_type:
                match = re.search(r"images(\d+)", str(block.get("reference") or ""))
                if match and 1 <= int(match.group(1)) <= count:
                    current = int(match.group(1))
                continue
            if current < count:
                sections[current].append(block)
    return [section or None for section in sections]


def _span_text(child: Any) -> str:
    if isinstance(child, Mapping):
        text = child.get("text")
        return text if isinstance(text, str) else ""
    return ""


def _render_children(block: Mapping[str, Any]) -> str:
    links = {
        definition.get("_key"): definition.get("href")
        for definition in block.get("markDefs") or []
        if isinstance(definition, Mapping) and definition.get("_type") == "link"
    }
    rendered = []
    for child in block.get("children") or []:
        text = escape(_span_text(child), quote=False)
        marks = (child.get("marks") or []) if isinstance(child, Mapping) else []
        href = next((links[mark] for mark in marks if mark in links and links[mark]), None)
        if href:
            text = f'<a href="{escape(str(href))}">{text}</a>'
        for mark, tag in _DECORATOR_TAGS:
            if mark in marks:
                text = f"<{tag}>{text}</{tag}>"
        rendered.append(text)
    return "".join(rendered)
