"""Markdown section extractor.

Pulls a named section out of a markdown document so generators can inject
protocol fragments into other documents at build time.

Fenced code blocks and tag-delimited regions (``<alias> ... </alias>``) are
opaque: heading-like lines inside them never start or end a section. Fence
state is tracked by delimiter character and run length, so a four-backtick
fence wrapping a three-backtick example stays a single opaque span.

Queries:
    ``"Agent Management Steps"``     exact heading title
    ``"## Agent Management Steps"``  exact title at that heading level
    ``"#agent-management-steps"``    anchor, compared against the title slug
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

from instrukt_ai_logging import get_logger

from kiro_agents.errors import SectionNotFoundError, SourceDecodeError, SourceNotFoundError

logger = get_logger(__name__)

_FENCE_OPEN_RE = re.compile(r"^ {0,3}(?P<run>`{3,}|~{3,})(?P<info>[^\r\n]*)")
_HEADING_RE = re.compile(r"^(?P<hashes>#{1,6})[ \t]+(?P<title>[^\r\n]*?)[ \t]*$")
_LEVEL_QUERY_RE = re.compile(r"^(?P<hashes>#{1,6})\s+(?P<title>.+?)\s*$")
_INLINE_CODE_RE = re.compile(r"(`+)(?!`).*?(?<!`)\1(?!`)")
_TAG_RE = re.compile(r"<(?P<close>/?)(?P<name>[A-Za-z][\w.-]*)(?:\s[^<>]*?)?(?P<selfclose>/?)>")
_LEADING_BLANK_LINES_RE = re.compile(r"\A(?:[ \t]*\r?\n)+")

# HTML elements that never take a closing tag.
_VOID_TAGS = frozenset(
    {"area", "base", "br", "col", "embed", "hr", "img", "input", "link", "meta", "source", "track", "wbr"}
)


@dataclass(frozen=True)
class ExtractedSection:
    document: str
    heading: str
    level: int
    text: str


@dataclass(frozen=True)
class _Fence:
    char: str
    run: int


def slugify(title: str) -> str:
    """Convert a heading title to its anchor form.

    Lowercases ASCII letters, keeps digits, turns runs of spaces, underscores
    and hyphens into a single hyphen, and drops everything else.
    """
    out: list[str] = []
    pending_dash = False
    for char in title:
        if char.isascii() and char.isalnum():
            if pending_dash and out:
                out.append("-")
            pending_dash = False
            out.append(char.lower())
        elif char in " _-":
            pending_dash = True
    return "".join(out)


def _fence_open(line: str) -> _Fence | None:
    match = _FENCE_OPEN_RE.match(line)
    if not match:
        return None
    run = match.group("run")
    # A backtick fence's info string may not itself contain backticks.
    if run[0] == "`" and "`" in match.group("info"):
        return None
    return _Fence(char=run[0], run=len(run))


def _closes_fence(line: str, fence: _Fence) -> bool:
    stripped = line.rstrip("\r\n")
    indent = len(stripped) - len(stripped.lstrip(" "))
    if indent > 3:
        return False
    body = stripped.strip()
    if not body or body[0] != fence.char:
        return False
    run = len(body) - len(body.lstrip(fence.char))
    return run >= fence.run and not body[run:].strip()


def _fenced_lines(lines: list[str]) -> list[bool]:
    """Flag every line that is a fence delimiter or lies inside a fence."""
    flags = [False] * len(lines)
    fence: _Fence | None = None
    for idx, line in enumerate(lines):
        if fence is None:
            fence = _fence_open(line)
            flags[idx] = fence is not None
            continue
        flags[idx] = True
        if _closes_fence(line, fence):
            fence = None
    return flags


def _tag_region_lines(lines: list[str], fenced: list[bool]) -> list[bool]:
    """Flag lines whose start falls inside a paired open/close tag region.

    Only tags outside fences and inline code count. An opening tag without a
    matching close never starts a region, so a stray ``<name>`` in prose
    cannot swallow the rest of the document.
    """
    stack: list[tuple[str, int]] = []
    regions: list[tuple[int, int]] = []
    for idx, line in enumerate(lines):
        if fenced[idx]:
            continue
        scannable = _INLINE_CODE_RE.sub("", line)
        for match in _TAG_RE.finditer(scannable):
            name = match.group("name").lower()
            if match.group("selfclose") or name in _VOID_TAGS:
                continue
            if not match.group("close"):
                stack.append((name, idx))
                continue
            for pos in range(len(stack) - 1, -1, -1):
                if stack[pos][0] == name:
                    regions.append((stack[pos][1], idx))
                    del stack[pos:]
                    break

    flags = [False] * len(lines)
    for open_idx, close_idx in regions:
        for idx in range(open_idx + 1, close_idx + 1):
            flags[idx] = True
    return flags


def opaque_lines(content: str) -> list[bool]:
    """Return, per line of ``content``, whether the line is inside an opaque span."""
    lines = content.splitlines(keepends=True)
    fenced = _fenced_lines(lines)
    tagged = _tag_region_lines(lines, fenced)
    return [f or t for f, t in zip(fenced, tagged)]


def _structural_headings(lines: list[str], opaque: list[bool]) -> Iterator[tuple[int, int, str]]:
    for idx, line in enumerate(lines):
        if opaque[idx]:
            continue
        match = _HEADING_RE.match(line.rstrip("\r\n"))
        if not match:
            continue
        title = match.group("title").strip()
        if title:
            yield idx, len(match.group("hashes")), title


def iter_headings(content: str) -> Iterator[tuple[int, str]]:
    """Yield ``(level, title)`` for every heading outside opaque spans."""
    lines = content.splitlines(keepends=True)
    opaque = opaque_lines(content)
    for _, level, title in _structural_headings(lines, opaque):
        yield level, title


def _query_matcher(query: str):
    text = query.strip()
    level_match = _LEVEL_QUERY_RE.match(text)
    if level_match:
        wanted_level = len(level_match.group("hashes"))
        wanted_title = level_match.group("title")
        return lambda level, title: level == wanted_level and title == wanted_title
    if text.startswith("#") and len(text) > 1:
        anchor = text[1:].strip().lower()
        return lambda level, title: slugify(title) == anchor
    return lambda level, title: title == text


def find_section(content: str, query: str, *, document: str = "<string>") -> ExtractedSection:
    """Locate the section named by ``query``.

    The section body runs from just after the heading line to just before the
    next structural heading of equal or shallower level, or end of document.
    Blank lines around the body are trimmed.

    Raises:
        SectionNotFoundError: no structural heading matches ``query``.
    """
    lines = content.splitlines(keepends=True)
    opaque = opaque_lines(content)
    matches = _query_matcher(query)

    start: int | None = None
    start_level = 0
    heading = ""
    end = len(lines)
    for idx, level, title in _structural_headings(lines, opaque):
        if start is None:
            if matches(level, title):
                start, start_level, heading = idx, level, title
            continue
        if level <= start_level:
            end = idx
            break

    if start is None:
        raise SectionNotFoundError(document, query)

    body = "".join(lines[start + 1 : end])
    body = _LEADING_BLANK_LINES_RE.sub("", body).rstrip()
    logger.debug("Extracted section '%s' from %s (lines %d-%d)", heading, document, start + 1, end)
    return ExtractedSection(document=document, heading=lines[start].rstrip("\r\n"), level=start_level, text=body)


def extract_section(
    content: str,
    query: str,
    *,
    document: str = "<string>",
    include_heading: bool = False,
) -> str:
    """Return the text of the section named by ``query``.

    With ``include_heading`` the heading line is kept on top of the body.
    """
    section = find_section(content, query, document=document)
    if not include_heading:
        return section.text
    if not section.text:
        return section.heading
    return f"{section.heading}\n\n{section.text}"


def extract_section_from_file(path: Path, query: str, *, include_heading: bool = False) -> str:
    """Read ``path`` and extract the section named by ``query``."""
    if not path.is_file():
        raise SourceNotFoundError(path)
    try:
        content = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise SourceDecodeError(path, e) from e
    return extract_section(content, query, document=str(path), include_heading=include_heading)
