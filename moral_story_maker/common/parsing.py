"""Tolerant parsers for generated text.

Nothing here raises on malformed model output: missing sections come back as
empty strings (stories) or ``None`` (translations) so callers can choose a
fallback per field.
"""

from __future__ import annotations

import json
import re
from typing import Any, List, Optional

from moral_story_maker.common.models import ParsedStory, TranslatedSections

MORAL_MARKER = "Moral:"

TRANSLATION_MARKERS = (
    "TITLE",
    "STORY",
    "MORAL",
    "REFLECTION_QUESTIONS",
    "ACTION_STEPS",
    "RELATED_QUOTE",
    "DISCUSSION_PROMPTS",
)
JSON_MARKERS = {"REFLECTION_QUESTIONS", "ACTION_STEPS", "DISCUSSION_PROMPTS"}

_MARKER_RE = re.compile(
    r"^[ \t*#]*(" + "|".join(TRANSLATION_MARKERS) + r")[ \t*]*:\**",
    flags=re.IGNORECASE | re.MULTILINE,
)
_TITLE_LABEL_RE = re.compile(r"^title\s*:\s*", flags=re.IGNORECASE)
_CODE_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", flags=re.IGNORECASE)


def _clean_title(line: str) -> str:
    text = line.strip().strip("#*").strip()
    text = _TITLE_LABEL_RE.sub("", text)
    return text.strip().strip('"').strip()


def parse_story_text(text: str) -> ParsedStory:
    """Split ``Title\\nBody...\\nMoral: ...`` into its three parts."""
    raw = (text or "").replace("\r\n", "\n")
    head, marker, tail = raw.partition(MORAL_MARKER)
    moral = tail.strip().lstrip("*").strip() if marker else ""

    head = head.strip()
    first_line, newline, rest = head.partition("\n")
    if not newline:
        # a single line has no separate title
        return ParsedStory(title="", body=head, moral=moral)
    return ParsedStory(
        title=_clean_title(first_line),
        body=rest.strip().rstrip("*").strip(),
        moral=moral,
    )


def _parse_json_list(raw: str) -> Optional[List[Any]]:
    cleaned = _CODE_FENCE_RE.sub("", raw.strip()).strip()
    if not cleaned:
        return None
    try:
        value = json.loads(cleaned)
    except ValueError:
        start, end = cleaned.find("["), cleaned.rfind("]")
        if start == -1 or end <= start:
            return None
        try:
            value = json.loads(cleaned[start : end + 1])
        except ValueError:
            return None
    return value if isinstance(value, list) else None


def split_marked_sections(text: str) -> dict:
    """Map each marker found in ``text`` to the text up to the next marker."""
    matches = list(_MARKER_RE.finditer(text or ""))
    sections = {}
    for i, match in enumerate(matches):
        name = match.group(1).upper()
        end = matches[i + 1].start() if i + 1 < len(matches) else len(text)
        if name not in sections:
            sections[name] = text[match.end() : end].strip()
    return sections


def parse_translation(text: str) -> TranslatedSections:
    sections = split_marked_sections(text)
    result = TranslatedSections()

    if "TITLE" in sections:
        lines = sections["TITLE"].splitlines()
        result.title = _clean_title(lines[0]) if lines else ""
    if "STORY" in sections:
        result.story = sections["STORY"]
    if "MORAL" in sections:
        result.moral = sections["MORAL"]
    if "RELATED_QUOTE" in sections:
        result.related_quote = sections["RELATED_QUOTE"]

    for name in JSON_MARKERS:
        if name in sections:
            setattr(result, name.lower(), _parse_json_list(sections[name]))
    return result
