"""
Heuristic segmentation of free-text abstracts into labeled sections.

Detection runs in two stages so the vocabulary can grow without touching
the regex:

1. ``find_header_candidates`` finds short capitalized phrases followed by a
   colon at the start of the text, after a sentence end, or after a line
   break.
2. ``filter_known_headers`` keeps only phrases on the ``KNOWN_HEADERS``
   allow-list (or "X and Y" joins of known headers) and drops near-duplicate
   matches.

Abstracts with fewer than two accepted headers are not split.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Optional

from .sanitize import sanitize_text

MAX_HEADER_WORDS = 4
MAX_HEADER_CHARS = 30
MIN_SECTIONS = 2
PROXIMITY_WINDOW = 10
MIN_PREAMBLE_CHARS = 20

NO_ABSTRACT_TEXT = "No abstract available."
UNSTRUCTURED_LABEL = "Abstract"

KNOWN_HEADERS: FrozenSet[str] = frozenset(
    {
        "background",
        "introduction",
        "context",
        "rationale",
        "importance",
        "purpose",
        "aim",
        "aims",
        "objective",
        "objectives",
        "hypothesis",
        "methods",
        "method",
        "materials",
        "methodology",
        "design",
        "study design",
        "setting",
        "participants",
        "patients",
        "subjects",
        "population",
        "intervention",
        "interventions",
        "exposures",
        "measurements",
        "main outcome measures",
        "outcomes",
        "approach",
        "results",
        "findings",
        "main results",
        "key findings",
        "observations",
        "conclusion",
        "conclusions",
        "interpretation",
        "discussion",
        "significance",
        "implications",
        "clinical relevance",
        "limitations",
        "summary",
        "case presentation",
        "data sources",
        "study selection",
        "trial registration",
        "registration",
        "funding",
        "keywords",
    }
)

# boundary, then 1-4 words starting with a capital, then a colon
_HEADER_RE = re.compile(
    r"(?:^|(?<=[.!?])\s+|\n\s*)"
    r"(?P<label>[A-Z][A-Za-z'&\-]*(?:[ \t]+[A-Za-z'&\-]+){0,%d})\s*:\s*" % (MAX_HEADER_WORDS - 1)
)
_JOIN_RE = re.compile(r"\s+(?:and|&)\s+", re.IGNORECASE)
_DUP_HEADER_RE = re.compile(r"^(?P<label>[A-Za-z][A-Za-z'&\-]*(?:\s+[A-Za-z'&\-]+){0,3})\s*[:.\-–]\s*")
_NON_ALNUM = re.compile(r"[^a-z0-9\s]")
_WS = re.compile(r"\s+")


@dataclass
class AbstractSection:
    label: str
    display_label: str
    header_start: int
    content_start: int
    content: str = ""


@dataclass(frozen=True)
class AbstractFragment:
    kind: str  # "empty" | "unstructured" | "preamble" | "section"
    content: str
    display_label: Optional[str] = None

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {"kind": self.kind, "display_label": self.display_label, "content": self.content}


def _squash(label: str) -> str:
    return _WS.sub(" ", label).strip().lower()


def is_known_header(label: str) -> bool:
    """True for allow-listed headers and "X and Y" joins whose parts are all known."""
    key = _squash(label)
    if not key:
        return False
    if key in KNOWN_HEADERS:
        return True
    parts = _JOIN_RE.split(key)
    return len(parts) > 1 and all(p.strip() in KNOWN_HEADERS for p in parts)


def _title_case(text: str) -> str:
    return " ".join(word[:1].upper() + word[1:] for word in text.lower().split(" "))


def normalize_label(label: str) -> str:
    cleaned = re.sub(r"[:\s]+$", "", label).strip()
    cleaned = _WS.sub(" ", cleaned)
    if len(cleaned) > 1 and cleaned == cleaned.upper():
        return _title_case(cleaned)
    return cleaned


def find_header_candidates(text: str) -> List[AbstractSection]:
    candidates: List[AbstractSection] = []
    for m in _HEADER_RE.finditer(text):
        label = m.group("label").strip()
        if len(label) > MAX_HEADER_CHARS:
            continue
        candidates.append(
            AbstractSection(
                label=label,
                display_label=normalize_label(label),
                header_start=m.start("label"),
                content_start=m.end(),
            )
        )
    return candidates


def filter_known_headers(candidates: List[AbstractSection]) -> List[AbstractSection]:
    accepted: List[AbstractSection] = []
    for cand in sorted(candidates, key=lambda c: c.header_start):
        if not is_known_header(cand.label):
            continue
        if any(abs(a.header_start - cand.header_start) < PROXIMITY_WINDOW for a in accepted):
            continue
        accepted.append(cand)
    return accepted


def strip_leading_duplicate_header(content: str, expected_label: str) -> str:
    expected = _squash(_NON_ALNUM.sub("", expected_label.lower()))
    m = _DUP_HEADER_RE.match(content)
    if not m or not expected:
        return content
    found = _squash(_NON_ALNUM.sub("", m.group("label").lower()))
    if len(found) > 2 and (found == expected or found in expected or expected in found):
        return content[m.end():].strip()
    return content


def clean_section_content(content: str) -> str:
    cleaned = re.sub(r"^[:.\-–\s]+", "", content)
    cleaned = _WS.sub(" ", cleaned).strip()
    cleaned = re.sub(r"[,:;\-–\s]+$", "", cleaned)
    if cleaned and cleaned[-1] not in ".!?":
        cleaned += "."
    return cleaned


def segment_abstract(abstract: Optional[str]) -> List[AbstractFragment]:
    """
    Split an abstract into display fragments.

    Returns a fresh list on every call: either a single ``empty`` or
    ``unstructured`` fragment, or an optional ``preamble`` followed by one
    ``section`` fragment per detected header, in text order.
    """
    text = sanitize_text(abstract)
    if not text:
        return [AbstractFragment(kind="empty", content=NO_ABSTRACT_TEXT)]

    sections = filter_known_headers(find_header_candidates(text))
    if len(sections) < MIN_SECTIONS:
        return [AbstractFragment(kind="unstructured", content=text, display_label=UNSTRUCTURED_LABEL)]

    for i, section in enumerate(sections):
        end = sections[i + 1].header_start if i + 1 < len(sections) else len(text)
        body = text[section.content_start:end].strip()
        body = strip_leading_duplicate_header(body, section.display_label)
        section.content = clean_section_content(body)

    fragments: List[AbstractFragment] = []
    preamble = re.sub(r"[.!?,:;\s]+$", "", text[: sections[0].header_start]).strip()
    if len(preamble) > MIN_PREAMBLE_CHARS:
        fragments.append(AbstractFragment(kind="preamble", content=clean_section_content(preamble)))

    for section in sections:
        if section.content:
            fragments.append(
                AbstractFragment(kind="section", content=section.content, display_label=section.display_label)
            )

    if not fragments:
        return [AbstractFragment(kind="unstructured", content=text, display_label=UNSTRUCTURED_LABEL)]
    return fragments


def render_plain(fragments: List[AbstractFragment]) -> str:
    lines = []
    for frag in fragments:
        if frag.kind == "section":
            lines.append(f"{frag.display_label}: {frag.content}")
        else:
            lines.append(frag.content)
    return "\n\n".join(lines)
