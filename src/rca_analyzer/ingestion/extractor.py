"""
Section Extractor

Heuristic structural parser that finds the symptom, root-cause and resolution
sections of an RCA page.

A section is the plain text of the sibling blocks that follow a matching
heading (any level) up to the next heading of any level. Matching is a
case-insensitive substring search of the heading text against one keyword
pattern per section:

- symptoms:   every matching heading contributes, joined with newlines
- root cause: first matching heading in document order
- resolution: first matching heading in document order

Note that "resolution" matches both the root-cause and resolution patterns;
a page whose only section is "Resolution" reports it under both.
"""

from __future__ import annotations

import logging
import re
from datetime import date, datetime
from typing import List, Optional, Pattern

from bs4 import Tag
from pydantic import BaseModel, ConfigDict

from .text import normalize_whitespace, parse_markup

logger = logging.getLogger("rca.extractor")

SYMPTOMS_PATTERN = re.compile(
    r"symptoms|impact|alerts? fired|user reports?|what happened|incident description",
    re.IGNORECASE,
)
ROOT_CAUSE_PATTERN = re.compile(
    r"root cause|technical fault|why|the fix|resolution|what was the problem",
    re.IGNORECASE,
)
RESOLUTION_PATTERN = re.compile(
    r"resolution|fix|solution|action taken|remediation",
    re.IGNORECASE,
)

HEADING_TAG = re.compile(r"^h[1-6]$")
ISO_DATE = re.compile(r"\d{4}-\d{2}-\d{2}")


class ExtractedSections(BaseModel):
    symptoms: str = ""
    root_cause: str = ""
    resolution: str = ""
    incident_date: Optional[date] = None
    used_fallback: bool = False

    model_config = ConfigDict(frozen=True)


class SectionExtractor:
    def extract(self, markup: str) -> ExtractedSections:
        """
        Parse raw page markup into RCA sections.

        If neither symptoms nor a root cause can be located, the full cleaned
        page text becomes the symptoms so the page still has embeddable content.
        """
        soup = parse_markup(markup)
        headings = soup.find_all(HEADING_TAG)

        symptoms = "\n".join(
            text
            for text in (
                _section_text(h) for h in headings if _matches(h, SYMPTOMS_PATTERN)
            )
            if text
        )
        root_cause = _first_section(headings, ROOT_CAUSE_PATTERN)
        resolution = _first_section(headings, RESOLUTION_PATTERN)

        plain_text = normalize_whitespace(soup.get_text(" "))
        incident_date = _find_incident_date(plain_text)

        used_fallback = False
        if not symptoms and not root_cause:
            logger.debug("No recognised sections, using full page text as symptoms")
            symptoms = plain_text
            used_fallback = True

        return ExtractedSections(
            symptoms=symptoms,
            root_cause=root_cause,
            resolution=resolution,
            incident_date=incident_date,
            used_fallback=used_fallback,
        )


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------

def _matches(heading: Tag, pattern: Pattern[str]) -> bool:
    return pattern.search(heading.get_text(" ")) is not None


def _section_text(heading: Tag) -> str:
    parts: List[str] = []
    for sibling in heading.find_next_siblings():
        if HEADING_TAG.match(sibling.name or ""):
            break
        parts.append(normalize_whitespace(sibling.get_text(" ")))
    return "\n".join(parts).strip()


def _first_section(headings: List[Tag], pattern: Pattern[str]) -> str:
    for heading in headings:
        if _matches(heading, pattern):
            return _section_text(heading)
    return ""


def _find_incident_date(text: str) -> Optional[date]:
    match = ISO_DATE.search(text)
    if match is None:
        return None
    try:
        return datetime.strptime(match.group(), "%Y-%m-%d").date()
    except ValueError:
        logger.debug("Could not parse date: %s", match.group())
        return None
