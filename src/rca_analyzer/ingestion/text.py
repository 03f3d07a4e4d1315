from __future__ import annotations

import warnings

from bs4 import BeautifulSoup, MarkupResemblesLocatorWarning

# Elements that never carry incident content
_NOISE_SELECTOR = "script, style, nav, .navigation, .sidebar"


def parse_markup(markup: str) -> BeautifulSoup:
    with warnings.catch_warnings():
        # Plain section text often looks like a filename or URL to bs4
        warnings.simplefilter("ignore", MarkupResemblesLocatorWarning)
        soup = BeautifulSoup(markup or "", "html.parser")
    for element in soup.select(_NOISE_SELECTOR):
        element.decompose()
    return soup


def normalize_whitespace(text: str) -> str:
    return " ".join(text.split())


def clean_text(markup: str) -> str:
    """
    Strip tags and noise elements, collapse whitespace.
    """
    if not markup:
        return ""
    return normalize_whitespace(parse_markup(markup).get_text(" "))
