"""Text normalization helpers for page context."""

import re

from bs4 import BeautifulSoup


def clean_text(text: str) -> str:
    """Clean and normalize text content."""
    if not text:
        return ""

    # Remove control characters but keep newlines and tabs
    text = re.sub(r'[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]', '', text)

    # Collapse runs of whitespace
    text = re.sub(r'\s+', ' ', text)

    return text.strip()


def html_to_text(html: str) -> str:
    """Visible text of an HTML fragment, scripts and styles removed."""
    if not html:
        return ""

    soup = BeautifulSoup(html, 'html.parser')

    for element in soup(['script', 'style', 'meta', 'link', 'noscript', 'template']):
        element.decompose()

    return clean_text(soup.get_text(separator=' ', strip=True))
