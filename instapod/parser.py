"""
HTML -> spoken text.

Turns the article HTML returned by the bookmark provider into plain text with
paragraph breaks, plus a short announcement ("En artikel från <source>.
<title>.") that is read before the body.
"""

import re
from urllib.parse import urlparse

from bs4 import BeautifulSoup

from instapod.config import DEFAULT_INTRO_TEMPLATE
from instapod.errors import ExtractionFailed
from instapod.models import ExtractedArticle, SourceItem

_DROP_TAGS = ["script", "style", "img", "noscript", "iframe", "svg", "figure", "video", "audio"]
_BLOCK_TAGS = [
    "p", "div", "section", "article", "header", "footer", "aside", "main",
    "h1", "h2", "h3", "h4", "h5", "h6",
    "li", "ul", "ol", "blockquote", "pre", "table", "tr", "dl", "dt", "dd",
]


def clean_source(source: str) -> str:
    """Best-effort human-readable source name from a URL (or any string)."""
    if not source:
        return ""
    parsed = urlparse(source)
    if parsed.scheme and parsed.hostname:
        return re.sub(r"^www\.", "", parsed.hostname)
    return source


def html_to_text(html: str) -> str:
    """Convert article HTML to plain text; paragraphs separated by a blank line."""
    soup = BeautifulSoup(html, "html.parser")

    for tag in soup.find_all(_DROP_TAGS):
        tag.decompose()
    for br in soup.find_all("br"):
        br.replace_with("\n")
    for tag in soup.find_all(_BLOCK_TAGS):
        tag.insert_before("\n\n")
        tag.insert_after("\n\n")

    text = soup.get_text()
    paragraphs = []
    for block in re.split(r"\n\s*\n", text):
        lines = [re.sub(r"[ \t\r\f\v\u00a0]+", " ", line).strip() for line in block.split("\n")]
        paragraph = "\n".join(line for line in lines if line)
        if paragraph:
            paragraphs.append(paragraph)
    return "\n\n".join(paragraphs)


def build_announcement(title: str, source_name: str, template: str = DEFAULT_INTRO_TEMPLATE) -> str:
    if source_name:
        return template.format(source=source_name, title=title)
    return f"{title}."


def extract_article(item: SourceItem, html: str, intro_template: str = DEFAULT_INTRO_TEMPLATE) -> ExtractedArticle:
    """Build the ExtractedArticle for one item. Raises ExtractionFailed if no text survives."""
    if not html or not html.strip():
        raise ExtractionFailed(f"Item {item.id} has no content")
    body = html_to_text(html)
    if not body:
        raise ExtractionFailed(f"Item {item.id} contains no readable text")

    source_name = clean_source(item.source_url)
    return ExtractedArticle(
        id=item.id,
        title=item.title,
        source_name=source_name,
        body=body,
        announcement=build_announcement(item.title, source_name, intro_template),
    )
