"""Document text extraction — HTML, PDF, DOCX, spreadsheets, plain text."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from io import BytesIO
from typing import Optional

import docx
import pandas as pd
import pymupdf
from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

BOILERPLATE_TAGS = ("script", "style", "noscript", "nav", "footer", "header", "aside", "form", "iframe", "svg")
MAIN_SELECTORS = ("main", "article", "[role=main]", "#content", ".content")

_SPACES_RE = re.compile(r"[ \t\f\v\u00a0]+")
_BLANK_LINES_RE = re.compile(r"\n\s*\n\s*\n+")


@dataclass
class ExtractedText:
    title: str
    text: str
    doc_type: str


def extract_text(content: bytes, mime_type: str, title_hint: str = "") -> ExtractedText:
    """
    Extract plain text from raw document bytes.

    Parameters
    ----------
    content   : the raw bytes as fetched
    mime_type : MIME type reported by the fetcher
    title_hint: fallback title (file name, page title)

    Returns
    -------
    ExtractedText with whitespace-normalised text; ``text`` is empty when
    nothing could be extracted.
    """
    mime = (mime_type or "").split(";")[0].strip().lower()

    if mime in ("text/html", "application/xhtml+xml"):
        title, text = _parse_html(content)
        return ExtractedText(title or title_hint, normalize_whitespace(text), "html")
    if mime == "application/pdf":
        return ExtractedText(title_hint, normalize_whitespace(_parse_pdf(content)), "pdf")
    if mime == "application/vnd.openxmlformats-officedocument.wordprocessingml.document":
        return ExtractedText(title_hint, normalize_whitespace(_parse_docx(content)), "docx")
    if mime in (
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "application/vnd.ms-excel",
    ):
        return ExtractedText(title_hint, _parse_spreadsheet(content, csv=False), "xlsx")
    if mime == "text/csv":
        return ExtractedText(title_hint, _parse_spreadsheet(content, csv=True), "csv")
    if mime.startswith("text/") or mime in ("application/json", ""):
        doc_type = "md" if mime == "text/markdown" else "txt"
        return ExtractedText(title_hint, normalize_whitespace(_parse_text(content)), doc_type)

    logger.info("No extractor for MIME type %s (%s); skipping", mime, title_hint)
    return ExtractedText(title_hint, "", "unknown")


def normalize_whitespace(text: str) -> str:
    """Collapse runs of spaces, strip lines, keep at most one blank line."""
    lines = [_SPACES_RE.sub(" ", line).strip() for line in text.replace("\r\n", "\n").replace("\r", "\n").split("\n")]
    return _BLANK_LINES_RE.sub("\n\n", "\n".join(lines)).strip()


def _parse_html(data: bytes) -> tuple[str, str]:
    soup = BeautifulSoup(data, "html.parser")

    title = ""
    if soup.title and soup.title.get_text(strip=True):
        title = soup.title.get_text(strip=True)
    else:
        h1 = soup.find("h1")
        if h1:
            title = h1.get_text(strip=True)

    for tag in soup(BOILERPLATE_TAGS):
        tag.decompose()

    root = None
    for selector in MAIN_SELECTORS:
        root = soup.select_one(selector)
        if root is not None:
            break
    if root is None:
        root = soup.body or soup

    # Headings become Markdown so the chunker keeps section boundaries.
    for level in range(1, 7):
        for heading in root.find_all(f"h{level}"):
            heading.replace_with(f"\n\n{'#' * level} {heading.get_text(' ', strip=True)}\n\n")
    for li in root.find_all("li"):
        li.replace_with(f"\n- {li.get_text(' ', strip=True)}\n")

    return title, root.get_text("\n")


def _parse_pdf(data: bytes) -> str:
    with pymupdf.open(stream=data, filetype="pdf") as doc:
        return "\n\n".join(page.get_text() for page in doc)


def _parse_docx(data: bytes) -> str:
    doc = docx.Document(BytesIO(data))
    return "\n\n".join(p.text for p in doc.paragraphs if p.text.strip())


def _parse_spreadsheet(data: bytes, csv: bool) -> str:
    source = BytesIO(data)
    df = pd.read_csv(source) if csv else pd.read_excel(source)
    return df.to_csv(index=False).strip()


def _parse_text(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


def safe_extract(content: bytes, mime_type: str, title_hint: str = "") -> Optional[ExtractedText]:
    """``extract_text`` that logs and returns None for corrupt documents."""
    try:
        return extract_text(content, mime_type, title_hint)
    except Exception as exc:
        logger.warning("Failed to extract text from %s (%s): %s", title_hint or "document", mime_type, exc)
        return None
