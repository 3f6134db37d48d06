"""
Template document text extraction.

Specification templates arrive as Word, PDF, Markdown or plain-text files.
Word templates are converted to Markdown (headings, list items and tables
keep their structure) with python-docx; PDF templates are reduced to their
page text and tables with pdfplumber. Everything else is decoded as UTF-8.
"""

import io
import logging
import re

import pdfplumber
from docx import Document
from docx.table import Table

logger = logging.getLogger(__name__)

BINARY_TEMPLATE_EXTENSIONS = (".docx", ".pdf")

_HEADING_STYLE = re.compile(r"^Heading (\d)$")
_EXCESS_BLANK_LINES = re.compile(r"\n{4,}")


class TemplateDocumentError(ValueError):
    """A template document could not be read."""


def is_binary_template(filename: str) -> bool:
    return filename.lower().endswith(BINARY_TEMPLATE_EXTENSIONS)


def _table_to_markdown(rows: list[list[str]]) -> str:
    if not rows:
        return ""
    width = max(len(r) for r in rows)
    rows = [[(c or "").replace("\n", " ").strip() for c in r] + [""] * (width - len(r)) for r in rows]
    lines = ["| " + " | ".join(rows[0]) + " |", "| " + " | ".join(["---"] * width) + " |"]
    lines.extend("| " + " | ".join(r) + " |" for r in rows[1:])
    return "\n".join(lines)


def _paragraph_to_markdown(paragraph) -> str:
    text = paragraph.text.strip()
    if not text:
        return ""
    style = paragraph.style.name if paragraph.style is not None else ""
    if style == "Title":
        return f"# {text}"
    m = _HEADING_STYLE.match(style)
    if m:
        return f"{'#' * int(m.group(1))} {text}"
    if style.startswith("List Bullet"):
        return f"- {text}"
    if style.startswith("List Number"):
        return f"1. {text}"
    return text


def docx_to_markdown(data: bytes) -> str:
    """Convert a .docx document body to Markdown, in document order."""
    try:
        document = Document(io.BytesIO(data))
    except Exception as exc:
        raise TemplateDocumentError(f"Not a readable Word document: {exc}") from exc

    blocks = []
    for block in document.iter_inner_content():
        if isinstance(block, Table):
            md = _table_to_markdown([[cell.text for cell in row.cells] for row in block.rows])
        else:
            md = _paragraph_to_markdown(block)
        if md:
            blocks.append(md)
    return _EXCESS_BLANK_LINES.sub("\n\n\n", "\n\n".join(blocks)).strip()


def pdf_to_text(data: bytes) -> str:
    """Page text plus any tables pdfplumber detects, page by page."""
    try:
        with pdfplumber.open(io.BytesIO(data)) as pdf:
            parts = []
            for page in pdf.pages:
                text = (page.extract_text() or "").strip()
                if text:
                    parts.append(text)
                for table in page.extract_tables():
                    md = _table_to_markdown(table)
                    if md:
                        parts.append(md)
    except Exception as exc:
        raise TemplateDocumentError(f"Not a readable PDF document: {exc}") from exc
    return "\n\n".join(parts).strip()


def extract_template_text(filename: str, data: bytes) -> str:
    """Return the text of an uploaded template document.

    Raises:
        TemplateDocumentError: a .docx / .pdf file cannot be parsed.
        UnicodeDecodeError: a text template is not UTF-8.
    """
    lowered = filename.lower()
    if lowered.endswith(".docx"):
        text = docx_to_markdown(data)
    elif lowered.endswith(".pdf"):
        text = pdf_to_text(data)
    else:
        return data.decode("utf-8-sig")
    logger.debug("Extracted %d characters from template %s", len(text), filename)
    return text
