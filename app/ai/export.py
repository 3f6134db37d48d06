"""
ABAP Documentation Workbench
Specification Export Service.

Exports generated technical / functional specifications to Markdown and
JSON formats for download.
"""

import json
import logging
import re
from datetime import datetime, timezone

logger = logging.getLogger(__name__)


# Supported document types
EXPORTABLE_TYPES = {
    "technical",
    "functional",
}

EXPORT_FORMATS = {
    "markdown": ("text/markdown; charset=utf-8", "md"),
    "json": ("application/json", "json"),
}

_UNSAFE_FILENAME = re.compile(r"[^A-Za-z0-9._-]+")


class AIDocExporter:
    """Exports generated specifications to downloadable formats."""

    def export_markdown(self, doc_type: str, markdown: str, title: str = "", scope: str = "") -> str:
        """
        Wrap a generated specification body in a download header.

        Args:
            doc_type: One of EXPORTABLE_TYPES.
            markdown: The generated specification body.
            title: Optional document title override.
            scope: Scope label of the tree node the spec was generated for.

        Returns:
            Markdown string.
        """
        if doc_type not in EXPORTABLE_TYPES:
            return f"# Unsupported document type: {doc_type}\n"

        md = ""
        # The model output normally carries its own H1; only add one when missing.
        if not markdown.lstrip().startswith("# "):
            md += f"# {title or self.default_title(doc_type)}\n\n"
        md += markdown.rstrip() + "\n\n"
        md += "---\n\n"
        if scope:
            md += f"**Scope:** {scope}\n"
        md += f"**Generated:** {datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M UTC')}\n"
        return md

    def export_json(self, doc_type: str, content: dict, title: str = "") -> str:
        """Export as formatted JSON string."""
        export = {
            "document_type": doc_type,
            "title": title or self.default_title(doc_type),
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "content": content,
        }
        return json.dumps(export, indent=2, default=str)

    def export(self, fmt: str, doc_type: str, spec: dict) -> tuple[str, str, str]:
        """
        Render a stored spec dict in the requested format.

        Returns:
            (body, mimetype, filename)

        Raises:
            ValueError: unknown format.
        """
        if fmt not in EXPORT_FORMATS:
            raise ValueError(f"Unsupported export format: {fmt}")
        mimetype, ext = EXPORT_FORMATS[fmt]
        title = spec.get("title") or ""
        if fmt == "markdown":
            body = self.export_markdown(doc_type, spec.get("markdown") or "", title, spec.get("scope_label") or "")
        else:
            body = self.export_json(doc_type, spec, title)
        filename = f"{self.slug(title or self.default_title(doc_type))}.{ext}"
        logger.debug("Exported %s spec id=%s as %s", doc_type, spec.get("id"), fmt)
        return body, mimetype, filename

    def list_exportable_types(self) -> list[dict]:
        """List all supported export types with descriptions."""
        descriptions = {
            "technical": "Technical specification generated from ABAP source",
            "functional": "Functional specification generated from a business requirement",
        }
        return [
            {"type": t, "description": descriptions.get(t, t.title())}
            for t in sorted(EXPORTABLE_TYPES)
        ]

    @staticmethod
    def default_title(doc_type: str) -> str:
        return f"{doc_type.title()} Specification"

    @staticmethod
    def slug(title: str) -> str:
        return _UNSAFE_FILENAME.sub("_", title).strip("_") or "specification"
