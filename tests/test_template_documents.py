"""
Tests — template document extraction (Word / PDF / text templates).
"""

import pytest

from app.services.template_documents import (
    TemplateDocumentError,
    _table_to_markdown,
    docx_to_markdown,
    extract_template_text,
    is_binary_template,
)


class TestTemplateDocuments:

    def test_binary_template_extensions(self):
        assert is_binary_template("TS_Template.DOCX")
        assert is_binary_template("fs.pdf")
        assert not is_binary_template("ts_template.md")

    def test_docx_structure_kept(self, make_docx):
        md = docx_to_markdown(make_docx("WM Template"))
        assert md.startswith("# WM Template\n\n# 1. Overview")
        assert "- Describe the business purpose." in md
        assert md.endswith("| LGPLA | CHAR 18 |")

    def test_invalid_docx(self):
        with pytest.raises(TemplateDocumentError):
            docx_to_markdown(b"PK but not really")

    def test_invalid_pdf(self):
        with pytest.raises(TemplateDocumentError):
            extract_template_text("fs.pdf", b"%PDF-broken")

    def test_text_template_decoded(self):
        assert extract_template_text("ts.md", "\ufeff# TS".encode("utf-8")) == "# TS"
        with pytest.raises(UnicodeDecodeError):
            extract_template_text("ts.md", b"\xff\xfe")

    def test_ragged_table_rows_padded(self):
        assert _table_to_markdown([["A", "B"], ["1", None], ["x"]]) == (
            "| A | B |\n| --- | --- |\n| 1 |  |\n| x |  |"
        )
