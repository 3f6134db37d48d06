"""
Tests — specification generation, LLM gateway and export.

Covers:
    - Markdown cleanup and source block formatting
    - technical / functional message assembly (with and without template)
    - gateway routing, local-stub fallback, retry exhaustion
    - generation API (technical per tree node, functional per requirement)
    - LLM failure → 502, spec listing, Markdown / JSON export
"""

import json

import pytest

from app.ai.export import AIDocExporter
from app.ai.gateway import LLMGateway, LLMProvider, LocalStubProvider, split_system
from app.core.exceptions import GenerationError
from app.services import spec_generation_service, workspace_service
from app.services.object_tree import SourceItem
from app.services.spec_generation_service import (
    FUNCTIONAL_TEMPLATE_SUFFIX,
    TECHNICAL_SYSTEM_PROMPT,
    TEMPLATE_SYSTEM_PROMPT,
    FunctionalParameters,
    build_functional_messages,
    build_technical_messages,
    clean_markdown,
    format_source_blocks,
)
from app.services.workspace_service import UploadPayload


class _StaticProvider(LLMProvider):
    def __init__(self, content):
        self.content = content
        self.calls = []

    def chat(self, messages, model, **kwargs):
        self.calls.append((messages, model, kwargs))
        return {"content": self.content, "prompt_tokens": 10, "completion_tokens": 5, "model": model}


class _FailingProvider(LLMProvider):
    def __init__(self):
        self.attempts = 0

    def chat(self, messages, model, **kwargs):
        self.attempts += 1
        raise ConnectionError("upstream unavailable")


@pytest.fixture()
def no_api_keys(monkeypatch):
    for key in ("GEMINI_API_KEY", "ANTHROPIC_API_KEY", "OPENAI_API_KEY"):
        monkeypatch.delenv(key, raising=False)


# ═════════════════════════════════════════════════════════════════════════════
# PAYLOAD ASSEMBLY
# ═════════════════════════════════════════════════════════════════════════════


class TestPayload:

    @pytest.mark.parametrize("raw,expected", [
        ("```markdown\n# Title\nBody\n```", "# Title\nBody"),
        ("```md\n# Title\n```\n", "# Title"),
        ("```\n# Title\n```", "# Title"),
        ("  \n# Title\n\n", "# Title"),
        ("# Title\n\n```abap\nWRITE 'x'.\n```", "# Title\n\n```abap\nWRITE 'x'.\n```"),
        ("", ""),
    ])
    def test_clean_markdown(self, raw, expected):
        assert clean_markdown(raw) == expected

    def test_format_source_blocks(self):
        items = [
            SourceItem("1", "ZFOO.abap", "REPORT zfoo."),
            SourceItem("2", "EMPTY.abap", None),
            SourceItem("3", "ZFOO_TOP.abap", "DATA gv TYPE i."),
        ]
        assert format_source_blocks(items) == (
            "*** FILE: ZFOO.abap ***\nREPORT zfoo.\n\n*** FILE: ZFOO_TOP.abap ***\nDATA gv TYPE i."
        )

    def test_technical_messages_without_template(self):
        messages = build_technical_messages("*** FILE: A ***\nx", "## Classes\n")
        assert messages[0] == {"role": "system", "content": TECHNICAL_SYSTEM_PROMPT}
        assert messages[1]["content"] == "*** FILE: A ***\nx\n\n## Classes\n"

    def test_technical_messages_with_template(self):
        messages = build_technical_messages("SRC", "", "# TS Template")
        assert messages[0]["content"] == TEMPLATE_SYSTEM_PROMPT
        assert messages[1]["content"] == (
            "## TECHNICAL SPECIFICATION TEMPLATE\n\n# TS Template\n\n---\n\n"
            "## ABAP SOURCE CODE TO ANALYZE\n\nSRC"
        )

    def test_blank_template_ignored(self):
        messages = build_technical_messages("SRC", "", "   ")
        assert messages[0]["content"] == TECHNICAL_SYSTEM_PROMPT

    def test_functional_messages(self):
        params = FunctionalParameters(module="MM", author="QA", project_name="Bins")
        messages = build_functional_messages("Block bins on count.", params)
        user = messages[1]["content"]
        assert user.startswith("## PROJECT PARAMETERS\n- **SAP Module:** MM\n")
        assert "- **Project:** Bins" in user
        assert user.endswith("## REQUIREMENT DESCRIPTION\n\nBlock bins on count.")
        assert not messages[0]["content"].endswith(FUNCTIONAL_TEMPLATE_SUFFIX)

    def test_functional_messages_with_template(self):
        messages = build_functional_messages("Req", FunctionalParameters(), "# FS Template")
        assert messages[0]["content"].endswith(FUNCTIONAL_TEMPLATE_SUFFIX)
        assert messages[1]["content"].endswith("---\n\n## FS TEMPLATE TO FOLLOW\n\n# FS Template")

    def test_parameters_from_dict(self):
        params = FunctionalParameters.from_dict({"module": " SD ", "complexity": "High", "unknown": 1})
        assert params.module == "SD"
        assert params.complexity == "High"
        assert params.process_area == "Custom Enhancement"


# ═════════════════════════════════════════════════════════════════════════════
# LLM GATEWAY
# ═════════════════════════════════════════════════════════════════════════════


class TestGateway:

    def test_missing_key_falls_back_to_stub(self, no_api_keys):
        gw = LLMGateway(default_model="gpt-4o")
        assert gw.available_providers == ["local"]
        result = gw.chat([{"role": "user", "content": "*** FILE: ZFOO.abap ***\nREPORT zfoo."}])
        assert result["provider"] == "local"
        assert result["model"] == "local-stub"
        assert "- ZFOO.abap" in result["content"]
        assert "latency_ms" in result

    def test_unknown_model_routes_to_stub(self, no_api_keys):
        result = LLMGateway().chat([{"role": "user", "content": "hi"}], model="no-such-model")
        assert result["provider"] == "local"

    def test_routes_to_registered_provider(self, no_api_keys):
        gw = LLMGateway()
        provider = _StaticProvider("# Doc")
        gw.register_provider("anthropic", provider)
        result = gw.chat([{"role": "user", "content": "x"}], model="claude-sonnet-4-5", max_tokens=100)
        assert result["provider"] == "anthropic"
        assert provider.calls[0][1] == "claude-sonnet-4-5"
        assert provider.calls[0][2] == {"max_tokens": 100}

    def test_retry_then_fail(self, no_api_keys, monkeypatch):
        sleeps = []
        monkeypatch.setattr("app.ai.gateway.time.sleep", sleeps.append)
        gw = LLMGateway(default_model="local-stub")
        failing = _FailingProvider()
        gw.register_provider("local", failing)

        with pytest.raises(RuntimeError, match="after 3 retries"):
            gw.chat([{"role": "user", "content": "x"}], max_retries=3)
        assert failing.attempts == 3
        assert sleeps == [1, 2]

    def test_split_system_joins_system_messages(self):
        system, chat = split_system([
            {"role": "system", "content": "You are an ABAP expert."},
            {"role": "user", "content": "Document this."},
            {"role": "system", "content": "Answer in Markdown."},
        ])
        assert system == "You are an ABAP expert.\n\nAnswer in Markdown."
        assert chat == [{"role": "user", "content": "Document this."}]

    def test_stub_functional_outline(self):
        params = FunctionalParameters(project_name="Bin Blocking")
        text = LocalStubProvider._generate_stub_response(params.to_markdown())
        assert text.startswith("# Bin Blocking")
        assert "- **SAP Module**: EWM" in text


# ═════════════════════════════════════════════════════════════════════════════
# SERVICE
# ═════════════════════════════════════════════════════════════════════════════


class TestGenerationService:

    @pytest.fixture()
    def ws(self):
        ws = workspace_service.create_workspace("ZPKG")
        workspace_service.add_uploads(ws.id, [
            UploadPayload("ZFOO.abap", b"REPORT zfoo.\nFORM sub1.\nENDFORM.\n"),
            UploadPayload("ts_template.md", b"# My TS Template"),
        ])
        return ws

    def test_fenced_output_is_cleaned_and_template_used(self, ws):
        gw = LLMGateway(default_model="local-stub")
        provider = _StaticProvider("```markdown\n# Fenced Spec\n```")
        gw.register_provider("local", provider)

        spec = spec_generation_service.generate_technical_spec(ws.id, gateway=gw)

        assert spec.markdown == "# Fenced Spec"
        assert spec.scope_label == "Package: ZPKG"
        messages = provider.calls[0][0]
        assert messages[0]["content"] == TEMPLATE_SYSTEM_PROMPT
        assert "# My TS Template" in messages[1]["content"]
        assert "*** FILE: ts_template.md ***" not in messages[1]["content"]

    def test_failure_raises_generation_error(self, ws):
        gw = LLMGateway(default_model="local-stub")
        gw.register_provider("local", _FailingProvider())
        with pytest.raises(GenerationError):
            spec_generation_service.generate_technical_spec(ws.id, gateway=gw)


# ═════════════════════════════════════════════════════════════════════════════
# API
# ═════════════════════════════════════════════════════════════════════════════


class TestTechnicalSpecAPI:

    def test_generate_for_node(self, client, workspace, upload):
        wid = workspace["id"]
        item_id = upload(wid, {
            "ZFOO.abap": "REPORT zfoo.\nFORM sub1.\nENDFORM.\n",
            "ZBAR.abap": "REPORT zbar.",
        }).get_json()["added"][0]["id"]

        res = client.post(f"/api/v1/workspaces/{wid}/specs/technical", json={"node_id": f"prog-{item_id}"})
        assert res.status_code == 201
        spec = res.get_json()
        assert spec["kind"] == "technical"
        assert spec["scope_label"] == "Program: zfoo"
        assert spec["title"] == "Technical Specification: Program: zfoo"
        assert spec["provider"] == "local"
        assert spec["model"] == "local-stub"
        assert "- ZFOO.abap" in spec["markdown"]
        assert "ZBAR.abap" not in spec["markdown"]

    def test_generate_whole_package_with_metadata(self, client, workspace, upload, make_zip):
        wid = workspace["id"]
        upload(wid, {"repo.zip": make_zip({
            "src/zr.prog.abap": "REPORT zr.",
            "src/zt.tabl.xml": "<TABNAME>ZT</TABNAME>",
        })})
        res = client.post(f"/api/v1/workspaces/{wid}/specs/technical", json={})
        assert res.status_code == 201
        spec = res.get_json()
        assert spec["node_id"] == "root"
        assert spec["scope_label"] == "Package: ZWM_PACKAGE"
        assert "## 3. Data Dictionary" in spec["markdown"]

    def test_no_source_in_scope(self, client, workspace, upload):
        wid = workspace["id"]
        upload(wid, {"ts_template.md": "# Template"})
        res = client.post(f"/api/v1/workspaces/{wid}/specs/technical", json={})
        assert res.status_code == 422

    def test_unknown_node(self, client, workspace, upload):
        wid = workspace["id"]
        upload(wid, {"ZFOO.abap": "REPORT zfoo."})
        res = client.post(f"/api/v1/workspaces/{wid}/specs/technical", json={"node_id": "fg-NOPE"})
        assert res.status_code == 404

    def test_llm_failure_returns_502(self, client, workspace, upload, monkeypatch):
        def _boom(self, messages, model="local-stub", **kwargs):
            raise ConnectionError("provider down")

        monkeypatch.setattr(LocalStubProvider, "chat", _boom)
        wid = workspace["id"]
        upload(wid, {"ZFOO.abap": "REPORT zfoo."})

        res = client.post(f"/api/v1/workspaces/{wid}/specs/technical", json={})
        assert res.status_code == 502
        assert res.get_json()["code"] == "ERR_GENERATION_FAILED"
        assert client.get(f"/api/v1/workspaces/{wid}/specs").get_json()["total"] == 0

    def test_docx_template_drives_generation(self, client, workspace, upload, make_docx, monkeypatch):
        captured = []

        def _capture(self, messages, model="local-stub", **kwargs):
            captured.append(messages)
            return {"content": "# Spec", "prompt_tokens": 1, "completion_tokens": 1, "model": "local-stub"}

        monkeypatch.setattr(LocalStubProvider, "chat", _capture)
        wid = workspace["id"]
        upload(wid, {"ZFOO.abap": "REPORT zfoo.", "ts_template.docx": make_docx("Bin Blocking TS")})

        res = client.post(f"/api/v1/workspaces/{wid}/specs/technical", json={})
        assert res.status_code == 201
        system, user = captured[0]
        assert system["content"] == TEMPLATE_SYSTEM_PROMPT
        assert "## TECHNICAL SPECIFICATION TEMPLATE\n\n# Bin Blocking TS\n\n# 1. Overview" in user["content"]
        assert "| LGPLA | CHAR 18 |" in user["content"]
        assert "*** FILE: ts_template.docx ***" not in user["content"]


class TestFunctionalSpecAPI:

    def test_generate(self, client, workspace):
        wid = workspace["id"]
        res = client.post(f"/api/v1/workspaces/{wid}/specs/functional", json={
            "prompt": "Block storage bins when a cycle count difference exceeds tolerance.",
            "module": "EWM",
            "process_area": "Inventory",
            "author": "J. Doe",
        })
        assert res.status_code == 201
        spec = res.get_json()
        assert spec["kind"] == "functional"
        assert spec["scope_label"] == "EWM / Inventory"
        assert spec["title"] == "Functional Specification: ZWM_PACKAGE"
        assert spec["markdown"].startswith("# ZWM_PACKAGE")
        assert "- **Author**: J. Doe" in spec["markdown"]

    def test_prompt_required(self, client, workspace):
        res = client.post(f"/api/v1/workspaces/{workspace['id']}/specs/functional", json={"prompt": "  "})
        assert res.status_code == 400

    def test_unknown_template(self, client, workspace):
        res = client.post(
            f"/api/v1/workspaces/{workspace['id']}/specs/functional",
            json={"prompt": "Req", "template_item_id": "missing"},
        )
        assert res.status_code == 404


class TestSpecsAndExport:

    @pytest.fixture()
    def spec(self, client, workspace, upload):
        upload(workspace["id"], {"ZFOO.abap": "REPORT zfoo."})
        res = client.post(f"/api/v1/workspaces/{workspace['id']}/specs/technical", json={})
        assert res.status_code == 201
        return res.get_json()

    def test_list_and_get(self, client, workspace, spec):
        data = client.get(f"/api/v1/workspaces/{workspace['id']}/specs").get_json()
        assert data["total"] == 1
        assert "markdown" not in data["items"][0]

        res = client.get(f"/api/v1/specs/{spec['id']}")
        assert res.status_code == 200
        assert res.get_json()["markdown"] == spec["markdown"]

    def test_list_filtered_by_kind(self, client, workspace, spec):
        wid = workspace["id"]
        assert client.get(f"/api/v1/workspaces/{wid}/specs?kind=technical").get_json()["total"] == 1
        assert client.get(f"/api/v1/workspaces/{wid}/specs?kind=functional").get_json()["total"] == 0

    def test_list_unknown_kind(self, client, workspace):
        res = client.get(f"/api/v1/workspaces/{workspace['id']}/specs?kind=design")
        assert res.status_code == 422
        assert res.get_json()["code"] == "ERR_VALIDATION_CONSTRAINT"

    def test_get_missing(self, client):
        assert client.get("/api/v1/specs/9999").status_code == 404

    def test_export_markdown(self, client, spec):
        res = client.get(f"/api/v1/specs/{spec['id']}/export?format=markdown")
        assert res.status_code == 200
        assert res.content_type.startswith("text/markdown")
        assert 'filename="Technical_Specification_Package_ZWM_PACKAGE.md"' in res.headers["Content-Disposition"]
        body = res.get_data(as_text=True)
        assert body.startswith("# Technical Specification\n")
        assert "**Scope:** Package: ZWM_PACKAGE" in body

    def test_export_json(self, client, spec):
        res = client.get(f"/api/v1/specs/{spec['id']}/export?format=json")
        assert res.status_code == 200
        payload = json.loads(res.get_data(as_text=True))
        assert payload["document_type"] == "technical"
        assert payload["content"]["markdown"] == spec["markdown"]

    def test_export_bad_format(self, client, spec):
        res = client.get(f"/api/v1/specs/{spec['id']}/export?format=docx")
        assert res.status_code == 400


class TestExporter:

    def test_adds_heading_when_missing(self):
        md = AIDocExporter().export_markdown("functional", "Body only", scope="EWM / Inventory")
        assert md.startswith("# Functional Specification\n\nBody only\n\n---\n\n")
        assert "**Scope:** EWM / Inventory" in md

    def test_unknown_format(self):
        with pytest.raises(ValueError):
            AIDocExporter().export("pdf", "technical", {})

    def test_list_types(self):
        assert [t["type"] for t in AIDocExporter().list_exportable_types()] == ["functional", "technical"]
