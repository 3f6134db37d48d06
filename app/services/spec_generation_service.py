"""
Specification generation service.

Assembles the LLM request for a technical specification (ABAP source under
a tree node plus the archive metadata context) or a functional
specification (requirement text plus project parameters), sends it through
the LLM gateway and stores the cleaned Markdown as a GeneratedSpec.

Transaction policy: functions use flush(), never commit().
Caller (route handler) is responsible for db.session.commit().
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import date

from flask import current_app

from app.ai.gateway import LLMGateway
from app.core.exceptions import GenerationError, NotFoundError, ValidationError
from app.models import db
from app.models.workspace import TEMPLATE_CATEGORY, GeneratedSpec, UploadedItem
from app.services import workspace_service
from app.services.object_tree import ROOT_ID, collect_item_ids, find_node, scope_label

logger = logging.getLogger(__name__)


# ── Prompts ──────────────────────────────────────────────────────────────

TECHNICAL_SYSTEM_PROMPT = """You are an expert SAP ABAP technical analyst.
Analyze the provided ABAP source code and generate a comprehensive, customer-ready
Technical Specification document in Markdown.

The document must cover: document information, purpose and overview, scope,
prerequisites and dependencies, technical design (architecture, data model,
selection screen or interface parameters, processing logic, error handling,
authorization checks), database access, interfaces and external calls,
testing considerations, risks and recommendations.

Rules:
- Write formal English suitable for customer sign-off.
- Use Markdown tables for structured data.
- Include all objects, variables and logic found in the code.
- If a section has no content, write "Not applicable".
- Do not wrap the output in code fences; return pure Markdown."""

TEMPLATE_SYSTEM_PROMPT = """You are an expert SAP ABAP technical analyst.
You will receive a Technical Specification template that defines the exact
document structure, followed by ABAP source code (and, when available, Data
Dictionary metadata) to analyze.

Rules:
- Strictly adhere to the provided template structure.
- Fill sections with specific technical details extracted from the code.
- If a section does not apply, state "None" briefly.
- Only document what is present in the code.
- Return clean Markdown without code fences."""

FUNCTIONAL_SYSTEM_PROMPT = """You are an expert SAP Functional Consultant and Business Analyst.
You will receive project parameters (module, process area, complexity, target
system), a requirement description in plain language and optionally a template.

Generate a professional Functional Specification that a development team can
implement: document information, business overview, scope, process flow
(as-is / to-be), functional requirements, data requirements, interfaces,
authorizations, error handling, testing approach, open points.

Return clean Markdown without code fences."""

FUNCTIONAL_TEMPLATE_SUFFIX = (
    "\n\nIMPORTANT: A template has been provided. Follow its structure exactly "
    "while filling it with the generated FS content."
)

_FENCE_OPEN = re.compile(r"^```(?:markdown|md)?\s*\n", re.IGNORECASE)
_FENCE_CLOSE = re.compile(r"\n```\s*$")


@dataclass
class FunctionalParameters:
    """Project parameters rendered into the functional spec request."""
    module: str = "EWM"
    process_area: str = "Custom Enhancement"
    complexity: str = "Medium"
    target_system: str = "S/4HANA"
    author: str = ""
    project_name: str = ""
    spec_date: date = field(default_factory=date.today)

    @classmethod
    def from_dict(cls, data: dict) -> "FunctionalParameters":
        params = cls()
        for key in ("module", "process_area", "complexity", "target_system", "author", "project_name"):
            value = data.get(key)
            if value is not None:
                setattr(params, key, str(value).strip())
        return params

    def to_markdown(self) -> str:
        return "\n".join([
            "## PROJECT PARAMETERS",
            f"- **SAP Module:** {self.module}",
            f"- **Process Area:** {self.process_area}",
            f"- **Complexity:** {self.complexity}",
            f"- **Target System:** {self.target_system}",
            f"- **Author:** {self.author}",
            f"- **Project:** {self.project_name}",
            f"- **Date:** {self.spec_date.isoformat()}",
        ])


# ═══════════════════════════════════════════════════════════════════
# PAYLOAD ASSEMBLY
# ═══════════════════════════════════════════════════════════════════

def clean_markdown(text: str) -> str:
    """Strip a surrounding ```markdown fence and outer whitespace."""
    result = (text or "").strip()
    if _FENCE_OPEN.match(result):
        result = _FENCE_OPEN.sub("", result, count=1)
        result = _FENCE_CLOSE.sub("", result, count=1)
    return result.strip()


def format_source_blocks(items: list) -> str:
    """Concatenate item contents as ``*** FILE: <name> ***`` blocks."""
    blocks = [
        f"*** FILE: {item.name} ***\n{item.content}"
        for item in items
        if item.content is not None
    ]
    return "\n\n".join(blocks)


def build_technical_messages(source: str, metadata_context: str = "", template: str | None = None) -> list[dict]:
    code = source
    if metadata_context:
        code = f"{source}\n\n{metadata_context}"
    if template and template.strip():
        user_message = (
            f"## TECHNICAL SPECIFICATION TEMPLATE\n\n{template}\n\n---\n\n"
            f"## ABAP SOURCE CODE TO ANALYZE\n\n{code}"
        )
        system_prompt = TEMPLATE_SYSTEM_PROMPT
    else:
        user_message = code
        system_prompt = TECHNICAL_SYSTEM_PROMPT
    return [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": user_message},
    ]


def build_functional_messages(prompt: str, params: FunctionalParameters, template: str | None = None) -> list[dict]:
    system_prompt = FUNCTIONAL_SYSTEM_PROMPT
    if template and template.strip():
        system_prompt += FUNCTIONAL_TEMPLATE_SUFFIX
    user_message = f"{params.to_markdown()}\n\n## REQUIREMENT DESCRIPTION\n\n{prompt}"
    if template and template.strip():
        user_message += f"\n\n---\n\n## FS TEMPLATE TO FOLLOW\n\n{template}"
    return [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": user_message},
    ]


# ═══════════════════════════════════════════════════════════════════
# GENERATION
# ═══════════════════════════════════════════════════════════════════

def _resolve_template(ws, template_item_id: str | None) -> UploadedItem | None:
    if template_item_id:
        return workspace_service.get_item(ws.id, template_item_id)
    return ws.items.filter(UploadedItem.category == TEMPLATE_CATEGORY).first()


def _call_llm(messages: list[dict], *, model: str | None, purpose: str, gateway: LLMGateway | None) -> dict:
    cfg = current_app.config
    gw = gateway or LLMGateway(default_model=cfg.get("LLM_DEFAULT_CHAT_MODEL"))
    try:
        return gw.chat(
            messages,
            model=model,
            purpose=purpose,
            max_retries=cfg.get("LLM_MAX_RETRIES", 3),
            max_tokens=cfg.get("LLM_MAX_TOKENS", 16384),
            temperature=cfg.get("LLM_TEMPERATURE", 0.3),
        )
    except RuntimeError as exc:
        logger.error("Spec generation failed purpose=%s: %s", purpose, exc)
        raise GenerationError(str(exc), cause=exc) from exc


def _store(ws, *, kind: str, title: str, scope: str | None, node_id: str | None, result: dict) -> GeneratedSpec:
    spec = GeneratedSpec(
        workspace_id=ws.id,
        kind=kind,
        title=title[:255],
        scope_label=scope,
        node_id=node_id,
        markdown=clean_markdown(result.get("content", "")),
        model=result.get("model"),
        provider=result.get("provider"),
        prompt_tokens=result.get("prompt_tokens", 0),
        completion_tokens=result.get("completion_tokens", 0),
        latency_ms=result.get("latency_ms", 0),
    )
    db.session.add(spec)
    db.session.flush()
    logger.info("Stored %s spec id=%s workspace=%s scope=%s", kind, spec.id, ws.id, scope)
    return spec


def generate_technical_spec(
    workspace_id: int,
    *,
    node_id: str | None = None,
    template_item_id: str | None = None,
    model: str | None = None,
    gateway: LLMGateway | None = None,
) -> GeneratedSpec:
    """Generate a technical specification for the items under ``node_id``.

    The whole tree is used when no node is given. Template items never
    contribute source; the explicit template item, or else the first
    Template item of the workspace, is passed as the document template.

    Raises:
        NotFoundError: workspace, node or template item does not exist.
        ValidationError: the scope contains no source text.
        GenerationError: the LLM call failed after retries.
    """
    ws = workspace_service.get_workspace(workspace_id)
    root = workspace_service.build_tree(workspace_id)
    node = find_node(root, node_id or ROOT_ID)
    if node is None:
        raise NotFoundError("TreeNode", node_id)

    item_ids = collect_item_ids(node)
    by_id = {i.id: i for i in workspace_service.source_items(ws)}
    items = [by_id[i] for i in item_ids if i in by_id]
    source = format_source_blocks(items)
    if not source:
        raise ValidationError("No source code in the selected scope", details={"node_id": node.id})

    template = _resolve_template(ws, template_item_id)
    metadata_context = workspace_service.metadata_context(workspace_id)
    messages = build_technical_messages(
        source, metadata_context, template.content if template else None,
    )

    scope = scope_label(node)
    logger.info(
        "Generating technical spec workspace=%s scope=%s files=%d template=%s",
        ws.id, scope, len(items), template.name if template else None,
    )
    result = _call_llm(messages, model=model, purpose="technical_spec", gateway=gateway)
    return _store(
        ws, kind="technical", title=f"Technical Specification: {scope}",
        scope=scope, node_id=node.id, result=result,
    )


def generate_functional_spec(
    workspace_id: int,
    prompt: str,
    params: FunctionalParameters | None = None,
    *,
    template_item_id: str | None = None,
    model: str | None = None,
    gateway: LLMGateway | None = None,
) -> GeneratedSpec:
    """Generate a functional specification from a requirement description."""
    if not prompt or not prompt.strip():
        raise ValidationError("Requirement description is required", details={"prompt": "empty"})

    ws = workspace_service.get_workspace(workspace_id)
    params = params or FunctionalParameters()
    if not params.project_name:
        params.project_name = ws.name

    template = workspace_service.get_item(ws.id, template_item_id) if template_item_id else None
    messages = build_functional_messages(prompt.strip(), params, template.content if template else None)

    logger.info("Generating functional spec workspace=%s module=%s", ws.id, params.module)
    result = _call_llm(messages, model=model, purpose="functional_spec", gateway=gateway)
    return _store(
        ws, kind="functional",
        title=f"Functional Specification: {params.project_name or params.module}",
        scope=f"{params.module} / {params.process_area}", node_id=None, result=result,
    )
