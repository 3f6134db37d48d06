"""
ABAP Documentation Workbench
Workspace blueprint — uploads, object tree, archive metadata and spec generation.

Endpoints summary:
    WORKSPACE  /api/v1/workspaces                               POST
               /api/v1/workspaces/<wid>                         GET, DELETE

    FILES      /api/v1/workspaces/<wid>/files                   GET, POST (multipart, .zip → archive)
               /api/v1/workspaces/<wid>/files/<item_id>         GET, PATCH (category), DELETE

    TREE       /api/v1/workspaces/<wid>/tree                    GET
               /api/v1/workspaces/<wid>/tree/expanded           PUT
               /api/v1/workspaces/<wid>/tree/nodes/<node_id>    GET   (scope label + item ids)

    ARCHIVE    /api/v1/workspaces/<wid>/objects                 GET
               /api/v1/workspaces/<wid>/metadata-context        GET

    SPECS      /api/v1/workspaces/<wid>/specs/technical         POST
               /api/v1/workspaces/<wid>/specs/functional        POST
               /api/v1/workspaces/<wid>/specs?kind=technical|functional   GET
               /api/v1/specs/<spec_id>                          GET
               /api/v1/specs/<spec_id>/export?format=markdown|json   GET
"""

import logging

from flask import Blueprint, Response, current_app, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from app.ai.export import EXPORT_FORMATS, AIDocExporter
from app.core.exceptions import GenerationError, NotFoundError, ValidationError
from app.models import db
from app.services import spec_generation_service, workspace_service
from app.services.spec_generation_service import FunctionalParameters
from app.services.workspace_service import UploadPayload
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)

workspace_bp = Blueprint("workspace", __name__, url_prefix="/api/v1")

_TRUE_VALUES = {"1", "true", "yes", "on"}


# ── Helpers ──────────────────────────────────────────────────────────────────

def _flag(name: str, source=None) -> bool:
    value = (source if source is not None else request.args).get(name, "")
    return str(value).strip().lower() in _TRUE_VALUES


# ── Error handlers ───────────────────────────────────────────────────────────

@workspace_bp.errorhandler(NotFoundError)
def _handle_not_found(error: NotFoundError):
    return api_error(E.NOT_FOUND, str(error))


@workspace_bp.errorhandler(ValidationError)
def _handle_validation(error: ValidationError):
    db.session.rollback()
    return api_error(E.VALIDATION_CONSTRAINT, str(error), details=error.details)


@workspace_bp.errorhandler(GenerationError)
def _handle_generation(error: GenerationError):
    db.session.rollback()
    return api_error(E.GENERATION_FAILED, "Specification generation failed", details={"reason": str(error)})


@workspace_bp.errorhandler(SQLAlchemyError)
def _handle_database(error: SQLAlchemyError):
    db.session.rollback()
    logger.error("Database error on %s: %s", request.path, error, exc_info=True)
    return api_error(E.DATABASE, "Database error")


# ═══════════════════════════════════════════════════════════════════════════
#  WORKSPACES
# ═══════════════════════════════════════════════════════════════════════════

@workspace_bp.route("/workspaces", methods=["POST"])
def create_workspace():
    data = request.get_json(silent=True) or {}
    name = data.get("name") or current_app.config.get("DEFAULT_PACKAGE_NAME", "Project")
    ws = workspace_service.create_workspace(str(name))
    db.session.commit()
    return jsonify(ws.to_dict()), 201


@workspace_bp.route("/workspaces/<int:wid>", methods=["GET"])
def get_workspace(wid):
    ws = workspace_service.get_workspace(wid)
    return jsonify(ws.to_dict(include_items=True))


@workspace_bp.route("/workspaces/<int:wid>", methods=["DELETE"])
def delete_workspace(wid):
    workspace_service.delete_workspace(wid)
    db.session.commit()
    return jsonify({"message": "Workspace deleted"}), 200


# ═══════════════════════════════════════════════════════════════════════════
#  FILES
# ═══════════════════════════════════════════════════════════════════════════

@workspace_bp.route("/workspaces/<int:wid>/files", methods=["POST"])
def upload_files(wid):
    """Multipart upload. Field ``files`` (repeatable); form/query ``replace=1``."""
    files = request.files.getlist("files")
    if not files:
        return api_error(E.VALIDATION_REQUIRED, "files is required")

    uploads = [
        UploadPayload(filename=f.filename or "unnamed", data=f.read())
        for f in files
    ]
    replace = _flag("replace", request.form) or _flag("replace")
    result = workspace_service.add_uploads(wid, uploads, replace=replace)
    db.session.commit()

    logger.info(
        "Workspace %s upload: %d added, %d skipped, %d archive(s)",
        wid, len(result["added"]), len(result["skipped"]), len(result["archives"]),
    )
    return jsonify(result), 201


@workspace_bp.route("/workspaces/<int:wid>/files", methods=["GET"])
def list_files(wid):
    include_content = _flag("include_content")
    items = workspace_service.list_items(wid)
    return jsonify({
        "items": [i.to_dict(include_content=include_content) for i in items],
        "total": len(items),
    })


@workspace_bp.route("/workspaces/<int:wid>/files/<item_id>", methods=["GET"])
def get_file(wid, item_id):
    item = workspace_service.get_item(wid, item_id)
    return jsonify(item.to_dict(include_content=True))


@workspace_bp.route("/workspaces/<int:wid>/files/<item_id>", methods=["PATCH"])
def update_file(wid, item_id):
    data = request.get_json(silent=True) or {}
    if "category" not in data:
        return api_error(E.VALIDATION_REQUIRED, "category is required")
    item = workspace_service.update_category(wid, item_id, str(data["category"]))
    db.session.commit()
    return jsonify(item.to_dict())


@workspace_bp.route("/workspaces/<int:wid>/files/<item_id>", methods=["DELETE"])
def delete_file(wid, item_id):
    workspace_service.remove_item(wid, item_id)
    db.session.commit()
    return jsonify({"message": "File removed"}), 200


# ═══════════════════════════════════════════════════════════════════════════
#  OBJECT TREE
# ═══════════════════════════════════════════════════════════════════════════

@workspace_bp.route("/workspaces/<int:wid>/tree", methods=["GET"])
def get_tree(wid):
    return jsonify(workspace_service.get_tree_view(wid))


@workspace_bp.route("/workspaces/<int:wid>/tree/expanded", methods=["PUT"])
def set_expanded(wid):
    """Body: ``{"node_ids": [...]}`` to replace, or ``{"node_id": ..., "expanded": bool}`` to toggle."""
    data = request.get_json(silent=True) or {}
    node_ids = data.get("node_ids")
    if node_ids is not None and not isinstance(node_ids, list):
        return api_error(E.VALIDATION_INVALID, "node_ids must be a list")
    expanded = data.get("expanded")
    if expanded is not None and not isinstance(expanded, bool):
        return api_error(E.VALIDATION_INVALID, "expanded must be a boolean")

    result = workspace_service.set_expanded(
        wid, node_ids=node_ids, node_id=data.get("node_id"), expanded=expanded,
    )
    db.session.commit()
    return jsonify({"expanded": result})


@workspace_bp.route("/workspaces/<int:wid>/tree/nodes/<path:node_id>", methods=["GET"])
def get_node_scope(wid, node_id):
    return jsonify(workspace_service.describe_node(wid, node_id))


# ═══════════════════════════════════════════════════════════════════════════
#  ARCHIVE METADATA
# ═══════════════════════════════════════════════════════════════════════════

@workspace_bp.route("/workspaces/<int:wid>/objects", methods=["GET"])
def list_objects(wid):
    result = workspace_service.archive_result(wid)
    return jsonify({
        "objects": [o.to_dict() for o in result.objects],
        "stats": result.stats,
    })


@workspace_bp.route("/workspaces/<int:wid>/metadata-context", methods=["GET"])
def get_metadata_context(wid):
    return jsonify({"markdown": workspace_service.metadata_context(wid)})


# ═══════════════════════════════════════════════════════════════════════════
#  SPECIFICATIONS
# ═══════════════════════════════════════════════════════════════════════════

@workspace_bp.route("/workspaces/<int:wid>/specs/technical", methods=["POST"])
def generate_technical_spec(wid):
    """Body: ``{node_id?, template_item_id?, model?}``"""
    data = request.get_json(silent=True) or {}
    spec = spec_generation_service.generate_technical_spec(
        wid,
        node_id=data.get("node_id"),
        template_item_id=data.get("template_item_id"),
        model=data.get("model"),
    )
    db.session.commit()
    return jsonify(spec.to_dict()), 201


@workspace_bp.route("/workspaces/<int:wid>/specs/functional", methods=["POST"])
def generate_functional_spec(wid):
    """Body: ``{prompt, module?, process_area?, complexity?, target_system?,
    author?, project_name?, template_item_id?, model?}``"""
    data = request.get_json(silent=True) or {}
    prompt = (data.get("prompt") or "").strip()
    if not prompt:
        return api_error(E.VALIDATION_REQUIRED, "prompt is required")

    spec = spec_generation_service.generate_functional_spec(
        wid,
        prompt,
        FunctionalParameters.from_dict(data),
        template_item_id=data.get("template_item_id"),
        model=data.get("model"),
    )
    db.session.commit()
    return jsonify(spec.to_dict()), 201


@workspace_bp.route("/workspaces/<int:wid>/specs", methods=["GET"])
def list_specs(wid):
    specs = workspace_service.list_specs(wid, kind=request.args.get("kind") or None)
    return jsonify({
        "items": [s.to_dict(include_markdown=False) for s in specs],
        "total": len(specs),
    })


@workspace_bp.route("/specs/<int:spec_id>", methods=["GET"])
def get_spec(spec_id):
    return jsonify(workspace_service.get_spec(spec_id).to_dict())


@workspace_bp.route("/specs/<int:spec_id>/export", methods=["GET"])
def export_spec(spec_id):
    fmt = request.args.get("format", "markdown").lower()
    if fmt not in EXPORT_FORMATS:
        return api_error(
            E.VALIDATION_INVALID,
            f"Unsupported format: {fmt}",
            details={"format": f"must be one of {', '.join(sorted(EXPORT_FORMATS))}"},
        )
    spec = workspace_service.get_spec(spec_id)
    body, mimetype, filename = AIDocExporter().export(fmt, spec.kind, spec.to_dict())
    return Response(
        body,
        content_type=mimetype,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
