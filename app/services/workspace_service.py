"""
Workspace service — the session-level item collection and its derived views.

Uploads become UploadedItem rows; a ``.zip`` upload is decoded as an abapGit
archive and each accepted entry becomes one item. The object tree, archive
objects and metadata context are recomputed from the rows on every call.

Transaction policy: functions use flush(), never commit().
Caller (route handler) is responsible for db.session.commit().
"""

import logging
import zipfile
from dataclasses import dataclass

from flask import current_app

from app.core.exceptions import NotFoundError, ValidationError
from app.models import db
from app.models.workspace import (
    FILE_CATEGORIES,
    SOURCE_ARCHIVE,
    SOURCE_UPLOAD,
    SPEC_KINDS,
    TEMPLATE_CATEGORY,
    GeneratedSpec,
    UploadedItem,
    Workspace,
    default_category_for,
)
from app.services.abapgit_archive import (
    MAX_ARCHIVE_ENTRIES,
    ArchiveLimitError,
    ArchiveParseResult,
    entries_from_texts,
    is_zip_file,
    parse_archive,
    parse_zip_bytes,
)
from app.services.abapgit_metadata import build_metadata_context
from app.services.object_tree import (
    TreeNode,
    build_object_tree,
    collect_item_ids,
    default_expanded_ids,
    find_node,
    scope_label,
)
from app.services.template_documents import TemplateDocumentError, extract_template_text, is_binary_template

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UploadPayload:
    """One file as received from the client."""
    filename: str
    data: bytes


def decode_text(data: bytes) -> str:
    """Decode uploaded bytes as UTF-8 text (BOM tolerated).

    Raises:
        UnicodeDecodeError: the file is not text.
    """
    return data.decode("utf-8-sig")


def _read_upload(upload: UploadPayload) -> str:
    """Text of a single uploaded file; Word / PDF templates are converted."""
    if is_binary_template(upload.filename):
        return extract_template_text(upload.filename, upload.data)
    return decode_text(upload.data)


# ═══════════════════════════════════════════════════════════════════
# WORKSPACES
# ═══════════════════════════════════════════════════════════════════

def create_workspace(name: str | None = None) -> Workspace:
    name = (name or "").strip() or "Project"
    if len(name) > 120:
        raise ValidationError("Workspace name is too long", details={"name": "max 120 characters"})
    ws = Workspace(name=name)
    db.session.add(ws)
    db.session.flush()
    logger.info("Workspace created id=%s name=%s", ws.id, ws.name)
    return ws


def get_workspace(workspace_id: int) -> Workspace:
    ws = db.session.get(Workspace, workspace_id)
    if ws is None:
        raise NotFoundError("Workspace", workspace_id)
    return ws


def delete_workspace(workspace_id: int) -> None:
    ws = get_workspace(workspace_id)
    db.session.delete(ws)
    db.session.flush()
    logger.info("Workspace deleted id=%s", workspace_id)


def list_items(workspace_id: int) -> list[UploadedItem]:
    return get_workspace(workspace_id).items.all()


def get_item(workspace_id: int, item_id: str) -> UploadedItem:
    item = UploadedItem.query.filter_by(workspace_id=workspace_id, id=item_id).first()
    if item is None:
        raise NotFoundError("UploadedItem", item_id)
    return item


# ═══════════════════════════════════════════════════════════════════
# UPLOADS
# ═══════════════════════════════════════════════════════════════════

def _add_item(ws: Workspace, *, name: str, path: str, content: str, size: int,
              source: str = SOURCE_UPLOAD, archive_name: str | None = None) -> UploadedItem:
    item = UploadedItem(
        workspace_id=ws.id,
        seq=ws.allocate_seq(),
        name=name,
        path=path,
        size=size,
        category=default_category_for(name),
        content=content,
        source=source,
        archive_name=archive_name,
    )
    db.session.add(item)
    return item


def _add_archive(ws: Workspace, upload: UploadPayload) -> tuple[list[UploadedItem], ArchiveParseResult]:
    cfg = current_app.config
    result = parse_zip_bytes(
        upload.data,
        max_entries=cfg.get("ARCHIVE_MAX_ENTRIES", MAX_ARCHIVE_ENTRIES),
        max_uncompressed_bytes=cfg.get("ARCHIVE_MAX_UNCOMPRESSED_MB", 200) * 1024 * 1024,
    )
    items = [
        _add_item(
            ws,
            name=f.name,
            path=f.path,
            content=f.content,
            size=len(f.content.encode("utf-8")),
            source=SOURCE_ARCHIVE,
            archive_name=upload.filename,
        )
        for f in result.files
    ]
    logger.info(
        "Archive %s extracted: %d files, %d objects",
        upload.filename, result.stats["total_files"], len(result.objects),
    )
    return items, result


def add_uploads(workspace_id: int, uploads: list[UploadPayload], replace: bool = False) -> dict:
    """Add one upload batch to the workspace.

    Args:
        workspace_id: Target workspace.
        uploads: Files in client order. ``.zip`` files are expanded.
        replace: Drop the workspace's existing items first.

    Returns:
        {"added": [item dicts], "skipped": [{"name", "reason"}],
         "archives": [{"name", "stats", "objects"}]}
    """
    ws = get_workspace(workspace_id)
    if not uploads:
        raise ValidationError("At least one file is required", details={"files": "empty batch"})

    if replace:
        removed = UploadedItem.query.filter_by(workspace_id=ws.id).delete(synchronize_session=False)
        ws.expanded_node_ids = None
        logger.info("Workspace %s: replaced %d existing items", ws.id, removed)

    added: list[UploadedItem] = []
    skipped: list[dict] = []
    archives: list[dict] = []

    for upload in uploads:
        if is_zip_file(upload.filename):
            try:
                items, result = _add_archive(ws, upload)
            except zipfile.BadZipFile:
                logger.warning("Skipping %s: not a readable ZIP archive", upload.filename)
                skipped.append({"name": upload.filename, "reason": "invalid archive"})
                continue
            except ArchiveLimitError as exc:
                logger.warning("Skipping %s: %s", upload.filename, exc)
                skipped.append({"name": upload.filename, "reason": "archive too large"})
                continue
            added.extend(items)
            archives.append({
                "name": upload.filename,
                "stats": result.stats,
                "objects": [o.to_dict() for o in result.objects],
            })
            continue

        try:
            content = _read_upload(upload)
        except UnicodeDecodeError:
            logger.debug("Skipping %s: not a text file", upload.filename)
            skipped.append({"name": upload.filename, "reason": "not a text file"})
            continue
        except TemplateDocumentError as exc:
            logger.warning("Skipping %s: %s", upload.filename, exc)
            skipped.append({"name": upload.filename, "reason": "unreadable template document"})
            continue
        added.append(_add_item(
            ws, name=upload.filename, path=upload.filename, content=content, size=len(upload.data),
        ))

    db.session.flush()
    return {
        "added": [i.to_dict() for i in added],
        "skipped": skipped,
        "archives": archives,
    }


def update_category(workspace_id: int, item_id: str, category: str) -> UploadedItem:
    if category not in FILE_CATEGORIES:
        raise ValidationError(
            f"Unknown category: {category}",
            details={"category": f"must be one of {', '.join(FILE_CATEGORIES)}"},
        )
    item = get_item(workspace_id, item_id)
    item.category = category
    db.session.flush()
    return item


def remove_item(workspace_id: int, item_id: str) -> None:
    item = get_item(workspace_id, item_id)
    db.session.delete(item)
    db.session.flush()


# ═══════════════════════════════════════════════════════════════════
# DERIVED VIEWS
# ═══════════════════════════════════════════════════════════════════

def source_items(ws: Workspace) -> list[UploadedItem]:
    """Items that take part in the object tree (templates excluded)."""
    return [i for i in ws.items if i.category != TEMPLATE_CATEGORY]


def build_tree(workspace_id: int) -> TreeNode:
    ws = get_workspace(workspace_id)
    return build_object_tree(source_items(ws), ws.name)


def get_tree_view(workspace_id: int) -> dict:
    ws = get_workspace(workspace_id)
    root = build_object_tree(source_items(ws), ws.name)
    stored = ws.expanded_node_ids
    return {
        "tree": root.to_dict(),
        "expanded": stored if stored is not None else default_expanded_ids(root),
    }


def set_expanded(workspace_id: int, *, node_ids: list[str] | None = None,
                 node_id: str | None = None, expanded: bool | None = None) -> list[str]:
    """Replace the expanded set, or toggle a single node in it.

    Ids that no longer exist in the tree are kept; they become live again
    when the same item is re-added under the same role.
    """
    ws = get_workspace(workspace_id)
    if node_ids is not None:
        result = list(dict.fromkeys(str(n) for n in node_ids))
    elif node_id:
        current = ws.expanded_node_ids
        if current is None:
            current = default_expanded_ids(build_object_tree(source_items(ws), ws.name))
        current = [n for n in current if n != node_id]
        if expanded is None or expanded:
            current.append(node_id)
        result = current
    else:
        raise ValidationError("Either node_ids or node_id is required")
    ws.expanded_node_ids = result
    db.session.flush()
    return result


def describe_node(workspace_id: int, node_id: str) -> dict:
    root = build_tree(workspace_id)
    node = find_node(root, node_id)
    if node is None:
        raise NotFoundError("TreeNode", node_id)
    return {
        "id": node.id,
        "label": node.label,
        "type": node.kind.value,
        "scope_label": scope_label(node),
        "item_ids": collect_item_ids(node),
    }


def archive_result(workspace_id: int) -> ArchiveParseResult:
    """Re-run archive extraction over the workspace's archive-sourced items."""
    ws = get_workspace(workspace_id)
    pairs = [(i.path, i.content) for i in ws.items if i.source == SOURCE_ARCHIVE and i.content is not None]
    return parse_archive(entries_from_texts(pairs))


def metadata_context(workspace_id: int) -> str:
    return build_metadata_context(archive_result(workspace_id).objects)


# ═══════════════════════════════════════════════════════════════════
# SPECS
# ═══════════════════════════════════════════════════════════════════

def list_specs(workspace_id: int, kind: str | None = None) -> list[GeneratedSpec]:
    query = get_workspace(workspace_id).specs
    if kind is not None:
        if kind not in SPEC_KINDS:
            raise ValidationError(
                f"Unknown spec kind: {kind}",
                details={"kind": f"must be one of {', '.join(SPEC_KINDS)}"},
            )
        query = query.filter(GeneratedSpec.kind == kind)
    return query.all()


def get_spec(spec_id: int) -> GeneratedSpec:
    spec = db.session.get(GeneratedSpec, spec_id)
    if spec is None:
        raise NotFoundError("GeneratedSpec", spec_id)
    return spec
