"""
ABAP Documentation Workbench
Workspace domain models.

Models:
    - Workspace: one documentation session (the "package" shown as tree root)
      plus the presentation-owned set of expanded tree-node ids
    - UploadedItem: one uploaded file or accepted archive entry
    - GeneratedSpec: a stored technical / functional specification result

The object tree and archive metadata are derived from UploadedItem rows on
every read and are never stored.
"""

import json
import uuid
from datetime import datetime, timezone

from app.models import db


# ── Constants ────────────────────────────────────────────────────────────────

FILE_CATEGORIES = (
    "Main Logic",
    "Data Dictionary",
    "Include",
    "Function Module",
    "Class",
    "Template",
)
DEFAULT_CATEGORY = "Main Logic"
TEMPLATE_CATEGORY = "Template"
TEMPLATE_EXTENSIONS = (".docx", ".md", ".pdf")

SOURCE_UPLOAD = "upload"
SOURCE_ARCHIVE = "archive"
SPEC_KINDS = ("technical", "functional")


def default_category_for(filename: str) -> str:
    """Template documents are recognised by extension; everything else is code."""
    if filename.lower().endswith(TEMPLATE_EXTENSIONS):
        return TEMPLATE_CATEGORY
    return DEFAULT_CATEGORY


def _new_item_id() -> str:
    return uuid.uuid4().hex


def _utcnow():
    return datetime.now(timezone.utc)


class Workspace(db.Model):
    __tablename__ = "workspaces"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, default="Project")
    expanded_node_ids_json = db.Column(
        db.Text, nullable=True,
        comment="JSON list of expanded tree-node ids; NULL until the user toggles a node",
    )
    next_seq = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    items = db.relationship(
        "UploadedItem",
        backref="workspace",
        lazy="dynamic",
        cascade="all, delete-orphan",
        order_by="UploadedItem.seq",
    )
    specs = db.relationship(
        "GeneratedSpec",
        backref="workspace",
        lazy="dynamic",
        cascade="all, delete-orphan",
        order_by="GeneratedSpec.id",
    )

    @property
    def expanded_node_ids(self) -> list[str] | None:
        if self.expanded_node_ids_json is None:
            return None
        try:
            return list(json.loads(self.expanded_node_ids_json))
        except (ValueError, TypeError):
            return None

    @expanded_node_ids.setter
    def expanded_node_ids(self, ids):
        self.expanded_node_ids_json = None if ids is None else json.dumps(list(ids))

    def allocate_seq(self) -> int:
        seq = self.next_seq or 0
        self.next_seq = seq + 1
        return seq

    def to_dict(self, include_items: bool = False) -> dict:
        d = {
            "id": self.id,
            "name": self.name,
            "item_count": self.items.count(),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_items:
            d["items"] = [i.to_dict() for i in self.items]
        return d

    def __repr__(self):
        return f"<Workspace {self.id}: {self.name}>"


class UploadedItem(db.Model):
    __tablename__ = "uploaded_items"

    id = db.Column(db.String(32), primary_key=True, default=_new_item_id)
    workspace_id = db.Column(
        db.Integer, db.ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    seq = db.Column(db.Integer, nullable=False, default=0, comment="Discovery order within the workspace")
    name = db.Column(db.String(255), nullable=False)
    path = db.Column(db.String(1024), nullable=False)
    size = db.Column(db.Integer, nullable=False, default=0)
    category = db.Column(db.String(30), nullable=False, default=DEFAULT_CATEGORY)
    content = db.Column(db.Text, nullable=True)
    source = db.Column(db.String(20), nullable=False, default=SOURCE_UPLOAD, comment="upload / archive")
    archive_name = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def to_dict(self, include_content: bool = False) -> dict:
        d = {
            "id": self.id,
            "workspace_id": self.workspace_id,
            "name": self.name,
            "path": self.path,
            "size": self.size,
            "category": self.category,
            "source": self.source,
            "archive_name": self.archive_name,
            "has_content": self.content is not None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_content:
            d["content"] = self.content
        return d

    def __repr__(self):
        return f"<UploadedItem {self.id}: {self.name}>"


class GeneratedSpec(db.Model):
    __tablename__ = "generated_specs"

    id = db.Column(db.Integer, primary_key=True)
    workspace_id = db.Column(
        db.Integer, db.ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    kind = db.Column(db.String(20), nullable=False, comment="technical / functional")
    title = db.Column(db.String(255), nullable=False, default="")
    scope_label = db.Column(db.String(255), nullable=True)
    node_id = db.Column(db.String(255), nullable=True)
    markdown = db.Column(db.Text, nullable=False, default="")
    model = db.Column(db.String(80), nullable=True)
    provider = db.Column(db.String(30), nullable=True)
    prompt_tokens = db.Column(db.Integer, default=0)
    completion_tokens = db.Column(db.Integer, default=0)
    latency_ms = db.Column(db.Integer, default=0)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self, include_markdown: bool = True) -> dict:
        d = {
            "id": self.id,
            "workspace_id": self.workspace_id,
            "kind": self.kind,
            "title": self.title,
            "scope_label": self.scope_label,
            "node_id": self.node_id,
            "model": self.model,
            "provider": self.provider,
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "latency_ms": self.latency_ms,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_markdown:
            d["markdown"] = self.markdown
        return d

    def __repr__(self):
        return f"<GeneratedSpec {self.id}: {self.kind}>"
