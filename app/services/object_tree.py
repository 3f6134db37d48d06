"""
Object navigator tree.

Builds the package → folder → object → include → parsed-item hierarchy
from the workspace's uploaded items. The tree is rebuilt from scratch on
every change to the item collection; nodes are immutable.

Node ids are plain concatenations of a role tag and the originating item id
(plus a positional index for parsed FORM / MODULE / FUNCTION entries), so an
unchanged collection always yields the same ids. Expansion state lives
outside the tree, keyed by those ids.

Root children, when non-empty, always appear in this order:
    Function Groups, Programs / Reports, Classes / Interfaces, Other Objects
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Iterator

from app.services.abap_classifier import (
    FUNCTION_GROUP_TYPES,
    PROGRAM_TYPES,
    DetectedFile,
    DetectedType,
    classify_item,
)
from app.services.abap_parser import ParsedContent, parse_abap_content


class NodeKind(str, Enum):
    PACKAGE = "package"
    FUNCTION_GROUPS_FOLDER = "function-groups-folder"
    PROGRAMS_FOLDER = "programs-folder"
    CLASSES_FOLDER = "classes-folder"
    UNCATEGORIZED_FOLDER = "uncategorized-folder"
    FUNCTION_GROUP = "function-group"
    FG_MAIN_PROGRAM = "fg-main-program"
    FG_TOP_INCLUDE = "fg-top-include"
    FG_UXX_INCLUDE = "fg-uxx-include"
    FG_FXX_INCLUDE = "fg-fxx-include"
    FG_FUNCTION_MODULES_FOLDER = "fg-function-modules-folder"
    FG_INCLUDES_FOLDER = "fg-includes-folder"
    FUNCTION_MODULE_INCLUDE = "function-module-include"
    FORM_INCLUDE = "form-include"
    PROGRAM = "program"
    TOP_INCLUDE = "top-include"
    PBO_INCLUDE = "pbo-include"
    PAI_INCLUDE = "pai-include"
    SCREEN_INCLUDE = "screen-include"
    INCLUDE = "include"
    CLASS = "class"
    INTERFACE = "interface"
    FILE = "file"


@dataclass(frozen=True)
class SourceItem:
    """Minimal item shape accepted by the builder (id, name, content)."""
    id: str
    name: str
    content: str | None = None


@dataclass(frozen=True)
class TreeNode:
    id: str
    label: str
    kind: NodeKind
    children: tuple["TreeNode", ...] = ()
    item_id: str | None = None
    # Initial hint for the presentation layer; never mutated.
    default_expanded: bool = False

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "label": self.label,
            "type": self.kind.value,
            "item_id": self.item_id,
            "default_expanded": self.default_expanded,
            "children": [c.to_dict() for c in self.children],
        }


ROOT_ID = "root"


# ── Builder ──────────────────────────────────────────────────────────────

class _ParseCache:
    """Parses each item's content at most once per build."""

    def __init__(self, items: Iterable):
        self._content = {item.id: item.content for item in items}
        self._parsed: dict[str, ParsedContent | None] = {}

    def get(self, item_id: str) -> ParsedContent | None:
        if item_id not in self._parsed:
            content = self._content.get(item_id)
            self._parsed[item_id] = parse_abap_content(content) if content else None
        return self._parsed[item_id]


def _leaf(node_id: str, label: str, kind: NodeKind, item_id: str) -> TreeNode:
    return TreeNode(id=node_id, label=label, kind=kind, item_id=item_id)


def _file_node(node_id: str, d: DetectedFile, kind: NodeKind, children: list[TreeNode]) -> TreeNode:
    return TreeNode(
        id=node_id,
        label=d.file_name,
        kind=kind,
        children=tuple(children),
        item_id=d.item_id,
        default_expanded=bool(children),
    )


def _form_nodes(prefix: str, d: DetectedFile, parsed: ParsedContent | None, kind: NodeKind) -> list[TreeNode]:
    if not parsed:
        return []
    return [
        _leaf(f"{prefix}-{d.item_id}-form-{idx}", f"FORM {form.name}", kind, d.item_id)
        for idx, form in enumerate(parsed.forms)
    ]


def _module_nodes(prefix: str, d: DetectedFile, parsed: ParsedContent | None, kind: NodeKind) -> list[TreeNode]:
    if not parsed:
        return []
    return [
        _leaf(f"{prefix}-{d.item_id}-mod-{idx}", f"MODULE {mod.name} {mod.direction}", kind, d.item_id)
        for idx, mod in enumerate(parsed.modules)
    ]


def _of_type(files: list[DetectedFile], *types: DetectedType) -> list[DetectedFile]:
    return [f for f in files if f.type in types]


def _build_function_group(group: str, files: list[DetectedFile], cache: _ParseCache) -> TreeNode:
    children: list[TreeNode] = []

    for d in _of_type(files, DetectedType.FG_MAIN):
        children.append(_leaf(f"fg-main-{d.item_id}", d.file_name, NodeKind.FG_MAIN_PROGRAM, d.item_id))
    for d in _of_type(files, DetectedType.FG_TOP):
        children.append(_leaf(f"fg-top-{d.item_id}", d.file_name, NodeKind.FG_TOP_INCLUDE, d.item_id))
    for d in _of_type(files, DetectedType.FG_UXX):
        children.append(_leaf(f"fg-uxx-{d.item_id}", d.file_name, NodeKind.FG_UXX_INCLUDE, d.item_id))
    for d in _of_type(files, DetectedType.FG_FXX):
        children.append(_leaf(f"fg-fxx-{d.item_id}", d.file_name, NodeKind.FG_FXX_INCLUDE, d.item_id))

    func_includes = _of_type(files, DetectedType.FG_FUNC_INCLUDE)
    if func_includes:
        modules: list[TreeNode] = []
        for d in func_includes:
            parsed = cache.get(d.item_id)
            if parsed and parsed.functions:
                modules.extend(
                    _leaf(f"fg-fm-{d.item_id}-fn-{idx}", func.name, NodeKind.FUNCTION_MODULE_INCLUDE, d.item_id)
                    for idx, func in enumerate(parsed.functions)
                )
            else:
                modules.append(_leaf(f"fg-fm-{d.item_id}", d.file_name, NodeKind.FUNCTION_MODULE_INCLUDE, d.item_id))
        children.append(TreeNode(
            id=f"fg-fmods-{group}",
            label="Function Modules",
            kind=NodeKind.FG_FUNCTION_MODULES_FOLDER,
            children=tuple(modules),
            default_expanded=True,
        ))

    form_includes = _of_type(files, DetectedType.FG_FORM_INCLUDE)
    if form_includes:
        includes: list[TreeNode] = []
        for d in form_includes:
            parsed = cache.get(d.item_id)
            sub = _form_nodes("fg-fi", d, parsed, NodeKind.FORM_INCLUDE)
            sub += _module_nodes("fg-fi", d, parsed, NodeKind.FORM_INCLUDE)
            includes.append(_file_node(f"fg-fi-{d.item_id}", d, NodeKind.FORM_INCLUDE, sub))
        children.append(TreeNode(
            id=f"fg-incs-{group}",
            label="Includes",
            kind=NodeKind.FG_INCLUDES_FOLDER,
            children=tuple(includes),
            default_expanded=True,
        ))

    return TreeNode(
        id=f"fg-{group}",
        label=group,
        kind=NodeKind.FUNCTION_GROUP,
        children=tuple(children),
        default_expanded=True,
    )


def _build_simple_program(d: DetectedFile, cache: _ParseCache) -> TreeNode:
    parsed = cache.get(d.item_id)
    children = _form_nodes("prog", d, parsed, NodeKind.INCLUDE)
    children += _module_nodes("prog", d, parsed, NodeKind.SCREEN_INCLUDE)
    return TreeNode(
        id=f"prog-{d.item_id}",
        label=(parsed.report_name if parsed and parsed.report_name else d.file_name),
        kind=NodeKind.PROGRAM,
        children=tuple(children),
        item_id=d.item_id,
        default_expanded=bool(children),
    )


def _build_program(name: str, files: list[DetectedFile], cache: _ParseCache) -> TreeNode:
    children: list[TreeNode] = []

    for d in _of_type(files, DetectedType.PROGRAM):
        children.append(_leaf(f"prog-main-{d.item_id}", d.file_name, NodeKind.PROGRAM, d.item_id))
    for d in _of_type(files, DetectedType.PROGRAM_TOP):
        children.append(_leaf(f"prog-top-{d.item_id}", d.file_name, NodeKind.TOP_INCLUDE, d.item_id))
    for d in _of_type(files, DetectedType.PROGRAM_PBO):
        modules = _module_nodes("prog-pbo", d, cache.get(d.item_id), NodeKind.SCREEN_INCLUDE)
        children.append(_file_node(f"prog-pbo-{d.item_id}", d, NodeKind.PBO_INCLUDE, modules))
    for d in _of_type(files, DetectedType.PROGRAM_PAI):
        modules = _module_nodes("prog-pai", d, cache.get(d.item_id), NodeKind.SCREEN_INCLUDE)
        children.append(_file_node(f"prog-pai-{d.item_id}", d, NodeKind.PAI_INCLUDE, modules))
    for d in _of_type(files, DetectedType.PROGRAM_FORM_INCLUDE, DetectedType.PROGRAM_INCLUDE):
        forms = _form_nodes("prog-inc", d, cache.get(d.item_id), NodeKind.INCLUDE)
        children.append(_file_node(f"prog-inc-{d.item_id}", d, NodeKind.INCLUDE, forms))

    return TreeNode(
        id=f"progrp-{name}",
        label=name,
        kind=NodeKind.PROGRAM,
        children=tuple(children),
        default_expanded=True,
    )


def build_object_tree(items: Iterable, package_name: str = "Project") -> TreeNode:
    """Classify every item and assemble the navigator tree.

    Args:
        items: Objects with ``id``, ``name`` and ``content`` attributes, in
            discovery order (UploadedItem rows or SourceItem).
        package_name: Label of the root package node.

    Returns:
        The root TreeNode. Every item appears under exactly one folder.
    """
    items = list(items)
    cache = _ParseCache(items)
    detected = [classify_item(item.id, item.name, item.content) for item in items]

    fg_groups: dict[str, list[DetectedFile]] = {}
    program_groups: dict[str, list[DetectedFile]] = {}
    classes: list[DetectedFile] = []
    interfaces: list[DetectedFile] = []
    uncategorized: list[DetectedFile] = []

    for d in detected:
        if d.type in FUNCTION_GROUP_TYPES and d.group_key:
            fg_groups.setdefault(d.group_key, []).append(d)
        elif d.type in PROGRAM_TYPES:
            program_groups.setdefault(d.group_key or d.base_name, []).append(d)
        elif d.type is DetectedType.CLASS:
            classes.append(d)
        elif d.type is DetectedType.INTERFACE:
            interfaces.append(d)
        else:
            # includes content-detected function includes without a group key
            uncategorized.append(d)

    folders: list[TreeNode] = []

    if fg_groups:
        folders.append(TreeNode(
            id="fg-folder",
            label="Function Groups",
            kind=NodeKind.FUNCTION_GROUPS_FOLDER,
            children=tuple(_build_function_group(g, files, cache) for g, files in fg_groups.items()),
            default_expanded=True,
        ))

    if program_groups:
        programs = []
        for name, files in program_groups.items():
            if len(files) == 1 and files[0].type is DetectedType.PROGRAM:
                programs.append(_build_simple_program(files[0], cache))
            else:
                programs.append(_build_program(name, files, cache))
        folders.append(TreeNode(
            id="prog-folder",
            label="Programs / Reports",
            kind=NodeKind.PROGRAMS_FOLDER,
            children=tuple(programs),
            default_expanded=True,
        ))

    if classes or interfaces:
        members = [_leaf(f"class-{d.item_id}", d.file_name, NodeKind.CLASS, d.item_id) for d in classes]
        members += [_leaf(f"if-{d.item_id}", d.file_name, NodeKind.INTERFACE, d.item_id) for d in interfaces]
        folders.append(TreeNode(
            id="class-folder",
            label="Classes / Interfaces",
            kind=NodeKind.CLASSES_FOLDER,
            children=tuple(members),
            default_expanded=True,
        ))

    if uncategorized:
        folders.append(TreeNode(
            id="uncat-folder",
            label="Other Objects",
            kind=NodeKind.UNCATEGORIZED_FOLDER,
            children=tuple(_leaf(f"uncat-{d.item_id}", d.file_name, NodeKind.FILE, d.item_id) for d in uncategorized),
            default_expanded=True,
        ))

    return TreeNode(
        id=ROOT_ID,
        label=package_name,
        kind=NodeKind.PACKAGE,
        children=tuple(folders),
        default_expanded=True,
    )


# ── Queries ──────────────────────────────────────────────────────────────

def iter_nodes(node: TreeNode) -> Iterator[TreeNode]:
    """Depth-first, pre-order walk."""
    yield node
    for child in node.children:
        yield from iter_nodes(child)


def find_node(root: TreeNode, node_id: str) -> TreeNode | None:
    for node in iter_nodes(root):
        if node.id == node_id:
            return node
    return None


def collect_item_ids(node: TreeNode) -> list[str]:
    """All item ids reachable under ``node``, first-seen order, no duplicates."""
    seen: dict[str, None] = {}
    for n in iter_nodes(node):
        if n.item_id is not None:
            seen.setdefault(n.item_id, None)
    return list(seen)


def default_expanded_ids(root: TreeNode) -> list[str]:
    return [n.id for n in iter_nodes(root) if n.default_expanded]


_SCOPE_PREFIXES = {
    NodeKind.PACKAGE: "Package",
    NodeKind.FUNCTION_GROUP: "Function Group",
    NodeKind.CLASS: "Class",
    NodeKind.INTERFACE: "Interface",
}

_FOLDER_SCOPES = {
    NodeKind.FUNCTION_GROUPS_FOLDER: "All Function Groups",
    NodeKind.PROGRAMS_FOLDER: "All Programs",
    NodeKind.CLASSES_FOLDER: "All Classes",
}


def scope_label(node: TreeNode) -> str:
    """Human-readable label for operations scoped to ``node``'s subtree."""
    if node.kind in _SCOPE_PREFIXES:
        return f"{_SCOPE_PREFIXES[node.kind]}: {node.label}"
    if node.kind in _FOLDER_SCOPES:
        return _FOLDER_SCOPES[node.kind]
    if node.kind is NodeKind.PROGRAM:
        return f"Program: {node.label}" if node.children else node.label
    return node.label
