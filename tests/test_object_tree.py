"""
Tests — object navigator tree.

Covers:
    - single program with parsed FORM leaves
    - function group with main / TOP / function-module folder
    - multi-include program groups with PBO modules and FORM includes
    - root folder order, "Other Objects" fallback
    - every item reachable exactly once, deterministic rebuilds
    - node lookup, default expansion and scope labels
"""

from app.services.object_tree import (
    ROOT_ID,
    NodeKind,
    SourceItem,
    build_object_tree,
    collect_item_ids,
    default_expanded_ids,
    find_node,
    iter_nodes,
    scope_label,
)


def _function_group_items():
    return [
        SourceItem("m", "SAPLZGRP.abap", "FUNCTION-POOL zgrp.\nINCLUDE lzgrptop.\nINCLUDE lzgrpuxx.\n"),
        SourceItem("t", "LZGRPTOP.abap", "FUNCTION-POOL zgrp.\nDATA gv TYPE i.\n"),
        SourceItem("u", "LZGRPU01.abap", "FUNCTION Z_GET.\n  ev = gv.\nENDFUNCTION.\n"),
    ]


def _program_group_items():
    return [
        SourceItem("p", "ZPRG.abap", "REPORT zprg.\nINCLUDE zprg_top.\nINCLUDE zprg_f01.\n"),
        SourceItem("pt", "ZPRG_TOP.abap", "DATA gv TYPE i.\n"),
        SourceItem("pbo", "ZPRG_PBO.abap", "MODULE status_0100 OUTPUT.\nENDMODULE.\n"),
        SourceItem("pf", "ZPRG_F01.abap", "FORM do_it.\nENDFORM.\nFORM undo_it.\nENDFORM.\n"),
    ]


def _mixed_items():
    return _function_group_items() + [
        SourceItem("r", "ZREP.abap", "REPORT zrep.\n"),
        SourceItem("c", "ZCL_ORDER.abap", "CLASS zcl_order DEFINITION.\nENDCLASS.\n"),
        SourceItem("i", "ZIF_READER.abap", "INTERFACE zif_reader.\nENDINTERFACE.\n"),
        SourceItem("n", "notes.txt", "plain text"),
        SourceItem("o", "orphan.abap", "FUNCTION z_lost.\nENDFUNCTION.\n"),
        SourceItem("e", "empty.abap", None),
    ]


class TestSingleProgram:

    def test_report_with_one_form(self):
        root = build_object_tree([SourceItem("a", "ZFOO.abap", "REPORT ZFOO.\nFORM SUB1.\nENDFORM.\n")])
        prog = find_node(root, "prog-a")
        assert prog is not None
        assert prog.label == "ZFOO"
        assert [c.label for c in prog.children] == ["FORM SUB1"]
        assert prog.children[0].children == ()
        assert prog.children[0].item_id == "a"

    def test_program_without_forms_is_leaf(self):
        root = build_object_tree([SourceItem("a", "ZBARE.abap", "WRITE 'x'.\n")])
        prog = find_node(root, "prog-a")
        assert prog.label == "ZBARE.abap"
        assert prog.children == ()
        assert scope_label(prog) == "ZBARE.abap"

    def test_module_leaves(self):
        src = "REPORT zdyn.\nMODULE status_0100 OUTPUT.\nENDMODULE.\n"
        prog = find_node(build_object_tree([SourceItem("a", "ZDYN.abap", src)]), "prog-a")
        assert [c.label for c in prog.children] == ["MODULE status_0100 OUTPUT"]


class TestFunctionGroup:

    def test_function_group_structure(self):
        root = build_object_tree(_function_group_items())
        folder = find_node(root, "fg-folder")
        assert [c.label for c in folder.children] == ["ZGRP"]

        group = folder.children[0]
        assert group.kind is NodeKind.FUNCTION_GROUP
        assert [c.kind for c in group.children] == [
            NodeKind.FG_MAIN_PROGRAM,
            NodeKind.FG_TOP_INCLUDE,
            NodeKind.FG_FUNCTION_MODULES_FOLDER,
        ]
        fm_folder = group.children[2]
        assert fm_folder.label == "Function Modules"
        assert [c.label for c in fm_folder.children] == ["Z_GET"]
        assert fm_folder.children[0].id == "fg-fm-u-fn-0"

    def test_function_include_without_body_uses_filename(self):
        items = [SourceItem("u", "LZGRPU02.abap", "* empty stub\n")]
        root = build_object_tree(items)
        leaf = find_node(root, "fg-fm-u")
        assert leaf.label == "LZGRPU02.abap"

    def test_form_include_children(self):
        items = [SourceItem("f", "LZGRPF01.abap", "FORM helper.\nENDFORM.\n")]
        root = build_object_tree(items)
        include = find_node(root, "fg-fi-f")
        assert include.default_expanded is True
        assert [c.id for c in include.children] == ["fg-fi-f-form-0"]

    def test_scope_and_reachable_ids(self):
        root = build_object_tree(_function_group_items())
        group = find_node(root, "fg-ZGRP")
        assert scope_label(group) == "Function Group: ZGRP"
        assert collect_item_ids(group) == ["m", "t", "u"]


class TestProgramGroup:

    def test_includes_grouped_under_program(self):
        root = build_object_tree(_program_group_items())
        group = find_node(root, "progrp-ZPRG")
        assert group is not None
        assert [c.id for c in group.children] == [
            "prog-main-p", "prog-top-pt", "prog-pbo-pbo", "prog-inc-pf",
        ]
        assert [c.label for c in find_node(root, "prog-pbo-pbo").children] == ["MODULE status_0100 OUTPUT"]
        assert [c.label for c in find_node(root, "prog-inc-pf").children] == ["FORM do_it", "FORM undo_it"]
        assert scope_label(group) == "Program: ZPRG"


class TestRoot:

    def test_folder_order(self):
        root = build_object_tree(_mixed_items(), "ZWM_PACKAGE")
        assert root.id == ROOT_ID
        assert root.label == "ZWM_PACKAGE"
        assert [c.id for c in root.children] == ["fg-folder", "prog-folder", "class-folder", "uncat-folder"]

    def test_empty_folders_omitted(self):
        root = build_object_tree([SourceItem("c", "ZCL_A.abap", "")])
        assert [c.id for c in root.children] == ["class-folder"]

    def test_empty_collection(self):
        root = build_object_tree([])
        assert root.children == ()
        assert collect_item_ids(root) == []

    def test_classes_before_interfaces(self):
        root = build_object_tree(_mixed_items())
        folder = find_node(root, "class-folder")
        assert [c.id for c in folder.children] == ["class-c", "if-i"]

    def test_unplaced_items_go_to_other_objects(self):
        root = build_object_tree(_mixed_items())
        other = find_node(root, "uncat-folder")
        assert other.label == "Other Objects"
        # group-less function body include lands here too
        assert [c.item_id for c in other.children] == ["n", "o", "e"]

    def test_every_item_reachable_exactly_once(self):
        items = _mixed_items() + _program_group_items()
        root = build_object_tree(items)
        ids = collect_item_ids(root)
        assert sorted(ids) == sorted(i.id for i in items)
        assert len(ids) == len(set(ids))

    def test_rebuild_is_deterministic(self):
        items = _mixed_items() + _program_group_items()
        first = build_object_tree(items)
        second = build_object_tree(items)
        assert first.to_dict() == second.to_dict()
        assert [n.id for n in iter_nodes(first)] == [n.id for n in iter_nodes(second)]

    def test_node_ids_unique(self):
        root = build_object_tree(_mixed_items() + _program_group_items())
        ids = [n.id for n in iter_nodes(root)]
        assert len(ids) == len(set(ids))

    def test_default_expanded(self):
        root = build_object_tree(_mixed_items())
        expanded = default_expanded_ids(root)
        assert expanded[0] == ROOT_ID
        assert "fg-folder" in expanded
        assert "class-c" not in expanded

    def test_find_node_missing(self):
        assert find_node(build_object_tree(_mixed_items()), "nope") is None

    def test_to_dict_uses_type_key(self):
        d = build_object_tree(_mixed_items()).to_dict()
        assert d["type"] == "package"
        assert d["children"][0]["type"] == "function-groups-folder"


class TestScopeLabels:

    def test_folder_and_root_labels(self):
        root = build_object_tree(_mixed_items(), "ZPKG")
        assert scope_label(root) == "Package: ZPKG"
        assert scope_label(find_node(root, "fg-folder")) == "All Function Groups"
        assert scope_label(find_node(root, "prog-folder")) == "All Programs"
        assert scope_label(find_node(root, "class-folder")) == "All Classes"
        assert scope_label(find_node(root, "uncat-folder")) == "Other Objects"

    def test_class_and_interface_labels(self):
        root = build_object_tree(_mixed_items())
        assert scope_label(find_node(root, "class-c")) == "Class: ZCL_ORDER.abap"
        assert scope_label(find_node(root, "if-i")) == "Interface: ZIF_READER.abap"
