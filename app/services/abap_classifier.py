"""
ABAP object classification by naming convention.

Two passes:
    1. detect_file_type(filename) — ordered rule table over the SAP naming
       conventions (SAPL*, L<grp>TOP, <prog>_PBO, ZCL_*, ...). First match
       wins; the rules overlap, so their order is the tie-break.
    2. refine_with_content(classification, content) — only for results the
       filename could not place ("unknown" / generic "include"), re-classify
       from the parsed source.

Both are pure functions: a classification is recomputed from
(filename, content), never patched.
"""

import re
from dataclasses import dataclass
from enum import Enum

from app.services.abap_parser import parse_abap_content


class DetectedType(str, Enum):
    FG_MAIN = "fg-main"
    FG_TOP = "fg-top"
    FG_UXX = "fg-uxx"
    FG_FXX = "fg-fxx"
    FG_FUNC_INCLUDE = "fg-func-include"
    FG_FORM_INCLUDE = "fg-form-include"
    PROGRAM = "program"
    PROGRAM_TOP = "program-top"
    PROGRAM_PBO = "program-pbo"
    PROGRAM_PAI = "program-pai"
    PROGRAM_FORM_INCLUDE = "program-form-include"
    PROGRAM_INCLUDE = "program-include"
    CLASS = "class"
    INTERFACE = "interface"
    INCLUDE = "include"
    UNKNOWN = "unknown"


FUNCTION_GROUP_TYPES = frozenset({
    DetectedType.FG_MAIN,
    DetectedType.FG_TOP,
    DetectedType.FG_UXX,
    DetectedType.FG_FXX,
    DetectedType.FG_FUNC_INCLUDE,
    DetectedType.FG_FORM_INCLUDE,
})

PROGRAM_TYPES = frozenset({
    DetectedType.PROGRAM,
    DetectedType.PROGRAM_TOP,
    DetectedType.PROGRAM_PBO,
    DetectedType.PROGRAM_PAI,
    DetectedType.PROGRAM_FORM_INCLUDE,
    DetectedType.PROGRAM_INCLUDE,
})

# Only these are handed to the content pass.
REFINABLE_TYPES = frozenset({DetectedType.UNKNOWN, DetectedType.INCLUDE})


@dataclass(frozen=True)
class Classification:
    type: DetectedType
    group_key: str | None = None

    def to_dict(self) -> dict:
        return {"type": self.type.value, "group_key": self.group_key}


@dataclass(frozen=True)
class DetectedFile:
    """Classification of one uploaded item."""
    item_id: str
    file_name: str
    base_name: str
    type: DetectedType
    group_key: str | None = None

    def to_dict(self) -> dict:
        return {
            "item_id": self.item_id,
            "file_name": self.file_name,
            "base_name": self.base_name,
            "type": self.type.value,
            "group_key": self.group_key,
        }


# ── Rule table ───────────────────────────────────────────────────────────
# (pattern, type, capture group for the key or None, minimum key length)

_RULES: list[tuple[re.Pattern, DetectedType, int | None, int]] = [
    # Function group
    (re.compile(r"^SAPL(.+)$"), DetectedType.FG_MAIN, 1, 1),
    (re.compile(r"^L(.+)TOP$"), DetectedType.FG_TOP, 1, 2),
    (re.compile(r"^L(.+)UXX$"), DetectedType.FG_UXX, 1, 2),
    (re.compile(r"^L(.+)FXX$"), DetectedType.FG_FXX, 1, 2),
    (re.compile(r"^L(.+)U(\d{2,3})$"), DetectedType.FG_FUNC_INCLUDE, 1, 2),
    (re.compile(r"^L(.+)F(\d{2,3})$"), DetectedType.FG_FORM_INCLUDE, 1, 2),
    # I##/O## screen includes share the form-include bucket at group level
    (re.compile(r"^L(.+)I(\d{2,3})$"), DetectedType.FG_FORM_INCLUDE, 1, 2),
    (re.compile(r"^L(.+)O(\d{2,3})$"), DetectedType.FG_FORM_INCLUDE, 1, 2),
    # Classes / interfaces
    (re.compile(r"^(?:[ZY]CL_|CL_)"), DetectedType.CLASS, None, 0),
    (re.compile(r"^(?:[ZY]IF_|IF_)"), DetectedType.INTERFACE, None, 0),
    # Programs
    (re.compile(r"^SAPM(.+)$"), DetectedType.PROGRAM, 1, 1),
    (re.compile(r"^(.+)_TOP$"), DetectedType.PROGRAM_TOP, 1, 1),
    (re.compile(r"^(.+)_PBO$"), DetectedType.PROGRAM_PBO, 1, 1),
    (re.compile(r"^(.+)_PAI$"), DetectedType.PROGRAM_PAI, 1, 1),
    (re.compile(r"^(.+)_F(\d{2,3})$"), DetectedType.PROGRAM_FORM_INCLUDE, 1, 1),
    (re.compile(r"^(.+)_I(\d{2,3})$"), DetectedType.PROGRAM_INCLUDE, 1, 1),
    (re.compile(r"^(.+)_O(\d{2,3})$"), DetectedType.PROGRAM_PBO, 1, 1),
    # Any remaining customer-namespace object is a program keyed by itself
    (re.compile(r"^([ZY].*)$"), DetectedType.PROGRAM, 1, 1),
]

_UNKNOWN = Classification(DetectedType.UNKNOWN)


def strip_extension(file_name: str) -> str:
    """Drop the last ``.ext`` suffix, if any."""
    return re.sub(r"\.[^.]+$", "", file_name)


def detect_file_type(file_name: str) -> Classification:
    """Classify a file by its name alone. Never raises."""
    base = strip_extension(file_name).upper()
    for pattern, detected_type, key_group, min_key_len in _RULES:
        m = pattern.match(base)
        if not m:
            continue
        if key_group is None:
            return Classification(detected_type)
        key = m.group(key_group)
        if len(key) < min_key_len:
            continue
        return Classification(detected_type, key)
    return _UNKNOWN


def refine_with_content(classification: Classification, content: str | None) -> Classification:
    """Re-classify an unplaced file from its source text.

    Precedence: FUNCTION body, REPORT/PROGRAM name, CLASS, INTERFACE, FORM.
    Any type the filename pass assigned specifically is returned unchanged.
    """
    if not content or classification.type not in REFINABLE_TYPES:
        return classification

    parsed = parse_abap_content(content)
    if parsed.functions:
        return Classification(DetectedType.FG_FUNC_INCLUDE, classification.group_key)
    if parsed.report_name:
        return Classification(DetectedType.PROGRAM, parsed.report_name.upper())
    if parsed.class_name:
        return Classification(DetectedType.CLASS, classification.group_key)
    if parsed.interface_name:
        return Classification(DetectedType.INTERFACE, classification.group_key)
    if parsed.forms:
        return Classification(DetectedType.INCLUDE, classification.group_key)
    return classification


def classify_item(item_id: str, file_name: str, content: str | None) -> DetectedFile:
    """Filename pass followed by the content pass for one item."""
    result = refine_with_content(detect_file_type(file_name), content)
    return DetectedFile(
        item_id=item_id,
        file_name=file_name,
        base_name=strip_extension(file_name),
        type=result.type,
        group_key=result.group_key,
    )
