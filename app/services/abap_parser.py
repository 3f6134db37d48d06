"""
ABAP source scanner.

Single forward pass over a source file that picks out the constructs the
object navigator needs: REPORT/PROGRAM name, CLASS and INTERFACE names,
FUNCTION / FORM / MODULE bodies with their line spans, INCLUDE references
and TABLES declarations.

ABAP forbids nesting FUNCTION, FORM and MODULE blocks inside one another, so
each construct kind is tracked by its own two-state machine (closed /
open(name, start_line)). A block is closed only by its terminator keyword.

Usage:
    from app.services.abap_parser import parse_abap_content
    parsed = parse_abap_content(source_text)
    [f.name for f in parsed.forms]
"""

import re
from dataclasses import dataclass, field

# ── Patterns (matched against the stripped line, case-insensitive) ───────

_RE_REPORT = re.compile(r"^\s*(?:REPORT|PROGRAM)\s+(\S+?)[\s.]", re.IGNORECASE)
_RE_CLASS = re.compile(r"^\s*CLASS\s+(\S+)\s+(DEFINITION|IMPLEMENTATION)", re.IGNORECASE)
_RE_INTERFACE = re.compile(r"^\s*INTERFACE\s+(\S+)", re.IGNORECASE)
_RE_FUNCTION = re.compile(r"^\s*FUNCTION\s+(\S+?)[\s.]", re.IGNORECASE)
_RE_ENDFUNCTION = re.compile(r"^\s*ENDFUNCTION\s*\.", re.IGNORECASE)
_RE_FORM = re.compile(r"^\s*FORM\s+(\S+)", re.IGNORECASE)
_RE_ENDFORM = re.compile(r"^\s*ENDFORM\s*\.", re.IGNORECASE)
_RE_MODULE = re.compile(r"^\s*MODULE\s+(\S+)\s+(INPUT|OUTPUT)", re.IGNORECASE)
_RE_ENDMODULE = re.compile(r"^\s*ENDMODULE\s*\.", re.IGNORECASE)
_RE_INCLUDE = re.compile(r"^\s*INCLUDE\s+(\S+?)[\s.]", re.IGNORECASE)
_RE_TABLES = re.compile(r"^\s*TABLES\s*:\s*(.+)", re.IGNORECASE)

COMMENT_PREFIXES = ("*", '"')


# ── Result types ─────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ParsedBlock:
    """A FUNCTION or FORM body. Lines are 1-indexed and inclusive."""
    name: str
    start_line: int
    end_line: int

    def to_dict(self) -> dict:
        return {"name": self.name, "start_line": self.start_line, "end_line": self.end_line}


@dataclass(frozen=True)
class ParsedModule:
    """A screen-flow MODULE bound to PBO (OUTPUT) or PAI (INPUT)."""
    name: str
    direction: str
    start_line: int
    end_line: int

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "direction": self.direction,
            "start_line": self.start_line,
            "end_line": self.end_line,
        }


@dataclass
class ParsedContent:
    report_name: str | None = None
    class_name: str | None = None
    interface_name: str | None = None
    functions: list[ParsedBlock] = field(default_factory=list)
    forms: list[ParsedBlock] = field(default_factory=list)
    modules: list[ParsedModule] = field(default_factory=list)
    includes: list[str] = field(default_factory=list)
    tables: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "report_name": self.report_name,
            "class_name": self.class_name,
            "interface_name": self.interface_name,
            "functions": [f.to_dict() for f in self.functions],
            "forms": [f.to_dict() for f in self.forms],
            "modules": [m.to_dict() for m in self.modules],
            "includes": list(self.includes),
            "tables": list(self.tables),
        }


class _BlockTracker:
    """Open/closed state for one construct kind."""

    def __init__(self):
        self.name: str | None = None
        self.start_line = 0
        self.extra: str | None = None

    @property
    def is_open(self) -> bool:
        return self.name is not None

    def open(self, name: str, line_no: int, extra: str | None = None):
        # A second opener before the terminator restarts the block.
        self.name = name
        self.start_line = line_no
        self.extra = extra

    def close(self) -> tuple[str, int, str | None]:
        closed = (self.name, self.start_line, self.extra)
        self.name = None
        self.start_line = 0
        self.extra = None
        return closed


def _is_comment(line: str) -> bool:
    return line.startswith(COMMENT_PREFIXES)


def _strip_period(name: str) -> str:
    return name[:-1] if name.endswith(".") else name


def parse_abap_content(content: str) -> ParsedContent:
    """Scan ABAP source text and return the constructs it declares.

    Only FUNCTION, FORM, MODULE and INCLUDE openers skip comment lines
    (first non-blank character ``*`` or ``"``). REPORT, CLASS, INTERFACE,
    TABLES and the block terminators are matched on every line.
    """
    result = ParsedContent()
    function = _BlockTracker()
    form = _BlockTracker()
    module = _BlockTracker()

    for index, raw in enumerate(content.split("\n")):
        line_no = index + 1
        line = raw.strip()
        comment = _is_comment(line)

        m = _RE_REPORT.match(line)
        if m:
            result.report_name = m.group(1)

        m = _RE_CLASS.match(line)
        if m:
            result.class_name = m.group(1)

        m = _RE_INTERFACE.match(line)
        if m:
            result.interface_name = _strip_period(m.group(1))

        m = _RE_FUNCTION.match(line)
        if m and not comment:
            function.open(m.group(1), line_no)

        if function.is_open and _RE_ENDFUNCTION.match(line):
            name, start, _ = function.close()
            result.functions.append(ParsedBlock(name, start, line_no))

        m = _RE_FORM.match(line)
        if m and not comment:
            form.open(_strip_period(m.group(1)), line_no)

        if form.is_open and _RE_ENDFORM.match(line):
            name, start, _ = form.close()
            result.forms.append(ParsedBlock(name, start, line_no))

        m = _RE_MODULE.match(line)
        if m and not comment:
            module.open(_strip_period(m.group(1)), line_no, m.group(2).upper())

        if module.is_open and _RE_ENDMODULE.match(line):
            name, start, direction = module.close()
            result.modules.append(ParsedModule(name, direction, start, line_no))

        m = _RE_INCLUDE.match(line)
        if m and not comment:
            result.includes.append(m.group(1))

        m = _RE_TABLES.match(line)
        if m:
            remainder = m.group(1)
            if remainder.endswith("."):
                remainder = remainder[:-1]
            result.tables.extend(t.strip() for t in remainder.split(",") if t.strip())

    return result
