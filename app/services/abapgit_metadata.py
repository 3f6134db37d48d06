"""
abapGit metadata records (.tabl.xml, .dtel.xml, .fugr.xml, .clas.xml).

Extraction is lenient tag scraping, not XML parsing: each field is the
trimmed text between the first ``<TAG>`` / ``</TAG>`` pair, repeated blocks
are all non-overlapping pairs. Unknown surrounding tags and ordering do not
matter; nested tags of the same name are not supported.

All tag access goes through extract_field / extract_all_blocks so a strict
parser can replace them without touching the record extractors.

A record whose identifying tag is missing is not produced (``None``); every
other field defaults to an empty string or list.
"""

import re
from dataclasses import dataclass, field
from functools import lru_cache


# ═════════════════════════════════════════════════════════════════════════
# TAG ACCESS
# ═════════════════════════════════════════════════════════════════════════

@lru_cache(maxsize=128)
def _tag_pattern(tag: str) -> re.Pattern:
    name = re.escape(tag)
    return re.compile(rf"<{name}>(.*?)</{name}>", re.IGNORECASE | re.DOTALL)


def extract_field(text: str, tag: str) -> str | None:
    """Trimmed inner text of the first ``<tag>`` element, or None."""
    m = _tag_pattern(tag).search(text)
    return m.group(1).strip() if m else None


def extract_all_blocks(text: str, tag: str) -> list[str]:
    """Raw inner text of every non-overlapping ``<tag>`` element, in order."""
    return [m.group(1) for m in _tag_pattern(tag).finditer(text)]


def _text(text: str, tag: str) -> str:
    return extract_field(text, tag) or ""


def _to_int(value: str) -> int:
    m = re.match(r"\s*([+-]?\d+)", value or "")
    return int(m.group(1)) if m else 0


# ═════════════════════════════════════════════════════════════════════════
# RECORD TYPES
# ═════════════════════════════════════════════════════════════════════════

@dataclass
class StructureField:
    field_name: str
    position: int
    data_element: str
    data_type: str = ""
    length: str = ""
    decimals: str = ""

    def to_dict(self) -> dict:
        return {
            "field_name": self.field_name,
            "position": self.position,
            "data_element": self.data_element,
            "data_type": self.data_type,
            "length": self.length,
            "decimals": self.decimals,
        }


@dataclass
class StructureRecord:
    name: str
    description: str = ""
    table_class: str = ""
    fields: list[StructureField] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "kind": "structure",
            "name": self.name,
            "description": self.description,
            "table_class": self.table_class,
            "fields": [f.to_dict() for f in self.fields],
        }


@dataclass
class DataElementRecord:
    name: str
    description: str = ""
    data_type: str = ""
    length: str = ""
    decimals: str = ""
    short_label: str = ""
    medium_label: str = ""
    long_label: str = ""

    def to_dict(self) -> dict:
        return {
            "kind": "data_element",
            "name": self.name,
            "description": self.description,
            "data_type": self.data_type,
            "length": self.length,
            "decimals": self.decimals,
            "labels": {
                "short": self.short_label,
                "medium": self.medium_label,
                "long": self.long_label,
            },
        }


@dataclass
class FunctionParameter:
    name: str
    type: str = ""
    description: str = ""

    def to_dict(self) -> dict:
        return {"name": self.name, "type": self.type, "description": self.description}


@dataclass
class FunctionModuleRecord:
    name: str
    description: str = ""
    importing: list[FunctionParameter] = field(default_factory=list)
    exporting: list[FunctionParameter] = field(default_factory=list)
    changing: list[FunctionParameter] = field(default_factory=list)
    tables: list[FunctionParameter] = field(default_factory=list)
    exceptions: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "importing": [p.to_dict() for p in self.importing],
            "exporting": [p.to_dict() for p in self.exporting],
            "changing": [p.to_dict() for p in self.changing],
            "tables": [p.to_dict() for p in self.tables],
            "exceptions": list(self.exceptions),
        }


@dataclass
class FunctionGroupRecord:
    name: str
    includes: list[str] = field(default_factory=list)
    functions: list[FunctionModuleRecord] = field(default_factory=list)

    @property
    def description(self) -> str:
        if self.functions:
            return f"Function Group with {len(self.functions)} FM(s)"
        return "Function Group"

    def to_dict(self) -> dict:
        return {
            "kind": "function_group",
            "name": self.name,
            "includes": list(self.includes),
            "functions": [f.to_dict() for f in self.functions],
        }


@dataclass
class ClassRecord:
    name: str
    description: str = ""
    superclass: str | None = None
    interfaces: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "kind": "class",
            "name": self.name,
            "description": self.description,
            "superclass": self.superclass,
            "interfaces": list(self.interfaces),
        }


MetadataRecord = StructureRecord | DataElementRecord | FunctionGroupRecord | ClassRecord


# ═════════════════════════════════════════════════════════════════════════
# EXTRACTORS
# ═════════════════════════════════════════════════════════════════════════

def parse_table_xml(xml: str) -> StructureRecord | None:
    """Structure / transparent table layout from a ``.tabl.xml`` file."""
    name = _text(xml, "TABNAME")
    if not name:
        return None

    fields = []
    for block in extract_all_blocks(xml, "DD03P"):
        field_name = _text(block, "FIELDNAME")
        if not field_name:
            continue
        fields.append(StructureField(
            field_name=field_name,
            position=_to_int(_text(block, "POSITION")),
            data_element=_text(block, "ROLLNAME"),
            data_type=_text(block, "DATATYPE"),
            length=_text(block, "LENG"),
            decimals=_text(block, "DECIMALS"),
        ))

    return StructureRecord(
        name=name,
        description=_text(xml, "DDTEXT"),
        table_class=_text(xml, "TABCLASS"),
        fields=fields,
    )


def parse_data_element_xml(xml: str) -> DataElementRecord | None:
    name = _text(xml, "ROLLNAME")
    if not name:
        return None
    return DataElementRecord(
        name=name,
        description=_text(xml, "DDTEXT"),
        data_type=_text(xml, "DATATYPE"),
        length=_text(xml, "LENG"),
        decimals=_text(xml, "DECIMALS"),
        short_label=_text(xml, "SCRTEXT_S"),
        medium_label=_text(xml, "SCRTEXT_M"),
        long_label=_text(xml, "SCRTEXT_L"),
    )


def _parameters(block: str, tag: str) -> list[FunctionParameter]:
    params = []
    for p in extract_all_blocks(block, tag):
        name = _text(p, "PARAMETER")
        if name:
            params.append(FunctionParameter(name, _text(p, "TYP"), _text(p, "STEXT")))
    return params


def _group_name_from_include(include: str) -> str:
    """LZFOOTOP → ZFOO."""
    name = re.sub(r"^L", "", include, flags=re.IGNORECASE)
    name = re.sub(r"TOP$", "", name, flags=re.IGNORECASE)
    return name.upper()


def parse_function_group_xml(xml: str) -> FunctionGroupRecord:
    """Function group interface from a ``.fugr.xml`` file.

    There is no identifying tag: the group name comes from the first
    include (``L<name>TOP``) and is ``UNKNOWN`` when none is listed.
    """
    includes = [inc.strip() for inc in extract_all_blocks(xml, "SOBJ_NAME") if inc.strip()]

    functions = []
    for item in extract_all_blocks(xml, "item"):
        func_name = _text(item, "FUNCNAME")
        if not func_name:
            continue
        exceptions = [_text(b, "EXCEPTION") for b in extract_all_blocks(item, "RSEXC")]
        functions.append(FunctionModuleRecord(
            name=func_name,
            description=_text(item, "SHORT_TEXT"),
            importing=_parameters(item, "RSIMP"),
            exporting=_parameters(item, "RSEXP"),
            changing=_parameters(item, "RSCHA"),
            tables=_parameters(item, "RSTBL"),
            exceptions=[e for e in exceptions if e],
        ))

    name = _group_name_from_include(includes[0]) if includes else "UNKNOWN"
    return FunctionGroupRecord(name=name, includes=includes, functions=functions)


def parse_class_xml(xml: str) -> ClassRecord | None:
    name = _text(xml, "CLSNAME")
    if not name:
        return None
    interfaces = [i.strip() for i in extract_all_blocks(xml, "CPDNAME") if i.strip()]
    return ClassRecord(
        name=name,
        description=_text(xml, "DESCRIPT"),
        superclass=_text(xml, "REFCLSNAME") or None,
        interfaces=interfaces,
    )


# ═════════════════════════════════════════════════════════════════════════
# MARKDOWN RENDERERS
# ═════════════════════════════════════════════════════════════════════════

def structure_to_markdown(s: StructureRecord) -> str:
    md = f"### Structure: {s.name}\n"
    md += f"**Description:** {s.description or 'N/A'}\n"
    md += f"**Type:** {s.table_class}\n\n"
    md += "| Pos | Field Name | Data Element | Data Type | Length |\n"
    md += "|-----|-----------|-------------|-----------|--------|\n"
    for f in s.fields:
        md += f"| {f.position} | {f.field_name} | {f.data_element} | {f.data_type} | {f.length} |\n"
    return md


def data_element_to_markdown(d: DataElementRecord) -> str:
    return (
        f"### Data Element: {d.name}\n"
        f"**Description:** {d.description}\n"
        f"**Data Type:** {d.data_type}, Length: {d.length}, Decimals: {d.decimals}\n"
        f'**Labels:** Short: "{d.short_label}", Medium: "{d.medium_label}", Long: "{d.long_label}"\n'
    )


def _parameter_lines(title: str, params: list[FunctionParameter]) -> str:
    if not params:
        return ""
    md = f"**{title}:**\n"
    for p in params:
        md += f"- {p.name} TYPE {p.type}: {p.description}\n"
    return md


def function_group_to_markdown(fg: FunctionGroupRecord) -> str:
    md = f"### Function Group: {fg.name}\n"
    md += f"**Includes:** {', '.join(fg.includes)}\n\n"
    for fm in fg.functions:
        md += f"#### FM: {fm.name}\n"
        md += f"**Description:** {fm.description}\n"
        md += _parameter_lines("IMPORTING", fm.importing)
        md += _parameter_lines("EXPORTING", fm.exporting)
        md += _parameter_lines("CHANGING", fm.changing)
        md += _parameter_lines("TABLES", fm.tables)
        if fm.exceptions:
            md += f"**EXCEPTIONS:** {', '.join(fm.exceptions)}\n"
        md += "\n"
    return md


def class_to_markdown(c: ClassRecord) -> str:
    md = f"### Class: {c.name}\n"
    md += f"**Description:** {c.description}\n"
    if c.superclass:
        md += f"**Superclass:** {c.superclass}\n"
    if c.interfaces:
        md += f"**Interfaces:** {', '.join(c.interfaces)}\n"
    return md


# (record type, section heading, renderer), in output order
_CONTEXT_SECTIONS = (
    (StructureRecord, "## Data Dictionary: Structures & Tables\n", structure_to_markdown),
    (DataElementRecord, "## Data Dictionary: Data Elements\n", data_element_to_markdown),
    (FunctionGroupRecord, "## Function Groups\n", function_group_to_markdown),
    (ClassRecord, "## Classes\n", class_to_markdown),
)


def build_metadata_context(objects) -> str:
    """Render the parsed metadata of archive objects as one Markdown block.

    Only sections for record kinds actually present are emitted. Objects
    without parsed metadata are skipped. Returns "" when nothing is present.
    """
    records = [obj.parsed_meta for obj in objects if obj.parsed_meta is not None]
    lines: list[str] = []
    for record_type, heading, render in _CONTEXT_SECTIONS:
        matching = [r for r in records if isinstance(r, record_type)]
        if not matching:
            continue
        lines.append(heading)
        for record in matching:
            lines.append(render(record))
            lines.append("")
    return "\n".join(lines)
