"""
abapGit repository archive extraction.

Turns the decoded entries of an abapGit ZIP export into:
    - files:   accepted text entries (.abap / .xml) with their detected
               object type and object name
    - objects: files grouped by object name (first dot segment, uppercased),
               with the object's primary metadata XML parsed into a typed
               record where the type is supported
    - stats:   counts derived from the two lists above

ZIP decoding is isolated in read_zip_entries(); parse_archive() works on any
iterable of ArchiveEntry, so callers and tests can feed entries directly.
Unreadable entries and malformed metadata never abort the parse.
"""

import io
import logging
import re
import zipfile
import zlib
from collections import Counter
from dataclasses import dataclass, field
from typing import Callable, Iterable

from app.services.abapgit_metadata import (
    MetadataRecord,
    parse_class_xml,
    parse_data_element_xml,
    parse_function_group_xml,
    parse_table_xml,
)

logger = logging.getLogger(__name__)

ACCEPTED_EXTENSIONS = (".abap", ".xml")
RESERVED_MARKER = "__MACOSX"
REPO_CONFIG_FILENAME = ".abapgit.xml"

# Checked in order; first match wins.
OBJECT_TYPE_MARKERS: list[tuple[str, str]] = [
    (".fugr.", "FUGR"),
    (".clas.", "CLAS"),
    (".prog.", "PROG"),
    (".tabl.", "TABL"),
    (".dtel.", "DTEL"),
    (".doma.", "DOMA"),
    (".ttyp.", "TTYP"),
    (".tran.", "TRAN"),
    (".enho.", "ENHO"),
    (".tobj.", "TOBJ"),
    (".view.", "VIEW"),
    (".shlp.", "SHLP"),
    (".nrob.", "NROB"),
    (".sicf.", "SICF"),
    (".sxci.", "SXCI"),
    (".acid.", "ACID"),
    (".sfpf.", "SFPF"),
    (".sfpi.", "SFPI"),
    (".iwsg.", "IWSG"),
    (".iwom.", "IWOM"),
    (".sprx.", "SPRX"),
    (".smim.", "SMIM"),
    (".iatu.", "IATU"),
]

OBJECT_TYPE_LABELS = {
    "FUGR": "Function Group",
    "CLAS": "Class",
    "PROG": "Program",
    "TABL": "Structure / Table",
    "DTEL": "Data Element",
    "DOMA": "Domain",
    "TTYP": "Table Type",
    "TRAN": "Transaction",
    "ENHO": "Enhancement",
    "TOBJ": "Table Maint. Object",
    "VIEW": "View",
    "SHLP": "Search Help",
    "NROB": "Number Range",
    "SICF": "ICF Service",
    "SXCI": "BAdI Implementation",
    "ACID": "Activation ID",
    "SFPF": "Adobe Form",
    "SFPI": "Adobe Form Interface",
    "IWSG": "OData Service",
    "IWOM": "OData Model",
    "SPRX": "Proxy",
    "SMIM": "MIME Object",
    "IATU": "ITS Template",
    "OTHER": "Other",
}

# Primary metadata file: "<name>.<type>.xml" (ITS templates excluded)
_PRIMARY_METADATA = re.compile(r"^\.[^.]+\.xml$", re.IGNORECASE)

_METADATA_PARSERS: dict[str, Callable[[str], MetadataRecord | None]] = {
    "TABL": parse_table_xml,
    "DTEL": parse_data_element_xml,
    "FUGR": parse_function_group_xml,
    "CLAS": parse_class_xml,
}


# ── Types ────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ArchiveEntry:
    """One decoded archive member. ``decode`` raises on non-text content."""
    path: str
    is_dir: bool
    decode: Callable[[], str]


@dataclass
class ArchiveFile:
    path: str
    name: str
    content: str
    object_type: str
    object_name: str
    file_type: str

    @property
    def extension(self) -> str:
        return file_extension(self.name)

    def to_dict(self, include_content: bool = False) -> dict:
        d = {
            "path": self.path,
            "name": self.name,
            "object_type": self.object_type,
            "object_name": self.object_name,
            "file_type": self.file_type,
            "size": len(self.content.encode("utf-8")),
        }
        if include_content:
            d["content"] = self.content
        return d


@dataclass
class ExtractedObject:
    name: str
    type: str = "OTHER"
    description: str = ""
    source_files: list[ArchiveFile] = field(default_factory=list)
    metadata_file: ArchiveFile | None = None
    parsed_meta: MetadataRecord | None = None

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "type": self.type,
            "type_label": OBJECT_TYPE_LABELS.get(self.type, self.type),
            "description": self.description,
            "source_files": [f.name for f in self.source_files],
            "file_count": len(self.source_files) + (1 if self.metadata_file else 0),
            "metadata_file": self.metadata_file.name if self.metadata_file else None,
            "parsed_meta": self.parsed_meta.to_dict() if self.parsed_meta else None,
        }


@dataclass
class ArchiveParseResult:
    files: list[ArchiveFile]
    objects: list[ExtractedObject]
    stats: dict

    def to_dict(self) -> dict:
        return {
            "files": [f.to_dict() for f in self.files],
            "objects": [o.to_dict() for o in self.objects],
            "stats": self.stats,
        }


# ── Name helpers ─────────────────────────────────────────────────────────

def file_extension(filename: str) -> str:
    """Last ``.ext`` of a filename, lowercased; "" when there is no dot."""
    idx = filename.rfind(".")
    return filename[idx:].lower() if idx >= 0 else ""


def detect_object_type(filename: str) -> str:
    lowered = filename.lower()
    for marker, object_type in OBJECT_TYPE_MARKERS:
        if marker in lowered:
            return object_type
    return "OTHER"


def extract_object_name(filename: str) -> str:
    """zwm_fg_bin_block.fugr.lzwm_fg_bin_blocktop.abap → ZWM_FG_BIN_BLOCK"""
    return filename.split(".", 1)[0].upper() if "." in filename else filename.upper()


def get_file_type(filename: str) -> str:
    """zwm_fg_bin_block.fugr.xml → .fugr.xml"""
    idx = filename.find(".")
    return filename[idx:] if idx >= 0 else ""


def is_zip_file(name: str) -> bool:
    return name.lower().endswith(".zip")


def is_accepted_entry(path: str, is_dir: bool = False) -> bool:
    """Directory, macOS metadata, non-text and repo config entries are rejected."""
    if is_dir or RESERVED_MARKER in path:
        return False
    filename = path.split("/")[-1]
    if file_extension(filename) not in ACCEPTED_EXTENSIONS:
        return False
    return filename != REPO_CONFIG_FILENAME


# ── ZIP decoding ─────────────────────────────────────────────────────────

MAX_ARCHIVE_ENTRIES = 10_000
MAX_ARCHIVE_UNCOMPRESSED_BYTES = 200 * 1024 * 1024

# Raised by ZipFile.read for encrypted, corrupt or unsupported members
_MEMBER_READ_ERRORS = (
    RuntimeError,
    NotImplementedError,
    EOFError,
    OSError,
    ValueError,
    zlib.error,
    zipfile.BadZipFile,
)


class ArchiveLimitError(ValueError):
    """The archive exceeds the entry-count or uncompressed-size limit."""


class UnreadableEntryError(Exception):
    """An archive member could not be read from the ZIP container."""


def validate_zip_limits(infos: list[zipfile.ZipInfo], *, max_entries: int,
                        max_uncompressed_bytes: int) -> None:
    if len(infos) > max_entries:
        raise ArchiveLimitError(f"Too many entries in archive: {len(infos)} (max: {max_entries})")
    total = 0
    for info in infos:
        total += info.file_size
        if total > max_uncompressed_bytes:
            raise ArchiveLimitError(
                f"Total uncompressed size exceeds limit: {total} bytes (max: {max_uncompressed_bytes})"
            )


def _failed_read(exc: Exception) -> Callable[[], str]:
    def decode() -> str:
        raise UnreadableEntryError(str(exc)) from exc
    return decode


def read_zip_entries(
    data: bytes,
    *,
    max_entries: int = MAX_ARCHIVE_ENTRIES,
    max_uncompressed_bytes: int = MAX_ARCHIVE_UNCOMPRESSED_BYTES,
) -> list[ArchiveEntry]:
    """Read the accepted members of a ZIP archive held in memory.

    Members are read while the archive is open; a member that cannot be
    read yields an entry whose ``decode`` raises UnreadableEntryError.

    Raises:
        zipfile.BadZipFile: ``data`` is not a ZIP archive.
        ArchiveLimitError: too many entries or too much uncompressed data.
    """
    entries: list[ArchiveEntry] = []
    with zipfile.ZipFile(io.BytesIO(data)) as archive:
        infos = archive.infolist()
        validate_zip_limits(infos, max_entries=max_entries, max_uncompressed_bytes=max_uncompressed_bytes)
        for info in infos:
            if not is_accepted_entry(info.filename, info.is_dir()):
                continue
            try:
                raw = archive.read(info)
            except _MEMBER_READ_ERRORS as exc:
                logger.debug("Cannot read archive member %s: %s", info.filename, exc)
                entries.append(ArchiveEntry(path=info.filename, is_dir=False, decode=_failed_read(exc)))
                continue
            entries.append(ArchiveEntry(
                path=info.filename,
                is_dir=False,
                decode=lambda raw=raw: raw.decode("utf-8"),
            ))
    return entries

# ── Extraction ───────────────────────────────────────────────────────────

def _attach_metadata(obj: ExtractedObject, meta_file: ArchiveFile) -> None:
    obj.metadata_file = meta_file
    parser = _METADATA_PARSERS.get(obj.type)
    if parser is None:
        return
    try:
        record = parser(meta_file.content)
    except Exception:
        logger.debug("Metadata extraction failed for %s (%s)", obj.name, meta_file.path, exc_info=True)
        return
    if record is not None:
        obj.parsed_meta = record
        obj.description = record.description


def compute_stats(files: list[ArchiveFile], objects: list[ExtractedObject]) -> dict:
    by_type = Counter(o.type for o in objects)
    return {
        "total_files": len(files),
        "abap_files": sum(1 for f in files if f.name.endswith(".abap")),
        "xml_files": sum(1 for f in files if f.name.endswith(".xml")),
        "structures": by_type.get("TABL", 0),
        "data_elements": by_type.get("DTEL", 0),
        "function_groups": by_type.get("FUGR", 0),
        "classes": by_type.get("CLAS", 0),
        "programs": by_type.get("PROG", 0),
        "objects_by_type": dict(by_type),
    }


def parse_archive(entries: Iterable[ArchiveEntry]) -> ArchiveParseResult:
    """Filter, classify and group archive entries into objects."""
    files: list[ArchiveFile] = []
    objects: dict[str, ExtractedObject] = {}

    for entry in entries:
        if not is_accepted_entry(entry.path, entry.is_dir):
            continue
        try:
            content = entry.decode()
        except (UnreadableEntryError, UnicodeDecodeError):
            logger.debug("Skipping unreadable archive entry %s", entry.path)
            continue

        filename = entry.path.split("/")[-1]
        archive_file = ArchiveFile(
            path=entry.path,
            name=filename,
            content=content,
            object_type=detect_object_type(filename),
            object_name=extract_object_name(filename),
            file_type=get_file_type(filename),
        )
        files.append(archive_file)

        obj = objects.get(archive_file.object_name)
        if obj is None:
            obj = ExtractedObject(name=archive_file.object_name, type=archive_file.object_type)
            objects[obj.name] = obj

        ext = archive_file.extension
        if ext == ".abap":
            obj.source_files.append(archive_file)
        elif (ext == ".xml"
                and obj.metadata_file is None
                and _PRIMARY_METADATA.match(archive_file.file_type)
                and archive_file.object_type != "IATU"):
            _attach_metadata(obj, archive_file)

    object_list = list(objects.values())
    return ArchiveParseResult(files=files, objects=object_list, stats=compute_stats(files, object_list))


def parse_zip_bytes(data: bytes, **limits) -> ArchiveParseResult:
    """Decode and parse a ZIP export; ``limits`` go to read_zip_entries()."""
    return parse_archive(read_zip_entries(data, **limits))


def entries_from_texts(pairs: Iterable[tuple[str, str]]) -> list[ArchiveEntry]:
    """Wrap already-decoded (path, content) pairs, e.g. stored archive items."""
    return [ArchiveEntry(path=p, is_dir=False, decode=lambda c=c: c) for p, c in pairs]
