import hashlib
import io
import posixpath
import zipfile
from typing import List, NamedTuple, Optional

import structlog

from index_service.domain.keys import file_id_for_path, normalize_path
from index_service.domain.models import ManifestFileEntry
from index_service.infrastructure.extractors.pdf_adapter import probe_pdf

log = structlog.get_logger(__name__)

ZIP_CONTENT_TYPES = ("application/zip", "application/x-zip-compressed")

CONTENT_TYPES_BY_EXTENSION = {
    ".pdf": "application/pdf",
    ".txt": "text/plain",
}


class SourceFile(NamedTuple):
    path: str
    data: Optional[bytes]
    size: int


def is_archive(filename: str, mime_type: Optional[str]) -> bool:
    return (mime_type or "").lower() in ZIP_CONTENT_TYPES or filename.lower().endswith(".zip")


def content_type_for(path: str, fallback: Optional[str] = None) -> Optional[str]:
    ext = posixpath.splitext(path.lower())[1]
    return CONTENT_TYPES_BY_EXTENSION.get(ext, fallback)


def list_source_files(raw: bytes, filename: str, mime_type: Optional[str], max_entries: int) -> List[SourceFile]:
    """
    Expands the raw upload into the files that make up the document. A zip
    archive yields one entry per member (directories dropped, capped at
    max_entries); anything else is a single file. Members with no supported
    content type carry data=None.
    """
    if not is_archive(filename, mime_type):
        return [SourceFile(normalize_path(filename) or "document", raw, len(raw))]

    files: List[SourceFile] = []
    with zipfile.ZipFile(io.BytesIO(raw)) as archive:
        members = [info for info in archive.infolist() if not info.is_dir()]
        if len(members) > max_entries:
            log.warning("Archive has too many entries, truncating", filename=filename,
                        entries=len(members), max_entries=max_entries)
        for info in members[:max_entries]:
            path = normalize_path(info.filename)
            if not path:
                continue
            if content_type_for(path) is None:
                files.append(SourceFile(path, None, info.file_size))
            else:
                files.append(SourceFile(path, archive.read(info), info.file_size))
    return files


def read_source_file(raw: bytes, filename: str, mime_type: Optional[str], path: str) -> bytes:
    if not is_archive(filename, mime_type):
        return raw
    with zipfile.ZipFile(io.BytesIO(raw)) as archive:
        for info in archive.infolist():
            if normalize_path(info.filename) == path:
                return archive.read(info)
    raise KeyError(f"{path} not found in archive {filename}")


def describe_source_file(source: SourceFile, content_type: Optional[str]) -> ManifestFileEntry:
    if source.data is None or content_type is None:
        return ManifestFileEntry(
            file_id=file_id_for_path(source.path),
            path=source.path,
            sha256="",
            pages=0,
            size=source.size,
            skipped=True,
        )
    pages = probe_pdf(source.data)["pages"] if content_type == "application/pdf" else 1
    return ManifestFileEntry(
        file_id=file_id_for_path(source.path),
        path=source.path,
        sha256=hashlib.sha256(source.data).hexdigest(),
        pages=pages,
        size=source.size,
        skipped=False,
    )
