"""Transform fetched payloads into relative-path/bytes pairs."""

import io
import logging
import posixpath
import zipfile
import zlib

from ..errors import TransformError, UnsafePathError
from ..models.config import DirectTransform, TransformSpec, UnzipTransform

logger = logging.getLogger(__name__)

FileSet = list[tuple[str, bytes]]


def normalize_path(path: str) -> str:
    """Normalize a relative path to posix form.

    Raises:
        UnsafePathError: If the path is absolute, empty, or escapes the root
    """
    text = path.replace("\\", "/")
    if text.startswith("/") or (len(text) > 1 and text[1] == ":"):
        raise UnsafePathError(f"Absolute path not allowed: {path!r}")

    normalized = posixpath.normpath(text)
    if normalized in ("", ".") or normalized == ".." or normalized.startswith("../"):
        raise UnsafePathError(f"Path escapes the destination root: {path!r}")
    return normalized


def apply(spec: TransformSpec, payload: bytes, name: str) -> FileSet:
    """Run a transform over a fetched payload.

    Args:
        spec: Transform to apply
        payload: Raw fetched bytes
        name: File name the payload is stored under for direct transforms

    Returns:
        Ordered list of (relative path, bytes)

    Raises:
        TransformError: If the payload cannot be transformed
        UnsafePathError: If a produced path escapes the destination root
    """
    if isinstance(spec, DirectTransform):
        return [(normalize_path(name), payload)]
    if isinstance(spec, UnzipTransform):
        return unzip(payload, spec)
    raise TypeError(f"Unsupported transform: {spec!r}")


def unzip(payload: bytes, spec: UnzipTransform) -> FileSet:
    """Extract the archive members that pass the transform's filters."""
    files: FileSet = []
    try:
        with zipfile.ZipFile(io.BytesIO(payload)) as archive:
            for info in archive.infolist():
                if info.is_dir():
                    continue
                path = normalize_path(info.filename)
                if not spec.includes(path):
                    logger.debug("Filtered out archive member %s", path)
                    continue
                files.append((path, archive.read(info)))
    except (zipfile.BadZipFile, zlib.error, EOFError, NotImplementedError, RuntimeError) as e:
        raise TransformError(f"Malformed archive: {e}") from e
    return files
