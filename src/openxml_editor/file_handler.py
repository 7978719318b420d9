"""File handler module: path canonicalization, file-type predicates, text decoding.

Provides the small pure helpers the archive engine and the MCP tools
share. Nothing here holds state; the only I/O is the ``stat`` performed
by path validation.
"""

import base64
import hashlib
import math
import os
from pathlib import Path, PurePosixPath

from charset_normalizer import from_bytes

# =============================================================================
# Constants
# =============================================================================

OPENXML_EXTENSIONS: tuple[str, ...] = (
    ".docx",
    ".dotx",
    ".xlsx",
    ".xltx",
    ".pptx",
    ".potx",
)

DEFAULT_TEXT_EXTENSIONS: tuple[str, ...] = (".xml", ".rels")

MIME_XML = "application/xml"
MIME_RELS = "application/vnd.openxmlformats-package.relationships+xml"

_TYPE_DESCRIPTIONS: dict[str, str] = {
    ".docx": "Microsoft Word Document",
    ".xlsx": "Microsoft Excel Spreadsheet",
    ".pptx": "Microsoft PowerPoint Presentation",
    ".dotx": "Microsoft Word Template",
    ".xltx": "Microsoft Excel Template",
    ".potx": "Microsoft PowerPoint Template",
}

# =============================================================================
# Path Handling
# =============================================================================


def canonical_path(path_str: str | os.PathLike) -> str:
    """Return the canonical registry key for a container path.

    Both separator conventions are accepted; the result is absolute,
    symlink-resolved and uses the platform separator.
    """
    raw = os.fspath(path_str)
    if os.sep == "/":
        raw = raw.replace("\\", "/")
    else:
        raw = raw.replace("/", os.sep)
    return str(Path(raw).expanduser().resolve())


def validate_container_path(path_str: str | os.PathLike) -> Path:
    """Validate and resolve a container path.

    Args:
        path_str: Path to an existing file.

    Returns:
        Resolved Path object pointing to the real file.

    Raises:
        ValueError: If the path doesn't exist or is not a file.
    """
    resolved = Path(canonical_path(path_str))
    if not resolved.exists():
        raise ValueError(f"File not found: {path_str}")
    if not resolved.is_file():
        raise ValueError(f"Path is not a file: {path_str}")
    return resolved


def temp_path_for(temp_dir: Path, internal_path: str) -> Path | None:
    """Map an internal archive path onto ``temp_dir``.

    Returns ``None`` for names that would land outside ``temp_dir``
    (absolute names, drive letters, ``..`` components).
    """
    pure = PurePosixPath(internal_path.replace("\\", "/"))
    if not pure.parts or pure.is_absolute() or ".." in pure.parts:
        return None
    if ":" in pure.parts[0]:
        return None
    return temp_dir.joinpath(*pure.parts)


# =============================================================================
# Type Predicates
# =============================================================================


def is_openxml_file(path: str | os.PathLike) -> bool:
    """Check if a path has an OpenXML document extension."""
    return Path(path).suffix.lower() in OPENXML_EXTENSIONS


def is_text_entry(
    internal_path: str,
    extensions: tuple[str, ...] = DEFAULT_TEXT_EXTENSIONS,
) -> bool:
    """Check if an archive entry is text-like (materialized for editing)."""
    if internal_path.endswith("/"):
        return False
    # ".rels" alone ("_rels/.rels") has no suffix in pathlib terms
    return internal_path.lower().endswith(tuple(e.lower() for e in extensions))


def entry_mime_type(internal_path: str) -> str | None:
    """Informational MIME type of an XML part, or ``None`` for other parts."""
    name = internal_path.lower()
    if name.endswith(".rels"):
        return MIME_RELS
    if name.endswith(".xml"):
        return MIME_XML
    return None


def is_xml_content(content: str) -> bool:
    """Check if text looks like XML markup."""
    return "<" in content.strip()


def describe_file_type(extension: str) -> str:
    """Human-readable document type for a container extension."""
    return _TYPE_DESCRIPTIONS.get(extension.lower(), "OpenXML Document")


# =============================================================================
# Formatting Helpers
# =============================================================================


def format_file_size(size: int) -> str:
    """Format a byte count as ``"12.5 KB"``-style text."""
    units = ["B", "KB", "MB", "GB"]
    if size <= 0:
        return "0 B"
    i = min(int(math.floor(math.log(size, 1024))), len(units) - 1)
    value = round(size / (1024**i), 2)
    if value == int(value):
        value = int(value)
    return f"{value} {units[i]}"


def short_hash(value: str, length: int = 6) -> str:
    """Short, URL-safe identifier derived from ``value``.

    The first ``length`` characters of the unpadded URL-safe base64
    encoding of the SHA-256 digest of ``value``.
    """
    digest = hashlib.sha256(value.encode("utf-8")).digest()
    encoded = base64.urlsafe_b64encode(digest).decode("ascii")
    return encoded.rstrip("=")[:length]


# =============================================================================
# Text Decoding
# =============================================================================


def decode_text(raw: bytes) -> tuple[str, str]:
    """Decode entry bytes with automatic encoding detection.

    XML parts are nearly always UTF-8 (or UTF-16 with a BOM);
    charset-normalizer handles the rest. Defaults to UTF-8 for empty
    input or when detection fails.

    Args:
        raw: Entry payload.

    Returns:
        Tuple of (content_string, detected_encoding).
    """
    if not raw:
        return ("", "utf-8")

    result = from_bytes(raw).best()
    if result is None:
        encoding = "utf-8"
        content = raw.decode(encoding, errors="replace")
    else:
        encoding = result.encoding
        # ascii is a strict subset of utf-8
        if encoding == "ascii":
            encoding = "utf-8"
        content = str(result)
    return (content, encoding)
