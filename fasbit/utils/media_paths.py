import re
from pathlib import Path, PurePosixPath
from typing import Tuple

from fasbit.utils.types import Purpose

# stored as "<64 hex>-<name>" inside a 255-byte directory entry
MAX_NAME_LENGTH = 255 - 65
UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")

MIME_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".heic": "image/heic",
    ".heif": "image/heic",
    ".pdf": "application/pdf",
    ".txt": "text/plain",
}
DEFAULT_MIME_TYPE = "application/octet-stream"

MEDIA_TOP_LEVEL = {
    Purpose.CHAT: "chat",
    Purpose.AVATAR: "avatars",
}


def sanitize_filename(name: str) -> str:
    if not name or not name.strip():
        raise ValueError("Filename is empty.")

    if "/" in name or "\\" in name:
        raise ValueError("Filename must not contain path separators.")

    if name.startswith("."):
        raise ValueError("Filename must not start with a dot.")

    if len(name) > MAX_NAME_LENGTH:
        raise ValueError(f"Filename is longer than {MAX_NAME_LENGTH} characters.")

    return UNSAFE_CHARS.sub("_", name)


def mime_for(name: str) -> str:
    return MIME_TYPES.get(PurePosixPath(name).suffix.lower(), DEFAULT_MIME_TYPE)


def build_relative_path(purpose: Purpose, uploader_id: int, content_hash: str, name: str) -> str:
    filename = f"{content_hash}-{name}"
    top = MEDIA_TOP_LEVEL[purpose]

    if purpose == Purpose.CHAT:
        return f"{top}/{uploader_id}/{content_hash[:2]}/{filename}"

    return f"{top}/{uploader_id}/{filename}"


def resolve_media_path(root: Path, relative_path: str) -> Tuple[Path, Tuple[str, ...]]:
    """
    Map a client-supplied relative path onto the media root.

    Raises ValueError for anything that is absolute, carries empty, dot or
    dot-dot segments, lives outside the known top-level directories, or
    resolves (through symlinks) outside ``root``.
    """
    if not relative_path or "\x00" in relative_path or "\\" in relative_path:
        raise ValueError("Malformed media path.")

    if PurePosixPath(relative_path).is_absolute():
        raise ValueError("Absolute media paths are not allowed.")

    parts = tuple(relative_path.split("/"))
    if any(not part or part.startswith(".") for part in parts):
        raise ValueError("Media path contains empty or dot segments.")

    if parts[0] not in MEDIA_TOP_LEVEL.values():
        raise ValueError("Unknown media directory.")

    resolved_root = root.resolve()
    resolved = resolved_root.joinpath(*parts).resolve()
    if not resolved.is_relative_to(resolved_root):
        raise ValueError("Media path escapes the media root.")

    return resolved, parts
