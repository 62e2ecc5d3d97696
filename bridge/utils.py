"""Utility helpers for the MediaBridge service."""

from __future__ import annotations

import hashlib
import os
import re


INVALID_FOLDER_CHARS_RE = re.compile(r'[<>:"/\\|?*\x00-\x1f]')


def sanitize_folder_name(value: str) -> str:
    """Strip characters that are not valid in folder names on common filesystems."""

    cleaned = INVALID_FOLDER_CHARS_RE.sub("", value or "")
    cleaned = re.sub(r"\s+", " ", cleaned).strip().rstrip(".")
    return cleaned or "Unknown"


def normalize_path(path: str | os.PathLike[str]) -> str:
    """Return an absolute, separator-normalized path without resolving symlinks."""

    return os.path.normpath(os.path.abspath(os.fspath(path)))


def path_key(path: str | os.PathLike[str]) -> str:
    """Return a case-insensitive comparison key for a path."""

    return normalize_path(path).casefold()


def is_path_under(path: str | os.PathLike[str], root: str | os.PathLike[str]) -> bool:
    """Return whether ``path`` equals ``root`` or lives somewhere beneath it."""

    candidate = path_key(path)
    base = path_key(root)
    if candidate == base:
        return True
    return candidate.startswith(base.rstrip(os.sep) + os.sep)


def stable_hash(*parts: object) -> str:
    """Return a short deterministic digest for the given parts."""

    joined = "\x1f".join(str(part) for part in parts)
    return hashlib.sha1(joined.encode("utf-8")).hexdigest()[:16]
