"""
Small validators for names and paths coming from website documents.
"""

from __future__ import annotations

import re

from connectors.errors import InvalidInput

_NON_SLUG = re.compile(r"[^0-9a-z]+")


def slugify(name: str, fallback: str = "page") -> str:
    """Lower-case, runs of non-alphanumerics collapsed to '-'."""
    return _NON_SLUG.sub("-", name.lower()).strip("-") or fallback


def clean_relative_path(path: str) -> str:
    """
    Normalise a document-supplied relative path.

    Raises ``InvalidInput`` for empty paths and ``..`` segments.
    """
    parts = [p for p in path.replace("\\", "/").split("/") if p not in ("", ".")]
    if not parts:
        raise InvalidInput("empty path")
    if ".." in parts:
        raise InvalidInput(f"path may not contain '..': {path}")
    return "/".join(parts)
