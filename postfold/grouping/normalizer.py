"""Content normalisation used to compute grouping signatures."""

from __future__ import annotations

import hashlib
import re

_TAG_RE = re.compile(r"<[^>]*>")
_ENTITY_RE = re.compile(r"&(amp|lt|gt|quot|#39|apos|nbsp);")
_ENTITIES = {
    "amp": "&",
    "lt": "<",
    "gt": ">",
    "quot": '"',
    "#39": "'",
    "apos": "'",
    "nbsp": " ",
}
_WS_RE = re.compile(r"\s+")


def normalize_content(text: str) -> str:
    """Strip tags, decode common entities, collapse whitespace, lowercase and trim.

    Only the entities in ``_ENTITIES`` are decoded, in a single pass; any
    other reference such as ``&copy;`` is kept verbatim so signatures stay
    stable across clients.
    """

    stripped = _TAG_RE.sub(" ", text or "")
    decoded = _ENTITY_RE.sub(lambda match: _ENTITIES[match.group(1)], stripped)
    return _WS_RE.sub(" ", decoded).lower().strip()


def hash_content(content: str) -> str:
    """Short stable group id derived from a signature."""

    digest = hashlib.sha256(content.encode("utf-8")).hexdigest()
    return f"grp_{digest[:16]}"


__all__ = ["hash_content", "normalize_content"]
