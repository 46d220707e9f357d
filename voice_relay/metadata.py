"""Read the starter descriptor served by ``GET /api/metadata``."""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any, Dict

from .errors import MetadataError


def load_metadata(path: Path) -> Dict[str, Any]:
    """Return the ``[meta]`` table of the TOML descriptor at ``path``."""

    try:
        document = tomllib.loads(path.read_text("utf-8"))
    except (OSError, UnicodeDecodeError, tomllib.TOMLDecodeError) as exc:
        raise MetadataError(f"Failed to read metadata from {path.name}") from exc

    meta = document.get("meta")
    if not isinstance(meta, dict):
        raise MetadataError(f"Missing [meta] section in {path.name}")
    return meta
