"""Shared persistence utilities."""

import json
import os
from pathlib import Path
from typing import Any


def atomic_write_text(path: Path, content: str) -> None:
    """Write text to a file atomically.

    Writes and fsyncs a temporary file next to the target, then renames it
    over the target, so readers see either the old or the new content.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    try:
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        tmp_path.replace(path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise


def atomic_write_json(path: Path, data: Any, indent: int | None = None) -> None:
    """Write JSON data to a file atomically."""
    atomic_write_text(path, json.dumps(data, indent=indent, sort_keys=True))
