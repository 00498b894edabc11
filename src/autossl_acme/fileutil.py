"""Atomic file writes."""

import os
import tempfile
from pathlib import Path
from typing import Optional, Union


def write_text_atomic(path: Union[str, Path], text: str, mode: Optional[int] = None) -> None:
    """
    Write ``text`` to ``path`` through a temp file and a rename.

    Readers see either the old or the new content. ``mode`` is applied
    to the temp file before the rename.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, temp_path = tempfile.mkstemp(prefix=f"{path.name}.tmp.", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
        if mode is not None:
            os.chmod(temp_path, mode)
        os.replace(temp_path, path)
    except BaseException:
        try:
            os.unlink(temp_path)
        except FileNotFoundError:
            pass
        raise
