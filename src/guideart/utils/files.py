"""File helpers shared by the on-disk stores."""

from __future__ import annotations

import os
from pathlib import Path
from uuid import uuid4


def atomic_write_bytes(path: Path, data: bytes) -> None:
    """
    Write ``data`` to ``path`` so readers never observe a partial file.

    The bytes go to a hidden temp file in the same directory which is then
    renamed over the destination. The temp file is removed on failure.

    Parameters
    ----------
    path : Path
        Destination file.
    data : bytes
        Full file contents.

    Raises
    ------
    OSError
        If the directory cannot be created or the write/rename fails.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f".{path.stem}.tmp.{uuid4()}")
    try:
        tmp_path.write_bytes(data)
        os.replace(tmp_path, path)
    except OSError:
        tmp_path.unlink(missing_ok=True)
        raise
