"""JSON file helpers for persisted agent state."""

import json
import os
import tempfile
from pathlib import Path
from typing import Any


def read_json(path: Path) -> Any:
    """Load JSON from `path`.

    Raises:
        FileNotFoundError: If the file doesn't exist
        json.JSONDecodeError: If the content is not valid JSON
    """
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def write_json(path: Path, contents: Any) -> None:
    """Serialize `contents` to `path` atomically.

    Data goes to a temporary file in the same directory first, which is then
    renamed over the target so readers never see a partial file.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(contents, f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
