import json
import os
from pathlib import Path
from typing import Any


def atomic_write_json(path: Path, data: Any) -> None:
    """Writes JSON so that readers only ever see the old or the new file.

    The payload goes to a sibling temp file which is flushed, fsynced and then
    swapped into place with `os.replace`. A crash at any point leaves the
    previous contents intact.

    Args:
        path (Path): The destination file. Its parent directory is created.
        data (Any): A JSON-serializable object.

    Raises:
        OSError: If the directory or file cannot be written.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_file = path.with_name(f"{path.name}.{os.getpid()}.tmp")

    try:
        with open(tmp_file, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
            f.write("\n")
            f.flush()
            os.fsync(f.fileno())  # Force write to disk.

        # Atomic Swap.
        os.replace(tmp_file, path)
    except BaseException:
        tmp_file.unlink(missing_ok=True)
        raise


def read_json(path: Path) -> Any | None:
    """Reads a JSON file.

    Returns:
        Any | None: The decoded document, or None if the file does not exist.

    Raises:
        OSError: If the file exists but cannot be read.
        ValueError: If the contents are not valid JSON.
    """
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        return None
