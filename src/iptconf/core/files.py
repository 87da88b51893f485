"""Atomic writes for rules files."""

import contextlib
import os
import tempfile
from pathlib import Path

# Rules files may reveal network layout
RULES_FILE_PERMS = 0o600


def atomic_write_text(
    path: Path,
    content: str,
    permissions: int = RULES_FILE_PERMS,
) -> None:
    """Replace ``path`` with ``content`` in a single rename.

    The data goes to a hidden temp file next to the target, is synced to
    disk and then renamed over the target, so readers see either the old
    or the new file. The temp file is removed if anything fails.

    Raises:
        OSError: If the directory cannot be created or the write fails
    """
    path = Path(path)
    path.parent.mkdir(mode=0o755, parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w") as f:
            os.fchmod(f.fileno(), permissions)
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(tmp_name)
        raise
