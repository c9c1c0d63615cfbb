"""File helpers for configuration fragments and log files."""

import contextlib
import os
import secrets
from collections import deque
from pathlib import Path
from typing import Generator, TextIO


# Fragments are world-readable, root-writable
CONFIG_FILE_PERMS = 0o644


class AtomicFileWriter:
    """Write a file through a temp file and rename.

    Readers (sshd, fail2ban) see either the old content or the new content,
    never a partial file.

    Usage:
        with AtomicFileWriter(path).open() as f:
            f.write(content)
    """

    def __init__(self, target_path: Path, permissions: int = CONFIG_FILE_PERMS) -> None:
        self.target_path = Path(target_path)
        self.permissions = permissions

    def _temp_path(self) -> Path:
        # Same directory so the rename never crosses filesystems
        return self.target_path.with_name(f".{self.target_path.name}.tmp_{secrets.token_hex(8)}")

    @contextlib.contextmanager
    def open(self) -> Generator[TextIO, None, None]:
        self.target_path.parent.mkdir(mode=0o755, parents=True, exist_ok=True)
        tmp_path = self._temp_path()

        fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, self.permissions)
        try:
            with os.fdopen(fd, "w") as f:
                yield f
                f.flush()
                os.fsync(f.fileno())
            # umask may have narrowed the mode given to os.open
            os.chmod(tmp_path, self.permissions)
            os.replace(tmp_path, self.target_path)
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise


def tail_lines(path: Path, count: int) -> list[str]:
    """Return the last ``count`` lines of a text file.

    Raises:
        FileNotFoundError: If the file does not exist
    """
    with open(path, errors="replace") as f:
        return [line.rstrip("\n") for line in deque(f, maxlen=count)]
