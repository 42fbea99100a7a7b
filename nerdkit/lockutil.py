"""Exclusive advisory locks on directories."""

import contextlib
import fcntl
import logging
import os
from typing import Iterator

log = logging.getLogger(__name__)


@contextlib.contextmanager
def dir_lock(directory: str) -> Iterator[None]:
    """Hold an exclusive flock on *directory* for the duration of the block."""
    fd = os.open(directory, os.O_RDONLY)
    try:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX)
        except OSError as exc:
            raise OSError(exc.errno, f"failed to lock {directory!r}: {exc.strerror}") from exc
        try:
            yield
        finally:
            try:
                fcntl.flock(fd, fcntl.LOCK_UN)
            except OSError:
                log.exception("failed to unlock %r", directory)
    finally:
        os.close(fd)