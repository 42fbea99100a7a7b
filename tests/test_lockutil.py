import fcntl
import os

import pytest

from nerdkit.lockutil import dir_lock


def _try_lock(directory):
    fd = os.open(directory, os.O_RDONLY)
    try:
        fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        fcntl.flock(fd, fcntl.LOCK_UN)
        return True
    except BlockingIOError:
        return False
    finally:
        os.close(fd)


def test_lock_is_held_inside_and_released_after(tmp_path):
    with dir_lock(str(tmp_path)):
        held_inside = not _try_lock(str(tmp_path))
    assert held_inside is True
    assert _try_lock(str(tmp_path)) is True


def test_lock_released_when_body_raises(tmp_path):
    with pytest.raises(RuntimeError, match="boom"):
        with dir_lock(str(tmp_path)):
            raise RuntimeError("boom")
    assert _try_lock(str(tmp_path)) is True


def test_missing_directory_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        with dir_lock(str(tmp_path / "missing")):
            pass