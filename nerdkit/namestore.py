"""Per-namespace registry of container names."""

import os

from .ids import validate_identifier
from .lockutil import dir_lock


class NameInUseError(Exception):
    """Raised when a name is held by another container ID."""


def _check_id(container_id: str) -> None:
    if container_id.strip() != container_id:
        raise ValueError(f"untrimmed ID {container_id!r}")


class NameStore:
    """Maps names to container IDs with one file per name under a locked directory."""

    def __init__(self, data_store: str, namespace: str) -> None:
        self.directory = os.path.join(data_store, "names", namespace)
        os.makedirs(self.directory, mode=0o700, exist_ok=True)

    def acquire(self, name: str, container_id: str) -> None:
        """Record *name* as used by *container_id*; raise NameInUseError if taken."""
        validate_identifier(name)
        _check_id(container_id)
        file_name = os.path.join(self.directory, name)
        with dir_lock(self.directory):
            try:
                with open(file_name) as f:
                    holder = f.read()
            except OSError:
                pass
            else:
                raise NameInUseError(f"name {name!r} is already used by ID {holder!r}")
            fd = os.open(file_name, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w") as f:
                f.write(container_id)

    def release(self, name: str, container_id: str) -> None:
        """Free *name* if held by *container_id*; an empty or unknown name is a no-op."""
        if not name:
            return
        validate_identifier(name)
        _check_id(container_id)
        file_name = os.path.join(self.directory, name)
        with dir_lock(self.directory):
            try:
                with open(file_name) as f:
                    holder = f.read().strip()
            except FileNotFoundError:
                return
            if holder != container_id:
                raise NameInUseError(
                    f"name {name!r} is used by ID {holder!r}, not by {container_id!r}"
                )
            try:
                os.remove(file_name)
            except FileNotFoundError:
                pass