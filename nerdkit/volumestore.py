"""Named volumes stored as directories under the data store."""

from __future__ import annotations

import os
import shutil
from dataclasses import dataclass
from typing import Iterable

from .ids import validate_identifier
from .lockutil import dir_lock

DATA_DIR_NAME = "_data"


class VolumeNotFoundError(LookupError):
    """Raised when a volume does not exist."""


@dataclass(frozen=True)
class Volume:
    """A volume; the layout is also compatible with Docker."""

    name: str
    mountpoint: str


def volume_store_path(data_store: str, namespace: str) -> str:
    """Return the volume directory for *namespace*, e.g. <data>/volumes/default."""
    if not data_store or not namespace:
        raise ValueError("data store and namespace must not be empty")
    return os.path.join(data_store, "volumes", namespace)


class VolumeStore:
    """Creates, finds, lists and removes volumes of one namespace."""

    def __init__(self, data_store: str, namespace: str) -> None:
        self.directory = volume_store_path(data_store, namespace)
        os.makedirs(self.directory, mode=0o700, exist_ok=True)

    def create(self, name: str) -> Volume:
        """Create volume *name*; raise FileExistsError if it already exists."""
        validate_identifier(name)
        vol_path = os.path.join(self.directory, name)
        data_path = os.path.join(vol_path, DATA_DIR_NAME)
        with dir_lock(self.directory):
            os.mkdir(vol_path, 0o700)
            os.mkdir(data_path, 0o755)
        return Volume(name=name, mountpoint=data_path)

    def get(self, name: str) -> Volume:
        """Return volume *name*; raise VolumeNotFoundError if it does not exist."""
        validate_identifier(name)
        data_path = os.path.join(self.directory, name, DATA_DIR_NAME)
        try:
            os.stat(data_path)
        except FileNotFoundError:
            raise VolumeNotFoundError(f"volume {name!r} not found") from None
        return Volume(name=name, mountpoint=data_path)

    def list_volumes(self) -> dict[str, Volume]:
        """Return all volumes keyed by name, in name order."""
        return {name: self.get(name) for name in sorted(os.listdir(self.directory))}

    def remove(self, names: Iterable[str]) -> list[str]:
        """Remove the named volumes and return the names removed."""
        removed: list[str] = []
        with dir_lock(self.directory):
            for name in names:
                validate_identifier(name)
                path = os.path.join(self.directory, name)
                if os.path.isdir(path) and not os.path.islink(path):
                    shutil.rmtree(path)
                elif os.path.lexists(path):
                    os.remove(path)
                removed.append(name)
        return removed