"""Parsing of `-v` volume flags into mounts."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

from .ids import generate_id
from .volumestore import VolumeStore

log = logging.getLogger(__name__)

_UNPRIVILEGED_FLAGS = (
    (getattr(os, "ST_RDONLY", 1), "ro"),
    (getattr(os, "ST_NODEV", 4), "nodev"),
    (getattr(os, "ST_NOEXEC", 8), "noexec"),
    (getattr(os, "ST_NOSUID", 2), "nosuid"),
    (getattr(os, "ST_NOATIME", 1024), "noatime"),
    (getattr(os, "ST_RELATIME", 4096), "relatime"),
    (getattr(os, "ST_NODIRATIME", 2048), "nodiratime"),
)


@dataclass
class Mount:
    """An OCI mount entry."""

    type: str
    source: str
    destination: str
    options: list[str] = field(default_factory=list)


@dataclass
class Processed:
    """The result of a `-v` flag: the mount and any anonymous volume created."""

    mount: Mount
    anonymous_volume: str = ""


def running_in_user_ns() -> bool:
    """Return whether this process runs inside a user namespace."""
    try:
        with open("/proc/self/uid_map") as f:
            first = f.readline()
    except OSError:
        return False
    parts = first.split()
    if len(parts) != 3:
        return True
    return parts != ["0", "0", "4294967295"]


def unprivileged_mount_flags(path: str) -> list[str]:
    """Return the mount flags of *path*'s filesystem locked for unprivileged mounts."""
    flags = os.statvfs(path).f_flag
    return [name for mask, name in _UNPRIVILEGED_FLAGS if flags & mask == mask]


def process_flag_v(spec: str, vol_store: VolumeStore) -> Processed:
    """Turn "dst", "src:dst" or "src:dst:opts" into a bind mount.

    A lone destination creates an anonymous volume; a source without "/" is
    a volume name.
    """
    anonymous = ""
    read_only = False
    split = spec.split(":")
    if len(split) == 1:
        dst = spec
        anonymous = generate_id()
        log.debug("creating anonymous volume %r, for %r", anonymous, spec)
        src = vol_store.create(anonymous).mountpoint
    elif len(split) in (2, 3):
        src, dst = split[0], split[1]
        if "/" not in src:
            src = vol_store.get(src).mountpoint
        if not os.path.isabs(src):
            log.warning(
                "expected an absolute path, got a relative path %r "
                "(allowed for nerdctl, but disallowed for Docker, so unrecommended)",
                src,
            )
            src = os.path.abspath(src)
        if not os.path.isabs(dst):
            raise ValueError(f"expected an absolute path, got {dst!r}")
        if len(split) == 3:
            for opt in split[2].split(","):
                if opt == "ro":
                    read_only = True
                elif opt != "rw":
                    log.warning("unsupported volume option %r", opt)
    else:
        raise ValueError(f"failed to parse {spec!r}")

    options = ["rbind"]
    if read_only:
        options.append("ro")
    if running_in_user_ns():
        options = list(dict.fromkeys(options + unprivileged_mount_flags(src)))
    mount = Mount(type="none", source=src, destination=dst, options=options)
    return Processed(mount=mount, anonymous_volume=anonymous)