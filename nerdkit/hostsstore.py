"""Per-container /etc/hosts files kept under <data-store>/etchosts."""

from __future__ import annotations

import ipaddress
import json
import logging
import os
import shutil
from dataclasses import dataclass, field
from typing import Any, Collection, Iterator, Mapping, Optional

from .lockutil import dir_lock
from .netutil import DEFAULT_NETWORK_NAME

log = logging.getLogger(__name__)

_HOSTS_DIR_BASENAME = "etchosts"
_META_JSON = "meta.json"
_MARKER_BEGIN = "<nerdctl>"
_MARKER_END = "</nerdctl>"


@dataclass
class IPConfig:
    """An address assigned to an interface."""

    ip: str = ""
    gateway: str = ""


@dataclass
class InterfaceConfig:
    """Addresses and identity of one interface in a CNI result."""

    ip_configs: list[IPConfig] = field(default_factory=list)
    mac: str = ""
    sandbox: str = ""


@dataclass
class CNIResult:
    """The interfaces a network attachment produced, keyed by interface name."""

    interfaces: dict[str, InterfaceConfig] = field(default_factory=dict)


def _result_to_dict(result: Optional[CNIResult]) -> Optional[dict[str, Any]]:
    if result is None:
        return None
    return {
        "Interfaces": {
            name: {
                "IPConfigs": [
                    {"IP": ipc.ip, "Gateway": ipc.gateway} for ipc in cfg.ip_configs
                ],
                "Mac": cfg.mac,
                "Sandbox": cfg.sandbox,
            }
            for name, cfg in result.interfaces.items()
        }
    }


def _result_from_dict(data: Optional[Mapping[str, Any]]) -> CNIResult:
    if not data:
        return CNIResult()
    interfaces = {}
    for name, cfg in (data.get("Interfaces") or {}).items():
        cfg = cfg or {}
        interfaces[name] = InterfaceConfig(
            ip_configs=[
                IPConfig(ip=ipc.get("IP") or "", gateway=ipc.get("Gateway") or "")
                for ipc in (cfg.get("IPConfigs") or [])
                if ipc is not None
            ],
            mac=cfg.get("Mac") or "",
            sandbox=cfg.get("Sandbox") or "",
        )
    return CNIResult(interfaces=interfaces)


@dataclass
class Meta:
    """What is recorded about a container for building hosts files."""

    namespace: str = ""
    container_id: str = ""
    networks: dict[str, CNIResult] = field(default_factory=dict)
    hostname: str = ""
    name: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON-ready form stored in meta.json."""
        return {
            "Namespace": self.namespace,
            "ID": self.container_id,
            "Networks": {k: _result_to_dict(v) for k, v in self.networks.items()},
            "Hostname": self.hostname,
            "Name": self.name,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Meta":
        """Build a Meta from the decoded contents of meta.json."""
        return cls(
            namespace=data.get("Namespace") or "",
            container_id=data.get("ID") or "",
            networks={
                k: _result_from_dict(v) for k, v in (data.get("Networks") or {}).items()
            },
            hostname=data.get("Hostname") or "",
            name=data.get("Name") or "",
        )


def hosts_path(data_store: str, namespace: str, container_id: str) -> str:
    """Return <data-store>/etchosts/<namespace>/<id>/hosts."""
    if not data_store or not namespace or not container_id:
        raise ValueError("data store, namespace and container ID must not be empty")
    return os.path.join(data_store, _HOSTS_DIR_BASENAME, namespace, container_id, "hosts")


def _write_file(path: str, content: str, mode: int = 0o644) -> None:
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
    with os.fdopen(fd, "w") as f:
        f.write(content)


def _ensure_file(path: str) -> None:
    if not path:
        raise ValueError("path must not be empty")
    os.makedirs(os.path.dirname(path), mode=0o700, exist_ok=True)
    os.close(os.open(path, os.O_RDONLY | os.O_CREAT, 0o644))


def alloc_hosts_file(data_store: str, namespace: str, container_id: str) -> str:
    """Create an empty, bind-mountable hosts file and return its path."""
    lock_dir = os.path.join(data_store, _HOSTS_DIR_BASENAME)
    os.makedirs(lock_dir, mode=0o700, exist_ok=True)
    path = hosts_path(data_store, namespace, container_id)
    with dir_lock(lock_dir):
        _ensure_file(path)
    return path


def dealloc_hosts_file(data_store: str, namespace: str, container_id: str) -> None:
    """Remove a container's hosts directory; missing directories are fine."""
    lock_dir = os.path.join(data_store, _HOSTS_DIR_BASENAME)
    os.makedirs(lock_dir, mode=0o700, exist_ok=True)
    target = os.path.dirname(hosts_path(data_store, namespace, container_id))
    with dir_lock(lock_dir):
        shutil.rmtree(target, ignore_errors=not os.path.exists(target))


def create_line(ip: str, meta: Meta, my_networks: Collection[str]) -> str:
    """Return a hosts line for *meta* at *ip*, or "" if it shares no network.

    The line looks like "10.4.2.2\\tbar bar.n1 foo foo.n1\\n" for a container
    with hostname bar and name foo on network n1.
    """
    base_hostnames = [meta.hostname]
    if meta.name:
        base_hostnames.append(meta.name)

    line = ip + "\t"
    for base in base_hostnames:
        line += base + " "
        for nw_name in meta.networks:
            if nw_name not in my_networks:
                return ""
            if nw_name == DEFAULT_NETWORK_NAME:
                continue
            line += f"{base}.{nw_name} "
    return line.strip() + "\n"


def _raise(exc: OSError) -> None:
    raise exc


def _walk_files(root: str) -> Iterator[str]:
    for dirpath, dirnames, filenames in os.walk(root, onerror=_raise):
        dirnames.sort()
        for file_name in sorted(filenames):
            yield os.path.join(dirpath, file_name)


def _update(hosts_d: str) -> None:
    """Rewrite every hosts file under *hosts_d*; the caller holds the lock."""
    meta_by_dir: dict[str, Meta] = {}
    meta_by_ip: dict[str, Meta] = {}
    for path in _walk_files(hosts_d):
        if os.path.basename(path) != _META_JSON:
            continue
        with open(path, "rb") as f:
            meta = Meta.from_dict(json.load(f))
        meta_by_dir[os.path.dirname(path)] = meta
        for result in meta.networks.values():
            for cfg in result.interfaces.values():
                for ipc in cfg.ip_configs:
                    try:
                        ip = ipaddress.ip_address(ipc.ip)
                    except ValueError:
                        continue
                    if ip.is_loopback or ip.is_unspecified:
                        continue
                    meta_by_ip[str(ip)] = meta

    for path in _walk_files(hosts_d):
        if os.path.basename(path) != "hosts":
            continue
        directory = os.path.dirname(path)
        my_meta = meta_by_dir.get(directory)
        if my_meta is None:
            log.debug("hostsstore metadata %r not found in %r?", _META_JSON, directory)
            continue
        my_networks = set(my_meta.networks)
        parts = [
            f"# {_MARKER_BEGIN}\n",
            "127.0.0.1\tlocalhost localhost.localdomain\n",
            ":1\t\tlocalhost localhost.localdomain\n",
        ]
        for ip, meta in meta_by_ip.items():
            line = create_line(ip, meta, my_networks)
            if line:
                parts.append(line)
        parts.append(f"# {_MARKER_END}\n")
        _write_file(path, "".join(parts))


class HostsStore:
    """Records container metadata and keeps every container's hosts file in sync."""

    def __init__(self, data_store: str) -> None:
        self.data_store = data_store
        self.hosts_d = os.path.join(data_store, _HOSTS_DIR_BASENAME)
        os.makedirs(self.hosts_d, mode=0o700, exist_ok=True)

    def acquire(self, meta: Meta) -> None:
        """Record *meta* and rewrite all hosts files."""
        with dir_lock(self.hosts_d):
            _ensure_file(hosts_path(self.data_store, meta.namespace, meta.container_id))
            meta_path = os.path.join(
                self.hosts_d, meta.namespace, meta.container_id, _META_JSON
            )
            _write_file(meta_path, json.dumps(meta.to_dict()))
            _update(self.hosts_d)

    def release(self, namespace: str, container_id: str) -> None:
        """Forget a container's metadata, keeping its hosts file for restarts."""
        with dir_lock(self.hosts_d):
            meta_path = os.path.join(self.hosts_d, namespace, container_id, _META_JSON)
            if not os.path.lexists(meta_path):
                return
            if os.path.isdir(meta_path) and not os.path.islink(meta_path):
                shutil.rmtree(meta_path)
            else:
                os.remove(meta_path)
            _update(self.hosts_d)