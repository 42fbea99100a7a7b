"""Docker-compatible views of containers and of daemon information."""

from __future__ import annotations

import enum
import ipaddress
import json
import logging
import os
import sys
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Mapping, Optional

from . import labels

log = logging.getLogger(__name__)

_ZERO_TIME = "0001-01-01T00:00:00Z"


class ProcessStatus(str, enum.Enum):
    """Status of a container's task."""

    RUNNING = "running"
    CREATED = "created"
    STOPPED = "stopped"
    PAUSED = "paused"
    PAUSING = "pausing"
    UNKNOWN = "unknown"


@dataclass
class NetInterface:
    """A network interface inside a container's network namespace."""

    index: int = 0
    name: str = ""
    mtu: int = 0
    hardware_addr: str = ""
    flags: list[str] = field(default_factory=list)
    addrs: list[str] = field(default_factory=list)


@dataclass
class NetNS:
    """A network namespace; primary_interface is an interface index, 0 when unset."""

    primary_interface: int = 0
    interfaces: list[NetInterface] = field(default_factory=list)


@dataclass
class NativeProcess:
    """The task of a container."""

    pid: int = 0
    status: ProcessStatus = ProcessStatus.UNKNOWN
    exit_status: int = 0
    exit_time: Optional[datetime] = None
    net_ns: Optional[NetNS] = None


@dataclass
class NativeContainer:
    """A container as the runtime describes it; spec is the OCI runtime spec."""

    id: str
    image: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    snapshotter: str = ""
    created_at: Optional[datetime] = None
    spec: Optional[dict[str, Any]] = None
    process: Optional[NativeProcess] = None


@dataclass
class ContainerState:
    status: str = ""
    running: bool = False
    paused: bool = False
    pid: int = 0
    exit_code: int = 0
    finished_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "Status": self.status,
            "Running": self.running,
            "Paused": self.paused,
            "Pid": self.pid,
            "ExitCode": self.exit_code,
            "FinishedAt": self.finished_at,
        }


@dataclass
class NetworkEndpointSettings:
    ip_address: str = ""
    ip_prefix_len: int = 0
    global_ipv6_address: str = ""
    global_ipv6_prefix_len: int = 0
    mac_address: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "IPAddress": self.ip_address,
            "IPPrefixLen": self.ip_prefix_len,
            "GlobalIPv6Address": self.global_ipv6_address,
            "GlobalIPv6PrefixLen": self.global_ipv6_prefix_len,
            "MacAddress": self.mac_address,
        }


@dataclass
class NetworkSettings:
    """Network settings; the top-level address fields describe the primary interface."""

    ports: Optional[dict[str, list[dict[str, str]]]] = None
    global_ipv6_address: str = ""
    global_ipv6_prefix_len: int = 0
    ip_address: str = ""
    ip_prefix_len: int = 0
    mac_address: str = ""
    networks: dict[str, NetworkEndpointSettings] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        if self.ports is not None:
            result["Ports"] = self.ports
        result.update(
            {
                "GlobalIPv6Address": self.global_ipv6_address,
                "GlobalIPv6PrefixLen": self.global_ipv6_prefix_len,
                "IPAddress": self.ip_address,
                "IPPrefixLen": self.ip_prefix_len,
                "MacAddress": self.mac_address,
                "Networks": {k: v.to_dict() for k, v in self.networks.items()},
            }
        )
        return result


@dataclass
class Container:
    """A `docker container inspect` object."""

    id: str = ""
    created: str = ""
    path: str = ""
    args: Optional[list[str]] = None
    state: Optional[ContainerState] = None
    image: str = ""
    resolv_conf_path: str = ""
    log_path: str = ""
    name: str = ""
    driver: str = ""
    platform: str = ""
    app_armor_profile: str = ""
    network_settings: Optional[NetworkSettings] = None

    def to_dict(self) -> dict[str, Any]:
        """Return the object with Docker's key names, ready for JSON."""
        return {
            "Id": self.id,
            "Created": self.created,
            "Path": self.path,
            "Args": None if self.args is None else list(self.args),
            "State": None if self.state is None else self.state.to_dict(),
            "Image": self.image,
            "ResolvConfPath": self.resolv_conf_path,
            "LogPath": self.log_path,
            "Name": self.name,
            "Driver": self.driver,
            "Platform": self.platform,
            "AppArmorProfile": self.app_armor_profile,
            "NetworkSettings": (
                None if self.network_settings is None else self.network_settings.to_dict()
            ),
        }


@dataclass
class PluginsInfo:
    log: Optional[list[str]] = None
    storage: Optional[list[str]] = None


@dataclass
class Info:
    """A `docker info` object."""

    id: str = ""
    driver: str = ""
    plugins: PluginsInfo = field(default_factory=PluginsInfo)
    logging_driver: str = ""
    cgroup_driver: str = ""
    cgroup_version: str = ""
    kernel_version: str = ""
    operating_system: str = ""
    os_type: str = ""
    architecture: str = ""
    name: str = ""
    server_version: str = ""
    security_options: Optional[list[str]] = None

    def to_dict(self) -> dict[str, Any]:
        """Return the object with Docker's key names, ready for JSON."""
        result: dict[str, Any] = {
            "ID": self.id,
            "Driver": self.driver,
            "Plugins": {"Log": self.plugins.log, "Storage": self.plugins.storage},
            "LoggingDriver": self.logging_driver,
            "CgroupDriver": self.cgroup_driver,
        }
        if self.cgroup_version:
            result["CgroupVersion"] = self.cgroup_version
        result.update(
            {
                "KernelVersion": self.kernel_version,
                "OperatingSystem": self.operating_system,
                "OSType": self.os_type,
                "Architecture": self.architecture,
                "Name": self.name,
                "ServerVersion": self.server_version,
                "SecurityOptions": self.security_options,
            }
        )
        return result


def _format_time(t: Optional[datetime]) -> str:
    """Format like RFC 3339 with nanoseconds, trailing zeros trimmed."""
    if t is None:
        return _ZERO_TIME
    if t.tzinfo is None:
        t = t.replace(tzinfo=timezone.utc)
    text = (
        f"{t.year:04d}-{t.month:02d}-{t.day:02d}"
        f"T{t.hour:02d}:{t.minute:02d}:{t.second:02d}"
    )
    fraction = f"{t.microsecond:06d}".rstrip("0")
    if fraction:
        text += "." + fraction
    offset = t.utcoffset() or timedelta(0)
    if offset == timedelta(0):
        return text + "Z"
    sign = "+" if offset > timedelta(0) else "-"
    minutes = abs(int(offset.total_seconds())) // 60
    return f"{text}{sign}{minutes // 60:02d}:{minutes % 60:02d}"


def status_from_native(status: ProcessStatus) -> str:
    """Map a task status onto Docker's names ("stopped" becomes "exited")."""
    status = ProcessStatus(status)
    if status is ProcessStatus.STOPPED:
        return "exited"
    return status.value


def _existing(path: str) -> str:
    return path if os.path.exists(path) else ""


def container_from_native(native: NativeContainer) -> Container:
    """Build a Docker-compatible Container from a runtime container."""
    c = Container(
        id=native.id,
        created=_format_time(native.created_at),
        image=native.image,
        name=native.labels.get(labels.NAME, ""),
        driver=native.snapshotter,
        platform=sys.platform,
    )
    spec = native.spec or {}
    process_spec = spec.get("process")
    if process_spec:
        args = list(process_spec.get("args") or [])
        if args:
            c.path = args[0]
            if len(args) > 1:
                c.args = args[1:]
        c.app_armor_profile = process_spec.get("apparmorProfile", "") or ""
    state_dir = native.labels.get(labels.STATE_DIR, "")
    if state_dir:
        c.resolv_conf_path = _existing(os.path.join(state_dir, "resolv.conf"))
        c.log_path = _existing(os.path.join(state_dir, native.id + "-json.log"))
    proc = native.process
    if proc is not None:
        c.state = ContainerState(
            status=status_from_native(proc.status),
            running=proc.status == ProcessStatus.RUNNING,
            paused=proc.status == ProcessStatus.PAUSED,
            pid=proc.pid,
            exit_code=int(proc.exit_status),
            finished_at=_format_time(proc.exit_time),
        )
        c.network_settings = network_settings_from_native(
            proc.net_ns, spec.get("annotations") or {}
        )
    return c


def _parse_cidr(text: str) -> ipaddress.IPv4Interface | ipaddress.IPv6Interface:
    if "/" not in text:
        raise ValueError(f"invalid CIDR address: {text}")
    return ipaddress.ip_interface(text)


def network_settings_from_native(
    netns: Optional[NetNS], annotations: Optional[Mapping[str, str]]
) -> Optional[NetworkSettings]:
    """Describe the up, non-loopback interfaces of *netns*; None without a namespace."""
    if netns is None:
        return None
    annotations = annotations or {}
    res = NetworkSettings()
    primary: Optional[NetworkEndpointSettings] = None
    for x in netns.interfaces:
        if "loopback" in x.flags or "up" not in x.flags:
            continue
        nes = NetworkEndpointSettings(mac_address=x.hardware_addr)
        for addr in x.addrs:
            try:
                iface = _parse_cidr(addr)
            except ValueError as exc:
                log.warning("failed to parse %r (name=%s): %s", addr, x.name, exc)
                continue
            ip = iface.ip
            if ip.is_loopback or ip.is_link_local:
                continue
            ones = iface.network.prefixlen
            mapped = getattr(ip, "ipv4_mapped", None)
            if ip.version == 4 or mapped is not None:
                nes.ip_address = str(mapped or ip)
                nes.ip_prefix_len = ones
            else:
                nes.global_ipv6_address = str(ip)
                nes.global_ipv6_prefix_len = ones
        res.networks[f"unknown-{x.name}"] = nes

        ports_label = annotations.get(labels.PORTS)
        if ports_label is not None:
            res.ports = convert_to_nat_port(json.loads(ports_label) or [])
        if x.index == netns.primary_interface:
            primary = nes

    if primary is not None:
        res.mac_address = primary.mac_address
        res.ip_address = primary.ip_address
        res.ip_prefix_len = primary.ip_prefix_len
        res.global_ipv6_address = primary.global_ipv6_address
        res.global_ipv6_prefix_len = primary.global_ipv6_prefix_len
    return res


def _field(mapping: Mapping[str, Any], name: str, default: Any) -> Any:
    if name in mapping:
        return mapping[name]
    folded = name.casefold()
    for key, value in mapping.items():
        if key.casefold() == folded:
            return value
    return default


def convert_to_nat_port(
    port_mappings: Iterable[Mapping[str, Any]],
) -> dict[str, list[dict[str, str]]]:
    """Turn port mappings into Docker's "port/proto" -> bindings map."""
    port_map: dict[str, list[dict[str, str]]] = {}
    for mapping in port_mappings:
        container_port = int(_field(mapping, "ContainerPort", 0))
        if not 0 <= container_port <= 0xFFFF:
            raise ValueError(f"invalid port: {container_port}")
        protocol = str(_field(mapping, "Protocol", "") or "")
        binding = {
            "HostIp": str(_field(mapping, "HostIP", "") or ""),
            "HostPort": str(int(_field(mapping, "HostPort", 0))),
        }
        port_map[f"{container_port}/{protocol}"] = [binding]
    return port_map