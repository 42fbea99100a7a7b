"""Loading of compose YAML files into a project model."""

from __future__ import annotations

import os
import re
import shlex
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

import yaml


class ProjectLoadError(ValueError):
    """Raised when a compose file cannot be loaded."""


@dataclass
class ExternalConfig:
    external: bool = False
    name: str = ""


@dataclass
class NetworkConfig:
    name: str = ""
    external: ExternalConfig = field(default_factory=ExternalConfig)
    extras: dict[str, Any] = field(default_factory=dict)


@dataclass
class VolumeConfig:
    name: str = ""
    external: ExternalConfig = field(default_factory=ExternalConfig)
    extras: dict[str, Any] = field(default_factory=dict)


@dataclass
class FileObjectConfig:
    """A top-level secret or config."""

    name: str = ""
    file: str = ""
    external: ExternalConfig = field(default_factory=ExternalConfig)
    extras: dict[str, Any] = field(default_factory=dict)


@dataclass
class BuildConfig:
    context: str = ""
    dockerfile: str = ""
    args: dict[str, Optional[str]] = field(default_factory=dict)
    target: str = ""
    extras: dict[str, Any] = field(default_factory=dict)


@dataclass
class ServicePortConfig:
    mode: str = ""
    host_ip: str = ""
    target: int = 0
    published: int = 0
    protocol: str = ""
    extras: dict[str, Any] = field(default_factory=dict)


@dataclass
class ServiceVolumeConfig:
    type: str = ""
    source: str = ""
    target: str = ""
    read_only: bool = False
    extras: dict[str, Any] = field(default_factory=dict)


@dataclass
class FileReferenceConfig:
    """A service's reference to a secret or config."""

    source: str = ""
    target: str = ""
    uid: str = ""
    gid: str = ""
    mode: Optional[int] = None
    extras: dict[str, Any] = field(default_factory=dict)


@dataclass
class RestartPolicy:
    condition: str = ""
    extras: dict[str, Any] = field(default_factory=dict)


@dataclass
class ResourceLimits:
    nano_cpus: str = ""
    memory_bytes: int = 0
    extras: dict[str, Any] = field(default_factory=dict)


@dataclass
class Resources:
    limits: Optional[ResourceLimits] = None
    extras: dict[str, Any] = field(default_factory=dict)


@dataclass
class DeployConfig:
    replicas: Optional[int] = None
    restart_policy: Optional[RestartPolicy] = None
    resources: Resources = field(default_factory=Resources)
    extras: dict[str, Any] = field(default_factory=dict)


@dataclass
class ServiceDependency:
    condition: str = ""
    extras: dict[str, Any] = field(default_factory=dict)


@dataclass
class ServiceConfig:
    name: str = ""
    build: Optional[BuildConfig] = None
    cap_add: list[str] = field(default_factory=list)
    cap_drop: list[str] = field(default_factory=list)
    cpus: float = 0.0
    cpuset: str = ""
    cpu_shares: int = 0
    command: list[str] = field(default_factory=list)
    configs: list[FileReferenceConfig] = field(default_factory=list)
    container_name: str = ""
    depends_on: dict[str, ServiceDependency] = field(default_factory=dict)
    deploy: Optional[DeployConfig] = None
    dns: list[str] = field(default_factory=list)
    entrypoint: list[str] = field(default_factory=list)
    environment: dict[str, Optional[str]] = field(default_factory=dict)
    hostname: str = ""
    image: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    mem_limit: int = 0
    net: str = ""
    networks: dict[str, Any] = field(default_factory=dict)
    network_mode: str = ""
    pids_limit: int = 0
    ports: list[ServicePortConfig] = field(default_factory=list)
    privileged: bool = False
    pull_policy: str = ""
    read_only: bool = False
    restart: str = ""
    runtime: str = ""
    secrets: list[FileReferenceConfig] = field(default_factory=list)
    scale: int = 0
    security_opt: list[str] = field(default_factory=list)
    sysctls: dict[str, str] = field(default_factory=dict)
    user: str = ""
    working_dir: str = ""
    volumes: list[ServiceVolumeConfig] = field(default_factory=list)
    extras: dict[str, Any] = field(default_factory=dict)


@dataclass
class Project:
    name: str
    working_dir: str
    services: list[ServiceConfig] = field(default_factory=list)
    networks: dict[str, NetworkConfig] = field(default_factory=dict)
    volumes: dict[str, VolumeConfig] = field(default_factory=dict)
    secrets: dict[str, FileObjectConfig] = field(default_factory=dict)
    configs: dict[str, FileObjectConfig] = field(default_factory=dict)
    compose_files: list[str] = field(default_factory=list)
    extras: dict[str, Any] = field(default_factory=dict)

    def relative_path(self, path: str) -> str:
        """Resolve *path* against the working directory (expanding "~")."""
        if path.startswith("~"):
            path = os.path.expanduser(path)
        if os.path.isabs(path):
            return path
        return os.path.normpath(os.path.join(self.working_dir, path))

    def get_service(self, name: str) -> ServiceConfig:
        """Return the service called *name*; raise KeyError if there is none."""
        for svc in self.services:
            if svc.name == name:
                return svc
        raise KeyError(f"no such service: {name}")

    def services_in_dependency_order(self) -> list[ServiceConfig]:
        """Return the services with each one after those it depends on."""
        by_name = {s.name: s for s in self.services}
        ordered: list[ServiceConfig] = []
        done: set[str] = set()
        visiting: set[str] = set()

        def visit(svc: ServiceConfig) -> None:
            if svc.name in done:
                return
            if svc.name in visiting:
                raise ProjectLoadError(f"dependency cycle detected at service {svc.name}")
            visiting.add(svc.name)
            for dep in svc.depends_on:
                if dep not in by_name:
                    raise ProjectLoadError(
                        f"service {svc.name} depends on undefined service {dep}"
                    )
                visit(by_name[dep])
            visiting.discard(svc.name)
            done.add(svc.name)
            ordered.append(svc)

        for svc in self.services:
            visit(svc)
        return ordered


_UNITS = {"b": 1, "k": 1 << 10, "m": 1 << 20, "g": 1 << 30, "t": 1 << 40, "p": 1 << 50}
_UNIT_RE = re.compile(r"(\d+(?:\.\d+)?)\s*([kmgtp]?)b?", re.IGNORECASE)


def parse_unit_bytes(value: Any) -> int:
    """Parse a size such as 42m or "1.5g" (binary multiples) into bytes."""
    if isinstance(value, bool):
        raise ProjectLoadError(f"invalid size: {value!r}")
    if isinstance(value, (int, float)):
        return int(value)
    match = _UNIT_RE.fullmatch(str(value).strip())
    if not match:
        raise ProjectLoadError(f"invalid size: {value!r}")
    unit = match.group(2).lower() or "b"
    return int(float(match.group(1)) * _UNITS[unit])


_INTERP_RE = re.compile(
    r"\$(?:(\$)|\{([A-Za-z_][A-Za-z0-9_]*)(?:(:?[-?])([^}]*))?\}|([A-Za-z_][A-Za-z0-9_]*))"
)


def _interpolate(value: Any, env: Mapping[str, str]) -> Any:
    if isinstance(value, dict):
        return {k: _interpolate(v, env) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate(v, env) for v in value]
    if not isinstance(value, str):
        return value

    def repl(m: re.Match) -> str:
        if m.group(1):
            return "$"
        name = m.group(2) or m.group(5)
        op, arg = m.group(3), m.group(4) or ""
        current = env.get(name)
        if op in (":-", ":?"):
            missing = not current
        else:
            missing = current is None
        if op and missing:
            if op.endswith("?"):
                raise ProjectLoadError(arg or f"required variable {name} is missing a value")
            return arg
        return current or ""

    return _INTERP_RE.sub(repl, value)


def _str_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, list):
        return [str(v) for v in value]
    return [str(value)]


def _command(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return shlex.split(value)
    return [str(v) for v in value]


def _mapping(value: Any, sep: str = "=", allow_none: bool = False) -> dict[str, Any]:
    if value is None:
        return {}
    if isinstance(value, dict):
        return {
            str(k): (None if v is None and allow_none else ("" if v is None else str(v)))
            for k, v in value.items()
        }
    result: dict[str, Any] = {}
    for item in value:
        key, found, val = str(item).partition(sep)
        result[key] = val if found else (None if allow_none else "")
    return result


def _split(data: Mapping[str, Any], known: set[str]) -> dict[str, Any]:
    return {k: v for k, v in data.items() if k not in known}


def _external(value: Any) -> ExternalConfig:
    if isinstance(value, dict):
        return ExternalConfig(external=True, name=str(value.get("name") or ""))
    return ExternalConfig(external=bool(value))


def _parse_build(value: Any, dockerfile: str) -> BuildConfig:
    if isinstance(value, str):
        b = BuildConfig(context=value)
    else:
        value = value or {}
        b = BuildConfig(
            context=str(value.get("context") or ""),
            dockerfile=str(value.get("dockerfile") or ""),
            args=_mapping(value.get("args"), allow_none=True),
            target=str(value.get("target") or ""),
            extras=_split(value, {"context", "dockerfile", "args", "target"}),
        )
    if dockerfile and not b.dockerfile:
        b.dockerfile = dockerfile
    return b


def _parse_port(value: Any) -> ServicePortConfig:
    if isinstance(value, dict):
        return ServicePortConfig(
            mode=str(value.get("mode") or ""),
            host_ip=str(value.get("host_ip") or ""),
            target=int(value.get("target") or 0),
            published=int(value.get("published") or 0),
            protocol=str(value.get("protocol") or ""),
            extras=_split(value, {"mode", "host_ip", "target", "published", "protocol"}),
        )
    text, _, protocol = str(value).partition("/")
    parts = text.rsplit(":", 2)
    host_ip = ""
    if len(parts) == 3:
        host_ip = parts[0].strip("[]")
        parts = parts[1:]
    try:
        target = int(parts[-1])
        published = int(parts[0]) if len(parts) == 2 and parts[0] else 0
    except ValueError:
        raise ProjectLoadError(f"invalid port specification: {value!r}") from None
    return ServicePortConfig(
        mode="ingress",
        host_ip=host_ip,
        target=target,
        published=published,
        protocol=protocol or "tcp",
    )


def _parse_volume(value: Any, project: Project) -> ServiceVolumeConfig:
    if isinstance(value, dict):
        v = ServiceVolumeConfig(
            type=str(value.get("type") or ""),
            source=str(value.get("source") or ""),
            target=str(value.get("target") or ""),
            read_only=bool(value.get("read_only")),
            extras=_split(value, {"type", "source", "target", "read_only"}),
        )
    else:
        parts = str(value).split(":")
        if len(parts) == 1:
            v = ServiceVolumeConfig(type="volume", target=parts[0])
        elif len(parts) in (2, 3):
            src = parts[0]
            is_path = src.startswith((".", "/", "~"))
            v = ServiceVolumeConfig(
                type="bind" if is_path else "volume", source=src, target=parts[1]
            )
            if len(parts) == 3:
                v.read_only = "ro" in parts[2].split(",")
        else:
            raise ProjectLoadError(f"invalid volume specification: {value!r}")
    if v.type == "bind" and v.source:
        v.source = project.relative_path(v.source)
    return v


def _parse_file_refs(value: Any) -> list[FileReferenceConfig]:
    refs = []
    for item in value or []:
        if isinstance(item, dict):
            mode = item.get("mode")
            refs.append(
                FileReferenceConfig(
                    source=str(item.get("source") or ""),
                    target=str(item.get("target") or ""),
                    uid=str(item.get("uid") or ""),
                    gid=str(item.get("gid") or ""),
                    mode=None if mode is None else int(mode),
                    extras=_split(item, {"source", "target", "uid", "gid", "mode"}),
                )
            )
        else:
            refs.append(FileReferenceConfig(source=str(item)))
    return refs


def _parse_deploy(value: Mapping[str, Any]) -> DeployConfig:
    d = DeployConfig(extras=_split(value, {"replicas", "restart_policy", "resources"}))
    if value.get("replicas") is not None:
        d.replicas = int(value["replicas"])
    if "restart_policy" in value:
        rp = value.get("restart_policy") or {}
        d.restart_policy = RestartPolicy(
            condition=str(rp.get("condition") or ""), extras=_split(rp, {"condition"})
        )
    res = value.get("resources") or {}
    d.resources = Resources(extras=_split(res, {"limits"}))
    if res.get("limits") is not None:
        lim = res["limits"] or {}
        d.resources.limits = ResourceLimits(
            nano_cpus="" if lim.get("cpus") is None else str(lim["cpus"]),
            memory_bytes=0 if lim.get("memory") is None else parse_unit_bytes(lim["memory"]),
            extras=_split(lim, {"cpus", "memory"}),
        )
    return d


_SERVICE_KEYS = {
    "build", "cap_add", "cap_drop", "cpus", "cpuset", "cpu_shares", "command",
    "configs", "container_name", "depends_on", "deploy", "dns", "dockerfile",
    "entrypoint", "environment", "extends", "hostname", "image", "labels",
    "mem_limit", "net", "networks", "network_mode", "pids_limit", "ports",
    "privileged", "pull_policy", "read_only", "restart", "runtime", "secrets",
    "scale", "security_opt", "sysctls", "user", "working_dir", "volumes",
}


def _parse_service(name: str, data: Mapping[str, Any], project: Project) -> ServiceConfig:
    env = _mapping(data.get("environment"), allow_none=True)
    env = {k: (os.environ.get(k) if v is None else v) for k, v in env.items()}
    networks = data.get("networks") or {}
    if isinstance(networks, list):
        networks = {str(n): None for n in networks}
    depends = data.get("depends_on") or {}
    if isinstance(depends, list):
        depends_on = {str(d): ServiceDependency() for d in depends}
    else:
        depends_on = {
            str(k): ServiceDependency(
                condition=str((v or {}).get("condition") or ""),
                extras=_split(v or {}, {"condition"}),
            )
            for k, v in depends.items()
        }
    svc = ServiceConfig(
        name=name,
        cap_add=_str_list(data.get("cap_add")),
        cap_drop=_str_list(data.get("cap_drop")),
        cpus=float(data.get("cpus") or 0),
        cpuset=str(data.get("cpuset") or ""),
        cpu_shares=int(data.get("cpu_shares") or 0),
        command=_command(data.get("command")),
        configs=_parse_file_refs(data.get("configs")),
        container_name=str(data.get("container_name") or ""),
        depends_on=depends_on,
        dns=_str_list(data.get("dns")),
        entrypoint=_command(data.get("entrypoint")),
        environment=env,
        hostname=str(data.get("hostname") or ""),
        image=str(data.get("image") or ""),
        labels=_mapping(data.get("labels")),
        mem_limit=0 if data.get("mem_limit") is None else parse_unit_bytes(data["mem_limit"]),
        net=str(data.get("net") or ""),
        networks=dict(networks),
        network_mode=str(data.get("network_mode") or ""),
        pids_limit=int(data.get("pids_limit") or 0),
        ports=[_parse_port(p) for p in data.get("ports") or []],
        privileged=bool(data.get("privileged")),
        pull_policy=str(data.get("pull_policy") or ""),
        read_only=bool(data.get("read_only")),
        restart=str(data.get("restart") or ""),
        runtime=str(data.get("runtime") or ""),
        secrets=_parse_file_refs(data.get("secrets")),
        scale=int(data.get("scale") or 0),
        security_opt=_str_list(data.get("security_opt")),
        sysctls=_mapping(data.get("sysctls")),
        user=str(data.get("user") or ""),
        working_dir=str(data.get("working_dir") or ""),
        volumes=[_parse_volume(v, project) for v in data.get("volumes") or []],
        extras=_split(data, _SERVICE_KEYS),
    )
    if data.get("build") is not None:
        svc.build = _parse_build(data["build"], str(data.get("dockerfile") or ""))
    if data.get("deploy") is not None:
        svc.deploy = _parse_deploy(data["deploy"] or {})
    if not svc.networks and not svc.network_mode and not svc.net:
        svc.networks = {"default": None}
    return svc


def _parse_file_objects(value: Any) -> dict[str, FileObjectConfig]:
    result = {}
    for key, cfg in (value or {}).items():
        cfg = cfg or {}
        result[str(key)] = FileObjectConfig(
            name=str(cfg.get("name") or ""),
            file=str(cfg.get("file") or ""),
            external=_external(cfg.get("external")),
            extras=_split(cfg, {"name", "file", "external"}),
        )
    return result


def load_dict(data: Mapping[str, Any], working_dir: str, project_name: str) -> Project:
    """Build a Project from a decoded compose document."""
    if not isinstance(data, Mapping):
        raise ProjectLoadError("top-level object must be a mapping")
    data = _interpolate(dict(data), os.environ)
    project = Project(
        name=project_name,
        working_dir=working_dir,
        extras=_split(
            data, {"version", "services", "networks", "volumes", "secrets", "configs"}
        ),
    )
    services = data.get("services") or {}
    if not isinstance(services, dict):
        raise ProjectLoadError("services must be a mapping")
    for name, svc in services.items():
        project.services.append(_parse_service(str(name), svc or {}, project))

    for kind, target in (("networks", project.networks), ("volumes", project.volumes)):
        cls = NetworkConfig if kind == "networks" else VolumeConfig
        for key, cfg in (data.get(kind) or {}).items():
            cfg = cfg or {}
            ext = _external(cfg.get("external"))
            name = str(cfg.get("name") or "")
            if not name:
                name = (ext.name or key) if ext.external else f"{project_name}_{key}"
            target[str(key)] = cls(
                name=name, external=ext, extras=_split(cfg, {"name", "external"})
            )

    if "default" not in project.networks and any(
        "default" in s.networks for s in project.services
    ):
        project.networks["default"] = NetworkConfig(name=f"{project_name}_default")

    project.secrets = _parse_file_objects(data.get("secrets"))
    project.configs = _parse_file_objects(data.get("configs"))
    return project


def load(file_name: str, project_name: str) -> Project:
    """Load the compose file *file_name* as project *project_name*."""
    with open(file_name, "rb") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise ProjectLoadError(f"failed to parse {file_name}: {exc}") from exc
    working_dir = os.path.abspath(os.path.dirname(file_name))
    project = load_dict(data or {}, working_dir, project_name)
    project.compose_files = [file_name]
    return project