"""Turning compose services into `nerdctl run` invocations."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Optional

from .buildconfig import Build, parse_build_config
from .ids import InvalidIdentifierError, validate_identifier
from .projectloader import (
    FileReferenceConfig,
    Project,
    ServiceConfig,
    ServicePortConfig,
    ServiceVolumeConfig,
)

log = logging.getLogger(__name__)

PULL_POLICY_ALWAYS = "always"
PULL_POLICY_NEVER = "never"
PULL_POLICY_IF_NOT_PRESENT = "if_not_present"
PULL_POLICY_MISSING = "missing"
PULL_POLICY_BUILD = "build"

SERVICE_CONDITION_STARTED = "service_started"


@dataclass
class Container:
    """One replica: its name (e.g. "proj_web_1") and the `run` arguments."""

    name: str
    run_args: list[str] = field(default_factory=list)


@dataclass
class Service:
    """A parsed service: image, pull mode, replicas and optional build."""

    image: str
    pull_mode: str = PULL_POLICY_MISSING
    containers: list[Container] = field(default_factory=list)
    build: Optional[Build] = None
    unparsed: Optional[ServiceConfig] = None


def _warn_unknown_fields(svc: ServiceConfig) -> None:
    if svc.extras:
        log.warning("Ignoring: service %s: %s", svc.name, sorted(svc.extras))

    for dep_name, dep in svc.depends_on.items():
        if dep.extras:
            log.warning(
                "Ignoring: service %s: depends_on: %s: %s",
                svc.name, dep_name, sorted(dep.extras),
            )
        if dep.condition not in ("", SERVICE_CONDITION_STARTED):
            log.warning(
                "Ignoring: service %s: depends_on: %s: condition %s",
                svc.name, dep_name, dep.condition,
            )

    deploy = svc.deploy
    if deploy is not None:
        if deploy.extras:
            log.warning("Ignoring: service %s: deploy: %s", svc.name, sorted(deploy.extras))
        if deploy.restart_policy is not None and deploy.restart_policy.extras:
            log.warning(
                "Ignoring: service %s: deploy.restart_policy: %s",
                svc.name, sorted(deploy.restart_policy.extras),
            )
        if deploy.resources.extras:
            log.warning(
                "Ignoring: service %s: deploy.resources: %s",
                svc.name, sorted(deploy.resources.extras),
            )
        limits = deploy.resources.limits
        if limits is not None and limits.extras:
            log.warning(
                "Ignoring: service %s: deploy.resources.resources: %s",
                svc.name, sorted(limits.extras),
            )


def _get_replicas(svc: ServiceConfig) -> int:
    replicas = 1
    if svc.scale > 0:
        log.warning("scale is deprecated, use deploy.replicas")
        replicas = svc.scale
    if svc.deploy is not None and svc.deploy.replicas is not None:
        if svc.scale > 0 and svc.deploy.replicas != svc.scale:
            raise ValueError("deploy.replicas and scale (deprecated) must not be set together")
        replicas = svc.deploy.replicas
    if replicas < 1:
        raise ValueError(f"invalid replicas: {replicas}")
    return replicas


def _get_cpu_limit(svc: ServiceConfig) -> str:
    limit = ""
    if svc.cpus > 0:
        log.warning("cpus is deprecated, use deploy.resources.limits.cpus")
        limit = f"{svc.cpus:f}"
    if svc.deploy is not None and svc.deploy.resources.limits is not None:
        nano_cpus = svc.deploy.resources.limits.nano_cpus
        if nano_cpus:
            if svc.cpus > 0:
                log.warning(
                    "deploy.resources.limits.cpus and cpus (deprecated) must not be set "
                    "together, ignoring cpus=%f",
                    svc.cpus,
                )
            limit = nano_cpus
    return limit


def _get_mem_limit(svc: ServiceConfig) -> int:
    limit = 0
    if svc.mem_limit > 0:
        log.warning("mem_limit is deprecated, use deploy.resources.limits.memory")
        limit = svc.mem_limit
    if svc.deploy is not None and svc.deploy.resources.limits is not None:
        memory_bytes = svc.deploy.resources.limits.memory_bytes
        if memory_bytes > 0:
            if svc.mem_limit > 0 and memory_bytes != svc.mem_limit:
                log.warning(
                    "deploy.resources.limits.memory and mem_limit (deprecated) must not be "
                    "set together, ignoring mem_limit=%d",
                    svc.mem_limit,
                )
            limit = memory_bytes
    return limit


def _get_restart(svc: ServiceConfig) -> str:
    """Return the `--restart` value ("no" or "always"), or "" to leave it unset."""
    flag = ""
    if svc.restart == "":
        flag = "no"
    elif svc.restart in ("no", "always"):
        flag = svc.restart
    elif svc.restart in ("on-failure", "unless-stopped"):
        log.warning("Ignoring: service %s: restart=%r (unimplemented)", svc.name, svc.restart)
    else:
        log.warning("Ignoring: service %s: restart=%r (unknown)", svc.name, svc.restart)

    if svc.deploy is not None and svc.deploy.restart_policy is not None:
        if svc.restart:
            log.warning(
                "deploy.restart_policy and restart must not be set together, "
                "ignoring restart=%s",
                svc.restart,
            )
        cond = svc.deploy.restart_policy.condition
        if cond in ("", "any"):
            flag = "always"
        elif cond == "always":
            raise ValueError(
                'deploy.restart_policy.condition: "always" is invalid, did you mean "any"?'
            )
        elif cond == "none":
            flag = "no"
        elif cond == "no":
            raise ValueError(
                'deploy.restart_policy.condition: "no" is invalid, did you mean "none"?'
            )
        elif cond == "on-failure":
            log.warning(
                "Ignoring: service %s: deploy.restart_policy.condition=%r (unimplemented)",
                svc.name, cond,
            )
        else:
            log.warning(
                "Ignoring: service %s: deploy.restart_policy.condition=%r (unknown)",
                svc.name, cond,
            )
    return flag


def _get_networks(project: Project, svc: ServiceConfig) -> list[str]:
    """Return full network names, e.g. ["proj_default"] or ["host"]."""
    full_names: list[str] = []
    if svc.net:
        log.warning("net is deprecated, use network_mode or networks")
        if svc.networks:
            raise ValueError("networks and net must not be set together")
        full_names.append(svc.net)

    if svc.network_mode:
        if svc.networks:
            raise ValueError("networks and network_mode must not be set together")
        if svc.net and svc.network_mode != svc.net:
            raise ValueError("net and network_mode must not be set together")
        if ":" in svc.network_mode:
            raise ValueError(f"unsupported network_mode: {svc.network_mode!r}")
        full_names.append(svc.network_mode)

    for short_name in svc.networks:
        net = project.networks.get(short_name)
        if net is None:
            raise ValueError(f"invalid network {short_name!r}")
        full_names.append(net.name)

    if len(full_names) > 1:
        raise ValueError(
            f"service {svc.name}: specifying multiple networks ({full_names}) "
            "is not supported yet"
        )
    return full_names


def parse(project: Project, svc: ServiceConfig) -> Service:
    """Parse *svc* of *project* into images, pull mode and replica containers."""
    _warn_unknown_fields(svc)
    replicas = _get_replicas(svc)

    parsed = Service(image=svc.image, pull_mode=PULL_POLICY_MISSING, unparsed=svc)

    if svc.build is None:
        if not parsed.image:
            raise ValueError(f"service {svc.name}: missing image")
    else:
        if not parsed.image:
            parsed.image = f"{project.name}_{svc.name}"
        try:
            parsed.build = parse_build_config(svc.build, project, parsed.image)
        except ValueError as exc:
            raise ValueError(f"service {svc.name}: failed to parse build: {exc}") from exc

    policy = svc.pull_policy
    if policy in ("", PULL_POLICY_MISSING, PULL_POLICY_IF_NOT_PRESENT):
        pass
    elif policy in (PULL_POLICY_ALWAYS, PULL_POLICY_NEVER):
        parsed.pull_mode = policy
    elif policy == PULL_POLICY_BUILD:
        if parsed.build is None:
            raise ValueError(
                f'service {svc.name}: pull_policy "build" requires build config'
            )
        parsed.build.force = True
        parsed.pull_mode = PULL_POLICY_NEVER
    else:
        log.warning("Ignoring: service %s: pull_policy: %r", svc.name, policy)

    parsed.containers = [_new_container(project, parsed, i) for i in range(replicas)]
    return parsed


def _new_container(project: Project, parsed: Service, index: int) -> Container:
    svc = parsed.unparsed
    assert svc is not None
    name = f"{project.name}_{svc.name}_{index + 1}"
    if svc.container_name:
        if index != 0:
            raise ValueError("container_name must not be specified when replicas != 1")
        name = svc.container_name

    # The image is ensured before the replicas are run, hence --pull=never.
    args = [f"--name={name}", "-d", "--pull=never"]
    args += [f"--cap-add={v}" for v in svc.cap_add]
    args += [f"--cap-drop={v}" for v in svc.cap_drop]

    cpu_limit = _get_cpu_limit(svc)
    if cpu_limit:
        args.append(f"--cpus={cpu_limit}")
    if svc.cpuset:
        args.append(f"--cpuset-cpus={svc.cpuset}")
    if svc.cpu_shares != 0:
        args.append(f"--cpu-shares={svc.cpu_shares}")
    args += [f"--dns={v}" for v in svc.dns]

    if len(svc.entrypoint) > 1:
        raise ValueError(
            f"service {svc.name}: specifying entrypoint with multiple strings "
            f"({svc.entrypoint}) is not supported yet"
        )
    args += [f"--entrypoint={v}" for v in svc.entrypoint]

    for key, value in svc.environment.items():
        args.append(f"-e={key}" if value is None else f"-e={key}={value}")

    args.append(f"--hostname={svc.hostname or svc.name}")

    mem_limit = _get_mem_limit(svc)
    if mem_limit > 0:
        args.append(f"-m={mem_limit}")

    for key, value in svc.labels.items():
        args.append(f"-l={key}" if value == "" else f"-l={key}={value}")

    args += [f"--net={net}" for net in _get_networks(project, svc)]

    if svc.pids_limit > 0:
        args.append(f"--pids-limit={svc.pids_limit}")
    args += ["-p=" + service_port_config_to_flag_p(p) for p in svc.ports]
    if svc.privileged:
        args.append("--privileged")
    if svc.read_only:
        args.append("--read-only")

    restart = _get_restart(svc)
    if restart:
        args.append(f"--restart={restart}")
    if svc.runtime:
        args.append(f"--runtime={svc.runtime}")
    args += [f"--security-opt={v}" for v in svc.security_opt]
    args += [f"--sysctl={k}={v}" for k, v in svc.sysctls.items()]
    if svc.user:
        args.append(f"--user={svc.user}")

    args += ["-v=" + service_volume_config_to_flag_v(v, project) for v in svc.volumes]
    args += ["-v=" + file_reference_config_to_flag_v(c, project, False) for c in svc.configs]
    args += ["-v=" + file_reference_config_to_flag_v(s, project, True) for s in svc.secrets]

    if svc.working_dir:
        args.append(f"-w={svc.working_dir}")

    args.append(parsed.image)
    args += svc.command
    return Container(name=name, run_args=args)


def service_port_config_to_flag_p(config: ServicePortConfig) -> str:
    """Return the `-p` value for a port, e.g. "127.0.0.1:8080:80/tcp"."""
    if config.extras:
        log.warning("Ignoring: port: %s", sorted(config.extras))
    if config.mode not in ("", "ingress"):
        raise ValueError(f"unsupported port mode: {config.mode}")
    if config.published <= 0:
        raise ValueError(f"unsupported port number: {config.published}")
    if config.target <= 0:
        raise ValueError(f"unsupported port number: {config.target}")
    text = f"{config.published}:{config.target}"
    if config.host_ip:
        if ":" in config.host_ip:
            text = f"[{config.host_ip}]:{text}"
        else:
            text = f"{config.host_ip}:{text}"
    if config.protocol:
        text = f"{text}/{config.protocol}"
    return text


def service_volume_config_to_flag_v(config: ServiceVolumeConfig, project: Project) -> str:
    """Return the `-v` value for a service volume."""
    if config.extras:
        log.warning("Ignoring: volume: %s", sorted(config.extras))
    if not config.target:
        raise ValueError("volume target is missing")
    if not os.path.isabs(config.target):
        raise ValueError(f"volume target must be an absolute path, got {config.target!r}")

    if not config.source:
        text = config.target
        return text + ":ro" if config.read_only else text

    if config.type == "volume":
        vol = project.volumes.get(config.source)
        if vol is None:
            raise ValueError(f"invalid volume {config.source!r}")
        src = vol.name
    elif config.type == "bind":
        src = os.path.abspath(project.relative_path(config.source))
    else:
        raise ValueError(f"unsupported volume type: {config.type!r}")
    text = f"{src}:{config.target}"
    return text + ":ro" if config.read_only else text


def file_reference_config_to_flag_v(
    config: FileReferenceConfig, project: Project, secret: bool
) -> str:
    """Return the read-only `-v` value that mounts a secret or config file."""
    obj_type = "secret" if secret else "config"
    if config.extras:
        log.warning("Ignoring: %s: %s", obj_type, sorted(config.extras))

    try:
        validate_identifier(config.source)
    except InvalidIdentifierError as exc:
        raise ValueError(f"{obj_type} source {config.source!r} is invalid: {exc}") from exc

    objects = project.secrets if secret else project.configs
    obj = objects.get(config.source)
    if obj is None:
        raise ValueError(f"{obj_type} {config.source} is undefined")
    src = os.path.abspath(project.relative_path(obj.file))

    target = config.target
    if not target:
        if secret:
            target = os.path.join("/run/secrets", config.source)
        else:
            target = os.path.join("/", config.source)
    else:
        target = os.path.normpath(target)
        if not os.path.isabs(target):
            if secret:
                target = os.path.join("/run/secrets", target)
            else:
                raise ValueError(
                    f"config {config.source}: target {config.target!r} must be an absolute path"
                )

    if config.uid:
        raise ValueError(f"{obj_type} {config.source}: unsupported field: UID")
    if config.gid:
        raise ValueError(f"{obj_type} {config.source}: unsupported field: GID")
    if config.mode is not None:
        raise ValueError(f"{obj_type} {config.source}: unsupported field: Mode")

    return f"{src}:{target}:ro"