"""CNI network configuration lists managed by nerdctl."""

from __future__ import annotations

import ipaddress
import json
import logging
import os
import stat
from dataclasses import dataclass, field
from string import Template
from typing import Any, Iterable, Optional

log = logging.getLogger(__name__)

DEFAULT_NETWORK_NAME = "bridge"
DEFAULT_ID = 0
DEFAULT_CIDR = "10.4.0.0/24"

_BASIC_PLUGINS = ("bridge", "portmap", "firewall", "tuning")
_CONF_EXTENSIONS = (".conf", ".conflist", ".json")
_ISOLATION_PLUGIN = ',\n    {\n      "type":"isolation"\n    }'

CONFIG_LIST_TEMPLATE = Template(
    """{
  "cniVersion": "0.4.0",
  "name": "${name}",
  "nerdctlID": ${id},
  "plugins": [
    {
      "type": "bridge",
      "bridge": "nerdctl${id}",
      "isGateway": true,
      "ipMasq": true,
      "hairpinMode": true,
      "ipam": {
        "type": "host-local",
        "routes": [{ "dst": "0.0.0.0/0" }],
        "ranges": [
          [
            {
              "subnet": "${subnet}",
              "gateway": "${gateway}"
            }
          ]
        ]
      }
    },
    {
      "type": "portmap",
      "capabilities": {
        "portMappings": true
      }
    },
    {
      "type": "firewall"
    },
    {
      "type": "tuning"
    }${extra_plugins}
  ]
}"""
)


@dataclass(frozen=True)
class CNIEnv:
    """Where CNI plugins and network configuration files live."""

    path: str
    netconf_path: str


@dataclass
class Network:
    """Inspectable form of a network configuration list."""

    cni: bytes = b""
    nerdctl_id: Optional[int] = None
    file: str = ""


@dataclass
class NetworkConfigList:
    """A parsed CNI configuration list, with nerdctl's ID and source file."""

    name: str
    cni_version: str
    plugins: list[dict[str, Any]]
    raw: bytes
    nerdctl_id: Optional[int] = None
    file: str = ""

    def to_native(self) -> Network:
        """Return the inspectable form of this list."""
        return Network(cni=self.raw, nerdctl_id=self.nerdctl_id, file=self.file)


def _load_json_object(data: bytes, what: str) -> dict[str, Any]:
    try:
        obj = json.loads(data)
    except ValueError as exc:
        raise ValueError(f"error parsing {what}: {exc}") from exc
    if not isinstance(obj, dict):
        raise ValueError(f"error parsing {what}: not a JSON object")
    return obj


def _conf_from_bytes(data: bytes) -> dict[str, Any]:
    conf = _load_json_object(data, "configuration")
    if not isinstance(conf.get("type"), str) or not conf["type"]:
        raise ValueError("error parsing configuration: missing 'type'")
    return conf


def _conf_list_from_bytes(data: bytes) -> NetworkConfigList:
    obj = _load_json_object(data, "configuration list")
    name = obj.get("name")
    if not isinstance(name, str) or not name:
        raise ValueError("error parsing configuration list: no name")
    cni_version = obj.get("cniVersion", "")
    if not isinstance(cni_version, str):
        raise ValueError("error parsing configuration list: invalid cniVersion type")
    if "plugins" not in obj:
        raise ValueError("error parsing configuration list: no 'plugins' key")
    plugins = obj["plugins"]
    if not isinstance(plugins, list):
        raise ValueError("error parsing configuration list: invalid 'plugins' type")
    if not plugins:
        raise ValueError("error parsing configuration list: no plugins in list")
    parsed = [_conf_from_bytes(json.dumps(p).encode()) for p in plugins]
    return NetworkConfigList(
        name=name, cni_version=cni_version, plugins=parsed, raw=bytes(data)
    )


def _conf_list_from_conf(conf: dict[str, Any]) -> NetworkConfigList:
    wrapped = {
        "cniVersion": conf.get("cniVersion", ""),
        "name": conf.get("name", ""),
        "plugins": [conf],
    }
    return _conf_list_from_bytes(json.dumps(wrapped, sort_keys=True).encode())


def _read_file(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read()


def _conf_files(directory: str, extensions: Iterable[str]) -> list[str]:
    exts = tuple(extensions)
    found = []
    for entry in os.scandir(directory):
        if entry.is_dir():
            continue
        if os.path.splitext(entry.name)[1] in exts:
            found.append(os.path.join(directory, entry.name))
    return sorted(found)


def _look_path(path: str) -> None:
    try:
        st = os.stat(path)
    except OSError as exc:
        raise FileNotFoundError(exc.errno, f"executable file not found: {path}") from exc
    if stat.S_ISDIR(st.st_mode) or not st.st_mode & 0o111:
        raise FileNotFoundError(f"executable file not found: {path}")


def _is_executable(path: str) -> bool:
    try:
        _look_path(path)
    except FileNotFoundError:
        return False
    return True


def _parse_cidr(cidr: str) -> ipaddress.IPv4Interface | ipaddress.IPv6Interface:
    _, sep, prefix = cidr.partition("/")
    if not sep or not prefix.isdigit():
        raise ValueError(f"failed to parse CIDR {cidr!r}")
    try:
        return ipaddress.ip_interface(cidr)
    except ValueError:
        raise ValueError(f"failed to parse CIDR {cidr!r}") from None


def generate_config_list(
    env: Optional[CNIEnv], network_id: int, name: str, cidr: str
) -> NetworkConfigList:
    """Create a bridge network configuration list; the file field is left empty."""
    if env is None or network_id < 0 or not name or not cidr:
        raise ValueError("invalid argument")
    for plugin in _BASIC_PLUGINS:
        try:
            _look_path(os.path.join(env.path, plugin))
        except FileNotFoundError as exc:
            raise FileNotFoundError(
                f"needs CNI plugin {plugin!r} to be installed in CNI_PATH ({env.path!r}): {exc}"
            ) from exc

    extra_plugins = ""
    if _is_executable(os.path.join(env.path, "isolation")):
        log.debug("found CNI isolation plugin")
        extra_plugins = _ISOLATION_PLUGIN
    elif name != DEFAULT_NETWORK_NAME:
        log.warning(
            'To isolate bridge networks, CNI plugin "isolation" needs to be installed '
            "in CNI_PATH (%r)",
            env.path,
        )

    iface = _parse_cidr(cidr)
    subnet = iface.network
    if iface.ip != subnet.network_address:
        raise ValueError(f"unexpected CIDR {cidr!r}, maybe you meant {str(subnet)!r}?")
    packed = bytearray(subnet.network_address.packed)
    packed[3] = (packed[3] + 1) & 0xFF
    gateway = ipaddress.ip_address(bytes(packed))

    text = CONFIG_LIST_TEMPLATE.substitute(
        name=name,
        id=network_id,
        subnet=str(subnet),
        gateway=str(gateway),
        extra_plugins=extra_plugins,
    )
    config_list = _conf_list_from_bytes(text.encode())
    config_list.nerdctl_id = network_id
    config_list.file = ""
    return config_list


def default_config_list(env: Optional[CNIEnv]) -> NetworkConfigList:
    """Return the built-in default bridge network."""
    return generate_config_list(env, DEFAULT_ID, DEFAULT_NETWORK_NAME, DEFAULT_CIDR)


def config_lists(env: CNIEnv) -> list[NetworkConfigList]:
    """Return the default network followed by those in env.netconf_path, by file name."""
    result = [default_config_list(env)]
    try:
        os.stat(env.netconf_path)
    except FileNotFoundError:
        return result
    for file_name in _conf_files(env.netconf_path, _CONF_EXTENSIONS):
        data = _read_file(file_name)
        if file_name.endswith(".conflist"):
            config_list = _conf_list_from_bytes(data)
        else:
            config_list = _conf_list_from_conf(_conf_from_bytes(data))
        config_list.nerdctl_id = nerdctl_id(config_list.raw)
        config_list.file = file_name
        result.append(config_list)
    return result


def acquire_next_id(lists: Iterable[NetworkConfigList]) -> int:
    """Suggest the next free nerdctl network ID."""
    max_id = DEFAULT_ID
    for config_list in lists:
        if config_list.nerdctl_id is not None and config_list.nerdctl_id > max_id:
            max_id = config_list.nerdctl_id
    return max_id + 1


def nerdctl_id(data: bytes) -> Optional[int]:
    """Return the nerdctlID in a config list, or None for networks managed elsewhere."""
    try:
        obj = json.loads(data)
    except ValueError:
        return None
    if not isinstance(obj, dict):
        return None
    value = obj.get("nerdctlID")
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None