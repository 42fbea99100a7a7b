import json
import os

import pytest

from nerdkit.netutil import (
    DEFAULT_CIDR,
    DEFAULT_NETWORK_NAME,
    CNIEnv,
    Network,
    NetworkConfigList,
    acquire_next_id,
    config_lists,
    default_config_list,
    generate_config_list,
    nerdctl_id,
)

BASIC = ["bridge", "portmap", "firewall", "tuning"]


def _make_plugins(directory, names, mode=0o755):
    for n in names:
        p = directory / n
        p.write_text("#!/bin/sh\n")
        p.chmod(mode)


@pytest.fixture
def cni_env(tmp_path):
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    _make_plugins(bin_dir, BASIC)
    return CNIEnv(path=str(bin_dir), netconf_path=str(tmp_path / "net.d"))


def _ipam_range(config_list):
    return config_list.plugins[0]["ipam"]["ranges"][0][0]


def test_default_config_list(cni_env):
    cl = default_config_list(cni_env)
    assert cl.name == DEFAULT_NETWORK_NAME
    assert cl.cni_version == "0.4.0"
    assert cl.nerdctl_id == 0
    assert cl.file == ""
    assert [p["type"] for p in cl.plugins] == BASIC
    assert cl.plugins[0]["bridge"] == "nerdctl0"
    assert _ipam_range(cl) == {"subnet": DEFAULT_CIDR, "gateway": "10.4.0.1"}


def test_generate_custom_network(cni_env):
    cl = generate_config_list(cni_env, 3, "foo", "10.5.7.0/24")
    assert cl.name == "foo"
    assert cl.nerdctl_id == 3
    assert cl.plugins[0]["bridge"] == "nerdctl3"
    assert _ipam_range(cl)["subnet"] == "10.5.7.0/24"
    assert _ipam_range(cl)["gateway"] == "10.5.7.1"
    assert nerdctl_id(cl.raw) == 3
    assert json.loads(cl.raw)["name"] == "foo"


def test_isolation_plugin_appended(cni_env):
    _make_plugins(__import_path(cni_env), ["isolation"])
    cl = generate_config_list(cni_env, 1, "foo", "10.5.7.0/24")
    assert [p["type"] for p in cl.plugins] == BASIC + ["isolation"]


def __import_path(env):
    from pathlib import Path

    return Path(env.path)


def test_missing_plugin(cni_env):
    os.remove(os.path.join(cni_env.path, "portmap"))
    with pytest.raises(FileNotFoundError, match="portmap"):
        default_config_list(cni_env)


def test_non_executable_plugin(cni_env):
    os.chmod(os.path.join(cni_env.path, "tuning"), 0o644)
    with pytest.raises(FileNotFoundError, match="tuning"):
        default_config_list(cni_env)


@pytest.mark.parametrize(
    "network_id,name,cidr",
    [(-1, "foo", DEFAULT_CIDR), (1, "", DEFAULT_CIDR), (1, "foo", "")],
)
def test_invalid_arguments(cni_env, network_id, name, cidr):
    with pytest.raises(ValueError):
        generate_config_list(cni_env, network_id, name, cidr)


def test_none_env():
    with pytest.raises(ValueError):
        generate_config_list(None, 1, "foo", DEFAULT_CIDR)


@pytest.mark.parametrize("cidr", ["not-a-cidr", "10.4.0.0", "10.4.0.0/99"])
def test_unparsable_cidr(cni_env, cidr):
    with pytest.raises(ValueError, match="failed to parse CIDR"):
        generate_config_list(cni_env, 1, "foo", cidr)


def test_non_canonical_cidr(cni_env):
    with pytest.raises(ValueError) as excinfo:
        generate_config_list(cni_env, 1, "foo", "10.4.0.5/24")
    assert DEFAULT_CIDR in str(excinfo.value)


def test_config_lists_without_netconf_dir(cni_env):
    lists = config_lists(cni_env)
    assert [cl.name for cl in lists] == [DEFAULT_NETWORK_NAME]
    assert acquire_next_id(lists) == 1


def test_config_lists_reads_files(cni_env):
    netconf = cni_env.netconf_path
    os.mkdir(netconf)
    with open(os.path.join(netconf, "b.conflist"), "w") as f:
        json.dump(
            {
                "cniVersion": "0.4.0",
                "name": "bbb",
                "nerdctlID": 5,
                "plugins": [{"type": "bridge"}],
            },
            f,
        )
    with open(os.path.join(netconf, "a.conf"), "w") as f:
        json.dump({"cniVersion": "0.4.0", "name": "aaa", "type": "bridge"}, f)
    with open(os.path.join(netconf, "c.txt"), "w") as f:
        f.write("ignored")
    os.mkdir(os.path.join(netconf, "d.json"))

    lists = config_lists(cni_env)
    assert [cl.name for cl in lists] == [DEFAULT_NETWORK_NAME, "aaa", "bbb"]
    assert [cl.nerdctl_id for cl in lists] == [0, None, 5]
    assert lists[1].file == os.path.join(netconf, "a.conf")
    assert lists[2].file == os.path.join(netconf, "b.conflist")
    assert lists[1].plugins[0]["type"] == "bridge"
    assert acquire_next_id(lists) == 6


def test_config_lists_invalid_file(cni_env):
    os.mkdir(cni_env.netconf_path)
    with open(os.path.join(cni_env.netconf_path, "x.conflist"), "w") as f:
        json.dump({"name": "x"}, f)
    with pytest.raises(ValueError, match="plugins"):
        config_lists(cni_env)


def test_config_lists_conf_without_type(cni_env):
    os.mkdir(cni_env.netconf_path)
    with open(os.path.join(cni_env.netconf_path, "x.conf"), "w") as f:
        json.dump({"name": "x"}, f)
    with pytest.raises(ValueError, match="type"):
        config_lists(cni_env)


def test_acquire_next_id_empty():
    assert acquire_next_id([]) == 1


def test_acquire_next_id_ignores_unmanaged():
    lists = [
        NetworkConfigList(name="a", cni_version="", plugins=[], raw=b"", nerdctl_id=None),
        NetworkConfigList(name="b", cni_version="", plugins=[], raw=b"", nerdctl_id=2),
    ]
    assert acquire_next_id(lists) == 3


@pytest.mark.parametrize(
    "data,expected",
    [
        (b'{"nerdctlID": 7}', 7),
        (b"{}", None),
        (b"not json", None),
        (b'{"nerdctlID": "7"}', None),
        (b'{"nerdctlID": null}', None),
        (b"[1, 2]", None),
    ],
)
def test_nerdctl_id(data, expected):
    assert nerdctl_id(data) == expected


def test_to_native(cni_env):
    cl = default_config_list(cni_env)
    native = cl.to_native()
    assert native == Network(cni=cl.raw, nerdctl_id=0, file="")