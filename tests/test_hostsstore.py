import json
import os

import pytest

from nerdkit.hostsstore import (
    CNIResult,
    HostsStore,
    InterfaceConfig,
    IPConfig,
    Meta,
    alloc_hosts_file,
    create_line,
    dealloc_hosts_file,
    hosts_path,
)


def _meta(container_id, ip, network, hostname="", name=""):
    return Meta(
        namespace="default",
        container_id=container_id,
        networks={
            network: CNIResult(
                interfaces={"eth0": InterfaceConfig(ip_configs=[IPConfig(ip=ip)])}
            )
        },
        hostname=hostname,
        name=name,
    )


@pytest.mark.parametrize(
    "that_ip,that_network,that_hostname,that_name,my_network,expected",
    [
        ("10.4.2.2", "n1", "bar", "foo", "n1", "10.4.2.2\tbar bar.n1 foo foo.n1\n"),
        ("10.4.2.3", "n1", "bar", "", "n1", "10.4.2.3\tbar bar.n1\n"),
        ("10.4.2.4", "bridge", "bar", "", "n1", ""),
        ("10.4.2.5", "n1", "", "foo", "bridge", ""),
        ("10.4.2.6", "n1", "", "foo", "n2", ""),
    ],
)
def test_create_line(that_ip, that_network, that_hostname, that_name, my_network, expected):
    meta = _meta("984d63ce45ae", that_ip, that_network, that_hostname, that_name)
    assert create_line(that_ip, meta, {my_network}) == expected


def test_create_line_default_network_has_no_suffix():
    meta = _meta("984d63ce45ae", "10.4.0.2", "bridge", "bar", "foo")
    assert create_line("10.4.0.2", meta, {"bridge"}) == "10.4.0.2\tbar foo\n"


def test_meta_round_trip():
    meta = _meta("abc", "10.4.2.2", "n1", "bar", "foo")
    data = json.loads(json.dumps(meta.to_dict()))
    assert Meta.from_dict(data) == meta
    assert data["ID"] == "abc"
    assert data["Namespace"] == "default"


def test_hosts_path(tmp_path):
    assert hosts_path(str(tmp_path), "default", "abc") == os.path.join(
        str(tmp_path), "etchosts", "default", "abc", "hosts"
    )


@pytest.mark.parametrize("args", [("", "ns", "id"), ("/d", "", "id"), ("/d", "ns", "")])
def test_hosts_path_rejects_empty(args):
    with pytest.raises(ValueError):
        hosts_path(*args)


def test_alloc_and_dealloc(tmp_path):
    path = alloc_hosts_file(str(tmp_path), "default", "abc")
    assert path == hosts_path(str(tmp_path), "default", "abc")
    with open(path) as f:
        assert f.read() == ""
    dealloc_hosts_file(str(tmp_path), "default", "abc")
    assert not os.path.exists(os.path.dirname(path))
    dealloc_hosts_file(str(tmp_path), "default", "abc")
    assert not os.path.exists(os.path.dirname(path))


def _lines(path):
    with open(path) as f:
        return f.read().splitlines()


def test_store_acquire_and_release(tmp_path):
    store = HostsStore(str(tmp_path))
    store.acquire(_meta("aaa", "10.4.2.2", "n1", "a", "foo"))
    store.acquire(_meta("bbb", "10.4.2.3", "n1", "b"))
    store.acquire(_meta("ccc", "10.4.2.4", "n2", "c"))

    a_hosts = hosts_path(str(tmp_path), "default", "aaa")
    b_hosts = hosts_path(str(tmp_path), "default", "bbb")
    lines = _lines(a_hosts)
    assert lines[0] == "# <nerdctl>"
    assert lines[-1] == "# </nerdctl>"
    assert "10.4.2.2\ta a.n1 foo foo.n1" in lines
    assert "10.4.2.3\tb b.n1" in lines
    assert not any(line.startswith("10.4.2.4") for line in lines)
    assert "10.4.2.2\ta a.n1 foo foo.n1" in _lines(b_hosts)

    c_lines = _lines(hosts_path(str(tmp_path), "default", "ccc"))
    assert "10.4.2.4\tc c.n2" in c_lines
    assert not any(line.startswith("10.4.2.2") for line in c_lines)

    store.release("default", "bbb")
    assert os.path.exists(b_hosts)
    assert not os.path.exists(os.path.join(os.path.dirname(b_hosts), "meta.json"))
    assert not any(line.startswith("10.4.2.3") for line in _lines(a_hosts))


def test_store_release_unknown_is_noop(tmp_path):
    store = HostsStore(str(tmp_path))
    store.acquire(_meta("aaa", "10.4.2.2", "n1", "a"))
    a_hosts = hosts_path(str(tmp_path), "default", "aaa")
    before = _lines(a_hosts)
    store.release("default", "missing")
    assert _lines(a_hosts) == before


def test_store_skips_loopback(tmp_path):
    store = HostsStore(str(tmp_path))
    store.acquire(_meta("aaa", "127.0.0.1", "n1", "a"))
    lines = _lines(hosts_path(str(tmp_path), "default", "aaa"))
    assert len(lines) == 4
    assert not any(line.endswith("a.n1") for line in lines)


def test_store_meta_written(tmp_path):
    store = HostsStore(str(tmp_path))
    meta = _meta("aaa", "10.4.2.2", "n1", "a")
    store.acquire(meta)
    meta_path = os.path.join(str(tmp_path), "etchosts", "default", "aaa", "meta.json")
    with open(meta_path) as f:
        assert Meta.from_dict(json.load(f)) == meta