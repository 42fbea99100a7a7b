import pytest

from nerdkit.dnsutil import write_resolv_conf


def test_writes_search_and_nameservers(tmp_path):
    path = tmp_path / "resolv.conf"
    write_resolv_conf(str(path), ["8.8.8.8", "::1"])
    assert path.read_text() == (
        "search localdomain\nnameserver 8.8.8.8\nnameserver ::1\n"
    )


def test_no_servers_writes_only_search(tmp_path):
    path = tmp_path / "resolv.conf"
    write_resolv_conf(str(path), [])
    assert path.read_text() == "search localdomain\n"


def test_overwrites_existing_file(tmp_path):
    path = tmp_path / "resolv.conf"
    path.write_text("old content that is longer than the new one\n" * 5)
    write_resolv_conf(str(path), ["1.1.1.1"])
    assert path.read_text().splitlines() == ["search localdomain", "nameserver 1.1.1.1"]


@pytest.mark.parametrize("bad", ["example.com", "999.1.1.1", ""])
def test_invalid_entry_raises_and_writes_nothing(tmp_path, bad):
    path = tmp_path / "resolv.conf"
    with pytest.raises(ValueError, match="invalid dns"):
        write_resolv_conf(str(path), ["8.8.8.8", bad])
    assert not path.exists()