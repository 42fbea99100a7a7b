import os

import pytest

from nerdkit.ids import InvalidIdentifierError
from nerdkit.namestore import NameInUseError, NameStore


@pytest.fixture
def store(tmp_path):
    return NameStore(str(tmp_path), "default")


def test_directory_layout(tmp_path, store):
    assert store.directory == os.path.join(str(tmp_path), "names", "default")
    assert os.path.isdir(store.directory)


def test_acquire_writes_id(store):
    store.acquire("web", "id1")
    with open(os.path.join(store.directory, "web")) as f:
        assert f.read() == "id1"


def test_acquire_twice_raises(store):
    store.acquire("web", "id1")
    with pytest.raises(NameInUseError, match="id1"):
        store.acquire("web", "id2")


def test_release_by_other_id_raises_and_keeps_name(store):
    store.acquire("web", "id1")
    with pytest.raises(NameInUseError):
        store.release("web", "id2")
    assert os.path.exists(os.path.join(store.directory, "web"))


def test_release_then_reacquire(store):
    store.acquire("web", "id1")
    store.release("web", "id1")
    assert not os.path.exists(os.path.join(store.directory, "web"))
    store.acquire("web", "id2")
    with open(os.path.join(store.directory, "web")) as f:
        assert f.read() == "id2"


def test_release_empty_or_unknown_name_is_noop(store):
    store.acquire("web", "id1")
    store.release("", "id1")
    store.release("other", "id1")
    assert os.listdir(store.directory) == ["web"]


def test_untrimmed_id_rejected(store):
    with pytest.raises(ValueError, match="untrimmed"):
        store.acquire("web", " id1")
    with pytest.raises(ValueError, match="untrimmed"):
        store.release("web", "id1\n")


def test_invalid_name_rejected(store):
    with pytest.raises(InvalidIdentifierError):
        store.acquire("../etc", "id1")