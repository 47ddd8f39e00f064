import pytest

from depot_packer.exceptions import LoginStoreError
from depot_packer.storage.login_store import (
    LOGIN_PREFIX,
    LoginStore,
    decode_payload,
    encode_payload,
)


def test_save_load_delete(tmp_path):
    store = LoginStore(tmp_path / "conf")
    assert store.load() is None

    store.save("  alice ", "hunter2")

    raw = store.path.read_text(encoding="utf-8")
    assert raw.startswith(LOGIN_PREFIX)
    assert "hunter2" not in raw
    login = store.load()
    assert (login.username, login.password) == ("alice", "hunter2")

    assert store.delete() is True
    assert store.delete() is False
    assert store.load() is None


def test_payload_is_reversible():
    payload = encode_payload('{"username": "bob"}')
    assert decode_payload(payload + "\n") == '{"username": "bob"}'


@pytest.mark.parametrize("username,password", [("", "pw"), ("   ", "pw"), ("alice", "")])
def test_save_requires_credentials(tmp_path, username, password):
    store = LoginStore(tmp_path)
    with pytest.raises(LoginStoreError):
        store.save(username, password)
    assert not store.path.exists()


@pytest.mark.parametrize(
    "content",
    ["plain text", LOGIN_PREFIX + "zz", LOGIN_PREFIX + encode_payload("{}")[4:]],
)
def test_corrupt_file(tmp_path, content):
    store = LoginStore(tmp_path)
    store.path.write_text(content, encoding="utf-8")
    with pytest.raises(LoginStoreError):
        store.load()
