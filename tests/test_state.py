import threading

import pytest
import yaml

import sshkey.state
from sshkey import ConfigurationError, MemoryStore, StateStoreError, YamlFileStore
from sshkey.state import parse_path, union


def test_parse_path():
    assert parse_path("a.b.c") == ("a", "b", "c")
    assert parse_path(["host", "db01.example.com"]) == ("host", "db01.example.com")
    with pytest.raises(ConfigurationError):
        parse_path("")


def test_union():
    assert union(None, "k1") == ["k1"]
    assert union(["k2", "k1"], "k1") == ["k1", "k2"]
    assert union("k0", "k1") == ["k0", "k1"]
    with pytest.raises(StateStoreError):
        union({"a": 1}, "k1")


def test_memory_store_get_set_update():
    s = MemoryStore()
    assert s.get("a.b") is None
    assert s.get("a.b", default=[]) == []
    s.set("a.b", "x")
    assert s.get(("a", "b")) == "x"
    assert s.update("a.c", lambda v: union(v, "k")) == ["k"]
    assert s.data == {"a": {"b": "x", "c": ["k"]}}


def test_get_returns_a_copy():
    s = MemoryStore()
    s.set("keys", ["a"])
    s.get("keys").append("b")
    assert s.get("keys") == ["a"]


def test_path_through_scalar_is_an_error():
    s = MemoryStore({"a": "scalar"})
    with pytest.raises(StateStoreError):
        s.set("a.b", 1)
    with pytest.raises(StateStoreError):
        s.get("a.b")


def test_concurrent_updates_do_not_lose_keys():
    s = MemoryStore()

    def publish(i):
        s.update("trust.all", lambda v: union(v, f"key-{i:02d}"))

    threads = [threading.Thread(target=publish, args=(i,)) for i in range(20)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert s.get("trust.all") == [f"key-{i:02d}" for i in range(20)]


def test_yaml_store_persists(tmp_path):
    path = tmp_path / "state" / "keys.yml"
    s = YamlFileStore(path)
    assert s.get("trust.deploy") is None
    s.update("trust.deploy", lambda v: union(v, "ssh-rsa AAAA a@b"))
    s.set(("host", "db01.example.com", "user", "bob", "id_rsa"), "ssh-rsa AAAA bob@db01")

    again = YamlFileStore(path)
    assert again.get("trust.deploy") == ["ssh-rsa AAAA a@b"]
    assert again.get(("host", "db01.example.com", "user", "bob", "id_rsa")) == (
        "ssh-rsa AAAA bob@db01"
    )
    assert (tmp_path / "state" / "keys.yml.lock").exists()


def test_yaml_store_rejects_non_mapping(tmp_path):
    path = tmp_path / "keys.yml"
    path.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(StateStoreError):
        YamlFileStore(path).get("a")


def test_yaml_store_rejects_broken_yaml(tmp_path):
    path = tmp_path / "keys.yml"
    path.write_text("a: [unclosed\n", encoding="utf-8")
    with pytest.raises(StateStoreError):
        YamlFileStore(path).set("a", 1)


def test_union_rejects_non_string_items():
    with pytest.raises(StateStoreError):
        union(["a", 1], "b")
    with pytest.raises(StateStoreError):
        MemoryStore({"trust": ["a", {"b": 1}]}).update("trust", lambda v: union(v, "c"))


def test_yaml_store_failed_write_leaves_no_temp_file(tmp_path, monkeypatch):
    path = tmp_path / "keys.yml"
    s = YamlFileStore(path)
    s.set("a", 1)

    def broken_dump(*args, **kwargs):
        raise yaml.YAMLError("cannot represent")

    monkeypatch.setattr(sshkey.state.yaml, "safe_dump", broken_dump)
    with pytest.raises(StateStoreError):
        s.set("b", 2)

    assert sorted(p.name for p in tmp_path.iterdir()) == ["keys.yml", "keys.yml.lock"]
    assert yaml.safe_load(path.read_text(encoding="utf-8")) == {"a": 1}
