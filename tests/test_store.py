import json

from barleybox.store import JsonFileStore, MemoryStore, config_key


def test_config_key():
    assert config_key("box1") == "config_box1"


def test_memory_store():
    store = MemoryStore({"deviceId": "box1"})
    assert store.get("deviceId") == "box1"
    assert store.get("mqttBroker") is None

    store.set("mqttBroker", "broker.example.com")
    assert store.get("mqttBroker") == "broker.example.com"


def test_json_store_persists_across_instances(tmp_path):
    path = tmp_path / "data" / "barleybox.json"
    store = JsonFileStore(path)
    store.set("deviceId", "box1")
    store.set("config_box1", '{"T_heat_on":18.0}')

    assert json.loads(path.read_text()) == {"deviceId": "box1", "config_box1": '{"T_heat_on":18.0}'}

    reloaded = JsonFileStore(path)
    assert reloaded.get("deviceId") == "box1"
    assert reloaded.get("config_box1") == '{"T_heat_on":18.0}'


def test_json_store_starts_empty_on_unreadable_file(tmp_path):
    path = tmp_path / "barleybox.json"
    path.write_text("{not json")
    assert JsonFileStore(path).get("deviceId") is None

    path.write_text('["box1"]')
    assert JsonFileStore(path).get("deviceId") is None


def test_json_store_skips_non_string_values(tmp_path):
    path = tmp_path / "barleybox.json"
    path.write_text('{"deviceId": "box1", "mqttBroker": 42}')

    store = JsonFileStore(path)
    assert store.get("deviceId") == "box1"
    assert store.get("mqttBroker") is None


def test_json_store_keeps_value_in_memory_when_write_fails(tmp_path):
    path = tmp_path / "barleybox.json"
    path.mkdir()  # a directory can be neither read nor written as the store file

    store = JsonFileStore(path)
    store.set("deviceId", "box1")

    assert store.get("deviceId") == "box1"
    assert path.is_dir()
