import json

import pytest

from notifications.infrastructure.storage import InMemoryStorage, JsonFileStorage


class TestInMemoryStorage:
    def test_round_trip(self):
        storage = InMemoryStorage({"a": "1"})
        storage.set_item("b", "2")
        storage.remove_item("a")
        storage.remove_item("missing")

        assert storage.get_item("a") is None
        assert storage.get_item("b") == "2"


class TestJsonFileStorage:
    def test_missing_file_reads_as_empty(self, tmp_path):
        storage = JsonFileStorage(tmp_path / "state.json")
        assert storage.get_item("notification-preferences") is None

    def test_writes_are_persisted(self, tmp_path):
        path = tmp_path / "nested" / "state.json"
        JsonFileStorage(path).set_item("key", '{"x": 1}')

        assert JsonFileStorage(path).get_item("key") == '{"x": 1}'
        assert json.loads(path.read_text()) == {"key": '{"x": 1}'}
        assert not path.with_suffix(".json.tmp").exists()

    def test_remove_item(self, tmp_path):
        storage = JsonFileStorage(tmp_path / "state.json")
        storage.set_item("a", "1")
        storage.set_item("b", "2")

        storage.remove_item("a")

        assert storage.get_item("a") is None
        assert storage.get_item("b") == "2"

    def test_corrupt_file_raises(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("{not json")

        with pytest.raises(ValueError):
            JsonFileStorage(path).get_item("key")

    def test_non_object_file_raises(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("[1, 2]")

        with pytest.raises(ValueError):
            JsonFileStorage(path).get_item("key")
