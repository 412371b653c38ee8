import json
from pathlib import Path
from typing import Dict

from loguru import logger

from ..application.ports import KeyValueStorage


class InMemoryStorage(KeyValueStorage):
    """Process-local storage, used by tests and ephemeral sessions."""

    def __init__(self, initial: Dict[str, str] | None = None) -> None:
        self._items: Dict[str, str] = dict(initial or {})

    def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)


class JsonFileStorage(KeyValueStorage):
    """Key/value strings persisted as one JSON object on disk.

    The file is re-read on every access so several processes see each
    other's writes. Writes go through a temporary file and an atomic rename.

    Parameters
    ----------
    path : Path
        Location of the JSON file. Parent directories are created on write.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> Dict[str, str]:
        if not self._path.exists():
            return {}

        items = json.loads(self._path.read_text(encoding="utf-8"))
        if not isinstance(items, dict):
            raise ValueError(f"{self._path} does not contain a JSON object")
        return items

    def _dump(self, items: Dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(items, indent=2), encoding="utf-8")
        tmp_path.replace(self._path)

    def get_item(self, key: str) -> str | None:
        value = self._load().get(key)
        if value is None:
            return None
        return value if isinstance(value, str) else json.dumps(value)

    def set_item(self, key: str, value: str) -> None:
        items = self._load()
        items[key] = value
        self._dump(items)
        logger.debug(f"Stored {key} in {self._path}")

    def remove_item(self, key: str) -> None:
        items = self._load()
        if items.pop(key, None) is not None:
            self._dump(items)
