"""
Durable client-side key/value storage backed by one JSON file, the dashboard's
equivalent of browser localStorage. Values are strings; callers serialize.
"""
import json
import logging
import os
import tempfile
import threading

logger = logging.getLogger(__name__)


class LocalStorage:
    def __init__(self, path: str):
        self.path = path
        self._lock = threading.Lock()

    def _read_all(self) -> dict[str, str]:
        try:
            with open(self.path, encoding="utf-8") as fh:
                data = json.load(fh)
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as e:
            logger.warning("Local storage at %s unreadable, starting empty: %s", self.path, e)
            return {}
        if not isinstance(data, dict):
            return {}
        return {k: v for k, v in data.items() if isinstance(v, str)}

    def _write_all(self, data: dict[str, str]) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".storage-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def get_item(self, key: str) -> str | None:
        with self._lock:
            return self._read_all().get(key)

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            data = self._read_all()
            data[key] = value
            self._write_all(data)

    def remove_item(self, key: str) -> None:
        with self._lock:
            data = self._read_all()
            if key in data:
                del data[key]
                self._write_all(data)
