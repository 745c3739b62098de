"""JSON file backed key-value store, one namespace per account."""
import json
import os
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import Config


class JsonFileStore:
    """Local ``ConfigStore`` implementation for single-user setups and the CLI."""

    def __init__(self, path: Optional[str] = None):
        self.path = Path(path or Config.STORE_PATH)
        self._lock = threading.Lock()

    def _load(self) -> Dict[str, Dict[str, Any]]:
        if self.path.exists():
            with open(self.path, "r") as f:
                return json.load(f)
        return {}

    def _save(self, data: Dict[str, Dict[str, Any]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp, "w") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp, self.path)

    def get(self, account_id: str, key: str) -> Optional[Any]:
        with self._lock:
            return self._load().get(account_id, {}).get(key)

    def put(self, account_id: str, key: str, value: Any) -> None:
        with self._lock:
            data = self._load()
            data.setdefault(account_id, {})[key] = value
            self._save(data)

    def delete(self, account_id: str, key: str) -> None:
        with self._lock:
            data = self._load()
            if data.get(account_id, {}).pop(key, None) is not None:
                self._save(data)

    def list_keys(self, account_id: str, prefix: str = "") -> List[str]:
        with self._lock:
            return sorted(k for k in self._load().get(account_id, {}) if k.startswith(prefix))
