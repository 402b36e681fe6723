"""Durable key/value store backed by a JSON file."""

import json
import logging
from pathlib import Path
from typing import Any, Iterable, Optional

logger = logging.getLogger(__name__)


class SettingsStore:
    """Persists JSON-compatible values under string keys. Every write is saved."""

    def __init__(self, path: Path):
        self._store_path = Path(path)
        self._values: dict[str, Any] = {}
        self._load()

    def _load(self) -> None:
        if not self._store_path.exists():
            return

        try:
            data = json.loads(self._store_path.read_text())
            if not isinstance(data, dict):
                raise ValueError(f"expected an object, got {type(data).__name__}")
            self._values = data
            logger.info(f"Loaded {len(self._values)} settings from {self._store_path}")
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load settings, starting empty: {e}")

    def _save(self) -> None:
        try:
            tmp_path = self._store_path.with_suffix(".tmp")
            tmp_path.write_text(json.dumps(self._values, indent=2))
            tmp_path.replace(self._store_path)
        except OSError as e:
            logger.error(f"Failed to save settings: {e}")
            raise

    def get(self, key: str, default: Optional[Any] = None) -> Any:
        return self._values.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self.update({key: value})

    def unset(self, key: str) -> None:
        self.update({}, remove=[key])

    def update(self, values: dict[str, Any], remove: Iterable[str] = ()) -> None:
        """Apply several writes and removals in one save."""
        for key in remove:
            self._values.pop(key, None)
        self._values.update(values)
        self._save()
