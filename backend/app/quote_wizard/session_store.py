"""Local cache of in-progress wizard answers.

The cache is a recoverability aid, not a source of truth: it holds the
serialized ``answers`` map only, keyed by owner and service slug.  File
bytes, the draft id and attachment metadata are never written here.
Writes are last-write-wins.  Entries written without an owner share one
unscoped key per service and are only suitable for single-user processes.
"""

import json
import logging
import os
import re
from typing import Dict, Optional, Protocol

logger = logging.getLogger(__name__)

KEY_PREFIX = "quote-draft:"


class CacheBackend(Protocol):
    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


class MemoryCacheBackend:
    """Process-local backend, used by tests and by default."""

    def __init__(self) -> None:
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return key in self._data


class FileCacheBackend:
    """One JSON file per key under ``directory``."""

    _UNSAFE = re.compile(r"[^A-Za-z0-9_.-]")

    def __init__(self, directory: str) -> None:
        self.directory = directory
        os.makedirs(directory, exist_ok=True)

    def _path(self, key: str) -> str:
        return os.path.join(self.directory, self._UNSAFE.sub("_", key) + ".json")

    def get(self, key: str) -> Optional[str]:
        try:
            with open(self._path(key), "r", encoding="utf-8") as fh:
                return fh.read()
        except FileNotFoundError:
            return None

    def set(self, key: str, value: str) -> None:
        path = self._path(key)
        tmp_path = path + ".tmp"
        with open(tmp_path, "w", encoding="utf-8") as fh:
            fh.write(value)
        os.replace(tmp_path, path)

    def delete(self, key: str) -> None:
        try:
            os.remove(self._path(key))
        except FileNotFoundError:
            pass


class DraftSessionStore:
    """Load / persist / clear cached answers for one owner and service at a time."""

    def __init__(self, backend: Optional[CacheBackend] = None) -> None:
        self.backend = backend if backend is not None else MemoryCacheBackend()

    @staticmethod
    def key_for(service_slug: str, owner_id: Optional[str] = None) -> str:
        if owner_id:
            return f"{KEY_PREFIX}{owner_id}:{service_slug}"
        return f"{KEY_PREFIX}{service_slug}"

    def load(self, service_slug: str, owner_id: Optional[str] = None) -> Dict[str, str]:
        """Return cached answers, or ``{}`` if nothing usable is cached."""
        raw = self.backend.get(self.key_for(service_slug, owner_id))
        if not raw:
            return {}
        try:
            data = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Discarding unreadable draft cache for service %s", service_slug)
            return {}
        if not isinstance(data, dict):
            logger.warning("Discarding malformed draft cache for service %s", service_slug)
            return {}
        return {str(k): str(v) for k, v in data.items() if v is not None}

    def save(
        self, service_slug: str, answers: Dict[str, str], owner_id: Optional[str] = None
    ) -> None:
        self.backend.set(
            self.key_for(service_slug, owner_id),
            json.dumps(dict(answers), ensure_ascii=False),
        )

    def clear(self, service_slug: str, owner_id: Optional[str] = None) -> None:
        self.backend.delete(self.key_for(service_slug, owner_id))


def build_session_store(cache_dir: Optional[str] = None) -> DraftSessionStore:
    """File-backed store when ``cache_dir`` is given, in-memory otherwise."""
    if cache_dir:
        return DraftSessionStore(FileCacheBackend(cache_dir))
    return DraftSessionStore(MemoryCacheBackend())
