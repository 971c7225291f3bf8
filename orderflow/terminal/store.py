"""
Terminal Local Store

Durable key-value namespaces for one terminal installation, kept as JSON
files under ``<root>/<terminal_id>/``:

    cart.json            cart lines keyed by item id
    catalog.json         cached menu items keyed by item id
    pending_deltas.json  inventory deltas waiting for checkout, keyed by item id

Every read-modify-write holds a per-namespace ``FileLock`` and writes through
a temp file + ``os.replace``, so a crash mid-write leaves the previous
contents intact.
"""

import json
import logging
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, Optional

from filelock import FileLock, Timeout

logger = logging.getLogger(__name__)

CART = "cart"
CATALOG = "catalog"
PENDING_DELTAS = "pending_deltas"

NAMESPACES = (CART, CATALOG, PENDING_DELTAS)


class TerminalStore:

    def __init__(self, root_dir, terminal_id: str, lock_timeout: int = 10):
        self.directory = Path(root_dir) / terminal_id
        self.lock_timeout = lock_timeout
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, namespace: str) -> Path:
        if namespace not in NAMESPACES:
            raise ValueError(f"Unknown terminal store namespace: {namespace}")
        return self.directory / f"{namespace}.json"

    @contextmanager
    def _locked(self, namespace: str) -> Iterator[None]:
        lock = FileLock(str(self._path(namespace)) + ".lock", timeout=self.lock_timeout)
        try:
            with lock:
                yield
        except Timeout:
            logger.error(f"Lock timeout ({self.lock_timeout}s) on terminal store {namespace}")
            raise

    def _read(self, namespace: str) -> Dict[str, Any]:
        path = self._path(namespace)
        if not path.exists():
            return {}
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Error reading {path}, starting empty: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, namespace: str, data: Dict[str, Any]) -> None:
        path = self._path(namespace)
        fd, tmp_path = tempfile.mkstemp(dir=self.directory, prefix=f".{namespace}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False)
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    def load(self, namespace: str) -> Dict[str, Any]:
        with self._locked(namespace):
            return self._read(namespace)

    def replace(self, namespace: str, data: Dict[str, Any]) -> None:
        with self._locked(namespace):
            self._write(namespace, data)

    def update(self, namespace: str, mutate: Callable[[Dict[str, Any]], Any]) -> Any:
        """
        Atomic read-modify-write. ``mutate`` edits the dict in place; its
        return value is passed back to the caller.
        """
        with self._locked(namespace):
            data = self._read(namespace)
            result = mutate(data)
            self._write(namespace, data)
            return result

    def get(self, namespace: str, key: str) -> Optional[Any]:
        return self.load(namespace).get(key)

    def put(self, namespace: str, key: str, value: Any) -> None:
        """Overwrite one key (latest write wins)."""
        def _put(data):
            data[key] = value
        self.update(namespace, _put)

    def delete(self, namespace: str, key: str) -> None:
        self.update(namespace, lambda data: data.pop(key, None))

    def clear(self, namespace: str) -> None:
        self.replace(namespace, {})

    def discard_consumed(self, namespace: str, consumed: Dict[str, Any]) -> int:
        """
        Remove the entries that were consumed, unless a newer write replaced
        them in the meantime. Returns how many were removed.
        """
        def _discard(data):
            removed = 0
            for key, value in consumed.items():
                if key in data and data[key] == value:
                    del data[key]
                    removed += 1
            return removed
        return self.update(namespace, _discard)
