"""
Flat JSON document store.

All FMEA entities live in one JSON file with one top-level list per
collection. The module provides get_db() / close_db() bound to the Flask
application context, mirroring a connection-per-request database layer.

Usage:
    db = get_db()
    with db.transaction() as data:
        data['causes'].append(cause)

Reads return a deep copy, so callers never mutate the on-disk state by
accident. Writes go to a temporary file that is renamed over the original.
"""

import copy
import json
import logging
import os
import tempfile
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict

from flask import current_app, g

logger = logging.getLogger(__name__)

COLLECTIONS = (
    'projects',
    'components',
    'failureModes',
    'causes',
    'effects',
    'controls',
    'actions',
)

# One lock per file path, shared across worker threads of the process
_locks: Dict[str, threading.RLock] = {}
_locks_guard = threading.Lock()


def _lock_for(path: str) -> threading.RLock:
    with _locks_guard:
        if path not in _locks:
            _locks[path] = threading.RLock()
        return _locks[path]


def generate_id() -> str:
    return str(uuid.uuid4())


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def empty_document() -> Dict[str, list]:
    return {name: [] for name in COLLECTIONS}


class JsonStore:
    """Read-modify-write access to the JSON data file."""

    def __init__(self, path: str):
        self.path = path
        self._lock = _lock_for(path)

    def _ensure_file(self):
        directory = os.path.dirname(self.path)
        if directory and not os.path.exists(directory):
            os.makedirs(directory, exist_ok=True)
        if not os.path.exists(self.path):
            self._write(empty_document())
            logger.info(f"Initialized empty data file at {self.path}")

    def _read(self) -> Dict[str, Any]:
        self._ensure_file()
        with open(self.path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        # Back-fill collections added after the file was created
        for name in COLLECTIONS:
            data.setdefault(name, [])
        return data

    def _write(self, data: Dict[str, Any]):
        directory = os.path.dirname(self.path) or '.'
        fd, tmp_path = tempfile.mkstemp(dir=directory, suffix='.tmp')
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_path, self.path)
        except Exception:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def read(self) -> Dict[str, Any]:
        """Return a snapshot of the whole document."""
        with self._lock:
            return copy.deepcopy(self._read())

    @contextmanager
    def transaction(self):
        """
        Yield the mutable document and persist it when the block exits
        without an exception. Nothing is written if the block raises.
        """
        with self._lock:
            data = self._read()
            yield data
            self._write(data)

    def reset(self):
        with self._lock:
            self._write(empty_document())


def get_db() -> JsonStore:
    """Get the store for the current application context."""
    db = getattr(g, '_database', None)
    if db is None:
        db = g._database = JsonStore(current_app.config['DATA_PATH'])
        logger.debug(f"Opened JSON store: {db.path}")
    return db


def close_db(e=None):
    """Release the store reference for the current application context."""
    db = getattr(g, '_database', None)
    if db is not None:
        g._database = None


def get_database_info() -> dict:
    """Return information about the current store configuration."""
    path = current_app.config['DATA_PATH']
    return {
        'type': 'json',
        'path': path,
        'exists': os.path.exists(path),
    }
