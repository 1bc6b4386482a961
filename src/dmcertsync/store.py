from __future__ import annotations

import json
import os
import sqlite3
import sys
from collections.abc import Mapping
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

import yaml

from dmcertsync.errors import ConfigError, WriteError
from dmcertsync.paths import StorePath

DEFAULT_DB_PATH = "~/.dmcertsync/store.db"

# Registry semantics: key paths and value names compare case-insensitively.
SCHEMA = """
CREATE TABLE IF NOT EXISTS store_keys (
  path TEXT PRIMARY KEY COLLATE NOCASE,
  parent TEXT COLLATE NOCASE,
  name TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS store_values (
  path TEXT NOT NULL COLLATE NOCASE,
  name TEXT NOT NULL COLLATE NOCASE,
  value TEXT NOT NULL,
  updated_at TEXT NOT NULL,
  PRIMARY KEY (path, name),
  FOREIGN KEY (path) REFERENCES store_keys(path) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_store_keys_parent ON store_keys(parent);
"""


class ConfigStore(Protocol):
    """Path-addressed key/value store holding enrollment configuration."""

    def get(self, path: StorePath, name: str) -> str | None: ...

    def set(self, path: StorePath, name: str, value: str) -> None: ...

    def children(self, path: StorePath) -> list[str]: ...


def utc_now() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


def resolve_db_path(path: str | None) -> Path:
    target = path or DEFAULT_DB_PATH
    expanded = os.path.expanduser(target)
    return Path(expanded)


def connect(db_path: Path) -> sqlite3.Connection:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


def init_db(db_path: Path) -> None:
    with connect(db_path) as conn:
        conn.executescript(SCHEMA)


def ensure_key(conn: sqlite3.Connection, path: StorePath) -> None:
    """Create the key and any missing ancestors, like RegCreateKeyEx."""
    for depth in range(1, len(path.parts) + 1):
        current = StorePath(path.hive, path.parts[:depth])
        parent = StorePath(path.hive, path.parts[: depth - 1])
        conn.execute(
            """
            INSERT INTO store_keys (path, parent, name)
            VALUES (?, ?, ?)
            ON CONFLICT(path) DO NOTHING
            """,
            (str(current), str(parent), current.parts[-1]),
        )


def get_value(conn: sqlite3.Connection, path: StorePath, name: str) -> str | None:
    row = conn.execute(
        "SELECT value FROM store_values WHERE path = ? AND name = ?",
        (str(path), name),
    ).fetchone()
    if not row:
        return None
    return str(row["value"])


def set_value(conn: sqlite3.Connection, path: StorePath, name: str, value: str) -> None:
    ensure_key(conn, path)
    conn.execute(
        """
        INSERT INTO store_values (path, name, value, updated_at)
        VALUES (?, ?, ?, ?)
        ON CONFLICT(path, name) DO UPDATE SET
          value=excluded.value,
          updated_at=excluded.updated_at
        """,
        (str(path), name, value, utc_now()),
    )


def list_children(conn: sqlite3.Connection, path: StorePath) -> list[str]:
    rows = conn.execute(
        "SELECT name FROM store_keys WHERE parent = ? ORDER BY name COLLATE NOCASE",
        (str(path),),
    ).fetchall()
    return [str(row["name"]) for row in rows]


def import_snapshot(conn: sqlite3.Connection, snapshot: Mapping[str, Any]) -> int:
    """Load `{path: {name: value}}` into the store. Returns the number of values written."""
    count = 0
    for raw_path in sorted(snapshot):
        path = StorePath.parse(raw_path)
        values = snapshot[raw_path] or {}
        if not isinstance(values, Mapping):
            raise ValueError(f"Values for {raw_path} must be a mapping")
        ensure_key(conn, path)
        for name, value in values.items():
            if value is None:
                value = ""
            if not isinstance(value, str):
                # YAML turns unquoted 0755 or yes into int or bool; str() would not round-trip.
                raise ValueError(
                    f"Value {raw_path}\\{name} must be a string, got {type(value).__name__} "
                    f"{value!r}; quote it in the snapshot"
                )
            set_value(conn, path, str(name), value)
            count += 1
    return count


def export_snapshot(conn: sqlite3.Connection) -> dict[str, dict[str, str]]:
    snapshot: dict[str, dict[str, str]] = {}
    keys = conn.execute("SELECT path FROM store_keys ORDER BY path COLLATE NOCASE").fetchall()
    for row in keys:
        snapshot[str(row["path"])] = {}
    values = conn.execute(
        "SELECT path, name, value FROM store_values ORDER BY path COLLATE NOCASE, name"
    ).fetchall()
    for row in values:
        snapshot.setdefault(str(row["path"]), {})[str(row["name"])] = str(row["value"])
    # Ancestors are recreated on import, so only leaves and keys with values are kept.
    parsed = [StorePath.parse(path) for path in snapshot]
    parents = {str(StorePath(path.hive, path.parts[:-1])) for path in parsed if path.parts}
    return {
        path: values
        for path, values in snapshot.items()
        if values or path not in parents
    }


def load_snapshot_file(path: Path) -> dict[str, Any]:
    text = path.read_text(encoding="utf-8")
    data = json.loads(text) if path.suffix.lower() == ".json" else yaml.safe_load(text)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError("Snapshot must be a mapping of key path to values")
    return data


class SqliteStore:
    """Offline configuration store backed by a SQLite file."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        init_db(db_path)

    def get(self, path: StorePath, name: str) -> str | None:
        with connect(self.db_path) as conn:
            return get_value(conn, path, name)

    def set(self, path: StorePath, name: str, value: str) -> None:
        try:
            with connect(self.db_path) as conn:
                set_value(conn, path, name, value)
        except sqlite3.Error as exc:
            raise WriteError(str(path), name, f"Failed to write {path}\\{name}: {exc}") from exc

    def children(self, path: StorePath) -> list[str]:
        with connect(self.db_path) as conn:
            return list_children(conn, path)

    def import_snapshot(self, snapshot: Mapping[str, Any]) -> int:
        with connect(self.db_path) as conn:
            return import_snapshot(conn, snapshot)

    def export_snapshot(self) -> dict[str, dict[str, str]]:
        with connect(self.db_path) as conn:
            return export_snapshot(conn)


_HIVES = {
    "HKLM": "HKEY_LOCAL_MACHINE",
    "HKEY_LOCAL_MACHINE": "HKEY_LOCAL_MACHINE",
    "HKCU": "HKEY_CURRENT_USER",
    "HKEY_CURRENT_USER": "HKEY_CURRENT_USER",
}


class RegistryStore:
    """The live Windows registry, read and written through `winreg`."""

    def __init__(self) -> None:
        if sys.platform != "win32":
            raise ConfigError("The registry store is only available on Windows")
        import winreg

        self._winreg = winreg

    def _hive(self, path: StorePath) -> Any:
        try:
            return getattr(self._winreg, _HIVES[path.hive])
        except KeyError as exc:
            raise ConfigError(f"Unsupported registry hive: {path.hive}") from exc

    def _access(self, mode: int) -> int:
        return mode | self._winreg.KEY_WOW64_64KEY

    def _read_access(self) -> int:
        return self._access(self._winreg.KEY_READ)

    def get(self, path: StorePath, name: str) -> str | None:
        winreg = self._winreg
        try:
            with winreg.OpenKey(self._hive(path), path.key, 0, self._read_access()) as key:
                value, _ = winreg.QueryValueEx(key, name)
        except FileNotFoundError:
            return None
        return None if value is None else str(value)

    def set(self, path: StorePath, name: str, value: str) -> None:
        winreg = self._winreg
        try:
            with winreg.CreateKeyEx(
                self._hive(path), path.key, 0, self._access(winreg.KEY_SET_VALUE)
            ) as key:
                winreg.SetValueEx(key, name, 0, winreg.REG_SZ, value)
        except OSError as exc:
            raise WriteError(str(path), name, f"Failed to write {path}\\{name}: {exc}") from exc

    def children(self, path: StorePath) -> list[str]:
        winreg = self._winreg
        names: list[str] = []
        try:
            with winreg.OpenKey(self._hive(path), path.key, 0, self._read_access()) as key:
                index = 0
                while True:
                    try:
                        names.append(winreg.EnumKey(key, index))
                    except OSError:
                        break
                    index += 1
        except FileNotFoundError:
            return []
        return sorted(names, key=str.lower)


def open_store(kind: str, store_path: str | None) -> ConfigStore:
    if kind == "registry":
        return RegistryStore()
    if kind == "sqlite":
        return SqliteStore(resolve_db_path(store_path))
    raise ConfigError(f"Unknown store backend: {kind}")

