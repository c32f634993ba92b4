"""Thread-safe YAML configuration with dotted keys and optional file watching."""

from __future__ import annotations

import copy
import logging
import os
import re
import threading
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Optional

import yaml
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

_LOG = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "./conf/conf.yaml"

_MISSING = object()
_TRUE_WORDS = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE_WORDS = {"0", "f", "F", "FALSE", "false", "False"}
_DURATION_UNITS = {
    "ns": 1,
    "us": 1_000,
    "µs": 1_000,
    "μs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60_000_000_000,
    "h": 3_600_000_000_000,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")
_WATCHED_EVENTS = {"modified", "created", "moved"}


def _lower_keys(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k).lower(): _lower_keys(v) for k, v in value.items()}
    return value


def _to_str(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (str, int, float)):
        return str(value)
    return ""


def _parse_duration(text: str) -> Optional[int]:
    """Return nanoseconds of a duration such as ``1h30m``; None if malformed."""
    text = text.strip()
    sign = 1
    if text[:1] in "+-" and text:
        sign = -1 if text[0] == "-" else 1
        text = text[1:]
    if text == "0":
        return 0
    if not text:
        return None
    total = 0.0
    pos = 0
    while pos < len(text):
        match = _DURATION_PART.match(text, pos)
        if match is None:
            return None
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    return sign * int(total)


class _ReloadHandler(FileSystemEventHandler):
    def __init__(self, target: Path, on_change: Callable[[], None]) -> None:
        super().__init__()
        self._target = target
        self._on_change = on_change

    def on_any_event(self, event: Any) -> None:
        if event.is_directory or event.event_type not in _WATCHED_EVENTS:
            return
        paths = [event.src_path, getattr(event, "dest_path", "")]
        for raw in paths:
            if raw and Path(os.fsdecode(raw)).resolve() == self._target:
                self._on_change()
                return


class ConfigManager:
    """Holds the settings read from a YAML file; keys are case-insensitive."""

    def __init__(self, path: str = DEFAULT_CONFIG_PATH) -> None:
        self._lock = threading.RLock()
        self._path = str(path)
        self._settings: dict[str, Any] = {}
        self._observer: Optional[Any] = None
        self.last_load_time: Optional[datetime] = None

    @property
    def path(self) -> str:
        """Path of the configuration file."""
        with self._lock:
            return self._path

    @path.setter
    def path(self, value: str) -> None:
        with self._lock:
            self._path = str(value)

    @property
    def watch_enabled(self) -> bool:
        """Whether the file is being watched for changes."""
        with self._lock:
            return self._observer is not None

    def load(self) -> None:
        """Read the file; a missing file leaves the settings empty.

        Raises ValueError when the file cannot be read or parsed.
        """
        with self._lock:
            try:
                text = Path(self._path).read_text(encoding="utf-8")
            except FileNotFoundError:
                self._settings = {}
                self.last_load_time = datetime.now()
                return
            except OSError as exc:
                raise ValueError(f"failed to read config file: {exc}") from exc
            try:
                data = yaml.safe_load(text)
            except yaml.YAMLError as exc:
                raise ValueError(f"failed to parse config file: {exc}") from exc
            if data is None:
                data = {}
            if not isinstance(data, dict):
                raise ValueError("failed to parse config file: top level is not a mapping")
            self._settings = _lower_keys(data)
            self.last_load_time = datetime.now()

    def _lookup(self, key: str) -> Any:
        with self._lock:
            node: Any = self._settings
            for part in key.lower().split("."):
                if not isinstance(node, dict) or part not in node:
                    return _MISSING
                node = node[part]
            return node

    def get(self, key: str, default: Any = None) -> Any:
        """Return the value at a dotted key, or ``default`` if it is not set."""
        value = self._lookup(key)
        return default if value is _MISSING else copy.deepcopy(value)

    def get_str(self, key: str) -> str:
        """Return the value as text; empty if unset or not a scalar."""
        return _to_str(self.get(key))

    def get_int(self, key: str) -> int:
        """Return the value as an integer; 0 if it cannot be converted."""
        value = self.get(key)
        if isinstance(value, (bool, int)):
            return int(value)
        if isinstance(value, float):
            return int(value)
        if isinstance(value, str):
            try:
                return int(value.strip(), 0)
            except ValueError:
                return 0
        return 0

    def get_bool(self, key: str) -> bool:
        """Return the value as a boolean; False if it cannot be converted."""
        value = self.get(key)
        if isinstance(value, bool):
            return value
        if isinstance(value, (int, float)):
            return value != 0
        if isinstance(value, str):
            return value.strip() in _TRUE_WORDS
        return False

    def get_float(self, key: str) -> float:
        """Return the value as a float; 0.0 if it cannot be converted."""
        value = self.get(key)
        if isinstance(value, (bool, int, float)):
            return float(value)
        if isinstance(value, str):
            try:
                return float(value.strip())
            except ValueError:
                return 0.0
        return 0.0

    def get_list(self, key: str) -> list[str]:
        """Return the value as a list of strings; text is split on whitespace."""
        value = self.get(key)
        if isinstance(value, list):
            return [_to_str(item) for item in value]
        if isinstance(value, str):
            return value.split()
        return []

    def get_mapping(self, key: str) -> dict[str, Any]:
        """Return the value as a mapping; empty if it is not one."""
        value = self.get(key)
        return value if isinstance(value, dict) else {}

    def get_duration(self, key: str) -> timedelta:
        """Return the value as a duration.

        Numbers count nanoseconds; text takes units ``ns us ms s m h``.
        """
        value = self.get(key)
        nanos: Optional[int] = None
        if isinstance(value, bool):
            nanos = None
        elif isinstance(value, (int, float)):
            nanos = int(value)
        elif isinstance(value, str):
            text = value.strip()
            if any(ch in text for ch in "nsuµμmh"):
                nanos = _parse_duration(text)
            else:
                try:
                    nanos = int(text)
                except ValueError:
                    nanos = None
        if nanos is None:
            return timedelta(0)
        return timedelta(microseconds=nanos / 1000)

    def is_set(self, key: str) -> bool:
        """Return whether a value exists at the dotted key."""
        return self._lookup(key) is not _MISSING

    def all_settings(self) -> dict[str, Any]:
        """Return a copy of every setting."""
        with self._lock:
            return copy.deepcopy(self._settings)

    def log_path(self) -> str:
        """Return ``log.path`` with ``${...}`` references expanded."""
        return expand_variables(self, self.get_str("log.path"))

    def _reload_and_notify(self, callback: Optional[Callable[[], None]]) -> None:
        try:
            self.load()
        except ValueError as exc:
            _LOG.error("failed to reload config: %s", exc)
            return
        if callback is not None:
            callback()

    def enable_watch(self, callback: Optional[Callable[[], None]] = None) -> None:
        """Reload the file, then call ``callback``, whenever the file changes."""
        with self._lock:
            if self._observer is not None:
                return
            target = Path(self._path).resolve()
            handler = _ReloadHandler(target, lambda: self._reload_and_notify(callback))
            observer = Observer()
            observer.schedule(handler, str(target.parent), recursive=False)
            observer.daemon = True
            observer.start()
            self._observer = observer

    def disable_watch(self) -> None:
        """Stop watching the file and reload it once."""
        with self._lock:
            observer = self._observer
            self._observer = None
        if observer is None:
            return
        observer.stop()
        observer.join()
        try:
            self.load()
        except ValueError as exc:
            _LOG.error("failed to reload config: %s", exc)


def expand_variables(manager: ConfigManager, text: str) -> str:
    """Replace each ``${dotted.key}`` in ``text`` with that setting's text."""
    result = text
    while True:
        start = result.find("${")
        if start == -1:
            break
        end = result.find("}", start)
        if end == -1:
            break
        name = result[start + 2:end]
        result = result[:start] + manager.get_str(name) + result[end + 1:]
    return result