"""
sshkey - state

Process-wide parameter store shared between hosts of a run (and, with the
YAML backend, between runs). Values live in a nested mapping addressed by a
tuple path; `update()` is the read-modify-write primitive used for set
unions and is serialized per store.
"""

from __future__ import annotations

import contextlib
import copy
import fcntl
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, Optional, Sequence, Tuple, Union

import yaml

from .errors import ConfigurationError, StateStoreError

ParamPath = Tuple[str, ...]
PathLike = Union[str, Sequence[str]]


def parse_path(p: PathLike) -> ParamPath:
    if isinstance(p, str):
        parts = tuple(x for x in p.split(".") if x)
    else:
        parts = tuple(str(x) for x in p)
    if not parts:
        raise ConfigurationError(f"Empty parameter path: {p!r}")
    return parts


def tree_get(tree: Dict[str, Any], path: ParamPath) -> Any:
    cur: Any = tree
    for i, part in enumerate(path):
        if cur is None:
            return None
        if not isinstance(cur, dict):
            raise StateStoreError(
                f"parameter path {'.'.join(path[:i])} is not a mapping"
            )
        cur = cur.get(part)
    return cur


def tree_set(tree: Dict[str, Any], path: ParamPath, value: Any) -> None:
    cur = tree
    for i, part in enumerate(path[:-1]):
        nxt = cur.setdefault(part, {})
        if not isinstance(nxt, dict):
            raise StateStoreError(
                f"parameter path {'.'.join(path[: i + 1])} is not a mapping"
            )
        cur = nxt
    cur[path[-1]] = value


def union(existing: Any, item: str) -> list:
    """Set-union `item` into a stored collection, kept as a sorted list."""
    if existing is None:
        existing = []
    if isinstance(existing, str):
        existing = [existing]
    if not isinstance(existing, (list, tuple, set)):
        raise StateStoreError(f"stored value is not a collection: {existing!r}")
    bad = [x for x in existing if not isinstance(x, str)]
    if bad:
        raise StateStoreError(f"stored collection holds non-string items: {bad!r}")
    return sorted(set(existing) | {item})


class ParameterStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()

    @contextlib.contextmanager
    def _locked(self) -> Iterator[None]:
        with self._lock:
            yield

    def _read(self) -> Dict[str, Any]:
        raise NotImplementedError

    def _write(self, tree: Dict[str, Any]) -> None:
        raise NotImplementedError

    def get(self, path: PathLike, default: Any = None) -> Any:
        p = parse_path(path)
        with self._locked():
            v = tree_get(self._read(), p)
        return default if v is None else copy.deepcopy(v)

    def set(self, path: PathLike, value: Any) -> None:
        p = parse_path(path)
        with self._locked():
            tree = self._read()
            tree_set(tree, p, value)
            self._write(tree)

    def update(self, path: PathLike, fn: Callable[[Any], Any]) -> Any:
        p = parse_path(path)
        with self._locked():
            tree = self._read()
            value = fn(copy.deepcopy(tree_get(tree, p)))
            tree_set(tree, p, value)
            self._write(tree)
        return value


class MemoryStore(ParameterStore):
    def __init__(self, data: Optional[Dict[str, Any]] = None) -> None:
        super().__init__()
        self.data: Dict[str, Any] = data if data is not None else {}

    def _read(self) -> Dict[str, Any]:
        return self.data

    def _write(self, tree: Dict[str, Any]) -> None:
        self.data = tree


class YamlFileStore(ParameterStore):
    """YAML document on disk, locked with flock so parallel runs merge safely."""

    def __init__(self, path: Union[str, Path]) -> None:
        super().__init__()
        self.path = Path(path).expanduser()
        self.lock_path = self.path.with_name(self.path.name + ".lock")

    @contextlib.contextmanager
    def _locked(self) -> Iterator[None]:
        with self._lock:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                fd = os.open(self.lock_path, os.O_RDWR | os.O_CREAT, 0o600)
            except OSError as ex:
                raise StateStoreError(f"cannot lock {self.lock_path}: {ex}") from ex
            try:
                fcntl.flock(fd, fcntl.LOCK_EX)
                yield
            finally:
                fcntl.flock(fd, fcntl.LOCK_UN)
                os.close(fd)

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = yaml.safe_load(self.path.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as ex:
            raise StateStoreError(f"cannot read {self.path}: {ex}") from ex
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise StateStoreError(f"{self.path}: state root must be a mapping")
        return data

    def _write(self, tree: Dict[str, Any]) -> None:
        try:
            fd, tmp = tempfile.mkstemp(
                prefix=f".{self.path.name}.", dir=str(self.path.parent)
            )
        except OSError as ex:
            raise StateStoreError(f"cannot write {self.path}: {ex}") from ex
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                yaml.safe_dump(tree, f, default_flow_style=False, sort_keys=True)
            os.replace(tmp, self.path)
        except (OSError, yaml.YAMLError) as ex:
            with contextlib.suppress(OSError):
                os.unlink(tmp)
            raise StateStoreError(f"cannot write {self.path}: {ex}") from ex
