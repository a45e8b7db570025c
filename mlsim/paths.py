"""Virtual root remapping, search paths and case-insensitive file lookup."""

from __future__ import annotations

import os
import re
from contextlib import contextmanager
from typing import Any, Iterator, List, Optional, Sequence, Tuple

from .logsink import LogSink

# Firmware device markers such as "fat:/" or "nitro:/". Single-letter drives
# ("C:") are host paths and are left alone.
_DEVICE_PREFIX = re.compile(r"^[A-Za-z][A-Za-z0-9_]+:(?=[/\\]|$)")
_SEPARATORS = re.compile(r"[/\\]+")


def separator_of(path: str) -> str:
    """Return the first separator used in ``path`` (``/`` when there is none)."""
    for char in path:
        if char in "/\\":
            return char
    return "/"


def strip_device_prefix(path: str) -> str:
    return _DEVICE_PREFIX.sub("", path, count=1)


def _host_is_case_sensitive() -> bool:
    return os.name != "nt"


class PathResolver:
    """Translate script-visible paths into real host paths.

    With a virtual root configured, absolute script paths (``/data/x``) are
    mapped under that root.  Lookups tolerate file names whose case does not
    match the host's, and relative names fall back to the search path list.
    The resolver never raises: a miss is reported as ``found=False``.
    """

    def __init__(
        self,
        virtual_root: Optional[str] = None,
        *,
        search_path: Sequence[str] = (),
        case_sensitive: Optional[bool] = None,
        log: Optional[LogSink] = None,
    ) -> None:
        self.log = log or LogSink()
        self.case_sensitive = _host_is_case_sensitive() if case_sensitive is None else bool(case_sensitive)
        self.virtual_root: Optional[str] = None
        self._search_path: List[str] = []
        self.set_virtual_root(virtual_root)
        for entry in search_path:
            self.add_search_path(entry)

    # ------------------------------------------------------------------
    # virtual root

    def set_virtual_root(self, root: Optional[str]) -> None:
        if not root:
            self.virtual_root = None
            self.log.debug("virtual root disabled", "file")
            return
        sep = separator_of(root)
        if not root.endswith(("/", "\\")):
            root += sep
        self.virtual_root = root
        self.log.debug(f"virtual root set to {root}", "file")

    def to_real_path(self, path: Any) -> Tuple[Any, bool]:
        if not isinstance(path, str) or not path:
            return path, False
        path = strip_device_prefix(path)
        root = self.virtual_root
        if root is None or path.startswith(root):
            return path, False
        if not path.startswith("/"):
            return path, False
        converted = root + path[1:]
        if separator_of(root) == "\\":
            converted = converted.replace("/", "\\")
        return converted, True

    def to_virtual_path(self, path: Any) -> Tuple[Any, bool]:
        root = self.virtual_root
        if not isinstance(path, str) or root is None or not path.startswith(root):
            return path, False
        rest = path[len(root):]
        if separator_of(root) == "\\":
            rest = rest.replace("\\", "/")
        return "/" + rest, True

    # ------------------------------------------------------------------
    # lookup

    def resolve(self, path: Any, use_search_path: bool = True) -> Tuple[Any, bool]:
        if not isinstance(path, str) or not path:
            return path, False
        self.log.trace(f"searching file {path}", "file")

        if path != "/" and os.path.exists(path):
            self.log.trace(f"found file {path}", "file")
            return path, True

        real, remapped = self.to_real_path(path)
        if real != path:
            self.log.trace(f"converted path to {real}", "file")
        found = os.path.exists(real)
        if not found and self.case_sensitive:
            real, found = self._walk_case_insensitive(real)
        if found:
            self.log.trace(f"found file {real}", "file")
            return real, True

        if use_search_path and not remapped and not os.path.isabs(real):
            for entry in self._search_path:
                candidate, found = self.resolve(os.path.join(entry, real), use_search_path=False)
                if found:
                    return candidate, True

        self.log.trace(f"file {path} not found", "file")
        return real, False

    def find_case_insensitive(self, directory: str, name: str) -> Tuple[str, bool]:
        try:
            entries = os.listdir(directory or ".")
        except OSError:
            return name, False
        if name in entries:
            return name, True
        lowered = name.lower()
        for entry in entries:
            if entry.lower() == lowered:
                return entry, True
        return name, False

    def _walk_case_insensitive(self, path: str) -> Tuple[str, bool]:
        sep = separator_of(path)
        absolute = path.startswith(("/", "\\"))
        parts = [part for part in _SEPARATORS.split(path) if part]
        if not parts:
            return path, False
        current = sep if absolute else "."
        matched: List[str] = []
        for part in parts:
            if part in (".", ".."):
                actual, found = part, os.path.isdir(os.path.join(current, part))
            else:
                actual, found = self.find_case_insensitive(current, part)
            if not found:
                return path, False
            matched.append(actual)
            current = os.path.join(current, actual)

        result = sep.join(matched)
        if absolute:
            result = sep + result
        return result, True

    # ------------------------------------------------------------------
    # search path

    @property
    def search_path(self) -> List[str]:
        return list(self._search_path)

    def add_search_path(self, path: str, prepend: bool = False) -> None:
        if len(path) > 1:
            path = path.rstrip("/\\") or path
        if prepend:
            self._search_path.insert(0, path)
        else:
            self._search_path.append(path)
        self.log.debug(f"search path + {path}", "file")

    def remove_search_path(self, path: Optional[str] = None) -> bool:
        """Remove the first entry equal to ``path`` (the last entry if omitted)."""
        if not self._search_path:
            return False
        if path is None:
            removed = self._search_path.pop()
        else:
            if len(path) > 1:
                path = path.rstrip("/\\") or path
            if path not in self._search_path:
                return False
            self._search_path.remove(path)
            removed = path
        self.log.debug(f"search path - {removed}", "file")
        return True

    def set_search_path(self, path: Optional[str]) -> None:
        self._search_path.clear()
        if path:
            self.add_search_path(path)

    @contextmanager
    def extra_search_paths(self, *paths: str) -> Iterator["PathResolver"]:
        """Temporarily put ``paths`` in front of the search path list."""
        saved = list(self._search_path)
        self._search_path[:0] = [p.rstrip("/\\") or p for p in paths]
        try:
            yield self
        finally:
            self._search_path[:] = saved

    def resolve_with_paths(self, path: Any, *paths: str) -> Tuple[Any, bool]:
        with self.extra_search_paths(*paths):
            return self.resolve(path)
