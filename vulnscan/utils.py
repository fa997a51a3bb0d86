"""File-system helpers and cache directory settings."""

from __future__ import annotations

import logging
import os
import shutil
import stat
import sys
import tempfile
from collections.abc import Callable, Iterable
from typing import BinaryIO

logger = logging.getLogger(__name__)

_cache_dir = ""


def _user_cache_dir() -> str:
    if sys.platform == "win32":
        base = os.environ.get("LOCALAPPDATA", "")
        if not base:
            raise OSError("%LocalAppData% is not defined")
        return base
    if sys.platform == "darwin":
        home = os.environ.get("HOME", "")
        if not home:
            raise OSError("$HOME is not defined")
        return os.path.join(home, "Library", "Caches")
    base = os.environ.get("XDG_CACHE_HOME", "")
    if base:
        if not os.path.isabs(base):
            raise OSError("path in $XDG_CACHE_HOME is relative")
        return base
    home = os.environ.get("HOME", "")
    if not home:
        raise OSError("neither $XDG_CACHE_HOME nor $HOME are defined")
    return os.path.join(home, ".cache")


def default_cache_dir() -> str:
    """Return the default cache directory, under the user cache dir or the temp dir."""
    try:
        base = _user_cache_dir()
    except OSError:
        base = tempfile.gettempdir()
    return os.path.join(base, "vulnscan")


def cache_dir() -> str:
    """Return the directory set for caching."""
    return _cache_dir


def set_cache_dir(directory: str) -> None:
    """Set the directory used for caching."""
    global _cache_dir
    _cache_dir = directory


def _raise(err: OSError) -> None:
    raise err


def file_walk(
    root: str,
    target_files: Iterable[str],
    walk_fn: Callable[[BinaryIO, str], None],
) -> None:
    """Call ``walk_fn(file, path)`` for each non-empty target file under ``root``.

    ``target_files`` holds paths relative to ``root``.
    """
    targets = set(target_files)
    for dirpath, dirnames, filenames in os.walk(root, onerror=_raise):
        dirnames.sort()
        for filename in sorted(filenames):
            path = os.path.join(dirpath, filename)
            rel = os.path.relpath(path, root)
            if rel not in targets:
                continue
            if os.lstat(path).st_size == 0:
                logger.debug("invalid size: %s", path)
                continue
            with open(path, "rb") as f:
                walk_fn(f, path)


def filter_targets(prefix_path: str, targets: Iterable[str]) -> set[str]:
    """Return the targets under ``prefix_path``, made relative to it."""
    filtered: set[str] = set()
    for filename in targets:
        if not filename.startswith(prefix_path):
            continue
        if os.path.isabs(prefix_path) != os.path.isabs(filename):
            raise ValueError(f"error in filepath rel: can't make {filename} relative to {prefix_path}")
        rel = os.path.relpath(filename, prefix_path)
        if rel.startswith(".." + os.sep):
            continue
        filtered.add(rel)
    return filtered


def copy_file(src: str, dst: str) -> int:
    """Copy the regular file ``src`` to ``dst`` and return the number of bytes copied."""
    st = os.stat(src)
    if not stat.S_ISREG(st.st_mode):
        raise ValueError(f"{src} is not a regular file")
    with open(src, "rb") as source, open(dst, "wb") as destination:
        shutil.copyfileobj(source, destination)
        return destination.tell()