from __future__ import annotations

import os
from typing import Callable, Iterator, Optional

from .errors import PathTraversal, StreamInvariant


def root_prefix(root: str) -> str:
    """Return ``root`` normalized and terminated by a separator."""
    root = os.path.normpath(root)
    return root if root.endswith(os.sep) else root + os.sep


def guard_path(root: str, name: str) -> str:
    """Resolve archive member ``name`` against ``root``, refusing escapes.

    Rules:
    - Absolute names are rejected
    - The joined path is normalized lexically ('.' and '..' collapsed)
    - The result must be ``root`` itself or lie underneath it
    """
    root = os.path.normpath(root)
    if not name or os.path.isabs(name) or name.startswith(("/", "\\")):
        raise PathTraversal(f"Archive entry {name!r} is outside the destination directory")
    dest = os.path.normpath(root + os.sep + name)
    if dest != root and not dest.startswith(root_prefix(root)):
        raise PathTraversal(f"Archive entry {name!r} is outside the destination directory")
    return dest


def guard_real_parent(root: str, dest: str) -> None:
    """Refuse ``dest`` when its parent directory resolves outside ``root``.

    Catches writes through a symlink created by an earlier archive entry.
    """
    real_root = os.path.realpath(root)
    real_parent = os.path.realpath(os.path.dirname(dest))
    if real_parent != real_root and not real_parent.startswith(root_prefix(real_root)):
        raise PathTraversal(f"Destination {dest!r} resolves outside the destination directory")


def relative_name(prefix: str, path: str) -> str:
    """Archive name for ``path`` found while walking the tree under ``prefix``."""
    path = os.path.normpath(path)
    if not path.startswith(prefix):
        raise StreamInvariant(f"Walked path {path!r} is not under {prefix!r}")
    name = path[len(prefix):]
    if not name or name.startswith(os.sep):
        raise StreamInvariant(f"Invalid relative path {name!r} produced while walking {prefix!r}")
    if os.sep != "/":
        name = name.replace(os.sep, "/")
    return name


def walk_tree(
    top: str,
    onerror: Optional[Callable[[OSError], None]] = None,
) -> Iterator[os.DirEntry]:
    """Yield every entry under ``top`` depth-first in lexical order.

    A directory is yielded before its contents. Symlinks to directories are
    yielded but not followed. ``top`` itself is not yielded. When ``onerror``
    is given, unreadable directories are reported to it and skipped;
    otherwise the ``OSError`` propagates.
    """
    try:
        with os.scandir(top) as it:
            entries = sorted(it, key=lambda e: e.name)
    except OSError as exc:
        if onerror is None:
            raise
        onerror(exc)
        return
    for entry in entries:
        yield entry
        if entry.is_dir(follow_symlinks=False):
            yield from walk_tree(entry.path, onerror)
