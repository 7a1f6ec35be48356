from __future__ import annotations

import copy
from typing import Any, Dict, Iterator, List, Optional

FileTreeDict = Dict[str, Dict[str, Any]]


def file_node(contents: str) -> Dict[str, Any]:
    return {"file": {"contents": contents}}


class FileTree:
    """
    In-memory copy of a project's file tree for the open session.

    Keys are flat path-like strings, values are ``{"file": {"contents": str}}``
    records (the shape the sandbox mounts). Every update produces a brand new
    dict; nothing is patched in place, and ``replace`` is destructive: files
    missing from the incoming tree are dropped.
    """

    def __init__(self, tree: Optional[FileTreeDict] = None) -> None:
        self._tree: FileTreeDict = dict(tree or {})

    def replace(self, tree: FileTreeDict) -> None:
        self._tree = dict(tree)

    def set_file(self, path: str, contents: str) -> FileTreeDict:
        self._tree = {**self._tree, path: file_node(contents)}
        return self.to_dict()

    def contents(self, path: str) -> Optional[str]:
        node = self._tree.get(path) or {}
        return (node.get("file") or {}).get("contents")

    def paths(self) -> List[str]:
        return list(self._tree.keys())

    def to_dict(self) -> FileTreeDict:
        return copy.deepcopy(self._tree)

    def __len__(self) -> int:
        return len(self._tree)

    def __contains__(self, path: object) -> bool:
        return path in self._tree

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._tree))

    def __repr__(self) -> str:
        return f"FileTree({self.paths()!r})"
