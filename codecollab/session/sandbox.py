"""
Execution sandbox adapter.

The collaboration controller only needs four things from a sandbox: mount a
file tree, spawn a command, kill a process, and learn when a dev server is up
(port + preview url). ``LocalSandbox`` provides them with a private working
directory and asyncio subprocesses.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import os
import re
import shutil
import signal
import tempfile
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Protocol, Tuple, Union

logger = logging.getLogger(__name__)

ServerReadyHandler = Callable[[int, str], Union[None, Awaitable[None]]]

SERVER_URL_RE = re.compile(r"(https?://(?:localhost|127\.0\.0\.1|0\.0\.0\.0|\[::\]):(\d+)[^\s\"']*)")

# Entries a remount never deletes.
PRESERVED_ON_MOUNT = frozenset({"node_modules"})


class SandboxProcess(Protocol):
    def output(self) -> AsyncIterator[str]: ...

    def kill(self) -> None: ...

    async def wait(self) -> int: ...


class SandboxAdapter(Protocol):
    async def mount(self, tree: Dict[str, Any]) -> None: ...

    async def spawn(self, cmd: str, args: List[str]) -> SandboxProcess: ...

    def on_server_ready(self, handler: ServerReadyHandler) -> None: ...

    def cleanup(self) -> None: ...


class LocalProcess:
    """A spawned command whose combined stdout/stderr is readable line by line."""

    def __init__(self, proc: asyncio.subprocess.Process, label: str,
                 on_line: Optional[Callable[[str], Awaitable[None]]] = None) -> None:
        self._proc = proc
        self.label = label
        self._on_line = on_line
        self._queue: asyncio.Queue = asyncio.Queue()
        self._pump_task = asyncio.create_task(self._pump())

    @property
    def pid(self) -> int:
        return self._proc.pid

    @property
    def returncode(self) -> Optional[int]:
        return self._proc.returncode

    async def _pump(self) -> None:
        assert self._proc.stdout is not None
        try:
            while True:
                raw = await self._proc.stdout.readline()
                if not raw:
                    break
                line = raw.decode("utf-8", errors="replace").rstrip("\n")
                if self._on_line is not None:
                    await self._on_line(line)
                await self._queue.put(line)
        finally:
            await self._queue.put(None)

    async def output(self) -> AsyncIterator[str]:
        while True:
            line = await self._queue.get()
            if line is None:
                return
            yield line

    def kill(self) -> None:
        """Kill the command and everything it started (e.g. the dev server under ``npm start``)."""
        if self._proc.returncode is not None:
            return
        try:
            if hasattr(os, "killpg"):
                # spawn() makes each command a session leader, so its pid is the group id.
                os.killpg(self._proc.pid, signal.SIGKILL)
            else:
                self._proc.kill()
        except ProcessLookupError:
            pass

    async def wait(self) -> int:
        code = await self._proc.wait()
        await self._pump_task
        return code


class LocalSandbox:
    """
    Sandbox backed by a private directory on the local machine.

    Mounting makes ``root`` mirror the tree: entries missing from the tree
    are removed (except ``node_modules``) and every file is written. Paths
    that would escape ``root`` are rejected before anything is touched.
    Nested ``{"directory": {...}}`` nodes are accepted as well as flat
    ``{"file": {"contents": ...}}`` entries.
    """

    def __init__(self, root: Optional[Union[str, Path]] = None) -> None:
        self._owns_root = root is None
        self.root = Path(root or tempfile.mkdtemp(prefix="codecollab-")).resolve()
        self.root.mkdir(parents=True, exist_ok=True)
        self._server_ready: Optional[ServerReadyHandler] = None

    def on_server_ready(self, handler: ServerReadyHandler) -> None:
        # One listener only; registering again replaces it.
        self._server_ready = handler

    def _target(self, base: Path, name: str) -> Path:
        target = (base / name).resolve()
        if target != self.root and self.root not in target.parents:
            raise ValueError(f"Refusing to mount outside sandbox root: {name}")
        return target

    def _plan(self, base: Path, tree: Dict[str, Any]) -> List[Tuple[Path, Optional[str]]]:
        """Resolve every entry of ``tree``; ``None`` contents mark a directory."""
        entries: List[Tuple[Path, Optional[str]]] = []
        for name, node in tree.items():
            if not isinstance(node, dict):
                continue
            target = self._target(base, name)
            if "directory" in node:
                entries.append((target, None))
                entries.extend(self._plan(target, node.get("directory") or {}))
                continue
            contents = (node.get("file") or {}).get("contents")
            if contents is None:
                continue
            entries.append((target, str(contents)))
        return entries

    def _clear(self) -> None:
        for child in self.root.iterdir():
            if child.name in PRESERVED_ON_MOUNT:
                continue
            if child.is_dir() and not child.is_symlink():
                shutil.rmtree(child)
            else:
                child.unlink()

    def _write_tree(self, tree: Dict[str, Any]) -> int:
        entries = self._plan(self.root, tree)
        self._clear()
        written = 0
        for target, contents in entries:
            if contents is None:
                target.mkdir(parents=True, exist_ok=True)
                continue
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(contents, encoding="utf-8")
            written += 1
        return written

    async def mount(self, tree: Dict[str, Any]) -> None:
        count = await asyncio.to_thread(self._write_tree, tree)
        logger.info("[sandbox] mounted %d file(s) into %s", count, self.root)

    async def spawn(self, cmd: str, args: List[str]) -> LocalProcess:
        label = " ".join([cmd, *args])
        proc = await asyncio.create_subprocess_exec(
            cmd,
            *args,
            cwd=str(self.root),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            start_new_session=True,
        )
        logger.info("[sandbox] spawned '%s' (pid %s)", label, proc.pid)
        return LocalProcess(proc, label, on_line=self._readiness_watcher())

    def _readiness_watcher(self) -> Callable[[str], Awaitable[None]]:
        fired = False

        async def watch(line: str) -> None:
            nonlocal fired
            if fired or self._server_ready is None:
                return
            match = SERVER_URL_RE.search(line)
            if not match:
                return
            fired = True
            url, port = match.group(1), int(match.group(2))
            logger.info("[sandbox] server ready on port %d: %s", port, url)
            result = self._server_ready(port, url)
            if inspect.isawaitable(result):
                await result

        return watch

    def cleanup(self) -> None:
        if self._owns_root:
            shutil.rmtree(self.root, ignore_errors=True)
