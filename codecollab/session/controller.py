"""
Collaboration controller for one open project.

Owns the session aggregate (message log, file tree, participant selection,
sandbox run state) and is the only thing that mutates it. Everything runs on
one asyncio loop, so there is no locking: events are applied in the order
they are delivered and the file tree is last-write-wins.

State machine::

    IDLE -> LOADING -> READY | FAILED
    READY -> RUNNING -> READY      (around run_project)
"""

from __future__ import annotations

import asyncio
import enum
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from codecollab import config
from codecollab.errors import UnauthorizedError
from codecollab.session.decoder import safe_json_parse
from codecollab.session.file_tree import FileTree
from codecollab.session.project_store import ProjectStoreClient
from codecollab.session.sandbox import LocalSandbox, SandboxAdapter, SandboxProcess
from codecollab.ws.channel import PROJECT_MESSAGE, ChannelClosed, SessionChannel, websocket_transport_factory

logger = logging.getLogger(__name__)

AI_SENDER_ID = "ai"

SandboxFactory = Callable[[], Awaitable[SandboxAdapter]]


class SessionState(str, enum.Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    RUNNING = "running"
    FAILED = "failed"


def sender_id(message: Dict[str, Any]) -> Optional[str]:
    sender = message.get("sender") or {}
    if not isinstance(sender, dict):
        return None
    return sender.get("id") or sender.get("_id")


def unparseable_placeholder(raw: Any, error: Optional[str]) -> str:
    preview = raw if isinstance(raw, str) else repr(raw)
    return json.dumps({
        "text": "Error: Could not parse AI response. Raw message: " + preview[:200] + "...",
        "error": True,
        "parseError": error,
    })


class CollaborationController:
    def __init__(
        self,
        store: ProjectStoreClient,
        channel: SessionChannel,
        user: Optional[Dict[str, Any]],
        sandbox_factory: Optional[SandboxFactory] = None,
        install_command: Optional[List[str]] = None,
        start_command: Optional[List[str]] = None,
        on_unauthorized: Optional[Callable[[], Any]] = None,
    ) -> None:
        self.store = store
        self.channel = channel
        self.user = user
        self._sandbox_factory = sandbox_factory
        self.install_command = list(install_command or config.SANDBOX_INSTALL_CMD)
        self.start_command = list(start_command or config.SANDBOX_START_CMD)
        self._on_unauthorized = on_unauthorized

        self.state = SessionState.IDLE
        self.error: Optional[str] = None
        self.project: Optional[Dict[str, Any]] = None
        self.messages: List[Dict[str, Any]] = []
        self.users: List[Dict[str, Any]] = []
        self.selected_user_ids: Set[str] = set()
        self.file_tree = FileTree()

        self.sandbox: Optional[SandboxAdapter] = None
        self.run_process: Optional[SandboxProcess] = None
        self.preview_url: Optional[str] = None
        self.is_running = False

        self._pending: Set[asyncio.Task] = set()
        self._run_output: Optional[asyncio.Task] = None

    @classmethod
    def connect(cls, token: str, user: Dict[str, Any], base_url: Optional[str] = None,
                **kwargs: Any) -> "CollaborationController":
        """Wire a controller to the HTTP API, the WebSocket rooms and a local sandbox."""
        base_url = base_url or config.API_BASE_URL

        async def local_sandbox() -> SandboxAdapter:
            return LocalSandbox()

        kwargs.setdefault("sandbox_factory", local_sandbox)
        return cls(
            store=ProjectStoreClient(token, base_url=base_url),
            channel=SessionChannel(websocket_transport_factory(base_url, token)),
            user=user,
            **kwargs,
        )

    @property
    def project_id(self) -> Optional[str]:
        if not self.project:
            return None
        return self.project.get("id") or self.project.get("_id")

    def _unauthorized(self) -> None:
        logger.warning("Project store rejected our credentials; logging out")
        if self._on_unauthorized is not None:
            self._on_unauthorized()

    def _fail(self, message: str) -> None:
        self.state = SessionState.FAILED
        self.error = message

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    async def open_session(self, project: Optional[Dict[str, Any]]) -> SessionState:
        if not project or not (project.get("id") or project.get("_id")):
            self._fail("No project data found")
            return self.state

        self.project = project
        self.state = SessionState.LOADING
        self.error = None
        try:
            # Subscribe first so nothing delivered while the sandbox boots is lost.
            self.channel.subscribe(PROJECT_MESSAGE, self.handle_inbound_message)
            await self.channel.join(self.project_id)

            if self.sandbox is None and self._sandbox_factory is not None:
                self.attach_sandbox(await self._sandbox_factory())

            self.project = await self.store.get_project(self.project_id)
            self.file_tree.replace(self.project.get("fileTree") or {})

            self.users = await self.store.list_users()
        except UnauthorizedError:
            self._unauthorized()
            self._fail("Failed to load project")
            return self.state
        except Exception:
            logger.exception("Error initializing project %s", self.project_id)
            self._fail("Failed to load project")
            return self.state

        self.state = SessionState.READY
        return self.state

    def attach_sandbox(self, sandbox: SandboxAdapter) -> None:
        self.sandbox = sandbox
        sandbox.on_server_ready(self._on_server_ready)

    def _on_server_ready(self, port: int, url: str) -> None:
        logger.info("Preview ready on port %d: %s", port, url)
        self.preview_url = url

    async def close(self) -> None:
        self.channel.unsubscribe(PROJECT_MESSAGE)
        if self.run_process is not None:
            self.run_process.kill()
            self.run_process = None
        if self._run_output is not None:
            self._run_output.cancel()
        await self.drain()
        await self.channel.leave()
        if self.sandbox is not None:
            self.sandbox.cleanup()
            self.sandbox = None
        await self.store.aclose()

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def handle_inbound_message(self, raw: Dict[str, Any]) -> None:
        if not isinstance(raw, dict):
            logger.warning("Dropping malformed room message: %r", raw)
            return

        if sender_id(raw) != AI_SENDER_ID:
            self.messages.append(raw)
            return

        payload = raw.get("message")
        if isinstance(payload, dict):
            decoded, error = payload, None
        else:
            result = safe_json_parse(payload)
            decoded, error = result.data, result.error

        if decoded is None:
            logger.error("Error parsing AI message: %s", error)
            logger.debug("Original AI message: %r", payload)
            self.messages.append({**raw, "message": unparseable_placeholder(payload, error)})
            return

        file_tree = decoded.get("fileTree")
        if isinstance(file_tree, dict):
            self.file_tree.replace(file_tree)
            if self.sandbox is not None:
                try:
                    await self.sandbox.mount(file_tree)
                except Exception:
                    logger.exception("Failed to mount AI file tree into sandbox")

        self.messages.append({**raw, "message": json.dumps(decoded)})

    async def send_message(self, text: str) -> bool:
        if not text or not text.strip() or not self.project or not self.user:
            logger.debug("Not sending message: empty text, no project or no user")
            return False

        message_data = {
            "message": text.strip(),
            "sender": {
                "id": self.user.get("id"),
                "email": self.user.get("email"),
                "displayName": self.user.get("displayName") or self.user.get("email"),
            },
        }
        # Local echo first; the room does not send our own message back.
        self.messages.append(message_data)
        try:
            await self.channel.publish(PROJECT_MESSAGE, message_data)
        except ChannelClosed as e:
            logger.error("Could not send message to project %s: %s", self.project_id, e)
            return False
        return True

    # ------------------------------------------------------------------
    # File tree
    # ------------------------------------------------------------------

    def mutate_file(self, path: str, contents: str) -> Dict[str, Any]:
        tree = self.file_tree.set_file(path, contents)
        if self.project_id:
            self._write_behind(self._save_file_tree(self.project_id, tree))
        return tree

    async def _save_file_tree(self, project_id: str, tree: Dict[str, Any]) -> None:
        try:
            await self.store.update_file_tree(project_id, tree)
        except UnauthorizedError:
            self._unauthorized()
        except Exception:
            # The local edit stands; there is no retry or rollback.
            logger.exception("Error saving file tree for project %s", project_id)

    def _write_behind(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        while self._pending:
            await asyncio.gather(*list(self._pending))

    # ------------------------------------------------------------------
    # Sandbox runs
    # ------------------------------------------------------------------

    async def run_project(self) -> bool:
        if self.sandbox is None or self.is_running:
            return False

        self.is_running = True
        if self.state == SessionState.READY:
            self.state = SessionState.RUNNING
        try:
            await self.sandbox.mount(self.file_tree.to_dict())

            install = await self.sandbox.spawn(self.install_command[0], self.install_command[1:])
            pipe = asyncio.create_task(self._pipe_output(install, "Install"))
            code = await install.wait()
            await pipe
            if code != 0:
                logger.warning("Install step exited with code %s", code)

            if self.run_process is not None:
                self.run_process.kill()
                self.run_process = None

            process = await self.sandbox.spawn(self.start_command[0], self.start_command[1:])
            self._run_output = asyncio.create_task(self._pipe_output(process, "Run"))
            self.run_process = process
        except Exception:
            logger.exception("Error running project %s", self.project_id)
        finally:
            self.is_running = False
            if self.state == SessionState.RUNNING:
                self.state = SessionState.READY
        return True

    async def _pipe_output(self, process: SandboxProcess, label: str) -> None:
        async for line in process.output():
            logger.info("%s: %s", label, line)

    # ------------------------------------------------------------------
    # Collaborators
    # ------------------------------------------------------------------

    def toggle_user(self, user_id: str) -> Set[str]:
        if user_id in self.selected_user_ids:
            self.selected_user_ids.discard(user_id)
        else:
            self.selected_user_ids.add(user_id)
        return self.selected_user_ids

    async def add_collaborators(self, user_ids: Optional[Set[str]] = None) -> bool:
        ids = set(user_ids) if user_ids is not None else set(self.selected_user_ids)
        if not self.project_id or not ids:
            return False
        try:
            self.project = await self.store.add_users(self.project_id, sorted(ids))
        except UnauthorizedError:
            self._unauthorized()
            return False
        except Exception:
            logger.exception("Error adding collaborators to project %s", self.project_id)
            return False
        self.selected_user_ids = set()
        return True
