"""
Shared fixtures: in-memory room transport, fake sandbox, fake project store
database, and token helpers.
"""
import asyncio
import json
from typing import Any, Dict, List, Optional

import jwt
import pytest
from bson import ObjectId
from unittest.mock import AsyncMock

from codecollab import config
from codecollab.errors import DuplicateProjectError, MembershipError, NotFoundError, ValidationError
from codecollab.ws.channel import ChannelClosed, SessionChannel


# ---------------------------------------------------------------------------
# Room transport
# ---------------------------------------------------------------------------

class LoopbackTransport:
    def __init__(self, room: "LoopbackRoom", project_id: str) -> None:
        self.room = room
        self.project_id = project_id
        self.inbox: asyncio.Queue = asyncio.Queue()
        self.sent: List[Dict[str, Any]] = []
        self.closed = False

    async def send(self, text: str) -> None:
        if self.closed:
            raise ChannelClosed("closed")
        self.sent.append(json.loads(text))
        for peer in self.room.peers(self.project_id):
            if peer is not self:
                await peer.inbox.put(text)

    async def recv(self) -> str:
        frame = await self.inbox.get()
        if frame is None:
            raise ChannelClosed("closed")
        return frame

    async def close(self) -> None:
        self.closed = True
        self.room.remove(self)
        await self.inbox.put(None)


class LoopbackRoom:
    """Server fan-out stand-in: delivers to every other transport in the room."""

    def __init__(self) -> None:
        self._rooms: Dict[str, List[LoopbackTransport]] = {}

    async def factory(self, project_id: str) -> LoopbackTransport:
        transport = LoopbackTransport(self, project_id)
        self._rooms.setdefault(project_id, []).append(transport)
        return transport

    def peers(self, project_id: str) -> List[LoopbackTransport]:
        return list(self._rooms.get(project_id, []))

    def remove(self, transport: LoopbackTransport) -> None:
        peers = self._rooms.get(transport.project_id, [])
        if transport in peers:
            peers.remove(transport)

    async def inject(self, project_id: str, event: str, data: Any) -> None:
        """Deliver a server-originated frame (e.g. an AI reply) to the whole room."""
        frame = json.dumps({"event": event, "data": data})
        for peer in self.peers(project_id):
            await peer.inbox.put(frame)


@pytest.fixture
def loopback_room():
    return LoopbackRoom()


@pytest.fixture
def channel_factory(loopback_room):
    def make() -> SessionChannel:
        return SessionChannel(loopback_room.factory)
    return make


async def wait_for(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


# ---------------------------------------------------------------------------
# Sandbox
# ---------------------------------------------------------------------------

class FakeProcess:
    def __init__(self, cmd: str, args: List[str], lines: Optional[List[str]] = None, code: int = 0) -> None:
        self.cmd = cmd
        self.args = args
        self.lines = lines or []
        self.code = code
        self.killed = False

    async def output(self):
        for line in self.lines:
            yield line

    def kill(self) -> None:
        self.killed = True

    async def wait(self) -> int:
        return self.code


class FakeSandbox:
    def __init__(self) -> None:
        self.mounted: List[Dict[str, Any]] = []
        self.processes: List[FakeProcess] = []
        self.server_ready = None
        self.cleaned = False

    def cleanup(self) -> None:
        self.cleaned = True

    async def mount(self, tree: Dict[str, Any]) -> None:
        await asyncio.sleep(0)
        self.mounted.append(tree)

    async def spawn(self, cmd: str, args: List[str]) -> FakeProcess:
        await asyncio.sleep(0)
        process = FakeProcess(cmd, list(args), lines=[f"{cmd} {' '.join(args)}"])
        self.processes.append(process)
        return process

    def on_server_ready(self, handler) -> None:
        self.server_ready = handler

    @property
    def commands(self) -> List[List[str]]:
        return [[p.cmd, *p.args] for p in self.processes]


@pytest.fixture
def fake_sandbox():
    return FakeSandbox()


# ---------------------------------------------------------------------------
# Users, tokens, project store
# ---------------------------------------------------------------------------

ALICE = {"id": str(ObjectId()), "email": "alice@example.com", "displayName": "Alice"}
BOB = {"id": str(ObjectId()), "email": "bob@example.com", "displayName": "Bob"}
CAROL = {"id": str(ObjectId()), "email": "carol@example.com", "displayName": "Carol"}

PROJECT_ID = str(ObjectId())


def make_token(user: Dict[str, Any]) -> str:
    claims = {"sub": user["id"], "email": user["email"], "name": user["displayName"]}
    return jwt.encode(claims, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def auth_headers(user: Dict[str, Any]) -> Dict[str, str]:
    return {"Authorization": f"Bearer {make_token(user)}"}


def project_record(project_id: Optional[str] = None, file_tree: Optional[Dict] = None) -> Dict[str, Any]:
    return {
        "id": project_id or str(ObjectId()),
        "name": "demo",
        "users": [ALICE, BOB],
        "fileTree": file_tree or {},
    }


@pytest.fixture
def store():
    """Project store client double; every method is an AsyncMock."""
    mock = AsyncMock()
    mock.get_project.return_value = project_record(
        PROJECT_ID,
        file_tree={"index.js": {"file": {"contents": "console.log('hi')"}}}
    )
    mock.list_users.return_value = [BOB, CAROL]
    mock.update_file_tree.return_value = None
    return mock


class FakeDatabase:
    """In-memory stand-in for codecollab.database.Database."""

    def __init__(self, users: Optional[List[Dict[str, Any]]] = None) -> None:
        self.projects: Dict[str, Dict[str, Any]] = {}
        self.users = {u["id"]: u for u in (users or [ALICE, BOB, CAROL])}

    @staticmethod
    def _check_id(value: str, field: str) -> None:
        if not value:
            raise ValidationError(f"{field} is required")
        if not ObjectId.is_valid(value):
            raise ValidationError(f"Invalid {field}")

    def _get(self, project_id: str) -> Dict[str, Any]:
        self._check_id(project_id, "projectId")
        project = self.projects.get(project_id)
        if project is None:
            raise NotFoundError("Project not found")
        return project

    async def ensure_indexes(self) -> None:
        return None

    async def create_project(self, name: str, user_id: str) -> Dict[str, Any]:
        if not name or not name.strip():
            raise ValidationError("Name is required")
        if any(p["name"] == name.strip() for p in self.projects.values()):
            raise DuplicateProjectError("Project name already exists")
        project = {"id": str(ObjectId()), "name": name.strip(), "users": [user_id], "fileTree": {}}
        self.projects[project["id"]] = project
        return dict(project)

    async def get_all_projects_by_user(self, user_id: str) -> List[Dict[str, Any]]:
        return [dict(p) for p in self.projects.values() if user_id in p["users"]]

    async def get_project(self, project_id: str) -> Dict[str, Any]:
        project = self._get(project_id)
        members = [self.users[u] for u in project["users"] if u in self.users]
        return {**project, "users": members}

    async def is_member(self, project_id: str, user_id: str) -> bool:
        self._check_id(project_id, "projectId")
        project = self.projects.get(project_id)
        return bool(project and user_id in project["users"])

    async def project_exists(self, project_id: str) -> bool:
        self._check_id(project_id, "projectId")
        return project_id in self.projects

    async def add_users_to_project(self, project_id: str, users: List[str], user_id: str) -> Dict[str, Any]:
        project = self._get(project_id)
        if any(not ObjectId.is_valid(u) for u in users):
            raise ValidationError("Invalid userId(s) in users array")
        if user_id not in project["users"]:
            raise MembershipError("User not belong to this project")
        for u in users:
            if u not in project["users"]:
                project["users"].append(u)
        return dict(project)

    async def update_file_tree(self, project_id: str, file_tree: Dict[str, Any]) -> Dict[str, Any]:
        project = self._get(project_id)
        project["fileTree"] = file_tree
        return dict(project)

    async def delete_project(self, project_id: str, user_id: str) -> Dict[str, Any]:
        project = self._get(project_id)
        if user_id not in project["users"]:
            raise MembershipError("You don't have permission to delete this project")
        del self.projects[project_id]
        return {"success": True, "message": "Project deleted successfully", "deletedCount": 1}

    async def get_all_users(self, exclude_user_id: Optional[str] = None) -> List[Dict[str, Any]]:
        return [u for uid, u in self.users.items() if uid != exclude_user_id]


@pytest.fixture
def fake_db():
    return FakeDatabase()
