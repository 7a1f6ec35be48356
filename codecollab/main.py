"""
main.py - FastAPI backend for codecollab

Endpoints:
  /api/projects...   project CRUD over the document store
  /api/users...      user directory (read-only)
  /ws/projects/{id}  real-time project room (chat + AI assistant)
"""
import asyncio
import json
import logging
from typing import Optional, Set

from fastapi import Depends, FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from codecollab import ai, config
from codecollab.auth import InvalidToken, decode_token, get_current_user
from codecollab.database import Database
from codecollab.errors import AIServiceError, CodecollabError, NotFoundError
from codecollab.models import AI_USER, AddUsersRequest, ChatMessage, ProjectCreate, UpdateFileTreeRequest, User
from codecollab.validation import ChatMessageSchema, FileTreeSchema, RoomEnvelopeSchema, guard_payload
from codecollab.ws.channel import ERROR, JOINED, PROJECT_MESSAGE
from codecollab.ws.rooms import Participant, RoomHub

logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="codecollab API", version="1.0.0")

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Initialize database
db = Database()
hub = RoomHub()

# Keep references to in-flight AI replies so they are not garbage collected
_ai_tasks: Set[asyncio.Task] = set()


def get_db() -> Database:
    return db


def get_hub() -> RoomHub:
    return hub


@app.on_event("startup")
async def startup_event():
    """Ensure indexes exist before serving"""
    if config.JWT_SECRET == config.DEFAULT_JWT_SECRET:
        logger.warning("JWT_SECRET is not set; using the built-in development secret. "
                       "Anyone can forge tokens for this server.")
    try:
        await get_db().ensure_indexes()
    except Exception as e:
        logger.error("Could not ensure indexes: %s", e)


# Health check
@app.get("/")
async def root():
    return {"status": "ok", "message": "codecollab API is running"}


# Projects endpoints
@app.post("/api/projects", response_model=dict)
async def create_project(project: ProjectCreate, user: User = Depends(get_current_user),
                         database: Database = Depends(get_db)):
    try:
        created = await database.create_project(project.name, user.id)
        return {"project": created}
    except CodecollabError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    except Exception as e:
        logger.exception("create_project failed")
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/api/projects", response_model=dict)
async def list_projects(user: User = Depends(get_current_user), database: Database = Depends(get_db)):
    try:
        projects = await database.get_all_projects_by_user(user.id)
        return {"projects": projects}
    except CodecollabError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    except Exception as e:
        logger.exception("list_projects failed")
        raise HTTPException(status_code=500, detail=str(e))


@app.put("/api/projects/add-user", response_model=dict)
async def add_user_to_project(request: AddUsersRequest, user: User = Depends(get_current_user),
                              database: Database = Depends(get_db)):
    try:
        project = await database.add_users_to_project(request.project_id, request.users, user.id)
        return {"project": project}
    except CodecollabError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    except Exception as e:
        logger.exception("add_user_to_project failed")
        raise HTTPException(status_code=500, detail=str(e))


@app.put("/api/projects/update-file-tree", response_model=dict)
async def update_file_tree(request: UpdateFileTreeRequest, user: User = Depends(get_current_user),
                           database: Database = Depends(get_db)):
    guard = guard_payload("fileTree", FileTreeSchema, request.file_tree)
    if guard["action"] != "PROCEED":
        raise HTTPException(status_code=400, detail="; ".join(guard["errors"]))
    try:
        if not await database.is_member(request.project_id, user.id):
            if not await database.project_exists(request.project_id):
                raise NotFoundError("Project not found")
            raise HTTPException(status_code=403, detail="User not belong to this project")
        project = await database.update_file_tree(request.project_id, request.file_tree)
        return {"project": project}
    except HTTPException:
        raise
    except CodecollabError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    except Exception as e:
        logger.exception("update_file_tree failed")
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/api/projects/{project_id}", response_model=dict)
async def get_project(project_id: str, user: User = Depends(get_current_user),
                      database: Database = Depends(get_db)):
    try:
        project = await database.get_project(project_id)
        return {"project": project}
    except CodecollabError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    except Exception as e:
        logger.exception("get_project failed")
        raise HTTPException(status_code=500, detail=str(e))


@app.delete("/api/projects/{project_id}", response_model=dict)
async def delete_project(project_id: str, user: User = Depends(get_current_user),
                         database: Database = Depends(get_db)):
    try:
        return await database.delete_project(project_id, user.id)
    except CodecollabError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    except Exception as e:
        logger.exception("delete_project failed")
        raise HTTPException(status_code=500, detail=str(e))


# Users endpoints
@app.get("/api/users/all", response_model=dict)
async def list_users(user: User = Depends(get_current_user), database: Database = Depends(get_db)):
    try:
        users = await database.get_all_users(exclude_user_id=user.id)
        return {"users": users}
    except CodecollabError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    except Exception as e:
        logger.exception("list_users failed")
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/api/users/me", response_model=dict)
async def current_user(user: User = Depends(get_current_user)):
    return {"user": user.wire()}


# Project rooms
async def answer_ai(project_id: str, message: str, database: Database, rooms: RoomHub) -> None:
    """Ask the AI and broadcast its raw reply to the whole room, sender included"""
    file_tree = None
    try:
        file_tree = (await database.get_project(project_id)).get("fileTree")
    except Exception as e:
        logger.warning("[ai] could not load file tree for %s: %s", project_id, e)

    try:
        result = await ai.generate_result(message, file_tree)
    except AIServiceError as e:
        logger.error("[ai] %s", e)
        result = json.dumps({"text": f"AI service error: {e}", "error": True})

    await rooms.broadcast(project_id, PROJECT_MESSAGE, ChatMessage(message=result, sender=AI_USER).wire())


def _schedule_ai(project_id: str, message: str, database: Database, rooms: RoomHub) -> None:
    task = asyncio.create_task(answer_ai(project_id, message, database, rooms))
    _ai_tasks.add(task)
    task.add_done_callback(_ai_tasks.discard)


async def _handle_frame(project_id: str, participant: Participant, frame: str,
                        database: Database, rooms: RoomHub) -> None:
    websocket = participant.websocket
    try:
        envelope = json.loads(frame)
    except ValueError:
        await websocket.send_json({"event": ERROR, "data": {"message": "Frames must be JSON"}})
        return

    guard = guard_payload("envelope", RoomEnvelopeSchema, envelope)
    if guard["action"] != "PROCEED":
        await websocket.send_json({"event": ERROR, "data": {"message": guard["message"], "errors": guard["errors"]}})
        return

    if envelope["event"] != PROJECT_MESSAGE:
        await websocket.send_json({"event": ERROR, "data": {"message": f"Unsupported event: {envelope['event']}"}})
        return

    data = envelope.get("data")
    guard = guard_payload(PROJECT_MESSAGE, ChatMessageSchema, data)
    if guard["action"] != "PROCEED":
        await websocket.send_json({"event": ERROR, "data": {"message": guard["message"], "errors": guard["errors"]}})
        return

    # The sender is whoever authenticated this socket, not what the client claims.
    message = ChatMessage(message=data["message"], sender=participant.user).wire()
    await rooms.publish(project_id, PROJECT_MESSAGE, message, exclude=participant)

    if ai.mentions_ai(data["message"]):
        _schedule_ai(project_id, data["message"], database, rooms)


@app.websocket("/ws/projects/{project_id}")
async def project_room(websocket: WebSocket, project_id: str, token: Optional[str] = None,
                       database: Database = Depends(get_db), rooms: RoomHub = Depends(get_hub)):
    """WebSocket endpoint for one project room"""
    try:
        user = decode_token(token)
    except InvalidToken as e:
        logger.info("[rooms] rejected socket for %s: %s", project_id, e)
        await websocket.close(code=1008)
        return

    try:
        allowed = await database.is_member(project_id, user.id)
    except CodecollabError as e:
        logger.info("[rooms] rejected socket for %s: %s", project_id, e)
        allowed = False
    if not allowed:
        await websocket.close(code=1008)
        return

    await websocket.accept()
    participant = await rooms.join(project_id, websocket, user)
    try:
        await websocket.send_json({"event": JOINED, "data": {"projectId": project_id, "user": user.wire()}})
        while True:
            frame = await websocket.receive_text()
            await _handle_frame(project_id, participant, frame, database, rooms)
    except WebSocketDisconnect:
        pass
    finally:
        await rooms.leave(project_id, participant)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=config.HOST, port=config.PORT)
