from motor.motor_asyncio import AsyncIOMotorClient
from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import logging

from codecollab import config
from codecollab.errors import DuplicateProjectError, MembershipError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_object_id(value: Any, field: str) -> ObjectId:
    if not value:
        raise ValidationError(f"{field} is required")
    if isinstance(value, ObjectId):
        return value
    if not ObjectId.is_valid(str(value)):
        raise ValidationError(f"Invalid {field}")
    return ObjectId(str(value))


def serialize_user(user: Dict) -> Dict:
    return {
        "id": str(user["_id"]),
        "email": user.get("email"),
        "displayName": user.get("name") or user.get("email"),
    }


def serialize_project(project: Dict, users: Optional[List[Dict]] = None) -> Dict:
    """Convert a project document into its JSON shape (string ids, ISO dates)"""
    data = {
        "id": str(project["_id"]),
        "name": project.get("name"),
        "users": users if users is not None else [str(u) for u in project.get("users", [])],
        "fileTree": project.get("fileTree") or {},
    }
    for key in ("created_at", "updated_at"):
        value = project.get(key)
        data[key] = value.isoformat() if value else None
    return data


class Database:
    def __init__(self, mongo_url: Optional[str] = None, db_name: Optional[str] = None):
        self.client = AsyncIOMotorClient(mongo_url or config.MONGO_URL)
        self.db = self.client[db_name or config.DB_NAME]
        self.projects = self.db.projects
        # Written by the auth service; read-only from here.
        self.users = self.db.users

    async def ensure_indexes(self) -> None:
        """Create the unique project-name index and the membership index"""
        await self.projects.create_index("name", unique=True)
        await self.projects.create_index("users")

    async def create_project(self, name: str, user_id: str) -> Dict:
        """Create a project whose first member is its creator"""
        if not name or not name.strip():
            raise ValidationError("Name is required")
        owner = to_object_id(user_id, "userId")

        now = _utcnow()
        project = {
            "name": name.strip(),
            "users": [owner],
            "fileTree": {},
            "created_at": now,
            "updated_at": now,
        }
        try:
            result = await self.projects.insert_one(project)
        except DuplicateKeyError:
            raise DuplicateProjectError("Project name already exists")
        project["_id"] = result.inserted_id
        return serialize_project(project)

    async def get_all_projects_by_user(self, user_id: str) -> List[Dict]:
        """Get every project the user is a member of"""
        member = to_object_id(user_id, "userId")
        cursor = self.projects.find({"users": member}).sort("created_at", -1)
        projects = []
        async for project in cursor:
            projects.append(serialize_project(project))
        return projects

    async def get_project(self, project_id: str) -> Dict:
        """Get a project by ID with its members populated"""
        oid = to_object_id(project_id, "projectId")
        project = await self.projects.find_one({"_id": oid})
        if not project:
            raise NotFoundError("Project not found")

        members = []
        cursor = self.users.find({"_id": {"$in": project.get("users", [])}})
        async for user in cursor:
            members.append(serialize_user(user))
        return serialize_project(project, users=members)

    async def is_member(self, project_id: str, user_id: str) -> bool:
        project = await self.projects.find_one(
            {"_id": to_object_id(project_id, "projectId"), "users": to_object_id(user_id, "userId")},
            {"_id": 1},
        )
        return project is not None

    async def project_exists(self, project_id: str) -> bool:
        count = await self.projects.count_documents({"_id": to_object_id(project_id, "projectId")}, limit=1)
        return count > 0

    async def add_users_to_project(self, project_id: str, users: List[str], user_id: str) -> Dict:
        """Add members to a project; the caller must already be a member"""
        oid = to_object_id(project_id, "projectId")
        if users is None:
            raise ValidationError("users are required")
        if not isinstance(users, list) or any(not ObjectId.is_valid(str(u)) for u in users):
            raise ValidationError("Invalid userId(s) in users array")
        caller = to_object_id(user_id, "userId")

        if not await self.projects.find_one({"_id": oid, "users": caller}, {"_id": 1}):
            raise MembershipError("User not belong to this project")

        project = await self.projects.find_one_and_update(
            {"_id": oid},
            {
                "$addToSet": {"users": {"$each": [ObjectId(str(u)) for u in users]}},
                "$set": {"updated_at": _utcnow()},
            },
            return_document=ReturnDocument.AFTER,
        )
        if not project:
            raise NotFoundError("Project not found")
        return serialize_project(project)

    async def update_file_tree(self, project_id: str, file_tree: Dict) -> Dict:
        """Replace the whole file tree of a project"""
        oid = to_object_id(project_id, "projectId")
        if file_tree is None:
            raise ValidationError("fileTree is required")

        project = await self.projects.find_one_and_update(
            {"_id": oid},
            {"$set": {"fileTree": file_tree, "updated_at": _utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        if not project:
            raise NotFoundError("Project not found")
        return serialize_project(project)

    async def delete_project(self, project_id: str, user_id: str) -> Dict:
        """Delete a project after checking the caller is a member"""
        oid = to_object_id(project_id, "projectId")
        caller = to_object_id(user_id, "userId")

        project = await self.projects.find_one({"_id": oid, "users": caller}, {"_id": 1})
        if not project:
            if await self.project_exists(project_id):
                logger.warning("User %s tried to delete project %s without membership", user_id, project_id)
                raise MembershipError("You don't have permission to delete this project")
            raise NotFoundError("Project not found")

        result = await self.projects.delete_one({"_id": oid})
        if result.deleted_count == 0:
            raise NotFoundError("Failed to delete project - no document was deleted")

        logger.info("Deleted project %s", project_id)
        return {
            "success": True,
            "message": "Project deleted successfully",
            "deletedCount": result.deleted_count,
        }

    async def get_all_users(self, exclude_user_id: Optional[str] = None) -> List[Dict]:
        """Get all users, optionally excluding the caller"""
        query: Dict[str, Any] = {}
        if exclude_user_id:
            query["_id"] = {"$ne": to_object_id(exclude_user_id, "userId")}
        users = []
        async for user in self.users.find(query):
            users.append(serialize_user(user))
        return users
