from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional


class ProjectCreate(BaseModel):
    name: str


class AddUsersRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    project_id: str = Field(alias="projectId")
    users: List[str]


class UpdateFileTreeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    project_id: str = Field(alias="projectId")
    file_tree: Dict[str, Any] = Field(alias="fileTree")


class User(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    email: Optional[str] = None
    display_name: Optional[str] = Field(default=None, alias="displayName")

    def wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


AI_USER = User(id="ai", email="ai", displayName="AI")


class ChatMessage(BaseModel):
    """A room chat message as fanned out to participants"""

    sender: User
    message: Any

    def wire(self) -> Dict[str, Any]:
        return {"message": self.message, "sender": self.sender.wire()}
