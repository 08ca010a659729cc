"""
Request bodies for the ProjectHub REST API.

JSON keys are camelCase (``assignedTo``, ``dueDate``); snake_case is accepted
too. Update bodies forbid unknown keys so reward and completion fields can
never be written through them.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class RequestModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class StrictRequestModel(RequestModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


# ---------------------------------------------------------------------------
# Auth & users
# ---------------------------------------------------------------------------

class RegisterRequest(RequestModel):
    name: str
    email: str
    password: str
    department: str


class CreateUserRequest(RegisterRequest):
    role: str = "employee"
    permissions: List[str] = Field(default_factory=list)


class LoginRequest(RequestModel):
    email: str
    password: str


class GiftRequest(RequestModel):
    value: int
    description: str


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------

class TaskCreateRequest(RequestModel):
    title: str
    description: str
    project: int
    assigned_to: int
    due_date: datetime
    priority: str = "medium"
    status: str = "pending"
    created_by: Optional[int] = None


class TaskUpdateRequest(StrictRequestModel):
    title: Optional[str] = None
    description: Optional[str] = None
    project: Optional[int] = None
    assigned_to: Optional[int] = None
    priority: Optional[str] = None
    due_date: Optional[datetime] = None
    status: Optional[str] = None

    def to_fields(self) -> dict:
        """Set fields only, keyed by TaskService field names."""
        renames = {"project": "project_id", "assigned_to": "assigned_to_id"}
        return {renames.get(k, k): v for k, v in self.model_dump(exclude_unset=True).items()}


class StatusRequest(RequestModel):
    status: Optional[str] = None


class CommentRequest(RequestModel):
    text: str


class AttachmentRequest(RequestModel):
    name: str
    url: str
    type: Optional[str] = None


class ExtensionRequestBody(RequestModel):
    reason: Optional[str] = None
    new_due_date: Optional[datetime] = None


class ExtensionResolveBody(RequestModel):
    status: Optional[str] = None
    new_due_date: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------

class ClientInfo(StrictRequestModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class ProjectCreateRequest(RequestModel):
    name: str
    description: str
    client: ClientInfo
    start_date: datetime
    end_date: datetime
    budget: float
    project_manager: int
    status: str = "planning"
    team: List[int] = Field(default_factory=list)


class ProjectUpdateRequest(StrictRequestModel):
    name: Optional[str] = None
    description: Optional[str] = None
    client: Optional[ClientInfo] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    budget: Optional[float] = None
    status: Optional[str] = None

    def to_fields(self) -> dict:
        return self.model_dump(exclude_unset=True)


class TeamMemberRequest(RequestModel):
    user_id: int


class MilestoneRequest(RequestModel):
    title: str
    description: str
    due_date: datetime


class MilestoneUpdateRequest(RequestModel):
    completed: bool


class DocumentRequest(RequestModel):
    name: str
    url: str
    type: Optional[str] = None
