# schemas.py — Request/response models shared across routers
from datetime import datetime
from typing import List, Optional

from fastapi import Query
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from errors import ValidationError
from models import (
    BoardColumn, MemberRole, Project, ProjectMember, ProjectVisibility, Task,
    TaskComment, TaskPriority, User,
)


class RequestModel(BaseModel):
    """Accepts camelCase (projectId) as well as snake_case (project_id) keys"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _ts(dt) -> Optional[str]:
    if dt is None:
        return None
    return dt.isoformat() if isinstance(dt, datetime) else str(dt)


def _enum(value) -> Optional[str]:
    if value is None:
        return None
    return value.value if hasattr(value, "value") else str(value)


# ============================================================
# REQUESTS
# ============================================================

class ProjectCreate(RequestModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    color: Optional[str] = None
    icon: Optional[str] = None
    visibility: Optional[ProjectVisibility] = None


class ProjectUpdate(RequestModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    color: Optional[str] = None
    icon: Optional[str] = None
    visibility: Optional[ProjectVisibility] = None
    archived: Optional[bool] = None


class MemberCreate(RequestModel):
    email: str = Field(..., min_length=3)
    role: MemberRole = MemberRole.MEMBER


class ColumnCreate(RequestModel):
    project_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=100)
    position: Optional[int] = None


class ColumnUpdate(RequestModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    position: Optional[int] = None


class TaskCreate(RequestModel):
    project_id: str = Field(..., min_length=1)
    column_id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1, max_length=500)
    description: Optional[str] = None
    assignee_id: Optional[str] = None
    priority: TaskPriority = TaskPriority.MEDIUM
    due_date: Optional[datetime] = None


class TaskUpdate(RequestModel):
    title: Optional[str] = Field(None, min_length=1, max_length=500)
    description: Optional[str] = None
    assignee_id: Optional[str] = None
    priority: Optional[TaskPriority] = None
    due_date: Optional[datetime] = None
    column_id: Optional[str] = None
    position: Optional[int] = None
    completed: Optional[bool] = None


class CommentCreate(RequestModel):
    task_id: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1, max_length=10000)


# ============================================================
# QUERY PARAMETERS
# ============================================================

def project_id_query(
    camel: Optional[str] = Query(None, alias="projectId"),
    snake: Optional[str] = Query(None, alias="project_id"),
) -> str:
    """Accepts ?projectId= as well as ?project_id="""
    if not (camel or snake):
        raise ValidationError("projectId is required")
    return camel or snake


def task_id_query(
    camel: Optional[str] = Query(None, alias="taskId"),
    snake: Optional[str] = Query(None, alias="task_id"),
) -> str:
    if not (camel or snake):
        raise ValidationError("taskId is required")
    return camel or snake


# ============================================================
# RESPONSES
# ============================================================

class UserSummary(BaseModel):
    id: str
    name: str
    email: str
    avatar_url: Optional[str] = None


class ProjectOut(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    color: str
    icon: Optional[str] = None
    visibility: str
    created_by: str
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    archived_at: Optional[str] = None


class ProjectWithRole(BaseModel):
    project: ProjectOut
    role: str


class MemberOut(BaseModel):
    id: str
    project_id: str
    role: str
    joined_at: Optional[str] = None
    user: UserSummary


class LabelOut(BaseModel):
    id: str
    name: str
    color: str


class SubtaskOut(BaseModel):
    id: str
    title: str
    is_completed: bool
    position: int


class TaskOut(BaseModel):
    id: str
    project_id: str
    column_id: str
    title: str
    description: Optional[str] = None
    position: int
    priority: str
    assignee_id: Optional[str] = None
    due_date: Optional[str] = None
    created_by: str
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    completed_at: Optional[str] = None


class TaskDetailOut(TaskOut):
    labels: List[LabelOut] = []
    subtasks: List[SubtaskOut] = []


class ColumnOut(BaseModel):
    id: str
    project_id: str
    name: str
    position: int
    created_at: Optional[str] = None


class ColumnWithTasks(ColumnOut):
    tasks: List[TaskOut] = []


class CommentOut(BaseModel):
    id: str
    task_id: str
    user_id: str
    content: str
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class CommentWithUser(BaseModel):
    comment: CommentOut
    user: UserSummary


# ============================================================
# CONVERTERS
# ============================================================

def user_summary(u: User) -> UserSummary:
    return UserSummary(id=u.id, name=u.name, email=u.email, avatar_url=u.avatar_url)


def project_out(p: Project) -> ProjectOut:
    return ProjectOut(
        id=p.id, name=p.name, description=p.description,
        color=p.color, icon=p.icon, visibility=_enum(p.visibility),
        created_by=p.created_by,
        created_at=_ts(p.created_at), updated_at=_ts(p.updated_at),
        archived_at=_ts(p.archived_at),
    )


def column_out(c: BoardColumn) -> ColumnOut:
    return ColumnOut(
        id=c.id, project_id=c.project_id, name=c.name,
        position=c.position, created_at=_ts(c.created_at),
    )


def task_out(t: Task) -> TaskOut:
    return TaskOut(
        id=t.id,
        project_id=t.project_id,
        column_id=t.column_id,
        title=t.title,
        description=t.description,
        position=t.position or 0,
        priority=_enum(t.priority),
        assignee_id=t.assignee_id,
        due_date=_ts(t.due_date),
        created_by=t.created_by,
        created_at=_ts(t.created_at),
        updated_at=_ts(t.updated_at),
        completed_at=_ts(t.completed_at),
    )


def comment_out(c: TaskComment) -> CommentOut:
    return CommentOut(
        id=c.id, task_id=c.task_id, user_id=c.user_id, content=c.content,
        created_at=_ts(c.created_at), updated_at=_ts(c.updated_at),
    )


def member_out(m: ProjectMember, user: User) -> MemberOut:
    return MemberOut(
        id=m.id, project_id=m.project_id, role=_enum(m.role),
        joined_at=_ts(m.joined_at), user=user_summary(user),
    )
