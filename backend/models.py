# models.py — Database models for the Kanban service
# - UUID string primary keys everywhere
# - Referential integrity declared once, at the schema level (ON DELETE rules)
# - Positions are plain integers used only for ordering; neither unique nor contiguous

import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum
from sqlalchemy import (
    Column, String, DateTime, JSON, Boolean, Integer,
    Enum as SQLEnum, ForeignKey, Text, Index, UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow():
    return datetime.now(timezone.utc)


def new_uuid():
    return str(uuid.uuid4())


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


# ============================================================
# ENUMS
# ============================================================

class MemberRole(str, PyEnum):
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"
    VIEWER = "viewer"


class ProjectVisibility(str, PyEnum):
    PRIVATE = "private"
    TEAM = "team"
    PUBLIC = "public"


class TaskPriority(str, PyEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# ============================================================
# USERS & PROJECTS
# ============================================================

class User(Base):
    """A person known to the identity provider"""
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=new_uuid)
    subject = Column(String, nullable=False, unique=True)  # IdP "sub" claim
    email = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    avatar_url = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    memberships = relationship("ProjectMember", back_populates="user", passive_deletes=True)


class Project(Base):
    __tablename__ = "projects"

    id = Column(String, primary_key=True, default=new_uuid)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    color = Column(String, nullable=False, default="#3B82F6")
    icon = Column(String, nullable=True)
    visibility = Column(
        SQLEnum(ProjectVisibility, name="project_visibility", values_callable=_enum_values),
        nullable=False, default=ProjectVisibility.TEAM,
    )
    created_by = Column(String, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    archived_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    members = relationship("ProjectMember", back_populates="project", passive_deletes=True)
    columns = relationship(
        "BoardColumn", back_populates="project",
        order_by="BoardColumn.position", passive_deletes=True,
    )
    tasks = relationship("Task", back_populates="project", passive_deletes=True)
    creator = relationship("User", foreign_keys=[created_by])


class ProjectMember(Base):
    """Grants a user a role within a project"""
    __tablename__ = "project_members"

    id = Column(String, primary_key=True, default=new_uuid)
    project_id = Column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(
        SQLEnum(MemberRole, name="member_role", values_callable=_enum_values),
        nullable=False, default=MemberRole.MEMBER,
    )
    joined_at = Column(DateTime(timezone=True), default=utcnow)

    project = relationship("Project", back_populates="members")
    user = relationship("User", back_populates="memberships")

    __table_args__ = (
        UniqueConstraint("project_id", "user_id", name="uq_project_member"),
    )


# ============================================================
# BOARD
# ============================================================

class BoardColumn(Base):
    """An ordered bucket of tasks within a project"""
    __tablename__ = "board_columns"

    id = Column(String, primary_key=True, default=new_uuid)
    project_id = Column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    position = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    project = relationship("Project", back_populates="columns")
    tasks = relationship("Task", back_populates="column", order_by="Task.position", passive_deletes=True)

    __table_args__ = (
        Index("idx_col_project_pos", "project_id", "position"),
    )


class Task(Base):
    """Task card; owned by its project and referenced by its column"""
    __tablename__ = "tasks"

    id = Column(String, primary_key=True, default=new_uuid)
    project_id = Column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    column_id = Column(String, ForeignKey("board_columns.id", ondelete="CASCADE"), nullable=False, index=True)

    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    position = Column(Integer, nullable=False, default=0)  # Order within column
    priority = Column(
        SQLEnum(TaskPriority, name="task_priority", values_callable=_enum_values),
        nullable=False, default=TaskPriority.MEDIUM,
    )
    assignee_id = Column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    due_date = Column(DateTime(timezone=True), nullable=True)
    created_by = Column(String, ForeignKey("users.id"), nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    project = relationship("Project", back_populates="tasks")
    column = relationship("BoardColumn", back_populates="tasks")
    assignee = relationship("User", foreign_keys=[assignee_id])
    creator = relationship("User", foreign_keys=[created_by])
    labels = relationship("TaskLabel", back_populates="task", passive_deletes=True)
    comments = relationship(
        "TaskComment", back_populates="task",
        order_by="TaskComment.created_at", passive_deletes=True,
    )
    attachments = relationship("TaskAttachment", back_populates="task", passive_deletes=True)
    subtasks = relationship(
        "Subtask", back_populates="task",
        order_by="Subtask.position", passive_deletes=True,
    )

    __table_args__ = (
        Index("idx_task_col_pos", "column_id", "position"),
    )


class TaskLabel(Base):
    __tablename__ = "task_labels"

    id = Column(String, primary_key=True, default=new_uuid)
    task_id = Column(String, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    color = Column(String, nullable=False, default="#6366f1")

    task = relationship("Task", back_populates="labels")


class TaskComment(Base):
    """Comment on a task; the author never changes after creation"""
    __tablename__ = "task_comments"

    id = Column(String, primary_key=True, default=new_uuid)
    task_id = Column(String, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    task = relationship("Task", back_populates="comments")
    author = relationship("User")


class TaskAttachment(Base):
    __tablename__ = "task_attachments"

    id = Column(String, primary_key=True, default=new_uuid)
    task_id = Column(String, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    filename = Column(String, nullable=False)
    file_url = Column(String, nullable=False)
    file_size = Column(Integer, nullable=False, default=0)
    uploaded_by = Column(String, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    task = relationship("Task", back_populates="attachments")


class Subtask(Base):
    __tablename__ = "subtasks"

    id = Column(String, primary_key=True, default=new_uuid)
    task_id = Column(String, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String, nullable=False)
    is_completed = Column(Boolean, nullable=False, default=False)
    position = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    task = relationship("Task", back_populates="subtasks")


class ActivityLog(Base):
    """Append-only activity trail; survives deletion of the rows it mentions"""
    __tablename__ = "activity_logs"

    id = Column(String, primary_key=True, default=new_uuid)
    project_id = Column(String, ForeignKey("projects.id", ondelete="SET NULL"), nullable=True, index=True)
    task_id = Column(String, ForeignKey("tasks.id", ondelete="SET NULL"), nullable=True, index=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False)
    action = Column(String, nullable=False)  # "task.created", "task.moved", ...
    details = Column(JSON, default=dict)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index("idx_activity_project_time", "project_id", "created_at"),
    )
