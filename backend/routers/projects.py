# routers/projects.py — Projects & memberships
import logging
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from activity import record_activity
from auth import Session, get_current_session, require_membership
from cache import Cache, get_cache
from database import get_db_session
from errors import NotFound, UpstreamError, ValidationError
from models import MemberRole, Project, ProjectMember, ProjectVisibility, User, utcnow
from schemas import (
    MemberCreate, MemberOut, ProjectCreate, ProjectOut, ProjectUpdate, ProjectWithRole,
    member_out, project_out,
)

logger = logging.getLogger("kanban.projects")

router = APIRouter(prefix="/api/projects", tags=["Projects"])

MANAGERS = (MemberRole.OWNER, MemberRole.ADMIN)


async def _get_project(db: AsyncSession, project_id: str) -> Project:
    project = await db.get(Project, project_id)
    if project is None:
        raise NotFound("Project not found")
    return project


@router.get("", response_model=List[ProjectWithRole])
async def list_projects(
    session: Session = Depends(get_current_session),
    db: AsyncSession = Depends(get_db_session),
):
    """List the caller's projects together with their role in each"""
    stmt = (
        select(Project, ProjectMember.role)
        .join(ProjectMember, ProjectMember.project_id == Project.id)
        .where(ProjectMember.user_id == session.user_id)
        .order_by(Project.created_at)
    )
    result = await db.execute(stmt)
    return [
        ProjectWithRole(project=project_out(p), role=MemberRole(role).value)
        for p, role in result.all()
    ]


@router.post("", response_model=ProjectOut, status_code=201)
async def create_project(
    data: ProjectCreate,
    session: Session = Depends(get_current_session),
    db: AsyncSession = Depends(get_db_session),
):
    """Create a project and its owner membership in one transaction"""
    project = Project(
        name=data.name,
        description=data.description,
        color=data.color or "#3B82F6",
        icon=data.icon,
        visibility=data.visibility or ProjectVisibility.PRIVATE,
        created_by=session.user_id,
    )
    try:
        db.add(project)
        await db.flush()
        db.add(ProjectMember(project_id=project.id, user_id=session.user_id, role=MemberRole.OWNER))
        record_activity(db, project.id, session.user_id, "project.created", details={"name": data.name})
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"Failed to create project: {e}")
        raise UpstreamError("Failed to create project") from e

    await db.refresh(project)
    return project_out(project)


@router.get("/{project_id}", response_model=ProjectWithRole)
async def get_project(
    project_id: str,
    session: Session = Depends(get_current_session),
    db: AsyncSession = Depends(get_db_session),
):
    membership = await require_membership(db, project_id, session.user_id)
    project = await _get_project(db, project_id)
    return ProjectWithRole(project=project_out(project), role=MemberRole(membership.role).value)


@router.patch("/{project_id}", response_model=ProjectOut)
async def update_project(
    project_id: str,
    data: ProjectUpdate,
    session: Session = Depends(get_current_session),
    db: AsyncSession = Depends(get_db_session),
):
    """Update project settings (owners and admins)"""
    await require_membership(db, project_id, session.user_id, roles=MANAGERS)
    project = await _get_project(db, project_id)

    changes = data.model_dump(exclude_unset=True, exclude={"archived"})
    for field, value in changes.items():
        if value is not None:
            setattr(project, field, value)
    if data.archived is not None:
        project.archived_at = utcnow() if data.archived else None

    record_activity(db, project.id, session.user_id, "project.updated", details={"fields": sorted(changes)})
    await db.commit()
    await db.refresh(project)
    return project_out(project)


@router.delete("/{project_id}")
async def delete_project(
    project_id: str,
    session: Session = Depends(get_current_session),
    db: AsyncSession = Depends(get_db_session),
    cache: Cache = Depends(get_cache),
):
    """Delete a project; columns, tasks and their children go with it"""
    await require_membership(db, project_id, session.user_id, roles=(MemberRole.OWNER,))
    await _get_project(db, project_id)

    await db.execute(delete(Project).where(Project.id == project_id))
    await db.commit()
    await cache.invalidate_board(project_id)
    return {"status": "deleted", "project_id": project_id}


# ============================================================
# MEMBERS
# ============================================================

@router.get("/{project_id}/members", response_model=List[MemberOut])
async def list_members(
    project_id: str,
    session: Session = Depends(get_current_session),
    db: AsyncSession = Depends(get_db_session),
):
    await require_membership(db, project_id, session.user_id)
    stmt = (
        select(ProjectMember)
        .where(ProjectMember.project_id == project_id)
        .options(selectinload(ProjectMember.user))
        .order_by(ProjectMember.joined_at)
    )
    result = await db.execute(stmt)
    return [
        member_out(m, m.user)
        for m in result.scalars().all()
    ]


@router.post("/{project_id}/members", response_model=MemberOut, status_code=201)
async def add_member(
    project_id: str,
    data: MemberCreate,
    session: Session = Depends(get_current_session),
    db: AsyncSession = Depends(get_db_session),
):
    """Grant an existing user a role in the project (owners and admins)"""
    await require_membership(db, project_id, session.user_id, roles=MANAGERS)
    if data.role == MemberRole.OWNER:
        raise ValidationError("A project has a single owner")

    result = await db.execute(select(User).where(User.email == data.email).limit(1))
    user = result.scalar_one_or_none()
    if user is None:
        raise NotFound("User not found")

    member = ProjectMember(project_id=project_id, user_id=user.id, role=data.role)
    db.add(member)
    record_activity(
        db, project_id, session.user_id, "member.added",
        details={"user_id": user.id, "role": data.role.value},
    )
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ValidationError("User is already a member of this project")

    await db.refresh(member)
    return member_out(member, user)
