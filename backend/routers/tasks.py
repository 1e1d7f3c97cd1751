# routers/tasks.py — Task cards
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from activity import record_activity
from auth import Session, get_current_session, require_membership
from cache import Cache, get_cache
from database import get_db_session
from errors import NotFound
from models import ProjectMember, Task, TaskPriority, utcnow
from ordering import append_task_position, lock_column, move_task, ordered
from schemas import (
    LabelOut, SubtaskOut, TaskCreate, TaskDetailOut, TaskOut, TaskUpdate, project_id_query, task_out,
)

router = APIRouter(prefix="/api/tasks", tags=["Tasks"])


async def _get_task(db: AsyncSession, task_id: str) -> Task:
    task = await db.get(Task, task_id)
    if task is None:
        raise NotFound("Task not found")
    return task


async def _check_assignee(db: AsyncSession, project_id: str, assignee_id: str) -> None:
    """Assignees must be members of the task's project"""
    stmt = (
        select(ProjectMember.id)
        .where(ProjectMember.project_id == project_id, ProjectMember.user_id == assignee_id)
        .limit(1)
    )
    result = await db.execute(stmt)
    if result.scalar_one_or_none() is None:
        raise NotFound("Assignee not found")


@router.get("", response_model=List[TaskOut])
async def list_tasks(
    project_id: str = Depends(project_id_query),
    session: Session = Depends(get_current_session),
    db: AsyncSession = Depends(get_db_session),
):
    """All tasks of a project in display order"""
    await require_membership(db, project_id, session.user_id)
    result = await db.execute(select(Task).where(Task.project_id == project_id))
    return [task_out(t) for t in ordered(result.scalars().all())]


@router.post("", response_model=TaskOut, status_code=201)
async def create_task(
    data: TaskCreate,
    session: Session = Depends(get_current_session),
    db: AsyncSession = Depends(get_db_session),
    cache: Cache = Depends(get_cache),
):
    """Create a task at the end of its column"""
    await require_membership(db, data.project_id, session.user_id)

    # Held until commit: concurrent appends to this column wait here
    column = await lock_column(db, data.column_id)
    if column is None or column.project_id != data.project_id:
        raise NotFound("Column not found")

    if data.assignee_id:
        await _check_assignee(db, data.project_id, data.assignee_id)

    position = await append_task_position(db, column.id)
    task = Task(
        project_id=data.project_id,
        column_id=column.id,
        title=data.title,
        description=data.description,
        assignee_id=data.assignee_id or None,
        priority=data.priority,
        due_date=data.due_date,
        position=position,
        created_by=session.user_id,
    )
    db.add(task)
    await db.flush()

    record_activity(
        db, data.project_id, session.user_id, "task.created",
        task_id=task.id, details={"title": data.title, "column_id": column.id, "position": position},
    )
    await db.commit()
    await db.refresh(task)
    await cache.invalidate_board(data.project_id)
    return task_out(task)


@router.get("/{task_id}", response_model=TaskDetailOut)
async def get_task(
    task_id: str,
    session: Session = Depends(get_current_session),
    db: AsyncSession = Depends(get_db_session),
):
    """Task with its labels and subtasks"""
    stmt = (
        select(Task)
        .where(Task.id == task_id)
        .options(selectinload(Task.labels), selectinload(Task.subtasks))
    )
    result = await db.execute(stmt)
    task = result.scalar_one_or_none()
    if task is None:
        raise NotFound("Task not found")
    await require_membership(db, task.project_id, session.user_id)

    return TaskDetailOut(
        **task_out(task).model_dump(),
        labels=[LabelOut(id=l.id, name=l.name, color=l.color) for l in task.labels],
        subtasks=[
            SubtaskOut(id=s.id, title=s.title, is_completed=s.is_completed, position=s.position)
            for s in task.subtasks
        ],
    )


@router.patch("/{task_id}", response_model=TaskOut)
async def update_task(
    task_id: str,
    data: TaskUpdate,
    session: Session = Depends(get_current_session),
    db: AsyncSession = Depends(get_db_session),
    cache: Cache = Depends(get_cache),
):
    """Edit a task; a new column_id moves it without renumbering anything"""
    task = await _get_task(db, task_id)
    await require_membership(db, task.project_id, session.user_id)

    changes = {}
    if data.title is not None and data.title != task.title:
        changes["title"] = [task.title, data.title]
        task.title = data.title
    if data.description is not None and data.description != task.description:
        changes["description"] = None
        task.description = data.description
    if data.priority is not None:
        old_p = TaskPriority(task.priority).value
        if data.priority.value != old_p:
            changes["priority"] = [old_p, data.priority.value]
            task.priority = data.priority
    if "assignee_id" in data.model_fields_set and data.assignee_id != task.assignee_id:
        if data.assignee_id:
            await _check_assignee(db, task.project_id, data.assignee_id)
        changes["assignee_id"] = [task.assignee_id, data.assignee_id]
        task.assignee_id = data.assignee_id or None
    if "due_date" in data.model_fields_set:
        task.due_date = data.due_date
        changes["due_date"] = None
    if data.completed is not None:
        if data.completed and task.completed_at is None:
            task.completed_at = utcnow()
            changes["completed"] = [False, True]
        elif not data.completed and task.completed_at is not None:
            task.completed_at = None
            changes["completed"] = [True, False]

    if data.column_id is not None and data.column_id != task.column_id:
        old_column_id = task.column_id
        target = await move_task(db, task, data.column_id, data.position)
        record_activity(
            db, task.project_id, session.user_id, "task.moved", task_id=task.id,
            details={"from_column_id": old_column_id, "to_column_id": target.id, "position": task.position},
        )
    elif data.position is not None and data.position != task.position:
        changes["position"] = [task.position, data.position]
        task.position = data.position

    if changes:
        record_activity(
            db, task.project_id, session.user_id, "task.updated",
            task_id=task.id, details={"changes": changes},
        )

    await db.commit()
    await db.refresh(task)
    await cache.invalidate_board(task.project_id)
    return task_out(task)


@router.delete("/{task_id}")
async def delete_task(
    task_id: str,
    session: Session = Depends(get_current_session),
    db: AsyncSession = Depends(get_db_session),
    cache: Cache = Depends(get_cache),
):
    """Delete a task; its activity entries stay behind with a null task reference"""
    task = await _get_task(db, task_id)
    project_id = task.project_id
    await require_membership(db, project_id, session.user_id)

    record_activity(
        db, project_id, session.user_id, "task.deleted",
        details={"task_id": task_id, "title": task.title},
    )
    await db.execute(delete(Task).where(Task.id == task_id))
    await db.commit()
    await cache.invalidate_board(project_id)
    return {"status": "deleted", "task_id": task_id}
