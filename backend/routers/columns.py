# routers/columns.py — Board columns
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from activity import record_activity
from auth import Session, get_current_session, require_membership
from cache import Cache, get_cache
from database import get_db_session
from errors import NotFound
from models import BoardColumn, Task
from ordering import append_column_position, ordered
from schemas import (
    ColumnCreate, ColumnOut, ColumnUpdate, ColumnWithTasks, column_out, project_id_query, task_out,
)

router = APIRouter(prefix="/api/columns", tags=["Columns"])


async def load_board(db: AsyncSession, project_id: str) -> List[ColumnWithTasks]:
    """Columns of a project in display order, each with its tasks in display order"""
    col_result = await db.execute(select(BoardColumn).where(BoardColumn.project_id == project_id))
    task_result = await db.execute(select(Task).where(Task.project_id == project_id))

    by_column = {}
    for task in ordered(task_result.scalars().all()):
        by_column.setdefault(task.column_id, []).append(task_out(task))

    return [
        ColumnWithTasks(**column_out(c).model_dump(), tasks=by_column.get(c.id, []))
        for c in ordered(col_result.scalars().all())
    ]


async def _get_column(db: AsyncSession, column_id: str) -> BoardColumn:
    column = await db.get(BoardColumn, column_id)
    if column is None:
        raise NotFound("Column not found")
    return column


@router.get("", response_model=List[ColumnWithTasks])
async def list_columns(
    project_id: str = Depends(project_id_query),
    session: Session = Depends(get_current_session),
    db: AsyncSession = Depends(get_db_session),
    cache: Cache = Depends(get_cache),
):
    """The board: columns with their ordered tasks"""
    await require_membership(db, project_id, session.user_id)

    # Read the version before the database so a mutation committed meanwhile
    # leaves this snapshot tagged with a stale version
    version = await cache.board_version(project_id)
    cached = await cache.get_board(project_id, version)
    if cached is not None:
        return cached

    board = await load_board(db, project_id)
    await cache.set_board(project_id, version, [c.model_dump() for c in board])
    return board


@router.post("", response_model=ColumnOut, status_code=201)
async def create_column(
    data: ColumnCreate,
    session: Session = Depends(get_current_session),
    db: AsyncSession = Depends(get_db_session),
    cache: Cache = Depends(get_cache),
):
    """Add a column; the position is the client's to choose (default 0)"""
    await require_membership(db, data.project_id, session.user_id)

    column = BoardColumn(
        project_id=data.project_id,
        name=data.name,
        position=append_column_position(data.position),
    )
    db.add(column)
    await db.flush()
    record_activity(
        db, data.project_id, session.user_id, "column.created",
        details={"column_id": column.id, "name": data.name},
    )
    await db.commit()
    await db.refresh(column)
    await cache.invalidate_board(data.project_id)
    return column_out(column)


@router.patch("/{column_id}", response_model=ColumnOut)
async def update_column(
    column_id: str,
    data: ColumnUpdate,
    session: Session = Depends(get_current_session),
    db: AsyncSession = Depends(get_db_session),
    cache: Cache = Depends(get_cache),
):
    """Rename or reposition a column"""
    column = await _get_column(db, column_id)
    await require_membership(db, column.project_id, session.user_id)

    if data.name is not None:
        column.name = data.name
    if data.position is not None:
        column.position = data.position

    record_activity(
        db, column.project_id, session.user_id, "column.updated",
        details={"column_id": column.id, "fields": sorted(data.model_dump(exclude_unset=True))},
    )
    await db.commit()
    await db.refresh(column)
    await cache.invalidate_board(column.project_id)
    return column_out(column)


@router.delete("/{column_id}")
async def delete_column(
    column_id: str,
    session: Session = Depends(get_current_session),
    db: AsyncSession = Depends(get_db_session),
    cache: Cache = Depends(get_cache),
):
    """Delete a column together with its tasks"""
    column = await _get_column(db, column_id)
    project_id = column.project_id
    await require_membership(db, project_id, session.user_id)

    record_activity(
        db, project_id, session.user_id, "column.deleted",
        details={"column_id": column_id, "name": column.name},
    )
    await db.execute(delete(BoardColumn).where(BoardColumn.id == column_id))
    await db.commit()
    await cache.invalidate_board(project_id)
    return {"status": "deleted", "column_id": column_id}
