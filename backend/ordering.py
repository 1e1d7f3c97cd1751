# ordering.py — Column & task positions
"""
Positions are plain integers used for sort order among siblings. They are
neither unique nor contiguous and nothing here ever renumbers siblings:

- a new task goes after the current maximum in its column (1 when empty)
- a new column takes the position the client asks for, else 0
- moving a task to another column rewrites only its column reference; the
  old position travels with it unless the caller supplies a new one, so it
  may tie with tasks already in the destination column
"""
from typing import Iterable, List, Optional, TypeVar

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from errors import NotFound
from models import BoardColumn, Task

T = TypeVar("T")


def append_column_position(requested: Optional[int] = None) -> int:
    return requested if requested is not None else 0


async def lock_column(db: AsyncSession, column_id: str) -> Optional[BoardColumn]:
    """Row-lock the column for the rest of the transaction (no-op on SQLite)"""
    stmt = select(BoardColumn).where(BoardColumn.id == column_id).with_for_update()
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def append_task_position(db: AsyncSession, column_id: str) -> int:
    """1 + max(position) among the column's tasks, or 1 for an empty column.

    Callers hold the column lock from ``lock_column`` so that concurrent
    appends to the same column serialize instead of sharing a position.
    """
    stmt = select(func.coalesce(func.max(Task.position), 0)).where(Task.column_id == column_id)
    result = await db.execute(stmt)
    return (result.scalar() or 0) + 1


async def move_task(
    db: AsyncSession,
    task: Task,
    target_column_id: str,
    position: Optional[int] = None,
) -> BoardColumn:
    """Reassign ``task`` to another column of the same project."""
    stmt = select(BoardColumn).where(
        BoardColumn.id == target_column_id,
        BoardColumn.project_id == task.project_id,
    )
    result = await db.execute(stmt)
    target = result.scalar_one_or_none()
    if target is None:
        raise NotFound("Target column not found")

    task.column_id = target.id
    if position is not None:
        task.position = position
    return target


def sort_key(item):
    created = item.created_at.timestamp() if item.created_at else 0.0
    return (item.position or 0, created, item.id or "")


def ordered(items: Iterable[T]) -> List[T]:
    """Display order: ascending position, ties broken by creation time then id"""
    return sorted(items, key=sort_key)
