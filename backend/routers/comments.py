# routers/comments.py — Task discussion
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from activity import record_activity
from auth import Session, get_current_session, require_membership
from database import get_db_session
from errors import Forbidden, NotFound
from models import Task, TaskComment, User
from schemas import CommentCreate, CommentWithUser, comment_out, task_id_query, user_summary

router = APIRouter(prefix="/api/comments", tags=["Comments"])


async def _get_task(db: AsyncSession, task_id: str) -> Task:
    task = await db.get(Task, task_id)
    if task is None:
        raise NotFound("Task not found")
    return task


@router.get("", response_model=List[CommentWithUser])
async def list_comments(
    task_id: str = Depends(task_id_query),
    session: Session = Depends(get_current_session),
    db: AsyncSession = Depends(get_db_session),
):
    """Comments on a task, oldest first, each with its author"""
    task = await _get_task(db, task_id)
    await require_membership(db, task.project_id, session.user_id)

    stmt = (
        select(TaskComment, User)
        .join(User, TaskComment.user_id == User.id)
        .where(TaskComment.task_id == task_id)
        .order_by(TaskComment.created_at.asc())
    )
    result = await db.execute(stmt)
    return [
        CommentWithUser(comment=comment_out(c), user=user_summary(u))
        for c, u in result.all()
    ]


@router.post("", response_model=CommentWithUser, status_code=201)
async def create_comment(
    data: CommentCreate,
    session: Session = Depends(get_current_session),
    db: AsyncSession = Depends(get_db_session),
):
    """Add a comment as the signed-in user"""
    task = await _get_task(db, data.task_id)
    await require_membership(db, task.project_id, session.user_id)

    comment = TaskComment(task_id=task.id, user_id=session.user_id, content=data.content)
    db.add(comment)
    record_activity(
        db, task.project_id, session.user_id, "comment.created",
        task_id=task.id, details={"comment_preview": data.content[:100]},
    )
    await db.commit()

    stmt = (
        select(TaskComment, User)
        .join(User, TaskComment.user_id == User.id)
        .where(TaskComment.id == comment.id)
    )
    result = await db.execute(stmt)
    saved, author = result.one()
    return CommentWithUser(comment=comment_out(saved), user=user_summary(author))


@router.delete("/{comment_id}")
async def delete_comment(
    comment_id: str,
    session: Session = Depends(get_current_session),
    db: AsyncSession = Depends(get_db_session),
):
    """Delete a comment (authors only)"""
    comment = await db.get(TaskComment, comment_id)
    if comment is None:
        raise NotFound("Comment not found")
    task = await _get_task(db, comment.task_id)
    await require_membership(db, task.project_id, session.user_id)
    if comment.user_id != session.user_id:
        raise Forbidden("Can only delete your own comments")

    await db.execute(delete(TaskComment).where(TaskComment.id == comment_id))
    await db.commit()
    return {"status": "deleted", "comment_id": comment_id}
