# activity.py — Append-only project activity trail
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from models import ActivityLog


def record_activity(
    db: AsyncSession,
    project_id: str,
    user_id: str,
    action: str,
    task_id: Optional[str] = None,
    details: Optional[dict] = None,
) -> ActivityLog:
    """Stage an activity entry; it commits with the caller's transaction"""
    entry = ActivityLog(
        project_id=project_id,
        task_id=task_id,
        user_id=user_id,
        action=action,
        details=details or {},
    )
    db.add(entry)
    return entry
