# routers/backup.py — WAL archive smoke test (PostgreSQL only)
"""
Writes throwaway rows, forces a WAL segment switch, reads the WAL receiver
status and deletes the rows again. A disaster-recovery diagnostic, not part
of the board itself.
"""
import asyncio
import logging
import uuid
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlalchemy import delete, text
from sqlalchemy.ext.asyncio import AsyncSession

from auth import Session, get_current_session
from database import get_db_session
from models import BoardColumn, Project, ProjectVisibility, Task, TaskPriority

logger = logging.getLogger("kanban.backup")

router = APIRouter(prefix="/api/backup-verify", tags=["Diagnostics"])


async def _write_test_rows(db: AsyncSession, test_id: str, user_id: str) -> str:
    project = Project(
        name=f"Backup Test {test_id}",
        description="Temporary project for WAL backup verification",
        color="#FF0000",
        icon="🧪",
        visibility=ProjectVisibility.PRIVATE,
        created_by=user_id,
    )
    db.add(project)
    await db.flush()

    column = BoardColumn(project_id=project.id, name=f"Backup Column {test_id}", position=0)
    db.add(column)
    await db.flush()

    for position, priority in enumerate((TaskPriority.LOW, TaskPriority.MEDIUM)):
        db.add(Task(
            project_id=project.id,
            column_id=column.id,
            title=f"Test Task {position + 1} - {test_id}",
            description="Backup verification task",
            priority=priority,
            position=position,
            created_by=user_id,
        ))
    await db.commit()
    return project.id


async def _cleanup(db: AsyncSession, test_id: str) -> None:
    try:
        await db.rollback()
        await db.execute(delete(Project).where(Project.name.like(f"%{test_id}%")))
        await db.commit()
    except Exception as e:
        logger.error(f"Backup test cleanup failed: {e}")


@router.post("")
async def verify_backup(
    request: Request,
    session: Session = Depends(get_current_session),
    db: AsyncSession = Depends(get_db_session),
):
    test_id = str(uuid.uuid4())
    wait_seconds = request.app.state.settings.backup_verify_wait_seconds

    try:
        project_id = await _write_test_rows(db, test_id, session.user_id)

        await db.execute(text("SELECT pg_switch_wal()"))
        await db.commit()
        await asyncio.sleep(wait_seconds)

        result = await db.execute(text("SELECT * FROM pg_stat_wal_receiver"))
        wal_receiver = [dict(row) for row in result.mappings().all()]

        await db.execute(delete(Task).where(Task.project_id == project_id))
        await db.execute(delete(Project).where(Project.id == project_id))
        await db.commit()
    except Exception as e:
        logger.error(f"Backup verification error: {e}", exc_info=True)
        await _cleanup(db, test_id)
        return JSONResponse(status_code=500, content={
            "success": False,
            "error": "Backup verification failed",
            "details": str(e),
        })

    logger.info(f"Backup verification {test_id} passed")
    return JSONResponse(content=jsonable_encoder({
        "success": True,
        "message": "WAL backup test completed successfully",
        "test_data_id": test_id,
        "project_id": project_id,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "wal_receiver": wal_receiver,
    }))
