# tests/test_backup_verify.py — WAL backup smoke test
import pytest
from httpx import AsyncClient
from sqlalchemy import func, select

from models import Project, Task
from tests.conftest import app, get_auth_headers


@pytest.mark.asyncio
async def test_backup_verify_requires_session(client: AsyncClient):
    resp = await client.post("/api/backup-verify")
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_backup_verify_fails_cleanly_without_postgres(client: AsyncClient, test_user, db_session, monkeypatch):
    """SQLite has no pg_switch_wal(); the test rows must still be cleaned up"""
    monkeypatch.setattr(app.state.settings, "backup_verify_wait_seconds", 0)
    resp = await client.post("/api/backup-verify", headers=get_auth_headers(test_user))
    assert resp.status_code == 500
    data = resp.json()
    assert data["success"] is False
    assert data["error"] == "Backup verification failed"
    assert data["details"]

    result = await db_session.execute(
        select(func.count()).select_from(Project).where(Project.name.like("Backup Test%"))
    )
    assert result.scalar() == 0
    result = await db_session.execute(select(func.count()).select_from(Task))
    assert result.scalar() == 0
