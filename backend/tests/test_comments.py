# tests/test_comments.py — Task comments
import pytest
from httpx import AsyncClient

from tests.conftest import create_column, create_project, create_task, get_auth_headers


async def _board_with_task(client: AsyncClient, headers: dict) -> dict:
    project = await create_project(client, headers)
    column = await create_column(client, headers, project["id"], "To Do")
    return await create_task(client, headers, project["id"], column["id"], "Discuss me")


@pytest.mark.asyncio
async def test_create_and_list_comments(client: AsyncClient, test_user):
    headers = get_auth_headers(test_user)
    task = await _board_with_task(client, headers)

    resp = await client.post(
        "/api/comments", json={"taskId": task["id"], "content": "First!"}, headers=headers,
    )
    assert resp.status_code == 201
    data = resp.json()
    assert data["comment"]["content"] == "First!"
    assert data["comment"]["user_id"] == test_user.id
    assert data["user"]["name"] == "Test User"

    await client.post("/api/comments", json={"taskId": task["id"], "content": "Second"}, headers=headers)

    resp = await client.get("/api/comments", params={"taskId": task["id"]}, headers=headers)
    assert resp.status_code == 200
    assert [c["comment"]["content"] for c in resp.json()] == ["First!", "Second"]


@pytest.mark.asyncio
async def test_comment_requires_task_id(client: AsyncClient, test_user):
    resp = await client.get("/api/comments", headers=get_auth_headers(test_user))
    assert resp.status_code == 400
    assert resp.json()["error"] == "taskId is required"


@pytest.mark.asyncio
async def test_comment_on_missing_task(client: AsyncClient, test_user):
    resp = await client.post(
        "/api/comments", json={"taskId": "does-not-exist", "content": "Hello"},
        headers=get_auth_headers(test_user),
    )
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_non_member_cannot_comment(client: AsyncClient, test_user, other_user):
    task = await _board_with_task(client, get_auth_headers(test_user))
    resp = await client.post(
        "/api/comments", json={"taskId": task["id"], "content": "Let me in"},
        headers=get_auth_headers(other_user),
    )
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_only_author_deletes_comment(client: AsyncClient, test_user, other_user):
    headers = get_auth_headers(test_user)
    task = await _board_with_task(client, headers)
    await client.post(
        f"/api/projects/{task['project_id']}/members", json={"email": other_user.email}, headers=headers,
    )
    resp = await client.post("/api/comments", json={"taskId": task["id"], "content": "Mine"}, headers=headers)
    comment_id = resp.json()["comment"]["id"]

    resp = await client.delete(f"/api/comments/{comment_id}", headers=get_auth_headers(other_user))
    assert resp.status_code == 403

    resp = await client.delete(f"/api/comments/{comment_id}", headers=headers)
    assert resp.status_code == 200
    resp = await client.get("/api/comments", params={"taskId": task["id"]}, headers=headers)
    assert resp.json() == []
