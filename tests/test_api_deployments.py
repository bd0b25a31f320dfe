import re
import uuid

import pytest
from sqlalchemy import func, select

from deployhub.models import Deployment

from conftest import make_token, set_plan_limit

ROBLOX_UA = "Roblox/WinInet"
BROWSER_UA = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 Chrome/126.0 Safari/537.36"


@pytest.fixture
def user_id() -> str:
    return str(uuid.uuid4())


@pytest.fixture
def auth(user_id) -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token(user_id)}"}


async def _create(client, auth, title="Test", content="local x = 1"):
    return await client.post("/api/v1/deployments", json={"title": title, "content": content}, headers=auth)


async def _usage_counter(session_factory, deployment_id: str) -> int:
    async with session_factory() as db:
        row = (await db.execute(select(Deployment).where(Deployment.id == deployment_id))).scalar_one()
        return row.usage_counter


async def test_create_and_serve_to_game_client(client, auth, store, recorder, session_factory) -> None:
    res = await _create(client, auth)
    assert res.status_code == 201
    body = res.json()
    assert body["status"] == "active"
    assert body["size_bytes"] == 11
    assert body["usage_counter"] == 0
    assert re.match(r"^[0-9a-f]{32}\.lua$", body["deploy_key"])
    assert body["storage_path"] in store.objects

    served = await client.get(
        f"/v1/{body['deploy_key']}",
        headers={"User-Agent": ROBLOX_UA},
        follow_redirects=False,
    )
    assert served.status_code == 302
    assert served.headers["location"] == f"https://cdn.example.test/{body['storage_path']}"

    await recorder.drain()
    assert await _usage_counter(session_factory, body["id"]) == 1


async def test_browser_gets_protection_page_without_counting(client, auth, recorder, session_factory) -> None:
    body = (await _create(client, auth)).json()

    served = await client.get(f"/v1/{body['deploy_key']}", headers={"User-Agent": BROWSER_UA})
    assert served.status_code == 200
    assert served.headers["content-type"].startswith("text/html")
    assert served.headers["cache-control"] == "no-store"
    assert "loadstring(game:HttpGet(" in served.text
    assert f"http://testserver/v1/{body['deploy_key']}" in served.text
    assert "<script" not in served.text

    await recorder.drain()
    assert recorder.pending == 0
    assert await _usage_counter(session_factory, body["id"]) == 0


async def test_loader_url_follows_forwarded_headers(client, auth) -> None:
    body = (await _create(client, auth)).json()
    served = await client.get(
        f"/v1/{body['deploy_key']}",
        headers={"User-Agent": BROWSER_UA, "X-Forwarded-Proto": "https", "X-Forwarded-Host": "deploy.example.com"},
    )
    assert f"https://deploy.example.com/v1/{body['deploy_key']}" in served.text


async def test_unknown_and_inactive_keys_are_not_served(client, auth) -> None:
    missing = await client.get(f"/v1/{'0' * 32}.lua", headers={"User-Agent": ROBLOX_UA})
    assert missing.status_code == 404
    assert missing.headers["content-type"].startswith("text/plain")
    assert missing.text == "Deployment not found or inactive."

    body = (await _create(client, auth)).json()
    res = await client.put(f"/api/v1/deployments/{body['id']}", json={"status": "inactive"}, headers=auth)
    assert res.status_code == 200
    assert res.json()["status"] == "inactive"

    inactive = await client.get(f"/v1/{body['deploy_key']}", headers={"User-Agent": BROWSER_UA})
    assert inactive.status_code == 404
    assert inactive.text == "Deployment not found or inactive."


async def test_missing_token_is_unauthorized(client) -> None:
    res = await client.post("/api/v1/deployments", json={"title": "t", "content": "x"})
    assert res.status_code == 401
    assert res.json()["error"] == "Unauthorized"

    bad = await client.get("/api/v1/deployments/me", headers={"Authorization": "Bearer not-a-token"})
    assert bad.status_code == 401


async def test_quota_exceeded(client, auth, user_id, store, session_factory) -> None:
    assert (await _create(client, auth, title="one")).status_code == 201
    async with session_factory() as db:
        await set_plan_limit(db, user_id, 1)
    puts = len(store.calls)

    res = await _create(client, auth, title="two")
    assert res.status_code == 403
    body = res.json()
    assert body["error"] == "QuotaExceeded"
    assert body["limit"] == 1
    assert "deployment limit (1)" in body["message"]
    assert len(store.calls) == puts


async def test_storage_failure_on_create(client, auth, store) -> None:
    store.fail_on.add("put")
    res = await _create(client, auth)
    assert res.status_code == 502
    assert res.json()["error"] == "StorageFailure"

    listing = (await client.get("/api/v1/deployments/me", headers=auth)).json()
    assert listing["total"] == 0


async def test_validation_errors(client, auth) -> None:
    empty = await _create(client, auth, content="")
    assert empty.status_code == 400
    assert empty.json()["error"] == "ValidationError"

    long_title = await _create(client, auth, title="t" * 256)
    assert long_title.status_code == 400
    assert long_title.json()["error"] == "ValidationError"

    bad_status = await client.put(
        f"/api/v1/deployments/{uuid.uuid4()}", json={"status": "archived"}, headers=auth
    )
    assert bad_status.status_code == 400


async def test_owner_read_includes_content(client, auth, store) -> None:
    body = (await _create(client, auth, content="print('hi')")).json()

    res = await client.get(f"/api/v1/deployments/{body['id']}", headers=auth)
    assert res.status_code == 200
    detail = res.json()
    assert detail["content"] == "print('hi')"
    assert detail["content_available"] is True

    store.objects.clear()
    gone = (await client.get(f"/api/v1/deployments/{body['id']}", headers=auth)).json()
    assert gone["content"] == ""
    assert gone["content_available"] is False


async def test_foreign_owner_gets_not_found(client, auth) -> None:
    body = (await _create(client, auth)).json()
    other = {"Authorization": f"Bearer {make_token(str(uuid.uuid4()))}"}

    for method in ("get", "delete"):
        res = await getattr(client, method)(f"/api/v1/deployments/{body['id']}", headers=other)
        assert res.status_code == 404
        assert res.json()["error"] == "NotFound"
    res = await client.put(f"/api/v1/deployments/{body['id']}", json={"title": "mine"}, headers=other)
    assert res.status_code == 404


async def test_list_and_stats(client, auth) -> None:
    await _create(client, auth, title="Alpha", content="12345")
    await _create(client, auth, title="Beta", content="123")

    listing = (await client.get("/api/v1/deployments/me", params={"search": "alp"}, headers=auth)).json()
    assert listing["total"] == 1
    assert listing["page"] == 1
    assert listing["total_pages"] == 1
    assert listing["deployments"][0]["title"] == "Alpha"

    stats = (await client.get("/api/v1/deployments/stats", headers=auth)).json()
    assert stats == {"total_deployments": 2, "active_deployments": 2, "total_size": 8, "usage_total": 0}


async def test_update_content_keeps_key(client, auth, store) -> None:
    body = (await _create(client, auth)).json()
    res = await client.put(
        f"/api/v1/deployments/{body['id']}",
        json={"title": "Renamed", "content": "local x = 22"},
        headers=auth,
    )
    assert res.status_code == 200
    updated = res.json()
    assert updated["deploy_key"] == body["deploy_key"]
    assert updated["storage_path"] == body["storage_path"]
    assert updated["size_bytes"] == 12
    assert store.objects[body["storage_path"]][0] == b"local x = 22"


async def test_delete_tolerates_blob_failure(client, auth, store, session_factory) -> None:
    body = (await _create(client, auth)).json()
    store.fail_on.add("delete")

    res = await client.delete(f"/api/v1/deployments/{body['id']}", headers=auth)
    assert res.status_code == 200
    assert res.json() == {"message": "Deployment deleted"}

    async with session_factory() as db:
        count = (await db.execute(select(func.count()).select_from(Deployment))).scalar_one()
    assert count == 0

    served = await client.get(f"/v1/{body['deploy_key']}", headers={"User-Agent": ROBLOX_UA})
    assert served.status_code == 404


async def test_upload_script(client, auth, store) -> None:
    res = await client.post(
        "/api/v1/deployments/upload",
        files={"file": ("script.lua", b"print(1)", "text/plain")},
        headers=auth,
    )
    assert res.status_code == 201
    body = res.json()
    assert body["title"] == "script.lua"
    assert body["size_bytes"] == 8
    assert body["mime_type"] == "text/plain; charset=utf-8"
    assert store.objects[body["storage_path"]][0] == b"print(1)"


async def test_upload_rejects_unknown_extension(client, auth, store) -> None:
    res = await client.post(
        "/api/v1/deployments/upload",
        files={"file": ("payload.exe", b"MZ", "application/octet-stream")},
        headers=auth,
    )
    assert res.status_code == 400
    assert res.json()["error"] == "ValidationError"
    assert store.objects == {}


async def test_upload_over_quota_writes_no_blob(client, auth, user_id, store, session_factory) -> None:
    assert (await _create(client, auth, title="one")).status_code == 201
    async with session_factory() as db:
        await set_plan_limit(db, user_id, 1)
    store.objects.clear()

    res = await client.post(
        "/api/v1/deployments/upload",
        files={"file": ("script.lua", b"print(1)", "text/plain")},
        headers=auth,
    )
    assert res.status_code == 403
    body = res.json()
    assert body["error"] == "QuotaExceeded"
    assert body["limit"] == 1
    assert store.objects == {}


@pytest.mark.parametrize(
    ("filename", "data"),
    [
        ("script.lua", {"title": "t" * 300}),
        ("a" * 300 + ".lua", {}),
    ],
)
async def test_upload_bad_title_writes_no_blob(client, auth, store, session_factory, filename, data) -> None:
    res = await client.post(
        "/api/v1/deployments/upload",
        files={"file": (filename, b"print(1)", "text/plain")},
        data=data,
        headers=auth,
    )
    assert res.status_code == 400
    assert res.json()["error"] == "ValidationError"
    assert store.objects == {}

    async with session_factory() as db:
        count = (await db.execute(select(func.count()).select_from(Deployment))).scalar_one()
    assert count == 0


async def test_health(client) -> None:
    res = await client.get("/health")
    assert res.status_code == 200
