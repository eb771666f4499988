from __future__ import annotations

import logging
import re
from collections.abc import AsyncIterator

import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import get_settings
from app.core.db import get_session


AUTH = ("test-user", "test-pass")


@pytest_asyncio.fixture
async def api(session_factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[FastAPI]:
    # Imported late so module-level app creation sees the test environment.
    from app.main import create_app

    app = create_app(get_settings())

    async def _session() -> AsyncIterator[AsyncSession]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = _session
    yield app
    logging.getLogger("app").handlers.clear()


@pytest_asyncio.fixture
async def client(api: FastAPI) -> AsyncIterator[httpx.AsyncClient]:
    transport = httpx.ASGITransport(app=api)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
        yield c


@pytest.mark.asyncio
async def test_requests_are_logged_with_timing(client: httpx.AsyncClient, caplog) -> None:
    caplog.set_level(logging.INFO, logger="app.http")

    res = await client.get("/healthz", headers={"user-agent": "healthcheck/1.0"})

    assert res.status_code == 200
    request_log, response_log = [r for r in caplog.records if r.name == "app.http"]
    assert request_log.getMessage() == "HTTP Request"
    assert request_log.meta["method"] == "GET"
    assert request_log.meta["userAgent"] == "healthcheck/1.0"
    assert response_log.getMessage() == "HTTP Response"
    assert response_log.meta["statusCode"] == 200
    assert re.match(r"^\d+ms$", response_log.meta["responseTime"])


@pytest.mark.asyncio
async def test_mutations_require_admin_credentials(client: httpx.AsyncClient) -> None:
    files = {"file": ("ring.jpg", b"jpeg", "image/jpeg")}

    anonymous = await client.post("/api/v1/menu-items/images", files=files)
    wrong = await client.post("/api/v1/menu-items/images", files=files, auth=("test-user", "nope"))

    assert anonymous.status_code == 401
    assert wrong.status_code == 401


@pytest.mark.asyncio
async def test_uploaded_image_is_served_from_public_path(client: httpx.AsyncClient) -> None:
    res = await client.post(
        "/api/v1/menu-items/images",
        files={"file": ("ring.jpg", b"\xff\xd8\xff\xe0jpeg", "image/jpeg")},
        auth=AUTH,
    )

    assert res.status_code == 201
    body = res.json()
    assert re.match(r"^uploads/menu-items/[0-9a-f-]{36}\.jpg$", body["image"])
    assert body["imageUrl"] == f"https://cdn.example.com/{body['image']}"
    assert (get_settings().upload_path / body["image"].removeprefix("uploads/")).is_file()

    download = await client.get(f"/{body['image']}")
    assert download.status_code == 200
    assert download.content == b"\xff\xd8\xff\xe0jpeg"
    assert download.headers["cache-control"] == "public, max-age=86400"


@pytest.mark.asyncio
async def test_upload_rejects_non_images(client: httpx.AsyncClient) -> None:
    res = await client.post(
        "/api/v1/menu-items/images",
        files={"file": ("invoice.pdf", b"%PDF-1.7", "application/pdf")},
        auth=AUTH,
    )

    assert res.status_code == 400
    assert res.json()["detail"].startswith("Invalid file type")
    assert list((get_settings().upload_path / "menu-items").iterdir()) == []


@pytest.mark.asyncio
async def test_menu_item_round_trip_over_http(client: httpx.AsyncClient) -> None:
    created = await client.post(
        "/api/v1/menu-items",
        json={"name": "Rings", "slug": "rings", "type": "category", "parentId": "", "country": ["IN"]},
        auth=AUTH,
    )
    assert created.status_code == 201
    item = created.json()
    assert item["parentId"] is None
    assert item["level"] == 0
    assert item["isActive"] is True

    child = await client.post(
        "/api/v1/menu-items",
        json={"name": "Solitaire", "slug": "solitaire", "type": "link", "parentId": item["id"]},
        auth=AUTH,
    )
    assert child.json()["level"] == 1

    listed = await client.get("/api/v1/menu-items", params={"country": "IN"})
    assert [i["slug"] for i in listed.json()] == ["rings"]

    tree = await client.get(f"/api/v1/menu-items/{item['id']}/tree")
    assert [c["slug"] for c in tree.json()["children"]] == ["solitaire"]

    invalid = await client.post("/api/v1/menu-items", json={"name": "x" * 101, "slug": "x", "type": "page"}, auth=AUTH)
    assert invalid.status_code == 422


@pytest.mark.asyncio
async def test_failing_request_still_logs_a_response(api: FastAPI, caplog) -> None:
    @api.get("/explode")
    async def _explode() -> None:
        raise RuntimeError("kaboom")

    caplog.set_level(logging.INFO, logger="app.http")
    transport = httpx.ASGITransport(app=api, raise_app_exceptions=False)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
        res = await c.get("/explode")

    assert res.status_code == 500
    responses = [r for r in caplog.records if r.name == "app.http" and r.getMessage() == "HTTP Response"]
    assert len(responses) == 1
    assert responses[0].levelno == logging.ERROR
    assert responses[0].meta["statusCode"] == 500
    assert "kaboom" in responses[0].meta["trace"]
