"""Link creation endpoint tests."""

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from shortener.models import Link


@pytest.mark.asyncio
async def test_create_link(client: AsyncClient) -> None:
    response = await client.post("/api/links", json={"url": "https://www.python.org/about"})

    assert response.status_code == 201
    data = response.json()
    assert data["created"] is True
    assert data["original_url"] == "https://www.python.org/about"
    assert data["short_url"].endswith(f"/{data['short_code']}")
    assert data["click_count"] == 0
    assert data["expires_at"] is None
    assert response.headers["X-RateLimit-Limit"] == "10"
    assert response.headers["X-RateLimit-Remaining"] == "9"


@pytest.mark.asyncio
async def test_duplicate_url_returns_200_with_same_code(client: AsyncClient) -> None:
    first = await client.post("/api/links", json={"url": "https://www.example.com/dup"})
    second = await client.post("/api/links", json={"url": "https://www.example.com/dup"})

    assert first.status_code == 201
    assert second.status_code == 200
    assert second.json()["created"] is False
    assert second.json()["short_code"] == first.json()["short_code"]


@pytest.mark.asyncio
async def test_create_with_custom_code_and_metadata(client: AsyncClient) -> None:
    response = await client.post(
        "/api/links",
        json={
            "url": "https://www.github.com",
            "custom_code": "ghub",
            "expires_in": 86400,
            "metadata": {"title": "GitHub", "tags": ["code"]},
        },
    )

    assert response.status_code == 201
    data = response.json()
    assert data["short_code"] == "ghub"
    assert data["expires_at"] is not None
    assert data["metadata"] == {"title": "GitHub", "description": None, "tags": ["code"]}


@pytest.mark.asyncio
async def test_custom_code_conflict(client: AsyncClient) -> None:
    await client.post("/api/links", json={"url": "https://www.github.com", "custom_code": "taken"})
    response = await client.post("/api/links", json={"url": "https://www.gitlab.com", "custom_code": "taken"})

    assert response.status_code == 409
    assert "taken" in response.json()["detail"]
    assert "X-RateLimit-Remaining" in response.headers


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        {"url": "not-a-valid-url"},
        {"url": "ftp://files.example.com/a"},
        {"url": "https://www.example.com", "custom_code": "api"},
        {"url": "https://www.example.com", "custom_code": "a b"},
        {"url": "https://www.example.com", "expires_in": 60},
        {"url": "https://www.example.com", "metadata": {"title": "x", "extra": 1}},
    ],
)
async def test_invalid_payloads_rejected(client: AsyncClient, payload) -> None:
    response = await client.post("/api/links", json=payload)
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_create_rate_limit(client: AsyncClient) -> None:
    statuses = []
    for i in range(11):
        response = await client.post("/api/links", json={"url": f"https://www.example.com/page/{i}"})
        statuses.append(response.status_code)

    assert statuses == [201] * 10 + [429]
    assert "Retry-After" in response.headers
    assert response.headers["X-RateLimit-Remaining"] == "0"


@pytest.mark.asyncio
async def test_premium_role_gets_larger_quota(client: AsyncClient) -> None:
    response = await client.post(
        "/api/links",
        json={"url": "https://www.example.com/premium"},
        headers={"X-User-Id": "user-42", "X-User-Role": "premium"},
    )
    assert response.headers["X-RateLimit-Limit"] == "100"


@pytest.mark.asyncio
async def test_rate_limit_is_per_identity(client: AsyncClient) -> None:
    for i in range(10):
        await client.post("/api/links", json={"url": f"https://www.example.com/a/{i}"}, headers={"X-User-Id": "alice"})

    blocked = await client.post("/api/links", json={"url": "https://www.example.com/a/x"}, headers={"X-User-Id": "alice"})
    other = await client.post("/api/links", json={"url": "https://www.example.com/b/x"}, headers={"X-User-Id": "bob"})

    assert blocked.status_code == 429
    assert other.status_code == 201


@pytest.mark.asyncio
async def test_bulk_create(client: AsyncClient) -> None:
    await client.post("/api/links", json={"url": "https://www.example.com/owned", "custom_code": "owned"})
    response = await client.post(
        "/api/links/bulk",
        json={
            "urls": [
                {"url": "https://www.example.com/one"},
                {"url": "https://www.example.com/two", "custom_code": "owned"},
                {"url": "https://www.example.com/three"},
            ]
        },
    )

    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 3
    assert data["successful"] == 2
    assert data["failed"] == 1
    assert data["results"][1]["success"] is False
    assert response.headers["X-RateLimit-Remaining"] == "6"


@pytest.mark.asyncio
async def test_bulk_counts_against_quota(client: AsyncClient) -> None:
    urls = [{"url": f"https://www.example.com/bulk/{i}"} for i in range(11)]
    response = await client.post("/api/links/bulk", json={"urls": urls})
    assert response.status_code == 429


@pytest.mark.asyncio
async def test_bulk_size_limits(client: AsyncClient) -> None:
    assert (await client.post("/api/links/bulk", json={"urls": []})).status_code == 422
    too_many = [{"url": f"https://www.example.com/{i}"} for i in range(101)]
    assert (await client.post("/api/links/bulk", json={"urls": too_many})).status_code == 422


@pytest.mark.asyncio
async def test_rate_limit_status_endpoint(client: AsyncClient) -> None:
    await client.post("/api/links", json={"url": "https://www.example.com/status"})

    response = await client.get("/api/rate-limit/create")

    assert response.status_code == 200
    data = response.json()
    assert data["action"] == "create"
    assert data["role"] == "free"
    assert data["limit"] == 10
    assert data["remaining"] == 9
    assert data["allowed"] is True

    assert (await client.get("/api/rate-limit/unknown")).status_code == 422


@pytest.mark.asyncio
async def test_bulk_duplicate_then_conflict_reports_per_item(client: AsyncClient) -> None:
    first = await client.post("/api/links", json={"url": "https://www.example.com/existing"})
    await client.post("/api/links", json={"url": "https://www.example.com/owner", "custom_code": "taken1"})

    response = await client.post(
        "/api/links/bulk",
        json={
            "urls": [
                {"url": "https://www.example.com/existing"},
                {"url": "https://www.example.com/other", "custom_code": "taken1"},
            ]
        },
    )

    assert response.status_code == 200
    data = response.json()
    assert data["successful"] == 1
    assert data["failed"] == 1
    assert data["results"][0]["link"]["short_code"] == first.json()["short_code"]
    assert data["results"][0]["link"]["created"] is False
    assert "taken1" in data["results"][1]["error"]


@pytest.mark.asyncio
async def test_owner_is_only_the_gateway_user(client: AsyncClient, session_factory) -> None:
    anonymous = await client.post("/api/links", json={"url": "https://www.example.com/anon"})
    owned = await client.post(
        "/api/links", json={"url": "https://www.example.com/mine"}, headers={"X-User-Id": "user-42"}
    )
    bulk = await client.post("/api/links/bulk", json={"urls": [{"url": "https://www.example.com/bulk-anon"}]})

    codes = [
        anonymous.json()["short_code"],
        owned.json()["short_code"],
        bulk.json()["results"][0]["link"]["short_code"],
    ]
    async with session_factory() as session:
        rows = (await session.execute(select(Link).where(Link.short_code.in_(codes)))).scalars().all()
    owners = {row.short_code: row.owner_id for row in rows}

    assert owners == {codes[0]: None, codes[1]: "user-42", codes[2]: None}
