import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_health_returns_200(client: AsyncClient) -> None:
    response = await client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_public_config(client: AsyncClient) -> None:
    response = await client.get("/api/config/public")
    assert response.status_code == 200
    body = response.json()
    assert body["currency"] == "BDT"
    assert body["max_attachment_bytes"] == 5 * 1024 * 1024
