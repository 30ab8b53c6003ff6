"""Test the HTTP surface: envelope, camelCase wire format and status codes."""

import json

import pytest
from httpx import AsyncClient

from tests.conftest import make_image


async def upload_png(client: AsyncClient, name: str = "hero.png", **fields) -> dict:
    data = {"clientSlug": "acme", **fields}
    resp = await client.post(
        "/api/assets",
        files={"file": (name, make_image(80, 40), "image/png")},
        data=data,
    )
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]


@pytest.mark.asyncio
async def test_upload_returns_created_asset(client: AsyncClient, client_record):
    resp = await client.post(
        "/api/assets",
        files={"file": ("hero.png", make_image(80, 40), "image/png")},
        data={"clientSlug": "acme", "tags": json.dumps(["summer", "hero"]), "categories": "web, print"},
    )

    assert resp.status_code == 201
    body = resp.json()
    assert body["success"] is True
    asset = body["data"]
    assert asset["type"] == "image"
    assert asset["clientId"] == client_record.id
    assert asset["mimeType"] == "image/png"
    assert asset["originalFilename"] == "hero.png"
    assert (asset["width"], asset["height"]) == (80, 40)
    assert asset["tags"] == ["hero", "summer"]
    assert asset["categories"] == ["print", "web"]
    assert asset["thumbnailUrl"].startswith("/api/files/")
    assert asset["processingStatus"] == "complete"
    assert asset["ownerFallbackApplied"] is False
    assert "thumbnail_url" not in asset


@pytest.mark.asyncio
async def test_upload_without_client_is_400(client: AsyncClient):
    resp = await client.post(
        "/api/assets",
        files={"file": ("hero.png", make_image(), "image/png")},
    )
    assert resp.status_code == 400
    assert resp.json()["success"] is False
    assert "client" in resp.json()["message"]


@pytest.mark.asyncio
async def test_upload_type_mismatch_is_400(client: AsyncClient):
    resp = await client.post(
        "/api/assets",
        files={"file": ("hero.png", make_image(), "image/png")},
        data={"clientSlug": "acme", "type": "audio"},
    )
    assert resp.status_code == 400
    assert "mismatch" in resp.json()["message"]


@pytest.mark.asyncio
async def test_list_assets(client: AsyncClient):
    first = await upload_png(client, "one.png", tags="red")
    await upload_png(client, "two.png")

    resp = await client.get("/api/assets", params={"clientSlug": "acme", "tags": "red"})
    assert resp.status_code == 200
    page = resp.json()["data"]
    assert page["total"] == 1
    assert page["assets"][0]["id"] == first["id"]
    assert page["pagination"] == {"limit": 20, "offset": 0}

    resp = await client.get("/api/assets", params={"clientSlug": "acme", "sortBy": "name", "sortDirection": "asc"})
    assert [a["name"] for a in resp.json()["data"]["assets"]] == ["one.png", "two.png"]


@pytest.mark.asyncio
async def test_list_unknown_client_is_empty(client: AsyncClient):
    await upload_png(client)
    resp = await client.get("/api/assets", params={"clientSlug": "nobody"})
    assert resp.status_code == 200
    page = resp.json()["data"]
    assert page["assets"] == []
    assert page["total"] == 0


@pytest.mark.asyncio
async def test_invalid_query_is_400_envelope(client: AsyncClient):
    resp = await client.get("/api/assets", params={"limit": 0})
    assert resp.status_code == 400
    body = resp.json()
    assert body["success"] is False
    assert "limit" in body["message"]


@pytest.mark.asyncio
async def test_asset_lifecycle(client: AsyncClient):
    asset = await upload_png(client)
    url = f"/api/assets/{asset['id']}"

    resp = await client.get(url)
    assert resp.status_code == 200
    assert resp.json()["data"]["name"] == "hero.png"

    resp = await client.patch(url, json={"name": "Renamed", "tags": ["x"]})
    assert resp.status_code == 200
    assert resp.json()["data"]["name"] == "Renamed"
    assert resp.json()["data"]["tags"] == ["x"]

    resp = await client.post(f"{url}/favourite", json={"isFavourite": True})
    assert resp.json()["data"]["isFavourite"] is True
    resp = await client.post(f"{url}/favourite")
    assert resp.json()["data"]["isFavourite"] is False

    resp = await client.post(f"{url}/usage")
    assert resp.json()["data"]["usageCount"] == 1

    # Reads reflect every committed write.
    resp = await client.get(url)
    data = resp.json()["data"]
    assert (data["name"], data["isFavourite"], data["usageCount"]) == ("Renamed", False, 1)

    resp = await client.delete(url)
    assert resp.status_code == 200
    assert resp.json()["success"] is True

    resp = await client.get(url)
    assert resp.status_code == 404
    assert resp.json() == {"success": False, "message": f"Asset {asset['id']} not found"}


@pytest.mark.asyncio
async def test_batch_delete_partial(client: AsyncClient):
    asset = await upload_png(client)

    resp = await client.post("/api/assets/batch-delete", json={"ids": [asset["id"], "missing"]})
    assert resp.status_code == 200
    result = resp.json()["data"]
    assert result["deleted"] == 1
    assert result["failed"] == 1
    assert "missing" in result["errors"]


@pytest.mark.asyncio
async def test_batch_delete_requires_ids(client: AsyncClient):
    resp = await client.post("/api/assets/batch-delete", json={"ids": []})
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_batch_update(client: AsyncClient):
    asset = await upload_png(client, tags="old,keep")

    resp = await client.post(
        "/api/assets/batch-update",
        json={"ids": [asset["id"]], "addTags": ["new"], "removeTags": ["old"]},
    )
    assert resp.json()["data"]["updated"] == 1

    resp = await client.get("/api/assets/tags", params={"clientSlug": "acme"})
    assert resp.json()["data"] == ["keep", "new"]


@pytest.mark.asyncio
async def test_files_processing_and_download(client: AsyncClient):
    asset = await upload_png(client)

    resp = await client.get(asset["thumbnailUrl"])
    assert resp.status_code == 200
    assert resp.headers["content-type"] == "image/jpeg"

    resp = await client.get("/api/files/../../etc/passwd")
    assert resp.status_code in (403, 404)

    resp = await client.get(f"/api/assets/{asset['id']}/processing")
    assert resp.json()["data"]["processingStatus"] == "complete"

    resp = await client.get(f"/api/assets/{asset['id']}/download")
    assert resp.status_code == 200
    assert resp.headers["content-disposition"] == "attachment; filename*=UTF-8''hero.png"
    assert resp.content == make_image(80, 40)


@pytest.mark.asyncio
async def test_requires_identity(client: AsyncClient):
    from assethub.main import app
    from assethub.services.identity import JwtIdentityProvider, get_identity_provider

    app.dependency_overrides[get_identity_provider] = JwtIdentityProvider
    resp = await client.get("/api/assets")
    assert resp.status_code == 401
    assert resp.json()["success"] is False
