"""Test client and owner directory lookups."""

import pytest

from assethub.models import Client
from assethub.services.directory import ClientDirectory, OwnerDirectory


@pytest.mark.asyncio
async def test_resolve_by_id_slug_and_slug_in_id_field(db, client_record):
    clients = ClientDirectory(db)

    assert await clients.resolve(client_record.id) == client_record.id
    assert await clients.resolve(client_slug="ACME") == client_record.id
    assert await clients.resolve("acme") == client_record.id
    assert await clients.resolve("nobody") is None
    assert await clients.resolve() is None


@pytest.mark.asyncio
async def test_resolve_id_that_is_not_uuid_shaped(db):
    db.add(Client(id="legacy-7", slug="legacy", name="Legacy Ltd"))
    await db.commit()

    assert await ClientDirectory(db).resolve("legacy-7") == "legacy-7"


@pytest.mark.asyncio
async def test_fallback_owner_is_created_once(db, owner):
    owners = OwnerDirectory(db)

    first = await owners.ensure_fallback_owner()
    second = await owners.ensure_fallback_owner()

    assert first == second
    assert await owners.exists(first)
    assert await owners.exists(owner.id)
