"""Test asset mutations: authorization, idempotency, batches and cache consistency."""

import pytest

from assethub.exceptions import NotFoundError, PermissionDeniedError, ValidationError
from assethub.schemas.asset import AssetUpdate, BatchUpdateRequest
from assethub.services.asset_service import AssetService
from assethub.services.cleanup import InlineCleanup
from assethub.services.identity import Identity
from assethub.services.query import AssetQueryEngine


@pytest.fixture
def service(db, storage, cache, identity) -> AssetService:
    return AssetService(db, storage, cache, identity, cleanup=InlineCleanup(storage), relaxed=False)


@pytest.fixture
def stranger_service(db, storage, cache, other_user) -> AssetService:
    return AssetService(db, storage, cache, Identity(user_id=other_user.id), relaxed=False)


@pytest.mark.asyncio
async def test_favourite_is_idempotent(service, make_asset):
    asset = await make_asset()

    first = await service.toggle_favourite(asset.id, True)
    assert first.is_favourite is True

    second = await service.toggle_favourite(asset.id, True)
    assert second.is_favourite is True
    assert second.updated_at == first.updated_at


@pytest.mark.asyncio
async def test_favourite_without_value_flips(service, make_asset):
    asset = await make_asset()
    assert (await service.toggle_favourite(asset.id)).is_favourite is True
    assert (await service.toggle_favourite(asset.id)).is_favourite is False


@pytest.mark.asyncio
async def test_non_owner_cannot_mutate(stranger_service, make_asset):
    asset = await make_asset()

    with pytest.raises(PermissionDeniedError):
        await stranger_service.update(asset.id, AssetUpdate(name="Mine now"))
    with pytest.raises(PermissionDeniedError):
        await stranger_service.toggle_favourite(asset.id, True)
    with pytest.raises(PermissionDeniedError):
        await stranger_service.delete(asset.id)


@pytest.mark.asyncio
async def test_admin_and_relaxed_mode_bypass_ownership(db, storage, cache, other_user, make_asset):
    asset = await make_asset()

    admin = AssetService(db, storage, cache, Identity(user_id=other_user.id, role="admin"), relaxed=False)
    assert (await admin.update(asset.id, AssetUpdate(name="By admin"))).name == "By admin"

    relaxed = AssetService(db, storage, cache, Identity(user_id=other_user.id), relaxed=True)
    assert (await relaxed.toggle_favourite(asset.id, True)).is_favourite is True


@pytest.mark.asyncio
async def test_usage_only_needs_authentication(stranger_service, make_asset):
    asset = await make_asset()
    await stranger_service.increment_usage(asset.id)
    result = await stranger_service.increment_usage(asset.id)
    assert result.usage_count == 2


@pytest.mark.asyncio
async def test_update_partial_fields(service, make_asset):
    asset = await make_asset("Old", description="keep me", tags=["a"])

    updated = await service.update(asset.id, AssetUpdate(name="  New  ", tags=["b", "c"]))

    assert updated.name == "New"
    assert updated.description == "keep me"
    assert updated.tags == ["b", "c"]
    assert updated.categories == []


@pytest.mark.asyncio
async def test_update_rejects_blank_name(service, make_asset):
    asset = await make_asset()
    with pytest.raises(ValidationError):
        await service.update(asset.id, AssetUpdate(name="   "))


@pytest.mark.asyncio
async def test_update_missing_asset(service, owner):
    with pytest.raises(NotFoundError):
        await service.update("does-not-exist", AssetUpdate(name="x"))


@pytest.mark.asyncio
async def test_reads_after_update_see_new_state(db, cache, service, make_asset):
    asset = await make_asset("Before")
    queries = AssetQueryEngine(db, cache)

    assert (await queries.get(asset.id)).name == "Before"
    await service.update(asset.id, AssetUpdate(name="After"))
    assert (await queries.get(asset.id)).name == "After"


@pytest.mark.asyncio
async def test_delete_removes_record_and_files(service, storage, make_asset):
    asset = await make_asset()
    file_path = asset.file_path
    assert storage.exists(file_path)

    await service.delete(asset.id)

    assert not storage.exists(file_path)
    with pytest.raises(NotFoundError):
        await service.get_by_id(asset.id)


@pytest.mark.asyncio
async def test_batch_delete_reports_partial_failure(service, make_asset):
    ids = [(await make_asset(f"A{i}")).id for i in range(3)]
    request_ids = ids[:1] + ["missing-1"] + ids[1:] + ["missing-2"]

    result = await service.batch_delete(request_ids)

    assert result.deleted == 3
    assert result.failed == 2
    assert set(result.errors) == {"missing-1", "missing-2"}


@pytest.mark.asyncio
async def test_batch_delete_rejects_empty(service):
    with pytest.raises(ValidationError):
        await service.batch_delete([])


@pytest.mark.asyncio
async def test_batch_update_applies_deltas(service, make_asset, other_user):
    mine = await make_asset("Mine", tags=["old", "keep"], categories=["x"])
    theirs = await make_asset("Theirs", tags=["old"], owner_id=other_user.id)

    result = await service.batch_update(BatchUpdateRequest(
        ids=[mine.id, theirs.id],
        add_tags=["new"],
        remove_tags=["old"],
        add_categories=["y"],
    ))

    assert result.updated == 1
    assert result.failed == 1
    assert theirs.id in result.errors

    refreshed = await service.get_by_id(mine.id)
    assert refreshed.tags == ["keep", "new"]
    assert refreshed.categories == ["x", "y"]
