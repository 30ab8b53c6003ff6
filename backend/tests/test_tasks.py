"""Test background jobs without a broker: the coroutines behind the Celery tasks."""

import hashlib
from pathlib import Path, PurePosixPath

import pytest

from assethub.exceptions import PersistenceError
from assethub.models.asset import AssetType, ProcessingStatus, new_asset_id
from assethub.services.derivatives import DerivativeResult
from assethub.services.persistence import AssetDraft, PersistenceWriter
from assethub.tasks import derivative_tasks, maintenance
from assethub.tasks.derivative_tasks import _generate, generate_asset_derivatives
from tests.conftest import make_image


@pytest.fixture
def pending_image(writer, storage, owner, client_record):
    async def _make():
        asset_id = new_asset_id()
        content = make_image(400, 200)
        directory = storage.asset_dir(client_record.id)
        path = storage.path_for(directory, asset_id, "", ".png")
        await storage.write(path, content)
        outcome = await writer.insert(AssetDraft(
            id=asset_id,
            owner_id=owner.id,
            client_id=client_record.id,
            name="render.png",
            asset_type=AssetType.IMAGE,
            mime_type="image/png",
            original_filename="render.png",
            file_path=path,
            url=storage.get_file_url(path),
            size=len(content),
            content_hash=hashlib.sha256(content).hexdigest(),
            derivatives=DerivativeResult(thumbnail_path=storage.placeholder_path("image.png")),
            processing_status=ProcessingStatus.PENDING,
        ))
        return outcome.asset

    return _make


@pytest.mark.asyncio
async def test_generate_completes_pending_asset(writer, storage, cache, session_factory, media, pending_image):
    asset = await pending_image()
    assert asset.width is None

    result = await _generate(asset.id, storage, cache, session_factory, media)

    assert result["status"] == "complete"
    refreshed = await writer.load(asset.id)
    assert refreshed.processing_status == ProcessingStatus.COMPLETE
    assert (refreshed.width, refreshed.height) == (400, 200)
    assert not storage.is_placeholder(refreshed.thumbnail_path)
    assert storage.exists(refreshed.thumbnail_path)


@pytest.mark.asyncio
async def test_generate_skips_finished_asset(storage, cache, session_factory, media, pending_image):
    asset = await pending_image()
    await _generate(asset.id, storage, cache, session_factory, media)

    again = await _generate(asset.id, storage, cache, session_factory, media)
    assert again == {"asset_id": asset.id, "status": "complete"}


@pytest.mark.asyncio
async def test_generate_missing_asset(storage, cache, session_factory, media, owner):
    result = await _generate("gone", storage, cache, session_factory, media)
    assert result["status"] == "missing"


def test_cleanup_files_task(tmp_path, monkeypatch):
    from assethub.utils.storage import LocalByteStore

    storage = LocalByteStore(tmp_path / "store")
    (tmp_path / "store" / "c").mkdir(parents=True)
    (tmp_path / "store" / "c" / "a.png").write_bytes(b"x")
    monkeypatch.setattr(maintenance, "get_storage", lambda: storage)

    result = maintenance.cleanup_files(["c/a.png", "c/missing.png", storage.placeholder_path("image.png")])

    assert result == {"requested": 3, "deleted": 1}
    assert not (tmp_path / "store" / "c" / "a.png").exists()


@pytest.mark.asyncio
async def test_generate_drops_derivatives_when_record_store_fails(
    storage, cache, session_factory, media, pending_image, monkeypatch
):
    asset = await pending_image()

    async def broken(self, asset_id, derivatives):
        raise PersistenceError(f"Failed to write asset {asset_id}")

    monkeypatch.setattr(PersistenceWriter, "attach_derivatives", broken)

    with pytest.raises(PersistenceError):
        await _generate(asset.id, storage, cache, session_factory, media)

    directory = Path(storage.base_dir) / PurePosixPath(asset.file_path).parent
    assert [p.name for p in directory.rglob("*") if p.is_file()] == [PurePosixPath(asset.file_path).name]


class Retrying(Exception):
    pass


@pytest.fixture
def failing_store(monkeypatch):
    """Make every coroutine the task runs fail like an unreachable database."""
    ran: list[str] = []

    def fake_run_async(coro):
        ran.append(coro.__name__)
        coro.close()
        if coro.__name__ == "_generate_asset_derivatives_async":
            raise PersistenceError("Failed to write asset a1")

    monkeypatch.setattr(derivative_tasks, "run_async", fake_run_async)
    return ran


def test_task_retries_record_store_failure(failing_store, monkeypatch):
    retried = []

    def fake_retry(exc=None, countdown=None, **kwargs):
        retried.append((exc.message, countdown))
        return Retrying()

    monkeypatch.setattr(generate_asset_derivatives, "retry", fake_retry)

    with pytest.raises(Retrying):
        generate_asset_derivatives("a1")

    assert retried == [("Failed to write asset a1", derivative_tasks.RETRY_COUNTDOWN_SECONDS)]
    assert failing_store == ["_generate_asset_derivatives_async"]


def test_task_marks_failed_when_retries_run_out(failing_store, monkeypatch):
    monkeypatch.setattr(generate_asset_derivatives, "max_retries", 0)

    with pytest.raises(PersistenceError):
        generate_asset_derivatives("a1")

    assert failing_store == ["_generate_asset_derivatives_async", "_mark_failed_async"]
