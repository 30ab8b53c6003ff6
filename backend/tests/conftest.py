"""Async test fixtures using in-memory SQLite, a temp byte store and a stub ffmpeg."""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("CACHE_BACKEND", "memory")
os.environ.setdefault("RELAXED_MODE", "false")
os.environ.setdefault("DERIVATIVES_ASYNC", "false")

import hashlib
from io import BytesIO

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from PIL import Image
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from assethub.database import Base, enable_sqlite_foreign_keys, get_db
from assethub.exceptions import ProcessingError
from assethub.models import Client, User
from assethub.models.asset import AssetType, new_asset_id
from assethub.services.derivatives import DerivativeGenerator, DerivativeResult
from assethub.services.identity import Identity
from assethub.services.media_probe import MediaTool
from assethub.services.persistence import AssetDraft, PersistenceWriter
from assethub.utils.cache import MemoryCache
from assethub.utils.storage import LocalByteStore

VIDEO_PROBE = {
    "format": {
        "format_name": "mov,mp4,m4a,3gp,3g2,mj2",
        "format_long_name": "QuickTime / MOV",
        "duration": "10.000000",
        "bit_rate": "1200000",
    },
    "streams": [
        {
            "codec_type": "video",
            "codec_name": "h264",
            "width": 1920,
            "height": 1080,
            "avg_frame_rate": "30000/1001",
            "pix_fmt": "yuv420p",
        },
        {
            "codec_type": "audio",
            "codec_name": "aac",
            "channels": 2,
            "sample_rate": "48000",
            "bit_rate": "128000",
        },
    ],
}

AUDIO_PROBE = {
    "format": {"format_name": "mp3", "duration": "61.5", "bit_rate": "192000"},
    "streams": [
        {"codec_type": "audio", "codec_name": "mp3", "channels": 2, "sample_rate": "44100", "bit_rate": "192000"},
    ],
}


def make_image(width: int = 64, height: int = 48, fmt: str = "PNG", mode: str = "RGB") -> bytes:
    img = Image.new(mode, (width, height), (200, 30, 30) if mode == "RGB" else (200, 30, 30, 128))
    out = BytesIO()
    img.save(out, format=fmt)
    return out.getvalue()


class StubMediaTool(MediaTool):
    """MediaTool that never spawns ffmpeg; writes small stand-in files instead."""

    def __init__(self, probe_result: dict | None = None, fail: tuple[str, ...] = ()):
        super().__init__("ffmpeg", "ffprobe", 5)
        self.probe_result = probe_result if probe_result is not None else VIDEO_PROBE
        self.fail = set(fail)
        self.calls: list = []

    def _maybe_fail(self, step: str) -> None:
        if step in self.fail:
            raise ProcessingError(f"{step} exited with 1: simulated failure")

    async def probe(self, source):
        self.calls.append(("probe", str(source)))
        self._maybe_fail("probe")
        return self.probe_result

    async def extract_frame(self, source, target, at_seconds, width, height):
        self.calls.append(("frame", at_seconds))
        self._maybe_fail("frame")
        Image.new("RGB", (width, height * 3 // 4)).save(target, format="JPEG")

    async def animated_preview(self, source, target, seconds, fps, width):
        self.calls.append(("gif", seconds, fps, width))
        self._maybe_fail("gif")
        Image.new("P", (width, width * 9 // 16)).save(target, format="GIF")

    async def waveform(self, source, target, size):
        self.calls.append(("waveform", size))
        self._maybe_fail("waveform")
        w, h = (int(v) for v in size.split("x"))
        Image.new("RGB", (w, h)).save(target, format="PNG")


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest_asyncio.fixture
async def engine():
    eng = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
    enable_sqlite_foreign_keys(eng)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def owner(db: AsyncSession):
    user = User(id="11111111-1111-1111-1111-111111111111", email="owner@test.com", username="owner")
    db.add(user)
    await db.commit()
    return user


@pytest_asyncio.fixture
async def other_user(db: AsyncSession):
    user = User(id="22222222-2222-2222-2222-222222222222", email="other@test.com", username="other")
    db.add(user)
    await db.commit()
    return user


@pytest_asyncio.fixture
async def client_record(db: AsyncSession):
    record = Client(id="33333333-3333-3333-3333-333333333333", slug="acme", name="Acme Corp")
    db.add(record)
    await db.commit()
    return record


@pytest_asyncio.fixture
async def second_client(db: AsyncSession):
    record = Client(id="44444444-4444-4444-4444-444444444444", slug="globex", name="Globex")
    db.add(record)
    await db.commit()
    return record


@pytest.fixture
def identity(owner) -> Identity:
    return Identity(user_id=owner.id, role="user")


@pytest.fixture
def storage(tmp_path) -> LocalByteStore:
    return LocalByteStore(tmp_path / "store")


@pytest.fixture
def cache() -> MemoryCache:
    return MemoryCache(ttl_seconds=300)


@pytest.fixture
def media() -> StubMediaTool:
    return StubMediaTool()


@pytest.fixture
def generator(storage, media) -> DerivativeGenerator:
    return DerivativeGenerator(storage, media)


@pytest.fixture
def writer(db, storage, cache) -> PersistenceWriter:
    return PersistenceWriter(db, storage, cache, relaxed=False)


@pytest.fixture
def make_asset(writer: PersistenceWriter, storage: LocalByteStore, owner, client_record):
    """Persist a document asset directly through the writer."""

    async def _make(
        name: str = "Brief",
        *,
        description: str | None = None,
        tags: list[str] | None = None,
        categories: list[str] | None = None,
        asset_type: AssetType = AssetType.DOCUMENT,
        client_id: str | None = None,
        owner_id: str | None = None,
    ):
        asset_id = new_asset_id()
        client_id = client_id or client_record.id
        content = f"contents of {name}".encode()
        path = storage.path_for(storage.asset_dir(client_id), asset_id, "", ".txt")
        await storage.write(path, content)
        draft = AssetDraft(
            id=asset_id,
            owner_id=owner_id or owner.id,
            client_id=client_id,
            name=name,
            description=description,
            asset_type=asset_type,
            mime_type="text/plain",
            original_filename=f"{name}.txt",
            file_path=path,
            url=storage.get_file_url(path),
            size=len(content),
            content_hash=hashlib.sha256(content).hexdigest(),
            tags=tags or [],
            categories=categories or [],
            derivatives=DerivativeResult(thumbnail_path=storage.placeholder_path("document.png")),
        )
        outcome = await writer.insert(draft)
        return outcome.asset

    return _make


@pytest_asyncio.fixture
async def client(session_factory, storage, cache, media, owner, client_record):
    """HTTPX async test client against the API, authenticated as ``owner``."""
    from assethub.api.deps import get_media_tool
    from assethub.main import app
    from assethub.services.identity import FixedIdentityProvider, get_identity_provider
    from assethub.utils.cache import get_cache
    from assethub.utils.rate_limiter import limiter
    from assethub.utils.storage import get_storage

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_cache] = lambda: cache
    app.dependency_overrides[get_media_tool] = lambda: media
    app.dependency_overrides[get_identity_provider] = lambda: FixedIdentityProvider(owner.id, "user")
    limiter.enabled = False

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()
    limiter.enabled = True
