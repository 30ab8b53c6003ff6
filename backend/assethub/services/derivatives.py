"""Derivative generation: thumbnails, previews, waveforms and technical metadata.

One strategy per asset type. Within a strategy the sub-tasks (thumbnail,
preview/waveform, metadata probe) run concurrently and are failure-isolated:
a failing sub-task is logged, recorded in ``DerivativeResult.warnings`` and
leaves its field unset (or the placeholder thumbnail) without failing the
ingestion.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from io import BytesIO
from typing import Any

from PIL import Image, ImageDraw, ImageFont, ImageOps

from assethub.config import get_settings
from assethub.exceptions import ProcessingError
from assethub.models.asset import AssetType
from assethub.services.classifier import extension_of
from assethub.services.media_probe import MediaTool, normalize_probe
from assethub.utils.storage import LocalByteStore

settings = get_settings()
logger = logging.getLogger(__name__)

PLACEHOLDER_COLOURS: dict[AssetType, tuple[int, int, int]] = {
    AssetType.IMAGE: (100, 116, 139),
    AssetType.VIDEO: (15, 23, 42),
    AssetType.AUDIO: (37, 99, 235),
    AssetType.DOCUMENT: (71, 85, 105),
    AssetType.OTHER: (148, 163, 184),
}


def placeholder_name(asset_type: AssetType) -> str:
    return f"{asset_type.value}.png"


@dataclass
class DerivativeResult:
    """Merged output of all sub-tasks, complete even under partial failure."""
    thumbnail_path: str | None = None
    preview_path: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    width: int | None = None
    height: int | None = None
    duration: float | None = None
    warnings: list[str] = field(default_factory=list)
    # Every derivative file this run created (or started creating).
    written_paths: list[str] = field(default_factory=list)


def _flatten_to_rgb(img: Image.Image) -> Image.Image:
    """JPEG has no alpha: composite transparent images onto white."""
    if img.mode in ("RGBA", "LA", "P"):
        if img.mode == "P":
            img = img.convert("RGBA")
        background = Image.new("RGB", img.size, (255, 255, 255))
        background.paste(img, mask=img.split()[-1])
        return background
    if img.mode != "RGB":
        return img.convert("RGB")
    return img


def render_bounded_jpeg(content: bytes, max_width: int, max_height: int, quality: int | None = None) -> bytes:
    """Downscale into a max_width x max_height box, preserving aspect; never upscales."""
    with Image.open(BytesIO(content)) as img:
        img = ImageOps.exif_transpose(img)
        img = _flatten_to_rgb(img)
        img.thumbnail((max_width, max_height), Image.Resampling.LANCZOS)
        out = BytesIO()
        img.save(out, format="JPEG", quality=quality or settings.jpeg_quality, optimize=True, progressive=True)
        return out.getvalue()


def read_image_info(content: bytes) -> tuple[dict[str, Any], dict[str, Any]]:
    """(dimensions, metadata) for raster image bytes."""
    with Image.open(BytesIO(content)) as img:
        width, height = img.size
        transposed = ImageOps.exif_transpose(img)
        if transposed is not None:
            width, height = transposed.size
        metadata = {
            "format": (img.format or "").lower() or None,
            "colorMode": img.mode,
            "hasAlpha": img.mode in ("RGBA", "LA") or "transparency" in img.info,
            "animated": bool(getattr(img, "is_animated", False)),
            "frames": getattr(img, "n_frames", 1),
        }
        dpi = img.info.get("dpi")
        if dpi:
            metadata["dpi"] = [round(float(d), 2) for d in dpi]
    return {"width": width, "height": height}, {k: v for k, v in metadata.items() if v is not None}


def render_cover(title: str, size: tuple[int, int], colour: tuple[int, int, int]) -> bytes:
    """Solid-colour card with a centred title, used for audio covers and placeholders."""
    img = Image.new("RGB", size, colour)
    draw = ImageDraw.Draw(img)
    font = ImageFont.load_default()
    text = (title or "")[:24]
    left, top, right, bottom = draw.textbbox((0, 0), text, font=font)
    x = (size[0] - (right - left)) / 2
    y = (size[1] - (bottom - top)) / 2
    draw.text((x, y), text, fill=(255, 255, 255), font=font)
    out = BytesIO()
    img.save(out, format="JPEG", quality=90)
    return out.getvalue()


def _render_placeholder_png(asset_type: AssetType) -> bytes:
    img = Image.new("RGB", (settings.thumbnail_max_width, settings.thumbnail_max_height), PLACEHOLDER_COLOURS[asset_type])
    draw = ImageDraw.Draw(img)
    font = ImageFont.load_default()
    label = asset_type.value.upper()
    left, top, right, bottom = draw.textbbox((0, 0), label, font=font)
    draw.text(
        ((img.width - (right - left)) / 2, (img.height - (bottom - top)) / 2),
        label,
        fill=(255, 255, 255),
        font=font,
    )
    out = BytesIO()
    img.save(out, format="PNG")
    return out.getvalue()


async def ensure_placeholders(storage: LocalByteStore) -> None:
    """Write the static per-type placeholder thumbnails if they are missing."""
    for asset_type in AssetType:
        path = storage.placeholder_path(placeholder_name(asset_type))
        if not storage.exists(path):
            content = await asyncio.to_thread(_render_placeholder_png, asset_type)
            await storage.write(path, content)


class DerivativeGenerator:
    """Produces derivatives for an asset whose original is already in the byte store."""

    def __init__(self, storage: LocalByteStore, media: MediaTool | None = None):
        self.storage = storage
        self.media = media or MediaTool()

    async def generate(
        self,
        asset_id: str,
        asset_type: AssetType,
        source_path: str,
        directory: str,
        name: str = "",
    ) -> DerivativeResult:
        """Run the strategy for ``asset_type``.

        On cancellation the derivative files written so far are removed before
        the cancellation propagates.
        """
        result = DerivativeResult()
        strategies = {
            AssetType.IMAGE: self._image,
            AssetType.VIDEO: self._video,
            AssetType.AUDIO: self._audio,
        }
        strategy = strategies.get(asset_type)
        try:
            if strategy is not None:
                await strategy(result, asset_id, source_path, directory, name)
        except asyncio.CancelledError:
            await self.discard(result)
            raise

        if result.thumbnail_path is None:
            result.thumbnail_path = self.storage.placeholder_path(placeholder_name(asset_type))
        return result

    async def discard(self, result: DerivativeResult) -> None:
        """Best-effort removal of the derivative files a run wrote."""
        for path in result.written_paths:
            if not await self.storage.delete(path):
                logger.debug("Derivative %s already gone", path)
        result.written_paths.clear()

    async def _isolated(self, result: DerivativeResult, label: str, coro, target: str | None = None):
        """Await one sub-task; a failure becomes a warning instead of an exception."""
        if target is not None:
            result.written_paths.append(target)
        try:
            return await coro
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = e if isinstance(e, ProcessingError) else ProcessingError(f"{type(e).__name__}: {e}")
            logger.warning("Derivative %s failed: %s", label, error.message)
            result.warnings.append(f"{label}: {error.message}")
            if target is not None:
                result.written_paths.remove(target)
                await self.storage.delete(target)
            return None

    # Image

    async def _image(self, result: DerivativeResult, asset_id: str, source_path: str, directory: str, name: str) -> None:
        if extension_of(source_path) == ".svg":
            # Vector images scale losslessly; the original doubles as both derivatives.
            result.thumbnail_path = source_path
            result.preview_path = source_path
            result.metadata["format"] = "svg"
            return

        content = await self._isolated(result, "source", self.storage.read(source_path))
        if content is None:
            return

        thumb_target = self.storage.path_for(directory, asset_id, "_thumb", ".jpg")
        preview_target = self.storage.path_for(directory, asset_id, "_preview", ".jpg")

        info, thumb, preview = await asyncio.gather(
            self._isolated(result, "metadata", asyncio.to_thread(read_image_info, content)),
            self._isolated(
                result, "thumbnail",
                self._write_bounded(content, thumb_target, settings.thumbnail_max_width, settings.thumbnail_max_height),
                target=thumb_target,
            ),
            self._isolated(
                result, "preview",
                self._write_bounded(content, preview_target, settings.preview_max_width, settings.preview_max_height),
                target=preview_target,
            ),
        )
        if info is not None:
            dimensions, metadata = info
            result.width = dimensions.get("width")
            result.height = dimensions.get("height")
            result.metadata.update(metadata)
        result.thumbnail_path = thumb
        result.preview_path = preview

    async def _write_bounded(self, content: bytes, target: str, max_width: int, max_height: int) -> str:
        rendered = await asyncio.to_thread(render_bounded_jpeg, content, max_width, max_height)
        await self.storage.write(target, rendered)
        return target

    # Video

    async def _video(self, result: DerivativeResult, asset_id: str, source_path: str, directory: str, name: str) -> None:
        source = self.storage.get_absolute_path(source_path)
        thumb_target = self.storage.path_for(directory, asset_id, "_thumb", ".jpg")
        preview_target = self.storage.path_for(directory, asset_id, "_preview", ".gif")

        async def thumbnail(duration: float) -> str:
            await self.media.extract_frame(
                source,
                self.storage.prepare_local_path(thumb_target),
                duration * settings.video_thumbnail_position,
                settings.thumbnail_max_width,
                settings.thumbnail_max_height,
            )
            return thumb_target

        async def probe_then_thumbnail():
            # One probe feeds both the metadata and the frame position; without it, grab t=0.
            probe = await self._isolated(result, "metadata", self.media.probe(source))
            duration = normalize_probe(probe)[0].get("duration") if probe is not None else None
            thumb = await self._isolated(result, "thumbnail", thumbnail(duration or 0.0), target=thumb_target)
            return probe, thumb

        async def preview() -> str:
            await self.media.animated_preview(
                source,
                self.storage.prepare_local_path(preview_target),
                settings.video_preview_seconds,
                settings.video_preview_fps,
                settings.video_preview_width,
            )
            return preview_target

        (probe, thumb), anim = await asyncio.gather(
            probe_then_thumbnail(),
            self._isolated(result, "preview", preview(), target=preview_target),
        )
        if probe is not None:
            dimensions, metadata = normalize_probe(probe)
            result.width = dimensions.get("width")
            result.height = dimensions.get("height")
            result.duration = dimensions.get("duration")
            result.metadata.update(metadata)
        result.thumbnail_path = thumb
        result.preview_path = anim

    # Audio

    async def _audio(self, result: DerivativeResult, asset_id: str, source_path: str, directory: str, name: str) -> None:
        source = self.storage.get_absolute_path(source_path)
        thumb_target = self.storage.path_for(directory, asset_id, "_thumb", ".jpg")
        waveform_target = self.storage.path_for(directory, asset_id, "_waveform", ".png")

        async def cover() -> str:
            rendered = await asyncio.to_thread(
                render_cover,
                name,
                (settings.thumbnail_max_width, settings.thumbnail_max_height),
                PLACEHOLDER_COLOURS[AssetType.AUDIO],
            )
            await self.storage.write(thumb_target, rendered)
            return thumb_target

        async def waveform() -> str:
            await self.media.waveform(
                source,
                self.storage.prepare_local_path(waveform_target),
                settings.waveform_size,
            )
            return waveform_target

        probe, thumb, wave = await asyncio.gather(
            self._isolated(result, "metadata", self.media.probe(source)),
            self._isolated(result, "thumbnail", cover(), target=thumb_target),
            self._isolated(result, "waveform", waveform(), target=waveform_target),
        )
        if probe is not None:
            dimensions, metadata = normalize_probe(probe)
            result.duration = dimensions.get("duration")
            result.metadata.update(metadata)
        result.thumbnail_path = thumb
        result.preview_path = wave
