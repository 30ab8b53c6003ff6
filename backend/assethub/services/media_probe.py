"""ffmpeg / ffprobe invocation and probe-output normalisation."""
import asyncio
import json
import logging
from pathlib import Path
from typing import Any

from assethub.config import get_settings
from assethub.exceptions import ProcessingError

settings = get_settings()
logger = logging.getLogger(__name__)


class MediaTool:
    """Runs ffmpeg/ffprobe as subprocesses with a hard timeout."""

    def __init__(
        self,
        ffmpeg_binary: str | None = None,
        ffprobe_binary: str | None = None,
        timeout: float | None = None,
    ):
        self.ffmpeg_binary = ffmpeg_binary or settings.ffmpeg_binary
        self.ffprobe_binary = ffprobe_binary or settings.ffprobe_binary
        self.timeout = timeout or settings.derivative_timeout

    async def _run(self, args: list[str]) -> bytes:
        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise ProcessingError(f"{args[0]} is not installed") from e

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except (asyncio.TimeoutError, asyncio.CancelledError) as e:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
            await proc.wait()
            if isinstance(e, asyncio.CancelledError):
                raise
            raise ProcessingError(f"{Path(args[0]).name} timed out after {self.timeout:.0f}s") from e

        if proc.returncode != 0:
            tail = stderr.decode("utf-8", errors="replace").strip().splitlines()[-1:] or [""]
            raise ProcessingError(f"{Path(args[0]).name} exited with {proc.returncode}: {tail[0]}")
        return stdout

    async def probe(self, source: Path) -> dict[str, Any]:
        """Raw ffprobe JSON (format + streams)."""
        out = await self._run([
            self.ffprobe_binary,
            "-v", "error",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            str(source),
        ])
        try:
            return json.loads(out or b"{}")
        except json.JSONDecodeError as e:
            raise ProcessingError(f"Unreadable ffprobe output: {e}") from e

    async def ffmpeg(self, args: list[str]) -> None:
        await self._run([self.ffmpeg_binary, "-y", "-v", "error", *args])

    async def extract_frame(self, source: Path, target: Path, at_seconds: float, width: int, height: int) -> None:
        """Single frame at ``at_seconds``, scaled to fit inside width x height."""
        await self.ffmpeg([
            "-ss", f"{max(at_seconds, 0):.3f}",
            "-i", str(source),
            "-frames:v", "1",
            "-vf", f"scale='min({width},iw)':'min({height},ih)':force_original_aspect_ratio=decrease",
            "-q:v", "3",
            str(target),
        ])

    async def animated_preview(self, source: Path, target: Path, seconds: int, fps: int, width: int) -> None:
        """Short looping low-resolution GIF from the start of the clip."""
        await self.ffmpeg([
            "-t", str(seconds),
            "-i", str(source),
            "-vf", (
                f"fps={fps},scale='min({width},iw)':-2:flags=lanczos,"
                "split[s0][s1];[s0]palettegen[p];[s1][p]paletteuse"
            ),
            "-loop", "0",
            str(target),
        ])

    async def waveform(self, source: Path, target: Path, size: str) -> None:
        await self.ffmpeg([
            "-i", str(source),
            "-filter_complex", f"showwavespic=s={size}:colors=#2563eb",
            "-frames:v", "1",
            str(target),
        ])


def _to_int(value) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _to_float(value) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def parse_frame_rate(value: str | None) -> float | None:
    """ffprobe reports rates as fractions such as "30000/1001"."""
    if not value:
        return None
    if "/" in value:
        num, _, den = value.partition("/")
        num_f, den_f = _to_float(num), _to_float(den)
        if num_f is None or not den_f:
            return None
        return round(num_f / den_f, 3)
    return _to_float(value)


def _first_stream(probe: dict[str, Any], codec_type: str) -> dict[str, Any] | None:
    for stream in probe.get("streams") or []:
        if stream.get("codec_type") == codec_type:
            return stream
    return None


def _compact(values: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in values.items() if v is not None and v != ""}


def normalize_probe(probe: dict[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
    """Split ffprobe output into (first-class dimensions, flat metadata map).

    The dimensions dict only ever holds ``width``, ``height`` and ``duration``;
    everything else goes to the metadata map under camelCase keys.
    """
    fmt = probe.get("format") or {}
    video = _first_stream(probe, "video")
    audio = _first_stream(probe, "audio")

    duration = _to_float(fmt.get("duration"))
    if duration is None:
        for stream in (video, audio):
            if stream and _to_float(stream.get("duration")) is not None:
                duration = _to_float(stream.get("duration"))
                break

    dimensions: dict[str, Any] = {"duration": duration}
    metadata: dict[str, Any] = {
        "format": fmt.get("format_name"),
        "container": fmt.get("format_long_name"),
        "bitrate": _to_int(fmt.get("bit_rate")),
    }

    if video:
        dimensions["width"] = _to_int(video.get("width"))
        dimensions["height"] = _to_int(video.get("height"))
        metadata.update({
            "codec": video.get("codec_name"),
            "frameRate": parse_frame_rate(video.get("avg_frame_rate") or video.get("r_frame_rate")),
            "pixelFormat": video.get("pix_fmt"),
            "colorSpace": video.get("color_space"),
        })

    if audio:
        metadata.update({
            "audioCodec": audio.get("codec_name"),
            "audioChannels": _to_int(audio.get("channels")),
            "audioSampleRate": _to_int(audio.get("sample_rate")),
            "audioBitrate": _to_int(audio.get("bit_rate")),
        })

    return _compact(dimensions), _compact(metadata)
