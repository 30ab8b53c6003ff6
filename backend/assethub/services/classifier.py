"""Maps a file's extension / MIME type onto the closed asset type enum."""
from pathlib import Path

from assethub.exceptions import ValidationError
from assethub.models.asset import AssetType

ALLOWED_EXTENSIONS: dict[AssetType, frozenset[str]] = {
    AssetType.IMAGE: frozenset({".jpg", ".jpeg", ".png", ".gif", ".webp", ".svg", ".bmp", ".tif", ".tiff"}),
    AssetType.VIDEO: frozenset({".mp4", ".webm", ".mov", ".avi", ".mkv", ".m4v"}),
    AssetType.AUDIO: frozenset({".mp3", ".wav", ".ogg", ".m4a", ".flac", ".aac"}),
    AssetType.DOCUMENT: frozenset({
        ".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx",
        ".txt", ".csv", ".rtf", ".md", ".json",
    }),
}

_DOCUMENT_MIME_MARKERS = ("pdf", "msword", "officedocument", "ms-excel", "ms-powerpoint", "json", "csv", "rtf")


def extension_of(filename: str | None) -> str:
    return Path(filename or "").suffix.lower()


def type_from_extension(filename: str | None) -> AssetType | None:
    ext = extension_of(filename)
    if not ext:
        return None
    for asset_type, extensions in ALLOWED_EXTENSIONS.items():
        if ext in extensions:
            return asset_type
    return None


def type_from_mime(mime_type: str | None) -> AssetType:
    mime = (mime_type or "").lower()
    if mime.startswith("image/"):
        return AssetType.IMAGE
    if mime.startswith("video/"):
        return AssetType.VIDEO
    if mime.startswith("audio/"):
        return AssetType.AUDIO
    if mime.startswith("text/") or any(marker in mime for marker in _DOCUMENT_MIME_MARKERS):
        return AssetType.DOCUMENT
    return AssetType.OTHER


def parse_declared_type(value: str | AssetType | None) -> AssetType | None:
    if value is None or value == "":
        return None
    if isinstance(value, AssetType):
        return value
    try:
        return AssetType(str(value).strip().lower())
    except ValueError:
        allowed = ", ".join(t.value for t in AssetType)
        raise ValidationError(f"Unknown asset type '{value}'. Allowed: {allowed}")


def classify(filename: str | None, mime_type: str | None, declared: str | AssetType | None = None) -> AssetType:
    """Derive the asset type, rejecting a declared type that contradicts the extension.

    The extension is authoritative; the MIME type is consulted only when the
    extension is unknown. A mismatch is rejected rather than corrected.
    """
    declared_type = parse_declared_type(declared)
    derived = type_from_extension(filename)

    if declared_type is not None and declared_type in ALLOWED_EXTENSIONS:
        if derived != declared_type:
            ext = extension_of(filename) or "(none)"
            raise ValidationError(
                f"File type mismatch: extension {ext} is not allowed for type {declared_type.value}"
            )
        return declared_type

    if derived is not None:
        if declared_type is AssetType.OTHER:
            raise ValidationError(
                f"File type mismatch: extension {extension_of(filename)} is a {derived.value} file"
            )
        return derived

    if declared_type is not None:
        return declared_type
    return type_from_mime(mime_type)
